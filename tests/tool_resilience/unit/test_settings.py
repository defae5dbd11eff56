from __future__ import annotations

from typing import Any, cast

import pytest
from pydantic import ValidationError

from tool_resilience.backoff import AdaptiveBackoff, BackoffAlgorithm
from tool_resilience.settings import ResilienceSettings, prefixed_settings_config


def _build_settings(**overrides: object) -> ResilienceSettings:
    return ResilienceSettings(**cast(Any, overrides))


@pytest.fixture(autouse=True)
def _clean_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ResilienceSettings.model_fields:
        monkeypatch.delenv(f"TOOL_RESILIENCE_{name.upper()}", raising=False)


def test_prefixed_settings_config_is_case_insensitive() -> None:
    config = prefixed_settings_config("APP_")

    assert config["env_prefix"] == "APP_"
    assert config["case_sensitive"] is False


def test_resilience_settings_defaults_match_protection_defaults() -> None:
    protection = _build_settings().to_protection_config()

    assert protection.failure_threshold == 5
    assert protection.recovery_timeout == 30.0
    assert protection.max_attempts == 3
    assert protection.backoff_algorithm == BackoffAlgorithm.EXPONENTIAL
    assert protection.max_retry_ratio == 0.2
    assert protection.bulkhead_config() is None


def test_resilience_settings_reads_prefixed_environment(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("TOOL_RESILIENCE_FAILURE_THRESHOLD", "3")
    monkeypatch.setenv("TOOL_RESILIENCE_RECOVERY_TIMEOUT", "12.5")
    monkeypatch.setenv("TOOL_RESILIENCE_BACKOFF_ALGORITHM", " Adaptive ")
    monkeypatch.setenv("TOOL_RESILIENCE_BULKHEAD_MAX_CONCURRENT", "4")
    monkeypatch.setenv("TOOL_RESILIENCE_LOG_LEVEL", "debug")

    settings = ResilienceSettings()
    protection = settings.to_protection_config()

    assert settings.log_level == "DEBUG"
    assert protection.failure_threshold == 3
    assert protection.recovery_timeout == 12.5
    assert protection.backoff_algorithm == BackoffAlgorithm.ADAPTIVE
    assert isinstance(protection.build_backoff(), AdaptiveBackoff)
    bulkhead = protection.bulkhead_config()
    assert bulkhead is not None
    assert bulkhead.max_concurrent == 4


def test_resilience_settings_rejects_unknown_log_level() -> None:
    with pytest.raises(ValidationError):
        _build_settings(log_level="TRACE")


def test_resilience_settings_rejects_unknown_backoff_algorithm() -> None:
    with pytest.raises(ValidationError):
        _build_settings(backoff_algorithm="quadratic")


@pytest.mark.parametrize("field", ["failure_rate_threshold", "max_retry_ratio"])
def test_resilience_settings_rejects_ratio_out_of_range(field: str) -> None:
    with pytest.raises(ValidationError):
        _build_settings(**{field: 1.5})


@pytest.mark.parametrize(
    "overrides",
    [
        {"failure_threshold": 0},
        {"half_open_max_requests": 0},
        {"max_attempts": 0},
        {"recovery_timeout": -1.0},
        {"initial_delay": 5.0, "max_delay": 1.0},
        {"retry_window_seconds": 0.0},
        {"bulkhead_max_concurrent": 0},
        {"bulkhead_max_wait": -0.5},
    ],
)
def test_resilience_settings_rejects_invalid_bounds(
    overrides: dict[str, object],
) -> None:
    with pytest.raises(ValidationError):
        _build_settings(**overrides)
