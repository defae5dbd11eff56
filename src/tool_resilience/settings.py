from __future__ import annotations

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from tool_resilience.backoff import BackoffAlgorithm
from tool_resilience.config import ProtectionConfig
from tool_resilience.logging import get_log_level_value

DEFAULT_ENV_PREFIX = "TOOL_RESILIENCE_"


def prefixed_settings_config(prefix: str) -> SettingsConfigDict:
    """Build standard Pydantic settings config for prefixed environments."""
    return SettingsConfigDict(env_prefix=prefix, case_sensitive=False)


class ResilienceSettings(BaseSettings):
    """Process-wide protection defaults read from the environment."""

    model_config = prefixed_settings_config(DEFAULT_ENV_PREFIX)

    log_level: str = "INFO"

    failure_threshold: int = 5
    recovery_timeout: float = 30.0
    half_open_max_requests: int = 1
    failure_rate_threshold: float = 0.5
    minimum_requests: int = 10

    max_attempts: int = 3
    initial_delay: float = 0.1
    max_delay: float = 10.0
    backoff_algorithm: BackoffAlgorithm = BackoffAlgorithm.EXPONENTIAL
    backoff_multiplier: float = 2.0
    jitter: bool = True

    max_retries_per_second: float = 10.0
    max_retry_ratio: float = 0.2
    retry_window_seconds: float = 10.0
    retry_min_requests: int = 10

    bulkhead_max_concurrent: int | None = None
    bulkhead_max_wait: float = 0.0

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalize_log_level(cls, value: object) -> object:
        if isinstance(value, str):
            get_log_level_value(value)
            return value.strip().upper()
        return value

    @field_validator("backoff_algorithm", mode="before")
    @classmethod
    def _normalize_backoff_algorithm(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @field_validator("failure_rate_threshold", "max_retry_ratio")
    @classmethod
    def _validate_ratio(cls, value: float) -> float:
        if not 0.0 <= value <= 1.0:
            raise ValueError("must be within [0, 1]")
        return value

    @model_validator(mode="after")
    def _validate_resilience_settings(self) -> ResilienceSettings:
        if self.failure_threshold < 1:
            raise ValueError("failure_threshold must be >= 1")
        if self.half_open_max_requests < 1:
            raise ValueError("half_open_max_requests must be >= 1")
        if self.minimum_requests < 1:
            raise ValueError("minimum_requests must be >= 1")
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.recovery_timeout < 0:
            raise ValueError("recovery_timeout must be >= 0")
        if self.initial_delay < 0:
            raise ValueError("initial_delay must be >= 0")
        if self.max_delay < self.initial_delay:
            raise ValueError("max_delay must be >= initial_delay")
        if self.retry_window_seconds <= 0:
            raise ValueError("retry_window_seconds must be > 0")
        limit = self.bulkhead_max_concurrent
        if limit is not None and limit < 1:
            raise ValueError("bulkhead_max_concurrent must be >= 1")
        if self.bulkhead_max_wait < 0:
            raise ValueError("bulkhead_max_wait must be >= 0")
        return self

    def to_protection_config(self) -> ProtectionConfig:
        """Build the per-resource config these settings describe."""
        return ProtectionConfig(
            failure_threshold=self.failure_threshold,
            recovery_timeout=self.recovery_timeout,
            half_open_max_requests=self.half_open_max_requests,
            failure_rate_threshold=self.failure_rate_threshold,
            minimum_requests=self.minimum_requests,
            max_attempts=self.max_attempts,
            initial_delay=self.initial_delay,
            max_delay=self.max_delay,
            backoff_algorithm=self.backoff_algorithm,
            backoff_multiplier=self.backoff_multiplier,
            jitter=self.jitter,
            max_retries_per_second=self.max_retries_per_second,
            max_retry_ratio=self.max_retry_ratio,
            retry_window_seconds=self.retry_window_seconds,
            retry_min_requests=self.retry_min_requests,
            bulkhead_max_concurrent=self.bulkhead_max_concurrent,
            bulkhead_max_wait=self.bulkhead_max_wait,
        )
