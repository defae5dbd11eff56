from __future__ import annotations

import pytest

import tool_resilience.budget as budget_mod
import tool_resilience.circuit_breaker.breaker as breaker_mod
from tests.tool_resilience.support.fakes import FakeClock, FakeLogger, RecordingSleep


@pytest.fixture
def fake_logger() -> FakeLogger:
    """Provide a fresh structured logger test double per test."""
    return FakeLogger()


@pytest.fixture
def clock(monkeypatch: pytest.MonkeyPatch) -> FakeClock:
    """Patch breaker and budget clocks with one manually advanced clock."""
    fake = FakeClock()
    monkeypatch.setattr(breaker_mod, "_monotonic", fake.monotonic)
    monkeypatch.setattr(breaker_mod, "_utcnow", fake.utcnow)
    monkeypatch.setattr(budget_mod, "_monotonic", fake.monotonic)
    return fake


@pytest.fixture
def recording_sleep(clock: FakeClock) -> RecordingSleep:
    """Provide a sleep that records delays and advances the fake clock."""
    return RecordingSleep(clock)
