import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from tests.tool_resilience.support.fakes import FakeClock
from tool_resilience.circuit_breaker import (
    CircuitBreakerConfig,
    CircuitRegistry,
    CircuitState,
    get_default_registry,
)

pytestmark = pytest.mark.asyncio


async def _fail() -> None:
    raise RuntimeError("nope")


async def test_get_or_create_returns_identical_instance() -> None:
    registry = CircuitRegistry()
    config = CircuitBreakerConfig(failure_threshold=2)

    first = registry.get_or_create("x", config)
    second = registry.get_or_create("x", config)

    assert first is second
    assert len(registry) == 1
    assert "x" in registry


async def test_first_config_wins_for_existing_name() -> None:
    registry = CircuitRegistry()
    first = registry.get_or_create("x", CircuitBreakerConfig(failure_threshold=2))

    second = registry.get_or_create("x", CircuitBreakerConfig(failure_threshold=9))

    assert second is first
    assert second.config.failure_threshold == 2


async def test_threaded_get_or_create_yields_one_breaker() -> None:
    registry = CircuitRegistry()
    barrier = threading.Barrier(16)

    def _lookup() -> object:
        barrier.wait()
        return registry.get_or_create("shared")

    with ThreadPoolExecutor(max_workers=16) as pool:
        breakers = list(pool.map(lambda _: _lookup(), range(16)))

    assert all(breaker is breakers[0] for breaker in breakers)
    assert registry.names() == ["shared"]


async def test_get_returns_none_for_unknown_name() -> None:
    registry = CircuitRegistry()

    assert registry.get("missing") is None
    created = registry.get_or_create("known")
    assert registry.get("known") is created


async def test_snapshot_reports_state_and_counters(clock: FakeClock) -> None:
    registry = CircuitRegistry()
    db = registry.get_or_create("db", CircuitBreakerConfig(failure_threshold=1))
    registry.get_or_create("api")

    with pytest.raises(RuntimeError):
        await db.call(_fail)

    assert registry.snapshot() == {
        "db": {"state": "open", "failure_count": 1, "success_count": 0},
        "api": {"state": "closed", "failure_count": 0, "success_count": 0},
    }
    states = registry.get_all_states()
    assert states["db"].state == CircuitState.OPEN
    assert states["api"].state == CircuitState.CLOSED


async def test_reset_all_closes_every_breaker(clock: FakeClock) -> None:
    registry = CircuitRegistry()
    for name in ("a", "b"):
        config = CircuitBreakerConfig(failure_threshold=1)
        breaker = registry.get_or_create(name, config)
        with pytest.raises(RuntimeError):
            await breaker.call(_fail)

    await registry.reset_all()

    assert {state.state for state in registry.get_all_states().values()} == {
        CircuitState.CLOSED
    }
    assert len(registry) == 2


async def test_clear_removes_entries() -> None:
    registry = CircuitRegistry()
    registry.get_or_create("a")

    registry.clear()

    assert len(registry) == 0
    assert registry.get("a") is None


async def test_state_change_callbacks_fan_out_sync_and_async(
    clock: FakeClock,
) -> None:
    registry = CircuitRegistry()
    breaker = registry.get_or_create("db", CircuitBreakerConfig(failure_threshold=1))
    sync_events: list[tuple[str, CircuitState, CircuitState]] = []
    async_events: list[tuple[str, CircuitState, CircuitState]] = []

    # Registered after the breaker exists on purpose.
    @registry.on_state_change
    def _sync(name: str, old: CircuitState, new: CircuitState) -> None:
        sync_events.append((name, old, new))

    async def _async(name: str, old: CircuitState, new: CircuitState) -> None:
        async_events.append((name, old, new))

    def _broken(name: str, old: CircuitState, new: CircuitState) -> None:
        raise RuntimeError("alerting down")

    registry.on_state_change(_broken)
    registry.on_state_change(_async)

    with pytest.raises(RuntimeError, match="nope"):
        await breaker.call(_fail)

    expected = [("db", CircuitState.CLOSED, CircuitState.OPEN)]
    assert sync_events == expected
    assert async_events == expected


async def test_default_registry_is_process_wide() -> None:
    assert get_default_registry() is get_default_registry()
