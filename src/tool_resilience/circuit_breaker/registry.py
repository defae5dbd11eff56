"""Process-wide lookup of named circuit breakers."""

from __future__ import annotations

import inspect
import threading
from collections.abc import Awaitable, Callable

from tool_resilience.circuit_breaker.breaker import CircuitBreaker, CircuitBreakerConfig
from tool_resilience.circuit_breaker.metrics import BreakerListener
from tool_resilience.circuit_breaker.state import BreakerSnapshot, CircuitState
from tool_resilience.logging import get_logger, log_warning

StateChangeCallback = Callable[
    [str, CircuitState, CircuitState], Awaitable[None] | None
]

_logger = get_logger(__name__)


class _FanOutListener(BreakerListener):
    """Forward state changes from one breaker to every registry callback."""

    def __init__(self, registry: CircuitRegistry) -> None:
        self._registry = registry

    async def on_state_change(
        self, name: str, old: CircuitState, new: CircuitState
    ) -> None:
        for callback in self._registry._callbacks_snapshot():
            try:
                result = callback(name, old, new)
                if inspect.isawaitable(result):
                    await result
            except Exception as exc:
                log_warning(
                    _logger,
                    "circuit_registry.callback_failed",
                    breaker=name,
                    error_type=exc.__class__.__name__,
                    error=str(exc),
                )

    async def on_call_rejected(self, name: str) -> None:
        _ = name

    async def on_call_succeeded(self, name: str, elapsed: float) -> None:
        _ = (name, elapsed)

    async def on_call_failed(self, name: str, exc: Exception, elapsed: float) -> None:
        _ = (name, exc, elapsed)


class CircuitRegistry:
    """Concurrency-safe map of breaker name to ``CircuitBreaker``.

    The first caller to create a name wins. Later ``get_or_create`` calls with a
    different config get the existing breaker unchanged and a warning is logged.
    """

    def __init__(self, *, listeners: list[BreakerListener] | None = None) -> None:
        """Create an empty registry.

        Args:
            listeners: Listeners attached to every breaker this registry creates.
        """
        self._lock = threading.Lock()
        self._breakers: dict[str, CircuitBreaker] = {}
        self._callbacks: list[StateChangeCallback] = []
        self._listeners = list(listeners) if listeners is not None else []
        self._fan_out = _FanOutListener(self)

    def __len__(self) -> int:
        with self._lock:
            return len(self._breakers)

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._breakers

    def _callbacks_snapshot(self) -> tuple[StateChangeCallback, ...]:
        with self._lock:
            return tuple(self._callbacks)

    def on_state_change(self, callback: StateChangeCallback) -> StateChangeCallback:
        """Register ``callback(name, old, new)`` for every owned breaker.

        Returns the callback so the method can be used as a decorator.
        """
        with self._lock:
            self._callbacks.append(callback)
        return callback

    def get_or_create(
        self, name: str, config: CircuitBreakerConfig | None = None
    ) -> CircuitBreaker:
        """Return the breaker for ``name``, creating it on first reference."""
        with self._lock:
            breaker = self._breakers.get(name)
            if breaker is None:
                breaker = CircuitBreaker(
                    name,
                    config=config,
                    listeners=[*self._listeners, self._fan_out],
                )
                self._breakers[name] = breaker
                return breaker
        if config is not None and config != breaker.config:
            log_warning(
                _logger,
                "circuit_registry.config_ignored",
                breaker=name,
                reason="breaker already exists with a different config",
            )
        return breaker

    def get(self, name: str) -> CircuitBreaker | None:
        with self._lock:
            return self._breakers.get(name)

    def names(self) -> list[str]:
        with self._lock:
            return sorted(self._breakers)

    def _breakers_snapshot(self) -> list[CircuitBreaker]:
        with self._lock:
            return list(self._breakers.values())

    def get_all_states(self) -> dict[str, BreakerSnapshot]:
        """Return a snapshot of every registered breaker keyed by name."""
        return {
            breaker.name: breaker.get_state() for breaker in self._breakers_snapshot()
        }

    def snapshot(self) -> dict[str, dict[str, object]]:
        """Return ``{name: {state, failure_count, success_count}}`` for dashboards."""
        return {name: state.as_dict() for name, state in self.get_all_states().items()}

    async def reset_all(self) -> None:
        """Force every registered breaker back to ``CLOSED``."""
        for breaker in self._breakers_snapshot():
            await breaker.reset()

    def clear(self) -> None:
        """Drop every registered breaker. Intended for administration and tests."""
        with self._lock:
            self._breakers.clear()


_DEFAULT_REGISTRY = CircuitRegistry()


def get_default_registry() -> CircuitRegistry:
    """Return the process-wide registry."""
    return _DEFAULT_REGISTRY
