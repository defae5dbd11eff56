"""Observability hooks for circuit breakers."""

from __future__ import annotations

import threading
from collections import Counter
from typing import Protocol

from tool_resilience.circuit_breaker.state import CircuitState
from tool_resilience.logging import (
    StructuredLogger,
    get_logger,
    log_info,
    log_warning,
)


class BreakerListener(Protocol):
    """Listener protocol for circuit breaker events.

    Notes:
        Hooks run inline on the caller's path after the breaker lock is
        released. Keep them short; exceptions are logged and swallowed.
    """

    async def on_state_change(
        self, name: str, old: CircuitState, new: CircuitState
    ) -> None:
        """Handle circuit state transitions."""

    async def on_call_rejected(self, name: str) -> None:
        """Handle call rejection while the circuit is open."""

    async def on_call_succeeded(self, name: str, elapsed: float) -> None:
        """Handle successful protected call completion."""

    async def on_call_failed(self, name: str, exc: Exception, elapsed: float) -> None:
        """Handle failed protected call completion."""


class LoggingBreakerListener(BreakerListener):
    """Emit structured log events for transitions and rejections."""

    def __init__(self, logger: StructuredLogger | None = None) -> None:
        self._logger = get_logger(__name__) if logger is None else logger

    async def on_state_change(
        self, name: str, old: CircuitState, new: CircuitState
    ) -> None:
        if new == CircuitState.OPEN:
            log_warning(
                self._logger,
                "circuit_breaker.state_change",
                breaker=name,
                old_state=str(old),
                new_state=str(new),
            )
            return
        log_info(
            self._logger,
            "circuit_breaker.state_change",
            breaker=name,
            old_state=str(old),
            new_state=str(new),
        )

    async def on_call_rejected(self, name: str) -> None:
        log_info(self._logger, "circuit_breaker.call_rejected", breaker=name)

    async def on_call_succeeded(self, name: str, elapsed: float) -> None:
        _ = (name, elapsed)

    async def on_call_failed(self, name: str, exc: Exception, elapsed: float) -> None:
        log_info(
            self._logger,
            "circuit_breaker.call_failed",
            breaker=name,
            error_type=exc.__class__.__name__,
            elapsed=elapsed,
        )


class BreakerEventCounter(BreakerListener):
    """Count breaker events per name for an external metrics collector."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counts: Counter[tuple[str, str]] = Counter()

    def _bump(self, name: str, event: str) -> None:
        with self._lock:
            self._counts[(name, event)] += 1

    async def on_state_change(
        self, name: str, old: CircuitState, new: CircuitState
    ) -> None:
        _ = old
        self._bump(name, f"transition_{new}")

    async def on_call_rejected(self, name: str) -> None:
        self._bump(name, "rejected")

    async def on_call_succeeded(self, name: str, elapsed: float) -> None:
        _ = elapsed
        self._bump(name, "succeeded")

    async def on_call_failed(self, name: str, exc: Exception, elapsed: float) -> None:
        _ = (exc, elapsed)
        self._bump(name, "failed")

    def count(self, name: str, event: str) -> int:
        with self._lock:
            return self._counts[(name, event)]

    def snapshot(self) -> dict[str, dict[str, int]]:
        """Return ``{breaker: {event: count}}``."""
        with self._lock:
            items = list(self._counts.items())
        result: dict[str, dict[str, int]] = {}
        for (name, event), value in items:
            result.setdefault(name, {})[event] = value
        return result
