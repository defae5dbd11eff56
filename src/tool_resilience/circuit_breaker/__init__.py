"""Framework-agnostic async circuit breaker.

This package implements the circuit breaker pattern from *Release It!*.

Key behavior notes:
  - ``CLOSED`` opens on ``failure_threshold`` failures while traffic is below
    ``minimum_requests``, and on ``failure_rate_threshold`` once it is not.
  - ``OPEN`` becomes ``HALF_OPEN`` lazily, on the first call after
    ``recovery_timeout``; nothing runs in the background.
  - ``HALF_OPEN`` admits up to ``half_open_max_requests`` concurrent probes.
    One probe failure reopens the circuit; that many consecutive successes
    close it and zero the counters.
  - If an excluded exception is raised, the call is treated as if it never
    happened: counters and state are untouched and a probe slot is freed.
"""

from tool_resilience.circuit_breaker.breaker import CircuitBreaker, CircuitBreakerConfig
from tool_resilience.circuit_breaker.exceptions import (
    CircuitBreakerError,
    CircuitOpenError,
)
from tool_resilience.circuit_breaker.metrics import (
    BreakerEventCounter,
    BreakerListener,
    LoggingBreakerListener,
)
from tool_resilience.circuit_breaker.registry import (
    CircuitRegistry,
    StateChangeCallback,
    get_default_registry,
)
from tool_resilience.circuit_breaker.state import (
    BreakerSnapshot,
    CallOutcome,
    CircuitState,
)
from tool_resilience.circuit_breaker.window import OutcomeWindow, SlidingWindowConfig

__all__ = [
    "BreakerEventCounter",
    "BreakerListener",
    "BreakerSnapshot",
    "CallOutcome",
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerError",
    "CircuitOpenError",
    "CircuitRegistry",
    "CircuitState",
    "LoggingBreakerListener",
    "OutcomeWindow",
    "SlidingWindowConfig",
    "StateChangeCallback",
    "get_default_registry",
]
