"""Core circuit breaker implementation."""

import threading
import time
from collections.abc import Awaitable, Callable, Iterable, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import ParamSpec, TypeVar

from tool_resilience.circuit_breaker.exceptions import CircuitOpenError
from tool_resilience.circuit_breaker.metrics import BreakerListener
from tool_resilience.circuit_breaker.state import BreakerSnapshot, CircuitState
from tool_resilience.circuit_breaker.window import OutcomeWindow, SlidingWindowConfig
from tool_resilience.errors import ConfigurationError
from tool_resilience.logging import get_logger, log_warning

T = TypeVar("T")
P = ParamSpec("P")

_logger = get_logger(__name__)

_Transition = tuple[CircuitState, CircuitState]


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _monotonic() -> float:
    return time.monotonic()


@dataclass(frozen=True, slots=True)
class CircuitBreakerConfig:
    """Circuit breaker configuration values.

    Attributes:
        failure_threshold: Failures that open a ``CLOSED`` breaker while fewer
            than ``minimum_requests`` calls have been seen.
        recovery_timeout: Seconds to wait while ``OPEN`` before allowing probes.
        half_open_max_requests: Concurrent probes admitted while ``HALF_OPEN``;
            also the consecutive successes needed to close again.
        failure_rate_threshold: Failure ratio that opens the breaker once at
            least ``minimum_requests`` calls have been seen.
        minimum_requests: Call volume at which the rate rule takes over.
        expected_exceptions: Exceptions that count as failures.
        excluded_exceptions: Exceptions that must not count as failures.
        sliding_window: When set, decisions use a ring buffer of recent
            outcomes instead of raw counters.
    """

    failure_threshold: int = 5
    recovery_timeout: float = 30.0
    half_open_max_requests: int = 1
    failure_rate_threshold: float = 0.5
    minimum_requests: int = 10
    expected_exceptions: tuple[type[Exception], ...] = (Exception,)
    excluded_exceptions: tuple[type[Exception], ...] = ()
    sliding_window: SlidingWindowConfig | None = None

    def __post_init__(self) -> None:
        if self.failure_threshold < 1:
            raise ConfigurationError("failure_threshold must be >= 1")
        if self.recovery_timeout < 0:
            raise ConfigurationError("recovery_timeout must be >= 0")
        if self.half_open_max_requests < 1:
            raise ConfigurationError("half_open_max_requests must be >= 1")
        if not 0.0 <= self.failure_rate_threshold <= 1.0:
            raise ConfigurationError("failure_rate_threshold must be within [0, 1]")
        if self.minimum_requests < 1:
            raise ConfigurationError("minimum_requests must be >= 1")


@dataclass(frozen=True, slots=True)
class _Admission:
    """Ticket handed to an admitted call; ``epoch`` pins the state it ran under."""

    epoch: int
    probe: bool


class CircuitBreaker:
    """Stateful proxy around a dangerous async operation.

    ``OPEN`` moves to ``HALF_OPEN`` lazily: the first call arriving after the
    recovery timeout performs the transition and becomes a probe. No timer runs
    in the background.
    """

    def __init__(
        self,
        name: str,
        *,
        config: CircuitBreakerConfig | None = None,
        listeners: Sequence[BreakerListener] | None = None,
    ) -> None:
        """Build a circuit breaker.

        Args:
            name: Unique breaker name used for metrics and logging.
            config: Breaker behavior configuration. Defaults to
                ``CircuitBreakerConfig()``.
            listeners: Optional listener hooks for breaker events.
        """
        self.name = name
        self.config = CircuitBreakerConfig() if config is None else config
        self._listeners: list[BreakerListener] = (
            list(listeners) if listeners is not None else []
        )
        self._lock = threading.Lock()
        self._window = (
            OutcomeWindow(self.config.sliding_window)
            if self.config.sliding_window is not None
            else None
        )
        self._state = CircuitState.CLOSED
        self._epoch = 0
        self._failure_count = 0
        self._success_count = 0
        self._half_open_successes = 0
        self._half_open_in_flight = 0
        self._last_failure_time: float | None = None
        self._last_failure_at: datetime | None = None
        self._opened_at: datetime | None = None

    def add_listener(self, listener: BreakerListener) -> None:
        """Register an extra listener for subsequent events."""
        with self._lock:
            self._listeners.append(listener)

    @property
    def state(self) -> CircuitState:
        with self._lock:
            return self._state

    def get_state(self) -> BreakerSnapshot:
        """Return a read-only snapshot of the breaker."""
        with self._lock:
            return BreakerSnapshot(
                name=self.name,
                state=self._state,
                failure_count=self._failure_count,
                success_count=self._success_count,
                half_open_successes=self._half_open_successes,
                last_failure_at=self._last_failure_at,
                opened_at=self._opened_at,
            )

    def _transition_locked(self, new: CircuitState) -> _Transition:
        old = self._state
        self._state = new
        self._epoch += 1
        self._half_open_successes = 0
        self._half_open_in_flight = 0
        if new == CircuitState.OPEN:
            self._last_failure_time = _monotonic()
            self._opened_at = _utcnow()
        elif new == CircuitState.CLOSED:
            self._failure_count = 0
            self._success_count = 0
            self._last_failure_time = None
            self._last_failure_at = None
            self._opened_at = None
            if self._window is not None:
                self._window.clear()
        return old, new

    def _admit(self) -> tuple[_Admission | None, float, list[_Transition]]:
        transitions: list[_Transition] = []
        with self._lock:
            if self._state == CircuitState.OPEN:
                opened = (
                    _monotonic()
                    if self._last_failure_time is None
                    else self._last_failure_time
                )
                elapsed = _monotonic() - opened
                if elapsed <= self.config.recovery_timeout:
                    retry_after = max(self.config.recovery_timeout - elapsed, 0.0)
                    return None, retry_after, transitions
                transitions.append(self._transition_locked(CircuitState.HALF_OPEN))

            if self._state == CircuitState.HALF_OPEN:
                if self._half_open_in_flight >= self.config.half_open_max_requests:
                    return None, 0.0, transitions
                self._half_open_in_flight += 1
                return _Admission(self._epoch, probe=True), 0.0, transitions

            return _Admission(self._epoch, probe=False), 0.0, transitions

    def _should_open_locked(self) -> bool:
        total = self._failure_count + self._success_count
        if total < self.config.minimum_requests:
            return self._failure_count >= self.config.failure_threshold
        return self._failure_count / total >= self.config.failure_rate_threshold

    def _record_success(
        self, admission: _Admission, elapsed: float
    ) -> list[_Transition]:
        with self._lock:
            if admission.epoch != self._epoch:
                return []
            if admission.probe:
                self._half_open_in_flight -= 1
                self._half_open_successes += 1
                if self._half_open_successes >= self.config.half_open_max_requests:
                    return [self._transition_locked(CircuitState.CLOSED)]
                return []

            self._success_count += 1
            if self._window is not None:
                outcome = self._window.classify(failed=False, elapsed=elapsed)
                self._window.record(outcome)
                if self._window.should_open():
                    return [self._transition_locked(CircuitState.OPEN)]
            return []

    def _record_failure(
        self, admission: _Admission, elapsed: float
    ) -> list[_Transition]:
        with self._lock:
            if admission.epoch != self._epoch:
                return []
            self._failure_count += 1
            self._last_failure_time = _monotonic()
            self._last_failure_at = _utcnow()
            if admission.probe:
                self._half_open_in_flight -= 1
                return [self._transition_locked(CircuitState.OPEN)]

            if self._window is not None:
                outcome = self._window.classify(failed=True, elapsed=elapsed)
                self._window.record(outcome)
                should_open = self._window.should_open()
            else:
                should_open = self._should_open_locked()
            if should_open:
                return [self._transition_locked(CircuitState.OPEN)]
            return []

    def _release(self, admission: _Admission) -> None:
        with self._lock:
            if admission.probe and admission.epoch == self._epoch:
                self._half_open_in_flight -= 1

    def _snapshot_listeners(self) -> tuple[BreakerListener, ...]:
        with self._lock:
            return tuple(self._listeners)

    async def _emit_transitions(self, transitions: Iterable[_Transition]) -> None:
        for old, new in transitions:
            await self._emit_state_change(old, new)

    async def _emit_state_change(self, old: CircuitState, new: CircuitState) -> None:
        for listener in self._snapshot_listeners():
            try:
                await listener.on_state_change(self.name, old, new)
            except Exception as exc:
                self._log_listener_failure("on_state_change", exc)

    async def _emit_call_rejected(self) -> None:
        for listener in self._snapshot_listeners():
            try:
                await listener.on_call_rejected(self.name)
            except Exception as exc:
                self._log_listener_failure("on_call_rejected", exc)

    async def _emit_call_succeeded(self, elapsed: float) -> None:
        for listener in self._snapshot_listeners():
            try:
                await listener.on_call_succeeded(self.name, elapsed)
            except Exception as exc:
                self._log_listener_failure("on_call_succeeded", exc)

    async def _emit_call_failed(self, exc: Exception, elapsed: float) -> None:
        for listener in self._snapshot_listeners():
            try:
                await listener.on_call_failed(self.name, exc, elapsed)
            except Exception as listener_exc:
                self._log_listener_failure("on_call_failed", listener_exc)

    def _log_listener_failure(self, hook: str, exc: Exception) -> None:
        log_warning(
            _logger,
            "circuit_breaker.listener_failed",
            breaker=self.name,
            hook=hook,
            error_type=exc.__class__.__name__,
            error=str(exc),
        )

    async def call(
        self,
        func: Callable[P, Awaitable[T]],
        *args: P.args,
        **kwargs: P.kwargs,
    ) -> T:
        """Invoke an async callable under circuit breaker protection.

        Args:
            func: Dangerous async callable to execute.
            *args: Positional arguments forwarded to ``func``.
            **kwargs: Keyword arguments forwarded to ``func``.

        Returns:
            The result of ``func`` when allowed and successful.

        Raises:
            CircuitOpenError: When the circuit is open, or every half-open
                probe slot is taken, and the call is rejected.
            Exception: The original exception from ``func`` when it is attempted
                and fails.
        """
        admission, retry_after, transitions = self._admit()
        await self._emit_transitions(transitions)
        if admission is None:
            await self._emit_call_rejected()
            raise CircuitOpenError(self.name, retry_after=retry_after)

        settled = False
        start = _monotonic()
        try:
            result = await func(*args, **kwargs)
        except self.config.excluded_exceptions:
            raise
        except self.config.expected_exceptions as exc:
            elapsed = max(_monotonic() - start, 0.0)
            transitions = self._record_failure(admission, elapsed)
            settled = True
            await self._emit_call_failed(exc, elapsed)
            await self._emit_transitions(transitions)
            raise
        else:
            elapsed = max(_monotonic() - start, 0.0)
            transitions = self._record_success(admission, elapsed)
            settled = True
            await self._emit_transitions(transitions)
            await self._emit_call_succeeded(elapsed)
            return result
        finally:
            if not settled:
                self._release(admission)

    async def reset(self) -> None:
        """Force ``CLOSED`` and zero every counter."""
        with self._lock:
            old = self._state
            transition = self._transition_locked(CircuitState.CLOSED)
        if old != CircuitState.CLOSED:
            await self._emit_transitions([transition])

    async def force_open(self) -> None:
        """Force ``OPEN`` and restart the recovery timeout window."""
        with self._lock:
            old = self._state
            transition = self._transition_locked(CircuitState.OPEN)
        if old != CircuitState.OPEN:
            await self._emit_transitions([transition])
