"""Fixed-size outcome window for latency-sensitive breakers."""

from collections import deque
from dataclasses import dataclass

from tool_resilience.circuit_breaker.state import CallOutcome
from tool_resilience.errors import ConfigurationError


@dataclass(frozen=True, slots=True)
class SlidingWindowConfig:
    """Sliding-window breaker configuration.

    Attributes:
        window_size: Number of most recent outcomes kept.
        failure_rate_threshold: Failure share of a full window that opens the
            breaker.
        slow_call_rate_threshold: Slow-call share of a full window that opens
            the breaker.
        slow_call_duration: Seconds after which a call is tagged slow.
    """

    window_size: int = 20
    failure_rate_threshold: float = 0.5
    slow_call_rate_threshold: float = 1.0
    slow_call_duration: float = 5.0

    def __post_init__(self) -> None:
        if self.window_size < 1:
            raise ConfigurationError("window_size must be >= 1")
        if not 0.0 <= self.failure_rate_threshold <= 1.0:
            raise ConfigurationError("failure_rate_threshold must be within [0, 1]")
        if not 0.0 <= self.slow_call_rate_threshold <= 1.0:
            raise ConfigurationError("slow_call_rate_threshold must be within [0, 1]")
        if self.slow_call_duration <= 0:
            raise ConfigurationError("slow_call_duration must be > 0")


class OutcomeWindow:
    """Ring buffer of the last ``window_size`` call outcomes.

    Not thread-safe on its own; the owning breaker serializes access.
    """

    def __init__(self, config: SlidingWindowConfig) -> None:
        self.config = config
        self._outcomes: deque[CallOutcome] = deque(maxlen=config.window_size)

    def __len__(self) -> int:
        return len(self._outcomes)

    @property
    def is_full(self) -> bool:
        return len(self._outcomes) == self.config.window_size

    def classify(self, *, failed: bool, elapsed: float) -> CallOutcome:
        """Tag one call; failures win over slowness."""
        if failed:
            return CallOutcome.FAILURE
        if elapsed > self.config.slow_call_duration:
            return CallOutcome.SLOW
        return CallOutcome.SUCCESS

    def record(self, outcome: CallOutcome) -> None:
        self._outcomes.append(outcome)

    def rate(self, outcome: CallOutcome) -> float:
        if not self._outcomes:
            return 0.0
        return self._outcomes.count(outcome) / len(self._outcomes)

    def should_open(self) -> bool:
        """Return whether a full window breaches either rate threshold."""
        if not self.is_full:
            return False
        if self.rate(CallOutcome.FAILURE) >= self.config.failure_rate_threshold:
            return True
        return self.rate(CallOutcome.SLOW) >= self.config.slow_call_rate_threshold

    def clear(self) -> None:
        self._outcomes.clear()
