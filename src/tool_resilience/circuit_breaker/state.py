"""Circuit breaker state primitives."""

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum


class CircuitState(StrEnum):
    """Circuit breaker state values."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CallOutcome(StrEnum):
    """Outcome tags kept by the sliding-window breaker variant."""

    SUCCESS = "success"
    FAILURE = "failure"
    SLOW = "slow"


@dataclass(frozen=True)
class BreakerSnapshot:
    """Point-in-time view of breaker internals useful for metrics/logging.

    Attributes:
        name: Breaker name.
        state: Current breaker state.
        failure_count: Failures counted since the breaker last closed.
        success_count: Successes counted since the breaker last closed.
        half_open_successes: Consecutive probe successes while ``HALF_OPEN``.
        last_failure_at: Timestamp of the last counted failure, if any.
        opened_at: Timestamp when the breaker entered ``OPEN``, if open.
    """

    name: str
    state: CircuitState
    failure_count: int
    success_count: int
    half_open_successes: int
    last_failure_at: datetime | None
    opened_at: datetime | None

    def as_dict(self) -> dict[str, object]:
        """Return the summary consumed by dashboards."""
        return {
            "state": str(self.state),
            "failure_count": self.failure_count,
            "success_count": self.success_count,
        }
