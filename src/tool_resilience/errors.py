"""Shared error types and failure classification for tool_resilience.

Callers can distinguish between:
  - A call that never ran (circuit open, bulkhead full).
  - A call that ran and failed until attempts ran out.
  - A retry refused by the shared retry budget.
"""

from __future__ import annotations

from typing import ClassVar

RETRYABLE_STATUS_CODES = frozenset({408, 425, 429, 500, 502, 503, 504})

ERROR_TYPE_RATE_LIMIT = "rate_limit"
ERROR_TYPE_TIMEOUT = "timeout"
ERROR_TYPE_SERVER_ERROR = "server_error"
ERROR_TYPE_CONNECTION = "connection"


class ResilienceError(Exception):
    """Base exception for every outcome produced by the resilience layer."""

    never_ran: ClassVar[bool] = False


class ConfigurationError(ResilienceError, ValueError):
    """Raised at construction time when thresholds or limits are invalid."""


class BulkheadFullError(ResilienceError):
    """Raised when no bulkhead slot frees up within the allowed wait.

    Attributes:
        resource: Name of the protected resource.
        max_concurrent: Bulkhead capacity.
        waited: Seconds the caller was willing to wait.
    """

    never_ran = True

    def __init__(self, resource: str, *, max_concurrent: int, waited: float) -> None:
        self.resource = resource
        self.max_concurrent = max_concurrent
        self.waited = waited
        super().__init__(
            f"bulkhead_full: {resource} max_concurrent={max_concurrent} "
            f"waited={waited:g}s"
        )


class RetryBudgetExhaustedError(ResilienceError):
    """Raised when the retry budget refuses a further attempt.

    Attributes:
        resource: Name of the protected resource.
        attempts: Attempts already made for this invocation.
        last_error: Failure that would have been retried.
    """

    def __init__(
        self,
        resource: str,
        *,
        attempts: int,
        last_error: BaseException | None = None,
    ) -> None:
        self.resource = resource
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"retry_budget_exhausted: {resource} attempts={attempts}")


class RetriesExhaustedError(ResilienceError):
    """Raised when the protected operation ran and kept failing.

    Attributes:
        resource: Name of the protected resource.
        attempts: Number of times the operation was invoked.
        last_error: Final underlying failure, also chained as ``__cause__``.
        retryable: Whether ``last_error`` was classified as transient.
    """

    def __init__(
        self,
        resource: str,
        *,
        attempts: int,
        last_error: BaseException,
        retryable: bool,
    ) -> None:
        self.resource = resource
        self.attempts = attempts
        self.last_error = last_error
        self.retryable = retryable
        super().__init__(
            f"retries_exhausted: {resource} attempts={attempts} "
            f"last_error={last_error.__class__.__name__}: {last_error}"
        )


class TransientError(RuntimeError):
    """Generic retry-safe transient dependency failure."""


class RateLimitError(TransientError):
    """The remote side asked the caller to slow down."""


class ServerError(TransientError):
    """The remote side failed while handling an otherwise valid call."""


class ToolCallError(RuntimeError):
    """Failure reported by a remote tool, optionally carrying a status code."""

    def __init__(self, message: str, *, status: int | None = None) -> None:
        self.status = status
        super().__init__(message)


def _status_of(error: BaseException) -> int | None:
    for attribute in ("status", "status_code"):
        value = getattr(error, attribute, None)
        if isinstance(value, int):
            return value
    return None


def is_retryable(error: BaseException) -> bool:
    """Return whether ``error`` belongs to the transient-failure taxonomy."""
    if isinstance(error, ResilienceError):
        return False
    if isinstance(error, (TransientError, TimeoutError, ConnectionError)):
        return True
    status = _status_of(error)
    return status is not None and status in RETRYABLE_STATUS_CODES


def classify_error(error: BaseException) -> str | None:
    """Map a failure onto the error type used to pick an adaptive backoff."""
    status = _status_of(error)
    if isinstance(error, RateLimitError) or status == 429:
        return ERROR_TYPE_RATE_LIMIT
    if isinstance(error, TimeoutError) or status == 408:
        return ERROR_TYPE_TIMEOUT
    if isinstance(error, ConnectionError):
        return ERROR_TYPE_CONNECTION
    if isinstance(error, ServerError) or (status is not None and status >= 500):
        return ERROR_TYPE_SERVER_ERROR
    return None
