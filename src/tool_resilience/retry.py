from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
)
from tenacity.wait import wait_base

from tool_resilience.backoff import AdaptiveBackoff, BackoffStrategy
from tool_resilience.errors import ResilienceError, classify_error


class BackoffWait(wait_base):
    """Expose a ``BackoffStrategy`` as a tenacity wait policy.

    Tracks the previously returned delay for strategies that depend on it and
    tags adaptive strategies with the classified failure before each delay.
    """

    def __init__(
        self,
        strategy: BackoffStrategy,
        *,
        classify: Callable[[BaseException], str | None] = classify_error,
    ) -> None:
        self.strategy = strategy
        self._classify = classify
        self._previous: float | None = None

    def __call__(self, retry_state: RetryCallState) -> float:
        outcome = retry_state.outcome
        if isinstance(self.strategy, AdaptiveBackoff):
            error = outcome.exception() if outcome is not None else None
            self.strategy.tag(None if error is None else self._classify(error))
        attempt = max(retry_state.attempt_number - 1, 0)
        delay = self.strategy.delay(attempt, self._previous)
        self._previous = delay
        return delay


def build_retry_predicate(
    retryable: Callable[[BaseException], bool],
) -> retry_if_exception:
    """Retry classified failures; resilience outcomes are never retried."""

    def _should_retry(error: BaseException) -> bool:
        # Cancellation and interpreter exits always propagate.
        if not isinstance(error, Exception) or isinstance(error, ResilienceError):
            return False
        return retryable(error)

    return retry_if_exception(_should_retry)


def build_attempt_retrying(
    *,
    attempts: int,
    retryable: Callable[[BaseException], bool],
    wait: wait_base,
    sleep: Callable[[float], Awaitable[None]] | None = None,
    before_sleep: Callable[[RetryCallState], None] | None = None,
) -> AsyncRetrying:
    """Build the ``AsyncRetrying`` that drives one protected invocation.

    The last underlying exception is re-raised once attempts run out.
    """
    if attempts < 1:
        raise ValueError("attempts must be >= 1")
    options: dict[str, Any] = {
        "retry": build_retry_predicate(retryable),
        "wait": wait,
        "stop": stop_after_attempt(attempts),
        "reraise": True,
    }
    if sleep is not None:
        options["sleep"] = sleep
    if before_sleep is not None:
        options["before_sleep"] = before_sleep
    return AsyncRetrying(**options)
