"""Composition of breaker, retry budget, bulkhead and backoff around one call."""

from __future__ import annotations

import asyncio
import functools
import threading
from collections.abc import Awaitable, Callable
from typing import ParamSpec, TypeVar

from tenacity import RetryCallState

from tool_resilience.budget import RetryBudget
from tool_resilience.bulkhead import Bulkhead
from tool_resilience.circuit_breaker.breaker import CircuitBreaker
from tool_resilience.circuit_breaker.exceptions import CircuitOpenError
from tool_resilience.circuit_breaker.registry import (
    CircuitRegistry,
    get_default_registry,
)
from tool_resilience.config import ProtectionConfig
from tool_resilience.errors import (
    BulkheadFullError,
    ResilienceError,
    RetriesExhaustedError,
    RetryBudgetExhaustedError,
)
from tool_resilience.logging import (
    StructuredLogger,
    bind_log_context,
    get_logger,
    log_info,
    log_warning,
)
from tool_resilience.retry import BackoffWait, build_attempt_retrying

T = TypeVar("T")
P = ParamSpec("P")

Operation = Callable[[], Awaitable[T]]


class ResilientInvoker:
    """Run tool calls behind a retry budget, a bulkhead and a circuit breaker.

    One invocation:
      1. Counts a request against the retry budget.
      2. Takes a bulkhead slot when the resource has one (``BulkheadFullError``
         otherwise, without attempting the call).
      3. Attempts the operation through the named breaker, retrying classified
         transient failures with backoff while attempts and budget remain.
      4. Releases the bulkhead slot on every exit path.

    Bulkheads are scoped to one event loop; give each loop its own invoker
    when ``bulkhead_max_wait`` is positive.
    """

    def __init__(
        self,
        registry: CircuitRegistry | None = None,
        *,
        budget: RetryBudget | None = None,
        default_config: ProtectionConfig | None = None,
        sleep: Callable[[float], Awaitable[None]] | None = None,
        logger: StructuredLogger | None = None,
    ) -> None:
        """Build an invoker.

        Args:
            registry: Breaker registry. Defaults to the process-wide registry.
            budget: Retry budget shared by every resource. When omitted each
                resource gets its own budget from its config.
            default_config: Config used when ``protect`` receives none.
            sleep: Awaitable sleep used between attempts.
            logger: Structured logger for retry and rejection events.
        """
        self.registry = get_default_registry() if registry is None else registry
        self.default_config = (
            ProtectionConfig() if default_config is None else default_config
        )
        self._shared_budget = budget
        self._sleep = sleep
        self._logger = get_logger(__name__) if logger is None else logger
        self._lock = threading.Lock()
        self._budgets: dict[str, RetryBudget] = {}
        self._bulkheads: dict[str, Bulkhead] = {}

    def budget(self, name: str, config: ProtectionConfig | None = None) -> RetryBudget:
        """Return the retry budget charged for ``name``."""
        if self._shared_budget is not None:
            return self._shared_budget
        config = self.default_config if config is None else config
        with self._lock:
            budget = self._budgets.get(name)
            if budget is None:
                budget = RetryBudget(config.budget_config())
                self._budgets[name] = budget
            return budget

    def bulkhead(
        self, name: str, config: ProtectionConfig | None = None
    ) -> Bulkhead | None:
        """Return the bulkhead for ``name``, if its config asks for one."""
        with self._lock:
            bulkhead = self._bulkheads.get(name)
            if bulkhead is not None:
                return bulkhead
            config = self.default_config if config is None else config
            bulkhead_config = config.bulkhead_config()
            if bulkhead_config is None:
                return None
            bulkhead = Bulkhead(name, bulkhead_config)
            self._bulkheads[name] = bulkhead
            return bulkhead

    async def protect(
        self,
        name: str,
        operation: Operation[T],
        config: ProtectionConfig | None = None,
        *,
        timeout: float | None = None,
    ) -> T:
        """Invoke ``operation`` under the protection configured for ``name``.

        Args:
            name: Resource name keying the breaker, budget and bulkhead.
            operation: Zero-argument async callable performing the tool call.
            config: Protection settings. Defaults to ``default_config``.
            timeout: Optional deadline in seconds for the whole invocation,
                backoff sleeps and bulkhead waits included.

        Returns:
            The operation's result.

        Raises:
            CircuitOpenError: The breaker rejected the call.
            BulkheadFullError: No bulkhead slot freed up in time.
            RetryBudgetExhaustedError: A retry was refused by the budget.
            RetriesExhaustedError: The operation failed on its final attempt or
                with a non-retryable error.
            TimeoutError: ``timeout`` expired.
        """
        config = self.default_config if config is None else config
        if timeout is None:
            return await self._protect(name, operation, config)
        async with asyncio.timeout(timeout):
            return await self._protect(name, operation, config)

    def protected(
        self,
        name: str,
        config: ProtectionConfig | None = None,
        *,
        timeout: float | None = None,
    ) -> Callable[[Callable[P, Awaitable[T]]], Callable[P, Awaitable[T]]]:
        """Decorate an async function so every call goes through ``protect``."""

        def decorator(func: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
            @functools.wraps(func)
            async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
                return await self.protect(
                    name,
                    functools.partial(func, *args, **kwargs),
                    config,
                    timeout=timeout,
                )

            return wrapper

        return decorator

    async def _protect(
        self, name: str, operation: Operation[T], config: ProtectionConfig
    ) -> T:
        with bind_log_context(resource=name):
            breaker = self.registry.get_or_create(name, config.breaker_config())
            budget = self.budget(name, config)
            budget.record_request()

            bulkhead = self.bulkhead(name, config)
            if bulkhead is None:
                return await self._run_attempts(
                    name, operation, config, breaker, budget
                )

            if not await bulkhead.acquire():
                log_warning(
                    self._logger,
                    "tool_call.bulkhead_full",
                    resource=name,
                    max_concurrent=bulkhead.config.max_concurrent,
                )
                raise BulkheadFullError(
                    name,
                    max_concurrent=bulkhead.config.max_concurrent,
                    waited=bulkhead.config.max_wait,
                )
            try:
                return await self._run_attempts(
                    name, operation, config, breaker, budget
                )
            finally:
                bulkhead.release()

    async def _run_attempts(
        self,
        name: str,
        operation: Operation[T],
        config: ProtectionConfig,
        breaker: CircuitBreaker,
        budget: RetryBudget,
    ) -> T:
        attempts = 0

        async def _attempt() -> T:
            # Charged only once the breaker admits the retry.
            if attempts > 1:
                budget.record_retry()
            return await operation()

        def _check_budget(retry_state: RetryCallState) -> None:
            if budget.can_retry():
                log_info(
                    self._logger,
                    "tool_call.retry",
                    resource=name,
                    attempt=retry_state.attempt_number,
                    delay=retry_state.upcoming_sleep,
                )
                return
            error = (
                retry_state.outcome.exception()
                if retry_state.outcome is not None
                else None
            )
            log_warning(
                self._logger,
                "tool_call.retry_budget_exhausted",
                resource=name,
                attempts=retry_state.attempt_number,
            )
            raise RetryBudgetExhaustedError(
                name, attempts=retry_state.attempt_number, last_error=error
            ) from error

        retrying = build_attempt_retrying(
            attempts=config.max_attempts,
            retryable=config.retryable,
            wait=BackoffWait(config.build_backoff()),
            sleep=self._sleep,
            before_sleep=_check_budget,
        )

        try:
            async for attempt in retrying:
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    result = await breaker.call(_attempt)
        except CircuitOpenError as exc:
            log_info(
                self._logger,
                "tool_call.circuit_open",
                resource=name,
                retry_after=exc.retry_after,
            )
            raise
        except ResilienceError:
            raise
        except Exception as exc:
            retryable = config.retryable(exc)
            log_warning(
                self._logger,
                "tool_call.retries_exhausted",
                resource=name,
                attempts=attempts,
                retryable=retryable,
                error_type=exc.__class__.__name__,
            )
            raise RetriesExhaustedError(
                name, attempts=attempts, last_error=exc, retryable=retryable
            ) from exc
        return result


_DEFAULT_INVOKER: ResilientInvoker | None = None
_DEFAULT_INVOKER_LOCK = threading.Lock()


def get_default_invoker() -> ResilientInvoker:
    """Return the process-wide invoker bound to the default registry."""
    global _DEFAULT_INVOKER
    with _DEFAULT_INVOKER_LOCK:
        if _DEFAULT_INVOKER is None:
            _DEFAULT_INVOKER = ResilientInvoker()
        return _DEFAULT_INVOKER


async def protect(
    name: str,
    operation: Operation[T],
    config: ProtectionConfig | None = None,
    *,
    timeout: float | None = None,
) -> T:
    """Protect one call with the process-wide invoker."""
    return await get_default_invoker().protect(
        name, operation, config, timeout=timeout
    )
