"""Flat per-resource protection configuration."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

from tool_resilience.backoff import BackoffAlgorithm, BackoffStrategy, build_backoff
from tool_resilience.budget import RetryBudgetConfig
from tool_resilience.bulkhead import BulkheadConfig
from tool_resilience.circuit_breaker.breaker import CircuitBreakerConfig
from tool_resilience.circuit_breaker.window import SlidingWindowConfig
from tool_resilience.errors import ConfigurationError, is_retryable

RetryPredicate = Callable[[BaseException], bool]


@dataclass(frozen=True, slots=True)
class ProtectionConfig:
    """Everything ``ResilientInvoker.protect`` needs to guard one resource.

    Breaker, budget and bulkhead values only take effect the first time a
    resource name is seen; later invocations reuse the existing instances.
    Attempt and backoff values apply per invocation.

    The retry ratio guard only applies once a budget window has seen
    ``retry_min_requests`` first attempts, so low-traffic windows are limited
    by ``max_retries_per_second`` alone. Set it to ``0`` to apply the ratio
    from the first request.
    """

    failure_threshold: int = 5
    recovery_timeout: float = 30.0
    half_open_max_requests: int = 1
    failure_rate_threshold: float = 0.5
    minimum_requests: int = 10
    max_attempts: int = 3
    initial_delay: float = 0.1
    max_delay: float = 10.0
    backoff_algorithm: BackoffAlgorithm = BackoffAlgorithm.EXPONENTIAL
    backoff_multiplier: float = 2.0
    jitter: bool = True
    max_retries_per_second: float = 10.0
    max_retry_ratio: float = 0.2
    retry_window_seconds: float = 10.0
    retry_min_requests: int = 10
    bulkhead_max_concurrent: int | None = None
    bulkhead_max_wait: float = 0.0
    sliding_window: SlidingWindowConfig | None = None
    retryable: RetryPredicate = is_retryable

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ConfigurationError("max_attempts must be >= 1")
        if self.initial_delay < 0:
            raise ConfigurationError("initial_delay must be >= 0")
        if self.max_delay < self.initial_delay:
            raise ConfigurationError("max_delay must be >= initial_delay")
        if self.bulkhead_max_wait < 0:
            raise ConfigurationError("bulkhead_max_wait must be >= 0")
        try:
            algorithm = BackoffAlgorithm(self.backoff_algorithm)
        except ValueError as error:
            raise ConfigurationError(
                f"unknown backoff_algorithm: {self.backoff_algorithm!r}"
            ) from error
        object.__setattr__(self, "backoff_algorithm", algorithm)
        # Component configs validate their own fields.
        self.breaker_config()
        self.budget_config()
        self.bulkhead_config()
        self.build_backoff()

    def breaker_config(self) -> CircuitBreakerConfig:
        return CircuitBreakerConfig(
            failure_threshold=self.failure_threshold,
            recovery_timeout=self.recovery_timeout,
            half_open_max_requests=self.half_open_max_requests,
            failure_rate_threshold=self.failure_rate_threshold,
            minimum_requests=self.minimum_requests,
            sliding_window=self.sliding_window,
        )

    def budget_config(self) -> RetryBudgetConfig:
        return RetryBudgetConfig(
            max_retries_per_second=self.max_retries_per_second,
            max_retry_ratio=self.max_retry_ratio,
            window_seconds=self.retry_window_seconds,
            min_requests=self.retry_min_requests,
        )

    def bulkhead_config(self) -> BulkheadConfig | None:
        if self.bulkhead_max_concurrent is None:
            return None
        return BulkheadConfig(
            max_concurrent=self.bulkhead_max_concurrent,
            max_wait=self.bulkhead_max_wait,
        )

    def build_backoff(self) -> BackoffStrategy:
        """Build a fresh strategy; adaptive strategies hold per-call tag state."""
        return build_backoff(
            self.backoff_algorithm,
            initial_delay=self.initial_delay,
            max_delay=self.max_delay,
            multiplier=self.backoff_multiplier,
            jitter=self.jitter,
        )
