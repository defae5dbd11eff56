"""Inter-attempt delay strategies.

Every strategy maps a zero-based attempt number (and, where relevant, the
previous delay) to a delay in ``[0, max_delay]`` seconds. Only the jittered
variants draw randomness.
"""

from __future__ import annotations

import random
import threading
from abc import ABC, abstractmethod
from collections.abc import Mapping
from enum import StrEnum

from tool_resilience.errors import (
    ERROR_TYPE_RATE_LIMIT,
    ERROR_TYPE_SERVER_ERROR,
    ERROR_TYPE_TIMEOUT,
    ConfigurationError,
)


class BackoffAlgorithm(StrEnum):
    """Names accepted by ``build_backoff``."""

    CONSTANT = "constant"
    LINEAR = "linear"
    EXPONENTIAL = "exponential"
    DECORRELATED_JITTER = "decorrelated_jitter"
    FIBONACCI = "fibonacci"
    ADAPTIVE = "adaptive"


class BackoffStrategy(ABC):
    """Base class for delay strategies."""

    def __init__(self, max_delay: float) -> None:
        if max_delay < 0:
            raise ConfigurationError("max_delay must be >= 0")
        self.max_delay = max_delay

    def _clamp(self, delay: float) -> float:
        return min(max(delay, 0.0), self.max_delay)

    @staticmethod
    def _check_attempt(attempt: int) -> None:
        if attempt < 0:
            raise ValueError("attempt must be >= 0")

    @abstractmethod
    def delay(self, attempt: int, previous_delay: float | None = None) -> float:
        """Return the delay before retrying after ``attempt``."""


class ConstantBackoff(BackoffStrategy):
    def __init__(self, delay: float, max_delay: float | None = None) -> None:
        if delay < 0:
            raise ConfigurationError("delay must be >= 0")
        super().__init__(delay if max_delay is None else max_delay)
        self.value = delay

    def delay(self, attempt: int, previous_delay: float | None = None) -> float:
        self._check_attempt(attempt)
        return self._clamp(self.value)


class LinearBackoff(BackoffStrategy):
    """``min(increment * (attempt + 1), max_delay)``."""

    def __init__(self, increment: float, max_delay: float) -> None:
        if increment < 0:
            raise ConfigurationError("increment must be >= 0")
        super().__init__(max_delay)
        self.increment = increment

    def delay(self, attempt: int, previous_delay: float | None = None) -> float:
        self._check_attempt(attempt)
        return self._clamp(self.increment * (attempt + 1))


class ExponentialBackoff(BackoffStrategy):
    """``min(initial_delay * base ** attempt, max_delay)`` with optional jitter.

    Jitter perturbs the capped delay uniformly within ``±jitter_factor`` of its
    value and the result is clamped back into ``[0, max_delay]``.
    """

    def __init__(
        self,
        initial_delay: float,
        max_delay: float,
        *,
        base: float = 2.0,
        jitter: bool = False,
        jitter_factor: float = 0.1,
        rng: random.Random | None = None,
    ) -> None:
        if initial_delay < 0:
            raise ConfigurationError("initial_delay must be >= 0")
        if base < 1:
            raise ConfigurationError("base must be >= 1")
        if not 0.0 <= jitter_factor <= 1.0:
            raise ConfigurationError("jitter_factor must be within [0, 1]")
        super().__init__(max_delay)
        self.initial_delay = initial_delay
        self.base = base
        self.jitter = jitter
        self.jitter_factor = jitter_factor
        self._rng = random.Random() if rng is None else rng

    def delay(self, attempt: int, previous_delay: float | None = None) -> float:
        self._check_attempt(attempt)
        try:
            raw = self.initial_delay * self.base**attempt
        except OverflowError:
            raw = self.max_delay
        capped = min(raw, self.max_delay)
        if not self.jitter or capped == 0:
            return self._clamp(capped)
        spread = capped * self.jitter_factor
        return self._clamp(capped + self._rng.uniform(-spread, spread))


class DecorrelatedJitterBackoff(BackoffStrategy):
    """``uniform(base, previous_delay * 3)`` capped at ``max_delay``.

    ``previous_delay`` is seeded to ``base`` on the first call.
    """

    def __init__(
        self,
        base: float,
        max_delay: float,
        *,
        rng: random.Random | None = None,
    ) -> None:
        if base < 0:
            raise ConfigurationError("base must be >= 0")
        super().__init__(max_delay)
        self.base = base
        self._rng = random.Random() if rng is None else rng

    def delay(self, attempt: int, previous_delay: float | None = None) -> float:
        self._check_attempt(attempt)
        previous = self.base if previous_delay is None else previous_delay
        upper = max(previous * 3, self.base)
        return self._clamp(self._rng.uniform(self.base, upper))


_FIBONACCI: list[int] = [1, 1]
_FIBONACCI_LOCK = threading.Lock()


def fibonacci(n: int) -> int:
    """Return ``fib(n)`` with ``fib(0) == fib(1) == 1``, memoized."""
    if n < 0:
        raise ValueError("n must be >= 0")
    with _FIBONACCI_LOCK:
        while len(_FIBONACCI) <= n:
            _FIBONACCI.append(_FIBONACCI[-1] + _FIBONACCI[-2])
        return _FIBONACCI[n]


class FibonacciBackoff(BackoffStrategy):
    """``min(unit * fib(attempt), max_delay)``."""

    def __init__(self, unit: float, max_delay: float) -> None:
        if unit < 0:
            raise ConfigurationError("unit must be >= 0")
        super().__init__(max_delay)
        self.unit = unit

    def delay(self, attempt: int, previous_delay: float | None = None) -> float:
        self._check_attempt(attempt)
        if self.unit == 0:
            return 0.0
        # The sequence outgrows any cap quickly; stop computing once past it.
        n = 0
        while n < attempt and self.unit * fibonacci(n) < self.max_delay:
            n += 1
        return self._clamp(self.unit * fibonacci(n))


class AdaptiveBackoff(BackoffStrategy):
    """Dispatch to a per-error-type strategy chosen by the last ``tag`` call.

    Tag state is per instance; build one strategy per invocation.
    """

    def __init__(
        self,
        strategies: Mapping[str, BackoffStrategy],
        default: BackoffStrategy,
        max_delay: float | None = None,
    ) -> None:
        super().__init__(default.max_delay if max_delay is None else max_delay)
        self.strategies = dict(strategies)
        self.default = default
        self._error_type: str | None = None

    @property
    def error_type(self) -> str | None:
        return self._error_type

    def tag(self, error_type: str | None) -> None:
        """Record the classified error type driving the next delay."""
        self._error_type = error_type

    def delay(self, attempt: int, previous_delay: float | None = None) -> float:
        self._check_attempt(attempt)
        strategy = self.default
        if self._error_type is not None:
            strategy = self.strategies.get(self._error_type, self.default)
        return self._clamp(strategy.delay(attempt, previous_delay))


def build_backoff(
    algorithm: BackoffAlgorithm | str,
    *,
    initial_delay: float,
    max_delay: float,
    multiplier: float = 2.0,
    jitter: bool = False,
) -> BackoffStrategy:
    """Build the strategy named by ``algorithm`` from flat config values."""
    try:
        selected = BackoffAlgorithm(algorithm)
    except ValueError as error:
        choices = ", ".join(item.value for item in BackoffAlgorithm)
        raise ConfigurationError(
            f"backoff_algorithm must be one of: {choices}"
        ) from error

    if selected == BackoffAlgorithm.CONSTANT:
        return ConstantBackoff(initial_delay, max_delay)
    if selected == BackoffAlgorithm.LINEAR:
        return LinearBackoff(initial_delay, max_delay)
    if selected == BackoffAlgorithm.DECORRELATED_JITTER:
        return DecorrelatedJitterBackoff(initial_delay, max_delay)
    if selected == BackoffAlgorithm.FIBONACCI:
        return FibonacciBackoff(initial_delay, max_delay)

    exponential = ExponentialBackoff(
        initial_delay, max_delay, base=multiplier, jitter=jitter
    )
    if selected == BackoffAlgorithm.EXPONENTIAL:
        return exponential
    return AdaptiveBackoff(
        {
            ERROR_TYPE_RATE_LIMIT: ExponentialBackoff(
                initial_delay * 2,
                max_delay,
                base=max(multiplier, 2.0) * 1.5,
                jitter=True,
            ),
            ERROR_TYPE_TIMEOUT: LinearBackoff(initial_delay, max_delay),
            ERROR_TYPE_SERVER_ERROR: ExponentialBackoff(
                initial_delay, max_delay, base=multiplier, jitter=True
            ),
        },
        default=exponential,
    )
