"""Windowed retry budget shared by every caller of a resource."""

from __future__ import annotations

import math
import threading
import time
from dataclasses import dataclass

from tool_resilience.errors import ConfigurationError


def _monotonic() -> float:
    return time.monotonic()


@dataclass(frozen=True, slots=True)
class RetryBudgetConfig:
    """Retry budget limits.

    Attributes:
        max_retries_per_second: Retry rate allowed within one window.
        max_retry_ratio: Highest share of retries to requests in one window.
        window_seconds: Length of one accounting window.
        min_requests: Requests needed in a window before the ratio rule applies.
    """

    max_retries_per_second: float = 10.0
    max_retry_ratio: float = 0.2
    window_seconds: float = 10.0
    min_requests: int = 10

    def __post_init__(self) -> None:
        if self.max_retries_per_second < 0:
            raise ConfigurationError("max_retries_per_second must be >= 0")
        if not 0.0 <= self.max_retry_ratio <= 1.0:
            raise ConfigurationError("max_retry_ratio must be within [0, 1]")
        if self.window_seconds <= 0:
            raise ConfigurationError("window_seconds must be > 0")
        if self.min_requests < 0:
            raise ConfigurationError("min_requests must be >= 0")


@dataclass(frozen=True)
class RetryBudgetStats:
    """Counters of the current window."""

    retries: int
    requests: int
    ratio: float


@dataclass(slots=True)
class _Window:
    retries: int = 0
    requests: int = 0


class RetryBudget:
    """Cap retry volume by rate and by ratio to first attempts.

    Counters live in windows keyed by ``floor(now / window_seconds)``; windows
    older than one full period are pruned on every access.
    """

    def __init__(self, config: RetryBudgetConfig | None = None) -> None:
        self.config = RetryBudgetConfig() if config is None else config
        self._lock = threading.Lock()
        self._windows: dict[int, _Window] = {}

    def _current_locked(self) -> tuple[_Window, float]:
        now = _monotonic()
        key = math.floor(now / self.config.window_seconds)
        for stale in [k for k in self._windows if k < key - 1]:
            del self._windows[stale]
        window = self._windows.get(key)
        if window is None:
            window = _Window()
            self._windows[key] = window
        elapsed = now - key * self.config.window_seconds
        return window, elapsed

    def record_request(self) -> None:
        """Count one first attempt."""
        with self._lock:
            window, _ = self._current_locked()
            window.requests += 1

    def record_retry(self) -> None:
        """Charge one retry against the budget."""
        with self._lock:
            window, _ = self._current_locked()
            window.retries += 1

    def can_retry(self) -> bool:
        """Return whether one more retry fits both the rate and the ratio."""
        with self._lock:
            window, elapsed = self._current_locked()
            allowed_by_rate = self.config.max_retries_per_second * max(elapsed, 1.0)
            if window.retries >= allowed_by_rate:
                return False
            if window.requests > 0 and window.requests >= self.config.min_requests:
                prospective = (window.retries + 1) / window.requests
                if prospective >= self.config.max_retry_ratio:
                    return False
            return True

    def stats(self) -> RetryBudgetStats:
        with self._lock:
            window, _ = self._current_locked()
            ratio = window.retries / window.requests if window.requests else 0.0
            return RetryBudgetStats(
                retries=window.retries,
                requests=window.requests,
                ratio=ratio,
            )

    def reset(self) -> None:
        """Drop every window. Intended for administration and tests."""
        with self._lock:
            self._windows.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._windows)
