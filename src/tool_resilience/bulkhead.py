"""Bounded concurrency gate per protected resource."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass

from tool_resilience.errors import BulkheadFullError, ConfigurationError


@dataclass(frozen=True, slots=True)
class BulkheadConfig:
    """Bulkhead limits.

    Attributes:
        max_concurrent: Calls allowed in flight at once.
        max_wait: Seconds a caller may wait for a slot; ``0`` never waits.
    """

    max_concurrent: int = 10
    max_wait: float = 0.0

    def __post_init__(self) -> None:
        if self.max_concurrent < 1:
            raise ConfigurationError("max_concurrent must be >= 1")
        if self.max_wait < 0:
            raise ConfigurationError("max_wait must be >= 0")


class Bulkhead:
    """Counting semaphore that refuses callers after a bounded wait.

    A bulkhead belongs to one event loop. The no-wait path never touches the
    loop, but once a caller waits for a slot the underlying semaphore is bound
    to that caller's loop. Use a separate bulkhead per loop when
    ``max_wait`` is positive.
    """

    def __init__(self, name: str, config: BulkheadConfig | None = None) -> None:
        self.name = name
        self.config = BulkheadConfig() if config is None else config
        self._semaphore = asyncio.Semaphore(self.config.max_concurrent)
        self._in_flight = 0

    @property
    def in_flight(self) -> int:
        return self._in_flight

    @property
    def available(self) -> int:
        return self.config.max_concurrent - self._in_flight

    async def acquire(self, timeout: float | None = None) -> bool:
        """Wait up to ``timeout`` (default ``max_wait``) seconds for a slot.

        Returns ``False`` on timeout. Cancellation propagates and never leaves a
        slot held.
        """
        wait = self.config.max_wait if timeout is None else max(timeout, 0.0)
        if wait == 0:
            if self._semaphore.locked():
                return False
            await self._semaphore.acquire()
        else:
            try:
                await asyncio.wait_for(self._semaphore.acquire(), timeout=wait)
            except TimeoutError:
                return False
        self._in_flight += 1
        return True

    def release(self) -> None:
        if self._in_flight <= 0:
            raise RuntimeError(f"bulkhead {self.name} released more than acquired")
        self._in_flight -= 1
        self._semaphore.release()

    @asynccontextmanager
    async def slot(self, timeout: float | None = None) -> AsyncIterator[None]:
        """Hold one slot for the duration of the block.

        Raises:
            BulkheadFullError: When no slot frees up in time.
        """
        waited = self.config.max_wait if timeout is None else timeout
        if not await self.acquire(timeout):
            raise BulkheadFullError(
                self.name,
                max_concurrent=self.config.max_concurrent,
                waited=waited,
            )
        try:
            yield
        finally:
            self.release()
