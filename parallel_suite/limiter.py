"""Bounded fan-out of asynchronous tasks."""

import asyncio
import os
from collections.abc import Awaitable, Callable, Iterable, Sequence


def default_ceiling() -> int:
    """Number of processing units available on the host."""
    return os.cpu_count() or 1


class ConcurrencyLimiter:
    """Admits at most ``ceiling`` tasks at a time, queuing the rest.

    Results keep the position of their input regardless of completion order.
    """

    def __init__(self, ceiling: int | None = None) -> None:
        if ceiling is not None and ceiling < 1:
            raise ValueError(f"Concurrency must be a positive integer, got {ceiling}")
        self.ceiling = ceiling or default_ceiling()
        self.active = 0
        self.peak = 0
        self._semaphore = asyncio.Semaphore(self.ceiling)

    async def run[R](self, factory: Callable[[], Awaitable[R]]) -> R:
        """Wait for a free slot, then run the task produced by ``factory``."""
        async with self._semaphore:
            self.active += 1
            self.peak = max(self.peak, self.active)
            try:
                return await factory()
            finally:
                self.active -= 1

    async def map[T, R](
        self,
        func: Callable[[T], Awaitable[R]],
        items: Iterable[T],
    ) -> Sequence[R | BaseException]:
        """Run ``func`` over ``items`` under the ceiling.

        Exceptions are returned in place of their task's result so that one
        failing task never cancels the others.
        """

        async def bound(item: T) -> R:
            return await self.run(lambda: func(item))

        return await asyncio.gather(
            *(bound(item) for item in items), return_exceptions=True
        )
