from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Generic, Sequence, TypeVar

T = TypeVar('T')
R = TypeVar('R')

logger = logging.getLogger(__name__)


class BatchExecutor(Generic[T, R]):
    """Runs an async worker over a list with at most ``concurrency`` calls in flight."""

    def __init__(
        self,
        worker: Callable[[T], Awaitable[R]],
        concurrency: int,
        on_error: Callable[[T, Exception], R] | None = None,
    ) -> None:
        if concurrency < 1:
            raise ValueError('concurrency must be at least 1')
        self.worker = worker
        self.concurrency = concurrency
        self.on_error = on_error

    async def run(self, items: Sequence[T]) -> list[R]:
        if not items:
            return []

        results: list[R | None] = [None] * len(items)
        failures: list[tuple[int, Exception]] = []
        queue: asyncio.Queue[int] = asyncio.Queue()
        for index in range(len(items)):
            queue.put_nowait(index)

        async def drain() -> None:
            while True:
                try:
                    index = queue.get_nowait()
                except asyncio.QueueEmpty:
                    return
                item = items[index]
                try:
                    results[index] = await self.worker(item)
                except Exception as exc:
                    logger.warning('Batch item %d failed: %s', index, exc)
                    failures.append((index, exc))

        lanes = min(self.concurrency, len(items))
        await asyncio.gather(*(drain() for _ in range(lanes)))

        if failures:
            failures.sort(key=lambda failure: failure[0])
            if self.on_error is None:
                raise failures[0][1]
            for index, exc in failures:
                results[index] = self.on_error(items[index], exc)

        return results  # type: ignore[return-value]


async def run_batch(
    items: Sequence[T],
    worker: Callable[[T], Awaitable[R]],
    concurrency: int,
    on_error: Callable[[T, Exception], R] | None = None,
) -> list[R]:
    return await BatchExecutor(worker, concurrency, on_error).run(items)
