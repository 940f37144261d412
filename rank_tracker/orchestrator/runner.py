"""Bounded-concurrency task runner."""

import asyncio
from typing import Awaitable, Callable, Optional, Sequence, TypeVar

from loguru import logger

T = TypeVar("T")
R = TypeVar("R")


async def run_bounded(
    tasks: Sequence[T],
    worker: Callable[[T], Awaitable[R]],
    concurrency: int,
    on_error: Optional[Callable[[T, Exception], R]] = None,
) -> list[R]:
    """Run ``worker`` over every task with at most ``concurrency`` in flight.

    Workers pull the next unclaimed index from a shared cursor, so a worker
    that finishes a quick task immediately takes another one. Results come
    back in task order whatever the completion order.

    The worker is expected to turn its own failures into result values. When
    it raises anyway, ``on_error(task, exc)`` supplies the result for that
    slot; without ``on_error`` the exception propagates.

    Args:
        tasks: Work items
        worker: Async callable applied to each task
        concurrency: Requested worker count, clamped to [1, len(tasks)]
        on_error: Optional converter from an exception to a result

    Returns:
        One result per task, index-aligned with ``tasks``
    """
    if not tasks:
        return []

    worker_count = max(1, min(int(concurrency), len(tasks)))
    results: list[Optional[R]] = [None] * len(tasks)
    cursor = 0

    async def drain(worker_id: int):
        nonlocal cursor
        while True:
            # Claimed without an await in between, so no two workers share an index
            index = cursor
            cursor += 1
            if index >= len(tasks):
                return

            task = tasks[index]
            try:
                results[index] = await worker(task)
            except Exception as e:
                if on_error is None:
                    raise
                logger.warning(f"Worker {worker_id} task {index} failed: {e}")
                results[index] = on_error(task, e)

    await asyncio.gather(*(drain(i) for i in range(worker_count)))
    return results
