"""Bounded-concurrency helpers for outbound provider calls.

The embedding stage fans out many requests at once; providers rate-limit
aggressively, so every fan-out goes through a semaphore sized by
configuration (default 5).

``run_bounded`` applies a worker coroutine to a list of items under an
``asyncio.Semaphore`` and returns the results positionally.  It fails
fast: the first failure cancels the remaining work and is re-raised.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from typing import TypeVar

import structlog

from src.utils.logging import get_logger

_T = TypeVar("_T")
_R = TypeVar("_R")

_logger: structlog.BoundLogger = get_logger(__name__)


async def run_bounded(
    worker: Callable[[_T], Awaitable[_R]],
    items: Sequence[_T],
    concurrency: int,
) -> list[_R]:
    """Apply *worker* to every item with at most *concurrency* in flight.

    Fails fast: when any call raises, the still-pending tasks are cancelled
    and the first exception propagates.  Results are positional.
    """
    if concurrency < 1:
        raise ValueError(f"concurrency must be >= 1, got {concurrency}")
    if not items:
        return []

    semaphore = asyncio.Semaphore(concurrency)

    async def _wrapped(item: _T) -> _R:
        async with semaphore:
            return await worker(item)

    tasks = [asyncio.ensure_future(_wrapped(item)) for item in items]
    try:
        return list(await asyncio.gather(*tasks))
    except BaseException:
        for task in tasks:
            if not task.done():
                task.cancel()
        # Let cancelled tasks unwind before the error leaves this frame.
        await asyncio.gather(*tasks, return_exceptions=True)
        _logger.debug(
            "bounded_run_aborted",
            pending=sum(1 for t in tasks if t.cancelled()),
            total=len(tasks),
        )
        raise
