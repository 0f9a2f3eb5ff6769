from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from typing import TypeVar

T = TypeVar("T")

# Read-after-write visibility schedule for eventually consistent backends.
# Worst case: 1.85s of sleeping across 5 attempts.
VISIBILITY_BACKOFF_MS: tuple[int, ...] = (0, 100, 250, 500, 1000)

Sleep = Callable[[float], Awaitable[None]]


async def poll_with_backoff(
    delays_ms: Sequence[int],
    attempt: Callable[[int], Awaitable[T | None]],
    accept: Callable[[T], bool],
    *,
    sleep: Sleep = asyncio.sleep,
) -> T | None:
    """Run ``attempt`` once per delay until ``accept`` holds.

    Returns the first accepted result, otherwise the last non-None result seen,
    otherwise None. Never raises on exhaustion.
    """

    last: T | None = None
    for index, delay_ms in enumerate(delays_ms):
        if delay_ms > 0:
            await sleep(delay_ms / 1000)
        result = await attempt(index)
        if result is None:
            continue
        if accept(result):
            return result
        last = result
    return last
