from __future__ import annotations

import asyncio


def compute_backoff(delay_ms: int) -> float:
    """Fixed backoff in seconds for a millisecond delay."""
    return max(delay_ms, 0) / 1000


async def schedule_retry(delay_ms: int) -> None:
    """Sleep for the fixed backoff delay before retrying."""
    await asyncio.sleep(compute_backoff(delay_ms))
