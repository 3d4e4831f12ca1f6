"""Broker connection backoff.

The first attempt is made immediately; before each later attempt the generator sleeps
for a delay that starts at ``initial_delay`` and grows by ``multiplier`` up to ``max_delay``.
"""
import asyncio
from typing import AsyncIterator


async def connection_backoff(
    initial_delay: float,
    max_delay: float,
    multiplier: float,
    max_attempts: int,
) -> AsyncIterator[tuple[int, float]]:
    """Yield ``(attempt, waited)``, where ``waited`` is the pause taken before that attempt."""
    waited = 0.0
    for attempt in range(1, max(1, max_attempts) + 1):
        if attempt > 1:
            waited = min(max(initial_delay, waited * multiplier), max_delay)
            await asyncio.sleep(waited)
        yield attempt, waited
