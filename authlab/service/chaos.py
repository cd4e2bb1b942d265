"""Flag-gated demo behaviour producing variable latency and failures.

Only registered when ``ENABLE_CHAOS`` is set; nothing in the default
application depends on it.
"""

from __future__ import annotations

import asyncio
import random
from typing import Optional

from authlab.logging import get_logger

logger = get_logger(__name__)

MIN_DELAY_MS = 50
DELAY_SPREAD_MS = 300
FAILURE_ONE_IN = 5


class RandomnessProvider:
    def __init__(self, rng: Optional[random.Random] = None) -> None:
        self._rng = rng or random.Random()

    def next_int(self, bound: int) -> int:
        """Uniform integer in ``[0, bound)``."""
        return self._rng.randrange(bound)


async def flaky_request(randomness: RandomnessProvider) -> str:
    delay = MIN_DELAY_MS + randomness.next_int(DELAY_SPREAD_MS)
    await asyncio.sleep(delay / 1000)
    logger.info("chaos_delay", delay_ms=delay)

    if randomness.next_int(FAILURE_ONE_IN) == 0:
        logger.error("chaos_failure")
        raise RuntimeError("Simulated internal server error!")

    return f"Successful but flaky response after {delay}ms."
