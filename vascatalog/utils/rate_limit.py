"""Per-supplier rate limiting."""

from __future__ import annotations

import asyncio
import time
from collections import defaultdict


class RateLimiter:
    """Minimum spacing between calls sharing a key (one key per upstream partner)."""

    def __init__(self, *, rate: float = 5.0) -> None:
        self.rate = rate
        self._locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._last_call: dict[str, float] = defaultdict(float)

    async def wait(self, key: str) -> None:
        if self.rate <= 0:
            return
        async with self._locks[key]:
            min_interval = 1.0 / self.rate
            elapsed = time.monotonic() - self._last_call[key]
            if elapsed < min_interval:
                await asyncio.sleep(min_interval - elapsed)
            self._last_call[key] = time.monotonic()
