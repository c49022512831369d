"""Request pacing for the search API."""

from __future__ import annotations

import asyncio
import time


class RequestPacer:
    """Spaces requests so that at most ``rate * margin`` go out per second."""

    def __init__(self, *, rate: float = 10.0, margin: float = 0.9) -> None:
        self.rate = rate * margin
        self._lock = asyncio.Lock()
        self._last_request = 0.0

    @property
    def min_interval(self) -> float:
        return 1.0 / self.rate

    async def wait(self) -> None:
        async with self._lock:
            elapsed = time.monotonic() - self._last_request
            if elapsed < self.min_interval:
                await asyncio.sleep(self.min_interval - elapsed)
            self._last_request = time.monotonic()
