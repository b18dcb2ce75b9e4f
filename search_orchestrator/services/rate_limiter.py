from __future__ import annotations

import asyncio
import logging
import time

logger = logging.getLogger(__name__)


class AsyncRateLimiter:
    """Spaces successive calls to one provider at least ``1 / rate_per_second`` apart."""

    def __init__(self, name: str, rate_per_second: float) -> None:
        self.name = name
        self.min_interval = 1 / max(rate_per_second, 1)
        self._lock = asyncio.Lock()
        self._last_called = 0.0

    async def wait(self) -> None:
        async with self._lock:
            delta = time.monotonic() - self._last_called
            if delta < self.min_interval:
                delay = self.min_interval - delta
                logger.debug('Throttling %s for %.3fs', self.name, delay)
                await asyncio.sleep(delay)
            self._last_called = time.monotonic()
