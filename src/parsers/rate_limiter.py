import asyncio


class RateLimiter:
    """Fixed-spacing pacer for sequential batches against a public API.

    ``acquire()`` waits until at least ``min_interval`` seconds have passed
    since the previous call; ``backoff()`` pushes the next slot further out
    after a 429.
    """

    def __init__(self, min_interval: float) -> None:
        self._min_interval = max(min_interval, 0.0)
        self._next_slot = 0.0
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        async with self._lock:
            loop = asyncio.get_running_loop()
            wait = self._next_slot - loop.time()
            if wait > 0:
                await asyncio.sleep(wait)
            self._next_slot = loop.time() + self._min_interval

    def backoff(self, seconds: float) -> None:
        loop = asyncio.get_running_loop()
        self._next_slot = max(self._next_slot, loop.time() + seconds)
