"""Push ranked-view snapshots to in-process subscribers and Redis pubsub.

Each subscriber owns a one-slot queue: a newer snapshot replaces one that was
not read yet, so a slow reader only ever sees the latest view and
``publish`` never waits on anybody.
"""

import asyncio
import json
import time
from collections.abc import Sequence

from loguru import logger

from src.parsers.registry import TokenRecord


class Subscription:
    """Async iterator over ranked-view snapshots."""

    def __init__(self, notifier: "ChangeNotifier") -> None:
        self._notifier = notifier
        self._queue: asyncio.Queue[tuple[TokenRecord, ...]] = asyncio.Queue(maxsize=1)
        self.closed = False

    def _offer(self, view: tuple[TokenRecord, ...]) -> None:
        if self._queue.full():
            try:
                self._queue.get_nowait()
            except asyncio.QueueEmpty:
                pass
        self._queue.put_nowait(view)

    def pending(self) -> bool:
        return not self._queue.empty()

    async def get(self) -> tuple[TokenRecord, ...]:
        return await self._queue.get()

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._notifier._unsubscribe(self)

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> tuple[TokenRecord, ...]:
        if self.closed:
            raise StopAsyncIteration
        return await self.get()


class ChangeNotifier:
    def __init__(self, *, redis=None, channel: str = "radar:ranked") -> None:
        self._redis = redis
        self._channel = channel
        self._subscribers: list[Subscription] = []
        self._tasks: set[asyncio.Task] = set()
        self._total_published = 0

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self) -> Subscription:
        sub = Subscription(self)
        self._subscribers.append(sub)
        logger.debug(f"[NOTIFY] Subscriber added ({len(self._subscribers)} total)")
        return sub

    def _unsubscribe(self, sub: Subscription) -> None:
        if sub in self._subscribers:
            self._subscribers.remove(sub)

    def publish(self, view: Sequence[TokenRecord]) -> None:
        """Deliver a snapshot to every subscriber without awaiting any of them."""
        snapshot = tuple(view)
        for sub in list(self._subscribers):
            sub._offer(snapshot)
        self._total_published += 1

        if self._redis is not None:
            task = asyncio.create_task(self._publish_redis(snapshot))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def _publish_redis(self, view: tuple[TokenRecord, ...]) -> None:
        try:
            payload = json.dumps({
                "ts": time.time(),
                "count": len(view),
                "tokens": [_record_payload(r) for r in view],
            })
            await self._redis.publish(self._channel, payload)
        except Exception as e:
            logger.debug(f"[NOTIFY] Redis publish failed: {e}")

    async def close(self) -> None:
        for sub in list(self._subscribers):
            sub.close()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)


def _record_payload(record: TokenRecord) -> dict:
    ts = record.effective_time
    return {
        "address": record.address,
        "name": record.name,
        "ticker": record.ticker,
        "image": record.image,
        "price_usd": record.price_usd,
        "market_cap_usd": record.market_cap_usd,
        "liquidity_usd": record.liquidity_usd,
        "volume_24h_usd": record.volume_24h_usd,
        "dex_url": record.dex_url,
        "dex_paid": record.dex_paid,
        "graduated_at": ts.isoformat() if ts else None,
    }
