"""Cached BNB/USD conversion rate (Binance avgPrice).

The index reports market caps and reserves in BNB; this oracle converts them
to USD. The rate is refreshed lazily once it is older than the TTL, and a
failed refresh keeps serving the cached value and is not retried for
``retry_sec``, so callers converting many coins cost at most one request.
"""

import asyncio

import httpx
from loguru import logger

STALE_WARN_SEC = 300.0


class PriceOracle:
    def __init__(
        self,
        url: str,
        *,
        ttl_sec: float = 60.0,
        default_rate: float = 600.0,
        retry_sec: float | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._url = url
        self._ttl = ttl_sec
        self._rate = default_rate
        self._last_update = 0.0
        self._last_attempt = 0.0
        # failed refreshes back off; never longer than the TTL
        self._retry = min(ttl_sec, 30.0) if retry_sec is None else retry_sec
        self._client = client or httpx.AsyncClient(timeout=10.0)
        self._lock = asyncio.Lock()

    @property
    def current_rate(self) -> float:
        """Cached rate without triggering a refresh."""
        return self._rate

    async def get_rate(self) -> float:
        """Return the BNB/USD rate, refreshing it when the TTL has elapsed."""
        async with self._lock:
            now = asyncio.get_running_loop().time()
            if self._last_update and now - self._last_update < self._ttl:
                return self._rate
            if self._last_attempt and now - self._last_attempt < self._retry:
                return self._rate
            self._last_attempt = now
            await self._refresh(now)
            return self._rate

    async def _refresh(self, now: float) -> None:
        try:
            resp = await self._client.get(self._url)
            if resp.status_code != 200:
                raise ValueError(f"HTTP {resp.status_code}")
            price = float(resp.json().get("price") or 0)
            if price <= 0:
                raise ValueError(f"non-positive price {price!r}")
        except (httpx.HTTPError, ValueError, TypeError, AttributeError) as e:
            stale = now - self._last_update if self._last_update else 0.0
            if stale > STALE_WARN_SEC:
                logger.warning(
                    f"[PRICE] Refresh failed ({e}); stale for {stale:.0f}s, "
                    f"using cached ${self._rate:.2f}"
                )
            else:
                logger.debug(f"[PRICE] Refresh failed ({e}); using cached ${self._rate:.2f}")
            return

        self._rate = price
        self._last_update = now
        logger.debug(f"[PRICE] BNB/USD updated: ${price:.2f}")

    async def close(self) -> None:
        await self._client.aclose()
