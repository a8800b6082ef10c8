"""DexScreener search + token lookup: market data for fingerprint-matching tokens."""

import asyncio
from collections.abc import Iterable
from datetime import UTC, datetime

import httpx
from loguru import logger
from pydantic import ValidationError

from src.parsers.candidates import (
    MarketResult,
    TokenCandidate,
    matches_fingerprint,
    normalize_address,
)
from src.parsers.dexscreener.models import DexScreenerPair, DexScreenerSearchResponse
from src.parsers.exceptions import RateLimitError, TransientNetworkError
from src.parsers.precedence import Source
from src.parsers.rate_limiter import RateLimiter

BASE_URL = "https://api.dexscreener.com"
SOURCE = "market"


class DexScreenerClient:
    """Async REST client for DexScreener public API (no auth required).

    One cycle = one keyword search per factory suffix, then batched
    ``/tokens/v1`` lookups for addresses still missing market data. Batches
    run sequentially with a fixed delay; a failing batch is skipped.
    """

    def __init__(
        self,
        *,
        chain_id: str = "bsc",
        suffixes: set[str] | None = None,
        batch_size: int = 30,
        batch_delay_sec: float = 0.3,
        cache_ttl_sec: float = 120.0,
        rate_limit_backoff_sec: float = 2.0,
        rate_limiter: RateLimiter | None = None,
    ) -> None:
        self._client = httpx.AsyncClient(
            base_url=BASE_URL,
            timeout=10.0,
            headers={"Accept": "application/json"},
        )
        self._chain_id = chain_id
        self._suffixes = suffixes or set()
        self._batch_size = max(batch_size, 1)
        self._cache_ttl = cache_ttl_sec
        self._backoff = rate_limit_backoff_sec
        self._rate_limiter = rate_limiter or RateLimiter(batch_delay_sec)
        # address -> (loop time, pairs)
        self._lookup_cache: dict[str, tuple[float, list[DexScreenerPair]]] = {}

    async def _get(self, path: str, params: dict | None = None) -> object:
        await self._rate_limiter.acquire()
        try:
            response = await self._client.get(path, params=params)
        except httpx.HTTPError as e:
            raise TransientNetworkError(SOURCE, f"{type(e).__name__}: {e}") from e

        if response.status_code == 429:
            retry_after = response.headers.get("Retry-After")
            try:
                delay = float(retry_after) if retry_after else None
            except ValueError:
                delay = None
            raise RateLimitError(SOURCE, delay)
        if response.status_code != 200:
            raise TransientNetworkError(SOURCE, f"HTTP {response.status_code} for {path}")
        try:
            return response.json()
        except ValueError as e:
            raise TransientNetworkError(SOURCE, f"invalid JSON for {path}") from e

    async def search(self, keyword: str) -> list[DexScreenerPair]:
        data = await self._get("/latest/dex/search", params={"q": keyword})
        try:
            raw_pairs = DexScreenerSearchResponse.model_validate(data).pairs or []
        except ValidationError:
            return []
        return _validate_pairs(raw_pairs)

    async def get_tokens_batch(self, addresses: list[str]) -> list[DexScreenerPair]:
        """Get pairs for up to ``batch_size`` tokens in one request."""
        if not addresses:
            return []
        batch = addresses[: self._batch_size]
        data = await self._get(f"/tokens/v1/{self._chain_id}/{','.join(batch)}")
        if isinstance(data, list):
            return _validate_pairs(data)
        return []

    def _handle_failure(self, what: str, error: Exception) -> None:
        if isinstance(error, RateLimitError):
            delay = error.retry_after or self._backoff
            self._rate_limiter.backoff(delay)
            logger.warning(f"[DEX] {what} rate limited, backing off {delay:.1f}s")
        else:
            logger.warning(f"[DEX] {what} failed: {error}")

    async def fetch(self, extra_addresses: Iterable[str] = ()) -> MarketResult:
        """Run one market pass.

        ``extra_addresses`` are already-admitted tokens whose market data
        should be refreshed even though search did not return them.
        """
        result = MarketResult()
        best: dict[str, DexScreenerPair] = {}
        paid: dict[str, bool] = {}

        for suffix in sorted(self._suffixes):
            try:
                pairs = await self.search(suffix)
            except (RateLimitError, TransientNetworkError) as e:
                result.batches_failed += 1
                self._handle_failure(f"Search '{suffix}'", e)
                continue
            result.batches_ok += 1
            for pair in pairs:
                address = self._admit(pair)
                if address is None:
                    continue
                paid[address] = paid.get(address, False) or pair.is_paid
                current = best.get(address)
                if current is None or pair.liquidity_usd > current.liquidity_usd:
                    best[address] = pair

        searched = {
            addr: pair_to_candidate(pair, addr, paid.get(addr, False))
            for addr, pair in best.items()
        }

        wanted = [a for a, c in searched.items() if not c.has_market_data]
        for raw in extra_addresses:
            addr = normalize_address(raw)
            if addr and addr not in searched and addr not in wanted:
                wanted.append(addr)

        looked_up = await self._lookup(wanted, result)

        for addr, pairs in looked_up.items():
            chain_pairs = [p for p in pairs if p.chainId == self._chain_id]
            if not chain_pairs:
                continue
            top = max(chain_pairs, key=lambda p: p.liquidity_usd)
            is_paid = paid.get(addr, False) or any(p.is_paid for p in chain_pairs)
            searched[addr] = pair_to_candidate(top, addr, is_paid)

        result.candidates = searched
        logger.info(
            f"[DEX] {len(best)} search matches, {len(looked_up)} looked up, "
            f"{len(result.candidates)} candidates "
            f"(batches ok={result.batches_ok} failed={result.batches_failed})"
        )
        return result

    def _admit(self, pair: DexScreenerPair) -> str | None:
        """Search hits must be on our chain, fingerprinted, with a pair timestamp."""
        if pair.chainId != self._chain_id or pair.baseToken is None:
            return None
        address = normalize_address(pair.baseToken.address)
        if address is None or not matches_fingerprint(address, self._suffixes):
            return None
        if not pair.pairCreatedAt:
            return None
        return address

    async def _lookup(
        self, addresses: list[str], result: MarketResult
    ) -> dict[str, list[DexScreenerPair]]:
        now = asyncio.get_running_loop().time()
        found: dict[str, list[DexScreenerPair]] = {}
        to_fetch: list[str] = []
        for addr in addresses:
            cached = self._lookup_cache.get(addr)
            if cached and now - cached[0] < self._cache_ttl:
                found[addr] = cached[1]
            else:
                to_fetch.append(addr)

        for i in range(0, len(to_fetch), self._batch_size):
            batch = to_fetch[i : i + self._batch_size]
            try:
                pairs = await self.get_tokens_batch(batch)
            except (RateLimitError, TransientNetworkError) as e:
                result.batches_failed += 1
                self._handle_failure(f"Lookup batch {i // self._batch_size + 1}", e)
                continue
            result.batches_ok += 1

            by_token: dict[str, list[DexScreenerPair]] = {addr: [] for addr in batch}
            for pair in pairs:
                base = normalize_address(pair.baseToken.address if pair.baseToken else None)
                if base in by_token:
                    by_token[base].append(pair)
            stamp = asyncio.get_running_loop().time()
            for addr, token_pairs in by_token.items():
                self._lookup_cache[addr] = (stamp, token_pairs)
                found[addr] = token_pairs

        return found

    async def close(self) -> None:
        await self._client.aclose()


def _validate_pairs(raw_pairs: list) -> list[DexScreenerPair]:
    pairs: list[DexScreenerPair] = []
    for raw in raw_pairs:
        try:
            pairs.append(DexScreenerPair.model_validate(raw))
        except ValidationError:
            continue
    return pairs


def _float(value: object) -> float | None:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def pair_to_candidate(pair: DexScreenerPair, address: str, paid: bool) -> TokenCandidate:
    base = pair.baseToken
    info = pair.info
    txns = pair.txns.h24 if pair.txns else None
    website = None
    if info and info.websites:
        website = next((w.url for w in info.websites if w.url), None)
    market_cap = pair.marketCap if pair.marketCap is not None else pair.fdv
    pair_created = (
        datetime.fromtimestamp(pair.pairCreatedAt / 1000, UTC) if pair.pairCreatedAt else None
    )

    return TokenCandidate(
        address=address,
        source=Source.MARKET,
        section="dexscreener",
        name=base.name if base else None,
        ticker=base.symbol if base else None,
        image=info.imageUrl if info else None,
        website=website,
        twitter=info.social("twitter") if info else None,
        telegram=info.social("telegram") if info else None,
        price_usd=_float(pair.priceUsd),
        market_cap_usd=_float(market_cap),
        liquidity_usd=pair.liquidity_usd,
        volume_24h_usd=_float(pair.volume.h24) if pair.volume else None,
        price_change_24h=_float(pair.priceChange.h24) if pair.priceChange else None,
        buys_24h=txns.buys if txns else None,
        sells_24h=txns.sells if txns else None,
        dex_url=pair.url or f"https://dexscreener.com/{pair.chainId or 'bsc'}/{address}",
        pair_address=(pair.pairAddress or "").lower() or None,
        pair_created_at=pair_created,
        dex_header=info.header if info else None,
        dex_boosts=(pair.boosts.active or 0) if pair.boosts else 0,
        graduated_at=pair_created,
        dex_paid=paid,
    )
