"""Flap.sh GraphQL index client: authoritative token metadata and listing state."""

from datetime import UTC, datetime
from decimal import Decimal

import httpx
from loguru import logger
from pydantic import ValidationError

from src.parsers.candidates import IndexResult, TokenCandidate, normalize_address
from src.parsers.exceptions import PartialDataError, TransientNetworkError
from src.parsers.flap.models import FlapBoard, FlapCoin
from src.parsers.precedence import Source
from src.parsers.price_oracle import PriceOracle

SOURCE = "index"
BROWSER_UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

COIN_FIELDS = """
  name address symbol listed createdAt
  dexThreshSupply
  marketcap(round: 18) reserve(round: 18) supply(round: 18)
  quoteToken
  tax(round: 4)
  beneficiary
  creator
  nHolders
  author { name pfp }
  holders { holder amount }
  metadata { description image website twitter telegram }
"""

BOARD_QUERY = f"""{{
  boardV2 {{
    verified(limit: 25) {{ coins {{ {COIN_FIELDS} }} }}
    newlyCreated(limit: 35) {{ coins {{ {COIN_FIELDS} }} }}
    graduating(limit: 25) {{ coins {{ {COIN_FIELDS} }} }}
    listed(limit: 50) {{ coins {{ {COIN_FIELDS} }} }}
  }}
}}"""

LISTED_COINS_QUERY = """query($limit: Int!) {
  coins(options: { listed: true, hideListed: false, duel: false, asc: false, limit: $limit, offset: 0, sort: 0 }) {
    %s
  }
}""" % COIN_FIELDS

COIN_QUERY = """query($address: String!) {
  coin(address: $address) {
    %s
  }
}""" % COIN_FIELDS


class FlapIndexClient:
    """Async client for the launchpad's GraphQL index.

    Produces normalized TokenCandidates with USD figures derived from the
    oracle's BNB rate. Transport failures raise TransientNetworkError and a
    GraphQL ``errors`` array raises PartialDataError; ``fetch_board`` turns
    both into ``None`` so the cycle simply has no index update.
    """

    def __init__(
        self,
        gql_url: str,
        price_oracle: PriceOracle,
        *,
        total_supply: float = 1_000_000_000.0,
        bond_target: float = 16.0,
        burn_addresses: set[str] | None = None,
        ipfs_gateway: str = "",
        listed_limit: int = 100,
    ) -> None:
        self._url = gql_url
        self._oracle = price_oracle
        self._total_supply = total_supply
        self._bond_target = bond_target
        self._burn_addresses = {a.lower() for a in (burn_addresses or set())}
        self._ipfs_gateway = ipfs_gateway
        self._listed_limit = listed_limit
        self._client = httpx.AsyncClient(
            timeout=15.0,
            headers={"Content-Type": "application/json", "User-Agent": BROWSER_UA},
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def _query(self, query: str, variables: dict | None = None) -> dict:
        body: dict = {"query": query}
        if variables:
            body["variables"] = variables
        try:
            resp = await self._client.post(self._url, json=body)
        except httpx.HTTPError as e:
            raise TransientNetworkError(SOURCE, f"{type(e).__name__}: {e}") from e

        if resp.status_code != 200:
            raise TransientNetworkError(SOURCE, f"HTTP {resp.status_code}: {resp.text[:200]}")

        try:
            payload = resp.json()
        except ValueError as e:
            raise TransientNetworkError(SOURCE, f"invalid JSON: {e}") from e
        if not isinstance(payload, dict):
            raise TransientNetworkError(
                SOURCE, f"unexpected response body {type(payload).__name__}"
            )

        if payload.get("errors"):
            raise PartialDataError(SOURCE, str(payload["errors"])[:200])
        data = payload.get("data")
        return data if isinstance(data, dict) else {}

    async def fetch_board(self) -> IndexResult | None:
        """Fetch all board sections plus recent listed coins.

        Returns None when the board query fails; the listed-coins query is
        best effort.
        """
        try:
            data = await self._query(BOARD_QUERY)
        except (TransientNetworkError, PartialDataError) as e:
            logger.warning(f"[INDEX] Board unavailable this cycle: {e}")
            return None

        try:
            listed_data = await self._query(LISTED_COINS_QUERY, {"limit": self._listed_limit})
        except (TransientNetworkError, PartialDataError) as e:
            logger.warning(f"[INDEX] Listed coins query failed: {e}")
            listed_data = {}

        rate = await self._oracle.get_rate()
        try:
            board = FlapBoard.model_validate(data.get("boardV2") or {})
        except ValidationError as e:
            logger.warning(f"[INDEX] Malformed board payload: {e}")
            return None

        sections = board.sections()
        listed_coins = listed_data.get("coins") or []
        if isinstance(listed_coins, list) and listed_coins:
            sections.append(("listed", listed_coins))

        result = IndexResult(base_usd_rate=rate)
        skipped = 0
        for section, coins in sections:
            for raw in coins:
                candidate = self._parse_coin(raw, rate, section)
                if candidate is None:
                    skipped += 1
                    continue
                result.candidates.setdefault(candidate.address, candidate)

        logger.info(
            f"[INDEX] Fetched {len(result.candidates)} coins "
            f"(BNB ${rate:.2f}, skipped {skipped})"
        )
        return result

    async def fetch_coin(self, address: str) -> TokenCandidate | None:
        """Look up a single coin; None when the index does not know it.

        Raises TransientNetworkError / PartialDataError on failure.
        """
        data = await self._query(COIN_QUERY, {"address": address})
        raw = data.get("coin")
        if not raw or not isinstance(raw, dict):
            return None
        rate = await self._oracle.get_rate()
        return self._parse_coin(raw, rate, "lookup")

    def _parse_coin(self, raw: dict, rate: float, section: str) -> TokenCandidate | None:
        try:
            coin = FlapCoin.model_validate(raw)
        except ValidationError as e:
            logger.debug(f"[INDEX] Skipping malformed coin: {e.error_count()} errors")
            return None
        address = normalize_address(coin.address)
        if address is None:
            logger.debug(f"[INDEX] Skipping coin with bad address {coin.address!r}")
            return None
        return coin_to_candidate(
            coin,
            address=address,
            rate=rate,
            section=section,
            total_supply=self._total_supply,
            bond_target=self._bond_target,
            burn_addresses=self._burn_addresses,
            ipfs_gateway=self._ipfs_gateway,
        )


def _f(value: Decimal | None) -> float:
    return float(value) if value is not None else 0.0


def _holder_amount(coin: FlapCoin, addresses: set[str]) -> float:
    total = 0.0
    for h in coin.holders or []:
        if h.holder and h.holder.lower() in addresses:
            total += _f(h.amount)
    return total


def resolve_image(image: str | None, gateway: str) -> str | None:
    if not image:
        return None
    if image.startswith("http") or image.startswith("/"):
        return image
    return f"{gateway}{image}?img-width=200&img-height=200&img-fit=cover"


def coin_to_candidate(
    coin: FlapCoin,
    *,
    address: str,
    rate: float,
    section: str,
    total_supply: float,
    bond_target: float,
    burn_addresses: set[str],
    ipfs_gateway: str = "",
) -> TokenCandidate:
    """Derive USD and bonding figures for one index coin."""
    mcap_base = _f(coin.marketcap)
    reserve = _f(coin.reserve)

    burned = _holder_amount(coin, burn_addresses)
    circulating = total_supply - burned
    market_cap_usd = mcap_base * rate
    price_usd = market_cap_usd / circulating if market_cap_usd > 0 and circulating > 0 else 0.0

    creator = coin.creator.lower() if coin.creator else None
    dev_amount = _holder_amount(coin, {creator}) if creator else 0.0

    progress = min(reserve / bond_target * 100, 100.0) if bond_target > 0 else 0.0

    if coin.nHolders is not None:
        holders = coin.nHolders
    else:
        holders = len(coin.holders or [])

    meta = coin.metadata
    return TokenCandidate(
        address=address,
        source=Source.INDEX,
        section=section,
        name=coin.name or None,
        ticker=coin.symbol or None,
        image=resolve_image(meta.image if meta else None, ipfs_gateway),
        description=meta.description if meta else None,
        website=meta.website if meta else None,
        twitter=meta.twitter if meta else None,
        telegram=meta.telegram if meta else None,
        creator=creator,
        created_at=datetime.fromtimestamp(coin.createdAt, UTC) if coin.createdAt else None,
        holders=holders,
        tax_rate_percent=_f(coin.tax) * 100,
        dev_hold_percent=dev_amount / total_supply * 100 if total_supply > 0 else 0.0,
        burn_percent=burned / total_supply * 100 if total_supply > 0 else 0.0,
        reserve=reserve,
        bonding_progress_percent=progress,
        listed=coin.listed,
        bonding_curve_active=(not coin.listed) and reserve >= 1,
        price_usd=price_usd,
        market_cap_usd=market_cap_usd,
    )
