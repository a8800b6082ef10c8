"""Normalized candidate schema produced at every adapter boundary.

The reconciler only ever sees these objects, never raw source payloads.
Any field left as ``None`` means "this source does not supply it".
"""

import re
from dataclasses import dataclass, field
from datetime import datetime

from src.parsers.precedence import Source

_ADDRESS_RE = re.compile(r"^0x[0-9a-f]{40}$")
# full or shortened ("0x1234…abcd") address used as a stand-in name
_PLACEHOLDER_NAME_RE = re.compile(r"0x(?:[0-9a-f]{40}|[0-9a-f]{2,}(?:\.\.\.|\u2026)[0-9a-f]{2,})")


def normalize_address(raw: str | None) -> str | None:
    """Canonical lowercase 0x-hex address, or None if malformed."""
    if not raw:
        return None
    addr = raw.strip().lower()
    if not addr.startswith("0x"):
        addr = "0x" + addr
    return addr if _ADDRESS_RE.match(addr) else None


def matches_fingerprint(address: str, suffixes: set[str]) -> bool:
    return any(address.endswith(suffix) for suffix in suffixes)


def looks_like_address(name: str | None) -> bool:
    """True for names that are still an address-shaped placeholder."""
    if not name:
        return True
    return _PLACEHOLDER_NAME_RE.fullmatch(name.strip().lower()) is not None


@dataclass
class TokenCandidate:
    address: str
    source: Source
    section: str | None = None

    # Identity
    name: str | None = None
    ticker: str | None = None
    image: str | None = None
    description: str | None = None
    website: str | None = None
    twitter: str | None = None
    telegram: str | None = None
    creator: str | None = None
    created_at: datetime | None = None
    holders: int | None = None
    tax_rate_percent: float | None = None
    dev_hold_percent: float | None = None
    burn_percent: float | None = None

    # Bonding
    reserve: float | None = None
    bonding_progress_percent: float | None = None
    listed: bool | None = None
    bonding_curve_active: bool | None = None

    # Market
    price_usd: float | None = None
    market_cap_usd: float | None = None
    liquidity_usd: float | None = None
    volume_24h_usd: float | None = None
    price_change_24h: float | None = None
    buys_24h: int | None = None
    sells_24h: int | None = None
    dex_url: str | None = None
    pair_address: str | None = None
    pair_created_at: datetime | None = None
    dex_header: str | None = None
    dex_boosts: int | None = None

    # Graduation
    graduated_at: datetime | None = None
    graduation_block: int | None = None
    dex_paid: bool | None = None

    @property
    def graduation_signal(self) -> bool:
        """Whether this observation alone justifies creating a record."""
        if self.source is Source.INDEX:
            return bool(self.listed) or (self.bonding_progress_percent or 0) >= 100
        return True

    @property
    def has_market_data(self) -> bool:
        return bool(self.liquidity_usd) and bool(self.volume_24h_usd or self.market_cap_usd)


@dataclass
class IndexResult:
    """One cycle of index output: candidates keyed by address."""

    candidates: dict[str, TokenCandidate] = field(default_factory=dict)
    base_usd_rate: float = 0.0


@dataclass
class MarketResult:
    candidates: dict[str, TokenCandidate] = field(default_factory=dict)
    batches_ok: int = 0
    batches_failed: int = 0


@dataclass
class ChainScanResult:
    events: list[TokenCandidate] = field(default_factory=list)
    checkpoint: int | None = None
    chunks_scanned: int = 0
    chunks_failed: int = 0
