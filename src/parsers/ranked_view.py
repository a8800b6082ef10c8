"""Filtered, ordered, capped list of graduated tokens served to consumers."""

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime

from src.parsers.candidates import looks_like_address, normalize_address
from src.parsers.registry import TokenRecord

DEFAULT_PROTECTED_TICKERS = frozenset(
    {"bnb", "wbnb", "btc", "btcb", "eth", "weth", "usdt", "usdc", "busd", "fdusd", "cake", "dai"}
)

_EPOCH = datetime.min.replace(tzinfo=UTC)


@dataclass
class RankedViewConfig:
    cap: int = 60
    pinned: str | None = None
    exclude: set[str] = field(default_factory=set)
    allow: set[str] = field(default_factory=set)
    protected_tickers: set[str] = field(default_factory=lambda: set(DEFAULT_PROTECTED_TICKERS))

    @classmethod
    def from_settings(cls, settings) -> "RankedViewConfig":
        return cls(
            cap=settings.ranked_view_cap,
            pinned=normalize_address(settings.ranked_pinned_address),
            exclude=settings.ranked_exclude_set,
            allow=settings.ranked_allow_set,
            protected_tickers=settings.ranked_protected_set or set(DEFAULT_PROTECTED_TICKERS),
        )


def is_eligible(record: TokenRecord, config: RankedViewConfig) -> bool:
    allowed = record.address in config.allow
    if not record.confirmed_graduated:
        return False
    if record.placeholder and not allowed:
        return False
    if record.address in config.exclude:
        return False
    if record.ticker and record.ticker.lower() in config.protected_tickers:
        return False
    if looks_like_address(record.name) and not allowed:
        return False
    has_activity = bool(record.dex_url) or record.liquidity_usd > 0 or record.volume_24h_usd > 0
    return has_activity or allowed


def _sort_key(record: TokenRecord) -> tuple:
    # newest first; records without any time go last
    ts = record.effective_time
    if ts is not None and ts.tzinfo is None:
        ts = ts.replace(tzinfo=UTC)
    return (ts is None, -(ts or _EPOCH).timestamp(), record.address)


def build_ranked_view(
    records: Iterable[TokenRecord], config: RankedViewConfig
) -> list[TokenRecord]:
    eligible = sorted((r for r in records if is_eligible(r, config)), key=_sort_key)
    cap = max(config.cap, 0)

    if config.pinned:
        pinned = next((r for r in eligible if r.address == config.pinned), None)
        if pinned is not None:
            rest = [r for r in eligible if r.address != config.pinned]
            return ([pinned] + rest)[:cap]

    return eligible[:cap]


def _pair_key(record: TokenRecord) -> tuple:
    created = record.pair_created_at
    if created is not None and created.tzinfo is None:
        created = created.replace(tzinfo=UTC)
    return (created is None, -(created or _EPOCH).timestamp(), record.address)


def build_dex_paid_view(
    records: Iterable[TokenRecord], config: RankedViewConfig
) -> list[TokenRecord]:
    """Verified dex-paid tokens, newest trading pair first, uncapped."""
    return sorted(
        (
            r
            for r in records
            if r.dex_paid and not r.placeholder and r.address not in config.exclude
        ),
        key=_pair_key,
    )
