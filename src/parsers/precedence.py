"""Field-level confidence precedence used by the reconciler merge step.

Each mutable TokenRecord field belongs to one FieldGroup. Every source writes
a group at a fixed ConfidenceTier (SOURCE_TIERS); the record remembers the
highest tier that has written each group, and ``should_replace`` decides
whether an incoming value may overwrite the stored one.
"""

from enum import Enum, IntEnum
from typing import Any


class Source(str, Enum):
    INDEX = "index"
    MARKET = "market"
    CHAIN = "chain"


class FieldGroup(str, Enum):
    IDENTITY = "identity"
    BONDING = "bonding"
    MARKET = "market"
    GRADUATION = "graduation"


class ConfidenceTier(IntEnum):
    NONE = 0
    PLACEHOLDER = 1
    ESTIMATE = 2
    AUTHORITATIVE_MARKET = 3
    AUTHORITATIVE_METADATA = 4
    AUTHORITATIVE_TIMING = 5


FIELD_GROUPS: dict[FieldGroup, tuple[str, ...]] = {
    FieldGroup.IDENTITY: (
        "name",
        "ticker",
        "image",
        "description",
        "website",
        "twitter",
        "telegram",
        "creator",
        "created_at",
        "holders",
        "tax_rate_percent",
        "dev_hold_percent",
        "burn_percent",
    ),
    FieldGroup.BONDING: (
        "reserve",
        "bonding_progress_percent",
        "listed",
        "bonding_curve_active",
    ),
    FieldGroup.MARKET: (
        "price_usd",
        "market_cap_usd",
        "liquidity_usd",
        "volume_24h_usd",
        "price_change_24h",
        "buys_24h",
        "sells_24h",
        "dex_url",
        "pair_address",
        "pair_created_at",
        "dex_header",
        "dex_boosts",
    ),
    FieldGroup.GRADUATION: ("graduated_at", "graduation_block"),
}

SOURCE_TIERS: dict[Source, dict[FieldGroup, ConfidenceTier]] = {
    Source.INDEX: {
        FieldGroup.IDENTITY: ConfidenceTier.AUTHORITATIVE_METADATA,
        FieldGroup.BONDING: ConfidenceTier.AUTHORITATIVE_METADATA,
        FieldGroup.MARKET: ConfidenceTier.ESTIMATE,
    },
    Source.MARKET: {
        FieldGroup.IDENTITY: ConfidenceTier.ESTIMATE,
        FieldGroup.MARKET: ConfidenceTier.AUTHORITATIVE_MARKET,
        FieldGroup.GRADUATION: ConfidenceTier.ESTIMATE,
    },
    Source.CHAIN: {
        FieldGroup.IDENTITY: ConfidenceTier.PLACEHOLDER,
        FieldGroup.GRADUATION: ConfidenceTier.AUTHORITATIVE_TIMING,
    },
}


def is_empty(value: Any) -> bool:
    """None, blank strings and zero numbers are empty; booleans never are."""
    if value is None:
        return True
    if isinstance(value, bool):
        return False
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (int, float)):
        return value == 0
    return False


def should_replace(
    current: Any,
    current_tier: ConfidenceTier,
    new: Any,
    new_tier: ConfidenceTier,
) -> bool:
    """Decide whether ``new`` (written at ``new_tier``) replaces ``current``.

    - ``None`` means "not supplied" and never replaces anything.
    - A higher tier always wins.
    - An equal tier keeps a non-empty value over an empty/zero one.
    - A lower tier only fills an empty value.
    """
    if new is None:
        return False
    if new_tier > current_tier:
        return True
    if new_tier == current_tier:
        return not is_empty(new) or is_empty(current)
    return is_empty(current) and not is_empty(new)
