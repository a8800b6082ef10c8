"""Authoritative address -> TokenRecord store and its copy-on-write state."""

import copy
from dataclasses import dataclass, field
from datetime import UTC, datetime

from src.parsers.candidates import TokenCandidate
from src.parsers.precedence import (
    FIELD_GROUPS,
    SOURCE_TIERS,
    ConfidenceTier,
    FieldGroup,
    Source,
    should_replace,
)


def _now() -> datetime:
    return datetime.now(UTC)


@dataclass
class TokenRecord:
    address: str

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
    holders: int = 0
    tax_rate_percent: float = 0.0
    dev_hold_percent: float = 0.0
    burn_percent: float = 0.0

    # Bonding
    reserve: float = 0.0
    bonding_progress_percent: float = 0.0
    listed: bool = False
    bonding_curve_active: bool = False

    # Market
    price_usd: float = 0.0
    market_cap_usd: float = 0.0
    liquidity_usd: float = 0.0
    volume_24h_usd: float = 0.0
    price_change_24h: float = 0.0
    buys_24h: int = 0
    sells_24h: int = 0
    dex_url: str | None = None
    pair_address: str | None = None
    pair_created_at: datetime | None = None
    dex_header: str | None = None
    dex_boosts: int = 0

    # Graduation
    graduated: bool = False
    confirmed_graduated: bool = False
    graduated_at: datetime | None = None
    graduation_block: int | None = None
    dex_paid: bool = False
    dex_paid_detected_at: datetime | None = None

    # Provenance
    section: str | None = None
    placeholder: bool = False
    resolve_attempts: int = 0
    provenance: dict[FieldGroup, ConfidenceTier] = field(default_factory=dict)
    first_seen_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)

    def tier(self, group: FieldGroup) -> ConfidenceTier:
        return self.provenance.get(group, ConfidenceTier.NONE)

    @property
    def effective_time(self) -> datetime | None:
        """Graduation time, falling back to creation time."""
        return self.graduated_at or self.created_at

    def apply(self, candidate: TokenCandidate) -> bool:
        """Merge one candidate field-by-field under the precedence rules.

        Returns True if anything changed.
        """
        changed = False
        tiers = SOURCE_TIERS[candidate.source]
        for group, new_tier in tiers.items():
            current_tier = self.tier(group)
            wrote = False
            for name in FIELD_GROUPS[group]:
                new = getattr(candidate, name)
                current = getattr(self, name)
                if not should_replace(current, current_tier, new, new_tier):
                    continue
                wrote = True
                if new != current:
                    setattr(self, name, new)
                    changed = True
            if wrote and new_tier > current_tier:
                self.provenance[group] = new_tier
                changed = True

        if candidate.section and (
            self.section is None or candidate.source is Source.INDEX
        ):
            if self.section != candidate.section:
                self.section = candidate.section
                changed = True

        if candidate.dex_paid and not self.dex_paid:
            self.dex_paid = True
            changed = True
        if self.dex_paid and self.dex_paid_detected_at is None:
            self.dex_paid_detected_at = _now()
            changed = True

        if changed:
            self.updated_at = _now()
        return changed

    def confirm(self) -> bool:
        """Mark graduated + confirmed (false -> true only)."""
        if self.confirmed_graduated and self.graduated:
            return False
        self.graduated = True
        self.confirmed_graduated = True
        self.updated_at = _now()
        return True

    def demote(self) -> bool:
        """Undo a false-positive confirmation reported by the index."""
        if not self.confirmed_graduated:
            return False
        self.confirmed_graduated = False
        self.graduated = False
        self.updated_at = _now()
        return True


@dataclass
class RegistryState:
    """Registry records plus scan checkpoint and the unpersisted delta."""

    records: dict[str, TokenRecord] = field(default_factory=dict)
    checkpoint: int | None = None
    dirty: set[str] = field(default_factory=set)
    _owned: set[str] = field(default_factory=set, repr=False)

    def fork(self) -> "RegistryState":
        """Working copy for one cycle; records are cloned on first write."""
        return RegistryState(
            records=dict(self.records),
            checkpoint=self.checkpoint,
            dirty=set(self.dirty),
        )

    def get(self, address: str) -> TokenRecord | None:
        return self.records.get(address)

    def mutable(self, address: str) -> TokenRecord | None:
        """Record safe to mutate in this fork (cloned on first access)."""
        record = self.records.get(address)
        if record is None:
            return None
        if address not in self._owned:
            record = copy.deepcopy(record)
            self.records[address] = record
            self._owned.add(address)
        return record

    def create(self, address: str, **fields) -> TokenRecord:
        if address in self.records:
            raise KeyError(f"record already exists: {address}")
        record = TokenRecord(address=address, **fields)
        self.records[address] = record
        self._owned.add(address)
        self.dirty.add(address)
        return record

    def mark_dirty(self, address: str) -> None:
        self.dirty.add(address)

    def advance_checkpoint(self, block: int | None) -> None:
        """Checkpoint only moves forward."""
        if block is None:
            return
        if self.checkpoint is None or block > self.checkpoint:
            self.checkpoint = block

    def placeholders(self) -> list[TokenRecord]:
        return [r for r in self.records.values() if r.placeholder]

    def __len__(self) -> int:
        return len(self.records)
