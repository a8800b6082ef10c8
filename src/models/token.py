from datetime import datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    Float,
    Index,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from src.models.base import Base


class GraduatedToken(Base):
    __tablename__ = "graduated_tokens"

    id: Mapped[int] = mapped_column(primary_key=True)
    address: Mapped[str] = mapped_column(String(64))

    # Identity
    name: Mapped[str | None] = mapped_column(String(255))
    ticker: Mapped[str | None] = mapped_column(String(50))
    image: Mapped[str | None] = mapped_column(String(500))
    description: Mapped[str | None] = mapped_column(Text)
    website: Mapped[str | None] = mapped_column(String(500))
    twitter: Mapped[str | None] = mapped_column(String(500))
    telegram: Mapped[str | None] = mapped_column(String(500))
    creator: Mapped[str | None] = mapped_column(String(64))
    created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    holders: Mapped[int] = mapped_column(Integer, default=0)
    tax_rate_percent: Mapped[float] = mapped_column(Float, default=0.0)
    dev_hold_percent: Mapped[float] = mapped_column(Float, default=0.0)
    burn_percent: Mapped[float] = mapped_column(Float, default=0.0)

    # Bonding curve
    reserve: Mapped[float] = mapped_column(Float, default=0.0)
    bonding_progress_percent: Mapped[float] = mapped_column(Float, default=0.0)
    listed: Mapped[bool] = mapped_column(Boolean, default=False)
    bonding_curve_active: Mapped[bool] = mapped_column(Boolean, default=False)

    # Market (DexScreener)
    price_usd: Mapped[float] = mapped_column(Float, default=0.0)
    market_cap_usd: Mapped[float] = mapped_column(Float, default=0.0)
    liquidity_usd: Mapped[float] = mapped_column(Float, default=0.0)
    volume_24h_usd: Mapped[float] = mapped_column(Float, default=0.0)
    price_change_24h: Mapped[float] = mapped_column(Float, default=0.0)
    buys_24h: Mapped[int] = mapped_column(Integer, default=0)
    sells_24h: Mapped[int] = mapped_column(Integer, default=0)
    dex_url: Mapped[str | None] = mapped_column(String(500))
    pair_address: Mapped[str | None] = mapped_column(String(64))
    pair_created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    dex_header: Mapped[str | None] = mapped_column(String(500))
    dex_boosts: Mapped[int] = mapped_column(Integer, default=0)

    # Graduation
    graduated: Mapped[bool] = mapped_column(Boolean, default=False)
    confirmed_graduated: Mapped[bool] = mapped_column(Boolean, default=False)
    graduated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    graduation_block: Mapped[int | None] = mapped_column(BigInteger)
    dex_paid: Mapped[bool] = mapped_column(Boolean, default=False)
    dex_paid_detected_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    # Provenance
    section: Mapped[str | None] = mapped_column(String(50))
    placeholder: Mapped[bool] = mapped_column(Boolean, default=False)
    resolve_attempts: Mapped[int] = mapped_column(Integer, default=0)
    provenance: Mapped[dict | None] = mapped_column(JSON)
    first_seen_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint("address", name="uq_graduated_token_address"),
        Index("idx_graduated_tokens_confirmed", "confirmed_graduated"),
        Index("idx_graduated_tokens_graduated_at", "graduated_at"),
        Index("idx_graduated_tokens_dex_paid", "dex_paid", "pair_created_at"),
    )


class ScanCheckpoint(Base):
    __tablename__ = "scan_checkpoints"

    id: Mapped[int] = mapped_column(primary_key=True)
    key: Mapped[str] = mapped_column(String(64))
    last_block: Mapped[int] = mapped_column(BigInteger)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (UniqueConstraint("key", name="uq_scan_checkpoint_key"),)
