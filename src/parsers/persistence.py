"""Data persistence layer: maps registry records to SQLAlchemy models."""

from dataclasses import fields
from datetime import UTC, datetime

from loguru import logger
from sqlalchemy import String, func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.models.token import GraduatedToken, ScanCheckpoint
from src.parsers.precedence import ConfidenceTier, FieldGroup
from src.parsers.registry import RegistryState, TokenRecord

CHECKPOINT_KEY = "graduation_log"

# TokenRecord attributes stored 1:1 in graduated_tokens
_COLUMNS = [f.name for f in fields(TokenRecord) if f.name not in ("address", "provenance")]
_DATETIME_COLUMNS = {
    "created_at",
    "graduated_at",
    "dex_paid_detected_at",
    "pair_created_at",
    "first_seen_at",
    "updated_at",
}
_TEXT_COLUMNS = {"name", "ticker", "description"}
# VARCHAR limits; PostgreSQL rejects longer values instead of truncating
_MAX_LENGTHS = {
    column.name: column.type.length
    for column in GraduatedToken.__table__.columns
    if isinstance(column.type, String) and column.type.length
}


def _sanitize(val: str | None) -> str | None:
    """Strip null bytes and control chars that PostgreSQL rejects."""
    if val is None:
        return None
    return val.replace("\x00", "").strip() or None


def _aware(value: datetime | None) -> datetime | None:
    """SQLite hands back naive datetimes; everything in the registry is UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def _insert_for(session: AsyncSession):
    dialect = session.get_bind().dialect.name
    if dialect == "sqlite":
        return sqlite_insert
    return pg_insert


def record_to_row(record: TokenRecord) -> dict:
    row = {"address": record.address}
    for name in _COLUMNS:
        value = getattr(record, name)
        if name in _TEXT_COLUMNS:
            value = _sanitize(value)
        if isinstance(value, str) and name in _MAX_LENGTHS:
            value = value[: _MAX_LENGTHS[name]]
        row[name] = value
    row["provenance"] = {group.value: int(tier) for group, tier in record.provenance.items()}
    return row


def row_to_record(row: GraduatedToken) -> TokenRecord:
    values = {}
    for name in _COLUMNS:
        value = getattr(row, name)
        if name in _DATETIME_COLUMNS:
            value = _aware(value)
        if value is not None:
            values[name] = value

    provenance: dict[FieldGroup, ConfidenceTier] = {}
    for group, tier in (row.provenance or {}).items():
        try:
            provenance[FieldGroup(group)] = ConfidenceTier(int(tier))
        except (ValueError, TypeError):
            logger.debug(f"[PERSIST] Dropping unknown provenance {group}={tier} for {row.address}")
    return TokenRecord(address=row.address, provenance=provenance, **values)


async def save_registry(
    session: AsyncSession,
    state: RegistryState,
    addresses: set[str] | list[str],
    *,
    batch_size: int = 100,
) -> set[str]:
    """Upsert the given records in batches. Returns the addresses written.

    Each batch runs in a savepoint. A failing batch is retried row by row so
    one bad record cannot hold back the rest; addresses missing from the
    result stay dirty with the caller. Caller commits.
    """
    rows = [record_to_row(state.records[a]) for a in sorted(addresses) if a in state.records]
    if not rows:
        return set()

    insert = _insert_for(session)
    batch_size = max(batch_size, 1)
    saved: set[str] = set()
    for i in range(0, len(rows), batch_size):
        batch = rows[i : i + batch_size]
        if await _upsert_rows(session, insert, batch):
            saved.update(row["address"] for row in batch)
            continue
        if len(batch) == 1:
            continue
        for row in batch:
            if await _upsert_rows(session, insert, [row]):
                saved.add(row["address"])
    await session.flush()
    logger.debug(f"[PERSIST] Upserted {len(saved)}/{len(rows)} records")
    return saved


async def _upsert_rows(session: AsyncSession, insert, rows: list[dict]) -> bool:
    stmt = insert(GraduatedToken).values(rows)
    update = {name: stmt.excluded[name] for name in _COLUMNS if name != "first_seen_at"}
    update["provenance"] = stmt.excluded.provenance
    # detection time is first-write-wins in storage as well
    update["dex_paid_detected_at"] = func.coalesce(
        GraduatedToken.dex_paid_detected_at, stmt.excluded.dex_paid_detected_at
    )
    stmt = stmt.on_conflict_do_update(index_elements=["address"], set_=update)
    try:
        async with session.begin_nested():
            await session.execute(stmt)
    except SQLAlchemyError as e:
        first = rows[0]["address"]
        logger.warning(f"[PERSIST] Upsert of {len(rows)} rows from {first} failed: {e}")
        return False
    return True


async def save_checkpoint(
    session: AsyncSession, block: int | None, key: str = CHECKPOINT_KEY
) -> int | None:
    """Store the scan checkpoint; the stored value only moves forward."""
    existing = (
        await session.execute(select(ScanCheckpoint).where(ScanCheckpoint.key == key))
    ).scalar_one_or_none()
    if block is None:
        return existing.last_block if existing else None

    if existing is None:
        session.add(ScanCheckpoint(key=key, last_block=block, updated_at=datetime.now(UTC)))
    elif block > existing.last_block:
        existing.last_block = block
        existing.updated_at = datetime.now(UTC)
    else:
        return existing.last_block
    await session.flush()
    return block


async def load_checkpoint(session: AsyncSession, key: str = CHECKPOINT_KEY) -> int | None:
    result = await session.execute(
        select(ScanCheckpoint.last_block).where(ScanCheckpoint.key == key)
    )
    return result.scalar_one_or_none()


async def load_registry(session: AsyncSession) -> RegistryState:
    """Rebuild the registry state (records + checkpoint) from storage."""
    result = await session.execute(select(GraduatedToken))
    records = {}
    for row in result.scalars():
        record = row_to_record(row)
        records[record.address] = record
    checkpoint = await load_checkpoint(session)
    logger.info(f"[PERSIST] Loaded {len(records)} records, checkpoint={checkpoint}")
    return RegistryState(records=records, checkpoint=checkpoint)


async def count_tokens(session: AsyncSession, *, confirmed_only: bool = False) -> int:
    stmt = select(func.count(GraduatedToken.id))
    if confirmed_only:
        stmt = stmt.where(GraduatedToken.confirmed_graduated.is_(True))
    result = await session.execute(stmt)
    return result.scalar_one()
