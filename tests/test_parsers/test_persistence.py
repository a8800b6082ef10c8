"""Tests for registry persistence (SQLite in-memory via aiosqlite)."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy import select
from sqlalchemy.exc import DataError

from factories import addr, graduated_record, ts
from src.models.token import GraduatedToken
from src.parsers.persistence import (
    count_tokens,
    load_checkpoint,
    load_registry,
    record_to_row,
    save_checkpoint,
    save_registry,
)
from src.parsers.precedence import ConfidenceTier, FieldGroup
from src.parsers.registry import RegistryState


def _state(*records, checkpoint=None) -> RegistryState:
    return RegistryState(records={r.address: r for r in records}, checkpoint=checkpoint)


@pytest.mark.asyncio
async def test_round_trip_restores_records_and_checkpoint(db_session):
    a = addr(1)
    record = graduated_record(
        a,
        at=ts(5),
        graduation_block=4242,
        dex_paid=True,
        dex_paid_detected_at=ts(6),
        provenance={
            FieldGroup.IDENTITY: ConfidenceTier.AUTHORITATIVE_METADATA,
            FieldGroup.GRADUATION: ConfidenceTier.AUTHORITATIVE_TIMING,
        },
    )
    state = _state(record, checkpoint=9000)

    assert await save_registry(db_session, state, {a}) == {a}
    await save_checkpoint(db_session, state.checkpoint)

    loaded = await load_registry(db_session)
    restored = loaded.get(a)
    assert loaded.checkpoint == 9000
    assert restored.name == "Radar Coin"
    assert restored.confirmed_graduated is True
    assert restored.graduated_at == ts(5)
    assert restored.graduated_at.tzinfo is not None
    assert restored.graduation_block == 4242
    assert restored.tier(FieldGroup.GRADUATION) == ConfidenceTier.AUTHORITATIVE_TIMING
    assert loaded.dirty == set()


@pytest.mark.asyncio
async def test_upsert_updates_existing_row(db_session):
    a = addr(2)
    record = graduated_record(a, liquidity_usd=1.0)
    state = _state(record)
    await save_registry(db_session, state, {a})

    record.liquidity_usd = 2.0
    record.name = "Renamed"
    await save_registry(db_session, state, {a})

    rows = (await db_session.execute(select(GraduatedToken))).scalars().all()
    assert len(rows) == 1
    await db_session.refresh(rows[0])
    assert rows[0].liquidity_usd == 2.0
    assert rows[0].name == "Renamed"


@pytest.mark.asyncio
async def test_dex_paid_detection_time_is_first_write_in_storage(db_session):
    a = addr(3)
    record = graduated_record(a, dex_paid=True, dex_paid_detected_at=ts(1))
    state = _state(record)
    await save_registry(db_session, state, {a})

    record.dex_paid_detected_at = ts(9)
    await save_registry(db_session, state, {a})

    loaded = await load_registry(db_session)
    assert loaded.get(a).dex_paid_detected_at == ts(1)


@pytest.mark.asyncio
async def test_batches_and_unknown_addresses(db_session):
    records = [graduated_record(addr(n)) for n in range(10, 15)]
    state = _state(*records)
    written = await save_registry(
        db_session, state, {r.address for r in records} | {addr(99)}, batch_size=2
    )
    assert written == {r.address for r in records}
    assert await count_tokens(db_session) == 5
    assert await count_tokens(db_session, confirmed_only=True) == 5


@pytest.mark.asyncio
async def test_checkpoint_only_moves_forward(db_session):
    assert await load_checkpoint(db_session) is None
    assert await save_checkpoint(db_session, None) is None
    assert await save_checkpoint(db_session, 500) == 500
    assert await save_checkpoint(db_session, 400) == 500
    assert await save_checkpoint(db_session, 600) == 600
    assert await load_checkpoint(db_session) == 600


@pytest.mark.asyncio
async def test_empty_save_is_noop(db_session):
    assert await save_registry(db_session, RegistryState(), set()) == set()


def test_record_to_row_clips_to_column_lengths():
    record = graduated_record(addr(20), name="N" * 300, ticker="T" * 60, dex_header="h" * 600)
    row = record_to_row(record)
    assert row["ticker"] == "T" * 50
    assert row["name"] == "N" * 255
    assert len(row["dex_header"]) == 500
    assert row["address"] == addr(20)


@pytest.mark.asyncio
async def test_over_length_ticker_round_trips_clipped(db_session):
    a = addr(21)
    state = _state(graduated_record(a, ticker="X" * 60))
    assert await save_registry(db_session, state, {a}) == {a}
    loaded = await load_registry(db_session)
    assert loaded.get(a).ticker == "X" * 50


def _pg_session(*execute_effects) -> MagicMock:
    session = MagicMock()
    session.get_bind.return_value.dialect.name = "postgresql"
    session.execute = AsyncMock(side_effect=list(execute_effects))
    session.flush = AsyncMock()
    nested = MagicMock()
    nested.__aenter__ = AsyncMock(return_value=None)
    nested.__aexit__ = AsyncMock(return_value=False)
    session.begin_nested = MagicMock(return_value=nested)
    return session


@pytest.mark.asyncio
async def test_rejected_row_does_not_block_its_batch():
    bad, good = addr(22), addr(23)
    state = _state(graduated_record(bad), graduated_record(good))
    rejected = DataError("INSERT", {}, Exception("value too long for type character varying"))
    session = _pg_session(rejected, rejected, None)

    written = await save_registry(session, state, {bad, good}, batch_size=2)

    assert written == {good}
    # one batch attempt, then one attempt per row, each in its own savepoint
    assert session.execute.await_count == 3
    assert session.begin_nested.call_count == 3
    session.flush.assert_awaited_once()
