"""Tests for the reconciliation pass (merge order, demotion, placeholders)."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from factories import addr, chain_candidate, index_candidate, market_candidate, ts
from src.parsers.candidates import ChainScanResult, IndexResult, MarketResult
from src.parsers.exceptions import TransientNetworkError
from src.parsers.ranked_view import RankedViewConfig, build_ranked_view
from src.parsers.reconciler import Reconciler
from src.parsers.registry import RegistryState


def _index(*candidates) -> IndexResult:
    return IndexResult(candidates={c.address: c for c in candidates}, base_usd_rate=600.0)


def _market(*candidates, failed: int = 0) -> MarketResult:
    return MarketResult(
        candidates={c.address: c for c in candidates},
        batches_ok=1,
        batches_failed=failed,
    )


def _make(index=None, market=None, chain=None, coin=None):
    """Reconciler over mocked adapters. ``index=False`` simulates an outage."""
    index_client = MagicMock()
    index_client.fetch_board = AsyncMock(
        return_value=None if index is False else (index or _index())
    )
    index_client.fetch_coin = AsyncMock(return_value=coin)
    market_client = MagicMock()
    market_client.fetch = AsyncMock(return_value=market or _market())
    scanner = MagicMock()
    scanner.scan = AsyncMock(
        return_value=chain if chain is not None else ChainScanResult(checkpoint=None)
    )
    reconciler = Reconciler(index_client, market_client, scanner, placeholder_resolve_limit=15)
    return reconciler, index_client, market_client, scanner


@pytest.mark.asyncio
async def test_listed_index_coin_with_chain_event_gets_chain_time():
    """Index listed without a timestamp + chain event at block B -> graduatedAt == T."""
    a = addr(1)
    reconciler, *_ = _make(
        index=_index(index_candidate(a, listed=True)),
        chain=ChainScanResult(events=[chain_candidate(a, block=500, at=ts(7))], checkpoint=600),
    )
    report = await reconciler.run_cycle(RegistryState())

    record = report.state.get(a)
    assert record.graduated_at == ts(7)
    assert record.graduation_block == 500
    assert record.confirmed_graduated is True
    assert record.placeholder is False
    assert record.name == "Radar Coin"


@pytest.mark.asyncio
async def test_market_only_address_is_placeholder_and_hidden():
    b = addr(2, "8888")
    reconciler, index_client, *_ = _make(market=_market(market_candidate(b)))
    report = await reconciler.run_cycle(RegistryState())

    record = report.state.get(b)
    assert record is not None
    assert record.placeholder is True
    assert record.resolve_attempts == 1
    index_client.fetch_coin.assert_awaited_once_with(b)
    assert build_ranked_view(report.state.records.values(), RankedViewConfig()) == []


@pytest.mark.asyncio
async def test_one_record_per_address_across_sources():
    a = addr(3)
    reconciler, *_ = _make(
        index=_index(index_candidate(a)),
        market=_market(market_candidate(a)),
        chain=ChainScanResult(events=[chain_candidate(a)], checkpoint=10),
    )
    report = await reconciler.run_cycle(RegistryState())
    assert list(report.state.records) == [a]
    assert report.created == 1


@pytest.mark.asyncio
async def test_chain_timing_survives_later_market_estimate():
    a = addr(4)
    reconciler, *_ = _make(
        index=_index(index_candidate(a)),
        chain=ChainScanResult(events=[chain_candidate(a, at=ts(3))], checkpoint=100),
    )
    first = await reconciler.run_cycle(RegistryState())

    reconciler2, *_ = _make(
        index=_index(index_candidate(a)),
        market=_market(market_candidate(a, graduated_at=ts(50))),
        chain=ChainScanResult(checkpoint=100),
    )
    second = await reconciler2.run_cycle(first.state)
    assert second.state.get(a).graduated_at == ts(3)
    assert second.state.get(a).confirmed_graduated is True


@pytest.mark.asyncio
async def test_index_listed_false_demotes_confirmed_record():
    a = addr(5)
    reconciler, *_ = _make(
        chain=ChainScanResult(events=[chain_candidate(a)], checkpoint=100),
        index=_index(index_candidate(a, listed=True)),
    )
    first = await reconciler.run_cycle(RegistryState())
    assert first.state.get(a).confirmed_graduated is True

    reconciler2, *_ = _make(index=_index(index_candidate(a, listed=False)))
    second = await reconciler2.run_cycle(first.state)

    record = second.state.get(a)
    assert record.confirmed_graduated is False
    assert record.graduated is False
    assert second.demoted == 1
    assert build_ranked_view(second.state.records.values(), RankedViewConfig()) == []
    # the input state is untouched
    assert first.state.get(a).confirmed_graduated is True


@pytest.mark.asyncio
async def test_index_outage_skips_demotion_and_keeps_state():
    a = addr(6)
    reconciler, *_ = _make(index=_index(index_candidate(a)))
    first = await reconciler.run_cycle(RegistryState())

    reconciler2, index_client, *_ = _make(index=False)
    second = await reconciler2.run_cycle(first.state)

    assert second.index_ok is False
    assert second.state.get(a).confirmed_graduated is True
    assert second.demoted == 0
    index_client.fetch_coin.assert_not_awaited()


@pytest.mark.asyncio
async def test_bonding_index_coin_creates_no_record():
    a = addr(7)
    reconciler, *_ = _make(index=_index(index_candidate(a, listed=False)))
    report = await reconciler.run_cycle(RegistryState())
    assert len(report.state) == 0


@pytest.mark.asyncio
async def test_checkpoint_noop_without_new_blocks():
    reconciler, *_ = _make(chain=ChainScanResult(checkpoint=1200))
    state = RegistryState(checkpoint=1200)
    report = await reconciler.run_cycle(state)
    assert report.state.checkpoint == 1200

    reconciler2, *_ = _make(chain=ChainScanResult(checkpoint=1100))
    report2 = await reconciler2.run_cycle(report.state)
    assert report2.state.checkpoint == 1200


@pytest.mark.asyncio
async def test_chain_outage_keeps_checkpoint():
    reconciler, *_ = _make()
    reconciler._chain.scan = AsyncMock(return_value=None)
    report = await reconciler.run_cycle(RegistryState(checkpoint=42))
    assert report.chain_ok is False
    assert report.state.checkpoint == 42


@pytest.mark.asyncio
async def test_placeholder_verified_by_index_lookup():
    c = addr(8)
    hit = index_candidate(c, name="Resolved", section="lookup")
    reconciler, *_ = _make(
        chain=ChainScanResult(events=[chain_candidate(c)], checkpoint=5), coin=hit
    )
    report = await reconciler.run_cycle(RegistryState())

    record = report.state.get(c)
    assert record.placeholder is False
    assert record.name == "Resolved"
    assert record.confirmed_graduated is True
    assert report.resolved == 1


@pytest.mark.asyncio
async def test_placeholder_resolution_stops_on_index_failure():
    state = RegistryState()
    for n in range(3):
        state.create(addr(20 + n), name=addr(20 + n), placeholder=True)
    reconciler, index_client, *_ = _make()
    index_client.fetch_coin = AsyncMock(side_effect=TransientNetworkError("index", "down"))

    report = await reconciler.run_cycle(state)
    assert index_client.fetch_coin.await_count == 1
    assert all(r.resolve_attempts == 0 for r in report.state.records.values())


@pytest.mark.asyncio
async def test_placeholder_resolution_is_bounded_and_fair():
    state = RegistryState()
    for n in range(20):
        a = addr(100 + n)
        state.create(a, name=a, placeholder=True, resolve_attempts=0 if n < 5 else 3)
    reconciler, index_client, *_ = _make()
    reconciler._resolve_limit = 5

    await reconciler.run_cycle(state)
    looked_up = {call.args[0] for call in index_client.fetch_coin.await_args_list}
    assert looked_up == {addr(100 + n) for n in range(5)}


@pytest.mark.asyncio
async def test_confirmed_records_are_refreshed_missing_liquidity_first():
    a, b, c = addr(30), addr(31), addr(32)
    state = RegistryState()
    state.create(b, name="Has", confirmed_graduated=True, graduated=True, liquidity_usd=5.0)
    state.create(a, name="Needs", confirmed_graduated=True, graduated=True)
    state.create(c, name=c, placeholder=True, confirmed_graduated=True)
    reconciler, _, market_client, _ = _make()

    await reconciler.run_cycle(state)
    market_client.fetch.assert_awaited_once_with([a, b])


def test_refresh_list_is_capped_newest_first():
    state = RegistryState()
    for n in range(5):
        state.create(
            addr(40 + n),
            confirmed_graduated=True,
            graduated=True,
            liquidity_usd=1.0,
            graduated_at=ts(n),
        )
    reconciler, *_ = _make()
    reconciler._refresh_limit = 2
    assert reconciler.refresh_addresses(state) == [addr(44), addr(43)]


@pytest.mark.asyncio
async def test_partial_market_failure_still_merges_results():
    a = addr(32)
    reconciler, *_ = _make(
        index=_index(index_candidate(a)),
        market=_market(market_candidate(a, liquidity_usd=9_000.0), failed=2),
    )
    report = await reconciler.run_cycle(RegistryState())
    assert report.market_ok is True
    assert report.market_batches_failed == 2
    assert report.state.get(a).liquidity_usd == 9_000.0


@pytest.mark.asyncio
async def test_slow_chain_does_not_hold_back_index_updates():
    a = addr(50)
    reconciler, *_ = _make(index=_index(index_candidate(a, listed=True)))

    async def slow_scan(checkpoint):
        await asyncio.sleep(1.0)
        return ChainScanResult(checkpoint=999)

    reconciler._chain.scan = slow_scan
    reconciler._source_timeout = 0.05

    state = RegistryState(checkpoint=100)
    for _ in range(2):
        report = await reconciler.run_cycle(state)
        state = report.state

    assert report.index_ok is True
    assert report.chain_ok is False
    assert report.errors["chain"] == "timed out"
    assert state.get(a).confirmed_graduated is True
    assert state.checkpoint == 100


@pytest.mark.asyncio
async def test_slow_market_is_treated_as_unavailable():
    a = addr(51)
    reconciler, _, market_client, _ = _make(index=_index(index_candidate(a)))

    async def slow_fetch(addresses):
        await asyncio.sleep(1.0)
        return _market(market_candidate(a, liquidity_usd=1.0))

    market_client.fetch = slow_fetch
    reconciler._source_timeout = 0.05

    report = await reconciler.run_cycle(RegistryState())
    assert report.market_ok is False
    assert report.errors["market"] == "timed out"
    assert report.state.get(a).liquidity_usd == 0.0


@pytest.mark.asyncio
async def test_hanging_placeholder_lookup_pauses_resolution():
    b = addr(52, "8888")
    state = RegistryState()
    state.create(b, name=b, placeholder=True)
    reconciler, index_client, *_ = _make()

    async def hang(address):
        await asyncio.sleep(1.0)

    index_client.fetch_coin = hang
    reconciler._source_timeout = 0.05

    report = await reconciler.run_cycle(state)
    assert report.index_ok is True
    assert report.state.get(b).resolve_attempts == 0
    assert report.resolved == 0
