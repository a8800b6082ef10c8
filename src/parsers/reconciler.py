"""One reconciliation pass: fetch from every source, merge into a forked state.

Fetches run concurrently; every write happens afterwards, synchronously, in
the fixed order index -> chain -> market -> demotion -> placeholder
resolution, so precedence never depends on which source answered first.
"""

import asyncio
import time
from dataclasses import dataclass, field

from loguru import logger

from src.parsers.candidates import (
    ChainScanResult,
    IndexResult,
    MarketResult,
    TokenCandidate,
)
from src.parsers.chain.scanner import GraduationLogScanner
from src.parsers.dexscreener.client import DexScreenerClient
from src.parsers.exceptions import SourceError
from src.parsers.flap.client import FlapIndexClient
from src.parsers.registry import RegistryState, TokenRecord


@dataclass
class CycleReport:
    state: RegistryState
    index_ok: bool = False
    chain_ok: bool = False
    market_ok: bool = False
    created: int = 0
    updated: int = 0
    demoted: int = 0
    resolved: int = 0
    placeholders_created: int = 0
    market_batches_failed: int = 0
    chain_chunks_failed: int = 0
    latency_ms: float = 0.0
    errors: dict[str, str] = field(default_factory=dict)


class Reconciler:
    def __init__(
        self,
        index: FlapIndexClient,
        market: DexScreenerClient,
        chain: GraduationLogScanner,
        *,
        placeholder_resolve_limit: int = 15,
        market_refresh_limit: int = 300,
        source_timeout_sec: float = 60.0,
    ) -> None:
        self._index = index
        self._market = market
        self._chain = chain
        self._resolve_limit = placeholder_resolve_limit
        self._refresh_limit = market_refresh_limit
        self._source_timeout = source_timeout_sec

    async def run_cycle(self, state: RegistryState) -> CycleReport:
        """Run one pass against ``state`` and return a new state in the report.

        ``state`` itself is never mutated.
        """
        started = time.monotonic()
        work = state.fork()
        report = CycleReport(state=work)

        refresh = self.refresh_addresses(state)
        index_res, chain_res, market_res = await asyncio.gather(
            self._fetch_index(report),
            self._fetch_chain(state.checkpoint, report),
            self._fetch_market(refresh, report),
        )

        if index_res is not None:
            self.merge_index(work, index_res, report)
        if chain_res is not None:
            self.merge_chain(work, chain_res, report)
        if market_res is not None:
            self.merge_market(work, market_res, report)
        if index_res is not None:
            self.demote(work, index_res, report)
            await self.resolve_placeholders(work, report)

        report.latency_ms = (time.monotonic() - started) * 1000
        logger.info(
            f"[RECONCILE] records={len(work)} created={report.created} "
            f"updated={report.updated} demoted={report.demoted} "
            f"resolved={report.resolved} placeholders+={report.placeholders_created} "
            f"checkpoint={work.checkpoint} ({report.latency_ms:.0f}ms)"
        )
        return report

    def refresh_addresses(self, state: RegistryState) -> list[str]:
        """Confirmed graduates whose market data is re-checked this cycle.

        Records still missing liquidity go first, then the newest graduates.
        The market client's lookup cache keeps repeat lookups cheap.
        """
        known = [
            r for r in state.records.values() if r.confirmed_graduated and not r.placeholder
        ]
        known.sort(
            key=lambda r: (
                bool(r.liquidity_usd),
                -(r.effective_time.timestamp() if r.effective_time else 0.0),
                r.address,
            )
        )
        return [r.address for r in known[: max(self._refresh_limit, 0)]]

    # ── fetch phase ─────────────────────────────────────────────────────

    async def _bounded(self, coro):
        if self._source_timeout > 0:
            return await asyncio.wait_for(coro, timeout=self._source_timeout)
        return await coro

    async def _fetch_index(self, report: CycleReport) -> IndexResult | None:
        try:
            result = await self._bounded(self._index.fetch_board())
        except asyncio.TimeoutError:
            logger.warning(f"[INDEX] Board fetch exceeded {self._source_timeout:.0f}s")
            report.errors["index"] = "timed out"
            return None
        report.index_ok = result is not None
        if result is None:
            report.errors["index"] = "board unavailable"
        return result

    async def _fetch_chain(
        self, checkpoint: int | None, report: CycleReport
    ) -> ChainScanResult | None:
        try:
            result = await self._bounded(self._chain.scan(checkpoint))
        except asyncio.TimeoutError:
            logger.warning(f"[CHAIN] Scan exceeded {self._source_timeout:.0f}s")
            report.errors["chain"] = "timed out"
            return None
        report.chain_ok = result is not None
        if result is None:
            report.errors["chain"] = "head unavailable"
        else:
            report.chain_chunks_failed = result.chunks_failed
        return result

    async def _fetch_market(self, refresh: list[str], report: CycleReport) -> MarketResult | None:
        try:
            result = await self._bounded(self._market.fetch(refresh))
        except asyncio.TimeoutError:
            logger.warning(f"[DEX] Market pass exceeded {self._source_timeout:.0f}s")
            report.errors["market"] = "timed out"
            return None
        report.market_batches_failed = result.batches_failed
        report.market_ok = result.batches_ok > 0 or result.batches_failed == 0
        if not report.market_ok:
            report.errors["market"] = f"{result.batches_failed} batches failed"
        return result

    # ── merge phase ─────────────────────────────────────────────────────

    def _upsert(
        self,
        state: RegistryState,
        candidate: TokenCandidate,
        report: CycleReport,
        *,
        verified: bool,
    ) -> TokenRecord | None:
        """Apply a candidate, creating the record on a graduation signal.

        Unverified new addresses are admitted as placeholders.
        """
        record = state.mutable(candidate.address)
        if record is None:
            if not candidate.graduation_signal:
                return None
            record = state.create(
                candidate.address,
                name=candidate.address,
                placeholder=not verified,
            )
            report.created += 1
            if not verified:
                report.placeholders_created += 1
                logger.debug(
                    f"[RECONCILE] Placeholder admitted from {candidate.source.value}: "
                    f"{candidate.address}"
                )
        if record.apply(candidate):
            state.mark_dirty(record.address)
            report.updated += 1
        return record

    def _verify(self, state: RegistryState, record: TokenRecord, candidate: TokenCandidate) -> None:
        """Index knowledge of an address verifies it; ``listed`` confirms it."""
        if record.placeholder:
            record.placeholder = False
            state.mark_dirty(record.address)
        if candidate.listed and record.confirm():
            state.mark_dirty(record.address)

    def merge_index(self, state: RegistryState, result: IndexResult, report: CycleReport) -> None:
        for candidate in result.candidates.values():
            record = self._upsert(state, candidate, report, verified=True)
            if record is not None:
                self._verify(state, record, candidate)

    def merge_chain(
        self, state: RegistryState, result: ChainScanResult, report: CycleReport
    ) -> None:
        for event in result.events:
            record = self._upsert(state, event, report, verified=False)
            if record is not None and record.confirm():
                state.mark_dirty(record.address)
        state.advance_checkpoint(result.checkpoint)

    def merge_market(self, state: RegistryState, result: MarketResult, report: CycleReport) -> None:
        for candidate in result.candidates.values():
            self._upsert(state, candidate, report, verified=False)

    def demote(self, state: RegistryState, result: IndexResult, report: CycleReport) -> None:
        """Reset confirmations the index contradicts (listed == False)."""
        for address, candidate in result.candidates.items():
            if candidate.listed is not False:
                continue
            current = state.get(address)
            if current is None or not current.confirmed_graduated:
                continue
            record = state.mutable(address)
            if record is not None and record.demote():
                state.mark_dirty(address)
                report.demoted += 1
                logger.info(f"[RECONCILE] Demoted {address}: index reports still bonding")

    async def resolve_placeholders(self, state: RegistryState, report: CycleReport) -> None:
        """Verify a bounded number of placeholders against the index."""
        pending = sorted(
            state.placeholders(), key=lambda r: (r.resolve_attempts, r.first_seen_at)
        )[: self._resolve_limit]

        started = time.monotonic()
        for current in pending:
            if self._source_timeout > 0 and time.monotonic() - started > self._source_timeout:
                logger.info("[RECONCILE] Placeholder resolution out of time, resuming next cycle")
                return
            try:
                candidate = await self._bounded(self._index.fetch_coin(current.address))
            except (SourceError, asyncio.TimeoutError) as e:
                logger.warning(
                    f"[RECONCILE] Placeholder resolution paused: {str(e) or type(e).__name__}"
                )
                return

            record = state.mutable(current.address)
            if record is None:
                continue
            if candidate is None:
                record.resolve_attempts += 1
                state.mark_dirty(record.address)
                continue

            if record.apply(candidate):
                report.updated += 1
            self._verify(state, record, candidate)
            if candidate.listed is False and record.demote():
                report.demoted += 1
            state.mark_dirty(record.address)
            report.resolved += 1
            logger.info(f"[RECONCILE] Verified placeholder {record.address} ({record.name})")
