"""Graduation radar service: scheduler loop, state swap, persistence, fan-out.

One reconciliation cycle at a time. Each cycle works on a forked state and
the result replaces ``_state`` and ``_view`` by plain assignment, so readers
(``ranked_view``, ``lookup``) never need a lock and never see a half-merged
record.
"""

import asyncio
from collections.abc import Callable

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import Settings, settings as default_settings
from src.parsers.candidates import normalize_address
from src.parsers.chain.rpc import ChainRpcClient
from src.parsers.chain.scanner import GraduationLogScanner
from src.parsers.dexscreener.client import DexScreenerClient
from src.parsers.exceptions import SourceError
from src.parsers.flap.client import FlapIndexClient
from src.parsers.health_alerting import HealthAlerter, HealthThresholds
from src.parsers.metrics import CycleMetrics, metrics as pipeline_metrics
from src.parsers.notifier import ChangeNotifier, Subscription
from src.parsers.persistence import load_registry, save_checkpoint, save_registry
from src.parsers.price_oracle import PriceOracle
from src.parsers.ranked_view import RankedViewConfig, build_dex_paid_view, build_ranked_view
from src.parsers.rate_limiter import RateLimiter
from src.parsers.reconciler import CycleReport, Reconciler
from src.parsers.registry import RegistryState, TokenRecord

SessionFactory = Callable[[], AsyncSession]


class GraduationRadar:
    def __init__(
        self,
        reconciler: Reconciler,
        *,
        index: FlapIndexClient,
        notifier: ChangeNotifier | None = None,
        view_config: RankedViewConfig | None = None,
        session_factory: SessionFactory | None = None,
        interval_sec: float = 20.0,
        cycle_timeout_sec: float = 180.0,
        persist_batch_size: int = 100,
        metrics: CycleMetrics | None = None,
        health_alerter: HealthAlerter | None = None,
        closeables: list | None = None,
    ) -> None:
        self._reconciler = reconciler
        self._index = index
        self._notifier = notifier or ChangeNotifier()
        self._view_config = view_config or RankedViewConfig()
        self._session_factory = session_factory
        self._interval = interval_sec
        self._timeout = cycle_timeout_sec
        self._batch_size = persist_batch_size
        self._metrics = metrics or pipeline_metrics
        self._health_alerter = health_alerter
        self._closeables = closeables or []

        self._state = RegistryState()
        self._view: tuple[TokenRecord, ...] = ()
        self._dex_paid: tuple[TokenRecord, ...] = ()
        self._view_key: tuple | None = None
        self._trigger = asyncio.Event()
        self._cycle_lock = asyncio.Lock()
        self._stopping = False
        self._loaded = False
        self.cycle_count = 0

    @property
    def state(self) -> RegistryState:
        return self._state

    # ── read side ───────────────────────────────────────────────────────

    def ranked_view(self) -> tuple[TokenRecord, ...]:
        return self._view

    def dex_paid_view(self) -> tuple[TokenRecord, ...]:
        """Dex-paid tokens with their DexScreener profile, newest pair first."""
        return self._dex_paid

    def lookup(self, address: str) -> TokenRecord | None:
        key = normalize_address(address)
        if key is None:
            return None
        return self._state.get(key)

    async def lookup_live(self, address: str) -> TokenRecord | None:
        """Registry record, or a normalized index lookup that is not admitted."""
        record = self.lookup(address)
        if record is not None:
            return record
        key = normalize_address(address)
        if key is None:
            return None
        try:
            candidate = await self._index.fetch_coin(key)
        except SourceError as e:
            logger.warning(f"[LOOKUP] Live lookup for {key} failed: {e}")
            return None
        if candidate is None:
            return None
        transient = TokenRecord(address=key)
        transient.apply(candidate)
        return transient

    def subscribe(self) -> Subscription:
        return self._notifier.subscribe()

    # ── control ─────────────────────────────────────────────────────────

    def reconcile_now(self) -> None:
        """Ask for a cycle as soon as the current one (if any) finishes."""
        self._trigger.set()

    async def load(self) -> None:
        if self._loaded or self._session_factory is None:
            self._loaded = True
            return
        async with self._session_factory() as session:
            self._state = await load_registry(session)
        self._rebuild_view()
        self._loaded = True

    async def start(self) -> None:
        """Load persisted state, then run cycles until ``stop()``."""
        await self.load()
        background = [asyncio.create_task(self._stats_reporter(), name="stats")]
        if self._health_alerter is not None:
            background.append(
                asyncio.create_task(self._health_alerter.run_loop(), name="health_alerter")
            )
        try:
            await self._loop()
        finally:
            for task in background:
                task.cancel()
            await asyncio.gather(*background, return_exceptions=True)

    def stop(self) -> None:
        self._stopping = True
        self._trigger.set()

    async def close(self) -> None:
        await self._notifier.close()
        for client in self._closeables:
            try:
                await client.close()
            except Exception as e:
                logger.debug(f"Close error for {type(client).__name__}: {e}")

    async def _loop(self) -> None:
        logger.info(f"[RADAR] Scheduler started (interval {self._interval:.0f}s)")
        while not self._stopping:
            self._trigger.clear()
            try:
                await self.run_cycle()
            except Exception:
                logger.exception("[RADAR] Cycle crashed, keeping previous state")
                self._metrics.record_failure()
            if self._stopping:
                break
            try:
                await asyncio.wait_for(self._trigger.wait(), timeout=self._interval)
            except asyncio.TimeoutError:
                pass
        logger.info("[RADAR] Scheduler stopped")

    # ── cycle ───────────────────────────────────────────────────────────

    async def run_cycle(self) -> CycleReport | None:
        """Reconcile, swap, persist, rebuild the view and notify.

        Returns None when the cycle timed out (state unchanged).
        """
        async with self._cycle_lock:
            work = self._reconciler.run_cycle(self._state)
            try:
                if self._timeout > 0:
                    report = await asyncio.wait_for(work, timeout=self._timeout)
                else:
                    report = await work
            except asyncio.TimeoutError:
                logger.warning(
                    f"[RADAR] Cycle exceeded {self._timeout:.0f}s, previous state kept"
                )
                self._metrics.record_failure(timeout=True)
                return None

            self._record_sources(report)
            self._state = report.state
            self.cycle_count += 1
            changed = self._rebuild_view()
            await self._persist()

            if changed:
                self._notifier.publish(self._view)
                logger.info(f"[VIEW] Ranked view updated: {len(self._view)} tokens")

            self._metrics.record_cycle(
                report.latency_ms,
                registry_size=len(self._state),
                confirmed=sum(1 for r in self._state.records.values() if r.confirmed_graduated),
                view_size=len(self._view),
            )
            return report

    def _record_sources(self, report: CycleReport) -> None:
        self._metrics.record_source("index", report.index_ok, report.errors.get("index"))
        self._metrics.record_source("chain", report.chain_ok, report.errors.get("chain"))
        self._metrics.record_source("market", report.market_ok, report.errors.get("market"))

    def _rebuild_view(self) -> bool:
        view = tuple(build_ranked_view(self._state.records.values(), self._view_config))
        self._dex_paid = tuple(
            build_dex_paid_view(self._state.records.values(), self._view_config)
        )
        key = tuple((r.address, r.updated_at) for r in view)
        changed = key != self._view_key
        self._view = view
        self._view_key = key
        return changed

    async def _persist(self) -> None:
        if self._session_factory is None:
            return
        state = self._state
        pending = set(state.dirty)
        try:
            async with self._session_factory() as session:
                written = await save_registry(
                    session, state, pending, batch_size=self._batch_size
                )
                await save_checkpoint(session, state.checkpoint)
                await session.commit()
        except (SQLAlchemyError, OSError) as e:
            logger.warning(f"[PERSIST] Save failed, {len(pending)} records stay dirty: {e}")
            return
        state.dirty -= written
        if len(written) < len(pending):
            logger.warning(f"[PERSIST] {len(pending) - len(written)} records stay dirty")
        if written:
            logger.debug(f"[PERSIST] Saved {len(written)} records, checkpoint={state.checkpoint}")

    async def _stats_reporter(self, interval_sec: int = 60) -> None:
        """Log radar stats every 60 seconds."""
        while True:
            await asyncio.sleep(interval_sec)
            parts = [
                f"Registry: {len(self._state)}",
                f"Placeholders: {len(self._state.placeholders())}",
                f"Checkpoint: {self._state.checkpoint}",
                f"Subscribers: {self._notifier.subscriber_count}",
                self._metrics.format_stats_line(),
            ]
            logger.info(f"[STATS] {' | '.join(parts)}")


def build_radar(
    cfg: Settings = default_settings,
    *,
    session_factory: SessionFactory | None = None,
    redis=None,
) -> GraduationRadar:
    """Wire adapters, reconciler and notifier from settings."""
    suffixes = cfg.factory_suffix_set
    oracle = PriceOracle(
        cfg.price_url,
        ttl_sec=cfg.price_ttl_sec,
        default_rate=cfg.price_default_usd,
        retry_sec=cfg.price_retry_sec,
    )
    index = FlapIndexClient(
        cfg.flap_gql_url,
        oracle,
        total_supply=cfg.flap_total_supply,
        bond_target=cfg.flap_bond_target,
        burn_addresses=cfg.burn_address_set,
        ipfs_gateway=cfg.flap_ipfs_gateway,
        listed_limit=cfg.flap_listed_limit,
    )
    market = DexScreenerClient(
        chain_id=cfg.dexscreener_chain_id,
        suffixes=suffixes,
        batch_size=cfg.dexscreener_batch_size,
        cache_ttl_sec=cfg.dexscreener_cache_ttl_sec,
        rate_limit_backoff_sec=cfg.dexscreener_rate_limit_backoff_sec,
        rate_limiter=RateLimiter(cfg.dexscreener_batch_delay_sec),
    )
    rpc = ChainRpcClient(cfg.chain_rpc_url)
    scanner = GraduationLogScanner(
        rpc,
        contract=cfg.chain_launch_contract,
        topic=cfg.chain_graduation_topic,
        suffixes=suffixes,
        chunk_blocks=cfg.chain_chunk_blocks,
        max_chunks_per_cycle=cfg.chain_max_chunks_per_cycle,
        lookback_days=cfg.chain_lookback_days,
        block_time_sec=cfg.chain_block_time_sec,
        token_topic_index=cfg.chain_token_topic_index,
        token_data_word=cfg.chain_token_data_word,
        time_budget_sec=cfg.chain_scan_budget_sec,
    )
    reconciler = Reconciler(
        index,
        market,
        scanner,
        placeholder_resolve_limit=cfg.placeholder_resolve_limit,
        market_refresh_limit=cfg.market_refresh_limit,
        source_timeout_sec=cfg.source_timeout_sec,
    )
    alerter = HealthAlerter(
        pipeline_metrics,
        thresholds=HealthThresholds(
            max_cycle_age_sec=cfg.health_max_cycle_age_sec,
            max_source_failures=cfg.health_max_source_failures,
        ),
    )
    return GraduationRadar(
        reconciler,
        index=index,
        notifier=ChangeNotifier(redis=redis, channel=cfg.redis_ranked_channel),
        view_config=RankedViewConfig.from_settings(cfg),
        session_factory=session_factory,
        interval_sec=cfg.reconcile_interval_sec,
        cycle_timeout_sec=cfg.cycle_timeout_sec,
        persist_batch_size=cfg.persist_batch_size,
        metrics=pipeline_metrics,
        health_alerter=alerter,
        closeables=[index, market, rpc, oracle],
    )


async def run_parser() -> None:
    """Entry point: builds the radar from settings and runs it until cancelled."""
    from src.db.database import async_session_factory
    from src.db.redis import close_redis, get_redis

    redis = None
    if default_settings.enable_redis_publish:
        redis = await get_redis()
        logger.info(f"Redis publish enabled on '{default_settings.redis_ranked_channel}'")

    radar = build_radar(session_factory=async_session_factory, redis=redis)
    logger.info(
        f"Graduation radar: suffixes={sorted(default_settings.factory_suffix_set)} "
        f"chain_scan={'on' if default_settings.chain_launch_contract else 'off'}"
    )
    try:
        await radar.start()
    except asyncio.CancelledError:
        logger.info("Radar tasks cancelled")
        radar.stop()
    finally:
        await radar.close()
        await close_redis()
