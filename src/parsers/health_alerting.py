"""Automatic health degradation alerting.

Runs as a background task alongside the radar. Periodically checks:
- Cycle freshness (no successful reconciliation in N seconds)
- Consecutive failures of a single source
- Repeated cycle timeouts

Sends alerts to console log and optionally an async callback.
"""

import asyncio
import time
from dataclasses import dataclass

from loguru import logger

from src.parsers.metrics import CycleMetrics


@dataclass
class HealthThresholds:
    """Thresholds for triggering health alerts."""

    max_cycle_age_sec: int = 300  # 5 min without a successful cycle
    max_source_failures: int = 5  # consecutive failures of one adapter
    max_timeouts: int = 3
    alert_cooldown_sec: int = 600  # Don't repeat same alert within 10 min


class HealthAlerter:
    """Background health monitor with configurable thresholds."""

    def __init__(
        self,
        metrics: CycleMetrics,
        *,
        thresholds: HealthThresholds | None = None,
        alert_callback=None,
    ) -> None:
        self._metrics = metrics
        self._thresholds = thresholds or HealthThresholds()
        self._alert_callback = alert_callback  # async callable for external alerts
        self._last_alerts: dict[str, float] = {}
        self._check_count: int = 0

    async def run_loop(self, check_interval_sec: int = 60, warmup_sec: int = 120) -> None:
        """Periodic health check loop, runs until cancelled."""
        await asyncio.sleep(warmup_sec)

        while True:
            try:
                await self.check_all()
            except Exception as e:
                logger.debug(f"[HEALTH] Check error: {e}")
            await asyncio.sleep(check_interval_sec)

    async def check_all(self) -> None:
        """Run all health checks."""
        self._check_count += 1
        summary = self._metrics.get_summary()

        age = summary.get("last_cycle_age_sec")
        uptime = summary.get("uptime_sec", 0)
        if age is None and uptime > self._thresholds.max_cycle_age_sec:
            await self._fire_alert(
                "no_cycle",
                f"No reconciliation cycle has completed in {uptime}s",
            )
        elif age is not None and age > self._thresholds.max_cycle_age_sec:
            await self._fire_alert(
                "stale_cycle",
                f"Last successful cycle was {age}s ago "
                f"(threshold: {self._thresholds.max_cycle_age_sec}s)",
            )

        for name, source in summary.get("sources", {}).items():
            failures = source.get("consecutive_errors", 0)
            if failures >= self._thresholds.max_source_failures:
                await self._fire_alert(
                    f"source_down_{name}",
                    f"Source {name} failed {failures} cycles in a row: "
                    f"{source.get('last_error')}",
                )

        timeouts = summary.get("timeouts", 0)
        if timeouts >= self._thresholds.max_timeouts:
            await self._fire_alert(
                "cycle_timeouts",
                f"{timeouts} reconciliation cycles timed out",
            )

    async def _fire_alert(self, alert_type: str, message: str) -> None:
        """Fire an alert with deduplication/cooldown."""
        now = time.monotonic()
        last = self._last_alerts.get(alert_type)
        if last is not None and now - last < self._thresholds.alert_cooldown_sec:
            return

        self._last_alerts[alert_type] = now
        logger.warning(f"[HEALTH-ALERT] {message}")

        if self._alert_callback:
            try:
                await self._alert_callback(alert_type, message)
            except Exception as e:
                logger.debug(f"[HEALTH-ALERT] Callback error: {e}")
