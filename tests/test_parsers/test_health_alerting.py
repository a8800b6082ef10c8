"""Tests for health degradation alerting."""

import time

import pytest

from src.parsers.health_alerting import HealthAlerter, HealthThresholds
from src.parsers.metrics import CycleMetrics


@pytest.fixture
def metrics():
    m = CycleMetrics()
    # Simulate 10 min of uptime
    m._start_time = time.monotonic() - 600
    return m


@pytest.fixture
def fired():
    return []


@pytest.fixture
def alerter(metrics, fired):
    async def callback(alert_type: str, message: str) -> None:
        fired.append((alert_type, message))

    return HealthAlerter(
        metrics,
        thresholds=HealthThresholds(
            max_cycle_age_sec=120,
            max_source_failures=3,
            alert_cooldown_sec=60,
        ),
        alert_callback=callback,
    )


@pytest.mark.asyncio
async def test_no_cycle_alert(alerter, fired):
    await alerter.check_all()
    assert [t for t, _ in fired] == ["no_cycle"]


@pytest.mark.asyncio
async def test_stale_cycle_alert(alerter, metrics, fired):
    metrics.record_cycle(10.0, registry_size=1, confirmed=1, view_size=1)
    metrics._last_cycle_ok = time.monotonic() - 300
    await alerter.check_all()
    assert fired[0][0] == "stale_cycle"


@pytest.mark.asyncio
async def test_source_down_alert_with_cooldown(alerter, metrics, fired):
    metrics.record_cycle(10.0, registry_size=1, confirmed=1, view_size=1)
    for _ in range(3):
        metrics.record_source("chain", False, "head unavailable")

    await alerter.check_all()
    await alerter.check_all()
    assert [t for t, _ in fired] == ["source_down_chain"]
    assert "head unavailable" in fired[0][1]


@pytest.mark.asyncio
async def test_healthy_pipeline_is_quiet(alerter, metrics, fired):
    metrics.record_cycle(10.0, registry_size=1, confirmed=1, view_size=1)
    metrics.record_source("index", True)
    await alerter.check_all()
    assert fired == []
