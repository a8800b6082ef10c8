"""Tests for reconciliation metrics."""

from src.parsers.metrics import CycleMetrics


def test_record_cycle_and_summary():
    m = CycleMetrics()
    m.record_cycle(100.0, registry_size=10, confirmed=8, view_size=6)
    m.record_cycle(300.0, registry_size=12, confirmed=9, view_size=7)

    summary = m.get_summary()
    assert summary["cycles"] == 2
    assert summary["avg_latency_ms"] == 200
    assert summary["max_latency_ms"] == 300
    assert summary["registry_size"] == 12
    assert summary["view_size"] == 7
    assert summary["last_cycle_age_sec"] == 0


def test_source_counters_reset_consecutive_on_success():
    m = CycleMetrics()
    m.record_source("index", False, "board unavailable")
    m.record_source("index", False, "board unavailable")
    assert m.get_summary()["sources"]["index"]["consecutive_errors"] == 2

    m.record_source("index", True)
    src = m.get_summary()["sources"]["index"]
    assert src["consecutive_errors"] == 0
    assert src["errors"] == 2
    assert src["ok"] == 1
    assert src["error_rate_pct"] == 66.7


def test_failures_and_timeouts():
    m = CycleMetrics()
    assert m.last_cycle_age() is None
    m.record_failure()
    m.record_failure(timeout=True)
    summary = m.get_summary()
    assert summary["failed_cycles"] == 2
    assert summary["timeouts"] == 1


def test_format_stats_line():
    m = CycleMetrics()
    m.record_cycle(50.0, registry_size=3, confirmed=2, view_size=1)
    m.record_source("market", False, "2 batches failed")
    line = m.format_stats_line()
    assert "cycles=1" in line
    assert "registry=3" in line
    assert "market_err=1" in line
