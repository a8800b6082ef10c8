"""Reconciliation metrics: cycle latency, per-source outcomes, registry size.

Counters accumulate during runtime and are read by the stats reporter,
the health alerter and the health check script.
"""

import time
from dataclasses import dataclass
from threading import Lock


@dataclass
class SourceMetrics:
    """Outcome counters for a single adapter."""

    successes: int = 0
    errors: int = 0
    consecutive_errors: int = 0
    last_success: float | None = None  # monotonic
    last_error: str | None = None

    @property
    def error_rate_pct(self) -> float:
        total = self.successes + self.errors
        if total == 0:
            return 0.0
        return self.errors / total * 100


class CycleMetrics:
    """Global metrics accumulator for the reconciliation loop.

    Guarded by a simple lock (cycles run on one event loop but the
    stats reporter reads concurrently).
    """

    def __init__(self) -> None:
        self._lock = Lock()
        self._sources: dict[str, SourceMetrics] = {}
        self._total_cycles: int = 0
        self._failed_cycles: int = 0
        self._timeouts: int = 0
        self._total_latency_ms: float = 0.0
        self._max_latency_ms: float = 0.0
        self._last_cycle_ok: float | None = None
        self._registry_size: int = 0
        self._confirmed: int = 0
        self._view_size: int = 0
        self._start_time: float = time.monotonic()

    def _get_source(self, name: str) -> SourceMetrics:
        if name not in self._sources:
            self._sources[name] = SourceMetrics()
        return self._sources[name]

    def record_source(self, name: str, ok: bool, error: str | None = None) -> None:
        with self._lock:
            sm = self._get_source(name)
            if ok:
                sm.successes += 1
                sm.consecutive_errors = 0
                sm.last_success = time.monotonic()
            else:
                sm.errors += 1
                sm.consecutive_errors += 1
                sm.last_error = error

    def record_cycle(
        self,
        latency_ms: float,
        *,
        registry_size: int,
        confirmed: int,
        view_size: int,
    ) -> None:
        """Record a completed (swapped-in) cycle."""
        with self._lock:
            self._total_cycles += 1
            self._total_latency_ms += latency_ms
            if latency_ms > self._max_latency_ms:
                self._max_latency_ms = latency_ms
            self._last_cycle_ok = time.monotonic()
            self._registry_size = registry_size
            self._confirmed = confirmed
            self._view_size = view_size

    def record_failure(self, *, timeout: bool = False) -> None:
        """Record a cycle that was abandoned and left state unchanged."""
        with self._lock:
            self._failed_cycles += 1
            if timeout:
                self._timeouts += 1

    def last_cycle_age(self) -> float | None:
        """Seconds since the last successful cycle (None before the first)."""
        with self._lock:
            if self._last_cycle_ok is None:
                return None
            return time.monotonic() - self._last_cycle_ok

    def get_summary(self) -> dict:
        """Return a snapshot of all metrics."""
        with self._lock:
            uptime = time.monotonic() - self._start_time
            avg_latency = (
                self._total_latency_ms / self._total_cycles if self._total_cycles else 0.0
            )
            last_age = (
                time.monotonic() - self._last_cycle_ok if self._last_cycle_ok is not None else None
            )
            return {
                "uptime_sec": round(uptime),
                "cycles": self._total_cycles,
                "failed_cycles": self._failed_cycles,
                "timeouts": self._timeouts,
                "avg_latency_ms": round(avg_latency),
                "max_latency_ms": round(self._max_latency_ms),
                "last_cycle_age_sec": round(last_age) if last_age is not None else None,
                "registry_size": self._registry_size,
                "confirmed": self._confirmed,
                "view_size": self._view_size,
                "sources": {
                    name: {
                        "ok": sm.successes,
                        "errors": sm.errors,
                        "consecutive_errors": sm.consecutive_errors,
                        "error_rate_pct": round(sm.error_rate_pct, 1),
                        "last_error": sm.last_error,
                    }
                    for name, sm in self._sources.items()
                },
            }

    def format_stats_line(self) -> str:
        """One-line summary for the stats reporter."""
        with self._lock:
            avg_latency = (
                self._total_latency_ms / self._total_cycles if self._total_cycles else 0.0
            )
            errors = " ".join(
                f"{name}_err={sm.errors}" for name, sm in sorted(self._sources.items())
            )
            return (
                f"cycles={self._total_cycles} failed={self._failed_cycles} "
                f"registry={self._registry_size} confirmed={self._confirmed} "
                f"view={self._view_size} avg_lat={avg_latency:.0f}ms"
                + (f" {errors}" if errors else "")
            )


# Global singleton, imported by worker.py and the health check
metrics = CycleMetrics()
