"""Detection metrics tracking.

Counts which indicators fire, which are slow or broken, why scans are
rejected at the eligibility gate, and how verdicts are distributed, so
thresholds and rules can be tuned from data.
"""

import logging
import threading
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

logger = logging.getLogger(__name__)

# Distinct hosts remembered per indicator; later hosts are counted as hits only.
MAX_TRACKED_HOSTS = 500


@dataclass
class IndicatorMetrics:
    """Metrics for a single indicator."""

    hits: int = 0
    errors: int = 0
    slow_runs: int = 0
    max_elapsed_ms: float = 0.0
    last_hit: Optional[datetime] = None
    hosts: set = field(default_factory=set)
    untracked_host_hits: int = 0

    def record_hit(self, host: str) -> None:
        self.hits += 1
        self.last_hit = datetime.now()
        if host:
            if host in self.hosts or len(self.hosts) < MAX_TRACKED_HOSTS:
                self.hosts.add(host)
            else:
                self.untracked_host_hits += 1


class DetectionMetrics:
    """Thread-safe metrics collector for page scans.

    A process-wide singleton so every scheduler instance reports into the
    same counters.
    """

    _instance: Optional["DetectionMetrics"] = None
    _lock = threading.Lock()

    def __new__(cls) -> "DetectionMetrics":
        """Singleton pattern for global metrics access."""
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super().__new__(cls)
                    cls._instance._initialized = False
        return cls._instance

    def __init__(self) -> None:
        if self._initialized:
            return
        self._initialized = True
        self._lock = threading.Lock()
        self._indicators: dict[str, IndicatorMetrics] = defaultdict(IndicatorMetrics)
        self._gate_rejections: dict[str, int] = defaultdict(int)
        self._actions: dict[str, int] = defaultdict(int)
        self._techniques: dict[str, int] = defaultdict(int)
        self._total_scans: int = 0
        self._budget_overruns: int = 0
        self._started: datetime = datetime.now()

    def record_indicator_hit(self, indicator_id: str, host: str) -> None:
        """Record an indicator match."""
        with self._lock:
            self._indicators[indicator_id].record_hit(host)

    def record_indicator_error(self, indicator_id: str) -> None:
        """Record an indicator whose strategy failed to execute."""
        with self._lock:
            self._indicators[indicator_id].errors += 1

    def record_indicator_timing(self, indicator_id: str, elapsed_ms: float, slow: bool) -> None:
        """Record how long one indicator evaluation took."""
        with self._lock:
            entry = self._indicators[indicator_id]
            entry.max_elapsed_ms = max(entry.max_elapsed_ms, elapsed_ms)
            if slow:
                entry.slow_runs += 1

    def record_gate_rejection(self, reason: str) -> None:
        """Record a scan rejected at the eligibility gate."""
        with self._lock:
            self._gate_rejections[reason] += 1

    def record_scan(self, action: str, budget_exceeded: bool = False) -> None:
        """Record a completed scan and its action."""
        with self._lock:
            self._total_scans += 1
            self._actions[action] += 1
            if budget_exceeded:
                self._budget_overruns += 1

    def record_squatting(self, techniques: list[str]) -> None:
        """Record the techniques of a squatting verdict."""
        with self._lock:
            for technique in techniques:
                self._techniques[technique] += 1

    def get_summary(self) -> dict:
        """Get a summary of all metrics."""
        with self._lock:
            uptime = datetime.now() - self._started
            return {
                "uptime_seconds": int(uptime.total_seconds()),
                "total_scans": self._total_scans,
                "budget_overruns": self._budget_overruns,
                "actions": dict(self._actions),
                "gate_rejections": dict(self._gate_rejections),
                "squatting_techniques": dict(self._techniques),
                "indicators": {
                    name: {
                        "hits": entry.hits,
                        "errors": entry.errors,
                        "slow_runs": entry.slow_runs,
                        "max_elapsed_ms": round(entry.max_elapsed_ms, 1),
                        "unique_hosts": len(entry.hosts),
                        "untracked_host_hits": entry.untracked_host_hits,
                        "last_hit": entry.last_hit.isoformat() if entry.last_hit else None,
                    }
                    for name, entry in self._indicators.items()
                },
            }

    def top_indicators(self, n: int = 5) -> list[dict]:
        """Get top N indicators by hit count."""
        with self._lock:
            ranked = sorted(self._indicators.items(), key=lambda x: x[1].hits, reverse=True)[:n]
            return [{"id": name, "hits": entry.hits} for name, entry in ranked if entry.hits]

    def reset(self) -> None:
        """Reset all metrics (useful for testing)."""
        with self._lock:
            self._indicators.clear()
            self._gate_rejections.clear()
            self._actions.clear()
            self._techniques.clear()
            self._total_scans = 0
            self._budget_overruns = 0
            self._started = datetime.now()


# Global instance
metrics = DetectionMetrics()
