"""
Metrics Collection for the commerce sync engine

Collects and exposes metrics for:
- Sync run lifecycle (started, completed, rejected while busy)
- Per-store outcomes (succeeded, failed)
- Records synced per entity type, skipped records, HTTP retries
- Processing times per stage (average, p95)

Metrics are held in-memory for the life of the process.
"""

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import Lock
from typing import Dict, List, Optional, Any
import statistics


# =============================================================================
# Metric Data Classes
# =============================================================================

@dataclass
class SyncRunMetrics:
    """Metrics for sync run execution."""
    started: int = 0
    completed: int = 0
    rejected: int = 0
    in_progress: int = 0
    last_completed_at: Optional[datetime] = None

    # By mode (full / incremental)
    by_mode: Dict[str, Dict[str, int]] = field(default_factory=lambda: defaultdict(lambda: {"started": 0, "completed": 0}))


@dataclass
class StoreMetrics:
    """Metrics for per-store sync outcomes."""
    succeeded: int = 0
    failed: int = 0

    # By store label ("shopify:Acme")
    by_store: Dict[str, Dict[str, int]] = field(default_factory=lambda: defaultdict(lambda: {"succeeded": 0, "failed": 0}))


@dataclass
class RecordMetrics:
    """Record-level counters."""
    synced: Dict[str, int] = field(default_factory=lambda: defaultdict(int))
    skipped: Dict[str, int] = field(default_factory=lambda: defaultdict(int))
    http_retries: int = 0
    aggregation_excluded: int = 0


@dataclass
class TimingMetrics:
    """Processing time metrics."""
    # Raw timing samples (keep last N for percentile calculations)
    samples: List[float] = field(default_factory=list)
    max_samples: int = 1000

    # By stage
    by_stage: Dict[str, List[float]] = field(default_factory=lambda: defaultdict(list))

    def add_sample(self, duration_ms: float, stage: str = None):
        """Add a timing sample."""
        self.samples.append(duration_ms)
        if len(self.samples) > self.max_samples:
            self.samples = self.samples[-self.max_samples:]

        if stage:
            self.by_stage[stage].append(duration_ms)
            if len(self.by_stage[stage]) > self.max_samples:
                self.by_stage[stage] = self.by_stage[stage][-self.max_samples:]

    def get_average(self, stage: str = None) -> float:
        """Get average processing time."""
        samples = self.by_stage.get(stage, []) if stage else self.samples
        return statistics.mean(samples) if samples else 0.0

    def get_p95(self, stage: str = None) -> float:
        """Get 95th percentile processing time."""
        samples = self.by_stage.get(stage, []) if stage else self.samples
        if not samples:
            return 0.0
        sorted_samples = sorted(samples)
        idx = int(len(sorted_samples) * 0.95)
        return sorted_samples[min(idx, len(sorted_samples) - 1)]


# =============================================================================
# Metrics Collector (Singleton)
# =============================================================================

class MetricsCollector:
    """
    Thread-safe metrics collector for the sync engine.

    Usage:
        metrics = MetricsCollector.instance()
        metrics.record_sync_started("incremental")
        metrics.record_records_synced("orders", 250)
    """

    _instance: Optional["MetricsCollector"] = None
    _lock = Lock()

    def __init__(self):
        self.runs = SyncRunMetrics()
        self.stores = StoreMetrics()
        self.records = RecordMetrics()
        self.timings = TimingMetrics()
        self._lock = Lock()

    @classmethod
    def instance(cls) -> "MetricsCollector":
        """Get singleton instance."""
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = cls()
        return cls._instance

    # =========================================================================
    # Sync Run Metrics
    # =========================================================================

    def record_sync_started(self, mode: str):
        """Record a sync run start."""
        with self._lock:
            self.runs.started += 1
            self.runs.in_progress += 1
            self.runs.by_mode[mode]["started"] += 1

    def record_sync_completed(self, mode: str, duration_ms: float = None):
        """Record a sync run completion."""
        with self._lock:
            self.runs.completed += 1
            self.runs.in_progress = max(0, self.runs.in_progress - 1)
            self.runs.by_mode[mode]["completed"] += 1
            self.runs.last_completed_at = datetime.now(timezone.utc)

            if duration_ms:
                self.timings.add_sample(duration_ms, f"sync.{mode}")

    def record_sync_rejected(self):
        """Record a run rejected because another was in flight."""
        with self._lock:
            self.runs.rejected += 1

    # =========================================================================
    # Store Metrics
    # =========================================================================

    def record_store_outcome(self, store_label: str, succeeded: bool, duration_ms: float = None):
        """Record the outcome of one store within a run."""
        key = "succeeded" if succeeded else "failed"
        with self._lock:
            setattr(self.stores, key, getattr(self.stores, key) + 1)
            self.stores.by_store[store_label][key] += 1

            if duration_ms:
                self.timings.add_sample(duration_ms, f"store.{store_label}")

    # =========================================================================
    # Record Metrics
    # =========================================================================

    def record_records_synced(self, entity: str, count: int):
        """Record persisted records for an entity type."""
        with self._lock:
            self.records.synced[entity] += count

    def record_records_skipped(self, entity: str, count: int = 1):
        """Record records skipped by normalization."""
        with self._lock:
            self.records.skipped[entity] += count

    def record_http_retry(self):
        """Record a retried HTTP request."""
        with self._lock:
            self.records.http_retries += 1

    def record_aggregation_excluded(self, count: int = 1):
        """Record stored records excluded from an aggregate."""
        with self._lock:
            self.records.aggregation_excluded += count

    # =========================================================================
    # Timing Metrics
    # =========================================================================

    def record_processing_time(self, stage: str, duration_ms: float):
        """Record a processing time sample."""
        with self._lock:
            self.timings.add_sample(duration_ms, stage)

    def get_timing_stats(self, stage: str = None) -> Dict[str, float]:
        """Get timing statistics for a stage."""
        with self._lock:
            return {
                "average_ms": self.timings.get_average(stage),
                "p95_ms": self.timings.get_p95(stage),
                "sample_count": len(self.timings.by_stage.get(stage, []) if stage else self.timings.samples),
            }

    # =========================================================================
    # Summary
    # =========================================================================

    def get_summary(self) -> Dict[str, Any]:
        """Get a summary of all metrics."""
        with self._lock:
            return {
                "sync_runs": {
                    "started": self.runs.started,
                    "completed": self.runs.completed,
                    "rejected": self.runs.rejected,
                    "in_progress": self.runs.in_progress,
                    "last_completed_at": self.runs.last_completed_at.isoformat() if self.runs.last_completed_at else None,
                    "by_mode": dict(self.runs.by_mode),
                },
                "stores": {
                    "succeeded": self.stores.succeeded,
                    "failed": self.stores.failed,
                    "by_store": dict(self.stores.by_store),
                },
                "records": {
                    "synced": dict(self.records.synced),
                    "skipped": dict(self.records.skipped),
                    "http_retries": self.records.http_retries,
                    "aggregation_excluded": self.records.aggregation_excluded,
                },
                "timings": {
                    "overall": {
                        "average_ms": self.timings.get_average(),
                        "p95_ms": self.timings.get_p95(),
                    },
                    "by_stage": {
                        stage: {
                            "average_ms": self.timings.get_average(stage),
                            "p95_ms": self.timings.get_p95(stage),
                        }
                        for stage in self.timings.by_stage.keys()
                    },
                },
            }


# =============================================================================
# Module-level convenience functions
# =============================================================================

def get_metrics() -> MetricsCollector:
    """Get the global metrics collector."""
    return MetricsCollector.instance()


def record_processing_time(stage: str, duration_ms: float):
    """Record a processing time sample."""
    get_metrics().record_processing_time(stage, duration_ms)
