"""
Metrics Collection for the Mapping Tool

Collects and exposes in-memory metrics for:
- Remote calls per endpoint kind (entities, claims, reconcile, search) and failures
- Property cache hits and misses per entry kind (info, constraints)
- Reconciliation outcomes (auto-accepted, with matches, no matches, date input, cached)
- Processing times (average, p95) per stage
"""

from collections import defaultdict
from dataclasses import dataclass, field
from threading import Lock
from typing import Dict, List, Optional, Any
import statistics


# =============================================================================
# Metric Data Classes
# =============================================================================

@dataclass
class RemoteCallMetrics:
    """Metrics for calls to external services."""
    calls: int = 0
    failures: int = 0
    retries: int = 0

    # By endpoint kind
    by_endpoint: Dict[str, Dict[str, int]] = field(default_factory=lambda: defaultdict(lambda: {"calls": 0, "failures": 0, "retries": 0}))


@dataclass
class CacheMetrics:
    """Metrics for the property knowledge cache."""
    hits: int = 0
    misses: int = 0
    evictions: int = 0

    by_kind: Dict[str, Dict[str, int]] = field(default_factory=lambda: defaultdict(lambda: {"hits": 0, "misses": 0, "evictions": 0}))


@dataclass
class TimingMetrics:
    """Processing time metrics."""
    samples: List[float] = field(default_factory=list)
    max_samples: int = 1000

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
    Thread-safe metrics collector.

    Usage:
        metrics = MetricsCollector.instance()
        metrics.record_remote_call("reconcile_primary")
        metrics.record_cache_hit("info")
        metrics.record_outcome("auto_accepted")
    """

    _instance: Optional["MetricsCollector"] = None
    _lock = Lock()

    def __init__(self):
        self.remote = RemoteCallMetrics()
        self.cache = CacheMetrics()
        self.outcomes: Dict[str, int] = defaultdict(int)
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
    # Remote Calls
    # =========================================================================

    def record_remote_call(self, endpoint: str):
        with self._lock:
            self.remote.calls += 1
            self.remote.by_endpoint[endpoint]["calls"] += 1

    def record_remote_failure(self, endpoint: str):
        with self._lock:
            self.remote.failures += 1
            self.remote.by_endpoint[endpoint]["failures"] += 1

    def record_remote_retry(self, endpoint: str):
        with self._lock:
            self.remote.retries += 1
            self.remote.by_endpoint[endpoint]["retries"] += 1

    # =========================================================================
    # Cache
    # =========================================================================

    def record_cache_hit(self, kind: str):
        with self._lock:
            self.cache.hits += 1
            self.cache.by_kind[kind]["hits"] += 1

    def record_cache_miss(self, kind: str):
        with self._lock:
            self.cache.misses += 1
            self.cache.by_kind[kind]["misses"] += 1

    def record_cache_eviction(self, kind: str):
        with self._lock:
            self.cache.evictions += 1
            self.cache.by_kind[kind]["evictions"] += 1

    # =========================================================================
    # Reconciliation Outcomes
    # =========================================================================

    def record_outcome(self, outcome: str):
        with self._lock:
            self.outcomes[outcome] += 1

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
                "remote": {
                    "calls": self.remote.calls,
                    "failures": self.remote.failures,
                    "retries": self.remote.retries,
                    "by_endpoint": {k: dict(v) for k, v in self.remote.by_endpoint.items()},
                },
                "cache": {
                    "hits": self.cache.hits,
                    "misses": self.cache.misses,
                    "evictions": self.cache.evictions,
                    "by_kind": {k: dict(v) for k, v in self.cache.by_kind.items()},
                },
                "outcomes": dict(self.outcomes),
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


def record_remote_call(endpoint: str):
    get_metrics().record_remote_call(endpoint)


def record_remote_failure(endpoint: str):
    get_metrics().record_remote_failure(endpoint)


def record_cache_hit(kind: str):
    get_metrics().record_cache_hit(kind)


def record_cache_miss(kind: str):
    get_metrics().record_cache_miss(kind)


def record_outcome(outcome: str):
    get_metrics().record_outcome(outcome)


def record_processing_time(stage: str, duration_ms: float):
    """Record a processing time sample."""
    get_metrics().record_processing_time(stage, duration_ms)
