"""
Search and Embedding Metrics for ContextVault

Thread-safe, in-memory counters for:
- Searches by type (text, vector, hybrid, similar)
- Degraded (lexical-only fallback) hybrid searches
- Embedding computations dispatched, joined and failed
- Search latency

Usage:
    from core.metrics import get_search_metrics, Timer

    metrics = get_search_metrics()

    with Timer() as t:
        results = service.hybrid_search("react hooks", scope="user-1")
    metrics.record_search("hybrid", len(results), t.duration_ms)

    summary = metrics.get_summary()
"""

import statistics
import threading
import time
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

MAX_LATENCY_SAMPLES = 10000


@dataclass
class SearchTypeStats:
    """Aggregate counters for one search type."""
    count: int = 0
    results_returned: int = 0
    empty_results: int = 0
    degraded: int = 0
    latencies_ms: List[float] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        latencies = self.latencies_ms
        return {
            "count": self.count,
            "results_returned": self.results_returned,
            "empty_results": self.empty_results,
            "degraded": self.degraded,
            "avg_latency_ms": statistics.fmean(latencies) if latencies else 0.0,
            "p50_latency_ms": statistics.median(latencies) if latencies else 0.0,
            "max_latency_ms": max(latencies) if latencies else 0.0,
        }


class SearchMetrics:
    """
    Thread-safe metrics collection for searches and embedding work.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._started_at = datetime.now()
        self._searches: Dict[str, SearchTypeStats] = defaultdict(SearchTypeStats)
        self._embeddings = {
            "dispatched": 0,
            "joined": 0,
            "failed": 0,
            "skipped": 0,
        }
        self._error_counts: Dict[str, int] = defaultdict(int)

    def record_search(
        self,
        search_type: str,
        results_count: int,
        latency_ms: float,
        degraded: bool = False
    ):
        """
        Record a completed search.

        Args:
            search_type: text, vector, hybrid or similar
            results_count: Number of results returned
            latency_ms: Wall time in milliseconds
            degraded: Whether the vector signal was unavailable
        """
        with self._lock:
            stats = self._searches[search_type]
            stats.count += 1
            stats.results_returned += results_count
            if results_count == 0:
                stats.empty_results += 1
            if degraded:
                stats.degraded += 1

            stats.latencies_ms.append(latency_ms)
            if len(stats.latencies_ms) > MAX_LATENCY_SAMPLES:
                stats.latencies_ms = stats.latencies_ms[-MAX_LATENCY_SAMPLES // 2:]

    def record_embedding(self, outcome: str):
        """Record an embedding outcome: dispatched, joined, failed or skipped."""
        with self._lock:
            if outcome not in self._embeddings:
                raise ValueError(f"Unknown embedding outcome: {outcome}")
            self._embeddings[outcome] += 1

    def record_error(self, error_type: str):
        """Record an error by type."""
        with self._lock:
            self._error_counts[error_type] += 1

    def get_summary(self) -> Dict[str, Any]:
        """Snapshot of all counters."""
        with self._lock:
            total = sum(s.count for s in self._searches.values())
            return {
                "since": self._started_at.isoformat(),
                "total_searches": total,
                "searches": {name: s.to_dict() for name, s in self._searches.items()},
                "embeddings": dict(self._embeddings),
                "errors": dict(self._error_counts),
            }


class Timer:
    """
    Context manager measuring wall time in milliseconds.

    Usage:
        with Timer() as t:
            do_work()
        print(t.duration_ms)
    """

    def __init__(self):
        self.start_time: Optional[float] = None
        self.duration_ms: float = 0.0

    def __enter__(self) -> 'Timer':
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.duration_ms = (time.perf_counter() - self.start_time) * 1000
        return False


# =============================================================================
# Global Instance
# =============================================================================

_metrics: Optional[SearchMetrics] = None
_metrics_lock = threading.Lock()


def get_search_metrics() -> SearchMetrics:
    """Get the process-wide metrics instance."""
    global _metrics
    with _metrics_lock:
        if _metrics is None:
            _metrics = SearchMetrics()
        return _metrics


def reset_search_metrics():
    """Discard the process-wide metrics instance."""
    global _metrics
    with _metrics_lock:
        _metrics = None
