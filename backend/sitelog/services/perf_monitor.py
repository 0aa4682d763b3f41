"""Timing and cache counters for analytics report computations."""
import time
import logging
import threading
import functools
from typing import Any, Callable, Dict

logger = logging.getLogger("sitelog-analytics.perf")


class ReportStats:
    """Running count, total and maximum for one report; constant size."""

    __slots__ = ("count", "total_ms", "max_ms")

    def __init__(self) -> None:
        self.count = 0
        self.total_ms = 0.0
        self.max_ms = 0.0

    def add(self, duration_ms: float) -> None:
        self.count += 1
        self.total_ms += duration_ms
        self.max_ms = max(self.max_ms, duration_ms)

    @property
    def avg_ms(self) -> float:
        return self.total_ms / self.count if self.count else 0.0


def timed(report_name: str) -> Callable:
    """
    Decorator that times a report computation, logs it at DEBUG and records
    it on the module tracker.

    Usage::

        @timed("period_comparison")
        def compare_periods(...):
            ...
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            start = time.perf_counter()
            try:
                return func(*args, **kwargs)
            finally:
                duration_ms = round((time.perf_counter() - start) * 1000, 2)
                tracker.record_report(report_name, duration_ms)
                logger.debug(
                    "report computed",
                    extra={"report": report_name, "duration_ms": duration_ms},
                )
        return wrapper
    return decorator


class ReportMetricsTracker:
    """
    Thread-safe in-memory counters.

    Tracks:
    - Computation count, average and maximum duration per report
    - Slowest report seen
    - Cache hits, misses and invalidations
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._stats: Dict[str, ReportStats] = {}
        self._slowest_report = None
        self._slowest_report_ms: float = 0.0
        self._cache_hits: int = 0
        self._cache_misses: int = 0
        self._invalidations: int = 0

    # ------------------------------------------------------------------
    # Write API
    # ------------------------------------------------------------------

    def record_report(self, report_name: str, duration_ms: float) -> None:
        with self._lock:
            self._stats.setdefault(report_name, ReportStats()).add(duration_ms)
            if duration_ms > self._slowest_report_ms:
                self._slowest_report_ms = duration_ms
                self._slowest_report = report_name

    def record_cache_hit(self) -> None:
        with self._lock:
            self._cache_hits += 1

    def record_cache_miss(self) -> None:
        with self._lock:
            self._cache_misses += 1

    def record_invalidation(self) -> None:
        with self._lock:
            self._invalidations += 1

    # ------------------------------------------------------------------
    # Read API
    # ------------------------------------------------------------------

    def get_metrics(self) -> Dict[str, Any]:
        """
        Snapshot of all counters.

        Returns
        -------
        dict with keys:
            reports_computed     : int
            report_avg_ms        : dict  {report_name: avg_ms}
            report_max_ms        : dict  {report_name: max_ms}
            slowest_report       : str | None
            slowest_report_ms    : float
            cache_hits           : int
            cache_misses         : int
            cache_hit_rate_pct   : float (0 when the cache was never consulted)
            cache_invalidations  : int
        """
        with self._lock:
            lookups = self._cache_hits + self._cache_misses
            return {
                "reports_computed": sum(s.count for s in self._stats.values()),
                "report_avg_ms": {name: round(s.avg_ms, 2) for name, s in self._stats.items()},
                "report_max_ms": {name: round(s.max_ms, 2) for name, s in self._stats.items()},
                "slowest_report": self._slowest_report,
                "slowest_report_ms": round(self._slowest_report_ms, 2),
                "cache_hits": self._cache_hits,
                "cache_misses": self._cache_misses,
                "cache_hit_rate_pct": round(self._cache_hits / lookups * 100, 2) if lookups else 0.0,
                "cache_invalidations": self._invalidations,
            }

    def reset(self) -> None:
        """Reset all counters (useful in tests)."""
        with self._lock:
            self._stats.clear()
            self._slowest_report = None
            self._slowest_report_ms = 0.0
            self._cache_hits = 0
            self._cache_misses = 0
            self._invalidations = 0


# Module-level singleton shared by the decorator and the metrics route.
tracker = ReportMetricsTracker()
