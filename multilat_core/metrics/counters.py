"""
Metrics counters and histograms implementation.

Provides thread-safe counters for:
- Solve counts (attempts, successes, failures)
- Drop reasons (singular subsets, missing consensus, refinement failures)
- Histograms (iterations, inlier ratio, refinement iterations, residuals)

Every soft failure absorbed by a solver records a drop reason, so degraded
results stay observable.
"""

import logging
import threading
import time
from typing import Deque, Dict, List, Optional
from dataclasses import dataclass
from collections import defaultdict, deque
import statistics

logger = logging.getLogger(__name__)


@dataclass
class CounterSnapshot:
    """Snapshot of counter state at a point in time."""

    timestamp: float
    counters: Dict[str, int]
    drop_reasons: Dict[str, int]
    histograms: Dict[str, List[float]]

    def total_dropped(self) -> int:
        """Total drop events across all reasons."""
        return sum(self.drop_reasons.values())

    def failure_rate(self) -> float:
        """Percentage of solve attempts that raised EstimationFailure."""
        attempts = self.counters.get('solve_attempts', 0)
        if attempts == 0:
            return 0.0
        return (self.counters.get('solve_failures', 0) / attempts) * 100.0


class MetricsCollector:
    """
    Thread-safe metrics collection.

    Usage:
        collector = MetricsCollector()
        collector.increment('solve_attempts')
        collector.increment_drop('singular_subset')
        collector.record_histogram('solve_iterations', 42)

        snapshot = collector.snapshot()
        print(f"Total dropped: {snapshot.total_dropped()}")
    """

    # Standard drop reason codes
    DROP_REASONS = {
        'singular_subset': 'Preliminary subset was numerically singular',
        'no_consensus': 'Robust loop found no valid consensus',
        'insufficient_inliers': 'Too few inliers to refine the consensus',
        'refinement_failed': 'Nonlinear refinement did not converge',
        'covariance_failed': 'Covariance could not be inverted or was not PSD',
        'preliminary_refinement_failed': 'Nonlinear polish of a subset solution failed',
    }

    HISTOGRAM_CAPACITY = 10000

    def __init__(self, histogram_capacity: int = HISTOGRAM_CAPACITY):
        """
        Initialize metrics collector.

        Args:
            histogram_capacity: Most recent values kept per histogram
        """
        self._lock = threading.Lock()
        self._counters: Dict[str, int] = defaultdict(int)
        self._drop_reasons: Dict[str, int] = defaultdict(int)
        self._histograms: Dict[str, Deque[float]] = defaultdict(
            lambda: deque(maxlen=histogram_capacity)
        )

        # Initialize standard counters to 0 for consistent reporting
        self._init_standard_counters()

    def _init_standard_counters(self):
        """Initialize standard counter keys."""
        standard_counters = [
            'solve_attempts',
            'solve_successes',
            'solve_failures',
            'preliminary_solutions',
            'refinements',
            'covariances_computed',
        ]

        with self._lock:
            for counter in standard_counters:
                if counter not in self._counters:
                    self._counters[counter] = 0

            for reason in self.DROP_REASONS:
                if reason not in self._drop_reasons:
                    self._drop_reasons[reason] = 0

    def increment(self, counter_name: str, value: int = 1):
        """
        Increment a counter by value.

        Args:
            counter_name: Name of counter to increment
            value: Amount to increment (default 1)
        """
        with self._lock:
            self._counters[counter_name] += value

    def increment_drop(self, reason: str, value: int = 1):
        """
        Increment drop counter for specific reason.

        Args:
            reason: Drop reason code (should be in DROP_REASONS)
            value: Amount to increment (default 1)
        """
        if reason not in self.DROP_REASONS:
            # Still counted, but flagged so new codes get registered
            logger.warning("Unknown drop reason '%s'", reason)

        with self._lock:
            self._drop_reasons[reason] += value
            self._counters['dropped_total'] += value

    def get_counter(self, counter_name: str) -> int:
        """Get current value of a counter (0 if never incremented)."""
        with self._lock:
            return self._counters.get(counter_name, 0)

    def get_drop_count(self, reason: str) -> int:
        """Get current count for a drop reason."""
        with self._lock:
            return self._drop_reasons.get(reason, 0)

    def record_histogram(self, histogram_name: str, value: float):
        """
        Record a value in a histogram.

        Only the most recent histogram_capacity values are kept per histogram.
        """
        with self._lock:
            self._histograms[histogram_name].append(float(value))

    def get_histogram_stats(self, histogram_name: str) -> Optional[Dict[str, float]]:
        """
        Get statistics for a histogram.

        Returns:
            Dict with count, min, max, mean, median, p95 and p99,
            or None if the histogram is empty
        """
        with self._lock:
            values = list(self._histograms.get(histogram_name, ()))

        if not values:
            return None

        if len(values) == 1:
            p95 = p99 = values[0]
        else:
            cuts = statistics.quantiles(values, n=100, method='inclusive')
            p95, p99 = cuts[94], cuts[98]

        return {
            'count': len(values),
            'min': min(values),
            'max': max(values),
            'mean': statistics.fmean(values),
            'median': statistics.median(values),
            'p95': p95,
            'p99': p99,
        }

    def snapshot(self) -> CounterSnapshot:
        """Get a snapshot with copies of all metrics."""
        with self._lock:
            counters = dict(self._counters)
            drop_reasons = dict(self._drop_reasons)
            histograms = {name: list(values) for name, values in self._histograms.items()}
        return CounterSnapshot(time.time(), counters, drop_reasons, histograms)

    def reset(self):
        """Reset all metrics (useful for testing)."""
        with self._lock:
            self._counters.clear()
            self._drop_reasons.clear()
            self._histograms.clear()
        self._init_standard_counters()

    def format_summary(self) -> str:
        """Human-readable metrics summary (printed by main.py --stats)."""
        snapshot = self.snapshot()
        rule = "=" * 70

        lines = [rule, f"  SOLVER METRICS (failure rate: {snapshot.failure_rate():.1f}%)", rule]

        lines.append("COUNTERS:")
        lines.extend(
            f"  {name:30s}: {value:8d}" for name, value in sorted(snapshot.counters.items())
        )

        total_dropped = snapshot.total_dropped()
        if total_dropped:
            lines.append("DROP REASONS:")
            for reason, count in sorted(snapshot.drop_reasons.items()):
                if count:
                    share = 100.0 * count / total_dropped
                    lines.append(f"  {reason:30s}: {count:8d} ({share:5.1f}%)")

        stats = {name: self.get_histogram_stats(name) for name in sorted(snapshot.histograms)}
        stats = {name: s for name, s in stats.items() if s}
        if stats:
            lines.append("HISTOGRAMS:")
            for name, s in stats.items():
                lines.append(
                    f"  {name:30s}: n={s['count']} mean={s['mean']:.4g} "
                    f"median={s['median']:.4g} max={s['max']:.4g}"
                )

        lines.append(rule)
        return "\n".join(lines)
