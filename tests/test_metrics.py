"""
Unit tests for metrics module.

Tests cover:
- Counter increment (single-threaded and multi-threaded)
- Drop reason tracking and unknown reason warnings
- Histogram recording and statistics
- Snapshot, failure rate and reset functionality
- Summary formatting
"""

import logging
import threading
import time

import pytest

from multilat_core.metrics import MetricsCollector, get_metrics, reset_metrics
from multilat_core.metrics.counters import CounterSnapshot


class TestMetricsCollectorBasic:
    """Tests for basic metrics collector functionality."""

    def test_initialization(self):
        """Test that standard solver counters start at 0."""
        collector = MetricsCollector()

        assert collector.get_counter('solve_attempts') == 0
        assert collector.get_counter('refinements') == 0
        assert collector.get_counter('unknown_counter') == 0

    def test_increment_counter(self):
        """Test incrementing a counter."""
        collector = MetricsCollector()

        collector.increment('solve_attempts')
        assert collector.get_counter('solve_attempts') == 1

        collector.increment('solve_attempts', 5)
        assert collector.get_counter('solve_attempts') == 6

    def test_increment_drop_with_valid_reason(self):
        """Test incrementing drop counter with a standard reason."""
        collector = MetricsCollector()

        collector.increment_drop('singular_subset')

        assert collector.get_counter('dropped_total') == 1
        assert collector.get_drop_count('singular_subset') == 1

    def test_increment_drop_unknown_reason(self, caplog):
        """Test unknown drop reason logs a warning but is still counted."""
        collector = MetricsCollector()

        with caplog.at_level(logging.WARNING, logger='multilat_core.metrics.counters'):
            collector.increment_drop('mystery')

        assert 'mystery' in caplog.text
        assert collector.get_drop_count('mystery') == 1
        assert collector.get_counter('dropped_total') == 1

    def test_multiple_drop_reasons(self):
        """Test tracking multiple drop reasons."""
        collector = MetricsCollector()

        collector.increment_drop('singular_subset', 3)
        collector.increment_drop('refinement_failed', 2)

        snapshot = collector.snapshot()
        assert snapshot.drop_reasons['singular_subset'] == 3
        assert snapshot.drop_reasons['refinement_failed'] == 2
        assert snapshot.total_dropped() == 5


class TestHistograms:
    """Tests for histogram functionality."""

    def test_record_histogram(self):
        """Test recording values in histogram."""
        collector = MetricsCollector()

        for value in (12, 30, 18):
            collector.record_histogram('solve_iterations', value)

        stats = collector.get_histogram_stats('solve_iterations')
        assert stats['count'] == 3
        assert stats['mean'] == pytest.approx(20.0)
        assert stats['min'] == 12.0
        assert stats['max'] == 30.0

    def test_histogram_empty(self):
        """Test getting stats for empty histogram."""
        assert MetricsCollector().get_histogram_stats('nonexistent') is None

    def test_histogram_percentiles(self):
        """Test histogram percentile calculations."""
        collector = MetricsCollector()
        for i in range(100):
            collector.record_histogram('inlier_ratio', i / 100.0)

        stats = collector.get_histogram_stats('inlier_ratio')
        assert 0.49 < stats['median'] < 0.51
        assert 0.94 < stats['p95'] < 0.96
        assert 0.98 < stats['p99'] < 1.0

    def test_histogram_capacity_bounded(self):
        """Test that histograms keep only the most recent values."""
        collector = MetricsCollector(histogram_capacity=1000)
        for i in range(15000):
            collector.record_histogram('residual_rms', float(i))

        values = collector.snapshot().histograms['residual_rms']
        assert len(values) == 1000
        assert values[0] == 14000.0
        assert collector.get_histogram_stats('residual_rms')['min'] == 14000.0

    def test_histogram_single_value(self):
        """Test that one value is its own percentile."""
        collector = MetricsCollector()
        collector.record_histogram('solve_iterations', 9)

        stats = collector.get_histogram_stats('solve_iterations')
        assert stats['p95'] == stats['p99'] == stats['median'] == 9.0


class TestSnapshot:
    """Tests for snapshot functionality."""

    def test_snapshot_creates_copy(self):
        """Test that snapshot creates independent copy."""
        collector = MetricsCollector()

        collector.increment('solve_attempts', 10)
        snapshot1 = collector.snapshot()
        collector.increment('solve_attempts', 5)
        snapshot2 = collector.snapshot()

        assert snapshot1.counters['solve_attempts'] == 10
        assert snapshot2.counters['solve_attempts'] == 15

    def test_snapshot_timestamp(self):
        """Test snapshot includes timestamp."""
        before = time.time()
        snapshot = MetricsCollector().snapshot()
        after = time.time()

        assert before <= snapshot.timestamp <= after

    def test_failure_rate(self):
        """Test failure rate from attempts and failures."""
        snapshot = CounterSnapshot(
            timestamp=0.0,
            counters={'solve_attempts': 8, 'solve_failures': 2},
            drop_reasons={},
            histograms={},
        )
        assert snapshot.failure_rate() == pytest.approx(25.0)

    def test_failure_rate_without_attempts(self):
        """Test failure rate is 0 before any solve."""
        assert MetricsCollector().snapshot().failure_rate() == 0.0


class TestReset:
    """Tests for reset functionality."""

    def test_reset_clears_counters(self):
        """Test that reset clears all counters and keeps standard keys."""
        collector = MetricsCollector()

        collector.increment('solve_attempts', 100)
        collector.increment_drop('no_consensus', 5)
        collector.record_histogram('solve_iterations', 3)
        collector.reset()

        snapshot = collector.snapshot()
        assert snapshot.counters['solve_attempts'] == 0
        assert snapshot.total_dropped() == 0
        assert not snapshot.histograms
        for reason in collector.DROP_REASONS:
            assert snapshot.drop_reasons[reason] == 0


class TestThreadSafety:
    """Tests for thread-safe operations."""

    def test_concurrent_increment(self):
        """Test that concurrent increments are thread-safe."""
        collector = MetricsCollector()

        def worker():
            for _ in range(1000):
                collector.increment('preliminary_solutions')
                collector.increment_drop('singular_subset')

        threads = [threading.Thread(target=worker) for _ in range(10)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert collector.get_counter('preliminary_solutions') == 10000
        assert collector.get_drop_count('singular_subset') == 10000


class TestGlobalSingleton:
    """Tests for global metrics singleton."""

    def test_get_metrics_returns_same_instance(self):
        """Test that get_metrics() returns the same instance."""
        assert get_metrics() is get_metrics()

    def test_reset_metrics_creates_new_instance(self):
        """Test that reset_metrics() creates fresh instance."""
        get_metrics().increment('solve_attempts', 100)
        reset_metrics()
        assert get_metrics().get_counter('solve_attempts') == 0


class TestSummary:
    """Tests for summary formatting."""

    def test_format_summary(self):
        """Test that the summary lists counters, drops and histograms."""
        collector = MetricsCollector()
        collector.increment('solve_attempts', 4)
        collector.increment('solve_failures', 1)
        collector.increment_drop('covariance_failed')
        collector.record_histogram('solve_iterations', 7)

        summary = collector.format_summary()

        assert 'SOLVER METRICS' in summary
        assert 'failure rate: 25.0%' in summary
        assert 'covariance_failed' in summary
        assert 'solve_iterations' in summary

    def test_format_summary_histogram_line(self):
        """Test that each histogram reports count, mean, median and max."""
        collector = MetricsCollector()
        for value in (2, 4, 9):
            collector.record_histogram('solve_iterations', value)

        lines = [line for line in collector.format_summary().splitlines()
                 if 'solve_iterations' in line]

        assert len(lines) == 1
        assert 'n=3' in lines[0]
        assert 'median=4' in lines[0]
        assert 'max=9' in lines[0]
