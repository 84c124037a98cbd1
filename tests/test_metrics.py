"""
Unit tests for the diagnostics collector.

Tests cover:
- Standard counters and failure reasons
- Closed sets of failure reasons and histograms
- Bounded histograms and their statistics
- Snapshot, reset and the printed summary
- Thread safety
"""

import threading

import pytest

from polyfield_core.metrics import (
    FailureReason,
    Histogram,
    MetricsCollector,
    get_metrics,
    reset_metrics,
)


class TestCounters:
    """Tests for plain counters."""

    def test_standard_counters_start_at_zero(self):
        snapshot = MetricsCollector().snapshot()

        for name in ('edm_reads', 'wind_reads', 'scoreboard_frames', 'throws_measured',
                     'results_submitted', 'results_cached', 'cache_flushes'):
            assert snapshot.counters[name] == 0

    def test_increment(self):
        collector = MetricsCollector()
        collector.increment('edm_reads')
        collector.increment('edm_reads', 5)
        assert collector.get_counter('edm_reads') == 6

    def test_unknown_counter_reads_zero(self):
        assert MetricsCollector().get_counter('never_counted') == 0


class TestFailureReasons:
    """Tests for failure reason accounting."""

    def test_every_reason_starts_at_zero(self):
        collector = MetricsCollector()
        assert {reason: collector.get_failures(reason) for reason in FailureReason} == {
            reason: 0 for reason in FailureReason
        }

    def test_string_and_enum_count_the_same_reason(self):
        collector = MetricsCollector()
        collector.increment_failure('timeout')
        collector.increment_failure(FailureReason.TIMEOUT, 2)

        assert collector.get_failures(FailureReason.TIMEOUT) == 3
        assert collector.get_counter('failures') == 3

    def test_unknown_reason_rejected(self):
        collector = MetricsCollector()

        with pytest.raises(ValueError):
            collector.increment_failure('cable_chewed_by_dog')
        assert collector.get_counter('failures') == 0

    def test_total_failures(self):
        collector = MetricsCollector()
        collector.increment_failure('checksum_mismatch', 5)
        collector.increment_failure('tolerance_exceeded', 2)
        assert collector.snapshot().total_failures() == 7


class TestHistograms:
    """Tests for the three diagnostic histograms."""

    def test_stats(self):
        collector = MetricsCollector()
        for delta in (1.0, 2.5, 0.5):
            collector.record_histogram('edm_pair_delta_mm', delta)

        stats = collector.get_histogram_stats(Histogram.EDM_PAIR_DELTA_MM)

        assert stats.count == 3
        assert stats.mean == pytest.approx(4.0 / 3.0)
        assert (stats.minimum, stats.maximum) == (0.5, 2.5)

    def test_p95(self):
        collector = MetricsCollector()
        for i in range(101):
            collector.record_histogram('round_trip_s', i / 100.0)
        assert collector.get_histogram_stats('round_trip_s').p95 == pytest.approx(0.95)

    def test_empty_histogram(self):
        assert MetricsCollector().get_histogram_stats('edge_difference_mm') is None

    def test_unknown_histogram_rejected(self):
        with pytest.raises(ValueError):
            MetricsCollector().record_histogram('wind_gust_ms', 3.0)

    def test_keeps_most_recent_samples(self):
        collector = MetricsCollector(histogram_capacity=10)
        for i in range(25):
            collector.record_histogram('edge_difference_mm', float(i))

        samples = collector.snapshot().histograms[Histogram.EDGE_DIFFERENCE_MM]
        assert samples == [float(i) for i in range(15, 25)]

    def test_units(self):
        assert Histogram.ROUND_TRIP_S.unit == "s"
        assert Histogram.EDGE_DIFFERENCE_MM.unit == "mm"


class TestSnapshotAndReset:
    """Tests for copies and reset."""

    def test_snapshot_is_a_copy(self):
        collector = MetricsCollector()
        collector.increment('wind_reads', 10)
        first = collector.snapshot()
        collector.increment('wind_reads', 5)

        assert first.counters['wind_reads'] == 10
        assert collector.snapshot().counters['wind_reads'] == 15

    def test_reset(self):
        collector = MetricsCollector()
        collector.increment('edm_reads', 100)
        collector.increment_failure('timeout', 5)
        collector.record_histogram('round_trip_s', 1.23)

        collector.reset()

        snapshot = collector.snapshot()
        assert snapshot.counters['edm_reads'] == 0
        assert snapshot.total_failures() == 0
        assert collector.get_histogram_stats('round_trip_s') is None

    def test_global_collector(self):
        get_metrics().increment('edm_reads', 100)
        reset_metrics()
        assert get_metrics() is get_metrics()
        assert get_metrics().get_counter('edm_reads') == 0


class TestThreadSafety:
    """Concurrent workers counting into one collector."""

    def test_concurrent_counts(self):
        collector = MetricsCollector()

        def worker(reason):
            for _ in range(500):
                collector.increment('edm_reads')
                collector.increment_failure(reason)

        threads = [
            threading.Thread(target=worker, args=(reason,))
            for reason in ('timeout', 'protocol_error', 'checksum_mismatch')
            for _ in range(4)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert collector.get_counter('edm_reads') == 6000
        assert collector.get_failures('timeout') == 2000
        assert collector.get_counter('failures') == 6000


class TestSummary:
    """Tests for the --metrics printout."""

    def test_lists_counters_failures_and_histograms(self):
        collector = MetricsCollector()
        collector.increment('edm_reads', 4)
        collector.increment_failure('timeout')
        collector.record_histogram('round_trip_s', 0.25)

        summary = collector.format_summary()

        assert summary.startswith("Diagnostics after")
        assert "edm_reads" in summary
        assert "Failures:" in summary
        assert "timeout" in summary
        assert "n=1 mean=0.250s" in summary

    def test_quiet_session_has_no_failure_section(self):
        assert "Failures:" not in MetricsCollector().format_summary()
