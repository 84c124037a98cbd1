"""
Diagnostics counters for the field devices and result delivery.

Three kinds of figures are kept:

    counters         edm_reads, throws_measured, results_cached, ...
    failure reasons  one per failed transaction or refused reading
    histograms       edm_pair_delta_mm, edge_difference_mm, round_trip_s

Failure reasons and histograms are closed sets; recording an unknown one is a
programming error and raises ValueError.
"""

import logging
import threading
import time
from collections import defaultdict, deque
from dataclasses import dataclass
from enum import Enum
from typing import Deque, Dict, List, Optional, Union

import numpy as np

logger = logging.getLogger(__name__)

HISTOGRAM_CAPACITY = 1000


class FailureReason(str, Enum):
    TIMEOUT = "timeout"
    PROTOCOL_ERROR = "protocol_error"
    CHECKSUM_MISMATCH = "checksum_mismatch"
    HANDSHAKE_FAILED = "handshake_failed"
    TOLERANCE_EXCEEDED = "tolerance_exceeded"
    CALIBRATION_REFUSED = "calibration_refused"
    SUBMISSION_FAILED = "submission_failed"
    CONNECTION_FAILED = "connection_failed"


class Histogram(str, Enum):
    EDM_PAIR_DELTA_MM = "edm_pair_delta_mm"
    EDGE_DIFFERENCE_MM = "edge_difference_mm"
    ROUND_TRIP_S = "round_trip_s"

    @property
    def unit(self) -> str:
        return "s" if self is Histogram.ROUND_TRIP_S else "mm"


STANDARD_COUNTERS = (
    'edm_reads',
    'wind_reads',
    'scoreboard_frames',
    'reliable_readings',
    'throws_measured',
    'results_submitted',
    'results_cached',
    'cache_flushes',
)


@dataclass(frozen=True)
class HistogramStats:
    count: int
    minimum: float
    maximum: float
    mean: float
    p95: float


@dataclass
class CounterSnapshot:
    """Copy of the collector state at `timestamp`."""

    timestamp: float
    counters: Dict[str, int]
    failure_reasons: Dict[FailureReason, int]
    histograms: Dict[Histogram, List[float]]

    def total_failures(self) -> int:
        return sum(self.failure_reasons.values())


class MetricsCollector:
    """
    Thread-safe diagnostics collector.

    Usage:
        metrics = MetricsCollector()
        metrics.increment('edm_reads')
        metrics.increment_failure('timeout')
        metrics.record_histogram('round_trip_s', 0.42)
    """

    def __init__(self, histogram_capacity: int = HISTOGRAM_CAPACITY):
        self._lock = threading.Lock()
        self._capacity = histogram_capacity
        self._started = time.monotonic()
        self._counters: Dict[str, int] = defaultdict(int)
        self._failures: Dict[FailureReason, int] = {}
        self._histograms: Dict[Histogram, Deque[float]] = {}
        self._clear()

    def _clear(self):
        self._counters.clear()
        self._counters.update({name: 0 for name in STANDARD_COUNTERS})
        self._failures = {reason: 0 for reason in FailureReason}
        self._histograms = {name: deque(maxlen=self._capacity) for name in Histogram}

    def increment(self, counter_name: str, value: int = 1):
        with self._lock:
            self._counters[counter_name] += value

    def increment_failure(self, reason: Union[FailureReason, str], value: int = 1):
        """
        Count a failure against one reason code.

        Raises:
            ValueError: `reason` is not a FailureReason
        """
        reason = FailureReason(reason)
        with self._lock:
            self._failures[reason] += value
            self._counters['failures'] += value
        logger.debug("Failure counted: %s", reason.value)

    def get_counter(self, counter_name: str) -> int:
        with self._lock:
            return self._counters.get(counter_name, 0)

    def get_failures(self, reason: Union[FailureReason, str]) -> int:
        with self._lock:
            return self._failures[FailureReason(reason)]

    def record_histogram(self, name: Union[Histogram, str], value: float):
        """Add a sample; only the most recent `histogram_capacity` are kept."""
        histogram = Histogram(name)
        with self._lock:
            self._histograms[histogram].append(float(value))

    def get_histogram_stats(self, name: Union[Histogram, str]) -> Optional[HistogramStats]:
        with self._lock:
            samples = np.array(self._histograms[Histogram(name)], dtype=float)
        if samples.size == 0:
            return None
        return HistogramStats(
            count=int(samples.size),
            minimum=float(samples.min()),
            maximum=float(samples.max()),
            mean=float(samples.mean()),
            p95=float(np.percentile(samples, 95)),
        )

    def snapshot(self) -> CounterSnapshot:
        with self._lock:
            return CounterSnapshot(
                timestamp=time.time(),
                counters=dict(self._counters),
                failure_reasons=dict(self._failures),
                histograms={name: list(samples) for name, samples in self._histograms.items()},
            )

    def reset(self):
        with self._lock:
            self._clear()
            self._started = time.monotonic()

    def format_summary(self) -> str:
        """Session diagnostics as printed by `main.py --metrics`."""
        snapshot = self.snapshot()
        uptime = time.monotonic() - self._started
        lines = [f"Diagnostics after {uptime:.1f}s"]
        lines.extend(f"  {name:<20} {value:>6d}" for name, value in sorted(snapshot.counters.items()))

        failed = {reason: count for reason, count in snapshot.failure_reasons.items() if count}
        if failed:
            lines.append("Failures:")
            lines.extend(f"  {reason.value:<20} {count:>6d}" for reason, count in failed.items())

        for histogram in Histogram:
            stats = self.get_histogram_stats(histogram)
            if stats is None:
                continue
            lines.append(
                f"  {histogram.value:<20} n={stats.count} mean={stats.mean:.3f}{histogram.unit} "
                f"p95={stats.p95:.3f}{histogram.unit} max={stats.maximum:.3f}{histogram.unit}"
            )
        return "\n".join(lines)
