"""
Wind averaging over a trailing time window.

Samples are kept in a bounded ring; the reported wind is the mean of the
samples whose timestamps fall inside the window. Both the ring size and the
window length are configuration.
"""

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, List, Optional, Tuple

import numpy as np

from polyfield_core.proto.wind_codec import WindReading

logger = logging.getLogger(__name__)


@dataclass
class WindMonitorConfig:
    """
    Attributes:
        max_samples: Ring size
        window_s: Averaging window (s)
        poll_interval_s: Delay between polls in measure()
    """

    max_samples: int = 120
    window_s: float = 5.0
    poll_interval_s: float = 1.0

    def __post_init__(self):
        if self.max_samples < 1:
            raise ValueError("max_samples must be at least 1")
        if self.window_s <= 0:
            raise ValueError("window_s must be positive")
        if self.poll_interval_s < 0:
            raise ValueError("poll_interval_s must be non-negative")


class WindMonitor:
    """
    Usage:
        monitor = WindMonitor()
        monitor.poll(manager)          # one gauge reading into the ring
        wind = monitor.average()       # None if no sample in the window
    """

    def __init__(
        self,
        config: Optional[WindMonitorConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config or WindMonitorConfig()
        self._clock = clock
        self._samples: Deque[Tuple[float, WindReading]] = deque(maxlen=self.config.max_samples)
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._samples)

    def add(self, reading: WindReading, timestamp: Optional[float] = None):
        with self._lock:
            self._samples.append((self._clock() if timestamp is None else timestamp, reading))

    def clear(self):
        with self._lock:
            self._samples.clear()

    def latest(self) -> Optional[WindReading]:
        with self._lock:
            return self._samples[-1][1] if self._samples else None

    def window(self, now: Optional[float] = None) -> List[WindReading]:
        """Samples inside the trailing window, oldest first."""
        now = self._clock() if now is None else now
        cutoff = now - self.config.window_s
        with self._lock:
            return [reading for stamp, reading in self._samples if stamp >= cutoff]

    def average(self, now: Optional[float] = None) -> Optional[float]:
        """Mean speed (m/s) over the window; None when the window is empty."""
        readings = self.window(now)
        if not readings:
            return None
        return float(np.mean([reading.speed_mps for reading in readings]))

    def poll(self, manager) -> WindReading:
        """
        Read the gauge once through the connection manager and keep the sample.

        Raises:
            DeviceError: From the gauge transaction; nothing is recorded
        """
        reading = manager.transact("wind")
        self.add(reading)
        logger.debug("Wind sample %.2f m/s", reading.speed_mps)
        return reading

    def measure(self, manager, sleep: Callable[[float], None] = time.sleep) -> Optional[float]:
        """
        Poll for one full window, then return the window average.

        Raises:
            DeviceError: From any gauge transaction
        """
        polls = max(1, int(round(self.config.window_s / max(self.config.poll_interval_s, 1e-3))))
        for index in range(polls):
            if index:
                sleep(self.config.poll_interval_s)
            self.poll(manager)
        wind = self.average()
        logger.info("Wind over %.0fs: %+.1f m/s (%d samples)", self.config.window_s, wind, polls)
        return wind
