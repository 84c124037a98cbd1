"""
Dual-reading tolerance check for EDM measurements.

A reliable reading is two raw readings taken a short delay apart whose slope
distances agree within tolerance; the result is their mean. A disagreeing
pair raises ToleranceError and is never approximated.

    R1 --100ms-- R2  ->  |SD1 - SD2| <= 3mm ?  mean(R1, R2)  :  ToleranceError
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

from polyfield_core.errors import ToleranceError
from polyfield_core.metrics import get_metrics
from polyfield_core.proto.edm_codec import STATUS_OK, EDMReading

logger = logging.getLogger(__name__)

DEFAULT_TOLERANCE_MM = 3.0
INTER_READ_DELAY_S = 0.100
READ_TIMEOUT_S = 10.0

# Absorbs binary rounding in |r1 - r2| so exact boundary pairs pass
_COMPARE_EPSILON_MM = 1e-9


@dataclass
class DualReadConfig:
    """
    Attributes:
        tolerance_mm: Maximum slope-distance disagreement (mm)
        inter_read_delay_s: Pause between the two raw reads
        read_timeout_s: Bound on each raw read
    """

    tolerance_mm: float = DEFAULT_TOLERANCE_MM
    inter_read_delay_s: float = INTER_READ_DELAY_S
    read_timeout_s: float = READ_TIMEOUT_S

    def __post_init__(self):
        if self.tolerance_mm < 0:
            raise ValueError("tolerance_mm must be non-negative")
        if self.inter_read_delay_s < 0:
            raise ValueError("inter_read_delay_s must be non-negative")
        if self.read_timeout_s <= 0:
            raise ValueError("read_timeout_s must be positive")


def _mean_bearing(first_deg: float, second_deg: float) -> float:
    """Mean of two bearings, taking the short way round 0/360."""
    difference = second_deg - first_deg
    if difference > 180.0:
        difference -= 360.0
    elif difference < -180.0:
        difference += 360.0
    return (first_deg + difference / 2.0) % 360.0


def reliable_reading(
    first: EDMReading,
    second: EDMReading,
    tolerance_mm: float = DEFAULT_TOLERANCE_MM,
) -> EDMReading:
    """
    Combine two raw readings into one reliable reading.

    Args:
        first: First raw reading
        second: Second raw reading
        tolerance_mm: Maximum |SD1 - SD2| accepted

    Returns:
        Reading whose slope distance and angles are the pair means

    Raises:
        ToleranceError: Slope distances differ by more than tolerance
    """
    delta_mm = abs(first.slope_distance_mm - second.slope_distance_mm)
    metrics = get_metrics()
    metrics.record_histogram('edm_pair_delta_mm', delta_mm)

    if delta_mm > tolerance_mm + _COMPARE_EPSILON_MM:
        metrics.increment_failure('tolerance_exceeded')
        logger.warning(
            "Dual read rejected: SD1=%.1fmm SD2=%.1fmm delta=%.4fmm > %.1fmm",
            first.slope_distance_mm, second.slope_distance_mm, delta_mm, tolerance_mm,
        )
        raise ToleranceError(first.slope_distance_mm, second.slope_distance_mm, tolerance_mm)

    metrics.increment('reliable_readings')
    return EDMReading(
        slope_distance_mm=(first.slope_distance_mm + second.slope_distance_mm) / 2.0,
        vertical_angle_deg=(first.vertical_angle_deg + second.vertical_angle_deg) / 2.0,
        horizontal_angle_deg=_mean_bearing(first.horizontal_angle_deg, second.horizontal_angle_deg),
        status_code=STATUS_OK,
    )


class DualReadingSource:
    """
    Reliable-reading source backed by a raw single-read callable.

    Usage:
        source = DualReadingSource.from_manager(manager)
        reading = source.read()   # EDMReading or a typed error

    Args:
        read_once: Takes a read timeout (s) and returns one raw EDMReading
        config: Tolerance and timing
        sleep: Delay function (replaced in tests)
    """

    is_demo = False

    def __init__(
        self,
        read_once: Callable[[float], EDMReading],
        config: Optional[DualReadConfig] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.read_once = read_once
        self.config = config or DualReadConfig()
        self._sleep = sleep

    @classmethod
    def from_manager(cls, manager, config: Optional[DualReadConfig] = None) -> "DualReadingSource":
        """Read through the connection manager's EDM role."""
        def read_once(timeout_s: float) -> EDMReading:
            return manager.transact("edm", timeout_s=timeout_s)
        return cls(read_once, config)

    def read(self) -> EDMReading:
        """
        Take two raw readings and combine them.

        Raises:
            DeviceTimeoutError, DeviceConnectionError, ProtocolError: From a raw read
            ToleranceError: The pair disagrees
        """
        first = self.read_once(self.config.read_timeout_s)
        self._sleep(self.config.inter_read_delay_s)
        second = self.read_once(self.config.read_timeout_s)
        return reliable_reading(first, second, self.config.tolerance_mm)
