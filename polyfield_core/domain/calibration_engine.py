"""
Calibration & Measurement Engine.

State machine for one EDM:

    NO_CIRCLE --select_circle--> CIRCLE_SELECTED --set_centre--> CENTRE_SET
        --verify_edge (within tolerance)--> EDGE_VERIFIED --measure_throw--> MEASURING

- select_circle() always starts a fresh calibration; prior centre and edge
  results are discarded.
- set_centre(), verify_edge() and measure_throw() each take one reliable
  reading from the engine's source. If that fails, CalibrationError is
  raised (chained to the device/tolerance error) and state is unchanged.
- A failing edge check is recorded but does not unlock measurement.
- measure_throw() appends to the throw log; it never changes calibration.

Coordinate modes:
    ANCHOR   the station is the origin; a sighted point lies at its
             horizontal distance along its bearing
    BEARING  the centre reading places the station relative to the circle
             centre, and edge/throw points are placed from the station
"""

import logging
import threading
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, List, Optional, Tuple

import numpy as np

from polyfield_core.errors import CalibrationError, DeviceError
from polyfield_core.metrics import get_metrics
from polyfield_core.proto.edm_codec import EDMReading
from .circles import CircleType
from .geometry import (
    as_tuple,
    distance_from_origin,
    horizontal_distance_m,
    point_from_station,
    station_from_centre_reading,
)

logger = logging.getLogger(__name__)


class CalibrationPhase(str, Enum):
    NO_CIRCLE = "NO_CIRCLE"
    CIRCLE_SELECTED = "CIRCLE_SELECTED"
    CENTRE_SET = "CENTRE_SET"
    EDGE_VERIFIED = "EDGE_VERIFIED"
    MEASURING = "MEASURING"


class CoordinateMode(str, Enum):
    ANCHOR = "anchor"
    BEARING = "bearing"


@dataclass(frozen=True)
class EdgeResult:
    """
    Outcome of one edge verification.

    Attributes:
        measured_radius_m: Radius derived from the edge reading (m)
        difference_mm: measured - official radius (mm), signed
        within_tolerance: |difference_mm| <= circle tolerance
    """

    measured_radius_m: float
    difference_mm: float
    within_tolerance: bool

    def to_dict(self) -> dict:
        return {
            'measuredRadiusM': self.measured_radius_m,
            'differenceMm': self.difference_mm,
            'withinTolerance': self.within_tolerance,
        }


@dataclass
class CalibrationState:
    """Calibration of one EDM; owned by the engine, handed out as copies."""

    circle_type: CircleType
    target_radius_m: float
    centre_set: bool = False
    station_coordinates: Tuple[float, float] = (0.0, 0.0)
    centre_timestamp: Optional[datetime] = None
    centre_reading: Optional[EDMReading] = None
    edge_verified: bool = False
    edge_result: Optional[EdgeResult] = None

    def to_dict(self) -> dict:
        return {
            'circleType': self.circle_type.value,
            'targetRadiusM': self.target_radius_m,
            'centreSet': self.centre_set,
            'stationCoordinates': {
                'x': self.station_coordinates[0],
                'y': self.station_coordinates[1],
            },
            'centreTimestamp': self.centre_timestamp.isoformat() if self.centre_timestamp else None,
            'edgeVerified': self.edge_verified,
            'edgeResult': self.edge_result.to_dict() if self.edge_result else None,
        }


@dataclass(frozen=True)
class ThrowRecord:
    """
    One measured throw.

    Attributes:
        x, y: Landing point in the circle frame (m)
        distance_m: Landing distance from the circle edge (m)
        circle_type: Circle calibrated when the throw was measured
        timestamp_utc: Measurement time
        athlete_id: Optional athlete identifier
        round: Optional round number
        raw: Reading the throw was derived from
    """

    x: float
    y: float
    distance_m: float
    circle_type: CircleType
    timestamp_utc: datetime
    athlete_id: Optional[str] = None
    round: Optional[int] = None
    raw: Optional[EDMReading] = None

    @property
    def mark(self) -> str:
        """Distance as displayed and submitted: metres, truncated to cm."""
        centimetres = int(np.floor(round(self.distance_m * 100.0, 6)))
        return f"{centimetres / 100.0:.2f}"

    def to_dict(self) -> dict:
        return {
            'x': self.x,
            'y': self.y,
            'distanceM': self.distance_m,
            'circleType': self.circle_type.value,
            'timestampUtc': self.timestamp_utc.isoformat(),
            'athleteId': self.athlete_id,
            'round': self.round,
        }


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class CalibrationEngine:
    """
    Calibration and throw measurement for one EDM.

    Usage:
        source = DualReadingSource.from_manager(manager)
        engine = CalibrationEngine(source)
        engine.select_circle(CircleType.SHOT)
        engine.set_centre()
        edge = engine.verify_edge()
        if edge.within_tolerance:
            throw = engine.measure_throw(athlete_id="79", round_number=1)

    Args:
        source: Object whose read() returns one reliable EDMReading
        mode: Coordinate mode (ANCHOR default)
        is_demo: True only for the separately constructed demo engine
        clock: UTC clock (replaced in tests)

    Notes:
        - Operations are serialized with a lock; a slow reading blocks other
          calls on the same engine, never another engine
        - A demo source is refused by a live engine
    """

    def __init__(
        self,
        source,
        mode: CoordinateMode = CoordinateMode.ANCHOR,
        is_demo: bool = False,
        clock: Callable[[], datetime] = _utc_now,
    ):
        if getattr(source, 'is_demo', False) and not is_demo:
            raise ValueError("A live engine cannot use a demo reading source")
        self._source = source
        self.mode = CoordinateMode(mode)
        self.is_demo = is_demo
        self._clock = clock
        self._lock = threading.Lock()
        self._state: Optional[CalibrationState] = None
        self._throws: List[ThrowRecord] = []

    @property
    def state(self) -> Optional[CalibrationState]:
        with self._lock:
            return replace(self._state) if self._state else None

    @property
    def phase(self) -> CalibrationPhase:
        with self._lock:
            return self._phase()

    @property
    def throws(self) -> Tuple[ThrowRecord, ...]:
        with self._lock:
            return tuple(self._throws)

    def select_circle(self, circle_type: CircleType) -> CalibrationState:
        """Start a fresh calibration for `circle_type`."""
        circle_type = CircleType(circle_type)
        with self._lock:
            self._state = CalibrationState(
                circle_type=circle_type,
                target_radius_m=circle_type.radius_m,
            )
            logger.info(
                "Circle selected: %s (radius %.4fm, tolerance %.0fmm)",
                circle_type.value, circle_type.radius_m, circle_type.tolerance_mm,
            )
            return replace(self._state)

    def set_centre(self) -> CalibrationState:
        """
        Record the circle centre from one reliable reading.

        Raises:
            CalibrationError: No circle selected, or no reliable reading
        """
        with self._lock:
            state = self._require(self._state is not None, "no circle selected")
            reading = self._take_reading("set centre")

            if self.mode == CoordinateMode.BEARING:
                station = station_from_centre_reading(
                    horizontal_distance_m(reading.slope_distance_mm, reading.vertical_angle_deg),
                    reading.horizontal_angle_deg,
                )
                station_xy = as_tuple(station)
            else:
                station_xy = (0.0, 0.0)

            state.centre_set = True
            state.station_coordinates = station_xy
            state.centre_timestamp = self._clock()
            state.centre_reading = reading
            state.edge_verified = False
            state.edge_result = None
            logger.info(
                "Centre set (%s mode): station (%.3f, %.3f)",
                self.mode.value, station_xy[0], station_xy[1],
            )
            return replace(state)

    def verify_edge(self) -> EdgeResult:
        """
        Check the circle radius from one reliable edge reading.

        Returns:
            EdgeResult; also stored on the state whether or not it passes

        Raises:
            CalibrationError: Centre not set, or no reliable reading
        """
        with self._lock:
            state = self._require(
                self._state is not None and self._state.centre_set, "centre not set"
            )
            reading = self._take_reading("verify edge")

            measured_radius_m = distance_from_origin(self._locate(state, reading))
            difference_mm = (measured_radius_m - state.target_radius_m) * 1000.0
            tolerance_mm = state.circle_type.tolerance_mm
            within = abs(difference_mm) <= tolerance_mm

            result = EdgeResult(
                measured_radius_m=measured_radius_m,
                difference_mm=difference_mm,
                within_tolerance=within,
            )
            state.edge_result = result
            state.edge_verified = within
            get_metrics().record_histogram('edge_difference_mm', difference_mm)

            if within:
                logger.info(
                    "Edge verified: radius %.4fm, difference %+.1fmm", measured_radius_m, difference_mm
                )
            else:
                logger.warning(
                    "Edge out of tolerance: radius %.4fm, difference %+.1fmm (limit %.0fmm)",
                    measured_radius_m, difference_mm, tolerance_mm,
                )
            return result

    def measure_throw(
        self,
        athlete_id: Optional[str] = None,
        round_number: Optional[int] = None,
    ) -> ThrowRecord:
        """
        Measure one throw from one reliable reading.

        Raises:
            CalibrationError: Edge not verified, or no reliable reading
        """
        with self._lock:
            state = self._require(
                self._state is not None and self._state.edge_verified, "edge not verified"
            )
            reading = self._take_reading("measure throw")

            point = self._locate(state, reading)
            distance_m = distance_from_origin(point) - state.target_radius_m
            x, y = as_tuple(point)

            record = ThrowRecord(
                x=x,
                y=y,
                distance_m=distance_m,
                circle_type=state.circle_type,
                timestamp_utc=self._clock(),
                athlete_id=athlete_id,
                round=round_number,
                raw=reading,
            )
            self._throws.append(record)
            get_metrics().increment('throws_measured')
            logger.info("Throw measured: %.3fm at (%.3f, %.3f)", distance_m, x, y)
            return record

    def clear_throws(self):
        with self._lock:
            self._throws.clear()

    def reset(self):
        """Drop the calibration; the throw log is kept."""
        with self._lock:
            self._state = None
            logger.info("Calibration reset")

    def _phase(self) -> CalibrationPhase:
        state = self._state
        if state is None:
            return CalibrationPhase.NO_CIRCLE
        if state.edge_verified:
            if self._throws:
                return CalibrationPhase.MEASURING
            return CalibrationPhase.EDGE_VERIFIED
        if state.centre_set:
            return CalibrationPhase.CENTRE_SET
        return CalibrationPhase.CIRCLE_SELECTED

    def _require(self, condition: bool, reason: str) -> CalibrationState:
        if not condition:
            get_metrics().increment_failure('calibration_refused')
            logger.warning("Calibration refused: %s (phase %s)", reason, self._phase().value)
            raise CalibrationError(reason)
        return self._state

    def _take_reading(self, operation: str) -> EDMReading:
        if self.is_demo:
            self._source.aim(operation, self._state)
        try:
            return self._source.read()
        except DeviceError as e:
            logger.error("%s: no reliable reading: %s", operation, e)
            raise CalibrationError(f"{operation}: no reliable reading ({e})", cause=e) from e

    def _locate(self, state: CalibrationState, reading: EDMReading) -> np.ndarray:
        hd_m = horizontal_distance_m(reading.slope_distance_mm, reading.vertical_angle_deg)
        station = np.array(state.station_coordinates, dtype=float)
        return point_from_station(station, hd_m, reading.horizontal_angle_deg)
