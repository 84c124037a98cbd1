"""
Simulated EDM readings for demo mode.

Only a demo engine accepts this source:

    engine = create_demo_engine(seed=7)

The simulated station stands 8-15 m from the circle centre. Edge readings
land within +/-2 mm of the official radius; throw readings land in a 60
degree sector at a distance typical for the circle type.
"""

import logging
from typing import Optional

import numpy as np

from polyfield_core.proto.edm_codec import STATUS_OK, EDMReading
from .circles import CircleType
from .calibration_engine import CalibrationEngine, CalibrationState, CoordinateMode

logger = logging.getLogger(__name__)

# Typical throw range per circle (m)
THROW_RANGES = {
    CircleType.SHOT: (8.0, 18.0),
    CircleType.DISCUS: (25.0, 65.0),
    CircleType.HAMMER: (20.0, 75.0),
    CircleType.JAVELIN_ARC: (35.0, 85.0),
}

EDGE_VARIATION_MM = 4.0


class DemoReadingSource:
    """
    Produces readings consistent with a simulated station position.

    The engine calls aim() before each read() so the source knows what is
    being sighted.
    """

    is_demo = True

    def __init__(self, mode: CoordinateMode = CoordinateMode.ANCHOR, seed: Optional[int] = None):
        self.mode = CoordinateMode(mode)
        self._rng = np.random.default_rng(seed)
        distance = self._rng.uniform(8.0, 15.0)
        angle = self._rng.uniform(0.0, 2 * np.pi)
        self._station = np.array([distance * np.cos(angle), distance * np.sin(angle)])
        self._vertical_deg = self._rng.uniform(88.0, 92.0)
        self._operation = "set centre"
        self._state: Optional[CalibrationState] = None

    def aim(self, operation: str, state: Optional[CalibrationState]):
        self._operation = operation
        self._state = state

    def read(self) -> EDMReading:
        if self._operation == "set centre":
            target = np.zeros(2)
            station = self._station
        else:
            radius = self._state.target_radius_m if self._state else 1.0675
            if self._operation == "verify edge":
                variation_m = self._rng.uniform(-0.5, 0.5) * EDGE_VARIATION_MM / 1000.0
                angle = self._rng.uniform(0.0, 2 * np.pi)
                distance = radius + variation_m
            else:
                low, high = THROW_RANGES.get(self._state.circle_type, (15.0, 50.0))
                angle = self._rng.uniform(-np.pi / 6, np.pi / 6)
                distance = radius + self._rng.uniform(low, high)
            target = np.array([distance * np.cos(angle), distance * np.sin(angle)])
            station = self._station if self.mode == CoordinateMode.BEARING else np.zeros(2)

        delta = target - station
        hd_m = float(np.linalg.norm(delta))
        bearing_deg = float(np.degrees(np.arctan2(delta[1], delta[0]))) % 360.0
        vertical_deg = self._vertical_deg + self._rng.uniform(-0.05, 0.05)
        slope_mm = hd_m / np.sin(np.radians(vertical_deg)) * 1000.0

        logger.debug("Demo %s reading: SD %.1fmm HA %.4f", self._operation, slope_mm, bearing_deg)
        return EDMReading(
            slope_distance_mm=float(slope_mm),
            vertical_angle_deg=float(vertical_deg),
            horizontal_angle_deg=bearing_deg,
            status_code=STATUS_OK,
        )


def create_demo_engine(
    mode: CoordinateMode = CoordinateMode.ANCHOR,
    seed: Optional[int] = None,
) -> CalibrationEngine:
    """Build an engine wired to simulated readings; it shares nothing with live engines."""
    logger.warning("Demo mode: readings are simulated")
    return CalibrationEngine(DemoReadingSource(mode, seed), mode=mode, is_demo=True)
