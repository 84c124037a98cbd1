"""
Domain Module: Field-event measurement logic.

Implements:
- Circle standards (radius, tolerance)
- Measurement geometry
- Calibration state machine and throw measurement
- Wind averaging
"""

from .circles import (
    CIRCLE_STANDARDS,
    CircleStandard,
    CircleType,
)
from .calibration_engine import (
    CalibrationEngine,
    CalibrationPhase,
    CalibrationState,
    CoordinateMode,
    EdgeResult,
    ThrowRecord,
)
from .wind_monitor import (
    WindMonitor,
    WindMonitorConfig,
)

__all__ = [
    'CIRCLE_STANDARDS',
    'CircleStandard',
    'CircleType',
    'CalibrationEngine',
    'CalibrationPhase',
    'CalibrationState',
    'CoordinateMode',
    'EdgeResult',
    'ThrowRecord',
    'WindMonitor',
    'WindMonitorConfig',
]
