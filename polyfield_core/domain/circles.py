"""
Throwing-circle standards (UKA / World Athletics).

Radius and tolerance are fixed per circle type and never taken from input.
"""

from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType


class CircleType(str, Enum):
    """Throwing circle / arc being calibrated."""

    SHOT = "SHOT"
    DISCUS = "DISCUS"
    HAMMER = "HAMMER"
    JAVELIN_ARC = "JAVELIN_ARC"

    @property
    def standard(self) -> "CircleStandard":
        return CIRCLE_STANDARDS[self]

    @property
    def radius_m(self) -> float:
        return CIRCLE_STANDARDS[self].radius_m

    @property
    def tolerance_mm(self) -> float:
        return CIRCLE_STANDARDS[self].tolerance_mm


@dataclass(frozen=True)
class CircleStandard:
    """
    Official geometry of one circle type.

    Attributes:
        radius_m: Official inner radius (m)
        tolerance_mm: Allowed |measured - official| at edge verification (mm)
    """

    radius_m: float
    tolerance_mm: float


CIRCLE_STANDARDS = MappingProxyType({
    CircleType.SHOT: CircleStandard(radius_m=1.0675, tolerance_mm=5.0),
    CircleType.DISCUS: CircleStandard(radius_m=1.250, tolerance_mm=5.0),
    CircleType.HAMMER: CircleStandard(radius_m=1.0675, tolerance_mm=5.0),
    CircleType.JAVELIN_ARC: CircleStandard(radius_m=8.000, tolerance_mm=10.0),
})
