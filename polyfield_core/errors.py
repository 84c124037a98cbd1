"""
Error taxonomy for device, protocol and calibration failures.

Every failure in the device path is raised as one of these types and is
never replaced by a default value:

- DeviceConnectionError: open failed, role already connected, unreachable
- DeviceTimeoutError: no complete response within the read bound
- ProtocolError: malformed bytes, bad checksum, failed handshake, bad status
- ToleranceError: the two readings of a pair disagree
- CalibrationError: operation attempted out of order, or no reliable reading
"""

from typing import Optional


class DeviceError(Exception):
    """Base class for all device-path failures."""

    def __init__(self, message: str, role: Optional[str] = None):
        super().__init__(message)
        self.role = role


class DeviceConnectionError(DeviceError, ConnectionError):
    """Connection could not be opened, or the role is already connected."""


class DeviceTimeoutError(DeviceError, TimeoutError):
    """No complete response arrived within the allowed time."""

    def __init__(
        self,
        message: str,
        role: Optional[str] = None,
        partial: bytes = b"",
        timeout_s: Optional[float] = None,
    ):
        super().__init__(message, role)
        self.partial = partial
        self.timeout_s = timeout_s


class ProtocolError(DeviceError):
    """Response bytes did not match the device protocol."""

    def __init__(self, message: str, role: Optional[str] = None, raw: bytes = b""):
        super().__init__(message, role)
        self.raw = raw


class ToleranceError(DeviceError):
    """Two slope-distance readings differ by more than the allowed tolerance."""

    def __init__(self, first_mm: float, second_mm: float, tolerance_mm: float):
        super().__init__(
            f"readings inconsistent: R1(SD) {first_mm:.1f}mm, "
            f"R2(SD) {second_mm:.1f}mm, tolerance {tolerance_mm:.1f}mm"
        )
        self.first_mm = first_mm
        self.second_mm = second_mm
        self.tolerance_mm = tolerance_mm

    @property
    def delta_mm(self) -> float:
        return abs(self.first_mm - self.second_mm)


class CalibrationError(DeviceError):
    """Calibration operation refused; the engine state was left unchanged."""

    def __init__(self, message: str, cause: Optional[Exception] = None):
        super().__init__(message, role="edm")
        self.cause = cause
