"""
EDM Reading Message Schema and Codec.

The EDM is triggered with the fixed byte sequence 0x11 0x0D 0x0A and
answers with one line of four whitespace-separated ASCII fields:

    "0008390 1001021 3080834 83\r\n"
     |       |       |       +-- status code (83 = normal measurement)
     |       |       +---------- horizontal angle, DDDMMSS
     |       +------------------ vertical angle from zenith, DDDMMSS
     +-------------------------- slope distance, millimetres
"""

import logging
from dataclasses import dataclass
from typing import Dict

from polyfield_core.errors import ProtocolError
from polyfield_core.io.transport import line_terminated

logger = logging.getLogger(__name__)

MEASUREMENT_COMMAND = bytes([0x11, 0x0D, 0x0A])

EXPECTED_FIELDS = 4
MIN_RESPONSE_LENGTH = 20

STATUS_OK = 83

# Device-reported status codes
STATUS_CODES: Dict[int, str] = {
    83: "Normal measurement",
    84: "Warning - check prism",
    85: "Error - no prism found",
    86: "Error - signal too weak",
    87: "Error - measurement timeout",
    88: "Error - device not ready",
}


@dataclass(frozen=True)
class EDMReading:
    """
    One EDM measurement.

    Attributes:
        slope_distance_mm: Straight-line distance instrument -> prism (mm)
        vertical_angle_deg: Vertical angle from zenith, decimal degrees
        horizontal_angle_deg: Horizontal angle, decimal degrees
        status_code: Device status code (83 for averaged readings)

    Notes:
        - Immutable; produced once per device transaction
    """

    slope_distance_mm: float
    vertical_angle_deg: float
    horizontal_angle_deg: float
    status_code: int = STATUS_OK

    def __post_init__(self):
        if self.slope_distance_mm < 0:
            raise ValueError(f"Slope distance cannot be negative: {self.slope_distance_mm}")

    def to_dict(self) -> dict:
        return {
            'slopeDistanceMm': self.slope_distance_mm,
            'verticalAngleDeg': self.vertical_angle_deg,
            'horizontalAngleDeg': self.horizontal_angle_deg,
            'statusCode': self.status_code,
        }


def parse_dddmmss(angle: str) -> float:
    """
    Convert a DDDMMSS sexagesimal angle to decimal degrees.

    Accepts 7 digits, 6 digits (DDMMSS, left-padded) and an optional
    decimal-seconds suffix ("1001021.5").

    Example:
        "1001021" -> 100 + 10/60 + 21/3600 = 100.1725

    Raises:
        ValueError: Wrong length, non-digits, minutes/seconds >= 60, degrees > 360
    """
    base, _, fraction = angle.partition(".")
    if fraction and not fraction.isdigit():
        raise ValueError(f"Invalid decimal seconds in '{angle}'")
    if not base.isdigit():
        raise ValueError(f"Non-numeric angle '{angle}'")
    if len(base) == 6:
        base = "0" + base
    if len(base) != 7:
        raise ValueError(f"Invalid angle string length: got {len(base)} for '{angle}'")

    degrees = int(base[0:3])
    minutes = int(base[3:5])
    seconds = int(base[5:7]) + (float("0." + fraction) if fraction else 0.0)

    if minutes >= 60 or seconds >= 60:
        raise ValueError(f"Invalid angle values (MM or SS >= 60) in '{angle}'")
    if degrees > 360:
        raise ValueError(f"Invalid degrees value (> 360) in '{angle}'")

    return degrees + minutes / 60.0 + seconds / 3600.0


class EDMCodec:
    """Codec for the EDM trigger/response exchange."""

    name = "edm"

    def initialize(self, transport) -> None:
        """No handshake: the EDM answers only when triggered."""

    def encode_command(self) -> bytes:
        return MEASUREMENT_COMMAND

    def read_framing(self, buffer: bytes) -> bool:
        return line_terminated(buffer)

    def decode_response(self, raw: bytes) -> EDMReading:
        """
        Decode one EDM response line.

        Raises:
            ProtocolError: Bad field count, unparsable field, or a status code
                other than a normal measurement
        """
        try:
            text = raw.decode("ascii")
        except UnicodeDecodeError as e:
            raise ProtocolError(f"Non-ASCII EDM response: {e}", role="edm", raw=raw) from e

        line = text.strip().splitlines()[0].strip() if text.strip() else ""
        if len(line) < MIN_RESPONSE_LENGTH:
            raise ProtocolError(f"EDM response too short: '{line}'", role="edm", raw=raw)

        parts = line.split()
        if len(parts) != EXPECTED_FIELDS:
            raise ProtocolError(
                f"Invalid EDM response format. Expected {EXPECTED_FIELDS} fields, "
                f"got {len(parts)}: {parts}",
                role="edm", raw=raw,
            )

        try:
            slope_mm = float(parts[0])
        except ValueError as e:
            raise ProtocolError(
                f"Invalid slope distance format: '{parts[0]}'", role="edm", raw=raw
            ) from e
        if slope_mm < 0:
            raise ProtocolError(f"Negative slope distance: '{parts[0]}'", role="edm", raw=raw)

        try:
            vertical = parse_dddmmss(parts[1])
            horizontal = parse_dddmmss(parts[2])
        except ValueError as e:
            raise ProtocolError(f"Invalid EDM angle: {e}", role="edm", raw=raw) from e

        try:
            status = int(parts[3])
        except ValueError as e:
            raise ProtocolError(
                f"Invalid EDM status code: '{parts[3]}'", role="edm", raw=raw
            ) from e

        if status != STATUS_OK:
            meaning = STATUS_CODES.get(status, f"Unknown status code: {status}")
            raise ProtocolError(f"EDM status {status}: {meaning}", role="edm", raw=raw)

        reading = EDMReading(
            slope_distance_mm=slope_mm,
            vertical_angle_deg=vertical,
            horizontal_angle_deg=horizontal,
            status_code=status,
        )
        logger.debug(
            "Parsed EDM reading - SD: %.0fmm, VA: %.6f, HA: %.6f",
            slope_mm, vertical, horizontal,
        )
        return reading
