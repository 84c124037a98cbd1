"""
Wind Gauge Message Schemas and Codecs.

Four ASCII polling protocols decode to the same WindReading shape:

    GENERIC          READ\\r\\n    -> +2.3\\r\\n
    GILL_WINDMASTER  Q\\r\\n       -> Q,<dir>,<speed>,M,<status>,\\r\\n
    LYNX             R\\r\\n       -> WS:+2.3,WD:045\\r\\n
    NMEA             $WIMWV\\r\\n  -> $WIMWV,<dir>,R,<speed>,M,A*<checksum>\\r\\n

Wind speed is in m/s; the sign of a generic/Lynx reading is head/tail wind.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from polyfield_core.errors import ProtocolError
from polyfield_core.io.transport import line_terminated

logger = logging.getLogger(__name__)


class WindProtocol(str, Enum):
    """Supported wind gauge dialects."""

    GENERIC = "generic"
    GILL_WINDMASTER = "gill"
    LYNX = "lynx"
    NMEA = "nmea"


# Conventional TCP ports per dialect
DEFAULT_PORTS = {
    WindProtocol.GENERIC: 5000,
    WindProtocol.GILL_WINDMASTER: 9000,
    WindProtocol.LYNX: 5001,
    WindProtocol.NMEA: 4800,
}


@dataclass(frozen=True)
class WindReading:
    """
    Decoded wind gauge response.

    Attributes:
        speed_mps: Wind speed (m/s), signed where the dialect reports sign
        direction_deg: Wind direction in degrees if reported
    """

    speed_mps: float
    direction_deg: Optional[float] = None


def nmea_checksum(body: str) -> int:
    """XOR of every character between '$' and '*'."""
    checksum = 0
    for char in body:
        checksum ^= ord(char)
    return checksum


def _parse_float(value: str, what: str, raw: bytes) -> float:
    try:
        return float(value.strip())
    except ValueError as e:
        raise ProtocolError(f"Invalid {what}: '{value}'", role="wind", raw=raw) from e


def _decode_line(raw: bytes) -> str:
    try:
        text = raw.decode("ascii").strip()
    except UnicodeDecodeError as e:
        raise ProtocolError(f"Non-ASCII wind response: {e}", role="wind", raw=raw) from e
    if not text:
        raise ProtocolError("Empty response from wind gauge", role="wind", raw=raw)
    return text.splitlines()[0].strip()


class WindCodec:
    """
    Codec for one wind gauge dialect.

    The dialect is an explicit tag; each operation switches on it so that
    adding a dialect touches only this class.
    """

    def __init__(self, protocol: WindProtocol = WindProtocol.GENERIC):
        self.protocol = WindProtocol(protocol)
        self.name = f"wind-{self.protocol.value}"

    def initialize(self, transport) -> None:
        """Gill gauges are switched into polled mode; others need nothing."""
        if self.protocol == WindProtocol.GILL_WINDMASTER:
            transport.write(b"P\r\n")

    def encode_command(self) -> bytes:
        if self.protocol == WindProtocol.GENERIC:
            return b"READ\r\n"
        if self.protocol == WindProtocol.GILL_WINDMASTER:
            return b"Q\r\n"
        if self.protocol == WindProtocol.LYNX:
            return b"R\r\n"
        if self.protocol == WindProtocol.NMEA:
            return b"$WIMWV\r\n"
        raise ValueError(f"Unknown wind protocol: {self.protocol}")

    def read_framing(self, buffer: bytes) -> bool:
        return line_terminated(buffer)

    def decode_response(self, raw: bytes) -> WindReading:
        line = _decode_line(raw)
        if self.protocol == WindProtocol.GENERIC:
            return self._decode_generic(line, raw)
        if self.protocol == WindProtocol.GILL_WINDMASTER:
            return self._decode_gill(line, raw)
        if self.protocol == WindProtocol.LYNX:
            return self._decode_lynx(line, raw)
        if self.protocol == WindProtocol.NMEA:
            return self._decode_nmea(line, raw)
        raise ValueError(f"Unknown wind protocol: {self.protocol}")

    def _decode_generic(self, line: str, raw: bytes) -> WindReading:
        return WindReading(speed_mps=_parse_float(line, "wind speed format", raw))

    def _decode_gill(self, line: str, raw: bytes) -> WindReading:
        # <node>,<dir>,<speed>,M,<status>, where node is the unit letter (default Q)
        parts = line.strip("\x02\x03").split(",")
        if len(parts) < 5 or not (len(parts[0]) == 1 and parts[0].isalpha()):
            raise ProtocolError(
                f"Invalid Gill WindMaster response format: '{line}'", role="wind", raw=raw
            )
        if parts[4].strip() not in ("00", "0", ""):
            raise ProtocolError(
                f"Gill WindMaster reports status {parts[4]}", role="wind", raw=raw
            )
        direction = _parse_float(parts[1], "wind direction", raw)
        speed = _parse_float(parts[2], "wind speed", raw)
        return WindReading(speed_mps=speed, direction_deg=direction)

    def _decode_lynx(self, line: str, raw: bytes) -> WindReading:
        values = {}
        for pair in line.split(","):
            key, sep, value = pair.partition(":")
            if sep:
                values[key.strip()] = value.strip()

        if "WS" not in values:
            raise ProtocolError(f"No wind speed in response: '{line}'", role="wind", raw=raw)

        direction = None
        if "WD" in values:
            direction = _parse_float(values["WD"], "wind direction", raw)
        return WindReading(
            speed_mps=_parse_float(values["WS"], "wind speed", raw),
            direction_deg=direction,
        )

    def _decode_nmea(self, line: str, raw: bytes) -> WindReading:
        if not line.startswith("$"):
            raise ProtocolError(f"NMEA sentence must start with '$': '{line}'", role="wind", raw=raw)

        body, star, checksum_hex = line[1:].partition("*")
        if not star or len(checksum_hex) != 2:
            raise ProtocolError(f"NMEA sentence missing checksum: '{line}'", role="wind", raw=raw)
        try:
            expected = int(checksum_hex, 16)
        except ValueError as e:
            raise ProtocolError(
                f"Invalid NMEA checksum '{checksum_hex}'", role="wind", raw=raw
            ) from e

        actual = nmea_checksum(body)
        if actual != expected:
            logger.warning("NMEA checksum mismatch: got %02X, expected %02X", actual, expected)
            raise ProtocolError(
                f"NMEA checksum mismatch: computed {actual:02X}, frame says {expected:02X}",
                role="wind", raw=raw,
            )

        # WIMWV,<angle>,<ref>,<speed>,<unit>,<status>
        parts = body.split(",")
        if len(parts) < 6 or parts[0] != "WIMWV":
            raise ProtocolError(f"Invalid NMEA format: '{line}'", role="wind", raw=raw)
        if parts[5] != "A":
            raise ProtocolError(
                f"Invalid wind data (status={parts[5]})", role="wind", raw=raw
            )

        return WindReading(
            speed_mps=_parse_float(parts[3], "wind speed", raw),
            direction_deg=_parse_float(parts[1], "wind angle", raw),
        )
