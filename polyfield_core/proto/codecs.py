"""
Protocol registry: one tag per supported device protocol.

Every codec exposes the same capability set:

    name                      short label used in logs
    initialize(transport)     post-open handshake (may be a no-op)
    encode_command() -> bytes command for one request/response exchange
    read_framing(buffer)      True once a complete response is buffered
    decode_response(raw)      typed reading or ProtocolError

The scoreboard codec is write-only after its handshake: it has no
request/response exchange and is driven through `encode_display`.

`create_codec()` switches explicitly on the protocol tag; adding a protocol
means adding one enum member and one branch here.
"""

from enum import Enum
from typing import Optional, Union

from polyfield_core.io.transport import (
    EDM_BAUDRATE,
    SCOREBOARD_BAUDRATE,
    WIND_BAUDRATE,
)
from .edm_codec import EDMCodec
from .scoreboard_codec import ScoreboardCodec
from .wind_codec import DEFAULT_PORTS as WIND_PORTS, WindCodec, WindProtocol

Codec = Union[EDMCodec, WindCodec, ScoreboardCodec]


class DeviceFamily(str, Enum):
    """Device role a protocol belongs to."""

    EDM = "edm"
    WIND = "wind"
    SCOREBOARD = "scoreboard"


class ProtocolId(str, Enum):
    """Supported device protocols."""

    EDM_MATO = "edm-mato"
    WIND_GENERIC = "wind-generic"
    WIND_GILL = "wind-gill"
    WIND_LYNX = "wind-lynx"
    WIND_NMEA = "wind-nmea"
    SCOREBOARD_DAKTRONICS = "scoreboard-daktronics"

    @property
    def family(self) -> DeviceFamily:
        return DeviceFamily(self.value.split("-", 1)[0])

    @property
    def default_port(self) -> Optional[int]:
        """Conventional TCP port, None where there is no convention."""
        if self.family == DeviceFamily.WIND:
            return WIND_PORTS[_WIND_DIALECTS[self]]
        if self == ProtocolId.SCOREBOARD_DAKTRONICS:
            return 1950
        return None

    @property
    def default_baudrate(self) -> int:
        if self.family == DeviceFamily.SCOREBOARD:
            return SCOREBOARD_BAUDRATE
        if self.family == DeviceFamily.WIND:
            return WIND_BAUDRATE
        return EDM_BAUDRATE


_WIND_DIALECTS = {
    ProtocolId.WIND_GENERIC: WindProtocol.GENERIC,
    ProtocolId.WIND_GILL: WindProtocol.GILL_WINDMASTER,
    ProtocolId.WIND_LYNX: WindProtocol.LYNX,
    ProtocolId.WIND_NMEA: WindProtocol.NMEA,
}


def create_codec(protocol: ProtocolId) -> Codec:
    """
    Build a fresh codec for a protocol tag.

    Codecs hold per-connection state (the scoreboard tag counter), so a
    new instance is created for every connection.

    Raises:
        ValueError: Unknown protocol
    """
    protocol = ProtocolId(protocol)
    if protocol == ProtocolId.EDM_MATO:
        return EDMCodec()
    if protocol in _WIND_DIALECTS:
        return WindCodec(_WIND_DIALECTS[protocol])
    if protocol == ProtocolId.SCOREBOARD_DAKTRONICS:
        return ScoreboardCodec()
    raise ValueError(f"Unsupported protocol: {protocol}")
