"""
Protocol Module: Device message schemas and codecs.

- EDM trigger/response (slope distance + DDDMMSS angles)
- Wind gauge dialects (generic, Gill WindMaster, Lynx, NMEA)
- Scoreboard binary frames (7-segment, subtraction checksums)
"""

from .edm_codec import (
    EDMCodec,
    EDMReading,
    parse_dddmmss,
)
from .wind_codec import (
    WindCodec,
    WindProtocol,
    WindReading,
    nmea_checksum,
)
from .scoreboard_codec import (
    ScoreboardCodec,
    ScoreboardFrame,
    decode_frame,
    subtraction_checksum,
)
from .codecs import (
    DeviceFamily,
    ProtocolId,
    create_codec,
)

__all__ = [
    'EDMCodec',
    'EDMReading',
    'parse_dddmmss',
    'WindCodec',
    'WindProtocol',
    'WindReading',
    'nmea_checksum',
    'ScoreboardCodec',
    'ScoreboardFrame',
    'decode_frame',
    'subtraction_checksum',
    'DeviceFamily',
    'ProtocolId',
    'create_codec',
]
