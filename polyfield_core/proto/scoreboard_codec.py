"""
Scoreboard Binary Message Schema and Codec.

Binary protocol for 7-segment LED field-event scoreboards.

Link:
    TCP (default port 1950) or RS-232 at 19200 baud, 8-N-1.
    Handshake: send 0x55, expect 0x06.

Frame (15 bytes; the 14-byte variant omits the sync byte):

    [0]  sync         0xAA
    [1]  address      0x16
    [2]  count        0x09
    [3]  tag          0x08, 0x18, 0x28 ... (advances 0x10 per frame)
    [4]  checksum1    subtraction checksum over bytes [0..3]
    [5]  control      0x22
    [6..12] digits    7 x 7-segment codes
    [13] punctuation  0x40 = decimal point, 0x00 = none
    [14] checksum2    subtraction checksum over bytes [5..13]

Subtraction checksum: (0 - sum(bytes)) mod 256, so that the covered bytes
plus their checksum sum to zero mod 256.

Each display update is a pair of frames: performance mark, then
athlete bib / attempt number.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Iterable, List, Tuple

from polyfield_core.errors import ProtocolError
from polyfield_core.io.transport import at_least
from polyfield_core.metrics import get_metrics

logger = logging.getLogger(__name__)

HANDSHAKE_BYTE = 0x55
HANDSHAKE_ACK = 0x06
HANDSHAKE_TIMEOUT_S = 2.0

SYNC_BYTE = 0xAA
ADDRESS_BYTE = 0x16
COUNT_BYTE = 0x09
CONTROL_BYTE = 0x22
DECIMAL_POINT = 0x40
NO_PUNCTUATION = 0x00

TAG_START = 0x08
TAG_STEP = 0x10

DISPLAY_DIGITS = 7
FRAME_LENGTH = 15
FRAME_LENGTH_NO_SYNC = 14

# Delay between the two frames of a display update
MESSAGE_GAP_S = 0.020

SEGMENT_MAP = {
    ' ': 0x00,
    '0': 0xBF,
    '1': 0x86,
    '2': 0xDB,
    '3': 0xCF,
    '4': 0xE6,
    '5': 0xED,
    '6': 0xFD,
    '7': 0x87,
    '8': 0xFF,
    '9': 0xE7,
}
SEGMENT_TO_CHAR = {code: char for char, code in SEGMENT_MAP.items()}


def subtraction_checksum(data: Iterable[int]) -> int:
    """(0 - sum(data)) mod 256."""
    checksum = 0
    for byte in data:
        checksum = (checksum - byte) & 0xFF
    return checksum


def encode_segments(text: str) -> bytes:
    """
    Encode exactly seven display characters as 7-segment codes.

    Raises:
        ValueError: Wrong length or a character with no segment code
    """
    if len(text) != DISPLAY_DIGITS:
        raise ValueError(f"Display text must be {DISPLAY_DIGITS} characters: '{text}'")
    try:
        return bytes(SEGMENT_MAP[char] for char in text)
    except KeyError as e:
        raise ValueError(f"No 7-segment code for character {e} in '{text}'") from e


def next_tag(tag: int) -> int:
    """Advance a frame tag by 0x10, wrapping past 0xFF back to 0x08."""
    advanced = tag + TAG_STEP
    if advanced > 0xFF:
        return TAG_START
    return advanced


def format_mark(mark: str) -> Tuple[str, int]:
    """
    Lay a performance mark out on the 7-digit display.

    The decimal point is removed from the digits and signalled through the
    punctuation byte; digits are right-aligned.

    Example:
        "21.34" -> ("   2134", 0x40)
    """
    has_decimal = "." in mark
    digits = mark.replace(".", "").strip()
    if not all(char in SEGMENT_MAP for char in digits):
        raise ValueError(f"Mark must contain only digits and one decimal point: '{mark}'")
    display = digits.rjust(DISPLAY_DIGITS)[-DISPLAY_DIGITS:]
    return display, DECIMAL_POINT if has_decimal else NO_PUNCTUATION


def format_athlete(bib: int, attempt: int) -> str:
    """Three-digit bib, three blanks, single attempt digit: ' 79   1'."""
    if bib < 0 or attempt < 0:
        raise ValueError(f"Bib and attempt must be non-negative: {bib}, {attempt}")
    bib_text = str(bib).rjust(3)[-3:]
    return f"{bib_text}   {attempt % 10}"


@dataclass(frozen=True)
class ScoreboardFrame:
    """
    One decoded or to-be-encoded scoreboard frame.

    Attributes:
        tag: Frame tag byte
        text: Seven display characters
        punctuation: Punctuation byte (0x40 decimal point)
        address: Display address byte
        include_sync: Emit the leading 0xAA sync byte (15-byte frame)
    """

    tag: int
    text: str
    punctuation: int = NO_PUNCTUATION
    address: int = ADDRESS_BYTE
    include_sync: bool = True

    def header(self) -> bytes:
        prefix = bytes([SYNC_BYTE]) if self.include_sync else b""
        return prefix + bytes([self.address, COUNT_BYTE, self.tag])

    def payload(self) -> bytes:
        return bytes([CONTROL_BYTE]) + encode_segments(self.text) + bytes([self.punctuation])

    def to_bytes(self) -> bytes:
        header = self.header()
        payload = self.payload()
        return (
            header
            + bytes([subtraction_checksum(header)])
            + payload
            + bytes([subtraction_checksum(payload)])
        )


def decode_frame(frame: bytes) -> ScoreboardFrame:
    """
    Parse a 14- or 15-byte frame and validate both checksums.

    Raises:
        ProtocolError: Wrong length, wrong fixed bytes, bad checksum,
            or an unknown segment code
    """
    if len(frame) == FRAME_LENGTH:
        if frame[0] != SYNC_BYTE:
            raise ProtocolError(f"Bad sync byte 0x{frame[0]:02X}", role="scoreboard", raw=frame)
        include_sync = True
        header = frame[0:4]
        body = frame[4:]
    elif len(frame) == FRAME_LENGTH_NO_SYNC:
        include_sync = False
        header = frame[0:3]
        body = frame[3:]
    else:
        raise ProtocolError(
            f"Frame must be {FRAME_LENGTH_NO_SYNC} or {FRAME_LENGTH} bytes, got {len(frame)}",
            role="scoreboard", raw=frame,
        )

    checksum1 = body[0]
    payload = body[1:11]
    checksum2 = body[11]

    if (sum(header) + checksum1) & 0xFF != 0:
        get_metrics().increment_failure('checksum_mismatch')
        raise ProtocolError("Header checksum mismatch", role="scoreboard", raw=frame)
    if (sum(payload) + checksum2) & 0xFF != 0:
        get_metrics().increment_failure('checksum_mismatch')
        raise ProtocolError("Payload checksum mismatch", role="scoreboard", raw=frame)

    address, count, tag = header[-3], header[-2], header[-1]
    if count != COUNT_BYTE:
        raise ProtocolError(f"Bad count byte 0x{count:02X}", role="scoreboard", raw=frame)
    if payload[0] != CONTROL_BYTE:
        raise ProtocolError(f"Bad control byte 0x{payload[0]:02X}", role="scoreboard", raw=frame)

    try:
        text = "".join(SEGMENT_TO_CHAR[code] for code in payload[1:1 + DISPLAY_DIGITS])
    except KeyError as e:
        raise ProtocolError(f"Unknown segment code {e}", role="scoreboard", raw=frame) from e

    return ScoreboardFrame(
        tag=tag,
        text=text,
        punctuation=payload[1 + DISPLAY_DIGITS],
        address=address,
        include_sync=include_sync,
    )


class ScoreboardCodec:
    """
    Codec for the scoreboard link.

    Holds the frame tag counter; frames are built fresh for every
    transmission because the tag must advance.
    """

    name = "scoreboard"

    def __init__(self, include_sync: bool = True, address: int = ADDRESS_BYTE):
        self.include_sync = include_sync
        self.address = address
        self._tag = TAG_START
        self._lock = threading.Lock()

    @property
    def current_tag(self) -> int:
        return self._tag

    def initialize(self, transport) -> None:
        """
        Handshake: write 0x55, expect a single 0x06.

        Raises:
            ProtocolError: Any other reply byte
            DeviceTimeoutError: No reply within the handshake timeout
        """
        transport.write(bytes([HANDSHAKE_BYTE]))
        reply = transport.read_until(at_least(1), HANDSHAKE_TIMEOUT_S)
        if reply[0] != HANDSHAKE_ACK:
            get_metrics().increment_failure('handshake_failed')
            logger.error("Handshake failed - received: 0x%02X", reply[0])
            raise ProtocolError(
                f"handshake failed: expected 0x06, got 0x{reply[0]:02X}",
                role="scoreboard", raw=reply,
            )
        logger.info("Scoreboard handshake acknowledged")

    def _take_tag(self) -> int:
        with self._lock:
            tag = self._tag
            self._tag = next_tag(tag)
            return tag

    def encode_display(self, mark: str, bib: int, attempt: int) -> List[bytes]:
        """
        Encode one display update as [performance frame, athlete frame].

        Args:
            mark: Performance mark, e.g. "21.34"
            bib: Athlete bib number (last three digits are shown)
            attempt: Attempt number (last digit is shown)
        """
        mark_text, punctuation = format_mark(mark)
        athlete_text = format_athlete(bib, attempt)

        performance = ScoreboardFrame(
            tag=self._take_tag(),
            text=mark_text,
            punctuation=punctuation,
            address=self.address,
            include_sync=self.include_sync,
        )
        athlete = ScoreboardFrame(
            tag=self._take_tag(),
            text=athlete_text,
            address=self.address,
            include_sync=self.include_sync,
        )
        return [performance.to_bytes(), athlete.to_bytes()]

    def encode_clear(self) -> List[bytes]:
        """Blank mark, bib 0, attempt 0."""
        return self.encode_display(" " * DISPLAY_DIGITS, 0, 0)

    def send_display(self, transport, frames: List[bytes], gap_s: float = MESSAGE_GAP_S) -> None:
        """Write a frame pair with the inter-frame gap; the board sends no reply."""
        for index, frame in enumerate(frames):
            if index:
                time.sleep(gap_s)
            transport.write(frame)
            logger.debug("Scoreboard frame %d: %s", index, frame.hex(" ").upper())
        get_metrics().increment('scoreboard_frames', len(frames))
