"""
Unit tests for the scoreboard codec.

Tests cover:
- Reference frame bytes for a performance mark
- Checksum validation on decode (every single-byte corruption detected)
- Tag sequencing and wrap-around
- Handshake
"""

import pytest

from polyfield_core.errors import DeviceTimeoutError, ProtocolError
from polyfield_core.io.transport import TransportConfig
from polyfield_core.proto import scoreboard_codec
from polyfield_core.proto.scoreboard_codec import (
    SEGMENT_MAP,
    ScoreboardCodec,
    ScoreboardFrame,
    decode_frame,
    format_athlete,
    format_mark,
    next_tag,
    subtraction_checksum,
)

from conftest import FakeTransport

# Performance "21.34" with tag 0x08
REFERENCE_FRAME = bytes.fromhex("AA 16 09 08 2F 22 00 00 00 DB 86 CF E6 40 88")


# =============================================================================
# Encoding
# =============================================================================


class TestChecksum:
    """Tests for the subtraction checksum."""

    def test_empty(self):
        assert subtraction_checksum(b"") == 0

    def test_header(self):
        assert subtraction_checksum(bytes([0xAA, 0x16, 0x09, 0x08])) == 0x2F

    def test_covered_bytes_plus_checksum_sum_to_zero(self):
        data = bytes([0x22, 0x00, 0xFF, 0xE7, 0x86, 0x40])
        assert (sum(data) + subtraction_checksum(data)) % 256 == 0


class TestLayout:
    """Tests for display text layout."""

    def test_segment_table(self):
        assert SEGMENT_MAP == {
            ' ': 0x00, '0': 0xBF, '1': 0x86, '2': 0xDB, '3': 0xCF,
            '4': 0xE6, '5': 0xED, '6': 0xFD, '7': 0x87, '8': 0xFF, '9': 0xE7,
        }

    def test_mark_with_decimal(self):
        assert format_mark("21.34") == ("   2134", 0x40)

    def test_mark_without_decimal(self):
        assert format_mark("12") == ("     12", 0x00)

    def test_mark_rejects_letters(self):
        with pytest.raises(ValueError):
            format_mark("NM")

    def test_athlete(self):
        assert format_athlete(79, 1) == " 79   1"
        assert format_athlete(1234, 12) == "234   2"


class TestEncode:
    """Tests for frame encoding."""

    def test_reference_performance_frame(self):
        frames = ScoreboardCodec().encode_display("21.34", 79, 1)
        assert frames[0] == REFERENCE_FRAME

    def test_athlete_frame(self):
        frames = ScoreboardCodec().encode_display("21.34", 79, 1)
        athlete = decode_frame(frames[1])

        assert athlete.tag == 0x18
        assert athlete.text == " 79   1"
        assert athlete.punctuation == 0x00

    def test_frames_are_fifteen_bytes(self):
        for frame in ScoreboardCodec().encode_display("8.5", 3, 2):
            assert len(frame) == 15

    def test_frame_without_sync(self):
        codec = ScoreboardCodec(include_sync=False)
        frame = codec.encode_display("21.34", 79, 1)[0]

        assert len(frame) == 14
        assert frame[:4] == bytes([0x16, 0x09, 0x08, 0xD9])
        assert frame[4:] == REFERENCE_FRAME[5:]
        assert decode_frame(frame).text == "   2134"

    def test_clear_display(self):
        frames = ScoreboardCodec().encode_clear()
        mark = decode_frame(frames[0])
        athlete = decode_frame(frames[1])

        assert mark.text == "       "
        assert mark.punctuation == 0x00
        assert athlete.text == "  0   0"

    def test_frame_to_bytes(self):
        frame = ScoreboardFrame(tag=0x08, text="   2134", punctuation=0x40)
        assert frame.to_bytes() == REFERENCE_FRAME


class TestTags:
    """Tests for tag sequencing."""

    def test_tag_advances_per_frame(self):
        codec = ScoreboardCodec()
        first = codec.encode_display("1.00", 1, 1)
        second = codec.encode_display("2.00", 1, 2)

        tags = [decode_frame(frame).tag for frame in first + second]
        assert tags == [0x08, 0x18, 0x28, 0x38]

    def test_next_tag_wraps(self):
        assert next_tag(0x08) == 0x18
        assert next_tag(0xE8) == 0xF8
        assert next_tag(0xF8) == 0x08

    def test_codec_wraps_after_sixteen_frames(self):
        codec = ScoreboardCodec()
        tags = []
        for attempt in range(9):
            tags.extend(decode_frame(frame).tag for frame in codec.encode_display("5.00", 7, attempt))

        assert tags[:16] == list(range(0x08, 0x100, 0x10))
        assert tags[16] == 0x08
        assert tags[17] == 0x18


# =============================================================================
# Decoding
# =============================================================================


class TestDecode:
    """Tests for frame decoding and checksum validation."""

    def test_reference_decodes(self):
        frame = decode_frame(REFERENCE_FRAME)

        assert frame.tag == 0x08
        assert frame.text == "   2134"
        assert frame.punctuation == 0x40
        assert frame.include_sync

    @pytest.mark.parametrize("index", range(len(REFERENCE_FRAME)))
    def test_any_single_byte_flip_fails(self, index):
        corrupted = bytearray(REFERENCE_FRAME)
        corrupted[index] ^= 0x01
        with pytest.raises(ProtocolError):
            decode_frame(bytes(corrupted))

    def test_payload_flip_counts_checksum_mismatch(self, fresh_metrics):
        corrupted = bytearray(REFERENCE_FRAME)
        corrupted[9] ^= 0x10
        with pytest.raises(ProtocolError, match="Payload checksum"):
            decode_frame(bytes(corrupted))
        assert fresh_metrics.get_failures('checksum_mismatch') == 1

    def test_wrong_length(self):
        with pytest.raises(ProtocolError, match="14 or 15 bytes"):
            decode_frame(REFERENCE_FRAME[:12])


# =============================================================================
# Handshake and transmission
# =============================================================================


def _transport(*replies) -> FakeTransport:
    transport = FakeTransport(
        TransportConfig(kind="network", address="board.local", port=1950), replies
    )
    transport.open()
    return transport


class TestHandshake:
    """Tests for the 0x55 -> 0x06 handshake."""

    def test_acknowledged(self):
        transport = _transport(b"\x06")
        ScoreboardCodec().initialize(transport)
        assert transport.written == [b"\x55"]

    def test_wrong_reply(self, fresh_metrics):
        transport = _transport(b"\x15")
        with pytest.raises(ProtocolError, match="handshake failed"):
            ScoreboardCodec().initialize(transport)
        assert fresh_metrics.get_failures('handshake_failed') == 1

    def test_no_reply_times_out(self, monkeypatch):
        monkeypatch.setattr(scoreboard_codec, "HANDSHAKE_TIMEOUT_S", 0.05)
        transport = _transport(None)
        with pytest.raises(DeviceTimeoutError):
            ScoreboardCodec().initialize(transport)


class TestSendDisplay:
    """Tests for frame transmission."""

    def test_writes_both_frames_with_gap(self, monkeypatch, fresh_metrics):
        sleeps = []
        monkeypatch.setattr(scoreboard_codec.time, "sleep", sleeps.append)
        transport = _transport()
        codec = ScoreboardCodec()

        codec.send_display(transport, codec.encode_display("21.34", 79, 1))

        assert transport.written[0] == REFERENCE_FRAME
        assert len(transport.written) == 2
        assert sleeps == [0.020]
        assert fresh_metrics.get_counter('scoreboard_frames') == 2
