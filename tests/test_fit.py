"""Tests for the FIT encoder, CRC and header reader."""

import io
import struct
from datetime import datetime, timedelta, timezone

import pytest

from garmin_connect.exceptions import FitEncoderError, FitFormatError
from garmin_connect.fit import (
    HEADER_SIZE,
    FitActivity,
    FitEncoder,
    check,
    crc16,
    encode,
    encode_activity,
    parse_header,
    read_header,
    validate,
)
from garmin_connect.fit.crc import crc16_shift


def reference_crc(data: bytes) -> int:
    """Bitwise CRC-16 (reflected 0x8005, init 0), computed independently of the table."""
    crc = 0
    for byte in data:
        crc ^= byte
        for _ in range(8):
            crc = (crc >> 1) ^ 0xA001 if crc & 1 else crc >> 1
    return crc


def unpack(output: bytes):
    size, protocol, profile, data_size, tag, header_crc = struct.unpack_from("<BBHI4sH", output)
    file_crc = struct.unpack_from("<H", output, len(output) - 2)[0]
    return size, protocol, profile, data_size, tag, header_crc, file_crc


class TestCrc:
    def test_check_value(self):
        assert crc16(b"123456789") == 0xBB3D

    def test_empty_input(self):
        assert crc16(b"") == 0

    @pytest.mark.parametrize("data", [b"\x00", b"\xff", b".FIT", bytes(range(256))])
    def test_matches_bitwise_reference(self, data):
        assert crc16(data) == reference_crc(data)

    def test_incremental_equals_one_shot(self):
        data = bytes(range(200))
        assert crc16(data[120:], crc16(data[:120])) == crc16(data)

    @pytest.mark.parametrize("length", [0, 1, 7, 16, 300, 4097])
    def test_shift_equals_feeding_zero_bytes(self, length):
        start = crc16(b"seed")
        assert crc16_shift(start, length) == crc16(b"\x00" * length, start)


class TestEncoder:
    def test_empty_payload_is_sixteen_bytes(self):
        output = encode(b"")

        assert len(output) == 16
        size, protocol, profile, data_size, tag, header_crc, file_crc = unpack(output)
        assert size == HEADER_SIZE
        assert data_size == 0
        assert tag == b".FIT"
        assert header_crc == reference_crc(output[:12])
        assert file_crc == reference_crc(output[:14])

    @pytest.mark.parametrize("length", [1, 13, 255, 5000])
    def test_data_size_and_checksums(self, length):
        payload = bytes((i * 7) % 256 for i in range(length))
        output = encode(payload)

        _, _, _, data_size, _, header_crc, file_crc = unpack(output)
        assert data_size == length
        assert len(output) == HEADER_SIZE + length + 2
        assert output[HEADER_SIZE:-2] == payload
        assert header_crc == reference_crc(output[:12])
        assert file_crc == reference_crc(output[:-2])

    def test_chunked_writes_match_single_write(self):
        payload = bytes(range(256)) * 4
        buf = io.BytesIO()
        encoder = FitEncoder(buf)
        for i in range(0, len(payload), 100):
            encoder.write(payload[i:i + 100])
        encoder.close()

        assert buf.getvalue() == encode(payload)

    def test_header_is_written_on_open(self):
        buf = io.BytesIO()
        FitEncoder(buf)
        header = buf.getvalue()
        assert len(header) == HEADER_SIZE
        assert header[8:12] == b".FIT"
        assert header[4:8] == b"\x00\x00\x00\x00"

    def test_close_twice_raises_every_time(self):
        encoder = FitEncoder(io.BytesIO())
        encoder.close()
        with pytest.raises(FitEncoderError):
            encoder.close()
        with pytest.raises(FitEncoderError):
            encoder.close()

    def test_write_after_close_raises(self):
        encoder = FitEncoder(io.BytesIO())
        encoder.close()
        with pytest.raises(FitEncoderError):
            encoder.write(b"late")

    def test_write_accepts_buffers(self):
        buf = io.BytesIO()
        with FitEncoder(buf) as encoder:
            encoder.write(bytearray(b"\x01\x02"))
            encoder.write(memoryview(b"\x03"))
        assert buf.getvalue() == encode(b"\x01\x02\x03")

    def test_write_rejects_integer(self):
        buf = io.BytesIO()
        encoder = FitEncoder(buf)
        with pytest.raises(TypeError):
            encoder.write(5)
        assert encoder.data_size == 0
        assert len(buf.getvalue()) == HEADER_SIZE

    def test_context_manager_closes(self):
        buf = io.BytesIO()
        with FitEncoder(buf) as encoder:
            encoder.write(b"abc")
        assert encoder.closed
        assert validate(buf.getvalue())

    def test_context_manager_leaves_unfinished_on_error(self):
        buf = io.BytesIO()
        with pytest.raises(RuntimeError):
            with FitEncoder(buf) as encoder:
                encoder.write(b"abc")
                raise RuntimeError("boom")
        assert not encoder.closed

    def test_sink_with_existing_prefix(self):
        buf = io.BytesIO()
        buf.write(b"PREFIX")
        with FitEncoder(buf) as encoder:
            encoder.write(b"records")

        output = buf.getvalue()
        assert output[:6] == b"PREFIX"
        check(output[6:])

    def test_streams_to_file(self, tmp_path):
        path = tmp_path / "out.fit"
        with open(path, "wb") as sink:
            with FitEncoder(sink) as encoder:
                for _ in range(50):
                    encoder.write(b"x" * 1000)

        header = check(path.read_bytes())
        assert header.data_size == 50_000

    def test_rejects_unseekable_sink(self):
        class Pipe(io.RawIOBase):
            def writable(self):
                return True

        with pytest.raises(ValueError):
            FitEncoder(Pipe())


class TestActivityMessages:
    def activity(self):
        return FitActivity(
            sport="running",
            start_time=datetime(2026, 2, 22, 7, 30, tzinfo=timezone.utc),
            duration=timedelta(minutes=45),
            distance=8200.0,
        )

    def test_activity_file_is_valid(self):
        output = encode_activity(self.activity())

        header = check(output)
        assert header.data_size == len(output) - HEADER_SIZE - 2
        # first record is the file_id definition on local type 0
        assert output[HEADER_SIZE] == 0x40
        assert struct.unpack_from("<H", output, HEADER_SIZE + 3)[0] == 0

    def test_file_id_data_record(self):
        output = encode_activity(self.activity())
        # definition: 1 header + 5 fixed + 4 fields * 3 bytes
        data_start = HEADER_SIZE + 6 + 4 * 3
        assert output[data_start] == 0x00
        file_type, manufacturer, product, time_created = struct.unpack_from("<BHHI", output, data_start + 1)
        assert file_type == 4
        assert manufacturer == 255
        expected = int(datetime(2026, 2, 22, 7, 30, tzinfo=timezone.utc).timestamp()) - 631065600
        assert time_created == expected

    def test_unknown_sport(self):
        activity = self.activity()
        activity.sport = "curling"
        with pytest.raises(ValueError, match="Unknown sport"):
            encode_activity(activity)

    def test_data_without_definition(self):
        encoder = FitEncoder(io.BytesIO())
        with pytest.raises(FitEncoderError):
            encoder.write_data(3, [1])


class TestDecoder:
    def test_read_header_from_stream(self):
        output = encode(b"12345")
        header = read_header(io.BytesIO(output))
        assert header.size == 14
        assert header.data_size == 5
        assert header.protocol_major == 2

    def test_round_trip_data_size(self):
        for length in (0, 1, 99):
            assert parse_header(encode(b"\x01" * length)).data_size == length

    def test_detects_corrupted_payload(self):
        output = bytearray(encode(b"payload"))
        output[HEADER_SIZE] ^= 0xFF
        assert not validate(bytes(output))
        with pytest.raises(FitFormatError, match="file CRC"):
            check(bytes(output))

    def test_detects_truncation(self):
        output = encode(b"payload")
        with pytest.raises(FitFormatError, match="size mismatch"):
            check(output[:-3])

    def test_rejects_missing_tag(self):
        output = bytearray(encode(b""))
        output[8:12] = b"JUNK"
        with pytest.raises(FitFormatError, match="tag"):
            parse_header(bytes(output))

    def test_too_short(self):
        assert not validate(b".FIT")
