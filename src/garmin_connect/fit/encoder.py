"""Streaming FIT container writer.

Layout produced::

    header (14 bytes) | data records | file CRC (2 bytes)

The header is written up front with a zero data size and CRC, then patched
in place by ``close()``. Nothing but the sink holds the payload, so the sink
has to support ``seek``.
"""

import io
import struct
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import BinaryIO

from garmin_connect.exceptions import FitEncoderError
from garmin_connect.fit.crc import crc16, crc16_shift

HEADER_SIZE = 14
PROTOCOL_VERSION = 0x20  # 2.0
PROFILE_VERSION = 2140  # 21.40
FIT_TAG = b".FIT"
FIT_EPOCH = 631065600  # 1989-12-31T00:00:00Z

HEADER_STRUCT = struct.Struct("<BBHI4s")
CRC_STRUCT = struct.Struct("<H")

DEFINITION_FLAG = 0x40

MESG_FILE_ID = 0
MESG_SESSION = 18
MESG_ACTIVITY = 34

FILE_TYPE_ACTIVITY = 4
MANUFACTURER_DEVELOPMENT = 255
EVENT_ACTIVITY = 26
EVENT_TYPE_STOP = 1

SPORTS = {
    "generic": 0,
    "running": 1,
    "cycling": 2,
    "swimming": 5,
    "walking": 11,
    "hiking": 17,
}


@dataclass(frozen=True)
class BaseType:
    name: str
    type_id: int
    fmt: str
    invalid: int | float

    @property
    def size(self) -> int:
        return struct.calcsize("<" + self.fmt)


ENUM = BaseType("enum", 0x00, "B", 0xFF)
UINT8 = BaseType("uint8", 0x02, "B", 0xFF)
UINT16 = BaseType("uint16", 0x84, "H", 0xFFFF)
UINT32 = BaseType("uint32", 0x86, "I", 0xFFFFFFFF)


@dataclass(frozen=True)
class FieldDefinition:
    number: int
    base_type: BaseType


def build_header(data_size: int) -> bytes:
    head = HEADER_STRUCT.pack(HEADER_SIZE, PROTOCOL_VERSION, PROFILE_VERSION, data_size, FIT_TAG)
    return head + CRC_STRUCT.pack(crc16(head))


def fit_timestamp(moment: datetime) -> int:
    """Seconds since the FIT epoch. Naive datetimes are taken as UTC."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return int(moment.timestamp()) - FIT_EPOCH


@dataclass
class FitActivity:
    sport: str
    start_time: datetime
    duration: timedelta
    distance: float  # meters

    @property
    def sport_id(self) -> int:
        try:
            return SPORTS[self.sport.lower()]
        except KeyError:
            raise ValueError(f"Unknown sport '{self.sport}'. Expected one of: {', '.join(SPORTS)}") from None


class FitEncoder:
    """Write a FIT container to a seekable binary sink.

    Not safe for concurrent writers. Usable as a context manager; leaving the
    block without an exception closes the encoder.
    """

    def __init__(self, sink: BinaryIO):
        if not sink.seekable():
            raise ValueError("FIT sink must be seekable")
        self._sink = sink
        self._start = sink.tell()
        self._data_size = 0
        self._crc = 0
        self._closed = False
        self._definitions: dict[int, list[FieldDefinition]] = {}

        self._placeholder = HEADER_STRUCT.pack(HEADER_SIZE, PROTOCOL_VERSION, PROFILE_VERSION, 0, FIT_TAG) + b"\x00\x00"
        self._emit(self._placeholder)

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def data_size(self) -> int:
        return self._data_size

    def _emit(self, data: bytes):
        self._sink.write(data)
        self._crc = crc16(data, self._crc)

    def write(self, data: bytes) -> int:
        if self._closed:
            raise FitEncoderError("write() called on a closed FIT encoder")
        # bytes(5) would silently be five NULs
        data = memoryview(data).tobytes()
        self._emit(data)
        self._data_size += len(data)
        return len(data)

    def close(self) -> None:
        """Backfill the header and append the file CRC. Valid exactly once."""
        if self._closed:
            raise FitEncoderError("FIT encoder already closed")
        self._closed = True

        header = build_header(self._data_size)
        self._sink.seek(self._start)
        self._sink.write(header)

        # The running CRC saw the placeholder header. CRC is linear, so swap in
        # the final header by folding in the CRC of the difference.
        delta = bytes(a ^ b for a, b in zip(header, self._placeholder))
        file_crc = self._crc ^ crc16_shift(crc16(delta), self._data_size)

        self._sink.seek(self._start + HEADER_SIZE + self._data_size)
        self._sink.write(CRC_STRUCT.pack(file_crc))
        self._sink.flush()

    def __enter__(self) -> "FitEncoder":
        return self

    def __exit__(self, exc_type, exc, tb):
        if exc_type is None and not self._closed:
            self.close()

    # --- Messages ---

    def write_definition(self, local_type: int, global_number: int, fields: list[FieldDefinition]) -> None:
        if not 0 <= local_type <= 0x0F:
            raise ValueError(f"local message type must be 0-15, got {local_type}")
        record = bytearray([DEFINITION_FLAG | local_type, 0, 0])  # header, reserved, little-endian
        record += struct.pack("<HB", global_number, len(fields))
        for field in fields:
            record += bytes([field.number, field.base_type.size, field.base_type.type_id])
        self.write(bytes(record))
        self._definitions[local_type] = list(fields)

    def write_data(self, local_type: int, values: list[int | None]) -> None:
        fields = self._definitions.get(local_type)
        if fields is None:
            raise FitEncoderError(f"no definition written for local message type {local_type}")
        if len(values) != len(fields):
            raise ValueError(f"expected {len(fields)} values, got {len(values)}")
        record = bytearray([local_type])
        for field, value in zip(fields, values):
            if value is None:
                value = field.base_type.invalid
            record += struct.pack("<" + field.base_type.fmt, value)
        self.write(bytes(record))

    def write_activity(self, activity: FitActivity) -> None:
        """Write file_id, session and activity messages for one activity."""
        start = fit_timestamp(activity.start_time)
        end = start + int(activity.duration.total_seconds())
        elapsed_ms = int(round(activity.duration.total_seconds() * 1000))
        distance_cm = int(round(activity.distance * 100))

        self.write_definition(0, MESG_FILE_ID, [
            FieldDefinition(0, ENUM),      # type
            FieldDefinition(1, UINT16),    # manufacturer
            FieldDefinition(2, UINT16),    # product
            FieldDefinition(4, UINT32),    # time_created
        ])
        self.write_data(0, [FILE_TYPE_ACTIVITY, MANUFACTURER_DEVELOPMENT, 0, start])

        self.write_definition(1, MESG_SESSION, [
            FieldDefinition(253, UINT32),  # timestamp
            FieldDefinition(2, UINT32),    # start_time
            FieldDefinition(5, ENUM),      # sport
            FieldDefinition(7, UINT32),    # total_elapsed_time, ms
            FieldDefinition(8, UINT32),    # total_timer_time, ms
            FieldDefinition(9, UINT32),    # total_distance, cm
        ])
        self.write_data(1, [end, start, activity.sport_id, elapsed_ms, elapsed_ms, distance_cm])

        self.write_definition(2, MESG_ACTIVITY, [
            FieldDefinition(253, UINT32),  # timestamp
            FieldDefinition(0, UINT32),    # total_timer_time, ms
            FieldDefinition(1, UINT16),    # num_sessions
            FieldDefinition(3, ENUM),      # event
            FieldDefinition(4, ENUM),      # event_type
        ])
        self.write_data(2, [end, elapsed_ms, 1, EVENT_ACTIVITY, EVENT_TYPE_STOP])


def encode(payload: bytes = b"") -> bytes:
    """Wrap already-encoded data records in a FIT container."""
    buf = io.BytesIO()
    with FitEncoder(buf) as encoder:
        encoder.write(payload)
    return buf.getvalue()


def encode_activity(activity: FitActivity) -> bytes:
    buf = io.BytesIO()
    with FitEncoder(buf) as encoder:
        encoder.write_activity(activity)
    return buf.getvalue()
