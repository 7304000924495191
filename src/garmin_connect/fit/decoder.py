"""FIT header reading and container validation."""

from dataclasses import dataclass
from typing import BinaryIO

from garmin_connect.exceptions import FitFormatError
from garmin_connect.fit.crc import crc16
from garmin_connect.fit.encoder import CRC_STRUCT, FIT_TAG, HEADER_STRUCT

MIN_FILE_SIZE = 14
SUPPORTED_PROTOCOL_MAJORS = (1, 2)


@dataclass(frozen=True)
class FitHeader:
    size: int
    protocol_version: int
    profile_version: int
    data_size: int
    crc: int | None

    @property
    def protocol_major(self) -> int:
        return self.protocol_version >> 4


def parse_header(data: bytes) -> FitHeader:
    if len(data) < 12:
        raise FitFormatError(f"FIT header needs at least 12 bytes, got {len(data)}")
    size = data[0]
    if size not in (12, 14):
        raise FitFormatError(f"Unsupported FIT header size {size}")
    if len(data) < size:
        raise FitFormatError(f"Truncated FIT header: {len(data)} of {size} bytes")

    _, protocol, profile, data_size, tag = HEADER_STRUCT.unpack_from(data)
    if tag != FIT_TAG:
        raise FitFormatError(f"Missing .FIT tag (found {tag!r})")
    if protocol >> 4 not in SUPPORTED_PROTOCOL_MAJORS:
        raise FitFormatError(f"Unsupported FIT protocol version {protocol >> 4}.{protocol & 0x0F}")

    crc = CRC_STRUCT.unpack_from(data, 12)[0] if size == 14 else None
    return FitHeader(size=size, protocol_version=protocol, profile_version=profile, data_size=data_size, crc=crc)


def read_header(stream: BinaryIO) -> FitHeader:
    first = stream.read(1)
    if not first:
        raise FitFormatError("Empty FIT stream")
    rest = stream.read(first[0] - 1)
    return parse_header(first + rest)


def check(data: bytes) -> FitHeader:
    """Validate a complete FIT file and return its header.

    Raises:
        FitFormatError: if the size, tag or either CRC does not match.
    """
    header = parse_header(data)

    # A zero header CRC means "not computed" in the FIT format.
    if header.crc not in (None, 0) and header.crc != crc16(data[:12]):
        raise FitFormatError("FIT header CRC mismatch")

    expected = header.size + header.data_size + 2
    if len(data) != expected:
        raise FitFormatError(f"FIT data size mismatch: header says {expected} bytes, file has {len(data)}")

    file_crc = CRC_STRUCT.unpack_from(data, len(data) - 2)[0]
    if file_crc != crc16(data[:-2]):
        raise FitFormatError("FIT file CRC mismatch")
    return header


def validate(data: bytes) -> bool:
    try:
        check(data)
    except FitFormatError:
        return False
    return True
