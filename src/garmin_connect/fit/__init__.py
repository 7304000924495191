"""FIT container encoding and validation."""

from garmin_connect.fit.crc import crc16
from garmin_connect.fit.decoder import FitHeader, check, parse_header, read_header, validate
from garmin_connect.fit.encoder import (
    HEADER_SIZE,
    FitActivity,
    FitEncoder,
    encode,
    encode_activity,
)

__all__ = [
    "HEADER_SIZE",
    "FitActivity",
    "FitEncoder",
    "FitHeader",
    "check",
    "crc16",
    "encode",
    "encode_activity",
    "parse_header",
    "read_header",
    "validate",
]
