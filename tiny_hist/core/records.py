"""
Binary record layout for histograms stored in a profile file.

Each histogram is written as a fixed header followed by one record per
nonzero bin (sparse encoding). The layout mirrors the C structures used by
the profile writer on LP64 platforms, little-endian:

    header: uint32 id, 4 pad, f64 sum_of_squares, f64 sum_of_values,
            f64 sum_of_weights, f64 min, f64 max, uint32 bins_used, 4 pad
    bin:    uint32 index, 4 pad, f64 weight

The bin count and the total weight of a histogram are schema-level settings
of the surrounding profile file and are not part of the record.
"""

import logging
import struct
from typing import Any, BinaryIO, NamedTuple, Optional, Tuple

logger = logging.getLogger(__name__)

HEADER_STRUCT = struct.Struct("<I4x5dI4x")
BIN_STRUCT = struct.Struct("<I4xd")


class RecordHeader(NamedTuple):
    """Fixed header of a histogram record."""

    record_id: int
    sum_of_squares: float
    sum_of_values: float
    sum_of_weights: float
    min_value: float
    max_value: float
    bins_used: int


class BinRecord(NamedTuple):
    """One nonzero bin of a histogram record."""

    index: int
    weight: float


def _write(stream: BinaryIO, layout: struct.Struct, values: Tuple[Any, ...]) -> bool:
    try:
        payload = layout.pack(*values)
    except struct.error as exc:
        logger.error("Cannot encode histogram record %r: %s", values, exc)
        return False
    try:
        written = stream.write(payload)
    except OSError as exc:
        logger.error("Failed to write histogram record: %s", exc)
        return False
    # Unbuffered raw streams may report a short write.
    if written is not None and written != len(payload):
        logger.error(
            "Short write of histogram record: %d of %d bytes", written, len(payload)
        )
        return False
    return True


def _read(stream: BinaryIO, size: int) -> Optional[bytes]:
    try:
        data = stream.read(size)
    except OSError as exc:
        logger.error("Failed to read histogram record: %s", exc)
        return None
    if data is None or len(data) != size:
        return None
    return data


def write_header(stream: BinaryIO, header: RecordHeader) -> bool:
    """
    Write a record header.

    Returns:
        True on success, False if the header could not be encoded or the
        stream rejected the write.
    """
    return _write(stream, HEADER_STRUCT, tuple(header))


def read_header(stream: BinaryIO) -> Optional[RecordHeader]:
    """
    Read a record header.

    Returns:
        The header, or None if a complete header could not be read.
    """
    data = _read(stream, HEADER_STRUCT.size)
    if data is None:
        return None
    return RecordHeader(*HEADER_STRUCT.unpack(data))


def write_bin(stream: BinaryIO, record: BinRecord) -> bool:
    """Write one bin record. Returns False on failure."""
    return _write(stream, BIN_STRUCT, (record.index, record.weight))


def read_bin(stream: BinaryIO) -> Optional[BinRecord]:
    """Read one bin record. Returns None on a short or failed read."""
    data = _read(stream, BIN_STRUCT.size)
    if data is None:
        return None
    return BinRecord(*BIN_STRUCT.unpack(data))
