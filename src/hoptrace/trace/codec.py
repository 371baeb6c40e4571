"""
Probe payload layout and binary timestamp codec.

Every probe's echo data starts with a fixed header so that replies which
only quote the leading bytes of the probe can still be correlated:

    offset 0  uint16  sequence number   (little-endian)
    offset 2  uint32  send timestamp    (little-endian, milliseconds mod 2**32)
    offset 6  ...     padding up to the configured probe size

Copyright (c) 2025 DNS Science.io, an After Dark Systems, LLC company.
All rights reserved.
"""

import struct
from dataclasses import dataclass

SEQUENCE_OFFSET = 0
TIMESTAMP_OFFSET = 2
HEADER_SIZE = 6

# Timestamps are carried in milliseconds
TICKS_PER_SECOND = 1000
TICK_MODULUS = 2**32

SEQUENCE_MODULUS = 2**16

PADDING_BYTE = 0x51  # 'Q'

_SEQUENCE = struct.Struct("<H")
_TIMESTAMP = struct.Struct("<I")


@dataclass(frozen=True)
class ProbeHeader:
    """Header embedded at the start of every probe's echo data."""
    sequence: int
    timestamp: int  # ticks


def to_ticks(seconds: float) -> int:
    """Convert clock seconds to a 32-bit millisecond tick count."""
    return int(round(seconds * TICKS_PER_SECOND)) % TICK_MODULUS


def ticks_elapsed(now_ticks: int, then_ticks: int) -> int:
    """Ticks between two timestamps, tolerating one wrap of the counter."""
    return (now_ticks - then_ticks) % TICK_MODULUS


def encode_timestamp(buffer: bytearray, ticks: int, offset: int = TIMESTAMP_OFFSET) -> bytearray:
    """Write ``ticks`` as a little-endian uint32 at ``offset``."""
    if not 0 <= ticks < TICK_MODULUS:
        raise ValueError(f"timestamp out of range: {ticks}")
    _TIMESTAMP.pack_into(buffer, offset, ticks)
    return buffer


def decode_timestamp(buffer: bytes, offset: int = TIMESTAMP_OFFSET) -> int:
    """Read a little-endian uint32 timestamp from ``offset``."""
    return _TIMESTAMP.unpack_from(buffer, offset)[0]


def build_probe_payload(sequence: int, ticks: int, size: int) -> bytes:
    """Build the echo data for one probe.

    Args:
        sequence: 16-bit probe sequence number
        ticks: Send time in ticks (see to_ticks)
        size: Total data size in bytes, at least HEADER_SIZE

    Returns:
        Payload bytes of exactly ``size`` length
    """
    if size < HEADER_SIZE:
        raise ValueError(f"probe size {size} is smaller than the {HEADER_SIZE}-byte header")
    if not 0 <= sequence < SEQUENCE_MODULUS:
        raise ValueError(f"sequence number out of range: {sequence}")

    buffer = bytearray([PADDING_BYTE]) * size
    _SEQUENCE.pack_into(buffer, SEQUENCE_OFFSET, sequence)
    encode_timestamp(buffer, ticks)
    return bytes(buffer)


def parse_probe_header(fragment: bytes) -> ProbeHeader | None:
    """Extract the embedded header, or None if the fragment is truncated."""
    if len(fragment) < HEADER_SIZE:
        return None
    sequence = _SEQUENCE.unpack_from(fragment, SEQUENCE_OFFSET)[0]
    return ProbeHeader(sequence=sequence, timestamp=decode_timestamp(fragment))
