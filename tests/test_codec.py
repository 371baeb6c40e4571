# tests/test_codec.py
import pytest

from hoptrace.config import MIN_PROBE_SIZE
from hoptrace.trace.codec import (
    HEADER_SIZE,
    PADDING_BYTE,
    ProbeHeader,
    build_probe_payload,
    decode_timestamp,
    encode_timestamp,
    parse_probe_header,
    ticks_elapsed,
    to_ticks,
)


@pytest.mark.parametrize("ticks", [0, 1, 0x12345678, 2**32 - 1])
def test_timestamp_round_trip(ticks):
    """Decoding an encoded timestamp returns the original value."""
    buffer = bytearray(HEADER_SIZE)
    encode_timestamp(buffer, ticks)
    assert decode_timestamp(buffer) == ticks


def test_timestamp_is_little_endian_at_fixed_offset():
    """The least significant byte is written first, after the sequence number."""
    buffer = bytearray(HEADER_SIZE)
    encode_timestamp(buffer, 0x01020304)
    assert bytes(buffer) == b"\x00\x00\x04\x03\x02\x01"


def test_timestamp_out_of_range_rejected():
    with pytest.raises(ValueError):
        encode_timestamp(bytearray(HEADER_SIZE), 2**32)
    with pytest.raises(ValueError):
        encode_timestamp(bytearray(HEADER_SIZE), -1)


def test_build_probe_payload_layout():
    """Payload carries sequence and timestamp, then padding up to size."""
    payload = build_probe_payload(0x0102, 0xAABBCCDD, 16)
    assert len(payload) == 16
    assert payload[:2] == b"\x02\x01"
    assert payload[2:6] == b"\xdd\xcc\xbb\xaa"
    assert payload[6:] == bytes([PADDING_BYTE]) * 10
    assert parse_probe_header(payload) == ProbeHeader(sequence=0x0102, timestamp=0xAABBCCDD)


def test_build_probe_payload_minimum_size():
    payload = build_probe_payload(7, 99, HEADER_SIZE)
    assert len(payload) == HEADER_SIZE
    with pytest.raises(ValueError):
        build_probe_payload(7, 99, HEADER_SIZE - 1)


def test_build_probe_payload_rejects_wide_sequence():
    with pytest.raises(ValueError):
        build_probe_payload(2**16, 0, 56)


def test_truncated_fragment_has_no_header():
    """Fragments shorter than the embedded header cannot be parsed."""
    payload = build_probe_payload(3, 1234, 56)
    assert parse_probe_header(payload[:HEADER_SIZE - 1]) is None
    assert parse_probe_header(b"") is None
    assert parse_probe_header(payload[:HEADER_SIZE]) == ProbeHeader(3, 1234)


def test_ticks_conversion_and_wrap():
    assert to_ticks(0.0) == 0
    assert to_ticks(1.5) == 1500
    assert to_ticks(2**32 / 1000 + 0.002) == 2
    assert ticks_elapsed(1500, 1000) == 500
    assert ticks_elapsed(5, 2**32 - 5) == 10


def test_config_minimum_matches_header():
    assert MIN_PROBE_SIZE == HEADER_SIZE
