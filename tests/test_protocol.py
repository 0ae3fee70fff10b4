"""Probe packet codec tests."""

import struct

import pytest

from pathprobe.errors import DecodeError, EncodeError
from pathprobe.protocol import (
    HEADER_SIZE,
    MAX_PACKET_SIZE,
    MAX_PAYLOAD_LENGTH,
    ProbePacket,
    decode,
    encode,
)


@pytest.mark.parametrize("payload_length", [0, 1, 100, 1400, MAX_PAYLOAD_LENGTH])
def test_round_trip(payload_length):
    packet = ProbePacket.build(sequence_id=7, payload_size=payload_length, fill=b'\xab\xcd')
    assert decode(encode(packet)) == packet


def test_wire_layout_is_network_order():
    packet = ProbePacket(sequence_id=0x0102, payload_length=3, payload=b'xyz')
    assert encode(packet) == b'\x01\x02\x00\x03xyz'


def test_build_fills_payload():
    packet = ProbePacket.build(sequence_id=1, payload_size=5, fill=b'ab')
    assert packet.payload == b'ababa'
    assert packet.payload_length == 5


def test_encode_rejects_length_mismatch():
    with pytest.raises(EncodeError):
        encode(ProbePacket(sequence_id=1, payload_length=4, payload=b'abc'))


@pytest.mark.parametrize("sequence_id", [0, -1, 0x10000])
def test_encode_rejects_bad_sequence_id(sequence_id):
    with pytest.raises(EncodeError):
        encode(ProbePacket(sequence_id=sequence_id, payload_length=0, payload=b''))


@pytest.mark.parametrize("data", [b'', b'\x00', b'\x00\x01\x00'])
def test_decode_rejects_short_header(data):
    with pytest.raises(DecodeError):
        decode(data)


def test_decode_rejects_header_only_with_declared_payload():
    with pytest.raises(DecodeError):
        decode(struct.pack('!HH', 1, 10))


def test_decode_rejects_truncated_payload():
    data = struct.pack('!HH', 1, 10) + b'123456789'
    with pytest.raises(DecodeError):
        decode(data)


def test_decode_rejects_sequence_zero():
    with pytest.raises(DecodeError):
        decode(struct.pack('!HH', 0, 0))


def test_decode_ignores_trailing_bytes():
    data = struct.pack('!HH', 9, 2) + b'okEXTRA'
    packet = decode(data)
    assert packet.sequence_id == 9
    assert packet.payload == b'ok'


def test_decode_accepts_memoryview_slice():
    buf = bytearray(MAX_PACKET_SIZE)
    data = encode(ProbePacket.build(3, 8))
    buf[:len(data)] = data
    packet = decode(memoryview(buf)[:len(data)])
    assert packet.sequence_id == 3
    assert isinstance(packet.payload, bytes)


def test_receive_buffer_covers_largest_packet():
    assert MAX_PACKET_SIZE == HEADER_SIZE + MAX_PAYLOAD_LENGTH
