#!/usr/bin/env python3
"""
Probe packet construction and parsing.

Wire format (network byte order):
     0                   1                   2                   3
     0 1 2 3 4 5 6 7 8 9 0 1 2 3 4 5 6 7 8 9 0 1 2 3 4 5 6 7 8 9 0 1
    +-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+
    |          sequence id          |        payload length         |
    +-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+
    |                    payload (payload length bytes)             |
    +-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+

Sequence ids start at 1. Id 0 is reserved as the gap sentinel used by the
statistics engine and is rejected in both directions.
"""

import struct
from dataclasses import dataclass

from .errors import DecodeError, EncodeError


HEADER_FORMAT = '!HH'
HEADER_SIZE = struct.calcsize(HEADER_FORMAT)

MAX_SEQUENCE_ID = 0xFFFF
MAX_PAYLOAD_LENGTH = 0xFFFF

# Receive buffer size: the largest packet the header can describe.
MAX_PACKET_SIZE = HEADER_SIZE + MAX_PAYLOAD_LENGTH

# Largest UDP payload in a single IPv4 datagram (65535 - 20 IP - 8 UDP)
MAX_UDP_PAYLOAD = 65507
MAX_PROBE_PAYLOAD = MAX_UDP_PAYLOAD - HEADER_SIZE


@dataclass(frozen=True)
class ProbePacket:
    """
    One probe datagram.

    Example:
        packet = ProbePacket.build(sequence_id=1, payload_size=100)
        sock.sendto(encode(packet), dest)
    """
    sequence_id: int
    payload_length: int
    payload: bytes

    @classmethod
    def build(cls, sequence_id: int, payload_size: int, fill: bytes = b'\x00') -> 'ProbePacket':
        """
        Build a packet with a filler payload of the given size.

        Args:
            sequence_id: Sequence id (1-65535)
            payload_size: Number of filler bytes
            fill: Byte pattern repeated to fill the payload
        """
        if payload_size and fill:
            repeats = payload_size // len(fill) + 1
            payload = (fill * repeats)[:payload_size]
        else:
            payload = bytes(payload_size)
        return cls(sequence_id=sequence_id, payload_length=payload_size, payload=payload)


def encode(packet: ProbePacket) -> bytes:
    """
    Serialize a probe packet.

    Args:
        packet: Packet to serialize

    Returns:
        Header followed by the raw payload bytes

    Raises:
        EncodeError: If the declared length does not match the payload,
            or a field does not fit in 16 bits
    """
    if not 1 <= packet.sequence_id <= MAX_SEQUENCE_ID:
        raise EncodeError(f"Sequence id out of range: {packet.sequence_id} (expected 1-{MAX_SEQUENCE_ID})")
    if not 0 <= packet.payload_length <= MAX_PAYLOAD_LENGTH:
        raise EncodeError(f"Payload length out of range: {packet.payload_length}")
    if packet.payload_length != len(packet.payload):
        raise EncodeError(
            f"Payload length mismatch: header says {packet.payload_length}, "
            f"payload has {len(packet.payload)} bytes"
        )

    header = struct.pack(HEADER_FORMAT, packet.sequence_id, packet.payload_length)
    return header + bytes(packet.payload)


def decode(data: bytes) -> ProbePacket:
    """
    Parse a probe packet from datagram bytes.

    Bytes after the declared payload are ignored.

    Args:
        data: Raw datagram

    Returns:
        Decoded ProbePacket

    Raises:
        DecodeError: If the datagram is truncated or carries sequence id 0

    Example:
        data, addr = sock.recvfrom(MAX_PACKET_SIZE)
        packet = decode(data)
        print(f"probe seq={packet.sequence_id}")
    """
    if len(data) < HEADER_SIZE:
        raise DecodeError(f"Datagram too short for probe header ({len(data)} < {HEADER_SIZE} bytes)")

    sequence_id, payload_length = struct.unpack_from(HEADER_FORMAT, data, 0)

    end = HEADER_SIZE + payload_length
    if len(data) < end:
        raise DecodeError(
            f"Datagram truncated: header declares {payload_length} payload bytes, "
            f"only {len(data) - HEADER_SIZE} present"
        )
    if sequence_id == 0:
        raise DecodeError("Sequence id 0 is not a valid probe id")

    return ProbePacket(
        sequence_id=sequence_id,
        payload_length=payload_length,
        payload=bytes(data[HEADER_SIZE:end]),
    )
