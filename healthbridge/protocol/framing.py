"""Packet framing for the Omron command channel.

A packet is ``[length, opcode_hi, opcode_lo, payload..., checksum]`` where
``length`` counts every byte of the packet and ``checksum`` is chosen so that
the XOR of all bytes is zero.
"""

from __future__ import annotations

from functools import reduce
from operator import xor

from healthbridge.core.errors import CrcMismatchError, PacketTooLargeError, ShortPacketError

PACKET_HEADER_SIZE = 4  # length, opcode (2), checksum
MAX_PACKET_SIZE = 0xFF


def checksum(data: bytes) -> int:
    return reduce(xor, data, 0)


def additive_checksum(data: bytes) -> int:
    return sum(data) & 0xFF


def encode_packet(opcode: int, payload: bytes) -> bytes:
    length = PACKET_HEADER_SIZE + len(payload)
    if length > MAX_PACKET_SIZE:
        raise PacketTooLargeError(f"Packet of {length} bytes does not fit the length field")
    packet = bytearray([length, (opcode >> 8) & 0xFF, opcode & 0xFF])
    packet.extend(payload)
    packet.append(checksum(packet))
    return bytes(packet)


def decode_packet(packet: bytes) -> tuple[int, bytes]:
    if not packet:
        raise ShortPacketError("Received packet is empty")
    length = packet[0]
    if length < PACKET_HEADER_SIZE or len(packet) < length:
        raise ShortPacketError("Received packet is too short")
    packet = packet[:length]
    if checksum(packet) != 0:
        raise CrcMismatchError("CRC error in received packet")
    opcode = packet[1] << 8 | packet[2]
    return opcode, bytes(packet[3:-1])
