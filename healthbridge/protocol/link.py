"""Command/response exchange over one or more GATT characteristics."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from healthbridge.core.errors import PacketTooLargeError, ShortPacketError
from healthbridge.protocol.framing import PACKET_HEADER_SIZE, decode_packet, encode_packet
from healthbridge.transports.base import ReadChannel, WriteChannel


@dataclass(frozen=True)
class Response:
    opcode: int
    payload: bytes


class PacketLink:
    """Splits commands across write channels and reassembles responses.

    Single-characteristic devices use one channel pair with a chunk size large
    enough that packets are never fragmented. Multi-characteristic devices
    write chunk *i* to write channel *i* and receive chunk *i* of the response
    on read channel *i*.
    """

    def __init__(
        self,
        writers: Sequence[WriteChannel],
        readers: Sequence[ReadChannel],
        chunk_size: int,
    ) -> None:
        if not writers or not readers:
            raise ValueError("PacketLink needs at least one write and one read channel")
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        self.writers = tuple(writers)
        self.readers = tuple(readers)
        self.chunk_size = chunk_size

    @property
    def max_packet_size(self) -> int:
        return self.chunk_size * len(self.writers)

    async def raw_exchange(self, tx_data: bytes, expected_len: int) -> bytes:
        if len(self.writers) != 1 or len(self.readers) != 1:
            raise ValueError("raw_exchange requires exactly one write and one read channel")

        await self.writers[0].write(tx_data)
        frame = await self.readers[0].read_frame()
        if len(frame) < expected_len:
            raise ShortPacketError("Received packet is too short")
        return bytes(frame[:expected_len])

    async def command(self, opcode: int, payload: bytes) -> Response:
        packet = encode_packet(opcode, payload)
        if len(packet) > self.max_packet_size:
            raise PacketTooLargeError(
                f"Packet of {len(packet)} bytes exceeds {self.max_packet_size} bytes "
                f"({len(self.writers)} x {self.chunk_size})"
            )

        for index in range(0, len(packet), self.chunk_size):
            await self.writers[index // self.chunk_size].write(packet[index : index + self.chunk_size])

        response = await self._receive()
        resp_opcode, resp_payload = decode_packet(response)
        return Response(opcode=resp_opcode, payload=resp_payload)

    async def _receive(self) -> bytes:
        received = bytearray()
        declared = 0

        for index, reader in enumerate(self.readers):
            frame = await reader.read_frame()
            if index == 0:
                if not frame:
                    raise ShortPacketError("Received packet is too short")
                declared = frame[0]
                if declared < PACKET_HEADER_SIZE:
                    raise ShortPacketError("Received packet is too short")

            received.extend(frame)
            if len(received) >= declared:
                return bytes(received[:declared])

        raise ShortPacketError("Received packet is too short")
