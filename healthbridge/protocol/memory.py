"""Paged access to the device's addressable memory (EEPROM)."""

from __future__ import annotations

from healthbridge.core.errors import ProtocolViolationError
from healthbridge.protocol.link import PacketLink, Response

OP_START_TRANSACTION = 0x0000
OP_END_TRANSACTION = 0x0F00
OP_READ = 0x0100
OP_WRITE = 0x01C0
RESPONSE_FLAG = 0x8000

_START_PAYLOAD = bytes([0x00, 0x00, 0x10, 0x00])
_END_PAYLOAD = bytes([0x00, 0x00, 0x00, 0x00])
_ADDRESS_SPACE = 0x10000


class AddressableMemory:
    def __init__(self, link: PacketLink) -> None:
        self.link = link

    async def start_transaction(self) -> None:
        await self._exchange(OP_START_TRANSACTION, _START_PAYLOAD)

    async def end_transaction(self) -> None:
        await self._exchange(OP_END_TRANSACTION, _END_PAYLOAD)

    async def read_region(self, start: int, length: int, block_size: int) -> tuple[bytes, bool]:
        """Read ``length`` bytes starting at ``start`` in pages of ``block_size``.

        Returns the bytes read and whether every page was populated. A page the
        device reports shorter than requested has not been written yet; the
        scan stops there and only the bytes of the earlier pages are returned.
        """
        _check_range(start, length, block_size)
        data = bytearray()

        for addr, page_len in _pages(start, length, block_size):
            response = await self._exchange(OP_READ, bytes([addr >> 8, addr & 0xFF, page_len, 0x00]))
            payload = response.payload
            if len(payload) < 3 or payload[0] << 8 | payload[1] != addr or payload[2] != page_len:
                raise ProtocolViolationError(f"Invalid read response for address 0x{addr:04x}")
            if len(payload) < 3 + page_len:
                return bytes(data), False
            data.extend(payload[3 : 3 + page_len])

        return bytes(data), True

    async def write_region(self, start: int, data: bytes, block_size: int) -> None:
        _check_range(start, len(data), block_size)

        for addr, page_len in _pages(start, len(data), block_size):
            offset = addr - start
            page = data[offset : offset + page_len]
            command = bytes([addr >> 8, addr & 0xFF, page_len]) + page + b"\x00"
            response = await self._exchange(OP_WRITE, command)
            payload = response.payload
            if len(payload) < 2 or payload[0] << 8 | payload[1] != addr:
                raise ProtocolViolationError(f"Invalid write response for address 0x{addr:04x}")

    async def _exchange(self, opcode: int, payload: bytes) -> Response:
        response = await self.link.command(opcode, payload)
        expected = opcode | RESPONSE_FLAG
        if response.opcode != expected:
            raise ProtocolViolationError(
                f"Expected response opcode 0x{expected:04x}, got 0x{response.opcode:04x}"
            )
        return response


def _check_range(start: int, length: int, block_size: int) -> None:
    if not 0 < block_size <= 0xFF:
        raise ValueError("block_size must be between 1 and 255")
    if start < 0 or start + length > _ADDRESS_SPACE:
        raise ValueError(f"Region 0x{start:04x}+{length} is outside the 16-bit address space")


def _pages(start: int, length: int, block_size: int) -> list[tuple[int, int]]:
    return [
        (start + offset, min(block_size, length - offset))
        for offset in range(0, length, block_size)
    ]
