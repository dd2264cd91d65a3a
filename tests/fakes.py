from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager

from healthbridge.core.model import DeviceInfo
from healthbridge.protocol.framing import decode_packet, encode_packet

READ_TIMEOUT_S = 1.0


class RecordingWriter:
    def __init__(self) -> None:
        self.writes: list[bytes] = []

    async def write(self, data: bytes) -> None:
        self.writes.append(bytes(data))


class ScriptedReader:
    def __init__(self, frames: Sequence[bytes] = ()) -> None:
        self.frames = list(frames)
        self.reads = 0

    async def read_frame(self) -> bytes:
        self.reads += 1
        if not self.frames:
            raise AssertionError("read_frame called with no scripted frame left")
        return self.frames.pop(0)


class QueueReader:
    def __init__(self) -> None:
        self.frames: asyncio.Queue[bytes] = asyncio.Queue()

    async def read_frame(self) -> bytes:
        return await asyncio.wait_for(self.frames.get(), READ_TIMEOUT_S)


class CallbackWriter:
    def __init__(self, device: FakeOmronDevice, uuid: str) -> None:
        self.device = device
        self.uuid = uuid

    async def write(self, data: bytes) -> None:
        self.device.on_write(self.uuid, bytes(data))


class FakeOmronDevice:
    """Emulates the Omron memory protocol over one or more characteristics.

    ``pages`` maps a page start address to the bytes stored there; reads of
    any other address answer with a short (unwritten) page.
    """

    def __init__(
        self,
        *,
        model: str,
        service: str,
        tx_chars: Sequence[str],
        rx_chars: Sequence[str],
        chunk_size: int,
        unlock_char: str | None = None,
        secret: bytes | None = None,
        pages: dict[int, bytes] | None = None,
        manufacturer: str = "OMRONHEALTHCARE",
    ) -> None:
        self.info = DeviceInfo(manufacturer=manufacturer, model=model, firmware="1.0.0")
        self.service = service
        self.tx_chars = tuple(tx_chars)
        self.rx_chars = tuple(rx_chars)
        self.chunk_size = chunk_size
        self.unlock_char = unlock_char
        self.secret = secret
        self.pages = dict(pages or {})

        self.opcodes: list[int] = []
        self.writes: list[tuple[int, bytes]] = []
        self.key_commands: list[bytes] = []
        self.readers: dict[str, QueueReader] = {}
        self._buffer = bytearray()

    def reader_for(self, uuid: str) -> QueueReader:
        if uuid not in self.rx_chars and uuid != self.unlock_char:
            raise AssertionError(f"Unexpected subscription to {uuid}")
        return self.readers.setdefault(uuid, QueueReader())

    def on_write(self, uuid: str, data: bytes) -> None:
        if uuid == self.unlock_char:
            self._handle_key(data)
            return
        if uuid not in self.tx_chars:
            raise AssertionError(f"Unexpected write to {uuid}")
        self._buffer.extend(data)
        if len(self._buffer) >= self._buffer[0]:
            packet = bytes(self._buffer[: self._buffer[0]])
            self._buffer.clear()
            self._respond(self._handle(packet))

    def _respond(self, packet: bytes) -> None:
        for index in range(0, len(packet), self.chunk_size):
            uuid = self.rx_chars[index // self.chunk_size]
            self.reader_for(uuid).frames.put_nowait(packet[index : index + self.chunk_size])

    def _handle(self, packet: bytes) -> bytes:
        opcode, payload = decode_packet(packet)
        self.opcodes.append(opcode)
        if opcode in (0x0000, 0x0F00):
            return encode_packet(opcode | 0x8000, b"")
        addr = payload[0] << 8 | payload[1]
        size = payload[2]
        if opcode == 0x0100:
            data = self.pages.get(addr)
            if data is None:
                return encode_packet(0x8100, payload[:3])
            return encode_packet(0x8100, payload[:3] + data[:size])
        if opcode == 0x01C0:
            self.writes.append((addr, payload[3 : 3 + size]))
            return encode_packet(0x81C0, payload[:2])
        raise AssertionError(f"Unexpected opcode 0x{opcode:04x}")

    def _handle_key(self, data: bytes) -> None:
        self.key_commands.append(data)
        command, key = data[0], data[1:]
        status = 0x00
        if command in (0x00, 0x01) and self.secret is not None and key != self.secret:
            status = 0x01
        self.reader_for(self.unlock_char).frames.put_nowait(bytes([0x80 | command, status]))


class FakeSession:
    def __init__(self, transport: FakeTransport) -> None:
        self.transport = transport
        self.device = transport.device

    async def pair(self) -> None:
        self.transport.paired = True
        self.transport.events.append("pair")

    async def read_device_info(self) -> DeviceInfo:
        return self.device.info

    def writer(self, service_uuid: str, char_uuid: str) -> CallbackWriter:
        assert service_uuid == self.device.service
        return CallbackWriter(self.device, char_uuid)

    async def subscribe(self, service_uuid: str, char_uuid: str) -> QueueReader:
        assert service_uuid == self.device.service
        return self.device.reader_for(char_uuid)


class FakeTransport:
    def __init__(self, device: FakeOmronDevice, *, paired: bool = True) -> None:
        self.device = device
        self.paired = paired
        self.events: list[str] = []
        self.advertisement_waits: list[tuple[str, bytes, int, float | None]] = []

    async def discover(self, address: str) -> str:
        self.events.append("discover")
        return address

    async def is_paired(self, address: str) -> bool:
        return self.paired

    async def wait_for_advertisement(
        self,
        address: str,
        pattern: bytes,
        *,
        offset: int = 0,
        timeout_s: float | None = None,
    ) -> str:
        self.advertisement_waits.append((address, pattern, offset, timeout_s))
        self.events.append("advertisement")
        return address

    @asynccontextmanager
    async def connect(self, target: str) -> AsyncIterator[FakeSession]:
        self.events.append("connect")
        try:
            yield FakeSession(self)
        finally:
            self.events.append("disconnect")
