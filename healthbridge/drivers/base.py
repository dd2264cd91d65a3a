"""Shared pairing and fetch sequence for Omron BLE devices."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence
from datetime import datetime
from typing import ClassVar
from zoneinfo import ZoneInfo

from healthbridge.core.errors import (
    AlreadyPairedError,
    DecodeError,
    NotPairedError,
    UnknownDeviceError,
)
from healthbridge.core.model import DeviceConfig, DriverConfig, Record
from healthbridge.core.timeutil import current_local, local_to_ns
from healthbridge.protocol.link import PacketLink
from healthbridge.protocol.memory import AddressableMemory
from healthbridge.transports.base import Session, Transport

LOGGER = logging.getLogger(__name__)

# Manufacturer-specific data prefix advertised when a unit has data to sync.
ADVERTISEMENT_PATTERN = bytes([0x0E, 0x02])
YEAR_BASE = 2000

Clock = Callable[[ZoneInfo], datetime]


class OmronDriver(ABC):
    manufacturer: ClassVar[str] = "OMRONHEALTHCARE"
    model: ClassVar[str]
    main_service: ClassVar[str]
    tx_chars: ClassVar[tuple[str, ...]]
    rx_chars: ClassVar[tuple[str, ...]]
    chunk_size: ClassVar[int]

    record_banks: ClassVar[tuple[int, ...]]
    record_count: ClassVar[int]
    record_len: ClassVar[int] = 0x10

    def __init__(
        self,
        device: DeviceConfig,
        transport: Transport,
        *,
        clock: Clock = current_local,
    ) -> None:
        self.id = device.id
        self.config: DriverConfig = device.driver_config
        self.adv_timeout = device.adv_timeout
        self.transport = transport
        self.clock = clock

    async def pair(self) -> None:
        addr = self.config.addr
        target = await self.transport.discover(addr)

        if await self.transport.is_paired(addr):
            raise AlreadyPairedError(f"Device {addr} is already paired")

        async with self.transport.connect(target) as session:
            await self.check_device(session)
            await session.pair()
            LOGGER.info("%s: bonded, provisioning", self.id)
            await self.provision(session)

    async def fetch_records(self) -> list[Record]:
        addr = self.config.addr
        if not await self.transport.is_paired(addr):
            raise NotPairedError(f"Device {addr} is not yet paired")

        target = await self.transport.wait_for_advertisement(
            addr,
            ADVERTISEMENT_PATTERN,
            offset=0,
            timeout_s=self.adv_timeout,
        )
        LOGGER.info("%s: received advertisement, trying to connect", self.id)

        async with self.transport.connect(target) as session:
            await self.check_device(session)
            await self.unlock(session)

            memory = AddressableMemory(await self.open_link(session))
            await memory.start_transaction()
            await self.sync_clock(memory)
            records = await self.sweep(memory)
            await memory.end_transaction()

        return records

    async def check_device(self, session: Session) -> None:
        info = await session.read_device_info()
        if info.manufacturer != self.manufacturer or info.model != self.model:
            raise UnknownDeviceError(
                f"Unknown device: {info.manufacturer!r} {info.model!r}, "
                f"expected {self.manufacturer!r} {self.model!r}"
            )
        LOGGER.debug("%s: identified %s %s firmware %s", self.id, info.manufacturer, info.model, info.firmware)

    async def provision(self, session: Session) -> None:
        memory = AddressableMemory(await self.open_link(session))
        await memory.start_transaction()
        await self.sync_clock(memory)
        await memory.end_transaction()

    async def unlock(self, session: Session) -> None:
        """Hook for models that need an unlock exchange before memory access."""

    async def open_link(self, session: Session) -> PacketLink:
        return await open_packet_link(session, self.main_service, self.tx_chars, self.rx_chars, self.chunk_size)

    async def sweep(self, memory: AddressableMemory) -> list[Record]:
        records: list[Record] = []
        for bank, start in enumerate(self.record_banks, start=1):
            for slot in range(self.record_count):
                addr = start + slot * self.record_len
                data, populated = await memory.read_region(addr, self.record_len, self.record_len)
                if not populated:
                    continue
                record = self.decode_record(data, bank)
                if record is not None:
                    records.append(record)
        return records

    def timestamp(self, year: int, month: int, day: int, hour: int, minute: int, second: int) -> int:
        ts = local_to_ns(self.config.tz, year, month, day, hour, minute, second)
        if ts is None:
            raise DecodeError(
                f"Unable to make timestamp from {year:04d}-{month:02d}-{day:02d} "
                f"{hour:02d}:{minute:02d}:{second:02d} in {self.config.tz.key}"
            )
        return ts

    @abstractmethod
    async def sync_clock(self, memory: AddressableMemory) -> None:
        """Write the current local time into the device clock block."""

    @abstractmethod
    def decode_record(self, data: bytes, bank: int) -> Record | None:
        """Decode one populated slot; None when the slot holds no measurement."""


async def open_packet_link(
    session: Session,
    service_uuid: str,
    tx_chars: Sequence[str],
    rx_chars: Sequence[str],
    chunk_size: int,
) -> PacketLink:
    writers = [session.writer(service_uuid, uuid) for uuid in tx_chars]
    readers = [await session.subscribe(service_uuid, uuid) for uuid in rx_chars]
    return PacketLink(writers, readers, chunk_size)


def time_fields(now: datetime) -> bytes:
    """Encode local time as (year - 2000, month, day, hour, minute, second)."""
    return bytes([now.year - YEAR_BASE, now.month, now.day, now.hour, now.minute, now.second])
