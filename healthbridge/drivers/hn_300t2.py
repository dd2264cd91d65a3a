"""Omron HN-300T2 (HN300T2IntelliIT) body-composition scale."""

from __future__ import annotations

from healthbridge.core.model import Record
from healthbridge.drivers.base import OmronDriver, YEAR_BASE, time_fields
from healthbridge.protocol.framing import additive_checksum
from healthbridge.protocol.memory import AddressableMemory

MAIN_SERVICE = "0000fe4a-0000-1000-8000-00805f9b34fb"
TX_CHAR = "db5b55e0-aee7-11e1-965e-0002a5d5c51b"
RX_CHAR = "49123040-aee8-11e1-a74d-0002a5d5c51b"

# Large enough that commands are never fragmented.
CMD_CHUNK_SIZE = 0xFF

TIMESYNC_ADDR = 0x0248
TIMESYNC_LEN = 0x08

NO_WEIGHT = 0xFFFF
WEIGHT_DIVISOR = 20.0  # the unit reports weight in steps of 50 g


def build_clock_block(fields: bytes) -> bytes:
    block = bytearray(TIMESYNC_LEN)
    block[0:6] = fields
    block[6] = additive_checksum(block[:6])
    block[7] = 0xFF
    return bytes(block)


class HN300T2Driver(OmronDriver):
    model = "HN300T2IntelliIT"
    main_service = MAIN_SERVICE
    tx_chars = (TX_CHAR,)
    rx_chars = (RX_CHAR,)
    chunk_size = CMD_CHUNK_SIZE

    record_banks = (0x02C0,)
    record_count = 30

    async def sync_clock(self, memory: AddressableMemory) -> None:
        block = build_clock_block(time_fields(self.clock(self.config.tz)))
        await memory.write_region(TIMESYNC_ADDR, block, TIMESYNC_LEN)

    def decode_record(self, data: bytes, bank: int) -> Record | None:
        raw_weight = data[0] << 8 | data[1]
        if raw_weight == NO_WEIGHT:
            return None

        ts = self.timestamp(YEAR_BASE + data[2], data[3], data[4], data[5], data[6], data[7])
        return Record(ts=ts, fields={"weight": raw_weight / WEIGHT_DIVISOR})
