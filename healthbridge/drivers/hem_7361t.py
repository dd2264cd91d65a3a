"""Omron HEM-7361T (M7 Intelli IT) blood-pressure monitor.

Memory layout and record format follow the reverse engineering done by the
omblepy and ubpm projects.
"""

from __future__ import annotations

from healthbridge.core.errors import ProtocolViolationError
from healthbridge.core.model import HEM7361TConfig, Record
from healthbridge.drivers.base import OmronDriver, YEAR_BASE, open_packet_link, time_fields
from healthbridge.protocol.framing import additive_checksum
from healthbridge.protocol.link import PacketLink
from healthbridge.protocol.memory import AddressableMemory
from healthbridge.transports.base import Session

MAIN_SERVICE = "ecbe3980-c9a2-11e1-b1bd-0002a5d5c51b"
UNLOCK_CHAR = "b305b680-aee7-11e1-a730-0002a5d5c51b"
TX_CHARS = (
    "db5b55e0-aee7-11e1-965e-0002a5d5c51b",
    "e0b8a060-aee7-11e1-92f4-0002a5d5c51b",
    "0ae12b00-aee8-11e1-a192-0002a5d5c51b",
    "10e1ba60-aee8-11e1-89e5-0002a5d5c51b",
)
RX_CHARS = (
    "49123040-aee8-11e1-a74d-0002a5d5c51b",
    "4d0bf320-aee8-11e1-a0d9-0002a5d5c51b",
    "5128ce60-aee8-11e1-b84b-0002a5d5c51b",
    "560f1420-aee8-11e1-8184-0002a5d5c51b",
)

CMD_CHUNK_SIZE = 0x10
SECRET_LEN = 0x10

TIMESYNC_ADDR_RD = 0x003C
TIMESYNC_ADDR_WR = 0x0080
TIMESYNC_LEN = 0x10

KEY_PROBE = 0x02
KEY_REGISTER = 0x00
KEY_UNLOCK = 0x01


def build_clock_block(current: bytes, fields: bytes) -> bytes:
    """Patch the date/time bytes of a clock block read from the device."""
    block = bytearray(current[:TIMESYNC_LEN])
    block[8:14] = fields
    block[14] = additive_checksum(block[:14])
    block[15] = 0x00
    return bytes(block)


def decode_slot(data: bytes) -> dict[str, int | bool]:
    """Unpack the bit fields of one 16-byte measurement slot."""
    return {
        "year": YEAR_BASE + (data[3] & 0x3F),
        "month": (data[5] >> 2) & 0x0F,
        "day": ((data[4] >> 5) & 0x07) | ((data[5] & 0x03) << 3),
        "hour": data[4] & 0x1F,
        "minute": ((data[6] >> 6) & 0x03) | ((data[7] & 0x0F) << 2),
        "second": data[6] & 0x3F,
        "pulse": data[2],
        "diastolic": data[1],
        "systolic": 25 + data[0],
        "movement": bool(data[5] & 0x80),
        "irregular": bool(data[5] & 0x40),
    }


class HEM7361TDriver(OmronDriver):
    model = "M7 Intelli IT"
    main_service = MAIN_SERVICE
    tx_chars = TX_CHARS
    rx_chars = RX_CHARS
    chunk_size = CMD_CHUNK_SIZE

    record_banks = (0x0098, 0x06D8)  # user 1, user 2
    record_count = 100

    config: HEM7361TConfig

    async def provision(self, session: Session) -> None:
        link = await self._unlock_link(session)
        await self._key_exchange(link, KEY_PROBE, bytes(SECRET_LEN), (0x82, 0x00))
        await self._key_exchange(link, KEY_REGISTER, self.config.secret, (0x80, 0x00))
        await super().provision(session)

    async def unlock(self, session: Session) -> None:
        link = await self._unlock_link(session)
        await self._key_exchange(link, KEY_UNLOCK, self.config.secret, (0x81, 0x00))

    async def sync_clock(self, memory: AddressableMemory) -> None:
        current, populated = await memory.read_region(TIMESYNC_ADDR_RD, TIMESYNC_LEN, TIMESYNC_LEN)
        if not populated:
            raise ProtocolViolationError("Clock block is not readable")
        block = build_clock_block(current, time_fields(self.clock(self.config.tz)))
        await memory.write_region(TIMESYNC_ADDR_WR, block, TIMESYNC_LEN)

    def decode_record(self, data: bytes, bank: int) -> Record:
        slot = decode_slot(data)
        ts = self.timestamp(
            slot["year"], slot["month"], slot["day"], slot["hour"], slot["minute"], slot["second"]
        )
        return Record(
            ts=ts,
            tags={"user": str(bank)},
            fields={
                "pulse": slot["pulse"],
                "diastolic": slot["diastolic"],
                "systolic": slot["systolic"],
                "movement": slot["movement"],
                "irregular": slot["irregular"],
            },
        )

    async def _unlock_link(self, session: Session) -> PacketLink:
        return await open_packet_link(session, MAIN_SERVICE, (UNLOCK_CHAR,), (UNLOCK_CHAR,), CMD_CHUNK_SIZE)

    async def _key_exchange(self, link: PacketLink, command: int, key: bytes, expected: tuple[int, int]) -> None:
        reply = await link.raw_exchange(bytes([command]) + key, len(expected))
        if tuple(reply) != expected:
            raise ProtocolViolationError(
                f"Unexpected key exchange reply {reply.hex()} for command 0x{command:02x}"
            )
