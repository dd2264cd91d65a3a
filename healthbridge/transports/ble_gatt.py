"""BLE GATT transport implementation on top of bleak and BlueZ."""

from __future__ import annotations

import asyncio
import logging
import re
import subprocess
from collections.abc import AsyncIterator, Iterator, Mapping, Sequence
from contextlib import asynccontextmanager, contextmanager

from bleak import BleakClient, BleakScanner
from bleak.args.bluez import OrPattern
from bleak.assigned_numbers import AdvertisementDataType
from bleak.backends.characteristic import BleakGATTCharacteristic
from bleak.backends.device import BLEDevice
from bleak.backends.scanner import AdvertisementData
from bleak.exc import BleakError

from healthbridge.core.errors import (
    AdvertisementTimeoutError,
    DecodeError,
    TransportConnectError,
    TransportError,
    TransportSendError,
    TransportTimeoutError,
)
from healthbridge.core.model import DeviceInfo

LOGGER = logging.getLogger(__name__)

DEVICE_INFO_SERVICE = "0000180a-0000-1000-8000-00805f9b34fb"
MANUFACTURER_CHAR = "00002a29-0000-1000-8000-00805f9b34fb"
MODEL_CHAR = "00002a24-0000-1000-8000-00805f9b34fb"
FIRMWARE_CHAR = "00002a26-0000-1000-8000-00805f9b34fb"

_PAIRED_RE = re.compile(r"^\s*Paired:\s*(yes|no)\s*$", re.IGNORECASE | re.MULTILINE)


@contextmanager
def _bleak_errors(action: str, error_cls: type[TransportError] = TransportSendError) -> Iterator[None]:
    try:
        yield
    except asyncio.TimeoutError as exc:
        raise TransportTimeoutError(f"BLE {action} timed out") from exc
    except BleakError as exc:
        raise error_cls(f"BLE {action} failed: {exc}") from exc


def manufacturer_data_matches(
    manufacturer_data: Mapping[int, bytes],
    pattern: bytes,
    offset: int = 0,
) -> bool:
    """Match a pattern against raw manufacturer-specific AD data.

    bleak splits the company id off the payload; the pattern offset counts
    from the start of the AD data, so the little-endian id is put back first.
    """
    for company_id, data in manufacturer_data.items():
        raw = company_id.to_bytes(2, "little") + bytes(data)
        if raw[offset : offset + len(pattern)] == pattern:
            return True
    return False


class GattWriter:
    def __init__(self, client: BleakClient, characteristic: BleakGATTCharacteristic) -> None:
        self._client = client
        self._characteristic = characteristic

    async def write(self, data: bytes) -> None:
        with _bleak_errors(f"write to {self._characteristic.uuid}"):
            await self._client.write_gatt_char(self._characteristic, data, response=True)


class NotificationStream:
    def __init__(self, uuid: str, timeout_s: float) -> None:
        self.uuid = uuid
        self.timeout_s = timeout_s
        self._frames: asyncio.Queue[bytes] = asyncio.Queue()

    def on_notify(self, _: BleakGATTCharacteristic, data: bytearray) -> None:
        self._frames.put_nowait(bytes(data))

    async def read_frame(self) -> bytes:
        try:
            return await asyncio.wait_for(self._frames.get(), self.timeout_s)
        except asyncio.TimeoutError as exc:
            raise TransportTimeoutError(f"Timed out waiting for BLE notification on {self.uuid}") from exc


class BleakSession:
    def __init__(self, client: BleakClient, *, notify_timeout_s: float) -> None:
        self._client = client
        self._notify_timeout_s = notify_timeout_s
        self._subscriptions: list[BleakGATTCharacteristic] = []

    async def pair(self) -> None:
        # BlueZ answers just-works prompts on our behalf.
        with _bleak_errors("pairing", TransportConnectError):
            await self._client.pair()

    async def read_device_info(self) -> DeviceInfo:
        return DeviceInfo(
            manufacturer=await self.read_text(DEVICE_INFO_SERVICE, MANUFACTURER_CHAR),
            model=await self.read_text(DEVICE_INFO_SERVICE, MODEL_CHAR),
            firmware=await self.read_text(DEVICE_INFO_SERVICE, FIRMWARE_CHAR),
        )

    async def read_text(self, service_uuid: str, char_uuid: str) -> str:
        characteristic = self._characteristic(service_uuid, char_uuid)
        with _bleak_errors(f"read of {char_uuid}"):
            data = await self._client.read_gatt_char(characteristic)
        try:
            return bytes(data).decode("utf-8")
        except UnicodeDecodeError as exc:
            raise DecodeError(f"Unable to decode characteristic {char_uuid} as UTF-8") from exc

    def writer(self, service_uuid: str, char_uuid: str) -> GattWriter:
        return GattWriter(self._client, self._characteristic(service_uuid, char_uuid))

    async def subscribe(self, service_uuid: str, char_uuid: str) -> NotificationStream:
        characteristic = self._characteristic(service_uuid, char_uuid)
        stream = NotificationStream(char_uuid, self._notify_timeout_s)
        with _bleak_errors(f"subscribe to {char_uuid}"):
            await self._client.start_notify(characteristic, stream.on_notify)
        self._subscriptions.append(characteristic)
        return stream

    async def close(self) -> None:
        for characteristic in self._subscriptions:
            try:
                await self._client.stop_notify(characteristic)
            except BleakError as exc:
                LOGGER.debug("stop_notify on %s failed: %s", characteristic.uuid, exc)
        self._subscriptions.clear()

    def _characteristic(self, service_uuid: str, char_uuid: str) -> BleakGATTCharacteristic:
        service = self._client.services.get_service(service_uuid)
        if service is None:
            raise TransportConnectError(f"Service {service_uuid} not found")
        characteristic = service.get_characteristic(char_uuid)
        if characteristic is None:
            raise TransportConnectError(f"Characteristic {char_uuid} not found")
        return characteristic


class BleakTransport:
    def __init__(
        self,
        *,
        scan_timeout_s: float = 30.0,
        connect_timeout_s: float = 20.0,
        notify_timeout_s: float = 10.0,
    ) -> None:
        self.scan_timeout_s = scan_timeout_s
        self.connect_timeout_s = connect_timeout_s
        self.notify_timeout_s = notify_timeout_s

    async def discover(self, address: str) -> BLEDevice:
        with _bleak_errors("discovery", TransportConnectError):
            device = await BleakScanner.find_device_by_address(address, timeout=self.scan_timeout_s)
        if device is None:
            raise TransportConnectError(f"Device {address} not found within {self.scan_timeout_s}s")
        return device

    async def is_paired(self, address: str) -> bool:
        cmd = ["bluetoothctl", "info", address]
        result = await asyncio.to_thread(_run_bluetoothctl, cmd)
        if result is None:
            raise TransportConnectError("bluetoothctl is not installed; cannot query bonding state")

        match = _PAIRED_RE.search(result.stdout or "")
        if match:
            return match.group(1).lower() == "yes"
        if result.returncode != 0 and "not available" not in (result.stdout or ""):
            stderr = (result.stderr or "").strip()
            raise TransportConnectError(f"{' '.join(cmd)} failed: {stderr or result.returncode}")
        return False

    async def wait_for_advertisement(
        self,
        address: str,
        pattern: bytes,
        *,
        offset: int = 0,
        timeout_s: float | None = None,
    ) -> BLEDevice:
        target = address.upper()
        found: asyncio.Future[BLEDevice] = asyncio.get_running_loop().create_future()

        def _on_advertisement(device: BLEDevice, advertisement: AdvertisementData) -> None:
            if found.done() or device.address.upper() != target:
                return
            if manufacturer_data_matches(advertisement.manufacturer_data, pattern, offset):
                found.set_result(device)

        # Passive scanning on BlueZ needs an advertisement monitor pattern.
        scanner = BleakScanner(
            detection_callback=_on_advertisement,
            scanning_mode="passive",
            bluez={
                "or_patterns": [
                    OrPattern(offset, AdvertisementDataType.MANUFACTURER_SPECIFIC_DATA, pattern)
                ]
            },
        )

        with _bleak_errors("advertisement monitor", TransportConnectError):
            async with scanner:
                try:
                    return await asyncio.wait_for(found, timeout_s)
                except asyncio.TimeoutError as exc:
                    raise AdvertisementTimeoutError(
                        f"No advertisement from {address} within {timeout_s}s"
                    ) from exc

    @asynccontextmanager
    async def connect(self, target: BLEDevice | str) -> AsyncIterator[BleakSession]:
        client = BleakClient(target, timeout=self.connect_timeout_s)
        with _bleak_errors("connect", TransportConnectError):
            await client.connect()

        session = BleakSession(client, notify_timeout_s=self.notify_timeout_s)
        try:
            yield session
        finally:
            await session.close()
            try:
                await client.disconnect()
            except BleakError as exc:
                LOGGER.debug("Disconnect failed: %s", exc)


def _run_bluetoothctl(cmd: Sequence[str]) -> subprocess.CompletedProcess[str] | None:
    try:
        return subprocess.run(
            cmd,
            check=False,
            capture_output=True,
            text=True,
        )
    except FileNotFoundError:
        return None
