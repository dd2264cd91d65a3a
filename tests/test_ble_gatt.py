from __future__ import annotations

import asyncio
import subprocess
from types import SimpleNamespace

import pytest
from bleak.assigned_numbers import AdvertisementDataType

from healthbridge.core.errors import AdvertisementTimeoutError, TransportConnectError, TransportTimeoutError
from healthbridge.drivers.base import ADVERTISEMENT_PATTERN as OMRON_PATTERN
from healthbridge.transports import ble_gatt
from healthbridge.transports.ble_gatt import BleakTransport, NotificationStream, manufacturer_data_matches


def _cp(cmd: list[str], rc: int, stdout: str = "", stderr: str = "") -> subprocess.CompletedProcess[str]:
    return subprocess.CompletedProcess(cmd, rc, stdout=stdout, stderr=stderr)


def test_manufacturer_pattern_includes_company_id() -> None:
    # Omron Healthcare is company 0x020e, sent little-endian as 0e 02.
    data = {0x020E: bytes([0x01, 0x10])}
    assert manufacturer_data_matches(data, bytes([0x0E, 0x02]))
    assert manufacturer_data_matches(data, bytes([0x01, 0x10]), offset=2)
    assert not manufacturer_data_matches(data, bytes([0x02, 0x0E]))
    assert not manufacturer_data_matches({0x004C: b"\x02\x15"}, bytes([0x0E, 0x02]))
    assert not manufacturer_data_matches({}, bytes([0x0E, 0x02]))


def test_is_paired_parses_bluetoothctl(monkeypatch: pytest.MonkeyPatch) -> None:
    def fake_run(cmd, check, capture_output, text):
        assert cmd == ["bluetoothctl", "info", "AA:BB:CC:DD:EE:FF"]
        return _cp(cmd, 0, stdout="Device AA:BB:CC:DD:EE:FF (public)\n\tName: BLEsmart\n\tPaired: yes\n\tBonded: yes\n")

    monkeypatch.setattr(subprocess, "run", fake_run)

    assert asyncio.run(BleakTransport().is_paired("AA:BB:CC:DD:EE:FF")) is True


def test_is_paired_false_for_unknown_device(monkeypatch: pytest.MonkeyPatch) -> None:
    def fake_run(cmd, check, capture_output, text):
        return _cp(cmd, 1, stdout="Device AA:BB:CC:DD:EE:FF not available\n")

    monkeypatch.setattr(subprocess, "run", fake_run)

    assert asyncio.run(BleakTransport().is_paired("AA:BB:CC:DD:EE:FF")) is False


def test_is_paired_raises_when_bluez_fails(monkeypatch: pytest.MonkeyPatch) -> None:
    def fake_run(cmd, check, capture_output, text):
        return _cp(cmd, 1, stderr="dbus crashed")

    monkeypatch.setattr(subprocess, "run", fake_run)

    with pytest.raises(TransportConnectError, match="dbus crashed"):
        asyncio.run(BleakTransport().is_paired("AA:BB:CC:DD:EE:FF"))


def test_is_paired_without_bluetoothctl(monkeypatch: pytest.MonkeyPatch) -> None:
    def fake_run(cmd, check, capture_output, text):
        raise FileNotFoundError(cmd[0])

    monkeypatch.setattr(subprocess, "run", fake_run)

    with pytest.raises(TransportConnectError):
        asyncio.run(BleakTransport().is_paired("AA:BB:CC:DD:EE:FF"))


def test_notification_stream_delivers_frames_in_order() -> None:
    async def scenario() -> list[bytes]:
        stream = NotificationStream("49123040-aee8-11e1-a74d-0002a5d5c51b", timeout_s=1.0)
        stream.on_notify(None, bytearray(b"\x08\x81"))
        stream.on_notify(None, bytearray(b"\x00"))
        return [await stream.read_frame(), await stream.read_frame()]

    assert asyncio.run(scenario()) == [b"\x08\x81", b"\x00"]


def test_notification_stream_times_out() -> None:
    async def scenario() -> bytes:
        stream = NotificationStream("49123040-aee8-11e1-a74d-0002a5d5c51b", timeout_s=0.01)
        return await stream.read_frame()

    with pytest.raises(TransportTimeoutError):
        asyncio.run(scenario())


class FakeScanner:
    """Stands in for BleakScanner, replaying scripted adverts on start."""

    adverts: list[tuple[str, dict[int, bytes]]] = []
    instances: list[FakeScanner] = []

    def __init__(self, *, detection_callback, scanning_mode, bluez) -> None:
        self.callback = detection_callback
        self.scanning_mode = scanning_mode
        self.bluez = bluez
        self.stopped = False
        FakeScanner.instances.append(self)

    async def __aenter__(self) -> FakeScanner:
        for address, manufacturer_data in self.adverts:
            self.callback(
                SimpleNamespace(address=address),
                SimpleNamespace(manufacturer_data=manufacturer_data),
            )
        return self

    async def __aexit__(self, *exc_info) -> None:
        self.stopped = True


def _scripted_scanner(monkeypatch: pytest.MonkeyPatch, adverts: list[tuple[str, dict[int, bytes]]]) -> None:
    monkeypatch.setattr(FakeScanner, "adverts", adverts)
    monkeypatch.setattr(FakeScanner, "instances", [])
    monkeypatch.setattr(ble_gatt, "BleakScanner", FakeScanner)


def test_advertisement_wait_ignores_other_adverts_and_times_out(monkeypatch: pytest.MonkeyPatch) -> None:
    _scripted_scanner(
        monkeypatch,
        [
            ("11:22:33:44:55:66", {0x020E: b"\x01"}),
            ("AA:BB:CC:DD:EE:FF", {0x004C: b"\x02\x15"}),
        ],
    )

    with pytest.raises(AdvertisementTimeoutError):
        asyncio.run(
            BleakTransport().wait_for_advertisement("AA:BB:CC:DD:EE:FF", OMRON_PATTERN, timeout_s=0.05)
        )

    scanner = FakeScanner.instances[-1]
    assert scanner.stopped is True
    assert scanner.scanning_mode == "passive"
    assert list(scanner.bluez["or_patterns"][0]) == [
        0,
        AdvertisementDataType.MANUFACTURER_SPECIFIC_DATA,
        OMRON_PATTERN,
    ]


def test_advertisement_wait_matches_target_case_insensitively(monkeypatch: pytest.MonkeyPatch) -> None:
    _scripted_scanner(
        monkeypatch,
        [
            ("11:22:33:44:55:66", {0x020E: b"\x01"}),
            ("aa:bb:cc:dd:ee:ff", {0x020E: b"\x01"}),
        ],
    )

    device = asyncio.run(
        BleakTransport().wait_for_advertisement("AA:BB:CC:DD:EE:FF", OMRON_PATTERN, timeout_s=1.0)
    )

    assert device.address == "aa:bb:cc:dd:ee:ff"


def test_advertisement_wait_without_timeout_waits_indefinitely(monkeypatch: pytest.MonkeyPatch) -> None:
    _scripted_scanner(monkeypatch, [("AA:BB:CC:DD:EE:FF", {0x020E: b"\x01\x10"})])
    timeouts: list[float | None] = []
    real_wait_for = asyncio.wait_for

    async def recording_wait_for(awaitable, timeout):
        timeouts.append(timeout)
        return await real_wait_for(awaitable, timeout)

    monkeypatch.setattr(ble_gatt.asyncio, "wait_for", recording_wait_for)

    device = asyncio.run(BleakTransport().wait_for_advertisement("AA:BB:CC:DD:EE:FF", OMRON_PATTERN))

    assert device.address == "AA:BB:CC:DD:EE:FF"
    assert timeouts[0] is None
