"""Stable public API for building tooling on top of healthbridge.

This module is the supported integration surface for third-party callers
(custom daemons, notebooks, scripts). Avoid importing from internal modules
unless intentionally depending on non-stable internals.
"""

from __future__ import annotations

from pathlib import Path

from healthbridge.core.acquisition import RecordSink
from healthbridge.core.config_loader import load_config
from healthbridge.core.errors import (
    AdvertisementTimeoutError,
    AlreadyPairedError,
    ConfigError,
    ConfigLoadError,
    ConfigValidationError,
    CrcMismatchError,
    DecodeError,
    DeviceSelectionError,
    HealthbridgeError,
    NotPairedError,
    PacketTooLargeError,
    ProtocolError,
    ProtocolViolationError,
    ShortPacketError,
    SinkError,
    TransportConnectError,
    TransportError,
    TransportSendError,
    TransportTimeoutError,
    UnknownDeviceError,
)
from healthbridge.core.model import AppConfig, DeviceConfig, DeviceInfo, Record, SinkConfig
from healthbridge.core.service import GatewayService
from healthbridge.core.sink import InfluxSink
from healthbridge.transports.base import Transport
from healthbridge.transports.ble_gatt import BleakTransport

__all__ = [
    "HealthbridgeError",
    "ConfigError",
    "ConfigLoadError",
    "ConfigValidationError",
    "DeviceSelectionError",
    "TransportError",
    "TransportConnectError",
    "TransportSendError",
    "TransportTimeoutError",
    "AdvertisementTimeoutError",
    "ProtocolError",
    "ShortPacketError",
    "CrcMismatchError",
    "ProtocolViolationError",
    "PacketTooLargeError",
    "UnknownDeviceError",
    "AlreadyPairedError",
    "NotPairedError",
    "DecodeError",
    "SinkError",
    "AppConfig",
    "DeviceConfig",
    "DeviceInfo",
    "Record",
    "SinkConfig",
    "BleakTransport",
    "InfluxSink",
    "Client",
]


class Client:
    """Public client for interacting with healthbridge core capabilities.

    A `Client` wraps configuration loading, driver selection, pairing and
    one-shot record fetching behind a stable API.
    """

    def __init__(
        self,
        config: AppConfig,
        *,
        transport: Transport | None = None,
        sink: RecordSink | None = None,
    ) -> None:
        self._service = GatewayService(config, transport=transport, sink=sink)

    @classmethod
    def from_file(
        cls,
        path: Path | str,
        *,
        transport: Transport | None = None,
        sink: RecordSink | None = None,
    ) -> Client:
        return cls(load_config(Path(path)), transport=transport, sink=sink)

    @property
    def config(self) -> AppConfig:
        return self._service.config

    def list_devices(self) -> list[DeviceConfig]:
        return self._service.list_devices()

    async def pair(self, device_id: str) -> None:
        await self._service.pair(device_id)

    async def fetch(self, device_id: str) -> list[Record]:
        return await self._service.fetch(device_id)

    async def run(self) -> None:
        await self._service.run()
