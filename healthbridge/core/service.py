"""Service layer used by the CLI and the public API."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from healthbridge.core.acquisition import AcquisitionLoop, RecordSink
from healthbridge.core.config_loader import load_config
from healthbridge.core.errors import DeviceSelectionError
from healthbridge.core.model import AppConfig, DeviceConfig, Record
from healthbridge.core.sink import InfluxSink
from healthbridge.drivers import OmronDriver, create_driver
from healthbridge.transports.base import Transport
from healthbridge.transports.ble_gatt import BleakTransport

LOGGER = logging.getLogger(__name__)


class GatewayService:
    def __init__(
        self,
        config: AppConfig,
        *,
        transport: Transport | None = None,
        sink: RecordSink | None = None,
    ) -> None:
        self.config = config
        self.transport = transport or BleakTransport()
        self.sink = sink or InfluxSink(config.sink)

    @classmethod
    def from_file(
        cls,
        path: Path,
        *,
        transport: Transport | None = None,
        sink: RecordSink | None = None,
    ) -> GatewayService:
        return cls(load_config(path), transport=transport, sink=sink)

    def list_devices(self) -> list[DeviceConfig]:
        return list(self.config.devices)

    def resolve_device(self, device_id: str) -> DeviceConfig:
        for device in self.config.devices:
            if device.id == device_id:
                return device
        known = ", ".join(device.id for device in self.config.devices)
        raise DeviceSelectionError(f"No such device: {device_id}. Configured: {known}")

    def driver_for(self, device: DeviceConfig) -> OmronDriver:
        return create_driver(device, self.transport)

    async def pair(self, device_id: str) -> None:
        device = self.resolve_device(device_id)
        LOGGER.info("%s: pairing", device.id)
        await self.driver_for(device).pair()
        LOGGER.info("%s: ok", device.id)

    async def fetch(self, device_id: str) -> list[Record]:
        """Run a single fetch without tagging or forwarding."""
        device = self.resolve_device(device_id)
        return await self.driver_for(device).fetch_records()

    def build_loops(self) -> list[AcquisitionLoop]:
        return [
            AcquisitionLoop(
                device,
                self.driver_for(device),
                self.sink,
                retry_wait=self.config.retry_wait,
            )
            for device in self.config.devices
        ]

    async def run(self) -> None:
        LOGGER.info("daemon starting with %d device(s)", len(self.config.devices))
        await asyncio.gather(*(loop.run() for loop in self.build_loops()))
