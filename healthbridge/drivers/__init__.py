"""Device drivers, keyed by the ``driver`` selector used in configuration."""

from __future__ import annotations

from healthbridge.core.model import DeviceConfig
from healthbridge.drivers.base import OmronDriver
from healthbridge.drivers.hem_7361t import HEM7361TDriver
from healthbridge.drivers.hn_300t2 import HN300T2Driver
from healthbridge.transports.base import Transport

# Keep sorted and grouped by manufacturer.
DRIVERS: dict[str, type[OmronDriver]] = {
    "Omron_HEM_7361T": HEM7361TDriver,
    "Omron_HN_300T2": HN300T2Driver,
}


def create_driver(device: DeviceConfig, transport: Transport) -> OmronDriver:
    try:
        driver_cls = DRIVERS[device.driver]
    except KeyError:
        raise ValueError(f"Unknown driver '{device.driver}'") from None
    return driver_cls(device, transport)
