"""Per-device polling loop: fetch, tag, forward, sleep."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import Protocol

from healthbridge.core.errors import HealthbridgeError
from healthbridge.core.model import DeviceConfig, Record

LOGGER = logging.getLogger(__name__)

DEVICE_ID_TAG = "device_id"

Sleep = Callable[[float], Awaitable[None]]


class RecordSource(Protocol):
    async def fetch_records(self) -> list[Record]:
        """Fetch all stored records from the device."""


class RecordSink(Protocol):
    async def send(self, meas: str, records: Sequence[Record]) -> None:
        """Forward a batch of records."""


class AcquisitionLoop:
    def __init__(
        self,
        device: DeviceConfig,
        driver: RecordSource,
        sink: RecordSink,
        *,
        retry_wait: float = 3.0,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.device = device
        self.driver = driver
        self.sink = sink
        self.retry_wait = retry_wait
        self._sleep = sleep

    async def run(self) -> None:
        LOGGER.info("%s: starting", self.device.id)
        while True:
            await self.run_cycle()
            if self.device.sleep:
                await self._sleep(self.device.sleep)

    async def run_cycle(self) -> int:
        """Fetch until successful, then forward until successful.

        Returns the number of records forwarded.
        """
        records = await self._fetch()
        if not records:
            return 0

        LOGGER.info("%s: received %d records, sending to sink", self.device.id, len(records))
        tagged = [record.with_tag(DEVICE_ID_TAG, self.device.id) for record in records]
        await self._forward(tagged)
        LOGGER.info("%s: ok", self.device.id)
        return len(tagged)

    async def _fetch(self) -> list[Record]:
        while True:
            try:
                return await self.driver.fetch_records()
            except HealthbridgeError as exc:
                LOGGER.warning("%s: %s", self.device.id, exc)
            except Exception:
                LOGGER.exception("%s: unexpected error", self.device.id)
            await self._sleep(self.retry_wait)

    async def _forward(self, records: list[Record]) -> None:
        while True:
            try:
                await self.sink.send(self.device.meas, records)
                return
            except HealthbridgeError as exc:
                LOGGER.warning("%s: %s", self.device.id, exc)
            except Exception:
                LOGGER.exception("%s: unexpected error", self.device.id)
            await self._sleep(self.retry_wait)
