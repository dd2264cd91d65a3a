"""Transport interfaces."""

from __future__ import annotations

from contextlib import AbstractAsyncContextManager
from typing import Protocol

from healthbridge.core.model import DeviceInfo


class WriteChannel(Protocol):
    async def write(self, data: bytes) -> None:
        """Write one frame to a characteristic."""


class ReadChannel(Protocol):
    async def read_frame(self) -> bytes:
        """Wait for the next notification frame of a characteristic."""


class Session(Protocol):
    async def pair(self) -> None:
        """Bond with the connected device, accepting all prompts."""

    async def read_device_info(self) -> DeviceInfo:
        """Read the standard Device Information strings."""

    def writer(self, service_uuid: str, char_uuid: str) -> WriteChannel:
        """Return a write channel for a characteristic."""

    async def subscribe(self, service_uuid: str, char_uuid: str) -> ReadChannel:
        """Enable notifications on a characteristic and return its stream."""


class Transport(Protocol):
    async def discover(self, address: str) -> object:
        """Wait until the adapter sees the device and return a connect target."""

    async def is_paired(self, address: str) -> bool:
        """Return whether the device is bonded with the local adapter."""

    async def wait_for_advertisement(
        self,
        address: str,
        pattern: bytes,
        *,
        offset: int = 0,
        timeout_s: float | None = None,
    ) -> object:
        """Wait for manufacturer data matching pattern at offset from address."""

    def connect(self, target: object) -> AbstractAsyncContextManager[Session]:
        """Connect and yield a session, disconnecting on exit."""
