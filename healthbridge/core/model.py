"""Core data models used across drivers, sink, loop and CLI."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from zoneinfo import ZoneInfo

FieldValue = bool | int | float


@dataclass(frozen=True)
class Record:
    """One decoded measurement. Tags and fields are read-only copies."""

    ts: int
    tags: Mapping[str, str] = field(default_factory=dict)
    fields: Mapping[str, FieldValue] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "tags", MappingProxyType(dict(self.tags)))
        object.__setattr__(self, "fields", MappingProxyType(dict(self.fields)))

    def with_tag(self, key: str, value: str) -> Record:
        return Record(ts=self.ts, tags={**self.tags, key: value}, fields=self.fields)


@dataclass(frozen=True)
class DeviceInfo:
    manufacturer: str
    model: str
    firmware: str


@dataclass(frozen=True)
class HEM7361TConfig:
    addr: str
    secret: bytes
    tz: ZoneInfo


@dataclass(frozen=True)
class HN300T2Config:
    addr: str
    tz: ZoneInfo


DriverConfig = HEM7361TConfig | HN300T2Config


@dataclass(frozen=True)
class DeviceConfig:
    id: str
    driver: str
    driver_config: DriverConfig
    meas: str
    sleep: float | None = None
    adv_timeout: float | None = None


@dataclass(frozen=True)
class SinkConfig:
    url: str
    token: str
    org: str
    bucket: str
    timeout_s: float = 10.0


@dataclass(frozen=True)
class AppConfig:
    devices: tuple[DeviceConfig, ...]
    sink: SinkConfig
    retry_wait: float = 3.0
