"""Configuration loading and validation for the YAML daemon configuration."""

from __future__ import annotations

import json
import logging
import re
from importlib import resources
from pathlib import Path
from typing import Any

import yaml
from jsonschema import ValidationError, validators

from healthbridge.core.errors import ConfigLoadError, ConfigValidationError
from healthbridge.core.model import (
    AppConfig,
    DeviceConfig,
    DriverConfig,
    HEM7361TConfig,
    HN300T2Config,
    SinkConfig,
)
from healthbridge.core.timeutil import load_zone

_HEX_RE = re.compile(r"^[0-9a-f]+$")
_MAC_RE = re.compile(r"^[0-9A-F]{2}(?::[0-9A-F]{2}){5}$")
_SECRET_LEN = 16
LOGGER = logging.getLogger(__name__)


class UniqueKeyLoader(yaml.SafeLoader):
    """YAML loader that rejects duplicate mapping keys."""


def _construct_mapping(loader: UniqueKeyLoader, node: yaml.Node, deep: bool = False) -> dict[str, Any]:
    mapping: dict[str, Any] = {}
    for key_node, value_node in node.value:
        key = loader.construct_object(key_node, deep=deep)
        if key in mapping:
            raise ConfigValidationError(f"Duplicate key '{key}' in YAML document")
        mapping[key] = loader.construct_object(value_node, deep=deep)
    return mapping


UniqueKeyLoader.add_constructor(
    yaml.resolver.BaseResolver.DEFAULT_MAPPING_TAG,
    _construct_mapping,
)


def _load_schema_validator() -> Any:
    schema_text = resources.files("healthbridge.schemas").joinpath("config.schema.json").read_text(
        encoding="utf-8"
    )
    schema = json.loads(schema_text)
    validator_cls = validators.validator_for(schema)
    validator_cls.check_schema(schema)
    return validator_cls(schema)


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigLoadError(f"Could not read configuration file {path}: {exc}") from exc

    try:
        loaded = yaml.load(content, Loader=UniqueKeyLoader)
    except yaml.YAMLError as exc:
        raise ConfigValidationError(f"Invalid YAML in {path}: {exc}") from exc

    if not isinstance(loaded, dict):
        raise ConfigValidationError(f"Configuration file {path} must contain a mapping at root")
    return loaded


def _normalize_hex(value: str, *, context: str, length: int) -> bytes:
    normalized = value.strip().lower().replace(" ", "")
    if len(normalized) % 2 != 0:
        raise ConfigValidationError(f"{context} must have even-length hex")
    if not _HEX_RE.match(normalized):
        raise ConfigValidationError(f"{context} must contain only [0-9a-f]")
    payload = bytes.fromhex(normalized)
    if len(payload) != length:
        raise ConfigValidationError(f"{context} must be exactly {length} bytes")
    return payload


def _normalize_mac(value: str, *, context: str) -> str:
    normalized = value.strip().upper()
    if not _MAC_RE.match(normalized):
        raise ConfigValidationError(f"{context} must be a Bluetooth address like AA:BB:CC:DD:EE:FF")
    return normalized


def _build_driver_config(doc: dict[str, Any], *, context: str) -> DriverConfig:
    addr = _normalize_mac(doc["addr"], context=f"{context}.addr")
    tz = load_zone(doc["tz"])
    if doc["driver"] == "Omron_HEM_7361T":
        return HEM7361TConfig(
            addr=addr,
            secret=_normalize_hex(doc["secret"], context=f"{context}.secret", length=_SECRET_LEN),
            tz=tz,
        )
    return HN300T2Config(addr=addr, tz=tz)


def build_config(doc: dict[str, Any], source: Path | str = "<config>") -> AppConfig:
    validator = _load_schema_validator()
    try:
        validator.validate(doc)
    except ValidationError as exc:
        path = ".".join(str(p) for p in exc.path)
        where = f" ({path})" if path else ""
        raise ConfigValidationError(f"Schema validation failed for {source}{where}: {exc.message}") from exc

    devices: list[DeviceConfig] = []
    seen: set[str] = set()
    for device_doc in doc["devices"]:
        device_id = device_doc["id"]
        if device_id in seen:
            raise ConfigValidationError(f"Device id is duplicated: {device_id}")
        seen.add(device_id)

        driver_doc = device_doc["driver_config"]
        devices.append(
            DeviceConfig(
                id=device_id,
                driver=driver_doc["driver"],
                driver_config=_build_driver_config(driver_doc, context=f"{device_id}.driver_config"),
                meas=device_doc["meas"],
                sleep=float(device_doc["sleep"]) if "sleep" in device_doc else None,
                adv_timeout=float(device_doc["adv_timeout"]) if "adv_timeout" in device_doc else None,
            )
        )

    addresses = [device.driver_config.addr for device in devices]
    for addr in sorted({a for a in addresses if addresses.count(a) > 1}):
        LOGGER.warning("Bluetooth address %s is used by more than one device", addr)

    sink_doc = doc["sink"]
    sink = SinkConfig(
        url=sink_doc["url"].rstrip("/"),
        token=sink_doc["token"],
        org=sink_doc["org"],
        bucket=sink_doc["bucket"],
        timeout_s=float(sink_doc.get("timeout", 10.0)),
    )

    return AppConfig(
        devices=tuple(devices),
        sink=sink,
        retry_wait=float(doc.get("retry_wait", 3.0)),
    )


def load_config(path: Path) -> AppConfig:
    doc = _read_yaml(path)
    return build_config(doc, path)
