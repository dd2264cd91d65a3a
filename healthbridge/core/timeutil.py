"""Timezone helpers for device clocks, which keep naive local time."""

from __future__ import annotations

from datetime import datetime, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from healthbridge.core.errors import ConfigValidationError

_NS_PER_SECOND = 1_000_000_000


def load_zone(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ConfigValidationError(f"Unable to open timezone '{name}': {exc}") from exc


def local_to_ns(
    tz: ZoneInfo,
    year: int,
    month: int,
    day: int,
    hour: int,
    minute: int,
    second: int,
) -> int | None:
    """Convert a local wall-clock time to UTC nanoseconds.

    Returns None when the fields do not form a valid date, or when the local
    time falls into a DST gap or overlap and therefore has no single instant.
    """
    try:
        local = datetime(year, month, day, hour, minute, second, tzinfo=tz)
    except ValueError:
        return None

    if local.replace(fold=0).utcoffset() != local.replace(fold=1).utcoffset():
        return None

    seconds = int(local.astimezone(timezone.utc).timestamp())
    return seconds * _NS_PER_SECOND


def current_local(tz: ZoneInfo) -> datetime:
    return datetime.now(timezone.utc).astimezone(tz)
