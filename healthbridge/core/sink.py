"""InfluxDB v2 line-protocol sink."""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Sequence

import aiohttp

from healthbridge.core.errors import SinkError
from healthbridge.core.model import FieldValue, Record, SinkConfig

LOGGER = logging.getLogger(__name__)

_MEASUREMENT_ESCAPE_RE = re.compile(r"([, \\])")
_KEY_ESCAPE_RE = re.compile(r"([,= \\])")


def _escape_measurement(value: str) -> str:
    return _MEASUREMENT_ESCAPE_RE.sub(r"\\\1", value)


def _escape_key(value: str) -> str:
    return _KEY_ESCAPE_RE.sub(r"\\\1", value)


def _format_value(value: FieldValue) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    return repr(float(value))


def render_line(meas: str, record: Record) -> str:
    if not record.fields:
        raise ValueError("Record must carry at least one field")
    tags = "".join(
        f",{_escape_key(key)}={_escape_key(value)}" for key, value in sorted(record.tags.items())
    )
    fields = ",".join(
        f"{_escape_key(key)}={_format_value(value)}" for key, value in sorted(record.fields.items())
    )
    return f"{_escape_measurement(meas)}{tags} {fields} {record.ts}\n"


def render_batch(meas: str, records: Sequence[Record]) -> str:
    return "".join(render_line(meas, record) for record in records)


class InfluxSink:
    def __init__(self, config: SinkConfig) -> None:
        self.config = config

    @property
    def write_url(self) -> str:
        return f"{self.config.url}/api/v2/write"

    async def send(self, meas: str, records: Sequence[Record]) -> None:
        if not records:
            raise ValueError("Refusing to send an empty batch")

        body = render_batch(meas, records)
        params = {
            "org": self.config.org,
            "bucket": self.config.bucket,
            "precision": "ns",
        }
        headers = {
            "Authorization": f"Token {self.config.token}",
            "Content-Type": "text/plain; charset=utf-8",
            "Accept": "application/json",
        }
        timeout = aiohttp.ClientTimeout(total=self.config.timeout_s)

        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(
                    self.write_url,
                    params=params,
                    headers=headers,
                    data=body.encode("utf-8"),
                ) as response:
                    if response.status >= 300:
                        detail = (await response.text()).strip()
                        raise SinkError(f"Sink rejected batch with HTTP {response.status}: {detail}")
        except aiohttp.ClientError as exc:
            raise SinkError(f"Sink request failed: {exc}") from exc
        except asyncio.TimeoutError as exc:
            raise SinkError(f"Sink request timed out after {self.config.timeout_s}s") from exc

        LOGGER.debug("Wrote %d lines to %s", len(records), self.config.bucket)
