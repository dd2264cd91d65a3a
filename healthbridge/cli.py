"""Typer CLI entrypoint."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

import typer

from healthbridge.core.errors import ConfigError, HealthbridgeError
from healthbridge.core.service import GatewayService

app = typer.Typer(help="Poll Omron BLE health devices and forward measurements to InfluxDB")

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def _build_service(config: Path) -> GatewayService:
    return GatewayService.from_file(config)


@app.command()
def main(
    config: Path = typer.Option(..., "--config", "-c", help="Configuration file"),
    pair: str | None = typer.Option(None, "--pair", "-p", metavar="DEVICE_ID", help="Pair with device"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Run the polling daemon, or pair a single device with --pair."""
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO, format=_LOG_FORMAT)

    try:
        service = _build_service(config)
    except ConfigError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None

    if pair is not None:
        try:
            asyncio.run(service.pair(pair))
        except HealthbridgeError as exc:
            typer.echo(f"Error: {pair}: {exc}", err=True)
            raise typer.Exit(code=1) from None
        typer.echo(f"{pair}: ok")
        return

    try:
        asyncio.run(service.run())
    except KeyboardInterrupt:
        typer.echo("Interrupted, shutting down", err=True)


def run() -> None:
    app()


if __name__ == "__main__":
    run()
