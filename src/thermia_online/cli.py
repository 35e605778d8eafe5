"""Thin CLI wrapper over :class:`thermia_online.Client`."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

import typer

from thermia_online._constants import API_TYPE_GENESIS
from thermia_online.client import Client
from thermia_online.exceptions import ThermiaError
from thermia_online.heatpump import HeatPump
from thermia_online.registers import QUANTITIES

app = typer.Typer(help="Monitor and control Thermia heat pumps.", invoke_without_command=True)


@dataclass
class _Credentials:
    username: str
    password: str
    api_type: str


@app.callback()
def main(
    ctx: typer.Context,
    username: str = typer.Option(
        "", envvar="THERMIA_USERNAME", help="Thermia Online account email"
    ),
    password: str = typer.Option(
        "", envvar="THERMIA_PASSWORD", help="Thermia Online account password"
    ),
    api_type: str = typer.Option(
        API_TYPE_GENESIS, envvar="THERMIA_API_TYPE", help="API deployment: classic or genesis"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Monitor and control Thermia heat pumps."""
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG, format="%(asctime)s %(levelname)s %(name)s: %(message)s"
        )
    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        raise typer.Exit(0)
    ctx.obj = _Credentials(username, password, api_type)


def _print_json(obj: object) -> None:
    typer.echo(json.dumps(obj, indent=2, default=str))


def _run(ctx: typer.Context, action: Any) -> Any:
    """Connect, then run ``action(client)``; errors exit with status 1."""
    creds: _Credentials = ctx.obj
    if not creds.username or not creds.password:
        typer.echo(
            "Missing credentials. Pass --username/--password or set "
            "THERMIA_USERNAME and THERMIA_PASSWORD.",
            err=True,
        )
        raise typer.Exit(1)

    async def _go() -> Any:
        client = await Client.connect(creds.username, creds.password, creds.api_type)
        return await action(client)

    try:
        return asyncio.run(_go())
    except ThermiaError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1) from None


async def _heat_pump(client: Client, device: str) -> HeatPump:
    heat_pump = await client.get_heat_pump(device)
    if heat_pump is None:
        heat_pump = await client.get_heat_pump_by_name(device)
    if heat_pump is None:
        typer.echo(f"Heat pump '{device}' not found.", err=True)
        raise typer.Exit(1)
    return heat_pump


def _fmt(value: object, unit: str = "") -> str:
    if value is None:
        return "-"
    return f"{value}{unit}" if unit in ("", "°C") else f"{value} {unit}"


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@app.command()
def devices(ctx: typer.Context) -> None:
    """List the installations on the account."""
    found = _run(ctx, lambda client: client.get_devices())
    if not found:
        typer.echo("No devices found.", err=True)
        raise typer.Exit(1)
    for device in found:
        typer.echo(f"  [{device.id}] {device.name}")
        typer.echo(f"        SN: {device.serial_number}")


@app.command()
def status(
    ctx: typer.Context,
    device: str = typer.Argument(..., help="Device id or name"),
    as_json: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
) -> None:
    """Show readings, statuses and alarms for one heat pump."""

    async def action(client: Client) -> HeatPump:
        return await _heat_pump(client, device)

    heat_pump: HeatPump = _run(ctx, action)
    summary: dict[str, object] = {
        "indoor-temperature": heat_pump.indoor_temperature,
        "outdoor-temperature": heat_pump.outdoor_temperature,
        "hot-water-temperature": heat_pump.hot_water_temperature,
        "heat-temperature": heat_pump.heat_temperature,
        **heat_pump.quantities(),
        "operation-mode": heat_pump.operation_mode,
        "running": heat_pump.running_operational_statuses,
        "alarms": heat_pump.active_alarms,
    }
    if as_json:
        _print_json(summary)
        return

    typer.echo(typer.style(f"{heat_pump.name} ({heat_pump.id})", bold=True))
    typer.echo(f"  Indoor temperature: {_fmt(heat_pump.indoor_temperature, '°C')}")
    typer.echo(f"  Outdoor temperature: {_fmt(heat_pump.outdoor_temperature, '°C')}")
    typer.echo(f"  Hot water temperature: {_fmt(heat_pump.hot_water_temperature, '°C')}")
    typer.echo(f"  Heat temperature: {_fmt(heat_pump.heat_temperature, '°C')}")
    for q in QUANTITIES:
        value = heat_pump.quantity(q)
        if value is not None:
            typer.echo(f"  {q.name}: {_fmt(value, q.unit)}")
    typer.echo(f"  Operation mode: {heat_pump.operation_mode or '-'}")
    running = heat_pump.running_operational_statuses
    typer.echo(f"  Running: {', '.join(running) if running else '-'}")
    if heat_pump.active_alarm_count:
        typer.echo(f"  Alarms ({heat_pump.active_alarm_count}):")
        for title in heat_pump.active_alarms:
            typer.echo(f"    - {title}")


@app.command("set-temperature")
def set_temperature(
    ctx: typer.Context,
    device: str = typer.Argument(..., help="Device id or name"),
    temperature: float = typer.Argument(..., help="Heating set-point in °C"),
) -> None:
    """Change the heating set-point."""

    async def action(client: Client) -> HeatPump:
        heat_pump = await _heat_pump(client, device)
        await heat_pump.set_temperature(temperature)
        return heat_pump

    try:
        heat_pump: HeatPump = _run(ctx, action)
    except ValueError as e:
        typer.echo(str(e), err=True)
        raise typer.Exit(1) from None
    typer.echo(f"Heat temperature: {_fmt(heat_pump.heat_temperature, '°C')}")


@app.command("set-mode")
def set_mode(
    ctx: typer.Context,
    device: str = typer.Argument(..., help="Device id or name"),
    mode: str = typer.Argument(..., help="Operation mode, e.g. AUTO or HEAT"),
) -> None:
    """Change the operation mode."""

    async def action(client: Client) -> HeatPump:
        heat_pump = await _heat_pump(client, device)
        await heat_pump.set_operation_mode(mode.upper())
        return heat_pump

    try:
        heat_pump: HeatPump = _run(ctx, action)
    except ValueError as e:
        typer.echo(str(e), err=True)
        raise typer.Exit(1) from None
    typer.echo(f"Operation mode: {heat_pump.operation_mode or '-'}")


@app.command("hot-water")
def hot_water(
    ctx: typer.Context,
    device: str = typer.Argument(..., help="Device id or name"),
    state: str = typer.Argument(..., help="on or off"),
    boost: bool = typer.Option(False, "--boost", help="Switch the hot water boost instead"),
) -> None:
    """Turn the hot water (or hot water boost) on or off."""
    if state.lower() not in ("on", "off"):
        typer.echo(f"Invalid state '{state}'. Valid: on, off", err=True)
        raise typer.Exit(1)
    value = 1 if state.lower() == "on" else 0

    async def action(client: Client) -> HeatPump:
        heat_pump = await _heat_pump(client, device)
        if boost:
            await heat_pump.set_hot_water_boost_switch(value)
        else:
            await heat_pump.set_hot_water_switch(value)
        return heat_pump

    heat_pump: HeatPump = _run(ctx, action)
    current = heat_pump.hot_water_boost_switch_state if boost else heat_pump.hot_water_switch_state
    label = "Hot water boost" if boost else "Hot water"
    typer.echo(f"{label}: {_fmt(current)}")


@app.command()
def history(
    ctx: typer.Context,
    device: str = typer.Argument(..., help="Device id or name"),
    register: str | None = typer.Argument(None, help="Register name (omit to list them)"),
    hours: float = typer.Option(24, "--hours", help="How far back to look"),
    as_json: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
) -> None:
    """Show recorded history for a register, or list registers with history."""
    end = datetime.now()
    start = end - timedelta(hours=hours)

    async def action(client: Client) -> Any:
        heat_pump = await _heat_pump(client, device)
        if register is None:
            return await heat_pump.historical_data_registers()
        return await heat_pump.get_historical_data(register, start, end)

    result = _run(ctx, action)
    if register is None:
        for name in result:
            typer.echo(f"  {name}")
        return
    if result is None:
        typer.echo(f"Register '{register}' has no history.", err=True)
        raise typer.Exit(1)
    if as_json:
        _print_json([{"time": s.time.isoformat(), "value": s.value} for s in result])
        return
    for sample in result:
        typer.echo(f"  {sample.time:%Y-%m-%d %H:%M}  {sample.value}")
