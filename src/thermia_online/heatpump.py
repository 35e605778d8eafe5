"""Per-device readings and commands.

A :class:`HeatPump` holds an immutable :class:`HeatPumpData` snapshot of
everything the API reports about one installation.  :meth:`HeatPump.update`
refetches every source and swaps the snapshot in one assignment; every
command re-runs it after writing, whether the write succeeded or not.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

from thermia_online._constants import (
    REG_GROUP_HOT_WATER,
    REG_GROUP_OPERATIONAL_OPERATION,
    REG_GROUP_TEMPERATURES,
    STATUS_BRINE_PUMP,
    STATUS_COMPRESSOR,
    STATUS_COOLING,
    STATUS_HEATING,
    STATUS_HOT_WATER,
    STATUS_RADIATOR_PUMP,
    UPDATE_GROUPS,
)
from thermia_online.registers import (
    QUANTITIES,
    Absent,
    HotWaterSwitches,
    OperationMode,
    Quantity,
    RegisterGroup,
    RegisterRecord,
    StatusViews,
    build_status_views,
    lookup_by_name,
    lookup_in_group,
    parse_hot_water,
    parse_operation_mode,
    resolve_first,
    resolve_quantity,
    value_of,
)

if TYPE_CHECKING:
    from thermia_online.client import Client, Device, HistoricalSample

_LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class TemperatureRange:
    minimum: float | None
    maximum: float | None
    step: float | None


@dataclass(frozen=True)
class HeatPumpData:
    """Everything fetched in one update cycle."""

    info: dict[str, Any] = field(default_factory=dict)
    status: dict[str, Any] | None = None
    groups: dict[str, RegisterGroup] = field(default_factory=dict)
    alarms: tuple[dict[str, Any], ...] = ()
    statuses: StatusViews = field(default_factory=StatusViews)
    operation_mode: OperationMode | None = None
    hot_water: HotWaterSwitches = field(default_factory=HotWaterSwitches)

    def group(self, name: str) -> RegisterGroup:
        return self.groups.get(name, ())


class HeatPump:
    """One Thermia installation.

    Obtained via :meth:`Client.get_heat_pump`, which runs the first
    :meth:`update`.  Read accessors return ``None`` when the device does not
    report the underlying register.

    Example::

        heat_pump = await client.get_heat_pump(device_id)
        print(heat_pump.outdoor_temperature, heat_pump.operation_mode)
        await heat_pump.set_operation_mode("AUTO")
    """

    def __init__(
        self,
        client: Client,
        device: Device,
        *,
        hot_water_available: bool = False,
        hot_water_boost_available: bool = False,
    ) -> None:
        self._client = client
        self._device = device
        self._hot_water_available = hot_water_available
        self._hot_water_boost_available = hot_water_boost_available
        self._data = HeatPumpData()
        self._historical_registers: dict[str, int] | None = None

    def __repr__(self) -> str:
        return f"HeatPump(id={self.id!r}, name={self.name!r})"

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------

    @property
    def device(self) -> Device:
        return self._device

    @property
    def id(self) -> str:
        return self._device.id

    @property
    def name(self) -> str:
        return self._device.name

    @property
    def serial_number(self) -> str:
        return self._device.serial_number

    @property
    def data(self) -> HeatPumpData:
        """The current snapshot."""
        return self._data

    @property
    def hot_water_available(self) -> bool:
        """Whether the device reported a hot-water switch at bootstrap."""
        return self._hot_water_available

    @property
    def hot_water_boost_available(self) -> bool:
        return self._hot_water_boost_available

    @property
    def model(self) -> str | None:
        profile = self._data.info.get("profile")
        if isinstance(profile, dict) and profile.get("name"):
            return str(profile["name"])
        return None

    @property
    def firmware(self) -> str | None:
        version = self._data.info.get("firmwareVersion")
        return str(version) if version is not None else None

    # ------------------------------------------------------------------
    # Update
    # ------------------------------------------------------------------

    async def update(self) -> HeatPumpData:
        """Refetch info, status, register groups and alarms."""
        tasks = [
            asyncio.ensure_future(coro)
            for coro in (
                self._client.get_device_info(self.id),
                self._client.get_device_status(self.id),
                self._client.get_all_alarms(self.id),
                *(self._client.get_register_group(self._device, g) for g in UPDATE_GROUPS),
            )
        ]
        try:
            info, status, alarms, *groups = await asyncio.gather(*tasks)
        except BaseException:
            # Cancel and reap the remaining fetches before propagating.
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise
        info = info or {}
        group_map = dict(zip(UPDATE_GROUPS, groups))
        visible_ids = info.get("visibleOperationalStatusIds")
        statuses = build_status_views(
            (status or {}).get("availableOperationalStatus"),
            (status or {}).get("operationalStatus"),
            visible_ids if isinstance(visible_ids, list) else None,
        )
        self._data = HeatPumpData(
            info=info,
            status=status,
            groups=group_map,
            alarms=tuple(alarms),
            statuses=statuses,
            operation_mode=parse_operation_mode(group_map[REG_GROUP_OPERATIONAL_OPERATION]),
            hot_water=parse_hot_water(group_map[REG_GROUP_HOT_WATER]),
        )
        _LOGGER.debug(
            "Updated heat pump %s: %d groups, %d alarms", self.id, len(group_map), len(alarms)
        )
        return self._data

    # ------------------------------------------------------------------
    # Status payload
    # ------------------------------------------------------------------

    def _status_value(self, key: str) -> Any:
        if self._data.status is None:
            return None
        return self._data.status.get(key)

    @property
    def indoor_temperature(self) -> float | None:
        return self._status_value("indoorTemperature")

    @property
    def outdoor_temperature(self) -> float | None:
        return self._status_value("outdoorTemperature")

    @property
    def hot_water_temperature(self) -> float | None:
        return self._status_value("hotWaterTemperature")

    @property
    def heat_temperature(self) -> float | None:
        """Heating set-point."""
        return self._status_value("heatingEffect")

    @property
    def heat_temperature_register(self) -> int | None:
        """Register id that holds the heating set-point, if reported."""
        registers = self._status_value("heatingEffectRegisters")
        if not isinstance(registers, list) or len(registers) < 2 or registers[1] is None:
            return None
        try:
            return int(registers[1])
        except (TypeError, ValueError):
            return None

    @property
    def heat_temperature_range(self) -> TemperatureRange | None:
        """Bounds of the heating set-point, from its temperature register."""
        register_id = self.heat_temperature_register
        if register_id is None:
            return None
        record = self._register(REG_GROUP_TEMPERATURES, register_id)
        if record is None:
            return None
        return TemperatureRange(record.min, record.max, record.step)

    # ------------------------------------------------------------------
    # Named quantities
    # ------------------------------------------------------------------

    def quantity(self, slug_or_quantity: str | Quantity) -> Any:
        """Value of a named quantity (see :data:`~thermia_online.registers.QUANTITIES`).

        Raises :class:`KeyError` for an unknown slug.
        """
        if isinstance(slug_or_quantity, Quantity):
            q = slug_or_quantity
        else:
            found = resolve_quantity(slug_or_quantity)
            if found is None:
                raise KeyError(f"Unknown quantity '{slug_or_quantity}'.")
            q = found
        return value_of(resolve_first(self._data.group(q.group), q.candidates))

    def quantities(self) -> dict[str, Any]:
        """Every named quantity, keyed by slug."""
        return {q.slug: self.quantity(q) for q in QUANTITIES}

    @property
    def supply_line_temperature(self) -> float | None:
        return self.quantity("supply-line")

    @property
    def desired_supply_line_temperature(self) -> float | None:
        return self.quantity("desired-supply-line")

    @property
    def buffer_tank_temperature(self) -> float | None:
        return self.quantity("buffer-tank")

    @property
    def return_line_temperature(self) -> float | None:
        return self.quantity("return-line")

    @property
    def brine_out_temperature(self) -> float | None:
        return self.quantity("brine-out")

    @property
    def brine_in_temperature(self) -> float | None:
        return self.quantity("brine-in")

    @property
    def pool_temperature(self) -> float | None:
        return self.quantity("pool")

    @property
    def cooling_tank_temperature(self) -> float | None:
        return self.quantity("cooling-tank")

    @property
    def cooling_supply_line_temperature(self) -> float | None:
        return self.quantity("cooling-supply-line")

    @property
    def operational_status_integral(self) -> float | None:
        return self.quantity("integral")

    @property
    def operational_status_pid(self) -> float | None:
        return self.quantity("pid")

    @property
    def compressor_operational_time(self) -> float | None:
        return self.quantity("compressor-time")

    @property
    def hot_water_operational_time(self) -> float | None:
        return self.quantity("hot-water-time")

    def auxiliary_heater_operational_time(self, heater: int) -> float | None:
        """Operational hours of auxiliary heater 1, 2 or 3."""
        if heater not in (1, 2, 3):
            raise ValueError(f"Auxiliary heater must be 1, 2 or 3, not {heater}.")
        return self.quantity(f"aux-heater-{heater}-time")

    # ------------------------------------------------------------------
    # Operational status
    # ------------------------------------------------------------------

    @property
    def operational_statuses(self) -> StatusViews:
        return self._data.statuses

    @property
    def running_operational_statuses(self) -> list[str]:
        return self._data.statuses.running_names

    @property
    def available_operational_statuses(self) -> list[str]:
        return self._data.statuses.visible_names

    def _is_running(self, name: str) -> bool:
        return name in self._data.statuses.running_names

    @property
    def compressor_running(self) -> bool:
        return self._is_running(STATUS_COMPRESSOR)

    @property
    def brine_pump_running(self) -> bool:
        return self._is_running(STATUS_BRINE_PUMP)

    @property
    def radiator_pump_running(self) -> bool:
        return self._is_running(STATUS_RADIATOR_PUMP)

    @property
    def cooling_running(self) -> bool:
        return self._is_running(STATUS_COOLING)

    @property
    def hot_water_running(self) -> bool:
        return self._is_running(STATUS_HOT_WATER)

    @property
    def heating_running(self) -> bool:
        return self._is_running(STATUS_HEATING)

    # ------------------------------------------------------------------
    # Operation mode, hot water, alarms
    # ------------------------------------------------------------------

    @property
    def operation_mode(self) -> str | None:
        mode = self._data.operation_mode
        return mode.current if mode else None

    @property
    def available_operation_modes(self) -> list[str]:
        mode = self._data.operation_mode
        return list(mode.available.values()) if mode else []

    @property
    def available_operation_mode_map(self) -> dict[int, str]:
        mode = self._data.operation_mode
        return dict(mode.available) if mode else {}

    @property
    def is_operation_mode_read_only(self) -> bool | None:
        mode = self._data.operation_mode
        return mode.is_read_only if mode else None

    @property
    def hot_water_switch_state(self) -> int | None:
        return self._data.hot_water.switch_state

    @property
    def hot_water_boost_switch_state(self) -> int | None:
        return self._data.hot_water.boost_state

    def _active_alarms(self) -> list[dict[str, Any]]:
        return [a for a in self._data.alarms if a.get("isActive")]

    @property
    def active_alarm_count(self) -> int:
        return len(self._active_alarms())

    @property
    def active_alarms(self) -> list[str]:
        """Titles of the currently active alarms."""
        return [str(a.get("eventTitle", "")) for a in self._active_alarms()]

    # ------------------------------------------------------------------
    # Register discovery and history
    # ------------------------------------------------------------------

    async def get_all_available_register_groups(self) -> list[str]:
        profile_id = self._data.info.get("installationProfileId")
        if not profile_id:
            return []
        return await self._client.get_all_available_groups(profile_id)

    async def get_available_registers_for_group(self, group: str) -> list[str]:
        records = await self._client.get_register_group(self._device, group)
        return [r.name for r in records]

    async def get_register_by_name(self, group: str, name: str) -> RegisterRecord | None:
        """Fetch *group* and return the single register called *name*."""
        records = await self._client.get_register_group(self._device, group)
        if not records:
            _LOGGER.error("No register group found for group: %s", group)
            return None
        result = lookup_by_name(records, name)
        if isinstance(result, Absent):
            _LOGGER.debug("Register %s/%s: %s", group, name, result.reason)
            return None
        return result.value

    async def historical_data_registers(self) -> list[str]:
        """Names of the registers that have recorded history."""
        return list((await self._historical_register_map()).keys())

    async def get_historical_data(
        self, register_name: str, start: datetime, end: datetime
    ) -> list[HistoricalSample] | None:
        """Samples for *register_name* between *start* and *end*.

        Returns ``None`` if the register has no history.
        """
        register_id = (await self._historical_register_map()).get(register_name)
        if register_id is None:
            _LOGGER.error("Register name is not supported: %s", register_name)
            return None
        return await self._client.get_historical_data(self.id, register_id, start, end)

    async def _historical_register_map(self) -> dict[str, int]:
        if self._historical_registers is None:
            self._historical_registers = await self._client.get_historical_data_registers(self.id)
        return self._historical_registers

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def set_temperature(self, temperature: float) -> None:
        """Change the heating set-point.

        Raises :class:`ValueError` if *temperature* is outside the range the
        device reports.
        """
        if self._data.status is None:
            _LOGGER.error("Status not available, cannot set temperature")
            return
        register_id = self.heat_temperature_register
        if register_id is None:
            _LOGGER.error("Heat temperature register not reported, cannot set temperature")
            return
        bounds = self.heat_temperature_range
        if bounds is not None and (
            (bounds.minimum is not None and temperature < bounds.minimum)
            or (bounds.maximum is not None and temperature > bounds.maximum)
        ):
            raise ValueError(
                f"Temperature {temperature} outside {bounds.minimum}..{bounds.maximum}."
            )
        _LOGGER.info("Setting temperature to %s", temperature)
        await self._write(register_id, temperature)

    async def set_operation_mode(self, mode: str) -> None:
        """Switch to one of :attr:`available_operation_modes`.

        Raises :class:`ValueError` if *mode* is not one of them.
        """
        current = self._data.operation_mode
        if current is None:
            _LOGGER.error("Operation mode not available")
            return
        if current.is_read_only:
            _LOGGER.error("Operation mode is read-only")
            return
        value = current.value_for(mode)
        if value is None:
            raise ValueError(
                f"Invalid operation mode '{mode}'. "
                f"Valid: {', '.join(current.available.values())}"
            )
        _LOGGER.info("Setting operation mode to %s", mode)
        await self._write(current.register_id, value)

    async def set_hot_water_switch(self, state: int) -> None:
        register_id = self._data.hot_water.switch_id
        if register_id is None:
            _LOGGER.error("Hot water switch not available")
            return
        _LOGGER.info("Setting hot water switch to %s", state)
        await self._write(register_id, state)

    async def set_hot_water_boost_switch(self, state: int) -> None:
        register_id = self._data.hot_water.boost_id
        if register_id is None:
            _LOGGER.error("Hot water boost switch not available")
            return
        _LOGGER.info("Setting hot water boost switch to %s", state)
        await self._write(register_id, state)

    async def set_register_by_name(self, group: str, name: str, value: Any) -> None:
        """Write *value* to the register called *name* in *group*."""
        record = await self.get_register_by_name(group, name)
        if record is None:
            _LOGGER.error("No register found for group: %s and register: %s", group, name)
            return
        await self._write(record.id, value)

    async def _write(self, register_id: int, value: Any) -> None:
        try:
            await self._client.set_register(self._device, register_id, value)
        finally:
            await self.update()

    def _register(self, group: str, register_id: int) -> RegisterRecord | None:
        result = lookup_in_group(self._data.group(group), register_id)
        return None if isinstance(result, Absent) else result.value
