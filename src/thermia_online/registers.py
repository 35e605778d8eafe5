"""Register records and their projection onto named heat-pump quantities.

The API exposes device telemetry as loosely typed *registers*.  Different
controller generations report the same physical sensor under different
register names, so every semantic quantity carries an ordered list of
candidate names and resolves to the first one the device reports.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar, Union

from thermia_online._constants import (
    REG__HOT_WATER_BOOST,
    REG_ACTUAL_POOL_TEMP,
    REG_BRINE_IN,
    REG_BRINE_OUT,
    REG_COOL_SENSOR_SUPPLY,
    REG_COOL_SENSOR_TANK,
    REG_DESIRED_SUPPLY_LINE,
    REG_DESIRED_SUPPLY_LINE_TEMP,
    REG_DESIRED_SYS_SUPPLY_LINE_TEMP,
    REG_GROUP_OPERATIONAL_STATUS,
    REG_GROUP_OPERATIONAL_TIME,
    REG_GROUP_TEMPERATURES,
    REG_HOT_WATER_STATUS,
    REG_INTEGRAL_LSD,
    REG_OPER_DATA_BUFFER_TANK,
    REG_OPER_DATA_RETURN,
    REG_OPER_DATA_SUPPLY_MA_SA,
    REG_OPER_TIME_COMPRESSOR,
    REG_OPER_TIME_HOT_WATER,
    REG_OPER_TIME_IMM1,
    REG_OPER_TIME_IMM2,
    REG_OPER_TIME_IMM3,
    REG_OPERATIONMODE,
    REG_PID,
    REG_RETURN_LINE,
    REG_SUPPLY_LINE,
    REG_VALUE_PREFIX,
)
from thermia_online.exceptions import NotFoundError

_LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class Present(Generic[T]):
    """A lookup that found exactly one value."""

    value: T


@dataclass(frozen=True)
class Absent:
    """A lookup that found nothing usable; *reason* is for diagnostics."""

    reason: str = ""


Lookup = Union[Present[T], Absent]


@dataclass(frozen=True)
class RegisterRecord:
    """One register as returned by the API."""

    id: int
    name: str
    value: Any = None
    is_read_only: bool = True
    min: float | None = None
    max: float | None = None
    step: float | None = None
    value_names: tuple[tuple[Any, str], ...] = ()
    """``(value, name)`` pairs for enumerated registers."""

    @classmethod
    def from_json(cls, data: Mapping[str, Any]) -> RegisterRecord:
        value_names = tuple(
            (entry.get("value"), str(entry.get("name", "")))
            for entry in data.get("valueNames") or []
            if isinstance(entry, Mapping)
        )
        return cls(
            id=int(data["registerId"]),
            name=str(data.get("registerName", "")),
            value=data.get("registerValue"),
            is_read_only=bool(data.get("isReadOnly", True)),
            min=data.get("minValue"),
            max=data.get("maxValue"),
            step=data.get("step"),
            value_names=value_names,
        )


RegisterGroup = tuple[RegisterRecord, ...]


def parse_group(payload: object) -> RegisterGroup:
    """Turn a register-group response into records, skipping malformed entries."""
    if not isinstance(payload, list):
        return ()
    records: list[RegisterRecord] = []
    for entry in payload:
        try:
            records.append(RegisterRecord.from_json(entry))
        except (KeyError, TypeError, ValueError, AttributeError):
            _LOGGER.debug("Skipping malformed register entry: %r", entry)
    return tuple(records)


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------


def lookup_by_id(
    records: Mapping[int, RegisterRecord], register_id: int
) -> Lookup[RegisterRecord]:
    """Exact match on the numeric register id."""
    record = records.get(register_id)
    if record is None:
        return Absent(f"register {register_id} not reported")
    return Present(record)


def require_by_id(records: Mapping[int, RegisterRecord], register_id: int) -> RegisterRecord:
    """Like :func:`lookup_by_id`, but a miss raises :class:`NotFoundError`."""
    result = lookup_by_id(records, register_id)
    if isinstance(result, Absent):
        raise NotFoundError(result.reason)
    return result.value


def lookup_by_name(group: Sequence[RegisterRecord], name: str) -> Lookup[RegisterRecord]:
    """Find the single record called *name*.

    Zero matches or more than one match both count as not found; an
    ambiguous group never yields an arbitrary record.
    """
    matches = [record for record in group if record.name == name]
    if len(matches) == 1:
        return Present(matches[0])
    if matches:
        _LOGGER.warning("Register %s appears %d times in group, ignoring it", name, len(matches))
        return Absent(f"{name} is ambiguous ({len(matches)} records)")
    return Absent(f"{name} not in group")


def lookup_in_group(group: Sequence[RegisterRecord], register_id: int) -> Lookup[RegisterRecord]:
    """Find the single record in *group* with id *register_id*."""
    matches = [record for record in group if record.id == register_id]
    if len(matches) == 1:
        return Present(matches[0])
    if matches:
        _LOGGER.warning(
            "Register id %s appears %d times in group, ignoring it", register_id, len(matches)
        )
        return Absent(f"register {register_id} is ambiguous ({len(matches)} records)")
    return Absent(f"register {register_id} not in group")


def resolve_first(
    group: Sequence[RegisterRecord], names: Iterable[str]
) -> Lookup[RegisterRecord]:
    """Return the record for the first candidate name that resolves."""
    tried: list[str] = []
    for name in names:
        result = lookup_by_name(group, name)
        if isinstance(result, Present):
            return result
        tried.append(name)
    return Absent(f"none of {', '.join(tried)} in group")


def value_of(result: Lookup[RegisterRecord]) -> Any:
    """The register value of a successful lookup, ``None`` otherwise."""
    if isinstance(result, Present):
        return result.value.value
    return None


# ---------------------------------------------------------------------------
# Semantic quantities
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Quantity:
    """A named heat-pump reading backed by one or more register names."""

    slug: str
    """CLI name (``supply-line``, ``compressor-time``)."""

    name: str
    """Human-readable label."""

    group: str
    """Register group that holds the candidates."""

    candidates: tuple[str, ...]
    """Register names in priority order; the first one present wins."""

    unit: str = ""


_TEMP = REG_GROUP_TEMPERATURES
_STATUS = REG_GROUP_OPERATIONAL_STATUS
_TIME = REG_GROUP_OPERATIONAL_TIME

QUANTITIES: list[Quantity] = [
    # Temperatures
    Quantity(
        "supply-line",
        "Supply line temperature",
        _TEMP,
        (REG_SUPPLY_LINE, REG_OPER_DATA_SUPPLY_MA_SA),
        "°C",
    ),
    Quantity(
        "desired-supply-line",
        "Desired supply line temperature",
        _TEMP,
        (REG_DESIRED_SUPPLY_LINE, REG_DESIRED_SUPPLY_LINE_TEMP, REG_DESIRED_SYS_SUPPLY_LINE_TEMP),
        "°C",
    ),
    Quantity("buffer-tank", "Buffer tank temperature", _TEMP, (REG_OPER_DATA_BUFFER_TANK,), "°C"),
    Quantity(
        "return-line",
        "Return line temperature",
        _TEMP,
        (REG_RETURN_LINE, REG_OPER_DATA_RETURN),
        "°C",
    ),
    Quantity("brine-out", "Brine out temperature", _TEMP, (REG_BRINE_OUT,), "°C"),
    Quantity("brine-in", "Brine in temperature", _TEMP, (REG_BRINE_IN,), "°C"),
    Quantity("pool", "Pool temperature", _TEMP, (REG_ACTUAL_POOL_TEMP,), "°C"),
    Quantity("cooling-tank", "Cooling tank temperature", _TEMP, (REG_COOL_SENSOR_TANK,), "°C"),
    Quantity(
        "cooling-supply-line",
        "Cooling supply line temperature",
        _TEMP,
        (REG_COOL_SENSOR_SUPPLY,),
        "°C",
    ),
    # Operational status
    Quantity("integral", "Integral", _STATUS, (REG_INTEGRAL_LSD,)),
    Quantity("pid", "PID", _STATUS, (REG_PID,)),
    # Operational time
    Quantity(
        "compressor-time", "Compressor operational time", _TIME, (REG_OPER_TIME_COMPRESSOR,), "h"
    ),
    Quantity(
        "hot-water-time", "Hot water operational time", _TIME, (REG_OPER_TIME_HOT_WATER,), "h"
    ),
    Quantity(
        "aux-heater-1-time",
        "Auxiliary heater 1 operational time",
        _TIME,
        (REG_OPER_TIME_IMM1,),
        "h",
    ),
    Quantity(
        "aux-heater-2-time",
        "Auxiliary heater 2 operational time",
        _TIME,
        (REG_OPER_TIME_IMM2,),
        "h",
    ),
    Quantity(
        "aux-heater-3-time",
        "Auxiliary heater 3 operational time",
        _TIME,
        (REG_OPER_TIME_IMM3,),
        "h",
    ),
]

_by_slug: dict[str, Quantity] = {q.slug: q for q in QUANTITIES}


def resolve_quantity(slug: str) -> Quantity | None:
    """Look up a Quantity by slug."""
    return _by_slug.get(slug)


# ---------------------------------------------------------------------------
# Operational status
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class OperationalStatus:
    """One entry of the operational status catalog."""

    id: int
    name: str
    value: int = 0

    @property
    def active(self) -> bool:
        return self.value != 0

    @classmethod
    def from_json(cls, data: Mapping[str, Any]) -> OperationalStatus:
        return cls(int(data["id"]), str(data.get("name", "")), int(data.get("value") or 0))


@dataclass(frozen=True)
class StatusViews:
    """Three views of the operational status catalog, built together."""

    all: dict[int, OperationalStatus] = field(default_factory=dict)
    visible: dict[int, OperationalStatus] = field(default_factory=dict)
    running: dict[int, OperationalStatus] = field(default_factory=dict)

    @property
    def running_names(self) -> list[str]:
        return [status.name for status in self.running.values()]

    @property
    def visible_names(self) -> list[str]:
        return [status.name for status in self.visible.values()]


def compose_status_map(available: Mapping[T, Any], current: Mapping[T, Any]) -> dict[T, Any]:
    """Overlay *current* onto *available*; on a shared key the current entry wins."""
    merged = dict(available)
    merged.update(current)
    return merged


def _status_entries(raw: object) -> dict[int, OperationalStatus]:
    entries: dict[int, OperationalStatus] = {}
    if not isinstance(raw, list):
        return entries
    for item in raw:
        try:
            status = OperationalStatus.from_json(item)
        except (KeyError, TypeError, ValueError, AttributeError):
            _LOGGER.debug("Skipping malformed operational status: %r", item)
            continue
        entries[status.id] = status
    return entries


def build_status_views(
    available: object, current: object, visible_ids: Iterable[int] | None
) -> StatusViews:
    """Build the all / visible / running views from the raw status lists.

    ``running`` is the subset of ``visible`` whose entries are active.
    """
    merged = compose_status_map(_status_entries(available), _status_entries(current))
    visible_set = set(visible_ids or ())
    visible = {sid: status for sid, status in merged.items() if sid in visible_set}
    running = {sid: status for sid, status in visible.items() if status.active}
    return StatusViews(all=merged, visible=visible, running=running)


# ---------------------------------------------------------------------------
# Operation mode and hot water
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class OperationMode:
    """The operation-mode register, decoded."""

    register_id: int
    current: str | None
    available: dict[int, str]
    is_read_only: bool

    def value_for(self, mode: str) -> int | None:
        for value, name in self.available.items():
            if name == mode:
                return value
        return None


def parse_operation_mode(group: Sequence[RegisterRecord]) -> OperationMode | None:
    """Decode ``REG_OPERATIONMODE`` from the operational-operation group."""
    result = lookup_by_name(group, REG_OPERATIONMODE)
    if isinstance(result, Absent):
        return None
    record = result.value
    available: dict[int, str] = {}
    for value, name in record.value_names:
        try:
            available[int(value)] = name.split(REG_VALUE_PREFIX, 1)[-1]
        except (TypeError, ValueError):
            continue
    current: str | None = None
    try:
        current = available.get(int(record.value))
    except (TypeError, ValueError):
        pass
    if current is None:
        _LOGGER.debug("Operation mode value %r has no name", record.value)
    return OperationMode(record.id, current, available, record.is_read_only)


@dataclass(frozen=True)
class HotWaterSwitches:
    """Register ids and states of the hot-water switches, when present."""

    switch_id: int | None = None
    switch_state: int | None = None
    boost_id: int | None = None
    boost_state: int | None = None


def parse_hot_water(group: Sequence[RegisterRecord]) -> HotWaterSwitches:
    switch = lookup_by_name(group, REG_HOT_WATER_STATUS)
    boost = lookup_by_name(group, REG__HOT_WATER_BOOST)
    return HotWaterSwitches(
        switch_id=switch.value.id if isinstance(switch, Present) else None,
        switch_state=_as_int(value_of(switch)),
        boost_id=boost.value.id if isinstance(boost, Present) else None,
        boost_state=_as_int(value_of(boost)),
    )


def _as_int(value: Any) -> int | None:
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None
