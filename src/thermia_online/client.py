"""Thermia Online heat pump API client.

Provides programmatic access to Thermia heat pumps via the Thermia Online
cloud API.  :meth:`Client.connect` fetches the deployment configuration and
signs in; use :meth:`~Client.get_heat_pump` to obtain :class:`HeatPump`
objects for per-device readings and commands::

    import asyncio
    from thermia_online import Client

    client = await Client.connect("email@example.com", "password")
    devices = await client.get_devices()

    heat_pump = await client.get_heat_pump(devices[0].id)
    print(heat_pump.supply_line_temperature)
    await heat_pump.set_temperature(21)
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from thermia_online._constants import (
    API_TYPE_GENESIS,
    CLIENT_UUID,
    CONFIG_URLS_BY_API_TYPE,
    DATETIME_FORMAT,
    REFRESH_TOKEN_VALIDITY,
    REG_ID_HOT_WATER_BOOST,
    REG_ID_HOT_WATER_STATUS,
    REG_ID_OPERATIONMODE,
    UPDATE_GROUPS,
)
from thermia_online._transport import Response, RetryPolicy, request, scrub
from thermia_online.auth import Authenticator, Session
from thermia_online.exceptions import ConfigurationError, NetworkError, NotFoundError
from thermia_online.heatpump import HeatPump
from thermia_online.registers import RegisterGroup, RegisterRecord, parse_group, require_by_id

_LOGGER = logging.getLogger(__name__)

_HTTP_UNAUTHORIZED = 401


@dataclass(frozen=True)
class Device:
    """An installation listed on the account."""

    id: str
    name: str
    serial_number: str
    raw: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @classmethod
    def from_json(cls, data: Mapping[str, Any]) -> Device:
        return cls(
            id=str(data["id"]),
            name=str(data.get("name") or ""),
            serial_number=str(data.get("serialNumber") or ""),
            raw=dict(data),
        )


@dataclass(frozen=True)
class HistoricalSample:
    """One point of a register's history."""

    time: datetime
    value: float


class Client:
    """Thermia Online API client.

    Use :meth:`connect` to build a client that has loaded its configuration
    and signed in.  Every API call first asks the :class:`Authenticator` to
    make sure the session is still valid.

    Per-call failures (unreachable API, unexpected payloads, unknown
    devices) are logged and reported as ``None`` or an empty result.
    :class:`~thermia_online.exceptions.AuthenticationError` always
    propagates.
    """

    def __init__(
        self,
        email: str,
        password: str,
        api_type: str = API_TYPE_GENESIS,
        *,
        refresh_token_validity: float = REFRESH_TOKEN_VALIDITY,
        retry: RetryPolicy | None = None,
    ) -> None:
        config_url = CONFIG_URLS_BY_API_TYPE.get(api_type)
        if config_url is None:
            raise ConfigurationError(
                f"Unknown API type '{api_type}'. "
                f"Expected: {' | '.join(CONFIG_URLS_BY_API_TYPE)}"
            )
        self._config_url = config_url
        self._api_type = api_type
        self._retry = retry or RetryPolicy()
        self._configuration: dict[str, Any] | None = None
        self._auth = Authenticator(
            email,
            password,
            refresh_token_validity=refresh_token_validity,
        )

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    async def connect(
        cls,
        email: str,
        password: str,
        api_type: str = API_TYPE_GENESIS,
        *,
        refresh_token_validity: float = REFRESH_TOKEN_VALIDITY,
        retry: RetryPolicy | None = None,
    ) -> Client:
        """Fetch the deployment configuration, sign in and return a client.

        Raises :class:`ConfigurationError` if the configuration cannot be
        loaded and :class:`AuthenticationError` if the sign-in is rejected.
        """
        client = cls(
            email,
            password,
            api_type,
            refresh_token_validity=refresh_token_validity,
            retry=retry,
        )
        await client.fetch_configuration()
        await client.authenticate()
        return client

    async def fetch_configuration(self) -> dict[str, Any]:
        """Load the deployment configuration document (``apiBaseUrl`` et al.)."""
        try:
            async with self._retry.client() as session:
                resp = await request(session, "GET", self._config_url)
        except NetworkError as e:
            raise ConfigurationError(f"Error fetching API configuration: {e}") from e
        if not resp.ok:
            _LOGGER.error(
                "Error fetching API configuration. Status: %s, Response: %s",
                resp.status,
                scrub(resp.text),
            )
            raise ConfigurationError(f"Error fetching API configuration (HTTP {resp.status}).")
        try:
            config = resp.json()
        except ValueError as e:
            raise ConfigurationError("API configuration is not valid JSON.") from e
        if not isinstance(config, dict) or not str(config.get("apiBaseUrl") or "").startswith(
            ("http://", "https://")
        ):
            raise ConfigurationError("API configuration has no valid apiBaseUrl.")
        self._configuration = config
        return config

    async def authenticate(self) -> bool:
        """Sign in (or refresh) now.  See :meth:`Authenticator.authenticate`."""
        return await self._auth.authenticate()

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def api_type(self) -> str:
        return self._api_type

    @property
    def api_base_url(self) -> str:
        """Base URL from the deployment configuration."""
        if self._configuration is None:
            raise ConfigurationError("Configuration not loaded. Call fetch_configuration() first.")
        return str(self._configuration["apiBaseUrl"]).rstrip("/")

    @property
    def authenticator(self) -> Authenticator:
        return self._auth

    @property
    def session(self) -> Session:
        """Current token snapshot (read-only)."""
        return self._auth.session

    @property
    def connected(self) -> bool:
        """True once a bearer token has been obtained."""
        return self._auth.is_authenticated

    # ------------------------------------------------------------------
    # Devices
    # ------------------------------------------------------------------

    async def get_devices(self) -> list[Device]:
        """List the installations owned by the account."""
        data = await self._get_json("/api/v1/InstallationsInfo/own", what="devices")
        if not isinstance(data, list):
            return []
        devices: list[Device] = []
        for entry in data:
            try:
                devices.append(Device.from_json(entry))
            except (KeyError, TypeError):
                _LOGGER.debug("Skipping malformed device entry: %r", entry)
        return devices

    async def get_device_by_id(self, device_id: str) -> Device | None:
        for device in await self.get_devices():
            if device.id == str(device_id):
                return device
        _LOGGER.error("Error getting device by id: %s", device_id)
        return None

    async def get_device_by_name(self, name: str) -> Device | None:
        for device in await self.get_devices():
            if device.name == name:
                return device
        _LOGGER.error("Error getting device by name: %s", name)
        return None

    async def get_device_info(self, device_id: str) -> dict[str, Any] | None:
        data = await self._get_json(f"/api/v1/installations/{device_id}", what="device information")
        return data if isinstance(data, dict) else None

    async def get_device_status(self, device_id: str) -> dict[str, Any] | None:
        data = await self._get_json(
            f"/api/v1/installationstatus/{device_id}/status", what="device status"
        )
        return data if isinstance(data, dict) else None

    async def get_all_alarms(self, device_id: str) -> list[dict[str, Any]]:
        data = await self._get_json(
            f"/api/v1/installation/{device_id}/events",
            what="alarms",
            params={"onlyActiveAlarms": "true"},
        )
        return [a for a in data if isinstance(a, dict)] if isinstance(data, list) else []

    async def get_all_available_groups(self, installation_profile_id: int | str) -> list[str]:
        """Names of every register group the installation profile defines."""
        data = await self._get_json(
            f"/api/v1/installationprofiles/{installation_profile_id}/groups",
            what="register groups",
        )
        if not isinstance(data, list):
            return []
        return [str(g["name"]) for g in data if isinstance(g, dict) and g.get("name")]

    # ------------------------------------------------------------------
    # Registers
    # ------------------------------------------------------------------

    async def get_register_group(self, device: Device, group: str) -> RegisterGroup:
        """Fetch one register group for *device* (scoped by serial number)."""
        data = await self._get_json(
            f"/api/v1/Registers/Installations/{device.serial_number}/Groups/{group}",
            what=f"register group {group}",
        )
        return parse_group(data)

    async def get_register_data(
        self, device: Device, groups: Iterable[str] = UPDATE_GROUPS
    ) -> dict[int, RegisterRecord]:
        """Fetch several groups in one call, keyed by register id."""
        data = await self._get_json(
            f"/api/v1/Registers/Installations/{device.serial_number}/regdata",
            what="register data",
            params={"groups": ",".join(groups)},
        )
        return {record.id: record for record in parse_group(data)}

    async def set_register(self, device: Device, register_id: int, value: Any) -> bool:
        """Write *value* to a register.  Returns ``False`` if the write failed."""
        body = {
            "registerSpecificationId": register_id,
            "registerValue": value,
            "clientUuid": CLIENT_UUID,
        }
        resp = await self._call(
            "POST", f"/api/v1/Registers/Installations/{device.id}/Registers", json=body
        )
        if resp is None or not resp.ok:
            _LOGGER.error(
                "Error setting register %s. Status: %s",
                register_id,
                resp.status if resp is not None else None,
            )
            return False
        return True

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    async def get_historical_data_registers(self, device_id: str) -> dict[str, int]:
        """Map of register name -> id for registers with recorded history."""
        data = await self._get_json(
            f"/api/v1/DataHistory/installation/{device_id}", what="historical data registers"
        )
        if not isinstance(data, list):
            return {}
        registers: dict[str, int] = {}
        for entry in data:
            try:
                registers[str(entry["registerName"])] = int(entry["registerId"])
            except (KeyError, TypeError, ValueError):
                continue
        return registers

    async def get_historical_data(
        self, device_id: str, register_id: int, start: datetime, end: datetime
    ) -> list[HistoricalSample]:
        data = await self._get_json(
            f"/api/v1/datahistory/installation/{device_id}/register/{register_id}/minute",
            what="historical data",
            params={
                "periodStart": start.strftime(DATETIME_FORMAT),
                "periodEnd": end.strftime(DATETIME_FORMAT),
            },
        )
        if not isinstance(data, dict):
            return []
        return _parse_history(data.get("data"))

    # ------------------------------------------------------------------
    # Heat pumps
    # ------------------------------------------------------------------

    async def get_heat_pump(self, device_id: str) -> HeatPump | None:
        """Build a :class:`HeatPump` for *device_id* and load its data."""
        device = await self.get_device_by_id(device_id)
        if device is None:
            return None
        registers = await self.get_register_data(device)
        try:
            hot_water = require_by_id(registers, REG_ID_HOT_WATER_STATUS)
            boost = require_by_id(registers, REG_ID_HOT_WATER_BOOST)
            require_by_id(registers, REG_ID_OPERATIONMODE)
        except NotFoundError as e:
            _LOGGER.error("Error bootstrapping heat pump %s: %s", device_id, e)
            return None
        heat_pump = HeatPump(
            self,
            device,
            hot_water_available=hot_water.value == 1,
            hot_water_boost_available=boost.value == 1,
        )
        await heat_pump.update()
        return heat_pump

    async def get_heat_pump_by_name(self, name: str) -> HeatPump | None:
        device = await self.get_device_by_name(name)
        if device is None:
            return None
        return await self.get_heat_pump(device.id)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _call(self, method: str, path: str, **kwargs: Any) -> Response | None:
        """Authenticated request; retried once after a 401 with a fresh token.

        Returns ``None`` on transport failure.
        """
        url = f"{self.api_base_url}{path}"
        try:
            await self._auth.ensure_valid()
            sent_token = self._auth.session.bearer_token
            async with self._retry.client() as session:
                resp = await request(
                    session,
                    method,
                    url,
                    headers=self._auth.auth_headers(),
                    **kwargs,
                )
                if resp.status == _HTTP_UNAUTHORIZED:
                    _LOGGER.info("Access token rejected, re-authenticating")
                    self._auth.invalidate(sent_token)
                    await self._auth.ensure_valid()
                    resp = await request(
                        session,
                        method,
                        url,
                        headers=self._auth.auth_headers(),
                        **kwargs,
                    )
        except NetworkError as e:
            _LOGGER.error("%s %s failed: %s", method, path, e)
            return None
        return resp

    async def _get_json(self, path: str, *, what: str, **kwargs: Any) -> Any:
        resp = await self._call("GET", path, **kwargs)
        if resp is None:
            return None
        if not resp.ok:
            _LOGGER.error(
                "Error fetching %s. Status: %s, Response: %s", what, resp.status, scrub(resp.text)
            )
            return None
        try:
            return resp.json()
        except ValueError:
            _LOGGER.error("Error fetching %s: response is not JSON", what)
            return None


def _parse_history(entries: object) -> list[HistoricalSample]:
    """Parse ``[{"at": "2024-01-01T10:00:00.000", "val": "21.5"}, ...]``."""
    if not isinstance(entries, list):
        return []
    samples: list[HistoricalSample] = []
    for entry in entries:
        try:
            at = datetime.strptime(str(entry["at"]).split(".")[0], DATETIME_FORMAT)
            samples.append(HistoricalSample(at, float(entry["val"])))
        except (KeyError, TypeError, ValueError):
            _LOGGER.debug("Skipping malformed history entry: %r", entry)
    return samples
