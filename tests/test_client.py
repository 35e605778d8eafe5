"""Tests for thermia_online.client."""

from __future__ import annotations

import asyncio
import re
import time
from datetime import datetime
from typing import Any

import pytest
from aioresponses import CallbackResult, aioresponses

from thermia_online._constants import (
    AZURE_AUTHORIZE_URL,
    AZURE_SELF_ASSERTED_URL,
    AZURE_TOKEN_URL,
    CLIENT_UUID,
    CONFIG_URLS_BY_API_TYPE,
)
from thermia_online.auth import Session
from thermia_online.client import Client, Device, HistoricalSample
from thermia_online.exceptions import AuthenticationError, ConfigurationError
from thermia_online.heatpump import HeatPump

from helpers import (
    API_BASE,
    AUTHORIZE_URL,
    CONFIG_URL,
    SELF_ASSERTED_URL,
    SIGN_IN_PAGE,
    calls,
    mock_sign_in,
    token_payload,
)

MOCK_DEVICE: dict[str, Any] = {"id": 1234, "name": "Home", "serialNumber": "SN-1"}
MOCK_OTHER_DEVICE: dict[str, Any] = {"id": 99, "name": "Cabin", "serialNumber": "SN-2"}

_DEVICES_URL = f"{API_BASE}/api/v1/InstallationsInfo/own"
_REGDATA_URL = re.compile(rf"^{re.escape(API_BASE)}/api/v1/Registers/Installations/SN-1/regdata")
_GROUP_URL = re.compile(rf"^{re.escape(API_BASE)}/api/v1/Registers/Installations/SN-1/Groups/")
_ALARMS_URL = re.compile(rf"^{re.escape(API_BASE)}/api/v1/installation/1234/events")

BOOTSTRAP_REGISTERS: list[dict[str, Any]] = [
    {"registerId": 14, "registerName": "REG_HOT_WATER_STATUS", "registerValue": 1},
    {"registerId": 24, "registerName": "REG__HOT_WATER_BOOST", "registerValue": 0},
    {"registerId": 4, "registerName": "REG_OPERATIONMODE", "registerValue": 3},
]


def _connected_client(fast_retry) -> Client:
    """A client with configuration loaded and a fresh session, no network needed."""
    client = Client("user@example.com", "secret", retry=fast_retry)
    client._configuration = {"apiBaseUrl": API_BASE}
    now = time.time()
    client._auth._session = Session("tok", now + 600, "ref", now + 600)
    return client


def _mock_heat_pump_endpoints(m: aioresponses, *, repeat: bool = True) -> None:
    m.get(
        f"{API_BASE}/api/v1/installations/1234",
        payload={"installationProfileId": 7},
        repeat=repeat,
    )
    m.get(
        f"{API_BASE}/api/v1/installationstatus/1234/status",
        payload={"outdoorTemperature": 3.5},
        repeat=repeat,
    )
    m.get(_ALARMS_URL, payload=[], repeat=repeat)
    m.get(_GROUP_URL, payload=[], repeat=repeat)


class TestClientInit:
    def test_unknown_api_type(self):
        with pytest.raises(ConfigurationError, match="Unknown API type 'bogus'"):
            Client("u", "p", "bogus")

    def test_api_base_url_requires_configuration(self):
        client = Client("u", "p")
        with pytest.raises(ConfigurationError, match="not loaded"):
            _ = client.api_base_url

    def test_not_connected_initially(self):
        assert Client("u", "p").connected is False


class TestFetchConfiguration:
    async def test_classic_url(self, fast_retry):
        client = Client("u", "p", "classic", retry=fast_retry)
        with aioresponses() as m:
            m.get(
                CONFIG_URLS_BY_API_TYPE["classic"],
                payload={"apiBaseUrl": "https://classic.example/"},
            )
            await client.fetch_configuration()

        assert client.api_base_url == "https://classic.example"

    async def test_http_error(self, fast_retry):
        client = Client("u", "p", retry=fast_retry)
        with aioresponses() as m:
            m.get(CONFIG_URL, status=404)
            with pytest.raises(ConfigurationError, match="HTTP 404"):
                await client.fetch_configuration()

    async def test_unreachable(self, fast_retry):
        client = Client("u", "p", retry=fast_retry)
        with aioresponses():
            with pytest.raises(ConfigurationError):
                await client.fetch_configuration()

    async def test_missing_base_url(self, fast_retry):
        client = Client("u", "p", retry=fast_retry)
        with aioresponses() as m:
            m.get(CONFIG_URL, payload={"somethingElse": True})
            with pytest.raises(ConfigurationError, match="apiBaseUrl"):
                await client.fetch_configuration()

    async def test_not_json(self, fast_retry):
        client = Client("u", "p", retry=fast_retry)
        with aioresponses() as m:
            m.get(CONFIG_URL, body="<html>")
            with pytest.raises(ConfigurationError, match="JSON"):
                await client.fetch_configuration()


class TestConnect:
    async def test_end_to_end_with_retried_credential_step(self, fast_retry):
        with aioresponses() as m:
            m.get(CONFIG_URL, payload={"apiBaseUrl": API_BASE})
            m.get(AUTHORIZE_URL, body=SIGN_IN_PAGE)
            m.post(SELF_ASSERTED_URL, status=503)
            mock_sign_in(m)
            m.get(_DEVICES_URL, payload=[MOCK_DEVICE])

            client = await Client.connect("user@example.com", "secret", retry=fast_retry)
            devices = await client.get_devices()

            assert calls(m, "POST", AZURE_SELF_ASSERTED_URL) == 2
            assert calls(m, "GET", AZURE_AUTHORIZE_URL) == 1
            assert calls(m, "POST", AZURE_TOKEN_URL) == 1

        assert client.connected
        assert client.api_base_url == API_BASE
        assert devices == [Device("1234", "Home", "SN-1")]

    async def test_configuration_error_aborts(self, fast_retry):
        with aioresponses() as m:
            m.get(CONFIG_URL, status=500)
            m.get(CONFIG_URL, status=500)
            with pytest.raises(ConfigurationError):
                await Client.connect("u", "p", retry=fast_retry)
            assert calls(m, "GET", AZURE_AUTHORIZE_URL) == 0

    async def test_authentication_error_propagates(self, fast_retry):
        with aioresponses() as m:
            m.get(CONFIG_URL, payload={"apiBaseUrl": API_BASE})
            mock_sign_in(m, self_asserted={"status": "400", "message": "Wrong password"})
            with pytest.raises(AuthenticationError, match="Wrong password"):
                await Client.connect("u", "p", retry=fast_retry)


class TestDevices:
    async def test_get_devices(self, fast_retry):
        client = _connected_client(fast_retry)
        with aioresponses() as m:
            m.get(_DEVICES_URL, payload=[MOCK_DEVICE, MOCK_OTHER_DEVICE, {"name": "no id"}])
            devices = await client.get_devices()

        assert [d.id for d in devices] == ["1234", "99"]
        assert devices[0].raw["serialNumber"] == "SN-1"

    async def test_bearer_header_sent(self, fast_retry):
        client = _connected_client(fast_retry)
        with aioresponses() as m:
            m.get(_DEVICES_URL, payload=[])
            await client.get_devices()
            (call,) = next(iter(m.requests.values()))

        assert call.kwargs["headers"]["Authorization"] == "Bearer tok"

    async def test_http_error_returns_empty(self, fast_retry):
        client = _connected_client(fast_retry)
        with aioresponses() as m:
            m.get(_DEVICES_URL, status=404)
            assert await client.get_devices() == []

    async def test_network_error_returns_empty(self, fast_retry):
        client = _connected_client(fast_retry)
        with aioresponses():
            assert await client.get_devices() == []

    async def test_by_id_compares_as_string(self, fast_retry):
        client = _connected_client(fast_retry)
        with aioresponses() as m:
            m.get(_DEVICES_URL, payload=[MOCK_DEVICE, MOCK_OTHER_DEVICE])
            device = await client.get_device_by_id("99")

        assert device is not None and device.name == "Cabin"

    async def test_by_id_missing(self, fast_retry):
        client = _connected_client(fast_retry)
        with aioresponses() as m:
            m.get(_DEVICES_URL, payload=[MOCK_DEVICE])
            assert await client.get_device_by_id("5") is None

    async def test_by_name_first_exact_match(self, fast_retry):
        dupe = {**MOCK_OTHER_DEVICE, "name": "Home"}
        client = _connected_client(fast_retry)
        with aioresponses() as m:
            m.get(_DEVICES_URL, payload=[MOCK_DEVICE, dupe], repeat=True)
            device = await client.get_device_by_name("Home")
            missing = await client.get_device_by_name("home")

        assert device is not None and device.id == "1234"
        assert missing is None

    async def test_device_info_and_status(self, fast_retry):
        client = _connected_client(fast_retry)
        with aioresponses() as m:
            _mock_heat_pump_endpoints(m)
            info = await client.get_device_info("1234")
            status = await client.get_device_status("1234")

        assert info == {"installationProfileId": 7}
        assert status == {"outdoorTemperature": 3.5}

    async def test_alarms_only_active_requested(self, fast_retry):
        client = _connected_client(fast_retry)
        with aioresponses() as m:
            m.get(_ALARMS_URL, payload=[{"isActive": True, "eventTitle": "High pressure"}, "junk"])
            alarms = await client.get_all_alarms("1234")
            ((_, url),) = m.requests

        assert alarms == [{"isActive": True, "eventTitle": "High pressure"}]
        assert url.query["onlyActiveAlarms"] == "true"

    async def test_available_groups(self, fast_retry):
        client = _connected_client(fast_retry)
        with aioresponses() as m:
            m.get(
                f"{API_BASE}/api/v1/installationprofiles/7/groups",
                payload=[{"name": "REG_GROUP_TEMPERATURES"}, {"name": ""}, {"id": 3}],
            )
            groups = await client.get_all_available_groups(7)

        assert groups == ["REG_GROUP_TEMPERATURES"]


class TestReauthentication:
    async def test_stale_session_reauthenticates_first(self, fast_retry):
        client = _connected_client(fast_retry)
        client._auth._session = Session()
        with aioresponses() as m:
            mock_sign_in(m, token=token_payload("new-tok"))
            m.get(_DEVICES_URL, payload=[])
            await client.get_devices()
            device_call = [v for (meth, u), v in m.requests.items() if str(u) == _DEVICES_URL][0][0]

        assert device_call.kwargs["headers"]["Authorization"] == "Bearer new-tok"

    async def test_401_retried_once_with_new_token(self, fast_retry):
        client = _connected_client(fast_retry)
        with aioresponses() as m:
            m.get(_DEVICES_URL, status=401)
            m.post(re.compile(rf"^{re.escape(AZURE_TOKEN_URL)}$"), payload=token_payload("tok-2"))
            m.get(_DEVICES_URL, payload=[MOCK_DEVICE])
            devices = await client.get_devices()
            assert calls(m, "GET", _DEVICES_URL) == 2
            # the refresh token was still valid, so no full sign-in
            assert calls(m, "GET", AZURE_AUTHORIZE_URL) == 0

        assert len(devices) == 1
        assert client.session.bearer_token == "tok-2"

    async def test_late_401_does_not_expire_new_token(self, fast_retry):
        client = _connected_client(fast_retry)
        delays = iter([0.01, 0.2])

        async def devices_callback(url, **kwargs):
            if kwargs["headers"]["Authorization"] == "Bearer tok":
                await asyncio.sleep(next(delays))
                return CallbackResult(status=401)
            return CallbackResult(payload=[MOCK_DEVICE])

        with aioresponses() as m:
            m.get(_DEVICES_URL, callback=devices_callback, repeat=True)
            m.post(
                re.compile(rf"^{re.escape(AZURE_TOKEN_URL)}$"),
                payload=token_payload("tok-2"),
                repeat=True,
            )
            first, second = await asyncio.gather(client.get_devices(), client.get_devices())
            # the second 401 answers the old token and must not trigger another refresh
            assert calls(m, "POST", AZURE_TOKEN_URL) == 1

        assert len(first) == len(second) == 1
        assert client.session.bearer_token == "tok-2"


class TestRegisters:
    async def test_register_group_by_serial(self, fast_retry):
        client = _connected_client(fast_retry)
        device = Device("1234", "Home", "SN-1")
        with aioresponses() as m:
            m.get(
                f"{API_BASE}/api/v1/Registers/Installations/SN-1/Groups/REG_GROUP_TEMPERATURES",
                payload=[{"registerId": 1, "registerName": "REG_SUPPLY_LINE", "registerValue": 40}],
            )
            group = await client.get_register_group(device, "REG_GROUP_TEMPERATURES")

        assert group[0].name == "REG_SUPPLY_LINE"
        assert group[0].value == 40

    async def test_register_group_failure_is_empty(self, fast_retry):
        client = _connected_client(fast_retry)
        with aioresponses() as m:
            m.get(_GROUP_URL, status=404)
            group = await client.get_register_group(Device("1", "x", "SN-1"), "REG_GROUP_X")

        assert group == ()

    async def test_register_data_keyed_by_id(self, fast_retry):
        client = _connected_client(fast_retry)
        with aioresponses() as m:
            m.get(_REGDATA_URL, payload=BOOTSTRAP_REGISTERS)
            data = await client.get_register_data(Device("1234", "Home", "SN-1"), ["A", "B"])
            ((_, url),) = m.requests

        assert set(data) == {4, 14, 24}
        assert data[4].value == 3
        assert url.query["groups"] == "A,B"

    async def test_set_register(self, fast_retry):
        client = _connected_client(fast_retry)
        url = f"{API_BASE}/api/v1/Registers/Installations/1234/Registers"
        with aioresponses() as m:
            m.post(url, status=200)
            ok = await client.set_register(Device("1234", "Home", "SN-1"), 4, 1)
            (call,) = next(iter(m.requests.values()))

        assert ok is True
        assert call.kwargs["json"] == {
            "registerSpecificationId": 4,
            "registerValue": 1,
            "clientUuid": CLIENT_UUID,
        }

    async def test_set_register_failure(self, fast_retry):
        client = _connected_client(fast_retry)
        url = f"{API_BASE}/api/v1/Registers/Installations/1234/Registers"
        with aioresponses() as m:
            m.post(url, status=400)
            assert await client.set_register(Device("1234", "Home", "SN-1"), 4, 1) is False


class TestHistory:
    async def test_registers(self, fast_retry):
        client = _connected_client(fast_retry)
        with aioresponses() as m:
            m.get(
                f"{API_BASE}/api/v1/DataHistory/installation/1234",
                payload=[
                    {"registerId": 50, "registerName": "REG_OUTDOOR_TEMPERATURE"},
                    {"registerName": "BROKEN"},
                ],
            )
            registers = await client.get_historical_data_registers("1234")

        assert registers == {"REG_OUTDOOR_TEMPERATURE": 50}

    async def test_samples(self, fast_retry):
        client = _connected_client(fast_retry)
        history_url = re.compile(
            rf"^{re.escape(API_BASE)}/api/v1/datahistory/installation/1234/register/50/minute"
        )
        with aioresponses() as m:
            m.get(
                history_url,
                payload={
                    "data": [
                        {"at": "2024-01-01T10:00:00.000", "val": "-2.5"},
                        {"at": "2024-01-01T10:01:00", "val": 3},
                        {"at": "garbage", "val": 1},
                    ]
                },
            )
            samples = await client.get_historical_data(
                "1234", 50, datetime(2024, 1, 1, 10), datetime(2024, 1, 1, 11)
            )
            ((_, url),) = m.requests

        assert samples == [
            HistoricalSample(datetime(2024, 1, 1, 10, 0), -2.5),
            HistoricalSample(datetime(2024, 1, 1, 10, 1), 3.0),
        ]
        assert url.query["periodStart"] == "2024-01-01T10:00:00"
        assert url.query["periodEnd"] == "2024-01-01T11:00:00"


class TestGetHeatPump:
    async def test_bootstrap(self, fast_retry):
        client = _connected_client(fast_retry)
        with aioresponses() as m:
            m.get(_DEVICES_URL, payload=[MOCK_DEVICE])
            m.get(_REGDATA_URL, payload=BOOTSTRAP_REGISTERS)
            _mock_heat_pump_endpoints(m)
            heat_pump = await client.get_heat_pump("1234")

        assert isinstance(heat_pump, HeatPump)
        assert heat_pump.hot_water_available is True
        assert heat_pump.hot_water_boost_available is False
        assert heat_pump.outdoor_temperature == 3.5

    async def test_missing_bootstrap_register(self, fast_retry, caplog):
        client = _connected_client(fast_retry)
        with aioresponses() as m:
            m.get(_DEVICES_URL, payload=[MOCK_DEVICE])
            m.get(_REGDATA_URL, payload=BOOTSTRAP_REGISTERS[:2])
            heat_pump = await client.get_heat_pump("1234")

        assert heat_pump is None
        assert "Error bootstrapping heat pump 1234" in caplog.text

    async def test_unknown_device(self, fast_retry):
        client = _connected_client(fast_retry)
        with aioresponses() as m:
            m.get(_DEVICES_URL, payload=[MOCK_DEVICE])
            assert await client.get_heat_pump("404") is None

    async def test_by_name(self, fast_retry):
        client = _connected_client(fast_retry)
        with aioresponses() as m:
            m.get(_DEVICES_URL, payload=[MOCK_DEVICE], repeat=True)
            m.get(_REGDATA_URL, payload=BOOTSTRAP_REGISTERS)
            _mock_heat_pump_endpoints(m)
            heat_pump = await client.get_heat_pump_by_name("Home")

        assert heat_pump is not None
        assert heat_pump.id == "1234"
