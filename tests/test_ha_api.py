"""Tests for the Home Assistant REST reader."""

from unittest.mock import AsyncMock, patch

import pytest

from smart_home_sensors.ha_api import HomeAssistantApiClient, parse_numeric_state
from smart_home_sensors.models import DeviceConfig
from smart_home_sensors.transport import DashboardNetworkError, DashboardServiceError

FETCH = "smart_home_sensors.ha_api.fetch_with_timeout"


def _api_state(entity_id, state, **attributes):
    return {
        "entity_id": entity_id,
        "state": state,
        "attributes": attributes,
        "last_updated": "2025-10-25T16:01:02.946201+00:00",
        "context": {"id": "01H", "user_id": None},
    }


@pytest.fixture
def client(mock_session, config_store):
    """Create a HomeAssistantApiClient instance for testing."""
    return HomeAssistantApiClient(mock_session, config_store)


class TestParseNumericState:
    """Test numeric state parsing."""

    @pytest.mark.parametrize(
        "value, expected",
        [("21.5", 21.5), ("0", 0.0), (18, 18.0), ("-3.25", -3.25)],
    )
    def test_numbers(self, value, expected):
        assert parse_numeric_state(value) == expected

    @pytest.mark.parametrize("value", ["unavailable", "unknown", "", None, "nan", "NaN", "inf"])
    def test_non_numbers(self, value):
        assert parse_numeric_state(value) is None


class TestFetchEntityState:
    """Test single entity reads."""

    @pytest.mark.asyncio
    async def test_success(self, client, make_response):
        payload = _api_state("light.kitchen", "on", friendly_name="Kitchen")
        with patch(FETCH, AsyncMock(return_value=make_response(200, payload))) as fetch:
            result = await client.fetch_entity_state("light.kitchen")

        assert result == payload
        assert fetch.call_args.args[1] == "http://ha.local:8123/api/states/light.kitchen"
        assert fetch.call_args.kwargs["headers"]["Authorization"] == "Bearer test-token"

    @pytest.mark.asyncio
    async def test_not_found(self, client, make_response):
        with patch(FETCH, AsyncMock(return_value=make_response(404, {"message": "Entity not found."}, "Not Found"))):
            assert await client.fetch_entity_state("light.missing") is None

    @pytest.mark.asyncio
    async def test_network_error(self, client):
        with patch(FETCH, AsyncMock(side_effect=DashboardNetworkError("refused"))):
            assert await client.fetch_entity_state("light.kitchen") is None

    @pytest.mark.asyncio
    async def test_unexpected_payload(self, client, make_response):
        with patch(FETCH, AsyncMock(return_value=make_response(200, ["not", "a", "state"]))):
            assert await client.fetch_entity_state("light.kitchen") is None


class TestFetchConfiguredEntityStates:
    """Test bulk reads bucketed into a snapshot."""

    @pytest.mark.asyncio
    async def test_partition_and_drop_failures(self, client, make_response):
        states = {
            "light.kitchen": _api_state("light.kitchen", "off"),
            "sensor.office_temperature": _api_state("sensor.office_temperature", "21.5"),
            "switch.pump": _api_state("switch.pump", "on"),
        }

        async def fake_fetch(session, url, **kwargs):
            entity_id = url.rsplit("/", 1)[-1]
            if entity_id in states:
                return make_response(200, states[entity_id])
            return make_response(404, {}, "Not Found")

        with patch(FETCH, AsyncMock(side_effect=fake_fetch)):
            snapshot = await client.fetch_configured_entity_states(
                ["light.kitchen", "sensor.office_temperature", "switch.pump", "climate.gone"]
            )

        assert list(snapshot.light_data) == ["light.kitchen"]
        assert list(snapshot.sensor_data) == ["sensor.office_temperature"]
        assert snapshot.climate_data == {}
        assert snapshot.binary_sensor_data == {}

        kitchen = snapshot.light_data["light.kitchen"]
        assert kitchen.old_state == "off"
        assert kitchen.new_state == "off"
        assert kitchen.timestamp == "2025-10-25T16:01:02.946201+00:00"

    @pytest.mark.asyncio
    async def test_fetch_all_states(self, client, make_response):
        payload = [_api_state("light.kitchen", "on"), _api_state("sensor.t", "20")]
        with patch(FETCH, AsyncMock(return_value=make_response(200, payload))) as fetch:
            assert await client.fetch_all_states() == payload
        assert fetch.call_args.args[1] == "http://ha.local:8123/api/states"

    @pytest.mark.asyncio
    async def test_fetch_all_states_failure(self, client):
        with patch(FETCH, AsyncMock(side_effect=DashboardNetworkError("refused"))):
            assert await client.fetch_all_states() == []


class TestHistory:
    """Test history reads and averages."""

    @pytest.mark.asyncio
    async def test_fetch_entity_history(self, client, make_response):
        points = [{"state": "20.0"}, {"state": "21.0"}]
        with patch(FETCH, AsyncMock(return_value=make_response(200, [points]))) as fetch:
            result = await client.fetch_entity_history("sensor.t", "2025-10-25T04:00:00+00:00")

        assert result == points
        assert fetch.call_args.args[1] == (
            "http://ha.local:8123/api/history/period/2025-10-25T04:00:00+00:00"
        )
        assert fetch.call_args.kwargs["params"] == {"filter_entity_id": "sensor.t"}

    @pytest.mark.asyncio
    async def test_fetch_entity_history_empty(self, client, make_response):
        with patch(FETCH, AsyncMock(return_value=make_response(200, []))):
            assert await client.fetch_entity_history("sensor.t", "x") == []

    @pytest.mark.asyncio
    async def test_twelve_hour_averages_skip_non_numeric(self, client):
        history = {
            "sensor.t": [{"state": "20"}, {"state": "unavailable"}, {"state": "22"}, {"state": "nan"}],
            "sensor.h": [{"state": "40"}, {"state": "50"}, {"state": "60"}],
        }
        temperature = [DeviceConfig("temp_humidity_1", "T", "sensor.t", "temp_humidity")]
        humidity = [
            DeviceConfig("temp_humidity_2", "H", "sensor.h", "temp_humidity"),
            DeviceConfig("temp_humidity_3", "Unset", "", "temp_humidity"),
        ]

        with patch.object(
            client, "fetch_entity_history", AsyncMock(side_effect=lambda e, _: history[e])
        ) as fetch_history:
            result = await client.get_twelve_hour_averages(temperature, humidity)

        assert result == {
            "temperature": 21.0,
            "humidity": 50.0,
            "temperatureCount": 2,
            "humidityCount": 3,
        }
        assert fetch_history.await_count == 2

    @pytest.mark.asyncio
    async def test_twelve_hour_averages_empty(self, client):
        result = await client.get_twelve_hour_averages([], [])
        assert result["temperature"] == 0
        assert result["humidity"] == 0


class TestCallService:
    """Test the direct service helper."""

    @pytest.mark.asyncio
    async def test_success(self, client, make_response):
        changed = [_api_state("light.kitchen", "on")]
        with patch(FETCH, AsyncMock(return_value=make_response(200, changed))) as fetch:
            result = await client.call_service("light", "turn_on", {"entity_id": "light.kitchen"})

        assert result == changed
        assert fetch.call_args.args[1] == "http://ha.local:8123/api/services/light/turn_on"
        assert fetch.call_args.kwargs["method"] == "POST"
        assert fetch.call_args.kwargs["json"] == {"entity_id": "light.kitchen"}

    @pytest.mark.asyncio
    async def test_non_2xx_raises(self, client, make_response):
        with patch(FETCH, AsyncMock(return_value=make_response(400, {}, "Bad Request"))):
            with pytest.raises(DashboardServiceError) as excinfo:
                await client.call_service("climate", "set_hvac_mode", {"hvac_mode": "warp"})
        assert excinfo.value.status == 400

    @pytest.mark.asyncio
    async def test_network_error_propagates(self, client):
        with patch(FETCH, AsyncMock(side_effect=DashboardNetworkError("refused"))):
            with pytest.raises(DashboardNetworkError):
                await client.call_service("light", "turn_off", {"entity_id": "light.kitchen"})

    @pytest.mark.asyncio
    async def test_connection_test(self, client, make_response):
        with patch(FETCH, AsyncMock(return_value=make_response(200, {}))):
            assert await client.test_connection()
        with patch(FETCH, AsyncMock(side_effect=DashboardNetworkError("refused"))):
            assert not await client.test_connection()
