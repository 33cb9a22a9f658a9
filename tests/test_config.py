"""Tests for the remote config store."""

from unittest.mock import AsyncMock, patch

import pytest

from smart_home_sensors.config import RemoteConfig, RemoteConfigStore
from smart_home_sensors.const import (
    DEFAULT_BASE_URL,
    DEFAULT_TOKEN,
    DEFAULT_WEBSOCKET_URL,
    STORAGE_KEY_CONFIG,
)
from smart_home_sensors.transport import DashboardNetworkError


@pytest.fixture
def config(store, mock_session):
    """Create an empty RemoteConfigStore."""
    return RemoteConfigStore(store, mock_session)


class TestRemoteConfigPersistence:
    """Test loading and saving the config record."""

    @pytest.mark.asyncio
    async def test_defaults_when_nothing_stored(self, config):
        result = await config.get_config()
        assert result == RemoteConfig()
        assert result.base_url == DEFAULT_BASE_URL
        assert result.token == DEFAULT_TOKEN
        assert result.websocket_url == DEFAULT_WEBSOCKET_URL

    @pytest.mark.asyncio
    async def test_save_merges_over_current(self, config, store):
        await config.save_config(token="abc")
        await config.save_config(base_url="http://10.0.0.2:8123/api")

        result = await config.get_config()
        assert result.token == "abc"
        assert result.base_url == "http://10.0.0.2:8123/api"

        record = await store.get_item(STORAGE_KEY_CONFIG)
        assert record["token"] == "abc"
        assert record["baseUrl"] == "http://10.0.0.2:8123/api"
        assert "useProxy" in record

    @pytest.mark.asyncio
    async def test_save_strips_whitespace(self, config):
        result = await config.set_token("  abc  ")
        assert result.token == "abc"

    @pytest.mark.asyncio
    async def test_save_unknown_field(self, config):
        with pytest.raises(TypeError, match="colour"):
            await config.save_config(colour="red")

    @pytest.mark.asyncio
    async def test_invalid_field_keeps_rest_of_record(self, config, store):
        await store.set_item(
            STORAGE_KEY_CONFIG,
            {"useProxy": "maybe", "token": "abc", "baseUrl": "http://10.0.0.2:8123/api"},
        )

        result = await config.get_config()

        assert result.use_proxy == RemoteConfig().use_proxy
        assert result.token == "abc"
        assert result.base_url == "http://10.0.0.2:8123/api"
        assert await config.is_configured()

    @pytest.mark.asyncio
    async def test_non_mapping_record_falls_back_to_defaults(self, config, store):
        await store.set_item(STORAGE_KEY_CONFIG, ["not", "a", "record"])
        assert await config.get_config() == RemoteConfig()

    @pytest.mark.asyncio
    async def test_unknown_keys_are_ignored(self, config, store):
        await store.set_item(STORAGE_KEY_CONFIG, {"token": "abc", "pin": "1234"})
        result = await config.get_config()
        assert result.token == "abc"

    @pytest.mark.asyncio
    async def test_reset(self, config):
        await config.set_token("abc")
        await config.reset_config()
        assert await config.get_config() == RemoteConfig()


class TestRemoteConfigAccessors:
    """Test derived values."""

    @pytest.mark.asyncio
    async def test_api_url_strips_trailing_slash(self, config_store):
        assert await config_store.get_api_url() == "http://ha.local:8123/api"

    @pytest.mark.asyncio
    async def test_auth_header(self, config_store):
        assert await config_store.get_auth_header() == "Bearer test-token"

    @pytest.mark.asyncio
    async def test_websocket_and_backend_urls(self, config_store):
        assert await config_store.get_websocket_url() == "ws://ha.local:3040/api/ws/entities_live"
        assert await config_store.get_backend_url() == "http://ha.local:3040"

    @pytest.mark.asyncio
    async def test_is_configured(self, config_store):
        assert await config_store.is_configured()
        await config_store.set_token("")
        assert not await config_store.is_configured()


class TestRemoteConfigConnection:
    """Test connection probing."""

    @pytest.mark.asyncio
    async def test_connection_success(self, config_store, make_response):
        with patch(
            "smart_home_sensors.config.fetch_with_timeout",
            AsyncMock(return_value=make_response(200, {"message": "API running."})),
        ) as fetch:
            assert await config_store.test_connection() == (True, None)

        assert fetch.call_args.args[1] == "http://ha.local:8123/api/"
        assert fetch.call_args.kwargs["headers"]["Authorization"] == "Bearer test-token"

    @pytest.mark.asyncio
    async def test_connection_http_error(self, config_store, make_response):
        with patch(
            "smart_home_sensors.config.fetch_with_timeout",
            AsyncMock(return_value=make_response(401, reason="Unauthorized")),
        ):
            assert await config_store.test_connection() == (False, "HTTP 401: Unauthorized")

    @pytest.mark.asyncio
    async def test_connection_network_error_direct(self, config_store):
        with patch(
            "smart_home_sensors.config.fetch_with_timeout",
            AsyncMock(side_effect=DashboardNetworkError("refused")),
        ):
            success, error = await config_store.test_connection()

        assert not success
        assert "Cannot reach Home Assistant" in error

    @pytest.mark.asyncio
    async def test_connection_network_error_via_proxy(self, config_store):
        await config_store.save_config(use_proxy=True)
        with patch(
            "smart_home_sensors.config.fetch_with_timeout",
            AsyncMock(side_effect=DashboardNetworkError("refused")),
        ):
            success, error = await config_store.test_connection()

        assert not success
        assert "proxy" in error

    @pytest.mark.asyncio
    async def test_connection_without_token_makes_no_request(self, config_store):
        await config_store.set_token("")
        with patch("smart_home_sensors.config.fetch_with_timeout", AsyncMock()) as fetch:
            assert await config_store.test_connection() == (False, "No token configured")
        fetch.assert_not_called()

    @pytest.mark.asyncio
    async def test_connection_status_not_configured(self, config_store):
        await config_store.set_token("")
        status = await config_store.get_connection_status()
        assert not status.configured
        assert not status.connected
        assert status.error == "Not configured"

    @pytest.mark.asyncio
    async def test_connection_status_configured(self, config_store, make_response):
        with patch(
            "smart_home_sensors.config.fetch_with_timeout",
            AsyncMock(return_value=make_response(200, {})),
        ):
            status = await config_store.get_connection_status()
        assert status.configured
        assert status.connected
        assert status.error is None
