"""
Remote connection configuration for the dashboard.

The persisted record holds the Home Assistant API root, the long-lived
access token, the live stream URL, whether requests go through a CORS
proxy and the address of the intermediary backend. Stored values are
merged over defaults taken from the environment, so a fresh install
works once ``HA_TOKEN`` is exported. Reading the config never raises. A
missing record yields the defaults and an invalid field falls back to its
own default without discarding the rest of the record.
"""

from __future__ import annotations

import dataclasses
import logging
from typing import Any, Dict, Optional, Tuple

import voluptuous as vol
from aiohttp import ClientSession

from .const import (
    CONF_BACKEND_URL,
    CONF_BASE_URL,
    CONF_TOKEN,
    CONF_USE_PROXY,
    CONF_WEBSOCKET_URL,
    CONNECTION_TEST_TIMEOUT,
    DEFAULT_BACKEND_URL,
    DEFAULT_BASE_URL,
    DEFAULT_TOKEN,
    DEFAULT_USE_PROXY,
    DEFAULT_WEBSOCKET_URL,
    STORAGE_KEY_CONFIG,
)
from .models import ConnectionStatus
from .storage import KeyValueStore
from .transport import (
    DashboardError,
    DashboardNetworkError,
    DashboardRequestAborted,
    fetch_with_timeout,
)

_LOGGER = logging.getLogger(__name__)

CONFIG_SCHEMA = vol.Schema(
    {
        vol.Optional(CONF_BASE_URL): vol.All(str, vol.Strip),
        vol.Optional(CONF_TOKEN): vol.All(str, vol.Strip),
        vol.Optional(CONF_WEBSOCKET_URL): vol.All(str, vol.Strip),
        vol.Optional(CONF_USE_PROXY): vol.Boolean(),
        vol.Optional(CONF_BACKEND_URL): vol.All(str, vol.Strip),
    },
    extra=vol.REMOVE_EXTRA,
)

# dataclass field -> persisted key
_FIELD_KEYS: Dict[str, str] = {
    "base_url": CONF_BASE_URL,
    "token": CONF_TOKEN,
    "websocket_url": CONF_WEBSOCKET_URL,
    "use_proxy": CONF_USE_PROXY,
    "backend_url": CONF_BACKEND_URL,
}


@dataclasses.dataclass(frozen=True)
class RemoteConfig:
    """How the readers and the live stream reach their endpoints."""

    base_url: str = DEFAULT_BASE_URL
    token: str = DEFAULT_TOKEN
    websocket_url: str = DEFAULT_WEBSOCKET_URL
    use_proxy: bool = DEFAULT_USE_PROXY
    backend_url: str = DEFAULT_BACKEND_URL

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "RemoteConfig":
        validated = CONFIG_SCHEMA(record)
        values = {
            field_name: validated[key]
            for field_name, key in _FIELD_KEYS.items()
            if key in validated
        }
        return cls(**values)

    @classmethod
    def from_stored_record(cls, record: Dict[str, Any]) -> "RemoteConfig":
        """Like :meth:`from_record`, but an invalid field falls back to its default.

        The remaining fields, the token included, are kept.
        """
        values = {}
        for field_name, key in _FIELD_KEYS.items():
            if key not in record:
                continue
            try:
                values[field_name] = CONFIG_SCHEMA({key: record[key]})[key]
            except vol.Invalid as err:
                _LOGGER.warning("Ignoring invalid stored config value %s: %s", key, err)
        return cls(**values)

    def as_record(self) -> Dict[str, Any]:
        return {key: getattr(self, field_name) for field_name, key in _FIELD_KEYS.items()}


class RemoteConfigStore:
    """Load, save and probe the remote connection configuration."""

    def __init__(self, store: KeyValueStore, session: ClientSession) -> None:
        """Initialize the config store.

        Parameters
        ----------
        store: KeyValueStore
            Persistent key-value store shared with the other services.
        session: ClientSession
            Shared aiohttp session used for connection probes.
        """
        self._store = store
        self._session = session

    async def get_config(self) -> RemoteConfig:
        """Return the persisted config merged over the defaults."""
        try:
            record = await self._store.get_item(STORAGE_KEY_CONFIG)
            if not record:
                return RemoteConfig()
            if not isinstance(record, dict):
                raise TypeError("config record is not a mapping")
            return RemoteConfig.from_stored_record(record)
        except (DashboardError, TypeError) as err:
            _LOGGER.warning("Failed to load Home Assistant config, using defaults: %s", err)
            return RemoteConfig()

    async def save_config(self, **changes: Any) -> RemoteConfig:
        """Merge ``changes`` (dataclass field names) into the persisted config.

        Raises
        ------
        TypeError
            If a change names an unknown field.
        vol.Invalid
            If a value has the wrong type.
        DashboardStorageError
            If the record cannot be written.
        """
        unknown = set(changes) - set(_FIELD_KEYS)
        if unknown:
            raise TypeError(f"Unknown config fields: {', '.join(sorted(unknown))}")

        current = await self.get_config()
        record = current.as_record()
        record.update({_FIELD_KEYS[name]: value for name, value in changes.items()})
        new_config = RemoteConfig.from_record(record)

        await self._store.set_item(STORAGE_KEY_CONFIG, new_config.as_record())
        _LOGGER.info("Home Assistant config saved")
        return new_config

    async def reset_config(self) -> None:
        """Drop the persisted record so the defaults apply again."""
        await self._store.remove_item(STORAGE_KEY_CONFIG)
        _LOGGER.info("Home Assistant config reset to defaults")

    async def set_token(self, token: str) -> RemoteConfig:
        return await self.save_config(token=token)

    async def set_base_url(self, base_url: str) -> RemoteConfig:
        return await self.save_config(base_url=base_url)

    async def set_websocket_url(self, websocket_url: str) -> RemoteConfig:
        return await self.save_config(websocket_url=websocket_url)

    async def get_api_url(self) -> str:
        config = await self.get_config()
        return (config.base_url or DEFAULT_BASE_URL).rstrip("/")

    async def get_auth_header(self) -> str:
        config = await self.get_config()
        return f"Bearer {config.token}"

    async def get_websocket_url(self) -> str:
        config = await self.get_config()
        return config.websocket_url

    async def get_backend_url(self) -> str:
        config = await self.get_config()
        return (config.backend_url or DEFAULT_BACKEND_URL).rstrip("/")

    async def is_configured(self) -> bool:
        """True iff both token and base URL are non-empty."""
        config = await self.get_config()
        return bool(config.token.strip()) and bool(config.base_url.strip())

    async def test_connection(self) -> Tuple[bool, Optional[str]]:
        """Probe the configured API root with an authenticated GET.

        Returns
        -------
        Tuple[bool, Optional[str]]
            ``(True, None)`` on a 2xx answer, otherwise ``(False, message)``.
            Network failures and HTTP failures carry distinguishable
            messages.
        """
        config = await self.get_config()
        if not config.base_url.strip():
            return False, "No API URL configured"
        if not config.token.strip():
            return False, "No token configured"

        api_url = config.base_url.rstrip("/") + "/"
        try:
            resp = await fetch_with_timeout(
                self._session,
                api_url,
                timeout=CONNECTION_TEST_TIMEOUT,
                headers={
                    "Authorization": f"Bearer {config.token}",
                    "Content-Type": "application/json",
                },
            )
        except (DashboardNetworkError, DashboardRequestAborted) as err:
            _LOGGER.warning("Home Assistant connection test failed for %s: %s", api_url, err)
            if config.use_proxy:
                return False, f"Cannot reach proxy at {api_url}, is the proxy server running? ({err})"
            return False, f"Cannot reach Home Assistant at {api_url} ({err})"

        if not resp.ok:
            _LOGGER.warning(
                "Home Assistant connection test for %s returned %s %s",
                api_url, resp.status, resp.reason,
            )
            return False, f"HTTP {resp.status}: {resp.reason}"

        _LOGGER.debug("Home Assistant connection test for %s succeeded", api_url)
        return True, None

    async def get_connection_status(self) -> ConnectionStatus:
        if not await self.is_configured():
            return ConnectionStatus(configured=False, connected=False, error="Not configured")

        success, error = await self.test_connection()
        return ConnectionStatus(configured=True, connected=success, error=error)
