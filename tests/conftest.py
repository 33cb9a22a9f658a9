"""Shared fixtures for the smart home sensors tests."""

import asyncio
import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, Mock

import pytest
import pytest_asyncio
from aiohttp import ClientSession, WSMsgType

from smart_home_sensors.config import RemoteConfigStore
from smart_home_sensors.storage import KeyValueStore
from smart_home_sensors.transport import FetchResponse


class FakeWebSocket:
    """Minimal stand-in for aiohttp's ClientWebSocketResponse."""

    def __init__(self, messages=(), hold_open=False):
        self._messages = list(messages)
        self._hold_open = hold_open
        self._released = asyncio.Event()
        self.closed = False
        self.close_code = None

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for message in self._messages:
            yield message
        if self._hold_open:
            await self._released.wait()
        self.closed = True
        self.close_code = 1000

    async def close(self):
        self.closed = True
        self._released.set()

    def drop(self):
        """Simulate the server closing the connection."""
        self._released.set()

    def exception(self):
        return None


def text_message(payload):
    data = payload if isinstance(payload, str) else json.dumps(payload)
    return SimpleNamespace(type=WSMsgType.TEXT, data=data)


@pytest.fixture
def make_response():
    """Factory for fully read HTTP responses."""

    def _make(status=200, payload=None, reason="OK"):
        body = b"" if payload is None else json.dumps(payload).encode()
        return FetchResponse(status=status, reason=reason, body=body)

    return _make


@pytest.fixture
def mock_session():
    """Create a mock aiohttp ClientSession."""
    session = Mock(spec=ClientSession)
    session.ws_connect = AsyncMock()
    return session


@pytest.fixture
def store(tmp_path):
    """Key-value store backed by a temporary file."""
    return KeyValueStore(tmp_path / "store.json")


@pytest_asyncio.fixture
async def config_store(store, mock_session):
    """Config store with a known base URL and token."""
    config = RemoteConfigStore(store, mock_session)
    await config.save_config(
        base_url="http://ha.local:8123/api/",
        token="test-token",
        websocket_url="ws://ha.local:3040/api/ws/entities_live",
        backend_url="http://ha.local:3040",
        use_proxy=False,
    )
    return config
