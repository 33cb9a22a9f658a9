"""
Live entity stream client.

The backend pushes one JSON encoded entity state per WebSocket message on
its ``/api/ws/entities_live`` endpoint. The stream is inbound only: after
the handshake nothing is sent. This client owns the single long-lived
connection, filters protocol noise (keepalives, empty frames, payloads
without an ``entity_id``) and hands accepted payloads to its data
handlers.

Reconnect policy: after a close or an error a reconnect is scheduled
after a fixed delay. After the maximum number of consecutive attempts the
client gives up and stays in ``reconnect_exhausted`` until :meth:`connect`
is called explicitly again.
"""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Optional, Set

import aiohttp
from aiohttp import ClientError, ClientSession, WSMsgType

from homeassistant.util import dt as dt_util

from .const import (
    MAX_RECONNECT_ATTEMPTS,
    RECONNECT_DELAY,
    WEBSOCKET_CONNECT_TIMEOUT,
    WEBSOCKET_HEARTBEAT,
    WEBSOCKET_STATUS_CLOSED,
    WEBSOCKET_STATUS_CONNECTING,
    WEBSOCKET_STATUS_DISCONNECTED,
    WEBSOCKET_STATUS_ERRORED,
    WEBSOCKET_STATUS_OPEN,
    WEBSOCKET_STATUS_RECONNECT_EXHAUSTED,
    WEBSOCKET_STATUS_RECONNECT_SCHEDULED,
)

_LOGGER = logging.getLogger(__name__)

DataHandler = Callable[[Dict[str, Any]], None]


class EntityStreamClient:
    """WebSocket client for the live entity state stream."""

    def __init__(
        self,
        session: ClientSession,
        url_provider: Callable[[], Awaitable[str]],
        timeout: float = WEBSOCKET_CONNECT_TIMEOUT,
        reconnect_delay: float = RECONNECT_DELAY,
        max_reconnect_attempts: int = MAX_RECONNECT_ATTEMPTS,
    ) -> None:
        """Initialize the stream client.

        Parameters
        ----------
        session: ClientSession
            Shared aiohttp session owned by the application.
        url_provider: Callable[[], Awaitable[str]]
            Coroutine function returning the stream URL, looked up on
            every connection attempt.
        timeout: float
            Handshake timeout in seconds.
        reconnect_delay: float
            Fixed delay before each reconnect attempt.
        max_reconnect_attempts: int
            Consecutive attempts before giving up.
        """
        self._session = session
        self._url_provider = url_provider
        self._timeout = timeout
        self._reconnect_delay = reconnect_delay
        self._max_reconnect_attempts = max_reconnect_attempts
        self._url: Optional[str] = None

        # Connection state
        self._websocket: Optional[aiohttp.ClientWebSocketResponse] = None
        self._status = WEBSOCKET_STATUS_DISCONNECTED
        self._listen_task: Optional[asyncio.Task] = None
        self._reconnect_handle: Optional[asyncio.TimerHandle] = None
        self._reconnect_task: Optional[asyncio.Task] = None
        self._should_reconnect = False
        self._reconnect_attempts = 0

        self._data_handlers: Set[DataHandler] = set()

        # Statistics
        self._messages_received = 0
        self._messages_ignored = 0
        self._reconnects_scheduled = 0
        self._connection_time: Optional[datetime] = None

    @property
    def status(self) -> str:
        return self._status

    @property
    def reconnect_attempts(self) -> int:
        return self._reconnect_attempts

    @property
    def is_connected(self) -> bool:
        return (
            self._status == WEBSOCKET_STATUS_OPEN
            and self._websocket is not None
            and not self._websocket.closed
        )

    def add_data_handler(self, handler: DataHandler) -> None:
        """Register ``handler`` for accepted entity payloads."""
        self._data_handlers.add(handler)

    def remove_data_handler(self, handler: DataHandler) -> None:
        self._data_handlers.discard(handler)

    async def connect(self) -> bool:
        """Open the stream, restarting the reconnect cycle.

        Returns
        -------
        bool
            True if the connection is open. On failure a reconnect is
            scheduled and False is returned.
        """
        if self.is_connected:
            _LOGGER.debug("Live stream already connected to %s", self._url)
            return True

        self._cancel_pending_reconnect()
        self._should_reconnect = True
        self._reconnect_attempts = 0
        return await self._async_open()

    async def _async_open(self) -> bool:
        self._status = WEBSOCKET_STATUS_CONNECTING
        self._url = await self._url_provider()
        _LOGGER.info("Connecting to live stream at %s", self._url)

        try:
            self._websocket = await asyncio.wait_for(
                self._session.ws_connect(self._url, heartbeat=WEBSOCKET_HEARTBEAT),
                self._timeout,
            )
        except (ClientError, asyncio.TimeoutError, OSError) as err:
            self._websocket = None
            self._status = WEBSOCKET_STATUS_ERRORED
            _LOGGER.warning("Failed to connect to live stream at %s: %s", self._url, err)
            self._handle_connection_lost()
            return False

        self._status = WEBSOCKET_STATUS_OPEN
        self._reconnect_attempts = 0
        self._connection_time = dt_util.utcnow()
        self._listen_task = asyncio.create_task(self._listen(self._websocket))
        _LOGGER.info("Live stream connected to %s", self._url)
        return True

    async def disconnect(self) -> None:
        """Close the stream and stop reconnecting."""
        _LOGGER.info("Disconnecting live stream from %s", self._url)
        self._should_reconnect = False
        self._cancel_pending_reconnect()

        if self._listen_task is not None:
            self._listen_task.cancel()
            try:
                await self._listen_task
            except asyncio.CancelledError:
                pass
            self._listen_task = None

        if self._websocket is not None and not self._websocket.closed:
            try:
                await self._websocket.close()
            except ClientError as err:
                _LOGGER.warning("Error closing live stream: %s", err)

        self._websocket = None
        self._status = WEBSOCKET_STATUS_DISCONNECTED
        self._connection_time = None

    def _cancel_pending_reconnect(self) -> None:
        if self._reconnect_handle is not None:
            self._reconnect_handle.cancel()
            self._reconnect_handle = None
        if self._reconnect_task is not None and not self._reconnect_task.done():
            self._reconnect_task.cancel()
        self._reconnect_task = None

    def _handle_connection_lost(self) -> None:
        """Schedule a reconnect, or give up once attempts are exhausted."""
        if not self._should_reconnect:
            self._status = WEBSOCKET_STATUS_DISCONNECTED
            return

        if self._reconnect_attempts >= self._max_reconnect_attempts:
            self._status = WEBSOCKET_STATUS_RECONNECT_EXHAUSTED
            _LOGGER.error(
                "Max reconnection attempts (%d) reached for %s, stopping reconnection",
                self._max_reconnect_attempts, self._url,
            )
            return

        self._reconnect_attempts += 1
        self._reconnects_scheduled += 1
        self._status = WEBSOCKET_STATUS_RECONNECT_SCHEDULED
        _LOGGER.info(
            "Reconnecting live stream (%d/%d) in %.0fs",
            self._reconnect_attempts, self._max_reconnect_attempts, self._reconnect_delay,
        )

        if self._reconnect_handle is not None:
            self._reconnect_handle.cancel()
        loop = asyncio.get_running_loop()
        self._reconnect_handle = loop.call_later(self._reconnect_delay, self._start_reconnect)

    def _start_reconnect(self) -> None:
        self._reconnect_handle = None
        if not self._should_reconnect:
            return
        self._reconnect_task = asyncio.get_running_loop().create_task(self._async_open())

    async def _listen(self, websocket: aiohttp.ClientWebSocketResponse) -> None:
        """Read messages until the socket closes or errors."""
        try:
            async for msg in websocket:
                if msg.type == WSMsgType.TEXT:
                    self._process_message(msg.data)
                elif msg.type == WSMsgType.ERROR:
                    self._status = WEBSOCKET_STATUS_ERRORED
                    _LOGGER.warning("Live stream error: %s", websocket.exception())
                    break
                else:
                    self._messages_ignored += 1
        except asyncio.CancelledError:
            raise
        except Exception as err:
            self._status = WEBSOCKET_STATUS_ERRORED
            _LOGGER.error("Error in live stream message handler: %s", err)

        if self._status == WEBSOCKET_STATUS_OPEN:
            self._status = WEBSOCKET_STATUS_CLOSED
            _LOGGER.info("Live stream closed by server (code %s)", websocket.close_code)
        self._websocket = None
        self._listen_task = None
        self._connection_time = None
        self._handle_connection_lost()

    def _process_message(self, raw: Any) -> None:
        """Filter one frame and dispatch it to the data handlers."""
        if not isinstance(raw, str) or not raw.strip():
            self._messages_ignored += 1
            return

        try:
            payload = json.loads(raw)
        except ValueError:
            # keepalives and other non-JSON chatter
            self._messages_ignored += 1
            return

        if not isinstance(payload, dict):
            self._messages_ignored += 1
            return
        entity_id = payload.get("entity_id")
        if not isinstance(entity_id, str) or not entity_id:
            self._messages_ignored += 1
            return

        self._messages_received += 1
        for handler in list(self._data_handlers):
            try:
                handler(payload)
            except Exception as err:
                _LOGGER.error("Error in live stream data handler for %s: %s", entity_id, err)

    def get_statistics(self) -> Dict[str, Any]:
        """Connection statistics for diagnostics."""
        return {
            "status": self._status,
            "connected": self.is_connected,
            "url": self._url,
            "reconnect_attempts": self._reconnect_attempts,
            "max_reconnect_attempts": self._max_reconnect_attempts,
            "reconnects_scheduled": self._reconnects_scheduled,
            "messages_received": self._messages_received,
            "messages_ignored": self._messages_ignored,
            "connection_time": (
                self._connection_time.isoformat() if self._connection_time else None
            ),
            "data_handlers": len(self._data_handlers),
        }
