"""
Live state sync and entity control client for a Home Assistant dashboard.

The package keeps a local, continuously updated mirror of the states of
the configured Home Assistant entities. States are pulled over REST on
start-up and then pushed by the backend's live WebSocket stream. User
commands are applied to the mirror immediately and then sent to the
intermediary backend or straight to Home Assistant, whichever route works.
Temperature and humidity readings feed a rolling 12 hour history.

Everything is wired together by :func:`async_setup`, which builds exactly
one :class:`~.live_sync.LiveSyncEngine` with its collaborators:

>>> async with aiohttp.ClientSession() as session:
...     runtime = await async_setup(session, "~/.smart_home_sensors/store.json")
...     await runtime.async_start()
...     unsubscribe = runtime.engine.subscribe(render)
...     runtime.engine.toggle_entity("light.living_room")
...     await runtime.async_stop()

The caller owns the aiohttp session and closes it after
:meth:`DashboardRuntime.async_stop`.
"""

from __future__ import annotations

import dataclasses
import logging
from pathlib import Path
from typing import Iterable, Union

from aiohttp import ClientSession

from .backend_api import BackendApiClient
from .config import RemoteConfigStore
from .devices import DeviceStorage
from .ha_api import HomeAssistantApiClient
from .history import HistoricalAggregator
from .live_sync import LiveSyncEngine
from .models import DeviceConfig
from .storage import KeyValueStore
from .transport import DashboardStorageError
from .websocket_client import EntityStreamClient

_LOGGER = logging.getLogger(__name__)


@dataclasses.dataclass
class DashboardRuntime:
    """The services of one running dashboard."""

    store: KeyValueStore
    config: RemoteConfigStore
    devices: DeviceStorage
    ha_api: HomeAssistantApiClient
    backend_api: BackendApiClient
    stream: EntityStreamClient
    engine: LiveSyncEngine
    history: HistoricalAggregator

    async def async_start(self) -> bool:
        """Load devices and initial states, then connect the live stream.

        Returns
        -------
        bool
            True if the live stream is connected. Without a connection the
            stream keeps retrying in the background and the dashboard shows
            fetched or seed data.
        """
        if not await self.config.is_configured():
            _LOGGER.warning("Home Assistant connection is not configured, showing seed data")

        try:
            await self.devices.async_ensure_radar_sensors_count()
        except DashboardStorageError as err:
            _LOGGER.error("Could not update stored radar sensors: %s", err)
        configured = await self.devices.async_get_configured_devices()
        await self.engine.async_load_initial_data(configured)

        connected = await self.engine.async_connect()
        _LOGGER.info(
            "Dashboard started with %d configured devices (live stream %s)",
            len(configured), "connected" if connected else "not connected",
        )
        return connected

    async def async_record_history(
        self,
        temperature_sensors: Iterable[DeviceConfig] = (),
        humidity_sensors: Iterable[DeviceConfig] = (),
    ) -> int:
        """Record the current sensor values into the rolling history."""
        snapshot = self.engine.get_current_data()
        return await self.history.async_process_sensor_data(
            snapshot.sensor_data, temperature_sensors, humidity_sensors
        )

    async def async_stop(self) -> None:
        """Disconnect the live stream and drop all subscribers."""
        await self.engine.async_disconnect()
        await self.engine.async_wait_pending()
        _LOGGER.info("Dashboard stopped")


async def async_setup(session: ClientSession, storage_path: Union[str, Path]) -> DashboardRuntime:
    """Build the dashboard services around ``session`` and a store file."""
    store = KeyValueStore(Path(storage_path).expanduser())
    config = RemoteConfigStore(store, session)
    ha_api = HomeAssistantApiClient(session, config)
    backend_api = BackendApiClient(session, config)
    stream = EntityStreamClient(session, config.get_websocket_url)

    runtime = DashboardRuntime(
        store=store,
        config=config,
        devices=DeviceStorage(store),
        ha_api=ha_api,
        backend_api=backend_api,
        stream=stream,
        engine=LiveSyncEngine(ha_api, backend_api, stream),
        history=HistoricalAggregator(store),
    )
    _LOGGER.debug("Dashboard services created with store %s", store.path)
    return runtime
