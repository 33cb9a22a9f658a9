"""Tests for wiring the dashboard services together."""

import logging
from unittest.mock import AsyncMock, patch

import pytest
from homeassistant.util import dt as dt_util

from smart_home_sensors import DashboardRuntime, async_setup
from smart_home_sensors.const import STORAGE_KEY_DEVICES
from smart_home_sensors.live_sync import LiveSyncEngine
from smart_home_sensors.models import EntityState, Snapshot
from smart_home_sensors.transport import DashboardStorageError


class TestSetup:
    """Test async_setup."""

    @pytest.mark.asyncio
    async def test_builds_single_engine(self, mock_session, tmp_path):
        runtime = await async_setup(mock_session, tmp_path / "store.json")

        assert isinstance(runtime, DashboardRuntime)
        assert isinstance(runtime.engine, LiveSyncEngine)
        assert runtime.store.path == tmp_path / "store.json"
        assert runtime.stream.get_statistics()["data_handlers"] == 1
        assert runtime.engine.get_current_data().counts()["light_data"] == 3

    @pytest.mark.asyncio
    async def test_start_loads_configured_devices(self, mock_session, tmp_path, caplog):
        runtime = await async_setup(mock_session, tmp_path / "store.json")

        with patch.object(
            runtime.engine, "async_load_initial_data", AsyncMock(return_value=True)
        ) as mock_load, patch.object(
            runtime.engine, "async_connect", AsyncMock(return_value=False)
        ), caplog.at_level(logging.WARNING):
            assert not await runtime.async_start()

        devices = mock_load.await_args.args[0]
        assert [device.id for device in devices] == [
            "light_1", "light_2", "light_3", "camera_1", "camera_2", "ac_1", "ac_2",
        ]
        assert "not configured" in caplog.text

    @pytest.mark.asyncio
    async def test_start_survives_storage_failure(self, mock_session, tmp_path, caplog):
        runtime = await async_setup(mock_session, tmp_path / "store.json")
        await runtime.store.set_item(
            STORAGE_KEY_DEVICES,
            {"radarSensors": [{"id": "radar_1", "name": "Hall", "entity": "", "type": "radar"}]},
        )

        with patch.object(
            runtime.store, "set_item", AsyncMock(side_effect=DashboardStorageError("disk full"))
        ), patch.object(
            runtime.engine, "async_load_initial_data", AsyncMock(return_value=True)
        ) as mock_load, patch.object(
            runtime.engine, "async_connect", AsyncMock(return_value=True)
        ), caplog.at_level(logging.ERROR):
            assert await runtime.async_start()

        assert len(mock_load.await_args.args[0]) == 7
        assert "Could not update stored radar sensors" in caplog.text

    @pytest.mark.asyncio
    async def test_start_with_unwritable_fresh_store(self, mock_session, tmp_path, caplog):
        runtime = await async_setup(mock_session, tmp_path / "store.json")

        with patch.object(
            runtime.store, "set_item", AsyncMock(side_effect=DashboardStorageError("read-only"))
        ), patch.object(
            runtime.engine, "async_load_initial_data", AsyncMock(return_value=False)
        ) as mock_load, patch.object(
            runtime.engine, "async_connect", AsyncMock(return_value=False)
        ), caplog.at_level(logging.ERROR):
            assert not await runtime.async_start()

        assert len(mock_load.await_args.args[0]) == 7
        assert "Could not persist default devices" in caplog.text

    @pytest.mark.asyncio
    async def test_record_history_uses_sensor_map(self, mock_session, tmp_path):
        runtime = await async_setup(mock_session, tmp_path / "store.json")

        assert await runtime.async_record_history() == 0

        runtime.engine._merge_states(
            [
                EntityState(
                    "sensor.living_room_temperature",
                    "22.5",
                    "23.0",
                    timestamp=dt_util.utcnow().isoformat(),
                    attributes={"device_class": "temperature"},
                )
            ]
        )

        assert await runtime.async_record_history() == 1
        assert await runtime.history.async_get_twelve_hour_averages() == {
            "temperature": 23.0,
            "humidity": 0,
        }

    @pytest.mark.asyncio
    async def test_stop_drops_subscribers(self, mock_session, tmp_path):
        runtime = await async_setup(mock_session, tmp_path / "store.json")
        received = []
        runtime.engine.subscribe(received.append)

        await runtime.async_stop()
        runtime.engine._set_snapshot(
            Snapshot().with_states([EntityState("light.a", "off", "on")])
        )

        assert len(received) == 1
        assert not runtime.engine.is_connected()
