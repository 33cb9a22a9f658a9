"""
Rolling temperature and humidity history.

Readings are kept per type, newest first, capped at
:data:`~.const.MAX_READINGS_PER_TYPE` entries and restricted to the last
:data:`~.const.HISTORY_WINDOW`. Pruning runs on every write and the window
is applied again at read time, so a reading that aged out between a write
and a read never counts toward an average.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from homeassistant.util import dt as dt_util

from .const import (
    ATTR_DEVICE_CLASS,
    HISTORY_WINDOW,
    MAX_READINGS_PER_TYPE,
    READING_HUMIDITY,
    READING_TEMPERATURE,
    READING_TYPES,
    STORAGE_KEY_HISTORY,
)
from .ha_api import parse_numeric_state
from .models import DeviceConfig, EntityState, HistoricalReading
from .storage import KeyValueStore
from .transport import DashboardStorageError

_LOGGER = logging.getLogger(__name__)


def prune_readings(
    readings: Iterable[HistoricalReading], now: Optional[datetime] = None
) -> List[HistoricalReading]:
    """Newest first, at most the cap, nothing older than the window.

    Readings with an unparseable timestamp are dropped. Pruning an already
    pruned list returns an equal list.
    """
    cutoff = (now or dt_util.utcnow()) - HISTORY_WINDOW
    dated = [(reading.observed_at, reading) for reading in readings]
    dated = [(observed, reading) for observed, reading in dated if observed is not None]
    dated.sort(key=lambda item: item[0], reverse=True)
    return [
        reading
        for observed, reading in dated[:MAX_READINGS_PER_TYPE]
        if observed >= cutoff
    ]


def _average(readings: Iterable[HistoricalReading]) -> float:
    values = [
        value
        for value in (parse_numeric_state(reading.value) for reading in readings)
        if value is not None
    ]
    if not values:
        return 0
    return sum(values) / len(values)


def _classify_reading(entity_id: str, state: EntityState) -> Optional[str]:
    device_class = state.attributes.get(ATTR_DEVICE_CLASS)
    if device_class in READING_TYPES:
        return device_class
    # older configurations only identify sensors by name
    if "humidity" in entity_id:
        return READING_HUMIDITY
    if "temp" in entity_id:
        return READING_TEMPERATURE
    return None


class HistoricalAggregator:
    """Persisted rolling window of temperature and humidity readings."""

    def __init__(self, store: KeyValueStore) -> None:
        self._store = store
        self._lock = asyncio.Lock()

    async def _async_load(self) -> Dict[str, List[HistoricalReading]]:
        raw = await self._store.get_item(STORAGE_KEY_HISTORY)
        if not isinstance(raw, dict):
            raw = {}

        data: Dict[str, List[HistoricalReading]] = {}
        for reading_type in READING_TYPES:
            readings = []
            for entry in raw.get(reading_type) or []:
                try:
                    readings.append(HistoricalReading.from_dict(entry))
                except (KeyError, TypeError, ValueError) as err:
                    _LOGGER.debug("Dropping malformed %s reading %s: %s", reading_type, entry, err)
            data[reading_type] = prune_readings(readings)
        return data

    async def _async_save(self, data: Dict[str, List[HistoricalReading]]) -> None:
        await self._store.set_item(
            STORAGE_KEY_HISTORY,
            {
                reading_type: [reading.as_dict() for reading in readings]
                for reading_type, readings in data.items()
            },
        )

    async def async_add_readings(self, readings: Iterable[Tuple[str, HistoricalReading]]) -> int:
        """Append several ``(type, reading)`` pairs with a single write.

        Readings of an unknown type are logged and skipped.

        Returns
        -------
        int
            Number of readings appended, 0 if the write failed.
        """
        async with self._lock:
            data = await self._async_load()
            added = 0
            for reading_type, reading in readings:
                if reading_type not in data:
                    _LOGGER.warning(
                        "Skipping reading of unknown type %s from %s",
                        reading_type, reading.entity_id,
                    )
                    continue
                data[reading_type].append(reading)
                added += 1
            if not added:
                return 0

            data = {reading_type: prune_readings(items) for reading_type, items in data.items()}
            try:
                await self._async_save(data)
            except DashboardStorageError as err:
                _LOGGER.error("Error saving historical readings: %s", err)
                return 0
            return added

    async def async_add_reading(
        self,
        reading_type: str,
        value: Any,
        entity_id: str,
        timestamp: Optional[str] = None,
    ) -> bool:
        """Record one reading. Non-numeric values are ignored."""
        number = parse_numeric_state(value)
        if number is None:
            _LOGGER.debug("Ignoring non-numeric %s reading %r from %s", reading_type, value, entity_id)
            return False
        reading = HistoricalReading(
            value=number,
            timestamp=timestamp or dt_util.utcnow().isoformat(),
            entity_id=entity_id,
        )
        return await self.async_add_readings([(reading_type, reading)]) == 1

    async def async_get_twelve_hour_average(self, reading_type: str) -> float:
        """Mean of the readings inside the window, 0 when there are none."""
        data = await self._async_load()
        return _average(prune_readings(data.get(reading_type, [])))

    async def async_get_twelve_hour_averages(self) -> Dict[str, float]:
        data = await self._async_load()
        return {
            reading_type: _average(prune_readings(readings))
            for reading_type, readings in data.items()
        }

    async def async_get_readings_count(self) -> Dict[str, int]:
        data = await self._async_load()
        return {reading_type: len(readings) for reading_type, readings in data.items()}

    async def async_get_recent_readings(
        self, reading_type: str, limit: int = 10
    ) -> List[HistoricalReading]:
        data = await self._async_load()
        return data.get(reading_type, [])[:limit]

    async def async_clear_historical_data(self) -> None:
        async with self._lock:
            await self._store.remove_item(STORAGE_KEY_HISTORY)
        _LOGGER.info("Historical sensor data cleared")

    async def async_process_sensor_data(
        self,
        sensor_data: Mapping[str, EntityState],
        temperature_sensors: Iterable[DeviceConfig],
        humidity_sensors: Iterable[DeviceConfig],
    ) -> int:
        """Record the current value of every temperature and humidity sensor.

        Configured device lists decide first, then the ``device_class``
        attribute, then the entity name. Each entity is recorded at most
        once per call. Seed placeholders are never recorded.

        Returns
        -------
        int
            Number of readings recorded.
        """
        assigned: Dict[str, str] = {}
        for reading_type, sensors in (
            (READING_TEMPERATURE, temperature_sensors),
            (READING_HUMIDITY, humidity_sensors),
        ):
            for sensor in sensors:
                entity_id = (sensor.entity or "").strip()
                if entity_id and entity_id in sensor_data:
                    assigned.setdefault(entity_id, reading_type)

        for entity_id, state in sensor_data.items():
            if entity_id not in assigned:
                reading_type = _classify_reading(entity_id, state)
                if reading_type is not None:
                    assigned[entity_id] = reading_type

        readings = []
        for entity_id, reading_type in assigned.items():
            state = sensor_data[entity_id]
            if state.is_seed:
                continue
            value = parse_numeric_state(state.new_state)
            if value is None:
                continue
            readings.append(
                (
                    reading_type,
                    HistoricalReading(
                        value=value,
                        timestamp=state.timestamp or dt_util.utcnow().isoformat(),
                        entity_id=entity_id,
                    ),
                )
            )

        if not readings:
            return 0
        recorded = await self.async_add_readings(readings)
        _LOGGER.debug("Recorded %d sensor readings", recorded)
        return recorded
