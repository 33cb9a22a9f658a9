"""
Persisted device configuration.

Devices are grouped by category: lists for water, radar, temperature and
humidity sensors, lights, cameras and air conditioners, and a single
entry each for the door sensor and the security sensor. Entries are
never deleted, only edited; an entry with an empty ``entity`` is simply
not configured yet.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterator, List, Union

import voluptuous as vol

from .const import (
    CATEGORY_ACS,
    CATEGORY_CAMERAS,
    CATEGORY_DOOR_SENSOR,
    CATEGORY_LIGHTS,
    CATEGORY_RADAR_SENSORS,
    CATEGORY_SECURITY,
    CATEGORY_TEMP_HUMIDITY_SENSORS,
    CATEGORY_WATER_SENSORS,
    DEVICE_TYPE_AC,
    DEVICE_TYPE_CAMERA,
    DEVICE_TYPE_DOOR,
    DEVICE_TYPE_LIGHT,
    DEVICE_TYPE_RADAR,
    DEVICE_TYPE_SECURITY,
    DEVICE_TYPE_TEMP_HUMIDITY,
    DEVICE_TYPE_WATER,
    DEVICE_TYPES,
    LIST_CATEGORIES,
    RADAR_SENSOR_COUNT,
    SINGLE_CATEGORIES,
    STORAGE_KEY_DEVICES,
)
from .models import DeviceConfig
from .storage import KeyValueStore
from .transport import DashboardStorageError

_LOGGER = logging.getLogger(__name__)

DeviceSet = Dict[str, Union[List[DeviceConfig], DeviceConfig]]

DEVICE_SCHEMA = vol.Schema(
    {
        vol.Required("id"): str,
        vol.Required("name"): str,
        vol.Optional("entity", default=""): vol.All(vol.Any(None, str), lambda value: value or ""),
        vol.Required("type"): vol.In(DEVICE_TYPES),
        vol.Optional("motion_sensor"): str,
        vol.Optional("occupancy_sensor"): str,
        vol.Optional("stream_url"): str,
    },
    extra=vol.REMOVE_EXTRA,
)

# Category order used whenever devices are flattened
_CATEGORY_ORDER = LIST_CATEGORIES + SINGLE_CATEGORIES


def _numbered(prefix: str, name: str, device_type: str, count: int) -> List[DeviceConfig]:
    return [
        DeviceConfig(id=f"{prefix}_{n}", name=f"{name} {n}", entity="", type=device_type)
        for n in range(1, count + 1)
    ]


def default_devices() -> DeviceSet:
    """Fresh copy of the out-of-the-box device set."""
    return {
        CATEGORY_WATER_SENSORS: _numbered("water", "Water Sensor", DEVICE_TYPE_WATER, 3),
        CATEGORY_RADAR_SENSORS: _numbered(
            "radar", "Radar Sensor", DEVICE_TYPE_RADAR, RADAR_SENSOR_COUNT
        ),
        CATEGORY_TEMP_HUMIDITY_SENSORS: _numbered(
            "temp_humidity", "Temperature & Humidity Sensor", DEVICE_TYPE_TEMP_HUMIDITY, 2
        ),
        CATEGORY_DOOR_SENSOR: DeviceConfig(
            id="door_1", name="Front Door", entity="", type=DEVICE_TYPE_DOOR
        ),
        CATEGORY_LIGHTS: [
            DeviceConfig("light_1", "Board A Button Switch A", "light.boarda_buttonswitch_a", DEVICE_TYPE_LIGHT),
            DeviceConfig("light_2", "Living Room Light", "light.living_room", DEVICE_TYPE_LIGHT),
            DeviceConfig("light_3", "Office Light", "light.office_light_grill43", DEVICE_TYPE_LIGHT),
        ],
        CATEGORY_CAMERAS: [
            DeviceConfig(
                id="camera_1",
                name="Front Door Camera",
                entity="camera.front_door",
                type=DEVICE_TYPE_CAMERA,
                motion_sensor="binary_sensor.frontdoor_1_motion",
                occupancy_sensor="binary_sensor.frontdoor_1_person_occupancy",
                stream_url="http://192.168.100.95:8123/api/camera_proxy_stream/camera.front_door",
            ),
            DeviceConfig(
                id="camera_2",
                name="Office Camera",
                entity="camera.office_demo",
                type=DEVICE_TYPE_CAMERA,
                motion_sensor="binary_sensor.office_demo_motion",
                occupancy_sensor="binary_sensor.office_demo_person_occupancy",
                stream_url="http://192.168.100.55:5050/api/office_demo",
            ),
        ],
        CATEGORY_ACS: [
            DeviceConfig("ac_1", "Office AC", "climate.office_ac", DEVICE_TYPE_AC),
            DeviceConfig("ac_2", "Living Room AC", "climate.living_room_ac", DEVICE_TYPE_AC),
        ],
        CATEGORY_SECURITY: DeviceConfig(
            id="security_1", name="Security System", entity="", type=DEVICE_TYPE_SECURITY
        ),
    }


def iter_devices(devices: DeviceSet) -> Iterator[DeviceConfig]:
    """Yield every device, list categories first, then the single entries."""
    for category in _CATEGORY_ORDER:
        value = devices.get(category)
        if value is None:
            continue
        if isinstance(value, DeviceConfig):
            yield value
        else:
            yield from value


def _device_from_record(record: Any) -> DeviceConfig:
    return DeviceConfig(**DEVICE_SCHEMA(record))


def _devices_from_record(record: Dict[str, Any]) -> DeviceSet:
    devices = default_devices()
    for category in LIST_CATEGORIES:
        if category in record:
            devices[category] = [_device_from_record(item) for item in record[category]]
    for category in SINGLE_CATEGORIES:
        if record.get(category):
            devices[category] = _device_from_record(record[category])
    return devices


def _devices_to_record(devices: DeviceSet) -> Dict[str, Any]:
    record: Dict[str, Any] = {}
    for category, value in devices.items():
        if isinstance(value, DeviceConfig):
            record[category] = value.as_dict()
        else:
            record[category] = [device.as_dict() for device in value]
    return record


class DeviceStorage:
    """Load and edit the persisted device configuration."""

    def __init__(self, store: KeyValueStore) -> None:
        self._store = store

    async def async_save_devices(self, devices: DeviceSet) -> None:
        """Persist ``devices``. Raises DashboardStorageError on failure."""
        await self._store.set_item(STORAGE_KEY_DEVICES, _devices_to_record(devices))

    async def async_load_devices(self) -> DeviceSet:
        """Return the stored devices, writing the defaults on first use.

        A corrupt record is logged and the defaults are returned without
        overwriting it. So are the defaults when the first write fails.
        """
        record = await self._store.get_item(STORAGE_KEY_DEVICES)
        if record is None:
            devices = default_devices()
            try:
                await self.async_save_devices(devices)
            except DashboardStorageError as err:
                _LOGGER.error("Could not persist default devices: %s", err)
                return devices
            _LOGGER.info("Device storage initialized with defaults")
            return devices

        try:
            if not isinstance(record, dict):
                raise vol.Invalid("device record is not a mapping")
            return _devices_from_record(record)
        except (vol.Invalid, TypeError) as err:
            _LOGGER.error("Error loading devices, using defaults: %s", err)
            return default_devices()

    async def async_update_device(self, category: str, device_id: str, **updates: Any) -> bool:
        """Merge ``updates`` into one device entry.

        Returns
        -------
        bool
            False if no device with ``device_id`` exists in ``category``.

        Raises
        ------
        ValueError
            If ``category`` is unknown.
        vol.Invalid
            If the updated entry does not validate.
        """
        if category not in _CATEGORY_ORDER:
            raise ValueError(f"Unknown device category: {category}")

        devices = await self.async_load_devices()
        value = devices[category]
        entries = [value] if isinstance(value, DeviceConfig) else value
        for index, device in enumerate(entries):
            if device.id != device_id:
                continue
            updated = _device_from_record({**device.as_dict(), **updates})
            if isinstance(value, DeviceConfig):
                devices[category] = updated
            else:
                value[index] = updated
            await self.async_save_devices(devices)
            _LOGGER.debug("Updated device %s in %s", device_id, category)
            return True

        _LOGGER.warning("No device %s in %s", device_id, category)
        return False

    async def async_get_all_devices(self) -> List[DeviceConfig]:
        return list(iter_devices(await self.async_load_devices()))

    async def async_get_configured_devices(self) -> List[DeviceConfig]:
        """Devices with an entity, or for cameras any companion sensor, set."""
        devices = [device for device in await self.async_get_all_devices() if device.is_configured]
        _LOGGER.debug("Configured devices found: %d", len(devices))
        return devices

    async def async_reset_to_default_devices(self) -> DeviceSet:
        devices = default_devices()
        await self.async_save_devices(devices)
        _LOGGER.info("Device storage reset to defaults")
        return devices

    async def async_ensure_radar_sensors_count(self) -> bool:
        """Pad the radar list to the expected size, keeping existing entries.

        Returns
        -------
        bool
            True if the list had to be padded.
        """
        devices = await self.async_load_devices()
        radars = list(devices[CATEGORY_RADAR_SENSORS])
        if len(radars) >= RADAR_SENSOR_COUNT:
            return False

        _LOGGER.info("Found %d radar sensors, padding to %d", len(radars), RADAR_SENSOR_COUNT)
        defaults = _numbered("radar", "Radar Sensor", DEVICE_TYPE_RADAR, RADAR_SENSOR_COUNT)
        devices[CATEGORY_RADAR_SENSORS] = radars + defaults[len(radars):]
        await self.async_save_devices(devices)
        return True

    async def async_clear_all_devices(self) -> None:
        await self._store.remove_item(STORAGE_KEY_DEVICES)
        _LOGGER.info("Device storage cleared")
