"""
Constants for the smart home sensors dashboard client.

Connection defaults are read from the environment so that the long-lived
Home Assistant token never has to live in versioned configuration. The
remaining values tune request timeouts, the live stream reconnect policy
and the rolling history window. Adjust them here rather than in the
modules that use them.
"""

import os
from datetime import timedelta

from homeassistant.const import Platform


# =============================================================================
# Remote connection defaults
# =============================================================================

DEFAULT_BASE_URL: str = os.environ.get("HA_BASE_URL", "http://homeassistant.local:8123/api")
DEFAULT_TOKEN: str = os.environ.get("HA_TOKEN", "")
DEFAULT_WEBSOCKET_URL: str = os.environ.get(
    "HA_WEBSOCKET_URL", "ws://homeassistant.local:3040/api/ws/entities_live"
)
DEFAULT_USE_PROXY: bool = os.environ.get("HA_USE_PROXY", "false").lower() in ("1", "true", "yes")
DEFAULT_BACKEND_URL: str = os.environ.get("DASHBOARD_BACKEND_URL", "http://homeassistant.local:3040")

# Persisted config field names (camelCase on disk)
CONF_BASE_URL: str = "baseUrl"
CONF_TOKEN: str = "token"
CONF_WEBSOCKET_URL: str = "websocketUrl"
CONF_USE_PROXY: str = "useProxy"
CONF_BACKEND_URL: str = "backendUrl"

# =============================================================================
# Storage keys
# =============================================================================

STORAGE_KEY_CONFIG: str = "home_assistant_config"
STORAGE_KEY_DEVICES: str = "smart_home_devices"
STORAGE_KEY_HISTORY: str = "historical_sensor_data"

# =============================================================================
# Network timeouts (seconds)
# =============================================================================

DEFAULT_REQUEST_TIMEOUT: float = 10.0
AGGREGATE_REQUEST_TIMEOUT: float = 15.0  # /states, /api/dashboard, /api/entities
CONNECTION_TEST_TIMEOUT: float = 5.0
WEBSOCKET_CONNECT_TIMEOUT: float = 10.0
WEBSOCKET_HEARTBEAT: float = 30.0

# =============================================================================
# Live stream reconnect policy
# =============================================================================

RECONNECT_DELAY: float = 5.0  # fixed delay, no backoff
MAX_RECONNECT_ATTEMPTS: int = 5

# Connection states of the live stream
WEBSOCKET_STATUS_DISCONNECTED: str = "disconnected"
WEBSOCKET_STATUS_CONNECTING: str = "connecting"
WEBSOCKET_STATUS_OPEN: str = "open"
WEBSOCKET_STATUS_CLOSED: str = "closed"
WEBSOCKET_STATUS_ERRORED: str = "errored"
WEBSOCKET_STATUS_RECONNECT_SCHEDULED: str = "reconnect_scheduled"
WEBSOCKET_STATUS_RECONNECT_EXHAUSTED: str = "reconnect_exhausted"

# =============================================================================
# Entity domains
# =============================================================================

# Domain prefix -> snapshot map. Order matters only for readability; the
# prefixes are mutually exclusive.
DOMAIN_PREFIXES: dict[str, str] = {
    f"{Platform.BINARY_SENSOR}.": "binary_sensor_data",
    f"{Platform.CLIMATE}.": "climate_data",
    f"{Platform.LIGHT}.": "light_data",
    f"{Platform.SENSOR}.": "sensor_data",
}

# Un-prefixed ids emitted by older firmware that are known binary sensors.
LEGACY_BINARY_SENSOR_IDS: frozenset[str] = frozenset(
    {"test22", "test", "radar 1", "radar 2", "radar 3", "radar 4"}
)

# Domains that accept no commands
READ_ONLY_DOMAINS: frozenset[str] = frozenset(
    {Platform.BINARY_SENSOR.value, Platform.SENSOR.value}
)

# =============================================================================
# Commands
# =============================================================================

ACTION_TURN_ON: str = "turn_on"
ACTION_TOGGLE: str = "toggle"

SERVICE_SET_HVAC_MODE: str = "set_hvac_mode"
SERVICE_SET_TEMPERATURE: str = "set_temperature"
SERVICE_SET_FAN_MODE: str = "set_fan_mode"

ATTR_HVAC_MODE: str = "hvac_mode"
ATTR_HVAC_MODES: str = "hvac_modes"
ATTR_FAN_MODE: str = "fan_mode"
ATTR_DEVICE_CLASS: str = "device_class"

# Marker attribute carried by seed entities only
SEED_ATTRIBUTE: str = "seed"

# =============================================================================
# Device configuration
# =============================================================================

DEVICE_TYPE_WATER: str = "water"
DEVICE_TYPE_RADAR: str = "radar"
DEVICE_TYPE_TEMP_HUMIDITY: str = "temp_humidity"
DEVICE_TYPE_DOOR: str = "door"
DEVICE_TYPE_LIGHT: str = "light"
DEVICE_TYPE_CAMERA: str = "camera"
DEVICE_TYPE_AC: str = "ac"
DEVICE_TYPE_SECURITY: str = "security"

DEVICE_TYPES: tuple[str, ...] = (
    DEVICE_TYPE_WATER,
    DEVICE_TYPE_RADAR,
    DEVICE_TYPE_TEMP_HUMIDITY,
    DEVICE_TYPE_DOOR,
    DEVICE_TYPE_LIGHT,
    DEVICE_TYPE_CAMERA,
    DEVICE_TYPE_AC,
    DEVICE_TYPE_SECURITY,
)

# Device types whose entity is a binary sensor even without a prefix
BINARY_DEVICE_TYPES: frozenset[str] = frozenset(
    {DEVICE_TYPE_WATER, DEVICE_TYPE_RADAR, DEVICE_TYPE_DOOR, DEVICE_TYPE_SECURITY}
)

# Device list categories as persisted
CATEGORY_WATER_SENSORS: str = "waterSensors"
CATEGORY_RADAR_SENSORS: str = "radarSensors"
CATEGORY_TEMP_HUMIDITY_SENSORS: str = "tempHumiditySensors"
CATEGORY_DOOR_SENSOR: str = "doorSensor"
CATEGORY_LIGHTS: str = "lights"
CATEGORY_CAMERAS: str = "cameras"
CATEGORY_ACS: str = "acs"
CATEGORY_SECURITY: str = "security"

LIST_CATEGORIES: tuple[str, ...] = (
    CATEGORY_WATER_SENSORS,
    CATEGORY_RADAR_SENSORS,
    CATEGORY_TEMP_HUMIDITY_SENSORS,
    CATEGORY_LIGHTS,
    CATEGORY_CAMERAS,
    CATEGORY_ACS,
)
SINGLE_CATEGORIES: tuple[str, ...] = (CATEGORY_DOOR_SENSOR, CATEGORY_SECURITY)

RADAR_SENSOR_COUNT: int = 4

# =============================================================================
# Historical readings
# =============================================================================

READING_TEMPERATURE: str = "temperature"
READING_HUMIDITY: str = "humidity"
READING_TYPES: tuple[str, ...] = (READING_TEMPERATURE, READING_HUMIDITY)

HISTORY_WINDOW: timedelta = timedelta(hours=12)
MAX_READINGS_PER_TYPE: int = 288  # one reading every 2.5 minutes over 12 hours
