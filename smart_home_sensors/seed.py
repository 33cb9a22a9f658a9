"""
Placeholder entity states shown before any real data arrives.

Every record carries the ``seed`` marker attribute so callers can tell it
apart from fetched data. Real data for the same entity id replaces a seed
record as a whole.
"""

from __future__ import annotations

from typing import Any, List, Optional

from homeassistant.const import STATE_OFF, STATE_ON

from .const import SEED_ATTRIBUTE
from .models import EntityState, Snapshot

_SEED_TIMESTAMP = "2025-10-25T16:01:02.946201+00:00"
_SENSOR_TIMESTAMP = "2025-10-25T16:01:55.195652+00:00"
_LIGHT_TIMESTAMP = "2025-10-25T15:49:37.237420+00:00"


def _seed(
    entity_id: str,
    old_state: str,
    new_state: str,
    timestamp: str = _SEED_TIMESTAMP,
    user_id: Optional[str] = None,
    **attributes: Any,
) -> EntityState:
    attributes[SEED_ATTRIBUTE] = True
    return EntityState(
        entity_id=entity_id,
        old_state=old_state,
        new_state=new_state,
        user_id=user_id,
        timestamp=timestamp,
        attributes=attributes,
    )


def _binary(entity_id: str, device_class: str, friendly_name: str, **extra: Any) -> EntityState:
    return _seed(
        entity_id, STATE_OFF, STATE_OFF,
        device_class=device_class, friendly_name=friendly_name, **extra,
    )


def _onoff_light(entity_id: str, old_state: str, new_state: str, friendly_name: str) -> EntityState:
    return _seed(
        entity_id, old_state, new_state, _LIGHT_TIMESTAMP,
        supported_color_modes=["onoff"],
        color_mode="onoff",
        friendly_name=friendly_name,
        supported_features=0,
    )


def _measurement(
    entity_id: str, old_state: str, new_state: str, device_class: str, unit: str, friendly_name: str
) -> EntityState:
    return _seed(
        entity_id, old_state, new_state, _SENSOR_TIMESTAMP,
        state_class="measurement",
        unit_of_measurement=unit,
        device_class=device_class,
        friendly_name=friendly_name,
    )


def seed_states() -> List[EntityState]:
    """Fresh list of the placeholder states."""
    return [
        _binary("binary_sensor.boardb_presence_tu_pressure", "moisture", "Water Sensor 1"),
        _binary("binary_sensor.water_sensor_2", "moisture", "Water Sensor 2"),
        _binary("binary_sensor.water_sensor_3", "moisture", "Water Sensor 3"),
        *(
            _binary(f"binary_sensor.radar_sensor_{n}", "motion", f"Radar Sensor {n}")
            for n in range(1, 5)
        ),
        _binary(
            "binary_sensor.frontdoor_1_person_occupancy", "occupancy",
            "Frontdoor 1 Person occupancy", icon="mdi:home-outline",
        ),
        _binary("binary_sensor.office_demo_motion", "motion", "Office Demo Motion"),
        _binary(
            "binary_sensor.office_demo_person_occupancy", "occupancy",
            "Office Demo Person Occupancy",
        ),
        _binary(
            "binary_sensor.boardb_presence_tu_presence", "occupancy",
            "BoardB_Presence_TU Occupancy",
        ),
        _binary("binary_sensor.front_door", "door", "Front Door"),
        _binary("binary_sensor.security_system", "safety", "Security System"),
        _seed(
            "climate.office_ac", "heat_cool", "heat_cool",
            "2025-10-25T15:59:57.597483+00:00",
            user_id="45882e54e84d4c308af1caabae6b3876",
            hvac_modes=["off", "heat", "cool", "heat_cool", "fan_only"],
            min_temp=18.0,
            max_temp=30.0,
            target_temp_step=1.0,
            fan_modes=["low", "mid", "high"],
            current_temperature=None,
            temperature=22,
            fan_mode="low",
            last_on_operation="heat_cool",
            friendly_name="Office AC",
        ),
        _onoff_light("light.boarda_buttonswitch_a", STATE_OFF, STATE_ON, "Board A - Button Switch - A"),
        _onoff_light("light.living_room", STATE_ON, STATE_OFF, "Living Room Light"),
        _onoff_light("light.office_light_grill43", STATE_OFF, STATE_ON, "Office Light"),
        _measurement(
            "sensor.boarda_temp_sonoff_temperature", "25.15", "25.18",
            "temperature", "°C", "BoardA_Temp_Sonoff Temperature",
        ),
        _measurement(
            "sensor.boarda_temp_sonoff_humidity", "65", "65",
            "humidity", "%", "BoardA_Temp_Sonoff Humidity",
        ),
        _measurement(
            "sensor.living_room_temperature", "22.5", "22.5",
            "temperature", "°C", "Living Room Temperature",
        ),
        _measurement(
            "sensor.living_room_humidity", "45", "45",
            "humidity", "%", "Living Room Humidity",
        ),
    ]


def seed_snapshot() -> Snapshot:
    """Snapshot holding only the placeholder states."""
    return Snapshot().with_states(seed_states())


def is_seed_state(state: Optional[EntityState]) -> bool:
    return state is not None and state.is_seed
