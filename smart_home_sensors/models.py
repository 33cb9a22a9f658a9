"""
Domain models for the smart home sensors dashboard.

This module contains plain data classes shared by the REST readers, the
live sync engine and the history aggregator. They carry no HTTP or
storage logic. The snapshot is copy-on-write: every update produces a new
:class:`Snapshot` through :func:`dataclasses.replace`, never an in-place
mutation.
"""

from __future__ import annotations

import dataclasses
from typing import Any, Callable, Dict, Iterable, Iterator, Mapping, Optional

from homeassistant.util import dt as dt_util

from .const import DOMAIN_PREFIXES, SEED_ATTRIBUTE


@dataclasses.dataclass(frozen=True)
class EntityState:
    """State of one Home Assistant entity as seen by the dashboard."""

    entity_id: str
    old_state: str
    new_state: str
    user_id: Optional[str] = None
    timestamp: str = ""
    attributes: Dict[str, Any] = dataclasses.field(default_factory=dict)

    @property
    def domain(self) -> str:
        """Entity id prefix, empty for legacy un-prefixed ids."""
        domain, sep, _ = self.entity_id.partition(".")
        return domain if sep else ""

    @property
    def is_seed(self) -> bool:
        return bool(self.attributes.get(SEED_ATTRIBUTE))

    @classmethod
    def from_stream(cls, payload: Mapping[str, Any]) -> "EntityState":
        """Build from a live stream message, already shaped like an entity state."""
        return cls(
            entity_id=payload["entity_id"],
            old_state=_as_state(payload.get("old_state")),
            new_state=_as_state(payload.get("new_state")),
            user_id=payload.get("user_id"),
            timestamp=payload.get("timestamp") or dt_util.utcnow().isoformat(),
            attributes=dict(payload.get("attributes") or {}),
        )

    @classmethod
    def from_rest(cls, api_state: Mapping[str, Any]) -> "EntityState":
        """Build from a Home Assistant ``/states/<entity_id>`` response.

        For an initial fetch the old and new state are the same value.
        """
        state = _as_state(api_state.get("state"))
        context = api_state.get("context") or {}
        return cls(
            entity_id=api_state["entity_id"],
            old_state=state,
            new_state=state,
            user_id=context.get("user_id"),
            timestamp=api_state.get("last_updated") or dt_util.utcnow().isoformat(),
            attributes=dict(api_state.get("attributes") or {}),
        )

    @classmethod
    def from_backend(
        cls, backend_state: Mapping[str, Any], timestamp: Optional[str] = None
    ) -> "EntityState":
        """Build from a backend ``{entity_id, state, attributes}`` record.

        The backend supplies neither an actor nor a timestamp, so the
        timestamp is synthesized.
        """
        state = _as_state(backend_state.get("state"))
        return cls(
            entity_id=backend_state["entity_id"],
            old_state=state,
            new_state=state,
            user_id=None,
            timestamp=timestamp or dt_util.utcnow().isoformat(),
            attributes=dict(backend_state.get("attributes") or {}),
        )

    def as_dict(self) -> Dict[str, Any]:
        return dataclasses.asdict(self)


def _as_state(value: Any) -> str:
    if value is None:
        return ""
    return str(value)


def classify_by_prefix(entity_id: str) -> Optional[str]:
    """Return the snapshot field for ``entity_id`` or None for unknown domains."""
    for prefix, field_name in DOMAIN_PREFIXES.items():
        if entity_id.startswith(prefix):
            return field_name
    return None


@dataclasses.dataclass(frozen=True)
class Snapshot:
    """
    Copy-on-write view of every tracked entity, partitioned by domain.

    Always replace via the helper methods, which return new instances.
    """

    binary_sensor_data: Dict[str, EntityState] = dataclasses.field(default_factory=dict)
    climate_data: Dict[str, EntityState] = dataclasses.field(default_factory=dict)
    light_data: Dict[str, EntityState] = dataclasses.field(default_factory=dict)
    sensor_data: Dict[str, EntityState] = dataclasses.field(default_factory=dict)

    def with_states(
        self,
        states: Iterable[EntityState],
        classify: Callable[[str], Optional[str]] = classify_by_prefix,
    ) -> "Snapshot":
        """Return a snapshot with each state merged into its domain map.

        A merge replaces the entity's whole record. States whose id
        classifies to no domain are dropped.
        """
        maps = {name: None for name in DOMAIN_PREFIXES.values()}
        for state in states:
            field_name = classify(state.entity_id)
            if field_name is None:
                continue
            if maps[field_name] is None:
                maps[field_name] = dict(getattr(self, field_name))
            maps[field_name][state.entity_id] = state
        changes = {name: value for name, value in maps.items() if value is not None}
        if not changes:
            return self
        return dataclasses.replace(self, **changes)

    def replace_domains(self, partial: "Snapshot") -> "Snapshot":
        """Replace every non-empty domain map of ``partial`` wholesale."""
        changes = {
            name: dict(getattr(partial, name))
            for name in DOMAIN_PREFIXES.values()
            if getattr(partial, name)
        }
        if not changes:
            return self
        return dataclasses.replace(self, **changes)

    def get(self, entity_id: str) -> Optional[EntityState]:
        for name in DOMAIN_PREFIXES.values():
            state = getattr(self, name).get(entity_id)
            if state is not None:
                return state
        return None

    def entity_ids(self) -> Iterator[str]:
        for name in DOMAIN_PREFIXES.values():
            yield from getattr(self, name)

    def counts(self) -> Dict[str, int]:
        return {name: len(getattr(self, name)) for name in DOMAIN_PREFIXES.values()}


@dataclasses.dataclass
class DeviceConfig:
    """User configured device as persisted by the device store."""

    id: str
    name: str
    entity: str
    type: str
    motion_sensor: Optional[str] = None
    occupancy_sensor: Optional[str] = None
    stream_url: Optional[str] = None

    @property
    def is_configured(self) -> bool:
        """True if the main entity or, for cameras, a companion sensor is set."""
        return any(
            (value or "").strip()
            for value in (self.entity, self.motion_sensor, self.occupancy_sensor)
        )

    def as_dict(self) -> Dict[str, Any]:
        return {key: value for key, value in dataclasses.asdict(self).items() if value is not None}


@dataclasses.dataclass(frozen=True)
class HistoricalReading:
    """One temperature or humidity sample."""

    value: float
    timestamp: str
    entity_id: str

    @property
    def observed_at(self):
        """Parsed timestamp in UTC, or None when unparseable."""
        parsed = dt_util.parse_datetime(self.timestamp)
        if parsed is None:
            return None
        return dt_util.as_utc(parsed)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "HistoricalReading":
        return cls(
            value=float(data["value"]),
            timestamp=str(data["timestamp"]),
            entity_id=str(data.get("entityId", "")),
        )

    def as_dict(self) -> Dict[str, Any]:
        return {"value": self.value, "timestamp": self.timestamp, "entityId": self.entity_id}


@dataclasses.dataclass
class ConnectionStatus:
    """Result of a configuration and connectivity check."""

    configured: bool
    connected: bool
    error: Optional[str] = None
