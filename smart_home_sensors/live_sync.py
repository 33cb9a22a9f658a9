"""
Live sync engine.

The engine owns the dashboard's single :class:`~.models.Snapshot`. It
starts out holding placeholder seed states, replaces them with REST data
for the configured devices, then merges single entity updates pushed by
the live stream. Subscribers are called synchronously with the new
snapshot after every change.

Commands follow one two-phase pattern:

1. The new local state is computed and written into the snapshot at
   once, and subscribers are notified.
2. The real command runs as an :class:`asyncio.Task`. It walks the
   routing table for ``(domain, service)`` and tries each execution
   strategy in order until one succeeds. If all of them fail the error is
   logged, the optimistic state is left in place and the entity is
   re-fetched once so the snapshot can converge on the real state.

Exactly one engine should exist per running application; it is built by
:func:`smart_home_sensors.async_setup` and passed to whoever needs it.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    Iterable,
    List,
    Optional,
    Set,
    Tuple,
)

from homeassistant.const import (
    ATTR_ENTITY_ID,
    ATTR_TEMPERATURE,
    SERVICE_TOGGLE,
    SERVICE_TURN_OFF,
    SERVICE_TURN_ON,
    STATE_OFF,
    STATE_ON,
    Platform,
)
from homeassistant.util import dt as dt_util

from .backend_api import BackendApiClient
from .const import (
    ACTION_TOGGLE,
    ATTR_FAN_MODE,
    ATTR_HVAC_MODE,
    ATTR_HVAC_MODES,
    BINARY_DEVICE_TYPES,
    DEVICE_TYPE_CAMERA,
    LEGACY_BINARY_SENSOR_IDS,
    READ_ONLY_DOMAINS,
    SERVICE_SET_FAN_MODE,
    SERVICE_SET_HVAC_MODE,
    SERVICE_SET_TEMPERATURE,
)
from .ha_api import HomeAssistantApiClient
from .models import DeviceConfig, EntityState, Snapshot, classify_by_prefix
from .seed import seed_snapshot
from .transport import DashboardError
from .websocket_client import EntityStreamClient

_LOGGER = logging.getLogger(__name__)

Subscriber = Callable[[Snapshot], None]

LIGHT_DOMAIN = Platform.LIGHT.value
CLIMATE_DOMAIN = Platform.CLIMATE.value
LIGHT_OPTIONS = ("brightness", "rgb_color", "color_temp")
READ_ONLY_FIELDS = frozenset({"binary_sensor_data", "sensor_data"})


@dataclasses.dataclass(frozen=True)
class EntityCommand:
    """One service invocation against one entity."""

    entity_id: str
    service: str
    data: Dict[str, Any] = dataclasses.field(default_factory=dict)

    @property
    def domain(self) -> str:
        return self.entity_id.partition(".")[0]

    def service_data(self) -> Dict[str, Any]:
        return {ATTR_ENTITY_ID: self.entity_id, **self.data}


Strategy = Callable[[EntityCommand], Awaitable[bool]]


def get_tracked_entity_ids(devices: Iterable[DeviceConfig]) -> List[str]:
    """Entity ids to track for ``devices``, de-duplicated in first-seen order.

    Camera devices contribute their motion and occupancy sensors as well
    as their main entity.
    """
    seen: Dict[str, None] = {}
    for device in devices:
        candidates = [device.entity]
        if device.type == DEVICE_TYPE_CAMERA:
            candidates += [device.motion_sensor, device.occupancy_sensor]
        for entity_id in candidates:
            entity_id = (entity_id or "").strip()
            if entity_id:
                seen.setdefault(entity_id, None)
    return list(seen)


class LiveSyncEngine:
    """Mirror of remote entity states with optimistic command dispatch."""

    def __init__(
        self,
        ha_api: HomeAssistantApiClient,
        backend_api: BackendApiClient,
        stream: EntityStreamClient,
    ) -> None:
        """Initialize the engine.

        Parameters
        ----------
        ha_api: HomeAssistantApiClient
            Direct REST reader, also used for direct service calls.
        backend_api: BackendApiClient
            Intermediary backend, preferred for light control.
        stream: EntityStreamClient
            Live stream feeding single entity updates.
        """
        self._ha_api = ha_api
        self._backend_api = backend_api
        self._stream = stream

        self._snapshot = seed_snapshot()
        self._subscribers: List[Subscriber] = []
        self._binary_device_ids: Set[str] = set()
        self._pending: Set[asyncio.Task] = set()

        # (domain, service) -> strategies tried in order
        self._routes: Dict[Tuple[str, str], Tuple[Strategy, ...]] = {
            (LIGHT_DOMAIN, SERVICE_TURN_ON): (self._async_backend_light, self._async_direct_service),
            (LIGHT_DOMAIN, SERVICE_TURN_OFF): (self._async_backend_light, self._async_direct_service),
            (CLIMATE_DOMAIN, SERVICE_SET_HVAC_MODE): (self._async_direct_service,),
            (CLIMATE_DOMAIN, SERVICE_SET_TEMPERATURE): (self._async_direct_service,),
            (CLIMATE_DOMAIN, SERVICE_SET_FAN_MODE): (self._async_direct_service,),
        }

        self._stream.add_data_handler(self._handle_stream_data)

    # ------------------------------------------------------------------
    # Snapshot and subscribers
    # ------------------------------------------------------------------

    def get_current_data(self) -> Snapshot:
        return self._snapshot

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register ``callback`` and call it once with the current snapshot.

        Returns
        -------
        Callable[[], None]
            Removes the callback again. Calling it twice is harmless.
        """
        self._subscribers.append(callback)
        callback(self._snapshot)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def _set_snapshot(self, snapshot: Snapshot) -> None:
        self._snapshot = snapshot
        for callback in list(self._subscribers):
            try:
                callback(snapshot)
            except Exception as err:
                _LOGGER.error("Error in snapshot subscriber %s: %s", callback, err)

    def _merge_states(self, states: Iterable[EntityState]) -> bool:
        snapshot = self._snapshot.with_states(states, self.classify)
        if snapshot is self._snapshot:
            return False
        self._set_snapshot(snapshot)
        return True

    # ------------------------------------------------------------------
    # Classification and tracked entities
    # ------------------------------------------------------------------

    def set_devices(self, devices: Iterable[DeviceConfig]) -> None:
        """Remember which un-prefixed ids configured devices declare as binary."""
        self._binary_device_ids = {
            device.entity.strip()
            for device in devices
            if device.type in BINARY_DEVICE_TYPES
            and device.entity.strip()
            and "." not in device.entity
        }

    def classify(self, entity_id: str) -> Optional[str]:
        """Snapshot field for ``entity_id``.

        The domain prefix decides first. Un-prefixed ids are binary sensors
        only when listed in the legacy allowlist or declared by a configured
        binary device.
        """
        field_name = classify_by_prefix(entity_id)
        if field_name is not None:
            return field_name
        if entity_id in LEGACY_BINARY_SENSOR_IDS or entity_id in self._binary_device_ids:
            return "binary_sensor_data"
        return None

    get_tracked_entity_ids = staticmethod(get_tracked_entity_ids)

    # ------------------------------------------------------------------
    # Initial load and live stream
    # ------------------------------------------------------------------

    async def async_load_initial_data(self, devices: Iterable[DeviceConfig]) -> bool:
        """Replace seed data with real states for the configured devices.

        Home Assistant is asked first, the backend second. Every domain that
        came back is replaced wholesale. When nothing came back the current
        snapshot, seed data included, stays as it is.

        Returns
        -------
        bool
            True if at least one state was loaded.
        """
        devices = list(devices)
        self.set_devices(devices)
        entity_ids = self.get_tracked_entity_ids(devices)
        if not entity_ids:
            _LOGGER.info("No configured entities to load")
            return False

        partial = await self._ha_api.fetch_configured_entity_states(entity_ids, self.classify)
        if not any(partial.entity_ids()):
            _LOGGER.warning(
                "Home Assistant returned no states for %d entities, trying backend",
                len(entity_ids),
            )
            partial = await self._backend_api.fetch_configured_entity_states(
                entity_ids, self.classify
            )

        if not any(partial.entity_ids()):
            _LOGGER.warning("Initial load failed, keeping current data")
            return False

        self._set_snapshot(self._snapshot.replace_domains(partial))
        _LOGGER.info("Initial data loaded: %s", partial.counts())
        return True

    def _handle_stream_data(self, payload: Dict[str, Any]) -> None:
        try:
            state = EntityState.from_stream(payload)
        except (KeyError, TypeError, ValueError) as err:
            _LOGGER.debug("Discarding malformed live update: %s", err)
            return

        if not self._merge_states([state]):
            _LOGGER.debug("Ignoring live update for unknown entity %s", state.entity_id)

    async def async_connect(self) -> bool:
        """Connect the live stream, restarting its reconnect cycle."""
        return await self._stream.connect()

    async def async_disconnect(self) -> None:
        """Close the live stream and drop every subscriber."""
        await self._stream.disconnect()
        self._subscribers.clear()
        _LOGGER.info("Live sync engine disconnected")

    def is_connected(self) -> bool:
        return self._stream.is_connected

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def toggle_entity(self, entity_id: str) -> Optional[asyncio.Task]:
        """Flip an entity's on/off state.

        Climate entities advance to the next mode in their ``hvac_modes``.

        Returns
        -------
        Optional[asyncio.Task]
            The background command, or None if nothing was dispatched.
        """
        domain, sep, _ = entity_id.partition(".")
        if domain in READ_ONLY_DOMAINS or self.classify(entity_id) in READ_ONLY_FIELDS:
            _LOGGER.warning("Refusing to toggle read-only entity %s", entity_id)
            return None
        if not sep:
            _LOGGER.warning("Cannot toggle entity without a domain: %s", entity_id)
            return None
        if domain == CLIMATE_DOMAIN:
            return self.update_climate_entity(entity_id)

        current = self._snapshot.get(entity_id)
        if current is None:
            if domain == LIGHT_DOMAIN:
                _LOGGER.warning("Cannot toggle unknown light %s", entity_id)
                return None
            # not mirrored locally, so there is nothing to update optimistically
            return self._schedule(entity_id, [EntityCommand(entity_id, SERVICE_TOGGLE)])

        target = STATE_OFF if current.new_state == STATE_ON else STATE_ON
        if domain == LIGHT_DOMAIN:
            service = SERVICE_TURN_ON if target == STATE_ON else SERVICE_TURN_OFF
        else:
            service = SERVICE_TOGGLE

        _LOGGER.debug("Toggling %s from %s to %s", entity_id, current.new_state, target)
        self._apply_optimistic(current, target)
        return self._schedule(entity_id, [EntityCommand(entity_id, service)])

    def update_climate_entity(
        self,
        entity_id: str,
        hvac_mode: Optional[str] = None,
        temperature: Optional[float] = None,
        fan_mode: Optional[str] = None,
    ) -> Optional[asyncio.Task]:
        """Change a climate entity's mode, target temperature or fan mode.

        Without arguments the entity advances to the next entry of its
        ``hvac_modes`` attribute, wrapping around.
        """
        if not self._accepts_commands(entity_id, CLIMATE_DOMAIN):
            return None
        current = self._snapshot.get(entity_id)

        if hvac_mode is None and temperature is None and fan_mode is None:
            hvac_mode = _next_hvac_mode(current)
            if hvac_mode is None:
                _LOGGER.warning("No HVAC modes known for %s", entity_id)
                return None

        commands: List[EntityCommand] = []
        attributes: Dict[str, Any] = {}
        if hvac_mode is not None:
            commands.append(
                EntityCommand(entity_id, SERVICE_SET_HVAC_MODE, {ATTR_HVAC_MODE: hvac_mode})
            )
        if temperature is not None:
            attributes[ATTR_TEMPERATURE] = temperature
            commands.append(
                EntityCommand(entity_id, SERVICE_SET_TEMPERATURE, {ATTR_TEMPERATURE: temperature})
            )
        if fan_mode is not None:
            attributes[ATTR_FAN_MODE] = fan_mode
            commands.append(
                EntityCommand(entity_id, SERVICE_SET_FAN_MODE, {ATTR_FAN_MODE: fan_mode})
            )

        if current is not None:
            self._apply_optimistic(current, hvac_mode or current.new_state, attributes)
        else:
            _LOGGER.debug("No local state for %s, sending command without local update", entity_id)
        return self._schedule(entity_id, commands)

    def control_light(
        self,
        entity_id: str,
        action: str,
        brightness: Optional[int] = None,
        rgb_color: Optional[Tuple[int, int, int]] = None,
        color_temp: Optional[int] = None,
    ) -> Optional[asyncio.Task]:
        """Turn a light on, off or toggle it, with optional light options."""
        if not self._accepts_commands(entity_id, LIGHT_DOMAIN):
            return None
        current = self._snapshot.get(entity_id)
        if action == ACTION_TOGGLE:
            is_on = current is not None and current.new_state == STATE_ON
            action = SERVICE_TURN_OFF if is_on else SERVICE_TURN_ON
        if action not in (SERVICE_TURN_ON, SERVICE_TURN_OFF):
            _LOGGER.warning("Unsupported light action %s for %s", action, entity_id)
            return None

        options = {
            key: value
            for key, value in zip(LIGHT_OPTIONS, (brightness, rgb_color, color_temp))
            if value is not None
        }
        if current is not None:
            target = STATE_ON if action == SERVICE_TURN_ON else STATE_OFF
            self._apply_optimistic(current, target, options)
        return self._schedule(entity_id, [EntityCommand(entity_id, action, options)])

    def _accepts_commands(self, entity_id: str, domain: str) -> bool:
        """True if ``entity_id`` is a writable entity of ``domain``."""
        if self.classify(entity_id) in READ_ONLY_FIELDS:
            _LOGGER.warning("Refusing %s command for read-only entity %s", domain, entity_id)
            return False
        if entity_id.partition(".")[0] != domain:
            _LOGGER.warning("Refusing %s command for non-%s entity %s", domain, domain, entity_id)
            return False
        return True

    def _apply_optimistic(
        self,
        current: EntityState,
        new_state: str,
        attributes: Optional[Dict[str, Any]] = None,
    ) -> None:
        updated = dataclasses.replace(
            current,
            old_state=current.new_state,
            new_state=new_state,
            timestamp=dt_util.utcnow().isoformat(),
            attributes={**current.attributes, **(attributes or {})},
        )
        self._merge_states([updated])

    def _schedule(self, entity_id: str, commands: List[EntityCommand]) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(
            self._async_execute(entity_id, commands)
        )
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _async_execute(self, entity_id: str, commands: List[EntityCommand]) -> bool:
        results = [await self._async_dispatch(command) for command in commands]
        if all(results):
            return True
        await self.async_refresh_entity(entity_id)
        return False

    def _strategies_for(self, command: EntityCommand) -> Tuple[Strategy, ...]:
        strategies = self._routes.get((command.domain, command.service))
        if strategies is not None:
            return strategies
        if command.domain in READ_ONLY_DOMAINS:
            return ()
        if command.service == SERVICE_TOGGLE:
            return (self._async_direct_service,)
        return ()

    async def _async_dispatch(self, command: EntityCommand) -> bool:
        """Run ``command`` through its strategies until one succeeds."""
        strategies = self._strategies_for(command)
        if not strategies:
            _LOGGER.error(
                "No route for %s.%s on %s", command.domain, command.service, command.entity_id
            )
            return False

        for strategy in strategies:
            try:
                if await strategy(command):
                    _LOGGER.debug(
                        "%s %s succeeded via %s",
                        command.service, command.entity_id, strategy.__name__,
                    )
                    return True
                _LOGGER.warning(
                    "%s %s failed via %s", command.service, command.entity_id, strategy.__name__
                )
            except DashboardError as err:
                _LOGGER.warning(
                    "%s %s failed via %s: %s",
                    command.service, command.entity_id, strategy.__name__, err,
                )

        _LOGGER.error(
            "All command routes failed for %s.%s on %s",
            command.domain, command.service, command.entity_id,
        )
        return False

    async def _async_backend_light(self, command: EntityCommand) -> bool:
        return await self._backend_api.control_light(
            command.entity_id, command.service, **command.data
        )

    async def _async_direct_service(self, command: EntityCommand) -> bool:
        await self._ha_api.call_service(command.domain, command.service, command.service_data())
        return True

    async def async_call_service(
        self, domain: str, service: str, data: Optional[Dict[str, Any]] = None
    ) -> Any:
        """Call a Home Assistant service directly. Raises on failure."""
        return await self._ha_api.call_service(domain, service, data)

    async def async_refresh_entity(self, entity_id: str) -> Optional[EntityState]:
        """Re-read one entity from Home Assistant and merge it if reachable."""
        api_state = await self._ha_api.fetch_entity_state(entity_id)
        if api_state is None:
            _LOGGER.debug("Could not refresh %s, keeping local state", entity_id)
            return None
        try:
            state = EntityState.from_rest(api_state)
        except (KeyError, TypeError, AttributeError) as err:
            _LOGGER.warning("Malformed state while refreshing %s: %s", entity_id, err)
            return None
        self._merge_states([state])
        return state

    async def async_wait_pending(self) -> None:
        """Wait for all background commands to finish."""
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)

    def get_connection_status(self) -> Dict[str, Any]:
        """Diagnostics for the engine and its stream."""
        return {
            "connected": self.is_connected(),
            "stream": self._stream.get_statistics(),
            "subscribers": len(self._subscribers),
            "pending_commands": len(self._pending),
            "entities": self._snapshot.counts(),
        }


def _next_hvac_mode(state: Optional[EntityState]) -> Optional[str]:
    if state is None:
        return None
    modes = state.attributes.get(ATTR_HVAC_MODES) or []
    if not modes:
        return None
    try:
        index = modes.index(state.new_state)
    except ValueError:
        return modes[0]
    return modes[(index + 1) % len(modes)]
