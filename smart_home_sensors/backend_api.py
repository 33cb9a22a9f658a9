"""
HTTP client for the intermediary backend that fronts Home Assistant.

The backend implements light control and a few aggregate reads. Its
responses are wrapped in a ``{success, data?, message?, error?}``
envelope; this module unwraps it so nothing else has to know about it.
Climate control is not implemented by the backend, so
:meth:`BackendApiClient.control_climate` always reports failure and
callers use the direct Home Assistant API instead.
"""

import asyncio
import logging
from typing import Any, Callable, Dict, Iterable, Optional

from aiohttp import ClientSession
from homeassistant.const import STATE_OFF, STATE_ON
from homeassistant.util import dt as dt_util

from .config import RemoteConfigStore
from .const import (
    ACTION_TURN_ON,
    AGGREGATE_REQUEST_TIMEOUT,
    CONNECTION_TEST_TIMEOUT,
    DEFAULT_REQUEST_TIMEOUT,
)
from .models import EntityState, Snapshot, classify_by_prefix
from .ha_api import bucket_states
from .transport import DashboardError, FetchResponse, fetch_with_timeout

_LOGGER = logging.getLogger(__name__)


class BackendApiClient:
    """Client for the backend's ``/api`` endpoints."""

    def __init__(self, session: ClientSession, config_store: RemoteConfigStore):
        """Initialize the client.

        Args:
            session: Shared aiohttp session
            config_store: Source of the backend base URL
        """
        self.session = session
        self.config_store = config_store

    async def _request(
        self, path: str, method: str = "GET", timeout: float = DEFAULT_REQUEST_TIMEOUT, **kwargs
    ) -> FetchResponse:
        base_url = await self.config_store.get_backend_url()
        return await fetch_with_timeout(
            self.session,
            f"{base_url}{path}",
            method=method,
            timeout=timeout,
            headers={"Content-Type": "application/json"},
            **kwargs,
        )

    async def _request_envelope(
        self, path: str, what: str, method: str = "GET", timeout: float = DEFAULT_REQUEST_TIMEOUT, **kwargs
    ) -> Optional[Dict[str, Any]]:
        """Return the decoded envelope if it reports success, else None."""
        try:
            resp = await self._request(path, method=method, timeout=timeout, **kwargs)
            if not resp.ok:
                _LOGGER.warning("Failed to %s: %s %s", what, resp.status, resp.reason)
                return None
            result = resp.json()
        except DashboardError as err:
            _LOGGER.warning("Network error trying to %s: %s", what, err)
            return None

        if not isinstance(result, dict):
            _LOGGER.warning("Unexpected backend response trying to %s", what)
            return None
        if not result.get("success"):
            _LOGGER.warning(
                "Backend returned error trying to %s: %s",
                what, result.get("message") or result.get("error"),
            )
            return None
        return result

    async def test_connection(self) -> bool:
        """Check the backend health endpoint.

        Returns:
            True if the backend answered with a 2xx status
        """
        try:
            resp = await self._request("/api/health", timeout=CONNECTION_TEST_TIMEOUT)
        except DashboardError as err:
            _LOGGER.warning("Backend connection test failed: %s", err)
            return False
        if not resp.ok:
            _LOGGER.warning("Backend connection test failed: %s", resp.status)
        return resp.ok

    async def get_entity_state(self, entity_id: str) -> Optional[Dict[str, Any]]:
        """Get an entity state from the backend.

        The backend returns the entity fields at the top level of the
        envelope rather than under ``data``.

        Args:
            entity_id: Entity id (e.g. "light.kitchen")

        Returns:
            ``{entity_id, state, attributes}`` or None if anything failed
        """
        result = await self._request_envelope(
            f"/api/ha/state/{entity_id}", f"fetch entity {entity_id}"
        )
        if result is None:
            return None
        return {
            "entity_id": result.get("entity_id") or entity_id,
            "state": result.get("state"),
            "attributes": result.get("attributes") or {},
        }

    async def _post_light_state(self, entity_id: str, state: str, what: str) -> bool:
        result = await self._request_envelope(
            "/api/ha/service/light_toggle",
            what,
            method="POST",
            json={"entity_id": entity_id, "state": state},
        )
        return result is not None

    async def toggle_light(self, entity_id: str) -> bool:
        """Toggle a light through the backend.

        The backend only accepts an explicit target state, so the current
        state is read first to compute the opposite one.
        """
        current = await self.get_entity_state(entity_id)
        target = STATE_OFF if current is not None and current.get("state") == STATE_ON else STATE_ON
        success = await self._post_light_state(entity_id, target, f"toggle light {entity_id}")
        if success:
            _LOGGER.debug("Toggled light %s to %s via backend", entity_id, target)
        return success

    async def control_light(
        self,
        entity_id: str,
        action: str,
        brightness: Optional[int] = None,
        rgb_color: Optional[tuple] = None,
        color_temp: Optional[int] = None,
    ) -> bool:
        """Turn a light on or off through the backend.

        Args:
            entity_id: Light entity id
            action: "turn_on" or "turn_off"
            brightness: Accepted but not forwarded, see below
            rgb_color: Accepted but not forwarded, see below
            color_temp: Accepted but not forwarded, see below

        Returns:
            True if the backend reported success
        """
        state = STATE_ON if action == ACTION_TURN_ON else STATE_OFF
        options = {
            key: value
            for key, value in (
                ("brightness", brightness),
                ("rgb_color", rgb_color),
                ("color_temp", color_temp),
            )
            if value is not None
        }
        if options:
            # The light_toggle endpoint only carries entity_id and state.
            _LOGGER.debug(
                "Backend light control ignores options %s for %s", sorted(options), entity_id
            )
        success = await self._post_light_state(entity_id, state, f"control light {entity_id}")
        if success:
            _LOGGER.debug("Controlled light %s -> %s via backend", entity_id, action)
        return success

    async def control_climate(self, entity_id: str, **updates: Any) -> bool:
        """Climate control is not implemented by the backend.

        Returns:
            Always False so the caller falls back to the direct API
        """
        _LOGGER.debug(
            "Climate control not implemented in backend for %s (%s)", entity_id, sorted(updates)
        )
        return False

    async def get_dashboard_data(self) -> Optional[Any]:
        result = await self._request_envelope(
            "/api/dashboard", "fetch dashboard data", timeout=AGGREGATE_REQUEST_TIMEOUT
        )
        return None if result is None else result.get("data")

    async def get_all_entities(self) -> Optional[Any]:
        result = await self._request_envelope(
            "/api/entities", "fetch entities", timeout=AGGREGATE_REQUEST_TIMEOUT
        )
        return None if result is None else result.get("data")

    async def fetch_multiple_entity_states(
        self, entity_ids: Iterable[str]
    ) -> Dict[str, Dict[str, Any]]:
        entity_ids = list(entity_ids)
        results = await asyncio.gather(*(self.get_entity_state(e) for e in entity_ids))
        return {
            entity_id: state
            for entity_id, state in zip(entity_ids, results)
            if state is not None
        }

    async def fetch_configured_entity_states(
        self,
        entity_ids: Iterable[str],
        classify: Callable[[str], Optional[str]] = classify_by_prefix,
    ) -> Snapshot:
        """Fetch states from the backend, bucketed like the REST reader's."""
        backend_states = await self.fetch_multiple_entity_states(entity_ids)
        timestamp = dt_util.utcnow().isoformat()
        snapshot = bucket_states(
            (EntityState.from_backend(state, timestamp) for state in backend_states.values()),
            classify,
        )
        _LOGGER.debug("Fetched initial states from backend: %s", snapshot.counts())
        return snapshot
