"""
Async client for the Home Assistant REST API.

The client reads entity states and history straight from Home Assistant
and performs direct service calls. Reads never raise: a failed request is
logged as a warning and reported as "no data" (None, an empty mapping or
an empty list) so a flaky network degrades the dashboard instead of
crashing it. The direct service helper is the one exception; it raises so
the command router can decide whether to fall back or give up.

Example usage:

>>> client = HomeAssistantApiClient(session, config_store)
>>> state = await client.fetch_entity_state("light.kitchen")
>>> await client.call_service("light", "turn_on", {"entity_id": "light.kitchen"})

Connection parameters (API root and bearer token) are looked up from the
:class:`~smart_home_sensors.config.RemoteConfigStore` on every call, so a
settings change takes effect without rebuilding the client.
"""

from __future__ import annotations

import asyncio
import logging
import math
from typing import Any, Callable, Dict, Iterable, List, Optional

from aiohttp import ClientSession
from homeassistant.util import dt as dt_util

from .config import RemoteConfigStore
from .const import (
    AGGREGATE_REQUEST_TIMEOUT,
    CONNECTION_TEST_TIMEOUT,
    DEFAULT_REQUEST_TIMEOUT,
    HISTORY_WINDOW,
    READING_HUMIDITY,
    READING_TEMPERATURE,
)
from .models import DeviceConfig, EntityState, Snapshot, classify_by_prefix
from .transport import (
    DashboardError,
    DashboardResponseError,
    DashboardServiceError,
    FetchResponse,
    fetch_with_timeout,
)

_LOGGER = logging.getLogger(__name__)


def parse_numeric_state(value: Any) -> Optional[float]:
    """Parse a sensor state as a finite float, None for anything else.

    ``"unavailable"``, ``"unknown"``, ``"nan"`` and ``"inf"`` all yield None.
    """
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number):
        return None
    return number


def bucket_states(
    states: Iterable[EntityState],
    classify: Callable[[str], Optional[str]] = classify_by_prefix,
) -> Snapshot:
    """Partition ``states`` into a snapshot, dropping unknown domains."""
    return Snapshot().with_states(states, classify)


class HomeAssistantApiClient:
    """Asynchronous wrapper around the Home Assistant REST API."""

    def __init__(
        self,
        session: ClientSession,
        config_store: RemoteConfigStore,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
    ) -> None:
        """Initialize the client.

        Parameters
        ----------
        session: ClientSession
            Shared aiohttp session owned by the application.
        config_store: RemoteConfigStore
            Source of the API root and bearer token.
        timeout: float
            Per-request timeout in seconds for single entity calls.
        """
        self._session = session
        self._config = config_store
        self._timeout = timeout

    async def _request(
        self,
        path: str,
        *,
        method: str = "GET",
        timeout: Optional[float] = None,
        **kwargs: Any,
    ) -> FetchResponse:
        api_url = await self._config.get_api_url()
        headers = {
            "Authorization": await self._config.get_auth_header(),
            "Content-Type": "application/json",
        }
        return await fetch_with_timeout(
            self._session,
            f"{api_url}{path}",
            method=method,
            timeout=timeout or self._timeout,
            headers=headers,
            **kwargs,
        )

    async def fetch_entity_state(self, entity_id: str) -> Optional[Dict[str, Any]]:
        """Fetch the raw ``/states/<entity_id>`` record, None on any failure."""
        try:
            resp = await self._request(f"/states/{entity_id}")
            if not resp.ok:
                _LOGGER.warning(
                    "Failed to fetch entity %s: %s %s", entity_id, resp.status, resp.reason
                )
                return None
            data = resp.json()
        except DashboardError as err:
            _LOGGER.warning("Network error fetching entity %s: %s", entity_id, err)
            return None

        if not isinstance(data, dict) or "entity_id" not in data:
            _LOGGER.warning("Unexpected state payload for %s", entity_id)
            return None
        return data

    async def fetch_multiple_entity_states(
        self, entity_ids: Iterable[str]
    ) -> Dict[str, Dict[str, Any]]:
        """Fetch all ``entity_ids`` concurrently and keep only the successes."""
        entity_ids = list(entity_ids)
        results = await asyncio.gather(
            *(self.fetch_entity_state(entity_id) for entity_id in entity_ids)
        )
        states = {
            entity_id: state
            for entity_id, state in zip(entity_ids, results)
            if state is not None
        }
        _LOGGER.debug(
            "Fetched %d of %d entity states", len(states), len(entity_ids)
        )
        return states

    async def fetch_configured_entity_states(
        self,
        entity_ids: Iterable[str],
        classify: Callable[[str], Optional[str]] = classify_by_prefix,
    ) -> Snapshot:
        """Fetch and convert states into a snapshot shaped partial."""
        api_states = await self.fetch_multiple_entity_states(entity_ids)
        converted = []
        for entity_id, api_state in api_states.items():
            try:
                converted.append(EntityState.from_rest(api_state))
            except (KeyError, TypeError, AttributeError) as err:
                _LOGGER.warning("Skipping malformed state for %s: %s", entity_id, err)
        return bucket_states(converted, classify)

    async def fetch_all_states(self) -> List[Dict[str, Any]]:
        """Fetch every state Home Assistant knows, empty list on failure."""
        try:
            resp = await self._request("/states", timeout=AGGREGATE_REQUEST_TIMEOUT)
            if not resp.ok:
                _LOGGER.warning("Failed to fetch all states: %s %s", resp.status, resp.reason)
                return []
            data = resp.json()
        except DashboardError as err:
            _LOGGER.warning("Error fetching all states: %s", err)
            return []
        return data if isinstance(data, list) else []

    async def fetch_entity_history(
        self, entity_id: str, start_time_iso: str
    ) -> List[Dict[str, Any]]:
        """Fetch the state history of one entity since ``start_time_iso``.

        Home Assistant answers with one list per requested entity; only the
        first list is relevant because exactly one entity is requested.
        """
        try:
            resp = await self._request(
                f"/history/period/{start_time_iso}",
                params={"filter_entity_id": entity_id},
                timeout=AGGREGATE_REQUEST_TIMEOUT,
            )
            if not resp.ok:
                _LOGGER.warning(
                    "Failed to fetch history for %s: %s %s", entity_id, resp.status, resp.reason
                )
                return []
            data = resp.json()
        except DashboardError as err:
            _LOGGER.warning("Error fetching history for %s: %s", entity_id, err)
            return []

        if isinstance(data, list) and data and isinstance(data[0], list):
            return data[0]
        return []

    async def get_twelve_hour_averages(
        self,
        temperature_sensors: Iterable[DeviceConfig],
        humidity_sensors: Iterable[DeviceConfig],
    ) -> Dict[str, float]:
        """Average the last 12 hours of history per reading type.

        Non-numeric states are skipped. A type with no valid readings
        averages to 0.

        Returns
        -------
        Dict[str, float]
            ``temperature``, ``humidity``, ``temperatureCount`` and
            ``humidityCount``.
        """
        start_time = (dt_util.utcnow() - HISTORY_WINDOW).isoformat()

        async def _collect(sensors: Iterable[DeviceConfig]) -> List[float]:
            values: List[float] = []
            for sensor in sensors:
                entity_id = (sensor.entity or "").strip()
                if not entity_id:
                    continue
                for point in await self.fetch_entity_history(entity_id, start_time):
                    value = parse_numeric_state(point.get("state"))
                    if value is not None:
                        values.append(value)
            return values

        temperatures, humidities = await asyncio.gather(
            _collect(temperature_sensors), _collect(humidity_sensors)
        )
        return {
            READING_TEMPERATURE: sum(temperatures) / len(temperatures) if temperatures else 0,
            READING_HUMIDITY: sum(humidities) / len(humidities) if humidities else 0,
            "temperatureCount": len(temperatures),
            "humidityCount": len(humidities),
        }

    async def test_connection(self) -> bool:
        """True iff an authenticated GET of the API root succeeds."""
        try:
            resp = await self._request("/", timeout=CONNECTION_TEST_TIMEOUT)
        except DashboardError as err:
            _LOGGER.warning("Home Assistant API connection test failed: %s", err)
            return False
        return resp.ok

    async def call_service(
        self, domain: str, service: str, data: Optional[Dict[str, Any]] = None
    ) -> Any:
        """Invoke ``<domain>.<service>`` directly on Home Assistant.

        Returns
        -------
        Any
            The decoded response (the list of changed states).

        Raises
        ------
        DashboardServiceError
            If Home Assistant answers with a non-2xx status.
        DashboardNetworkError
            If the request fails at the network layer.
        """
        resp = await self._request(
            f"/services/{domain}/{service}", method="POST", json=data or {}
        )
        if not resp.ok:
            raise DashboardServiceError(
                f"Service {domain}.{service} failed: {resp.status} {resp.reason}",
                status=resp.status,
            )
        _LOGGER.debug("Service %s.%s called with %s", domain, service, data)
        try:
            return resp.json()
        except DashboardResponseError:
            return None
