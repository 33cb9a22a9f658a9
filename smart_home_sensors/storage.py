"""
Key-value store backing the dashboard's persisted records.

The store keeps one JSON document on disk mapping keys to JSON values
(remote config, device list, historical readings). Blocking file I/O runs
in the default executor so the event loop is never stalled by a slow SD
card or network share.
"""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

from homeassistant.exceptions import HomeAssistantError
from homeassistant.util.file import write_utf8_file
from homeassistant.util.json import load_json

from .transport import DashboardStorageError

_LOGGER = logging.getLogger(__name__)


class KeyValueStore:
    """Async JSON file backed key-value store."""

    def __init__(self, path: str | Path) -> None:
        """Initialize the store.

        Parameters
        ----------
        path: str | Path
            Location of the JSON document. Created on first write.
        """
        self._path = Path(path)
        self._data: Optional[Dict[str, Any]] = None
        self._lock = asyncio.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def _read(self) -> Dict[str, Any]:
        try:
            data = load_json(self._path, default={})
        except HomeAssistantError as err:
            _LOGGER.warning("Discarding unreadable store %s: %s", self._path, err)
            return {}
        if not isinstance(data, dict):
            _LOGGER.warning("Discarding store %s with unexpected root type", self._path)
            return {}
        return data

    def _write(self, data: Dict[str, Any]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        write_utf8_file(self._path, json.dumps(data, indent=2), private=True)

    async def _async_load(self) -> Dict[str, Any]:
        if self._data is None:
            loop = asyncio.get_running_loop()
            self._data = await loop.run_in_executor(None, self._read)
        return self._data

    async def _async_flush(self, data: Dict[str, Any]) -> None:
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, self._write, data)
        except (HomeAssistantError, OSError) as err:
            raise DashboardStorageError(f"Failed to write {self._path}: {err}") from err
        self._data = data

    async def get_item(self, key: str) -> Any:
        """Return the value stored under ``key`` or None."""
        async with self._lock:
            data = await self._async_load()
            return data.get(key)

    async def set_item(self, key: str, value: Any) -> None:
        """Store a JSON serializable ``value`` under ``key``.

        Raises
        ------
        DashboardStorageError
            If the document cannot be written.
        """
        async with self._lock:
            data = dict(await self._async_load())
            data[key] = value
            await self._async_flush(data)

    async def remove_item(self, key: str) -> None:
        await self.multi_remove([key])

    async def multi_remove(self, keys: Iterable[str]) -> None:
        async with self._lock:
            data = dict(await self._async_load())
            removed = [key for key in keys if key in data]
            for key in removed:
                del data[key]
            if removed:
                await self._async_flush(data)
