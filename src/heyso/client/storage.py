"""Durable client-side key/value storage.

The browser client kept its session under ``localStorage['auth']``. This module
provides the same contract for Python front-ends: a small synchronous key/value
store whose values are JSON documents. Reads never raise; a corrupt or missing
file behaves like an empty store.
"""

from __future__ import annotations

import os
import threading
from logging import getLogger
from pathlib import Path
from typing import Any, Protocol

import orjson

from heyso.util import expand_path

logger = getLogger(__name__)


class KeyValueStorage(Protocol):
    def get(self, key: str) -> Any | None: ...

    def set(self, key: str, value: Any) -> None: ...

    def remove(self, key: str) -> None: ...


class MemoryStorage:
    """Process-local storage, used by tests and throwaway sessions."""

    __slots__ = ("_data",)

    def __init__(self, initial: dict[str, Any] | None = None) -> None:
        self._data: dict[str, bytes] = {}
        for key, value in (initial or {}).items():
            self.set(key, value)

    def get(self, key: str) -> Any | None:
        raw = self._data.get(key)
        if raw is None:
            return None
        return orjson.loads(raw)

    def set(self, key: str, value: Any) -> None:
        # Stored serialised so callers never share mutable state with the store.
        self._data[key] = orjson.dumps(value)

    def remove(self, key: str) -> None:
        self._data.pop(key, None)


class JsonFileStorage:
    """Persist every key in a single JSON document on disk."""

    __slots__ = ("path", "_lock")

    def __init__(self, path: str | Path) -> None:
        self.path = expand_path(path)
        self._lock = threading.Lock()

    def _load(self) -> dict[str, Any]:
        try:
            raw = self.path.read_bytes()
        except FileNotFoundError:
            return {}
        except OSError:
            logger.warning("Unable to read client storage %s", self.path, exc_info=True)
            return {}
        if not raw.strip():
            return {}
        try:
            data = orjson.loads(raw)
        except orjson.JSONDecodeError:
            logger.warning("Ignoring corrupt client storage %s", self.path)
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, data: dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_name(f".{self.path.name}.tmp")
        tmp_path.write_bytes(orjson.dumps(data, option=orjson.OPT_INDENT_2))
        os.replace(tmp_path, self.path)

    def get(self, key: str) -> Any | None:
        with self._lock:
            return self._load().get(key)

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            data = self._load()
            data[key] = value
            self._write(data)

    def remove(self, key: str) -> None:
        with self._lock:
            data = self._load()
            if key not in data:
                return
            data.pop(key)
            self._write(data)


__all__ = ["JsonFileStorage", "KeyValueStorage", "MemoryStorage"]
