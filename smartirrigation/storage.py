"""Durable key/value persistence used by the session and location stores."""
from __future__ import annotations

import json
import logging
import os
import time
from typing import Protocol

_LOGGER = logging.getLogger(__name__)


class KeyValueStore(Protocol):
    """Synchronous string-valued key/value storage."""

    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def remove(self, key: str) -> None: ...


class MemoryKeyValueStore:
    """In-process store; survives nothing but is handy for tests and one-shot runs."""

    def __init__(self, initial: dict[str, str] | None = None):
        self._data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def snapshot(self) -> dict[str, str]:
        return dict(self._data)


class JsonFileKeyValueStore:
    """File-backed store; every write rewrites the whole JSON document atomically."""

    def __init__(self, path: str):
        self._path = path
        self._data = self._read()

    @property
    def path(self) -> str:
        return self._path

    def _read(self) -> dict[str, str]:
        try:
            with open(self._path, "r", encoding="utf-8") as f:
                raw = json.load(f)
        except FileNotFoundError:
            return {}
        except (json.JSONDecodeError, ValueError):
            ts = time.strftime("%Y%m%d-%H%M%S")
            corrupt = f"{self._path}.corrupt.{ts}"
            _LOGGER.warning("State file %s is corrupted; moving it to %s", self._path, corrupt)
            try:
                os.replace(self._path, corrupt)
            except OSError as err:
                _LOGGER.warning("Could not move corrupted state file: %s", err)
            return {}

        if not isinstance(raw, dict):
            _LOGGER.warning("State file %s does not hold an object; starting empty", self._path)
            return {}
        return {str(k): v for k, v in raw.items() if isinstance(v, str)}

    def _write(self) -> None:
        directory = os.path.dirname(self._path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        tmp = self._path + ".tmp"
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(self._data, f, ensure_ascii=False, indent=2)
        os.replace(tmp, self._path)

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value
        self._write()

    def remove(self, key: str) -> None:
        if self._data.pop(key, None) is not None:
            self._write()
