"""Small key-value stores for durable guardrail state.

Values must be JSON-serializable. Keys are plain names such as
``betting_lockout``; callers that need typed values (timestamps, lockout
records) layer that on top, see ``riskcal.guardrails.state``.
"""

from pathlib import Path
from typing import Optional, Any, Dict, Union
import json
import logging
import os
import threading

logger = logging.getLogger(__name__)


class KeyValueStore:
    def get(self, key: str) -> Optional[Any]:
        raise NotImplementedError

    def set(self, key: str, value: Any) -> None:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError

    def clear(self) -> None:
        raise NotImplementedError


class MemoryKeyValueStore(KeyValueStore):
    def __init__(self, initial: Optional[Dict[str, Any]] = None) -> None:
        self._data: Dict[str, Any] = dict(initial or {})
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._data[key] = value

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._data.clear()


class JsonFileKeyValueStore(KeyValueStore):
    """All keys in one JSON object on disk; survives process restarts.

    Writes go to a sibling temp file and are moved into place with
    ``os.replace`` so a crash never leaves a truncated file behind.
    """

    def __init__(self, path: Union[str, Path]) -> None:
        self._path = Path(path)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            return self._read().get(key)

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            data = self._read()
            data[key] = value
            self._write(data)

    def delete(self, key: str) -> None:
        with self._lock:
            data = self._read()
            if key not in data:
                return
            data.pop(key)
            self._write(data)

    def clear(self) -> None:
        with self._lock:
            self._write({})

    def _read(self) -> Dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            payload = json.loads(self._path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            logger.warning(f"Ignoring unreadable state file {self._path}: {e}")
            return {}
        if not isinstance(payload, dict):
            return {}
        return payload

    def _write(self, data: Dict[str, Any]) -> None:
        tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp_path.write_text(json.dumps(data, indent=2, sort_keys=True), encoding="utf-8")
        os.replace(tmp_path, self._path)
