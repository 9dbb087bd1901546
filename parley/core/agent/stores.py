from __future__ import annotations

import copy
import json
from pathlib import Path
from threading import RLock
from typing import Any, Callable, Dict, Optional

from parley.utils.logger import logger


class JsonDocumentStore:
    """Small key/value JSON document persisted atomically to one file."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path).expanduser()
        self._lock = RLock()
        self._data: Optional[Dict[str, Any]] = None

    def _load(self) -> Dict[str, Any]:
        if self._data is not None:
            return self._data
        data: Dict[str, Any] = {}
        if self.path.exists():
            try:
                raw = json.loads(self.path.read_text(encoding="utf-8"))
                if isinstance(raw, dict):
                    data = raw
                else:
                    logger.warning("Store %s is not a JSON object; starting empty", self.path)
            except (OSError, json.JSONDecodeError) as exc:
                logger.error("Failed to read store %s: %s", self.path, exc)
        self._data = data
        return data

    def _flush(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_name(f"{self.path.name}.tmp")
        tmp_path.write_text(
            json.dumps(self._data or {}, ensure_ascii=False, indent=2), encoding="utf-8"
        )
        tmp_path.replace(self.path)

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            value = self._load().get(key, default)
            return copy.deepcopy(value)

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._load()[key] = copy.deepcopy(value)
            self._flush()

    def update(self, key: str, fn: Callable[[Any], Any], default: Any = None) -> Any:
        """Apply ``fn`` to the current value under the store lock and persist it."""
        with self._lock:
            data = self._load()
            current = copy.deepcopy(data.get(key, default))
            new_value = fn(current)
            data[key] = new_value
            self._flush()
            return copy.deepcopy(new_value)

    def delete(self, key: str) -> bool:
        with self._lock:
            data = self._load()
            if key not in data:
                return False
            del data[key]
            self._flush()
            return True

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return copy.deepcopy(self._load())
