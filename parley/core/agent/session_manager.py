from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from threading import RLock
from typing import Any, Dict, List, Optional, Sequence

from parley.utils.logger import logger

from .messages import MessageTurn
from .utils import encode_key, get_threads_path


@dataclass
class ThreadHistory:
    """Conversation of one platform thread, persisted as JSONL (metadata + turns)."""

    key: str
    turns: List[MessageTurn] = field(default_factory=list)
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)

    def extend(self, turns: Sequence[MessageTurn]) -> None:
        self.turns.extend(turns)
        self.updated_at = datetime.now()


class ThreadHistoryStore:
    """Manage persisted thread histories on disk."""

    def __init__(self, threads_dir: Optional[Path] = None) -> None:
        base = threads_dir or get_threads_path()
        self.threads_dir = Path(base).expanduser()
        self.threads_dir.mkdir(parents=True, exist_ok=True)
        self._lock = RLock()

    def _thread_path(self, key: str) -> Path:
        return self.threads_dir / f"{encode_key(key)}.jsonl"

    def load(self, key: str) -> ThreadHistory:
        path = self._thread_path(key)
        if not path.exists():
            return ThreadHistory(key=key)
        turns: List[MessageTurn] = []
        created_at: Optional[datetime] = None
        updated_at: Optional[datetime] = None
        with self._lock:
            try:
                with path.open("r", encoding="utf-8") as fh:
                    for line in fh:
                        text = line.strip()
                        if not text:
                            continue
                        data = json.loads(text)
                        if data.get("_type") == "metadata":
                            if data.get("created_at"):
                                created_at = datetime.fromisoformat(data["created_at"])
                            if data.get("updated_at"):
                                updated_at = datetime.fromisoformat(data["updated_at"])
                            continue
                        turns.append(MessageTurn.from_dict(data))
            except (OSError, ValueError) as exc:
                logger.error("Failed to load thread history %s: %s", key, exc)
                return ThreadHistory(key=key)
        return ThreadHistory(
            key=key,
            turns=turns,
            created_at=created_at or datetime.now(),
            updated_at=updated_at or datetime.now(),
        )

    def save(self, history: ThreadHistory) -> None:
        with self._lock:
            path = self._thread_path(history.key)
            tmp_path = path.with_name(f"{path.name}.tmp")
            with tmp_path.open("w", encoding="utf-8") as fh:
                meta_line = {
                    "_type": "metadata",
                    "key": history.key,
                    "created_at": history.created_at.isoformat(),
                    "updated_at": history.updated_at.isoformat(),
                    "turn_count": len(history.turns),
                }
                fh.write(json.dumps(meta_line, ensure_ascii=False) + "\n")
                for turn in history.turns:
                    fh.write(json.dumps(turn.to_dict(), ensure_ascii=False) + "\n")
            tmp_path.replace(path)

    def append(self, key: str, turns: Sequence[MessageTurn]) -> ThreadHistory:
        with self._lock:
            history = self.load(key)
            history.extend(turns)
            self.save(history)
            return history

    def delete(self, key: str) -> bool:
        with self._lock:
            path = self._thread_path(key)
            if path.exists():
                path.unlink()
                return True
            return False

    def list_threads(self) -> List[Dict[str, Any]]:
        rows: List[Dict[str, Any]] = []
        for path in self.threads_dir.glob("*.jsonl"):
            try:
                with path.open("r", encoding="utf-8") as fh:
                    first = fh.readline().strip()
                if not first:
                    continue
                data = json.loads(first)
            except (OSError, ValueError):
                continue
            if data.get("_type") != "metadata":
                continue
            rows.append(
                {
                    "key": str(data.get("key") or ""),
                    "created_at": data.get("created_at"),
                    "updated_at": data.get("updated_at"),
                    "turn_count": int(data.get("turn_count") or 0),
                    "path": str(path),
                }
            )
        return sorted(
            rows, key=lambda item: str(item.get("updated_at") or ""), reverse=True
        )


__all__ = ["ThreadHistory", "ThreadHistoryStore"]
