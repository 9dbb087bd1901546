from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Dict, Optional

from .messages import Usage
from .stores import JsonDocumentStore
from .utils import timestamp, today_date


@dataclass
class UsageRecord:
    llm_invocations: int = 0
    image_invocations: int = 0
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    last_updated: str = ""

    @classmethod
    def from_dict(cls, data: Optional[Dict]) -> "UsageRecord":
        payload = data or {}
        return cls(
            llm_invocations=int(payload.get("llm_invocations", 0)),
            image_invocations=int(payload.get("image_invocations", 0)),
            prompt_tokens=int(payload.get("prompt_tokens", 0)),
            completion_tokens=int(payload.get("completion_tokens", 0)),
            total_tokens=int(payload.get("total_tokens", 0)),
            last_updated=str(payload.get("last_updated", "")),
        )


class UsageStore:
    """Per-user, per-day counters. Values only ever grow."""

    def __init__(self, store: JsonDocumentStore) -> None:
        self._store = store

    def _bump(self, user_id: str, date: Optional[str], **deltas: int) -> UsageRecord:
        day = date or today_date()

        def apply(current):
            days = dict(current or {})
            record = UsageRecord.from_dict(days.get(day))
            for key, delta in deltas.items():
                setattr(record, key, getattr(record, key) + max(0, int(delta)))
            record.last_updated = timestamp()
            days[day] = asdict(record)
            return days

        days = self._store.update(str(user_id), apply, default={})
        return UsageRecord.from_dict(days[day])

    def track_llm_interaction(
        self, user_id: str, usage: Optional[Usage] = None, *, date: Optional[str] = None
    ) -> UsageRecord:
        usage = usage or Usage()
        return self._bump(
            user_id,
            date,
            llm_invocations=1,
            prompt_tokens=usage.prompt_tokens,
            completion_tokens=usage.completion_tokens,
            total_tokens=usage.total_tokens,
        )

    def track_image_invocation(
        self, user_id: str, *, date: Optional[str] = None
    ) -> UsageRecord:
        return self._bump(user_id, date, image_invocations=1)

    def get_user_usage(
        self, user_id: str, date: Optional[str] = None
    ) -> Optional[UsageRecord]:
        days = self._store.get(str(user_id), {}) or {}
        row = days.get(date or today_date())
        return UsageRecord.from_dict(row) if row else None

    def get_all_usage(self, date: Optional[str] = None) -> Dict[str, UsageRecord]:
        day = date or today_date()
        out: Dict[str, UsageRecord] = {}
        for user_id, days in self._store.snapshot().items():
            if isinstance(days, dict) and day in days:
                out[user_id] = UsageRecord.from_dict(days[day])
        return out
