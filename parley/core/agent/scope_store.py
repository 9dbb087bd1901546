from __future__ import annotations

from typing import Any, Dict, List, Optional

from .prompts import DefaultMode, GameMasterMode, PlayerMode, PromptMode, mode_from_key
from .stores import JsonDocumentStore

_ENABLED_CHANNELS = "enabled_channels"
_DISABLED_THREADS = "disabled_threads"
_CHANNEL_MODES = "channel_modes"


class ScopeConfigStore:
    """Per-channel and per-thread feature toggles.

    Holds which channels the assistant listens in, which threads it has been
    told to leave alone, and each channel's prompt mode with its game context.
    """

    def __init__(self, store: JsonDocumentStore) -> None:
        self._store = store

    def _ids(self, key: str) -> List[str]:
        return [str(v) for v in self._store.get(key, []) or []]

    def _add(self, key: str, value: str) -> None:
        self._store.update(
            key, lambda cur: sorted(set(cur or []) | {str(value)}), default=[]
        )

    def _remove(self, key: str, value: str) -> None:
        self._store.update(
            key, lambda cur: [v for v in cur or [] if v != str(value)], default=[]
        )

    def is_channel_enabled(self, channel_id: str) -> bool:
        return str(channel_id) in self._ids(_ENABLED_CHANNELS)

    def enable_channel(self, channel_id: str) -> None:
        self._add(_ENABLED_CHANNELS, channel_id)

    def disable_channel(self, channel_id: str) -> None:
        self._remove(_ENABLED_CHANNELS, channel_id)

    def enabled_channels(self) -> List[str]:
        return self._ids(_ENABLED_CHANNELS)

    def is_thread_disabled(self, thread_id: str) -> bool:
        return str(thread_id) in self._ids(_DISABLED_THREADS)

    def disable_thread(self, thread_id: str) -> None:
        self._add(_DISABLED_THREADS, thread_id)

    def enable_thread(self, thread_id: str) -> None:
        self._remove(_DISABLED_THREADS, thread_id)

    def _mode_row(self, channel_id: str) -> Optional[Dict[str, Any]]:
        modes = self._store.get(_CHANNEL_MODES, {}) or {}
        row = modes.get(str(channel_id))
        return row if isinstance(row, dict) else None

    def mode_for(self, channel_id: str) -> PromptMode:
        row = self._mode_row(channel_id)
        if not row:
            return DefaultMode()
        return mode_from_key(row.get("mode"), row.get("context"))

    def set_mode(self, channel_id: str, mode: PromptMode) -> None:
        def apply(current):
            modes = dict(current or {})
            if isinstance(mode, DefaultMode):
                modes.pop(str(channel_id), None)
            else:
                modes[str(channel_id)] = {"mode": mode.key, "context": dict(mode.context)}
            return modes

        self._store.update(_CHANNEL_MODES, apply, default={})

    def clear_mode(self, channel_id: str) -> None:
        self.set_mode(channel_id, DefaultMode())

    def update_context(self, channel_id: str, context: Dict[str, Any]) -> PromptMode:
        """Replace the game context of a channel, keeping its current mode."""
        current = self.mode_for(channel_id)
        if isinstance(current, PlayerMode):
            updated: PromptMode = PlayerMode(context=dict(context))
        else:
            updated = GameMasterMode(context=dict(context))
        self.set_mode(channel_id, updated)
        return updated
