"""System prompt selection.

A channel runs in one of three modes. The mode is resolved once per turn
and handed to the orchestrator explicitly.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Union

DO_NOT_RESPOND = "<DO_NOT_RESPOND>"

DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful assistant in a team chat workspace. Answer concisely and "
    "use the available tools when they help. Each user message is prefixed with "
    "'channel_id: ... | user_id: ... | message:'; never repeat that prefix. "
    f"If a message in a busy channel is not addressed to you, reply with exactly "
    f"{DO_NOT_RESPOND}."
)

GAME_MASTER_PREAMBLE = (
    "You are the Game Master of a tabletop role-playing game played in this "
    "channel. Narrate the world, voice non-player characters and adjudicate "
    "player actions fairly."
)

PLAYER_PREAMBLE = (
    "You are a player character in a tabletop role-playing game played in this "
    "channel. Stay in character and act according to your character sheet."
)

_CONTEXT_GUARD = (
    "You must follow the provided RPG context strictly. Do NOT introduce unrelated "
    "campaigns, quests, or settings. If the user asks for a summary or current "
    "state, base it ONLY on the saved RPG context and the recent conversation."
)


@dataclass(frozen=True)
class DefaultMode:
    key: str = field(default="default", init=False)


@dataclass(frozen=True)
class GameMasterMode:
    context: Dict[str, Any] = field(default_factory=dict)
    key: str = field(default="gm", init=False)


@dataclass(frozen=True)
class PlayerMode:
    context: Dict[str, Any] = field(default_factory=dict)
    key: str = field(default="player", init=False)


PromptMode = Union[DefaultMode, GameMasterMode, PlayerMode]


def mode_from_key(key: Optional[str], context: Optional[Dict[str, Any]] = None) -> PromptMode:
    normalized = str(key or "").strip().lower()
    if normalized == "gm":
        return GameMasterMode(context=dict(context or {}))
    if normalized == "player":
        return PlayerMode(context=dict(context or {}))
    return DefaultMode()


def resolve_system_prompt(
    base: str,
    mode: PromptMode,
    summary: Optional[str] = None,
) -> str:
    prompt = (base or DEFAULT_SYSTEM_PROMPT).strip()
    if summary:
        prompt = f"{prompt}\n\n**Previous Conversation Summary:**\n{summary.strip()}"

    if isinstance(mode, GameMasterMode):
        context = json.dumps(mode.context, indent=2, ensure_ascii=False)
        prompt = (
            f"{GAME_MASTER_PREAMBLE}\n\n{prompt}\n\n**RPG GM Mode Instructions**\n\n"
            "Your instructions for this interaction are to act as the Game Master. "
            f"Please use the following context:\n{context}\n\n{_CONTEXT_GUARD}\n"
            "Whenever the game state changes, call update_rpg_context with the "
            "complete updated context."
        )
    elif isinstance(mode, PlayerMode):
        context = json.dumps(mode.context, indent=2, ensure_ascii=False)
        prompt = (
            f"{PLAYER_PREAMBLE}\n\n{prompt}\n\n**RPG Player Mode Instructions**\n\n"
            "Your instructions for this interaction are to act as the Player "
            f"Character. Please use the following character sheet:\n{context}\n\n"
            f"{_CONTEXT_GUARD}"
        )
    return prompt
