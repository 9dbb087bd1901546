from __future__ import annotations

from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass
from typing import Iterator, Optional

from ..prompts import PromptMode


@dataclass(frozen=True)
class ToolContext:
    """Where the current tool call originated."""

    channel_id: str = ""
    thread_id: Optional[str] = None
    user_id: str = ""
    mode: Optional[PromptMode] = None


_CURRENT: ContextVar[ToolContext] = ContextVar("parley_tool_context", default=ToolContext())


def current_tool_context() -> ToolContext:
    return _CURRENT.get()


@contextmanager
def use_tool_context(ctx: ToolContext) -> Iterator[ToolContext]:
    token = _CURRENT.set(ctx)
    try:
        yield ctx
    finally:
        _CURRENT.reset(token)
