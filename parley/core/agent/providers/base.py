from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from ..messages import MessageTurn, Question, ToolDescriptor, Usage


@dataclass(frozen=True)
class ToolCallRequest:
    name: str
    arguments: Dict[str, Any]
    id: Optional[str] = None


@dataclass
class ProviderResult:
    """Normalized answer from one provider call.

    ``tool_calls`` holds native function calls. ``inline_tool_calls`` holds
    calls recovered from a textual JSON directive, in which case ``text`` is
    the prose left around the directive.
    """

    text: str = ""
    tool_calls: List[ToolCallRequest] = field(default_factory=list)
    usage: Optional[Usage] = None
    inline_tool_calls: List[ToolCallRequest] = field(default_factory=list)
    malformed_directive: bool = False

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)


class LLMProvider(ABC):
    """Abstract provider interface used by the orchestrator and summarizer."""

    @abstractmethod
    def name(self) -> str:
        raise NotImplementedError

    @abstractmethod
    async def chat(
        self,
        question: Optional[Question],
        *,
        system_prompt: str = "",
        tools: Optional[Sequence[ToolDescriptor]] = None,
        history: Sequence[MessageTurn] = (),
        temperature: Optional[float] = None,
    ) -> ProviderResult:
        raise NotImplementedError

    @abstractmethod
    async def count_tokens(self, text: str) -> int:
        raise NotImplementedError

    async def close(self) -> None:
        """Optional provider cleanup hook for long-lived async clients."""
        return None


def get_value(obj: Any, key: str, default: Any = None) -> Any:
    if isinstance(obj, dict):
        return obj.get(key, default)
    return getattr(obj, key, default)
