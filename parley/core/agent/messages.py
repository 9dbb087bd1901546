"""Provider-neutral conversation model.

Every adapter converts to and from its backend's native shape at its own
boundary; everything else in the package only sees these types.
"""

from __future__ import annotations

import base64
from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional, Sequence, Union

Role = Literal["user", "assistant", "tool"]
_ROLES = ("user", "assistant", "tool")


@dataclass(frozen=True)
class TextPart:
    text: str


@dataclass(frozen=True)
class InlineImagePart:
    data: bytes
    mime_type: str = "image/jpeg"


@dataclass(frozen=True)
class ToolCallPart:
    name: str
    arguments: Dict[str, Any] = field(default_factory=dict)
    id: Optional[str] = None


@dataclass(frozen=True)
class ToolResultPart:
    name: str
    payload: Dict[str, Any] = field(default_factory=dict)
    id: Optional[str] = None


Part = Union[TextPart, InlineImagePart, ToolCallPart, ToolResultPart]


def part_to_dict(part: Part) -> Dict[str, Any]:
    if isinstance(part, TextPart):
        return {"type": "text", "text": part.text}
    if isinstance(part, InlineImagePart):
        return {
            "type": "inline_image",
            "mime_type": part.mime_type,
            "data": base64.b64encode(part.data).decode("ascii"),
        }
    if isinstance(part, ToolCallPart):
        return {
            "type": "tool_call",
            "name": part.name,
            "arguments": dict(part.arguments),
            "id": part.id,
        }
    if isinstance(part, ToolResultPart):
        return {
            "type": "tool_result",
            "name": part.name,
            "payload": dict(part.payload),
            "id": part.id,
        }
    raise TypeError(f"Unsupported part type: {type(part).__name__}")


def part_from_dict(data: Dict[str, Any]) -> Part:
    kind = str(data.get("type") or "")
    if kind == "text":
        return TextPart(text=str(data.get("text") or ""))
    if kind == "inline_image":
        return InlineImagePart(
            data=base64.b64decode(str(data.get("data") or "")),
            mime_type=str(data.get("mime_type") or "image/jpeg"),
        )
    if kind == "tool_call":
        return ToolCallPart(
            name=str(data.get("name") or ""),
            arguments=dict(data.get("arguments") or {}),
            id=data.get("id"),
        )
    if kind == "tool_result":
        return ToolResultPart(
            name=str(data.get("name") or ""),
            payload=dict(data.get("payload") or {}),
            id=data.get("id"),
        )
    raise ValueError(f"Unknown part type: {kind!r}")


@dataclass(frozen=True)
class MessageTurn:
    """One role-tagged unit of conversation content."""

    role: Role
    parts: tuple = ()

    def __post_init__(self) -> None:
        if self.role not in _ROLES:
            raise ValueError(f"Unknown role: {self.role!r}")
        object.__setattr__(self, "parts", tuple(self.parts))
        if self.role == "tool":
            if not self.parts or not all(
                isinstance(p, ToolResultPart) for p in self.parts
            ):
                raise ValueError("tool turns must contain only tool results")

    def text(self) -> str:
        return "\n".join(p.text for p in self.parts if isinstance(p, TextPart))

    @property
    def tool_calls(self) -> List[ToolCallPart]:
        return [p for p in self.parts if isinstance(p, ToolCallPart)]

    @property
    def tool_results(self) -> List[ToolResultPart]:
        return [p for p in self.parts if isinstance(p, ToolResultPart)]

    @property
    def images(self) -> List[InlineImagePart]:
        return [p for p in self.parts if isinstance(p, InlineImagePart)]

    def to_dict(self) -> Dict[str, Any]:
        return {"role": self.role, "parts": [part_to_dict(p) for p in self.parts]}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MessageTurn":
        return cls(
            role=str(data.get("role") or ""),  # type: ignore[arg-type]
            parts=tuple(part_from_dict(p) for p in data.get("parts") or []),
        )


def user_text(text: str, *images: InlineImagePart) -> MessageTurn:
    return MessageTurn(role="user", parts=(TextPart(text), *images))


def assistant_text(text: str) -> MessageTurn:
    return MessageTurn(role="assistant", parts=(TextPart(text),))


def history_to_dicts(history: Sequence[MessageTurn]) -> List[Dict[str, Any]]:
    return [turn.to_dict() for turn in history]


def history_from_dicts(rows: Sequence[Dict[str, Any]]) -> List[MessageTurn]:
    return [MessageTurn.from_dict(row) for row in rows]


@dataclass(frozen=True)
class ToolDescriptor:
    name: str
    description: str
    parameters: Dict[str, Any] = field(
        default_factory=lambda: {"type": "object", "properties": {}}
    )


@dataclass(frozen=True)
class Usage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    def __add__(self, other: "Usage") -> "Usage":
        return Usage(
            prompt_tokens=self.prompt_tokens + other.prompt_tokens,
            completion_tokens=self.completion_tokens + other.completion_tokens,
            total_tokens=self.total_tokens + other.total_tokens,
        )


Question = Union[str, Sequence[Part]]


def question_parts(question: Question) -> List[Part]:
    if isinstance(question, str):
        return [TextPart(question)]
    return list(question)


def question_turn(question: Question) -> MessageTurn:
    parts = question_parts(question)
    if parts and all(isinstance(p, ToolResultPart) for p in parts):
        return MessageTurn(role="tool", parts=tuple(parts))
    return MessageTurn(role="user", parts=tuple(parts))


__all__ = [
    "InlineImagePart",
    "MessageTurn",
    "Part",
    "Question",
    "Role",
    "TextPart",
    "ToolCallPart",
    "ToolDescriptor",
    "ToolResultPart",
    "Usage",
    "assistant_text",
    "history_from_dicts",
    "history_to_dicts",
    "part_from_dict",
    "part_to_dict",
    "question_parts",
    "question_turn",
    "user_text",
]
