from __future__ import annotations

import copy
from collections.abc import Mapping
from typing import Any, Callable, Dict, List, Optional, Sequence

from parley.utils.logger import logger

from ..errors import ProviderCallError
from ..messages import (
    InlineImagePart,
    MessageTurn,
    Part,
    Question,
    TextPart,
    ToolCallPart,
    ToolDescriptor,
    ToolResultPart,
    Usage,
    question_turn,
)
from .base import LLMProvider, ProviderResult, ToolCallRequest, get_value
from .tool_contract import split_directives, strip_tool_tags

DEFAULT_GEMINI_MODEL = "gemini-2.0-flash"

# Tool results go back as function-role contents holding function_response parts.
_ROLE_MAP = {"user": "user", "assistant": "model", "tool": "function"}

_SAFETY_OFF = {
    "HARM_CATEGORY_HARASSMENT": "BLOCK_NONE",
    "HARM_CATEGORY_HATE_SPEECH": "BLOCK_NONE",
    "HARM_CATEGORY_SEXUALLY_EXPLICIT": "BLOCK_NONE",
    "HARM_CATEGORY_DANGEROUS_CONTENT": "BLOCK_NONE",
}

_SCHEMA_KEYS = (
    "type",
    "format",
    "description",
    "nullable",
    "enum",
    "items",
    "properties",
    "required",
)
_KEPT_FORMATS = ("enum", "date-time")


def _pick_variant(node: Dict[str, Any]) -> Dict[str, Any]:
    for key in ("anyOf", "oneOf", "allOf"):
        variants = node.pop(key, None)
        if not isinstance(variants, list):
            continue
        nullable = any(
            isinstance(v, dict) and v.get("type") == "null" for v in variants
        )
        chosen = next(
            (v for v in variants if isinstance(v, dict) and v.get("type") != "null"),
            None,
        )
        if chosen:
            merged = dict(chosen)
            if node.get("description") and not merged.get("description"):
                merged["description"] = node["description"]
            node = {**node, **merged}
        if nullable:
            node["nullable"] = True
    return node


def _sanitize_node(raw: Any) -> Dict[str, Any]:
    if not isinstance(raw, dict):
        return {"type": "string"}
    node = _pick_variant(dict(raw))

    raw_type = node.get("type")
    nullable = bool(node.get("nullable"))
    if isinstance(raw_type, list):
        nullable = nullable or "null" in raw_type
        raw_type = next((t for t in raw_type if t != "null"), None)
    if raw_type is None:
        raw_type = "object" if isinstance(node.get("properties"), dict) else "string"
    node_type = str(raw_type).lower()
    if node_type == "null":
        node_type = "string"

    out: Dict[str, Any] = {}
    enum = node.get("enum")
    if isinstance(enum, list) and enum:
        node_type = "string"
        out["enum"] = [str(v) for v in enum if v is not None]
    out["type"] = node_type
    if node.get("description"):
        out["description"] = str(node["description"])
    fmt = node.get("format")
    if node_type == "string" and fmt in _KEPT_FORMATS:
        out["format"] = fmt

    if node_type == "object":
        props_raw = node.get("properties")
        props: Dict[str, Any] = {}
        if isinstance(props_raw, dict):
            props = {str(k): _sanitize_node(v) for k, v in props_raw.items()}
        if props:
            out["properties"] = props
            required = [
                str(r) for r in node.get("required") or [] if str(r) in props
            ]
            if required:
                out["required"] = required
    elif node_type == "array":
        out["items"] = _sanitize_node(node.get("items") or {"type": "string"})
    if nullable:
        out["nullable"] = True
    return {k: out[k] for k in _SCHEMA_KEYS if k in out}


def sanitize_schema(schema: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Reduce a JSON schema to the subset Gemini function declarations accept.

    The root is always an object. Enum values become strings, unsupported
    keywords are dropped and ``required`` only names declared properties.
    Applying it twice gives the same result as applying it once.
    """
    node = _sanitize_node(copy.deepcopy(schema) if schema else {})
    if node.get("type") != "object":
        logger.warning("Tool schema root is %s; coercing to object", node.get("type"))
        node = {
            k: v
            for k, v in node.items()
            if k in ("description", "properties", "required")
        }
        node["type"] = "object"
    return {k: node[k] for k in _SCHEMA_KEYS if k in node}


def function_declaration(tool: ToolDescriptor) -> Dict[str, Any]:
    return {
        "name": tool.name,
        "description": tool.description or tool.name,
        "parameters": sanitize_schema(tool.parameters),
    }


def _to_plain(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {str(k): _to_plain(v) for k, v in value.items()}
    if isinstance(value, (str, bytes)):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if hasattr(value, "__iter__"):
        return [_to_plain(v) for v in value]
    return value


def part_to_native(part: Part) -> Dict[str, Any]:
    if isinstance(part, TextPart):
        return {"text": part.text}
    if isinstance(part, InlineImagePart):
        return {"inline_data": {"mime_type": part.mime_type, "data": part.data}}
    if isinstance(part, ToolCallPart):
        return {"function_call": {"name": part.name, "args": dict(part.arguments)}}
    if isinstance(part, ToolResultPart):
        return {
            "function_response": {"name": part.name, "response": dict(part.payload)}
        }
    raise TypeError(f"Unsupported part type: {type(part).__name__}")


def to_native_contents(turns: Sequence[MessageTurn]) -> List[Dict[str, Any]]:
    """Convert turns to Gemini contents, merging adjacent tool turns."""
    contents: List[Dict[str, Any]] = []
    previous_role: Optional[str] = None
    for turn in turns:
        parts = [part_to_native(p) for p in turn.parts]
        if not parts:
            continue
        if turn.role == "tool" and previous_role == "tool" and contents:
            contents[-1]["parts"].extend(parts)
        else:
            contents.append({"role": _ROLE_MAP[turn.role], "parts": parts})
        previous_role = turn.role
    return contents


class GeminiProvider(LLMProvider):
    """Adapter for Google's Gemini chat API via ``google-generativeai``."""

    def __init__(
        self,
        *,
        api_key: str,
        model: str = DEFAULT_GEMINI_MODEL,
        model_factory: Optional[Callable[..., Any]] = None,
    ) -> None:
        self._api_key = api_key
        self._model = model or DEFAULT_GEMINI_MODEL
        self._model_factory = model_factory
        self._configured = False

    def name(self) -> str:
        return "gemini"

    @property
    def model(self) -> str:
        return self._model

    def _build_model(
        self, system_prompt: str, tools: Optional[Sequence[ToolDescriptor]]
    ) -> Any:
        kwargs: Dict[str, Any] = {}
        if system_prompt:
            kwargs["system_instruction"] = system_prompt
        if tools:
            kwargs["tools"] = [
                {"function_declarations": [function_declaration(t) for t in tools]}
            ]
        if self._model_factory is not None:
            return self._model_factory(model_name=self._model, **kwargs)

        import google.generativeai as genai

        if not self._configured:
            genai.configure(api_key=self._api_key)
            self._configured = True
        return genai.GenerativeModel(
            self._model, safety_settings=_SAFETY_OFF, **kwargs
        )

    async def chat(
        self,
        question: Optional[Question],
        *,
        system_prompt: str = "",
        tools: Optional[Sequence[ToolDescriptor]] = None,
        history: Sequence[MessageTurn] = (),
        temperature: Optional[float] = None,
    ) -> ProviderResult:
        turns = list(history)
        if question is not None:
            turns.append(question_turn(question))
        contents = to_native_contents(turns)
        if not contents:
            raise ProviderCallError("Gemini request has no content to send")
        pending = contents.pop()

        model = self._build_model(system_prompt, tools)
        generation_config = (
            {"temperature": float(temperature)} if temperature is not None else None
        )
        try:
            session = model.start_chat(history=contents)
            response = await session.send_message_async(
                pending["parts"], generation_config=generation_config
            )
        except Exception as exc:
            raise ProviderCallError(f"Gemini request failed: {exc}") from exc
        return self._parse_response(response)

    def _parse_response(self, response: Any) -> ProviderResult:
        candidates = list(get_value(response, "candidates", None) or [])
        parts: List[Any] = []
        if candidates:
            content = get_value(candidates[0], "content", None)
            parts = list(get_value(content, "parts", None) or [])

        calls: List[ToolCallRequest] = []
        texts: List[str] = []
        for part in parts:
            fc = get_value(part, "function_call", None)
            fc_name = get_value(fc, "name", "") if fc is not None else ""
            if fc_name:
                calls.append(
                    ToolCallRequest(
                        name=str(fc_name),
                        arguments=_to_plain(get_value(fc, "args", None) or {}),
                        id=f"call_{len(calls) + 1}",
                    )
                )
                continue
            text = get_value(part, "text", "")
            if text:
                texts.append(str(text))

        usage: Optional[Usage] = None
        meta = get_value(response, "usage_metadata", None)
        if meta is not None:
            usage = Usage(
                prompt_tokens=int(get_value(meta, "prompt_token_count", 0) or 0),
                completion_tokens=int(
                    get_value(meta, "candidates_token_count", 0) or 0
                ),
                total_tokens=int(get_value(meta, "total_token_count", 0) or 0),
            )

        text = "".join(texts)
        if calls:
            return ProviderResult(
                text=strip_tool_tags(text).strip(), tool_calls=calls, usage=usage
            )
        parsed = split_directives(text)
        return ProviderResult(
            text=parsed.prose,
            usage=usage,
            inline_tool_calls=parsed.tool_calls,
            malformed_directive=parsed.malformed,
        )

    async def count_tokens(self, text: str) -> int:
        model = self._build_model("", None)
        try:
            result = await model.count_tokens_async(text)
        except Exception as exc:
            raise ProviderCallError(f"Gemini token count failed: {exc}") from exc
        return int(get_value(result, "total_tokens", 0) or 0)
