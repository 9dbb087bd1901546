"""Textual tool-call contract for backends without reliable native tool calling.

The model is asked to answer with a single JSON object, either
``{"tool_calls": [{"name": ..., "arguments": {...}}]}`` or
``{"final": "..."}``. In practice models wrap that object in fences, emit
bare ``{"name": ..., "arguments": ...}`` objects, or mix it with prose, so
:func:`split_directives` accepts all of those shapes and never raises.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from parley.utils.logger import logger

from ..messages import ToolDescriptor
from .base import ToolCallRequest

NATIVE_TOOL_HINT = (
    "When a tool would help, call it through the native tool-calling interface. "
    "Do not describe tool calls in plain text."
)

_CONTRACT_RULES = (
    "When you need to call a tool, respond ONLY with JSON: "
    '{"tool_calls":[{"name":"TOOL_NAME","arguments":{...}}]}\n'
    "If no tool is needed, respond ONLY with JSON: "
    '{"final":"YOUR_NORMAL_TEXT_RESPONSE"}\n'
    "Do NOT include backticks or extra text around the JSON. "
    "Strictly produce valid JSON."
)

_FENCE_RE = re.compile(r"```([A-Za-z]*)[ \t]*\n?([\s\S]*?)```")
_DIRECTIVE_START_RE = re.compile(r'\{\s*"(tool_calls|final|name)"\s*:')
_TAG_RE = re.compile(
    r"\[/?(?:TOOL_REQUEST|END_TOOL_REQUEST|TOOL_RESULT|END_TOOL_RESULT|TOOL_CALLS)\]"
)
_PUNCT_ONLY_RE = re.compile(r"^[\W_]*$")


def build_contract_prompt(tools: Sequence[ToolDescriptor]) -> str:
    lines = ["You can use the following tools when needed:"]
    for tool in tools:
        lines.append(f"- name: {tool.name}")
        lines.append(f"  description: {tool.description}")
        lines.append(f"  parameters: {json.dumps(tool.parameters, ensure_ascii=False)}")
    lines.append("")
    lines.append(_CONTRACT_RULES)
    return "\n".join(lines)


@dataclass
class DirectiveParse:
    prose: str
    tool_calls: List[ToolCallRequest] = field(default_factory=list)
    final: Optional[str] = None
    malformed: bool = False


def strip_tool_tags(text: str) -> str:
    return _TAG_RE.sub("", str(text or ""))


def _normalize_arguments(raw: Any) -> Dict[str, Any]:
    if raw is None:
        return {}
    if isinstance(raw, dict):
        return dict(raw)
    if isinstance(raw, str):
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            return {"_raw": raw}
        return parsed if isinstance(parsed, dict) else {"_raw": raw}
    return {"_raw": raw}


def _call_from_item(item: Any) -> Optional[ToolCallRequest]:
    if not isinstance(item, dict):
        return None
    fn = item.get("function") if isinstance(item.get("function"), dict) else item
    name = fn.get("name")
    if not isinstance(name, str) or not name.strip():
        return None
    call_id = item.get("id")
    return ToolCallRequest(
        name=name.strip(),
        arguments=_normalize_arguments(fn.get("arguments", fn.get("args"))),
        id=str(call_id) if call_id else None,
    )


def _interpret(obj: Any) -> Tuple[List[ToolCallRequest], Optional[str], bool]:
    """Return (calls, final, recognized) for one decoded JSON value."""
    if isinstance(obj, list):
        calls = [c for c in (_call_from_item(i) for i in obj) if c is not None]
        return calls, None, bool(calls)
    if not isinstance(obj, dict):
        return [], None, False
    if isinstance(obj.get("tool_calls"), list):
        calls = [c for c in (_call_from_item(i) for i in obj["tool_calls"]) if c]
        return calls, None, True
    if "final" in obj:
        value = obj["final"]
        final = value if isinstance(value, str) else json.dumps(value)
        return [], final, True
    if "name" in obj and "arguments" in obj:
        call = _call_from_item(obj)
        if call is not None:
            return [call], None, True
    return [], None, False


def _looks_like_directive(body: str) -> bool:
    return '"tool_calls"' in body or '"final"' in body or (
        '"name"' in body and '"arguments"' in body
    )


def _remove_spans(text: str, spans: List[Tuple[int, int]]) -> str:
    if not spans:
        return text
    out: List[str] = []
    cursor = 0
    for start, end in sorted(spans):
        if start < cursor:
            continue
        out.append(text[cursor:start])
        cursor = end
    out.append(text[cursor:])
    return "".join(out)


def _tidy(text: str) -> str:
    text = re.sub(r"[ \t]+\n", "\n", text)
    return re.sub(r"\n{3,}", "\n\n", text).strip()


def _split(text: str) -> DirectiveParse:
    source = strip_tool_tags(text)
    calls: List[ToolCallRequest] = []
    final: Optional[str] = None
    malformed = False

    spans: List[Tuple[int, int]] = []
    for match in _FENCE_RE.finditer(source):
        lang = match.group(1).lower()
        body = match.group(2).strip()
        if lang not in ("", "json") or not body.startswith(("{", "[")):
            continue
        try:
            obj = json.loads(body)
        except json.JSONDecodeError:
            if _looks_like_directive(body):
                malformed = True
                spans.append(match.span())
            continue
        found, found_final, recognized = _interpret(obj)
        if recognized:
            calls.extend(found)
            final = found_final if found_final is not None else final
            spans.append(match.span())
    remaining = _remove_spans(source, spans)

    decoder = json.JSONDecoder()
    spans = []
    pos = 0
    while True:
        match = _DIRECTIVE_START_RE.search(remaining, pos)
        if match is None:
            break
        start = match.start()
        try:
            obj, end = decoder.raw_decode(remaining, start)
        except json.JSONDecodeError:
            if match.group(1) in ("tool_calls", "final"):
                malformed = True
                close = remaining.rfind("}")
                end = close + 1 if close > start else len(remaining)
                spans.append((start, end))
                pos = end
            else:
                pos = match.end()
            continue
        found, found_final, recognized = _interpret(obj)
        if recognized:
            calls.extend(found)
            final = found_final if found_final is not None else final
            spans.append((start, end))
        pos = end
    prose = _tidy(_remove_spans(remaining, spans))

    if final is not None:
        prose = final.strip()
    elif (calls or malformed) and _PUNCT_ONLY_RE.match(prose):
        prose = ""
    return DirectiveParse(prose=prose, tool_calls=calls, final=final, malformed=malformed)


def split_directives(text: str) -> DirectiveParse:
    """Separate tool-call directives from user-facing prose.

    Parsing failures degrade to treating the whole text as prose.
    """
    if not text:
        return DirectiveParse(prose="")
    try:
        return _split(text)
    except Exception as exc:
        logger.warning("Tool directive parsing failed, using raw text: %s", exc)
        return DirectiveParse(prose=str(text).strip())


__all__ = [
    "DirectiveParse",
    "NATIVE_TOOL_HINT",
    "build_contract_prompt",
    "split_directives",
    "strip_tool_tags",
]
