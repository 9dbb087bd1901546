from __future__ import annotations

import base64
import functools
import json
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence

from parley.utils.logger import logger

from ..errors import ProviderCallError
from ..messages import (
    MessageTurn,
    Question,
    ToolDescriptor,
    Usage,
    question_turn,
)
from .base import LLMProvider, ProviderResult, ToolCallRequest, get_value
from .tool_contract import (
    NATIVE_TOOL_HINT,
    build_contract_prompt,
    split_directives,
    strip_tool_tags,
)

_VISION_MARKERS = ("gemma-3", "gpt-4o", "gpt-4-vision", "qwen", "vl", "vision")


@dataclass(frozen=True)
class OpenAICompatResolved:
    model: str
    api_key: str
    base_url: str
    native_tools: bool = True
    vision: Optional[bool] = None


def supports_vision(model: str, override: Optional[bool] = None) -> bool:
    if override is not None:
        return bool(override)
    lowered = str(model or "").lower()
    return any(marker in lowered for marker in _VISION_MARKERS)


@functools.lru_cache(maxsize=1)
def _encoding() -> Any:
    import tiktoken

    return tiktoken.get_encoding("cl100k_base")


def _dump(payload: Any) -> str:
    return json.dumps(payload, ensure_ascii=False, default=str)


class OpenAICompatProvider(LLMProvider):
    """Provider for OpenAI-style ``/chat/completions`` servers.

    Native tool calling is used when the server supports it. Otherwise the
    textual JSON contract is added to the system prompt, and the reply text
    is searched for directives either way.
    """

    def __init__(
        self,
        *,
        resolved: OpenAICompatResolved,
        client_factory: Optional[Callable[[OpenAICompatResolved], Any]] = None,
    ) -> None:
        self._resolved = resolved
        self._client_factory = client_factory
        self._client: Any = None

    def name(self) -> str:
        return "openai"

    @property
    def model(self) -> str:
        return self._resolved.model

    @property
    def vision_enabled(self) -> bool:
        return supports_vision(self._resolved.model, self._resolved.vision)

    def _ensure_client(self) -> Any:
        if self._client is not None:
            return self._client
        if self._client_factory is not None:
            self._client = self._client_factory(self._resolved)
            return self._client
        from openai import AsyncOpenAI

        self._client = AsyncOpenAI(
            api_key=self._resolved.api_key,
            base_url=self._resolved.base_url,
        )
        return self._client

    async def close(self) -> None:
        client = self._client
        if client is None:
            return
        self._client = None
        close_fn = getattr(client, "close", None)
        if callable(close_fn):
            result = close_fn()
            if hasattr(result, "__await__"):
                await result

    def _user_content(self, turn: MessageTurn) -> Any:
        text = turn.text()
        images = turn.images
        if not images or not self.vision_enabled:
            return text
        content: List[Dict[str, Any]] = []
        if text:
            content.append({"type": "text", "text": text})
        for image in images:
            encoded = base64.b64encode(image.data).decode("ascii")
            content.append(
                {
                    "type": "image_url",
                    "image_url": {"url": f"data:{image.mime_type};base64,{encoded}"},
                }
            )
        return content

    def _turn_messages(self, turn: MessageTurn) -> List[Dict[str, Any]]:
        if turn.role == "tool":
            rows: List[Dict[str, Any]] = []
            for result in turn.tool_results:
                if result.id:
                    rows.append(
                        {
                            "role": "tool",
                            "tool_call_id": result.id,
                            "content": _dump(result.payload),
                        }
                    )
                else:
                    rows.append(
                        {
                            "role": "user",
                            "content": f"Tool '{result.name}' output: "
                            f"{_dump(result.payload)}",
                        }
                    )
            return rows

        if turn.role == "assistant":
            text = turn.text()
            native = [c for c in turn.tool_calls if c.id]
            textual = [c for c in turn.tool_calls if not c.id]
            if textual:
                directive = _dump(
                    {
                        "tool_calls": [
                            {"name": c.name, "arguments": c.arguments} for c in textual
                        ]
                    }
                )
                text = f"{text}\n{directive}".strip()
            message: Dict[str, Any] = {"role": "assistant", "content": text}
            if native:
                message["tool_calls"] = [
                    {
                        "id": c.id,
                        "type": "function",
                        "function": {"name": c.name, "arguments": _dump(c.arguments)},
                    }
                    for c in native
                ]
            if not text and not native:
                return []
            return [message]

        content = self._user_content(turn)
        if not content:
            return []
        return [{"role": "user", "content": content}]

    def build_messages(
        self,
        question: Optional[Question],
        *,
        system_prompt: str = "",
        tools: Optional[Sequence[ToolDescriptor]] = None,
        history: Sequence[MessageTurn] = (),
    ) -> List[Dict[str, Any]]:
        system = str(system_prompt or "").strip()
        if tools:
            addendum = (
                NATIVE_TOOL_HINT
                if self._resolved.native_tools
                else build_contract_prompt(tools)
            )
            system = f"{system}\n\n{addendum}".strip()

        messages: List[Dict[str, Any]] = []
        if system:
            messages.append({"role": "system", "content": system})
        turns = list(history)
        if question is not None:
            turns.append(question_turn(question))
        for turn in turns:
            messages.extend(self._turn_messages(turn))
        return messages

    async def chat(
        self,
        question: Optional[Question],
        *,
        system_prompt: str = "",
        tools: Optional[Sequence[ToolDescriptor]] = None,
        history: Sequence[MessageTurn] = (),
        temperature: Optional[float] = None,
    ) -> ProviderResult:
        client = self._ensure_client()
        payload: Dict[str, Any] = {
            "model": self._resolved.model,
            "messages": self.build_messages(
                question, system_prompt=system_prompt, tools=tools, history=history
            ),
        }
        if temperature is not None:
            payload["temperature"] = float(temperature)
        if tools and self._resolved.native_tools:
            payload["tools"] = [
                {
                    "type": "function",
                    "function": {
                        "name": t.name,
                        "description": t.description,
                        "parameters": t.parameters
                        or {"type": "object", "properties": {}},
                    },
                }
                for t in tools
            ]
            payload["tool_choice"] = "auto"
            payload["parallel_tool_calls"] = False
            payload["top_p"] = 1.0
        try:
            completion = await client.chat.completions.create(**payload)
        except Exception as exc:
            status = getattr(exc, "status_code", None)
            raise ProviderCallError(
                f"OpenAI-compatible server error {status or 'unknown'}: {exc}",
                status=status,
            ) from exc
        return self._parse_response(completion)

    def _parse_response(self, completion: Any) -> ProviderResult:
        usage: Optional[Usage] = None
        usage_obj = get_value(completion, "usage", None)
        if usage_obj is not None:
            usage = Usage(
                prompt_tokens=int(get_value(usage_obj, "prompt_tokens", 0) or 0),
                completion_tokens=int(
                    get_value(usage_obj, "completion_tokens", 0) or 0
                ),
                total_tokens=int(get_value(usage_obj, "total_tokens", 0) or 0),
            )

        choices = get_value(completion, "choices", None)
        if not choices:
            return ProviderResult(text="", usage=usage)
        message = get_value(choices[0], "message", None)
        if message is None:
            return ProviderResult(text="", usage=usage)

        tool_calls: List[ToolCallRequest] = []
        for tc in list(get_value(message, "tool_calls", None) or []):
            fn = get_value(tc, "function", None)
            raw_args = get_value(fn, "arguments", "{}")
            if isinstance(raw_args, str):
                try:
                    parsed = json.loads(raw_args or "{}")
                    args = parsed if isinstance(parsed, dict) else {"_raw": raw_args}
                except json.JSONDecodeError:
                    args = {"_raw": raw_args}
            elif isinstance(raw_args, dict):
                args = dict(raw_args)
            else:
                args = {}
            tool_calls.append(
                ToolCallRequest(
                    name=str(get_value(fn, "name", "")),
                    arguments=args,
                    id=str(get_value(tc, "id", "") or "") or None,
                )
            )

        content = str(get_value(message, "content", "") or "")
        if tool_calls:
            return ProviderResult(
                text=strip_tool_tags(content).strip(),
                tool_calls=tool_calls,
                usage=usage,
            )
        parsed_text = split_directives(content)
        return ProviderResult(
            text=parsed_text.prose,
            usage=usage,
            inline_tool_calls=parsed_text.tool_calls,
            malformed_directive=parsed_text.malformed,
        )

    async def count_tokens(self, text: str) -> int:
        try:
            return len(_encoding().encode(str(text or "")))
        except Exception as exc:
            logger.debug("tiktoken unavailable, estimating tokens: %s", exc)
            return len(str(text or "")) // 4
