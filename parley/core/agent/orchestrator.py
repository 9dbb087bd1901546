"""Tool-calling resolution loop.

One ``process_question`` call takes a user turn plus history through the
provider, executes any requested tools and re-invokes the provider until a
plain answer comes back.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    List,
    Optional,
    Sequence,
)

from parley.utils.logger import logger

from .background import spawn_detached
from .config.schema import AssistantConfig
from .errors import ProviderCallError
from .messages import (
    MessageTurn,
    Question,
    TextPart,
    ToolCallPart,
    ToolDescriptor,
    ToolResultPart,
    Usage,
    question_turn,
)
from .prompts import DO_NOT_RESPOND, PromptMode, resolve_system_prompt
from .providers.base import LLMProvider, ProviderResult, ToolCallRequest
from .providers.tool_contract import strip_tool_tags
from .scope_store import ScopeConfigStore
from .tools.context import ToolContext, use_tool_context
from .tools.router import ToolRouter
from .usage import UsageStore

MAX_PROVIDER_ATTEMPTS = 3

PERSISTENT_ERROR_TEXT = (
    "I'm sorry, I encountered a persistent error while generating a response. "
    "Please try again later."
)
TECHNICAL_ISSUE_TEXT = (
    "I'm sorry, I ran into a technical issue processing that request."
)

ProgressCallback = Callable[[str, Optional[str], str], Awaitable[None]]
FollowupCallback = Callable[[str, Optional[str], str, Dict[str, Any]], Awaitable[None]]
ChannelImageSink = Callable[[ToolContext, str, bytes], Awaitable[None]]

_FENCED_JSON_RE = re.compile(r"```json\s*[\s\S]*?```", re.IGNORECASE)
_SCAFFOLD_RE = re.compile(
    r"^\s*channel_id:\s*\S+\s*\|\s*user_id:\s*\S+\s*\|\s*message:\s*", re.IGNORECASE
)
_LEAKED_META_RE = re.compile(
    r"^\s*(?:You are now in RPG mode|Act as Game Master|I will act as the Game Master"
    r"|Here's an overview of how to interact with me:).*$",
    re.IGNORECASE | re.MULTILINE,
)


def clean_reply(text: str) -> str:
    """Remove tool markup, leftover JSON and prompt scaffolding from a reply."""
    out = strip_tool_tags(text or "")
    out = _FENCED_JSON_RE.sub("", out)
    out = _SCAFFOLD_RE.sub("", out)
    out = _LEAKED_META_RE.sub("", out)
    out = re.sub(r"\n{3,}", "\n\n", out)
    return out.strip()


@dataclass(frozen=True)
class QuestionRequest:
    question: Question
    history: Sequence[MessageTurn] = ()
    user_id: str = ""
    channel_id: str = ""
    thread_id: Optional[str] = None
    mode: Optional[PromptMode] = None
    summary: Optional[str] = None

    @property
    def tool_context(self) -> ToolContext:
        return ToolContext(
            channel_id=self.channel_id, thread_id=self.thread_id, user_id=self.user_id
        )


@dataclass(frozen=True)
class ToolRun:
    name: str
    arguments: Dict[str, Any]
    payload: Optional[Dict[str, Any]]
    call_id: Optional[str] = None
    detached: bool = False


@dataclass
class OrchestratorReply:
    text: str
    suppressed: bool = False
    usage: Optional[Usage] = None
    new_turns: List[MessageTurn] = field(default_factory=list)
    tool_runs: List[ToolRun] = field(default_factory=list)
    failed: bool = False


class Orchestrator:
    def __init__(
        self,
        provider: LLMProvider,
        tools: ToolRouter,
        *,
        usage: Optional[UsageStore] = None,
        scope_store: Optional[ScopeConfigStore] = None,
        config: Optional[AssistantConfig] = None,
        progress: Optional[ProgressCallback] = None,
        followup: Optional[FollowupCallback] = None,
        on_image: Optional[ChannelImageSink] = None,
    ) -> None:
        self._provider = provider
        self._tools = tools
        self._usage = usage
        self._scopes = scope_store
        self.config = config or AssistantConfig()
        self._progress = progress
        self._followup = followup
        self._on_image = on_image

    def _resolve_mode(self, request: QuestionRequest) -> Optional[PromptMode]:
        if request.mode is not None:
            return request.mode
        if self._scopes is not None and request.channel_id:
            return self._scopes.mode_for(request.channel_id)
        return None

    async def _call_provider(
        self,
        question: Optional[Question],
        *,
        system_prompt: str,
        tools: Sequence[ToolDescriptor],
        history: Sequence[MessageTurn],
    ) -> ProviderResult:
        last_error: Optional[Exception] = None
        for attempt in range(1, MAX_PROVIDER_ATTEMPTS + 1):
            try:
                return await self._provider.chat(
                    question,
                    system_prompt=system_prompt,
                    tools=tools,
                    history=history,
                    temperature=self.config.temperature,
                )
            except Exception as exc:
                last_error = exc
                logger.warning(
                    "Provider %s attempt %s/%s failed: %s",
                    self._provider.name(),
                    attempt,
                    MAX_PROVIDER_ATTEMPTS,
                    exc,
                )
        raise ProviderCallError(
            f"Provider failed after {MAX_PROVIDER_ATTEMPTS} attempts: {last_error}"
        ) from last_error

    async def _report_progress(
        self, ctx: ToolContext, call: ToolCallRequest
    ) -> None:
        if self._progress is None:
            return
        message = self._tools.progress_message(
            call.name, call.arguments, mode=ctx.mode
        )
        if not message:
            return
        try:
            await self._progress(ctx.channel_id, ctx.thread_id, message)
        except Exception as exc:
            logger.warning("Progress update for %s failed: %s", call.name, exc)

    def _image_sink(self, ctx: ToolContext):
        if self._on_image is None:
            return None
        on_image = self._on_image

        async def deliver(mime_type: str, data: bytes) -> None:
            await on_image(ctx, mime_type, data)

        return deliver

    async def _execute(self, ctx: ToolContext, call: ToolCallRequest) -> Dict[str, Any]:
        await self._report_progress(ctx, call)
        logger.info(
            "Executing tool=%s channel=%s thread=%s user=%s",
            call.name,
            ctx.channel_id,
            ctx.thread_id,
            ctx.user_id,
        )
        with use_tool_context(ctx):
            return await self._tools.execute(
                call.name,
                call.arguments,
                mode=ctx.mode,
                on_image=self._image_sink(ctx),
            )

    async def _dispatch_detached(self, ctx: ToolContext, call: ToolCallRequest) -> None:
        payload = await self._execute(ctx, call)
        if self._followup is not None:
            await self._followup(ctx.channel_id, ctx.thread_id, call.name, payload)

    async def _run_tool_round(
        self,
        ctx: ToolContext,
        text: str,
        calls: Sequence[ToolCallRequest],
        new_turns: List[MessageTurn],
        tool_runs: List[ToolRun],
    ) -> None:
        """Execute ``calls`` in order and append the call/result turns."""
        assistant_parts: List[Any] = [TextPart(text)] if text.strip() else []
        assistant_parts.extend(
            ToolCallPart(name=c.name, arguments=dict(c.arguments), id=c.id)
            for c in calls
        )
        new_turns.append(MessageTurn(role="assistant", parts=tuple(assistant_parts)))
        for call in calls:
            payload = await self._execute(ctx, call)
            tool_runs.append(
                ToolRun(
                    name=call.name,
                    arguments=dict(call.arguments),
                    payload=payload,
                    call_id=call.id,
                )
            )
            new_turns.append(
                MessageTurn(
                    role="tool",
                    parts=(ToolResultPart(name=call.name, payload=payload, id=call.id),),
                )
            )

    async def _resolve(self, request: QuestionRequest) -> OrchestratorReply:
        mode = self._resolve_mode(request)
        ctx = replace(request.tool_context, mode=mode)
        tools = self._tools.descriptors(mode)
        system_prompt = resolve_system_prompt(
            self.config.system_prompt, mode, request.summary
        )
        history = list(request.history)
        new_turns: List[MessageTurn] = [question_turn(request.question)]
        tool_runs: List[ToolRun] = []
        usage: Optional[Usage] = None

        result = await self._call_provider(
            request.question, system_prompt=system_prompt, tools=tools, history=history
        )
        rounds = 0
        while True:
            if result.usage is not None:
                usage = result.usage if usage is None else usage + result.usage

            calls = result.tool_calls
            detachable = False
            if not calls and result.inline_tool_calls:
                calls = result.inline_tool_calls
                detachable = bool(result.text.strip())
            if not calls:
                break

            if detachable:
                for call in calls:
                    spawn_detached(
                        self._dispatch_detached(ctx, call), name=f"tool:{call.name}"
                    )
                    tool_runs.append(
                        ToolRun(
                            name=call.name,
                            arguments=dict(call.arguments),
                            payload=None,
                            call_id=call.id,
                            detached=True,
                        )
                    )
                break

            if rounds >= self.config.max_tool_rounds:
                logger.warning(
                    "Max tool rounds (%s) reached thread=%s; forcing final response",
                    self.config.max_tool_rounds,
                    request.thread_id,
                )
                break
            rounds += 1
            await self._run_tool_round(ctx, result.text, calls, new_turns, tool_runs)
            result = await self._call_provider(
                None,
                system_prompt=system_prompt,
                tools=tools,
                history=history + new_turns,
            )

        text = clean_reply(result.text)
        if text == DO_NOT_RESPOND:
            logger.info("Model declined to respond thread=%s", request.thread_id)
            return OrchestratorReply(
                text="",
                suppressed=True,
                usage=usage,
                new_turns=new_turns,
                tool_runs=tool_runs,
            )
        if not text:
            if result.malformed_directive:
                logger.warning(
                    "Malformed tool directive with no prose thread=%s", request.thread_id
                )
            text = TECHNICAL_ISSUE_TEXT
        new_turns.append(MessageTurn(role="assistant", parts=(TextPart(text),)))
        return OrchestratorReply(
            text=text, usage=usage, new_turns=new_turns, tool_runs=tool_runs
        )

    async def process_question(self, request: QuestionRequest) -> OrchestratorReply:
        try:
            reply = await self._resolve(request)
        except ProviderCallError as exc:
            logger.error(
                "Persistent provider failure thread=%s user=%s: %s",
                request.thread_id,
                request.user_id,
                exc,
            )
            return OrchestratorReply(text=PERSISTENT_ERROR_TEXT, failed=True)
        except Exception:
            logger.exception(
                "Question processing failed thread=%s user=%s",
                request.thread_id,
                request.user_id,
            )
            return OrchestratorReply(text=PERSISTENT_ERROR_TEXT, failed=True)

        if self._usage is not None and request.user_id:
            self._usage.track_llm_interaction(request.user_id, reply.usage)
        return reply


__all__ = [
    "ChannelImageSink",
    "FollowupCallback",
    "Orchestrator",
    "OrchestratorReply",
    "PERSISTENT_ERROR_TEXT",
    "ProgressCallback",
    "QuestionRequest",
    "TECHNICAL_ISSUE_TEXT",
    "ToolRun",
    "clean_reply",
]
