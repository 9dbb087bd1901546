from __future__ import annotations

import asyncio
import json
import re
import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Dict, List, Optional

from parley.utils.logger import logger

from .config.schema import AssistantConfig
from .errors import ProviderConfigurationError
from .history import HistoryBuilder, PlatformClient, PlatformEvent
from .messages import MessageTurn
from .orchestrator import (
    PERSISTENT_ERROR_TEXT,
    Orchestrator,
    OrchestratorReply,
    QuestionRequest,
)
from .prompts import DefaultMode, GameMasterMode, PlayerMode, PromptMode
from .providers.base import LLMProvider
from .providers.factory import create_provider
from .scope_store import ScopeConfigStore
from .session_manager import ThreadHistoryStore
from .stores import JsonDocumentStore
from .summarizer import Summarizer, SummaryStore
from .tools.builtin import (
    GenerateImageTool,
    ImageGenerator,
    UpdateRpgContextTool,
    UserProfileTool,
)
from .tools.context import ToolContext
from .tools.function_registry import FunctionToolRegistry
from .tools.mcp import McpToolManager
from .tools.router import ToolRouter
from .tools.web import FetchUrlTool, WebSearchTool
from .usage import UsageStore
from .utils import get_threads_path, truncate_string

FOLLOWUP_MAX_CHARS = 3000
FEATURE_UNAVAILABLE_TEXT = (
    "This feature is not configured. An AI provider API key or endpoint is required."
)
# Seconds between unavailable notices for events that did not address the assistant.
UNAVAILABLE_NOTICE_INTERVAL = 5 * 60


def thread_key(channel_id: str, thread_ts: str) -> str:
    return f"{channel_id}:{thread_ts}"


def format_followup(name: str, payload: Dict[str, Any]) -> str:
    """Render a background tool result as a follow-up message."""
    if payload.get("error"):
        return f"_{name} failed: {payload['error']}_"
    if payload.get("message"):
        return str(payload["message"])
    content = payload.get("content")
    if content is None:
        content = json.dumps(payload, ensure_ascii=False, indent=2, default=str)
    return truncate_string(str(content), FOLLOWUP_MAX_CHARS)


class ChatService:
    """Turns platform events into replies, one thread at a time.

    History for every reply is read back from the platform's message log.
    ``thread_store`` keeps a transcript of the turns each reply produced,
    tool calls and tool results included, which the platform never shows.

    When ``orchestrator`` is None (or ``unavailable_reason`` is set) the
    service only answers with :data:`FEATURE_UNAVAILABLE_TEXT`.
    """

    def __init__(
        self,
        platform: PlatformClient,
        orchestrator: Optional[Orchestrator],
        history_builder: HistoryBuilder,
        summarizer: Optional[Summarizer],
        thread_store: ThreadHistoryStore,
        scope_store: ScopeConfigStore,
        *,
        config: Optional[AssistantConfig] = None,
        bot_user_id: str = "",
        unavailable_reason: Optional[str] = None,
    ) -> None:
        self._platform = platform
        self._orchestrator = orchestrator
        self._history = history_builder
        self._summarizer = summarizer
        self._threads = thread_store
        self._scopes = scope_store
        self.config = config or AssistantConfig()
        self.bot_user_id = bot_user_id
        if unavailable_reason is None and orchestrator is None:
            unavailable_reason = "no AI provider configured"
        self.unavailable_reason = unavailable_reason
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}
        self._last_notice: Dict[str, float] = {}

    @property
    def available(self) -> bool:
        return self.unavailable_reason is None

    @asynccontextmanager
    async def _thread_lock(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._lock_users[key] = self._lock_users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[key] -= 1
            if self._lock_users[key] == 0:
                del self._lock_users[key]
                del self._locks[key]

    def _mention(self) -> str:
        return f"<@{self.bot_user_id}>" if self.bot_user_id else ""

    def is_addressed(self, event: PlatformEvent) -> bool:
        """True for DMs and messages that mention the assistant."""
        mention = self._mention()
        return event.is_dm or (bool(mention) and mention in event.text)

    def should_handle(self, event: PlatformEvent) -> bool:
        """Gate applied before any history is fetched.

        Thread follow-ups without a mention pass here; whether they are
        answered is settled once the thread is loaded.
        """
        if event.is_assistant or (
            self.bot_user_id and event.user_id == self.bot_user_id
        ):
            return False
        if event.thread_ts and self._scopes.is_thread_disabled(event.thread_ts):
            return False
        if self.is_addressed(event) or event.thread_ts:
            return True
        if self._scopes.is_channel_enabled(event.channel_id):
            return True
        return isinstance(self._scopes.mode_for(event.channel_id), GameMasterMode)

    def answers_thread(
        self, event: PlatformEvent, history: List[MessageTurn], mode: PromptMode
    ) -> bool:
        if not event.thread_ts or self.is_addressed(event):
            return True
        if not isinstance(mode, DefaultMode):
            return True
        return any(turn.role == "assistant" for turn in history)

    def strip_mention(self, text: str) -> str:
        mention = self._mention()
        if not mention:
            return text.strip()
        return re.sub(re.escape(mention) + r"\s*", "", text).strip()

    async def handle_event(self, event: PlatformEvent) -> Optional[OrchestratorReply]:
        if not self.should_handle(event):
            return None
        if not self.available:
            await self._notify_unavailable(event)
            return None
        key = thread_key(event.channel_id, event.reply_thread)
        async with self._thread_lock(key):
            try:
                return await self._handle(event, key)
            except Exception:
                logger.exception(
                    "Failed to handle event thread=%s user=%s", key, event.user_id
                )
                await self._post(event, PERSISTENT_ERROR_TEXT)
                return None

    async def _notify_unavailable(self, event: PlatformEvent) -> None:
        if not self.is_addressed(event):
            now = time.monotonic()
            last = self._last_notice.get(event.channel_id)
            if last is not None and now - last < UNAVAILABLE_NOTICE_INTERVAL:
                return
            self._last_notice[event.channel_id] = now
        logger.warning(
            "AI provider unavailable channel=%s: %s",
            event.channel_id,
            self.unavailable_reason,
        )
        await self._post(event, FEATURE_UNAVAILABLE_TEXT)

    async def _build_history(
        self, event: PlatformEvent, mode: PromptMode
    ) -> List[MessageTurn]:
        if event.thread_ts:
            return await self._history.build_from_thread(
                event.channel_id, event.thread_ts, exclude_ts=event.ts
            )
        if isinstance(mode, PlayerMode) and self.is_addressed(event):
            return await self._history.build_since_last_assistant(
                event.channel_id, exclude_ts=event.ts
            )
        return await self._history.build_from_channel(
            event.channel_id, exclude_ts=event.ts
        )

    async def _post(self, event: PlatformEvent, text: str) -> None:
        try:
            await self._platform.post_message(
                event.channel_id, text, thread_ts=event.reply_thread
            )
        except Exception as exc:
            logger.error(
                "Failed to post reply channel=%s thread=%s: %s",
                event.channel_id,
                event.reply_thread,
                exc,
            )

    async def _handle(
        self, event: PlatformEvent, key: str
    ) -> Optional[OrchestratorReply]:
        text = self.strip_mention(event.text)
        mode = self._scopes.mode_for(event.channel_id)
        history = await self._build_history(event, mode)
        if not self.answers_thread(event, history, mode):
            logger.debug("Ignoring follow-up in thread=%s without assistant turns", key)
            return None
        summary = None
        if self._summarizer is not None:
            summary = await self._summarizer.maybe_summarize(key, history)
            history = self._summarizer.present(history, summary)

        question_turn = await self._history.to_turn(
            event.channel_id, event.as_message(text)
        )
        request = QuestionRequest(
            question=list(question_turn.parts),
            history=history,
            user_id=event.user_id,
            channel_id=event.channel_id,
            thread_id=event.reply_thread,
            mode=mode,
            summary=summary.summary if summary else None,
        )
        reply = await self._orchestrator.process_question(request)

        if not reply.suppressed and reply.text:
            prefix = ""
            if reply.usage is not None and reply.usage.total_tokens:
                prefix = f"({reply.usage.total_tokens} tokens) "
            await self._post(event, prefix + reply.text)
        if reply.new_turns:
            self._threads.append(key, reply.new_turns)
        return reply


def build_chat_service(
    platform: PlatformClient,
    config: AssistantConfig,
    *,
    bot_user_id: str = "",
    provider: Optional[LLMProvider] = None,
    image_generator: Optional[ImageGenerator] = None,
    mcp: Optional[McpToolManager] = None,
) -> ChatService:
    """Assemble a ChatService with the stores under ``config.data_path``.

    A provider that cannot be configured does not stop startup: the
    returned service answers with :data:`FEATURE_UNAVAILABLE_TEXT` instead.
    """
    data_path: Path = config.data_path
    unavailable_reason: Optional[str] = None
    if provider is None:
        try:
            provider = create_provider(config)
        except ProviderConfigurationError as exc:
            logger.error("AI features disabled: %s", exc)
            unavailable_reason = str(exc)
    usage = UsageStore(JsonDocumentStore(data_path / "usage.json"))
    scopes = ScopeConfigStore(JsonDocumentStore(data_path / "scopes.json"))
    summaries = SummaryStore(JsonDocumentStore(data_path / "thread_summaries.json"))
    history_builder = HistoryBuilder(
        platform,
        channel_history_limit=config.channel_history_limit,
        max_recent_messages=config.summarization.max_recent_messages,
    )
    thread_store = ThreadHistoryStore(get_threads_path(str(data_path)))

    if provider is None:
        return ChatService(
            platform,
            None,
            history_builder,
            None,
            thread_store,
            scopes,
            config=config,
            bot_user_id=bot_user_id,
            unavailable_reason=unavailable_reason,
        )

    async def upload(ctx: ToolContext, data: bytes, title: str) -> None:
        await platform.upload_image(
            ctx.channel_id, data, thread_ts=ctx.thread_id, title=title
        )

    registry = FunctionToolRegistry()
    if config.tools.web_search.configured:
        registry.register(WebSearchTool(config.tools.web_search))
    else:
        logger.info("web_search disabled: no search API key configured")
    registry.register(FetchUrlTool(config.tools.fetch_max_chars))
    registry.register(UserProfileTool(platform.get_user_profile))
    registry.register(UpdateRpgContextTool(scopes))
    if image_generator is not None:
        registry.register(GenerateImageTool(image_generator, upload, usage=usage))

    if mcp is None:
        mcp = McpToolManager(
            config.mcp.servers,
            discovery_timeout=config.mcp.discovery_timeout,
            call_timeout=config.mcp.call_timeout,
        )

    async def progress(channel_id: str, thread_id: Optional[str], text: str) -> None:
        await platform.post_message(channel_id, text, thread_ts=thread_id)

    async def followup(
        channel_id: str, thread_id: Optional[str], name: str, payload: Dict[str, Any]
    ) -> None:
        await platform.post_message(
            channel_id, format_followup(name, payload), thread_ts=thread_id
        )

    async def on_image(ctx: ToolContext, mime_type: str, data: bytes) -> None:
        await platform.upload_image(
            ctx.channel_id, data, thread_ts=ctx.thread_id, title=mime_type
        )

    orchestrator = Orchestrator(
        provider,
        ToolRouter(registry, mcp),
        usage=usage,
        scope_store=scopes,
        config=config,
        progress=progress,
        followup=followup,
        on_image=on_image,
    )
    return ChatService(
        platform,
        orchestrator,
        history_builder,
        Summarizer(provider, summaries, config.summarization),
        thread_store,
        scopes,
        config=config,
        bot_user_id=bot_user_id,
    )


__all__ = [
    "FEATURE_UNAVAILABLE_TEXT",
    "ChatService",
    "build_chat_service",
    "format_followup",
    "thread_key",
]
