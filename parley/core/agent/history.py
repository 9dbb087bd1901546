"""Rebuild a conversation history from the chat platform's message log."""

from __future__ import annotations

import io
from dataclasses import dataclass, field
from typing import (
    Any,
    Dict,
    List,
    Optional,
    Protocol,
    Sequence,
    Tuple,
    runtime_checkable,
)

from PIL import Image

from parley.utils.logger import logger

from .messages import InlineImagePart, MessageTurn, TextPart

THUMBNAIL_SIZE = (320, 240)
JPEG_QUALITY = 80
PAGE_SIZE = 200


@dataclass(frozen=True)
class PlatformFile:
    url: str
    mimetype: str = ""
    name: str = ""


@dataclass(frozen=True)
class PlatformMessage:
    ts: str
    user_id: str = ""
    text: str = ""
    is_assistant: bool = False
    files: Tuple[PlatformFile, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class PlatformEvent:
    """An incoming message as delivered by the platform dispatcher."""

    channel_id: str
    user_id: str
    text: str
    ts: str
    thread_ts: Optional[str] = None
    is_dm: bool = False
    is_assistant: bool = False
    files: Tuple[PlatformFile, ...] = field(default_factory=tuple)

    @property
    def reply_thread(self) -> str:
        return self.thread_ts or self.ts

    def as_message(self, text: Optional[str] = None) -> PlatformMessage:
        return PlatformMessage(
            ts=self.ts,
            user_id=self.user_id,
            text=self.text if text is None else text,
            is_assistant=self.is_assistant,
            files=self.files,
        )


@runtime_checkable
class PlatformClient(Protocol):
    """What the assistant needs from the chat platform."""

    async def fetch_thread(
        self, channel_id: str, thread_ts: str
    ) -> List[PlatformMessage]:
        """All messages of a thread, oldest first."""

    async def fetch_channel_page(
        self, channel_id: str, *, limit: int, cursor: Optional[str] = None
    ) -> Tuple[List[PlatformMessage], Optional[str]]:
        """One page of channel history, newest first, plus the next cursor."""

    async def download_file(self, url: str) -> bytes: ...

    async def get_user_profile(self, user_id: str) -> Dict[str, Any]: ...

    async def post_message(
        self, channel_id: str, text: str, *, thread_ts: Optional[str] = None
    ) -> None: ...

    async def upload_image(
        self,
        channel_id: str,
        data: bytes,
        *,
        thread_ts: Optional[str] = None,
        title: str = "",
    ) -> None: ...


def build_user_prompt(channel_id: str, user_id: str, text: str) -> str:
    return f"channel_id: {channel_id} | user_id: {user_id} | message: {text}"


def downscale_image(data: bytes, size: Tuple[int, int] = THUMBNAIL_SIZE) -> bytes:
    """Fit an image inside ``size`` (never enlarging) and re-encode as JPEG."""
    with Image.open(io.BytesIO(data)) as img:
        img = img.convert("RGB")
        img.thumbnail(size)
        out = io.BytesIO()
        img.save(out, format="JPEG", quality=JPEG_QUALITY)
    return out.getvalue()


class HistoryBuilder:
    def __init__(
        self,
        platform: PlatformClient,
        *,
        channel_history_limit: int = 20,
        max_recent_messages: int = 10,
    ) -> None:
        self._platform = platform
        self._channel_history_limit = channel_history_limit
        self._max_recent_messages = max_recent_messages

    async def _image_parts(self, message: PlatformMessage) -> List[InlineImagePart]:
        parts: List[InlineImagePart] = []
        for f in message.files:
            if not f.mimetype.startswith("image/"):
                continue
            try:
                raw = await self._platform.download_file(f.url)
                parts.append(InlineImagePart(data=downscale_image(raw)))
            except Exception as exc:
                logger.warning("Skipping attachment %s (%s): %s", f.name, f.url, exc)
        return parts

    async def to_turn(self, channel_id: str, message: PlatformMessage) -> MessageTurn:
        if message.is_assistant:
            return MessageTurn(role="assistant", parts=(TextPart(message.text),))
        prompt = build_user_prompt(channel_id, message.user_id, message.text)
        images = await self._image_parts(message)
        return MessageTurn(role="user", parts=(TextPart(prompt), *images))

    async def _to_turns(
        self, channel_id: str, messages: Sequence[PlatformMessage]
    ) -> List[MessageTurn]:
        return [await self.to_turn(channel_id, m) for m in messages]

    async def build_from_thread(
        self,
        channel_id: str,
        thread_ts: str,
        *,
        exclude_ts: Optional[str] = None,
        has_summary: bool = False,
    ) -> List[MessageTurn]:
        messages = [
            m
            for m in await self._platform.fetch_thread(channel_id, thread_ts)
            if m.ts != exclude_ts
        ]
        if has_summary:
            messages = messages[-self._max_recent_messages :]
            first_user = next(
                (i for i, m in enumerate(messages) if not m.is_assistant), len(messages)
            )
            messages = messages[first_user:]
        return await self._to_turns(channel_id, messages)

    async def build_from_channel(
        self, channel_id: str, *, exclude_ts: Optional[str] = None
    ) -> List[MessageTurn]:
        page, _ = await self._platform.fetch_channel_page(
            channel_id, limit=self._channel_history_limit
        )
        messages = [m for m in reversed(page) if m.ts != exclude_ts]
        return await self._to_turns(channel_id, messages)

    async def build_since_last_assistant(
        self, channel_id: str, *, exclude_ts: Optional[str] = None
    ) -> List[MessageTurn]:
        """User messages posted after the assistant last spoke, oldest first."""
        collected: List[PlatformMessage] = []
        cursor: Optional[str] = None
        while True:
            page, cursor = await self._platform.fetch_channel_page(
                channel_id, limit=PAGE_SIZE, cursor=cursor
            )
            boundary = False
            for message in page:
                if message.is_assistant:
                    boundary = True
                    break
                if message.ts != exclude_ts:
                    collected.append(message)
            if boundary or not cursor or not page:
                break
        collected.reverse()
        return await self._to_turns(channel_id, collected)
