from __future__ import annotations

import json
from typing import Any, Awaitable, Callable, Dict, Optional

from parley.utils.logger import logger

from ..background import spawn_detached
from ..scope_store import ScopeConfigStore
from ..usage import UsageStore
from .context import ToolContext, current_tool_context
from .function_base import FunctionTool

ImageGenerator = Callable[[str], Awaitable[bytes]]
ImageUploader = Callable[[ToolContext, bytes, str], Awaitable[None]]
ProfileLookup = Callable[[str], Awaitable[Dict[str, Any]]]

_PROFILE_FIELDS = ("id", "name", "real_name", "email", "tz", "title")


class UserProfileTool(FunctionTool):
    def __init__(self, lookup: ProfileLookup):
        self._lookup = lookup

    @property
    def name(self) -> str:
        return "user_profile"

    @property
    def description(self) -> str:
        return (
            "Look up a workspace member's profile (name, email, time zone, title) "
            "by user id."
        )

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "user_id": {"type": "string", "description": "Platform user id."}
            },
            "required": ["user_id"],
        }

    def progress_message(self, params: dict[str, Any]) -> Optional[str]:
        return f"_looking up profile for <@{params.get('user_id', '')}>_"

    async def execute(self, user_id: str, **kwargs: Any) -> str:
        del kwargs
        profile = await self._lookup(user_id)
        if not profile:
            return json.dumps({"error": f"User '{user_id}' not found"})
        return json.dumps({k: profile.get(k) for k in _PROFILE_FIELDS})


class GenerateImageTool(FunctionTool):
    """Starts image generation in the background and returns right away."""

    def __init__(
        self,
        generator: ImageGenerator,
        uploader: ImageUploader,
        *,
        usage: Optional[UsageStore] = None,
    ):
        self._generator = generator
        self._uploader = uploader
        self._usage = usage

    @property
    def name(self) -> str:
        return "generate_image"

    @property
    def description(self) -> str:
        return "Generate an image from a text prompt and post it to the conversation."

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "prompt": {
                    "type": "string",
                    "description": "Detailed description of the image.",
                }
            },
            "required": ["prompt"],
        }

    async def _generate_and_post(self, ctx: ToolContext, prompt: str) -> None:
        data = await self._generator(prompt)
        await self._uploader(ctx, data, prompt)
        logger.info(
            "Generated image posted channel=%s thread=%s", ctx.channel_id, ctx.thread_id
        )

    async def execute(self, prompt: str, **kwargs: Any) -> str:
        del kwargs
        ctx = current_tool_context()
        if self._usage is not None and ctx.user_id:
            self._usage.track_image_invocation(ctx.user_id)
        spawn_detached(self._generate_and_post(ctx, prompt), name="generate_image")
        return json.dumps(
            {
                "success": True,
                "message": "The image is being generated and will be posted shortly.",
            }
        )


class UpdateRpgContextTool(FunctionTool):
    def __init__(self, scopes: ScopeConfigStore):
        self._scopes = scopes

    @property
    def name(self) -> str:
        return "update_rpg_context"

    @property
    def description(self) -> str:
        return (
            "Updates the JSON context for the RPG channel. Use whenever game "
            "state changes."
        )

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "context": {
                    "type": "object",
                    "description": "The complete, updated game context.",
                }
            },
            "required": ["context"],
        }

    def progress_message(self, params: dict[str, Any]) -> Optional[str]:
        del params
        return "_updating game state_"

    async def execute(self, context: Dict[str, Any], **kwargs: Any) -> str:
        del kwargs
        ctx = current_tool_context()
        if not ctx.channel_id:
            return json.dumps({"error": "No channel to update"})
        self._scopes.update_context(ctx.channel_id, context)
        return json.dumps({"success": True})


__all__ = [
    "GenerateImageTool",
    "ImageGenerator",
    "ImageUploader",
    "UpdateRpgContextTool",
    "UserProfileTool",
]
