"""MCP tool manager: discovers and invokes tools on external tool servers.

Connections are opened per operation and closed before the operation
returns. Nothing is held open between a discovery pass and a tool call.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import json
import os
from contextlib import AsyncExitStack, asynccontextmanager
from dataclasses import dataclass
from typing import (
    Any,
    AsyncContextManager,
    AsyncIterator,
    Awaitable,
    Callable,
    Dict,
    List,
    Mapping,
    Optional,
)

from parley.utils.logger import logger

from ..config.schema import MCPServerConfig
from ..errors import ToolServerError
from ..messages import ToolDescriptor

QUALIFIER = "__"
MAX_TEXT_CHARS = 50000
_HTML_REDUCE_THRESHOLD = 20000
IMAGE_PLACEHOLDER = "[Image delivered to channel]"

ImageSink = Callable[[str, bytes], Awaitable[None]]
SessionOpener = Callable[[str, MCPServerConfig], AsyncContextManager[Any]]


@dataclass(frozen=True)
class McpToolEntry:
    descriptor: ToolDescriptor
    server: str
    original_name: str


_FALLBACK_TOOLS: Dict[str, List[Dict[str, Any]]] = {
    "dice": [
        {
            "name": "search_jobs",
            "description": "Search for jobs on Dice.com. Requires 'keyword'.",
            "parameters": {
                "type": "object",
                "properties": {
                    "keyword": {
                        "type": "string",
                        "description": "Job title, skill or keyword to search for.",
                    },
                    "workplace_types": {
                        "type": "string",
                        "enum": ["Remote", "On-Site", "Hybrid"],
                    },
                    "employment_types": {"type": "string"},
                },
                "required": ["keyword"],
            },
        }
    ]
}


def normalize_server_name(name: str) -> str:
    return str(name or "").strip().replace("-", "_")


def qualified_tool_name(server: str, tool: str) -> str:
    return f"{normalize_server_name(server)}{QUALIFIER}{tool}"


def is_qualified(name: str) -> bool:
    return QUALIFIER in str(name or "")


def select_transport(name: str, server: MCPServerConfig) -> str:
    """Return ``stdio``, ``sse``, ``streamable_http`` or ``auto``.

    ``auto`` means streamable HTTP with a fallback to SSE.
    """
    transport = server.transport
    if transport == "stdio":
        return "stdio"
    if transport == "sse":
        return "sse"
    if transport in ("streamable_http", "http", "streamablehttp"):
        return "streamable_http"
    if server.command:
        return "stdio"
    if server.url:
        return "auto"
    raise ToolServerError(name, "no command or url configured")


async def _enter_transport(
    stack: AsyncExitStack, transport: str, server: MCPServerConfig
) -> Any:
    from mcp import ClientSession, StdioServerParameters

    if transport == "stdio":
        from mcp.client.stdio import stdio_client

        params = StdioServerParameters(
            command=server.command,
            args=list(server.args),
            env={**os.environ, **server.env},
        )
        read, write = await stack.enter_async_context(stdio_client(params))
    elif transport == "sse":
        from mcp.client.sse import sse_client

        read, write = await stack.enter_async_context(
            sse_client(server.url, headers=dict(server.headers) or None)
        )
    else:
        from mcp.client.streamable_http import streamablehttp_client

        read, write, _ = await stack.enter_async_context(
            streamablehttp_client(server.url, headers=dict(server.headers) or None)
        )
    session = await stack.enter_async_context(ClientSession(read, write))
    await session.initialize()
    return session


@asynccontextmanager
async def open_tool_session(name: str, server: MCPServerConfig) -> AsyncIterator[Any]:
    """Open one initialized MCP session and close it when the block exits."""
    transport = select_transport(name, server)
    async with AsyncExitStack() as stack:
        if transport != "auto":
            session = await _enter_transport(stack, transport, server)
        else:
            attempt = AsyncExitStack()
            try:
                session = await _enter_transport(attempt, "streamable_http", server)
            except Exception as exc:
                try:
                    await attempt.aclose()
                except Exception as close_exc:
                    logger.debug(
                        "MCP server '%s': closing failed HTTP attempt: %s",
                        name,
                        close_exc,
                    )
                logger.warning(
                    "MCP server '%s': streamable HTTP failed (%s); falling back to SSE",
                    name,
                    exc,
                )
                session = await _enter_transport(stack, "sse", server)
            else:
                stack.push_async_callback(attempt.aclose)
        yield session


def _reduce_text(text: str) -> str:
    lowered = text.lower()
    if len(text) > _HTML_REDUCE_THRESHOLD and ("<html" in lowered or "<body" in lowered):
        from bs4 import BeautifulSoup

        text = BeautifulSoup(text, "html.parser").get_text(separator="\n", strip=True)
    if len(text) > MAX_TEXT_CHARS:
        text = (
            text[:MAX_TEXT_CHARS]
            + "\n\n[WARNING: tool response truncated at 50,000 characters. "
            "Refine the query to return more specific data.]"
        )
    return text


def _block_value(block: Any, key: str, default: Any = None) -> Any:
    if isinstance(block, Mapping):
        return block.get(key, default)
    return getattr(block, key, default)


async def result_payload(
    result: Any, *, on_image: Optional[ImageSink] = None
) -> Dict[str, Any]:
    """Convert an MCP ``CallToolResult`` into a JSON-safe payload."""
    blocks: List[Dict[str, Any]] = []
    for block in _block_value(result, "content", None) or []:
        kind = _block_value(block, "type", "")
        if kind == "text":
            blocks.append(
                {"type": "text", "text": _reduce_text(str(_block_value(block, "text", "")))}
            )
        elif kind == "image":
            mime_type = str(_block_value(block, "mimeType", "image/png"))
            if on_image is None:
                blocks.append({"type": "image", "mime_type": mime_type})
                continue
            try:
                data = base64.b64decode(str(_block_value(block, "data", "")))
                await on_image(mime_type, data)
                blocks.append({"type": "text", "text": IMAGE_PLACEHOLDER})
            except (binascii.Error, ValueError) as exc:
                logger.warning("Dropping undecodable image block: %s", exc)
            except Exception as exc:
                logger.error("Image delivery failed: %s", exc)
                blocks.append({"type": "text", "text": "[Image could not be delivered]"})
        elif hasattr(block, "model_dump"):
            blocks.append(block.model_dump(mode="json"))
        else:
            blocks.append({"type": str(kind or "unknown"), "value": str(block)})

    payload: Dict[str, Any] = {
        "content": blocks,
        "is_error": bool(_block_value(result, "isError", False)),
    }
    structured = _block_value(result, "structuredContent", None)
    if structured:
        text = json.dumps(structured, ensure_ascii=False, default=str)
        payload["structured"] = structured if len(text) <= MAX_TEXT_CHARS else text[:MAX_TEXT_CHARS]
    return {"result": payload}


class _ReloadGate:
    """Shared access for discovery/execution, exclusive access for reload."""

    def __init__(self) -> None:
        self._cond = asyncio.Condition()
        self._active = 0
        self._reloading = False

    @asynccontextmanager
    async def shared(self) -> AsyncIterator[None]:
        async with self._cond:
            await self._cond.wait_for(lambda: not self._reloading)
            self._active += 1
        try:
            yield
        finally:
            async with self._cond:
                self._active -= 1
                self._cond.notify_all()

    @asynccontextmanager
    async def exclusive(self) -> AsyncIterator[None]:
        async with self._cond:
            await self._cond.wait_for(
                lambda: not self._reloading and self._active == 0
            )
            self._reloading = True
        try:
            yield
        finally:
            async with self._cond:
                self._reloading = False
                self._cond.notify_all()


class McpToolManager:
    """Aggregates tool catalogs across servers and routes calls on demand."""

    def __init__(
        self,
        servers: Optional[Mapping[str, MCPServerConfig]] = None,
        *,
        discovery_timeout: float = 10.0,
        call_timeout: float = 60.0,
        session_opener: Optional[SessionOpener] = None,
    ) -> None:
        self._servers: Dict[str, MCPServerConfig] = dict(servers or {})
        self._discovery_timeout = float(discovery_timeout)
        self._call_timeout = float(call_timeout)
        self._opener: SessionOpener = session_opener or open_tool_session
        self._entries: Dict[str, McpToolEntry] = {}
        self._gate = _ReloadGate()

    @property
    def servers(self) -> Dict[str, MCPServerConfig]:
        return dict(self._servers)

    def tools(self) -> List[ToolDescriptor]:
        return [entry.descriptor for entry in self._entries.values()]

    def owner_of(self, qualified_name: str) -> Optional[str]:
        entry = self._entries.get(qualified_name)
        return entry.server if entry else None

    def has_tool(self, qualified_name: str) -> bool:
        return qualified_name in self._entries

    async def discover(self) -> List[ToolDescriptor]:
        async with self._gate.shared():
            return await self._discover_unlocked()

    async def reload(
        self, servers: Mapping[str, MCPServerConfig]
    ) -> List[ToolDescriptor]:
        """Swap the server table and rediscover, excluding concurrent use."""
        async with self._gate.exclusive():
            self._servers = dict(servers)
            self._entries = {}
            return await self._discover_unlocked()

    async def _list_server_tools(self, name: str, server: MCPServerConfig) -> List[Any]:
        async with self._opener(name, server) as session:
            listing = await session.list_tools()
            return list(getattr(listing, "tools", None) or [])

    def _fallback_entries(self, name: str) -> List[McpToolEntry]:
        entries = []
        for fallback in _FALLBACK_TOOLS.get(normalize_server_name(name), []):
            entries.append(
                McpToolEntry(
                    descriptor=ToolDescriptor(
                        name=qualified_tool_name(name, fallback["name"]),
                        description=fallback["description"],
                        parameters=fallback["parameters"],
                    ),
                    server=name,
                    original_name=fallback["name"],
                )
            )
        return entries

    async def _discover_unlocked(self) -> List[ToolDescriptor]:
        entries: Dict[str, McpToolEntry] = {}
        for name, server in self._servers.items():
            if server.disabled:
                logger.info("MCP server '%s': disabled, skipping", name)
                continue
            try:
                tool_defs = await asyncio.wait_for(
                    self._list_server_tools(name, server),
                    timeout=self._discovery_timeout,
                )
            except Exception as exc:
                logger.error("MCP server '%s': discovery failed: %s", name, exc)
                fallback = self._fallback_entries(name)
                for entry in fallback:
                    entries[entry.descriptor.name] = entry
                if fallback:
                    logger.warning(
                        "MCP server '%s': degraded, using %d fallback tool(s)",
                        name,
                        len(fallback),
                    )
                continue

            for tool_def in tool_defs:
                schema = getattr(tool_def, "inputSchema", None)
                parameters = dict(schema) if isinstance(schema, dict) else {}
                parameters.setdefault("type", "object")
                parameters.setdefault("properties", {})
                qualified = qualified_tool_name(name, tool_def.name)
                entries[qualified] = McpToolEntry(
                    descriptor=ToolDescriptor(
                        name=qualified,
                        description=getattr(tool_def, "description", None)
                        or tool_def.name,
                        parameters=parameters,
                    ),
                    server=name,
                    original_name=tool_def.name,
                )
            logger.info(
                "MCP server '%s': %d tools discovered", name, len(tool_defs)
            )
        self._entries = entries
        return self.tools()

    async def _call(
        self, entry: McpToolEntry, server: MCPServerConfig, arguments: Dict[str, Any]
    ) -> Any:
        async with self._opener(entry.server, server) as session:
            return await session.call_tool(entry.original_name, arguments=arguments)

    async def execute_tool(
        self,
        qualified_name: str,
        arguments: Optional[Dict[str, Any]] = None,
        *,
        on_image: Optional[ImageSink] = None,
    ) -> Dict[str, Any]:
        """Invoke one tool; failures come back as ``{"error": ...}``."""
        async with self._gate.shared():
            entry = self._entries.get(qualified_name)
            server = self._servers.get(entry.server) if entry else None
            if entry is None or server is None:
                return {"error": f"Tool '{qualified_name}' not found"}
            try:
                result = await asyncio.wait_for(
                    self._call(entry, server, dict(arguments or {})),
                    timeout=self._call_timeout,
                )
            except asyncio.TimeoutError:
                logger.error(
                    "MCP tool '%s' on server '%s' timed out after %.0fs",
                    entry.original_name,
                    entry.server,
                    self._call_timeout,
                )
                return {
                    "error": f"Tool '{qualified_name}' timed out after "
                    f"{self._call_timeout:.0f}s"
                }
            except Exception as exc:
                logger.error(
                    "MCP tool '%s' on server '%s' failed: %s",
                    entry.original_name,
                    entry.server,
                    exc,
                )
                return {"error": str(exc) or exc.__class__.__name__}
        return await result_payload(result, on_image=on_image)


__all__ = [
    "IMAGE_PLACEHOLDER",
    "McpToolEntry",
    "McpToolManager",
    "is_qualified",
    "normalize_server_name",
    "open_tool_session",
    "qualified_tool_name",
    "result_payload",
    "select_transport",
]
