from __future__ import annotations

from typing import Any, Dict, List, Optional

from ..messages import ToolDescriptor
from ..prompts import GameMasterMode, PromptMode
from .function_registry import FunctionToolRegistry
from .mcp import ImageSink, McpToolManager, QUALIFIER, is_qualified

GAME_MASTER_TOOLS = frozenset({"update_rpg_context"})


def _server_progress(name: str, arguments: Dict[str, Any]) -> str:
    server, _, tool = name.partition(QUALIFIER)
    if server == "dice":
        query = next(
            (
                arguments.get(k)
                for k in ("keyword", "query", "keywords", "job_title", "q")
                if arguments.get(k)
            ),
            "",
        )
        if query:
            return f'_searching Dice for "{query}" jobs..._'
        return "_searching Dice for tech jobs..._"
    if server == "open_meteo":
        return "_looking up weather information..._"
    return f"_running {tool} on {server}_"


class ToolRouter:
    """Single entry point for built-in and tool-server tools."""

    def __init__(
        self,
        registry: Optional[FunctionToolRegistry] = None,
        mcp: Optional[McpToolManager] = None,
    ) -> None:
        self.registry = registry or FunctionToolRegistry()
        self.mcp = mcp

    def descriptors(self, mode: Optional[PromptMode] = None) -> List[ToolDescriptor]:
        tools = [
            d for d in self.registry.descriptors() if not self._hidden(d.name, mode)
        ]
        if self.mcp is not None:
            tools.extend(self.mcp.tools())
        return tools

    def _hidden(self, name: str, mode: Optional[PromptMode]) -> bool:
        return name in GAME_MASTER_TOOLS and not isinstance(mode, GameMasterMode)

    def progress_message(
        self,
        name: str,
        arguments: Dict[str, Any],
        *,
        mode: Optional[PromptMode] = None,
    ) -> Optional[str]:
        if self._hidden(name, mode):
            return None
        tool = self.registry.get(name)
        if tool is not None:
            return tool.progress_message(arguments)
        if self.mcp is not None and self.mcp.has_tool(name):
            return _server_progress(name, arguments)
        return None

    async def execute(
        self,
        name: str,
        arguments: Optional[Dict[str, Any]] = None,
        *,
        mode: Optional[PromptMode] = None,
        on_image: Optional[ImageSink] = None,
    ) -> Dict[str, Any]:
        """Run a tool by name. Game Master tools only resolve in that mode."""
        args = dict(arguments or {})
        if self._hidden(name, mode):
            return {"error": f"Tool '{name}' not found"}
        if self.registry.has(name):
            return await self.registry.execute(name, args)
        if self.mcp is not None and is_qualified(name):
            return await self.mcp.execute_tool(name, args, on_image=on_image)
        return {"error": f"Tool '{name}' not found"}
