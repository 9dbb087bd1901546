"""Built-in function tools and the tool-server manager."""

from .builtin import GenerateImageTool, UpdateRpgContextTool, UserProfileTool
from .context import ToolContext, current_tool_context, use_tool_context
from .function_base import FunctionTool
from .function_registry import FunctionToolRegistry, payload_from_text
from .mcp import (
    McpToolManager,
    is_qualified,
    normalize_server_name,
    open_tool_session,
    qualified_tool_name,
    select_transport,
)
from .router import ToolRouter
from .web import FetchUrlTool, WebSearchTool

__all__ = [
    "FetchUrlTool",
    "FunctionTool",
    "FunctionToolRegistry",
    "GenerateImageTool",
    "McpToolManager",
    "ToolContext",
    "ToolRouter",
    "UpdateRpgContextTool",
    "UserProfileTool",
    "WebSearchTool",
    "current_tool_context",
    "is_qualified",
    "normalize_server_name",
    "open_tool_session",
    "payload_from_text",
    "qualified_tool_name",
    "select_transport",
    "use_tool_context",
]
