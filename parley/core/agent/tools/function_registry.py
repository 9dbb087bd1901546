from __future__ import annotations

import json
from typing import Any, Dict, List, Optional

from parley.utils.logger import logger

from ..messages import ToolDescriptor
from .function_base import FunctionTool


def payload_from_text(text: str) -> Dict[str, Any]:
    """Wrap a tool's string output as a structured payload."""
    try:
        parsed = json.loads(text)
    except (TypeError, json.JSONDecodeError):
        return {"result": text}
    if isinstance(parsed, dict):
        return parsed
    return {"result": parsed}


class FunctionToolRegistry:
    """Registry of built-in tools keyed by name."""

    def __init__(self) -> None:
        self._tools: dict[str, FunctionTool] = {}

    def register(self, tool: FunctionTool) -> None:
        self._tools[tool.name] = tool

    def unregister(self, name: str) -> None:
        self._tools.pop(name, None)

    def get(self, name: str) -> Optional[FunctionTool]:
        return self._tools.get(name)

    def has(self, name: str) -> bool:
        return name in self._tools

    def descriptors(self) -> List[ToolDescriptor]:
        return [tool.to_descriptor() for tool in self._tools.values()]

    async def execute(self, name: str, params: dict[str, Any]) -> Dict[str, Any]:
        tool = self._tools.get(name)
        if tool is None:
            return {"error": f"Tool '{name}' not found"}

        try:
            errors = tool.validate_params(params)
            if errors:
                return {
                    "error": f"Invalid parameters for tool '{name}': "
                    + "; ".join(errors)
                }
            return payload_from_text(await tool.execute(**params))
        except Exception as exc:
            logger.error("Built-in tool '%s' failed: %s", name, exc)
            return {"error": f"Error executing {name}: {exc}"}

    @property
    def tool_names(self) -> list[str]:
        return list(self._tools.keys())

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: str) -> bool:
        return name in self._tools
