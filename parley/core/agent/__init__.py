"""Agent orchestration core: providers, tools, history and the reply loop.

Note: this module uses lazy imports so that lightweight subpackages like
`parley.core.agent.messages` can be imported without pulling in the
provider SDKs at module import time.
"""

from __future__ import annotations

from importlib import import_module
from typing import TYPE_CHECKING

if TYPE_CHECKING:  # pragma: no cover
    from .history import HistoryBuilder, PlatformClient, PlatformEvent
    from .messages import MessageTurn, ToolDescriptor, Usage
    from .orchestrator import Orchestrator, OrchestratorReply, QuestionRequest
    from .providers import LLMProvider, ProviderResult, create_provider
    from .service import ChatService, build_chat_service
    from .summarizer import Summarizer, SummaryStore
    from .tools.mcp import McpToolManager
    from .tools.router import ToolRouter

_LAZY = {
    "ChatService": ".service",
    "build_chat_service": ".service",
    "HistoryBuilder": ".history",
    "PlatformClient": ".history",
    "PlatformEvent": ".history",
    "LLMProvider": ".providers",
    "ProviderResult": ".providers",
    "create_provider": ".providers",
    "McpToolManager": ".tools.mcp",
    "MessageTurn": ".messages",
    "Orchestrator": ".orchestrator",
    "OrchestratorReply": ".orchestrator",
    "QuestionRequest": ".orchestrator",
    "Summarizer": ".summarizer",
    "SummaryStore": ".summarizer",
    "ToolDescriptor": ".messages",
    "ToolRouter": ".tools.router",
    "Usage": ".messages",
}


def __getattr__(name: str):  # noqa: ANN001
    module = _LAZY.get(name)
    if module is None:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
    return getattr(import_module(module, __name__), name)


__all__ = sorted(_LAZY)
