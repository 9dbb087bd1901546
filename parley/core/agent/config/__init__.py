from .loader import (
    get_config_path,
    load_config,
    merge_mcp_document,
    merge_mcp_servers,
    save_config,
)
from .schema import (
    AssistantConfig,
    LLMSettings,
    MCPConfig,
    MCPServerConfig,
    ProviderConfig,
    SummarizationConfig,
    ToolsConfig,
    WebSearchConfig,
    default_mcp_servers,
)

__all__ = [
    "AssistantConfig",
    "LLMSettings",
    "MCPConfig",
    "MCPServerConfig",
    "ProviderConfig",
    "SummarizationConfig",
    "ToolsConfig",
    "WebSearchConfig",
    "default_mcp_servers",
    "get_config_path",
    "load_config",
    "merge_mcp_document",
    "merge_mcp_servers",
    "save_config",
]
