from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

SUPPORTED_PROVIDERS = ("gemini", "openai")


def _pick(payload: Dict[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        if key in payload and payload[key] is not None:
            return payload[key]
    return default


def _str_map(value: Any) -> Dict[str, str]:
    if not isinstance(value, dict):
        return {}
    return {str(k): str(v) for k, v in value.items()}


@dataclass
class ProviderConfig:
    api_key: str = ""
    api_base: str = ""
    model: str = ""
    native_tools: bool = True
    vision: Optional[bool] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "ProviderConfig":
        payload = data or {}
        vision = _pick(payload, "vision")
        return cls(
            api_key=str(_pick(payload, "api_key", "apiKey", default="")),
            api_base=str(
                _pick(payload, "api_base", "apiBase", "base_url", "baseUrl", default="")
            ),
            model=str(_pick(payload, "model", default="")),
            native_tools=bool(_pick(payload, "native_tools", "nativeTools", default=True)),
            vision=None if vision is None else bool(vision),
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "api_key": self.api_key,
            "api_base": self.api_base,
            "model": self.model,
            "native_tools": self.native_tools,
        }
        if self.vision is not None:
            data["vision"] = self.vision
        return data


@dataclass
class LLMSettings:
    provider: str = "gemini"
    providers: Dict[str, ProviderConfig] = field(
        default_factory=lambda: {name: ProviderConfig() for name in SUPPORTED_PROVIDERS}
    )

    def provider_config(self, name: Optional[str] = None) -> ProviderConfig:
        key = str(name or self.provider).strip().lower()
        if key not in self.providers:
            self.providers[key] = ProviderConfig()
        return self.providers[key]

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "LLMSettings":
        payload = data or {}
        providers = {name: ProviderConfig() for name in SUPPORTED_PROVIDERS}
        raw = payload.get("providers") or {}
        if isinstance(raw, dict):
            for name, value in raw.items():
                providers[str(name).lower()] = ProviderConfig.from_dict(
                    value if isinstance(value, dict) else None
                )
        return cls(
            provider=str(payload.get("provider") or "gemini").strip().lower(),
            providers=providers,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "provider": self.provider,
            "providers": {k: v.to_dict() for k, v in self.providers.items()},
        }


@dataclass
class SummarizationConfig:
    enabled: bool = True
    trigger_percent: float = 85.0
    buffer_percent: float = 20.0
    max_recent_messages: int = 10
    max_context_size: int = 32000

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "SummarizationConfig":
        payload = data or {}
        return cls(
            enabled=bool(payload.get("enabled", True)),
            trigger_percent=float(
                _pick(payload, "trigger_percent", "triggerPercent", default=85.0)
            ),
            buffer_percent=float(
                _pick(payload, "buffer_percent", "bufferPercent", default=20.0)
            ),
            max_recent_messages=int(
                _pick(payload, "max_recent_messages", "maxRecentMessages", default=10)
            ),
            max_context_size=int(
                _pick(payload, "max_context_size", "maxContextSize", default=32000)
            ),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "enabled": self.enabled,
            "trigger_percent": self.trigger_percent,
            "buffer_percent": self.buffer_percent,
            "max_recent_messages": self.max_recent_messages,
            "max_context_size": self.max_context_size,
        }


@dataclass
class MCPServerConfig:
    """One tool server: ``command``/``args``/``env`` or ``url``/``headers``."""

    command: str = ""
    args: List[str] = field(default_factory=list)
    env: Dict[str, str] = field(default_factory=dict)
    url: str = ""
    headers: Dict[str, str] = field(default_factory=dict)
    transport: str = ""
    disabled: bool = False

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "MCPServerConfig":
        payload = data or {}
        args = payload.get("args") or []
        transport = str(payload.get("transport") or payload.get("type") or "")
        return cls(
            command=str(payload.get("command") or ""),
            args=[str(a) for a in args] if isinstance(args, list) else [],
            env=_str_map(payload.get("env")),
            url=str(payload.get("url") or ""),
            headers=_str_map(payload.get("headers")),
            transport=transport.strip().lower().replace("-", "_"),
            disabled=bool(payload.get("disabled", False)),
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {}
        if self.command:
            data["command"] = self.command
            data["args"] = list(self.args)
            if self.env:
                data["env"] = dict(self.env)
        if self.url:
            data["url"] = self.url
            if self.headers:
                data["headers"] = dict(self.headers)
        if self.transport:
            data["transport"] = self.transport
        if self.disabled:
            data["disabled"] = True
        return data


def default_mcp_servers() -> Dict[str, Dict[str, Any]]:
    return {
        "dice": {"url": "https://mcp.dice.com/mcp"},
        "open-meteo": {"command": "npx", "args": ["-y", "open-meteo-mcp-server"]},
    }


@dataclass
class MCPConfig:
    servers: Dict[str, MCPServerConfig] = field(
        default_factory=lambda: {
            name: MCPServerConfig.from_dict(cfg)
            for name, cfg in default_mcp_servers().items()
        }
    )
    discovery_timeout: float = 10.0
    call_timeout: float = 60.0

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "MCPConfig":
        payload = data or {}
        raw = _pick(payload, "servers", "mcp_servers", "mcpServers", default=None)
        if isinstance(raw, dict):
            servers = {
                str(name): MCPServerConfig.from_dict(cfg if isinstance(cfg, dict) else None)
                for name, cfg in raw.items()
            }
        else:
            servers = cls().servers
        return cls(
            servers=servers,
            discovery_timeout=float(
                _pick(payload, "discovery_timeout", "discoveryTimeout", default=10.0)
            ),
            call_timeout=float(
                _pick(payload, "call_timeout", "callTimeout", default=60.0)
            ),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "servers": {k: v.to_dict() for k, v in self.servers.items()},
            "discovery_timeout": self.discovery_timeout,
            "call_timeout": self.call_timeout,
        }


@dataclass
class WebSearchConfig:
    serpapi_key: str = ""
    google_api_key: str = ""
    google_cse_id: str = ""
    max_results: int = 5

    @property
    def configured(self) -> bool:
        return bool(self.serpapi_key or (self.google_api_key and self.google_cse_id))

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "WebSearchConfig":
        payload = data or {}
        return cls(
            serpapi_key=str(_pick(payload, "serpapi_key", "serpapiKey", default="")),
            google_api_key=str(
                _pick(payload, "google_api_key", "googleApiKey", default="")
            ),
            google_cse_id=str(_pick(payload, "google_cse_id", "googleCseId", default="")),
            max_results=int(_pick(payload, "max_results", "maxResults", default=5)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "serpapi_key": self.serpapi_key,
            "google_api_key": self.google_api_key,
            "google_cse_id": self.google_cse_id,
            "max_results": self.max_results,
        }


@dataclass
class ToolsConfig:
    web_search: WebSearchConfig = field(default_factory=WebSearchConfig)
    fetch_max_chars: int = 20000

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "ToolsConfig":
        payload = data or {}
        return cls(
            web_search=WebSearchConfig.from_dict(
                _pick(payload, "web_search", "webSearch", default=None)
            ),
            fetch_max_chars=int(
                _pick(payload, "fetch_max_chars", "fetchMaxChars", default=20000)
            ),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "web_search": self.web_search.to_dict(),
            "fetch_max_chars": self.fetch_max_chars,
        }


@dataclass
class AssistantConfig:
    llm: LLMSettings = field(default_factory=LLMSettings)
    summarization: SummarizationConfig = field(default_factory=SummarizationConfig)
    mcp: MCPConfig = field(default_factory=MCPConfig)
    tools: ToolsConfig = field(default_factory=ToolsConfig)
    channel_history_limit: int = 20
    max_tool_rounds: int = 10
    temperature: float = 0.7
    system_prompt: str = ""
    data_dir: str = "~/.parley"

    @property
    def data_path(self) -> Path:
        return Path(self.data_dir).expanduser()

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "AssistantConfig":
        payload = data or {}
        return cls(
            llm=LLMSettings.from_dict(payload.get("llm")),
            summarization=SummarizationConfig.from_dict(payload.get("summarization")),
            mcp=MCPConfig.from_dict(payload.get("mcp")),
            tools=ToolsConfig.from_dict(payload.get("tools")),
            channel_history_limit=int(
                _pick(
                    payload, "channel_history_limit", "channelHistoryLimit", default=20
                )
            ),
            max_tool_rounds=int(
                _pick(payload, "max_tool_rounds", "maxToolRounds", default=10)
            ),
            temperature=float(payload.get("temperature", 0.7)),
            system_prompt=str(
                _pick(payload, "system_prompt", "systemPrompt", default="")
            ),
            data_dir=str(_pick(payload, "data_dir", "dataDir", default="~/.parley")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "llm": self.llm.to_dict(),
            "summarization": self.summarization.to_dict(),
            "mcp": self.mcp.to_dict(),
            "tools": self.tools.to_dict(),
            "channel_history_limit": self.channel_history_limit,
            "max_tool_rounds": self.max_tool_rounds,
            "temperature": self.temperature,
            "system_prompt": self.system_prompt,
            "data_dir": self.data_dir,
        }
