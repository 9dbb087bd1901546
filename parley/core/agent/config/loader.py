from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from parley.utils.logger import logger

from ..utils import get_data_path
from .schema import AssistantConfig, MCPServerConfig, default_mcp_servers

_VERBATIM_KEYS = {"env", "headers", "context"}
_NAMED_MAPS = {"servers", "mcp_servers", "providers"}
_ENTRY = "__entry__"


def get_config_path() -> Path:
    override = os.environ.get("PARLEY_CONFIG")
    if override:
        return Path(override).expanduser()
    return get_data_path() / "config.json"


def _camel_to_snake(name: str) -> str:
    out = []
    for i, ch in enumerate(str(name)):
        if ch.isupper() and i > 0:
            out.append("_")
        out.append(ch.lower())
    return "".join(out)


def _snake_to_camel(name: str) -> str:
    parts = str(name).split("_")
    return parts[0] + "".join(p.title() for p in parts[1:])


def _convert_keys(data: Any, convert, parent: Optional[str] = None) -> Any:
    if isinstance(data, list):
        return [_convert_keys(item, convert) for item in data]
    if not isinstance(data, dict):
        return data
    if parent in _VERBATIM_KEYS:
        return dict(data)
    out: Dict[str, Any] = {}
    for key, value in data.items():
        if parent in _NAMED_MAPS:
            out[key] = _convert_keys(value, convert, _ENTRY)
            continue
        new_key = convert(key)
        out[new_key] = _convert_keys(value, convert, _camel_to_snake(new_key))
    return out


def convert_keys_to_snake(data: Any) -> Any:
    """Snake-case config keys, leaving server names, env and headers untouched."""
    return _convert_keys(data, _camel_to_snake)


def convert_keys_to_camel(data: Any) -> Any:
    return _convert_keys(data, _snake_to_camel)


def merge_mcp_servers(
    base: Optional[Mapping[str, Any]] = None, raw_json: Optional[str] = None
) -> Dict[str, Dict[str, Any]]:
    """Overlay server entries from ``raw_json`` onto ``base`` by server name.

    ``raw_json`` may be a flat ``{name: cfg}`` map or a ``{"mcpServers": {...}}``
    wrapper. Invalid JSON leaves ``base`` unchanged.
    """
    servers = {
        str(k): dict(v)
        for k, v in (default_mcp_servers() if base is None else base).items()
    }
    if not raw_json or not str(raw_json).strip():
        return servers
    try:
        parsed = json.loads(raw_json)
    except json.JSONDecodeError as exc:
        logger.warning("Ignoring invalid MCP_SERVERS_JSON: %s", exc)
        return servers
    if not isinstance(parsed, dict):
        logger.warning("Ignoring MCP_SERVERS_JSON: expected an object")
        return servers
    overrides = parsed.get("mcpServers")
    if not isinstance(overrides, dict):
        overrides = parsed
    for name, cfg in overrides.items():
        if isinstance(cfg, dict):
            servers[str(name)] = dict(cfg)
    return servers


def merge_mcp_document(
    raw_json: Optional[str], base: Optional[Mapping[str, Any]] = None
) -> Dict[str, Any]:
    """Like :func:`merge_mcp_servers` but keep the caller's document shape."""
    merged = merge_mcp_servers(base, raw_json)
    try:
        parsed = json.loads(raw_json) if raw_json else None
    except json.JSONDecodeError:
        parsed = None
    if isinstance(parsed, dict) and isinstance(parsed.get("mcpServers"), dict):
        return {**parsed, "mcpServers": merged}
    return merged


def _inject_env_defaults(
    config: AssistantConfig, environ: Mapping[str, str]
) -> AssistantConfig:
    provider = environ.get("PARLEY_AI_PROVIDER") or environ.get("AI_PROVIDER")
    if provider:
        config.llm.provider = provider.strip().lower()

    gemini = config.llm.provider_config("gemini")
    if not gemini.api_key:
        gemini.api_key = environ.get("GEMINI_API_KEY") or environ.get(
            "GOOGLE_API_KEY", ""
        )
    if not gemini.model and environ.get("GEMINI_MODEL"):
        gemini.model = environ["GEMINI_MODEL"]

    openai_cfg = config.llm.provider_config("openai")
    if not openai_cfg.api_key:
        openai_cfg.api_key = environ.get("OPENAI_API_KEY", "")
    if not openai_cfg.api_base:
        openai_cfg.api_base = environ.get("OPENAI_BASE_URL", "")
    if not openai_cfg.model and environ.get("OPENAI_MODEL"):
        openai_cfg.model = environ["OPENAI_MODEL"]

    limit = environ.get("CHANNEL_HISTORY_LIMIT")
    if limit:
        try:
            config.channel_history_limit = int(limit)
        except ValueError:
            logger.warning("Ignoring non-integer CHANNEL_HISTORY_LIMIT=%r", limit)

    search = config.tools.web_search
    if not search.serpapi_key:
        search.serpapi_key = environ.get("SERPAPI_API_KEY", "")
    if not search.google_api_key:
        search.google_api_key = environ.get("GOOGLE_SEARCH_API_KEY", "")
    if not search.google_cse_id:
        search.google_cse_id = environ.get("GOOGLE_CSE_ID", "")

    raw_servers = environ.get("MCP_SERVERS_JSON")
    if raw_servers:
        current = {name: cfg.to_dict() for name, cfg in config.mcp.servers.items()}
        merged = merge_mcp_servers(current, raw_servers)
        config.mcp.servers = {
            name: MCPServerConfig.from_dict(cfg) for name, cfg in merged.items()
        }
    return config


def _file_payload(raw: Dict[str, Any]) -> Dict[str, Any]:
    data = convert_keys_to_snake(raw)
    mcp = dict(data.get("mcp") or {})
    file_servers = mcp.get("servers")
    if not isinstance(file_servers, dict):
        file_servers = data.get("mcp_servers")
    if isinstance(file_servers, dict):
        mcp["servers"] = merge_mcp_servers(
            default_mcp_servers(), json.dumps(file_servers)
        )
        data["mcp"] = mcp
    return data


def load_config(
    config_path: Path | None = None,
    *,
    environ: Optional[Mapping[str, str]] = None,
) -> AssistantConfig:
    env = os.environ if environ is None else environ
    path = (
        Path(config_path).expanduser() if config_path is not None else get_config_path()
    )
    config = AssistantConfig()
    if path.exists():
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
            if isinstance(raw, dict):
                config = AssistantConfig.from_dict(_file_payload(raw))
            else:
                logger.warning("Config %s is not a JSON object; using defaults", path)
        except (OSError, json.JSONDecodeError, ValueError, TypeError) as exc:
            logger.warning("Failed to load config %s: %s", path, exc)
            config = AssistantConfig()
    return _inject_env_defaults(config, env)


def save_config(config: AssistantConfig, config_path: Path | None = None) -> None:
    path = (
        Path(config_path).expanduser() if config_path is not None else get_config_path()
    )
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = convert_keys_to_camel(config.to_dict())
    path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
