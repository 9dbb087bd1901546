from __future__ import annotations

import json
from pathlib import Path

from parley.core.agent.config import loader as loader_mod
from parley.core.agent.config.loader import (
    convert_keys_to_camel,
    convert_keys_to_snake,
    load_config,
    merge_mcp_document,
    merge_mcp_servers,
    save_config,
)
from parley.core.agent.config.schema import AssistantConfig, default_mcp_servers


def test_merge_mcp_servers_defaults_when_empty() -> None:
    assert merge_mcp_servers(None, None) == default_mcp_servers()
    assert merge_mcp_servers(None, "   ") == default_mcp_servers()


def test_merge_mcp_servers_overrides_by_name() -> None:
    merged = merge_mcp_servers(
        None, json.dumps({"dice": {"url": "http://localhost:9000/mcp"}, "x": {"command": "x"}})
    )
    assert merged["dice"] == {"url": "http://localhost:9000/mcp"}
    assert merged["x"] == {"command": "x"}
    assert "open-meteo" in merged


def test_merge_mcp_servers_accepts_wrapper() -> None:
    raw = json.dumps({"mcpServers": {"weather": {"url": "http://w/mcp"}}})
    merged = merge_mcp_servers({}, raw)
    assert merged == {"weather": {"url": "http://w/mcp"}}


def test_merge_mcp_servers_invalid_json_keeps_base() -> None:
    base = {"a": {"command": "a"}}
    assert merge_mcp_servers(base, "{not json") == base
    assert merge_mcp_servers(base, "[1, 2]") == base


def test_merge_mcp_document_preserves_wrapper_shape() -> None:
    raw = json.dumps({"mcpServers": {"weather": {"url": "http://w/mcp"}}, "version": 2})
    doc = merge_mcp_document(raw, {})
    assert doc["version"] == 2
    assert doc["mcpServers"] == {"weather": {"url": "http://w/mcp"}}

    flat = merge_mcp_document(json.dumps({"weather": {"url": "u"}}), {})
    assert flat == {"weather": {"url": "u"}}


def test_key_conversion_leaves_server_names_and_env_alone() -> None:
    raw = {
        "channelHistoryLimit": 5,
        "mcp": {
            "servers": {
                "myServer": {"command": "run", "env": {"API_KEY": "k", "fooBar": "1"}}
            }
        },
    }
    snake = convert_keys_to_snake(raw)
    assert snake["channel_history_limit"] == 5
    server = snake["mcp"]["servers"]["myServer"]
    assert server["env"] == {"API_KEY": "k", "fooBar": "1"}

    camel = convert_keys_to_camel({"max_tool_rounds": 3, "llm": {"providers": {"open_ai": {"api_key": "x"}}}})
    assert camel["maxToolRounds"] == 3
    assert camel["llm"]["providers"]["open_ai"] == {"apiKey": "x"}


def test_load_config_defaults_when_missing(tmp_path: Path) -> None:
    config = load_config(tmp_path / "missing.json", environ={})
    assert config.llm.provider == "gemini"
    assert config.max_tool_rounds == 10
    assert set(config.mcp.servers) == set(default_mcp_servers())
    assert config.mcp.discovery_timeout == 10.0
    assert config.mcp.call_timeout == 60.0


def test_load_config_bad_json_falls_back(tmp_path: Path) -> None:
    path = tmp_path / "config.json"
    path.write_text("{broken", encoding="utf-8")
    config = load_config(path, environ={})
    assert isinstance(config, AssistantConfig)
    assert config.channel_history_limit == 20


def test_load_config_reads_camel_case_file(tmp_path: Path) -> None:
    path = tmp_path / "config.json"
    path.write_text(
        json.dumps(
            {
                "llm": {
                    "provider": "OpenAI",
                    "providers": {"openai": {"apiKey": "sk", "model": "gpt-x"}},
                },
                "maxToolRounds": 4,
                "summarization": {"triggerPercent": 70},
                "mcp": {"servers": {"local": {"url": "http://127.0.0.1/mcp"}}},
            }
        ),
        encoding="utf-8",
    )
    config = load_config(path, environ={})
    assert config.llm.provider == "openai"
    assert config.llm.provider_config().api_key == "sk"
    assert config.llm.provider_config().model == "gpt-x"
    assert config.max_tool_rounds == 4
    assert config.summarization.trigger_percent == 70.0
    assert config.mcp.servers["local"].url == "http://127.0.0.1/mcp"
    assert "dice" in config.mcp.servers


def test_env_fills_missing_values(tmp_path: Path) -> None:
    env = {
        "AI_PROVIDER": "openai",
        "OPENAI_API_KEY": "env-key",
        "OPENAI_BASE_URL": "http://localhost:11434/v1",
        "GEMINI_API_KEY": "g-key",
        "CHANNEL_HISTORY_LIMIT": "7",
        "MCP_SERVERS_JSON": json.dumps({"mcpServers": {"extra": {"command": "e"}}}),
    }
    config = load_config(tmp_path / "none.json", environ=env)
    assert config.llm.provider == "openai"
    assert config.llm.provider_config("openai").api_key == "env-key"
    assert config.llm.provider_config("openai").api_base == "http://localhost:11434/v1"
    assert config.llm.provider_config("gemini").api_key == "g-key"
    assert config.channel_history_limit == 7
    assert config.mcp.servers["extra"].command == "e"
    assert "dice" in config.mcp.servers


def test_env_does_not_override_file_keys(tmp_path: Path) -> None:
    path = tmp_path / "config.json"
    path.write_text(
        json.dumps({"llm": {"providers": {"openai": {"apiKey": "file-key"}}}}),
        encoding="utf-8",
    )
    config = load_config(path, environ={"OPENAI_API_KEY": "env-key", "CHANNEL_HISTORY_LIMIT": "x"})
    assert config.llm.provider_config("openai").api_key == "file-key"
    assert config.channel_history_limit == 20


def test_save_then_load_keeps_values(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "config.json"
    config = AssistantConfig()
    config.max_tool_rounds = 3
    config.llm.provider_config("openai").model = "m"
    save_config(config, path)

    on_disk = json.loads(path.read_text(encoding="utf-8"))
    assert on_disk["maxToolRounds"] == 3
    assert "open-meteo" in on_disk["mcp"]["servers"]

    loaded = load_config(path, environ={})
    assert loaded.max_tool_rounds == 3
    assert loaded.llm.provider_config("openai").model == "m"


def test_config_path_env_override(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setenv("PARLEY_CONFIG", str(tmp_path / "c.json"))
    assert loader_mod.get_config_path() == tmp_path / "c.json"
