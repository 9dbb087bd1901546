from __future__ import annotations

import asyncio
import json
from pathlib import Path
from types import SimpleNamespace

from parley import cli
from parley.core.agent.messages import ToolDescriptor


def test_check_servers_groups_tools_by_owner() -> None:
    async def discover():
        return [
            ToolDescriptor(name="dice__search_jobs", description="jobs"),
            ToolDescriptor(name="open_meteo__forecast", description="weather"),
        ]

    owners = {"dice__search_jobs": "dice", "open_meteo__forecast": "open-meteo"}
    manager = SimpleNamespace(
        servers={"dice": object(), "open-meteo": object(), "idle": object()},
        discover=discover,
        owner_of=owners.get,
    )

    report = asyncio.run(cli.check_servers(manager))

    assert report["dice"] == [{"name": "dice__search_jobs", "description": "jobs"}]
    assert report["open-meteo"][0]["name"] == "open_meteo__forecast"
    assert report["idle"] == []


def test_main_prints_json_report(monkeypatch, tmp_path: Path, capsys) -> None:
    config_path = tmp_path / "config.json"
    config_path.write_text(
        json.dumps({"mcp": {"servers": {"local": {"url": "http://127.0.0.1:1/mcp"}}}}),
        encoding="utf-8",
    )

    async def fake_check(manager):
        assert set(manager.servers) == {"local"}
        return {"local": [{"name": "local__ping", "description": ""}]}

    monkeypatch.setattr(cli, "check_servers", fake_check)
    monkeypatch.delenv("MCP_SERVERS_JSON", raising=False)

    code = cli.main(["--config", str(config_path), "--server", "local", "--json"])

    out = json.loads(capsys.readouterr().out)
    assert code == 0
    assert out["servers"]["local"][0]["name"] == "local__ping"
    assert "ok" in out["provider"]


def test_main_returns_error_code_without_tools(monkeypatch, tmp_path: Path, capsys) -> None:
    async def fake_check(manager):
        return {name: [] for name in manager.servers}

    monkeypatch.setattr(cli, "check_servers", fake_check)
    code = cli.main(["--config", str(tmp_path / "missing.json")])

    assert code == 1
    assert "tool(s)" in capsys.readouterr().out
