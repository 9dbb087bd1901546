from __future__ import annotations

import argparse
import asyncio
import json
from pathlib import Path
from typing import Any, Dict, Optional

from parley.core.agent.config import load_config
from parley.core.agent.providers.factory import provider_health
from parley.core.agent.tools.mcp import McpToolManager


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Discover tools on the configured MCP servers and print them."
    )
    parser.add_argument("--config", default=None, help="Path to config.json.")
    parser.add_argument(
        "--server",
        action="append",
        default=None,
        help="Only check this server (repeatable).",
    )
    parser.add_argument(
        "--json", action="store_true", help="Print the catalog as JSON."
    )
    return parser


async def check_servers(manager: McpToolManager) -> Dict[str, Any]:
    tools = await manager.discover()
    by_server: Dict[str, list] = {name: [] for name in manager.servers}
    for tool in tools:
        owner = manager.owner_of(tool.name)
        by_server.setdefault(owner or "?", []).append(
            {"name": tool.name, "description": tool.description}
        )
    return by_server


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    config = load_config(Path(args.config).expanduser() if args.config else None)
    servers = config.mcp.servers
    if args.server:
        servers = {k: v for k, v in servers.items() if k in set(args.server)}
    manager = McpToolManager(
        servers,
        discovery_timeout=config.mcp.discovery_timeout,
        call_timeout=config.mcp.call_timeout,
    )
    report = asyncio.run(check_servers(manager))

    health = provider_health(config)
    if args.json:
        print(
            json.dumps(
                {
                    "provider": {"ok": health.ok, "reason": health.reason},
                    "servers": report,
                },
                indent=2,
            )
        )
    else:
        print(f"provider {config.llm.provider}: {'ok' if health.ok else health.reason}")
        for server, tools in report.items():
            print(f"{server}: {len(tools)} tool(s)")
            for tool in tools:
                print(f"  {tool['name']}")
    return 0 if any(report.values()) else 1


if __name__ == "__main__":
    raise SystemExit(main())
