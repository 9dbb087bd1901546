from __future__ import annotations

import asyncio
import json
from pathlib import Path
from types import SimpleNamespace
from typing import Any

from parley.core.agent import background
from parley.core.agent.config.schema import WebSearchConfig
from parley.core.agent.messages import ToolDescriptor
from parley.core.agent.prompts import DefaultMode, GameMasterMode
from parley.core.agent.scope_store import ScopeConfigStore
from parley.core.agent.stores import JsonDocumentStore
from parley.core.agent.tools import (
    FetchUrlTool,
    FunctionTool,
    FunctionToolRegistry,
    GenerateImageTool,
    ToolContext,
    ToolRouter,
    UpdateRpgContextTool,
    UserProfileTool,
    WebSearchTool,
    use_tool_context,
)
from parley.core.agent.tools.function_registry import payload_from_text
from parley.core.agent.tools.web import extract_readable_text
from parley.core.agent.usage import UsageStore


class _EchoTool(FunctionTool):
    def __init__(self, fail: bool = False):
        self.fail = fail

    @property
    def name(self) -> str:
        return "echo"

    @property
    def description(self) -> str:
        return "echo text"

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "text": {"type": "string"},
                "times": {"type": "integer"},
            },
            "required": ["text"],
        }

    async def execute(self, text: str, times: int = 1, **kwargs: Any) -> str:
        if self.fail:
            raise RuntimeError("kaput")
        return text * times


def test_payload_from_text_wraps_non_objects() -> None:
    assert payload_from_text('{"a": 1}') == {"a": 1}
    assert payload_from_text("[1]") == {"result": [1]}
    assert payload_from_text("plain") == {"result": "plain"}


def test_registry_validates_and_reports_errors() -> None:
    registry = FunctionToolRegistry()
    registry.register(_EchoTool())

    assert asyncio.run(registry.execute("echo", {"text": "ab", "times": 2})) == {
        "result": "abab"
    }
    missing = asyncio.run(registry.execute("echo", {}))
    assert "missing required text" in missing["error"]
    wrong = asyncio.run(registry.execute("echo", {"text": "a", "times": True}))
    assert "times should be integer" in wrong["error"]
    assert asyncio.run(registry.execute("nope", {})) == {"error": "Tool 'nope' not found"}

    registry.register(_EchoTool(fail=True))
    failed = asyncio.run(registry.execute("echo", {"text": "x"}))
    assert failed == {"error": "Error executing echo: kaput"}


def test_router_hides_game_master_tools_outside_gm_mode(tmp_path: Path) -> None:
    scopes = ScopeConfigStore(JsonDocumentStore(tmp_path / "s.json"))
    registry = FunctionToolRegistry()
    registry.register(_EchoTool())
    registry.register(UpdateRpgContextTool(scopes))
    server_tool = ToolDescriptor(name="dice__search_jobs", description="jobs")
    mcp = SimpleNamespace(
        tools=lambda: [server_tool],
        has_tool=lambda name: name == "dice__search_jobs",
    )
    router = ToolRouter(registry, mcp)

    assert [d.name for d in router.descriptors(DefaultMode())] == [
        "echo",
        "dice__search_jobs",
    ]
    assert "update_rpg_context" in [
        d.name for d in router.descriptors(GameMasterMode())
    ]


def test_router_progress_messages() -> None:
    registry = FunctionToolRegistry()
    registry.register(WebSearchTool(WebSearchConfig()))
    mcp = SimpleNamespace(tools=lambda: [], has_tool=lambda name: "__" in name)
    router = ToolRouter(registry, mcp)

    assert router.progress_message("web_search", {"query": "cats"}) == (
        '_searching the web for "cats"_'
    )
    assert router.progress_message("dice__search", {"keyword": "python"}) == (
        '_searching Dice for "python" jobs..._'
    )
    assert router.progress_message("open_meteo__forecast", {}) == (
        "_looking up weather information..._"
    )
    assert router.progress_message("other__tool", {}) == "_running tool on other_"
    assert router.progress_message("unknown", {}) is None


def test_router_routes_by_kind() -> None:
    calls = []

    async def execute_tool(name, args, on_image=None):
        calls.append((name, args))
        return {"content": "from server"}

    mcp = SimpleNamespace(tools=lambda: [], has_tool=lambda n: True, execute_tool=execute_tool)
    registry = FunctionToolRegistry()
    registry.register(_EchoTool())
    router = ToolRouter(registry, mcp)

    assert asyncio.run(router.execute("echo", {"text": "a"})) == {"result": "a"}
    assert asyncio.run(router.execute("srv__t", {"x": 1})) == {"content": "from server"}
    assert asyncio.run(router.execute("plain")) == {"error": "Tool 'plain' not found"}
    assert calls == [("srv__t", {"x": 1})]


def test_update_rpg_context_uses_current_channel(tmp_path: Path) -> None:
    scopes = ScopeConfigStore(JsonDocumentStore(tmp_path / "s.json"))
    tool = UpdateRpgContextTool(scopes)

    async def run() -> str:
        with use_tool_context(ToolContext(channel_id="C7", user_id="U1")):
            return await tool.execute(context={"hp": 9})

    assert json.loads(asyncio.run(run())) == {"success": True}
    assert scopes.mode_for("C7").context == {"hp": 9}

    no_channel = asyncio.run(tool.execute(context={}))
    assert "error" in json.loads(no_channel)


def test_user_profile_tool_filters_fields() -> None:
    async def lookup(user_id: str):
        if user_id == "U1":
            return {"id": "U1", "name": "sam", "secret": "x", "tz": "UTC"}
        return {}

    tool = UserProfileTool(lookup)
    found = json.loads(asyncio.run(tool.execute(user_id="U1")))
    assert found["name"] == "sam"
    assert "secret" not in found
    missing = json.loads(asyncio.run(tool.execute(user_id="U2")))
    assert missing == {"error": "User 'U2' not found"}


def test_generate_image_returns_immediately_and_uploads_later(tmp_path: Path) -> None:
    uploads = []
    usage = UsageStore(JsonDocumentStore(tmp_path / "usage.json"))

    async def generator(prompt: str) -> bytes:
        return b"png:" + prompt.encode()

    async def uploader(ctx: ToolContext, data: bytes, title: str) -> None:
        uploads.append((ctx.channel_id, ctx.thread_id, data, title))

    tool = GenerateImageTool(generator, uploader, usage=usage)

    async def run() -> str:
        with use_tool_context(ToolContext(channel_id="C1", thread_id="T1", user_id="U1")):
            out = await tool.execute(prompt="a cat")
        assert uploads == []
        await background.drain_detached(timeout=1)
        return out

    out = json.loads(asyncio.run(run()))
    assert out["success"] is True
    assert uploads == [("C1", "T1", b"png:a cat", "a cat")]
    assert usage.get_user_usage("U1").image_invocations == 1


def test_web_search_unconfigured_returns_error() -> None:
    out = json.loads(asyncio.run(WebSearchTool(WebSearchConfig()).execute(query="x")))
    assert "not configured" in out["error"]


def test_fetch_url_rejects_bad_scheme() -> None:
    out = json.loads(asyncio.run(FetchUrlTool().execute(url="ftp://example.com/a")))
    assert out["error"].startswith("URL validation failed")
    out = json.loads(asyncio.run(FetchUrlTool().execute(url="https://")))
    assert "Missing domain" in out["error"]


def test_extract_readable_text_prefers_article() -> None:
    markup = """
    <html><head><title>Page</title><style>.x{}</style></head>
    <body><nav>menu</nav><article><h1>Head</h1><p>Body &amp; soul</p></article>
    <script>var a = 1;</script><footer>foot</footer></body></html>
    """
    text = extract_readable_text(markup)
    assert text.startswith("Page\n\n")
    assert "Head" in text and "Body & soul" in text
    assert "menu" not in text and "var a" not in text and "foot" not in text


def test_game_master_tool_is_not_found_outside_gm_mode(tmp_path: Path) -> None:
    scopes = ScopeConfigStore(JsonDocumentStore(tmp_path / "s.json"))
    registry = FunctionToolRegistry()
    registry.register(UpdateRpgContextTool(scopes))
    router = ToolRouter(registry)

    async def run(mode):
        with use_tool_context(ToolContext(channel_id="C1", mode=mode)):
            return await router.execute(
                "update_rpg_context", {"context": {"hp": 1}}, mode=mode
            )

    assert asyncio.run(run(DefaultMode())) == {
        "error": "Tool 'update_rpg_context' not found"
    }
    assert asyncio.run(run(None))["error"].endswith("not found")
    assert isinstance(scopes.mode_for("C1"), DefaultMode)
    assert router.progress_message("update_rpg_context", {}, mode=DefaultMode()) is None

    assert asyncio.run(run(GameMasterMode(context={"hp": 5}))) == {"success": True}
    assert scopes.mode_for("C1").context == {"hp": 1}
