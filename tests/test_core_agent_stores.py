from __future__ import annotations

import json
from pathlib import Path

from parley.core.agent.messages import Usage, assistant_text, user_text
from parley.core.agent.prompts import DefaultMode, GameMasterMode, PlayerMode
from parley.core.agent.scope_store import ScopeConfigStore
from parley.core.agent.session_manager import ThreadHistoryStore
from parley.core.agent.stores import JsonDocumentStore
from parley.core.agent.usage import UsageStore


def test_json_document_store_persists_and_isolates(tmp_path: Path) -> None:
    path = tmp_path / "doc.json"
    store = JsonDocumentStore(path)
    value = {"a": [1, 2]}
    store.set("k", value)
    value["a"].append(3)
    assert store.get("k") == {"a": [1, 2]}

    fetched = store.get("k")
    fetched["a"].clear()
    assert JsonDocumentStore(path).get("k") == {"a": [1, 2]}
    assert not (tmp_path / "doc.json.tmp").exists()

    assert store.delete("k") is True
    assert store.delete("k") is False
    assert json.loads(path.read_text(encoding="utf-8")) == {}


def test_json_document_store_tolerates_corrupt_file(tmp_path: Path) -> None:
    path = tmp_path / "doc.json"
    path.write_text("[[[", encoding="utf-8")
    store = JsonDocumentStore(path)
    assert store.get("missing", 5) == 5
    assert store.update("n", lambda cur: (cur or 0) + 1) == 1


def test_usage_store_counts_only_grow(tmp_path: Path) -> None:
    usage = UsageStore(JsonDocumentStore(tmp_path / "usage.json"))
    usage.track_llm_interaction("U1", Usage(10, 5, 15), date="2026-01-01")
    record = usage.track_llm_interaction(
        "U1", Usage(prompt_tokens=-3, completion_tokens=2, total_tokens=2), date="2026-01-01"
    )
    assert record.llm_invocations == 2
    assert record.prompt_tokens == 10
    assert record.completion_tokens == 7
    assert record.total_tokens == 17

    usage.track_image_invocation("U1", date="2026-01-01")
    usage.track_llm_interaction("U2", None, date="2026-01-01")
    assert usage.get_user_usage("U1", "2026-01-01").image_invocations == 1
    assert usage.get_user_usage("U1", "2026-01-02") is None
    assert set(usage.get_all_usage("2026-01-01")) == {"U1", "U2"}


def test_scope_store_channel_and_thread_toggles(tmp_path: Path) -> None:
    scopes = ScopeConfigStore(JsonDocumentStore(tmp_path / "scopes.json"))
    assert scopes.is_channel_enabled("C1") is False
    scopes.enable_channel("C1")
    scopes.enable_channel("C1")
    assert scopes.enabled_channels() == ["C1"]
    scopes.disable_channel("C1")
    assert scopes.is_channel_enabled("C1") is False

    scopes.disable_thread("T1")
    assert scopes.is_thread_disabled("T1") is True
    scopes.enable_thread("T1")
    assert scopes.is_thread_disabled("T1") is False


def test_scope_store_modes_and_context(tmp_path: Path) -> None:
    scopes = ScopeConfigStore(JsonDocumentStore(tmp_path / "scopes.json"))
    assert isinstance(scopes.mode_for("C1"), DefaultMode)

    scopes.set_mode("C1", PlayerMode(context={"name": "Rook"}))
    mode = scopes.mode_for("C1")
    assert isinstance(mode, PlayerMode)
    assert mode.context == {"name": "Rook"}

    updated = scopes.update_context("C1", {"name": "Rook", "hp": 3})
    assert isinstance(updated, PlayerMode)
    assert scopes.mode_for("C1").context["hp"] == 3

    assert isinstance(scopes.update_context("C2", {"scene": "tavern"}), GameMasterMode)

    scopes.clear_mode("C1")
    assert isinstance(scopes.mode_for("C1"), DefaultMode)


def test_thread_history_store_append_and_list(tmp_path: Path) -> None:
    store = ThreadHistoryStore(tmp_path / "threads")
    assert store.load("C1:1").turns == []

    store.append("C1:1", [user_text("hi"), assistant_text("hello")])
    store.append("C1:1", [user_text("again")])
    store.append("C2:9", [user_text("other")])

    history = store.load("C1:1")
    assert [t.role for t in history.turns] == ["user", "assistant", "user"]
    assert history.turns[-1].text() == "again"

    rows = {row["key"]: row for row in store.list_threads()}
    assert rows["C1:1"]["turn_count"] == 3
    assert rows["C2:9"]["turn_count"] == 1

    assert store.delete("C2:9") is True
    assert store.delete("C2:9") is False
    assert [row["key"] for row in store.list_threads()] == ["C1:1"]


def test_thread_history_store_bad_file_loads_empty(tmp_path: Path) -> None:
    store = ThreadHistoryStore(tmp_path)
    store.append("k", [user_text("x")])
    path = next(tmp_path.glob("*.jsonl"))
    path.write_text("not json\n", encoding="utf-8")
    assert store.load("k").turns == []
