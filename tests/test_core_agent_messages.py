from __future__ import annotations

import json

import pytest

from parley.core.agent.messages import (
    InlineImagePart,
    MessageTurn,
    TextPart,
    ToolCallPart,
    ToolResultPart,
    Usage,
    history_from_dicts,
    history_to_dicts,
    question_turn,
)


def test_history_round_trip_preserves_roles_and_part_order() -> None:
    history = [
        MessageTurn(
            role="user",
            parts=(TextPart("look at this"), InlineImagePart(b"\xff\xd8jpeg")),
        ),
        MessageTurn(
            role="assistant",
            parts=(
                TextPart("checking"),
                ToolCallPart(name="web_search", arguments={"query": "x"}, id="c1"),
            ),
        ),
        MessageTurn(
            role="tool",
            parts=(ToolResultPart(name="web_search", payload={"content": "y"}, id="c1"),),
        ),
        MessageTurn(role="assistant", parts=(TextPart("done"),)),
    ]
    rows = json.loads(json.dumps(history_to_dicts(history)))
    assert history_from_dicts(rows) == history


def test_tool_turn_rejects_non_result_parts() -> None:
    with pytest.raises(ValueError):
        MessageTurn(role="tool", parts=(TextPart("nope"),))
    with pytest.raises(ValueError):
        MessageTurn(role="tool", parts=())


def test_unknown_role_is_rejected() -> None:
    with pytest.raises(ValueError):
        MessageTurn(role="function", parts=(TextPart("x"),))  # type: ignore[arg-type]


def test_question_turn_role_follows_parts() -> None:
    assert question_turn("hi").role == "user"
    results = [ToolResultPart(name="a", payload={"ok": True}, id="1")]
    assert question_turn(results).role == "tool"


def test_turn_accessors() -> None:
    turn = MessageTurn(
        role="assistant",
        parts=(TextPart("a"), ToolCallPart(name="t", id="1"), TextPart("b")),
    )
    assert turn.text() == "a\nb"
    assert [c.name for c in turn.tool_calls] == ["t"]
    assert turn.images == []


def test_usage_adds_fieldwise() -> None:
    total = Usage(1, 2, 3) + Usage(10, 20, 30)
    assert total == Usage(11, 22, 33)
