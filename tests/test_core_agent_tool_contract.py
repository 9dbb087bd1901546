from __future__ import annotations

from parley.core.agent.messages import ToolDescriptor
from parley.core.agent.providers.tool_contract import (
    build_contract_prompt,
    split_directives,
    strip_tool_tags,
)


def test_final_directive_yields_plain_text() -> None:
    parsed = split_directives('{"final":"Hello"}')
    assert parsed.prose == "Hello"
    assert parsed.tool_calls == []
    assert parsed.malformed is False


def test_fenced_directive_with_prose_is_split() -> None:
    text = (
        "Let me check.\n"
        "```json\n"
        '{"tool_calls":[{"name":"web_search","arguments":{"query":"x"}}]}\n'
        "```"
    )
    parsed = split_directives(text)
    assert parsed.prose == "Let me check."
    assert len(parsed.tool_calls) == 1
    assert parsed.tool_calls[0].name == "web_search"
    assert parsed.tool_calls[0].arguments == {"query": "x"}


def test_inline_name_arguments_object_is_recognized() -> None:
    parsed = split_directives(
        'Generating now {"name": "generate_image", "arguments": {"prompt": "a cat"}}'
    )
    assert parsed.prose == "Generating now"
    assert parsed.tool_calls[0].name == "generate_image"


def test_string_arguments_are_decoded() -> None:
    parsed = split_directives(
        '{"tool_calls":[{"name":"t","arguments":"{\\"a\\": 1}"}]}'
    )
    assert parsed.tool_calls[0].arguments == {"a": 1}
    assert parsed.prose == ""


def test_openai_function_shape_is_accepted() -> None:
    parsed = split_directives(
        '{"tool_calls":[{"id":"c9","type":"function",'
        '"function":{"name":"t","arguments":"{}"}}]}'
    )
    assert parsed.tool_calls[0].name == "t"
    assert parsed.tool_calls[0].id == "c9"


def test_malformed_directive_is_stripped_and_flagged() -> None:
    parsed = split_directives('Here you go. {"tool_calls":[{"name":"t",')
    assert parsed.malformed is True
    assert parsed.tool_calls == []
    assert parsed.prose == "Here you go."


def test_malformed_fenced_directive_leaves_no_prose() -> None:
    parsed = split_directives('```json\n{"tool_calls": [oops]}\n```')
    assert parsed.malformed is True
    assert parsed.prose == ""


def test_plain_text_and_unrelated_json_pass_through() -> None:
    assert split_directives("just words").prose == "just words"
    text = 'Config:\n```json\n{"debug": true}\n```'
    parsed = split_directives(text)
    assert parsed.prose == text
    assert parsed.tool_calls == []


def test_empty_text() -> None:
    parsed = split_directives("")
    assert parsed.prose == ""
    assert parsed.tool_calls == []


def test_tool_tags_are_removed() -> None:
    assert strip_tool_tags("[TOOL_REQUEST]hi[END_TOOL_REQUEST]") == "hi"


def test_contract_prompt_lists_tools_and_rules() -> None:
    prompt = build_contract_prompt(
        [ToolDescriptor(name="web_search", description="Search", parameters={})]
    )
    assert "- name: web_search" in prompt
    assert '{"final":' in prompt
