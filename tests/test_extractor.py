"""Tests for extracting structured replies from free-form model output."""

import json

import pytest

from policy_chat.extractor import (
    ParsedReply,
    RawReply,
    extract,
    find_json_span,
    parse_reply,
)
from policy_chat.models import ExtractedReply

STRUCTURED = {
    "message": "Under the **Data Retention Policy** records are kept 7 years.",
    "citations": [{"policyId": 42, "title": "Data Retention Policy", "excerpt": "7 years"}],
    "suggestedActions": [
        {"type": "navigate", "label": "View Data Retention Policy", "url": "https://x/42"}
    ],
}


def test_fenced_json_block() -> None:
    """A ```json fenced reply yields exactly its payload."""
    raw = '```json {"message":"m","citations":[],"suggestedActions":[]} ```'
    result = extract(raw)

    assert result == ExtractedReply(message="m", citations=[], suggested_actions=[])
    assert result.model_dump(by_alias=True) == {
        "message": "m",
        "citations": [],
        "suggestedActions": [],
    }


def test_untagged_fence() -> None:
    raw = "Here you go:\n```\n" + json.dumps(STRUCTURED) + "\n```\nThanks"
    result = extract(raw)

    assert result.message == STRUCTURED["message"]
    assert result.citations[0].policy_id == 42
    assert result.suggested_actions[0].type == "navigate"


def test_inline_json_in_prose() -> None:
    raw = "Sure! " + json.dumps(STRUCTURED) + " Hope that helps."
    reply = parse_reply(raw)

    assert isinstance(reply, ParsedReply)
    assert reply.message == STRUCTURED["message"]
    assert len(reply.citations) == 1


def test_plain_prose_falls_back_to_raw_text() -> None:
    raw = "You can create a policy from the Policy Builder page."
    reply = parse_reply(raw)

    assert reply == RawReply(text=raw)
    assert extract(raw) == ExtractedReply(message=raw)


@pytest.mark.parametrize(
    "raw",
    [
        "",
        "{",
        "}{",
        "{not json at all}",
        "```json\n{\"message\": \"unterminated\n```",
        "[1, 2, 3]",
        "```json\n[\"a list\"]\n```",
        "```json\n42\n```",
        "{\"message\": " * 200,
        "[" * 100000 + "]" * 100000,
        "{" * 5000 + "}" * 5000,
    ],
)
def test_malformed_output_never_raises(raw: str) -> None:
    result = extract(raw)

    assert isinstance(result, ExtractedReply)
    assert result.message == raw
    assert result.citations == []
    assert result.suggested_actions == []


def test_fenced_but_invalid_falls_back_even_with_valid_braces_elsewhere() -> None:
    """The fenced block is the selected span; a bad one degrades to raw text."""
    raw = '```json\nnope\n``` {"message": "elsewhere"}'
    assert isinstance(parse_reply(raw), RawReply)


def test_non_list_citations_and_actions_become_empty() -> None:
    raw = json.dumps({"message": "m", "citations": "policy 42", "suggestedActions": {"a": 1}})
    result = extract(raw)

    assert result.citations == []
    assert result.suggested_actions == []


def test_missing_citations_and_actions_become_empty() -> None:
    result = extract('{"message": "only a message"}')
    assert result.message == "only a message"
    assert result.citations == []
    assert result.suggested_actions == []


def test_malformed_items_are_dropped() -> None:
    raw = json.dumps(
        {
            "message": "m",
            "citations": [
                {"policyId": 1, "title": "Good"},
                "not an object",
                {"title": "no id"},
            ],
            "suggestedActions": [
                {"type": "navigate", "label": "Go", "url": "https://x"},
                {"type": "delete-everything", "label": "Bad", "url": "https://x"},
            ],
        }
    )
    reply = parse_reply(raw)

    assert isinstance(reply, ParsedReply)
    assert [c.title for c in reply.citations] == ["Good"]
    assert reply.citations[0].excerpt == ""
    assert [a.label for a in reply.suggested_actions] == ["Go"]
    assert reply.dropped_items == 3


@pytest.mark.parametrize("message", [None, "", 17, ["a"]])
def test_unusable_message_uses_raw_text(message) -> None:
    raw = json.dumps({"message": message, "citations": []})
    assert extract(raw).message == raw


def test_find_json_span_prefers_fence() -> None:
    raw = '{"outer": 1} ```json {"inner": 2} ```'
    assert find_json_span(raw) == '{"inner": 2}'


def test_find_json_span_none_without_braces() -> None:
    assert find_json_span("no structure here") is None
