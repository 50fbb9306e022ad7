from __future__ import annotations

import json

import pytest

from app.agents.extractor import ResponseExtractor, strip_fences

RECORD = {
    "feedback_text": "Airline food jokes still work on a red-eye crowd.",
    "relatability": "High",
    "laugh_potential": "Medium",
    "crowd_energy": "Warm",
}


@pytest.fixture
def extractor():
    return ResponseExtractor(("feedback_text", "relatability", "laugh_potential", "crowd_energy"))


def test_direct_mapping_is_returned_as_is(extractor):
    record = extractor.extract(dict(RECORD))

    assert record == RECORD
    assert extractor.last_strategy == "direct"


def test_record_nested_under_output_key(extractor):
    record = extractor.extract({"output": dict(RECORD)})

    assert record["feedback_text"] == RECORD["feedback_text"]
    assert extractor.last_strategy == "direct"


def test_fenced_json_inside_message(extractor):
    payload = {"message": "```json\n" + json.dumps(RECORD) + "\n```"}

    record = extractor.extract(payload)

    assert record == RECORD
    assert extractor.last_strategy == "fenced"


def test_json_embedded_in_prose(extractor):
    payload = {"response": {"message": "Sure! Here you go: " + json.dumps(RECORD) + " Hope it helps."}}

    record = extractor.extract(payload)

    assert record == RECORD
    assert extractor.last_strategy == "braces"


def test_record_inside_tool_call_step(extractor):
    payload = {
        "steps": [
            {"type": "reasoning", "reasoning": "thinking about the crowd"},
            {"type": "tool_call", "params": {"data": json.dumps(RECORD)}},
        ]
    }

    record = extractor.extract(payload)

    assert record == RECORD
    assert extractor.last_strategy == "steps"


def test_record_inside_message_creation_step(extractor):
    payload = {
        "response": {
            "steps": [
                {"type": "message_creation", "content": "```\n" + json.dumps(RECORD) + "\n```"},
            ]
        }
    }

    assert extractor.extract(payload) == RECORD


def test_string_wrapping_fenced_string(extractor):
    inner = "```json\n" + json.dumps(RECORD) + "\n```"
    payload = {"output": json.dumps({"message": inner})}

    assert extractor.extract(payload) == RECORD


def test_serialized_fallback_handles_list_payload(extractor):
    payload = [dict(RECORD)]

    record = extractor.extract(payload)

    assert record == RECORD
    assert extractor.last_strategy == "serialized"


@pytest.mark.parametrize(
    "payload",
    [
        "the agent had nothing to say",
        {"output": "no json here"},
        {"output": "{not valid json"},
        {"output": json.dumps({"unrelated": "field"})},
        {"steps": "not a list"},
        None,
        42,
    ],
)
def test_garbage_yields_none(extractor, payload):
    assert extractor.extract(payload) is None
    assert extractor.last_strategy is None


def test_blank_required_fields_are_not_valid(extractor):
    assert not extractor.is_valid({"feedback_text": "   ", "relatability": None})
    assert extractor.is_valid({"feedback_text": "", "crowd_energy": "Hot"})


def test_extraction_is_deterministic(extractor):
    payload = {"message": "prefix " + json.dumps(RECORD)}

    assert extractor.extract_with_strategy(payload) == extractor.extract_with_strategy(payload)


def test_strip_fences():
    assert strip_fences('```json\n{"a": 1}\n```') == '{"a": 1}'
    assert strip_fences('{"a": 1}') == '{"a": 1}'


def test_required_fields_cannot_be_empty():
    with pytest.raises(ValueError):
        ResponseExtractor(())
