import json

import pytest

from svitlogics.errors import MalformedResponse
from svitlogics.llm_parsing import (
    block_reason,
    extract_candidate_text,
    parse_analysis_response,
    upstream_error_message,
    upstream_error_status,
)
from svitlogics.models_config import ModelDescriptor

MODEL = ModelDescriptor(
    id="gemini-2.0-flash",
    display_name="Gemini 2.0 Flash",
    tokens_per_minute=1_000_000,
    requests_per_minute=15,
    max_output_tokens=8192,
    priority=3,
)

PAYLOAD = {"analysis_results": [], "overall_summary": "ok"}


def test_plain_json():
    out = parse_analysis_response(json.dumps(PAYLOAD), MODEL)
    assert out["overall_summary"] == "ok"
    assert out["usedModelName"] == "Gemini 2.0 Flash"


def test_fenced_json():
    raw = "```json\n" + json.dumps(PAYLOAD) + "\n```"
    assert parse_analysis_response(raw, MODEL)["overall_summary"] == "ok"


def test_fence_with_prose_around_it():
    raw = "Here is the analysis:\n```JSON\n" + json.dumps(PAYLOAD, indent=2) + "\n```\nHope it helps."
    assert parse_analysis_response(raw, MODEL)["usedModelName"] == "Gemini 2.0 Flash"


def test_first_fence_wins():
    raw = "```json\n{\"n\": 1}\n```\n```json\n{\"n\": 2}\n```"
    assert parse_analysis_response(raw, MODEL)["n"] == 1


@pytest.mark.parametrize(
    "raw",
    [
        "I'm sorry, I can't do that.",
        "```json\n{broken\n```",
        "```\n{\"n\": 1}\n```",
        "",
    ],
)
def test_malformed_output(raw):
    with pytest.raises(MalformedResponse):
        parse_analysis_response(raw, MODEL)


def test_non_object_rejected():
    with pytest.raises(MalformedResponse):
        parse_analysis_response("[1, 2, 3]", MODEL)


def test_missing_business_fields_pass_through():
    out = parse_analysis_response('{"overall_summary": "partial"}', MODEL)
    assert out == {"overall_summary": "partial", "usedModelName": "Gemini 2.0 Flash"}


def test_model_name_overrides_any_value_from_model():
    out = parse_analysis_response('{"usedModelName": "fake"}', MODEL)
    assert out["usedModelName"] == "Gemini 2.0 Flash"


def test_extract_candidate_text():
    data = {"candidates": [{"content": {"parts": [{"text": "hi"}]}}]}
    assert extract_candidate_text(data) == "hi"
    assert extract_candidate_text({"candidates": []}) is None
    assert extract_candidate_text({"candidates": [{"content": {"parts": [{"text": "  "}]}}]}) is None
    assert extract_candidate_text(None) is None


def test_block_reason():
    assert block_reason({"promptFeedback": {"blockReason": "SAFETY"}}) == "SAFETY"
    assert block_reason({"candidates": [{"finishReason": "RECITATION"}]}) == "RECITATION"
    assert block_reason({}) == "No content returned from API"


def test_upstream_error_helpers():
    body = json.dumps({"error": {"code": 429, "message": "slow down", "status": "RESOURCE_EXHAUSTED"}})
    assert upstream_error_message(429, body) == "slow down"
    assert upstream_error_status(body) == "RESOURCE_EXHAUSTED"
    assert upstream_error_message(500, "") == "API request failed with status 500"
    assert upstream_error_message(500, "x" * 1000) == "x" * 400
    assert upstream_error_status("not json") is None
