"""Canonical tool-response normalization tests."""

from __future__ import annotations

from hypothesis import given, settings
from hypothesis import strategies as st
import pytest

from genrelay.normalize import EXTRACTORS_VERSION, format_tool_response

pytestmark = pytest.mark.unit

_ZERO_USAGE = {"inputTokens": 0, "outputTokens": 0, "totalTokens": 0}


def test_extractors_version_is_an_int() -> None:
    assert isinstance(EXTRACTORS_VERSION, int)


# =============================================================================
# Defaults
# =============================================================================


def test_minimal_result_gets_default_metadata() -> None:
    assert format_tool_response({"content": "hi"}) == {
        "content": "hi",
        "metadata": {"finishReason": "STOP", "usage": _ZERO_USAGE},
    }


def test_bare_string_is_its_own_content() -> None:
    assert format_tool_response("plain")["content"] == "plain"


def test_block_list_content_is_kept() -> None:
    blocks = [{"type": "text", "text": "hi"}]

    assert format_tool_response({"content": blocks})["content"] == blocks


def test_content_falls_back_to_kwargs() -> None:
    assert format_tool_response({"kwargs": {"content": "nested"}})["content"] == "nested"


@given(
    raw=st.dictionaries(
        st.sampled_from(["content", "id", "extra", "note"]),
        st.text(max_size=8),
        max_size=4,
    )
)
@settings(max_examples=10, deadline=None, derandomize=True)
def test_results_without_usage_default_to_zero_and_stop(raw: dict[str, str]) -> None:
    response = format_tool_response(raw)

    assert response["metadata"] == {"finishReason": "STOP", "usage": _ZERO_USAGE}


# =============================================================================
# Usage and finish reason
# =============================================================================


def test_usage_from_metadata_usage_snake_case() -> None:
    raw = {
        "content": "",
        "metadata": {
            "finishReason": "TOOL_USE",
            "usage": {"input_tokens": 12, "output_tokens": 5, "total_tokens": 17},
        },
    }

    metadata = format_tool_response(raw)["metadata"]

    assert metadata == {
        "finishReason": "TOOL_USE",
        "usage": {"inputTokens": 12, "outputTokens": 5, "totalTokens": 17},
    }


def test_usage_from_token_usage_camel_case() -> None:
    raw = {
        "response_metadata": {
            "tokenUsage": {"promptTokens": 3, "completionTokens": 4, "totalTokens": 7}
        }
    }

    assert format_tool_response(raw)["metadata"]["usage"] == {
        "inputTokens": 3,
        "outputTokens": 4,
        "totalTokens": 7,
    }


def test_usage_metadata_takes_precedence_over_metadata_usage() -> None:
    raw = {
        "usage_metadata": {"input_tokens": 1, "output_tokens": 2, "total_tokens": 3},
        "metadata": {"usage": {"input_tokens": 9, "output_tokens": 9, "total_tokens": 18}},
    }

    assert format_tool_response(raw)["metadata"]["usage"]["inputTokens"] == 1


def test_missing_total_stays_zero() -> None:
    raw = {"usage_metadata": {"input_tokens": 4, "output_tokens": 6}}

    assert format_tool_response(raw)["metadata"]["usage"]["totalTokens"] == 0


def test_finish_reason_location_order() -> None:
    raw = {
        "response_metadata": {"finishReason": "MAX_TOKENS"},
        "metadata": {"finishReason": "TOOL_USE"},
    }

    assert format_tool_response(raw)["metadata"]["finishReason"] == "MAX_TOKENS"


# =============================================================================
# Tool calls
# =============================================================================


def test_tool_call_accepts_input_as_args() -> None:
    raw = {"toolCalls": [{"type": "tool_use", "name": "f", "id": "1", "input": {"x": 1}}]}

    assert format_tool_response(raw)["toolCalls"] == [
        {"type": "tool_use", "name": "f", "id": "1", "args": {"x": 1}}
    ]


def test_tool_call_prefers_args_over_input() -> None:
    raw = {"toolCalls": [{"type": "function", "name": "f", "args": {"a": 1}, "input": {}}]}

    assert format_tool_response(raw)["toolCalls"][0]["args"] == {"a": 1}


def test_snake_case_tool_calls_are_recognized() -> None:
    raw = {"tool_calls": [{"type": "function", "name": "g", "id": None, "args": {}}]}

    assert format_tool_response(raw)["toolCalls"][0]["name"] == "g"


def test_zero_argument_tool_call_keeps_empty_args() -> None:
    call = {"type": "function", "name": "now", "id": "1", "args": {}}
    raw = {"content": "", "toolCalls": [call]}

    assert format_tool_response(raw)["toolCalls"] == [
        {"type": "function", "name": "now", "id": "1", "args": {}}
    ]


def test_empty_tool_calls_are_omitted() -> None:
    assert "toolCalls" not in format_tool_response({"content": "x", "toolCalls": []})


# =============================================================================
# Grounding and code execution
# =============================================================================


def test_grounding_metadata_is_filled_with_defaults() -> None:
    raw = {
        "content": "answer",
        "response_metadata": {
            "groundingMetadata": {"webSearchQueries": ["weather paris"]},
        },
    }

    assert format_tool_response(raw)["groundingMetadata"] == {
        "webSearchQueries": ["weather paris"],
        "searchEntryPoint": None,
        "groundingChunks": [],
        "groundingSupports": [],
    }


def test_empty_grounding_metadata_is_kept_with_defaults() -> None:
    raw = {"content": "answer", "response_metadata": {"groundingMetadata": {}}}

    assert format_tool_response(raw)["groundingMetadata"] == {
        "webSearchQueries": [],
        "searchEntryPoint": None,
        "groundingChunks": [],
        "groundingSupports": [],
    }


def test_empty_grounding_metadata_shadows_later_locations() -> None:
    raw = {
        "additional_kwargs": {"groundingMetadata": {"searchEntryPoint": {}}},
        "response_metadata": {"groundingMetadata": {"webSearchQueries": ["later"]}},
    }

    assert format_tool_response(raw)["groundingMetadata"] == {
        "webSearchQueries": [],
        "searchEntryPoint": {},
        "groundingChunks": [],
        "groundingSupports": [],
    }


def test_grounding_from_additional_kwargs_wins() -> None:
    raw = {
        "additional_kwargs": {"groundingMetadata": {"groundingChunks": [{"web": {}}]}},
        "response_metadata": {"groundingMetadata": {"webSearchQueries": ["q"]}},
    }

    grounding = format_tool_response(raw)["groundingMetadata"]

    assert grounding["groundingChunks"] == [{"web": {}}]
    assert grounding["webSearchQueries"] == []


def test_code_execution_parts_from_snake_case_candidates() -> None:
    raw = {
        "candidates": [
            {
                "content": {
                    "parts": [
                        {"text": "intro"},
                        {"executable_code": {"code": "print(1)"}},
                        {"code_execution_result": {"output": "1\n"}},
                    ]
                }
            }
        ]
    }

    assert format_tool_response(raw)["codeExecution"] == [
        {"executable_code": {"language": "PYTHON", "code": "print(1)"}},
        {"code_execution_result": {"outcome": "OUTCOME_UNKNOWN", "output": "1\n"}},
    ]


def test_code_execution_parts_from_camel_case_candidates() -> None:
    raw = {
        "kwargs": {
            "candidates": [
                {
                    "content": {
                        "parts": [
                            {
                                "executableCode": {"language": "PYTHON", "code": "x"},
                                "text": "note",
                            },
                            {"codeExecutionResult": {"outcome": "OUTCOME_OK", "output": ""}},
                        ]
                    }
                }
            ]
        }
    }

    assert format_tool_response(raw)["codeExecution"] == [
        {"executable_code": {"language": "PYTHON", "code": "x"}, "text": "note"},
        {"code_execution_result": {"outcome": "OUTCOME_OK", "output": ""}},
    ]


def test_no_code_execution_key_without_code_parts() -> None:
    raw = {"candidates": [{"content": {"parts": [{"text": "only text"}]}}]}

    assert "codeExecution" not in format_tool_response(raw)
