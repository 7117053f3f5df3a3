"""Canonical response normalization for tool-augmented generations.

Adapters return tool-augmented results in whatever shape their backend
produces. ``format_tool_response`` looks up each field through an ordered
table of known locations and emits one canonical dict. The tables are data,
not code: when a backend adds a new location, add a path and bump
``EXTRACTORS_VERSION``.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, TypedDict

#: Bumped whenever an extractor table changes.
EXTRACTORS_VERSION = 2

KeyPath = tuple[str, ...]

CONTENT_PATHS: tuple[KeyPath, ...] = (
    ("content",),
    ("kwargs", "content"),
)

GROUNDING_PATHS: tuple[KeyPath, ...] = (
    ("additional_kwargs", "groundingMetadata"),
    ("kwargs", "additional_kwargs", "groundingMetadata"),
    ("response_metadata", "groundingMetadata"),
)

TOOL_CALL_PATHS: tuple[KeyPath, ...] = (
    ("toolCalls",),
    ("tool_calls",),
)

USAGE_PATHS: tuple[KeyPath, ...] = (
    ("usage_metadata",),
    ("kwargs", "usage_metadata"),
    ("response_metadata", "tokenUsage"),
    ("metadata", "usage"),
)

FINISH_REASON_PATHS: tuple[KeyPath, ...] = (
    ("additional_kwargs", "finishReason"),
    ("kwargs", "additional_kwargs", "finishReason"),
    ("response_metadata", "finishReason"),
    ("metadata", "finishReason"),
)

CANDIDATE_PATHS: tuple[KeyPath, ...] = (
    ("candidates",),
    ("kwargs", "candidates"),
    ("additional_kwargs", "candidates"),
)

# Field aliases inside a usage record, first truthy wins.
_INPUT_TOKEN_KEYS = ("input_tokens", "promptTokens", "inputTokens", "prompt_tokens")
_OUTPUT_TOKEN_KEYS = (
    "output_tokens",
    "completionTokens",
    "outputTokens",
    "completion_tokens",
)
_TOTAL_TOKEN_KEYS = ("total_tokens", "totalTokens")

DEFAULT_FINISH_REASON = "STOP"


class Usage(TypedDict):
    inputTokens: int
    outputTokens: int
    totalTokens: int


class ResponseMetadata(TypedDict):
    finishReason: str
    usage: Usage


class CanonicalResponse(TypedDict, total=False):
    """Normalized tool-augmented generation result."""

    content: Any
    metadata: ResponseMetadata
    groundingMetadata: dict[str, Any]
    toolCalls: list[dict[str, Any]]
    codeExecution: list[dict[str, Any]]


def _get_path(raw: Mapping[str, Any], path: KeyPath) -> Any:
    node: Any = raw
    for key in path:
        if not isinstance(node, Mapping):
            return None
        node = node.get(key)
    return node


def is_set(value: Any) -> bool:
    """Whether *value* counts as present: containers always do, even when empty."""
    if isinstance(value, (Mapping, list)):
        return True
    return bool(value)


def first_present(raw: Mapping[str, Any], paths: tuple[KeyPath, ...]) -> Any:
    """Return the first set value found along *paths*, else None."""
    for path in paths:
        value = _get_path(raw, path)
        if is_set(value):
            return value
    return None


def _first_key(record: Mapping[str, Any], keys: tuple[str, ...]) -> int:
    for key in keys:
        value = record.get(key)
        if value:
            return int(value)
    return 0


def _usage(raw: Mapping[str, Any]) -> Usage:
    record = first_present(raw, USAGE_PATHS)
    if not isinstance(record, Mapping):
        record = {}
    return {
        "inputTokens": _first_key(record, _INPUT_TOKEN_KEYS),
        "outputTokens": _first_key(record, _OUTPUT_TOKEN_KEYS),
        "totalTokens": _first_key(record, _TOTAL_TOKEN_KEYS),
    }


def _grounding(metadata: Mapping[str, Any]) -> dict[str, Any]:
    entry_point = metadata.get("searchEntryPoint")
    return {
        "webSearchQueries": metadata.get("webSearchQueries") or [],
        "searchEntryPoint": entry_point if is_set(entry_point) else None,
        "groundingChunks": metadata.get("groundingChunks") or [],
        "groundingSupports": metadata.get("groundingSupports") or [],
    }


def _tool_call(call: Mapping[str, Any]) -> dict[str, Any]:
    args = call.get("args")
    return {
        "type": call.get("type"),
        "name": call.get("name"),
        "id": call.get("id"),
        "args": args if is_set(args) else call.get("input"),
    }


def _part_field(part: Mapping[str, Any], snake: str, camel: str) -> Any:
    value = part.get(snake)
    return value if value is not None else part.get(camel)


def code_execution_parts(raw: Mapping[str, Any]) -> list[dict[str, Any]]:
    """Collect executable-code and execution-result parts from all candidates."""
    candidates = first_present(raw, CANDIDATE_PATHS) or []
    parts_out: list[dict[str, Any]] = []
    for candidate in candidates:
        if not isinstance(candidate, Mapping):
            continue
        parts = _get_path(candidate, ("content", "parts")) or []
        for part in parts:
            if not isinstance(part, Mapping):
                continue
            code = _part_field(part, "executable_code", "executableCode")
            result = _part_field(part, "code_execution_result", "codeExecutionResult")
            if not code and not result:
                continue
            entry: dict[str, Any] = {}
            if code:
                entry["executable_code"] = {
                    "language": code.get("language") or "PYTHON",
                    "code": code.get("code") or "",
                }
            if result:
                entry["code_execution_result"] = {
                    "outcome": result.get("outcome") or "OUTCOME_UNKNOWN",
                    "output": result.get("output") or "",
                }
            if part.get("text"):
                entry["text"] = part["text"]
            parts_out.append(entry)
    return parts_out


def format_tool_response(raw: Any) -> CanonicalResponse:
    """Normalize a raw tool-augmented result into the canonical shape.

    Pure and total over mappings: missing usage fields default to 0 and a
    missing finish reason defaults to ``"STOP"``. A bare string is treated
    as its own content.
    """
    if isinstance(raw, str):
        raw = {"content": raw}
    elif not isinstance(raw, Mapping):
        raw = {}

    content = first_present(raw, CONTENT_PATHS)
    response: CanonicalResponse = {
        "content": content if content is not None else "",
        "metadata": {
            "finishReason": first_present(raw, FINISH_REASON_PATHS)
            or DEFAULT_FINISH_REASON,
            "usage": _usage(raw),
        },
    }

    grounding = first_present(raw, GROUNDING_PATHS)
    if isinstance(grounding, Mapping):
        response["groundingMetadata"] = _grounding(grounding)

    calls = first_present(raw, TOOL_CALL_PATHS)
    if calls:
        response["toolCalls"] = [_tool_call(c) for c in calls if isinstance(c, Mapping)]

    code_parts = code_execution_parts(raw)
    if code_parts:
        response["codeExecution"] = code_parts

    return response
