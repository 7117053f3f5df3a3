"""Shared utilities for provider implementations."""

from __future__ import annotations

import asyncio
from copy import deepcopy
import json
import logging
from typing import TYPE_CHECKING, Any

from genrelay.errors import MalformedResponseError, ValidationError

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Iterable

log = logging.getLogger(__name__)

DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful assistant. Never explain what you do, "
    "just provide the requested response."
)
DEFAULT_TEMPERATURE = 0.7

# Anthropic-defined tools that only the native messages API understands.
NATIVE_TOOL_TYPES = frozenset(
    {"text_editor_20250429", "bash_20250124", "web_search_20250305"}
)


def to_strict_schema(schema: dict[str, Any], *, strict: bool = True) -> dict[str, Any]:
    """Apply the ``additionalProperties`` policy to the top-level object schema.

    An explicit ``additionalProperties`` in the schema always wins; otherwise
    strict mode forbids extra properties and non-strict mode allows them.
    """
    normalized = deepcopy(schema)
    if normalized.get("type") == "object" and "additionalProperties" not in normalized:
        normalized["additionalProperties"] = not strict
    return normalized


def to_google_schema(schema: dict[str, Any]) -> dict[str, Any]:
    """Convert a portable JSON schema into Gemini's response-schema dialect.

    Only ``type``, ``properties``, ``required``, ``items`` and ``description``
    survive; Gemini rejects most other JSON Schema keywords. Arrays without
    ``items`` default to string items.
    """
    schema_data = schema.get("parameters", schema)
    if not isinstance(schema_data, dict):
        raise ValidationError("response_schema parameters must be an object schema")

    def convert(node: dict[str, Any]) -> dict[str, Any]:
        node_type = node.get("type")
        if node_type == "object":
            result: dict[str, Any] = {
                "type": "object",
                "properties": {
                    key: convert(prop)
                    for key, prop in (node.get("properties") or {}).items()
                },
            }
            if node.get("required"):
                result["required"] = list(node["required"])
            return result
        if node_type == "array":
            items = node.get("items")
            return {
                "type": "array",
                "items": convert(items) if isinstance(items, dict) else {"type": "string"},
            }
        converted: dict[str, Any] = {"type": node_type}
        if node.get("description") is not None:
            converted["description"] = node["description"]
        return converted

    return convert(schema_data)


def parse_json_output(text: str) -> Any:
    """Parse model output produced in JSON mode.

    Raises:
        MalformedResponseError: If *text* is not valid JSON.
    """
    try:
        return json.loads(text)
    except (TypeError, ValueError) as e:
        raise MalformedResponseError("Model output is not valid JSON", raw=text) from e


def json_or_text(text: str, *, provider: str) -> Any:
    """Best-effort JSON parse; falls back to the raw text on failure."""
    try:
        return parse_json_output(text)
    except MalformedResponseError as e:
        log.debug("%s: JSON mode output did not parse, returning raw text", provider)
        return e.raw


def is_native_tool(tool: dict[str, Any]) -> bool:
    """Whether *tool* is a backend built-in rather than a custom function."""
    tool_type = tool.get("type")
    if not isinstance(tool_type, str) or tool_type == "function":
        return False
    return "_" in tool_type or tool_type in NATIVE_TOOL_TYPES


def function_declarations(tools: Iterable[dict[str, Any]]) -> list[dict[str, Any]]:
    """Collect custom function tools as ``{name, description, parameters}`` dicts.

    Accepts both ``{"functionDeclarations": [...]}`` groups and flat
    ``{"type": "function", "name": ..., "input_schema": ...}`` tools.
    """
    declarations: list[dict[str, Any]] = []
    for tool in tools:
        if tool.get("type") == "function" and "name" in tool:
            declarations.append(
                {
                    "name": tool["name"],
                    "description": tool.get("description", ""),
                    "parameters": tool.get("input_schema")
                    or tool.get("parameters")
                    or {"type": "object", "properties": {}},
                }
            )
        for func in tool.get("functionDeclarations") or ():
            declarations.append(
                {
                    "name": func["name"],
                    "description": func.get("description", ""),
                    "parameters": func.get("parameters")
                    or {"type": "object", "properties": {}},
                }
            )
    return declarations


async def iterate_in_thread(iterable: Iterable[Any]) -> AsyncIterator[Any]:
    """Drive a blocking iterator from a worker thread, one item at a time.

    Releasing the underlying network stream is the caller's job; pass its
    close handle to ``GenerationStream``.
    """
    iterator = iter(iterable)
    sentinel = object()
    while True:
        item = await asyncio.to_thread(next, iterator, sentinel)
        if item is sentinel:
            return
        yield item
