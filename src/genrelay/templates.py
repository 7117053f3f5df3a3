"""Prompt template integration: inject runtime data into prompt structures.

A prompt template is a JSON object with optional reserved keys (``system``,
``message``, ``prev``, ``model``, ``temperature``) plus arbitrary extra keys.
Any string leaf may contain ``${name}`` placeholders, resolved against a data
mapping:

- missing names leave the literal token in place (never an error);
- scalars are substituted as text (booleans render as ``true``/``false``,
  integral floats without a fractional part);
- objects and arrays have their own placeholders resolved first, then are
  serialized to compact JSON and substituted.

Reserved keys present in the data mapping replace the template's value
wholesale before substitution runs.
"""

from __future__ import annotations

from collections.abc import Mapping
import copy
import json
import re
from typing import Any

from genrelay.errors import ValidationError

RESERVED_KEYS: tuple[str, ...] = ("message", "prev", "model", "temperature", "system")

# Keys whose list values are joined into one prompt string.
_JOINED_KEYS = frozenset({"system", "message"})

_PLACEHOLDER_RE = re.compile(r"\$\{(\w+)\}")


def _js_number(value: float) -> float | int:
    # Integral floats below 1e21 print without a fractional part.
    if value.is_integer() and abs(value) < 1e21:
        return int(value)
    return value


def _js_value(value: Any) -> Any:
    if isinstance(value, float):
        return _js_number(value)
    if isinstance(value, list):
        return [_js_value(item) for item in value]
    if isinstance(value, Mapping):
        return {key: _js_value(item) for key, item in value.items()}
    return value


def _stringify(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        return str(_js_number(value))
    return str(value)


def _join_lines(value: Any) -> Any:
    if isinstance(value, list):
        return "\n".join(_stringify(v) for v in value)
    return value


class _Substituter:
    """Resolves placeholders in arbitrary JSON-shaped values against *data*."""

    def __init__(self, data: Mapping[str, Any]) -> None:
        self.data = data

    def resolve(self, value: Any) -> Any:
        if isinstance(value, str):
            return _PLACEHOLDER_RE.sub(self._replace, value)
        if isinstance(value, list):
            return [self.resolve(item) for item in value]
        if isinstance(value, Mapping):
            return {key: self.resolve(item) for key, item in value.items()}
        return value

    def _replace(self, match: re.Match[str]) -> str:
        replacement = self.data.get(match.group(1))
        if replacement is None:
            return match.group(0)
        if isinstance(replacement, (Mapping, list)):
            resolved = self.resolve(replacement)
            return json.dumps(
                _js_value(resolved), ensure_ascii=False, separators=(",", ":")
            )
        return _stringify(replacement)


def integrate_data_to_prompt_template(
    template: Mapping[str, Any], data: Mapping[str, Any] | None = None
) -> dict[str, Any]:
    """Return a copy of *template* with *data* injected.

    Raises:
        ValidationError: If *template* is not a mapping.
    """
    if not isinstance(template, Mapping):
        raise ValidationError(
            f"Prompt template must be an object, got {type(template).__name__}",
            hint="Pass a dict such as {'system': [...], 'message': '...'}.",
        )
    data = data or {}
    result: dict[str, Any] = copy.deepcopy(dict(template))

    for keyword in RESERVED_KEYS:
        if data.get(keyword) is not None:
            result[keyword] = copy.deepcopy(data[keyword])

    substituter = _Substituter(data)
    for key, value in result.items():
        if key in _JOINED_KEYS:
            value = _join_lines(value)
            result[key] = substituter.resolve(value) if isinstance(value, str) else value
        elif key == "prev":
            result[key] = (
                [_resolve_history_item(item, substituter) for item in value]
                if isinstance(value, list)
                else substituter.resolve(value)
            )
        elif key not in RESERVED_KEYS:
            result[key] = substituter.resolve(value)

    return result


def _resolve_history_item(item: Any, substituter: _Substituter) -> Any:
    if isinstance(item, Mapping) and item.get("content"):
        item = dict(item)
        item["content"] = _join_lines(item["content"])
    return substituter.resolve(item)


integrate = integrate_data_to_prompt_template
