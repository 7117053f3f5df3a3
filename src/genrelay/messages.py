"""Message normalization: map loose role names onto the three canonical roles."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
import logging
from typing import Any, Literal

log = logging.getLogger(__name__)

Role = Literal["user", "assistant", "system"]

ROLE_SYNONYMS: dict[str, Role] = {
    "user": "user",
    "human": "user",
    "person": "user",
    "assistant": "assistant",
    "ai": "assistant",
    "agent": "assistant",
    "robot": "assistant",
    "system": "system",
    "core": "system",
    "base": "system",
}


@dataclass(frozen=True)
class Message:
    """A canonical conversational turn.

    ``content`` is normally text; image requests carry a list of content
    blocks instead.
    """

    role: Role
    content: str | list[dict[str, Any]]

    def to_dict(self) -> dict[str, Any]:
        return {"role": self.role, "content": self.content}


def canonical_role(role: Any) -> Role | None:
    """Return the canonical role for *role*, or None when it matches no group."""
    if not isinstance(role, str):
        return None
    return ROLE_SYNONYMS.get(role)


def normalize_messages(messages: Iterable[Any] | None) -> list[Message]:
    """Convert ``{role, content}`` records into canonical messages.

    Lenient filter: non-object entries, empty content, and unknown roles are
    dropped rather than rejected. Surviving entries keep their order.
    """
    normalized: list[Message] = []
    for idx, item in enumerate(messages or ()):
        if isinstance(item, Message):
            normalized.append(item)
            continue
        if not isinstance(item, Mapping):
            log.debug("Dropping message %d: not an object", idx)
            continue
        content = item.get("content")
        if not content:
            log.debug("Dropping message %d: empty content", idx)
            continue
        role = canonical_role(item.get("role"))
        if role is None:
            log.debug("Dropping message %d: unknown role %r", idx, item.get("role"))
            continue
        normalized.append(Message(role=role, content=content))
    return normalized
