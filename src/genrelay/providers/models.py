"""Domain models for the provider transport layer."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, fields
from typing import Any, TypedDict

from pydantic import BaseModel

from genrelay.errors import APIError, ValidationError

ResponseSchemaInput = type[BaseModel] | dict[str, Any]


@dataclass(frozen=True)
class GenerateRequest:
    """A unified request payload for text generation.

    Unset fields fall back to per-provider defaults (model, system prompt,
    temperature).
    """

    message: str
    model: str | None = None
    system: str | None = None
    #: Prior turns as ``{role, content}`` records; roles are normalized.
    history: list[Any] = field(default_factory=list)
    temperature: float | None = None
    max_tokens: int | None = None
    json_mode: bool = False
    #: JSON schema dict, optionally wrapped as ``{name, description, strict,
    #: parameters}``, or a Pydantic model class.
    response_schema: ResponseSchemaInput | None = None
    stream: bool = False
    tools: list[dict[str, Any]] | None = None
    #: Bedrock only; overrides AWS_REGION.
    region: str | None = None
    #: Return the native request instead of calling the backend.
    check_payload: bool = False

    def __post_init__(self) -> None:
        """Validate argument shapes early for clear errors."""
        if not isinstance(self.message, str):
            raise ValidationError(
                "message is required and must be a string",
                hint="Pass GenerateRequest(message='...').",
            )
        if self.history is None:
            object.__setattr__(self, "history", [])
        elif not isinstance(self.history, list):
            raise ValidationError(
                "history must be a list of role/content messages",
                hint="Pass history=[{'role': 'user', 'content': '...'}].",
            )
        if self.max_tokens is not None and (
            not isinstance(self.max_tokens, int) or self.max_tokens <= 0
        ):
            raise ValidationError("max_tokens must be a positive integer")
        if self.tools is not None:
            if not isinstance(self.tools, list) or not all(
                isinstance(t, dict) for t in self.tools
            ):
                raise ValidationError(
                    "tools must be a list of tool objects",
                    hint="Example: tools=[{'google_search': {}}].",
                )
        schema = self.response_schema
        if schema is not None and not (
            isinstance(schema, dict)
            or (isinstance(schema, type) and issubclass(schema, BaseModel))
        ):
            raise ValidationError(
                "response_schema must be a Pydantic model class or JSON schema dict",
                hint="Pass a BaseModel subclass or a dict following JSON Schema.",
            )

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any], **overrides: Any) -> GenerateRequest:
        """Build a request from an integrated prompt template.

        ``prev`` is accepted as the history key; keys that are not request
        fields are ignored.
        """
        names = {f.name for f in fields(cls)}
        values = {key: value for key, value in data.items() if key in names}
        if "history" not in values and data.get("prev") is not None:
            values["history"] = data["prev"]
        values.update(overrides)
        if "message" not in values:
            raise ValidationError(
                "message is required and must be a string",
                hint="Add a 'message' key to the template or pass message=...",
            )
        return cls(**values)

    @property
    def has_tools(self) -> bool:
        return bool(self.tools)

    def schema_envelope(self) -> dict[str, Any] | None:
        """Return the response schema as a ``{name, description, strict, parameters}`` dict."""
        schema = self.response_schema
        if schema is None:
            return None
        if isinstance(schema, type):
            return {
                "name": schema.__name__,
                "description": (schema.__doc__ or "").strip() or None,
                "parameters": schema.model_json_schema(),
            }
        if "parameters" in schema and isinstance(schema["parameters"], dict):
            return dict(schema)
        return {
            "name": schema.get("title"),
            "description": schema.get("description"),
            "parameters": schema,
        }


@dataclass(frozen=True)
class ImageRequest(GenerateRequest):
    """A generation request with one attached image file."""

    image_path: str = ""

    def __post_init__(self) -> None:
        super().__post_init__()
        if not self.image_path:
            raise ValidationError(
                "image_path is required for image generation",
                hint="Pass ImageRequest(message='...', image_path='photo.jpg').",
            )


@dataclass(frozen=True)
class EmbeddingRequest:
    """Text to embed: one string or a list of strings."""

    text: str | list[str]
    model: str | None = None

    def __post_init__(self) -> None:
        texts = self.text if isinstance(self.text, list) else [self.text]
        if not texts or not all(isinstance(t, str) and t.strip() for t in texts):
            raise ValidationError(
                "Embedding text must be a non-empty string or list of non-empty strings"
            )

    @property
    def is_batch(self) -> bool:
        return isinstance(self.text, list)

    @property
    def texts(self) -> list[str]:
        return list(self.text) if isinstance(self.text, list) else [self.text]


@dataclass(frozen=True)
class LLMRequest:
    """A raw, single-prompt completion request."""

    input: str
    model: str | None = None
    system: str | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.input, str) or not self.input.strip():
            raise ValidationError("input is required for raw LLM calls")


@dataclass(frozen=True)
class SpeechRequest:
    """Text-to-speech synthesis parameters."""

    text: str
    output_path: str | None = None
    language: str | None = None
    output_format: str | None = None
    voice: str | None = None
    engine: str | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.text, str) or not self.text.strip():
            raise ValidationError("text is required for speech synthesis")


@dataclass(frozen=True)
class SingleEmbedding:
    """Embedding of a single input string."""

    vector: list[float]

    @property
    def value(self) -> list[float]:
        return self.vector


@dataclass(frozen=True)
class BatchEmbedding:
    """Embeddings for a list of input strings, in input order."""

    vectors: list[list[float]]

    @property
    def value(self) -> list[list[float]]:
        return self.vectors

    def __len__(self) -> int:
        return len(self.vectors)


Embedding = SingleEmbedding | BatchEmbedding


def embedding_for(request: EmbeddingRequest, vectors: list[list[float]]) -> Embedding:
    """Shape *vectors* by the request's input cardinality, never by output shape."""
    if len(vectors) != len(request.texts):
        raise APIError(
            f"Expected {len(request.texts)} embeddings, provider returned {len(vectors)}",
            phase="embed",
        )
    if request.is_batch:
        return BatchEmbedding(vectors=[list(v) for v in vectors])
    return SingleEmbedding(vector=list(vectors[0]))


class ToolCallRecord(TypedDict, total=False):
    """One tool invocation in a raw tool-augmented result."""

    type: str
    name: str
    id: str | None
    args: Any
    input: Any


class ToolUseResult(TypedDict, total=False):
    """Raw tool-augmented result returned by adapters when tools were invoked."""

    content: str
    toolCalls: list[ToolCallRecord]
    metadata: dict[str, Any]
