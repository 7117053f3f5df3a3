"""Provider protocol: the uniform capability set every adapter exposes."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from genrelay.errors import UnsupportedOperationError

if TYPE_CHECKING:
    from pathlib import Path

    from genrelay.providers.models import (
        Embedding,
        EmbeddingRequest,
        GenerateRequest,
        ImageRequest,
        LLMRequest,
        SpeechRequest,
    )
    from genrelay.streaming import GenerationStream

OPERATIONS: tuple[str, ...] = (
    "generate",
    "generate_with_image",
    "embed",
    "raw_llm_call",
    "text_to_speech",
)


@dataclass(frozen=True)
class ProviderCapabilities:
    """Operations a provider implements.

    ``generate`` and ``embed`` are universal; the rest vary by backend.
    """

    generate: bool = True
    generate_with_image: bool = False
    embed: bool = True
    raw_llm_call: bool = False
    text_to_speech: bool = False
    #: Built-in tool tags understood natively (e.g. ``google_search``).
    builtin_tools: tuple[str, ...] = ()

    def supports(self, operation: str) -> bool:
        return bool(getattr(self, operation, False))

    def operations(self) -> list[str]:
        return [op for op in OPERATIONS if self.supports(op)]


@runtime_checkable
class Provider(Protocol):
    """Uniform adapter interface over one generative backend."""

    name: str

    async def generate(self, request: GenerateRequest) -> Any | GenerationStream:
        """Generate text, a JSON value, a tool-use result, or a stream."""
        ...

    async def generate_with_image(self, request: ImageRequest) -> Any:
        """Generate text about an attached image."""
        ...

    async def embed(self, request: EmbeddingRequest) -> Embedding:
        """Embed one string or a list of strings."""
        ...

    async def raw_llm_call(self, request: LLMRequest) -> str:
        """Run a bare text-completion call."""
        ...

    async def text_to_speech(self, request: SpeechRequest) -> Path:
        """Synthesize speech and return the written audio file."""
        ...

    @property
    def capabilities(self) -> ProviderCapabilities:
        """Operations this provider implements."""
        ...

    async def aclose(self) -> None:
        """Release SDK client resources."""
        ...


class UnsupportedOperationsMixin:
    """Default implementations that reject operations a backend lacks."""

    name: str = "provider"

    def _unsupported(self, operation: str) -> UnsupportedOperationError:
        return UnsupportedOperationError(
            self.name,
            operation,
            hint="Call genrelay.list_providers() to see supported operations.",
        )

    async def generate_with_image(self, request: ImageRequest) -> Any:
        raise self._unsupported("generate_with_image")

    async def raw_llm_call(self, request: LLMRequest) -> str:
        raise self._unsupported("raw_llm_call")

    async def text_to_speech(self, request: SpeechRequest) -> Path:
        raise self._unsupported("text_to_speech")
