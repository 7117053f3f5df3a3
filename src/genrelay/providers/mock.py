"""Mock provider for testing."""

from __future__ import annotations

import asyncio
from pathlib import Path
import time
from typing import TYPE_CHECKING, Any

from genrelay.providers.base import ProviderCapabilities, UnsupportedOperationsMixin
from genrelay.providers.models import embedding_for
from genrelay.streaming import GenerationStream

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from genrelay.providers.models import (
        Embedding,
        EmbeddingRequest,
        GenerateRequest,
        ImageRequest,
        LLMRequest,
        SpeechRequest,
    )

_MOCK_USAGE = {"input_tokens": 10, "output_tokens": 10, "total_tokens": 20}


class MockProvider(UnsupportedOperationsMixin):
    """Mock provider for testing without API calls.

    Mirrors the capability set of the provider it stands in for, so
    unsupported operations still fail the same way, but returns synthetic
    responses.
    """

    def __init__(self, name: str, capabilities: ProviderCapabilities) -> None:
        self.name = name
        self._capabilities = capabilities
        self.calls: list[tuple[str, Any]] = []

    @property
    def capabilities(self) -> ProviderCapabilities:
        """Return the mirrored capability set."""
        return self._capabilities

    async def generate(self, request: GenerateRequest) -> Any:
        """Return a deterministic echo of the request message."""
        self.calls.append(("generate", request))
        text = f"echo: {request.message[:100]}"
        if request.check_payload:
            return {"model": request.model, "message": request.message}
        if request.stream:
            return GenerationStream(
                _word_chunks(text), provider=self.name, text_of=lambda c: c["text"]
            )
        if request.json_mode or request.response_schema is not None:
            return {"response": text}
        if request.tools:
            return {
                "content": text,
                "metadata": {"finishReason": "STOP", "usage": dict(_MOCK_USAGE)},
            }
        return text

    async def generate_with_image(self, request: ImageRequest) -> Any:
        if not self._capabilities.generate_with_image:
            raise self._unsupported("generate_with_image")
        self.calls.append(("generate_with_image", request))
        return f"echo: {request.message[:100]} [image: {Path(request.image_path).name}]"

    async def embed(self, request: EmbeddingRequest) -> Embedding:
        """Return small deterministic vectors derived from each text."""
        self.calls.append(("embed", request))
        vectors = [
            [float(len(text)), float(sum(map(ord, text)) % 997), 1.0]
            for text in request.texts
        ]
        return embedding_for(request, vectors)

    async def raw_llm_call(self, request: LLMRequest) -> str:
        if not self._capabilities.raw_llm_call:
            raise self._unsupported("raw_llm_call")
        self.calls.append(("raw_llm_call", request))
        return f"echo: {request.input[:100]}"

    async def text_to_speech(self, request: SpeechRequest) -> Path:
        if not self._capabilities.text_to_speech:
            raise self._unsupported("text_to_speech")
        self.calls.append(("text_to_speech", request))
        output_format = request.output_format or "mp3"
        directory = Path(request.output_path or "./uploads/audios")
        path = directory / f"speech_{int(time.time() * 1000)}.{output_format}"
        await asyncio.to_thread(_write_placeholder, path)
        return path

    async def aclose(self) -> None:
        """Nothing to release."""


async def _word_chunks(text: str) -> AsyncIterator[dict[str, str]]:
    words = text.split(" ")
    for idx, word in enumerate(words):
        yield {"text": word if idx == len(words) - 1 else f"{word} "}


def _write_placeholder(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b"")
