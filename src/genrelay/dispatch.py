"""Dispatch facade: route uniform operations to the configured provider."""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
import logging
from typing import TYPE_CHECKING, Any

from genrelay.config import SUPPORTED_PROVIDERS
from genrelay.errors import ConfigurationError, UnsupportedOperationError
from genrelay.normalize import format_tool_response
from genrelay.streaming import GenerationStream

if TYPE_CHECKING:
    from pathlib import Path

    from genrelay.config import Config
    from genrelay.providers.base import Provider
    from genrelay.providers.models import (
        Embedding,
        EmbeddingRequest,
        GenerateRequest,
        ImageRequest,
        LLMRequest,
        SpeechRequest,
    )

log = logging.getLogger(__name__)


def _build_provider(name: str, config: Config | None = None) -> Provider:
    """Instantiate the adapter for *name* with credentials from *config*."""
    credential = config.credential if config is not None else (lambda key: None)

    if name == "openai":
        from genrelay.providers.openai import OpenAIProvider

        return OpenAIProvider(credential("OPENAI_API_KEY"))

    if name == "google":
        from genrelay.providers.google import GoogleProvider

        return GoogleProvider(credential("GOOGLEGENAI_API_KEY"))

    if name == "bedrock":
        from genrelay.providers.bedrock import BedrockProvider

        return BedrockProvider(
            credential("AWS_ACCESS_KEY_ID"),
            credential("AWS_SECRET_ACCESS_KEY"),
            credential("AWS_REGION"),
        )

    raise ConfigurationError(
        f"Unsupported provider: {name!r}",
        hint=f"Valid providers are: {', '.join(SUPPORTED_PROVIDERS)}",
    )


def _get_provider(config: Config) -> Provider:
    """Get the appropriate provider based on configuration."""
    if config.use_mock:
        from genrelay.providers.mock import MockProvider

        return MockProvider(config.provider, _build_provider(config.provider).capabilities)
    return _build_provider(config.provider, config)


def list_providers() -> dict[str, list[str]]:
    """Return the operations each provider supports, keyed by provider name."""
    return {
        name: _build_provider(name).capabilities.operations()
        for name in SUPPORTED_PROVIDERS
    }


async def _close(provider: Provider) -> None:
    try:
        await provider.aclose()
    except asyncio.CancelledError:
        raise
    except Exception as exc:
        # Cleanup should never mask the primary failure.
        log.warning("Provider cleanup failed: %s", exc)


async def _dispatch(config: Config, operation: str, request: Any) -> Any:
    """Run *operation* on a fresh provider.

    The provider is closed after the call, except when the call returns a
    stream: the stream then owns the provider and closes it when it closes.
    """
    provider = _get_provider(config)
    if not provider.capabilities.supports(operation):
        await _close(provider)
        raise UnsupportedOperationError(
            config.provider,
            operation,
            hint="Call genrelay.list_providers() to see supported operations.",
        )

    log.debug("Dispatching %s to %s", operation, config.provider)
    hand_off = False
    try:
        result = await getattr(provider, operation)(request)
        if isinstance(result, GenerationStream):
            result.add_close_callback(provider.aclose)
            hand_off = True
        return result
    finally:
        if not hand_off:
            await _close(provider)


async def generate(request: GenerateRequest, *, config: Config) -> Any:
    """Generate text with the configured provider.

    Returns a string, a parsed JSON value (JSON mode), a
    ``GenerationStream`` (``stream=True``), or the native payload
    (``check_payload=True``). Non-stream tool-augmented results are
    normalized with ``format_tool_response``.

    Example:
        config = Config(provider="openai")
        text = await generate(GenerateRequest(message="Hello"), config=config)
    """
    result = await _dispatch(config, "generate", request)
    if request.has_tools and not request.stream and not request.check_payload:
        return format_tool_response(result)
    return result


async def generate_with_tools(request: GenerateRequest, *, config: Config) -> Any:
    """Generate with tools, unwrapping plain results to their content.

    With tools, the result is the canonical tool response. Without tools, a
    mapping result is reduced to its ``content`` when one is present.
    """
    result = await _dispatch(config, "generate", request)
    if request.stream or request.check_payload:
        return result
    if request.has_tools:
        return format_tool_response(result)
    if isinstance(result, Mapping):
        if result.get("content"):
            return result["content"]
        kwargs = result.get("kwargs")
        if isinstance(kwargs, Mapping) and isinstance(kwargs.get("content"), str):
            return kwargs["content"]
    return result


async def generate_with_image(request: ImageRequest, *, config: Config) -> Any:
    """Generate text about an image file."""
    return await _dispatch(config, "generate_with_image", request)


async def embed(request: EmbeddingRequest, *, config: Config) -> Embedding:
    """Embed one string (``SingleEmbedding``) or a list (``BatchEmbedding``)."""
    return await _dispatch(config, "embed", request)


async def raw_llm_call(request: LLMRequest, *, config: Config) -> str:
    """Run a bare text-completion call."""
    return await _dispatch(config, "raw_llm_call", request)


async def text_to_speech(request: SpeechRequest, *, config: Config) -> Path:
    """Synthesize speech; returns the written audio file path."""
    return await _dispatch(config, "text_to_speech", request)
