"""Dispatch facade tests: routing, capability checks and result shaping."""

from __future__ import annotations

from types import SimpleNamespace
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

import genrelay
from genrelay import (
    BatchEmbedding,
    Config,
    EmbeddingRequest,
    GenerateRequest,
    ImageRequest,
    LLMRequest,
    SingleEmbedding,
    SpeechRequest,
)
from genrelay import dispatch
from genrelay.errors import ConfigurationError, UnsupportedOperationError
from genrelay.providers.bedrock import BedrockProvider
from genrelay.providers.mock import MockProvider
from genrelay.providers.openai import OpenAIProvider
from genrelay.streaming import GenerationStream
from tests.conftest import AWS_ENV

pytestmark = pytest.mark.unit


def _mock(provider: str = "openai") -> Config:
    return Config(provider=provider, use_mock=True)  # type: ignore[arg-type]


# =============================================================================
# Provider selection
# =============================================================================


def test_build_provider_passes_resolved_credentials(bedrock_config: Config) -> None:
    provider = dispatch._build_provider("bedrock", bedrock_config)

    assert isinstance(provider, BedrockProvider)
    assert provider.access_key_id == AWS_ENV["AWS_ACCESS_KEY_ID"]
    assert provider.region == "us-west-2"


def test_build_provider_rejects_unknown_name() -> None:
    with pytest.raises(ConfigurationError, match="Unsupported provider"):
        dispatch._build_provider("anthropic")


def test_providers_package_does_not_reexport_adapters() -> None:
    import genrelay.providers

    for name in ("BedrockProvider", "GoogleProvider", "MockProvider", "OpenAIProvider"):
        assert not hasattr(genrelay.providers, name)


def test_mock_provider_mirrors_real_capabilities() -> None:
    provider = dispatch._get_provider(_mock("google"))

    assert isinstance(provider, MockProvider)
    assert provider.capabilities.text_to_speech is False
    assert provider.capabilities.builtin_tools == ("google_search", "code_execution")


def test_list_providers() -> None:
    assert genrelay.list_providers() == {
        "bedrock": [
            "generate",
            "generate_with_image",
            "embed",
            "raw_llm_call",
            "text_to_speech",
        ],
        "openai": ["generate", "generate_with_image", "embed", "text_to_speech"],
        "google": ["generate", "embed"],
    }


# =============================================================================
# Operations in mock mode
# =============================================================================


@pytest.mark.asyncio
async def test_generate_returns_text() -> None:
    result = await genrelay.generate(GenerateRequest(message="hello"), config=_mock())

    assert result == "echo: hello"


@pytest.mark.asyncio
async def test_generate_json_mode_returns_value() -> None:
    result = await genrelay.generate(
        GenerateRequest(message="hello", json_mode=True), config=_mock()
    )

    assert result == {"response": "echo: hello"}


@pytest.mark.asyncio
async def test_generate_with_tools_is_normalized() -> None:
    request = GenerateRequest(message="search", tools=[{"google_search": {}}])

    result = await genrelay.generate(request, config=_mock("google"))

    assert result == {
        "content": "echo: search",
        "metadata": {
            "finishReason": "STOP",
            "usage": {"inputTokens": 10, "outputTokens": 10, "totalTokens": 20},
        },
    }


@pytest.mark.asyncio
async def test_generate_stream_returns_generation_stream() -> None:
    stream = await genrelay.generate(
        GenerateRequest(message="hello world", stream=True), config=_mock()
    )

    assert isinstance(stream, GenerationStream)
    assert await stream.collect() == "echo: hello world"


@pytest.mark.asyncio
async def test_check_payload_skips_normalization() -> None:
    request = GenerateRequest(message="hi", tools=[{"google_search": {}}], check_payload=True)

    result = await genrelay.generate(request, config=_mock("google"))

    assert result == {"model": None, "message": "hi"}


@pytest.mark.asyncio
async def test_embed_cardinality() -> None:
    single = await genrelay.embed(EmbeddingRequest(text="abc"), config=_mock())
    batch = await genrelay.embed(EmbeddingRequest(text=["a", "b"]), config=_mock())

    assert isinstance(single, SingleEmbedding)
    assert isinstance(batch, BatchEmbedding)
    assert len(batch) == 2


@pytest.mark.asyncio
async def test_raw_llm_call_on_bedrock() -> None:
    result = await genrelay.raw_llm_call(LLMRequest(input="hi"), config=_mock("bedrock"))

    assert result == "echo: hi"


@pytest.mark.asyncio
async def test_text_to_speech_writes_file(tmp_path) -> None:
    path = await genrelay.text_to_speech(
        SpeechRequest(text="hi", output_path=str(tmp_path)), config=_mock("bedrock")
    )

    assert path.exists()
    assert path.parent == tmp_path


@pytest.mark.parametrize(
    ("provider", "operation", "request_obj"),
    [
        ("google", "text_to_speech", SpeechRequest(text="hi")),
        ("google", "raw_llm_call", LLMRequest(input="hi")),
        ("google", "generate_with_image", ImageRequest(message="hi", image_path="x.png")),
        ("openai", "raw_llm_call", LLMRequest(input="hi")),
    ],
)
@pytest.mark.asyncio
async def test_unsupported_operations_fail_before_any_call(
    provider: str, operation: str, request_obj: Any
) -> None:
    with pytest.raises(UnsupportedOperationError) as exc:
        await getattr(genrelay, operation)(request_obj, config=_mock(provider))

    assert exc.value.provider == provider
    assert exc.value.operation == operation


# =============================================================================
# generate_with_tools unwrapping
# =============================================================================


def _patch_provider(monkeypatch: pytest.MonkeyPatch, result: Any) -> MagicMock:
    provider = MagicMock()
    provider.capabilities = OpenAIProvider("sk-test").capabilities
    provider.generate = AsyncMock(return_value=result)
    provider.aclose = AsyncMock()
    monkeypatch.setattr(dispatch, "_get_provider", lambda config: provider)
    return provider


@pytest.mark.asyncio
async def test_generate_with_tools_unwraps_content(monkeypatch, openai_config) -> None:
    _patch_provider(monkeypatch, {"content": "hello", "id": "x"})

    result = await genrelay.generate_with_tools(
        GenerateRequest(message="hi"), config=openai_config
    )

    assert result == "hello"


@pytest.mark.asyncio
async def test_generate_with_tools_unwraps_kwargs_content(monkeypatch, openai_config) -> None:
    _patch_provider(monkeypatch, {"kwargs": {"content": "nested"}})

    result = await genrelay.generate_with_tools(
        GenerateRequest(message="hi"), config=openai_config
    )

    assert result == "nested"


@pytest.mark.asyncio
async def test_generate_with_tools_normalizes_tool_results(monkeypatch, openai_config) -> None:
    raw = {
        "content": "",
        "toolCalls": [{"type": "function", "name": "f", "id": "1", "args": {}}],
        "metadata": {
            "finishReason": "TOOL_USE",
            "usage": {"input_tokens": 1, "output_tokens": 2, "total_tokens": 3},
        },
    }
    _patch_provider(monkeypatch, raw)
    request = GenerateRequest(
        message="hi", tools=[{"type": "function", "name": "f", "parameters": {}}]
    )

    result = await genrelay.generate_with_tools(request, config=openai_config)

    assert result["toolCalls"] == raw["toolCalls"]
    assert result["metadata"]["usage"] == {"inputTokens": 1, "outputTokens": 2, "totalTokens": 3}


# =============================================================================
# Provider lifecycle
# =============================================================================


@pytest.mark.asyncio
async def test_provider_closed_after_call(monkeypatch, openai_config) -> None:
    provider = _patch_provider(monkeypatch, "text")

    await genrelay.generate(GenerateRequest(message="hi"), config=openai_config)

    provider.aclose.assert_awaited_once()


@pytest.mark.asyncio
async def test_provider_closed_after_failure(monkeypatch, openai_config) -> None:
    provider = _patch_provider(monkeypatch, None)
    provider.generate.side_effect = RuntimeError("boom")

    with pytest.raises(RuntimeError, match="boom"):
        await genrelay.generate(GenerateRequest(message="hi"), config=openai_config)

    provider.aclose.assert_awaited_once()


@pytest.mark.asyncio
async def test_stream_owns_provider_until_closed(monkeypatch, openai_config) -> None:
    async def chunks() -> Any:
        yield SimpleNamespace(text="a")

    stream = GenerationStream(chunks(), provider="openai", text_of=lambda c: c.text)
    provider = _patch_provider(monkeypatch, stream)

    result = await genrelay.generate(
        GenerateRequest(message="hi", stream=True), config=openai_config
    )

    provider.aclose.assert_not_awaited()
    assert await result.collect() == "a"
    provider.aclose.assert_awaited_once()
