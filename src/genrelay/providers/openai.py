"""OpenAI provider implementation."""

from __future__ import annotations

import asyncio
import base64
import json
import logging
import mimetypes
from pathlib import Path
import time
from typing import TYPE_CHECKING, Any

from genrelay.errors import APIError, ValidationError
from genrelay.messages import normalize_messages
from genrelay.providers._errors import wrap_provider_error
from genrelay.providers._utils import (
    DEFAULT_SYSTEM_PROMPT,
    DEFAULT_TEMPERATURE,
    function_declarations,
    is_native_tool,
    json_or_text,
    to_strict_schema,
)
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
        SpeechRequest,
        ToolUseResult,
    )

log = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-4o-mini"
DEFAULT_EMBEDDING_MODEL = "text-embedding-3-small"
DEFAULT_TTS_MODEL = "tts-1"
DEFAULT_TTS_VOICE = "alloy"
DEFAULT_AUDIO_DIR = "./uploads/audios"
DEFAULT_AUDIO_FORMAT = "mp3"

# Used when JSON mode is requested without a schema.
_BASIC_JSON_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "response": {"type": "string", "description": "The response content"},
    },
    "required": ["response"],
    "additionalProperties": False,
}


class OpenAIProvider(UnsupportedOperationsMixin):
    """OpenAI Chat Completions provider."""

    name = "openai"

    def __init__(self, api_key: str | None) -> None:
        """Initialize with an API key."""
        self.api_key = api_key
        self._client: Any = None

    def _get_client(self) -> Any:
        """Lazily initialize and return the OpenAI client."""
        if self._client is None:
            try:
                from openai import AsyncOpenAI
            except ImportError as e:
                raise APIError(
                    "openai package not installed",
                    hint="uv pip install openai",
                ) from e
            self._client = AsyncOpenAI(api_key=self.api_key)
        return self._client

    @property
    def capabilities(self) -> ProviderCapabilities:
        """Return supported operations."""
        return ProviderCapabilities(
            generate=True,
            generate_with_image=True,
            embed=True,
            raw_llm_call=False,
            text_to_speech=True,
        )

    def _wrap(self, e: Exception, phase: str) -> APIError:
        return wrap_provider_error(
            e,
            provider=self.name,
            phase=phase,
            allow_network_errors=True,
            message=f"OpenAI {phase} failed",
        )

    def _build_messages(
        self, request: GenerateRequest, system: str, user_content: Any
    ) -> list[dict[str, Any]]:
        messages: list[dict[str, Any]] = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.extend(m.to_dict() for m in normalize_messages(request.history))
        messages.append({"role": "user", "content": user_content})
        return messages

    def _create_kwargs(
        self, request: GenerateRequest, model: str, messages: list[dict[str, Any]]
    ) -> dict[str, Any]:
        create_kwargs: dict[str, Any] = {
            "model": model,
            "messages": messages,
            "temperature": (
                DEFAULT_TEMPERATURE if request.temperature is None else request.temperature
            ),
        }
        if request.max_tokens:
            create_kwargs["max_tokens"] = request.max_tokens

        if request.json_mode or request.response_schema is not None:
            create_kwargs["response_format"] = response_format(request)

        if request.tools:
            tools = chat_tools(request.tools)
            if tools:
                create_kwargs["tools"] = tools
        return create_kwargs

    async def generate(self, request: GenerateRequest) -> Any:
        """Generate with Chat Completions: text, JSON, tool calls, or a stream."""
        model = request.model or DEFAULT_MODEL
        system = DEFAULT_SYSTEM_PROMPT if request.system is None else request.system
        messages = self._build_messages(request, system, request.message)
        create_kwargs = self._create_kwargs(request, model, messages)

        if request.check_payload:
            return create_kwargs
        return await self._complete(request, create_kwargs, phase="generate")

    async def generate_with_image(self, request: ImageRequest) -> Any:
        """Describe an image attached as a base64 data URL."""
        model = request.model or DEFAULT_MODEL
        system = DEFAULT_SYSTEM_PROMPT if request.system is None else request.system
        data_url = await _image_data_url(request.image_path)
        content = [
            {"type": "text", "text": request.message},
            {"type": "image_url", "image_url": {"url": data_url}},
        ]
        messages = self._build_messages(request, system, content)
        create_kwargs = self._create_kwargs(request, model, messages)

        if request.check_payload:
            return create_kwargs
        return await self._complete(request, create_kwargs, phase="generate_with_image")

    async def _complete(
        self, request: GenerateRequest, create_kwargs: dict[str, Any], *, phase: str
    ) -> Any:
        client = self._get_client()
        try:
            if request.stream:
                stream = await client.chat.completions.create(**create_kwargs, stream=True)
                return GenerationStream(
                    _iterate_stream(stream),
                    provider=self.name,
                    text_of=stream_text,
                    close=stream.close,
                )
            response = await client.chat.completions.create(**create_kwargs)
        except asyncio.CancelledError:
            raise
        except APIError:
            raise
        except Exception as e:
            raise self._wrap(e, phase) from e

        return _parse_response(response, structured="response_format" in create_kwargs)

    async def embed(self, request: EmbeddingRequest) -> Embedding:
        """Embed one string or a batch in a single embeddings call."""
        client = self._get_client()
        try:
            response = await client.embeddings.create(
                model=request.model or DEFAULT_EMBEDDING_MODEL,
                input=request.texts,
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise self._wrap(e, "embed") from e

        data = sorted(response.data, key=lambda item: item.index)
        return embedding_for(request, [list(item.embedding) for item in data])

    async def text_to_speech(self, request: SpeechRequest) -> Path:
        """Synthesize speech and write it to ``speech_<ms>.<format>``."""
        output_format = request.output_format or DEFAULT_AUDIO_FORMAT
        client = self._get_client()
        try:
            response = await client.audio.speech.create(
                model=request.engine or DEFAULT_TTS_MODEL,
                voice=request.voice or DEFAULT_TTS_VOICE,
                input=request.text,
                response_format=output_format,
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise self._wrap(e, "text_to_speech") from e

        directory = Path(request.output_path or DEFAULT_AUDIO_DIR)
        path = directory / f"speech_{int(time.time() * 1000)}.{output_format}"
        await asyncio.to_thread(_write_bytes, path, response.content)
        log.debug("openai: wrote speech audio to %s", path)
        return path

    async def aclose(self) -> None:
        """Close underlying async client resources."""
        client = self._client
        if client is None:
            return
        self._client = None
        await client.close()


def response_format(request: GenerateRequest) -> dict[str, Any]:
    """Build the ``json_schema`` response format for JSON mode.

    ``strict`` defaults to True; ``additionalProperties`` on the top-level
    object follows it unless the schema sets it explicitly.
    """
    envelope = request.schema_envelope()
    if envelope is None:
        return {
            "type": "json_schema",
            "json_schema": {
                "name": "json_response",
                "schema": dict(_BASIC_JSON_SCHEMA),
                "strict": True,
            },
        }
    strict = envelope.get("strict") is not False
    return {
        "type": "json_schema",
        "json_schema": {
            "name": envelope.get("name") or "structured_output",
            "schema": to_strict_schema(envelope["parameters"], strict=strict),
            "strict": strict,
        },
    }


def chat_tools(tools: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Map custom function tools to Chat Completions tools.

    Built-in tool tags of other backends have no Chat Completions
    equivalent and are dropped.
    """
    dropped = [tool.get("type") for tool in tools if is_native_tool(tool)]
    if dropped:
        log.debug("openai: dropping built-in tools %s", dropped)
    return [
        {
            "type": "function",
            "function": {
                "name": decl["name"],
                "description": decl["description"],
                "parameters": decl["parameters"],
            },
        }
        for decl in function_declarations(tools)
    ]


def _parse_response(response: Any, *, structured: bool) -> Any:
    choice = response.choices[0]
    message = choice.message
    text = getattr(message, "content", None) or ""

    raw_calls = getattr(message, "tool_calls", None) or []
    if raw_calls:
        tool_calls = []
        for call in raw_calls:
            arguments = call.function.arguments or "{}"
            try:
                args = json.loads(arguments)
            except ValueError:
                args = arguments
            tool_calls.append(
                {"type": "function", "name": call.function.name, "id": call.id, "args": args}
            )
        usage_raw = getattr(response, "usage", None)
        result: ToolUseResult = {
            "content": text,
            "toolCalls": tool_calls,
            "metadata": {
                "finishReason": "TOOL_USE",
                "usage": {
                    "input_tokens": int(getattr(usage_raw, "prompt_tokens", 0) or 0),
                    "output_tokens": int(getattr(usage_raw, "completion_tokens", 0) or 0),
                    "total_tokens": int(getattr(usage_raw, "total_tokens", 0) or 0),
                },
            },
        }
        return result

    if structured:
        return json_or_text(text, provider="openai")
    return text


async def _iterate_stream(stream: Any) -> AsyncIterator[Any]:
    async for chunk in stream:
        yield chunk


def stream_text(chunk: Any) -> str | None:
    """Return the content delta of a ``ChatCompletionChunk``."""
    choices = getattr(chunk, "choices", None)
    if not choices:
        return None
    delta = getattr(choices[0], "delta", None)
    return getattr(delta, "content", None)


async def _image_data_url(image_path: str) -> str:
    try:
        data = await asyncio.to_thread(Path(image_path).read_bytes)
    except OSError as e:
        raise ValidationError(
            f"Cannot read image file {image_path!r}: {e}",
            hint="Check that image_path points to a readable file.",
        ) from e
    media_type = mimetypes.guess_type(image_path)[0] or "image/jpeg"
    return f"data:{media_type};base64,{base64.b64encode(data).decode('ascii')}"


def _write_bytes(path: Path, data: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)
