"""Google Gemini provider implementation (google-genai SDK)."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from genrelay.errors import APIError
from genrelay.messages import normalize_messages
from genrelay.providers._errors import wrap_provider_error
from genrelay.providers._utils import (
    DEFAULT_SYSTEM_PROMPT,
    DEFAULT_TEMPERATURE,
    json_or_text,
    to_google_schema,
)
from genrelay.providers.base import ProviderCapabilities, UnsupportedOperationsMixin
from genrelay.providers.models import embedding_for
from genrelay.streaming import GenerationStream

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from genrelay.providers.models import Embedding, EmbeddingRequest, GenerateRequest

log = logging.getLogger(__name__)

DEFAULT_MODEL = "gemini-2.0-flash"
DEFAULT_EMBEDDING_MODEL = "text-embedding-004"
DEFAULT_MAX_OUTPUT_TOKENS = 2048
_EMBEDDING_TASK_TYPE = "RETRIEVAL_DOCUMENT"
BUILTIN_TOOLS = ("google_search", "code_execution")


class GoogleProvider(UnsupportedOperationsMixin):
    """Google Gemini API provider."""

    name = "google"

    def __init__(self, api_key: str | None) -> None:
        """Create provider with an API key."""
        self.api_key = api_key
        self._client: Any = None

    def _get_client(self) -> Any:
        """Lazy-initialize the Gemini client."""
        if self._client is None:
            try:
                from google import genai
            except ImportError as e:
                raise APIError(
                    "google-genai package not installed",
                    hint="uv pip install google-genai",
                ) from e
            self._client = genai.Client(api_key=self.api_key)
        return self._client

    @property
    def capabilities(self) -> ProviderCapabilities:
        """Return supported operations."""
        return ProviderCapabilities(
            generate=True,
            generate_with_image=False,
            embed=True,
            raw_llm_call=False,
            text_to_speech=False,
            builtin_tools=BUILTIN_TOOLS,
        )

    def _wrap(self, e: Exception, phase: str) -> APIError:
        return wrap_provider_error(
            e,
            provider=self.name,
            phase=phase,
            allow_network_errors=True,
            message=f"Google {phase} failed",
        )

    def build_payload(self, request: GenerateRequest) -> dict[str, Any]:
        """Return ``{model, contents, config}`` for ``generate_content``."""
        system = DEFAULT_SYSTEM_PROMPT if request.system is None else request.system
        system_parts = [system] if system else []

        contents: list[dict[str, Any]] = []
        for item in normalize_messages(request.history):
            if item.role == "system":
                system_parts.append(_text_of_content(item.content))
                continue
            role = "model" if item.role == "assistant" else "user"
            _append_content(contents, role, _parts(item.content))
        _append_content(contents, "user", [{"text": request.message}])

        config: dict[str, Any] = {
            "temperature": (
                DEFAULT_TEMPERATURE if request.temperature is None else request.temperature
            ),
            "max_output_tokens": request.max_tokens or DEFAULT_MAX_OUTPUT_TOKENS,
        }
        if system_parts:
            config["system_instruction"] = "\n\n".join(system_parts)

        if request.tools:
            tools = google_tools(request.tools)
            if tools:
                config["tools"] = tools

        if request.json_mode or request.response_schema is not None:
            config["response_mime_type"] = "application/json"
            envelope = request.schema_envelope()
            if envelope is not None:
                config["response_schema"] = to_google_schema(envelope)

        return {
            "model": request.model or DEFAULT_MODEL,
            "contents": contents,
            "config": config,
        }

    async def generate(self, request: GenerateRequest) -> Any:
        """Generate content; tool-augmented calls return an enriched raw dict."""
        payload = self.build_payload(request)
        if request.check_payload:
            return payload

        client = self._get_client()
        from google.genai import types

        config = types.GenerateContentConfig(**payload["config"])
        try:
            if request.stream:
                chunks = await client.aio.models.generate_content_stream(
                    model=payload["model"], contents=payload["contents"], config=config
                )
                return GenerationStream(
                    _iterate_stream(chunks),
                    provider=self.name,
                    text_of=response_text,
                    close=getattr(chunks, "aclose", None),
                )
            response = await client.aio.models.generate_content(
                model=payload["model"], contents=payload["contents"], config=config
            )
        except asyncio.CancelledError:
            raise
        except APIError:
            raise
        except Exception as e:
            raise self._wrap(e, "generate") from e

        if not response:
            raise APIError("Gemini returned an empty response.", provider=self.name)

        text = response_text(response) or ""
        if "response_mime_type" in payload["config"]:
            return json_or_text(text, provider=self.name)
        if request.tools:
            return enriched_result(response, text)
        return text

    async def embed(self, request: EmbeddingRequest) -> Embedding:
        """Embed documents with the retrieval-document task type."""
        client = self._get_client()
        from google.genai import types

        try:
            response = await client.aio.models.embed_content(
                model=request.model or DEFAULT_EMBEDDING_MODEL,
                contents=request.texts,
                config=types.EmbedContentConfig(task_type=_EMBEDDING_TASK_TYPE),
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise self._wrap(e, "embed") from e

        embeddings = getattr(response, "embeddings", None) or []
        return embedding_for(request, [list(e.values or []) for e in embeddings])

    async def aclose(self) -> None:
        """Close underlying async client resources."""
        client = self._client
        if client is None:
            return
        self._client = None
        await client.aio.aclose()


def google_tools(tools: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Convert request tools into Gemini tool definitions.

    ``google_search`` and ``code_execution`` are built-ins; custom
    functions are passed as ``function_declarations``. Other tool shapes
    have no Gemini equivalent and are dropped.
    """
    converted: list[dict[str, Any]] = []
    for tool in tools:
        if "google_search" in tool:
            converted.append({"google_search": {}})
        if "code_execution" in tool:
            converted.append({"code_execution": {}})
        declarations = tool.get("functionDeclarations") or tool.get("function_declarations")
        if declarations:
            converted.append({"function_declarations": list(declarations)})
        elif not ("google_search" in tool or "code_execution" in tool):
            log.debug("google: dropping unsupported tool %s", sorted(tool))
    return converted


def _parts(content: str | list[dict[str, Any]]) -> list[dict[str, Any]]:
    if isinstance(content, str):
        return [{"text": content}]
    return [{"text": block["text"]} for block in content if block.get("text")]


def _text_of_content(content: str | list[dict[str, Any]]) -> str:
    return "\n".join(part["text"] for part in _parts(content))


def _append_content(
    contents: list[dict[str, Any]], role: str, parts: list[dict[str, Any]]
) -> None:
    if contents and contents[-1]["role"] == role:
        contents[-1]["parts"].extend(parts)
    else:
        contents.append({"role": role, "parts": parts})


def _candidate_parts(response: Any) -> list[Any]:
    candidates = getattr(response, "candidates", None) or []
    if not candidates:
        return []
    content = getattr(candidates[0], "content", None)
    return list(getattr(content, "parts", None) or [])


def response_text(response: Any) -> str | None:
    """Concatenate the non-thought text parts of the first candidate."""
    texts = [
        part.text
        for part in _candidate_parts(response)
        if getattr(part, "text", None) and not getattr(part, "thought", False)
    ]
    return "".join(texts) if texts else None


def _dump(value: Any) -> Any:
    if value is None:
        return None
    if hasattr(value, "model_dump"):
        return value.model_dump(mode="json", by_alias=True, exclude_none=True)
    return value


def enriched_result(response: Any, text: str) -> dict[str, Any]:
    """Build the raw tool-augmented result consumed by the response normalizer."""
    candidates = getattr(response, "candidates", None) or []
    first = candidates[0] if candidates else None

    tool_calls = [
        {"type": "function", "name": fc.name, "id": fc.id, "args": fc.args or {}}
        for fc in (getattr(response, "function_calls", None) or [])
    ]

    if tool_calls:
        finish_reason = "TOOL_USE"
    else:
        raw_reason = getattr(first, "finish_reason", None)
        finish_reason = str(getattr(raw_reason, "value", raw_reason) or "STOP")

    response_metadata: dict[str, Any] = {"finishReason": finish_reason}
    grounding = _dump(getattr(first, "grounding_metadata", None))
    if grounding:
        response_metadata["groundingMetadata"] = grounding

    um = getattr(response, "usage_metadata", None)
    input_tokens = int(getattr(um, "prompt_token_count", 0) or 0)
    output_tokens = int(getattr(um, "candidates_token_count", 0) or 0)
    total_tokens = getattr(um, "total_token_count", None)

    return {
        "content": text,
        "tool_calls": tool_calls,
        "response_metadata": response_metadata,
        "usage_metadata": {
            "input_tokens": input_tokens,
            "output_tokens": output_tokens,
            "total_tokens": (
                int(total_tokens) if total_tokens is not None else input_tokens + output_tokens
            ),
        },
        "candidates": [_dump(c) for c in candidates],
    }


async def _iterate_stream(chunks: Any) -> AsyncIterator[Any]:
    async for chunk in chunks:
        yield chunk
