"""AWS Bedrock provider implementation (bedrock-runtime plus Polly)."""

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
    DEFAULT_TEMPERATURE,
    NATIVE_TOOL_TYPES,
    function_declarations,
    is_native_tool,
    iterate_in_thread,
    json_or_text,
)
from genrelay.providers.base import ProviderCapabilities
from genrelay.providers.bedrock_models import find_alias, resolve_model
from genrelay.providers.models import embedding_for
from genrelay.streaming import GenerationStream

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable

    from genrelay.messages import Message
    from genrelay.providers.models import (
        Embedding,
        EmbeddingRequest,
        GenerateRequest,
        ImageRequest,
        LLMRequest,
        SpeechRequest,
        ToolUseResult,
    )

log = logging.getLogger(__name__)

DEFAULT_REGION = "us-east-1"
DEFAULT_MODEL = "anthropic.claude-3-5-haiku-serverless"
DEFAULT_SYSTEM = "You are a helpful assistant."
DEFAULT_IMAGE_MODEL = "meta.llama3-2-11b-instruct-v1:0"
DEFAULT_IMAGE_SYSTEM = "You are a helpful assistant that can understand both text and images."
DEFAULT_LLM_MODEL = "anthropic.claude-instant-v1"
DEFAULT_EMBEDDING_MODEL = "amazon.titan-embed-text-v1"

_ANTHROPIC_VERSION = "bedrock-2023-05-31"
_NATIVE_MAX_TOKENS = 4096
_LLM_MAX_TOKENS = 512
_JSON_INSTRUCTION = "\n\nPlease respond with valid JSON format."
_STRUCTURED_TOOL_NAME = "structured_response"
# Bedrock model ids that only accept invocation through an inference profile.
_INFERENCE_PROFILE_MARKERS = ("sonnet-4", "sonnet-3-7", "opus-4", "deepseek", "nova-")
_READ_TIMEOUT_S = 600

# Polly synthesis defaults.
DEFAULT_AUDIO_DIR = "./uploads/audios"
DEFAULT_LANGUAGE = "en-US"
DEFAULT_AUDIO_FORMAT = "mp3"
DEFAULT_VOICE = "Danielle"
DEFAULT_ENGINE = "generative"
_SAMPLE_RATE = "22050"


def is_claude_model(model: str) -> bool:
    return "anthropic" in model or "claude" in model


def requires_inference_profile(model: str) -> bool:
    """Whether *model* must be invoked through the native InvokeModel API."""
    model_id = resolve_model(model)
    if model_id.startswith(("us.", "arn:aws:bedrock:")):
        return True
    return any(marker in model for marker in _INFERENCE_PROFILE_MARKERS)


class BedrockProvider:
    """AWS Bedrock provider: Converse, native Anthropic messages, Titan, Polly."""

    name = "bedrock"

    def __init__(
        self,
        access_key_id: str | None,
        secret_access_key: str | None,
        region: str | None = None,
    ) -> None:
        """Initialize with AWS credentials; clients are created lazily."""
        self.access_key_id = access_key_id
        self.secret_access_key = secret_access_key
        self.region = region or DEFAULT_REGION
        self._clients: dict[tuple[str, str], Any] = {}

    def _get_client(self, service: str, region: str | None = None) -> Any:
        """Lazily initialize and return a boto3 client for *service*."""
        region = region or self.region
        key = (service, region)
        client = self._clients.get(key)
        if client is None:
            try:
                import boto3
                from botocore.config import Config as BotoConfig
            except ImportError as e:
                raise APIError(
                    "boto3 package not installed",
                    hint="uv pip install boto3",
                ) from e
            client = boto3.client(
                service,
                region_name=region,
                aws_access_key_id=self.access_key_id,
                aws_secret_access_key=self.secret_access_key,
                config=BotoConfig(read_timeout=_READ_TIMEOUT_S),
            )
            self._clients[key] = client
        return client

    @property
    def capabilities(self) -> ProviderCapabilities:
        """Return supported operations."""
        return ProviderCapabilities(
            generate=True,
            generate_with_image=True,
            embed=True,
            raw_llm_call=True,
            text_to_speech=True,
            builtin_tools=tuple(sorted(NATIVE_TOOL_TYPES)),
        )

    async def _call(self, method: Callable[..., Any], *, phase: str, **kwargs: Any) -> Any:
        """Run a blocking boto3 call in a worker thread and map its errors."""
        try:
            return await asyncio.to_thread(method, **kwargs)
        except asyncio.CancelledError:
            raise
        except APIError:
            raise
        except Exception as e:
            raise wrap_provider_error(
                e,
                provider=self.name,
                phase=phase,
                allow_network_errors=True,
                message=f"Bedrock {phase} failed",
            ) from e

    # ------------------------------------------------------------------
    # generate
    # ------------------------------------------------------------------

    async def generate(self, request: GenerateRequest) -> Any:
        """Generate via the native messages API or the Converse API.

        Routing:
        - predefined tools (``bash_20250124``, ...) -> native InvokeModel
        - custom function tools -> Converse with ``toolConfig``
        - Claude + (JSON mode | schema | inference profile) -> native InvokeModel
        - everything else -> Converse, system prompt folded into the user turn
        """
        model = request.model or DEFAULT_MODEL
        system = DEFAULT_SYSTEM if request.system is None else request.system
        history = normalize_messages(request.history)

        if request.tools:
            if any(is_native_tool(tool) for tool in request.tools):
                log.debug("bedrock: predefined tools present, using native API")
                return await self._native_generate(request, model, system, history)
            log.debug("bedrock: custom function tools, using Converse")
            return await self._converse_with_tools(request, model, system, history)

        wants_structure = request.json_mode or request.response_schema is not None
        profile = requires_inference_profile(model)
        if (
            is_claude_model(model)
            and (wants_structure or profile)
            and (profile or find_alias(model) is not None)
        ):
            log.debug("bedrock: %s routed to native API", model)
            return await self._native_generate(request, model, system, history)

        log.debug("bedrock: %s routed to Converse", model)
        return await self._converse_plain(request, model, system, history)

    async def _native_generate(
        self,
        request: GenerateRequest,
        model: str,
        system: str,
        history: list[Message],
    ) -> Any:
        model_id = resolve_model(model)
        messages: list[dict[str, Any]] = []
        for item in history:
            role = "assistant" if item.role == "assistant" else "user"
            _append_message(messages, {"role": role, "content": item.content})
        _append_message(messages, {"role": "user", "content": request.message})

        body: dict[str, Any] = {
            "anthropic_version": _ANTHROPIC_VERSION,
            "messages": messages,
            "max_tokens": request.max_tokens or _NATIVE_MAX_TOKENS,
            "temperature": _temperature(request),
        }
        if system:
            body["system"] = system

        envelope = request.schema_envelope()
        if request.tools:
            anthropic_tools = to_anthropic_tools(request.tools)
            if anthropic_tools:
                body["tools"] = anthropic_tools
        elif envelope is not None:
            name = envelope.get("name") or _STRUCTURED_TOOL_NAME
            body["tools"] = [
                {
                    "name": name,
                    "description": envelope.get("description") or "Structured response",
                    "input_schema": envelope["parameters"],
                }
            ]
            body["tool_choice"] = {"type": "tool", "name": name}
        elif request.json_mode:
            body["system"] = body.get("system", "") + _JSON_INSTRUCTION

        if request.check_payload:
            return {"modelId": model_id, "body": body}

        client = self._get_client("bedrock-runtime", request.region)
        invoke_kwargs = {
            "modelId": model_id,
            "body": json.dumps(body),
            "contentType": "application/json",
            "accept": "application/json",
        }

        if request.stream:
            response = await self._call(
                client.invoke_model_with_response_stream,
                phase="generate",
                **invoke_kwargs,
            )
            events = response["body"]
            return GenerationStream(
                _decode_native_events(iterate_in_thread(events)),
                provider=self.name,
                text_of=stream_text,
                close=getattr(events, "close", None),
            )

        response = await self._call(client.invoke_model, phase="generate", **invoke_kwargs)
        payload = _read_json_body(response)
        return _parse_native_response(
            payload,
            structured=envelope is not None and not request.tools,
            json_mode=request.json_mode,
        )

    async def _converse_with_tools(
        self,
        request: GenerateRequest,
        model: str,
        system: str,
        history: list[Message],
    ) -> Any:
        kwargs = self._converse_kwargs(request, model, system, history, request.message)
        declarations = function_declarations(request.tools or ())
        if declarations:
            kwargs["toolConfig"] = {
                "tools": [
                    {
                        "toolSpec": {
                            "name": decl["name"],
                            "description": decl["description"] or decl["name"],
                            "inputSchema": {"json": decl["parameters"]},
                        }
                    }
                    for decl in declarations
                ]
            }
        else:
            log.debug("bedrock: no usable function tools, sending plain Converse request")

        if request.check_payload:
            return kwargs
        if request.stream:
            return await self._converse_stream(kwargs, request.region)

        client = self._get_client("bedrock-runtime", request.region)
        response = await self._call(client.converse, phase="generate", **kwargs)
        return _parse_converse_response(response)

    async def _converse_plain(
        self,
        request: GenerateRequest,
        model: str,
        system: str,
        history: list[Message],
    ) -> Any:
        # Converse: the system prompt travels inside the user turn.
        message = (
            f"System: {system}\n\nUser: {request.message}" if system else request.message
        )
        kwargs = self._converse_kwargs(request, model, "", history, message)

        if request.check_payload:
            return kwargs
        if request.stream:
            return await self._converse_stream(kwargs, request.region)

        client = self._get_client("bedrock-runtime", request.region)
        response = await self._call(client.converse, phase="generate", **kwargs)
        return _parse_converse_response(response)

    def _converse_kwargs(
        self,
        request: GenerateRequest,
        model: str,
        system: str,
        history: list[Message],
        message: str | list[dict[str, Any]],
    ) -> dict[str, Any]:
        system_blocks: list[dict[str, Any]] = [{"text": system}] if system else []
        messages: list[dict[str, Any]] = []
        for item in history:
            if item.role == "system":
                system_blocks.extend(_converse_blocks(item.content))
                continue
            _append_converse_message(messages, item.role, _converse_blocks(item.content))
        _append_converse_message(messages, "user", _converse_blocks(message))

        inference: dict[str, Any] = {"temperature": _temperature(request)}
        if request.max_tokens:
            inference["maxTokens"] = request.max_tokens

        kwargs: dict[str, Any] = {
            "modelId": resolve_model(model),
            "messages": messages,
            "inferenceConfig": inference,
        }
        if system_blocks:
            kwargs["system"] = system_blocks
        return kwargs

    async def _converse_stream(
        self, kwargs: dict[str, Any], region: str | None
    ) -> GenerationStream:
        client = self._get_client("bedrock-runtime", region)
        response = await self._call(client.converse_stream, phase="generate", **kwargs)
        events = response["stream"]
        return GenerationStream(
            iterate_in_thread(events),
            provider=self.name,
            text_of=stream_text,
            close=getattr(events, "close", None),
        )

    # ------------------------------------------------------------------
    # other operations
    # ------------------------------------------------------------------

    async def generate_with_image(self, request: ImageRequest) -> Any:
        """Describe an image; Claude uses the native API, other models Converse."""
        model = request.model or DEFAULT_IMAGE_MODEL
        system = DEFAULT_IMAGE_SYSTEM if request.system is None else request.system
        image_bytes = await _read_image(request.image_path)
        media_type = mimetypes.guess_type(request.image_path)[0] or "image/jpeg"
        history = normalize_messages(request.history)

        if is_claude_model(model):
            image_block = {
                "type": "image",
                "source": {
                    "type": "base64",
                    "media_type": media_type,
                    "data": base64.b64encode(image_bytes).decode("ascii"),
                },
            }
            content = [{"type": "text", "text": request.message}, image_block]
            messages: list[dict[str, Any]] = []
            for item in history:
                role = "assistant" if item.role == "assistant" else "user"
                _append_message(messages, {"role": role, "content": item.content})
            _append_message(messages, {"role": "user", "content": content})
            body: dict[str, Any] = {
                "anthropic_version": _ANTHROPIC_VERSION,
                "messages": messages,
                "max_tokens": request.max_tokens or _NATIVE_MAX_TOKENS,
                "temperature": _temperature(request),
            }
            if system:
                body["system"] = system
            model_id = resolve_model(model)
            if request.check_payload:
                return {"modelId": model_id, "body": body}
            client = self._get_client("bedrock-runtime", request.region)
            response = await self._call(
                client.invoke_model,
                phase="generate_with_image",
                modelId=model_id,
                body=json.dumps(body),
                contentType="application/json",
                accept="application/json",
            )
            return _parse_native_response(
                _read_json_body(response), structured=False, json_mode=False
            )

        image_format = media_type.split("/", 1)[-1].replace("jpg", "jpeg")
        blocks = [
            {"text": request.message},
            {"image": {"format": image_format, "source": {"bytes": image_bytes}}},
        ]
        kwargs = self._converse_kwargs(request, model, system, history, blocks)
        if request.check_payload:
            return kwargs
        client = self._get_client("bedrock-runtime", request.region)
        response = await self._call(client.converse, phase="generate_with_image", **kwargs)
        return _parse_converse_response(response)

    async def embed(self, request: EmbeddingRequest) -> Embedding:
        """Embed with a Titan model; one InvokeModel call per input string."""
        model_id = resolve_model(request.model or DEFAULT_EMBEDDING_MODEL)
        client = self._get_client("bedrock-runtime")

        async def embed_one(text: str) -> list[float]:
            response = await self._call(
                client.invoke_model,
                phase="embed",
                modelId=model_id,
                body=json.dumps({"inputText": text}),
                contentType="application/json",
                accept="application/json",
            )
            payload = _read_json_body(response)
            vector = payload.get("embedding")
            if not isinstance(vector, list):
                raise APIError(
                    "Bedrock embedding response has no 'embedding' vector",
                    provider=self.name,
                    phase="embed",
                )
            return vector

        vectors = await asyncio.gather(*(embed_one(text) for text in request.texts))
        return embedding_for(request, list(vectors))

    async def raw_llm_call(self, request: LLMRequest) -> str:
        """Run a bare text completion with a family-specific request body."""
        model_id = resolve_model(request.model or DEFAULT_LLM_MODEL)
        prompt = f"Human: {request.input} \nAssistant:"
        if request.system:
            prompt = f"{request.system}\n\n{prompt}"
        body, extract = _completion_body(model_id, prompt)
        client = self._get_client("bedrock-runtime")
        response = await self._call(
            client.invoke_model,
            phase="raw_llm_call",
            modelId=model_id,
            body=json.dumps(body),
            contentType="application/json",
            accept="application/json",
        )
        payload = _read_json_body(response)
        text = extract(payload)
        if not isinstance(text, str):
            raise APIError(
                f"Unexpected completion response for {model_id}",
                provider=self.name,
                phase="raw_llm_call",
            )
        return text

    async def text_to_speech(self, request: SpeechRequest) -> Path:
        """Synthesize speech with Polly and write it to ``speech_<ms>.<format>``."""
        output_format = request.output_format or DEFAULT_AUDIO_FORMAT
        client = self._get_client("polly")
        response = await self._call(
            client.synthesize_speech,
            phase="text_to_speech",
            OutputFormat=output_format,
            Text=request.text,
            TextType="text",
            VoiceId=request.voice or DEFAULT_VOICE,
            LanguageCode=request.language or DEFAULT_LANGUAGE,
            SampleRate=_SAMPLE_RATE,
            Engine=request.engine or DEFAULT_ENGINE,
        )
        audio = response.get("AudioStream")
        if audio is None:
            raise APIError(
                "Polly response has no AudioStream",
                provider=self.name,
                phase="text_to_speech",
            )
        directory = Path(request.output_path or DEFAULT_AUDIO_DIR)
        path = directory / f"speech_{int(time.time() * 1000)}.{output_format}"
        await asyncio.to_thread(_write_audio, audio, path)
        log.debug("bedrock: wrote speech audio to %s", path)
        return path

    async def aclose(self) -> None:
        """Close underlying boto3 clients."""
        clients = list(self._clients.values())
        self._clients.clear()
        for client in clients:
            close = getattr(client, "close", None)
            if callable(close):
                close()


def _temperature(request: GenerateRequest) -> float:
    return DEFAULT_TEMPERATURE if request.temperature is None else request.temperature


def _append_message(messages: list[dict[str, Any]], msg: dict[str, Any]) -> None:
    """Append *msg*, merging into the previous message when roles match.

    The messages API requires strict user/assistant alternation.
    """
    if messages and messages[-1]["role"] == msg["role"]:
        prev = messages[-1]
        prev_content = prev["content"]
        new_content = msg["content"]
        if isinstance(prev_content, str):
            prev_content = [{"type": "text", "text": prev_content}]
        if isinstance(new_content, str):
            new_content = [{"type": "text", "text": new_content}]
        prev["content"] = prev_content + new_content
    else:
        messages.append(msg)


def _converse_blocks(content: str | list[dict[str, Any]]) -> list[dict[str, Any]]:
    if isinstance(content, str):
        return [{"text": content}]
    return list(content)


def _append_converse_message(
    messages: list[dict[str, Any]], role: str, blocks: list[dict[str, Any]]
) -> None:
    if messages and messages[-1]["role"] == role:
        messages[-1]["content"].extend(blocks)
    else:
        messages.append({"role": role, "content": blocks})


def to_anthropic_tools(tools: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Convert request tools into Anthropic messages-API tool definitions.

    Predefined tools pass through unchanged; ``{"web_search_20250305": {...}}``
    style wrappers are unwrapped; function tools become custom tools.
    """
    converted: list[dict[str, Any]] = []
    for tool in tools:
        tool_type = tool.get("type")
        if tool_type == "function" or "functionDeclarations" in tool:
            for decl in function_declarations([tool]):
                converted.append(
                    {
                        "name": decl["name"],
                        "description": decl["description"],
                        "input_schema": decl["parameters"],
                    }
                )
        elif tool_type:
            converted.append(dict(tool))
        elif "web_search_20250305" in tool:
            options = tool["web_search_20250305"] or {}
            converted.append(
                {
                    "type": "web_search_20250305",
                    "name": options.get("name") or "web_search",
                    "max_uses": options.get("max_uses") or 5,
                }
            )
        elif tool:
            key, options = next(iter(tool.items()))
            converted.append({"type": key, **(options or {})})
    return converted


def _usage(input_tokens: Any, output_tokens: Any, total_tokens: Any = None) -> dict[str, int]:
    input_count = int(input_tokens or 0)
    output_count = int(output_tokens or 0)
    total = int(total_tokens) if total_tokens is not None else input_count + output_count
    return {
        "input_tokens": input_count,
        "output_tokens": output_count,
        "total_tokens": total,
    }


def _read_json_body(response: Any) -> dict[str, Any]:
    body = response["body"]
    data = body.read() if hasattr(body, "read") else body
    return json.loads(data)


def _parse_native_response(
    payload: dict[str, Any], *, structured: bool, json_mode: bool
) -> Any:
    """Parse an Anthropic messages-API response body."""
    content = payload.get("content")
    if not content:
        return payload

    if structured and content[0].get("type") == "tool_use":
        return content[0].get("input")

    text = ""
    tool_calls = []
    for item in content:
        if item.get("type") == "text":
            text += item.get("text", "")
        elif item.get("type") == "tool_use":
            tool_calls.append(
                {
                    "type": "function",
                    "name": item.get("name"),
                    "id": item.get("id"),
                    "args": item.get("input"),
                }
            )

    if tool_calls:
        usage = payload.get("usage") or {}
        result: ToolUseResult = {
            "content": text,
            "toolCalls": tool_calls,
            "metadata": {
                "finishReason": "TOOL_USE",
                "usage": _usage(usage.get("input_tokens"), usage.get("output_tokens")),
            },
        }
        return result
    if json_mode and not structured:
        return json_or_text(text, provider="bedrock")
    return text


def _parse_converse_response(response: dict[str, Any]) -> Any:
    """Parse a Converse API response into text or a tool-use result."""
    blocks = response.get("output", {}).get("message", {}).get("content") or []
    text = ""
    tool_calls = []
    for block in blocks:
        if "text" in block:
            text += block["text"]
        elif "toolUse" in block:
            tool_use = block["toolUse"]
            tool_calls.append(
                {
                    "type": "function",
                    "name": tool_use.get("name"),
                    "id": tool_use.get("toolUseId"),
                    "args": tool_use.get("input"),
                }
            )
    if not tool_calls:
        return text

    usage = response.get("usage") or {}
    result: ToolUseResult = {
        "content": text,
        "toolCalls": tool_calls,
        "metadata": {
            "finishReason": "TOOL_USE",
            "usage": _usage(
                usage.get("inputTokens"),
                usage.get("outputTokens"),
                usage.get("totalTokens"),
            ),
        },
    }
    return result


async def _decode_native_events(events: AsyncIterator[Any]) -> AsyncIterator[dict[str, Any]]:
    """Decode InvokeModelWithResponseStream chunks into messages-API events."""
    async for event in events:
        chunk = event.get("chunk")
        if chunk and "bytes" in chunk:
            yield json.loads(chunk["bytes"])


def stream_text(chunk: Any) -> str | None:
    """Return the text delta of a Converse or messages-API stream event."""
    if not isinstance(chunk, dict):
        return None
    if "contentBlockDelta" in chunk:
        return chunk["contentBlockDelta"].get("delta", {}).get("text")
    if chunk.get("type") == "content_block_delta":
        return (chunk.get("delta") or {}).get("text")
    return None


def _completion_body(
    model_id: str, prompt: str
) -> tuple[dict[str, Any], Callable[[dict[str, Any]], Any]]:
    """Return the text-completion body for a model family and its reader."""
    if "anthropic" in model_id:
        return (
            {"prompt": prompt, "max_tokens_to_sample": _LLM_MAX_TOKENS},
            lambda payload: payload.get("completion"),
        )
    if "titan" in model_id:
        return (
            {
                "inputText": prompt,
                "textGenerationConfig": {"maxTokenCount": _LLM_MAX_TOKENS},
            },
            lambda payload: (payload.get("results") or [{}])[0].get("outputText"),
        )
    if "meta" in model_id:
        return (
            {"prompt": prompt, "max_gen_len": _LLM_MAX_TOKENS},
            lambda payload: payload.get("generation"),
        )
    if "mistral" in model_id:
        return (
            {"prompt": prompt, "max_tokens": _LLM_MAX_TOKENS},
            lambda payload: (payload.get("outputs") or [{}])[0].get("text"),
        )
    raise ValidationError(
        f"Raw completion is not available for model {model_id!r}",
        hint="Use an Anthropic, Titan, Llama or Mistral text model.",
    )


async def _read_image(image_path: str) -> bytes:
    try:
        return await asyncio.to_thread(Path(image_path).read_bytes)
    except OSError as e:
        raise ValidationError(
            f"Cannot read image file {image_path!r}: {e}",
            hint="Check that image_path points to a readable file.",
        ) from e


def _write_audio(audio: Any, path: Path) -> None:
    """Write a Polly AudioStream (streaming body or bytes) to *path*."""
    path.parent.mkdir(parents=True, exist_ok=True)
    if isinstance(audio, (bytes, bytearray)):
        path.write_bytes(audio)
        return
    try:
        with path.open("wb") as f:
            for chunk in iter(lambda: audio.read(64 * 1024), b""):
                f.write(chunk)
    finally:
        close = getattr(audio, "close", None)
        if callable(close):
            close()
