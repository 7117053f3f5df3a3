"""genrelay: one call surface over Bedrock, OpenAI and Google generative AI.

Public API:
    - generate() / generate_with_tools(): Text, JSON, tool-use and streams
    - generate_with_image(), embed(), raw_llm_call(), text_to_speech()
    - integrate_data_to_prompt_template(): Prompt template integration
    - Config: Provider selection and credentials
"""

from __future__ import annotations

import logging

from genrelay.config import Config
from genrelay.dispatch import (
    embed,
    generate,
    generate_with_image,
    generate_with_tools,
    list_providers,
    raw_llm_call,
    text_to_speech,
)
from genrelay.errors import (
    APIError,
    ConfigurationError,
    GenRelayError,
    MalformedResponseError,
    RateLimitError,
    StreamConsumedError,
    UnsupportedOperationError,
    ValidationError,
    format_error,
)
from genrelay.messages import Message, normalize_messages
from genrelay.normalize import format_tool_response
from genrelay.providers.models import (
    BatchEmbedding,
    EmbeddingRequest,
    GenerateRequest,
    ImageRequest,
    LLMRequest,
    SingleEmbedding,
    SpeechRequest,
)
from genrelay.retry import generate_until_content
from genrelay.streaming import GenerationStream
from genrelay.templates import integrate, integrate_data_to_prompt_template

try:
    from importlib.metadata import PackageNotFoundError, version

    __version__ = version("genrelay")
except PackageNotFoundError:
    __version__ = "0.0.0+unknown"

# Library-level NullHandler: stay silent unless the consumer configures logging.
logging.getLogger("genrelay").addHandler(logging.NullHandler())

__all__ = [
    "APIError",
    "BatchEmbedding",
    "Config",
    "ConfigurationError",
    "EmbeddingRequest",
    "GenRelayError",
    "GenerateRequest",
    "GenerationStream",
    "ImageRequest",
    "LLMRequest",
    "MalformedResponseError",
    "Message",
    "RateLimitError",
    "SingleEmbedding",
    "SpeechRequest",
    "StreamConsumedError",
    "UnsupportedOperationError",
    "ValidationError",
    "embed",
    "format_error",
    "format_tool_response",
    "generate",
    "generate_until_content",
    "generate_with_image",
    "generate_with_tools",
    "integrate",
    "integrate_data_to_prompt_template",
    "list_providers",
    "normalize_messages",
    "raw_llm_call",
    "text_to_speech",
]
