"""Bedrock model alias table.

Maps short model aliases to the fully-qualified Bedrock model identifier plus
any request parameters the model requires. Each entry is a set of dotted
paths applied onto a request payload by ``integrate_model_parameters``.
"""

from __future__ import annotations

import copy
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Mapping

_ANTHROPIC_VERSION = "bedrock-2023-05-31"
_ARN_PREFIX = "arn:aws:bedrock:"


def _anthropic(model_id: str) -> dict[str, str]:
    return {"model": model_id, "modelKwargs.anthropic_version": _ANTHROPIC_VERSION}


def _plain(model_id: str) -> dict[str, str]:
    return {"model": model_id}


_US_EAST_1 = "arn:aws:bedrock:us-east-1::foundation-model/"

_MODELS: dict[str, dict[str, str]] = {
    "deepseek.r1-v1:0": _plain("us.deepseek.r1-v1:0"),
    "anthropic.claude-sonnet-4": _anthropic("us.anthropic.claude-sonnet-4-20250514-v1:0"),
    "anthropic.claude-sonnet-3-7": _anthropic(
        _US_EAST_1 + "anthropic.claude-3-7-sonnet-20250219-v1:0"
    ),
    "anthropic.claude-3-7-sonnet-20250219-v1:0": _anthropic(
        _US_EAST_1 + "anthropic.claude-3-7-sonnet-20250219-v1:0"
    ),
    "anthropic.claude-sonnet-3-5-2": _plain("anthropic.claude-3-5-sonnet-20241022-v2:0"),
    "anthropic.claude-sonnet-3-5": _plain("anthropic.claude-3-5-sonnet-20240620-v1:0"),
    "anthropic.claude-3-5-sonnet-20240620-v1:0": _anthropic(
        "anthropic.claude-3-5-sonnet-20240620-v1:0"
    ),
    "anthropic.claude-sonnet-3": _anthropic("anthropic.claude-3-sonnet-20240229-v1:0"),
    "anthropic.claude-3-sonnet-20240229-v1:0": _anthropic(
        "anthropic.claude-3-sonnet-20240229-v1:0"
    ),
    "anthropic.claude-3-haiku": _anthropic("anthropic.claude-3-haiku-20240307-v1:0"),
    "anthropic.claude-3-5-haiku": _anthropic("anthropic.claude-3-5-haiku-20241022"),
    "anthropic.claude-3-5-haiku-serverless": _anthropic(
        "anthropic.claude-3-haiku-20240307-v1:0"
    ),
    "anthropic.haiku": _anthropic("anthropic.claude-3-haiku-20240307-v1:0"),
    "anthropic.claude-instant": _plain("anthropic.claude-instant-v1"),
    "anthropic.claude-instant-v1": _plain("anthropic.claude-instant-v1"),
    # Amazon Nova
    "amazon.nova-premier-v1:0": _plain(_US_EAST_1 + "amazon.nova-premier-v1:0"),
    "amazon.nova-pro-v1:0": _plain(_US_EAST_1 + "amazon.nova-pro-v1:0"),
    "amazon.nova-lite-v1:0": _plain(_US_EAST_1 + "amazon.nova-lite-v1:0"),
    "amazon.nova-micro-v1:0": _plain(_US_EAST_1 + "amazon.nova-micro-v1:0"),
    "amazon.nova-canvas-v1:0": _plain("amazon.nova-canvas-v1:0"),
    "amazon.nova-reel-v1:0": _plain("amazon.nova-reel-v1:0"),
    "amazon.nova-reel-v1:1": _plain("amazon.nova-reel-v1:1"),
    # Amazon Titan
    "amazon.titan-text-premier-v1:0": _plain("amazon.titan-text-premier-v1:0"),
    "amazon.titan-text-express-v1": _plain("amazon.titan-text-express-v1"),
    "amazon.titan-text-lite-v1": _plain("amazon.titan-text-lite-v1"),
    "amazon.titan-embed-text-v1": _plain("amazon.titan-embed-text-v1"),
    "amazon.titan-embed-text-v2:0": _plain("amazon.titan-embed-text-v2:0"),
    "amazon.titan-embed-image-v1": _plain("amazon.titan-embed-image-v1"),
    "amazon.titan-image-generator-v1": _plain("amazon.titan-image-generator-v1"),
    "amazon.titan-image-generator-v2:0": _plain("amazon.titan-image-generator-v2:0"),
    # Meta Llama
    "meta.llama3-8b": _plain("meta.llama3-8b-instruct-v1:0"),
    "meta.llama3-8b-instruct-v1:0": _plain("meta.llama3-8b-instruct-v1:0"),
    "meta.llama3-70b": _plain("meta.llama3-70b-instruct-v1:0"),
    "meta.llama3-70b-instruct-v1:0": _plain("meta.llama3-70b-instruct-v1:0"),
    # AI21 Labs
    "ai21.jamba-1-5-large-v1:0": _plain("ai21.jamba-1-5-large-v1:0"),
    "ai21.jamba-1-5-mini-v1:0": _plain("ai21.jamba-1-5-mini-v1:0"),
    "ai21.jamba-instruct-v1:0": _plain("ai21.jamba-instruct-v1:0"),
    # Stability AI
    "stability.stable-diffusion-xl-v1": _plain("stability.stable-diffusion-xl-v1"),
    "stability.stable-diffusion-xl-v1:0": _plain("stability.stable-diffusion-xl-v1:0"),
}

#: Read-only view of the alias table.
MODEL_ALIASES: Mapping[str, Mapping[str, str]] = MappingProxyType(
    {alias: MappingProxyType(params) for alias, params in _MODELS.items()}
)


def find_alias(model: str | None) -> str | None:
    """Return the alias table key for *model*, or None when it is unknown.

    Resolution order: direct alias, then (for ARNs) the trailing model id as
    an alias, then the alias whose resolved id equals that trailing id.
    """
    if not model:
        return None
    if model in MODEL_ALIASES:
        return model
    if not model.startswith(_ARN_PREFIX):
        return None
    model_id = model.rsplit("/", 1)[-1]
    if model_id in MODEL_ALIASES:
        return model_id
    for alias, params in MODEL_ALIASES.items():
        if params["model"] == model_id:
            return alias
    return None


def integrate_model_parameters(payload: Mapping[str, Any], model: str | None) -> dict[str, Any]:
    """Return a copy of *payload* with the model's required parameters set.

    Unknown models leave the payload unchanged.
    """
    result: dict[str, Any] = copy.deepcopy(dict(payload))
    alias = find_alias(model)
    if alias is None:
        return result
    for path, value in MODEL_ALIASES[alias].items():
        target = result
        *parents, leaf = path.split(".")
        for key in parents:
            target = target.setdefault(key, {})
        target[leaf] = value
    return result


def resolve_model(model: str) -> str:
    """Resolve an alias to its Bedrock model id; unknown ids pass through."""
    return integrate_model_parameters({}, model).get("model", model)
