"""Configuration: frozen Config with provider selection and credential resolution."""

from __future__ import annotations

from dataclasses import dataclass, field
import os
from typing import TYPE_CHECKING, Literal, get_args

from dotenv import load_dotenv

from genrelay.errors import ConfigurationError

if TYPE_CHECKING:
    from collections.abc import Mapping

load_dotenv()

ProviderName = Literal["bedrock", "openai", "google"]

SUPPORTED_PROVIDERS: tuple[str, ...] = get_args(ProviderName)

#: Every credential key genrelay knows how to resolve.
CREDENTIAL_KEYS: tuple[str, ...] = (
    "OPENAI_API_KEY",
    "GOOGLEGENAI_API_KEY",
    "AWS_ACCESS_KEY_ID",
    "AWS_SECRET_ACCESS_KEY",
    "AWS_REGION",
)

# Keys that must resolve to a non-empty value before any network call.
_REQUIRED_CREDENTIALS: dict[str, tuple[str, ...]] = {
    "bedrock": ("AWS_ACCESS_KEY_ID", "AWS_SECRET_ACCESS_KEY"),
    "openai": ("OPENAI_API_KEY",),
    "google": ("GOOGLEGENAI_API_KEY",),
}

# Everything else, custom keys included, is redacted in reprs.
_PUBLIC_KEYS = frozenset({"AWS_REGION"})


def resolve_credentials(
    env: Mapping[str, str | None] | None = None,
    host_env: Mapping[str, str | None] | None = None,
) -> dict[str, str]:
    """Resolve credential keys with precedence: per-call > environment > host.

    Custom keys in *env* that genrelay does not know about are kept as-is so
    callers can thread extra settings through to their own code.
    """
    resolved: dict[str, str] = {}
    for key in CREDENTIAL_KEYS:
        for source in (env, os.environ, host_env):
            if source is None:
                continue
            value = source.get(key)
            if value:
                resolved[key] = value
                break
    for key, value in (env or {}).items():
        if key not in resolved and value:
            resolved[key] = value
    return resolved


@dataclass(frozen=True)
class Config:
    """Immutable configuration for one genrelay call.

    The provider is required. Credentials are auto-resolved from per-call
    overrides (``env``), then the process environment, then the host
    context (``host_env``).

    Example:
        config = Config(provider="openai")
        # OPENAI_API_KEY is resolved from the environment
    """

    provider: ProviderName
    #: Per-call credential overrides; take priority over everything else.
    env: Mapping[str, str | None] | None = None
    #: Host-context fallback consulted after the process environment.
    host_env: Mapping[str, str | None] | None = None
    use_mock: bool = False
    credentials: dict[str, str] = field(default_factory=dict, init=False)

    def __post_init__(self) -> None:
        """Validate the provider and resolve credentials."""
        if self.provider not in SUPPORTED_PROVIDERS:
            raise ConfigurationError(
                f"Unsupported provider: {self.provider!r}",
                hint=f"Valid providers are: {', '.join(SUPPORTED_PROVIDERS)}",
            )

        object.__setattr__(
            self, "credentials", resolve_credentials(self.env, self.host_env)
        )

        if self.use_mock:
            return

        missing = [
            key
            for key in _REQUIRED_CREDENTIALS[self.provider]
            if not self.credentials.get(key)
        ]
        if missing:
            raise ConfigurationError(
                f"{', '.join(missing)} not found for provider {self.provider!r}",
                hint=f"Set {' and '.join(missing)} or pass Config(env={{...}}).",
            )

    def credential(self, key: str, default: str | None = None) -> str | None:
        """Return a resolved credential value."""
        return self.credentials.get(key, default)

    def __str__(self) -> str:
        """Return a redacted, developer-friendly representation."""
        shown = {
            key: (value if key in _PUBLIC_KEYS else "[REDACTED]")
            for key, value in sorted(self.credentials.items())
        }
        return (
            f"Config(provider={self.provider!r}, credentials={shown!r}, "
            f"use_mock={self.use_mock})"
        )

    __repr__ = __str__
