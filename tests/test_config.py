"""Configuration boundary tests."""

from __future__ import annotations

import pytest

from genrelay.config import SUPPORTED_PROVIDERS, Config, resolve_credentials
from genrelay.errors import ConfigurationError

pytestmark = pytest.mark.unit


def test_supported_providers_are_the_closed_set() -> None:
    assert set(SUPPORTED_PROVIDERS) == {"bedrock", "openai", "google"}


def test_unknown_provider_is_rejected() -> None:
    with pytest.raises(ConfigurationError, match="Unsupported provider") as exc:
        Config(provider="anthropic", use_mock=True)  # type: ignore[arg-type]

    assert "bedrock" in (exc.value.hint or "")


def test_mock_mode_needs_no_credentials() -> None:
    cfg = Config(provider="google", use_mock=True)

    assert cfg.provider == "google"
    assert cfg.credential("GOOGLEGENAI_API_KEY") is None


def test_missing_credential_names_the_variable() -> None:
    with pytest.raises(ConfigurationError) as exc:
        Config(provider="openai")

    assert "OPENAI_API_KEY" in str(exc.value)
    assert "Config(env=" in (exc.value.hint or "")


def test_bedrock_requires_both_aws_keys() -> None:
    with pytest.raises(ConfigurationError, match="AWS_SECRET_ACCESS_KEY"):
        Config(provider="bedrock", env={"AWS_ACCESS_KEY_ID": "id"})


def test_credentials_resolve_from_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("OPENAI_API_KEY", "env-key")

    assert Config(provider="openai").credential("OPENAI_API_KEY") == "env-key"


def test_per_call_env_takes_precedence(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("OPENAI_API_KEY", "env-key")

    cfg = Config(provider="openai", env={"OPENAI_API_KEY": "call-key"})

    assert cfg.credential("OPENAI_API_KEY") == "call-key"


def test_host_env_is_the_last_fallback(monkeypatch: pytest.MonkeyPatch) -> None:
    host = {"OPENAI_API_KEY": "host-key", "AWS_REGION": "eu-west-1"}
    monkeypatch.setenv("AWS_REGION", "us-east-2")

    resolved = resolve_credentials(None, host)

    assert resolved["OPENAI_API_KEY"] == "host-key"
    assert resolved["AWS_REGION"] == "us-east-2"


def test_empty_values_do_not_shadow_fallbacks(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("GOOGLEGENAI_API_KEY", "env-key")

    resolved = resolve_credentials({"GOOGLEGENAI_API_KEY": ""})

    assert resolved["GOOGLEGENAI_API_KEY"] == "env-key"


def test_custom_env_keys_are_kept() -> None:
    resolved = resolve_credentials({"MY_SETTING": "x"})

    assert resolved["MY_SETTING"] == "x"


def test_config_is_immutable() -> None:
    cfg = Config(provider="openai", use_mock=True)

    with pytest.raises(AttributeError):
        cfg.provider = "google"  # type: ignore[misc]


def test_repr_redacts_secrets() -> None:
    cfg = Config(
        provider="bedrock",
        env={
            "AWS_ACCESS_KEY_ID": "AKIASECRET",
            "AWS_SECRET_ACCESS_KEY": "very-secret",
            "AWS_REGION": "us-west-2",
        },
    )

    text = repr(cfg)

    assert "AKIASECRET" not in text
    assert "very-secret" not in text
    assert "us-west-2" in text
    assert str(cfg) == text
