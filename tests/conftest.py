"""Pytest configuration and fixtures.

Provides environment isolation, logging configuration, marker handling,
and automatic API test skipping. All fixtures here are autouse unless noted.
"""

from __future__ import annotations

from contextlib import suppress
import io
import json
import logging
import os
from typing import Any

import pytest

from genrelay.config import Config

OPENAI_KEY = "sk-test"
GOOGLE_KEY = "google-test"
AWS_ENV = {
    "AWS_ACCESS_KEY_ID": "AKIATEST",
    "AWS_SECRET_ACCESS_KEY": "secret-test",
    "AWS_REGION": "us-west-2",
}

# =============================================================================
# Test Doubles
# =============================================================================


def json_body(payload: Any) -> dict[str, Any]:
    """Fake boto3 InvokeModel response with a readable JSON body."""
    return {"body": io.BytesIO(json.dumps(payload).encode("utf-8"))}


class FakeEventStream:
    """Stand-in for a botocore EventStream: iterable and closable."""

    def __init__(self, events: list[Any]) -> None:
        self._events = list(events)
        self.closed = False

    def __iter__(self) -> Any:
        return iter(self._events)

    def close(self) -> None:
        self.closed = True


class FakeAsyncStream:
    """Stand-in for an SDK async stream with an async ``close``."""

    def __init__(self, chunks: list[Any]) -> None:
        self._chunks = list(chunks)
        self.closed = False

    def __aiter__(self) -> Any:
        return self._iterate()

    async def _iterate(self) -> Any:
        for chunk in self._chunks:
            yield chunk

    async def close(self) -> None:
        self.closed = True


# =============================================================================
# Configs (not autouse)
# =============================================================================


@pytest.fixture
def openai_config() -> Config:
    return Config(provider="openai", env={"OPENAI_API_KEY": OPENAI_KEY})


@pytest.fixture
def google_config() -> Config:
    return Config(provider="google", env={"GOOGLEGENAI_API_KEY": GOOGLE_KEY})


@pytest.fixture
def bedrock_config() -> Config:
    return Config(provider="bedrock", env=AWS_ENV)


# =============================================================================
# Environment Isolation (Autouse)
# =============================================================================


@pytest.fixture(autouse=True)
def block_dotenv(request, monkeypatch):
    """Prevent python-dotenv from loading project .env files during tests.

    Opt-out: @pytest.mark.allow_dotenv
    """
    if request.node.get_closest_marker("allow_dotenv"):
        return
    with suppress(Exception):
        monkeypatch.setattr(
            "dotenv.load_dotenv", lambda *_args, **_kwargs: False, raising=False
        )


@pytest.fixture(autouse=True)
def isolate_provider_env(request, monkeypatch):
    """Ensure a clean provider environment for each test.

    Clears OPENAI_*, GOOGLEGENAI_* and AWS_* env vars to prevent test
    pollution. Opt-out: @pytest.mark.allow_env_pollution or @pytest.mark.api
    """
    if request.node.get_closest_marker("allow_env_pollution") or (
        "api" in request.node.keywords
    ):
        return

    for key in list(os.environ.keys()):
        if key.startswith(("OPENAI_", "GOOGLEGENAI_", "AWS_")):
            monkeypatch.delenv(key, raising=False)


# =============================================================================
# Logging
# =============================================================================


@pytest.fixture(scope="session", autouse=True)
def quiet_noisy_libraries():
    """Suppress noisy third-party loggers."""
    for name in ("urllib3", "botocore", "httpx", "google_genai"):
        logging.getLogger(name).setLevel(logging.WARNING)


# =============================================================================
# Pytest Hooks
# =============================================================================

API_TESTS_REASON = "API tests require ENABLE_API_TESTS=1"


def _api_tests_enabled() -> bool:
    return bool(os.getenv("ENABLE_API_TESTS"))


def pytest_collection_modifyitems(items):
    """Automatically skip API tests when not explicitly enabled."""
    if _api_tests_enabled():
        return
    skip_api = pytest.mark.skip(reason=API_TESTS_REASON)
    for item in items:
        if "api" in item.keywords:
            item.add_marker(skip_api)
