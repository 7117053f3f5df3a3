"""Exception hierarchy for genrelay."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Iterator


class GenRelayError(Exception):
    """Base exception for all genrelay errors."""

    def __init__(self, message: str, *, hint: str | None = None) -> None:
        super().__init__(message)
        self.hint = hint


class ConfigurationError(GenRelayError):
    """Missing credential, unknown provider, or invalid configuration."""


class UnsupportedOperationError(ConfigurationError):
    """The selected provider does not implement the requested operation.

    This is a static incapacity of the adapter, raised before any network
    call is attempted.
    """

    def __init__(
        self,
        provider: str,
        operation: str,
        *,
        hint: str | None = None,
    ) -> None:
        super().__init__(
            f"{provider}: {operation} is not supported by this provider",
            hint=hint,
        )
        self.provider = provider
        self.operation = operation


class ValidationError(GenRelayError):
    """A required argument is missing or has the wrong shape."""


class MalformedResponseError(GenRelayError):
    """Model output could not be parsed in JSON mode.

    Adapters always recover from this locally by returning the raw text.
    """

    def __init__(self, message: str, *, raw: str) -> None:
        super().__init__(message)
        self.raw = raw


class StreamConsumedError(GenRelayError):
    """A generation stream was iterated more than once."""


class APIError(GenRelayError):
    """The upstream provider call failed.

    Providers attach retry metadata so callers can decide on bounded retries
    without brittle substring matching.
    """

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        retryable: bool | None = None,
        status_code: int | None = None,
        retry_after_s: float | None = None,
        provider: str | None = None,
        phase: str | None = None,
    ) -> None:
        super().__init__(message, hint=hint)
        self.retryable = retryable
        self.status_code = status_code
        self.retry_after_s = retry_after_s
        self.provider = provider
        self.phase = phase


class RateLimitError(APIError):
    """Rate limit exceeded (HTTP 429)."""


def format_error(exc: BaseException) -> dict[str, Any]:
    """Render an exception as the structured error body returned to users.

    Never includes a traceback.
    """
    body: dict[str, Any] = {"error": str(exc) or type(exc).__name__}
    if isinstance(exc, GenRelayError) and exc.hint:
        body["hint"] = exc.hint
    if isinstance(exc, APIError):
        if exc.provider is not None:
            body["provider"] = exc.provider
        if exc.status_code is not None:
            body["status_code"] = exc.status_code
    return body


def _walk_exception_chain(exc: BaseException) -> Iterator[BaseException]:
    """Yield *exc* and its ``__cause__``/``__context__`` chain, with cycle protection."""
    seen: set[int] = set()
    stack: list[BaseException] = [exc]
    while stack:
        cur = stack.pop()
        if id(cur) in seen:
            continue
        seen.add(id(cur))
        yield cur

        cause = cur.__cause__
        if isinstance(cause, BaseException):
            stack.append(cause)
        context = cur.__context__
        if isinstance(context, BaseException):
            stack.append(context)
