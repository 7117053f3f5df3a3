"""Explicit streaming abstraction over provider-native chunk sequences.

Each adapter wraps its SDK stream in a ``GenerationStream`` together with a
function that extracts the text delta from one native chunk, plus the SDK
stream's own close handle. Item types by provider:

- ``openai``: ``ChatCompletionChunk`` objects.
- ``google``: ``GenerateContentResponse`` objects.
- ``bedrock``: decoded event dicts, either Converse stream events
  (``{"contentBlockDelta": ...}``) or Anthropic messages events
  (``{"type": "content_block_delta", ...}``).

Chunks are yielded unmodified; normalization to text happens only when the
consumer asks for it via ``text_deltas()`` or ``collect()``.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import TYPE_CHECKING, Any

from genrelay.errors import StreamConsumedError

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Awaitable, Callable
    from types import TracebackType

log = logging.getLogger(__name__)


class GenerationStream:
    """A lazy, single-pass, non-restartable sequence of native chunks.

    Use as an async context manager so the underlying network stream is
    released even when iteration stops early::

        async with await genrelay.generate(request, config=config) as stream:
            async for text in stream.text_deltas():
                print(text, end="")
    """

    def __init__(
        self,
        chunks: AsyncIterator[Any],
        *,
        provider: str,
        text_of: Callable[[Any], str | None],
        close: Callable[[], Any] | None = None,
    ) -> None:
        self.provider = provider
        self._chunks = chunks
        self._text_of = text_of
        self._close = close
        self._iterator: Any = None
        self._close_callbacks: list[Callable[[], Awaitable[None]]] = []
        self._closed = False

    def add_close_callback(self, callback: Callable[[], Awaitable[None]]) -> None:
        """Register a coroutine function to run once when the stream closes."""
        self._close_callbacks.append(callback)

    @property
    def consumed(self) -> bool:
        return self._iterator is not None

    @property
    def closed(self) -> bool:
        return self._closed

    def __aiter__(self) -> AsyncIterator[Any]:
        if self._iterator is not None or self._closed:
            raise StreamConsumedError(
                f"{self.provider} stream was already consumed",
                hint="Streams are single-pass; issue a new request to read again.",
            )
        self._iterator = self._iterate()
        return self._iterator

    async def _iterate(self) -> AsyncIterator[Any]:
        try:
            async for chunk in self._chunks:
                yield chunk
        finally:
            await self._release()

    async def text_deltas(self) -> AsyncIterator[str]:
        """Yield the non-empty text delta of each chunk, in arrival order."""
        async for chunk in self:
            text = self._text_of(chunk)
            if text:
                yield text

    async def collect(self) -> str:
        """Consume the whole stream and return the concatenated text."""
        parts = [text async for text in self.text_deltas()]
        return "".join(parts)

    async def aclose(self) -> None:
        """Stop the stream and release the underlying SDK resources."""
        iterator = self._iterator
        if iterator is not None:
            await iterator.aclose()
        await self._release()

    async def _release(self) -> None:
        if self._closed:
            return
        self._closed = True
        aclose = getattr(self._chunks, "aclose", None)
        if callable(aclose):
            await aclose()
        # Runs even when the wrapper generator never started.
        if self._close is not None:
            result = self._close()
            if inspect.isawaitable(result):
                await result
        for callback in self._close_callbacks:
            try:
                await callback()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                # Cleanup must never mask the consumer's own error.
                log.warning("%s stream cleanup failed: %s", self.provider, exc)

    async def __aenter__(self) -> GenerationStream:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()
