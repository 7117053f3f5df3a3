"""GenerationStream lifecycle tests."""

from __future__ import annotations

import logging
from typing import Any

import pytest

from genrelay.errors import StreamConsumedError
from genrelay.streaming import GenerationStream

pytestmark = pytest.mark.unit


class _Source:
    """Async chunk source that records whether it was closed."""

    def __init__(self, chunks: list[dict[str, Any]]) -> None:
        self.chunks = chunks
        self.closed = False
        self.yielded = 0

    async def __call__(self) -> Any:
        try:
            for chunk in self.chunks:
                self.yielded += 1
                yield chunk
        finally:
            self.closed = True


def _stream(*texts: str | None) -> tuple[GenerationStream, _Source]:
    source = _Source([{"text": t} for t in texts])
    stream = GenerationStream(source(), provider="mock", text_of=lambda c: c["text"])
    return stream, source


@pytest.mark.asyncio
async def test_chunks_are_yielded_unmodified_in_order() -> None:
    stream, _ = _stream("a", "b")

    assert [chunk async for chunk in stream] == [{"text": "a"}, {"text": "b"}]


@pytest.mark.asyncio
async def test_text_deltas_skip_empty_chunks() -> None:
    stream, _ = _stream("Hel", None, "", "lo")

    assert [text async for text in stream.text_deltas()] == ["Hel", "lo"]


@pytest.mark.asyncio
async def test_collect_concatenates_and_releases() -> None:
    stream, source = _stream("Hel", "lo")

    assert await stream.collect() == "Hello"
    assert source.closed is True
    assert stream.closed is True


@pytest.mark.asyncio
async def test_stream_is_single_pass() -> None:
    stream, _ = _stream("a")
    await stream.collect()

    assert stream.consumed is True
    with pytest.raises(StreamConsumedError, match="already consumed"):
        await stream.collect()


@pytest.mark.asyncio
async def test_iterating_a_closed_stream_fails() -> None:
    stream, _ = _stream("a")
    await stream.aclose()

    with pytest.raises(StreamConsumedError):
        async for _chunk in stream:
            pass


@pytest.mark.asyncio
async def test_context_manager_releases_source_on_early_exit() -> None:
    stream, source = _stream("a", "b", "c")

    async with stream:
        async for _chunk in stream:
            break

    assert source.yielded == 1
    assert source.closed is True


@pytest.mark.asyncio
async def test_close_callbacks_run_once() -> None:
    stream, _ = _stream("a")
    calls: list[str] = []

    async def on_close() -> None:
        calls.append("closed")

    stream.add_close_callback(on_close)
    await stream.collect()
    await stream.aclose()

    assert calls == ["closed"]


@pytest.mark.asyncio
async def test_close_callback_failure_is_logged_not_raised(caplog) -> None:
    stream, _ = _stream("a")

    async def broken() -> None:
        raise RuntimeError("socket already gone")

    stream.add_close_callback(broken)
    with caplog.at_level(logging.WARNING, logger="genrelay.streaming"):
        await stream.collect()

    assert "socket already gone" in caplog.text


@pytest.mark.asyncio
async def test_consumer_error_still_releases_source() -> None:
    stream, source = _stream("a", "b")

    with pytest.raises(ValueError, match="consumer failed"):
        async with stream:
            async for _chunk in stream:
                raise ValueError("consumer failed")

    assert source.closed is True


@pytest.mark.asyncio
async def test_close_before_iterating_closes_native_stream() -> None:
    source = _Source([{"text": "a"}])
    native_closes: list[str] = []
    stream = GenerationStream(
        source(),
        provider="bedrock",
        text_of=lambda c: c["text"],
        close=lambda: native_closes.append("closed"),
    )

    await stream.aclose()
    await stream.aclose()

    assert native_closes == ["closed"]
    assert source.yielded == 0


@pytest.mark.asyncio
async def test_async_native_close_is_awaited_on_context_exit() -> None:
    source = _Source([{"text": "a"}])
    native_closes: list[str] = []

    async def close() -> None:
        native_closes.append("closed")

    stream = GenerationStream(
        source(), provider="openai", text_of=lambda c: c["text"], close=close
    )

    async with stream:
        pass

    assert native_closes == ["closed"]
    assert stream.closed is True
