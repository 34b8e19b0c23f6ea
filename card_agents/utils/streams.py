"""Helpers for consuming chunked HTTP bodies."""

import asyncio
import codecs
from collections.abc import AsyncIterable, AsyncIterator, Awaitable, Callable


class LineDecoder:
    """Incremental UTF-8 decoder that splits on newlines.

    Multi-byte characters split across chunks are held back until complete,
    and a trailing partial line stays buffered until more data (or
    :meth:`flush`) arrives.
    """

    def __init__(self):
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""

    def feed(self, chunk: bytes) -> list[str]:
        """Decode a chunk and return the lines it completed."""
        self._buffer += self._decoder.decode(chunk)
        if "\n" not in self._buffer:
            return []
        *lines, self._buffer = self._buffer.split("\n")
        return [line.rstrip("\r") for line in lines]

    def flush(self) -> list[str]:
        """Return whatever remains once the stream has ended."""
        self._buffer += self._decoder.decode(b"", final=True)
        remainder, self._buffer = self._buffer, ""
        if not remainder:
            return []
        return [remainder.rstrip("\r")]


async def iter_lines(chunks: AsyncIterable[bytes]) -> AsyncIterator[str]:
    """Yield decoded lines from a byte stream, flushing the tail at the end."""
    decoder = LineDecoder()
    async for chunk in chunks:
        for line in decoder.feed(chunk):
            yield line
    for line in decoder.flush():
        yield line


async def iter_until_signal(
    chunks: AsyncIterable[bytes],
    signal: asyncio.Event | None,
) -> AsyncIterator[bytes]:
    """Yield chunks until the stream ends or ``signal`` is set.

    A read that is blocked waiting for the server is abandoned as soon as
    the signal fires.
    """
    if signal is None:
        async for chunk in chunks:
            yield chunk
        return

    iterator = chunks.__aiter__()
    stop = asyncio.ensure_future(signal.wait())
    next_chunk: asyncio.Future | None = None
    try:
        while not signal.is_set():
            next_chunk = asyncio.ensure_future(iterator.__anext__())
            done, _ = await asyncio.wait({next_chunk, stop}, return_when=asyncio.FIRST_COMPLETED)
            if next_chunk not in done:
                return
            try:
                chunk = next_chunk.result()
            except StopAsyncIteration:
                return
            yield chunk
    finally:
        stop.cancel()
        if next_chunk is not None and not next_chunk.done():
            next_chunk.cancel()
            await asyncio.gather(next_chunk, return_exceptions=True)


async def wait_or_signal(
    delay: float,
    signal: asyncio.Event | None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> bool:
    """Sleep for ``delay`` seconds, waking early when ``signal`` is set.

    Returns:
        True if the signal fired before the delay elapsed.
    """
    if signal is None:
        await sleep(delay)
        return False
    if signal.is_set():
        return True

    waiter = asyncio.ensure_future(signal.wait())
    sleeper = asyncio.ensure_future(sleep(delay))
    try:
        await asyncio.wait({waiter, sleeper}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        waiter.cancel()
        sleeper.cancel()
    return signal.is_set()
