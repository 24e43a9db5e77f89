from __future__ import annotations

import codecs
from collections.abc import AsyncIterator
import sys
from typing import Any

import anyio
from anyio.abc import ByteReceiveStream
from anyio.streams.buffered import BufferedByteReceiveStream

from ..logging import log_pipeline


async def iter_bytes_lines(stream: ByteReceiveStream) -> AsyncIterator[bytes]:
    buffered = BufferedByteReceiveStream(stream)
    while True:
        try:
            line = await buffered.receive_until(b"\n", sys.maxsize)
        except anyio.IncompleteRead:
            tail = buffered.buffer
            if tail:
                yield bytes(tail)
            return
        yield line


async def iter_text_chunks(stream: ByteReceiveStream) -> AsyncIterator[str]:
    """Yield decoded chunks as they arrive, never splitting a UTF-8 sequence."""
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    async for chunk in stream:
        text = decoder.decode(chunk)
        if text:
            yield text
    tail = decoder.decode(b"", final=True)
    if tail:
        yield tail


async def read_capped(stream: ByteReceiveStream, limit: int) -> tuple[bytes, bool]:
    """Read *stream* to EOF, keeping at most *limit* bytes.

    Keeps draining past the limit so the child never blocks on a full pipe.
    """
    buf = bytearray()
    truncated = False
    async for chunk in stream:
        room = limit - len(buf)
        if room > 0:
            buf.extend(chunk[:room])
        if len(chunk) > room:
            truncated = True
    return bytes(buf), truncated


_STDERR_CAPTURE_MAX = 20


async def drain_stderr(
    stream: ByteReceiveStream,
    logger: Any,
    tag: str,
    capture: list[str] | None = None,
) -> None:
    try:
        async for line in iter_bytes_lines(stream):
            text = line.decode("utf-8", errors="replace")
            log_pipeline(
                logger,
                "subprocess.stderr",
                tag=tag,
                line=text,
            )
            if capture is not None and len(capture) < _STDERR_CAPTURE_MAX:
                capture.append(text)
    except Exception as exc:  # noqa: BLE001
        log_pipeline(
            logger,
            "subprocess.stderr.error",
            tag=tag,
            error=str(exc),
        )
