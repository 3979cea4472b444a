"""Stdio transport: newline-delimited JSON-RPC frames.

Pure byte transport with no knowledge of the envelope.  Reads happen on the event
loop; writes are pushed to a worker thread under a lock so a slow consumer of
stdout can never stall the reader, and two responses never interleave.
"""

from __future__ import annotations

import asyncio
import logging
import sys
from collections.abc import AsyncGenerator, AsyncIterator
from contextlib import asynccontextmanager
from typing import BinaryIO

from sidero.errors import FramingError

logger = logging.getLogger(__name__)

# Inline code and rule payloads travel inside a single frame.
MAX_FRAME_BYTES = 16 * 1024 * 1024


class StdioFramer:
    """Frame reader/writer over an ``asyncio.StreamReader`` and a binary sink.

    The reader must be created with ``limit=max_frame_bytes`` (see
    :func:`open_stdio`) so oversized lines surface as ``FramingError``.
    """

    def __init__(self, reader: asyncio.StreamReader, writer: BinaryIO) -> None:
        self._reader = reader
        self._writer = writer
        self._write_lock = asyncio.Lock()
        self._consumed = False

    async def frames(self) -> AsyncIterator[bytes]:
        """Yield raw frames until the input stream closes.

        Blank lines are skipped.  A trailing line without a newline before EOF
        is still delivered.  Not restartable.
        """
        if self._consumed:
            msg = "frame stream already consumed"
            raise RuntimeError(msg)
        self._consumed = True
        while True:
            try:
                line = await self._reader.readline()
            except ValueError as e:
                # StreamReader.readline wraps LimitOverrunError in ValueError.
                msg = f"Frame exceeds maximum size: {e}"
                raise FramingError(msg) from e
            if not line:
                return
            frame = line.strip()
            if frame:
                yield frame

    async def write(self, payload: bytes) -> None:
        """Write one frame atomically with respect to other writers."""
        if b"\n" in payload:
            msg = "payload must not contain a newline"
            raise ValueError(msg)
        data = payload + b"\n"
        async with self._write_lock:
            await asyncio.to_thread(self._write_blocking, data)

    def _write_blocking(self, data: bytes) -> None:
        self._writer.write(data)
        self._writer.flush()


@asynccontextmanager
async def open_stdio(max_frame_bytes: int = MAX_FRAME_BYTES) -> AsyncGenerator[StdioFramer, None]:
    """Connect the process's stdin/stdout to a :class:`StdioFramer`."""
    loop = asyncio.get_running_loop()
    reader = asyncio.StreamReader(limit=max_frame_bytes)
    transport, _ = await loop.connect_read_pipe(
        lambda: asyncio.StreamReaderProtocol(reader),
        sys.stdin,
    )
    try:
        yield StdioFramer(reader, sys.stdout.buffer)
    finally:
        transport.close()
