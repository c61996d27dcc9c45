"""Byte accounting for response bodies.

Both classes here are decorators by composition: they hold a reference
to the real output (an ASGI ``send`` callable, or a binary stream),
forward every write to it unchanged, and keep a running total of the
bytes that went through.  Nothing is buffered, so wrapping a streaming
response does not change its memory profile or its timing.

TEXT WRITES
-------------
Byte writes are counted exactly.  Text writes are counted per
character without encoding the whole string first:

  code point <= 0x7F   → 1 byte
  code point <= 0x7FF  → 2 bytes
  anything else        → 3 bytes

This is the UTF-8 width for everything in the Basic Multilingual
Plane; characters outside it (emoji, for instance) take 4 bytes on the
wire but are counted as 3.  Callers that need exact accounting for
such text should encode it themselves and use ``write()``.

The total is only as complete as the wrapper's view: a write that
bypasses the wrapper is not counted.  Each instance belongs to exactly
one request.

OUTPUT THAT DOES NOT GO THROUGH ASGI
--------------------------------------
MetricsMiddleware uses ``CountingSend``.  Code that writes a response
to a stream itself (a file export, a socket handler, a WSGI body)
wraps the stream in ``CountingWriter`` and reports the total the same
way the middleware does:

    with CountingWriter(stream) as out:
        out.print("id,name")
        for row in rows:
            out.write(row.encode())
        MONITOR_METRICS.collect_size("file", "200", "EXPORT", "/exports/users",
                                     False, "", out.byte_count)
"""

from __future__ import annotations

import os
from collections.abc import Iterable
from typing import Any, BinaryIO

from starlette.types import Message, Send


def _char_length(char: str) -> int:
    code = ord(char)
    if code <= 0x7F:
        return 1
    if code <= 0x7FF:
        return 2
    return 3


def encoded_length(text: str | None) -> int:
    """Estimated encoded size of ``text`` in bytes (see module docs)."""
    if text is None:
        return 0
    return sum(_char_length(c) for c in text)


class CountingWriter:
    """Binary stream decorator that also accepts text output."""

    def __init__(self, stream: BinaryIO, encoding: str = "utf-8") -> None:
        self._stream = stream
        self._encoding = encoding
        self._newline_length = encoded_length(os.linesep)
        self._count = 0

    @property
    def byte_count(self) -> int:
        return self._count

    def write(self, data: bytes | bytearray | memoryview | None) -> int:
        if data is None:
            return 0
        written = self._stream.write(data)
        if written is None:
            written = memoryview(data).nbytes
        self._count += written
        return written

    def write_text(self, text: str | None) -> None:
        if text is None:
            return
        self._stream.write(text.encode(self._encoding))
        self._count += encoded_length(text)

    def writelines(self, lines: Iterable[bytes] | None) -> None:
        if lines is None:
            return
        for line in lines:
            self.write(line)

    def print(self, *values: Any, sep: str = " ", end: str | None = None) -> None:
        """Text output like the builtin ``print``; ``end`` defaults to os.linesep."""
        self.write_text(sep.join(str(v) for v in values))
        if end is None:
            self.println()
        else:
            self.write_text(end)

    def println(self, value: Any = None) -> None:
        if value is not None:
            self.write_text(str(value))
        self._stream.write(os.linesep.encode(self._encoding))
        self._count += self._newline_length

    def flush(self) -> None:
        self._stream.flush()

    def close(self) -> None:
        self._stream.close()

    def __enter__(self) -> CountingWriter:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class CountingSend:
    """ASGI ``send`` decorator counting response body bytes.

    Also remembers the status from ``http.response.start`` so the
    middleware does not need a second wrapper for it.
    """

    def __init__(self, send: Send) -> None:
        self._send = send
        self.status_code: int | None = None
        self.byte_count = 0

    @property
    def response_started(self) -> bool:
        return self.status_code is not None

    async def __call__(self, message: Message) -> None:
        if message["type"] == "http.response.start":
            self.status_code = message["status"]
        await self._send(message)
        # Only bodies that reached the server are counted.
        if message["type"] == "http.response.body":
            self.byte_count += len(message.get("body", b""))
