"""Split an inbound byte stream into CRLF-terminated lines."""

from __future__ import annotations

_CRLF = b"\r\n"


class LineFramer:
    """Accumulates chunks and yields complete lines.

    A partial trailing line (including a lone CR) stays buffered until the
    rest arrives. There is no input length limit; a peer that never sends
    CRLF grows the buffer without bound, so callers that distrust the server
    must bound it themselves.
    """

    def __init__(self, encoding: str = "utf-8") -> None:
        self._encoding = encoding
        self._buffer = bytearray()

    def feed(self, chunk: bytes) -> list[str]:
        """Append chunk and return every line it completed, in order."""
        self._buffer += chunk
        lines: list[str] = []
        start = 0
        while True:
            end = self._buffer.find(_CRLF, start)
            if end < 0:
                break
            raw = bytes(self._buffer[start:end])
            lines.append(raw.decode(self._encoding, errors="replace"))
            start = end + len(_CRLF)
        if start:
            del self._buffer[:start]
        return lines

    def reset(self) -> None:
        """Drop any buffered partial line (new connection)."""
        self._buffer.clear()

    @property
    def pending(self) -> bytes:
        """Bytes waiting for a line terminator."""
        return bytes(self._buffer)
