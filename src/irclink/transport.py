"""Byte transport used by Connection.

``Transport`` is the interface the connection manager consumes;
``StreamTransport`` implements it over asyncio streams.
"""

from __future__ import annotations

import asyncio
import contextlib
import ssl
from collections.abc import Callable
from typing import Protocol

from loguru import logger

DataCallback = Callable[[bytes], None]
CloseCallback = Callable[[BaseException | None], None]

_READ_SIZE = 4096


class Transport(Protocol):
    """Connect/write/close plus data and close callbacks."""

    @property
    def is_open(self) -> bool: ...

    async def open(self, host: str, port: int, on_data: DataCallback, on_close: CloseCallback) -> None:
        """Open the connection; raise OSError on failure."""
        ...

    def write(self, data: bytes) -> None: ...

    async def drain(self) -> None:
        """Wait until buffered writes are flushed."""
        ...

    def close(self) -> None: ...


class StreamTransport:
    """Transport over ``asyncio.open_connection`` with a reader task."""

    def __init__(self, *, tls: bool = False, tls_verify: bool = True, connect_timeout: float = 30.0) -> None:
        self._tls = tls
        self._tls_verify = tls_verify
        self._connect_timeout = connect_timeout
        self._reader: asyncio.StreamReader | None = None
        self._writer: asyncio.StreamWriter | None = None
        self._read_task: asyncio.Task | None = None

    @property
    def is_open(self) -> bool:
        return self._writer is not None and not self._writer.is_closing()

    def _ssl_context(self) -> ssl.SSLContext | None:
        if not self._tls:
            return None
        context = ssl.create_default_context()
        if not self._tls_verify:
            context.check_hostname = False
            context.verify_mode = ssl.CERT_NONE
        return context

    async def open(self, host: str, port: int, on_data: DataCallback, on_close: CloseCallback) -> None:
        self._reader, self._writer = await asyncio.wait_for(
            asyncio.open_connection(host, port, ssl=self._ssl_context()),
            timeout=self._connect_timeout,
        )
        logger.debug("Transport opened to {}:{}", host, port)
        self._read_task = asyncio.create_task(self._read_loop(self._reader, on_data, on_close))

    async def _read_loop(self, reader: asyncio.StreamReader, on_data: DataCallback, on_close: CloseCallback) -> None:
        error: BaseException | None = None
        try:
            while True:
                chunk = await reader.read(_READ_SIZE)
                if not chunk:
                    break
                on_data(chunk)
        except OSError as exc:
            error = exc
            logger.debug("Transport read failed: {}", exc)
        finally:
            # a newer open() may already own the streams
            if self._reader is reader:
                self._release()
        on_close(error)

    def write(self, data: bytes) -> None:
        if self._writer is None:
            raise ConnectionError("Transport is not open")
        self._writer.write(data)

    async def drain(self) -> None:
        if self._writer is not None and not self._writer.is_closing():
            await self._writer.drain()

    def close(self) -> None:
        """Close without reporting through on_close."""
        task, self._read_task = self._read_task, None
        if task is not None and not task.done():
            task.cancel()
        self._release()

    def _release(self) -> None:
        if self._writer is not None:
            with contextlib.suppress(OSError):
                self._writer.close()
        self._writer = None
        self._reader = None
