"""Tests for StreamTransport against a loopback asyncio server."""

from __future__ import annotations

import asyncio

import pytest
import pytest_asyncio

from irclink.transport import StreamTransport


class LoopbackServer:
    """One-connection TCP server that records what it receives."""

    def __init__(self):
        self.received = bytearray()
        self.connected = asyncio.Event()
        self.writer: asyncio.StreamWriter | None = None
        self.server: asyncio.Server | None = None

    async def start(self) -> int:
        self.server = await asyncio.start_server(self._handle, "127.0.0.1", 0)
        return self.server.sockets[0].getsockname()[1]

    async def _handle(self, reader, writer):
        self.writer = writer
        self.connected.set()
        while True:
            data = await reader.read(1024)
            if not data:
                break
            self.received += data

    async def stop(self):
        if self.writer is not None:
            self.writer.close()
        self.server.close()
        await self.server.wait_closed()


@pytest_asyncio.fixture
async def server():
    srv = LoopbackServer()
    await srv.start()
    yield srv
    await srv.stop()


def _port(srv: LoopbackServer) -> int:
    return srv.server.sockets[0].getsockname()[1]


class TestStreamTransport:
    @pytest.mark.asyncio
    async def test_round_trip_and_peer_close(self, server):
        # Arrange
        transport = StreamTransport()
        chunks: list[bytes] = []
        closed = asyncio.Event()
        close_errors = []

        def on_close(error):
            close_errors.append(error)
            closed.set()

        # Act
        await transport.open("127.0.0.1", _port(server), chunks.append, on_close)
        await asyncio.wait_for(server.connected.wait(), 2)
        transport.write(b"NICK :bot\r\n")
        await transport.drain()
        server.writer.write(b"PING :x\r\n")
        await server.writer.drain()
        server.writer.close()
        await asyncio.wait_for(closed.wait(), 2)

        # Assert
        assert b"".join(chunks) == b"PING :x\r\n"
        assert bytes(server.received) == b"NICK :bot\r\n"
        assert close_errors == [None]
        assert not transport.is_open

    @pytest.mark.asyncio
    async def test_local_close_does_not_report(self, server):
        transport = StreamTransport()
        close_errors = []
        await transport.open("127.0.0.1", _port(server), lambda chunk: None, close_errors.append)
        assert transport.is_open

        transport.close()
        await asyncio.sleep(0.05)

        assert not transport.is_open
        assert close_errors == []

    @pytest.mark.asyncio
    async def test_write_when_closed_raises(self):
        transport = StreamTransport()
        with pytest.raises(ConnectionError):
            transport.write(b"x")

    @pytest.mark.asyncio
    async def test_refused_connection_raises_oserror(self):
        placeholder = await asyncio.start_server(lambda r, w: None, "127.0.0.1", 0)
        port = placeholder.sockets[0].getsockname()[1]
        placeholder.close()
        await placeholder.wait_closed()

        with pytest.raises(OSError):
            await StreamTransport(connect_timeout=2).open("127.0.0.1", port, lambda c: None, lambda e: None)
