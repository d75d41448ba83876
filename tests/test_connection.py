"""Tests for Connection lifecycle, inbound handling and reconnect backoff."""

from __future__ import annotations

import asyncio

import pytest
from loguru import logger

from irclink.connection import Connection, ConnectionState, ReconnectPolicy
from irclink.errors import IRCError, MalformedMessage
from irclink.events import EventDispatcher
from tests.mocks import FakeTransport


class RecordingPolicy(ReconnectPolicy):
    """ReconnectPolicy that remembers every delay it scheduled."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.delays: list[float] = []

    def schedule(self, loop, callback):
        delay = super().schedule(loop, callback)
        self.delays.append(delay)
        return delay


def _connection(policy=None, **kwargs):
    transport = FakeTransport()
    errors: list[IRCError] = []
    conn = Connection(
        "irc.example.net",
        transport=transport,
        policy=policy,
        events=EventDispatcher(errors.append),
        **kwargs,
    )
    return conn, transport, errors


class TestReconnectPolicy:
    def test_delay_doubles_from_base(self):
        policy = ReconnectPolicy(base_delay=1.0)
        assert [policy.delay(n) for n in range(1, 6)] == [1.0, 2.0, 4.0, 8.0, 16.0]

    def test_delay_is_capped(self):
        policy = ReconnectPolicy(base_delay=1.0, max_delay=300.0)
        assert policy.delay(10) == 300.0

    def test_defaults(self):
        policy = ReconnectPolicy()
        assert policy.max_attempts == 5
        assert policy.base_delay == 1.0
        assert policy.max_delay == 300.0
        assert not policy.pending

    def test_rejects_negative_attempts(self):
        with pytest.raises(ValueError):
            ReconnectPolicy(max_attempts=-1)

    def test_rejects_non_positive_base(self):
        with pytest.raises(ValueError):
            ReconnectPolicy(base_delay=0)

    def test_zero_attempts_is_immediately_exhausted(self):
        assert ReconnectPolicy(max_attempts=0).exhausted

    @pytest.mark.asyncio
    async def test_schedule_keeps_single_timer(self):
        policy = ReconnectPolicy(base_delay=10.0)
        loop = asyncio.get_running_loop()
        policy.schedule(loop, lambda: None)
        first = policy.handle
        policy.schedule(loop, lambda: None)
        assert first is not None and first.cancelled()
        assert policy.attempts == 2
        policy.reset()
        assert policy.attempts == 0
        assert not policy.pending


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_connect_awaits_welcome_and_emits_connect(self):
        # Arrange
        conn, transport, _ = _connection()
        connected = []
        conn.events.on("connect", lambda: connected.append(True))

        # Act
        await conn.connect()

        # Assert
        assert transport.opens == [("irc.example.net", 6667)]
        assert conn.state is ConnectionState.AWAITING_WELCOME
        assert connected == [True]

    @pytest.mark.asyncio
    async def test_welcome_moves_to_ready(self):
        conn, transport, _ = _connection()
        ready = []
        conn.events.on("ready", ready.append)
        await conn.connect()

        transport.receive(":irc.example.net 001 bot :Welcome")

        assert conn.state is ConnectionState.READY
        assert len(ready) == 1
        assert ready[0].command == 1

    @pytest.mark.asyncio
    async def test_connect_while_live_is_ignored(self):
        conn, transport, _ = _connection()
        await conn.connect()
        await conn.connect()
        assert len(transport.opens) == 1

    @pytest.mark.asyncio
    async def test_disconnect_emits_once_and_closes(self):
        conn, transport, _ = _connection()
        finished = []
        conn.events.on("disconnect", lambda: finished.append(True))
        await conn.connect()

        conn.disconnect()
        conn.disconnect()

        assert conn.state is ConnectionState.GIVEN_UP
        assert transport.closed >= 1
        assert finished == [True]

    @pytest.mark.asyncio
    async def test_reconnect_after_disconnect_call(self):
        conn, transport, _ = _connection()
        await conn.connect()
        conn.disconnect()

        await conn.connect()

        assert conn.state is ConnectionState.AWAITING_WELCOME
        assert len(transport.opens) == 2


class TestInbound:
    @pytest.mark.asyncio
    async def test_ping_is_answered(self):
        conn, transport, _ = _connection()
        await conn.connect()

        transport.receive("PING :irc.example.net")

        assert transport.lines == ["PONG :irc.example.net"]

    @pytest.mark.asyncio
    async def test_ping_is_answered_while_expected(self):
        conn, transport, _ = _connection()
        await conn.connect()
        handle = conn.events.expect("PING")

        transport.receive("PING :irc.example.net")

        assert transport.lines == ["PONG :irc.example.net"]
        assert handle.result().params == ("irc.example.net",)

    @pytest.mark.asyncio
    async def test_welcome_moves_to_ready_while_expected(self):
        # Arrange
        conn, transport, _ = _connection()
        ready = []
        conn.events.on("ready", ready.append)
        await conn.connect()
        handle = conn.events.expect(1)

        # Act
        transport.receive(":irc.example.net 001 bot :Welcome")

        # Assert
        assert conn.state is ConnectionState.READY
        assert [message.command for message in ready] == [1]
        assert handle.result() is ready[0]

    @pytest.mark.asyncio
    async def test_lines_split_across_chunks(self):
        conn, transport, _ = _connection()
        seen = []
        conn.events.on("PRIVMSG", lambda msg, *params: seen.append(params))
        await conn.connect()

        transport.feed(":a!b@c PRIVMSG #chan :hel")
        transport.feed("lo\r\n:a!b@c PRIVMSG #chan :again\r")
        transport.feed("\n")

        assert seen == [("#chan", "hello"), ("#chan", "again")]

    @pytest.mark.asyncio
    async def test_data_event_gets_raw_chunk(self):
        conn, transport, _ = _connection()
        chunks = []
        conn.events.on("data", chunks.append)
        await conn.connect()

        transport.feed(b"PING :x\r\n")

        assert chunks == [b"PING :x\r\n"]

    @pytest.mark.asyncio
    async def test_malformed_line_is_reported_and_skipped(self):
        conn, transport, errors = _connection()
        seen = []
        conn.events.on("message", seen.append)
        await conn.connect()

        transport.receive(":prefixonly", "", "PING :still-alive")

        assert len(errors) == 1
        assert isinstance(errors[0], MalformedMessage)
        assert [m.command for m in seen] == ["PING"]
        assert transport.lines == ["PONG :still-alive"]

    @pytest.mark.asyncio
    async def test_debug_logs_traffic(self):
        conn, transport, _ = _connection(debug=True)
        messages: list[str] = []
        sink_id = logger.add(messages.append, level="DEBUG", format="{message}")
        try:
            await conn.connect()
            transport.receive("PING :x")
        finally:
            logger.remove(sink_id)

        text = "".join(messages)
        assert "<< PING :x" in text
        assert ">> PONG :x" in text


class TestOutbound:
    @pytest.mark.asyncio
    async def test_send_formats_line(self):
        conn, transport, _ = _connection()
        await conn.connect()

        conn.send("PRIVMSG", "#chan", "hello world")

        assert transport.written == [b"PRIVMSG #chan :hello world\r\n"]

    @pytest.mark.asyncio
    async def test_write_fragments_in_order_skipping_empty(self):
        conn, transport, _ = _connection()
        await conn.connect()

        conn.write("NICK ", None, "", b"bot", "\r\n")

        assert b"".join(transport.written) == b"NICK bot\r\n"

    def test_write_while_disconnected_is_dropped(self):
        conn, transport, _ = _connection()
        conn.send("PRIVMSG", "#chan", "nobody hears this")
        assert transport.written == []


class TestReconnect:
    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts_with_growing_delays(self):
        # Arrange
        policy = RecordingPolicy(max_attempts=5, base_delay=0.001)
        conn, transport, _ = _connection(policy=policy)
        attempts: list[int] = []
        finished = asyncio.Event()
        disconnects = []
        conn.events.on("reconnect", attempts.append)
        conn.events.on("disconnect", lambda: (disconnects.append(True), finished.set()))
        await conn.connect()

        # Act
        transport.open_error = ConnectionRefusedError("refused")
        transport.drop(ConnectionResetError("reset by peer"))
        await asyncio.wait_for(finished.wait(), 5)

        # Assert
        assert attempts == [1, 2, 3, 4, 5]
        assert len(policy.delays) == 5
        assert all(a < b for a, b in zip(policy.delays, policy.delays[1:]))
        assert len(transport.opens) == 6
        assert disconnects == [True]
        assert conn.state is ConnectionState.GIVEN_UP

    @pytest.mark.asyncio
    async def test_successful_reconnect_resets_attempts(self):
        policy = ReconnectPolicy(max_attempts=3, base_delay=0.001)
        conn, transport, _ = _connection(policy=policy)
        reconnected = asyncio.Event()
        conn.events.on("connect", reconnected.set)
        await conn.connect()
        reconnected.clear()

        transport.drop()
        assert conn.state is ConnectionState.RECONNECTING
        await asyncio.wait_for(reconnected.wait(), 5)

        assert conn.state is ConnectionState.AWAITING_WELCOME
        assert policy.attempts == 0
        assert len(transport.opens) == 2

    @pytest.mark.asyncio
    async def test_zero_attempts_gives_up_immediately(self):
        policy = ReconnectPolicy(max_attempts=0)
        conn, transport, _ = _connection(policy=policy)
        finished = []
        conn.events.on("disconnect", lambda: finished.append(True))
        await conn.connect()

        transport.drop()

        assert finished == [True]
        assert conn.state is ConnectionState.GIVEN_UP
        assert not policy.pending

    @pytest.mark.asyncio
    async def test_initial_connect_failure_schedules_retry(self):
        policy = ReconnectPolicy(max_attempts=2, base_delay=10.0)
        conn, transport, _ = _connection(policy=policy)
        transport.open_error = OSError("no route")

        await conn.connect()

        assert conn.state is ConnectionState.RECONNECTING
        assert policy.pending
        conn.disconnect()
        assert not policy.pending

    @pytest.mark.asyncio
    async def test_disconnect_cancels_pending_reconnect(self):
        policy = ReconnectPolicy(max_attempts=5, base_delay=0.01)
        conn, transport, _ = _connection(policy=policy)
        finished = []
        conn.events.on("disconnect", lambda: finished.append(True))
        await conn.connect()

        transport.drop()
        conn.disconnect()
        await asyncio.sleep(0.05)

        assert len(transport.opens) == 1
        assert finished == [True]

    @pytest.mark.asyncio
    async def test_drop_cancels_outstanding_expectation(self):
        policy = ReconnectPolicy(max_attempts=1, base_delay=10.0)
        conn, transport, _ = _connection(policy=policy)
        await conn.connect()
        handle = conn.events.expect(433)

        transport.drop()

        assert handle.cancelled()
        conn.disconnect()
