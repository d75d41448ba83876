"""Connection manager: transport lifecycle, framing, dispatch and reconnect backoff."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum, auto

from loguru import logger
from tenacity import RetryCallState, wait_exponential

from irclink.errors import MalformedMessage
from irclink.events import ErrorSink, EventDispatcher
from irclink.protocol import LineFramer, Message, format_line, parse
from irclink.protocol.numerics import RPL_WELCOME
from irclink.transport import StreamTransport, Transport

DEFAULT_PORT = 6667


class ConnectionState(Enum):
    DISCONNECTED = auto()
    CONNECTING = auto()
    AWAITING_WELCOME = auto()
    READY = auto()
    RECONNECTING = auto()
    GIVEN_UP = auto()


_LIVE_STATES = frozenset({ConnectionState.CONNECTING, ConnectionState.AWAITING_WELCOME, ConnectionState.READY})


@dataclass
class ReconnectPolicy:
    """Exponential backoff: ``base_delay * 2 ** (attempt - 1)`` seconds, capped at ``max_delay``.

    ``max_attempts`` retries are made after a drop before giving up; 0
    disables automatic reconnection. ``attempts`` resets on every successful
    connect.
    """

    max_attempts: int = 5
    base_delay: float = 1.0
    max_delay: float = 300.0
    attempts: int = 0
    handle: asyncio.TimerHandle | None = field(default=None, repr=False)

    def __post_init__(self) -> None:
        if self.max_attempts < 0:
            raise ValueError(f"max_attempts must be >= 0, got {self.max_attempts}")
        if self.base_delay <= 0:
            raise ValueError(f"base_delay must be positive, got {self.base_delay}")
        self._wait = wait_exponential(multiplier=self.base_delay, max=self.max_delay)

    def delay(self, attempt: int) -> float:
        """Delay before retry number attempt (1-based)."""
        state = RetryCallState(retry_object=None, fn=None, args=(), kwargs={})
        state.attempt_number = attempt
        return float(self._wait(state))

    @property
    def exhausted(self) -> bool:
        return self.attempts >= self.max_attempts

    @property
    def pending(self) -> bool:
        return self.handle is not None

    def schedule(self, loop: asyncio.AbstractEventLoop, callback: Callable[[], None]) -> float:
        """Count an attempt and arm the single retry timer; returns its delay."""
        self.cancel()
        self.attempts += 1
        delay = self.delay(self.attempts)

        def fire() -> None:
            self.handle = None
            callback()

        self.handle = loop.call_later(delay, fire)
        return delay

    def cancel(self) -> None:
        if self.handle is not None:
            self.handle.cancel()
            self.handle = None

    def reset(self) -> None:
        self.cancel()
        self.attempts = 0


class Connection:
    """One logical IRC connection.

    Owns the transport, the line framer and the lifecycle state. Inbound
    lines are parsed; ``PING`` is answered and numeric 001 moves the state
    to READY before the message is handed to ``events``. Emits ``connect``,
    ``ready``, ``reconnect``, ``disconnect`` and ``data`` on ``events``.
    """

    def __init__(
        self,
        host: str,
        port: int = DEFAULT_PORT,
        *,
        transport: Transport | None = None,
        policy: ReconnectPolicy | None = None,
        events: EventDispatcher | None = None,
        error_sink: ErrorSink | None = None,
        encoding: str = "utf-8",
        debug: bool = False,
    ) -> None:
        self.host = host
        self.port = port
        self.events = events or EventDispatcher(error_sink)
        self.policy = policy or ReconnectPolicy()
        self.debug = debug
        self._transport: Transport = transport or StreamTransport()
        self._framer = LineFramer(encoding)
        self._encoding = encoding
        self._state = ConnectionState.DISCONNECTED
        self._quit = False
        self._reconnect_task: asyncio.Task | None = None

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._transport.is_open

    def _set_state(self, new_state: ConnectionState) -> None:
        if self._state is not new_state:
            logger.debug("IRC state {} -> {}", self._state.name, new_state.name)
            self._state = new_state

    # ---------- lifecycle -------------------------------------------------

    async def connect(self) -> None:
        """Open the transport. Failures feed the reconnect schedule."""
        if self._state in _LIVE_STATES:
            logger.warning("IRC connect ignored: already {}", self._state.name)
            return
        self._quit = False
        self.policy.reset()
        await self._open()

    async def _open(self) -> None:
        self._set_state(ConnectionState.CONNECTING)
        self._framer.reset()
        logger.info("IRC connecting to {}:{}", self.host, self.port)
        try:
            await self._transport.open(self.host, self.port, self._on_data, self._on_close)
        except (OSError, asyncio.TimeoutError) as exc:
            logger.warning("IRC connect to {}:{} failed: {}", self.host, self.port, exc)
            self._on_close(exc)
            return

        if self._quit:
            # disconnect() arrived while the transport was opening
            self._transport.close()
            return

        self.policy.reset()
        self._set_state(ConnectionState.AWAITING_WELCOME)
        logger.info("IRC connected to {}:{}", self.host, self.port)
        self.events.emit("connect")

    def disconnect(self) -> None:
        """Close now and stop reconnecting; emits ``disconnect`` once."""
        self.stop_reconnecting()
        self.events.cancel_expectation()
        if self._reconnect_task is not None and not self._reconnect_task.done():
            self._reconnect_task.cancel()
        self._transport.close()
        self._give_up()

    def stop_reconnecting(self) -> None:
        """Treat any later close as final; the transport stays open."""
        self._quit = True
        self.policy.cancel()

    def _give_up(self) -> None:
        if self._state is ConnectionState.GIVEN_UP:
            return
        self._set_state(ConnectionState.GIVEN_UP)
        logger.info("IRC connection to {}:{} finished", self.host, self.port)
        self.events.emit("disconnect")

    def _on_close(self, error: BaseException | None) -> None:
        if self._quit or self._state is ConnectionState.GIVEN_UP:
            return
        if error is not None:
            logger.warning("IRC connection to {} lost: {}", self.host, error)
        else:
            logger.warning("IRC connection to {} closed by peer", self.host)
        self.events.cancel_expectation()
        self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        if self.policy.exhausted:
            logger.error("IRC giving up on {} after {} attempts", self.host, self.policy.attempts)
            self._give_up()
            return
        delay = self.policy.schedule(asyncio.get_running_loop(), self._fire_reconnect)
        self._set_state(ConnectionState.RECONNECTING)
        logger.info(
            "IRC reconnecting in {:.2f}s (attempt {}/{})",
            delay,
            self.policy.attempts,
            self.policy.max_attempts,
        )

    def _fire_reconnect(self) -> None:
        self.events.emit("reconnect", self.policy.attempts)
        self._reconnect_task = asyncio.ensure_future(self._open())

    # ---------- inbound ---------------------------------------------------

    def _on_data(self, chunk: bytes) -> None:
        self.events.emit("data", chunk)
        for line in self._framer.feed(chunk):
            if not line:
                continue
            if self.debug:
                logger.debug("<< {}", line)
            try:
                message = parse(line)
            except MalformedMessage as exc:
                logger.warning("IRC dropped malformed line: {!r}", line)
                self.events.report(exc)
                continue
            self._handle_protocol(message)
            self.events.dispatch(message)

    def _handle_protocol(self, message: Message) -> None:
        # Handled before dispatch; a reply expectation never claims these
        if message.command == "PING":
            logger.debug("IRC ping from {}", message.params[0] if message.params else self.host)
            self.send("PONG", *message.params)
        elif message.command == RPL_WELCOME:
            self._set_state(ConnectionState.READY)
            self.events.emit("ready", message)

    # ---------- outbound --------------------------------------------------

    def write(self, *fragments: str | bytes | None) -> None:
        """Write raw fragments in order; no framing is added."""
        if not self._transport.is_open:
            logger.warning("IRC write skipped: not connected to {}", self.host)
            return
        for fragment in fragments:
            if not fragment:
                continue
            data = fragment.encode(self._encoding) if isinstance(fragment, str) else bytes(fragment)
            self._transport.write(data)

    def send(self, command: str | int, *params: object) -> None:
        """Format and write one protocol line."""
        line = format_line(command, *params)
        if self.debug:
            logger.debug(">> {}", line)
        self.write(line + "\r\n")

    async def drain(self) -> None:
        await self._transport.drain()
