"""IRC client: registration, nickname tracking and the outbound command API."""

from __future__ import annotations

import asyncio
import dataclasses
from collections.abc import Callable, Iterable
from typing import Any

from loguru import logger

from irclink.config import ClientOptions
from irclink.connection import Connection, ConnectionState, ReconnectPolicy
from irclink.errors import IRCError
from irclink.events import ErrorSink, EventDispatcher, Key, Listener, ReplyHandle
from irclink.formatting import ctcp_action, split_message
from irclink.formatting.message_split import privmsg_limit
from irclink.nick import NickNegotiation, NickNegotiator
from irclink.protocol.message import Message
from irclink.protocol.numerics import ERR_NOMOTD, RPL_ENDOFMOTD
from irclink.transport import StreamTransport, Transport

NICKSERV = "NickServ"


class Client:
    """Registration-aware IRC client built on a Connection.

    Events (``on(key, listener)``): ``connect``, ``ready``, ``reconnect``,
    ``disconnect``, ``data``, ``message``, ``error`` and one key per command
    or numeric, e.g. ``"PRIVMSG"`` or ``433``. Command and numeric
    listeners receive ``(message, *params)``.
    """

    def __init__(
        self,
        options: ClientOptions | None = None,
        *,
        transport: Transport | None = None,
        error_sink: ErrorSink | None = None,
        **overrides: Any,
    ) -> None:
        if options is None:
            options = ClientOptions(**overrides)
        elif overrides:
            options = dataclasses.replace(options, **overrides)
        self.options = options
        self.events = EventDispatcher(error_sink)
        self.connection = Connection(
            options.host,
            options.port,
            transport=transport or StreamTransport(tls=options.tls, tls_verify=options.tls_verify),
            policy=ReconnectPolicy(
                max_attempts=options.reconnect_max_attempts,
                base_delay=options.reconnect_delay,
                max_delay=options.reconnect_max_delay,
            ),
            events=self.events,
            encoding=options.encoding,
            debug=options.debug,
        )
        self.nick_negotiator = NickNegotiator(self)
        self._nickname: str | None = options.nick
        self._identify_listener: Listener | None = None

        self.on("connect", self._on_connect)
        self.on("ready", self._on_ready)
        self.on("NICK", self._on_nick)

    # ---------- events ----------------------------------------------------

    def on(self, key: Key, listener: Listener | None = None) -> Any:
        """Register a listener; usable as a decorator when listener is omitted."""
        if listener is None:
            return lambda fn: self.events.on(key, fn)
        return self.events.on(key, listener)

    def once(self, key: Key, listener: Listener | None = None) -> Any:
        if listener is None:
            return lambda fn: self.events.once(key, fn)
        return self.events.once(key, listener)

    def off(self, key: Key, listener: Listener) -> bool:
        return self.events.off(key, listener)

    # ---------- state -----------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self.connection.state

    @property
    def is_ready(self) -> bool:
        return self.connection.state is ConnectionState.READY

    @property
    def nickname(self) -> str | None:
        """Nickname the server currently knows us by."""
        return self._nickname

    # ---------- lifecycle -------------------------------------------------

    async def connect(self) -> Client:
        await self.connection.connect()
        return self

    def disconnect(self) -> None:
        self.nick_negotiator.cancel()
        self.connection.disconnect()

    async def quit(self, message: str | None = None) -> None:
        """Send QUIT, wait for it to flush, then disconnect.

        The connection is always torn down; a transport failure while
        flushing is reported rather than raised.
        """
        self.connection.stop_reconnecting()
        try:
            if self.connection.is_connected:
                self.send("QUIT", message)
                await self.connection.drain()
        except OSError as exc:
            logger.warning("IRC QUIT to {} not flushed: {}", self.options.host, exc)
            self.events.report(IRCError(f"QUIT failed: {exc}", code="quit_failed", original_error=exc))
        finally:
            self.disconnect()

    async def wait_until_disconnected(self) -> None:
        """Block until the connection gives up or is disconnected."""
        if self.state is ConnectionState.GIVEN_UP:
            return
        done = asyncio.get_running_loop().create_future()

        def finished() -> None:
            if not done.done():
                done.set_result(None)

        self.once("disconnect", finished)
        try:
            await done
        finally:
            self.off("disconnect", finished)

    # ---------- raw output ------------------------------------------------

    def write(self, *fragments: str | bytes | None) -> Client:
        self.connection.write(*fragments)
        return self

    def send(self, command: str | int, *params: object) -> Client:
        self.connection.send(command, *params)
        return self

    def send_expecting(
        self,
        command: str | int,
        *params: object,
        expect: Key | Iterable[Key],
        handler: Listener | None = None,
        timeout: float | None = None,
        match: Callable[[Message], bool] | None = None,
    ) -> ReplyHandle:
        """Send a command and claim the next inbound message matching expect.

        The match goes only to the returned handle (and handler); general
        listeners for that message do not see it. Issuing another
        expectation before this one resolves cancels this one. ``match``
        further restricts which messages with an expected command are claimed.
        """
        handle = self.events.expect(
            expect,
            handler,
            self.options.reply_timeout if timeout is None else timeout,
            match,
        )
        self.send(command, *params)
        return handle

    # ---------- commands --------------------------------------------------

    def register(
        self,
        nick: str,
        password: str | None = None,
        user: str | None = None,
        realname: str | None = None,
    ) -> NickNegotiation:
        """Send PASS (if any), negotiate NICK, then send USER."""
        if password:
            self.send("PASS", password)
        negotiation = self.nick(nick)
        user = user or nick
        self.send("USER", user, "0", "*", realname or user)
        return negotiation

    def nick(self, name: str) -> NickNegotiation:
        return self.nick_negotiator.start(name)

    def join(self, *channels: str) -> Client:
        for channel in channels:
            self.send("JOIN", channel)
        return self

    def part(self, channel: str, reason: str | None = None) -> Client:
        return self.send("PART", channel, reason)

    def privmsg(self, target: str, text: str) -> Client:
        """Send text to target, split across as many PRIVMSG lines as needed."""
        for chunk in split_message(text, privmsg_limit(target)):
            self.send("PRIVMSG", target, chunk)
        return self

    def notice(self, target: str, text: str) -> Client:
        for chunk in split_message(text, privmsg_limit(target)):
            self.send("NOTICE", target, chunk)
        return self

    def me(self, target: str, action: str) -> Client:
        """CTCP ACTION, the ``/me`` command."""
        return self.send("PRIVMSG", target, ctcp_action(action))

    def identify(self, nick: str | None = None, password: str | None = None) -> Client:
        password = password or self.options.nickserv_password
        if not password:
            logger.warning("IRC identify skipped: no NickServ password")
            return self
        nick = nick or self.nickname
        text = f"IDENTIFY {nick} {password}" if nick else f"IDENTIFY {password}"
        logger.info("IRC identifying to {} as {}", NICKSERV, nick)
        return self.privmsg(NICKSERV, text)

    def ghost(self, nick: str, password: str | None = None) -> ReplyHandle:
        """Ask NickServ to kill a session holding nick, then take nick back.

        Only a NOTICE from NickServ is taken as the answer. The nick change
        is only issued when our current nickname differs.
        """
        password = password or self.options.nickserv_password
        text = f"GHOST {nick} {password}" if password else f"GHOST {nick}"

        def reclaim(message: Message, *params: Any) -> None:
            if self.nickname is None or self.nickname.lower() != nick.lower():
                self.nick(nick)

        return self.send_expecting(
            "PRIVMSG", NICKSERV, text, expect="NOTICE", handler=reclaim, match=_from_nickserv
        )

    # ---------- built-in listeners ----------------------------------------

    def _on_connect(self) -> None:
        options = self.options
        self._nickname = options.nick
        self.nick_negotiator.cancel()
        self._arm_identify()
        if not options.nick:
            logger.warning("IRC connected without a nick; skipping registration")
            return
        self.register(options.nick, options.password, options.user, options.realname)

    def _on_ready(self, message: Message) -> None:
        if message.params:
            self._nickname = message.params[0]
        logger.info("IRC registered as {}", self._nickname)
        if self.options.channels:
            self.join(*self.options.channels)

    def _on_nick(self, message: Message, *params: Any) -> None:
        if not params or message.nick is None or self._nickname is None:
            return
        if message.nick.lower() == self._nickname.lower():
            self._nickname = params[0]

    def _arm_identify(self) -> None:
        if self._identify_listener is not None:
            self.off(RPL_ENDOFMOTD, self._identify_listener)
            self.off(ERR_NOMOTD, self._identify_listener)
            self._identify_listener = None
        if not self.options.nickserv_password:
            return

        def identify_after_motd(message: Message, *params: Any) -> None:
            self.off(RPL_ENDOFMOTD, identify_after_motd)
            self.off(ERR_NOMOTD, identify_after_motd)
            self._identify_listener = None
            self.identify(self.nickname, self.options.nickserv_password)

        self._identify_listener = identify_after_motd
        self.on(RPL_ENDOFMOTD, identify_after_motd)
        self.on(ERR_NOMOTD, identify_after_motd)


def _from_nickserv(message: Message) -> bool:
    return message.nick is not None and message.nick.lower() == NICKSERV.lower()
