"""Nickname negotiation: registration NICK and later renames, with collision retry."""

from __future__ import annotations

import asyncio
import random
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import TYPE_CHECKING, Any

from loguru import logger

from irclink.errors import NicknameError
from irclink.events import Key, Listener
from irclink.protocol.message import Message
from irclink.protocol.numerics import FATAL_NICK_ERRORS, RETRYABLE_NICK_ERRORS

if TYPE_CHECKING:
    from irclink.client import Client

MAX_NICK_ATTEMPTS = 3


def random_suffix() -> str:
    return str(random.randint(1, 9999))


class NickOutcome(Enum):
    PENDING = auto()
    SUCCEEDED = auto()
    FAILED = auto()


@dataclass
class NickNegotiation:
    """State of one NICK attempt sequence."""

    desired_nick: str
    candidate_nick: str
    pre_registration: bool
    previous_nick: str | None = None
    attempt_count: int = 1
    outcome: NickOutcome = NickOutcome.PENDING
    error: NicknameError | None = None
    _waiters: list[asyncio.Future] = field(default_factory=list, repr=False)

    @property
    def done(self) -> bool:
        return self.outcome is not NickOutcome.PENDING

    async def wait(self) -> NickNegotiation:
        """Wait until the negotiation succeeds or fails."""
        if not self.done:
            future = asyncio.get_running_loop().create_future()
            self._waiters.append(future)
            await future
        return self

    def _finish(self, outcome: NickOutcome) -> None:
        self.outcome = outcome
        waiters, self._waiters = self._waiters, []
        for future in waiters:
            if not future.done():
                future.set_result(self)


class NickNegotiator:
    """Drives NICK until the server accepts a nickname or rejects it for good.

    Before registration success is the ``ready`` event and a terminal failure
    disconnects, since there is no session to keep. After registration
    success is the server echoing ``NICK`` from our old nickname and
    failures are only reported.
    """

    def __init__(
        self,
        client: Client,
        *,
        max_attempts: int = MAX_NICK_ATTEMPTS,
        suffix: Callable[[], str] = random_suffix,
    ) -> None:
        self._client = client
        self._max_attempts = max_attempts
        self._suffix = suffix
        self._current: NickNegotiation | None = None
        self._listeners: list[tuple[Key, Listener]] = []

    @property
    def current(self) -> NickNegotiation | None:
        return self._current

    def start(self, nick: str) -> NickNegotiation:
        self.cancel()
        client = self._client
        pre_registration = not client.is_ready
        negotiation = NickNegotiation(
            desired_nick=nick,
            candidate_nick=nick,
            pre_registration=pre_registration,
            previous_nick=None if pre_registration else client.nickname,
        )
        self._current = negotiation

        if pre_registration:
            self._listen("ready", self._on_ready)
        else:
            self._listen("NICK", self._on_nick)
        for code in sorted(FATAL_NICK_ERRORS):
            self._listen(code, self._on_fatal)
        for code in sorted(RETRYABLE_NICK_ERRORS):
            self._listen(code, self._on_retryable)

        client.send("NICK", nick)
        return negotiation

    def cancel(self) -> None:
        """Drop the current negotiation and its listeners."""
        self._unlisten()
        self._current = None

    def _listen(self, key: Key, listener: Listener) -> None:
        self._client.on(key, listener)
        self._listeners.append((key, listener))

    def _unlisten(self) -> None:
        for key, listener in self._listeners:
            self._client.off(key, listener)
        self._listeners.clear()

    # ---------- outcomes --------------------------------------------------

    def _on_ready(self, message: Message, *args: Any) -> None:
        negotiation = self._current
        if negotiation is None:
            return
        self._succeed(negotiation, message.params[0] if message.params else negotiation.candidate_nick)

    def _on_nick(self, message: Message, *params: Any) -> None:
        negotiation = self._current
        if negotiation is None or message.nick is None or negotiation.previous_nick is None:
            return
        if message.nick.lower() != negotiation.previous_nick.lower():
            return
        self._succeed(negotiation, message.params[0] if message.params else negotiation.candidate_nick)

    def _on_fatal(self, message: Message, *params: Any) -> None:
        negotiation = self._current
        if negotiation is not None:
            self._fail(negotiation, message)

    def _on_retryable(self, message: Message, *params: Any) -> None:
        negotiation = self._current
        if negotiation is None:
            return
        if negotiation.attempt_count >= self._max_attempts:
            self._fail(negotiation, message)
            return
        negotiation.attempt_count += 1
        negotiation.candidate_nick = f"{negotiation.desired_nick}{self._suffix()}"
        logger.info(
            "IRC nick {} unavailable ({}), trying {} (attempt {}/{})",
            negotiation.desired_nick,
            message.command,
            negotiation.candidate_nick,
            negotiation.attempt_count,
            self._max_attempts,
        )
        self._client.send("NICK", negotiation.candidate_nick)

    def _succeed(self, negotiation: NickNegotiation, nick: str) -> None:
        negotiation.candidate_nick = nick
        self.cancel()
        logger.info("IRC nick is now {}", nick)
        negotiation._finish(NickOutcome.SUCCEEDED)

    def _fail(self, negotiation: NickNegotiation, message: Message) -> None:
        error = NicknameError(
            negotiation.candidate_nick,
            int(message.command),
            fatal=negotiation.pre_registration,
            reason=message.trailing or "",
        )
        negotiation.error = error
        self.cancel()
        negotiation._finish(NickOutcome.FAILED)
        self._client.events.report(error)
        if negotiation.pre_registration:
            logger.error("IRC registration failed: {}", error)
            self._client.disconnect()
        else:
            logger.warning("IRC nick change failed: {}", error)
