"""irclink exceptions."""

from __future__ import annotations

from collections.abc import Iterable


class IRCError(Exception):
    """Base for irclink errors."""

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        details: dict[str, object] | None = None,
        original_error: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.details = details or {}
        self.original_error = original_error


class MalformedMessage(IRCError):
    """Inbound line does not match the message grammar."""

    def __init__(self, line: str, reason: str) -> None:
        super().__init__(
            f"Badly formatted message ({reason}): {line!r}",
            code="malformed_message",
            details={"line": line, "reason": reason},
        )
        self.line = line


class NicknameError(IRCError):
    """Server rejected a nickname (432/433/436/437/484)."""

    def __init__(self, nick: str, numeric: int, *, fatal: bool, reason: str = "") -> None:
        super().__init__(
            f"Nickname {nick!r} rejected ({numeric}){': ' + reason if reason else ''}",
            code="nickname_rejected",
            details={"nick": nick, "numeric": numeric, "fatal": fatal},
        )
        self.nick = nick
        self.numeric = numeric
        self.fatal = fatal


class ReplyTimeout(IRCError):
    """No reply matching an expectation arrived in time."""

    def __init__(self, keys: Iterable[str | int], timeout: float) -> None:
        keys = tuple(keys)
        super().__init__(
            f"No reply for {', '.join(str(k) for k in keys)} within {timeout:g}s",
            code="reply_timeout",
            details={"keys": keys, "timeout": timeout},
        )
        self.keys = keys


class ConfigurationError(IRCError):
    """Config validation or load failure."""
