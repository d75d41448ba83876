"""IRC message model, line parser and line formatter.

Grammar handled here (one line, terminator already stripped)::

    line    = [ ":" prefix SPACE ] command *( SPACE param ) [ SPACE ":" trailing ]
    command = 3DIGIT / 1*LETTER

The parser is a small scanner over the line rather than a regex, so the
tokenization rules (single-space separation, colon-marked trailing
parameter) are explicit.
"""

from __future__ import annotations

from dataclasses import dataclass

from irclink.errors import MalformedMessage
from irclink.protocol.numerics import is_error

Command = int | str


def nick_from_prefix(prefix: str | None) -> str | None:
    """Return the nick part of ``nick!user@host``, or the whole prefix."""
    if prefix is None:
        return None
    return prefix.split("!", 1)[0]


@dataclass(frozen=True, slots=True)
class Message:
    """One parsed protocol line."""

    raw: str
    prefix: str | None
    command: Command
    params: tuple[str, ...] = ()

    @property
    def nick(self) -> str | None:
        return nick_from_prefix(self.prefix)

    @property
    def is_numeric(self) -> bool:
        return isinstance(self.command, int)

    @property
    def is_error(self) -> bool:
        return isinstance(self.command, int) and is_error(self.command)

    @property
    def trailing(self) -> str | None:
        """Last parameter, if any."""
        return self.params[-1] if self.params else None


def parse(line: str) -> Message:
    """Parse one line into a Message; raise MalformedMessage on bad input."""
    pos = 0
    length = len(line)
    prefix: str | None = None

    if line.startswith(":"):
        space = line.find(" ", 1)
        if space < 0:
            raise MalformedMessage(line, "prefix without command")
        prefix = line[1:space]
        if not prefix:
            raise MalformedMessage(line, "empty prefix")
        pos = space + 1

    end = line.find(" ", pos)
    if end < 0:
        end = length
    token = line[pos:end]
    command = _parse_command(line, token)

    params: list[str] = []
    pos = end
    while pos < length:
        # pos sits on a separator space
        pos += 1
        if pos >= length:
            break
        if line[pos] == " ":
            continue
        if line[pos] == ":":
            params.append(line[pos + 1 :])
            break
        end = line.find(" ", pos)
        if end < 0:
            end = length
        params.append(line[pos:end])
        pos = end

    return Message(raw=line, prefix=prefix, command=command, params=tuple(params))


def _parse_command(line: str, token: str) -> Command:
    if not token:
        raise MalformedMessage(line, "missing command")
    if len(token) == 3 and token.isascii() and token.isdigit():
        return int(token)
    if token.isascii() and token.isalpha():
        return token.upper()
    raise MalformedMessage(line, f"invalid command {token!r}")


def format_line(command: Command, *params: object) -> str:
    """Build an outbound line (without CRLF).

    Middle parameters are joined by single spaces; the last one is always
    written as a ``:``-prefixed trailing parameter. ``None`` parameters are
    skipped.
    """
    if isinstance(command, int):
        head = f"{command:03d}"
    else:
        head = command.upper()
    if not head or " " in head:
        raise ValueError(f"Invalid command: {command!r}")

    values = [str(p) for p in params if p is not None]
    for value in values:
        if "\r" in value or "\n" in value or "\0" in value:
            raise ValueError(f"Line break in parameter: {value!r}")
    if not values:
        return head

    *middle, last = values
    for value in middle:
        if not value or " " in value or value.startswith(":"):
            raise ValueError(f"Only the last parameter may be empty or contain spaces: {value!r}")
    return " ".join([head, *middle, f":{last}"])
