"""CTCP framing (``\\x01TAG text\\x01``) inside PRIVMSG."""

from __future__ import annotations

CTCP_DELIM = "\x01"


def ctcp_action(text: str) -> str:
    """Wrap text as a CTCP ACTION (``/me``)."""
    return f"{CTCP_DELIM}ACTION {text}{CTCP_DELIM}"


def parse_ctcp(text: str) -> tuple[str, str] | None:
    """Return (tag, argument) for a CTCP payload, or None for plain text."""
    if len(text) < 2 or not text.startswith(CTCP_DELIM):
        return None
    body = text[1:-1] if text.endswith(CTCP_DELIM) else text[1:]
    tag, _, arg = body.partition(" ")
    if not tag:
        return None
    return tag.upper(), arg
