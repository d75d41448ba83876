"""Split long chat text to fit the 512-byte IRC line limit."""

from __future__ import annotations

# 512 minus "PRIVMSG ", " :" and CRLF, rounded down
PRIVMSG_BUDGET = 500


def privmsg_limit(target: str) -> int:
    """Characters of text that fit in one PRIVMSG/NOTICE to target."""
    return max(1, PRIVMSG_BUDGET - len(target))


def split_message(text: str, limit: int) -> list[str]:
    """Split text into consecutive chunks of at most limit characters.

    Concatenating the chunks gives back text exactly. Text that fits yields
    a single chunk, including the empty string.
    """
    if limit < 1:
        raise ValueError(f"limit must be positive, got {limit}")
    if len(text) <= limit:
        return [text]
    return [text[i : i + limit] for i in range(0, len(text), limit)]
