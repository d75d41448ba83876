"""Numeric reply codes used by the client."""

from __future__ import annotations

RPL_WELCOME = 1
RPL_ENDOFMOTD = 376
ERR_NOMOTD = 422

ERR_ERRONEUSNICKNAME = 432
ERR_NICKNAMEINUSE = 433
ERR_NICKCOLLISION = 436
ERR_UNAVAILRESOURCE = 437
ERR_RESTRICTED = 484

# Nickname failures that no retry can fix
FATAL_NICK_ERRORS = frozenset({ERR_ERRONEUSNICKNAME, ERR_RESTRICTED})
# Nickname failures worth retrying with another candidate
RETRYABLE_NICK_ERRORS = frozenset({ERR_NICKNAMEINUSE, ERR_NICKCOLLISION, ERR_UNAVAILRESOURCE})

ERROR_RANGE = range(400, 600)


def is_error(code: int) -> bool:
    return code in ERROR_RANGE
