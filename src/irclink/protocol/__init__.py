"""Wire protocol: line framing, message parsing and formatting, numerics."""

from irclink.protocol.framer import LineFramer
from irclink.protocol.message import Message, format_line, nick_from_prefix, parse

__all__ = ["LineFramer", "Message", "format_line", "nick_from_prefix", "parse"]
