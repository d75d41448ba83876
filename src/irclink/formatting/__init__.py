"""Outbound text helpers: message splitting and CTCP framing."""

from irclink.formatting.ctcp import ctcp_action, parse_ctcp
from irclink.formatting.message_split import split_message

__all__ = ["ctcp_action", "parse_ctcp", "split_message"]
