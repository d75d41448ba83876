"""irclink: asyncio IRC client engine with registration, reconnect and bot dispatch."""

from irclink.bot import Bot, Command, CommandTable, command
from irclink.client import Client
from irclink.config import ClientOptions, Config
from irclink.connection import Connection, ConnectionState, ReconnectPolicy
from irclink.errors import ConfigurationError, IRCError, MalformedMessage, NicknameError, ReplyTimeout
from irclink.events import EventDispatcher, ReplyHandle
from irclink.protocol import LineFramer, Message, format_line, parse

__version__ = "0.3.0"

__all__ = [
    "Bot",
    "Client",
    "ClientOptions",
    "Command",
    "CommandTable",
    "Config",
    "ConfigurationError",
    "Connection",
    "ConnectionState",
    "EventDispatcher",
    "IRCError",
    "LineFramer",
    "MalformedMessage",
    "Message",
    "NicknameError",
    "ReconnectPolicy",
    "ReplyHandle",
    "ReplyTimeout",
    "__version__",
    "command",
    "format_line",
    "parse",
]
