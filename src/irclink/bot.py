"""Bot layer: route ``<nick>: <command> <args>`` chat lines to a command table."""

from __future__ import annotations

import re
from collections.abc import Callable, Iterator, Mapping
from dataclasses import dataclass
from typing import Any

from loguru import logger

from irclink.client import Client
from irclink.config import ClientOptions
from irclink.formatting import parse_ctcp
from irclink.protocol.message import Message

Reply = Callable[..., None]
Handler = Callable[[Message, str, Reply], Any]

# "<nick>: <command> <args>" or "<nick>, <command>"
_ADDRESSED = re.compile(r"^([^\s:,]+)[:,]\s*(\S+)(?:\s+(.*))?$")


@dataclass(frozen=True)
class Command:
    handler: Handler
    description: str = ""

    def __call__(self, message: Message, args: str, reply: Reply) -> Any:
        return self.handler(message, args, reply)


def command(description: str) -> Callable[[Handler], Command]:
    """Decorator turning a handler into a described Command."""

    def decorator(handler: Handler) -> Command:
        return Command(handler, description)

    return decorator


class CommandTable:
    """Ordered name -> Command mapping. Later entries replace earlier ones."""

    def __init__(self, *tables: Mapping[str, Command | Handler]) -> None:
        self._commands: dict[str, Command] = {}
        for table in tables:
            self.update(table)

    def update(self, table: Mapping[str, Command | Handler]) -> None:
        for name, entry in table.items():
            self.register(name, entry)

    def register(self, name: str, entry: Command | Handler, description: str | None = None) -> Command:
        if not name or any(c.isspace() for c in name):
            raise ValueError(f"Invalid command name: {name!r}")
        if isinstance(entry, Command):
            cmd = entry if description is None else Command(entry.handler, description)
        else:
            cmd = Command(entry, description or "")
        self._commands[name] = cmd
        return cmd

    def get(self, name: str) -> Command | None:
        return self._commands.get(name)

    def items(self) -> Iterator[tuple[str, Command]]:
        return iter(list(self._commands.items()))

    def __contains__(self, name: object) -> bool:
        return name in self._commands

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._commands))

    def __len__(self) -> int:
        return len(self._commands)


class Bot:
    """Answers chat commands addressed to the client's current nickname."""

    def __init__(
        self,
        options: ClientOptions | None = None,
        *,
        commands: Mapping[str, Command | Handler] | None = None,
        client: Client | None = None,
        **client_kwargs: Any,
    ) -> None:
        self.client = client or Client(options, **client_kwargs)
        self.commands = CommandTable(
            {"help": Command(self._help, "List available commands")},
            commands or {},
        )
        self.client.on("PRIVMSG", self.dispatch)

    def command(self, name: str, description: str = "", handler: Handler | None = None) -> Any:
        """Register a command; usable as a decorator when handler is omitted."""
        if handler is None:

            def decorator(fn: Handler) -> Handler:
                self.commands.register(name, fn, description)
                return fn

            return decorator
        self.commands.register(name, handler, description)
        return self

    async def connect(self) -> Bot:
        await self.client.connect()
        return self

    async def run(self) -> None:
        """Connect and run until the connection is given up."""
        await self.client.connect()
        await self.client.wait_until_disconnected()

    def dispatch(self, message: Message, target: str | None = None, text: str | None = None, *rest: str) -> Any:
        if target is None or text is None or parse_ctcp(text) is not None:
            return None
        match = _ADDRESSED.match(text.strip())
        if match is None:
            return None
        addressee, name, args = match.group(1), match.group(2), match.group(3) or ""
        nickname = self.client.nickname
        if nickname is None or addressee.lower() != nickname.lower():
            return None

        reply = self._reply_function(message, target)
        cmd = self.commands.get(name)
        if cmd is None:
            logger.info("Bot: unknown command {!r} from {}", name, message.nick)
            reply(f'Unrecognized command "{name}". Try "help".')
            return None
        logger.info("Bot: {} from {} in {}", name, message.nick, target)
        return cmd(message, args.strip(), reply)

    def _reply_function(self, message: Message, target: str) -> Reply:
        nickname = self.client.nickname or ""
        private = target.lower() == nickname.lower()
        reply_to = message.nick if private and message.nick else target

        def reply(*parts: object) -> None:
            text = " ".join(str(p) for p in parts)
            if not private and message.nick:
                text = f"{message.nick}: {text}"
            self.client.privmsg(reply_to, text)

        return reply

    def _help(self, message: Message, args: str, reply: Reply) -> None:
        for name, cmd in self.commands.items():
            reply(f"{name} -- {cmd.description}" if cmd.description else name)
