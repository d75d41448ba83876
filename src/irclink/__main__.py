"""irclink entrypoint. Loads config, connects a Bot and runs until it gives up."""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import os
import sys
from pathlib import Path
from typing import Any, TextIO

from loguru import logger

from irclink import __version__
from irclink.bot import Bot, Command, Reply
from irclink.config import Config, cfg, load_config_with_env
from irclink.errors import ConfigurationError
from irclink.protocol.message import Message


class InterceptHandler(logging.Handler):
    """Route standard-library log records through loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno
        msg = record.getMessage().replace("{", "{{").replace("}", "}}")
        logger.patch(
            lambda r: r.update(name=record.name, function=record.funcName, line=record.lineno),
        ).opt(exception=record.exc_info).log(level, msg)


def setup_logging(verbose: bool = False, sink: TextIO | Any = sys.stderr) -> None:
    """Configure loguru with a single sink.

    Level: verbose=True or LOG_LEVEL=DEBUG enables DEBUG; otherwise INFO.
    """
    level = "INFO"
    if verbose:
        level = "DEBUG"
    else:
        env_level = (os.environ.get("LOG_LEVEL") or "").upper()
        if env_level in ("DEBUG", "INFO", "WARNING", "ERROR"):
            level = env_level

    logger.remove()
    logger.add(
        sink,
        level=level,
        format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan> | {message}",
    )
    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)


def reload_config(config_path: Path) -> Config:
    """Load config from path and update global cfg."""
    data = load_config_with_env(config_path)
    cfg.reload(data)
    return cfg


def static_commands(config: Config) -> dict[str, Command]:
    """Bot commands that answer with fixed text from the ``commands`` config key."""

    def make(text: str) -> Command:
        def answer(message: Message, args: str, reply: Reply) -> None:
            reply(text)

        return Command(answer, text if len(text) <= 40 else text[:37] + "...")

    return {name: make(text) for name, text in config.commands.items()}


def main() -> None:
    """Main entrypoint."""
    parser = argparse.ArgumentParser(description="irclink - IRC bot runner")
    parser.add_argument(
        "--config",
        "-c",
        type=Path,
        default=Path("config.yaml"),
        help="Path to config file (default: config.yaml)",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable debug logging",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    args = parser.parse_args()

    setup_logging(args.verbose)

    if not args.config.exists():
        logger.error("Config file not found: {}", args.config)
        sys.exit(1)

    try:
        config = reload_config(args.config)
    except ConfigurationError as exc:
        logger.error("Invalid config {}: {}", args.config, exc)
        sys.exit(1)
    logger.info("Config loaded from {}", args.config)

    bot = Bot(config.client_options(), commands=static_commands(config))
    with contextlib.suppress(KeyboardInterrupt):
        asyncio.run(_run(bot))


async def _run(bot: Bot) -> None:
    try:
        await bot.run()
    except asyncio.CancelledError:
        logger.info("irclink shutting down")
        await bot.client.quit("Shutting down")
        raise


if __name__ == "__main__":
    main()
