"""Configuration: YAML file + .env + environment overlay."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from loguru import logger

from irclink.errors import ConfigurationError

# Env keys that override config values
_ENV_OVERRIDE_KEYS = (
    "IRC_PASSWORD",
    "IRC_NICKSERV_PASSWORD",
    "IRC_DEBUG",
    "IRC_TLS",
)


@dataclass
class ClientOptions:
    """Everything a Client needs to connect and register."""

    host: str = ""
    port: int = 6667
    nick: str | None = None
    password: str | None = None
    user: str | None = None
    realname: str | None = None
    channels: list[str] = field(default_factory=list)
    nickserv_password: str | None = None
    tls: bool = False
    tls_verify: bool = True
    reconnect_max_attempts: int = 5
    reconnect_delay: float = 1.0
    reconnect_max_delay: float = 300.0
    reply_timeout: float = 30.0
    encoding: str = "utf-8"
    debug: bool = False

    @property
    def username(self) -> str | None:
        return self.user or self.nick

    @property
    def display_name(self) -> str | None:
        return self.realname or self.username


def _deep_update(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge override into base."""
    result = dict(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_update(result[key], value)
        else:
            result[key] = value
    return result


def load_config(path: str | Path) -> dict[str, Any]:
    """Load config from YAML file. Use SafeLoader. Returns raw dict."""
    path = Path(path)
    if not path.exists():
        logger.warning("Config file not found: {}", path)
        return {}

    try:
        with open(path) as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as exc:
        logger.error("Failed to parse config {}: {}", path, exc)
        raise
    if not isinstance(data, dict):
        logger.warning("Config file {} has invalid structure (expected dict)", path)
        return {}
    return data


def load_config_with_env(path: str | Path) -> dict[str, Any]:
    """Load config from YAML after loading .env into the process environment."""
    from dotenv import load_dotenv

    load_dotenv()
    return load_config(path)


def _load_env_overrides() -> dict[str, str]:
    return {k: os.environ.get(k, "") for k in _ENV_OVERRIDE_KEYS}


def _parse_bool_env(val: str) -> bool | None:
    """Parse env string to bool; None if not a recognized bool."""
    v = val.lower()
    if v in ("1", "true", "yes"):
        return True
    if v in ("0", "false", "no"):
        return False
    return None


class Config:
    """Config accessor with attribute-style access for known keys."""

    def __init__(self, data: dict[str, Any] | None = None) -> None:
        self._data = data or {}
        self._env: dict[str, str] = _load_env_overrides()

    def reload(self, data: dict[str, Any], *, validate: bool = True) -> None:
        """Replace config data."""
        self._data = data or {}
        self._env = _load_env_overrides()
        if validate:
            self.validate()
        logger.debug("Config reloaded: {} channels", len(self.channels))

    def validate(self) -> None:
        """Raise ConfigurationError when required keys are missing or malformed."""
        if not self.host:
            raise ConfigurationError("host is required", code="missing_host")
        if not self.nick:
            raise ConfigurationError("nick is required", code="missing_nick")
        channels = self._data.get("channels")
        if channels is not None and not isinstance(channels, list):
            raise ConfigurationError(
                "channels must be a list",
                code="invalid_channels",
                details={"type": type(channels).__name__},
            )
        try:
            port = self.port
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(
                "port must be an integer", code="invalid_port", original_error=exc
            ) from exc
        if not 1 <= port <= 65535:
            raise ConfigurationError(
                f"port out of range: {port}",
                code="invalid_port",
                details={"port": port},
            )
        if self.reconnect_max_attempts < 0:
            raise ConfigurationError(
                "reconnect_max_attempts must be >= 0",
                code="invalid_reconnect_max_attempts",
            )
        try:
            delay = self.reconnect_delay
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(
                "reconnect_delay must be a number", code="invalid_reconnect_delay", original_error=exc
            ) from exc
        if delay <= 0:
            raise ConfigurationError(
                f"reconnect_delay must be positive, got {delay}",
                code="invalid_reconnect_delay",
                details={"reconnect_delay": delay},
            )

    @property
    def raw(self) -> dict[str, Any]:
        return self._data

    def get(self, key: str, default: Any = None) -> Any:
        """Get value by dot-separated path."""
        parts = key.split(".")
        obj: Any = self._data
        for part in parts:
            if isinstance(obj, dict) and part in obj:
                obj = obj[part]
            else:
                return default
        return obj

    def __getitem__(self, key: str) -> Any:
        return self._data[key]

    def __contains__(self, key: str) -> bool:
        return key in self._data

    def _optional_str(self, key: str, env_key: str | None = None) -> str | None:
        if env_key:
            env_val = self._env.get(env_key, "")
            if env_val:
                return env_val
        val = self._data.get(key)
        if val is None:
            return None
        val = str(val).strip()
        return val or None

    @property
    def host(self) -> str:
        return str(self._data.get("host", "")).strip()

    @property
    def port(self) -> int:
        return int(self._data.get("port", 6667))

    @property
    def tls(self) -> bool:
        parsed = _parse_bool_env(self._env.get("IRC_TLS", ""))
        if parsed is not None:
            return parsed
        return bool(self._data.get("tls", False))

    @property
    def tls_verify(self) -> bool:
        return bool(self._data.get("tls_verify", True))

    @property
    def nick(self) -> str | None:
        return self._optional_str("nick")

    @property
    def password(self) -> str | None:
        return self._optional_str("password", "IRC_PASSWORD")

    @property
    def user(self) -> str | None:
        return self._optional_str("user")

    @property
    def realname(self) -> str | None:
        return self._optional_str("realname")

    @property
    def channels(self) -> list[str]:
        val = self._data.get("channels")
        if isinstance(val, list):
            return [str(c) for c in val]
        return []

    @property
    def nickserv_password(self) -> str | None:
        return self._optional_str("nickserv_password", "IRC_NICKSERV_PASSWORD")

    @property
    def reconnect_max_attempts(self) -> int:
        return int(self._data.get("reconnect_max_attempts", 5))

    @property
    def reconnect_delay(self) -> float:
        return float(self._data.get("reconnect_delay", 1.0))

    @property
    def reconnect_max_delay(self) -> float:
        return float(self._data.get("reconnect_max_delay", 300.0))

    @property
    def reply_timeout(self) -> float:
        return float(self._data.get("reply_timeout", 30.0))

    @property
    def debug(self) -> bool:
        parsed = _parse_bool_env(self._env.get("IRC_DEBUG", ""))
        if parsed is not None:
            return parsed
        return bool(self._data.get("debug", False))

    @property
    def commands(self) -> dict[str, str]:
        """Static bot replies: command name -> reply text."""
        val = self._data.get("commands")
        if isinstance(val, dict):
            return {str(k): str(v) for k, v in val.items()}
        return {}

    def client_options(self) -> ClientOptions:
        return ClientOptions(
            host=self.host,
            port=self.port,
            nick=self.nick,
            password=self.password,
            user=self.user,
            realname=self.realname,
            channels=self.channels,
            nickserv_password=self.nickserv_password,
            tls=self.tls,
            tls_verify=self.tls_verify,
            reconnect_max_attempts=self.reconnect_max_attempts,
            reconnect_delay=self.reconnect_delay,
            reconnect_max_delay=self.reconnect_max_delay,
            reply_timeout=self.reply_timeout,
            debug=self.debug,
        )


cfg: Config = Config({})
