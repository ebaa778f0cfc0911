"""Daemon configuration.

Stored in <home>/config.yaml (home: $LYMEBRIDGE_HOME or ~/.config/lymebridge):

    socket_path: /tmp/lymebridge.sock
    log_level: info
    channels:
      imessage: {enabled: true, apple_id: "+15551234567"}
      telegram: {enabled: false, bot_token: "", bot_token_env: "", chat_id: ""}
"""
from __future__ import annotations

import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml  # type: ignore

from .paths import config_path
from .util.conv import coerce_bool
from .util.fs import atomic_write_text

DEFAULT_SOCKET_PATH = "/tmp/lymebridge.sock"
DEFAULT_LOG_LEVEL = "info"


class ConfigError(ValueError):
    """Missing or malformed config file."""


def _is_env_var_name(value: str) -> bool:
    return bool(re.fullmatch(r"[A-Z_][A-Z0-9_]*", (value or "").strip()))


@dataclass
class IMessageConfig:
    enabled: bool = True
    apple_id: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {"enabled": self.enabled, "apple_id": self.apple_id}

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "IMessageConfig":
        return cls(
            enabled=coerce_bool(d.get("enabled"), default=True),
            apple_id=str(d.get("apple_id") or "").strip(),
        )


@dataclass
class TelegramConfig:
    enabled: bool = False
    bot_token: str = ""
    bot_token_env: str = ""
    chat_id: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "enabled": self.enabled,
            "bot_token": self.bot_token,
            "bot_token_env": self.bot_token_env,
            "chat_id": self.chat_id,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "TelegramConfig":
        return cls(
            enabled=coerce_bool(d.get("enabled"), default=False),
            bot_token=str(d.get("bot_token") or "").strip(),
            bot_token_env=str(d.get("bot_token_env") or "").strip(),
            chat_id=str(d.get("chat_id") or "").strip(),
        )

    def resolve_token(self) -> str:
        """Token from the named env var first, then the literal value."""
        env_raw = self.bot_token_env
        env_name = env_raw if _is_env_var_name(env_raw) else ""
        token = ""
        if env_name:
            token = os.environ.get(env_name, "").strip()
        if not token:
            token = self.bot_token
        if not token and env_raw and not env_name:
            # Raw token pasted into the *_env field.
            token = env_raw
        return token


@dataclass
class Config:
    socket_path: str = DEFAULT_SOCKET_PATH
    log_level: str = DEFAULT_LOG_LEVEL
    imessage: Optional[IMessageConfig] = None
    telegram: Optional[TelegramConfig] = None

    def to_dict(self) -> Dict[str, Any]:
        channels: Dict[str, Any] = {}
        if self.imessage is not None:
            channels["imessage"] = self.imessage.to_dict()
        if self.telegram is not None:
            channels["telegram"] = self.telegram.to_dict()
        return {
            "socket_path": self.socket_path,
            "log_level": self.log_level,
            "channels": channels,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Config":
        channels = d.get("channels") or {}
        if not isinstance(channels, dict):
            raise ConfigError("'channels' must be a mapping")
        im = channels.get("imessage")
        tg = channels.get("telegram")
        return cls(
            socket_path=str(d.get("socket_path") or DEFAULT_SOCKET_PATH),
            log_level=str(d.get("log_level") or DEFAULT_LOG_LEVEL),
            imessage=IMessageConfig.from_dict(im) if isinstance(im, dict) else None,
            telegram=TelegramConfig.from_dict(tg) if isinstance(tg, dict) else None,
        )

    @property
    def is_imessage_enabled(self) -> bool:
        return bool(self.imessage and self.imessage.enabled)

    @property
    def is_telegram_enabled(self) -> bool:
        return bool(self.telegram and self.telegram.enabled)

    def enabled_channel_ids(self) -> List[str]:
        ids: List[str] = []
        if self.is_imessage_enabled:
            ids.append("imessage")
        if self.is_telegram_enabled:
            ids.append("telegram")
        return ids


def create_default(apple_id: str) -> Config:
    return Config(imessage=IMessageConfig(enabled=True, apple_id=apple_id))


def create_with_telegram(bot_token: str, chat_id: str) -> Config:
    return Config(telegram=TelegramConfig(enabled=True, bot_token=bot_token, chat_id=chat_id))


def load_config(path: Optional[Path] = None) -> Config:
    p = path or config_path()
    if not p.exists():
        raise ConfigError(f"config not found: {p}")
    try:
        data = yaml.safe_load(p.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid YAML in {p}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"config must be a mapping: {p}")
    return Config.from_dict(data)


def save_config(config: Config, path: Optional[Path] = None) -> Path:
    p = path or config_path()
    text = yaml.safe_dump(config.to_dict(), allow_unicode=True, sort_keys=False)
    atomic_write_text(p, text, mode=0o600)
    return p
