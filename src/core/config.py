"""Core configuration dataclasses.

We keep config parsing outside the core (see settings.py), but these
dataclasses define the shape the core expects so adapters and the app layer
can build it safely.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

DEFAULT_GOTIFY_URL = "http://localhost:80"
DEFAULT_HANDSHAKE_TIMEOUT = 10
DEFAULT_PARSE_MODE = "MarkdownV2"
SUPPORTED_PARSE_MODES = ("MarkdownV2",)


@dataclass(frozen=True)
class FormatOptions:
    """Controls what the formatter puts into a notification."""

    include_app_name: bool = False
    include_timestamp: bool = False
    include_extras: bool = False
    include_priority: bool = False
    priority_threshold: int = 0
    parse_mode: str = DEFAULT_PARSE_MODE


@dataclass(frozen=True)
class BotTarget:
    """A bot token, the chats it posts to and the app ids it claims."""

    name: str
    token: str
    chat_ids: tuple[str, ...]
    app_ids: frozenset[int] = frozenset()
    format_options: Optional[FormatOptions] = None


@dataclass(frozen=True)
class ServerConfig:
    """Where to reach the source server."""

    url: str = DEFAULT_GOTIFY_URL
    client_token: str = ""
    handshake_timeout: float = DEFAULT_HANDSHAKE_TIMEOUT


@dataclass(frozen=True)
class TelegramConfig:
    """Delivery targets and the global formatting defaults."""

    default_bot_token: str = ""
    default_chat_ids: tuple[str, ...] = ()
    bots: tuple[BotTarget, ...] = ()
    format_options: FormatOptions = field(default_factory=FormatOptions)

    @property
    def default_target(self) -> BotTarget:
        return BotTarget(
            name="default",
            token=self.default_bot_token,
            chat_ids=self.default_chat_ids,
        )


@dataclass(frozen=True)
class PluginConfig:
    """Everything the relay needs to run, as one immutable snapshot."""

    server: ServerConfig = field(default_factory=ServerConfig)
    telegram: TelegramConfig = field(default_factory=TelegramConfig)
    log_level: str = "info"
    ignore_env_vars: bool = False
    logging_options: Mapping[str, Any] = field(default_factory=dict, compare=False)


class ConfigStore:
    """Holds the active PluginConfig and swaps it as a whole."""

    def __init__(self, config: PluginConfig) -> None:
        self._lock = threading.Lock()
        self._config = config

    @property
    def current(self) -> PluginConfig:
        with self._lock:
            return self._config

    def replace(self, config: PluginConfig) -> PluginConfig:
        """Install a new snapshot and return the previous one."""

        with self._lock:
            previous, self._config = self._config, config
        return previous
