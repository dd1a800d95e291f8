"""Configuration loading for telerelay.

All user-editable settings (server, bots, routing, formatting, logging) live
in a single JSON file for quick edits without touching Python. Secrets can be
kept out of that file: environment variables prefixed with ``TG_PLUGIN__``
(optionally from a ``.env`` file) override it unless ``ignore_env_vars`` is
set.
"""

from __future__ import annotations

import copy
import json
import logging
import os
from typing import Any, Callable, Mapping, Optional
from urllib.parse import urlsplit

from dotenv import load_dotenv

from core.config import (
    DEFAULT_GOTIFY_URL,
    DEFAULT_HANDSHAKE_TIMEOUT,
    DEFAULT_PARSE_MODE,
    SUPPORTED_PARSE_MODES,
    BotTarget,
    FormatOptions,
    PluginConfig,
    ServerConfig,
    TelegramConfig,
)
from core.errors import ConfigurationError
from core.router import find_overlapping_claims

LOGGER = logging.getLogger(__name__)

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))

# Default location of the JSON config; TG_PLUGIN__CONFIG_PATH or --config override it.
CONFIG_PATH = os.path.join(PROJECT_ROOT, "config.json")

ENV_PREFIX = "TG_PLUGIN__"

LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}

_TRUE_VALUES = {"1", "t", "true", "yes", "on"}
_FALSE_VALUES = {"0", "f", "false", "no", "off"}


def _parse_bool(raw: str) -> Optional[bool]:
    value = raw.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    return None


def _parse_int(raw: str) -> Optional[int]:
    try:
        return int(raw.strip())
    except ValueError:
        return None


def _parse_list(raw: str) -> list[str]:
    return [item.strip() for item in raw.split(",") if item.strip()]


# (env suffix, path inside the JSON document, parser). Parsers return None for
# values that cannot be parsed; those variables are ignored.
_ENV_OVERRIDES: tuple[tuple[str, tuple[str, ...], Callable[[str], Any]], ...] = (
    ("GOTIFY_URL", ("gotify_server", "url"), str),
    ("GOTIFY_CLIENT_TOKEN", ("gotify_server", "client_token"), str),
    ("WEBSOCKET_HANDSHAKE_TIMEOUT", ("gotify_server", "websocket", "handshake_timeout"), _parse_int),
    ("TELEGRAM_DEFAULT_BOT_TOKEN", ("telegram", "default_bot_token"), str),
    ("TELEGRAM_DEFAULT_CHAT_IDS", ("telegram", "default_chat_ids"), _parse_list),
    ("MESSAGE_INCLUDE_APP_NAME", ("telegram", "message_format_options", "include_app_name"), _parse_bool),
    ("MESSAGE_INCLUDE_TIMESTAMP", ("telegram", "message_format_options", "include_timestamp"), _parse_bool),
    ("MESSAGE_INCLUDE_EXTRAS", ("telegram", "message_format_options", "include_extras"), _parse_bool),
    ("MESSAGE_INCLUDE_PRIORITY", ("telegram", "message_format_options", "include_priority"), _parse_bool),
    ("MESSAGE_PRIORITY_THRESHOLD", ("telegram", "message_format_options", "priority_threshold"), _parse_int),
    ("MESSAGE_PARSE_MODE", ("telegram", "message_format_options", "parse_mode"), str),
    ("LOG_LEVEL", ("logging", "level"), str),
)


def log_level_from_name(name: Optional[str]) -> int:
    """Map a level name to a logging level; unknown or empty names mean INFO."""

    return LOG_LEVELS.get(str(name or "").strip().lower(), logging.INFO)


def default_config_path(environ: Optional[Mapping[str, str]] = None) -> str:
    env = os.environ if environ is None else environ
    return env.get(f"{ENV_PREFIX}CONFIG_PATH") or CONFIG_PATH


def _load_json_config(path: str) -> dict:
    """Load the JSON config; a missing file means defaults plus environment."""

    if not os.path.exists(path):
        LOGGER.info("Config file %s not found, using defaults and environment", path)
        return {}
    try:
        with open(path, "r", encoding="utf-8") as handle:
            data = json.load(handle)
    except ValueError as exc:
        raise ConfigurationError(f"invalid JSON in {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigurationError(f"{path} must contain a JSON object")
    return data


def apply_env_overrides(data: dict, environ: Mapping[str, str]) -> dict:
    """Return a copy of ``data`` with ``TG_PLUGIN__*`` variables applied."""

    merged = copy.deepcopy(data)
    for suffix, path, parser in _ENV_OVERRIDES:
        raw = environ.get(f"{ENV_PREFIX}{suffix}")
        if raw is None:
            continue
        value = parser(raw)
        if value is None:
            LOGGER.warning("Ignoring %s%s: cannot parse %r", ENV_PREFIX, suffix, raw)
            continue
        node = merged
        for key in path[:-1]:
            child = node.get(key)
            if not isinstance(child, dict):
                child = {}
                node[key] = child
            node = child
        node[path[-1]] = value
    return merged


def _option_bool(raw: dict, key: str, default: bool) -> bool:
    value = raw.get(key)
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        parsed = _parse_bool(value)
        if parsed is not None:
            return parsed
    raise ValueError(f"{key} must be a boolean, got {value!r}")


def _parse_format_options(raw: Any, base: Optional[FormatOptions] = None) -> FormatOptions:
    base = base or FormatOptions()
    if raw is None:
        return base
    if not isinstance(raw, dict):
        raise ConfigurationError("message_format_options must be an object")
    try:
        return FormatOptions(
            include_app_name=_option_bool(raw, "include_app_name", base.include_app_name),
            include_timestamp=_option_bool(raw, "include_timestamp", base.include_timestamp),
            include_extras=_option_bool(raw, "include_extras", base.include_extras),
            include_priority=_option_bool(raw, "include_priority", base.include_priority),
            priority_threshold=int(raw.get("priority_threshold", base.priority_threshold)),
            parse_mode=str(raw.get("parse_mode") or base.parse_mode),
        )
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"invalid message_format_options: {exc}") from exc


def _parse_bots(raw: Any) -> tuple[BotTarget, ...]:
    """Build targets in declaration order; the first claim of an app id wins."""

    if not raw:
        return ()
    if not isinstance(raw, dict):
        raise ConfigurationError("settings.telegram.bots must be an object keyed by bot name")
    bots: list[BotTarget] = []
    for name, entry in raw.items():
        if not isinstance(entry, dict):
            raise ConfigurationError(f"settings.telegram.bots.{name} must be an object")
        try:
            app_ids = frozenset(int(app_id) for app_id in entry.get("app_ids", []) or [])
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(f"settings.telegram.bots.{name}.app_ids must be integers") from exc
        options_raw = entry.get("message_format_options")
        bots.append(
            BotTarget(
                name=str(name),
                token=str(entry.get("token") or ""),
                chat_ids=tuple(str(chat_id) for chat_id in entry.get("chat_ids", []) or []),
                app_ids=app_ids,
                format_options=_parse_format_options(options_raw) if options_raw is not None else None,
            )
        )
    return tuple(bots)


def build_config(data: Mapping[str, Any]) -> PluginConfig:
    """Turn a raw config document into a PluginConfig (not yet validated)."""

    server_raw = data.get("gotify_server") or {}
    websocket_raw = server_raw.get("websocket") or {}
    telegram_raw = data.get("telegram") or {}
    logging_raw = data.get("logging") or {}

    url = str(server_raw.get("url") or "")
    if not url:
        LOGGER.warning("Gotify url is not set. Defaulting to %s", DEFAULT_GOTIFY_URL)
        url = DEFAULT_GOTIFY_URL

    try:
        handshake_timeout = float(websocket_raw.get("handshake_timeout", DEFAULT_HANDSHAKE_TIMEOUT))
    except (TypeError, ValueError) as exc:
        raise ConfigurationError("settings.gotify_server.websocket.handshake_timeout must be a number") from exc

    return PluginConfig(
        server=ServerConfig(
            url=url,
            client_token=str(server_raw.get("client_token") or ""),
            handshake_timeout=handshake_timeout,
        ),
        telegram=TelegramConfig(
            default_bot_token=str(telegram_raw.get("default_bot_token") or ""),
            default_chat_ids=tuple(str(chat_id) for chat_id in telegram_raw.get("default_chat_ids", []) or []),
            bots=_parse_bots(telegram_raw.get("bots")),
            format_options=_parse_format_options(
                telegram_raw.get("message_format_options"),
                FormatOptions(parse_mode=DEFAULT_PARSE_MODE),
            ),
        ),
        log_level=str(logging_raw.get("level") or "info"),
        ignore_env_vars=bool(data.get("ignore_env_vars", False)),
        logging_options=dict(logging_raw),
    )


def validate_config(config: PluginConfig) -> None:
    """Raise ConfigurationError for the first problem found."""

    telegram = config.telegram
    if not telegram.default_bot_token:
        raise ConfigurationError("settings.telegram.default_bot_token is required")
    if not telegram.default_chat_ids:
        raise ConfigurationError("settings.telegram.default_chat_ids is required")

    server = config.server
    if not server.url:
        raise ConfigurationError("settings.gotify_server.url is required")
    parts = urlsplit(server.url)
    if parts.scheme not in ("http", "https") or not parts.netloc:
        raise ConfigurationError("settings.gotify_server.url must be an http or https URL")
    if not server.client_token:
        raise ConfigurationError("settings.gotify_server.client_token is required")
    if server.handshake_timeout <= 0:
        raise ConfigurationError("settings.gotify_server.websocket.handshake_timeout must be positive")

    if telegram.format_options.parse_mode not in SUPPORTED_PARSE_MODES:
        raise ConfigurationError(f"parse mode {telegram.format_options.parse_mode} is not supported")
    for bot in telegram.bots:
        if not bot.token:
            raise ConfigurationError(f"settings.telegram.bots.{bot.name}.token is required")
        if not bot.chat_ids:
            raise ConfigurationError(f"settings.telegram.bots.{bot.name}.chat_ids is required")
        if bot.format_options and bot.format_options.parse_mode not in SUPPORTED_PARSE_MODES:
            raise ConfigurationError(f"parse mode {bot.format_options.parse_mode} is not supported")

    for app_id, names in find_overlapping_claims(telegram.bots).items():
        LOGGER.warning("app_id %s is claimed by %s; %s wins", app_id, ", ".join(names), names[0])


def load_config(
    path: Optional[str] = None,
    environ: Optional[Mapping[str, str]] = None,
    validate: bool = True,
) -> PluginConfig:
    """Load, overlay and (optionally) validate the configuration."""

    if environ is None:
        load_dotenv()
        environ = os.environ
    data = _load_json_config(path or default_config_path(environ))
    if not data.get("ignore_env_vars", False):
        data = apply_env_overrides(data, environ)
    config = build_config(data)
    if validate:
        validate_config(config)
    return config


def collect_secrets(config: PluginConfig) -> list[str]:
    """Every configured token, for log redaction."""

    secrets = [config.server.client_token, config.telegram.default_bot_token]
    secrets.extend(bot.token for bot in config.telegram.bots)
    return sorted({secret for secret in secrets if secret}, key=len, reverse=True)
