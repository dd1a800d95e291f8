"""Application entry point for the telerelay bridge."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import signal
from logging.handlers import RotatingFileHandler
from typing import Optional

from art import tprint

import settings
from adapters.gotify_api import GotifyClient
from client import build_http_session
from core.config import PluginConfig
from core.errors import ConfigurationError, RelayError
from core.masking import mask_token, redact
from pipeline import RelayService

NAME = "TELERELAY"
FONT = "tarty-1"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
DEFAULT_LOG_FILE = "logs/telerelay.log"


def _print_banner() -> None:
    tprint(NAME, FONT, space=1)


class _RedactingFormatter(logging.Formatter):
    def __init__(self, secrets: list[str], fmt: str, datefmt: Optional[str] = None) -> None:
        super().__init__(fmt=fmt, datefmt=datefmt)
        self._secrets = [secret for secret in secrets if secret]

    def format(self, record: logging.LogRecord) -> str:
        return redact(super().format(record), self._secrets)


def _collect_redaction_values(config: PluginConfig) -> list[str]:
    redact_cfg = config.logging_options.get("redact", {}) or {}
    if not redact_cfg.get("enabled", True):
        return []
    values = settings.collect_secrets(config)
    for name in redact_cfg.get("patterns", []):
        value = os.getenv(name)
        if value:
            values.append(value)
    return sorted(set(values), key=len, reverse=True)


def _file_handler(file_cfg: dict) -> RotatingFileHandler:
    path = file_cfg.get("path") or DEFAULT_LOG_FILE
    if not os.path.isabs(path):
        path = os.path.join(settings.PROJECT_ROOT, path)
    os.makedirs(os.path.dirname(path), exist_ok=True)
    return RotatingFileHandler(
        path,
        maxBytes=int(file_cfg.get("max_bytes", 5 * 1024 * 1024)),
        backupCount=int(file_cfg.get("backup_count", 5)),
        encoding="utf-8",
    )


def _configure_logging(config: PluginConfig) -> None:
    options = config.logging_options
    if not options.get("enabled", True):
        return

    handlers: list[logging.Handler] = []
    if options.get("console", True):
        handlers.append(logging.StreamHandler())
    file_cfg = options.get("file") or {}
    if file_cfg.get("enabled", False):
        handlers.append(_file_handler(file_cfg))
    if not handlers:
        return

    level = settings.log_level_from_name(config.log_level)
    formatter = _RedactingFormatter(_collect_redaction_values(config), fmt=LOG_FORMAT, datefmt=LOG_DATE_FORMAT)
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)

    logging.basicConfig(level=level, handlers=handlers, force=True)
    # aiohttp logs full request URLs, tokens included, at debug level.
    logging.getLogger("aiohttp").setLevel(max(level, logging.INFO))


async def _serve(config: PluginConfig) -> None:
    logger = logging.getLogger(__name__)
    service = RelayService(config)
    stop = asyncio.Event()

    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, stop.set)
        except NotImplementedError:
            # Windows event loops: fall back to KeyboardInterrupt.
            pass

    await service.enable()
    logger.info("Relay running. Forwarding gotify messages to telegram...")
    try:
        await stop.wait()
    finally:
        await service.disable()
        logger.info("Shutdown complete")


def _run(config_path: Optional[str]) -> None:
    _print_banner()
    config = settings.load_config(config_path)
    _configure_logging(config)
    logger = logging.getLogger(__name__)
    logger.info("Starting telerelay")
    logger.info("%s bot route(s) are loaded", len(config.telegram.bots))
    try:
        asyncio.run(_serve(config))
    except KeyboardInterrupt:
        logger.info("Interrupted")


async def _list_applications(config: PluginConfig) -> None:
    async with build_http_session() as session:
        client = GotifyClient(session, config.server.url, config.server.client_token)
        applications = await client.list_applications()

    if not applications:
        print("The gotify server reports no applications.")
        return

    for app in sorted(applications, key=lambda item: item.app_id):
        description = f" | {app.description}" if app.description else ""
        print(f"{app.app_id} | {app.name}{description}")


def _apps(config_path: Optional[str]) -> None:
    _print_banner()
    config = settings.load_config(config_path, validate=False)
    _configure_logging(config)
    try:
        asyncio.run(_list_applications(config))
    except RelayError as exc:
        raise SystemExit(f"Failed to list applications: {exc}") from exc


def _print_routes(config: PluginConfig) -> None:
    telegram = config.telegram
    print(f"gotify: {config.server.url} (token {mask_token(config.server.client_token)})")
    for bot in telegram.bots:
        app_ids = ", ".join(str(app_id) for app_id in sorted(bot.app_ids)) or "-"
        custom = " (custom format)" if bot.format_options else ""
        print(f"{bot.name}: apps [{app_ids}] -> chats [{', '.join(bot.chat_ids)}] token {mask_token(bot.token)}{custom}")
    print(
        f"default: all other apps -> chats [{', '.join(telegram.default_chat_ids)}] "
        f"token {mask_token(telegram.default_bot_token)}"
    )


def _check(config_path: Optional[str]) -> None:
    try:
        config = settings.load_config(config_path)
    except ConfigurationError as exc:
        raise SystemExit(f"Invalid configuration: {exc}") from exc
    _print_routes(config)
    print("Configuration is valid.")


def main(argv: Optional[list[str]] = None) -> None:
    parser = argparse.ArgumentParser(prog="telerelay")
    parser.add_argument("--config", help="Path to config.json", default=None)
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("run", help="Start the relay")
    subparsers.add_parser("apps", help="List gotify applications and their ids for routing.")
    subparsers.add_parser("check", help="Validate the configuration and print the routing table.")

    args = parser.parse_args(argv)
    if args.command == "apps":
        _apps(args.config)
        return
    if args.command == "check":
        _check(args.config)
        return
    _run(args.config)


if __name__ == "__main__":
    main()
