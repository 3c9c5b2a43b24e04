"""Application entry point for the telepipe bot runner."""

from __future__ import annotations

import argparse
import json
import logging
import os
from logging.handlers import RotatingFileHandler
from typing import Any, Optional

from art import tprint
from dotenv import load_dotenv

from telepipe.adapters.cached_storage import CachedStorage
from telepipe.adapters.sqlite_storage import SQLiteStorage
from telepipe.adapters.telegram_transport import TelegramTransport
from telepipe.auth import authorize
from telepipe.client import bot_token_for, build_client
from telepipe.core import hooks as hook_names
from telepipe.core.bot import BotEngine
from telepipe.core.errors import ErrorHandler
from telepipe.core.hooks import HookManager
from telepipe.core.pipeline import Pipeline
from telepipe.loader import build_action_handler, build_pipeline

NAME = "TELEPIPE"
FONT = "tarty-1"


def _print_banner() -> None:
    tprint(NAME, FONT, space=1)


class _RedactingFormatter(logging.Formatter):
    def __init__(self, secrets: list[str], fmt: str, datefmt: Optional[str] = None) -> None:
        super().__init__(fmt=fmt, datefmt=datefmt)
        self._secrets = [secret for secret in secrets if secret]

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        for secret in self._secrets:
            message = message.replace(secret, "***")
        return message


def _collect_redaction_values(config: dict) -> list[str]:
    redact_cfg = config.get("redact", {}) if config else {}
    if not redact_cfg.get("enabled", False):
        return []
    values = []
    for name in redact_cfg.get("patterns", []):
        value = os.getenv(name)
        if value:
            values.append(value)
    return sorted(set(values), key=len, reverse=True)


def configure_logging(config: dict, project_root: str) -> None:
    if not config.get("enabled", False):
        return

    load_dotenv()
    level_name = str(config.get("level", "INFO")).upper()
    level = getattr(logging, level_name, logging.INFO)

    fmt = "%(asctime)s %(levelname)s %(name)s: %(message)s"
    datefmt = "%Y-%m-%d %H:%M:%S"
    formatter = _RedactingFormatter(_collect_redaction_values(config), fmt=fmt, datefmt=datefmt)

    handlers: list[logging.Handler] = []

    if config.get("console", True):
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        handlers.append(console_handler)

    file_cfg = config.get("file", {})
    if file_cfg.get("enabled", False):
        path = file_cfg.get("path", "logs/telepipe.log")
        if not os.path.isabs(path):
            path = os.path.join(project_root, path)
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        file_handler = RotatingFileHandler(
            path,
            maxBytes=int(file_cfg.get("max_bytes", 5 * 1024 * 1024)),
            backupCount=int(file_cfg.get("backup_count", 5)),
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    if not handlers:
        return

    logging.basicConfig(level=level, handlers=handlers)


def _log_run_outcome(payload: dict[str, Any]) -> None:
    event = payload["event"]
    result = payload["result"]
    logging.getLogger("telepipe.run").debug(
        "Event %s (%s) done: stopped=%s reason=%s actions=%s",
        event.id,
        event.kind.value,
        result.stopped,
        result.metadata.get("reason"),
        len(result.actions),
    )


def _build_storage(settings) -> Any:
    if not settings.DB_PATH:
        return None
    schema = None
    if settings.DB_SCHEMA_PATH:
        with open(settings.DB_SCHEMA_PATH, "r", encoding="utf-8") as handle:
            schema = handle.read()
    storage = SQLiteStorage(settings.DB_PATH, schema=schema)
    if settings.CACHE.enabled:
        return CachedStorage(storage, ttl=settings.CACHE.ttl_seconds)
    return storage


def _build_pipeline(settings) -> Pipeline:
    hooks = HookManager().on(hook_names.AFTER_PIPELINE, _log_run_outcome)
    return build_pipeline(settings.STAGES, ErrorHandler(), hooks)


def _run() -> None:
    from telepipe import settings

    _print_banner()
    configure_logging(settings.LOGGING, settings.PROJECT_ROOT)
    logger = logging.getLogger(__name__)
    logger.info("Starting telepipe")

    pipeline = _build_pipeline(settings)
    action_handler = build_action_handler(settings.ACTIONS, builtin=settings.BUILTIN_ACTIONS)
    storage = _build_storage(settings)

    client = build_client()
    transport = TelegramTransport(
        client,
        bot_token=bot_token_for(settings.TRANSPORT_MODE),
        parse_mode=settings.PARSE_MODE,
    )
    engine = BotEngine(
        transport,
        pipeline=pipeline,
        storage=storage,
        action_handler=action_handler,
        config=settings.BOT_CONFIG,
    )

    client.loop.run_until_complete(engine.start())
    logger.info("Transport connected (mode=%s). Listening for events...", settings.TRANSPORT_MODE)
    try:
        client.run_until_disconnected()
    finally:
        client.loop.run_until_complete(engine.stop())


def _check() -> None:
    from telepipe import settings

    pipeline = _build_pipeline(settings)
    action_handler = build_action_handler(settings.ACTIONS, builtin=settings.BUILTIN_ACTIONS)
    report = {
        "config": settings.CONFIG_PATH,
        "transport": settings.TRANSPORT_MODE,
        "pipeline": pipeline.inspect(),
        "actions": action_handler.get_registered(),
    }
    print(json.dumps(report, indent=2))


def _login() -> None:
    _print_banner()
    client = build_client()

    async def _run_login() -> None:
        await client.connect()
        try:
            await authorize(client)
        finally:
            await client.disconnect()

    client.loop.run_until_complete(_run_login())


def main(argv: Optional[list[str]] = None) -> None:
    parser = argparse.ArgumentParser(prog="telepipe")
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("run", help="Start the bot engine")
    subparsers.add_parser("check", help="Load the config and print the pipeline layout")
    subparsers.add_parser("login", help="Authorize a user session (QR or phone code)")

    args = parser.parse_args(argv)
    if args.command == "check":
        _check()
        return
    if args.command == "login":
        _login()
        return
    _run()


if __name__ == "__main__":
    main()
