"""Static configuration for telepipe.

All user-editable settings (transport, storage, stages, actions, logging)
live in a single JSON file. Secrets stay in the environment (.env).
"""

import json
import os

from dotenv import load_dotenv

from telepipe.core.config import build_cache_config, build_stage_configs
from telepipe.core.errors import ConfigError

load_dotenv()

PROJECT_ROOT = os.getcwd()

# TELEPIPE_CONFIG points at an alternative config file, e.g. per deployment.
CONFIG_PATH = os.getenv("TELEPIPE_CONFIG", os.path.join(PROJECT_ROOT, "config.json"))


def _load_json_config() -> dict:
    """Load config.json with a flat, user-friendly schema."""

    if not os.path.exists(CONFIG_PATH):
        raise FileNotFoundError(f"Config file not found: {CONFIG_PATH}")

    with open(CONFIG_PATH, "r", encoding="utf-8") as handle:
        return json.load(handle)


def _resolve_path(path: str) -> str:
    if os.path.isabs(path):
        return path
    return os.path.join(PROJECT_ROOT, path)


_CONFIG = _load_json_config()

# Expose the raw config for modules that need structured access.
CONFIG = _CONFIG

# Transport: "bot" logs in with BOT_TOKEN, "user" reuses an authorized session.
_transport = _CONFIG.get("transport", {})
TRANSPORT_MODE = _transport.get("mode", "bot")
if TRANSPORT_MODE not in {"bot", "user"}:
    raise ConfigError("transport.mode must be 'bot' or 'user'")
PARSE_MODE = _transport.get("parse_mode", "html")

# Storage is optional; without a path stages get no storage handle.
_storage = _CONFIG.get("storage", {})
DB_PATH = _resolve_path(_storage["path"]) if _storage.get("path") else None
DB_SCHEMA_PATH = _resolve_path(_storage["schema"]) if _storage.get("schema") else None
CACHE = build_cache_config(_storage.get("cache"))

# Stages run in the order listed; disabled entries are dropped.
STAGES = build_stage_configs(_CONFIG.get("pipeline", {}).get("stages", []))

# Custom action handlers keyed by action name, plus the transport built-ins.
ACTIONS = dict(_CONFIG.get("actions", {}))
BUILTIN_ACTIONS = bool(_CONFIG.get("builtin_actions", True))

# Free-form section handed to stages as the read-only context.config.
BOT_CONFIG = dict(_CONFIG.get("bot", {}))

# Logging configuration (optional).
LOGGING = _CONFIG.get("logging", {})
