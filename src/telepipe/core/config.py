"""Core configuration dataclasses.

We keep config file loading outside the core, but these dataclasses define the
shape the core expects so adapters and app layers can build safely.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, List, Mapping, Optional

from telepipe.core.errors import (
    DEFAULT_BACKOFF_MS,
    DEFAULT_MAX_ATTEMPTS,
    ConfigError,
    RecoveryAction,
)


@dataclass(frozen=True)
class RecoveryConfig:
    """Recovery strategy settings for one stage."""

    strategy: RecoveryAction
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    backoff_ms: int = DEFAULT_BACKOFF_MS


@dataclass(frozen=True)
class StageConfig:
    """A stage entry from the ``pipeline.stages`` config list."""

    name: str
    target: str
    timeout: Optional[float] = None
    recovery: Optional[RecoveryConfig] = None
    # When set, ``target`` is called with ``options`` to produce the stage.
    factory: bool = False
    options: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class CacheConfig:
    """Read-cache settings for the storage adapter."""

    enabled: bool
    ttl_seconds: float


def build_recovery_config(raw: Mapping[str, Any]) -> RecoveryConfig:
    strategy = raw.get("strategy")
    try:
        action = RecoveryAction(strategy)
    except ValueError as exc:
        raise ConfigError(f"Unknown recovery strategy: {strategy!r}") from exc

    max_attempts = int(raw.get("max_attempts", DEFAULT_MAX_ATTEMPTS))
    backoff_ms = int(raw.get("backoff_ms", DEFAULT_BACKOFF_MS))
    if max_attempts < 1:
        raise ConfigError("recovery.max_attempts must be at least 1")
    if backoff_ms < 0:
        raise ConfigError("recovery.backoff_ms must not be negative")
    return RecoveryConfig(strategy=action, max_attempts=max_attempts, backoff_ms=backoff_ms)


def build_stage_configs(stages_config: Iterable[Mapping[str, Any]]) -> List[StageConfig]:
    """Normalize stage entries, dropping disabled ones.

    Names must be unique because they key recovery strategies and stats.
    """

    built: List[StageConfig] = []
    seen: set[str] = set()
    for entry in stages_config:
        if not entry.get("enabled", True):
            continue
        name = entry.get("name")
        target = entry.get("target")
        if not name or not target:
            raise ConfigError("Each stage needs a 'name' and a 'target'")
        if name in seen:
            raise ConfigError(f"Duplicate stage name: {name}")
        seen.add(name)

        timeout = entry.get("timeout_seconds")
        recovery_raw = entry.get("recovery")
        built.append(
            StageConfig(
                name=name,
                target=target,
                timeout=float(timeout) if timeout is not None else None,
                recovery=build_recovery_config(recovery_raw) if recovery_raw else None,
                factory=bool(entry.get("factory", False)),
                options=dict(entry.get("options") or {}),
            )
        )
    return built


def build_cache_config(raw: Optional[Mapping[str, Any]]) -> CacheConfig:
    raw = raw or {}
    ttl = float(raw.get("ttl_seconds", 3600))
    if ttl <= 0:
        raise ConfigError("cache.ttl_seconds must be positive")
    return CacheConfig(enabled=bool(raw.get("enabled", False)), ttl_seconds=ttl)
