"""Build pipelines and action registries from config entries.

Targets are ``"package.module:attribute"`` strings so users can point the
config at their own stage and action functions without touching telepipe.
"""

from __future__ import annotations

import importlib
import logging
from typing import Any, Iterable, Mapping

from telepipe.core.actions import ActionHandler
from telepipe.core.builtin_actions import register_transport_actions
from telepipe.core.config import StageConfig
from telepipe.core.errors import ConfigError, ErrorHandler
from telepipe.core.hooks import HookManager
from telepipe.core.models import Stage
from telepipe.core.pipeline import Pipeline

LOGGER = logging.getLogger(__name__)


def resolve_target(target: str) -> Any:
    """Import ``module:attribute`` and return the attribute."""

    module_name, sep, attribute = target.partition(":")
    if not sep or not module_name or not attribute:
        raise ConfigError(f"Target must look like 'module:attribute', got {target!r}")
    try:
        module = importlib.import_module(module_name)
    except ImportError as exc:
        raise ConfigError(f"Cannot import {module_name!r} for target {target!r}") from exc

    value: Any = module
    for part in attribute.split("."):
        try:
            value = getattr(value, part)
        except AttributeError as exc:
            raise ConfigError(f"Target {target!r} has no attribute {part!r}") from exc
    return value


def _stage_from_target(config: StageConfig) -> Stage:
    value = resolve_target(config.target)
    if config.factory:
        if not callable(value):
            raise ConfigError(f"Stage factory {config.target!r} is not callable")
        value = value(**config.options)
    if isinstance(value, Stage):
        # Config name and timeout win over whatever the module declared.
        return Stage(name=config.name, func=value.func, timeout=config.timeout or value.timeout)
    if not callable(value):
        raise ConfigError(f"Stage target {config.target!r} is not callable")
    return Stage(name=config.name, func=value, timeout=config.timeout)


def build_pipeline(
    stage_configs: Iterable[StageConfig],
    error_handler: ErrorHandler,
    hooks: HookManager,
) -> Pipeline:
    """Create a pipeline, registering each stage and its recovery strategy."""

    pipeline = Pipeline().set_error_handler(error_handler).set_hooks(hooks)
    for config in stage_configs:
        pipeline.use(_stage_from_target(config))
        if config.recovery is not None:
            error_handler.register_recovery_strategy(
                config.name,
                config.recovery.strategy,
                max_attempts=config.recovery.max_attempts,
                backoff_ms=config.recovery.backoff_ms,
            )
    LOGGER.info("%s stages are loaded", len(pipeline.stages))
    return pipeline


def build_action_handler(actions_config: Mapping[str, str], builtin: bool = True) -> ActionHandler:
    """Create an ActionHandler from ``{action_name: target}`` entries."""

    action_handler = ActionHandler()
    if builtin:
        register_transport_actions(action_handler)
    for action_name, target in actions_config.items():
        action_handler.register(action_name, resolve_target(target))
    LOGGER.info("%s action handlers are registered", len(action_handler.get_registered()))
    return action_handler
