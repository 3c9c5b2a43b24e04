"""Core event processing pipeline.

The pipeline enforces a strict order for every event:
1) ``before:pipeline``
2) For each stage, in registration order: ``before:stage``, invoke,
   ``error:stage`` on failure, ``after:stage``; retries repeat this within
   the same stage slot
3) ``after:pipeline``, even when the run stopped early

This module is integration-agnostic. Stage failures never escape
``process``; they are resolved by the attached ErrorHandler (or skipped when
none is attached) and surface only through the RunResult.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Iterable, Optional, Union

from telepipe.core import hooks as hook_names
from telepipe.core.errors import ErrorHandler, Recovery, RecoveryAction, StageTimeoutError
from telepipe.core.hooks import HookManager
from telepipe.core.models import (
    ActionDeclaration,
    ActionRecord,
    Event,
    ProcessingContext,
    RunResult,
    Stage,
    StageFunc,
    Stop,
)

LOGGER = logging.getLogger(__name__)


class Pipeline:
    """Runs an ordered list of named stages for each incoming event."""

    def __init__(self, stages: Optional[Iterable[Stage]] = None) -> None:
        self._stages: list[Stage] = []
        self._hooks: Optional[HookManager] = None
        self._error_handler: Optional[ErrorHandler] = None
        for stage in stages or ():
            self.use(stage)

    @property
    def stages(self) -> tuple[Stage, ...]:
        return tuple(self._stages)

    def use(
        self,
        stage: Union[Stage, StageFunc],
        name: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> "Pipeline":
        """Append a stage. Plain callables need an explicit ``name``."""

        if not isinstance(stage, Stage):
            if not name:
                raise ValueError("A name is required when registering a bare callable")
            stage = Stage(name=name, func=stage, timeout=timeout)
        if any(existing.name == stage.name for existing in self._stages):
            raise ValueError(f"Duplicate stage name: {stage.name}")
        self._stages.append(stage)
        return self

    def set_hooks(self, hooks: Optional[HookManager]) -> "Pipeline":
        self._hooks = hooks
        return self

    def set_error_handler(self, error_handler: Optional[ErrorHandler]) -> "Pipeline":
        self._error_handler = error_handler
        return self

    async def process(self, event: Event, context: ProcessingContext) -> RunResult:
        """Run every stage for one event and return the run result."""

        logger = context.logger or LOGGER
        result = RunResult()
        # Stage order is fixed for the duration of a run.
        stages = tuple(self._stages)

        await self._emit(hook_names.BEFORE_PIPELINE, {"event": event})

        for stage in stages:
            await self._run_stage(stage, event, context, result, logger)
            if result.stopped:
                break

        await self._emit(hook_names.AFTER_PIPELINE, {"event": event, "result": result})
        return result

    async def _run_stage(
        self,
        stage: Stage,
        event: Event,
        context: ProcessingContext,
        result: RunResult,
        logger: logging.Logger,
    ) -> None:
        attempt = 0
        while True:
            attempt += 1
            await self._emit(
                hook_names.BEFORE_STAGE,
                {"event": event, "stage_name": stage.name, "attempt": attempt},
            )
            try:
                signal = await self._invoke(stage, event, context)
            except Exception as exc:
                logger.error(
                    "Pipeline stage failed: %s (event=%s, attempt=%s): %s",
                    stage.name,
                    event.id,
                    attempt,
                    exc,
                )
                await self._emit(
                    hook_names.ERROR_STAGE,
                    {"event": event, "stage_name": stage.name, "error": exc, "attempt": attempt},
                )
                await self._emit(
                    hook_names.AFTER_STAGE,
                    {"event": event, "stage_name": stage.name, "signal": None, "error": exc},
                )
                if await self._recover(stage, exc, attempt, result, logger):
                    continue
                return

            if isinstance(signal, ActionDeclaration):
                record = ActionRecord(action=signal.name, data=dict(signal.data), stage=stage.name)
                event.actions.append(record)
                result.actions.append(record)
            elif signal is not None and not isinstance(signal, Stop):
                logger.warning(
                    "Stage %s returned unsupported value %r; continuing", stage.name, signal
                )

            await self._emit(
                hook_names.AFTER_STAGE,
                {"event": event, "stage_name": stage.name, "signal": signal, "error": None},
            )

            if isinstance(signal, Stop):
                result.stopped = True
                result.metadata.update({"reason": signal.reason, **signal.metadata})
                logger.info("Pipeline halted at stage: %s (event=%s)", stage.name, event.id)
            return

    async def _invoke(self, stage: Stage, event: Event, context: ProcessingContext) -> Any:
        outcome = stage.func(event, context)
        if not inspect.isawaitable(outcome):
            return outcome
        if stage.timeout is None:
            return await outcome
        try:
            return await asyncio.wait_for(outcome, timeout=stage.timeout)
        except asyncio.TimeoutError as exc:
            raise StageTimeoutError(stage.name, stage.timeout) from exc

    async def _recover(
        self,
        stage: Stage,
        error: Exception,
        attempt: int,
        result: RunResult,
        logger: logging.Logger,
    ) -> bool:
        """Apply the recovery decision. Returns True when the stage should run again."""

        if self._error_handler is None:
            logger.warning("No error handler attached, skipping stage %s", stage.name)
            return False

        try:
            recovery = await self._error_handler.handle(error, stage.name, attempt=attempt)
        except Exception:
            recovery = Recovery(RecoveryAction.STOP, "handler_failed")
        if not isinstance(recovery, Recovery):
            logger.error("Error handler returned %r for stage %s, stopping", recovery, stage.name)
            recovery = Recovery(RecoveryAction.STOP, "handler_failed")

        if recovery.action is RecoveryAction.RETRY:
            max_attempts, backoff_ms = self._error_handler.retry_policy(stage.name)
            if attempt >= max_attempts:
                logger.error("Stage %s failed %s times, max retries exceeded", stage.name, attempt)
                self._mark_failed(result, stage, error, "max_retries")
                return False
            if backoff_ms:
                await asyncio.sleep(backoff_ms * attempt / 1000)
            return True

        if recovery.action is RecoveryAction.STOP:
            self._mark_failed(result, stage, error, recovery.reason)
        elif recovery.action is RecoveryAction.FALLBACK:
            result.metadata.setdefault("fallbacks", {})[stage.name] = recovery.fallback_value
        return False

    @staticmethod
    def _mark_failed(result: RunResult, stage: Stage, error: Exception, reason: str) -> None:
        result.stopped = True
        result.error = error
        result.error_stage = stage.name
        result.metadata["reason"] = reason

    async def _emit(self, hook_name: str, payload: dict[str, Any]) -> None:
        if self._hooks is not None:
            await self._hooks.emit(hook_name, payload)

    def inspect(self) -> dict[str, Any]:
        """Diagnostic snapshot for status and debug endpoints."""

        return {
            "stage_count": len(self._stages),
            "stages": [stage.name for stage in self._stages],
            "has_hooks": self._hooks is not None,
            "hook_stats": self._hooks.get_status() if self._hooks is not None else None,
            "has_error_handler": self._error_handler is not None,
            "error_stats": self._error_handler.get_stats() if self._error_handler is not None else None,
        }
