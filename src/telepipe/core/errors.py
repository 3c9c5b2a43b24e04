"""Error taxonomy and stage-failure recovery.

Every stage failure is resolved into one of four recovery actions (stop,
skip, retry, fallback). A strategy registered for a stage name governs any
error that stage raises; otherwise the error's kind decides.
"""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Union

LOGGER = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BACKOFF_MS = 100


class ErrorKind(str, Enum):
    """Closed set of error kinds the handler dispatches on."""

    STAGE = "stage_error"
    DATABASE = "database_error"
    VALIDATION = "validation_error"
    UNKNOWN = "unknown_error"


class PipelineError(Exception):
    """Base class for errors that carry an explicit kind."""

    kind: ErrorKind = ErrorKind.UNKNOWN


class StageError(PipelineError):
    """Generic failure raised from inside a stage."""

    kind = ErrorKind.STAGE


class StageTimeoutError(StageError):
    """A stage did not finish within its deadline."""

    def __init__(self, stage_name: str, timeout: float) -> None:
        super().__init__(f"Stage {stage_name} timed out after {timeout}s")
        self.stage_name = stage_name
        self.timeout = timeout


class DatabaseError(PipelineError):
    """Storage failure with a machine-readable code (e.g. ECONNREFUSED)."""

    kind = ErrorKind.DATABASE

    def __init__(self, message: str, code: Optional[str] = None) -> None:
        super().__init__(message)
        self.code = code


class ValidationError(PipelineError):
    """Input did not satisfy a stage's or action's expectations."""

    kind = ErrorKind.VALIDATION


class TransportError(Exception):
    """A transport adapter call failed."""

    def __init__(self, operation: str, message: str) -> None:
        super().__init__(f"{operation} failed: {message}")
        self.operation = operation


class ConfigError(ValueError):
    """Configuration is missing or malformed."""


def error_kind(error: BaseException) -> ErrorKind:
    if isinstance(error, PipelineError):
        return error.kind
    return ErrorKind.UNKNOWN


class RecoveryAction(str, Enum):
    STOP = "stop"
    SKIP = "skip"
    RETRY = "retry"
    FALLBACK = "fallback"


@dataclass(frozen=True)
class RecoveryStrategy:
    """Per-stage policy for resolving a stage failure."""

    action: RecoveryAction
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    backoff_ms: int = DEFAULT_BACKOFF_MS

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.backoff_ms < 0:
            raise ValueError("backoff_ms must not be negative")


@dataclass(frozen=True)
class Recovery:
    """Decision returned for one failed stage attempt."""

    action: RecoveryAction
    reason: str
    fallback_value: Any = None


KindHandler = Callable[[BaseException, str, int], Union[Recovery, Awaitable[Recovery]]]


class ErrorHandler:
    """Maps a failing stage and its error to a recovery action.

    Also keeps running totals of handled errors by kind and by stage.
    """

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self._logger = logger or LOGGER
        self._strategies: dict[str, RecoveryStrategy] = {}
        self._kind_handlers: dict[ErrorKind, KindHandler] = {
            ErrorKind.STAGE: self._handle_stage_error,
            ErrorKind.DATABASE: self._handle_database_error,
            ErrorKind.VALIDATION: self._handle_validation_error,
            ErrorKind.UNKNOWN: self._handle_unknown_error,
        }
        self._class_handlers: dict[type, KindHandler] = {}
        self._stats = _empty_stats()

    def register_recovery_strategy(
        self,
        stage_name: str,
        strategy: Union[RecoveryAction, str],
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        backoff_ms: int = DEFAULT_BACKOFF_MS,
    ) -> "ErrorHandler":
        """Attach a strategy to a stage name; replaces any earlier one."""

        self._strategies[stage_name] = RecoveryStrategy(
            action=RecoveryAction(strategy),
            max_attempts=max_attempts,
            backoff_ms=backoff_ms,
        )
        self._logger.debug("Recovery strategy registered for %s: %s", stage_name, strategy)
        return self

    def register_error_handler(
        self, kind: Union[ErrorKind, type], handler: KindHandler
    ) -> "ErrorHandler":
        """Override the handler for an error kind, or add one for an exception class.

        Exception-class handlers match subclasses and take precedence over the
        kind table.
        """

        if not callable(handler):
            raise TypeError("Error handler must be callable")
        if isinstance(kind, ErrorKind):
            self._kind_handlers[kind] = handler
        elif isinstance(kind, type) and issubclass(kind, BaseException):
            self._class_handlers[kind] = handler
        else:
            raise TypeError(f"Cannot register error handler for {kind!r}")
        self._logger.debug("Error handler registered: %s", getattr(kind, "value", kind))
        return self

    def strategy_for(self, stage_name: str) -> Optional[RecoveryStrategy]:
        return self._strategies.get(stage_name)

    def retry_policy(self, stage_name: str) -> tuple[int, int]:
        """Return ``(max_attempts, backoff_ms)`` for a stage."""

        strategy = self._strategies.get(stage_name)
        if strategy is None:
            return DEFAULT_MAX_ATTEMPTS, DEFAULT_BACKOFF_MS
        return strategy.max_attempts, strategy.backoff_ms

    async def handle(self, error: BaseException, stage_name: str, attempt: int = 1) -> Recovery:
        """Resolve a stage failure into a Recovery decision."""

        self._update_stats(error, stage_name)

        if stage_name in self._strategies:
            return self._apply_strategy(stage_name, attempt)

        handler = self._lookup_handler(error)
        try:
            outcome = handler(error, stage_name, attempt)
            if inspect.isawaitable(outcome):
                outcome = await outcome
        except Exception:
            self._logger.exception("Error handler for %s failed", type(error).__name__)
            raise
        return outcome

    def _lookup_handler(self, error: BaseException) -> KindHandler:
        for cls in type(error).__mro__:
            handler = self._class_handlers.get(cls)
            if handler is not None:
                return handler
        return self._kind_handlers[error_kind(error)]

    def _apply_strategy(self, stage_name: str, attempt: int) -> Recovery:
        strategy = self._strategies[stage_name]
        if strategy.action is RecoveryAction.STOP:
            self._logger.info("Stage error in %s, stopping pipeline", stage_name)
            return Recovery(RecoveryAction.STOP, "stage_error")
        if strategy.action is RecoveryAction.SKIP:
            self._logger.warning("Stage error in %s, skipping stage", stage_name)
            return Recovery(RecoveryAction.SKIP, "stage_error")
        if strategy.action is RecoveryAction.RETRY:
            self._logger.info(
                "Stage error in %s, retry requested (%s/%s)",
                stage_name,
                attempt,
                strategy.max_attempts,
            )
            return Recovery(RecoveryAction.RETRY, "stage_error")
        self._logger.warning("Stage error in %s, using fallback", stage_name)
        return Recovery(RecoveryAction.FALLBACK, "stage_error", fallback_value=None)

    def _handle_stage_error(self, error: BaseException, stage_name: str, attempt: int) -> Recovery:
        if stage_name in self._strategies:
            return self._apply_strategy(stage_name, attempt)
        self._logger.warning("No recovery strategy for stage: %s", stage_name)
        return Recovery(RecoveryAction.STOP, "no_strategy")

    def _handle_database_error(self, error: BaseException, stage_name: str, attempt: int) -> Recovery:
        self._logger.error("Database error in %s: %s", stage_name, error)
        code = getattr(error, "code", None)
        if code == "ECONNREFUSED":
            return Recovery(RecoveryAction.STOP, "db_connection_failed")
        if code == "QUERY_CANCELLED":
            return Recovery(RecoveryAction.SKIP, "db_timeout")
        return Recovery(RecoveryAction.SKIP, "db_error")

    def _handle_validation_error(self, error: BaseException, stage_name: str, attempt: int) -> Recovery:
        self._logger.warning("Validation error in %s: %s", stage_name, error)
        return Recovery(RecoveryAction.SKIP, "validation_failed")

    def _handle_unknown_error(self, error: BaseException, stage_name: str, attempt: int) -> Recovery:
        self._logger.error("Unhandled error in %s: %s", stage_name, error)
        return Recovery(RecoveryAction.STOP, "unknown_error")

    def _update_stats(self, error: BaseException, stage_name: str) -> None:
        kind = error_kind(error).value
        self._stats["total"] += 1
        self._stats["by_kind"][kind] = self._stats["by_kind"].get(kind, 0) + 1
        self._stats["by_stage"][stage_name] = self._stats["by_stage"].get(stage_name, 0) + 1

    def get_stats(self) -> dict[str, Any]:
        return {
            "total": self._stats["total"],
            "by_kind": dict(self._stats["by_kind"]),
            "by_stage": dict(self._stats["by_stage"]),
        }

    def reset_stats(self) -> None:
        self._stats = _empty_stats()


def _empty_stats() -> dict[str, Any]:
    return {"total": 0, "by_kind": {}, "by_stage": {}}
