"""Lifecycle hooks for the pipeline.

Listeners are pure observers: they receive a payload dict and cannot change
the event, the context, or the outcome of a run.
"""

from __future__ import annotations

import inspect
import logging
from typing import Any, Callable, Optional

LOGGER = logging.getLogger(__name__)

BEFORE_PIPELINE = "before:pipeline"
AFTER_PIPELINE = "after:pipeline"
BEFORE_STAGE = "before:stage"
AFTER_STAGE = "after:stage"
ERROR_STAGE = "error:stage"

Listener = Callable[[dict[str, Any]], Any]


class HookManager:
    """Named-hook observer registry with supervised sequential dispatch."""

    def __init__(self) -> None:
        self._listeners: dict[str, list[Listener]] = {}

    def on(self, hook_name: str, listener: Listener) -> "HookManager":
        """Register a listener; several listeners per hook run in order."""

        if not callable(listener):
            raise TypeError(f"Listener for hook {hook_name!r} must be callable")
        self._listeners.setdefault(hook_name, []).append(listener)
        return self

    async def emit(self, hook_name: str, payload: Optional[dict[str, Any]] = None) -> None:
        """Invoke every listener for ``hook_name``.

        A listener that raises is logged and skipped; the remaining listeners
        still run and nothing propagates to the caller.
        """

        payload = payload if payload is not None else {}
        for listener in list(self._listeners.get(hook_name, ())):
            try:
                outcome = listener(payload)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception:
                LOGGER.exception("Error in hook listener for %s", hook_name)

    def get_status(self) -> dict[str, int]:
        """Return listener counts per hook name."""

        return {name: len(listeners) for name, listeners in self._listeners.items()}

    def clear(self) -> "HookManager":
        self._listeners.clear()
        return self
