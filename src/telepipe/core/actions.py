"""Deferred action dispatch.

Stages declare side effects instead of performing them. The ActionHandler
centralizes execution of those declarations against the run's collaborators.

Example::

    # In a stage
    return ActionDeclaration("notify_admin", {"user_id": 123, "reason": "spam"})

    # Registered once at startup
    async def notify_admin(data, context):
        await context.transport.send_message(ADMIN_CHAT_ID, f"Alert: {data['reason']}")

    action_handler.register("notify_admin", notify_admin)
"""

from __future__ import annotations

import inspect
import logging
from typing import Any, Awaitable, Callable, Iterable, Mapping, Optional, Union

from telepipe.core.models import ActionRecord, Event, ProcessingContext

LOGGER = logging.getLogger(__name__)

ActionFunc = Callable[[dict[str, Any], ProcessingContext], Union[Any, Awaitable[Any]]]


class ActionHandler:
    """Named side-effect handler registry."""

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self._logger = logger or LOGGER
        self._handlers: dict[str, ActionFunc] = {}
        self._stats = _empty_stats()

    def register(self, action_name: str, handler: ActionFunc) -> "ActionHandler":
        if not callable(handler):
            raise TypeError(f'Handler for action "{action_name}" must be callable')
        self._handlers[action_name] = handler
        self._logger.debug("Action handler registered: %s", action_name)
        return self

    async def handle(
        self,
        action_name: Optional[str],
        data: Optional[Mapping[str, Any]],
        context: ProcessingContext,
    ) -> bool:
        """Run the handler for one action.

        Returns False when nothing is registered for ``action_name``. A
        failing handler is counted and re-raised to the caller.
        """

        if not action_name:
            return False

        handler = self._handlers.get(action_name)
        if handler is None:
            self._logger.warning("No handler registered for action: %s", action_name)
            return False

        try:
            outcome = handler(dict(data or {}), context)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception:
            self._stats["failed"] += 1
            self._logger.exception('Action handler failed for "%s"', action_name)
            raise

        self._stats["total"] += 1
        self._stats["by_action"][action_name] = self._stats["by_action"].get(action_name, 0) + 1
        return True

    async def handle_all(
        self,
        records: Optional[Iterable[Union[ActionRecord, Mapping[str, Any]]]],
        context: ProcessingContext,
    ) -> None:
        """Run every record in order, continuing past individual failures."""

        if not isinstance(records, Iterable) or isinstance(records, (str, bytes, Mapping)):
            return

        for record in list(records):
            action_name, data = _unpack(record)
            try:
                await self.handle(action_name, data, context)
            except Exception as exc:
                self._logger.error('Failed to handle action "%s": %s', action_name, exc)

    def get_stats(self) -> dict[str, Any]:
        return {
            "total": self._stats["total"],
            "by_action": dict(self._stats["by_action"]),
            "failed": self._stats["failed"],
        }

    def get_registered(self) -> list[str]:
        return list(self._handlers)

    def clear(self) -> None:
        self._handlers.clear()
        self._logger.debug("All action handlers cleared")

    def reset_stats(self) -> None:
        self._stats = _empty_stats()


def _empty_stats() -> dict[str, Any]:
    return {"total": 0, "by_action": {}, "failed": 0}


def _unpack(record: Union[ActionRecord, Mapping[str, Any]]) -> tuple[Optional[str], Mapping[str, Any]]:
    if isinstance(record, ActionRecord):
        return record.action, record.data
    if isinstance(record, Mapping):
        return record.get("action"), record.get("data") or {}
    return None, {}


def create_action(action: str, data: Optional[Mapping[str, Any]] = None) -> ActionRecord:
    """Build a standalone action record (not tied to a stage)."""

    return ActionRecord(action=action, data=dict(data or {}))


def add_action(event: Event, action: str, data: Optional[Mapping[str, Any]] = None) -> ActionRecord:
    """Append an action record directly to an event."""

    record = create_action(action, data)
    event.actions.append(record)
    return record


def get_actions(event: Event) -> list[ActionRecord]:
    return event.actions


def clear_actions(event: Event) -> None:
    event.actions.clear()
