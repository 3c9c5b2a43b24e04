"""Bot engine: connects a transport to a pipeline.

The engine owns lifecycle (storage connect, transport start/stop), builds a
fresh ProcessingContext per event, and hands the accumulated actions of each
run to the ActionHandler.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

from telepipe.core.actions import ActionHandler
from telepipe.core.models import Event, EventKind, ProcessingContext, RunResult
from telepipe.core.pipeline import Pipeline

LOGGER = logging.getLogger(__name__)

SUBSCRIBED_EVENTS = (
    EventKind.MESSAGE.value,
    EventKind.CALLBACK_QUERY.value,
    EventKind.CHAT_JOIN_REQUEST.value,
)


class BotEngine:
    """Orchestrates one transport, one pipeline, and optional collaborators.

    Set ``dispatch_actions=False`` when the pipeline already dispatches its
    actions through an action dispatch stage.
    """

    def __init__(
        self,
        transport: Any,
        pipeline: Optional[Pipeline] = None,
        storage: Any = None,
        action_handler: Optional[ActionHandler] = None,
        config: Optional[Mapping[str, Any]] = None,
        logger: Optional[logging.Logger] = None,
        dispatch_actions: bool = True,
    ) -> None:
        self.transport = transport
        self.pipeline = pipeline
        self.storage = storage
        self.action_handler = action_handler
        self.config = dict(config or {})
        self.logger = logger or LOGGER
        self.dispatch_actions = dispatch_actions
        self.is_running = False

    async def start(self) -> None:
        self.logger.info("Bot engine starting (transport=%s)", _name_of(self.transport))
        try:
            connect = getattr(self.storage, "connect", None)
            if callable(connect):
                connect()
            await self.transport.initialize()
            for event_name in SUBSCRIBED_EVENTS:
                self.transport.on(event_name, self.handle_event)
            await self.transport.start()
        except Exception:
            self.logger.exception("Bot engine startup failed")
            raise
        self.is_running = True
        self.logger.info("Bot engine started")

    async def stop(self) -> None:
        self.logger.info("Bot engine stopping")
        try:
            await self.transport.shutdown()
        finally:
            close = getattr(self.storage, "close", None)
            if callable(close):
                close()
            self.is_running = False
        self.logger.info("Bot engine stopped")

    def build_context(self, event: Event) -> ProcessingContext:
        """Create the per-run context for one event."""

        source_transport = None
        get_adapter = getattr(self.transport, "get_adapter", None)
        if event.source and callable(get_adapter):
            source_transport = get_adapter(event.source)

        state: dict[str, Any] = {"chat_id": event.chat_id}
        if event.kind in (EventKind.MESSAGE, EventKind.EDITED_MESSAGE):
            state["message_id"] = event.id

        return ProcessingContext(
            transport=self.transport,
            storage=self.storage,
            logger=self.logger,
            config=self.config,
            state=state,
            source_transport=source_transport,
        )

    async def handle_event(self, event: Event) -> Optional[RunResult]:
        """Run one event through the pipeline and dispatch its actions."""

        if self.pipeline is None:
            return None

        context = self.build_context(event)
        try:
            result = await self.pipeline.process(event, context)
            if self.dispatch_actions and self.action_handler is not None and result.actions:
                await self.action_handler.handle_all(result.actions, context)
        except Exception:
            self.logger.exception("Error while processing event %s", event.id)
            return None
        return result

    def status(self) -> dict[str, Any]:
        return {
            "running": self.is_running,
            "transport": _name_of(self.transport),
            "pipeline": self.pipeline.inspect() if self.pipeline is not None else None,
            "actions": self.action_handler.get_stats() if self.action_handler is not None else None,
        }


def _name_of(transport: Any) -> str:
    return getattr(transport, "name", type(transport).__name__)
