"""Composite transport that fans in events from several adapters.

All adapters feed the same pipeline. Outgoing calls go to the first adapter
that supports the operation unless a specific adapter is named.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Iterable, Mapping, Optional, Sequence

from telepipe.core.errors import TransportError
from telepipe.core.models import Event, EventKind
from telepipe.core.ports import EventHandler

LOGGER = logging.getLogger(__name__)

_KINDS_BY_NAME = {kind.value: kind for kind in EventKind if kind is not EventKind.MESSAGE}


class MultiTransport:
    """TransportPort implementation that wraps other transports."""

    name = "multi"

    def __init__(self, adapters: Iterable[Any]) -> None:
        self._adapters = list(adapters)

    @property
    def adapters(self) -> tuple[Any, ...]:
        return tuple(self._adapters)

    def get_adapter(self, name: str) -> Optional[Any]:
        for adapter in self._adapters:
            if adapter.name == name:
                return adapter
        return None

    def _first_with(self, method: str) -> Any:
        for adapter in self._adapters:
            if callable(getattr(adapter, method, None)):
                return adapter
        raise TransportError(method, f"no adapter with {method} available")

    async def initialize(self) -> None:
        try:
            await asyncio.gather(*(adapter.initialize() for adapter in self._adapters))
        except Exception as exc:
            raise TransportError("initialize", str(exc)) from exc

    async def start(self) -> None:
        for adapter in self._adapters:
            start = getattr(adapter, "start", None)
            if callable(start):
                await start()

    async def shutdown(self) -> None:
        outcomes = await asyncio.gather(
            *(adapter.shutdown() for adapter in self._adapters), return_exceptions=True
        )
        for adapter, outcome in zip(self._adapters, outcomes):
            if isinstance(outcome, Exception):
                LOGGER.error("Shutdown of %s failed: %s", adapter.name, outcome)

    def on(self, event_name: str, handler: EventHandler) -> None:
        """Register ``handler`` with every adapter, tagging events by source."""

        for adapter in self._adapters:
            adapter.on(event_name, _tagging_handler(adapter.name, event_name, handler))

    async def send_message(self, chat_id: int, text: str, **options: Any) -> Any:
        if not self._adapters:
            raise TransportError("send_message", "no adapters configured")
        return await self._first_with("send_message").send_message(chat_id, text, **options)

    async def send_message_via(self, adapter_name: str, chat_id: int, text: str, **options: Any) -> Any:
        adapter = self.get_adapter(adapter_name)
        if adapter is None:
            raise TransportError("send_message_via", f"adapter '{adapter_name}' not found")
        return await adapter.send_message(chat_id, text, **options)

    async def delete_message(self, chat_id: int, message_id: int) -> None:
        await self._first_with("delete_message").delete_message(chat_id, message_id)

    async def edit_message(self, chat_id: int, message_id: int, text: str, **options: Any) -> Any:
        return await self._first_with("edit_message").edit_message(chat_id, message_id, text, **options)

    async def ban_member(self, chat_id: int, user_id: int) -> None:
        await self._first_with("ban_member").ban_member(chat_id, user_id)

    async def unban_member(self, chat_id: int, user_id: int) -> None:
        await self._first_with("unban_member").unban_member(chat_id, user_id)

    async def restrict_member(self, chat_id: int, user_id: int, permissions: Mapping[str, bool]) -> None:
        await self._first_with("restrict_member").restrict_member(chat_id, user_id, permissions)

    async def approve_join_request(self, chat_id: int, user_id: int) -> None:
        await self._first_with("approve_join_request").approve_join_request(chat_id, user_id)

    async def decline_join_request(self, chat_id: int, user_id: int) -> None:
        await self._first_with("decline_join_request").decline_join_request(chat_id, user_id)

    async def send_poll(self, chat_id: int, question: str, options: Sequence[str], **extra: Any) -> Any:
        return await self._first_with("send_poll").send_poll(chat_id, question, options, **extra)

    async def get_chat(self, chat_id: int) -> dict[str, Any]:
        return await self._first_with("get_chat").get_chat(chat_id)


def _tagging_handler(source: str, event_name: str, handler: EventHandler) -> EventHandler:
    async def tagged(event: Event) -> None:
        event.source = source
        if event_name in _KINDS_BY_NAME and event.kind is EventKind.MESSAGE:
            event.kind = _KINDS_BY_NAME[event_name]
        await handler(event)

    return tagged
