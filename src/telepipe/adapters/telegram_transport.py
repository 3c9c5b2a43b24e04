"""Telethon transport adapter.

Works with either a bot token or an authorized user session. Incoming
Telethon updates are normalized through ``telegram_mapper`` and forwarded to
the handlers registered with ``on``.
"""

from __future__ import annotations

import logging
import random
from contextlib import contextmanager
from typing import Any, Iterator, Mapping, Optional, Sequence

from telethon import TelegramClient, events, functions
from telethon.tl import types

from telepipe.adapters.telegram_mapper import (
    chat_from_entity,
    event_from_callback,
    event_from_join_request,
    event_from_message,
)
from telepipe.core.errors import TransportError
from telepipe.core.models import Event
from telepipe.core.ports import EventHandler

LOGGER = logging.getLogger(__name__)


@contextmanager
def _translate(operation: str) -> Iterator[None]:
    try:
        yield
    except TransportError:
        raise
    except Exception as exc:
        raise TransportError(operation, str(exc)) from exc


class TelegramTransport:
    """TransportPort implementation backed by a Telethon client."""

    def __init__(
        self,
        client: TelegramClient,
        bot_token: Optional[str] = None,
        name: str = "telegram",
        parse_mode: str = "html",
    ) -> None:
        self.name = name
        self._client = client
        self._bot_token = bot_token
        self._parse_mode = parse_mode
        self._handlers: dict[str, EventHandler] = {}
        self._initialized = False

    @property
    def client(self) -> TelegramClient:
        return self._client

    def on(self, event_name: str, handler: EventHandler) -> None:
        self._handlers[event_name] = handler

    async def initialize(self) -> None:
        """Subscribe to the Telethon updates we normalize."""

        if self._initialized:
            return
        self._client.add_event_handler(self._on_new_message, events.NewMessage(incoming=True))
        self._client.add_event_handler(self._on_edited_message, events.MessageEdited(incoming=True))
        self._client.add_event_handler(self._on_chat_action, events.ChatAction())
        self._client.add_event_handler(self._on_callback_query, events.CallbackQuery())
        self._client.add_event_handler(self._on_raw_update, events.Raw(types.UpdateBotChatInviteRequester))
        self._initialized = True

    async def start(self) -> None:
        with _translate("start"):
            if self._bot_token:
                await self._client.start(bot_token=self._bot_token)
                return
            if not self._client.is_connected():
                await self._client.connect()
            if not await self._client.is_user_authorized():
                raise TransportError("start", "session is not authorized, run `telepipe login` first")

    async def shutdown(self) -> None:
        try:
            await self._client.disconnect()
        except Exception:
            LOGGER.exception("Error while disconnecting Telegram client")

    async def _emit(self, event_name: str, event: Event) -> None:
        handler = self._handlers.get(event_name)
        if handler is None:
            return
        event.source = self.name
        try:
            await handler(event)
        except Exception:
            LOGGER.exception("Error while handling %s event %s", event_name, event.id)

    async def _on_new_message(self, update: events.NewMessage.Event) -> None:
        await self._emit("message", event_from_message(update.message))

    async def _on_edited_message(self, update: events.MessageEdited.Event) -> None:
        await self._emit("message", event_from_message(update.message, edited=True))

    async def _on_chat_action(self, update: events.ChatAction.Event) -> None:
        if not (update.user_joined or update.user_added or update.user_left or update.user_kicked):
            return
        if update.action_message is None:
            return
        await self._emit("message", event_from_message(update.action_message))

    async def _on_callback_query(self, update: events.CallbackQuery.Event) -> None:
        await self._emit("callback_query", await event_from_callback(update))

    async def _on_raw_update(self, update: types.UpdateBotChatInviteRequester) -> None:
        await self._emit("chat_join_request", event_from_join_request(update))

    async def send_message(self, chat_id: int, text: str, **options: Any) -> Any:
        options.setdefault("parse_mode", self._parse_mode)
        options.setdefault("link_preview", False)
        with _translate("send_message"):
            return await self._client.send_message(chat_id, text, **options)

    async def delete_message(self, chat_id: int, message_id: int) -> None:
        with _translate("delete_message"):
            await self._client.delete_messages(chat_id, [message_id])

    async def edit_message(self, chat_id: int, message_id: int, text: str, **options: Any) -> Any:
        options.setdefault("parse_mode", self._parse_mode)
        options.setdefault("link_preview", False)
        with _translate("edit_message"):
            return await self._client.edit_message(chat_id, message_id, text, **options)

    async def ban_member(self, chat_id: int, user_id: int) -> None:
        with _translate("ban_member"):
            await self._client.edit_permissions(chat_id, user_id, view_messages=False)

    async def unban_member(self, chat_id: int, user_id: int) -> None:
        # Calling edit_permissions with no overrides restores default rights.
        with _translate("unban_member"):
            await self._client.edit_permissions(chat_id, user_id)

    async def restrict_member(self, chat_id: int, user_id: int, permissions: Mapping[str, bool]) -> None:
        with _translate("restrict_member"):
            await self._client.edit_permissions(chat_id, user_id, **dict(permissions))

    async def approve_join_request(self, chat_id: int, user_id: int) -> None:
        await self._hide_join_request("approve_join_request", chat_id, user_id, approved=True)

    async def decline_join_request(self, chat_id: int, user_id: int) -> None:
        await self._hide_join_request("decline_join_request", chat_id, user_id, approved=False)

    async def _hide_join_request(self, operation: str, chat_id: int, user_id: int, approved: bool) -> None:
        with _translate(operation):
            peer = await self._client.get_input_entity(chat_id)
            user = await self._client.get_input_entity(user_id)
            await self._client(
                functions.messages.HideChatJoinRequestRequest(peer=peer, user_id=user, approved=approved)
            )

    async def send_poll(self, chat_id: int, question: str, options: Sequence[str], **extra: Any) -> Any:
        answers = [
            types.PollAnswer(text=types.TextWithEntities(text=option, entities=[]), option=bytes([index]))
            for index, option in enumerate(options)
        ]
        poll = types.Poll(
            id=random.getrandbits(62),
            question=types.TextWithEntities(text=question, entities=[]),
            answers=answers,
            multiple_choice=bool(extra.pop("multiple_choice", False)),
            quiz=bool(extra.pop("quiz", False)),
            public_voters=bool(extra.pop("public_voters", False)),
        )
        with _translate("send_poll"):
            return await self._client.send_message(chat_id, file=types.InputMediaPoll(poll=poll), **extra)

    async def get_chat(self, chat_id: int) -> dict[str, Any]:
        with _translate("get_chat"):
            entity = await self._client.get_entity(chat_id)
        chat = chat_from_entity(entity, chat_id)
        return {
            "id": chat.id,
            "title": chat.title,
            "type": chat.type,
            "username": chat.username,
            "raw": entity,
        }
