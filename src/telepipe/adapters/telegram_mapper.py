"""Telegram-to-core event mapping adapter.

This keeps Telethon-specific details out of the core pipeline.
"""

from __future__ import annotations

from typing import Any, Optional

from telethon import utils
from telethon.tl import types

from telepipe.core.models import Chat, Event, EventKind, Sender

_JOIN_ACTIONS = (
    types.MessageActionChatAddUser,
    types.MessageActionChatJoinedByLink,
    types.MessageActionChatJoinedByRequest,
)
_LEAVE_ACTIONS = (types.MessageActionChatDeleteUser,)


def sender_from_entity(entity: Any) -> Optional[Sender]:
    """Build a Sender from a Telethon User (or anything user-shaped)."""

    if entity is None or getattr(entity, "id", None) is None:
        return None
    return Sender(
        id=entity.id,
        first_name=getattr(entity, "first_name", None),
        last_name=getattr(entity, "last_name", None),
        username=getattr(entity, "username", None),
        is_bot=bool(getattr(entity, "bot", False)),
    )


def chat_type(entity: Any) -> str:
    if isinstance(entity, types.User):
        return "private"
    if isinstance(entity, types.Channel):
        return "supergroup" if getattr(entity, "megagroup", False) else "channel"
    return "group"


def chat_from_entity(entity: Any, chat_id: Optional[int]) -> Optional[Chat]:
    """Build a Chat; falls back to a bare id when the entity is not cached."""

    if chat_id is None:
        return None
    if entity is None:
        return Chat(id=chat_id)

    title = getattr(entity, "title", None)
    if not title:
        names = [getattr(entity, "first_name", None), getattr(entity, "last_name", None)]
        title = " ".join(part for part in names if part) or None
    username = getattr(entity, "username", None)
    return Chat(
        id=chat_id,
        title=title or username,
        type=chat_type(entity),
        username=username,
    )


def kind_for_message(message: Any, edited: bool = False) -> EventKind:
    action = getattr(message, "action", None)
    if isinstance(action, _JOIN_ACTIONS):
        return EventKind.NEW_CHAT_MEMBERS
    if isinstance(action, _LEAVE_ACTIONS):
        return EventKind.LEFT_CHAT_MEMBER
    if edited:
        return EventKind.EDITED_MESSAGE
    return EventKind.MESSAGE


def event_from_message(message: Any, edited: bool = False) -> Event:
    """Build a core Event from a Telethon Message."""

    chat_id = getattr(message, "chat_id", None)
    return Event(
        id=message.id,
        chat_id=chat_id,
        kind=kind_for_message(message, edited=edited),
        text=getattr(message, "raw_text", None) or "",
        sender=sender_from_entity(getattr(message, "sender", None)),
        chat=chat_from_entity(getattr(message, "chat", None), chat_id),
        date=getattr(message, "date", None),
        raw=message,
    )


async def event_from_callback(query: Any) -> Event:
    """Build a core Event from a Telethon CallbackQuery event."""

    sender = await query.get_sender()
    chat = await query.get_chat()
    payload = query.data
    if isinstance(payload, bytes):
        payload = payload.decode("utf-8", errors="replace")
    return Event(
        id=query.id,
        chat_id=query.chat_id,
        kind=EventKind.CALLBACK_QUERY,
        sender=sender_from_entity(sender) or _bare_sender(getattr(query, "sender_id", None)),
        chat=chat_from_entity(chat, query.chat_id),
        data=payload,
        raw=query,
    )


def event_from_join_request(update: types.UpdateBotChatInviteRequester) -> Event:
    """Build a core Event from a raw join-request update."""

    chat_id = utils.get_peer_id(update.peer)
    return Event(
        id=f"join:{chat_id}:{update.user_id}",
        chat_id=chat_id,
        kind=EventKind.CHAT_JOIN_REQUEST,
        text=update.about or "",
        sender=Sender(id=update.user_id),
        chat=Chat(id=chat_id),
        date=update.date,
        raw=update,
    )


def _bare_sender(user_id: Optional[int]) -> Optional[Sender]:
    return Sender(id=user_id) if user_id is not None else None
