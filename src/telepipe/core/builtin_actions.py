"""Action handlers that forward declared actions to the transport.

Each handler reads its arguments from the action data. ``chat_id`` falls back
to the chat of the event being processed (seeded by BotEngine in
``context.state``).
"""

from __future__ import annotations

from typing import Any

from telepipe.core.actions import ActionHandler
from telepipe.core.errors import ValidationError
from telepipe.core.models import ProcessingContext


def _require(data: dict[str, Any], key: str) -> Any:
    value = data.get(key)
    if value is None:
        raise ValidationError(f"Action data is missing '{key}'")
    return value


def _chat_id(data: dict[str, Any], context: ProcessingContext) -> int:
    chat_id = data.get("chat_id", context.state.get("chat_id"))
    if chat_id is None:
        raise ValidationError("Action data is missing 'chat_id'")
    return chat_id


def _transport(context: ProcessingContext) -> Any:
    if context.transport is None:
        raise ValidationError("No transport available in processing context")
    return context.transport


async def send_message(data: dict[str, Any], context: ProcessingContext) -> None:
    options = dict(data.get("options") or {})
    await _transport(context).send_message(_chat_id(data, context), _require(data, "text"), **options)


async def reply(data: dict[str, Any], context: ProcessingContext) -> None:
    options = dict(data.get("options") or {})
    reply_to = data.get("reply_to", context.state.get("message_id"))
    if reply_to is not None:
        options.setdefault("reply_to", reply_to)
    await _transport(context).send_message(_chat_id(data, context), _require(data, "text"), **options)


async def delete_message(data: dict[str, Any], context: ProcessingContext) -> None:
    message_id = data.get("message_id", context.state.get("message_id"))
    if message_id is None:
        raise ValidationError("Action data is missing 'message_id'")
    await _transport(context).delete_message(_chat_id(data, context), message_id)


async def edit_message(data: dict[str, Any], context: ProcessingContext) -> None:
    options = dict(data.get("options") or {})
    await _transport(context).edit_message(
        _chat_id(data, context), _require(data, "message_id"), _require(data, "text"), **options
    )


async def ban_member(data: dict[str, Any], context: ProcessingContext) -> None:
    await _transport(context).ban_member(_chat_id(data, context), _require(data, "user_id"))


async def unban_member(data: dict[str, Any], context: ProcessingContext) -> None:
    await _transport(context).unban_member(_chat_id(data, context), _require(data, "user_id"))


async def restrict_member(data: dict[str, Any], context: ProcessingContext) -> None:
    await _transport(context).restrict_member(
        _chat_id(data, context), _require(data, "user_id"), dict(_require(data, "permissions"))
    )


async def approve_join_request(data: dict[str, Any], context: ProcessingContext) -> None:
    await _transport(context).approve_join_request(_chat_id(data, context), _require(data, "user_id"))


async def decline_join_request(data: dict[str, Any], context: ProcessingContext) -> None:
    await _transport(context).decline_join_request(_chat_id(data, context), _require(data, "user_id"))


async def send_poll(data: dict[str, Any], context: ProcessingContext) -> None:
    options = list(_require(data, "options"))
    if len(options) < 2:
        raise ValidationError("A poll needs at least two options")
    extra = dict(data.get("extra") or {})
    await _transport(context).send_poll(
        _chat_id(data, context), _require(data, "question"), options, **extra
    )


TRANSPORT_ACTIONS = {
    "send_message": send_message,
    "reply": reply,
    "delete_message": delete_message,
    "edit_message": edit_message,
    "ban_member": ban_member,
    "unban_member": unban_member,
    "restrict_member": restrict_member,
    "approve_join_request": approve_join_request,
    "decline_join_request": decline_join_request,
    "send_poll": send_poll,
}


def register_transport_actions(action_handler: ActionHandler) -> ActionHandler:
    """Register every transport-backed action on ``action_handler``."""

    for name, handler in TRANSPORT_ACTIONS.items():
        action_handler.register(name, handler)
    return action_handler
