"""Reusable stages.

Fast exits keep hot paths cheap: filter stages belong at the front of a
pipeline, the action dispatch stage at the end.
"""

from __future__ import annotations

from typing import Iterable

from telepipe.core.actions import ActionHandler
from telepipe.core.models import Event, EventKind, ProcessingContext, Signal, Stage, Stop

# Events that legitimately arrive without text.
_TEXTLESS_KINDS = {
    EventKind.CALLBACK_QUERY,
    EventKind.CHAT_JOIN_REQUEST,
    EventKind.NEW_CHAT_MEMBERS,
    EventKind.LEFT_CHAT_MEMBER,
}


def action_dispatch_stage(action_handler: ActionHandler, name: str = "dispatch_actions") -> Stage:
    """Dispatch the actions accumulated on the event so far, mid-run."""

    async def dispatch(event: Event, context: ProcessingContext) -> Signal:
        if not event.actions:
            return None
        await action_handler.handle_all(list(event.actions), context)
        return None

    return Stage(name=name, func=dispatch)


def allowed_chats_stage(chat_ids: Iterable[int], name: str = "allowed_chats") -> Stage:
    """Stop the run for events from chats outside the allow-list."""

    allowed = frozenset(int(chat_id) for chat_id in chat_ids)

    async def check(event: Event, context: ProcessingContext) -> Signal:
        if event.chat_id in allowed:
            return None
        return Stop(reason="chat_not_allowed", metadata={"chat_id": event.chat_id})

    return Stage(name=name, func=check)


def require_text_stage(name: str = "require_text") -> Stage:
    """Stop the run for media-only messages without a caption."""

    async def check(event: Event, context: ProcessingContext) -> Signal:
        if event.kind in _TEXTLESS_KINDS:
            return None
        if event.text and event.text.strip():
            return None
        return Stop(reason="empty_text")

    return Stage(name=name, func=check)
