"""Example stages and actions for a small moderation bot.

Wired up by config.example.json; copy it to config.json to try it out.
"""

from __future__ import annotations

from typing import Any

from telepipe.core.models import ActionDeclaration, Event, EventKind, ProcessingContext, Signal


async def banned_words(event: Event, context: ProcessingContext) -> Signal:
    """Delete messages containing a banned word and tell the admin."""

    if event.kind is not EventKind.MESSAGE:
        return None
    lowered = event.text.lower()
    hits = [word for word in context.config.get("banned_words", []) if word.lower() in lowered]
    if not hits:
        return None

    context.logger.info("Banned words %s in chat %s", hits, event.chat_id)
    await context.transport.delete_message(event.chat_id, event.id)
    sender_id = event.sender.id if event.sender else None
    return ActionDeclaration("notify_admin", {"reason": f"banned words from {sender_id}: {', '.join(hits)}"})


async def track_member(event: Event, context: ProcessingContext) -> Signal:
    """Count messages per member; storage hiccups are retried by config."""

    if context.storage is None or event.sender is None or event.kind is not EventKind.MESSAGE:
        return None
    row = context.storage.find_by_id("members", event.sender.id)
    if row is None:
        context.storage.insert(
            "members",
            {"id": event.sender.id, "chat_id": event.chat_id, "username": event.sender.username, "messages": 1},
        )
        return None
    context.storage.update("members", {"messages": row["messages"] + 1}, {"id": event.sender.id})
    return None


async def welcome(event: Event, context: ProcessingContext) -> Signal:
    if event.kind is not EventKind.NEW_CHAT_MEMBERS:
        return None
    return ActionDeclaration("send_message", {"text": context.config.get("welcome_text", "Welcome!")})


async def notify_admin(data: dict[str, Any], context: ProcessingContext) -> None:
    admin_chat_id = context.config.get("admin_chat_id")
    if admin_chat_id is None:
        return
    await context.transport.send_message(admin_chat_id, f"Alert: {data.get('reason', 'unknown')}")
