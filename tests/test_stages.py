from __future__ import annotations

import asyncio

from telepipe.core.actions import ActionHandler
from telepipe.core.models import ActionDeclaration, Event, EventKind, ProcessingContext, Stop
from telepipe.core.pipeline import Pipeline
from telepipe.core.stages import action_dispatch_stage, allowed_chats_stage, require_text_stage


def _check(stage, event: Event):
    return asyncio.run(stage.func(event, ProcessingContext()))


def test_allowed_chats_stage() -> None:
    stage = allowed_chats_stage([-100, "42"])

    assert _check(stage, Event(id=1, chat_id=42)) is None
    assert _check(stage, Event(id=1, chat_id=7)) == Stop(reason="chat_not_allowed", metadata={"chat_id": 7})


def test_require_text_stage() -> None:
    stage = require_text_stage()

    assert stage.name == "require_text"
    assert _check(stage, Event(id=1, chat_id=1, text="hi")) is None
    assert _check(stage, Event(id=1, chat_id=1, text="   ")) == Stop(reason="empty_text")
    assert _check(stage, Event(id=1, chat_id=1, kind=EventKind.CALLBACK_QUERY)) is None
    assert _check(stage, Event(id=1, chat_id=1, kind=EventKind.NEW_CHAT_MEMBERS)) is None


def test_action_dispatch_stage_runs_actions_mid_pipeline() -> None:
    seen = []
    action_handler = ActionHandler().register("note", lambda data, context: seen.append(data["n"]))

    async def declare(event, context):
        return ActionDeclaration("note", {"n": 1})

    async def after(event, context):
        seen.append("after")

    pipeline = (
        Pipeline()
        .use(declare, name="declare")
        .use(action_dispatch_stage(action_handler))
        .use(after, name="after")
    )
    asyncio.run(pipeline.process(Event(id=1, chat_id=1), ProcessingContext()))

    assert seen == [1, "after"]
