from __future__ import annotations

import asyncio
from pathlib import Path

from telepipe.adapters.cached_storage import CachedStorage
from telepipe.adapters.sqlite_storage import SQLiteStorage
from telepipe.core.bot import BotEngine
from telepipe.core.config import build_stage_configs
from telepipe.core.errors import ErrorHandler
from telepipe.core.hooks import HookManager
from telepipe.core.models import Event, EventKind, Sender
from telepipe.loader import build_action_handler, build_pipeline

SCHEMA_PATH = Path(__file__).resolve().parents[1] / "examples" / "schema.sql"

STAGES = [
    {"name": "require_text", "target": "telepipe.core.stages:require_text_stage", "factory": True},
    {"name": "banned_words", "target": "examples.moderation:banned_words"},
    {"name": "track_member", "target": "examples.moderation:track_member"},
    {"name": "welcome", "target": "examples.moderation:welcome"},
]


class FakeTransport:
    name = "fake"

    def __init__(self) -> None:
        self.sent: list = []
        self.deleted: list = []

    async def send_message(self, chat_id, text, **options):
        self.sent.append((chat_id, text))

    async def delete_message(self, chat_id, message_id):
        self.deleted.append((chat_id, message_id))


def _engine(tmp_path) -> "tuple[BotEngine, FakeTransport, CachedStorage]":
    storage = CachedStorage(SQLiteStorage(str(tmp_path / "bot.db"), schema=SCHEMA_PATH.read_text(encoding="utf-8")))
    storage.connect()
    transport = FakeTransport()
    engine = BotEngine(
        transport,
        pipeline=build_pipeline(build_stage_configs(STAGES), ErrorHandler(), HookManager()),
        storage=storage,
        action_handler=build_action_handler({"notify_admin": "examples.moderation:notify_admin"}),
        config={"admin_chat_id": 1, "banned_words": ["casino"], "welcome_text": "Hi!"},
    )
    return engine, transport, storage


def _message(message_id: int, text: str, kind: EventKind = EventKind.MESSAGE) -> Event:
    return Event(id=message_id, chat_id=-100, kind=kind, text=text, sender=Sender(id=7, username="ann"))


def test_members_are_counted(tmp_path) -> None:
    engine, transport, storage = _engine(tmp_path)

    asyncio.run(engine.handle_event(_message(1, "hello")))
    asyncio.run(engine.handle_event(_message(2, "again")))

    assert storage.find_by_id("members", 7) == {"id": 7, "chat_id": -100, "username": "ann", "messages": 2}
    assert transport.sent == []


def test_banned_words_delete_and_notify(tmp_path) -> None:
    engine, transport, _ = _engine(tmp_path)

    result = asyncio.run(engine.handle_event(_message(3, "Best CASINO deals")))

    assert transport.deleted == [(-100, 3)]
    assert transport.sent == [(1, "Alert: banned words from 7: casino")]
    assert [record.action for record in result.actions] == ["notify_admin"]


def test_empty_messages_stop_early(tmp_path) -> None:
    engine, _, storage = _engine(tmp_path)

    result = asyncio.run(engine.handle_event(_message(4, "")))

    assert result.metadata["reason"] == "empty_text"
    assert storage.find_all("members") == []


def test_new_members_are_welcomed(tmp_path) -> None:
    engine, transport, _ = _engine(tmp_path)

    asyncio.run(engine.handle_event(_message(5, "", kind=EventKind.NEW_CHAT_MEMBERS)))

    assert transport.sent == [(-100, "Hi!")]
