from __future__ import annotations

import asyncio

import pytest

from telepipe.core.actions import ActionHandler
from telepipe.core.builtin_actions import TRANSPORT_ACTIONS, register_transport_actions
from telepipe.core.errors import ValidationError
from telepipe.core.models import ProcessingContext


class RecordingTransport:
    name = "recording"

    def __init__(self) -> None:
        self.calls: list = []

    def __getattr__(self, operation: str):
        async def record(*args, **kwargs):
            self.calls.append((operation, args, kwargs))

        return record


def _run(action: str, data: dict, state: "dict | None" = None) -> RecordingTransport:
    transport = RecordingTransport()
    context = ProcessingContext(transport=transport, state=state or {})
    action_handler = register_transport_actions(ActionHandler())
    asyncio.run(action_handler.handle(action, data, context))
    return transport


def test_register_transport_actions_registers_everything() -> None:
    action_handler = register_transport_actions(ActionHandler())
    assert sorted(action_handler.get_registered()) == sorted(TRANSPORT_ACTIONS)


def test_send_message_uses_event_chat_by_default() -> None:
    transport = _run("send_message", {"text": "hi", "options": {"silent": True}}, {"chat_id": -100})
    assert transport.calls == [("send_message", (-100, "hi"), {"silent": True})]


def test_reply_targets_current_message() -> None:
    transport = _run("reply", {"text": "pong"}, {"chat_id": 5, "message_id": 42})
    assert transport.calls == [("send_message", (5, "pong"), {"reply_to": 42})]


def test_delete_message_defaults_to_current_message() -> None:
    transport = _run("delete_message", {}, {"chat_id": 5, "message_id": 42})
    assert transport.calls == [("delete_message", (5, 42), {})]


def test_member_actions_forward_user_id() -> None:
    assert _run("ban_member", {"chat_id": 1, "user_id": 2}).calls == [("ban_member", (1, 2), {})]
    assert _run("unban_member", {"chat_id": 1, "user_id": 2}).calls == [("unban_member", (1, 2), {})]
    assert _run("approve_join_request", {"chat_id": 1, "user_id": 2}).calls == [
        ("approve_join_request", (1, 2), {})
    ]
    assert _run("restrict_member", {"chat_id": 1, "user_id": 2, "permissions": {"send_messages": False}}).calls == [
        ("restrict_member", (1, 2, {"send_messages": False}), {})
    ]


def test_send_poll_forwards_question_and_options() -> None:
    transport = _run("send_poll", {"chat_id": 1, "question": "Lunch?", "options": ["yes", "no"]})
    assert transport.calls == [("send_poll", (1, "Lunch?", ["yes", "no"]), {})]


@pytest.mark.parametrize(
    "action, data",
    [
        ("send_message", {"text": "no chat"}),
        ("send_message", {"chat_id": 1}),
        ("edit_message", {"chat_id": 1, "text": "x"}),
        ("ban_member", {"chat_id": 1}),
        ("send_poll", {"chat_id": 1, "question": "?", "options": ["only"]}),
    ],
)
def test_missing_fields_raise_validation_error(action, data) -> None:
    with pytest.raises(ValidationError):
        _run(action, data)


def test_missing_transport_raises_validation_error() -> None:
    action_handler = register_transport_actions(ActionHandler())
    context = ProcessingContext(state={"chat_id": 1})
    with pytest.raises(ValidationError):
        asyncio.run(action_handler.handle("send_message", {"text": "hi"}, context))
