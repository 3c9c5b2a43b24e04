"""Core domain models.

These dataclasses are shared across the core and adapters to avoid tight
coupling to any integration-specific types.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Mapping, Optional, Union


class EventKind(str, Enum):
    """What kind of occurrence an Event represents."""

    MESSAGE = "message"
    EDITED_MESSAGE = "edited_message"
    CALLBACK_QUERY = "callback_query"
    CHAT_JOIN_REQUEST = "chat_join_request"
    NEW_CHAT_MEMBERS = "new_chat_members"
    LEFT_CHAT_MEMBER = "left_chat_member"


@dataclass(frozen=True)
class Chat:
    """Minimal chat description attached to an event."""

    id: int
    title: Optional[str] = None
    type: Optional[str] = None
    username: Optional[str] = None


@dataclass(frozen=True)
class Sender:
    """The user behind an event, when one is known."""

    id: int
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    username: Optional[str] = None
    is_bot: bool = False


@dataclass(frozen=True)
class ActionRecord:
    """A deferred side effect declared by a stage during a run."""

    action: str
    data: dict[str, Any] = field(default_factory=dict)
    stage: Optional[str] = None
    timestamp: float = field(default_factory=time.time)


@dataclass
class Event:
    """A normalized inbound occurrence submitted to the pipeline.

    Built by a transport mapper, mutated only by the pipeline and its stages.
    ``actions`` is append-only for the duration of a run.
    """

    id: Any
    chat_id: Optional[int]
    kind: EventKind = EventKind.MESSAGE
    text: str = ""
    sender: Optional[Sender] = None
    chat: Optional[Chat] = None
    data: Optional[str] = None
    date: Optional[datetime] = None
    raw: Any = None
    source: Optional[str] = None
    actions: list[ActionRecord] = field(default_factory=list)


@dataclass
class ProcessingContext:
    """Per-run bundle of collaborator handles plus scratch state.

    A context belongs to exactly one run and is never reused across events.
    """

    transport: Any = None
    storage: Any = None
    logger: logging.Logger = field(default_factory=lambda: logging.getLogger("telepipe.run"))
    config: Mapping[str, Any] = field(default_factory=dict)
    state: dict[str, Any] = field(default_factory=dict)
    source_transport: Any = None

    def __post_init__(self) -> None:
        if not isinstance(self.config, MappingProxyType):
            self.config = MappingProxyType(dict(self.config))


@dataclass(frozen=True)
class Stop:
    """Signal: halt the run after the current stage."""

    reason: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ActionDeclaration:
    """Signal: queue a deferred side effect and keep going."""

    name: str
    data: dict[str, Any] = field(default_factory=dict)


Signal = Union[Stop, ActionDeclaration, None]
StageFunc = Callable[[Event, ProcessingContext], Awaitable[Signal]]


@dataclass(frozen=True)
class Stage:
    """A named unit of processing logic.

    The name is the stage identity: it keys recovery strategies, hook
    payloads, and error statistics.
    """

    name: str
    func: StageFunc
    timeout: Optional[float] = None

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("Stage name is required")
        if not callable(self.func):
            raise TypeError(f"Stage {self.name!r} must wrap a callable")


@dataclass
class RunResult:
    """Terminal outcome of processing one event through the pipeline."""

    stopped: bool = False
    actions: list[ActionRecord] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)
    error: Optional[BaseException] = None
    error_stage: Optional[str] = None
