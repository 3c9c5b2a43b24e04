"""Ports (interfaces) used by the core engine.

Ports define the minimal contracts for transport, storage, and cache adapters
so that the core can be reused with different backends.
"""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Mapping, Optional, Protocol, Sequence

from telepipe.core.models import Event

EventHandler = Callable[[Event], Awaitable[None]]


class TransportPort(Protocol):
    """Chat platform operations exposed to stages and action handlers."""

    name: str

    async def initialize(self) -> None:
        ...

    async def start(self) -> None:
        ...

    async def shutdown(self) -> None:
        ...

    def on(self, event_name: str, handler: EventHandler) -> None:
        ...

    async def send_message(self, chat_id: int, text: str, **options: Any) -> Any:
        ...

    async def delete_message(self, chat_id: int, message_id: int) -> None:
        ...

    async def edit_message(self, chat_id: int, message_id: int, text: str, **options: Any) -> Any:
        ...

    async def ban_member(self, chat_id: int, user_id: int) -> None:
        ...

    async def unban_member(self, chat_id: int, user_id: int) -> None:
        ...

    async def restrict_member(self, chat_id: int, user_id: int, permissions: Mapping[str, bool]) -> None:
        ...

    async def approve_join_request(self, chat_id: int, user_id: int) -> None:
        ...

    async def decline_join_request(self, chat_id: int, user_id: int) -> None:
        ...

    async def send_poll(self, chat_id: int, question: str, options: Sequence[str], **extra: Any) -> Any:
        ...

    async def get_chat(self, chat_id: int) -> dict[str, Any]:
        ...


class StoragePort(Protocol):
    """Record storage operations available to stages."""

    def query(self, sql: str, params: Sequence[Any] = ()) -> list[dict[str, Any]]:
        ...

    def query_one(self, sql: str, params: Sequence[Any] = ()) -> Optional[dict[str, Any]]:
        ...

    def query_all(self, sql: str, params: Sequence[Any] = ()) -> list[dict[str, Any]]:
        ...

    def insert(self, table: str, data: Mapping[str, Any]) -> Optional[dict[str, Any]]:
        ...

    def update(
        self, table: str, data: Mapping[str, Any], where: Mapping[str, Any]
    ) -> Optional[dict[str, Any]]:
        ...

    def delete(self, table: str, where: Mapping[str, Any]) -> int:
        ...

    def find_by_id(self, table: str, record_id: Any) -> Optional[dict[str, Any]]:
        ...

    def find_all(self, table: str) -> list[dict[str, Any]]:
        ...

    def transaction(self, callback: Callable[[Any], Any]) -> Any:
        ...


class CachePort(Protocol):
    """Key/value cache with per-entry TTL."""

    def get(self, key: str) -> Any:
        ...

    def set(self, key: str, value: Any, ttl: float) -> None:
        ...

    def delete(self, key: str) -> None:
        ...

    def clear(self) -> None:
        ...
