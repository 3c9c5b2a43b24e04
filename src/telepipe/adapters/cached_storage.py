"""Read-through cache around any StoragePort.

Keys produced by ``find_by_id``/``find_all`` are tracked per table, so a
write to ``users`` only drops ``users`` keys. Raw SQL reads cannot be
attributed to a table and are dropped on every write. After a transaction
the affected tables are unknown and the whole cache is cleared.
"""

from __future__ import annotations

import json
import time
from typing import Any, Callable, Mapping, Optional, Sequence

from telepipe.core.ports import CachePort, StoragePort

_RAW_SQL_BUCKET = "__sql__"


class MemoryCache:
    """In-process TTL cache; expired entries are dropped on read and on every set."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._entries: dict[str, tuple[float, Any]] = {}

    def get(self, key: str) -> Any:
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if expires_at <= self._clock():
            del self._entries[key]
            return None
        return value

    def set(self, key: str, value: Any, ttl: float) -> None:
        now = self._clock()
        self.purge_expired(now)
        self._entries[key] = (now + ttl, value)

    def purge_expired(self, now: Optional[float] = None) -> None:
        now = self._clock() if now is None else now
        for key in [key for key, (expires_at, _) in self._entries.items() if expires_at <= now]:
            del self._entries[key]

    def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


def _params_key(params: Sequence[Any]) -> str:
    return json.dumps(list(params), default=str, sort_keys=True)


class CachedStorage:
    """StoragePort wrapper with TTL reads and table-scoped invalidation."""

    def __init__(self, storage: StoragePort, cache: Optional[CachePort] = None, ttl: float = 3600) -> None:
        self.name = f"cached:{getattr(storage, 'name', type(storage).__name__)}"
        self._storage = storage
        self._cache = cache if cache is not None else MemoryCache()
        self._ttl = ttl
        self._table_keys: dict[str, set[str]] = {}

    @property
    def storage(self) -> StoragePort:
        return self._storage

    def connect(self) -> None:
        connect = getattr(self._storage, "connect", None)
        if callable(connect):
            connect()

    def close(self) -> None:
        close = getattr(self._storage, "close", None)
        if callable(close):
            close()

    def _remember(self, bucket: str, key: str, value: Any) -> None:
        self._cache.set(key, value, self._ttl)
        # Forget keys whose entries have expired out of the cache.
        live = {tracked for tracked in self._table_keys.get(bucket, ()) if self._cache.get(tracked) is not None}
        live.add(key)
        self._table_keys[bucket] = live

    def tracked_keys(self, bucket: str) -> set[str]:
        return set(self._table_keys.get(bucket, ()))

    def _read(self, bucket: str, key: str, loader: Callable[[], Any]) -> Any:
        cached = self._cache.get(key)
        if cached is not None:
            return cached
        value = loader()
        if value is not None:
            self._remember(bucket, key, value)
        return value

    def query(self, sql: str, params: Sequence[Any] = ()) -> list[dict[str, Any]]:
        key = f"query:{sql}:{_params_key(params)}"
        return self._read(_RAW_SQL_BUCKET, key, lambda: self._storage.query(sql, params))

    def query_one(self, sql: str, params: Sequence[Any] = ()) -> Optional[dict[str, Any]]:
        key = f"one:{sql}:{_params_key(params)}"
        return self._read(_RAW_SQL_BUCKET, key, lambda: self._storage.query_one(sql, params))

    def query_all(self, sql: str, params: Sequence[Any] = ()) -> list[dict[str, Any]]:
        key = f"all:{sql}:{_params_key(params)}"
        return self._read(_RAW_SQL_BUCKET, key, lambda: self._storage.query_all(sql, params))

    def find_by_id(self, table: str, record_id: Any) -> Optional[dict[str, Any]]:
        key = f"{table}:id:{record_id}"
        return self._read(table, key, lambda: self._storage.find_by_id(table, record_id))

    def find_all(self, table: str) -> list[dict[str, Any]]:
        key = f"{table}:all"
        return self._read(table, key, lambda: self._storage.find_all(table))

    def insert(self, table: str, data: Mapping[str, Any]) -> Optional[dict[str, Any]]:
        result = self._storage.insert(table, data)
        self.invalidate_table(table)
        return result

    def update(
        self, table: str, data: Mapping[str, Any], where: Mapping[str, Any]
    ) -> Optional[dict[str, Any]]:
        result = self._storage.update(table, data, where)
        self.invalidate_table(table)
        return result

    def delete(self, table: str, where: Mapping[str, Any]) -> int:
        result = self._storage.delete(table, where)
        self.invalidate_table(table)
        return result

    def transaction(self, callback: Callable[[Any], Any]) -> Any:
        try:
            return self._storage.transaction(callback)
        finally:
            self.invalidate_all()

    def invalidate_table(self, table: str) -> None:
        """Drop the cached reads of ``table`` plus all raw SQL reads."""

        for bucket in (table, _RAW_SQL_BUCKET):
            for key in self._table_keys.pop(bucket, ()):
                self._cache.delete(key)

    def invalidate_all(self) -> None:
        self._cache.clear()
        self._table_keys.clear()

    def ping(self) -> bool:
        ping = getattr(self._storage, "ping", None)
        return bool(ping()) if callable(ping) else True
