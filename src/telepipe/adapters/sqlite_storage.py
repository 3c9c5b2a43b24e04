"""SQLite storage adapter.

Implements the core StoragePort using a simple SQLite database. Every call
opens its own short-lived connection; ``transaction`` hands one connection to
the callback and commits or rolls back around it.
"""

from __future__ import annotations

import re
import sqlite3
from contextlib import contextmanager
from typing import Any, Callable, Iterator, Mapping, Optional, Sequence

from telepipe.core.errors import DatabaseError, ValidationError

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def _identifier(name: str) -> str:
    if not isinstance(name, str) or not _IDENTIFIER.match(name):
        raise ValidationError(f"Invalid SQL identifier: {name!r}")
    return name


def _error_code(exc: sqlite3.Error) -> str:
    message = str(exc).lower()
    if "unable to open database" in message:
        return "ECONNREFUSED"
    if "interrupted" in message:
        return "QUERY_CANCELLED"
    return getattr(exc, "sqlite_errorname", None) or "SQLITE_ERROR"


@contextmanager
def _translate() -> Iterator[None]:
    try:
        yield
    except sqlite3.Error as exc:
        raise DatabaseError(str(exc), code=_error_code(exc)) from exc


class SQLiteStorage:
    """Thin SQLite wrapper that satisfies the StoragePort contract."""

    name = "sqlite"

    def __init__(self, db_path: str, schema: Optional[str] = None) -> None:
        self._db_path = db_path
        self._schema = schema

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def _session(self) -> Iterator[sqlite3.Connection]:
        with _translate():
            conn = self._connect()
            try:
                with conn:
                    yield conn
            finally:
                conn.close()

    def connect(self) -> None:
        """Verify the database is reachable and apply the optional schema."""

        with self._session() as conn:
            conn.execute("SELECT 1")
            if self._schema:
                conn.executescript(self._schema)

    def close(self) -> None:
        # Connections are per call; nothing is held open between calls.
        return None

    def ping(self) -> bool:
        try:
            self.query_one("SELECT 1 AS ok")
        except DatabaseError:
            return False
        return True

    def query(self, sql: str, params: Sequence[Any] = ()) -> list[dict[str, Any]]:
        with self._session() as conn:
            rows = conn.execute(sql, tuple(params)).fetchall()
        return [dict(row) for row in rows]

    def query_one(self, sql: str, params: Sequence[Any] = ()) -> Optional[dict[str, Any]]:
        # fetchall drains RETURNING statements before the commit.
        with self._session() as conn:
            rows = conn.execute(sql, tuple(params)).fetchall()
        return dict(rows[0]) if rows else None

    def query_all(self, sql: str, params: Sequence[Any] = ()) -> list[dict[str, Any]]:
        return self.query(sql, params)

    def insert(self, table: str, data: Mapping[str, Any]) -> Optional[dict[str, Any]]:
        """Insert one row and return it as stored."""

        if not data:
            raise ValidationError("insert needs at least one column")
        columns = ", ".join(_identifier(column) for column in data)
        placeholders = ", ".join("?" for _ in data)
        sql = f"INSERT INTO {_identifier(table)} ({columns}) VALUES ({placeholders}) RETURNING *"
        return self.query_one(sql, list(data.values()))

    def update(
        self, table: str, data: Mapping[str, Any], where: Mapping[str, Any]
    ) -> Optional[dict[str, Any]]:
        """Update matching rows and return the first updated row."""

        if not data or not where:
            raise ValidationError("update needs both data and a where clause")
        sets = ", ".join(f"{_identifier(column)} = ?" for column in data)
        clause = " AND ".join(f"{_identifier(column)} = ?" for column in where)
        sql = f"UPDATE {_identifier(table)} SET {sets} WHERE {clause} RETURNING *"
        return self.query_one(sql, [*data.values(), *where.values()])

    def delete(self, table: str, where: Mapping[str, Any]) -> int:
        """Delete matching rows and return how many were removed."""

        if not where:
            raise ValidationError("delete needs a where clause")
        clause = " AND ".join(f"{_identifier(column)} = ?" for column in where)
        with self._session() as conn:
            cur = conn.execute(f"DELETE FROM {_identifier(table)} WHERE {clause}", list(where.values()))
            return cur.rowcount

    def find_by_id(self, table: str, record_id: Any) -> Optional[dict[str, Any]]:
        return self.query_one(f"SELECT * FROM {_identifier(table)} WHERE id = ?", (record_id,))

    def find_all(self, table: str) -> list[dict[str, Any]]:
        return self.query(f"SELECT * FROM {_identifier(table)}")

    def transaction(self, callback: Callable[[sqlite3.Connection], Any]) -> Any:
        """Run ``callback(conn)`` atomically; any exception rolls back."""

        with self._session() as conn:
            return callback(conn)
