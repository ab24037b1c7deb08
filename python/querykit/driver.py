"""Driver contract and the reference SQLite driver."""

from __future__ import annotations

import logging
from collections.abc import Iterator, Sequence
from typing import Any, Protocol, runtime_checkable

import aiosqlite

from querykit.exceptions import ConnectionNotEstablishedError

logger = logging.getLogger("querykit.driver.sqlite")


class QueryResult:
    """Rows returned by a driver plus write metadata.

    Example:
        >>> result = await driver.query("SELECT id, name FROM users", [])
        >>> result.first()
        {'id': 1, 'name': 'Alice'}
        >>> result.column("name")
        ['Alice', 'Bob']
    """

    __slots__ = ("rows", "last_insert_id", "rowcount")

    def __init__(
        self,
        rows: list[dict[str, Any]] | None = None,
        *,
        last_insert_id: Any = None,
        rowcount: int = -1,
    ) -> None:
        self.rows = rows or []
        self.last_insert_id = last_insert_id
        self.rowcount = rowcount

    def all(self) -> list[dict[str, Any]]:
        return list(self.rows)

    def first(self) -> dict[str, Any] | None:
        return self.rows[0] if self.rows else None

    def column(self, name: str) -> list[Any]:
        return [row[name] for row in self.rows]

    def __len__(self) -> int:
        return len(self.rows)

    def __iter__(self) -> Iterator[dict[str, Any]]:
        return iter(self.rows)

    def __bool__(self) -> bool:
        return bool(self.rows)

    def __repr__(self) -> str:
        return f"<QueryResult rows={len(self.rows)} rowcount={self.rowcount}>"


@runtime_checkable
class Driver(Protocol):
    """What querykit needs from a database driver.

    Placeholders are ``?``-style positional; params bind in list order.
    """

    @property
    def connected(self) -> bool: ...

    async def connect(self) -> None: ...

    async def query(self, sql: str, params: Sequence[Any]) -> QueryResult: ...

    async def close(self) -> None: ...

    async def begin_transaction(self) -> None: ...

    async def commit(self) -> None: ...

    async def rollback(self) -> None: ...


class SQLiteDriver:
    """Driver backed by aiosqlite.

    Statements outside an explicit transaction are committed immediately.

    Example:
        >>> driver = SQLiteDriver(":memory:")
        >>> await driver.connect()
        >>> await driver.query("SELECT 1 AS one", [])
    """

    def __init__(self, path: str = ":memory:", *, foreign_keys: bool = True) -> None:
        self._path = path
        self._foreign_keys = foreign_keys
        self._connection: aiosqlite.Connection | None = None
        self._in_transaction = False

    @property
    def connected(self) -> bool:
        return self._connection is not None

    @property
    def in_transaction(self) -> bool:
        return self._in_transaction

    async def connect(self) -> None:
        if self._connection is not None:
            return
        self._connection = await aiosqlite.connect(self._path)
        self._connection.row_factory = aiosqlite.Row
        if self._foreign_keys:
            await self._connection.execute("PRAGMA foreign_keys=ON")
        logger.info("SQLite connected: %s", self._path)

    async def query(self, sql: str, params: Sequence[Any]) -> QueryResult:
        conn = self._require_connection()
        cursor = await conn.execute(sql, list(params))
        try:
            rows = await cursor.fetchall()
            result = QueryResult(
                [dict(row) for row in rows],
                last_insert_id=cursor.lastrowid,
                rowcount=cursor.rowcount,
            )
        finally:
            await cursor.close()
        if not self._in_transaction:
            await conn.commit()
        return result

    async def close(self) -> None:
        if self._connection is None:
            return
        await self._connection.close()
        self._connection = None
        self._in_transaction = False
        logger.info("SQLite disconnected: %s", self._path)

    async def begin_transaction(self) -> None:
        conn = self._require_connection()
        await conn.execute("BEGIN")
        self._in_transaction = True

    async def commit(self) -> None:
        conn = self._require_connection()
        await conn.commit()
        self._in_transaction = False

    async def rollback(self) -> None:
        conn = self._require_connection()
        await conn.rollback()
        self._in_transaction = False

    def _require_connection(self) -> aiosqlite.Connection:
        if self._connection is None:
            raise ConnectionNotEstablishedError()
        return self._connection

    def __repr__(self) -> str:
        state = "connected" if self.connected else "closed"
        return f"<SQLiteDriver {self._path!r} {state}>"
