"""Pytest configuration and fixtures."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

import pytest_asyncio

from querykit import Database, QueryResult, set_database

SHOP_SCHEMA = [
    """
    CREATE TABLE categories (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE products (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL,
        price INTEGER NOT NULL DEFAULT 0,
        status TEXT NOT NULL DEFAULT 'active',
        category_id INTEGER REFERENCES categories(id),
        deleted_at TEXT
    )
    """,
    """
    CREATE TABLE reviews (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        product_id INTEGER NOT NULL REFERENCES products(id),
        rating INTEGER NOT NULL,
        body TEXT
    )
    """,
    """
    CREATE TABLE manuals (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        product_id INTEGER NOT NULL REFERENCES products(id),
        url TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE tags (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        label TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE product_tag (
        product_id INTEGER NOT NULL REFERENCES products(id),
        tag_id INTEGER NOT NULL REFERENCES tags(id)
    )
    """,
    """
    CREATE TABLE orders (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        amount INTEGER NOT NULL,
        status TEXT NOT NULL
    )
    """,
]


class RecordingDriver:
    """Driver stand-in that records statements and replays canned results."""

    def __init__(self) -> None:
        self.statements: list[tuple[str, list[Any]]] = []
        self.results: list[QueryResult] = []
        self.calls: list[str] = []
        self._connected = False

    @property
    def connected(self) -> bool:
        return self._connected

    @property
    def last(self) -> tuple[str, list[Any]]:
        return self.statements[-1]

    def queue(self, *rows: dict[str, Any], rowcount: int = -1, last_insert_id: Any = None) -> None:
        self.results.append(QueryResult(list(rows), rowcount=rowcount, last_insert_id=last_insert_id))

    async def connect(self) -> None:
        self._connected = True

    async def query(self, sql: str, params: Sequence[Any]) -> QueryResult:
        self.statements.append((sql, list(params)))
        if self.results:
            return self.results.pop(0)
        return QueryResult([])

    async def close(self) -> None:
        self._connected = False

    async def begin_transaction(self) -> None:
        self.calls.append("begin")

    async def commit(self) -> None:
        self.calls.append("commit")

    async def rollback(self) -> None:
        self.calls.append("rollback")


@pytest_asyncio.fixture
async def db():
    """Connected in-memory SQLite database registered as the default."""
    database = await Database.connect("sqlite::memory:")
    yield database
    await database.close()
    set_database(None)


@pytest_asyncio.fixture
async def shop(db):
    """Database with the shop schema created."""
    for ddl in SHOP_SCHEMA:
        await db.query(ddl)
    return db


@pytest_asyncio.fixture
async def recorder():
    """Recording driver registered as the default database."""
    driver = RecordingDriver()
    database = await Database.connect(driver)
    yield driver
    await database.close()
    set_database(None)
