"""Process-wide database handle and transactions."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from contextlib import asynccontextmanager
from typing import Any, Protocol, TypeVar

from querykit.config import DatabaseConfig, create_driver
from querykit.dialect import DEFAULT_DIALECT, Dialect
from querykit.driver import Driver, QueryResult
from querykit.exceptions import (
    ConnectionNotEstablishedError,
    ExecutionError,
    QueryKitError,
    StateError,
)

logger = logging.getLogger("querykit.db")

R = TypeVar("R")


class Executor(Protocol):
    """Anything statements can be run against: a Database or a transaction."""

    dialect: Dialect

    async def query(self, sql: str, params: Sequence[Any] = ()) -> QueryResult: ...


class Database:
    """The single logical connection shared by all models.

    Wraps a :class:`~querykit.driver.Driver`, logs every statement at DEBUG
    and turns driver failures into :class:`ExecutionError` with the SQL
    attached.

    Example:
        >>> db = await Database.connect("sqlite::memory:")
        >>> await db.query("SELECT 1 AS one")
        >>> await db.close()
    """

    def __init__(self, driver: Driver, *, dialect: Dialect | None = None) -> None:
        self._driver = driver
        self.dialect = dialect or DEFAULT_DIALECT
        self._transaction: TransactionConnection | None = None

    @classmethod
    async def connect(
        cls,
        target: DatabaseConfig | Driver | str,
        *,
        dialect: Dialect | None = None,
        set_default: bool = True,
    ) -> Database:
        """Connect and (by default) register as the process-wide database.

        Args:
            target: A config, a URL such as ``sqlite:///app.db``, or a driver.
            dialect: Literal-generation rules; SQLite rules by default.
            set_default: Register the handle with :func:`set_database`.
        """
        if isinstance(target, str):
            target = DatabaseConfig.from_url(target)
        driver = create_driver(target) if isinstance(target, DatabaseConfig) else target

        db = cls(driver, dialect=dialect)
        try:
            await driver.connect()
        except QueryKitError:
            raise
        except Exception as exc:
            logger.error("Connection failed: %s", exc)
            raise ExecutionError(f"Connection failed: {exc}") from exc

        if set_default:
            set_database(db)
        return db

    @property
    def driver(self) -> Driver:
        return self._driver

    @property
    def in_transaction(self) -> bool:
        return self._transaction is not None

    async def query(self, sql: str, params: Sequence[Any] = ()) -> QueryResult:
        """Execute one statement and return its result."""
        if not self._driver.connected:
            raise ConnectionNotEstablishedError()
        bound = list(params)
        logger.debug("%s %r", sql, bound)
        try:
            return await self._driver.query(sql, bound)
        except QueryKitError:
            raise
        except Exception as exc:
            logger.error("Query failed: %s | %s %r", exc, sql, bound)
            raise ExecutionError(str(exc), sql=sql, params=bound) from exc

    async def close(self) -> None:
        await self._driver.close()
        global _default_database
        if _default_database is self:
            _default_database = None

    @asynccontextmanager
    async def begin(self) -> AsyncIterator[TransactionConnection]:
        """Run a block in a transaction: commit on success, rollback on error.

        Example:
            >>> async with db.begin() as tx:
            ...     await Order.create({"amount": 10}, tx)
            ...     await Order.create({"amount": 5}, tx)
        """
        if self._transaction is not None:
            raise StateError("A transaction is already active on this connection.")
        if not self._driver.connected:
            raise ConnectionNotEstablishedError()

        tx = TransactionConnection(self)
        await self._driver.begin_transaction()
        self._transaction = tx
        logger.info("Transaction started")
        try:
            yield tx
            await self._driver.commit()
            logger.info("Transaction committed")
        except BaseException:
            await self._driver.rollback()
            logger.info("Transaction rolled back")
            raise
        finally:
            tx.close()
            self._transaction = None

    async def transaction(self, callback: Callable[[TransactionConnection], Awaitable[R]]) -> R:
        """Run ``callback(tx)`` inside :meth:`begin` and return its result."""
        async with self.begin() as tx:
            return await callback(tx)

    def __repr__(self) -> str:
        return f"<Database {self._driver!r} dialect={self.dialect.name}>"


class TransactionConnection:
    """Handle passed to a unit of work; unusable once the transaction ends."""

    def __init__(self, database: Database) -> None:
        self._database = database
        self.dialect = database.dialect
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def query(self, sql: str, params: Sequence[Any] = ()) -> QueryResult:
        if self._closed:
            raise StateError("Transaction connection is closed.")
        return await self._database.query(sql, params)

    def close(self) -> None:
        self._closed = True

    def __repr__(self) -> str:
        state = "closed" if self._closed else "open"
        return f"<TransactionConnection {state}>"


_default_database: Database | None = None


def set_database(database: Database | None) -> None:
    """Register the process-wide database used by models without ``__database__``."""
    global _default_database
    _default_database = database


def get_database() -> Database:
    """Return the process-wide database or raise if none is connected."""
    if _default_database is None:
        raise ConnectionNotEstablishedError()
    return _default_database
