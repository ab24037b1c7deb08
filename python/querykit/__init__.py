"""QueryKit - declarative async query building and eager loading for model classes."""

from __future__ import annotations

from querykit.base import Model
from querykit.builder import QueryBuilder
from querykit.config import DatabaseConfig, create_driver, register_driver
from querykit.database import Database, TransactionConnection, get_database, set_database
from querykit.dialect import Dialect, MySQLDialect, SQLiteDialect
from querykit.driver import Driver, QueryResult, SQLiteDriver
from querykit.exceptions import (
    ConfigurationError,
    ConnectionNotEstablishedError,
    ExecutionError,
    QueryKitError,
    SoftDeleteNotSupportedError,
    StateError,
    ValidationError,
)
from querykit.mixins import SoftDeleteMixin
from querykit.mutations import CreateHandle, UpdateResult
from querykit.pagination import Paginated
from querykit.relationships import RelationDescriptor, RelationKind, relation

__version__ = "0.1.0"

__all__ = [
    # Core
    "connect",
    "Database",
    "TransactionConnection",
    "get_database",
    "set_database",
    "DatabaseConfig",
    "create_driver",
    "register_driver",
    "Driver",
    "SQLiteDriver",
    "QueryResult",
    "Dialect",
    "SQLiteDialect",
    "MySQLDialect",
    # Model definition
    "Model",
    "SoftDeleteMixin",
    "relation",
    "RelationDescriptor",
    "RelationKind",
    # Query building
    "QueryBuilder",
    "Paginated",
    "CreateHandle",
    "UpdateResult",
    # Errors
    "QueryKitError",
    "ValidationError",
    "StateError",
    "ConfigurationError",
    "ExecutionError",
    "ConnectionNotEstablishedError",
    "SoftDeleteNotSupportedError",
]


async def connect(url: str | DatabaseConfig | Driver, *, dialect: Dialect | None = None) -> Database:
    """Connect and register the process-wide database.

    Args:
        url: Database connection URL, config, or driver instance.
            - SQLite: sqlite:///path/to/db.sqlite or sqlite::memory:

    Returns:
        The connected Database.

    Example:
        >>> db = await connect("sqlite:///app.db")
    """
    return await Database.connect(url, dialect=dialect)
