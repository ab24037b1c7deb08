"""SQL literal-generation rules for the supported dialect."""

from __future__ import annotations

from typing import Any


class Dialect:
    """Placeholder and LIMIT rendering rules.

    Statements are rendered with ``?`` positional placeholders. Subclasses
    only change how numeric LIMIT params are handed to the driver.
    """

    name = "sqlite"
    placeholder = "?"

    def placeholders(self, count: int) -> str:
        return ", ".join(self.placeholder for _ in range(count))

    def limit_params(self, *values: int) -> list[Any]:
        return list(values)

    def limit_clause(self, limit: int) -> str:
        return f"LIMIT {int(limit)}"

    def offset_limit_clause(self, offset: int, count: int) -> tuple[str, list[Any]]:
        """Return the ``LIMIT offset, count`` clause and its params (offset first)."""
        return f"LIMIT {self.placeholder}, {self.placeholder}", self.limit_params(offset, count)

    def __repr__(self) -> str:
        return f"<Dialect {self.name}>"


class SQLiteDialect(Dialect):
    name = "sqlite"


class MySQLDialect(Dialect):
    """MySQL prepared statements expect LIMIT params as strings."""

    name = "mysql"

    def limit_params(self, *values: int) -> list[Any]:
        return [str(v) for v in values]


DEFAULT_DIALECT = SQLiteDialect()
