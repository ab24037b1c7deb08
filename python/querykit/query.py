"""Statement AST rendered to parameterized SQL.

Every statement is a small dataclass with a single ``to_sql()`` serializer, so
placeholder style and clause order live in one place.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from querykit.dialect import DEFAULT_DIALECT, Dialect


@dataclass(frozen=True)
class Fragment:
    """A piece of SQL plus the params for its placeholders, in order."""

    sql: str
    params: tuple[Any, ...] = ()

    @classmethod
    def join(cls, fragments: list[Fragment], separator: str) -> Fragment:
        sql = separator.join(f.sql for f in fragments)
        params: list[Any] = []
        for f in fragments:
            params.extend(f.params)
        return cls(sql, tuple(params))

    def __bool__(self) -> bool:
        return bool(self.sql)


@dataclass(frozen=True)
class Join:
    """A JOIN clause: ``{kind} JOIN table ON left = right``."""

    table: str
    left: str
    right: str
    kind: str = "LEFT"

    def to_sql(self) -> str:
        prefix = f"{self.kind} JOIN" if self.kind else "JOIN"
        return f"{prefix} {self.table} ON {self.left} = {self.right}"


@dataclass
class SelectStatement:
    """Represents a SELECT query.

    ``where`` fragments are AND-joined; ``or_where`` fragments are appended
    after them with ``OR``; ``scope`` fragments are ANDed in front of both.
    Params are collected in clause order: select list, scope, where,
    or-where, having, then limit.
    """

    table: str
    columns: list[Fragment] = field(default_factory=list)
    joins: list[Join] = field(default_factory=list)
    where: list[Fragment] = field(default_factory=list)
    or_where: list[Fragment] = field(default_factory=list)
    scope: list[Fragment] = field(default_factory=list)
    group_by: list[str] = field(default_factory=list)
    having: list[Fragment] = field(default_factory=list)
    order_by: tuple[str, str] | None = None
    limit: int | None = None
    offset: int | None = None

    def to_sql(self, dialect: Dialect = DEFAULT_DIALECT) -> tuple[str, list[Any]]:
        """Generate SQL string and parameters."""
        params: list[Any] = []

        select_list = Fragment.join(self.columns, ", ") if self.columns else Fragment("*")
        params.extend(select_list.params)
        sql = f"SELECT {select_list.sql} FROM {self.table}"

        for join in self.joins:
            sql += f" {join.to_sql()}"

        where_sql, where_params = render_where(self.where, self.or_where, self.scope)
        sql += where_sql
        params.extend(where_params)

        if self.group_by:
            sql += " GROUP BY " + ", ".join(self.group_by)

        if self.having:
            having = Fragment.join(self.having, " AND ")
            sql += f" HAVING {having.sql}"
            params.extend(having.params)

        if self.order_by is not None:
            column, direction = self.order_by
            sql += f" ORDER BY {column} {direction}"

        if self.offset is not None and self.limit:
            clause, limit_params = dialect.offset_limit_clause(self.offset, self.limit)
            sql += f" {clause}"
            params.extend(limit_params)
        elif self.limit:
            sql += f" {dialect.limit_clause(self.limit)}"

        return sql, params


@dataclass
class InsertStatement:
    """Represents a single-row INSERT."""

    table: str
    values: dict[str, Any] = field(default_factory=dict)

    def to_sql(self, dialect: Dialect = DEFAULT_DIALECT) -> tuple[str, list[Any]]:
        """Generate SQL string and parameters."""
        if not self.values:
            raise ValueError("No values specified for INSERT")
        columns = list(self.values.keys())
        placeholders = dialect.placeholders(len(columns))
        sql = f"INSERT INTO {self.table} ({', '.join(columns)}) VALUES ({placeholders})"
        return sql, list(self.values.values())


@dataclass
class UpdateStatement:
    """Represents an UPDATE query."""

    table: str
    set_values: dict[str, Any] = field(default_factory=dict)
    where: list[Fragment] = field(default_factory=list)

    def to_sql(self, dialect: Dialect = DEFAULT_DIALECT) -> tuple[str, list[Any]]:
        """Generate SQL string and parameters."""
        if not self.set_values:
            raise ValueError("No values specified for UPDATE")
        set_parts = [f"{col} = {dialect.placeholder}" for col in self.set_values]
        params: list[Any] = list(self.set_values.values())
        sql = f"UPDATE {self.table} SET {', '.join(set_parts)}"

        where_sql, where_params = render_where(self.where, [])
        sql += where_sql
        params.extend(where_params)
        return sql, params


@dataclass
class DeleteStatement:
    """Represents a DELETE query."""

    table: str
    where: list[Fragment] = field(default_factory=list)
    or_where: list[Fragment] = field(default_factory=list)
    scope: list[Fragment] = field(default_factory=list)

    def to_sql(self, dialect: Dialect = DEFAULT_DIALECT) -> tuple[str, list[Any]]:
        """Generate SQL string and parameters."""
        sql = f"DELETE FROM {self.table}"
        where_sql, params = render_where(self.where, self.or_where, self.scope)
        return sql + where_sql, params


def render_where(
    where: list[Fragment],
    or_where: list[Fragment],
    scope: list[Fragment] | None = None,
) -> tuple[str, list[Any]]:
    """Render ``WHERE a AND b OR c OR d``; empty string when there is no predicate.

    ``scope`` fragments (e.g. the soft-delete filter) always apply, so an
    OR-extended predicate is parenthesized behind them.
    """
    scope = scope or []
    if not where and not scope:
        return "", []

    params: list[Any] = []
    predicate = ""
    if where:
        ands = Fragment.join(where, " AND ")
        predicate = ands.sql
        params.extend(ands.params)
        if or_where:
            ors = Fragment.join(or_where, " OR ")
            predicate += f" OR {ors.sql}"
            params.extend(ors.params)

    if not scope:
        return f" WHERE {predicate}", params

    scoped = Fragment.join(scope, " AND ")
    if not predicate:
        return f" WHERE {scoped.sql}", list(scoped.params)
    if or_where:
        predicate = f"({predicate})"
    return f" WHERE {scoped.sql} AND {predicate}", [*scoped.params, *params]
