"""Aggregate select-list columns, optionally conditional."""

from __future__ import annotations

import enum
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from querykit.conditions import compile_conditions, qualify
from querykit.exceptions import ValidationError
from querykit.naming import is_identifier
from querykit.query import Fragment


class AggregateFunction(enum.Enum):
    MIN = "min"
    MAX = "max"
    COUNT = "count"
    SUM = "sum"
    AVG = "avg"

    @property
    def null_default(self) -> bool:
        """MIN/MAX/COUNT skip unmatched rows; SUM/AVG count them as 0."""
        return self in (AggregateFunction.MIN, AggregateFunction.MAX, AggregateFunction.COUNT)


# Family that decides the shape of get() when several are populated.
SELECT_PRIORITY = (
    AggregateFunction.MIN,
    AggregateFunction.MAX,
    AggregateFunction.COUNT,
    AggregateFunction.SUM,
    AggregateFunction.AVG,
)

# Order in which group_by() appends the families to its select list.
GROUP_BY_ORDER = (
    AggregateFunction.AVG,
    AggregateFunction.SUM,
    AggregateFunction.COUNT,
    AggregateFunction.MIN,
    AggregateFunction.MAX,
)


def aggregate_fragment(
    function: AggregateFunction,
    table: str,
    column: str,
    conditions: Mapping[str, Any] | None,
    alias: str,
) -> Fragment:
    """Render one aggregate column.

    Example:
        >>> aggregate_fragment(AggregateFunction.SUM, "orders", "amount", {"status": "paid"}, "paid")
        Fragment(sql='COALESCE(SUM(CASE WHEN orders.status = ? THEN orders.amount ELSE 0 END), 0) AS paid', ...)
    """
    name = function.name
    column_ref = "*" if column == "*" else qualify(column, table)

    params: tuple[Any, ...] = ()
    if conditions:
        if column == "*":
            raise ValidationError("You cannot use conditions with '*' column.")
        case = compile_conditions(conditions, table)
        otherwise = "NULL" if function.null_default else "0"
        inner = f"CASE WHEN {case.sql} THEN {column_ref} ELSE {otherwise} END"
        params = case.params
    else:
        inner = column_ref

    expr = f"{name}({inner})"
    if not function.null_default:
        expr = f"COALESCE({expr}, 0)"
    return Fragment(f"{expr} AS {alias}", params)


@dataclass
class AggregateFamily:
    """The columns accumulated for one aggregate function."""

    function: AggregateFunction
    fragments: list[Fragment] = field(default_factory=list)

    def add(self, table: str, column: str, conditions: Mapping[str, Any] | None = None, alias: str | None = None) -> str:
        """Append a column and return its alias."""
        if column != "*" and not is_identifier(column):
            raise ValidationError(f"Invalid column name: {column!r}")
        if column == "*" and self.function is not AggregateFunction.COUNT:
            raise ValidationError(f"{self.function.name} needs a column, not '*'.")
        if alias is None:
            alias = self.default_alias(column)
        elif not is_identifier(alias) or "." in alias:
            raise ValidationError(f"Invalid aggregate alias: {alias!r}")
        self.fragments.append(aggregate_fragment(self.function, table, column, conditions, alias))
        return alias

    def default_alias(self, column: str) -> str:
        index = len(self.fragments)
        prefix = self.function.value
        if column == "*":
            return f"{prefix}_{index}"
        return f"{prefix}_{column.replace('.', '_')}_{index}"

    def __bool__(self) -> bool:
        return bool(self.fragments)


class Aggregates:
    """All five families for one builder."""

    def __init__(self) -> None:
        self.families = {fn: AggregateFamily(fn) for fn in AggregateFunction}

    def add(
        self,
        function: AggregateFunction,
        table: str,
        column: str,
        conditions: Mapping[str, Any] | None = None,
        alias: str | None = None,
    ) -> str:
        return self.families[function].add(table, column, conditions, alias)

    def active(self) -> AggregateFamily | None:
        """The first non-empty family in select priority, if any."""
        for fn in SELECT_PRIORITY:
            if self.families[fn]:
                return self.families[fn]
        return None

    def for_group_by(self) -> list[Fragment]:
        return [frag for fn in GROUP_BY_ORDER for frag in self.families[fn].fragments]

    def __bool__(self) -> bool:
        return any(self.families.values())
