"""Condition maps compiled to SQL boolean fragments.

A condition map is ``{column: value}`` or ``{column: (operator, operand...)}``:

    >>> compile_conditions({"price": (">", 10), "status": "paid"}, "orders")
    Fragment(sql='orders.price > ? AND orders.status = ?', params=(10, 'paid'))

Supported operators:
    - ``=``, ``!=``, ``<>``, ``>``, ``<``, ``>=``, ``<=``, ``LIKE``, ``NOT LIKE``:
      one operand, ``col OP ?``
    - ``IN``, ``NOT IN``: a non-empty list, ``col IN (?, ?, ...)``
    - ``BETWEEN``, ``NOT BETWEEN``: two bounds, ``col BETWEEN ? AND ?``
    - ``IS NULL``, ``IS NOT NULL``: no operand

A plain ``None`` compiles to ``IS NULL``, and the plain strings ``"IS NULL"`` /
``"IS NOT NULL"`` are treated as null checks rather than values.
"""

from __future__ import annotations

from collections.abc import Mapping, Set
from typing import Any, Literal

from querykit.exceptions import ValidationError
from querykit.naming import is_identifier
from querykit.query import Fragment

Mode = Literal["where", "or_where", "having"]

VALID_OPERATORS = frozenset(
    {
        "=",
        "!=",
        "<>",
        ">",
        "<",
        ">=",
        "<=",
        "LIKE",
        "NOT LIKE",
        "IN",
        "NOT IN",
        "BETWEEN",
        "NOT BETWEEN",
        "IS NULL",
        "IS NOT NULL",
    }
)

_NULL_CHECKS = frozenset({"IS NULL", "IS NOT NULL"})
_LIST_OPERATORS = frozenset({"IN", "NOT IN"})
_RANGE_OPERATORS = frozenset({"BETWEEN", "NOT BETWEEN"})


def compile_conditions(
    conditions: Mapping[str, Any],
    table_prefix: str,
    mode: Mode = "where",
) -> Fragment:
    """Compile a condition map into one fragment.

    Entries are ANDed. In ``or_where`` mode a multi-entry fragment is wrapped
    in parentheses so it can follow an ``OR``. In ``having`` mode column names
    are used verbatim, since they usually reference select-list aliases.

    Raises:
        ValidationError: empty map, bad column name, unknown operator, or an
            operand that doesn't fit its operator.
    """
    if not conditions:
        raise ValidationError("Conditions must contain at least one column.")

    parts: list[str] = []
    params: list[Any] = []
    for column, value in conditions.items():
        column_ref = qualify(column, table_prefix) if mode != "having" else _checked(column)
        sql, entry_params = _compile_entry(column, column_ref, value)
        parts.append(sql)
        params.extend(entry_params)

    sql = " AND ".join(parts)
    if mode == "or_where" and len(parts) > 1:
        sql = f"({sql})"
    return Fragment(sql, tuple(params))


def qualify(column: str, table: str) -> str:
    """Prefix ``column`` with ``table.`` unless it already names a table."""
    _checked(column)
    return column if "." in column else f"{table}.{column}"


def _checked(column: str) -> str:
    if not isinstance(column, str) or not is_identifier(column):
        raise ValidationError(f"Invalid column name: {column!r}")
    return column


def _compile_entry(column: str, column_ref: str, value: Any) -> tuple[str, list[Any]]:
    """Build SQL for a single condition entry."""
    if isinstance(value, (list, tuple)):
        if not value:
            raise ValidationError(f"Empty operator tuple for column {column!r}")
        return _compile_operator(column, column_ref, value)

    if isinstance(value, str) and value.upper() in _NULL_CHECKS:
        return f"{column_ref} {value.upper()}", []

    if value is None:
        return f"{column_ref} IS NULL", []

    return f"{column_ref} = ?", [value]


def _compile_operator(column: str, column_ref: str, value: list[Any] | tuple[Any, ...]) -> tuple[str, list[Any]]:
    operator, *operands = value
    if not isinstance(operator, str) or operator.upper() not in VALID_OPERATORS:
        raise ValidationError(f"Operator not valid: {operator}")
    op = operator.upper()

    if op in _NULL_CHECKS:
        return f"{column_ref} {op}", []

    if len(operands) != 1:
        raise ValidationError(
            f"{op} operator requires one operand for column {column!r}. Received: {list(operands)!r}"
        )
    operand = operands[0]

    if op in _LIST_OPERATORS:
        if isinstance(operand, (str, bytes)) or not isinstance(operand, (list, tuple, Set)) or not operand:
            raise ValidationError(
                f"{op} operator requires a non-empty list for column {column!r}. Received: {operand!r}"
            )
        items = list(operand)
        placeholders = ", ".join("?" for _ in items)
        return f"{column_ref} {op} ({placeholders})", items

    if op in _RANGE_OPERATORS:
        if not isinstance(operand, (list, tuple)) or len(operand) != 2:
            raise ValidationError(
                f"{op} operator requires two values: Received: {{ {column}: ['{op}', {operand!r}] }}"
            )
        low, high = operand
        return f"{column_ref} {op} ? AND ?", [low, high]

    return f"{column_ref} {op} ?", [operand]
