"""Insert, update, delete and soft-delete by primary key."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from querykit.conditions import qualify
from querykit.exceptions import SoftDeleteNotSupportedError, ValidationError
from querykit.mixins import deleted_at_now
from querykit.naming import is_identifier
from querykit.query import DeleteStatement, Fragment, InsertStatement, SelectStatement, UpdateStatement

if TYPE_CHECKING:
    from querykit.base import Model
    from querykit.database import Executor

logger = logging.getLogger("querykit.db")


def resolve_executor(model: type[Model], conn: Executor | None) -> Executor:
    """``conn`` while it is usable, else the model's database."""
    if conn is not None and not getattr(conn, "closed", False):
        return conn
    return model.database()


def _checked_values(data: Mapping[str, Any], action: str) -> dict[str, Any]:
    if not isinstance(data, Mapping) or not data:
        raise ValidationError(f"To {action} a record you must provide data.")
    for column in data:
        if not isinstance(column, str) or not is_identifier(column) or "." in column:
            raise ValidationError(f"Invalid column name: {column!r}")
    return dict(data)


def _pk_filter(model: type[Model], pk: Any) -> Fragment:
    return Fragment(f"{model.get_primary_key()} = ?", (pk,))


# ========== Handles ==========

class CreateHandle:
    """Result of ``Model.create()``: the new key plus follow-up operations.

    Example:
        >>> handle = await Product.create({"name": "Lamp", "price": 30})
        >>> handle.pk
        1
        >>> product = await handle.reload()
    """

    def __init__(self, model: type[Model], pk: Any, conn: Executor | None = None) -> None:
        self.model = model
        self.pk = pk
        self._conn = conn

    async def reload(self) -> Model | None:
        """Fetch the row again, including a soft-deleted one."""
        return await self.model.query(self._conn).with_deleted().find(self.pk)

    async def update(self, data: Mapping[str, Any]) -> UpdateResult:
        return await update(self.model, self.pk, data, self._conn)

    async def delete(self) -> bool:
        return await delete(self.model, self.pk, self._conn)

    async def soft_delete(self) -> bool:
        return await soft_delete(self.model, self.pk, self._conn)

    async def restore(self) -> bool:
        return await restore(self.model, self.pk, self._conn)

    async def get_values(self, *columns: str) -> dict[str, Any] | None:
        return await get_values(self.model, self.pk, columns, self._conn)

    def __repr__(self) -> str:
        return f"<CreateHandle {self.model.__name__} {self.model.get_primary_key()}={self.pk!r}>"


class UpdateResult:
    """Result of ``Model.update()``.

    ``old_values`` holds the updated columns as they were before the
    statement ran (empty when the row did not exist).
    """

    def __init__(
        self,
        model: type[Model],
        pk: Any,
        rowcount: int,
        old_values: dict[str, Any],
        conn: Executor | None = None,
    ) -> None:
        self.model = model
        self.pk = pk
        self.rowcount = rowcount
        self.old_values = old_values
        self._conn = conn

    @property
    def status(self) -> bool:
        """Whether any row was changed."""
        return self.rowcount > 0

    async def get_values(self, *columns: str) -> dict[str, Any] | None:
        return await get_values(self.model, self.pk, columns, self._conn)

    async def reload(self) -> Model | None:
        return await self.model.query(self._conn).with_deleted().find(self.pk)

    def __bool__(self) -> bool:
        return self.status

    def __repr__(self) -> str:
        return f"<UpdateResult {self.model.__name__} {self.model.get_primary_key()}={self.pk!r} rowcount={self.rowcount}>"


# ========== Operations ==========

async def create(model: type[Model], data: Mapping[str, Any], conn: Executor | None = None) -> CreateHandle:
    """Insert one row; columns are bound in mapping order."""
    values = _checked_values(data, "create")
    executor = resolve_executor(model, conn)
    sql, params = InsertStatement(model.get_table(), values).to_sql(executor.dialect)
    result = await executor.query(sql, params)

    pk_name = model.get_primary_key()
    pk = values[pk_name] if values.get(pk_name) is not None else result.last_insert_id
    logger.debug("Created %s %s=%r", model.__name__, pk_name, pk)
    return CreateHandle(model, pk, conn)


async def update(
    model: type[Model],
    pk: Any,
    data: Mapping[str, Any],
    conn: Executor | None = None,
) -> UpdateResult:
    """Update one row by primary key, capturing the previous values first."""
    values = _checked_values(data, "update")
    executor = resolve_executor(model, conn)

    old_values = await get_values(model, pk, tuple(values), conn) or {}

    stmt = UpdateStatement(model.get_table(), values, where=[_pk_filter(model, pk)])
    sql, params = stmt.to_sql(executor.dialect)
    result = await executor.query(sql, params)
    return UpdateResult(model, pk, result.rowcount, old_values, conn)


async def delete(model: type[Model], pk: Any, conn: Executor | None = None) -> bool:
    """Hard-delete one row by primary key; True when a row was removed."""
    executor = resolve_executor(model, conn)
    sql, params = DeleteStatement(model.get_table(), where=[_pk_filter(model, pk)]).to_sql(executor.dialect)
    result = await executor.query(sql, params)
    return result.rowcount > 0


async def soft_delete(model: type[Model], pk: Any, conn: Executor | None = None) -> bool:
    """Stamp the deleted-at column with the current UTC time."""
    return await _set_deleted_at(model, pk, deleted_at_now(), conn)


async def restore(model: type[Model], pk: Any, conn: Executor | None = None) -> bool:
    """Clear the deleted-at column."""
    return await _set_deleted_at(model, pk, None, conn)


async def _set_deleted_at(model: type[Model], pk: Any, value: str | None, conn: Executor | None) -> bool:
    if not getattr(model, "__soft_delete__", False):
        raise SoftDeleteNotSupportedError(model.__name__)
    executor = resolve_executor(model, conn)
    stmt = UpdateStatement(model.get_table(), {model.__deleted_at__: value}, where=[_pk_filter(model, pk)])
    sql, params = stmt.to_sql(executor.dialect)
    result = await executor.query(sql, params)
    return result.rowcount > 0


async def get_values(
    model: type[Model],
    pk: Any,
    columns: tuple[str, ...] | list[str],
    conn: Executor | None = None,
) -> dict[str, Any] | None:
    """Read selected columns (all when none given) of one row, as a dict."""
    table = model.get_table()
    select = [Fragment(qualify(c, table)) for c in columns] if columns else [Fragment(f"{table}.*")]
    executor = resolve_executor(model, conn)
    stmt = SelectStatement(
        table=table,
        columns=select,
        where=[Fragment(f"{table}.{model.get_primary_key()} = ?", (pk,))],
        limit=1,
    )
    sql, params = stmt.to_sql(executor.dialect)
    return (await executor.query(sql, params)).first()
