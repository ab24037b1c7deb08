"""Fluent query builder.

Every ``Model.<method>()`` entry point creates a fresh :class:`QueryBuilder`;
each fluent call mutates that builder and returns it, and a terminal method
(``get``, ``get_one``, ``find``, ``pluck``, ``paginate``, ``exist``,
``group_by``, ``aggregate``, ``scalar``, ``delete``) issues the SQL.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from querykit import mutations
from querykit.aggregates import AggregateFamily, AggregateFunction, Aggregates
from querykit.conditions import compile_conditions, qualify
from querykit.exceptions import StateError, ValidationError
from querykit.mapper import hydrate
from querykit.mixins import soft_delete_scope
from querykit.naming import is_identifier
from querykit.pagination import Paginated, check_page_args, last_page, page_offset
from querykit.query import DeleteStatement, Fragment, Join, SelectStatement
from querykit.relationships import (
    RelationDescriptor,
    RelationKind,
    join_fragments,
    load_relation,
    resolve_relations,
)

if TYPE_CHECKING:
    from querykit.base import Model
    from querykit.database import Executor
    from querykit.driver import QueryResult
    from querykit.mutations import CreateHandle

_DIRECTIONS = ("ASC", "DESC")

M = TypeVar("M", bound="Model")


class QueryBuilder(Generic[M]):
    """Accumulates conditions, relations, ordering, limit and aggregates.

    Conditions are maps of ``column -> value`` or
    ``column -> (operator, operand)``; see :mod:`querykit.conditions`.

    Example:
        >>> products = await (
        ...     Product.where({"price": (">", 10)})
        ...     .or_where({"featured": True})
        ...     .with_("category", "tags")
        ...     .order_by("price", "DESC")
        ...     .limit(20)
        ...     .get()
        ... )

    Soft Delete:
        Models using SoftDeleteMixin automatically exclude soft-deleted records.
        Use with_deleted() to include them or only_deleted() to query only deleted.
    """

    def __init__(self, model: type[M], executor: Executor | None = None) -> None:
        self._model = model
        self._executor = executor
        self._table = model.get_table()
        self._where: list[Fragment] = []
        self._or_where: list[Fragment] = []
        self._having: list[Fragment] = []
        self._relations: list[RelationDescriptor] = []
        self._relation_attributes: dict[str, str] = {}
        self._condition_tables: set[str] = set()
        self._join_columns: list[Fragment] = []
        self._joins: list[Join] = []
        self._order_by: tuple[str, str] = (f"{self._table}.{model.get_primary_key()}", "ASC")
        self._order_is_default = True
        self._limit: int | None = None
        self._aggregates = Aggregates()
        # Soft delete handling
        self._include_deleted = False
        self._only_deleted = False

    @property
    def model(self) -> type[M]:
        return self._model

    # ========== Conditions ==========

    def where(self, conditions: Mapping[str, Any]) -> QueryBuilder[M]:
        """AND a condition map into the WHERE clause.

        Example:
            >>> Product.where({"price": ("BETWEEN", [10, 20]), "status": "active"})
            >>> Product.where({"id": ("IN", [1, 2, 3])})
        """
        self._where.append(compile_conditions(conditions, self._table, "where"))
        self._note_tables(conditions)
        return self

    def or_where(self, conditions: Mapping[str, Any]) -> QueryBuilder[M]:
        """Append ``OR (conditions)``; needs a preceding :meth:`where`."""
        if not self._where:
            raise StateError("or_where() requires a preceding where().")
        self._or_where.append(compile_conditions(conditions, self._table, "or_where"))
        self._note_tables(conditions)
        return self

    def having(self, conditions: Mapping[str, Any]) -> QueryBuilder[M]:
        """Add HAVING conditions for :meth:`group_by`.

        Column names are used exactly as given, so qualify them yourself
        (``orders.status``) or reference an aggregate alias (``total``).

        Example:
            >>> await Order.sum("amount", alias="total").having({"total": (">", 100)}).group_by("customer_id")
        """
        self._having.append(compile_conditions(conditions, self._table, "having"))
        return self

    # ========== Relations ==========

    def with_(self, *names: str) -> QueryBuilder[M]:
        """Eager-load relations by name.

        Belongs-to relations are joined into the main SELECT; the other kinds
        are fetched afterwards with one batched query per relation. Naming a
        relation twice loads it once; two relations that would fill the same
        attribute raise :class:`ValidationError`.
        """
        pending = [name for name in dict.fromkeys(names) if name not in self._relation_attributes.values()]
        for name, descriptor in zip(pending, resolve_relations(self._model, pending)):
            taken_by = self._relation_attributes.get(descriptor.attribute)
            if taken_by is not None:
                raise ValidationError(
                    f"Relations {taken_by!r} and {name!r} both load into "
                    f"{self._model.__name__}.{descriptor.attribute}; eager-load one of them."
                )
            self._relation_attributes[descriptor.attribute] = name
            if descriptor.is_join:
                columns, join = join_fragments(self._table, descriptor)
                self._join_columns.extend(columns)
                self._joins.append(join)
            self._relations.append(descriptor)
        return self

    # ========== Ordering, limits, scopes ==========

    def order_by(self, column: str, direction: str = "ASC") -> QueryBuilder[M]:
        if not isinstance(direction, str) or direction.upper() not in _DIRECTIONS:
            raise ValidationError(f"Order direction must be ASC or DESC, got {direction!r}")
        self._order_by = (qualify(column, self._table), direction.upper())
        self._order_is_default = False
        return self

    def limit(self, n: int) -> QueryBuilder[M]:
        """Limit results; ``0`` means no limit."""
        if isinstance(n, bool) or not isinstance(n, int) or n < 0:
            raise ValidationError(f"Limit must be a non-negative integer, got {n!r}")
        self._limit = n
        return self

    def with_deleted(self) -> QueryBuilder[M]:
        """Include soft-deleted records in results.

        Only affects models using SoftDeleteMixin.
        """
        self._include_deleted = True
        return self

    def only_deleted(self) -> QueryBuilder[M]:
        """Return only soft-deleted records.

        Only affects models using SoftDeleteMixin.
        """
        self._include_deleted = True
        self._only_deleted = True
        return self

    # ========== Aggregates ==========

    def min(self, column: str, conditions: Mapping[str, Any] | None = None, alias: str | None = None) -> QueryBuilder[M]:
        self._aggregates.add(AggregateFunction.MIN, self._table, column, conditions, alias)
        return self

    def max(self, column: str, conditions: Mapping[str, Any] | None = None, alias: str | None = None) -> QueryBuilder[M]:
        self._aggregates.add(AggregateFunction.MAX, self._table, column, conditions, alias)
        return self

    def count(self, column: str = "*", conditions: Mapping[str, Any] | None = None, alias: str | None = None) -> QueryBuilder[M]:
        self._aggregates.add(AggregateFunction.COUNT, self._table, column, conditions, alias)
        return self

    def sum(self, column: str, conditions: Mapping[str, Any] | None = None, alias: str | None = None) -> QueryBuilder[M]:
        """Add ``COALESCE(SUM(column), 0)``, optionally only over rows matching ``conditions``.

        Example:
            >>> await Order.sum("amount", {"status": "paid"}, alias="paid").scalar()
            10
        """
        self._aggregates.add(AggregateFunction.SUM, self._table, column, conditions, alias)
        return self

    def avg(self, column: str, conditions: Mapping[str, Any] | None = None, alias: str | None = None) -> QueryBuilder[M]:
        self._aggregates.add(AggregateFunction.AVG, self._table, column, conditions, alias)
        return self

    # ========== Terminal methods ==========

    async def get(self, columns: Sequence[str] = ("*",)) -> list[M]:
        """Execute the query and return model instances.

        When aggregate columns were requested, only the first populated
        family (min, max, count, sum, avg) is selected and each result row
        becomes an instance carrying the aggregate aliases.
        """
        family = self._aggregates.active()
        if family is not None:
            rows = await self._run_aggregate(family)
            return [self._model._from_row(row) for row in rows]

        stmt = self._select(columns, order=True, limit=self._limit)
        result = await self._execute(stmt)
        return await self._materialize(result.all())

    async def get_one(self, columns: Sequence[str] = ("*",)) -> M | None:
        """Return the first matching instance or None."""
        stmt = self._select(columns, order=True, limit=1)
        result = await self._execute(stmt)
        instances = await self._materialize(result.all()[:1])
        return instances[0] if instances else None

    async def find(self, pk: Any, columns: Sequence[str] = ("*",)) -> M | None:
        """Fetch by primary key.

        Other ``where`` conditions on the builder are ignored; the
        soft-delete filter still applies.
        """
        stmt = self._select(columns, order=False, limit=1)
        stmt.where = [Fragment(f"{self._table}.{self._model.get_primary_key()} = ?", (pk,))]
        stmt.or_where = []
        result = await self._execute(stmt)
        instances = await self._materialize(result.all()[:1])
        return instances[0] if instances else None

    async def pluck(self, column: str) -> list[Any]:
        """Return one column's values as a flat list.

        Example:
            >>> await Product.where({"status": "active"}).pluck("name")
            ['Lamp', 'Desk']
        """
        stmt = SelectStatement(
            table=self._table,
            columns=[Fragment(qualify(column, self._table))],
            joins=list(self._joins),
            where=list(self._where),
            or_where=list(self._or_where),
            scope=self._scope(),
            order_by=self._order_by,
            limit=self._limit,
        )
        result = await self._execute(stmt)
        return [next(iter(row.values())) for row in result]

    async def paginate(self, page: int, per_page: int, columns: Sequence[str] = ("*",)) -> Paginated[M]:
        """Return one page of results plus totals.

        Runs the page SELECT and a separate ``COUNT(*)``; the two are not
        wrapped in a transaction.
        """
        check_page_args(page, per_page)
        stmt = self._select(columns, order=True, limit=per_page)
        stmt.offset = page_offset(page, per_page)
        result = await self._execute(stmt)
        data = await self._materialize(result.all())

        count_stmt = SelectStatement(
            table=self._table,
            columns=[Fragment("COUNT(*) AS total")],
            joins=list(self._joins),
            where=list(self._where),
            or_where=list(self._or_where),
            scope=self._scope(),
        )
        row = (await self._execute(count_stmt)).first()
        total = int(row["total"]) if row else 0

        return Paginated(
            data=data,
            total=total,
            per_page=per_page,
            current_page=page,
            last_page=last_page(total, per_page),
            count=len(data),
        )

    async def exist(self) -> bool:
        """Whether at least one row matches."""
        stmt = SelectStatement(
            table=self._table,
            columns=[Fragment(f"{self._table}.{self._model.get_primary_key()}")],
            joins=list(self._joins),
            where=list(self._where),
            or_where=list(self._or_where),
            scope=self._scope(),
            limit=1,
        )
        result = await self._execute(stmt)
        return bool(result)

    async def group_by(self, *columns: str) -> list[dict[str, Any]]:
        """Group rows and return plain dicts with the accumulated aggregates.

        ``relation.column`` entries group by a column of a belongs-to
        relation, selected as ``relation_column`` through an inner JOIN
        unless :meth:`with_` already joined that table.

        Example:
            >>> await Product.count("*", alias="total").group_by("category.name")
            [{'category_name': 'Books', 'total': 3}, ...]
        """
        if not columns:
            raise ValidationError("You must provide at least one column to group by.")

        select: list[Fragment] = []
        group: list[str] = []
        joins: list[Join] = list(self._joins)
        joined_tables = {join.table for join in joins}
        for column in columns:
            if column == "*":
                raise ValidationError("You cannot use '*' in group_by().")
            if not isinstance(column, str) or not is_identifier(column):
                raise ValidationError(f"Invalid column name: {column!r}")
            if "." not in column:
                expr = f"{self._table}.{column}"
                select.append(Fragment(expr))
                group.append(expr)
                continue

            rel_name, rel_column = column.split(".", 1)
            descriptor = resolve_relations(self._model, [rel_name])[0]
            if descriptor.kind is not RelationKind.BELONGS_TO:
                raise ValidationError(f"group_by() can only use belongs_to relations, {rel_name!r} is {descriptor.kind.value}")
            expr = f"{descriptor.related_table}.{rel_column}"
            select.append(Fragment(f"{expr} AS {rel_name}_{rel_column}"))
            group.append(expr)
            if descriptor.related_table not in joined_tables:
                joined_tables.add(descriptor.related_table)
                joins.append(
                    Join(
                        table=descriptor.related_table,
                        left=f"{self._table}.{descriptor.foreign_key}",
                        right=f"{descriptor.related_table}.{descriptor.primary_key}",
                        kind="INNER",
                    )
                )

        stmt = SelectStatement(
            table=self._table,
            columns=select + self._aggregates.for_group_by(),
            joins=joins,
            where=list(self._where),
            or_where=list(self._or_where),
            scope=self._scope(),
            group_by=group,
            having=list(self._having),
            order_by=None if self._order_is_default else self._order_by,
            limit=self._limit,
        )
        result = await self._execute(stmt)
        return result.all()

    async def aggregate(self) -> dict[str, Any]:
        """Run the active aggregate family and return its single row."""
        family = self._aggregates.active()
        if family is None:
            raise ValidationError("No aggregate column requested; call min/max/count/sum/avg first.")
        rows = await self._run_aggregate(family)
        return rows[0] if rows else {}

    async def scalar(self) -> Any:
        """First value of :meth:`aggregate`."""
        row = await self.aggregate()
        return next(iter(row.values()), None)

    async def delete(self) -> int:
        """Delete all matching rows and return count."""
        if not self._where:
            raise StateError("delete() requires a preceding where().")
        foreign = sorted(self._condition_tables - {self._table})
        if foreign:
            raise ValidationError(f"delete() cannot filter on joined tables: {', '.join(foreign)}")
        stmt = DeleteStatement(self._table, list(self._where), list(self._or_where), self._scope())
        result = await self._execute(stmt)
        return result.rowcount

    async def create(self, data: Mapping[str, Any], conn: Executor | None = None) -> CreateHandle:
        return await mutations.create(self._model, data, conn or self._executor)

    # ========== Internals ==========

    def _executor_for_call(self) -> Executor:
        return mutations.resolve_executor(self._model, self._executor)

    async def _execute(self, stmt: SelectStatement | DeleteStatement) -> QueryResult:
        executor = self._executor_for_call()
        sql, params = stmt.to_sql(executor.dialect)
        return await executor.query(sql, params)

    def _note_tables(self, conditions: Mapping[str, Any]) -> None:
        for column in conditions:
            if isinstance(column, str) and "." in column:
                self._condition_tables.add(column.split(".", 1)[0])

    def _scope(self) -> list[Fragment]:
        scope = soft_delete_scope(
            self._model,
            include_deleted=self._include_deleted,
            only_deleted=self._only_deleted,
        )
        return [Fragment(scope)] if scope else []

    def _select_list(self, columns: Sequence[str]) -> list[Fragment]:
        if isinstance(columns, str):
            columns = (columns,)
        if not columns:
            raise ValidationError("At least one column must be selected.")
        select = [
            Fragment(f"{self._table}.*") if column == "*" else Fragment(qualify(column, self._table))
            for column in columns
        ]
        return select + list(self._join_columns)

    def _select(self, columns: Sequence[str], *, order: bool, limit: int | None) -> SelectStatement:
        return SelectStatement(
            table=self._table,
            columns=self._select_list(columns),
            joins=list(self._joins),
            where=list(self._where),
            or_where=list(self._or_where),
            scope=self._scope(),
            order_by=self._order_by if order else None,
            limit=limit,
        )

    async def _run_aggregate(self, family: AggregateFamily) -> list[dict[str, Any]]:
        stmt = SelectStatement(
            table=self._table,
            columns=list(family.fragments),
            joins=list(self._joins),
            where=list(self._where),
            or_where=list(self._or_where),
            scope=self._scope(),
        )
        result = await self._execute(stmt)
        return result.all()

    async def _materialize(self, rows: list[dict[str, Any]]) -> list[M]:
        joined = [d for d in self._relations if d.is_join]
        instances = hydrate(self._model, rows, joined)
        if instances:
            executor = self._executor_for_call()
            for descriptor in self._relations:
                if not descriptor.is_join:
                    await load_relation(executor, instances, descriptor)
        return instances

    def __repr__(self) -> str:
        return f"<QueryBuilder {self._model.__name__}>"
