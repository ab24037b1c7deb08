"""Relationship definitions and eager loading for models.

Relations are declared as decorated classmethods and collected into a
per-model registry when the class is created:

    >>> class Product(Model):
    ...     @relation
    ...     def category(cls):
    ...         return cls.belongs_to(Category, ["name"])

``Product.with_("category")`` then looks the name up in
``Product.__relations__`` and invokes the factory to get a fresh
:class:`RelationDescriptor`.
"""

from __future__ import annotations

import enum
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from querykit.exceptions import ValidationError
from querykit.naming import is_identifier, singularize
from querykit.query import Fragment, Join, SelectStatement

if TYPE_CHECKING:
    from querykit.base import Model
    from querykit.database import Executor


class RelationKind(enum.Enum):
    BELONGS_TO = "belongs_to"
    HAS_MANY = "has_many"
    HAS_ONE = "has_one"
    BELONGS_TO_MANY = "belongs_to_many"


@dataclass(frozen=True)
class RelationDescriptor:
    """Resolved metadata describing how to join or fetch a related table.

    For ``BELONGS_TO``, ``foreign_key`` lives on the owning table and points
    at ``related_table.primary_key``. For ``HAS_MANY``/``HAS_ONE`` it lives on
    the related table and points at ``owner.local_key``. For
    ``BELONGS_TO_MANY`` the pivot table carries ``pivot_foreign_key`` (owner)
    and ``pivot_related_key`` (related).
    """

    kind: RelationKind
    related_model: type[Model]
    related_table: str
    foreign_key: str
    primary_key: str
    singular_alias: str
    columns: tuple[str, ...]
    local_key: str
    pivot_table: str | None = None
    pivot_foreign_key: str | None = None
    pivot_related_key: str | None = None

    @property
    def is_join(self) -> bool:
        """Whether the relation is loaded in the same SELECT via a JOIN."""
        return self.kind is RelationKind.BELONGS_TO

    @property
    def attribute(self) -> str:
        """Instance attribute that receives the loaded data."""
        if self.kind in (RelationKind.BELONGS_TO, RelationKind.HAS_ONE):
            return self.singular_alias
        return self.related_table

    def select_columns(self) -> list[str]:
        if self.columns == ("*",):
            return [f"{self.related_table}.*"]
        return [f"{self.related_table}.{c}" for c in self.columns]


class RelationFactory:
    """A relation-definition classmethod registered under its name."""

    def __init__(self, func: Callable[[type[Model]], RelationDescriptor]) -> None:
        self.func = func
        self.name = func.__name__
        self.__doc__ = func.__doc__

    def __set_name__(self, owner: type, name: str) -> None:
        self.name = name

    def __get__(self, instance: Any, owner: type[Model]) -> Callable[[], RelationDescriptor]:
        if instance is not None:
            # Falls through to Model.__getattr__ until the relation is loaded
            raise AttributeError(self.name)
        return lambda: self.func(owner)

    def __call__(self, model: type[Model]) -> RelationDescriptor:
        return self.func(model)

    def __repr__(self) -> str:
        return f"<RelationFactory {self.name}>"


def relation(func: Callable[[type[Model]], RelationDescriptor]) -> RelationFactory:
    """Register a classmethod as a relation definition.

    Example:
        >>> class User(Model):
        ...     @relation
        ...     def posts(cls):
        ...         return cls.has_many(Post, ["id", "title"])
    """
    return RelationFactory(func)


def resolve_relations(model: type[Model], names: Sequence[str]) -> list[RelationDescriptor]:
    """Build a descriptor for each relation name from the model's registry.

    Descriptors are rebuilt on every call; nothing is cached.
    """
    descriptors: list[RelationDescriptor] = []
    registry = model.__relations__
    for name in names:
        factory = registry.get(name)
        if factory is None:
            raise ValidationError(f"{model.__name__} has no relation named {name!r}")
        descriptor = factory(model)
        if not isinstance(descriptor, RelationDescriptor):
            raise ValidationError(
                f"Relation {model.__name__}.{name} must return a RelationDescriptor, "
                f"got {type(descriptor).__name__}"
            )
        descriptors.append(descriptor)
    return descriptors


# ========== Descriptor constructors ==========

def _columns(columns: Sequence[str]) -> tuple[str, ...]:
    cols = tuple(columns)
    if not cols:
        raise ValidationError("A relation needs at least one column to select.")
    for col in cols:
        if col != "*" and (not is_identifier(col) or "." in col):
            raise ValidationError(f"Invalid relation column: {col!r}")
    return cols


def belongs_to(
    owner: type[Model],
    related: type[Model],
    columns: Sequence[str],
    foreign_key: str | None = None,
) -> RelationDescriptor:
    """The owner row holds a key pointing at one related row.

    Default foreign key: ``{singular related table}_{related primary key}``.
    """
    cols = _columns(columns)
    if "*" in cols:
        raise ValidationError("belongs_to needs explicit columns, '*' cannot be aliased.")
    related_table = related.get_table()
    singular = singularize(related_table)
    fk = foreign_key or f"{singular}_{related.get_primary_key()}"
    clashing = [col for col in cols if f"{singular}_{col}" == fk]
    if clashing:
        raise ValidationError(
            f"belongs_to column {clashing[0]!r} would be selected as {fk!r}, hiding the foreign key; "
            "leave it out or pass a different foreign_key."
        )
    return RelationDescriptor(
        kind=RelationKind.BELONGS_TO,
        related_model=related,
        related_table=related_table,
        foreign_key=fk,
        primary_key=related.get_primary_key(),
        singular_alias=singular,
        columns=cols,
        local_key=fk,
    )


def _has(
    kind: RelationKind,
    owner: type[Model],
    related: type[Model],
    columns: Sequence[str],
    foreign_key: str | None,
) -> RelationDescriptor:
    related_table = related.get_table()
    own_pk = owner.get_primary_key()
    fk = foreign_key or f"{singularize(owner.get_table())}_{own_pk}"
    return RelationDescriptor(
        kind=kind,
        related_model=related,
        related_table=related_table,
        foreign_key=fk,
        primary_key=related.get_primary_key(),
        singular_alias=singularize(related_table),
        columns=_columns(columns),
        local_key=own_pk,
    )


def has_many(
    owner: type[Model],
    related: type[Model],
    columns: Sequence[str],
    foreign_key: str | None = None,
) -> RelationDescriptor:
    """Many related rows hold a key pointing at the owner.

    Default foreign key: ``{singular owner table}_{owner primary key}``.
    """
    return _has(RelationKind.HAS_MANY, owner, related, columns, foreign_key)


def has_one(
    owner: type[Model],
    related: type[Model],
    columns: Sequence[str],
    foreign_key: str | None = None,
) -> RelationDescriptor:
    """Like :func:`has_many`, but only the first related row is attached."""
    return _has(RelationKind.HAS_ONE, owner, related, columns, foreign_key)


def belongs_to_many(
    owner: type[Model],
    related: type[Model],
    columns: Sequence[str],
    pivot_table: str | None = None,
    foreign_key: str | None = None,
    related_key: str | None = None,
) -> RelationDescriptor:
    """Many-to-many through a pivot table.

    Defaults: the pivot table is the two singular table names in alphabetical
    order joined by ``_`` (``product_tag``); pivot columns are
    ``{singular owner}_{owner pk}`` and ``{singular related}_{related pk}``.
    """
    own_singular = singularize(owner.get_table())
    related_table = related.get_table()
    related_singular = singularize(related_table)
    pivot = pivot_table or "_".join(sorted([own_singular, related_singular]))
    pivot_fk = foreign_key or f"{own_singular}_{owner.get_primary_key()}"
    pivot_rk = related_key or f"{related_singular}_{related.get_primary_key()}"
    for name in (pivot, pivot_fk, pivot_rk):
        if not is_identifier(name):
            raise ValidationError(f"Invalid pivot identifier: {name!r}")
    return RelationDescriptor(
        kind=RelationKind.BELONGS_TO_MANY,
        related_model=related,
        related_table=related_table,
        foreign_key=pivot_fk,
        primary_key=related.get_primary_key(),
        singular_alias=related_singular,
        columns=_columns(columns),
        local_key=owner.get_primary_key(),
        pivot_table=pivot,
        pivot_foreign_key=pivot_fk,
        pivot_related_key=pivot_rk,
    )


# ========== Join emission ==========

def join_fragments(owner_table: str, descriptor: RelationDescriptor) -> tuple[list[Fragment], Join]:
    """Aliased select columns and the LEFT JOIN for a belongs-to relation."""
    related = descriptor.related_table
    columns = [
        Fragment(f"{related}.{col} AS {descriptor.singular_alias}_{col}")
        for col in descriptor.columns
    ]
    join = Join(
        table=related,
        left=f"{related}.{descriptor.primary_key}",
        right=f"{owner_table}.{descriptor.foreign_key}",
        kind="LEFT",
    )
    return columns, join


# ========== Secondary fetches ==========

async def load_relation(
    executor: Executor,
    instances: list[Model],
    descriptor: RelationDescriptor,
) -> None:
    """Attach a non-join relation to every instance with batched queries.

    One ``IN (...)`` query is issued per relation (two for many-to-many)
    regardless of how many parent rows there are. Parent order is untouched.
    """
    if descriptor.kind is RelationKind.BELONGS_TO:
        return

    keys = _unique(getattr(inst, descriptor.local_key, None) for inst in instances)

    if descriptor.kind is RelationKind.BELONGS_TO_MANY:
        grouped = await _fetch_many_to_many(executor, descriptor, keys)
    else:
        grouped = await _fetch_by_foreign_key(executor, descriptor, keys)

    for instance in instances:
        related = grouped.get(getattr(instance, descriptor.local_key, None), [])
        if descriptor.kind is RelationKind.HAS_ONE:
            instance._set_relationship(descriptor.attribute, related[0] if related else None)
        else:
            instance._set_relationship(descriptor.attribute, list(related))


async def _fetch_by_foreign_key(
    executor: Executor,
    descriptor: RelationDescriptor,
    keys: list[Any],
) -> dict[Any, list[dict[str, Any]]]:
    if not keys:
        return {}
    table = descriptor.related_table
    fk = descriptor.foreign_key
    fk_alias = "__querykit_fk"
    stmt = SelectStatement(
        table=table,
        columns=[Fragment(c) for c in descriptor.select_columns()]
        + [Fragment(f"{table}.{fk} AS {fk_alias}")],
        where=[Fragment(f"{table}.{fk} IN ({', '.join('?' for _ in keys)})", tuple(keys))],
        order_by=(f"{table}.{descriptor.primary_key}", "ASC"),
    )
    sql, params = stmt.to_sql(executor.dialect)
    result = await executor.query(sql, params)

    grouped: dict[Any, list[dict[str, Any]]] = {}
    for row in result.all():
        owner_key = row.pop(fk_alias)
        grouped.setdefault(owner_key, []).append(row)
    return grouped


async def _fetch_many_to_many(
    executor: Executor,
    descriptor: RelationDescriptor,
    keys: list[Any],
) -> dict[Any, list[dict[str, Any]]]:
    if not keys:
        return {}
    pivot = descriptor.pivot_table
    pivot_fk = descriptor.pivot_foreign_key
    pivot_rk = descriptor.pivot_related_key
    pivot_stmt = SelectStatement(
        table=pivot,  # type: ignore[arg-type]
        columns=[Fragment(f"{pivot}.{pivot_fk} AS owner_key"), Fragment(f"{pivot}.{pivot_rk} AS related_key")],
        where=[Fragment(f"{pivot}.{pivot_fk} IN ({', '.join('?' for _ in keys)})", tuple(keys))],
    )
    sql, params = pivot_stmt.to_sql(executor.dialect)
    pivot_rows = (await executor.query(sql, params)).all()

    related_keys = _unique(row["related_key"] for row in pivot_rows)
    if not related_keys:
        return {}

    table = descriptor.related_table
    pk_alias = "__querykit_pk"
    related_stmt = SelectStatement(
        table=table,
        columns=[Fragment(c) for c in descriptor.select_columns()]
        + [Fragment(f"{table}.{descriptor.primary_key} AS {pk_alias}")],
        where=[
            Fragment(
                f"{table}.{descriptor.primary_key} IN ({', '.join('?' for _ in related_keys)})",
                tuple(related_keys),
            )
        ],
        order_by=(f"{table}.{descriptor.primary_key}", "ASC"),
    )
    sql, params = related_stmt.to_sql(executor.dialect)
    related_by_pk: dict[Any, dict[str, Any]] = {}
    for row in (await executor.query(sql, params)).all():
        related_by_pk[row.pop(pk_alias)] = row

    grouped: dict[Any, list[dict[str, Any]]] = {}
    for row in pivot_rows:
        target = related_by_pk.get(row["related_key"])
        if target is not None:
            grouped.setdefault(row["owner_key"], []).append(dict(target))
    return grouped


def _unique(values: Any) -> list[Any]:
    seen: dict[Any, None] = {}
    for value in values:
        if value is not None:
            seen.setdefault(value, None)
    return list(seen)
