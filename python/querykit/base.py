"""Declarative base for query models."""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from typing import TYPE_CHECKING, Any, ClassVar

from querykit import mutations
from querykit.builder import QueryBuilder
from querykit.database import get_database
from querykit.exceptions import ValidationError
from querykit.naming import is_identifier, table_name_for
from querykit.relationships import (
    RelationDescriptor,
    RelationFactory,
    belongs_to,
    belongs_to_many,
    has_many,
    has_one,
)

if TYPE_CHECKING:
    from querykit.database import Database, Executor
    from querykit.mutations import CreateHandle, UpdateResult
    from querykit.pagination import Paginated


class ModelMeta(type):
    """Metaclass that fills in table metadata and the relation registry."""

    def __new__(
        mcs,
        name: str,
        bases: tuple[type, ...],
        namespace: dict[str, Any],
        **kwargs: Any,
    ) -> ModelMeta:
        cls = super().__new__(mcs, name, bases, namespace, **kwargs)

        # Skip processing for the Model class itself
        if not any(isinstance(b, ModelMeta) for b in bases):
            cls.__relations__ = {}  # type: ignore[attr-defined]
            return cls

        tablename = namespace.get("__tablename__") or table_name_for(name)
        if not is_identifier(tablename) or "." in tablename:
            raise ValidationError(f"Invalid table name for {name}: {tablename!r}")
        cls.__tablename__ = tablename  # type: ignore[attr-defined]

        primary_key = getattr(cls, "__primary_key__", "id")
        if not is_identifier(primary_key) or "." in primary_key:
            raise ValidationError(f"Invalid primary key for {name}: {primary_key!r}")

        # Inherited relations first, then the ones declared on this class
        relations: dict[str, RelationFactory] = {}
        for base in reversed(bases):
            relations.update(getattr(base, "__relations__", {}))
        for attr_name, attr_value in namespace.items():
            if isinstance(attr_value, RelationFactory):
                relations[attr_name] = attr_value
        cls.__relations__ = relations  # type: ignore[attr-defined]

        return cls


class Model(metaclass=ModelMeta):
    """Base class for all models.

    A model only describes where its rows live; columns are whatever the
    table returns.

    Example:
        >>> class Product(Model):
        ...     __tablename__ = "products"
        ...
        ...     @relation
        ...     def category(cls):
        ...         return cls.belongs_to(Category, ["name"])
        >>>
        >>> products = await Product.where({"price": (">", 10)}).with_("category").get()
        >>> products[0].category
        {'name': 'Lamps'}
    """

    __tablename__: ClassVar[str]
    __primary_key__: ClassVar[str] = "id"
    __relations__: ClassVar[dict[str, RelationFactory]]
    __database__: ClassVar[Database | None] = None

    _loaded_relationships: dict[str, Any]

    def __init__(self, **values: Any) -> None:
        """Initialize a model instance with the given column values."""
        object.__setattr__(self, "_loaded_relationships", {})
        for key, value in values.items():
            setattr(self, key, value)

    def __repr__(self) -> str:
        pk = self.__primary_key__
        if pk in self.__dict__:
            return f"<{self.__class__.__name__} {pk}={self.__dict__[pk]!r}>"
        return f"<{self.__class__.__name__}>"

    def __getattr__(self, name: str) -> Any:
        """Explain access to a relation that was not eager-loaded."""
        if not name.startswith("_") and name in type(self).__relations__:
            raise AttributeError(
                f"Relationship '{name}' is not loaded. Use {type(self).__name__}.with_({name!r})."
            )
        raise AttributeError(f"'{type(self).__name__}' object has no attribute '{name}'")

    def _set_relationship(self, name: str, value: Any) -> None:
        """Attach loaded relation data as ``self.<name>``."""
        try:
            loaded = object.__getattribute__(self, "_loaded_relationships")
        except AttributeError:
            loaded = {}
            object.__setattr__(self, "_loaded_relationships", loaded)
        loaded[name] = value
        # Instance dict shadows the relation factory of the same name
        self.__dict__[name] = value

    def to_dict(self, include_relationships: bool = False) -> dict[str, Any]:
        """Convert model instance to a dictionary."""
        loaded = self.__dict__.get("_loaded_relationships", {})
        result = {
            key: value
            for key, value in self.__dict__.items()
            if not key.startswith("_") and key not in loaded
        }
        if include_relationships:
            for name, value in loaded.items():
                result[name] = [dict(v) for v in value] if isinstance(value, list) else value
        return result

    @classmethod
    def _from_row(cls, data: Mapping[str, Any]) -> Model:
        """Create an instance from a database row without running __init__."""
        instance = object.__new__(cls)
        object.__setattr__(instance, "_loaded_relationships", {})
        instance.__dict__.update(data)
        return instance

    # ========== Metadata ==========

    @classmethod
    def get_table(cls) -> str:
        return cls.__tablename__

    @classmethod
    def get_primary_key(cls) -> str:
        return cls.__primary_key__

    @classmethod
    def database(cls) -> Database:
        """The database bound with ``__database__``, else the process-wide one."""
        return cls.__database__ or get_database()

    # ========== Relation helpers ==========

    @classmethod
    def belongs_to(
        cls,
        related: type[Model],
        columns: Sequence[str],
        foreign_key: str | None = None,
    ) -> RelationDescriptor:
        return belongs_to(cls, related, columns, foreign_key)

    @classmethod
    def has_many(
        cls,
        related: type[Model],
        columns: Sequence[str],
        foreign_key: str | None = None,
    ) -> RelationDescriptor:
        return has_many(cls, related, columns, foreign_key)

    @classmethod
    def has_one(
        cls,
        related: type[Model],
        columns: Sequence[str],
        foreign_key: str | None = None,
    ) -> RelationDescriptor:
        return has_one(cls, related, columns, foreign_key)

    @classmethod
    def belongs_to_many(
        cls,
        related: type[Model],
        columns: Sequence[str],
        pivot_table: str | None = None,
        foreign_key: str | None = None,
        related_key: str | None = None,
    ) -> RelationDescriptor:
        return belongs_to_many(cls, related, columns, pivot_table, foreign_key, related_key)

    @classmethod
    def register_relation(cls, name: str, factory: Callable[[type[Model]], RelationDescriptor]) -> None:
        """Register a relation outside the class body.

        Example:
            >>> User.register_relation("posts", lambda cls: cls.has_many(Post, ["id", "title"]))
        """
        if not isinstance(factory, RelationFactory):
            wrapped = RelationFactory(factory)
            wrapped.name = name
            factory = wrapped
        cls.__relations__ = {**cls.__relations__, name: factory}

    # ========== Query entry points ==========

    @classmethod
    def query(cls, conn: Executor | None = None) -> QueryBuilder[Any]:
        """A fresh builder, optionally bound to a transaction connection."""
        return QueryBuilder(cls, conn)

    @classmethod
    def where(cls, conditions: Mapping[str, Any]) -> QueryBuilder[Any]:
        return cls.query().where(conditions)

    @classmethod
    def with_(cls, *names: str) -> QueryBuilder[Any]:
        return cls.query().with_(*names)

    @classmethod
    def order_by(cls, column: str, direction: str = "ASC") -> QueryBuilder[Any]:
        return cls.query().order_by(column, direction)

    @classmethod
    def limit(cls, n: int) -> QueryBuilder[Any]:
        return cls.query().limit(n)

    @classmethod
    def with_deleted(cls) -> QueryBuilder[Any]:
        return cls.query().with_deleted()

    @classmethod
    def only_deleted(cls) -> QueryBuilder[Any]:
        return cls.query().only_deleted()

    @classmethod
    def min(cls, column: str, conditions: Mapping[str, Any] | None = None, alias: str | None = None) -> QueryBuilder[Any]:
        return cls.query().min(column, conditions, alias)

    @classmethod
    def max(cls, column: str, conditions: Mapping[str, Any] | None = None, alias: str | None = None) -> QueryBuilder[Any]:
        return cls.query().max(column, conditions, alias)

    @classmethod
    def count(cls, column: str = "*", conditions: Mapping[str, Any] | None = None, alias: str | None = None) -> QueryBuilder[Any]:
        return cls.query().count(column, conditions, alias)

    @classmethod
    def sum(cls, column: str, conditions: Mapping[str, Any] | None = None, alias: str | None = None) -> QueryBuilder[Any]:
        return cls.query().sum(column, conditions, alias)

    @classmethod
    def avg(cls, column: str, conditions: Mapping[str, Any] | None = None, alias: str | None = None) -> QueryBuilder[Any]:
        return cls.query().avg(column, conditions, alias)

    @classmethod
    async def get(cls, columns: Sequence[str] = ("*",)) -> list[Any]:
        return await cls.query().get(columns)

    @classmethod
    async def get_one(cls, columns: Sequence[str] = ("*",)) -> Any:
        return await cls.query().get_one(columns)

    @classmethod
    async def find(cls, pk: Any, columns: Sequence[str] = ("*",)) -> Any:
        return await cls.query().find(pk, columns)

    @classmethod
    async def pluck(cls, column: str) -> list[Any]:
        return await cls.query().pluck(column)

    @classmethod
    async def paginate(cls, page: int, per_page: int, columns: Sequence[str] = ("*",)) -> Paginated[Any]:
        return await cls.query().paginate(page, per_page, columns)

    @classmethod
    async def exist(cls) -> bool:
        return await cls.query().exist()

    @classmethod
    async def group_by(cls, *columns: str) -> list[dict[str, Any]]:
        return await cls.query().group_by(*columns)

    @classmethod
    async def raw(
        cls,
        sql: str,
        params: Sequence[Any] = (),
        as_model: bool = True,
        conn: Executor | None = None,
    ) -> list[Any]:
        """Run hand-written SQL.

        Rows become instances of this model unless ``as_model`` is False, in
        which case the plain dicts are returned.

        Example:
            >>> await Product.raw("SELECT * FROM products WHERE price > ?", [10])
        """
        executor = mutations.resolve_executor(cls, conn)
        result = await executor.query(sql, list(params))
        if not as_model:
            return result.all()
        return [cls._from_row(row) for row in result]

    # ========== Mutations ==========

    @classmethod
    async def create(cls, data: Mapping[str, Any], conn: Executor | None = None) -> CreateHandle:
        """Insert a row.

        Example:
            >>> handle = await Product.create({"name": "Lamp", "price": 30})
            >>> await handle.reload()
            <Product id=1>
        """
        return await mutations.create(cls, data, conn)

    @classmethod
    async def update(cls, pk: Any, data: Mapping[str, Any], conn: Executor | None = None) -> UpdateResult:
        return await mutations.update(cls, pk, data, conn)

    @classmethod
    async def delete(cls, pk: Any, conn: Executor | None = None) -> bool:
        return await mutations.delete(cls, pk, conn)

    @classmethod
    async def soft_delete(cls, pk: Any, conn: Executor | None = None) -> bool:
        """Soft-delete by primary key; requires SoftDeleteMixin."""
        return await mutations.soft_delete(cls, pk, conn)

    @classmethod
    async def restore(cls, pk: Any, conn: Executor | None = None) -> bool:
        return await mutations.restore(cls, pk, conn)
