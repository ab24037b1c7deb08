"""Mixins for common model patterns."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any, ClassVar


class SoftDeleteMixin:
    """Mixin that adds soft delete functionality to models.

    Records with ``deleted_at IS NOT NULL`` are excluded from normal queries
    by default. The table must carry a nullable timestamp column named by
    ``__deleted_at__``.

    The mixin provides:
    - `is_deleted` property to check deletion status
    - Auto-filtering in queries to exclude soft-deleted records
    - `with_deleted()` to include soft-deleted records
    - `only_deleted()` to query only soft-deleted records

    Example:
        >>> from querykit import Model
        >>> from querykit.mixins import SoftDeleteMixin
        >>>
        >>> class Article(SoftDeleteMixin, Model):
        ...     __tablename__ = "articles"
        >>>
        >>> # Normal queries exclude deleted
        >>> articles = await Article.get()
        >>>
        >>> # Include deleted records
        >>> all_articles = await Article.with_deleted().get()
        >>>
        >>> # Only deleted records
        >>> deleted = await Article.only_deleted().get()
        >>>
        >>> # Soft delete / restore
        >>> await Article.soft_delete(1)
        >>> await Article.restore(1)
    """

    __soft_delete__: ClassVar[bool] = True
    __deleted_at__: ClassVar[str] = "deleted_at"

    @property
    def is_deleted(self) -> bool:
        """Check if this instance is soft-deleted."""
        return getattr(self, type(self).__deleted_at__, None) is not None

    def mark_deleted(self) -> None:
        """Mark this instance as deleted (sets deleted_at to now) without saving."""
        setattr(self, type(self).__deleted_at__, deleted_at_now())

    def mark_restored(self) -> None:
        """Clear the deletion marker without saving."""
        setattr(self, type(self).__deleted_at__, None)


def deleted_at_now() -> str:
    """Current UTC time formatted for a TEXT/DATETIME column."""
    return datetime.now(UTC).strftime("%Y-%m-%d %H:%M:%S")


def soft_delete_scope(model: Any, *, include_deleted: bool, only_deleted: bool) -> str | None:
    """The always-applied WHERE fragment for a soft-delete model, if any."""
    if not getattr(model, "__soft_delete__", False):
        return None
    column = f"{model.get_table()}.{model.__deleted_at__}"
    if only_deleted:
        return f"{column} IS NOT NULL"
    if include_deleted:
        return None
    return f"{column} IS NULL"
