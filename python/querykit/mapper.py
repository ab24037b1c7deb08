"""Rows to model instances."""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING, Any, TypeVar

from querykit.relationships import RelationDescriptor

if TYPE_CHECKING:
    from querykit.base import Model

M = TypeVar("M", bound="Model")


def hydrate(model: type[M], rows: Sequence[dict[str, Any]], joined: Sequence[RelationDescriptor] = ()) -> list[M]:
    """Build one instance per row, nesting joined belongs-to columns.

    For every joined relation the ``{alias}_{column}`` select-list columns are
    removed from the row and attached as ``instance.{alias}``: a dict of the
    related columns, or ``None`` when every joined value is null (no match on
    the LEFT JOIN).
    """
    instances: list[M] = []
    for row in rows:
        data = dict(row)
        nested: list[tuple[str, dict[str, Any] | None]] = []
        for descriptor in joined:
            related: dict[str, Any] = {}
            has_data = False
            for col in descriptor.columns:
                value = data.pop(f"{descriptor.singular_alias}_{col}", None)
                related[col] = value
                if value is not None:
                    has_data = True
            nested.append((descriptor.attribute, related if has_data else None))

        instance = model._from_row(data)
        for name, value in nested:
            instance._set_relationship(name, value)
        instances.append(instance)
    return instances
