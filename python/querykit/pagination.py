"""Paginated query results."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from querykit.exceptions import ValidationError

T = TypeVar("T")


@dataclass
class Paginated(Generic[T]):
    """One page of results plus the numbers needed to render a pager."""

    data: list[T] = field(default_factory=list)
    total: int = 0
    per_page: int = 0
    current_page: int = 1
    last_page: int = 0
    count: int = 0

    @property
    def has_more(self) -> bool:
        return self.current_page < self.last_page

    def to_dict(self) -> dict[str, Any]:
        return {
            "data": [item.to_dict() if hasattr(item, "to_dict") else item for item in self.data],
            "total": self.total,
            "per_page": self.per_page,
            "current_page": self.current_page,
            "last_page": self.last_page,
            "count": self.count,
        }


def check_page_args(page: Any, per_page: Any) -> None:
    for name, value in (("page", page), ("per_page", per_page)):
        if isinstance(value, bool) or not isinstance(value, int) or value < 1:
            raise ValidationError(f"{name} must be an integer >= 1, got {value!r}")


def page_offset(page: int, per_page: int) -> int:
    return (page - 1) * per_page


def last_page(total: int, per_page: int) -> int:
    return math.ceil(total / per_page)
