"""Table-name inflection helpers."""

from __future__ import annotations

import re

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)?$")

_IRREGULAR = {
    "person": "people",
    "child": "children",
    "man": "men",
    "woman": "women",
    "mouse": "mice",
    "goose": "geese",
    "tooth": "teeth",
    "foot": "feet",
}
_IRREGULAR_SINGULAR = {plural: singular for singular, plural in _IRREGULAR.items()}
_UNCOUNTABLE = {"data", "equipment", "information", "news", "series", "species", "metadata"}


def pluralize(word: str) -> str:
    """Plural form of an English noun.

    Example:
        >>> pluralize("category")
        'categories'
        >>> pluralize("box")
        'boxes'
    """
    lower = word.lower()
    if lower in _UNCOUNTABLE or lower in _IRREGULAR_SINGULAR:
        return word
    if lower in _IRREGULAR:
        return _IRREGULAR[lower]
    if re.search(r"[^aeiou]y$", lower):
        return word[:-1] + "ies"
    if re.search(r"(s|x|z|ch|sh)$", lower):
        return word + "es"
    return word + "s"


def singularize(word: str) -> str:
    """Singular form of an English noun; singular input is returned as-is.

    Example:
        >>> singularize("categories")
        'category'
        >>> singularize("user")
        'user'
    """
    lower = word.lower()
    if lower in _UNCOUNTABLE or lower in _IRREGULAR:
        return word
    if lower in _IRREGULAR_SINGULAR:
        return _IRREGULAR_SINGULAR[lower]
    if re.search(r"[^aeiou]ies$", lower):
        return word[:-3] + "y"
    if re.search(r"(ss|x|z|ch|sh)es$", lower):
        return word[:-2]
    if lower.endswith(("ss", "us", "is")):
        return word
    if lower.endswith("s"):
        return word[:-1]
    return word


def table_name_for(class_name: str) -> str:
    """Derive a table name from a model class name.

    A trailing ``Model`` is dropped, the rest is snake_cased and pluralized.

    Example:
        >>> table_name_for("ProductModel")
        'products'
        >>> table_name_for("OrderItem")
        'order_items'
    """
    base = re.sub(r"Model$", "", class_name) or class_name
    snake = re.sub(r"(?<!^)(?=[A-Z])", "_", base).lower()
    head, _, last = snake.rpartition("_")
    return f"{head}_{pluralize(last)}" if head else pluralize(last)


def is_identifier(name: str) -> bool:
    """Whether ``name`` is a bare or ``table.column`` SQL identifier."""
    return bool(_IDENTIFIER_RE.match(name))
