from __future__ import annotations

import re
from collections.abc import Hashable, Iterable
from functools import lru_cache
from typing import Any, TypeVar


_H = TypeVar("_H", bound=Hashable)

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])|(?<=[A-Z])(?=[A-Z][a-z])")


def snake_case(name: str) -> str:
    """Convert ``CamelCase`` to ``camel_case``.

    Example:
        >>> snake_case("BlogPost")
        'blog_post'
    """
    return _CAMEL_BOUNDARY.sub("_", name).lower()


def pluralize(word: str) -> str:
    """Pluralize with the simple trailing-``s`` rule used for table names."""
    return f"{word}s"


def singularize(word: str) -> str:
    """Inverse of :func:`pluralize`: drop one trailing ``s``."""
    return word[:-1] if word.endswith("s") and len(word) > 1 else word


@lru_cache
def _table_name_for(class_name: str) -> str:
    return pluralize(snake_case(class_name))


def table_name_for(model: type) -> str:
    """Get the conventional table name for a model class.

    Prefers an explicit ``__tablename__``; otherwise the lower-snake class name
    with a trailing ``s``.

    Args:
        model: Record subclass.

    Returns:
        The table name as a string.
    """
    explicit = model.__dict__.get("__tablename__")
    if explicit:
        return explicit

    return _table_name_for(model.__name__)


def foreign_key_for(table: str) -> str:
    """Conventional foreign key pointing at *table*: ``users`` -> ``user_id``."""
    return f"{singularize(table)}_id"


def is_blank(value: Any) -> bool:
    """``None`` and empty strings count as an absent primary key."""
    return value is None or (isinstance(value, str) and not value.strip())


def unique_values(values: Iterable[_H | None]) -> list[_H]:
    """Distinct non-null *values* in first-seen order."""
    seen: set[_H] = set()
    out: list[_H] = []
    for value in values:
        if value is None or value in seen:
            continue
        seen.add(value)
        out.append(value)

    return out


def table_name_cache_clear() -> None:
    """Clear the table-name convention cache."""
    _table_name_for.cache_clear()
