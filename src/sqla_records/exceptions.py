from __future__ import annotations

from collections.abc import Sequence
from typing import Any


class RecordsError(Exception):
    """Base class for every error raised by sqla_records."""


class InvalidOperator(RecordsError, ValueError):  # noqa: N818
    """A condition mapping carries zero, several or unknown operator keys."""

    def __init__(self, column: str, keys: Sequence[str]) -> None:
        self.column = column
        self.keys = tuple(keys)
        if not self.keys:
            detail = "no operator key"
        else:
            detail = f"keys {list(self.keys)!r}"
        super().__init__(
            f"Condition on {column!r} must carry exactly one operator, got {detail}"
        )


class InvalidValue(RecordsError, ValueError):  # noqa: N818
    """A builder argument has the wrong shape (limit, offset, between arity...)."""


class InvalidRelationship(RecordsError, ValueError):  # noqa: N818
    """A relationship name or one segment of a dotted path is unknown."""

    def __init__(self, model: type, path: str, segment: str, position: int) -> None:
        self.model = model
        self.path = path
        self.segment = segment
        self.position = position
        super().__init__(
            f"No relationship {segment!r} on {model.__name__} "
            f"(segment {position} of {path!r})"
        )


class PersistenceError(RecordsError):
    """The database driver rejected a statement.

    The original driver exception is chained as ``__cause__``.
    """

    def __init__(
        self,
        message: str,
        *,
        sql: str,
        bindings: Sequence[Any],
        datasource: str,
    ) -> None:
        self.sql = sql
        self.bindings = list(bindings)
        self.datasource = datasource
        super().__init__(f"{message} [datasource={datasource!r}] SQL: {sql} | Params: {self.bindings}")


class RecordNotFound(RecordsError, LookupError):  # noqa: N818
    """A finder that must return a record found nothing."""


class ConfigurationError(RecordsError, RuntimeError):
    """The model registry is missing, unconfigured or cannot resolve a target."""
