from __future__ import annotations

import enum
import sys
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Final, Literal, TypeVar


if sys.version_info >= (3, 11):
    from typing import Self
else:
    from typing_extensions import Self

if TYPE_CHECKING:
    from .conditions import Condition


K = TypeVar("K")
V = TypeVar("V")

JoinKind = Literal["inner", "left", "right"]
ALL_COLUMNS: Final[str] = "*"


class _Missing(enum.Enum):
    MISSING = enum.auto()

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING: Final = _Missing.MISSING
"""Marker for "no value at all", distinct from ``None`` (SQL NULL)."""


class frozendict(Mapping[K, V]):  # noqa: N801
    """Immutable, hashable mapping.

    Used for the read-only parts of the model registry (relationship tables,
    callback chains, validation rules) so they cannot be mutated once a model
    class has been built.

    Example:
        >>> fd = frozendict({"posts": 1})
        >>> fd.copy(profile=2)
        <frozendict {'posts': 1, 'profile': 2}>
    """

    __slots__ = ("_dict", "_hash")

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        self._dict: dict[K, V] = dict(*args, **kwargs)
        self._hash: int | None = None

    def __getitem__(self, key: K) -> V:
        return self._dict[key]

    def __contains__(self, key: Any) -> bool:
        return key in self._dict

    def copy(self, **add_or_replace: Any) -> Self:
        """Return a new frozendict with *add_or_replace* merged in."""
        return type(self)(self, **add_or_replace)

    def __iter__(self) -> Iterator[K]:
        return iter(self._dict)

    def __len__(self) -> int:
        return len(self._dict)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self._dict!r}>"

    def __eq__(self, other: object) -> bool:
        if isinstance(other, frozendict):
            return self._dict == other._dict

        if isinstance(other, dict):
            return self._dict == other

        return NotImplemented

    def __hash__(self) -> int:
        # Computed lazily: values such as tuples of callables are hashable,
        # but unhashable values must not break construction.
        if self._hash is None:
            self._hash = hash(frozenset(self._dict.items()))

        return self._hash


@dataclass(slots=True, frozen=True)
class JoinClause:
    kind: JoinKind
    target: str
    on: str


@dataclass(slots=True)
class QueryDescription:
    """Everything one builder has accumulated for a single query."""

    table: str
    columns: list[str] = field(default_factory=list)
    distinct: bool = False
    conditions: list[Condition] = field(default_factory=list)
    joins: list[JoinClause] = field(default_factory=list)
    group_by: list[str] = field(default_factory=list)
    having: list[tuple[str, tuple[Any, ...]]] = field(default_factory=list)
    order_by: list[tuple[str, str]] = field(default_factory=list)
    limit: int | None = None
    offset: int | None = None

    @property
    def selected_columns(self) -> list[str]:
        return self.columns or [ALL_COLUMNS]

    def copy(self) -> QueryDescription:
        return QueryDescription(
            table=self.table,
            columns=list(self.columns),
            distinct=self.distinct,
            conditions=list(self.conditions),
            joins=list(self.joins),
            group_by=list(self.group_by),
            having=list(self.having),
            order_by=list(self.order_by),
            limit=self.limit,
            offset=self.offset,
        )
