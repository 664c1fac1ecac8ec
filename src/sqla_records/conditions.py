"""Hash-shaped conditions translated into SQL fragments.

``where({"age": {"gte": 18}})`` becomes ``Gte("age", 18)`` which compiles to
``age >= ?`` with one binding.  Every condition carries exactly one operator;
the variant class *is* the operator.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import Any, ClassVar, Final

from .exceptions import InvalidOperator, InvalidValue


Qualifier = Callable[[str], str]


def _as_is(column: str) -> str:
    return column


@dataclass(slots=True, frozen=True)
class Condition:
    column: str

    operator: ClassVar[str] = ""

    @property
    def bindings(self) -> tuple[Any, ...]:
        return ()

    def to_sql(self, qualify: Qualifier = _as_is) -> tuple[str, list[Any]]:
        raise NotImplementedError


@dataclass(slots=True, frozen=True)
class _Comparison(Condition):
    value: Any

    sql_operator: ClassVar[str] = "="

    @property
    def bindings(self) -> tuple[Any, ...]:
        return (self.value,)

    def to_sql(self, qualify: Qualifier = _as_is) -> tuple[str, list[Any]]:
        return f"{qualify(self.column)} {self.sql_operator} ?", [self.value]


@dataclass(slots=True, frozen=True)
class Eq(_Comparison):
    operator: ClassVar[str] = "eq"
    sql_operator: ClassVar[str] = "="


@dataclass(slots=True, frozen=True)
class Ne(_Comparison):
    operator: ClassVar[str] = "ne"
    sql_operator: ClassVar[str] = "<>"


@dataclass(slots=True, frozen=True)
class Gt(_Comparison):
    operator: ClassVar[str] = "gt"
    sql_operator: ClassVar[str] = ">"


@dataclass(slots=True, frozen=True)
class Gte(_Comparison):
    operator: ClassVar[str] = "gte"
    sql_operator: ClassVar[str] = ">="


@dataclass(slots=True, frozen=True)
class Lt(_Comparison):
    operator: ClassVar[str] = "lt"
    sql_operator: ClassVar[str] = "<"


@dataclass(slots=True, frozen=True)
class Lte(_Comparison):
    operator: ClassVar[str] = "lte"
    sql_operator: ClassVar[str] = "<="


@dataclass(slots=True, frozen=True)
class Like(_Comparison):
    operator: ClassVar[str] = "like"
    sql_operator: ClassVar[str] = "LIKE"


@dataclass(slots=True, frozen=True)
class In(Condition):
    values: tuple[Any, ...]

    operator: ClassVar[str] = "in"
    sql_operator: ClassVar[str] = "IN"
    empty_sql: ClassVar[str] = "1 = 0"

    @property
    def bindings(self) -> tuple[Any, ...]:
        return self.values

    def to_sql(self, qualify: Qualifier = _as_is) -> tuple[str, list[Any]]:
        # IN () is not valid SQL; an empty set matches nothing (NOT IN: everything).
        if not self.values:
            return self.empty_sql, []

        placeholders = ", ".join("?" for _ in self.values)
        return f"{qualify(self.column)} {self.sql_operator} ({placeholders})", list(self.values)


@dataclass(slots=True, frozen=True)
class NotIn(In):
    operator: ClassVar[str] = "notIn"
    sql_operator: ClassVar[str] = "NOT IN"
    empty_sql: ClassVar[str] = "1 = 1"


@dataclass(slots=True, frozen=True)
class Between(Condition):
    low: Any
    high: Any

    operator: ClassVar[str] = "between"

    @property
    def bindings(self) -> tuple[Any, ...]:
        return (self.low, self.high)

    def to_sql(self, qualify: Qualifier = _as_is) -> tuple[str, list[Any]]:
        return f"{qualify(self.column)} BETWEEN ? AND ?", [self.low, self.high]


@dataclass(slots=True, frozen=True)
class IsNull(Condition):
    operator: ClassVar[str] = "isNull"

    def to_sql(self, qualify: Qualifier = _as_is) -> tuple[str, list[Any]]:
        return f"{qualify(self.column)} IS NULL", []


@dataclass(slots=True, frozen=True)
class NotNull(Condition):
    operator: ClassVar[str] = "notNull"

    def to_sql(self, qualify: Qualifier = _as_is) -> tuple[str, list[Any]]:
        return f"{qualify(self.column)} IS NOT NULL", []


@dataclass(slots=True, frozen=True)
class Raw(Condition):
    """A caller-written fragment, parenthesised and ANDed in as-is."""

    sql: str = ""
    values: tuple[Any, ...] = ()

    @property
    def bindings(self) -> tuple[Any, ...]:
        return self.values

    def to_sql(self, qualify: Qualifier = _as_is) -> tuple[str, list[Any]]:
        return f"({self.sql})", list(self.values)


def _sequence(column: str, operator: str, value: Any) -> tuple[Any, ...]:
    if isinstance(value, (str, bytes, Mapping)) or not isinstance(value, Iterable):
        raise InvalidValue(
            f"Operator {operator!r} on {column!r} expects a sequence of values, got {value!r}"
        )

    return tuple(value)


def _between(column: str, value: Any) -> Between:
    values = _sequence(column, "between", value)
    if len(values) != 2:  # noqa: PLR2004
        raise InvalidValue(
            f"Operator 'between' on {column!r} expects exactly 2 values, got {len(values)}"
        )

    return Between(column, *values)


_OPERATORS: Final[dict[str, Callable[[str, Any], Condition]]] = {
    "eq": Eq,
    "ne": Ne,
    "gt": Gt,
    "gte": Gte,
    "lt": Lt,
    "lte": Lte,
    "like": Like,
    "in": lambda column, value: In(column, _sequence(column, "in", value)),
    "notIn": lambda column, value: NotIn(column, _sequence(column, "notIn", value)),
    "between": _between,
    "isNull": lambda column, _: IsNull(column),
    "notNull": lambda column, _: NotNull(column),
}
_ALIASES: Final[dict[str, str]] = {
    "not_in": "notIn",
    "is_null": "isNull",
    "not_null": "notNull",
}

OPERATORS: Final[frozenset[str]] = frozenset((*_OPERATORS, *_ALIASES))


def translate(column: str, value: Any) -> Condition:
    """Translate one ``where`` entry into a condition.

    Args:
        column: Column name (may be table-qualified).
        value: A plain value (equality), ``None`` (``IS NULL``), a list/tuple
            (``IN``) or a single-key operator mapping such as ``{"gte": 18}``.

    Returns:
        The condition variant for the operator.

    Raises:
        InvalidOperator: The mapping has zero, several or unknown keys.
        InvalidValue: The operator's value has the wrong shape.
    """
    if isinstance(value, Mapping):
        keys = list(value)
        if len(keys) != 1 or keys[0] not in OPERATORS:
            raise InvalidOperator(column, keys)

        key = keys[0]
        return _OPERATORS[_ALIASES.get(key, key)](column, value[key])

    if value is None:
        return IsNull(column)

    if isinstance(value, (list, tuple, set, frozenset)):
        return In(column, tuple(value))

    return Eq(column, value)


def translate_all(conditions: Mapping[str, Any]) -> list[Condition]:
    """Translate every entry of a ``where`` mapping, in iteration order."""
    return [translate(column, value) for column, value in conditions.items()]
