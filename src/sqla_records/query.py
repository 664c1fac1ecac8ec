"""Fluent SQL query builder.

::

    query = (
        QueryBuilder("users")
        .where({"active": True, "age": {"gte": 18}})
        .order_by("name", "ASC")
        .limit(10)
    )
    query.compile()
    # Compiled(sql='SELECT * FROM users WHERE active = ? AND age >= ? ORDER BY name ASC LIMIT 10',
    #          bindings=[True, 18])

Builder methods mutate the builder and return it.  :meth:`QueryBuilder.compile`
does not mutate anything, so compiling twice yields the same SQL and bindings.
Bindings follow the order in which their placeholders appear: ``WHERE`` first,
then ``HAVING``.  ``LIMIT``/``OFFSET`` are validated integers rendered inline.

:class:`ModelQuery` is the model-bound variant returned by ``Model.query()``;
it hydrates records and runs the eager loads requested with ``includes``,
``joins`` and ``preload``.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Callable, Iterable, Mapping, Sequence
from typing import TYPE_CHECKING, Any, Final, NamedTuple

from .conditions import Condition, Raw, translate_all
from .datastructures import ALL_COLUMNS, MISSING, JoinClause, JoinKind, QueryDescription
from .eager import EagerLoadPlan, materialize
from .exceptions import ConfigurationError, InvalidValue


if sys.version_info >= (3, 11):
    from typing import Self
else:
    from typing_extensions import Self

if TYPE_CHECKING:
    from .executor import ExecutionResult, Executor
    from .record import Record
    from .registry import Strategy

logger = logging.getLogger(__name__)

_JOIN_SQL: Final[dict[str, str]] = {
    "inner": "INNER JOIN",
    "left": "LEFT JOIN",
    "right": "RIGHT JOIN",
}
_DIRECTIONS: Final[frozenset[str]] = frozenset({"ASC", "DESC"})


class Compiled(NamedTuple):
    sql: str
    bindings: list[Any]


def _non_negative(name: str, value: Any) -> int:
    if isinstance(value, bool):
        raise InvalidValue(f"{name} must be a non-negative integer, got {value!r}")
    if isinstance(value, int):
        if value < 0:
            raise InvalidValue(f"{name} must be a non-negative integer, got {value!r}")
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value)

    raise InvalidValue(f"{name} must be a non-negative integer, got {value!r}")


def _columns(columns: tuple[str | Iterable[str], ...]) -> list[str]:
    out: list[str] = []
    for column in columns:
        if isinstance(column, str):
            out.append(column)
        else:
            out.extend(column)
    return out


def _as_is(column: str) -> str:
    return column


class QueryBuilder:
    """Accumulate clauses for one table and compile them to parameterized SQL.

    Args:
        table: Primary table.
        executor: Executor used by the terminal methods (:meth:`get`,
            :meth:`first`, :meth:`count`...).  Not needed for :meth:`compile`.
        datasource: Named datasource handed to the executor.
    """

    __slots__ = ("_description", "_executor", "datasource")

    def __init__(
        self,
        table: str,
        executor: Executor | None = None,
        *,
        datasource: str | None = None,
    ) -> None:
        self._description = QueryDescription(table=table)
        self._executor = executor
        self.datasource = datasource

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.compile().sql!r}>"

    @property
    def table(self) -> str:
        return self._description.table

    @property
    def description(self) -> QueryDescription:
        """A copy of the accumulated clauses."""
        return self._description.copy()

    @property
    def executor(self) -> Executor:
        if self._executor is None:
            raise ConfigurationError(f"No executor bound to the query on {self.table!r}")
        return self._executor

    # -- builder -----------------------------------------------------------------

    def select(self, *columns: str | Iterable[str]) -> Self:
        """Set the selected columns (``*`` when never called)."""
        self._description.columns = _columns(columns)
        return self

    def distinct(self, enabled: bool = True) -> Self:  # noqa: FBT001, FBT002
        self._description.distinct = enabled
        return self

    def where(
        self,
        conditions: Mapping[str, Any] | Condition | None = None,
        /,
        **kwargs: Any,
    ) -> Self:
        """AND conditions into the ``WHERE`` clause.

        Example:
            >>> query.where({"age": {"between": [18, 65]}}, active=True)

        Raises:
            InvalidOperator: A condition mapping is malformed.
            InvalidValue: An operator's value has the wrong shape.
        """
        if isinstance(conditions, Condition):
            translated = [conditions]
        else:
            translated = translate_all(conditions or {})
        translated.extend(translate_all(kwargs))
        self._description.conditions.extend(translated)
        return self

    def where_raw(self, sql: str, bindings: Sequence[Any] = ()) -> Self:
        """AND a hand-written fragment; its bindings keep their call position."""
        self._description.conditions.append(Raw("", sql, tuple(bindings)))
        return self

    def join(
        self,
        target: str,
        first: str,
        second: str | None = None,
        *,
        kind: JoinKind = "inner",
    ) -> Self:
        """Join *target* on ``first = second`` (or on *first* verbatim)."""
        if kind not in _JOIN_SQL:
            raise InvalidValue(f"Unknown join kind {kind!r}")

        on = first if second is None else f"{first} = {second}"
        self._description.joins.append(JoinClause(kind, target, on))
        return self

    def left_join(self, target: str, first: str, second: str | None = None) -> Self:
        return self.join(target, first, second, kind="left")

    def right_join(self, target: str, first: str, second: str | None = None) -> Self:
        return self.join(target, first, second, kind="right")

    def order_by(self, column: str, direction: str = "ASC") -> Self:
        direction = direction.upper()
        if direction not in _DIRECTIONS:
            raise InvalidValue(f"Order direction must be ASC or DESC, got {direction!r}")

        self._description.order_by.append((column, direction))
        return self

    def group_by(self, *columns: str | Iterable[str]) -> Self:
        self._description.group_by.extend(_columns(columns))
        return self

    def having(self, sql: str, bindings: Sequence[Any] = ()) -> Self:
        self._description.having.append((sql, tuple(bindings)))
        return self

    def limit(self, count: int | str) -> Self:
        """Cap the number of rows; the last call wins.

        Raises:
            InvalidValue: *count* is not a non-negative integer.
        """
        self._description.limit = _non_negative("limit", count)
        return self

    def offset(self, count: int | str) -> Self:
        self._description.offset = _non_negative("offset", count)
        return self

    # -- compilation ---------------------------------------------------------------

    def compile(self) -> Compiled:
        """Compile to ``?``-placeholder SQL plus ordered bindings."""
        return self._compile()

    def to_sql(self) -> str:
        return self.compile().sql

    def _qualifier(self) -> Callable[[str], str]:
        return _as_is

    def _eager_joins(self) -> list[JoinClause]:
        return []

    def _eager_columns(self) -> list[str]:
        return []

    def _compile(
        self,
        *,
        columns: Sequence[str] | None = None,
        limit: Any = MISSING,
        offset: Any = MISSING,
        ordered: bool = True,
        distinct: bool = True,
    ) -> Compiled:
        d = self._description
        qualify = self._qualifier()

        if columns is None:
            columns = [qualify(column) for column in d.selected_columns]
            columns.extend(self._eager_columns())

        keyword = "DISTINCT " if d.distinct and distinct else ""
        parts = [f"SELECT {keyword}{', '.join(columns)}", f"FROM {d.table}"]
        bindings: list[Any] = []

        joins = [*d.joins, *self._eager_joins()]
        parts.extend(f"{_JOIN_SQL[j.kind]} {j.target} ON {j.on}" for j in joins)

        if d.conditions:
            fragments = []
            for condition in d.conditions:
                sql, values = condition.to_sql(qualify)
                fragments.append(sql)
                bindings.extend(values)
            parts.append("WHERE " + " AND ".join(fragments))

        if d.group_by:
            parts.append("GROUP BY " + ", ".join(qualify(column) for column in d.group_by))

        if d.having:
            parts.append("HAVING " + " AND ".join(sql for sql, _ in d.having))
            for _, values in d.having:
                bindings.extend(values)

        if ordered and d.order_by:
            parts.append(
                "ORDER BY " + ", ".join(f"{qualify(column)} {direction}" for column, direction in d.order_by)
            )

        limit = d.limit if limit is MISSING else limit
        if limit is not None:
            parts.append(f"LIMIT {limit}")

        offset = d.offset if offset is MISSING else offset
        if offset is not None:
            parts.append(f"OFFSET {offset}")

        return Compiled(" ".join(parts), bindings)

    # -- terminals ---------------------------------------------------------------

    def _run(self, compiled: Compiled) -> ExecutionResult:
        return self.executor.execute(compiled.sql, compiled.bindings, self.datasource)

    def get(self) -> list[Any]:
        """Execute and return every row."""
        return self._run(self.compile()).rows

    def first(self) -> Any | None:
        """First row or ``None``; the builder's own limit is left untouched."""
        rows = self._run(self._compile(limit=1)).rows
        return rows[0] if rows else None

    def _aggregate(self) -> str:
        d = self._description
        if d.distinct and d.columns:
            qualify = self._qualifier()
            return f"COUNT(DISTINCT {', '.join(qualify(column) for column in d.columns)})"
        return "COUNT(*)"

    def count(self) -> int:
        """Number of rows the query returns, ignoring ordering, limit and offset.

        A grouped query counts its groups.
        """
        d = self._description
        if d.group_by:
            qualify = self._qualifier()
            inner = self._compile(
                columns=[qualify(column) for column in d.selected_columns], limit=None, offset=None, ordered=False
            )
            compiled = Compiled(f"SELECT COUNT(*) AS aggregate FROM ({inner.sql}) AS grouped", inner.bindings)
        else:
            compiled = self._compile(
                columns=[f"{self._aggregate()} AS aggregate"],
                limit=None,
                offset=None,
                ordered=False,
                distinct=False,
            )
        rows = self._run(compiled).rows
        return int(rows[0]["aggregate"]) if rows else 0

    def exists(self) -> bool:
        compiled = self._compile(columns=["1 AS present"], limit=1, offset=None, ordered=False, distinct=False)
        return bool(self._run(compiled).rows)

    def pluck(self, column: str) -> list[Any]:
        """Values of a single *column*, in row order."""
        compiled = self._compile(columns=[self._qualifier()(column)])
        key = column.rsplit(".", 1)[-1]
        return [row[key] for row in self._run(compiled).rows]


class ModelQuery(QueryBuilder):
    """Query bound to a model class: rows come back as records.

    Example:
        >>> User.where(active=True).includes("posts.comments", "profile").get()
    """

    __slots__ = ("_plan", "model")

    def __init__(self, model: type[Record], *, plan: EagerLoadPlan | None = None) -> None:
        descriptor = model.__registry__.descriptor(model)
        super().__init__(descriptor.table, datasource=descriptor.datasource)
        self.model = model
        self._plan = plan if plan is not None else EagerLoadPlan(model)

    @property
    def executor(self) -> Executor:
        return self.model.__registry__.executor

    @property
    def plan(self) -> EagerLoadPlan:
        return self._plan

    def includes(self, *paths: str | Iterable[str]) -> Self:
        """Eager-load *paths* with each relationship's default strategy.

        Raises:
            InvalidRelationship: A path segment is not a relationship; nothing
                is registered and no query runs.
        """
        return self._eager(paths, None)

    def joins(self, *paths: str | Iterable[str]) -> Self:
        """Eager-load *paths* through ``LEFT JOIN``."""
        return self._eager(paths, "join")

    def preload(self, *paths: str | Iterable[str]) -> Self:
        """Eager-load *paths* with one batched query per level."""
        return self._eager(paths, "separate")

    def _eager(self, paths: tuple[str | Iterable[str], ...], strategy: Strategy | None) -> Self:
        for path in _columns(paths):
            self._plan.add(path, strategy)
        return self

    def _qualifier(self) -> Callable[[str], str]:
        if not self._plan.joined():
            return _as_is

        table = self.table

        def qualify(column: str) -> str:
            if "." in column or "(" in column or " " in column:
                return column
            return f"{table}.{column}"

        return qualify

    def _eager_joins(self) -> list[JoinClause]:
        return [node.join_clause(self.table) for node in self._plan.joined()]

    def _eager_columns(self) -> list[str]:
        return [column for node in self._plan.joined() for column in node.select_columns()]

    def _aggregate(self) -> str:
        d = self._description
        if self._plan.joined() and not (d.distinct and d.columns):
            # a hasMany join repeats the primary row once per child
            return f"COUNT(DISTINCT {self.table}.{self.model.__descriptor__.primary_key})"
        return super()._aggregate()

    def compile(self) -> Compiled:
        compiled = self._compile()
        if self._plan:
            logger.debug("Eager-load plan for %s: %r", self.model.__name__, self._plan)
        return compiled

    def get(self) -> list[Record]:
        rows = self._run(self.compile()).rows
        return materialize(self.model, rows, self._plan)

    def first(self) -> Record | None:
        rows = self._run(self._compile(limit=1)).rows
        records = materialize(self.model, rows, self._plan)
        return records[0] if records else None

    def pluck(self, column: str) -> list[Any]:
        if column == ALL_COLUMNS:
            raise InvalidValue("pluck needs a single column")
        return super().pluck(column)
