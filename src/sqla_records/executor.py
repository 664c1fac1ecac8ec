"""Database execution primitive.

The engine compiles ``?``-placeholder SQL and hands it, with its ordered
bindings, to an :class:`Executor`.  :class:`EngineExecutor` is the stock
implementation on top of SQLAlchemy engines, one per named datasource::

    executor = EngineExecutor(sa.create_engine("sqlite:///app.db"))
    executor.execute("SELECT * FROM users WHERE id = ?", [1])

Each statement runs on its own connection inside its own transaction; no
connection is held between statements.
"""

from __future__ import annotations

import itertools
import logging
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime
from functools import lru_cache
from typing import Any, Final, Protocol, runtime_checkable

import sqlalchemy as sa
from sqlalchemy import exc as sa_exc

from .config import get_settings
from .exceptions import ConfigurationError, PersistenceError


logger = logging.getLogger(__name__)

# quoted literals and identifiers are matched first so their `?` survive
_PLACEHOLDER: Final = re.compile(r"'(?:[^']|'')*'|\"(?:[^\"]|\"\")*\"|\?")
_PLACEHOLDER_TEMPLATES: Final[dict[str, str]] = {
    "format": "%s",
    "pyformat": "%s",
    "numeric": ":{}",
    "named": ":p{}",
}


@dataclass(slots=True)
class ExecutionResult:
    """Rows of a query, or the write info of an INSERT/UPDATE/DELETE.

    ``inserted_key`` is the generated primary key of an INSERT, read from a
    ``RETURNING`` row where the dialect needs one, else from ``lastrowid``.
    """

    rows: list[dict[str, Any]] = field(default_factory=list)
    rowcount: int = 0
    lastrowid: Any = None
    inserted_key: Any = None

    def __iter__(self):
        return iter(self.rows)

    def __len__(self) -> int:
        return len(self.rows)


@runtime_checkable
class Executor(Protocol):
    """What the engine needs from its environment to talk to a database."""

    def execute(
        self,
        sql: str,
        bindings: Sequence[Any] = (),
        datasource: str | None = None,
        *,
        returning: str | None = None,
    ) -> ExecutionResult: ...

    def columns(self, table: str, datasource: str | None = None) -> tuple[str, ...]: ...


@lru_cache(maxsize=512)
def convert_placeholders(sql: str, paramstyle: str) -> str:
    """Rewrite ``?`` placeholders for a DBAPI *paramstyle*.

    A ``?`` inside a quoted literal or identifier is left alone.

    Example:
        >>> convert_placeholders("a = ? AND b = '?'", "numeric")
        "a = :1 AND b = '?'"
    """
    if paramstyle == "qmark":
        return sql

    template = _PLACEHOLDER_TEMPLATES.get(paramstyle)
    if template is None:
        raise ConfigurationError(f"Unsupported DBAPI paramstyle: {paramstyle!r}")

    if paramstyle in ("format", "pyformat"):
        sql = sql.replace("%", "%%")

    counter = itertools.count(1)

    def _replace(match: re.Match[str]) -> str:
        token = match.group(0)
        return template.format(next(counter)) if token == "?" else token

    return _PLACEHOLDER.sub(_replace, sql)


def to_database(value: Any, *, native_datetimes: bool = False) -> Any:
    """Convert a Python value into something the DBAPI driver binds.

    Drivers with native date/time binding get ``date``/``datetime`` as-is.
    Otherwise they are rendered as ISO strings; a timezone offset and
    microseconds are kept when present.
    """
    if native_datetimes:
        return value
    if isinstance(value, datetime):
        return value.isoformat(sep=" ")
    if isinstance(value, date):
        return value.isoformat()
    return value


class EngineExecutor:
    """Run parameterized statements through SQLAlchemy engines.

    Args:
        engines: A single engine (registered as the default datasource) or a
            mapping of datasource name to engine.
    """

    __slots__ = ("_columns", "_engines")

    def __init__(self, engines: sa.Engine | Mapping[str, sa.Engine]) -> None:
        if isinstance(engines, sa.Engine):
            engines = {get_settings().default_datasource: engines}

        if not engines:
            raise ConfigurationError("EngineExecutor needs at least one engine")

        self._engines: dict[str, sa.Engine] = dict(engines)
        self._columns: dict[tuple[str, str], tuple[str, ...]] = {}

    @property
    def datasources(self) -> tuple[str, ...]:
        return tuple(self._engines)

    def engine(self, datasource: str | None = None) -> sa.Engine:
        name = datasource or get_settings().default_datasource
        try:
            return self._engines[name]
        except KeyError:
            raise ConfigurationError(
                f"Unknown datasource {name!r}. Available: {list(self._engines)}"
            ) from None

    def execute(
        self,
        sql: str,
        bindings: Sequence[Any] = (),
        datasource: str | None = None,
        *,
        returning: str | None = None,
    ) -> ExecutionResult:
        """Execute one statement and return its rows (if any) and write info.

        Args:
            returning: Primary-key column of an INSERT.  Dialects without a
                usable ``lastrowid`` (PostgreSQL drivers) get a
                ``RETURNING`` clause for it; the key lands in
                :attr:`ExecutionResult.inserted_key` either way.

        Raises:
            PersistenceError: The driver rejected the statement.  The driver
                error is chained and the SQL/bindings are attached.
        """
        name = datasource or get_settings().default_datasource
        engine = self.engine(name)
        dialect = engine.dialect

        use_returning = bool(returning) and dialect.insert_returning and not dialect.postfetch_lastrowid
        if use_returning:
            sql = f"{sql} RETURNING {returning}"

        # pysqlite's implicit datetime adapters are deprecated
        native = dialect.name != "sqlite"
        params = tuple(to_database(value, native_datetimes=native) for value in bindings)
        statement = convert_placeholders(sql, dialect.paramstyle)
        if dialect.paramstyle == "named":
            params = {f"p{idx}": value for idx, value in enumerate(params, start=1)}  # type: ignore[assignment]

        logger.debug("SQL: %s | Params: %s | datasource=%s", sql, list(params), name)

        try:
            with engine.begin() as conn:
                result = conn.exec_driver_sql(statement, params)
                rows = [dict(row) for row in result.mappings()] if result.returns_rows else []
                lastrowid = None if result.returns_rows else result.lastrowid
                rowcount = result.rowcount
        except sa_exc.SQLAlchemyError as e:
            raise PersistenceError(
                f"{type(e).__name__}: {getattr(e, 'orig', None) or e}",
                sql=sql,
                bindings=bindings,
                datasource=name,
            ) from e

        if use_returning:
            inserted_key = rows[0][returning] if rows else None
            rows = []
        else:
            inserted_key = lastrowid if returning else None

        return ExecutionResult(
            rows=rows,
            rowcount=rowcount,
            lastrowid=lastrowid,
            inserted_key=inserted_key,
        )

    def columns(self, table: str, datasource: str | None = None) -> tuple[str, ...]:
        """Column names of *table*, or ``()`` when the table does not exist.

        Looked up once per (datasource, table) and cached.
        """
        name = datasource or get_settings().default_datasource
        key = (name, table)
        if key not in self._columns:
            try:
                found = sa.inspect(self.engine(name)).get_columns(table)
            except sa_exc.NoSuchTableError:
                found = []
            self._columns[key] = tuple(column["name"] for column in found)
            logger.debug("Resolved columns for %s.%s: %s", name, table, self._columns[key])

        return self._columns[key]
