"""Row objects.

A model is a :class:`Record` subclass; its table, primary key and foreign keys
come from conventions unless overridden::

    registry = Registry()


    class Base(Record, abstract=True):
        __registry__ = registry


    class User(Base):                      # table "users", primary key "id"
        __validates__ = {"name": Required()}

        posts = has_many("Post")           # posts.user_id


    registry.configure(EngineExecutor(engine))

    user = User(name="Ada")
    user.save()                            # INSERT, user.id assigned
    user.name = "Ada L."
    user.save()                            # UPDATE users SET name = ?, updated_at = ? WHERE id = ?

Columns are read and written as attributes (``user.name``) or items
(``user["name"]``); item access always works, attribute access is shadowed by
class attributes of the same name (``count``, ``errors``...).
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Iterable, Mapping
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, ClassVar

from .callbacks import LifecyclePoint, collect_callbacks, run_callbacks
from .config import get_settings
from .datastructures import MISSING, frozendict
from .exceptions import ConfigurationError, PersistenceError, RecordNotFound
from .query import ModelQuery
from .registry import ModelDescriptor, Registry
from .relationships import RelationshipAccessor, relation_query
from .tools import is_blank, table_name_for
from .validation import Rule, normalize_rules, validate


if sys.version_info >= (3, 11):
    from typing import Self
else:
    from typing_extensions import Self

if TYPE_CHECKING:
    from .executor import ExecutionResult

logger = logging.getLogger(__name__)


def _is_data_descriptor(value: Any) -> bool:
    return hasattr(value, "__set__") or hasattr(value, "__delete__")


class Record:
    """Base class for models: attribute state, persistence and finders."""

    __registry__: ClassVar[Registry]
    __descriptor__: ClassVar[ModelDescriptor]
    __primary_key__: ClassVar[str] = "id"
    __datasource__: ClassVar[str | None] = None
    __timestamps__: ClassVar[bool] = True
    __validates__: ClassVar[Mapping[str, Rule | Iterable[Rule]]] = {}

    _attributes: dict[str, Any]
    _original: dict[str, Any]
    _persisted: bool
    _destroyed: bool
    _loaded_relationships: dict[str, Any]
    _errors: dict[str, list[str]]

    def __init_subclass__(cls, *, abstract: bool = False, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        if abstract:
            return

        registry = getattr(cls, "__registry__", None)
        if not isinstance(registry, Registry):
            raise ConfigurationError(
                f"{cls.__name__} has no registry: declare `__registry__ = Registry()` on its base"
            )

        table = table_name_for(cls)
        relationships: dict[str, Any] = {}
        rules: dict[str, tuple[Rule, ...]] = {}
        for klass in reversed(cls.__mro__):
            for name, value in vars(klass).items():
                if isinstance(value, RelationshipAccessor):
                    relationships[name] = value.metadata(cls.__name__, table)
            if "__validates__" in vars(klass):
                rules.update(normalize_rules(vars(klass)["__validates__"]))

        cls.__descriptor__ = ModelDescriptor(
            model=cls,
            table=table,
            primary_key=cls.__primary_key__,
            datasource=cls.__datasource__,
            timestamps=cls.__timestamps__,
            relationships=frozendict(relationships),
            callbacks=collect_callbacks(cls.__mro__),
            rules=frozendict(rules),
        )
        registry.register(cls.__descriptor__)

    def __init__(self, attributes: Mapping[str, Any] | None = None, /, **kwargs: Any) -> None:
        self._reset_state()
        self._attributes.update(attributes or {}, **kwargs)

    def _reset_state(self) -> None:
        object.__setattr__(self, "_attributes", {})
        object.__setattr__(self, "_original", {})
        object.__setattr__(self, "_persisted", False)
        object.__setattr__(self, "_destroyed", False)
        object.__setattr__(self, "_loaded_relationships", {})
        object.__setattr__(self, "_errors", {})

    @classmethod
    def hydrate(cls, row: Mapping[str, Any]) -> Self:
        """Build a persisted, clean record from a database row."""
        record = cls.__new__(cls)
        record._reset_state()
        record._attributes.update(row)
        record._original.update(row)
        record._persisted = True
        return record

    # -- attribute access --------------------------------------------------------

    def __getattr__(self, name: str) -> Any:
        # Only reached when normal lookup failed.
        if not name.startswith("_"):
            attributes = self.__dict__.get("_attributes")
            if attributes is not None and name in attributes:
                return attributes[name]

        raise AttributeError(f"{type(self).__name__!r} object has no attribute {name!r}")

    def __setattr__(self, name: str, value: Any) -> None:
        if name.startswith("_") or _is_data_descriptor(getattr(type(self), name, None)):
            object.__setattr__(self, name, value)
        else:
            self._attributes[name] = value

    def __getitem__(self, name: str) -> Any:
        return self._attributes[name]

    def __setitem__(self, name: str, value: Any) -> None:
        self._attributes[name] = value

    def __contains__(self, name: object) -> bool:
        return name in self._attributes

    def __repr__(self) -> str:
        state = "" if self._persisted else " new" if not self._destroyed else " destroyed"
        return f"<{type(self).__name__} {self.__descriptor__.primary_key}={self.primary_key!r}{state}>"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Record):
            return NotImplemented
        if type(self) is not type(other) or is_blank(self.primary_key):
            return self is other
        return self.primary_key == other.primary_key

    def __hash__(self) -> int:
        if is_blank(self.primary_key):
            return id(self)
        return hash((type(self), self.primary_key))

    def get(self, name: str, default: Any = None) -> Any:
        return self._attributes.get(name, default)

    @property
    def primary_key(self) -> Any:
        return self._attributes.get(self.__descriptor__.primary_key)

    @property
    def attributes(self) -> Mapping[str, Any]:
        return MappingProxyType(self._attributes)

    @property
    def original_attributes(self) -> Mapping[str, Any]:
        """Values as last read from or written to the database."""
        return MappingProxyType(self._original)

    @property
    def persisted(self) -> bool:
        return self._persisted

    @property
    def destroyed(self) -> bool:
        return self._destroyed

    @property
    def loaded_relationships(self) -> Mapping[str, Any]:
        return MappingProxyType(self._loaded_relationships)

    @property
    def errors(self) -> Mapping[str, list[str]]:
        return MappingProxyType(self._errors)

    def fill(self, attributes: Mapping[str, Any] | None = None, /, **kwargs: Any) -> Self:
        self._attributes.update(attributes or {}, **kwargs)
        return self

    def changes(self) -> dict[str, Any]:
        """Attributes whose value differs from (or is absent in) the original."""
        return {
            name: value
            for name, value in self._attributes.items()
            if self._original.get(name, MISSING) is MISSING or self._original[name] != value
        }

    def is_dirty(self, name: str | None = None) -> bool:
        changes = self.changes()
        return bool(changes) if name is None else name in changes

    def is_relationship_loaded(self, name: str) -> bool:
        return name in self._loaded_relationships

    def related(self, name: str) -> ModelQuery | None:
        """Unbatched, uncached query for relationship *name* of this record.

        ``None`` when there is nothing to match (no key yet).
        """
        return relation_query(self, name)

    def to_dict(self, *, relationships: bool = False) -> dict[str, Any]:
        data = dict(self._attributes)
        if relationships:
            for name, value in self._loaded_relationships.items():
                if isinstance(value, list):
                    data[name] = [item.to_dict(relationships=True) for item in value]
                else:
                    data[name] = None if value is None else value.to_dict(relationships=True)
        return data

    # -- validation ----------------------------------------------------------------

    def is_valid(self) -> bool:
        """Run every rule; errors of a previous run are discarded first."""
        self._errors.clear()
        self._errors.update(validate(self, self.__descriptor__.rules))
        return not self._errors

    def get_errors(self) -> dict[str, list[str]]:
        return {name: list(messages) for name, messages in self._errors.items()}

    # -- persistence ---------------------------------------------------------------

    @classmethod
    def _execute(cls, sql: str, bindings: list[Any], *, returning: str | None = None) -> ExecutionResult:
        return cls.__registry__.executor.execute(
            sql, bindings, cls.__descriptor__.datasource, returning=returning
        )

    def save(self) -> bool:
        """Validate, then INSERT (blank primary key) or UPDATE (changed columns only).

        Returns:
            ``False`` when validation fails (see :attr:`errors`) or a
            ``before_*`` callback halts; ``True`` once the write succeeded.

        Raises:
            PersistenceError: The database rejected the statement, or an
                INSERT reported no generated key.  The record keeps its
                previous state.
            RecordNotFound: The record was deleted, or its row is gone.
        """
        if self._destroyed:
            pk = self.__descriptor__.primary_key
            raise RecordNotFound(f"{type(self).__name__} with {pk}={self.primary_key!r} was deleted")

        if not self.is_valid():
            logger.debug("%r failed validation: %s", self, self._errors)
            return False

        if is_blank(self.primary_key):
            return self._insert()
        return self._update()

    def _insert(self) -> bool:
        if not (
            run_callbacks(self, LifecyclePoint.BEFORE_CREATE)
            and run_callbacks(self, LifecyclePoint.BEFORE_SAVE)
        ):
            return False

        cls = type(self)
        descriptor = cls.__descriptor__
        schema = cls.__registry__.schema(cls)

        values = {
            name: value
            for name, value in self._attributes.items()
            if not (name == descriptor.primary_key and is_blank(value))
        }
        stamps: dict[str, Any] = {}
        now = get_settings().clock()
        for column in (schema.created_at, schema.updated_at):
            if column and values.get(column) is None:
                stamps[column] = now
        values.update(stamps)

        if values:
            placeholders = ", ".join("?" for _ in values)
            sql = f"INSERT INTO {descriptor.table} ({', '.join(values)}) VALUES ({placeholders})"
        else:
            sql = f"INSERT INTO {descriptor.table} DEFAULT VALUES"
        generated = is_blank(self.primary_key)
        bindings = list(values.values())
        result = self._execute(sql, bindings, returning=descriptor.primary_key if generated else None)
        if generated and result.inserted_key is None:
            raise PersistenceError(
                f"INSERT into {descriptor.table} reported no generated {descriptor.primary_key!r}",
                sql=sql,
                bindings=bindings,
                datasource=descriptor.datasource or get_settings().default_datasource,
            )

        self._attributes.update(stamps)
        if generated:
            self._attributes[descriptor.primary_key] = result.inserted_key
        self._mark_clean()

        run_callbacks(self, LifecyclePoint.AFTER_SAVE)
        run_callbacks(self, LifecyclePoint.AFTER_CREATE)
        return True

    def _update(self) -> bool:
        if not (
            run_callbacks(self, LifecyclePoint.BEFORE_UPDATE)
            and run_callbacks(self, LifecyclePoint.BEFORE_SAVE)
        ):
            return False

        cls = type(self)
        descriptor = cls.__descriptor__
        pk = descriptor.primary_key
        key = self._original.get(pk, self.primary_key)

        changes = self.changes()
        if changes.get(pk, MISSING) == key:
            del changes[pk]

        if changes:
            schema = cls.__registry__.schema(cls)
            stamps: dict[str, Any] = {}
            if schema.updated_at and schema.updated_at not in changes:
                stamps[schema.updated_at] = get_settings().clock()

            values = {**changes, **stamps}
            assignments = ", ".join(f"{name} = ?" for name in values)
            result = self._execute(
                f"UPDATE {descriptor.table} SET {assignments} WHERE {pk} = ?",
                [*values.values(), key],
            )
            if result.rowcount == 0:
                raise RecordNotFound(f"{cls.__name__} with {pk}={key!r} not found")
            self._attributes.update(stamps)
        else:
            logger.debug("%r has no changes, skipping UPDATE", self)

        self._mark_clean()

        run_callbacks(self, LifecyclePoint.AFTER_SAVE)
        run_callbacks(self, LifecyclePoint.AFTER_UPDATE)
        return True

    def _mark_clean(self) -> None:
        self._original = dict(self._attributes)
        self._persisted = True
        self._destroyed = False

    def update(self, attributes: Mapping[str, Any] | None = None, /, **kwargs: Any) -> bool:
        """Merge attributes and :meth:`save`."""
        self.fill(attributes, **kwargs)
        return self.save()

    def delete(self) -> bool:
        """DELETE this row.

        Returns:
            ``False`` for a record that is not persisted or when a
            ``before_delete`` callback halts.
        """
        if not self._persisted:
            return False
        if not run_callbacks(self, LifecyclePoint.BEFORE_DELETE):
            return False

        descriptor = type(self).__descriptor__
        key = self._original.get(descriptor.primary_key, self.primary_key)
        self._execute(f"DELETE FROM {descriptor.table} WHERE {descriptor.primary_key} = ?", [key])

        self._persisted = False
        self._destroyed = True

        run_callbacks(self, LifecyclePoint.AFTER_DELETE)
        return True

    def reload(self) -> Self:
        """Re-read this row; loaded relationships and errors are dropped.

        Raises:
            RecordNotFound: The row no longer exists (or was never saved).
        """
        cls = type(self)
        pk = cls.__descriptor__.primary_key
        key = self._original.get(pk, self.primary_key)
        fresh = None if is_blank(key) else cls.query().where({pk: key}).first()
        if fresh is None:
            raise RecordNotFound(f"{cls.__name__} with {pk}={key!r} not found")

        self._attributes = dict(fresh._attributes)
        self._loaded_relationships.clear()
        self._errors.clear()
        self._mark_clean()
        return self

    # -- finders -------------------------------------------------------------------

    @classmethod
    def query(cls) -> ModelQuery:
        return ModelQuery(cls)

    @classmethod
    def where(cls, conditions: Mapping[str, Any] | None = None, /, **kwargs: Any) -> ModelQuery:
        return cls.query().where(conditions, **kwargs)

    @classmethod
    def where_raw(cls, sql: str, bindings: Iterable[Any] = ()) -> ModelQuery:
        return cls.query().where_raw(sql, tuple(bindings))

    @classmethod
    def select(cls, *columns: str) -> ModelQuery:
        return cls.query().select(*columns)

    @classmethod
    def order_by(cls, column: str, direction: str = "ASC") -> ModelQuery:
        return cls.query().order_by(column, direction)

    @classmethod
    def includes(cls, *paths: str | Iterable[str]) -> ModelQuery:
        return cls.query().includes(*paths)

    @classmethod
    def joins(cls, *paths: str | Iterable[str]) -> ModelQuery:
        return cls.query().joins(*paths)

    @classmethod
    def preload(cls, *paths: str | Iterable[str]) -> ModelQuery:
        return cls.query().preload(*paths)

    @classmethod
    def all(cls) -> list[Self]:
        return cls.query().get()  # type: ignore[return-value]

    @classmethod
    def first(cls) -> Self | None:
        """Row with the lowest primary key."""
        return cls.query().order_by(cls.__descriptor__.primary_key).first()  # type: ignore[return-value]

    @classmethod
    def count(cls) -> int:
        return cls.query().count()

    @classmethod
    def find(cls, key: Any) -> Self | None:
        return cls.query().where({cls.__descriptor__.primary_key: key}).first()  # type: ignore[return-value]

    @classmethod
    def find_or_fail(cls, key: Any) -> Self:
        if (record := cls.find(key)) is None:
            raise RecordNotFound(f"{cls.__name__} with {cls.__descriptor__.primary_key}={key!r} not found")
        return record

    @classmethod
    def create(cls, attributes: Mapping[str, Any] | None = None, /, **kwargs: Any) -> Self:
        """Build and save; check ``persisted``/``errors`` on the result."""
        record = cls(attributes, **kwargs)
        record.save()
        return record
