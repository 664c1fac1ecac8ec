from __future__ import annotations

import enum
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Final, Literal

from .config import get_settings
from .datastructures import frozendict
from .exceptions import ConfigurationError


if TYPE_CHECKING:
    from .executor import Executor
    from .record import Record

logger = logging.getLogger(__name__)

Strategy = Literal["join", "separate"]
RecordFactory = Callable[[type["Record"], Mapping[str, Any]], "Record"]


class RelationshipType(str, enum.Enum):
    BELONGS_TO = "belongsTo"
    HAS_ONE = "hasOne"
    HAS_MANY = "hasMany"

    @property
    def uselist(self) -> bool:
        return self is RelationshipType.HAS_MANY


DEFAULT_STRATEGIES: Final[frozendict[RelationshipType, Strategy]] = frozendict({
    # cardinality <= 1: a LEFT JOIN cannot duplicate the parent row
    RelationshipType.BELONGS_TO: "join",
    RelationshipType.HAS_ONE: "join",
    # a JOIN would repeat the parent once per child
    RelationshipType.HAS_MANY: "separate",
})


@dataclass(slots=True, frozen=True)
class RelationshipMetadata:
    """Static description of one declared relationship.

    ``foreign_key`` lives on the *target* table for ``hasMany``/``hasOne`` and
    on the *owner* table for ``belongsTo``.  ``target`` is the target class
    name; :meth:`Registry.resolve` turns it into the class.
    """

    name: str
    type: RelationshipType
    foreign_key: str
    target: str
    owner: str

    @property
    def uselist(self) -> bool:
        return self.type.uselist

    @property
    def default_strategy(self) -> Strategy:
        return DEFAULT_STRATEGIES[self.type]


@dataclass(slots=True, frozen=True)
class SchemaInfo:
    """What the live schema says about a model's table (resolved once)."""

    columns: tuple[str, ...] = ()
    created_at: str | None = None
    updated_at: str | None = None

    @property
    def exists(self) -> bool:
        return bool(self.columns)


@dataclass(slots=True, frozen=True)
class ModelDescriptor:
    """Conventions resolved once when a model class is created."""

    model: type[Record]
    table: str
    primary_key: str
    datasource: str | None = None
    timestamps: bool = True
    relationships: frozendict[str, RelationshipMetadata] = field(default_factory=frozendict)
    callbacks: frozendict[str, tuple[Callable[..., Any], ...]] = field(default_factory=frozendict)
    rules: frozendict[str, tuple[Any, ...]] = field(default_factory=frozendict)


class Registry:
    """Model and relationship registry shared by one family of models.

    Every model class registers its :class:`ModelDescriptor` here when it is
    defined.  :meth:`configure` binds an executor and resolves the schema
    facts (columns, timestamp columns) for all registered models in one pass;
    after that the registry is only read.

    Example:
        >>> registry = Registry()
        >>> class Base(Record, abstract=True):
        ...     __registry__ = registry
        >>> registry.configure(EngineExecutor(engine))
    """

    __slots__ = ("_descriptors", "_executor", "_factory", "_models", "_schema")

    def __init__(
        self,
        executor: Executor | None = None,
        *,
        factory: RecordFactory | None = None,
    ) -> None:
        self._models: dict[str, type[Record]] = {}
        self._descriptors: dict[type[Record], ModelDescriptor] = {}
        self._schema: dict[type[Record], SchemaInfo] = {}
        self._executor = executor
        self._factory = factory

    def __repr__(self) -> str:
        return f"<{type(self).__name__} models={sorted(self._models)!r}>"

    def __contains__(self, model: object) -> bool:
        return model in self._descriptors

    def register(self, descriptor: ModelDescriptor) -> None:
        """Add (or redefine) a model."""
        model = descriptor.model
        self._models[model.__name__] = model
        self._descriptors[model] = descriptor
        self._schema.pop(model, None)

    @property
    def models(self) -> tuple[type[Record], ...]:
        return tuple(self._models.values())

    @property
    def configured(self) -> bool:
        return self._executor is not None

    @property
    def executor(self) -> Executor:
        if self._executor is None:
            raise ConfigurationError("Registry is not configured: call registry.configure(executor)")

        return self._executor

    def configure(self, executor: Executor) -> None:
        """Bind *executor* and resolve every registered model's schema facts.

        Raises:
            ConfigurationError: A relationship names a class that was never defined.
        """
        self._executor = executor
        self._schema.clear()
        for model, descriptor in self._descriptors.items():
            for relationship in descriptor.relationships.values():
                self.resolve(relationship.target)
            self.schema(model)

        logger.debug("Registry configured for %d models", len(self._descriptors))

    def reset(self) -> None:
        """Forget the executor and cached schema facts (models stay registered)."""
        self._executor = None
        self._schema.clear()

    def descriptor(self, model: type[Record]) -> ModelDescriptor:
        try:
            return self._descriptors[model]
        except KeyError:
            raise ConfigurationError(f"{model.__name__} is not registered") from None

    def resolve(self, target: str | type[Record]) -> type[Record]:
        """Turn a relationship target (class or class name) into the class."""
        if isinstance(target, type):
            return target

        try:
            return self._models[target]
        except KeyError:
            raise ConfigurationError(
                f"Unknown model {target!r}. Available: {sorted(self._models)}"
            ) from None

    def relationships(self, model: type[Record]) -> frozendict[str, RelationshipMetadata]:
        return self.descriptor(model).relationships

    def relationship(self, model: type[Record], name: str) -> RelationshipMetadata | None:
        return self.descriptor(model).relationships.get(name)

    def schema(self, model: type[Record]) -> SchemaInfo:
        """Schema facts for *model*, looked up through the executor on first use."""
        if (cached := self._schema.get(model)) is not None:
            return cached

        descriptor = self.descriptor(model)
        columns = self.executor.columns(descriptor.table, descriptor.datasource)
        settings = get_settings()
        info = SchemaInfo(
            columns=columns,
            created_at=(
                settings.created_at_column
                if descriptor.timestamps and settings.created_at_column in columns
                else None
            ),
            updated_at=(
                settings.updated_at_column
                if descriptor.timestamps and settings.updated_at_column in columns
                else None
            ),
        )
        self._schema[model] = info
        logger.debug("Schema for %s (%s): %s", model.__name__, descriptor.table, info)

        return info

    def instantiate(self, model: type[Record], row: Mapping[str, Any]) -> Record:
        """Build a persisted record of *model* from a raw row."""
        if self._factory is not None:
            return self._factory(model, row)

        return model.hydrate(row)
