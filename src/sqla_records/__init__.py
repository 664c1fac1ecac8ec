"""Convention-driven records on top of SQLAlchemy engines.

sqla_records maps table rows to ``Record`` subclasses: a fluent query builder
compiles hash-shaped conditions to parameterized SQL, records track their own
changes and persist them through INSERT or UPDATE, and relationships are
eager-loaded with ``Model.includes("posts.comments")`` using a LEFT JOIN or one
batched query per level.  Lazy relationship reads still work and are reported
as N+1 candidates in development mode.
"""

from ._version import __version__, __version_tuple__
from .advisor import NPlusOneWarning
from .callbacks import (
    LifecyclePoint,
    after_create,
    after_delete,
    after_save,
    after_update,
    before_create,
    before_delete,
    before_save,
    before_update,
    callback,
)
from .conditions import OPERATORS, Condition, translate
from .config import Settings, configure, get_settings, override_settings
from .datastructures import MISSING, frozendict
from .eager import EagerLoadPlan
from .exceptions import (
    ConfigurationError,
    InvalidOperator,
    InvalidRelationship,
    InvalidValue,
    PersistenceError,
    RecordNotFound,
    RecordsError,
)
from .executor import EngineExecutor, ExecutionResult, Executor
from .query import Compiled, ModelQuery, QueryBuilder
from .record import Record
from .registry import Registry, RelationshipMetadata, RelationshipType
from .relationships import belongs_to, has_many, has_one
from .validation import (
    Custom,
    Exclusion,
    Format,
    Inclusion,
    Length,
    Numericality,
    Required,
    Rule,
    Uniqueness,
)


__all__ = (
    "MISSING",
    "OPERATORS",
    "Compiled",
    "Condition",
    "ConfigurationError",
    "Custom",
    "EagerLoadPlan",
    "EngineExecutor",
    "ExecutionResult",
    "Exclusion",
    "Executor",
    "Format",
    "Inclusion",
    "InvalidOperator",
    "InvalidRelationship",
    "InvalidValue",
    "Length",
    "LifecyclePoint",
    "ModelQuery",
    "NPlusOneWarning",
    "Numericality",
    "PersistenceError",
    "QueryBuilder",
    "Record",
    "RecordNotFound",
    "RecordsError",
    "Registry",
    "RelationshipMetadata",
    "RelationshipType",
    "Required",
    "Rule",
    "Settings",
    "Uniqueness",
    "__version__",
    "__version_tuple__",
    "after_create",
    "after_delete",
    "after_save",
    "after_update",
    "before_create",
    "before_delete",
    "before_save",
    "before_update",
    "belongs_to",
    "callback",
    "configure",
    "frozendict",
    "get_settings",
    "has_many",
    "has_one",
    "override_settings",
    "translate",
)
