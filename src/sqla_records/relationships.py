"""Relationship declarations.

::

    class User(Base):
        posts = has_many("Post")          # posts.user_id
        profile = has_one("Profile")      # profiles.user_id

    class Post(Base):
        author = belongs_to("User", foreign_key="author_id")
        comments = has_many("Comment")    # comments.post_id

Reading ``user.posts`` returns the eager-loaded value when there is one and
otherwise runs a single query for this record (see :mod:`.advisor`).
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, overload

from .advisor import report_lazy_load
from .exceptions import InvalidRelationship
from .registry import RelationshipMetadata, RelationshipType
from .tools import foreign_key_for, is_blank


if TYPE_CHECKING:
    from .query import ModelQuery
    from .record import Record


class RelationshipAccessor:
    """Class attribute declaring a relationship; reads go through the cache."""

    __slots__ = ("foreign_key", "name", "target", "type")

    def __init__(
        self,
        type_: RelationshipType,
        target: str | type[Record],
        *,
        foreign_key: str | None = None,
    ) -> None:
        self.type = type_
        self.target = target if isinstance(target, str) else target.__name__
        self.foreign_key = foreign_key
        self.name = ""

    def __set_name__(self, owner: type, name: str) -> None:
        self.name = name

    def __repr__(self) -> str:
        return f"<{self.type.value} {self.name!r} -> {self.target}>"

    def metadata(self, owner: str, owner_table: str) -> RelationshipMetadata:
        """Freeze this declaration for the model named *owner*."""
        if self.foreign_key:
            foreign_key = self.foreign_key
        elif self.type is RelationshipType.BELONGS_TO:
            foreign_key = f"{self.name}_id"
        else:
            foreign_key = foreign_key_for(owner_table)

        return RelationshipMetadata(
            name=self.name,
            type=self.type,
            foreign_key=foreign_key,
            target=self.target,
            owner=owner,
        )

    @overload
    def __get__(self, obj: None, objtype: type | None = None) -> RelationshipAccessor: ...
    @overload
    def __get__(self, obj: Record, objtype: type | None = None) -> Any: ...

    def __get__(self, obj: Record | None, objtype: type | None = None) -> Any:
        if obj is None:
            return self

        return load_relationship(obj, self.name)

    def __set__(self, obj: Record, value: Any) -> None:
        metadata = obj.__descriptor__.relationships[self.name]
        if metadata.type is RelationshipType.BELONGS_TO:
            target = obj.__registry__.descriptor(obj.__registry__.resolve(metadata.target))
            obj[metadata.foreign_key] = None if value is None else value.get(target.primary_key)

        obj._loaded_relationships[self.name] = value  # noqa: SLF001


def has_many(target: str | type[Record], *, foreign_key: str | None = None) -> Any:
    """Declare a one-to-many relationship (foreign key on the target table)."""
    return RelationshipAccessor(RelationshipType.HAS_MANY, target, foreign_key=foreign_key)


def has_one(target: str | type[Record], *, foreign_key: str | None = None) -> Any:
    """Declare a one-to-one relationship (foreign key on the target table)."""
    return RelationshipAccessor(RelationshipType.HAS_ONE, target, foreign_key=foreign_key)


def belongs_to(target: str | type[Record], *, foreign_key: str | None = None) -> Any:
    """Declare the owning side (foreign key ``{name}_id`` on this table)."""
    return RelationshipAccessor(RelationshipType.BELONGS_TO, target, foreign_key=foreign_key)


def relation_query(record: Record, name: str) -> ModelQuery | None:
    """Unbatched query for *record*'s related rows, ``None`` if it can't match anything."""
    model = type(record)
    registry = model.__registry__
    metadata = registry.relationship(model, name)
    if metadata is None:
        raise InvalidRelationship(model, name, name, 1)

    target = registry.resolve(metadata.target)
    if metadata.type is RelationshipType.BELONGS_TO:
        key = record.get(metadata.foreign_key)
        if key is None:
            return None
        return target.where({target.__descriptor__.primary_key: key})

    own = record.get(model.__descriptor__.primary_key)
    if is_blank(own):
        return None

    return target.where({metadata.foreign_key: own})


def load_relationship(record: Record, name: str) -> Any:
    """Return the cached relationship value, lazy-loading it on first access."""
    loaded = record._loaded_relationships  # noqa: SLF001
    if name in loaded:
        return loaded[name]

    metadata = record.__descriptor__.relationships[name]
    query = relation_query(record, name)
    if query is None:
        value: Any = [] if metadata.uselist else None
    else:
        value = query.get() if metadata.uselist else query.first()
        report_lazy_load(record, name)

    loaded[name] = value
    return value
