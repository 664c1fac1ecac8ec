"""Eager-load orchestration.

``User.includes("posts.comments", "profile")`` registers a tree of
:class:`PlanNode` objects, one per relationship segment.  Each node is loaded
with one of two strategies:

* ``join`` -- a ``LEFT JOIN`` into the parent's own query; related columns are
  selected as ``{alias}__{column}`` and split back out of every row.  Default
  for ``belongsTo``/``hasOne``.
* ``separate`` -- one extra ``WHERE key IN (...)`` query per level, keys
  collected from the whole parent batch.  Default for ``hasMany``.

Either way the number of queries depends on the number of relationship levels,
never on the number of parent records.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from .datastructures import JoinClause
from .exceptions import InvalidRelationship
from .registry import RelationshipMetadata, RelationshipType
from .tools import unique_values


if TYPE_CHECKING:
    from .record import Record
    from .registry import Strategy

logger = logging.getLogger(__name__)

NAMESPACE_SEPARATOR = "__"


def parse_path(model: type[Record], path: str) -> list[RelationshipMetadata]:
    """Resolve a dotted path like ``"posts.comments.author"`` segment by segment.

    Raises:
        InvalidRelationship: A segment is not a relationship of the class it
            is read on.  Carries the segment and its 1-based position.
    """
    registry = model.__registry__
    current = model
    out: list[RelationshipMetadata] = []
    for position, segment in enumerate(path.split("."), start=1):
        metadata = registry.relationship(current, segment) if segment else None
        if metadata is None:
            raise InvalidRelationship(current, path, segment, position)

        out.append(metadata)
        current = registry.resolve(metadata.target)

    return out


@dataclass(slots=True, eq=False)
class PlanNode:
    relationship: RelationshipMetadata
    owner: type[Record]
    target: type[Record]
    alias: str
    strategy: Strategy | None = None
    children: EagerLoadPlan = field(init=False)

    def __post_init__(self) -> None:
        self.children = EagerLoadPlan(self.target)

    def __repr__(self) -> str:
        inner = f"({', '.join(map(repr, self.children.nodes.values()))})" if self.children else ""
        return f"{self.name}[{self.resolved_strategy}]{inner}"

    @property
    def name(self) -> str:
        return self.relationship.name

    @property
    def uselist(self) -> bool:
        return self.relationship.uselist

    @property
    def resolved_strategy(self) -> Strategy:
        """Requested strategy, else the relationship's default.

        A join needs the target's column list to namespace its columns; when
        the schema does not know the table the node is loaded separately.
        """
        strategy = self.strategy or self.relationship.default_strategy
        if strategy == "join" and not self.target.__registry__.schema(self.target).exists:
            return "separate"
        return strategy

    @property
    def table(self) -> str:
        return self.target.__descriptor__.table

    def join_clause(self, parent: str) -> JoinClause:
        """``LEFT JOIN`` of the target onto the *parent* table."""
        target = self.table if self.alias == self.table else f"{self.table} AS {self.alias}"
        if self.relationship.type is RelationshipType.BELONGS_TO:
            on = (
                f"{self.alias}.{self.target.__descriptor__.primary_key} = "
                f"{parent}.{self.relationship.foreign_key}"
            )
        else:
            on = (
                f"{self.alias}.{self.relationship.foreign_key} = "
                f"{parent}.{self.owner.__descriptor__.primary_key}"
            )
        return JoinClause("left", target, on)

    def select_columns(self) -> list[str]:
        columns = self.target.__registry__.schema(self.target).columns
        return [f"{self.alias}.{c} AS {self.alias}{NAMESPACE_SEPARATOR}{c}" for c in columns]


class EagerLoadPlan:
    """Relationship tree requested for one query, keyed by relationship name."""

    __slots__ = ("model", "nodes")

    def __init__(self, model: type[Record]) -> None:
        self.model = model
        self.nodes: dict[str, PlanNode] = {}

    def __bool__(self) -> bool:
        return bool(self.nodes)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.model.__name__}: {', '.join(map(repr, self.nodes.values()))}>"

    def add(self, path: str, strategy: Strategy | None = None) -> None:
        """Register every segment of *path*.

        The whole path is validated before anything is registered.  An
        explicit *strategy* applies to each segment of the path; ``None``
        keeps whatever strategy a segment already has.
        """
        segments = parse_path(self.model, path)

        plan = self
        for metadata in segments:
            node = plan.nodes.get(metadata.name)
            if node is None:
                node = plan._create(metadata)
            if strategy is not None:
                node.strategy = strategy
            plan = node.children

    def _create(self, metadata: RelationshipMetadata) -> PlanNode:
        target = self.model.__registry__.resolve(metadata.target)
        table = target.__descriptor__.table
        taken = {self.model.__descriptor__.table, *(node.alias for node in self.nodes.values())}
        alias = table if table not in taken else f"{table}_{metadata.name}"

        node = PlanNode(relationship=metadata, owner=self.model, target=target, alias=alias)
        self.nodes[metadata.name] = node
        return node

    def joined(self) -> list[PlanNode]:
        return [node for node in self.nodes.values() if node.resolved_strategy == "join"]

    def separate(self) -> list[PlanNode]:
        return [node for node in self.nodes.values() if node.resolved_strategy == "separate"]


def materialize(model: type[Record], rows: list[dict[str, Any]], plan: EagerLoadPlan) -> list[Record]:
    """Turn raw *rows* of *model*'s query into records and run *plan* over them."""
    registry = model.__registry__
    joined = plan.joined()
    if joined:
        records = _hydrate_joined(model, rows, joined)
    else:
        records = [registry.instantiate(model, row) for row in rows]

    if not records:
        return records

    for node in joined:
        if node.children:
            load_batch(_related_of(records, node.name), node.children)

    for node in plan.separate():
        load_separate(records, node)

    return records


def _hydrate_joined(model: type[Record], rows: list[dict[str, Any]], joined: list[PlanNode]) -> list[Record]:
    registry = model.__registry__
    primary_key = model.__descriptor__.primary_key
    prefixes = {node.alias: f"{node.alias}{NAMESPACE_SEPARATOR}" for node in joined}

    records: list[Record] = []
    by_key: dict[Any, Record] = {}
    for row in rows:
        own: dict[str, Any] = {}
        nested: dict[str, dict[str, Any]] = {alias: {} for alias in prefixes}
        for key, value in row.items():
            for alias, prefix in prefixes.items():
                if key.startswith(prefix):
                    nested[alias][key[len(prefix) :]] = value
                    break
            else:
                own[key] = value

        # A forced join on hasMany repeats the parent once per child.
        key = own.get(primary_key)
        record = by_key.get(key) if key is not None else None
        if record is None:
            record = registry.instantiate(model, own)
            records.append(record)
            if key is not None:
                by_key[key] = record
            for node in joined:
                record._loaded_relationships[node.name] = [] if node.uselist else None  # noqa: SLF001

        loaded = record._loaded_relationships  # noqa: SLF001
        for node in joined:
            data = nested[node.alias]
            if data.get(node.target.__descriptor__.primary_key) is None:
                continue

            related = registry.instantiate(node.target, data)
            if not node.uselist:
                loaded[node.name] = related
            elif related not in loaded[node.name]:
                loaded[node.name].append(related)

    return records


def _related_of(records: list[Record], name: str) -> list[Record]:
    out: list[Record] = []
    seen: set[int] = set()
    for record in records:
        value = record._loaded_relationships.get(name)  # noqa: SLF001
        for related in value if isinstance(value, list) else (value,):
            if related is not None and id(related) not in seen:
                seen.add(id(related))
                out.append(related)
    return out


def load_batch(records: list[Record], plan: EagerLoadPlan) -> None:
    """Load every node of *plan* over already-materialized *records*.

    Records that exist already cannot be joined against, so every node is
    loaded with the separate strategy here.
    """
    if not records:
        return

    for node in plan.nodes.values():
        load_separate(records, node)


def load_separate(records: list[Record], node: PlanNode) -> None:
    """One ``IN`` query for *node* across *records*, then map results back.

    The query carries ``node.children`` as its own plan, so deeper levels are
    loaded from this level's results, again one query per level.
    """
    from .query import ModelQuery

    metadata = node.relationship
    if metadata.type is RelationshipType.BELONGS_TO:
        local, remote = metadata.foreign_key, node.target.__descriptor__.primary_key
    else:
        local, remote = node.owner.__descriptor__.primary_key, metadata.foreign_key

    keys = unique_values(record.get(local) for record in records)
    related: list[Record] = []
    if keys:
        related = ModelQuery(node.target, plan=node.children).where({remote: {"in": keys}}).get()

    logger.debug(
        "Loaded %s.%s for %d records: %d keys, %d rows",
        node.owner.__name__,
        node.name,
        len(records),
        len(keys),
        len(related),
    )

    if node.uselist:
        buckets: defaultdict[Any, list[Record]] = defaultdict(list)
        for item in related:
            buckets[item.get(remote)].append(item)
        for record in records:
            record._loaded_relationships[node.name] = list(buckets.get(record.get(local), ()))  # noqa: SLF001
    else:
        index: dict[Any, Record] = {}
        for item in related:
            index.setdefault(item.get(remote), item)
        for record in records:
            record._loaded_relationships[node.name] = index.get(record.get(local))  # noqa: SLF001
