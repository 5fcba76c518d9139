"""Domain models for draft/production publishing."""

from __future__ import annotations

import dataclasses as dc
import enum
import typing as typ

if typ.TYPE_CHECKING:
    import collections.abc as cabc

type KeyTuple = tuple[object, ...]


class PublishStatus(enum.StrEnum):
    """Values of the status column carried by draft rows."""

    DIRTY = "dirty"
    PUBLISHED = "published"


class RelationshipKind(enum.StrEnum):
    """Relationship kinds understood by the dependency resolver."""

    BELONGS_TO = "belongs_to"
    HAS_ONE = "has_one"
    HAS_MANY = "has_many"
    MANY_TO_MANY = "many_to_many"


class SyncOperation(enum.StrEnum):
    """Direction of a draft/production synchronisation."""

    PUBLISH = "publish"
    DISCARD = "discard"


@dc.dataclass(frozen=True, slots=True)
class EntityType:
    """Stable tag identifying a record kind within a schema registry."""

    name: str

    def __str__(self) -> str:
        return self.name


@dc.dataclass(frozen=True, slots=True)
class JoinTable:
    """Production join table backing a many-to-many relationship.

    Attributes
    ----------
    table : str
        Production join table name; its draft copy follows the draft naming
        convention.
    source_columns : tuple[str, ...]
        Join columns referencing the source primary key, in key order.
    target_columns : tuple[str, ...]
        Join columns referencing the target primary key, in key order.
    """

    table: str
    source_columns: tuple[str, ...]
    target_columns: tuple[str, ...]

    @property
    def columns(self) -> tuple[str, ...]:
        """Return every column copied when the join rows are synchronised."""
        return (*self.source_columns, *self.target_columns)


@dc.dataclass(frozen=True, slots=True)
class Relationship:
    """Directed edge from one entity type to another.

    Attributes
    ----------
    kind : RelationshipKind
        Relationship kind.
    target : EntityType
        Entity type at the far end of the edge.
    foreign_key : tuple[str, ...]
        Foreign-key column(s). For ``belongs_to`` and ``has_many`` they live on
        the target row and reference the source key; for ``has_one`` they live
        on the source row and reference the target key. Empty for
        ``many_to_many``.
    join_table : JoinTable | None
        Join table descriptor, required for ``many_to_many``.
    """

    kind: RelationshipKind
    target: EntityType
    foreign_key: tuple[str, ...] = ()
    join_table: JoinTable | None = None


@dc.dataclass(frozen=True, slots=True)
class EntitySchema:
    """Schema descriptor for one entity type.

    Attributes
    ----------
    entity_type : EntityType
        Tag identifying the entity type.
    table : str
        Production table name.
    primary_key : tuple[str, ...]
        Ordered primary-key columns; more than one for composite keys.
    columns : tuple[str, ...]
        Scalar columns copied verbatim between draft and production,
        including key and foreign-key columns.
    relationships : tuple[Relationship, ...]
        Outgoing relationships.
    publishable : bool
        Whether the type participates in the draft/publish lifecycle.
    model : type | None
        Optional mapped class whose instances are accepted as root records.
    key_attributes : tuple[str, ...]
        Attribute names holding the key on ``model`` instances when they
        differ from the column names.
    """

    entity_type: EntityType
    table: str
    primary_key: tuple[str, ...]
    columns: tuple[str, ...]
    relationships: tuple[Relationship, ...] = ()
    publishable: bool = True
    model: type | None = None
    key_attributes: tuple[str, ...] = ()


@dc.dataclass(frozen=True, slots=True)
class RecordRef:
    """Reference to a root record by entity type and primary-key tuple."""

    entity_type: EntityType
    key: KeyTuple


@dc.dataclass(slots=True)
class Dependency:
    """Accumulated, deduplicated key tuples for one entity type.

    Keys keep their first-seen order; equality is full tuple equality.
    """

    entity_type: EntityType
    _keys: dict[KeyTuple, None] = dc.field(default_factory=dict, repr=False)

    def merge(self, keys: cabc.Iterable[KeyTuple]) -> tuple[KeyTuple, ...]:
        """Add keys and return the ones that were not already present."""
        delta: list[KeyTuple] = []
        for key in keys:
            normalised = tuple(key)
            if normalised in self._keys:
                continue
            self._keys[normalised] = None
            delta.append(normalised)
        return tuple(delta)

    @property
    def keys(self) -> tuple[KeyTuple, ...]:
        """Return the accumulated key tuples in first-seen order."""
        return tuple(self._keys)

    def __contains__(self, key: object) -> bool:
        return key in self._keys

    def __len__(self) -> int:
        return len(self._keys)


type DependencyMap = dict[EntityType, Dependency]


@dc.dataclass(frozen=True, slots=True)
class PublishOutcome:
    """Result of a publish or discard call.

    Attributes
    ----------
    operation : SyncOperation
        Direction that was applied.
    dependencies : dict[EntityType, tuple[KeyTuple, ...]]
        Resolved key tuples per entity type.
    rowcounts : dict[str, int]
        Total rows affected per apply step (``deleted``, ``copied``,
        ``marked``, ``links_deleted``, ``links_copied``).
    """

    operation: SyncOperation
    dependencies: dict[EntityType, tuple[KeyTuple, ...]]
    rowcounts: dict[str, int]

    @property
    def is_empty(self) -> bool:
        """Return True when no keys were resolved."""
        return not any(self.dependencies.values())
