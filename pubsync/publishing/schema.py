"""Schema registry describing publishable entity types.

The registry is built explicitly at startup and answers every metadata
question the resolver and the apply engine ask: key columns, scalar columns,
table names and outgoing relationships.

Examples
--------
Register two related entity types:

>>> customers = EntityType("customer")
>>> orders = EntityType("order")
>>> registry = SchemaRegistry()
>>> registry.register(
...     EntitySchema(customers, "customers", ("id",), ("id", "name"))
... )
>>> registry.register(
...     EntitySchema(
...         orders,
...         "orders",
...         ("id",),
...         ("id", "customer_id"),
...         relationships=(
...             Relationship(RelationshipKind.HAS_ONE, customers, ("customer_id",)),
...         ),
...     )
... )
"""

from __future__ import annotations

import dataclasses as dc
import typing as typ

from .domain import EntitySchema, EntityType, RecordRef, Relationship, RelationshipKind
from .errors import (
    DuplicateEntityTypeError,
    KeyArityError,
    SchemaError,
    UnknownEntityTypeError,
    UnsupportedRelationshipError,
)

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from .domain import KeyTuple


class SchemaIntrospector(typ.Protocol):
    """Metadata interface consumed by the resolver and the apply engine."""

    def primary_key_columns(self, entity_type: EntityType) -> tuple[str, ...]:
        """Return the ordered primary-key columns of ``entity_type``."""
        ...

    def scalar_columns(self, entity_type: EntityType) -> tuple[str, ...]:
        """Return the columns copied between draft and production."""
        ...

    def table_name(self, entity_type: EntityType) -> str:
        """Return the production table name of ``entity_type``."""
        ...

    def relationships(self, entity_type: EntityType) -> tuple[Relationship, ...]:
        """Return the outgoing relationships of ``entity_type``."""
        ...


def _normalise_relationship(
    schema: EntitySchema,
    relationship: Relationship,
) -> Relationship:
    """Coerce the relationship kind and reject shapes the resolver cannot expand."""
    try:
        kind = RelationshipKind(relationship.kind)
    except ValueError:
        raise UnsupportedRelationshipError(
            relationship.kind, "unknown relationship kind."
        ) from None
    relationship = dc.replace(relationship, kind=kind)
    if kind is RelationshipKind.MANY_TO_MANY:
        join = relationship.join_table
        if join is None:
            msg = f"{schema.entity_type.name!r} needs a join table descriptor."
            raise UnsupportedRelationshipError(kind, msg)
        if len(join.source_columns) != len(schema.primary_key):
            msg = (
                f"join table {join.table!r} source columns do not match the "
                f"{schema.entity_type.name!r} primary key."
            )
            raise UnsupportedRelationshipError(kind, msg)
        if not join.target_columns:
            msg = f"join table {join.table!r} has no target columns."
            raise UnsupportedRelationshipError(kind, msg)
        return relationship
    if not relationship.foreign_key:
        msg = (
            f"{schema.entity_type.name!r} -> {relationship.target.name!r} "
            "has no foreign-key columns."
        )
        raise UnsupportedRelationshipError(kind, msg)
    key_width = len(schema.primary_key)
    if (
        kind is not RelationshipKind.HAS_ONE
        and len(relationship.foreign_key) != key_width
    ):
        msg = (
            f"foreign key {relationship.foreign_key!r} does not match the "
            f"{schema.entity_type.name!r} primary key."
        )
        raise UnsupportedRelationshipError(kind, msg)
    return relationship


class SchemaRegistry:
    """Explicit registry of entity schemas keyed by ``EntityType``.

    The registry implements ``SchemaIntrospector``. Registration order is
    preserved and used as the tie-breaker when ordering apply steps.
    """

    def __init__(self, schemas: cabc.Iterable[EntitySchema] = ()) -> None:
        self._schemas: dict[EntityType, EntitySchema] = {}
        self._names: dict[str, EntityType] = {}
        self._models: dict[type, EntityType] = {}
        for schema in schemas:
            self.register(schema)

    def register(self, schema: EntitySchema) -> EntityType:
        """Register ``schema`` and return its entity type.

        Raises
        ------
        DuplicateEntityTypeError
            If a schema with the same type name is already registered.
        UnsupportedRelationshipError
            If a relationship cannot be expanded by the resolver.
        """
        entity_type = schema.entity_type
        if entity_type.name in self._names:
            msg = f"Entity type {entity_type.name!r} is already registered."
            raise DuplicateEntityTypeError(msg)
        if not schema.primary_key:
            msg = f"Entity type {entity_type.name!r} has no primary-key columns."
            raise SchemaError(msg)
        schema = dc.replace(
            schema,
            relationships=tuple(
                _normalise_relationship(schema, relationship)
                for relationship in schema.relationships
            ),
        )
        self._schemas[entity_type] = schema
        self._names[entity_type.name] = entity_type
        if schema.model is not None:
            self._models[schema.model] = entity_type
        return entity_type

    def get(self, entity_type: EntityType) -> EntitySchema:
        """Return the schema registered for ``entity_type``.

        Raises
        ------
        UnknownEntityTypeError
            If the type has not been registered.
        """
        try:
            return self._schemas[entity_type]
        except KeyError:
            raise UnknownEntityTypeError(entity_type) from None

    def by_name(self, name: str) -> EntityType:
        """Return the entity type registered under ``name``."""
        try:
            return self._names[name]
        except KeyError:
            raise UnknownEntityTypeError(name) from None

    def __contains__(self, entity_type: object) -> bool:
        return entity_type in self._schemas

    def __iter__(self) -> cabc.Iterator[EntitySchema]:
        return iter(self._schemas.values())

    def __len__(self) -> int:
        return len(self._schemas)

    @property
    def entity_types(self) -> tuple[EntityType, ...]:
        """Return registered entity types in registration order."""
        return tuple(self._schemas)

    def primary_key_columns(self, entity_type: EntityType) -> tuple[str, ...]:
        """Return the ordered primary-key columns of ``entity_type``."""
        return self.get(entity_type).primary_key

    def scalar_columns(self, entity_type: EntityType) -> tuple[str, ...]:
        """Return the columns copied between draft and production."""
        return self.get(entity_type).columns

    def table_name(self, entity_type: EntityType) -> str:
        """Return the production table name of ``entity_type``."""
        return self.get(entity_type).table

    def relationships(self, entity_type: EntityType) -> tuple[Relationship, ...]:
        """Return the outgoing relationships of ``entity_type``."""
        return self.get(entity_type).relationships

    def is_type_publishable(self, entity_type: EntityType) -> bool:
        """Return True when ``entity_type`` is registered and publishable."""
        schema = self._schemas.get(entity_type)
        return schema is not None and schema.publishable

    def is_publishable(self, record: object) -> bool:
        """Default publishable predicate for root records."""
        if isinstance(record, RecordRef):
            return self.get(record.entity_type).publishable
        entity_type = self._models.get(type(record))
        return entity_type is not None and self.is_type_publishable(entity_type)

    def record_ref(self, record: object) -> RecordRef:
        """Return a ``RecordRef`` for a reference or a registered model instance.

        Raises
        ------
        UnknownEntityTypeError
            If the record's class is not registered.
        """
        if isinstance(record, RecordRef):
            expected = len(self.get(record.entity_type).primary_key)
            if len(record.key) != expected:
                raise KeyArityError(record.key, expected)
            return record
        entity_type = self._models.get(type(record))
        if entity_type is None:
            raise UnknownEntityTypeError(type(record).__name__)
        schema = self._schemas[entity_type]
        attributes = schema.key_attributes or schema.primary_key
        key: KeyTuple = tuple(getattr(record, name) for name in attributes)
        return RecordRef(entity_type, key)


__all__ = ("SchemaIntrospector", "SchemaRegistry")
