"""Build a schema registry from SQLAlchemy declarative models.

Applications that already describe their production tables with SQLAlchemy
ORM mappings can convert them once at startup instead of writing
``EntitySchema`` descriptors by hand.

Examples
--------
Register every mapped class of a declarative base:

>>> registry = registry_from_declarative(Base)
>>> registry.by_name("Order")
EntityType(name='Order')
"""

from __future__ import annotations

import typing as typ

import sqlalchemy as sa
from sqlalchemy import orm

from .domain import EntitySchema, EntityType, JoinTable, Relationship, RelationshipKind
from .errors import UnsupportedRelationshipError
from .schema import SchemaRegistry

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from sqlalchemy.orm import Mapper, RelationshipProperty

_STATUS_COLUMN = "publish_status"


def _ordered_pairs(
    pairs: cabc.Iterable[tuple[sa.ColumnElement[typ.Any], sa.ColumnElement[typ.Any]]],
    key_columns: cabc.Sequence[sa.ColumnElement[typ.Any]],
    *,
    key_side: int,
) -> list[tuple[sa.ColumnElement[typ.Any], sa.ColumnElement[typ.Any]]]:
    """Order column pairs to follow the referenced key column order."""
    by_key = {pair[key_side]: pair for pair in pairs}
    return [by_key[column] for column in key_columns if column in by_key]


def _relationship_from_property(
    prop: RelationshipProperty[typ.Any],
    source: Mapper[typ.Any],
    types: cabc.Mapping[type, EntityType],
) -> Relationship | None:
    """Translate one ORM relationship property into a ``Relationship``."""
    target_class = prop.mapper.class_
    target = types.get(target_class)
    if target is None:
        return None
    target_key = list(prop.mapper.primary_key)
    source_key = list(source.primary_key)

    if prop.direction is orm.MANYTOONE:
        pairs = _ordered_pairs(prop.local_remote_pairs or (), target_key, key_side=1)
        return Relationship(
            RelationshipKind.HAS_ONE,
            target,
            tuple(local.name for local, _ in pairs),
        )
    if prop.direction is orm.ONETOMANY:
        pairs = _ordered_pairs(prop.local_remote_pairs or (), source_key, key_side=0)
        kind = (
            RelationshipKind.HAS_MANY if prop.uselist else RelationshipKind.BELONGS_TO
        )
        return Relationship(kind, target, tuple(remote.name for _, remote in pairs))
    if prop.direction is orm.MANYTOMANY:
        secondary = prop.secondary
        if not isinstance(secondary, sa.Table):
            msg = f"{prop} uses a non-table secondary selectable."
            raise UnsupportedRelationshipError(RelationshipKind.MANY_TO_MANY, msg)
        source_pairs = _ordered_pairs(prop.synchronize_pairs, source_key, key_side=0)
        target_pairs = _ordered_pairs(
            prop.secondary_synchronize_pairs or (), target_key, key_side=0
        )
        return Relationship(
            RelationshipKind.MANY_TO_MANY,
            target,
            join_table=JoinTable(
                table=secondary.name,
                source_columns=tuple(column.name for _, column in source_pairs),
                target_columns=tuple(column.name for _, column in target_pairs),
            ),
        )
    msg = f"{prop} has an unrecognised direction {prop.direction!r}."
    raise UnsupportedRelationshipError(RelationshipKind.HAS_ONE, msg)


def registry_from_declarative(
    base: type[orm.DeclarativeBase],
    *,
    publishable: cabc.Callable[[type], bool] | None = None,
    status_column: str = _STATUS_COLUMN,
) -> SchemaRegistry:
    """Return a registry describing every class mapped by ``base``.

    Parameters
    ----------
    base : type[orm.DeclarativeBase]
        Declarative base whose registry lists the production models.
    publishable : collections.abc.Callable[[type], bool] | None, optional
        Predicate deciding which model classes participate in publishing.
        Every mapped class participates when omitted.
    status_column : str, optional
        Draft status column excluded from the copied columns.

    Returns
    -------
    SchemaRegistry
        Registry keyed by one ``EntityType`` per mapped class, named after the
        class.

    Notes
    -----
    Relationships to classes outside ``base`` are ignored. ``viewonly``
    relationships are skipped.
    """
    orm.configure_mappers()
    mappers = sorted(
        (
            mapper
            for mapper in base.registry.mappers
            if not mapper.single and isinstance(mapper.local_table, sa.Table)
        ),
        key=lambda mapper: mapper.class_.__name__,
    )
    types = {mapper.class_: EntityType(mapper.class_.__name__) for mapper in mappers}
    registry = SchemaRegistry()
    for mapper in mappers:
        table = typ.cast("sa.Table", mapper.local_table)
        primary_key = tuple(column.name for column in mapper.primary_key)
        relationships = tuple(
            relationship
            for prop in mapper.relationships
            if not prop.viewonly
            and (relationship := _relationship_from_property(prop, mapper, types))
            is not None
        )
        registry.register(
            EntitySchema(
                entity_type=types[mapper.class_],
                table=table.name,
                primary_key=primary_key,
                columns=tuple(
                    column.name
                    for column in table.columns
                    if column.name != status_column
                ),
                relationships=relationships,
                publishable=publishable(mapper.class_) if publishable else True,
                model=mapper.class_,
                key_attributes=tuple(
                    mapper.get_property_by_column(column).key
                    for column in mapper.primary_key
                ),
            )
        )
    return registry


__all__ = ("registry_from_declarative",)
