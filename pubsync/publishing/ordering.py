"""Foreign-key safe ordering of apply steps.

Rows are deleted child-first and inserted parent-first so immediate foreign
key constraints hold after every statement. A type is a child of another when
it holds the foreign key: the source of a ``has_one`` edge, or the target of
a ``belongs_to``/``has_many`` edge. Many-to-many edges impose no order between
the two entity types; their join rows are handled separately.
"""

from __future__ import annotations

import graphlib
import typing as typ

from pubsync.logging import get_logger, log_warning

from .domain import RelationshipKind

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from .domain import EntityType
    from .schema import SchemaRegistry

logger = get_logger(__name__)


def parent_map(
    registry: SchemaRegistry,
    entity_types: cabc.Iterable[EntityType],
) -> dict[EntityType, set[EntityType]]:
    """Return, for each type in ``entity_types``, the types it references."""
    selected = list(dict.fromkeys(entity_types))
    wanted = set(selected)
    parents: dict[EntityType, set[EntityType]] = {
        entity_type: set() for entity_type in selected
    }
    for schema in registry:
        for relationship in schema.relationships:
            if relationship.kind is RelationshipKind.HAS_ONE:
                child, parent = schema.entity_type, relationship.target
            elif relationship.kind in {
                RelationshipKind.BELONGS_TO,
                RelationshipKind.HAS_MANY,
            }:
                child, parent = relationship.target, schema.entity_type
            else:
                continue
            if child == parent or child not in wanted or parent not in wanted:
                continue
            parents[child].add(parent)
    return parents


def parents_first(
    registry: SchemaRegistry,
    entity_types: cabc.Iterable[EntityType],
) -> list[EntityType]:
    """Return ``entity_types`` ordered so referenced types come first.

    Ties keep registry registration order. When the relationship graph has a
    cycle no safe order exists; the registration order is returned and a
    warning is logged, since the store must then defer constraint checks.
    """
    selected = list(dict.fromkeys(entity_types))
    position = {
        entity_type: index
        for index, entity_type in enumerate(registry.entity_types)
    }
    selected.sort(key=lambda entity_type: position.get(entity_type, len(position)))
    parents = parent_map(registry, selected)

    sorter: graphlib.TopologicalSorter[EntityType] = graphlib.TopologicalSorter()
    for entity_type in selected:
        sorter.add(entity_type, *sorted(parents[entity_type], key=position.__getitem__))
    try:
        sorter.prepare()
    except graphlib.CycleError as exc:
        cycle = " -> ".join(str(entity_type) for entity_type in exc.args[1])
        log_warning(
            logger,
            "Relationship cycle %s; applying in registration order. "
            "Foreign keys on these tables must be deferrable.",
            cycle,
        )
        return selected

    ordered: list[EntityType] = []
    while sorter.is_active():
        ready = sorted(sorter.get_ready(), key=position.__getitem__)
        ordered.extend(ready)
        sorter.done(*ready)
    return ordered


__all__ = ("parent_map", "parents_first")
