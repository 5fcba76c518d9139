"""Dependency resolution over the draft store.

The resolver computes the closure of DIRTY draft records that must travel
together with a set of root records. Each ``(entity type, key)`` pair is
expanded at most once: only the delta of newly discovered keys is queued for
expansion, so the walk terminates once a pass discovers nothing new.

Examples
--------
Resolve the closure of one order inside a unit of work:

>>> async with SqlAlchemyPublishingUnitOfWork(session_factory) as uow:
...     resolver = DependencyResolver(uow.session, registry)
...     dependencies = await resolver.generate_dependencies([order])
"""

from __future__ import annotations

import collections
import typing as typ

import sqlalchemy as sa
from sqlalchemy import exc as sa_exc

from pubsync.config import PublishSettings
from pubsync.logging import get_logger, log_debug

from .domain import Dependency, PublishStatus, RelationshipKind
from .errors import (
    DependencyDiscoveryError,
    KeyArityError,
    UnsupportedRelationshipError,
)
from .query import batched_keys, key_membership

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from sqlalchemy.engine import Dialect
    from sqlalchemy.ext.asyncio import AsyncSession

    from .domain import (
        DependencyMap,
        EntitySchema,
        EntityType,
        KeyTuple,
        Relationship,
    )
    from .schema import SchemaRegistry

    type PublishablePredicate = cabc.Callable[[object], bool]
    type Discovery = tuple[EntityType, tuple[KeyTuple, ...]]

logger = get_logger(__name__)

_RELATED = "related"
_ORIGIN = "origin"
_LINK = "link"


def draft_table(
    name: str,
    columns: cabc.Iterable[str],
    *,
    alias: str | None = None,
) -> sa.TableClause | sa.Alias:
    """Return a lightweight table construct, optionally aliased."""
    table = sa.table(name, *(sa.column(column) for column in dict.fromkeys(columns)))
    return table.alias(alias) if alias is not None else table


class DependencyResolver:
    """Compute the dependency closure for a set of root records.

    Parameters
    ----------
    session : AsyncSession
        Session whose transaction the discovery queries run in.
    registry : SchemaRegistry
        Registry supplying entity metadata.
    settings : PublishSettings | None, optional
        Naming, status column and batching settings.
    is_publishable : collections.abc.Callable[[object], bool] | None, optional
        Predicate deciding whether a root record participates. Defaults to the
        registry's predicate.
    """

    def __init__(
        self,
        session: AsyncSession,
        registry: SchemaRegistry,
        *,
        settings: PublishSettings | None = None,
        is_publishable: PublishablePredicate | None = None,
    ) -> None:
        self._session = session
        self._registry = registry
        self._settings = settings or PublishSettings()
        self._is_publishable = is_publishable or registry.is_publishable
        self._dependencies: DependencyMap = {}
        self._pending: collections.deque[Discovery] = collections.deque()

    @property
    def dependencies(self) -> DependencyMap:
        """Return the accumulated dependency mapping."""
        return self._dependencies

    def snapshot(self) -> dict[EntityType, tuple[KeyTuple, ...]]:
        """Return the resolved keys per entity type in discovery order."""
        return {
            entity_type: dependency.keys
            for entity_type, dependency in self._dependencies.items()
            if len(dependency)
        }

    @property
    def _dialect(self) -> Dialect:
        return self._session.get_bind().dialect

    def _merge(
        self,
        entity_type: EntityType,
        keys: cabc.Iterable[KeyTuple],
    ) -> tuple[KeyTuple, ...]:
        """Merge keys into the type's dependency and return the delta."""
        width = len(self._registry.primary_key_columns(entity_type))
        normalised = [tuple(key) for key in keys]
        for key in normalised:
            if len(key) != width:
                raise KeyArityError(key, width)
        dependency = self._dependencies.get(entity_type)
        if dependency is None:
            dependency = self._dependencies[entity_type] = Dependency(entity_type)
        return dependency.merge(normalised)

    async def add_dependency(
        self,
        entity_type: EntityType,
        keys: cabc.Iterable[KeyTuple],
    ) -> tuple[KeyTuple, ...]:
        """Merge ``keys`` for ``entity_type`` and expand only the new ones.

        Parameters
        ----------
        entity_type : EntityType
            Entity type the keys belong to.
        keys : collections.abc.Iterable[KeyTuple]
            Primary-key tuples to add.

        Returns
        -------
        tuple[KeyTuple, ...]
            Keys that were not previously known. Already-known keys are never
            expanded again.

        Raises
        ------
        DependencyDiscoveryError
            If any discovery query fails; the closure is then incomplete and
            must not be applied.
        """
        delta = self._merge(entity_type, keys)
        if delta:
            self._pending.append((entity_type, delta))
            await self._drain()
        return delta

    async def _drain(self) -> None:
        while self._pending:
            entity_type, keys = self._pending.popleft()
            for target, found in await self.expand(entity_type, keys):
                delta = self._merge(target, found)
                if delta:
                    log_debug(
                        logger,
                        "Discovered %s new %s key(s) from %s.",
                        len(delta),
                        target,
                        entity_type,
                    )
                    self._pending.append((target, delta))

    async def expand(
        self,
        entity_type: EntityType,
        keys: cabc.Sequence[KeyTuple],
    ) -> list[Discovery]:
        """Discover DIRTY related records for ``keys`` of ``entity_type``.

        Returns
        -------
        list[tuple[EntityType, tuple[KeyTuple, ...]]]
            One entry per publishable relationship with the target keys found.
        """
        source = self._registry.get(entity_type)
        discoveries: list[Discovery] = []
        if not keys:
            return discoveries
        for relationship in source.relationships:
            target = self._registry.get(relationship.target)
            if not target.publishable:
                continue
            found: dict[KeyTuple, None] = {}
            for batch in batched_keys(keys, self._settings.max_keys_per_statement):
                statement = self._discovery_statement(
                    source, target, relationship, batch
                )
                try:
                    result = await self._session.execute(statement)
                except sa_exc.SQLAlchemyError as exc:
                    raise DependencyDiscoveryError(
                        entity_type, relationship.target, relationship.kind
                    ) from exc
                found.update((tuple(row), None) for row in result)
            discoveries.append((relationship.target, tuple(found)))
        return discoveries

    def _discovery_statement(
        self,
        source: EntitySchema,
        target: EntitySchema,
        relationship: Relationship,
        keys: cabc.Sequence[KeyTuple],
    ) -> sa.Select:
        """Build the kind-specific discovery query for one key batch."""
        naming = self._settings.naming
        status = self._settings.status_column
        dialect = self._dialect
        related = draft_table(
            naming.draft_table_name(target.table),
            (*target.primary_key, *relationship.foreign_key, status),
            alias=_RELATED,
        )
        selected = [related.c[column] for column in target.primary_key]
        dirty = related.c[status] == PublishStatus.DIRTY.value

        match relationship.kind:
            case RelationshipKind.BELONGS_TO | RelationshipKind.HAS_MANY:
                membership = key_membership(
                    _RELATED, relationship.foreign_key, keys, dialect=dialect
                )
                return sa.select(*selected).where(membership.clause(), dirty).distinct()
            case RelationshipKind.HAS_ONE:
                if len(relationship.foreign_key) != len(target.primary_key):
                    msg = (
                        f"foreign key {relationship.foreign_key!r} does not match "
                        f"the {target.entity_type.name!r} primary key."
                    )
                    raise UnsupportedRelationshipError(relationship.kind, msg)
                origin = draft_table(
                    naming.draft_table_name(source.table),
                    (*source.primary_key, *relationship.foreign_key),
                    alias=_ORIGIN,
                )
                on_clause = sa.and_(*(
                    related.c[target_column] == origin.c[fk_column]
                    for target_column, fk_column in zip(
                        target.primary_key, relationship.foreign_key, strict=True
                    )
                ))
                membership = key_membership(
                    _ORIGIN, source.primary_key, keys, dialect=dialect
                )
                return (
                    sa
                    .select(*selected)
                    .select_from(related.join(origin, on_clause))
                    .where(membership.clause(), dirty)
                    .distinct()
                )
            case RelationshipKind.MANY_TO_MANY:
                join = relationship.join_table
                if join is None or len(join.target_columns) != len(target.primary_key):
                    msg = (
                        f"join table target columns do not match the "
                        f"{target.entity_type.name!r} primary key."
                    )
                    raise UnsupportedRelationshipError(relationship.kind, msg)
                link = draft_table(
                    naming.draft_table_name(join.table), join.columns, alias=_LINK
                )
                on_clause = sa.and_(*(
                    related.c[target_column] == link.c[link_column]
                    for target_column, link_column in zip(
                        target.primary_key, join.target_columns, strict=True
                    )
                ))
                membership = key_membership(
                    _LINK, join.source_columns, keys, dialect=dialect
                )
                return (
                    sa
                    .select(*selected)
                    .select_from(related.join(link, on_clause))
                    .where(membership.clause(), dirty)
                    .distinct()
                )
        raise UnsupportedRelationshipError(relationship.kind, "cannot be expanded.")

    async def generate_dependencies(
        self,
        records: cabc.Iterable[object],
    ) -> DependencyMap:
        """Seed the closure from root records and resolve it.

        Parameters
        ----------
        records : collections.abc.Iterable[object]
            ``RecordRef`` instances or instances of registered models. Records
            rejected by the publishable predicate are skipped.

        Returns
        -------
        DependencyMap
            The complete dependency mapping.
        """
        for record in records:
            if not self._is_publishable(record):
                continue
            ref = self._registry.record_ref(record)
            await self.add_dependency(ref.entity_type, [ref.key])
        return self._dependencies


__all__ = ("DependencyResolver", "draft_table")
