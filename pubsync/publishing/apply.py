"""Apply resolved dependencies between the draft and production stores.

``Publisher`` overwrites production rows with draft content and marks the
drafts PUBLISHED. ``Discarder`` overwrites draft rows with production content.
Both issue every statement through the caller's session, so the caller's
transaction decides atomicity: a failing statement leaves the whole apply to
be rolled back.

Examples
--------
Publish a resolved dependency mapping:

>>> counts = await Publisher(registry).apply(uow.session, resolver.dependencies)
>>> await uow.commit()
"""

from __future__ import annotations

import typing as typ
from abc import ABC, abstractmethod

import sqlalchemy as sa

from pubsync.config import PublishSettings
from pubsync.logging import get_logger, log_debug

from .domain import Dependency, PublishStatus, RelationshipKind, SyncOperation
from .ordering import parents_first
from .query import batched_keys, key_membership
from .resolver import draft_table

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from sqlalchemy.engine import Dialect
    from sqlalchemy.ext.asyncio import AsyncSession

    from .domain import DependencyMap, EntitySchema, EntityType, KeyTuple
    from .schema import SchemaRegistry

    type Columns = tuple[str, ...]
    type LinkWork = tuple[Columns, list[tuple[Columns, tuple[KeyTuple, ...]]]]

logger = get_logger(__name__)

APPLY_STEPS = ("links_deleted", "deleted", "copied", "links_copied", "marked")


class _Synchroniser(ABC):
    """Shared delete-then-copy machinery for both directions."""

    operation: typ.ClassVar[SyncOperation]

    def __init__(
        self,
        registry: SchemaRegistry,
        *,
        settings: PublishSettings | None = None,
    ) -> None:
        self._registry = registry
        self._settings = settings or PublishSettings()

    def _draft_name(self, table: str) -> str:
        return self._settings.naming.draft_table_name(table)

    @abstractmethod
    def _source_name(self, table: str) -> str:
        """Return the table rows are copied from."""

    @abstractmethod
    def _destination_name(self, table: str) -> str:
        """Return the table rows are deleted from and copied into."""

    def _batches(
        self,
        keys: cabc.Sequence[KeyTuple],
    ) -> cabc.Iterator[tuple[KeyTuple, ...]]:
        return batched_keys(keys, self._settings.max_keys_per_statement)

    async def _execute(self, session: AsyncSession, statement: sa.Executable) -> int:
        result = await session.execute(statement)
        return max(getattr(result, "rowcount", 0), 0)

    async def apply(
        self,
        session: AsyncSession,
        dependencies: DependencyMap | cabc.Mapping[EntityType, cabc.Sequence[KeyTuple]],
    ) -> dict[str, int]:
        """Apply every non-empty key set in ``dependencies``.

        Parameters
        ----------
        session : AsyncSession
            Session whose open transaction receives every statement.
        dependencies : Mapping[EntityType, Dependency | Sequence[KeyTuple]]
            Resolved key tuples per entity type.

        Returns
        -------
        dict[str, int]
            Rows affected per apply step.

        Notes
        -----
        Types with no keys issue no statements. Rows are deleted child-first
        and copied parent-first.
        """
        plan: dict[EntityType, tuple[KeyTuple, ...]] = {}
        for entity_type, value in dependencies.items():
            keys = value.keys if isinstance(value, Dependency) else tuple(value)
            if keys:
                plan[entity_type] = keys
        counts = dict.fromkeys(APPLY_STEPS, 0)
        if not plan:
            return counts

        dialect = session.get_bind().dialect
        if self._settings.defer_constraints and dialect.name == "postgresql":
            await session.execute(sa.text("SET CONSTRAINTS ALL DEFERRED"))

        order = parents_first(self._registry, plan)
        schemas = {
            entity_type: self._registry.get(entity_type) for entity_type in order
        }

        links = self._link_plan(plan)
        for table, (columns, memberships) in links.items():
            counts["links_deleted"] += await self._delete_links(
                session, dialect, table, columns, memberships
            )
        for entity_type in reversed(order):
            counts["deleted"] += await self._delete_rows(
                session, dialect, schemas[entity_type], plan[entity_type]
            )
        for entity_type in order:
            counts["copied"] += await self._copy_rows(
                session, dialect, schemas[entity_type], plan[entity_type]
            )
        for table, (columns, memberships) in links.items():
            counts["links_copied"] += await self._copy_links(
                session, dialect, table, columns, memberships
            )
        for entity_type in order:
            counts["marked"] += await self._finish(
                session, dialect, schemas[entity_type], plan[entity_type]
            )

        log_debug(
            logger,
            "Applied %s to %s entity type(s): %s.",
            self.operation,
            len(order),
            counts,
        )
        return counts

    def _link_plan(
        self,
        plan: cabc.Mapping[EntityType, tuple[KeyTuple, ...]],
    ) -> dict[str, LinkWork]:
        """Group join-row work by join table.

        A join table reached from both of its sides, whether through one
        declaration or through mirrored declarations, is synchronised once
        with the keys of every side that is in ``plan``.
        """
        links: dict[str, tuple[Columns, dict[Columns, dict[KeyTuple, None]]]] = {}
        for schema in self._registry:
            for relationship in schema.relationships:
                join = relationship.join_table
                if (
                    relationship.kind is not RelationshipKind.MANY_TO_MANY
                    or join is None
                    or not schema.publishable
                    or not self._registry.get(relationship.target).publishable
                ):
                    continue
                sides = (
                    (schema.entity_type, join.source_columns),
                    (relationship.target, join.target_columns),
                )
                for entity_type, columns in sides:
                    keys = plan.get(entity_type)
                    if not keys:
                        continue
                    _, memberships = links.setdefault(join.table, (join.columns, {}))
                    memberships.setdefault(columns, {}).update(dict.fromkeys(keys))
        return {
            table: (
                columns,
                [(side, tuple(keys)) for side, keys in memberships.items()],
            )
            for table, (columns, memberships) in links.items()
        }

    async def _delete_rows(
        self,
        session: AsyncSession,
        dialect: Dialect,
        schema: EntitySchema,
        keys: cabc.Sequence[KeyTuple],
    ) -> int:
        name = self._destination_name(schema.table)
        table = draft_table(name, schema.primary_key)
        total = 0
        for batch in self._batches(keys):
            membership = key_membership(
                name, schema.primary_key, batch, dialect=dialect
            )
            total += await self._execute(
                session, sa.delete(table).where(membership.clause())
            )
        return total

    def _copy_select(
        self,
        source: sa.TableClause,
        columns: cabc.Sequence[str],
    ) -> tuple[list[str], sa.Select]:
        return (list(columns), sa.select(*(source.c[column] for column in columns)))

    async def _copy_rows(
        self,
        session: AsyncSession,
        dialect: Dialect,
        schema: EntitySchema,
        keys: cabc.Sequence[KeyTuple],
    ) -> int:
        source_name = self._source_name(schema.table)
        source = draft_table(source_name, (*schema.columns, *schema.primary_key))
        destination = self._destination_table(schema)
        total = 0
        for batch in self._batches(keys):
            membership = key_membership(
                source_name, schema.primary_key, batch, dialect=dialect
            )
            names, select = self._copy_select(source, schema.columns)
            statement = sa.insert(destination).from_select(
                names, select.where(membership.clause())
            )
            total += await self._execute(session, statement)
        return total

    def _destination_table(self, schema: EntitySchema) -> sa.TableClause:
        return draft_table(self._destination_name(schema.table), schema.columns)

    async def _delete_links(
        self,
        session: AsyncSession,
        dialect: Dialect,
        join_table: str,
        columns: Columns,
        memberships: cabc.Sequence[tuple[Columns, tuple[KeyTuple, ...]]],
    ) -> int:
        name = self._destination_name(join_table)
        table = draft_table(name, columns)
        total = 0
        for side, keys in memberships:
            for batch in self._batches(keys):
                membership = key_membership(name, side, batch, dialect=dialect)
                total += await self._execute(
                    session, sa.delete(table).where(membership.clause())
                )
        return total

    async def _copy_links(
        self,
        session: AsyncSession,
        dialect: Dialect,
        join_table: str,
        columns: Columns,
        memberships: cabc.Sequence[tuple[Columns, tuple[KeyTuple, ...]]],
    ) -> int:
        """Copy the join rows touching any side's keys, each row once.

        Every destination row matching a side was deleted beforehand, so a
        destination row equal to a source row can only be one this call has
        already copied through another side.
        """
        source_name = self._source_name(join_table)
        source = draft_table(source_name, columns)
        destination_name = self._destination_name(join_table)
        destination = draft_table(destination_name, columns)
        copied = draft_table(destination_name, columns, alias="copied")
        already_copied = sa.exists().where(*(
            copied.c[column] == source.c[column] for column in columns
        ))
        total = 0
        for side, keys in memberships:
            for batch in self._batches(keys):
                membership = key_membership(source_name, side, batch, dialect=dialect)
                select = sa.select(*(source.c[column] for column in columns)).where(
                    membership.clause(), ~already_copied
                )
                statement = sa.insert(destination).from_select(list(columns), select)
                total += await self._execute(session, statement)
        return total

    async def _finish(
        self,
        session: AsyncSession,
        dialect: Dialect,
        schema: EntitySchema,
        keys: cabc.Sequence[KeyTuple],
    ) -> int:
        return 0


class Publisher(_Synchroniser):
    """Copy draft rows over production rows and mark the drafts PUBLISHED."""

    operation = SyncOperation.PUBLISH

    def _source_name(self, table: str) -> str:
        return self._draft_name(table)

    def _destination_name(self, table: str) -> str:
        return table

    async def _finish(
        self,
        session: AsyncSession,
        dialect: Dialect,
        schema: EntitySchema,
        keys: cabc.Sequence[KeyTuple],
    ) -> int:
        status = self._settings.status_column
        name = self._draft_name(schema.table)
        table = draft_table(name, (*schema.primary_key, status))
        total = 0
        for batch in self._batches(keys):
            membership = key_membership(
                name, schema.primary_key, batch, dialect=dialect
            )
            statement = (
                sa
                .update(table)
                .where(membership.clause())
                .values({status: PublishStatus.PUBLISHED.value})
            )
            total += await self._execute(session, statement)
        return total


class Discarder(_Synchroniser):
    """Copy production rows over draft rows, dropping unpublished edits.

    Restored drafts are written with status PUBLISHED in the same insert;
    drafts with no production counterpart are removed.
    """

    operation = SyncOperation.DISCARD

    def _source_name(self, table: str) -> str:
        return table

    def _destination_name(self, table: str) -> str:
        return self._draft_name(table)

    def _destination_table(self, schema: EntitySchema) -> sa.TableClause:
        return draft_table(
            self._destination_name(schema.table),
            (*schema.columns, self._settings.status_column),
        )

    def _copy_select(
        self,
        source: sa.TableClause,
        columns: cabc.Sequence[str],
    ) -> tuple[list[str], sa.Select]:
        names, select = super()._copy_select(source, columns)
        status = self._settings.status_column
        return (
            [*names, status],
            select.add_columns(
                sa.literal(PublishStatus.PUBLISHED.value).label(status)
            ),
        )


__all__ = ("APPLY_STEPS", "Discarder", "Publisher")
