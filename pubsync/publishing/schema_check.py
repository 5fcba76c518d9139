"""Draft schema verification against the live database.

Draft tables must mirror their production tables column for column, plus the
status column. This module inspects a database and reports every table that
breaks that rule so deployments can refuse to publish against a drifted
schema.

Examples
--------
Check the draft schema before serving publish requests:

>>> problems = await detect_draft_schema_drift(engine, registry)
>>> if problems:
...     raise DraftSchemaError(problems)
"""

from __future__ import annotations

import typing as typ

import sqlalchemy as sa

from pubsync.config import PublishSettings
from pubsync.logging import get_logger, log_error, log_info

from .domain import RelationshipKind
from .errors import DraftSchemaError

if typ.TYPE_CHECKING:
    from sqlalchemy.engine import Connection
    from sqlalchemy.ext.asyncio import AsyncEngine

    from .schema import SchemaRegistry

_logger = get_logger(__name__)


def _table_columns(inspector: sa.Inspector, table: str) -> set[str] | None:
    if not inspector.has_table(table):
        return None
    return {column["name"] for column in inspector.get_columns(table)}


def _compare_draft_schema(
    connection: Connection,
    registry: SchemaRegistry,
    settings: PublishSettings,
) -> list[str]:
    """Compare draft and production tables inside a sync context."""
    inspector = sa.inspect(connection)
    naming = settings.naming
    status = settings.status_column
    problems: list[str] = []

    for schema in registry:
        if not schema.publishable:
            continue
        draft_name = naming.draft_table_name(schema.table)
        production = _table_columns(inspector, schema.table)
        draft = _table_columns(inspector, draft_name)
        if production is None:
            problems.append(f"production table {schema.table!r} is missing")
        if draft is None:
            problems.append(f"draft table {draft_name!r} is missing")
            continue
        if status not in draft:
            problems.append(f"draft table {draft_name!r} lacks column {status!r}")
        missing = sorted(set(schema.columns) - draft)
        if missing:
            problems.append(f"draft table {draft_name!r} lacks columns {missing}")
        if production is not None and production != draft - {status}:
            problems.append(
                f"draft table {draft_name!r} columns differ from "
                f"{schema.table!r}: {sorted(production ^ (draft - {status}))}"
            )

        for relationship in schema.relationships:
            join = relationship.join_table
            if relationship.kind is not RelationshipKind.MANY_TO_MANY or join is None:
                continue
            if not registry.is_type_publishable(relationship.target):
                continue
            join_draft = naming.draft_table_name(join.table)
            link_columns = _table_columns(inspector, join_draft)
            if link_columns is None:
                problems.append(f"draft join table {join_draft!r} is missing")
                continue
            missing = sorted(set(join.columns) - link_columns)
            if missing:
                problems.append(
                    f"draft join table {join_draft!r} lacks columns {missing}"
                )
    return problems


async def detect_draft_schema_drift(
    engine: AsyncEngine,
    registry: SchemaRegistry,
    *,
    settings: PublishSettings | None = None,
) -> list[str]:
    """Report differences between draft tables and their production tables.

    Parameters
    ----------
    engine : AsyncEngine
        Engine connected to the database holding both stores.
    registry : SchemaRegistry
        Registry listing the publishable entity types.
    settings : PublishSettings | None, optional
        Naming and status column settings.

    Returns
    -------
    list[str]
        One message per problem. An empty list means the schema is usable.
    """
    settings = settings or PublishSettings()
    async with engine.connect() as connection:
        problems = await connection.run_sync(
            _compare_draft_schema, registry, settings
        )
    if problems:
        log_error(
            _logger, "Draft schema drift detected (%s problem(s)).", len(problems)
        )
        for problem in problems:
            log_error(_logger, "  %s", problem)
    else:
        log_info(_logger, "No draft schema drift detected.")
    return problems


async def require_draft_schema(
    engine: AsyncEngine,
    registry: SchemaRegistry,
    *,
    settings: PublishSettings | None = None,
) -> None:
    """Raise ``DraftSchemaError`` when the draft schema has drifted."""
    problems = await detect_draft_schema_drift(engine, registry, settings=settings)
    if problems:
        raise DraftSchemaError(problems)


__all__ = ("detect_draft_schema_drift", "require_draft_schema")
