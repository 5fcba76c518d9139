"""Publish and discard orchestration.

These functions resolve the dependency closure and apply it inside one unit
of work transaction. Resolution reads happen in the same transaction as the
writes, so the applied set matches what was resolved under the configured
isolation level.

Examples
--------
Publish an order and everything it drags along:

>>> async with SqlAlchemyPublishingUnitOfWork(session_factory) as uow:
...     outcome = await publish_records(uow, registry, [RecordRef(orders, (5,))])
>>> outcome.dependencies[orders]
((5,),)
"""

from __future__ import annotations

import asyncio
import typing as typ

from pubsync.config import PublishSettings
from pubsync.logging import get_logger, log_error, log_info

from .apply import Discarder, Publisher
from .domain import PublishOutcome
from .resolver import DependencyResolver

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from .apply import _Synchroniser
    from .domain import EntityType, KeyTuple
    from .schema import SchemaRegistry
    from .uow import PublishingUnitOfWork

logger = get_logger(__name__)


async def resolve_dependencies(
    uow: PublishingUnitOfWork,
    registry: SchemaRegistry,
    records: cabc.Iterable[object],
    *,
    settings: PublishSettings | None = None,
    is_publishable: cabc.Callable[[object], bool] | None = None,
) -> dict[EntityType, tuple[KeyTuple, ...]]:
    """Resolve the dependency closure of ``records`` without applying it.

    Parameters
    ----------
    uow : PublishingUnitOfWork
        Unit of work providing the session used for discovery queries.
    registry : SchemaRegistry
        Registry supplying entity metadata.
    records : collections.abc.Iterable[object]
        Root records: ``RecordRef`` instances or registered model instances.
    settings : PublishSettings | None, optional
        Naming, status column and batching settings.
    is_publishable : collections.abc.Callable[[object], bool] | None, optional
        Root-record predicate; defaults to the registry's.

    Returns
    -------
    dict[EntityType, tuple[KeyTuple, ...]]
        Resolved key tuples per entity type.

    Raises
    ------
    DependencyDiscoveryError
        If a discovery query fails.
    """
    resolver = DependencyResolver(
        uow.session,
        registry,
        settings=settings,
        is_publishable=is_publishable,
    )
    await resolver.generate_dependencies(records)
    return resolver.snapshot()


async def _synchronise(
    uow: PublishingUnitOfWork,
    registry: SchemaRegistry,
    records: cabc.Iterable[object],
    synchroniser: _Synchroniser,
    settings: PublishSettings,
    is_publishable: cabc.Callable[[object], bool] | None,
) -> PublishOutcome:
    """Resolve and apply in one transaction, rolling back on any failure."""
    roots = list(records)
    operation = synchroniser.operation
    try:
        async with asyncio.timeout(settings.timeout_seconds):
            await uow.begin(settings.isolation_level)
            resolver = DependencyResolver(
                uow.session,
                registry,
                settings=settings,
                is_publishable=is_publishable,
            )
            dependencies = await resolver.generate_dependencies(roots)
            counts = await synchroniser.apply(uow.session, dependencies)
            await uow.commit()
    except Exception as exc:
        log_error(
            logger,
            "%s of %s root record(s) failed and was rolled back: %s",
            operation,
            len(roots),
            exc,
        )
        await uow.rollback()
        raise

    outcome = PublishOutcome(
        operation=operation,
        dependencies=resolver.snapshot(),
        rowcounts=counts,
    )
    log_info(
        logger,
        "%s applied %s key(s) across %s entity type(s).",
        operation,
        sum(len(keys) for keys in outcome.dependencies.values()),
        len(outcome.dependencies),
    )
    return outcome


async def publish_records(
    uow: PublishingUnitOfWork,
    registry: SchemaRegistry,
    records: cabc.Iterable[object],
    *,
    settings: PublishSettings | None = None,
    is_publishable: cabc.Callable[[object], bool] | None = None,
) -> PublishOutcome:
    """Publish ``records`` and their DIRTY dependencies atomically.

    Parameters
    ----------
    uow : PublishingUnitOfWork
        Unit-of-work boundary providing the session and transaction scope.
    registry : SchemaRegistry
        Registry supplying entity metadata.
    records : collections.abc.Iterable[object]
        Root records to publish.
    settings : PublishSettings | None, optional
        Publishing settings; defaults apply when omitted.
    is_publishable : collections.abc.Callable[[object], bool] | None, optional
        Root-record predicate; defaults to the registry's.

    Returns
    -------
    PublishOutcome
        Resolved dependencies and rows affected per step.

    Raises
    ------
    DependencyDiscoveryError
        If resolution fails; nothing is written.
    TimeoutError
        If ``settings.timeout_seconds`` elapses; the transaction is rolled
        back.

    Notes
    -----
    Any database error raised while applying propagates unchanged after the
    transaction has been rolled back.
    """
    settings = settings or PublishSettings()
    return await _synchronise(
        uow,
        registry,
        records,
        Publisher(registry, settings=settings),
        settings,
        is_publishable,
    )


async def discard_records(
    uow: PublishingUnitOfWork,
    registry: SchemaRegistry,
    records: cabc.Iterable[object],
    *,
    settings: PublishSettings | None = None,
    is_publishable: cabc.Callable[[object], bool] | None = None,
) -> PublishOutcome:
    """Discard unpublished edits of ``records`` and their DIRTY dependencies.

    Draft rows are restored from production in one transaction. Drafts that
    were never published are removed.
    """
    settings = settings or PublishSettings()
    return await _synchronise(
        uow,
        registry,
        records,
        Discarder(registry, settings=settings),
        settings,
        is_publishable,
    )


__all__ = ("discard_records", "publish_records", "resolve_dependencies")
