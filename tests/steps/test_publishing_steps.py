"""Behavioural tests for publishing and discarding draft records.

Examples
--------
Run the publishing BDD scenarios:

>>> pytest tests/steps/test_publishing_steps.py
"""

from __future__ import annotations

import contextlib
import typing as typ

import pytest
import sqlalchemy as sa
from pytest_bdd import given, parsers, scenario, then, when
from sqlalchemy import exc as sa_exc
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from _engine_helpers import open_engine
from _publishing_helpers import (
    DIRTY,
    ORDER,
    customers,
    fetch_rows,
    line_items_draft,
    orders,
    orders_draft,
    seed_order_scenario,
    statuses,
)
from pubsync.publishing import (
    PublishingError,
    RecordRef,
    SqlAlchemyPublishingUnitOfWork,
    discard_records,
    publish_records,
)

if typ.TYPE_CHECKING:
    import asyncio
    import collections.abc as cabc
    from pathlib import Path

    from sqlalchemy.ext.asyncio import AsyncEngine

    from pubsync.publishing import PublishOutcome, SchemaRegistry


class PublishingContext(typ.TypedDict, total=False):
    """Shared state for publishing BDD steps."""

    outcome: PublishOutcome
    error: Exception


def _run_async_step(
    runner: asyncio.Runner,
    step_fn: cabc.Callable[[], typ.Coroutine[object, object, None]],
) -> None:
    """Execute an async BDD step via the provided runner."""
    runner.run(step_fn())


@scenario(
    "../features/publishing.feature",
    "Publishing an order publishes its dirty dependencies",
)
def test_publishing_an_order() -> None:
    """Run the publish scenario."""


@scenario(
    "../features/publishing.feature",
    "A failed publish leaves production untouched",
)
def test_failed_publish() -> None:
    """Run the failed publish scenario."""


@scenario(
    "../features/publishing.feature",
    "Discarding an order restores production content",
)
def test_discarding_an_order() -> None:
    """Run the discard scenario."""


@pytest.fixture
def context() -> PublishingContext:
    """Share state between BDD steps."""
    return typ.cast("PublishingContext", {})


@pytest.fixture
def shop_engine(
    _function_scoped_runner: asyncio.Runner,
    tmp_path: Path,
) -> typ.Iterator[AsyncEngine]:
    """Open an engine on the step runner's event loop."""
    stack = contextlib.AsyncExitStack()
    engine = _function_scoped_runner.run(
        stack.enter_async_context(open_engine(tmp_path))
    )
    try:
        yield engine
    finally:
        _function_scoped_runner.run(stack.aclose())


@pytest.fixture
def shop_sessions(shop_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Return a session factory bound to the step engine."""
    return async_sessionmaker(shop_engine, class_=AsyncSession, expire_on_commit=False)


# -- Given steps


@given("a draft shop with a revised order")
def draft_shop(
    _function_scoped_runner: asyncio.Runner,
    shop_engine: AsyncEngine,
) -> None:
    """Seed production and draft rows around order 5."""

    async def _seed() -> None:
        await seed_order_scenario(shop_engine)

    _run_async_step(_function_scoped_runner, _seed)


@given(parsers.parse("draft line item {item_id:d} has quantity {quantity:d}"))
def set_draft_quantity(
    _function_scoped_runner: asyncio.Runner,
    shop_engine: AsyncEngine,
    item_id: int,
    quantity: int,
) -> None:
    """Overwrite a draft line item quantity."""

    async def _update() -> None:
        async with shop_engine.begin() as connection:
            await connection.execute(
                sa
                .update(line_items_draft)
                .where(line_items_draft.c.id == item_id)
                .values(quantity=quantity)
            )

    _run_async_step(_function_scoped_runner, _update)


# -- When steps


def _apply(
    runner: asyncio.Runner,
    sessions: async_sessionmaker[AsyncSession],
    registry: SchemaRegistry,
    context: PublishingContext,
    operation: cabc.Callable[..., typ.Awaitable[PublishOutcome]],
    order_id: int,
) -> None:
    async def _run() -> None:
        try:
            async with SqlAlchemyPublishingUnitOfWork(sessions) as uow:
                context["outcome"] = await operation(
                    uow, registry, [RecordRef(ORDER, (order_id,))]
                )
        except (PublishingError, sa_exc.SQLAlchemyError) as exc:
            context["error"] = exc

    _run_async_step(runner, _run)


@when(parsers.parse("order {order_id:d} is published"))
def publish_order(
    _function_scoped_runner: asyncio.Runner,
    shop_sessions: async_sessionmaker[AsyncSession],
    registry: SchemaRegistry,
    context: PublishingContext,
    order_id: int,
) -> None:
    """Publish one order through the service layer."""
    _apply(
        _function_scoped_runner,
        shop_sessions,
        registry,
        context,
        publish_records,
        order_id,
    )


@when(parsers.parse("order {order_id:d} is discarded"))
def discard_order(
    _function_scoped_runner: asyncio.Runner,
    shop_sessions: async_sessionmaker[AsyncSession],
    registry: SchemaRegistry,
    context: PublishingContext,
    order_id: int,
) -> None:
    """Discard one order through the service layer."""
    _apply(
        _function_scoped_runner,
        shop_sessions,
        registry,
        context,
        discard_records,
        order_id,
    )


# -- Then steps


def _rows(
    runner: asyncio.Runner,
    engine: AsyncEngine,
    table: sa.Table,
) -> dict[tuple[object, ...], dict[str, object]]:
    return runner.run(fetch_rows(engine, table))


@then("the operation fails")
def operation_failed(context: PublishingContext) -> None:
    """The service raised and produced no outcome."""
    assert "error" in context
    assert "outcome" not in context


@then(parsers.parse('production order {order_id:d} has reference "{reference}"'))
def production_order_reference(
    _function_scoped_runner: asyncio.Runner,
    shop_engine: AsyncEngine,
    order_id: int,
    reference: str,
) -> None:
    """Check the production order reference."""
    rows = _rows(_function_scoped_runner, shop_engine, orders)
    assert rows[(order_id,)]["reference"] == reference


@then(parsers.parse('production customer {customer_id:d} is named "{name}"'))
def production_customer_name(
    _function_scoped_runner: asyncio.Runner,
    shop_engine: AsyncEngine,
    customer_id: int,
    name: str,
) -> None:
    """Check the production customer name."""
    rows = _rows(_function_scoped_runner, shop_engine, customers)
    assert rows[(customer_id,)]["name"] == name


@then(parsers.parse('draft order {order_id:d} has reference "{reference}"'))
def draft_order_reference(
    _function_scoped_runner: asyncio.Runner,
    shop_engine: AsyncEngine,
    order_id: int,
    reference: str,
) -> None:
    """Check the draft order reference."""
    rows = _rows(_function_scoped_runner, shop_engine, orders_draft)
    assert rows[(order_id,)]["reference"] == reference


@then(parsers.parse("draft line item {item_id:d} no longer exists"))
def draft_item_removed(
    _function_scoped_runner: asyncio.Runner,
    shop_engine: AsyncEngine,
    item_id: int,
) -> None:
    """Check that a never-published draft line item was removed."""
    rows = _rows(_function_scoped_runner, shop_engine, line_items_draft)
    assert (item_id,) not in rows


@then(parsers.parse("draft line item {item_id:d} is still dirty"))
def draft_item_dirty(
    _function_scoped_runner: asyncio.Runner,
    shop_engine: AsyncEngine,
    item_id: int,
) -> None:
    """Check that a line item outside the closure was not touched."""
    current = _function_scoped_runner.run(statuses(shop_engine, line_items_draft))
    assert current[(item_id,)] == DIRTY
