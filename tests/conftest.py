"""Pytest fixtures for database-backed publishing tests.

Examples
--------
Run the database-backed tests against PostgreSQL:

>>> PUBSYNC_TEST_DB=pglite pytest -k publish
"""

from __future__ import annotations

import asyncio
import typing as typ

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from _engine_helpers import open_engine
from _publishing_helpers import build_registry

if typ.TYPE_CHECKING:
    from pathlib import Path

    from sqlalchemy.ext.asyncio import AsyncEngine

    from pubsync.publishing import SchemaRegistry


@pytest_asyncio.fixture
async def engine(tmp_path: Path) -> typ.AsyncIterator[AsyncEngine]:
    """Yield an async engine with the shop schema created."""
    async with open_engine(tmp_path) as created:
        yield created


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Return an async session factory bound to the test engine."""
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def registry() -> SchemaRegistry:
    """Return the registry describing the shop schema."""
    return build_registry()


@pytest.fixture
def _function_scoped_runner() -> typ.Iterator[asyncio.Runner]:
    """Provide a function-scoped asyncio.Runner for sync BDD steps."""
    with asyncio.Runner() as runner:
        yield runner
