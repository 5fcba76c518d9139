"""Engine factories for database-backed publishing tests.

Tests run against SQLite through aiosqlite by default. Set
``PUBSYNC_TEST_DB=pglite`` to run them against an ephemeral PostgreSQL
started by py-pglite instead.
"""

from __future__ import annotations

import asyncio
import contextlib
import os
import typing as typ

import sqlalchemy as sa
import sqlalchemy.exc as sa_exc
from sqlalchemy.ext.asyncio import create_async_engine

from _publishing_helpers import create_schema

if typ.TYPE_CHECKING:
    from pathlib import Path

    from sqlalchemy.ext.asyncio import AsyncEngine

try:
    from py_pglite import PGliteConfig, PGliteManager

    _PGLITE_AVAILABLE = True
except ModuleNotFoundError:  # pragma: no cover - optional dependency
    _PGLITE_AVAILABLE = False


def _test_backend() -> str:
    """Return the requested test backend, failing fast when unavailable."""
    target = os.getenv("PUBSYNC_TEST_DB", "sqlite").lower()
    if target not in {"sqlite", "pglite"}:
        msg = f"Unsupported PUBSYNC_TEST_DB={target!r}; use 'sqlite' or 'pglite'."
        raise RuntimeError(msg)
    if target == "pglite" and not _PGLITE_AVAILABLE:
        msg = (
            "Database-backed tests requested via PUBSYNC_TEST_DB='pglite', "
            "but py-pglite is not installed. Install the 'pglite' extra or "
            "unset PUBSYNC_TEST_DB."
        )
        raise RuntimeError(msg)
    return target


async def _wait_for_engine_ready(engine: AsyncEngine) -> None:
    """Wait for the database to accept SQLAlchemy connections."""
    max_attempts = 30
    delay_seconds = 0.1
    for attempt in range(1, max_attempts + 1):
        try:
            async with engine.connect() as connection:
                await connection.execute(sa.text("SELECT 1"))
        except sa_exc.OperationalError:
            if attempt == max_attempts:
                raise
            await asyncio.sleep(delay_seconds)
        else:
            return


@contextlib.asynccontextmanager
async def _pglite_engine(tmp_path: Path) -> typ.AsyncIterator[AsyncEngine]:
    """Start a py-pglite Postgres and yield an async engine bound to it."""
    config = PGliteConfig(work_dir=tmp_path / "pglite")
    with PGliteManager(config):
        engine = create_async_engine(config.get_connection_string(), pool_pre_ping=True)
        try:
            await _wait_for_engine_ready(engine)
            yield engine
        finally:
            await engine.dispose()


@contextlib.asynccontextmanager
async def open_engine(tmp_path: Path) -> typ.AsyncIterator[AsyncEngine]:
    """Yield an engine for the configured backend with the schema created."""
    if _test_backend() == "pglite":
        async with _pglite_engine(tmp_path) as engine:
            await create_schema(engine)
            yield engine
        return
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'pubsync.db'}")
    try:
        await create_schema(engine)
        yield engine
    finally:
        await engine.dispose()


__all__ = ("open_engine",)
