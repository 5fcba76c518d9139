"""Transaction boundary for draft/production synchronisation.

One unit of work owns one session, and that session's single transaction
spans dependency resolution and the apply phase. Leaving the context with an
exception rolls the transaction back; nothing is committed implicitly.

Examples
--------
Publish inside an explicit unit of work:

>>> async with SqlAlchemyPublishingUnitOfWork(session_factory) as uow:
...     await uow.begin("REPEATABLE READ")
...     await Publisher(registry).apply(uow.session, dependencies)
...     await uow.commit()
"""

from __future__ import annotations

import typing as typ

from pubsync.logging import get_logger, log_debug, log_info

if typ.TYPE_CHECKING:
    import collections.abc as cabc
    from types import TracebackType

    from sqlalchemy.ext.asyncio import AsyncConnection, AsyncSession

logger = get_logger(__name__)


class PublishingUnitOfWork(typ.Protocol):
    """Transaction boundary used by the publishing services."""

    @property
    def session(self) -> AsyncSession:
        """Return the session carrying the open transaction."""
        ...

    async def begin(self, isolation_level: str | None = None) -> AsyncConnection:
        """Start the transaction, optionally at ``isolation_level``."""
        ...

    async def commit(self) -> None:
        """Make every statement of the transaction durable."""
        ...

    async def rollback(self) -> None:
        """Discard every statement of the transaction."""
        ...


class SqlAlchemyPublishingUnitOfWork:
    """``PublishingUnitOfWork`` over an ``AsyncSession``.

    Parameters
    ----------
    session_factory : collections.abc.Callable[[], AsyncSession]
        Called once per ``async with`` block to open the session.
    """

    def __init__(self, session_factory: cabc.Callable[[], AsyncSession]) -> None:
        self._open_session = session_factory
        self._current: AsyncSession | None = None

    async def __aenter__(self) -> SqlAlchemyPublishingUnitOfWork:
        self._current = self._open_session()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        session, self._current = self._current, None
        if session is None:
            return
        try:
            if exc is not None:
                log_debug(logger, "Rolling back publishing unit of work: %s", exc)
                await session.rollback()
        finally:
            await session.close()

    @property
    def session(self) -> AsyncSession:
        """Return the open session.

        Raises
        ------
        RuntimeError
            Outside an ``async with`` block.
        """
        if self._current is None:
            msg = "Session not initialized for publishing unit of work."
            raise RuntimeError(msg)
        return self._current

    async def begin(self, isolation_level: str | None = None) -> AsyncConnection:
        """Start the transaction, optionally at ``isolation_level``.

        Must run before any statement so the isolation level covers the whole
        resolve-and-apply transaction.
        """
        options = {"isolation_level": isolation_level} if isolation_level else None
        return await self.session.connection(execution_options=options)

    async def commit(self) -> None:
        """Commit the resolve-and-apply transaction."""
        await self.session.commit()
        log_info(logger, "Committed publishing unit of work.")

    async def rollback(self) -> None:
        """Roll the resolve-and-apply transaction back."""
        await self.session.rollback()


__all__ = ("PublishingUnitOfWork", "SqlAlchemyPublishingUnitOfWork")
