"""
SQLAlchemy Unit of Work
=======================

One AsyncSession per unit of work, with the repositories of every module
bound to it. Commit failures surface as PersistenceException.
"""

from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.core import IUnitOfWork, PersistenceException


class SQLAlchemyUnitOfWork(IUnitOfWork):
    """Unit of work over an async SQLAlchemy session."""

    def __init__(self, session_factory: Callable[[], AsyncSession]):
        self._session_factory = session_factory
        self._session: Optional[AsyncSession] = None

    async def __aenter__(self) -> "SQLAlchemyUnitOfWork":
        # Imported here to keep module import order free of cycles
        from src.sla.infrastructure.repositories import SQLAlchemySLARecordRepository
        from src.sync.infrastructure.repositories import (
            SQLAlchemySyncStateRepository, SQLAlchemyTicketStore
        )

        self._session = self._session_factory()
        self.tickets = SQLAlchemyTicketStore(self._session)
        self.sync_state = SQLAlchemySyncStateRepository(self._session)
        self.sla_records = SQLAlchemySLARecordRepository(self._session)
        return self

    @property
    def session(self) -> AsyncSession:
        if self._session is None:
            raise RuntimeError("Unit of work is not active")
        return self._session

    async def commit(self) -> None:
        try:
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise PersistenceException(f"Commit failed: {e}")

    async def rollback(self) -> None:
        await self.session.rollback()

    async def close(self) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None


def sqlalchemy_uow_factory(session_factory: Callable[[], AsyncSession]) -> Callable[[], SQLAlchemyUnitOfWork]:
    """Factory handed to application services."""
    return lambda: SQLAlchemyUnitOfWork(session_factory)
