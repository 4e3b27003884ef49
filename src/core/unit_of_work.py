"""
Unit of Work port.

Application services never touch a database session directly. They open a
unit of work, use the repositories hanging off it, and decide when a logical
unit is committed. The ingestion path relies on this to commit a ticket
before its SLA record, so a failed SLA write never rolls the ticket back.
"""

from abc import ABC, abstractmethod
from typing import Any, Callable


class IUnitOfWork(ABC):
    """Transactional boundary exposing the repositories of all modules."""

    tickets: Any
    sync_state: Any
    sla_records: Any

    async def __aenter__(self) -> "IUnitOfWork":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if exc_type is not None:
            await self.rollback()
        await self.close()

    @abstractmethod
    async def commit(self) -> None:
        """Commit pending changes."""

    @abstractmethod
    async def rollback(self) -> None:
        """Discard pending changes."""

    async def close(self) -> None:
        """Release underlying resources."""


UnitOfWorkFactory = Callable[[], IUnitOfWork]
