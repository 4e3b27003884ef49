"""
SLA Infrastructure Repositories
=================================

Concrete implementations of repository interfaces using SQLAlchemy.

This layer contains the data access logic - how we store and retrieve
entities from the database.
"""

from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.config import SLAState, TERMINAL_TICKET_STATUSES
from src.core import PersistenceException, ensure_utc
from src.infrastructure.database.upsert import upsert_row
from src.sla.application.services import ISLARecordRepository
from src.sla.domain import SLARecord
from src.sla.infrastructure.models import SLARecordModel

# Columns an upsert may overwrite; escalation history is excluded
_REFRESHABLE_COLUMNS = ("ticket_id", "priority", "status", "category", "assignee_id", "updated_at")


def _to_entity(model: SLARecordModel) -> SLARecord:
    return SLARecord(
        id=str(model.id),
        external_id=model.external_id,
        source=model.source,
        ticket_id=model.ticket_id,
        priority=model.priority,
        status=model.status,
        opened_at=ensure_utc(model.opened_at),
        category=model.category,
        assignee_id=model.assignee_id,
        last_notified_state=model.last_notified_state,
        last_notified_at=ensure_utc(model.last_notified_at),
        created_at=ensure_utc(model.created_at),
        updated_at=ensure_utc(model.updated_at),
    )


class SQLAlchemySLARecordRepository(ISLARecordRepository):
    """
    SQLAlchemy implementation of SLA record repository.

    Runs inside the unit of work's session; never commits on its own.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    async def find_by_key(self, external_id: str, source: str) -> Optional[SLARecord]:
        """Get SLA record by ticket key."""
        stmt = select(SLARecordModel).where(
            SLARecordModel.external_id == external_id,
            SLARecordModel.source == source,
        ).execution_options(populate_existing=True)
        try:
            result = await self._session.execute(stmt)
        except SQLAlchemyError as e:
            raise PersistenceException(f"Failed to load SLA record {external_id}: {e}")

        model = result.scalar_one_or_none()
        return _to_entity(model) if model else None

    async def upsert(self, record: SLARecord) -> SLARecord:
        """Insert or refresh ticket-derived fields, keeping escalation history."""
        now = datetime.now(timezone.utc)
        values = {
            "external_id": record.external_id,
            "source": record.source,
            "ticket_id": record.ticket_id,
            "priority": record.priority,
            "status": record.status,
            "category": record.category,
            "assignee_id": record.assignee_id,
            "opened_at": record.opened_at,
            "updated_at": now,
        }
        try:
            record_id = await upsert_row(
                self._session,
                SLARecordModel,
                values,
                conflict_columns=("external_id", "source"),
                update_columns=_REFRESHABLE_COLUMNS,
            )
        except SQLAlchemyError as e:
            raise PersistenceException(f"Failed to upsert SLA record {record.external_id}: {e}")

        record.id = str(record_id)
        record.updated_at = now
        return record

    async def find_monitorable(self) -> List[SLARecord]:
        """Records still able to escalate, oldest first."""
        stmt = (
            select(SLARecordModel)
            .where(
                or_(
                    SLARecordModel.last_notified_state.is_(None),
                    SLARecordModel.last_notified_state != SLAState.BREACHED,
                ),
                or_(
                    SLARecordModel.status.is_(None),
                    func.lower(SLARecordModel.status).not_in(TERMINAL_TICKET_STATUSES),
                ),
            )
            .order_by(SLARecordModel.opened_at.asc())
        )
        try:
            result = await self._session.execute(stmt)
        except SQLAlchemyError as e:
            raise PersistenceException(f"Failed to load monitorable SLA records: {e}")

        return [_to_entity(model) for model in result.scalars().all()]

    async def mark_notified(self, external_id: str, source: str, state: str, at: datetime) -> None:
        """Set the notified state; flushed so the caller can still roll back."""
        stmt = (
            update(SLARecordModel)
            .where(
                SLARecordModel.external_id == external_id,
                SLARecordModel.source == source,
            )
            .values(last_notified_state=state, last_notified_at=at, updated_at=at)
        )
        try:
            result = await self._session.execute(stmt)
            await self._session.flush()
        except SQLAlchemyError as e:
            raise PersistenceException(f"Failed to record notification for {external_id}: {e}")

        if result.rowcount == 0:
            raise PersistenceException(f"SLA record {external_id} not found")

    async def list(
        self,
        filters: dict,
        limit: Optional[int] = 100,
        offset: int = 0
    ) -> List[SLARecord]:
        """List SLA records with filters."""
        stmt = select(SLARecordModel)

        if "priority" in filters:
            stmt = stmt.where(SLARecordModel.priority == filters["priority"])
        if "status" in filters:
            stmt = stmt.where(func.lower(SLARecordModel.status) == filters["status"].lower())

        stmt = stmt.order_by(SLARecordModel.opened_at.asc(), SLARecordModel.external_id.asc())
        if limit is not None:
            stmt = stmt.limit(limit)
        if offset:
            stmt = stmt.offset(offset)

        try:
            result = await self._session.execute(stmt)
        except SQLAlchemyError as e:
            raise PersistenceException(f"Failed to list SLA records: {e}")

        return [_to_entity(model) for model in result.scalars().all()]
