"""
Sync Infrastructure Repositories
=================================

Concrete implementations of the sync repository interfaces using SQLAlchemy.

This layer contains the data access logic - how we store and retrieve
entities from the database. Repositories never commit; the unit of work does.
"""

from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.core import PersistenceException, ensure_utc
from src.infrastructure.database.upsert import upsert_row
from src.sync.application.services import ISyncStateRepository, ITicketStore
from src.sync.domain import BulkImportMarker, SyncCursor, Ticket
from src.sync.infrastructure.models import BulkImportMarkerModel, SyncCursorModel, TicketModel


def _ticket_to_entity(model: TicketModel) -> Ticket:
    return Ticket(
        id=str(model.id),
        external_id=model.external_id,
        source=model.source,
        short_description=model.short_description,
        description=model.description,
        category=model.category,
        subcategory=model.subcategory,
        status=model.status,
        priority=model.priority,
        impact=model.impact,
        urgency=model.urgency,
        opened_at=ensure_utc(model.opened_at),
        closed_at=ensure_utc(model.closed_at),
        resolved_at=ensure_utc(model.resolved_at),
        remote_updated_at=ensure_utc(model.remote_updated_at),
        requester_id=model.requester_id,
        assignee_id=model.assignee_id,
        assignment_group_id=model.assignment_group_id,
        company_id=model.company_id,
        location_id=model.location_id,
        tags=list(model.tags or []),
        raw_payload=dict(model.raw_payload or {}),
        created_at=ensure_utc(model.created_at),
        updated_at=ensure_utc(model.updated_at),
    )


class SQLAlchemyTicketStore(ITicketStore):
    """
    SQLAlchemy implementation of the ticket store.

    Upserts go through INSERT ... ON CONFLICT (external_id, source) so that
    find-or-create/update is atomic at the database.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    async def find_by_key(self, external_id: str, source: str) -> Optional[Ticket]:
        """Get ticket by (external_id, source)."""
        stmt = select(TicketModel).where(
            TicketModel.external_id == external_id,
            TicketModel.source == source,
        ).execution_options(populate_existing=True)
        try:
            result = await self._session.execute(stmt)
        except SQLAlchemyError as e:
            raise PersistenceException(f"Failed to load ticket {external_id}: {e}")

        model = result.scalar_one_or_none()
        return _ticket_to_entity(model) if model else None

    async def upsert(self, ticket: Ticket) -> Ticket:
        """Insert or fully replace the ticket's columns."""
        now = datetime.now(timezone.utc)
        values = ticket.to_values()
        values["updated_at"] = now
        try:
            ticket_id = await upsert_row(
                self._session,
                TicketModel,
                values,
                conflict_columns=("external_id", "source"),
            )
        except SQLAlchemyError as e:
            raise PersistenceException(f"Failed to upsert ticket {ticket.external_id}: {e}")

        ticket.id = str(ticket_id)
        ticket.updated_at = now
        if ticket.created_at is None:
            ticket.created_at = now
        return ticket

    async def find(self, filters: dict, limit: int = 100, offset: int = 0) -> List[Ticket]:
        """List tickets with equality filters (source, status, priority)."""
        stmt = select(TicketModel)

        for column in ("source", "status", "priority", "assignee_id"):
            if column in filters:
                stmt = stmt.where(getattr(TicketModel, column) == filters[column])

        stmt = stmt.order_by(TicketModel.opened_at.desc()).limit(limit).offset(offset)

        try:
            result = await self._session.execute(stmt)
        except SQLAlchemyError as e:
            raise PersistenceException(f"Failed to list tickets: {e}")

        return [_ticket_to_entity(model) for model in result.scalars().all()]


class SQLAlchemySyncStateRepository(ISyncStateRepository):
    """
    SQLAlchemy implementation of cursor and bulk marker persistence.

    One row per source in each table; a single active coordinator is
    assumed, so read-modify-write through the session is sufficient.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    async def _get(self, model_cls, source: str):
        try:
            return await self._session.get(model_cls, source, populate_existing=True)
        except SQLAlchemyError as e:
            raise PersistenceException(f"Failed to load {model_cls.__tablename__} for {source}: {e}")

    async def get_cursor(self, source: str) -> Optional[SyncCursor]:
        model = await self._get(SyncCursorModel, source)
        if model is None:
            return None
        return SyncCursor(
            source=model.source,
            last_sync_time=ensure_utc(model.last_sync_time),
            last_successful_sync_time=ensure_utc(model.last_successful_sync_time),
            total_attempts=model.total_attempts,
            success_count=model.success_count,
            failure_count=model.failure_count,
            consecutive_failures=model.consecutive_failures,
            last_error=model.last_error,
            last_error_kind=model.last_error_kind,
            last_health_check_at=ensure_utc(model.last_health_check_at),
            is_active=model.is_active,
            is_healthy=model.is_healthy,
        )

    async def save_cursor(self, cursor: SyncCursor) -> None:
        model = await self._get(SyncCursorModel, cursor.source)
        if model is None:
            model = SyncCursorModel(source=cursor.source)
            self._session.add(model)

        model.last_sync_time = cursor.last_sync_time
        model.last_successful_sync_time = cursor.last_successful_sync_time
        model.last_health_check_at = cursor.last_health_check_at
        model.total_attempts = cursor.total_attempts
        model.success_count = cursor.success_count
        model.failure_count = cursor.failure_count
        model.consecutive_failures = cursor.consecutive_failures
        model.last_error = cursor.last_error
        model.last_error_kind = cursor.last_error_kind
        model.is_active = cursor.is_active
        model.is_healthy = cursor.is_healthy
        model.updated_at = datetime.now(timezone.utc)

        try:
            await self._session.flush()
        except SQLAlchemyError as e:
            raise PersistenceException(f"Failed to save sync cursor for {cursor.source}: {e}")

    async def get_bulk_marker(self, source: str) -> Optional[BulkImportMarker]:
        model = await self._get(BulkImportMarkerModel, source)
        if model is None:
            return None
        return BulkImportMarker(
            source=model.source,
            completed=model.completed,
            started_at=ensure_utc(model.started_at),
            last_completed_at=ensure_utc(model.last_completed_at),
            total_imported=model.total_imported,
        )

    async def save_bulk_marker(self, marker: BulkImportMarker) -> None:
        model = await self._get(BulkImportMarkerModel, marker.source)
        if model is None:
            model = BulkImportMarkerModel(source=marker.source)
            self._session.add(model)

        model.completed = marker.completed
        model.started_at = marker.started_at
        model.last_completed_at = marker.last_completed_at
        model.total_imported = marker.total_imported
        model.updated_at = datetime.now(timezone.utc)

        try:
            await self._session.flush()
        except SQLAlchemyError as e:
            raise PersistenceException(f"Failed to save bulk import marker for {marker.source}: {e}")
