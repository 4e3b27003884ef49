"""
Sync Application Services
==========================

Application services for ticket synchronization.

- TicketIngestionService: maps remote records, upserts tickets idempotently
  and keeps the companion SLA record in step
- SyncCoordinator: owns the cursor and circuit state; runs the health gate,
  incremental polls and the one-time bulk import
- NotificationTicketEventPublisher: turns ticket events into notifications

Following SOLID principles:
- Single Responsibility: Each service has one clear purpose
- Dependency Inversion: Depend on abstractions (repositories, remote source), not concrete implementations
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from src.config import ErrorKind, NotificationSeverity, TicketEventType
from src.core import (
    ApplicationException, Clock, ConfigurationException, PersistenceException,
    UnitOfWorkFactory, ValidationException, utc_now
)
from src.sla.application import SLARecordService
from src.sync.application.dto import (
    BulkImportResult, BulkImportStatus, HealthCheckResult, IngestSummary,
    PollResult, SyncStatusResponse
)
from src.sync.application.mapping import TicketMapper
from src.sync.domain import BulkImportMarker, SyncCursor, Ticket, TicketEvent, UpsertResult
from src.shared.infrastructure.logging import get_context_logger, get_logger, new_run_id
from src.shared.infrastructure.notifications import INotificationSink, Notification

logger = get_logger(__name__)


# ========== Interfaces (Dependency Inversion) ==========

class IRemoteTicketSource(ABC):
    """Stateless client over the remote ticketing API."""

    fields: List[str]

    @abstractmethod
    async def fetch_page(
        self,
        query: str,
        fields: List[str],
        limit: int,
        offset: int
    ) -> List[Dict[str, Any]]:
        """Fetch one page of raw records matching ``query``."""

    @abstractmethod
    async def check_connectivity(self) -> None:
        """Single bounded read; raises on any failure."""

    @abstractmethod
    def missing_parameters(self) -> List[str]:
        """Names of required connection settings that are not configured."""

    @abstractmethod
    def build_modified_since_query(self, since: datetime) -> str:
        """Filter for records created or updated at or after ``since``."""

    @abstractmethod
    def build_bulk_query(self) -> str:
        """Filter for a full scan in a stable order."""

    async def close(self) -> None:
        """Release network resources."""


class ITicketStore(ABC):
    """Interface for ticket data access."""

    @abstractmethod
    async def find_by_key(self, external_id: str, source: str) -> Optional[Ticket]:
        """Get ticket by (external_id, source)."""

    @abstractmethod
    async def upsert(self, ticket: Ticket) -> Ticket:
        """Atomic insert-or-replace keyed by (external_id, source)."""

    @abstractmethod
    async def find(self, filters: dict, limit: int = 100, offset: int = 0) -> List[Ticket]:
        """List tickets matching simple equality filters."""


class ISyncStateRepository(ABC):
    """Interface for cursor and bulk import marker persistence."""

    @abstractmethod
    async def get_cursor(self, source: str) -> Optional[SyncCursor]:
        """Get the sync cursor of a source."""

    @abstractmethod
    async def save_cursor(self, cursor: SyncCursor) -> None:
        """Insert or update the sync cursor."""

    @abstractmethod
    async def get_bulk_marker(self, source: str) -> Optional[BulkImportMarker]:
        """Get the bulk import marker of a source."""

    @abstractmethod
    async def save_bulk_marker(self, marker: BulkImportMarker) -> None:
        """Insert or update the bulk import marker."""


class ITicketEventPublisher(ABC):
    """Receives new_ticket / updated_ticket events."""

    @abstractmethod
    async def publish(self, event: TicketEvent) -> None:
        """Publish an event."""


# ========== Event publishing ==========

class NotificationTicketEventPublisher(ITicketEventPublisher):
    """Publishes ticket events as info notifications."""

    def __init__(self, sink: INotificationSink):
        self._sink = sink

    async def publish(self, event: TicketEvent) -> None:
        ticket = event.ticket
        summary = ticket.short_description or "(no description)"
        if event.event_type == TicketEventType.NEW_TICKET:
            title = "New Ticket"
            message = f"Ticket {ticket.external_id} created: {summary}"
        else:
            title = "Ticket Updated"
            message = f"Ticket {ticket.external_id} updated ({', '.join(event.changed_fields)}): {summary}"

        await self._sink.notify(Notification(
            title=title,
            message=message,
            severity=NotificationSeverity.INFO,
            related_entity_id=ticket.external_id,
            related_entity_type="ticket",
            metadata={
                "event_type": event.event_type,
                "source": ticket.source,
                "status": ticket.status,
                "priority": ticket.priority,
                "changed_fields": list(event.changed_fields),
            },
        ))


# ========== Ingestion ==========

class TicketIngestionService:
    """
    Idempotent upsert of remote records.

    The ticket is committed before its SLA record. A failed SLA write is
    rolled back on its own, logged and reported on the result; the ticket
    stays stored.
    """

    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        source: str,
        sla_service: SLARecordService,
        publisher: Optional[ITicketEventPublisher] = None,
        mapper: Optional[TicketMapper] = None
    ):
        self._uow_factory = uow_factory
        self.source = source
        self._sla_service = sla_service
        self._publisher = publisher
        self._mapper = mapper or TicketMapper(source)

    async def upsert(self, raw: Dict[str, Any]) -> UpsertResult:
        """
        Upsert one raw remote record.

        Raises:
            ValidationException: Record cannot be mapped
            PersistenceException: Ticket could not be stored
        """
        ticket = self._mapper.to_ticket(raw)

        async with self._uow_factory() as uow:
            existing = await uow.tickets.find_by_key(ticket.external_id, ticket.source)

            if existing is None:
                stored = await uow.tickets.upsert(ticket)
                result = UpsertResult(ticket=stored, is_new=True, changed=False)
            else:
                changed_fields = ticket.diff(existing)
                if changed_fields:
                    ticket.id = existing.id
                    ticket.created_at = existing.created_at
                    stored = await uow.tickets.upsert(ticket)
                    result = UpsertResult(
                        ticket=stored, is_new=False, changed=True, changed_fields=changed_fields
                    )
                else:
                    result = UpsertResult(ticket=existing, is_new=False, changed=False)

            await uow.commit()

            try:
                await self._sla_service.sync_from_ticket(
                    uow.sla_records, result.ticket, result.is_new, result.changed
                )
                await uow.commit()
            except PersistenceException as e:
                await uow.rollback()
                result.sla_error = e.message
                logger.error(
                    "SLA record write failed, ticket kept",
                    extra={"external_id": ticket.external_id, "error": e.message}
                )

        if result.has_effect:
            await self._publish(result)

        return result

    async def _publish(self, result: UpsertResult) -> None:
        if self._publisher is None:
            return

        event = TicketEvent(
            event_type=TicketEventType.NEW_TICKET if result.is_new else TicketEventType.UPDATED_TICKET,
            ticket=result.ticket,
            changed_fields=list(result.changed_fields),
        )
        try:
            await self._publisher.publish(event)
        except ApplicationException as e:
            logger.error(
                "Ticket event publishing failed",
                extra={"external_id": result.ticket.external_id, "event_type": event.event_type, "error": e.message}
            )

    async def ingest_batch(self, records: List[Dict[str, Any]]) -> IngestSummary:
        """
        Upsert a page of records; one bad record never aborts the rest.

        Returns:
            IngestSummary with saved / updated / unchanged / error counts
        """
        summary = IngestSummary()

        for raw in records:
            label = raw.get("number") if isinstance(raw, dict) else None
            try:
                result = await self.upsert(raw)
            except ValidationException as e:
                summary.errors += 1
                summary.error_messages.append(f"{label or '?'}: {e.message}")
                logger.warning("Skipping invalid remote record", extra={"external_id": label, "error": e.message})
                continue
            except PersistenceException as e:
                summary.errors += 1
                summary.persistence_errors += 1
                summary.error_messages.append(f"{label or '?'}: {e.message}")
                logger.error("Failed to store ticket", extra={"external_id": label, "error": e.message})
                # A rejected record still moves a capped window past itself
                summary.observe_remote_update(self._mapper.to_ticket(raw).remote_updated_at)
                continue

            if result.is_new:
                summary.saved += 1
            elif result.changed:
                summary.updated += 1
            else:
                summary.unchanged += 1
            if result.sla_error:
                summary.sla_errors += 1
            summary.observe_remote_update(result.ticket.remote_updated_at)

        return summary


# ========== Coordinator ==========

def _skipped_records(summary: IngestSummary) -> Optional[str]:
    """Cursor note for records the store rejected; they never fail a tick."""
    if not summary.persistence_errors:
        return None
    shown = "; ".join(summary.error_messages[-3:])
    return f"{summary.persistence_errors} record(s) rejected by the store; recent errors: {shown}"


@dataclass
class SyncOptions:
    """Tunables of the sync coordinator."""

    source: str
    incremental_batch_size: int = 100
    bulk_batch_size: int = 1000
    max_pages_per_tick: int = 50
    circuit_trip_threshold: int = 1
    initial_lookback_hours: int = 24

    @classmethod
    def from_settings(cls, settings: Any) -> "SyncOptions":
        return cls(
            source=settings.sync_source,
            incremental_batch_size=settings.sync_incremental_batch_size,
            bulk_batch_size=settings.sync_bulk_batch_size,
            max_pages_per_tick=settings.sync_max_pages_per_tick,
            circuit_trip_threshold=settings.sync_circuit_trip_threshold,
            initial_lookback_hours=settings.sync_initial_lookback_hours,
        )


class SyncCoordinator:
    """
    Orchestrates synchronization with one remote source.

    Cursor invariants:
    - last_sync_time never decreases
    - it only advances on a poll that completed without a tick-level failure

    Circuit: a failing tick or health check counts toward the trip
    threshold; once open, polls and bulk imports are skipped without any
    remote call until a health check passes.
    """

    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        remote: IRemoteTicketSource,
        ingestion: TicketIngestionService,
        sink: INotificationSink,
        options: SyncOptions,
        clock: Clock = utc_now
    ):
        self._uow_factory = uow_factory
        self._remote = remote
        self._ingestion = ingestion
        self._sink = sink
        self.options = options
        self._clock = clock
        self._poll_in_progress = False
        self._bulk_in_progress = False

    @property
    def source(self) -> str:
        return self.options.source

    @property
    def poll_in_progress(self) -> bool:
        return self._poll_in_progress

    # ----- state helpers -----

    async def _load_cursor(self, uow) -> SyncCursor:
        cursor = await uow.sync_state.get_cursor(self.source)
        if cursor is None:
            cursor = SyncCursor.initial(self.source, self._clock(), self.options.initial_lookback_hours)
        return cursor

    async def _load_marker(self, uow) -> BulkImportMarker:
        marker = await uow.sync_state.get_bulk_marker(self.source)
        return marker or BulkImportMarker(source=self.source)

    async def _run_health_gate(self) -> Optional[ApplicationException]:
        """Configuration check, then connectivity check. Returns the failure, if any."""
        missing = self._remote.missing_parameters()
        if missing:
            return ConfigurationException(
                f"Missing {self.source} configuration: {', '.join(missing)}",
                missing=missing,
            )
        try:
            await self._remote.check_connectivity()
        except ApplicationException as e:
            return e
        return None

    async def _notify(self, title: str, message: str, severity: str, **metadata: Any) -> None:
        try:
            await self._sink.notify(Notification(
                title=title,
                message=message,
                severity=severity,
                related_entity_id=self.source,
                related_entity_type="sync_source",
                metadata=metadata,
            ))
        except ApplicationException as e:
            logger.error("Sync notification failed", extra={"title": title, "error": e.message})

    async def _notify_circuit_opened(self, error: ApplicationException) -> None:
        await self._notify(
            f"{self.source} Sync Circuit Open",
            f"Polling {self.source} is paused after repeated failures: {error.message}",
            NotificationSeverity.ERROR,
            error_kind=error.error_kind,
        )

    async def _notify_circuit_closed(self) -> None:
        await self._notify(
            f"{self.source} Sync Recovered",
            f"Health check passed; polling {self.source} resumes",
            NotificationSeverity.INFO,
        )

    # ----- health -----

    async def health_check(self) -> HealthCheckResult:
        """
        Run the health gate and update the circuit.

        Success closes the circuit and resets consecutive failures; failure
        counts toward the trip threshold.
        """
        error = await self._run_health_gate()
        now = self._clock()
        reclosed = tripped = False

        async with self._uow_factory() as uow:
            cursor = await self._load_cursor(uow)
            if error is None:
                reclosed = cursor.record_health_check_passed(now, self.options.circuit_trip_threshold)
            else:
                cursor.last_health_check_at = now
                tripped = cursor.record_failure(
                    error.error_kind, error.message, self.options.circuit_trip_threshold, count_attempt=False
                )
            await uow.sync_state.save_cursor(cursor)
            await uow.commit()

        if error is None:
            logger.info("Sync health check passed", extra={"source": self.source, "circuit_reclosed": reclosed})
        else:
            logger.warning(
                "Sync health check failed",
                extra={"source": self.source, "error_kind": error.error_kind, "error": error.message}
            )

        if reclosed:
            await self._notify_circuit_closed()
        if tripped:
            await self._notify_circuit_opened(error)

        return HealthCheckResult(
            healthy=error is None,
            error_kind=error.error_kind if error else None,
            error=error.message if error else None,
            missing_parameters=getattr(error, "missing", []) if error else [],
            circuit_state=cursor.circuit_state,
            circuit_reclosed=reclosed,
            circuit_tripped=tripped,
            checked_at=now,
        )

    async def reset_circuit(self) -> HealthCheckResult:
        """Explicit re-check; the circuit closes only if the health gate passes."""
        return await self.health_check()

    # ----- incremental polling -----

    async def poll_once(self) -> PollResult:
        """
        Run one incremental poll tick.

        Never raises for remote or store failures; they are recorded on the
        cursor and reported on the result.
        """
        if self._poll_in_progress:
            logger.warning("Poll already in progress, skipping tick", extra={"source": self.source})
            return PollResult(skipped=True, reason="poll already in progress")

        self._poll_in_progress = True
        try:
            return await self._poll()
        finally:
            self._poll_in_progress = False

    async def _poll(self) -> PollResult:
        run_log = get_context_logger(__name__, run_id=new_run_id())

        async with self._uow_factory() as uow:
            cursor = await self._load_cursor(uow)
            if not cursor.is_active:
                run_log.info("Circuit open, skipping poll", extra={"source": self.source})
                return PollResult(skipped=True, reason="circuit open", cursor=cursor.last_sync_time)

            tick_started_at = self._clock()
            cursor.total_attempts += 1
            await uow.sync_state.save_cursor(cursor)
            await uow.commit()

        since = cursor.last_sync_time
        result = PollResult()
        error: Optional[ApplicationException] = None
        capped = False

        try:
            gate_error = await self._run_health_gate()
            if gate_error is not None:
                raise gate_error

            query = self._remote.build_modified_since_query(since)
            batch_size = self.options.incremental_batch_size
            offset = 0
            while True:
                records = await self._remote.fetch_page(query, self._remote.fields, batch_size, offset)
                result.pages += 1
                result.fetched += len(records)
                result.summary.merge(await self._ingestion.ingest_batch(records))

                if len(records) < batch_size:
                    break
                if result.pages >= self.options.max_pages_per_tick:
                    capped = True
                    run_log.warning(
                        "Page cap reached, remaining records deferred to next tick",
                        extra={"pages": result.pages, "fetched": result.fetched}
                    )
                    break
                offset += batch_size
        except ApplicationException as e:
            error = e

        # A capped tick only advances to the newest remote change it has seen
        advance_to = tick_started_at
        if capped:
            advance_to = result.summary.max_remote_updated_at or since

        if error is None:
            try:
                cursor = await self._record_poll_success(advance_to, _skipped_records(result.summary))
            except PersistenceException as e:
                error = e

        if error is not None:
            result.error_kind = error.error_kind
            result.reason = error.message
            cursor, result.circuit_tripped = await self._record_poll_failure(error)
            run_log.error(
                "Poll tick failed",
                extra={
                    "source": self.source,
                    "error_kind": error.error_kind,
                    "error": error.message,
                    "fetched": result.fetched,
                    "circuit_tripped": result.circuit_tripped,
                }
            )
            if result.circuit_tripped:
                await self._notify_circuit_opened(error)
        else:
            result.success = True
            run_log.info(
                "Poll tick completed",
                extra={
                    "source": self.source,
                    "pages": result.pages,
                    "fetched": result.fetched,
                    "saved": result.summary.saved,
                    "updated": result.summary.updated,
                    "unchanged": result.summary.unchanged,
                    "errors": result.summary.errors,
                    "persistence_errors": result.summary.persistence_errors,
                    "sla_errors": result.summary.sla_errors,
                }
            )

        result.cursor = cursor.last_sync_time if cursor else since
        return result

    async def _record_poll_success(self, advance_to: datetime, skipped_records: Optional[str]) -> SyncCursor:
        async with self._uow_factory() as uow:
            cursor = await self._load_cursor(uow)
            cursor.record_poll_success(
                advance_to, self._clock(), self.options.circuit_trip_threshold, skipped_records
            )
            await uow.sync_state.save_cursor(cursor)
            await uow.commit()
        return cursor

    async def _record_poll_failure(self, error: ApplicationException):
        """Persist a failed tick. Returns (cursor or None, tripped)."""
        try:
            async with self._uow_factory() as uow:
                cursor = await self._load_cursor(uow)
                tripped = cursor.record_failure(
                    error.error_kind, error.message, self.options.circuit_trip_threshold, count_attempt=True
                )
                await uow.sync_state.save_cursor(cursor)
                await uow.commit()
            return cursor, tripped
        except PersistenceException as e:
            logger.error(
                "Could not record poll failure",
                extra={"source": self.source, "error": e.message, "original_error": error.message}
            )
            return None, False

    # ----- bulk import -----

    async def bulk_import(self, force: bool = False) -> BulkImportResult:
        """
        One-time full import.

        Without ``force`` a completed marker short-circuits with no remote
        call. ``force`` clears the marker so the run is indistinguishable
        from a first run. The cursor's sync time is never touched.
        """
        if self._bulk_in_progress:
            return BulkImportResult(skipped=True, reason="bulk import already in progress")

        self._bulk_in_progress = True
        try:
            return await self._bulk_import(force)
        finally:
            self._bulk_in_progress = False

    async def _bulk_import(self, force: bool) -> BulkImportResult:
        run_log = get_context_logger(__name__, run_id=new_run_id())

        async with self._uow_factory() as uow:
            cursor = await self._load_cursor(uow)
            marker = await self._load_marker(uow)

            if not cursor.is_active:
                run_log.info("Circuit open, skipping bulk import", extra={"source": self.source})
                return BulkImportResult(skipped=True, reason="circuit open")

            if marker.completed and not force:
                run_log.info(
                    "Bulk import already completed, skipping",
                    extra={"source": self.source, "last_completed_at": str(marker.last_completed_at)}
                )
                return BulkImportResult(
                    skipped=True,
                    reason="already completed",
                    total_imported=marker.total_imported,
                    last_completed_at=marker.last_completed_at,
                )

            if force:
                marker.clear()
            marker.started_at = self._clock()
            await uow.sync_state.save_bulk_marker(marker)
            await uow.commit()

        result = BulkImportResult()
        error: Optional[ApplicationException] = None
        try:
            gate_error = await self._run_health_gate()
            if gate_error is not None:
                raise gate_error

            query = self._remote.build_bulk_query()
            batch_size = self.options.bulk_batch_size
            offset = 0
            while True:
                records = await self._remote.fetch_page(query, self._remote.fields, batch_size, offset)
                result.pages += 1
                result.fetched += len(records)
                result.summary.merge(await self._ingestion.ingest_batch(records))
                run_log.info(
                    "Bulk import page processed",
                    extra={"page": result.pages, "offset": offset, "records": len(records)}
                )
                if len(records) < batch_size:
                    break
                offset += batch_size

            total = result.summary.saved + result.summary.updated + result.summary.unchanged
            now = self._clock()
            async with self._uow_factory() as uow:
                marker = await self._load_marker(uow)
                marker.mark_completed(now, total)
                await uow.sync_state.save_bulk_marker(marker)
                await uow.commit()
        except ApplicationException as e:
            error = e

        if error is not None:
            result.error_kind = error.error_kind
            result.reason = error.message
            await self._record_bulk_error(error.error_kind, error.message)
            run_log.error(
                "Bulk import failed",
                extra={"source": self.source, "error_kind": error.error_kind, "error": error.message}
            )
            return result

        skipped = _skipped_records(result.summary)
        if skipped:
            await self._record_bulk_error(ErrorKind.PERSISTENCE, skipped)

        result.success = True
        result.total_imported = total
        result.last_completed_at = now
        run_log.info(
            "Bulk import completed",
            extra={
                "source": self.source,
                "pages": result.pages,
                "total_imported": total,
                "errors": result.summary.errors,
                "persistence_errors": result.summary.persistence_errors,
            }
        )
        return result

    async def startup_bulk_import(self) -> BulkImportResult:
        """
        Bulk import run once the application is up.

        A completed marker is ignored when the store holds no ticket for the
        source, so a recreated database is refilled.
        """
        async with self._uow_factory() as uow:
            marker = await self._load_marker(uow)
            store_empty = not await uow.tickets.find({"source": self.source}, limit=1)

        force = marker.completed and store_empty
        if force:
            logger.warning(
                "Ticket store empty despite completed bulk import, importing again",
                extra={"source": self.source, "last_completed_at": str(marker.last_completed_at)}
            )
        return await self.bulk_import(force=force)

    async def _record_bulk_error(self, error_kind: str, message: str) -> None:
        """Keep a bulk import problem on the cursor without touching the circuit."""
        try:
            async with self._uow_factory() as uow:
                cursor = await self._load_cursor(uow)
                cursor.last_error = message
                cursor.last_error_kind = error_kind
                await uow.sync_state.save_cursor(cursor)
                await uow.commit()
        except PersistenceException as e:
            logger.error("Could not record bulk import error", extra={"error": e.message})

    # ----- operator surface -----

    async def status(self) -> SyncStatusResponse:
        async with self._uow_factory() as uow:
            cursor = await self._load_cursor(uow)
            marker = await self._load_marker(uow)

        return SyncStatusResponse(
            source=cursor.source,
            is_active=cursor.is_active,
            is_healthy=cursor.is_healthy,
            circuit_state=cursor.circuit_state,
            last_sync_time=cursor.last_sync_time,
            last_successful_sync_time=cursor.last_successful_sync_time,
            last_health_check_at=cursor.last_health_check_at,
            consecutive_failures=cursor.consecutive_failures,
            total_attempts=cursor.total_attempts,
            success_count=cursor.success_count,
            failure_count=cursor.failure_count,
            last_error=cursor.last_error,
            last_error_kind=cursor.last_error_kind,
            poll_in_progress=self._poll_in_progress,
            bulk_import=BulkImportStatus(
                completed=marker.completed,
                started_at=marker.started_at,
                last_completed_at=marker.last_completed_at,
                total_imported=marker.total_imported,
            ),
        )

    async def reset_state(self) -> SyncStatusResponse:
        """Rewind the cursor to the initial lookback window and zero all counters."""
        async with self._uow_factory() as uow:
            cursor = SyncCursor.initial(self.source, self._clock(), self.options.initial_lookback_hours)
            await uow.sync_state.save_cursor(cursor)
            await uow.commit()

        logger.warning(
            "Sync state reset",
            extra={"source": self.source, "last_sync_time": cursor.last_sync_time.isoformat()}
        )
        await self._notify(
            f"{self.source} Sync State Reset",
            f"Cursor rewound to {cursor.last_sync_time.isoformat()}",
            NotificationSeverity.WARNING,
        )
        return await self.status()
