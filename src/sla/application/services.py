"""
SLA Application Services
=========================

Application services orchestrate business logic and coordinate between
domain entities and repositories.

- SLARecordService: keeps each ticket's SLA record in step with the ticket
- SLAEscalationService: periodic evaluation and forward-only notifications
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional

from src.config import SLAState, NotificationSeverity, SLA_STATE_ORDER
from src.core import (
    ApplicationException, Clock, ResourceNotFoundException, UnitOfWorkFactory,
    format_duration, utc_now
)
from src.sla.application.dto import (
    SLAClassificationResponse, SLARecordQueryDTO, SLARecordResponse, SLAStatsResponse
)
from src.sla.domain import (
    SLACalculator, SLAClassification, SLAPolicy, SLARecord, EvaluationSummary,
    normalize_priority, should_notify
)
from src.shared.infrastructure.logging import get_context_logger, get_logger, new_run_id
from src.shared.infrastructure.notifications import INotificationSink, Notification

logger = get_logger(__name__)


# ========== Repository Interfaces (Dependency Inversion) ==========

class ISLARecordRepository(ABC):
    """Interface for SLA record data access."""

    @abstractmethod
    async def find_by_key(self, external_id: str, source: str) -> Optional[SLARecord]:
        """Get the SLA record of a ticket."""

    @abstractmethod
    async def upsert(self, record: SLARecord) -> SLARecord:
        """
        Insert or refresh a record keyed by (external_id, source).

        Ticket-derived fields are overwritten; last_notified_state and
        last_notified_at are never touched by an upsert.
        """

    @abstractmethod
    async def find_monitorable(self) -> List[SLARecord]:
        """Records not yet breach-notified whose status is not terminal, oldest first."""

    @abstractmethod
    async def mark_notified(self, external_id: str, source: str, state: str, at: datetime) -> None:
        """Persist the latest notified state (flushed, not committed)."""

    @abstractmethod
    async def list(
        self,
        filters: dict,
        limit: Optional[int] = 100,
        offset: int = 0
    ) -> List[SLARecord]:
        """List records with filters (priority, status)."""


class ISLAPolicyProvider(ABC):
    """Interface for SLA configuration access."""

    @abstractmethod
    def get_policy(self) -> SLAPolicy:
        """Get current SLA policy."""


# ========== Notification text ==========

def build_sla_notification(record: SLARecord, classification: SLAClassification) -> Notification:
    """Notification for a forward SLA transition."""
    percentage = round(classification.percent_elapsed)
    subject = f"Ticket {record.external_id} ({record.priority})"

    if classification.state == SLAState.BREACHED:
        time_left = f"Overdue by {format_duration(classification.overdue.total_seconds())}"
        title = "SLA Breached"
        message = f"{subject} has breached SLA - {time_left}"
        severity = NotificationSeverity.ERROR
    else:
        time_left = format_duration(classification.time_remaining.total_seconds())
        if classification.state == SLAState.CRITICAL:
            title = "SLA Critical"
            message = f"{subject} is in SLA critical phase - {percentage}% time elapsed, {time_left} remaining"
            severity = NotificationSeverity.ERROR
        else:
            title = "SLA Warning"
            message = (
                f"{subject} has reached SLA warning phase - {percentage}% time elapsed, "
                f"{time_left} remaining"
            )
            severity = NotificationSeverity.WARNING

    return Notification(
        title=title,
        message=message,
        severity=severity,
        related_entity_id=record.external_id,
        related_entity_type="ticket",
        metadata={
            "sla_state": classification.state,
            "priority": record.priority,
            "percentage": percentage,
            "time_left": time_left,
            "source": record.source,
            "event_type": f"sla_{classification.state}",
        },
    )


# ========== Application Services ==========

class SLARecordService:
    """
    Derives SLA records from tickets.

    Works inside the caller's unit of work; the caller owns the commit.
    """

    def __init__(self, clock: Clock = utc_now):
        self._clock = clock

    def build_record(self, ticket: Any) -> SLARecord:
        """
        Seed an SLA record from a ticket.

        ``ticket`` is any object exposing the ticket attributes
        (external_id, source, id, priority, status, opened_at, category, assignee_id).
        """
        return SLARecord(
            external_id=ticket.external_id,
            source=ticket.source,
            ticket_id=ticket.id,
            priority=normalize_priority(ticket.priority),
            status=ticket.status,
            opened_at=ticket.opened_at or self._clock(),
            category=ticket.category,
            assignee_id=ticket.assignee_id,
        )

    async def sync_from_ticket(
        self,
        repository: ISLARecordRepository,
        ticket: Any,
        is_new: bool,
        changed: bool
    ) -> Optional[SLARecord]:
        """
        Create or refresh the SLA record of a ticket.

        - new ticket, or record missing: create
        - changed ticket: refresh priority/status/category/assignee
        - unchanged ticket with a record: no write

        Returns:
            The written record, or None when nothing was written
        """
        existing = await repository.find_by_key(ticket.external_id, ticket.source)
        candidate = self.build_record(ticket)

        if existing is None:
            return await repository.upsert(candidate)

        if is_new or changed:
            existing.refresh_from(candidate)
            return await repository.upsert(existing)

        return None


class SLAEscalationService:
    """
    Periodic SLA evaluator.

    Each run classifies every monitorable record and notifies once per
    forward transition (safe < warning < critical < breached). The notified
    state is flushed before the sink call and committed after it, so a sink
    failure leaves the record untouched and the next run retries.
    """

    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        policy_provider: ISLAPolicyProvider,
        sink: INotificationSink,
        clock: Clock = utc_now
    ):
        self._uow_factory = uow_factory
        self._policy_provider = policy_provider
        self._sink = sink
        self._clock = clock
        self._running = False
        self.last_summary: Optional[EvaluationSummary] = None
        self.last_run_at: Optional[datetime] = None

    @property
    def is_running(self) -> bool:
        return self._running

    async def evaluate(self) -> EvaluationSummary:
        """
        Run one evaluation pass.

        Returns:
            EvaluationSummary; ``skipped`` is set when a run is already in progress
        """
        if self._running:
            logger.warning("SLA evaluation already running, skipping")
            return EvaluationSummary(skipped=True)

        self._running = True
        run_log = get_context_logger(__name__, run_id=new_run_id())
        summary = EvaluationSummary()
        try:
            policy = self._policy_provider.get_policy()
            now = self._clock()

            async with self._uow_factory() as uow:
                records = await uow.sla_records.find_monitorable()

            for record in records:
                summary.evaluated += 1
                try:
                    await self._evaluate_record(record, policy, now, summary)
                except ApplicationException as e:
                    summary.errors += 1
                    run_log.error(
                        "SLA evaluation failed for record",
                        extra={"external_id": record.external_id, "error": e.message}
                    )

            self.last_summary = summary
            self.last_run_at = now
            run_log.info(
                "SLA monitoring summary",
                extra={
                    "evaluated": summary.evaluated,
                    "notified": summary.notified,
                    "completed": summary.completed,
                    "errors": summary.errors,
                    "by_state": summary.by_state,
                }
            )
            return summary
        finally:
            self._running = False

    async def _evaluate_record(
        self,
        record: SLARecord,
        policy: SLAPolicy,
        now: datetime,
        summary: EvaluationSummary
    ) -> None:
        classification = SLACalculator.classify(
            record.opened_at, record.priority, record.status, policy, now
        )
        summary.count_state(classification.state)

        if classification.is_completed:
            summary.completed += 1
            return

        if not should_notify(record.last_notified_state, classification.state):
            return

        notification = build_sla_notification(record, classification)
        async with self._uow_factory() as uow:
            await uow.sla_records.mark_notified(
                record.external_id, record.source, classification.state, now
            )
            await self._sink.notify(notification)
            await uow.commit()

        record.mark_notified(classification.state, now)
        summary.notified += 1
        logger.info(
            "SLA notification sent",
            extra={
                "external_id": record.external_id,
                "sla_state": classification.state,
                "percent_elapsed": round(classification.percent_elapsed, 1),
            }
        )

    # ========== Read side ==========

    def describe(self, record: SLARecord, now: Optional[datetime] = None) -> SLARecordResponse:
        """Record plus its classification at ``now``."""
        policy = self._policy_provider.get_policy()
        classification = SLACalculator.classify(
            record.opened_at, record.priority, record.status, policy, now or self._clock()
        )
        current = SLAClassificationResponse(
            **classification.to_dict(),
            deadline=(
                None if classification.is_completed
                else SLACalculator.deadline(record.opened_at, record.priority, policy)
            ),
        )
        return SLARecordResponse(
            external_id=record.external_id,
            source=record.source,
            ticket_id=record.ticket_id,
            priority=record.priority,
            status=record.status,
            category=record.category,
            assignee_id=record.assignee_id,
            opened_at=record.opened_at,
            last_notified_state=record.last_notified_state,
            last_notified_at=record.last_notified_at,
            current=current,
        )

    async def list_records(self, query: SLARecordQueryDTO) -> List[SLARecordResponse]:
        filters = {}
        if query.priority:
            filters["priority"] = query.priority
        if query.status:
            filters["status"] = query.status

        async with self._uow_factory() as uow:
            records = await uow.sla_records.list(filters, limit=query.limit, offset=query.offset)

        now = self._clock()
        return [self.describe(record, now) for record in records]

    async def get_record(self, external_id: str, source: str) -> SLARecordResponse:
        """
        Raises:
            ResourceNotFoundException: If the ticket has no SLA record
        """
        async with self._uow_factory() as uow:
            record = await uow.sla_records.find_by_key(external_id, source)
        if record is None:
            raise ResourceNotFoundException("SLA record", external_id)
        return self.describe(record)

    async def stats(self) -> SLAStatsResponse:
        """Counts by priority and by computed state."""
        async with self._uow_factory() as uow:
            records = await uow.sla_records.list({}, limit=None)

        policy = self._policy_provider.get_policy()
        now = self._clock()
        by_priority: Dict[str, int] = {}
        by_state: Dict[str, int] = {state: 0 for state in SLA_STATE_ORDER + [SLAState.COMPLETED]}

        for record in records:
            by_priority[record.priority] = by_priority.get(record.priority, 0) + 1
            state = SLACalculator.classify(
                record.opened_at, record.priority, record.status, policy, now
            ).state
            by_state[state] += 1

        return SLAStatsResponse(
            total=len(records),
            by_priority=by_priority,
            by_state=by_state,
            generated_at=now,
        )
