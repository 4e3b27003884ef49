"""
Sync Domain Entities
====================

Pure Python domain entities for ticket synchronization.

These entities carry the business rules of the sync engine (change
detection, cursor monotonicity, circuit bookkeeping) and are free of
infrastructure concerns.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from src.config import CircuitState, ErrorKind
from src.sync.domain.value_objects import CircuitBreaker


# Fields compared against the stored ticket to decide whether a sync brought
# a genuine change. Anything else changing alone is not worth a write.
MUTABLE_FIELDS = (
    "status",
    "description",
    "priority",
    "assignee_id",
    "assignment_group_id",
    "remote_updated_at",
)


@dataclass
class Ticket:
    """
    Ticket entity mirrored from a remote source.

    ``(external_id, source)`` identifies a ticket. Optional fields are always
    present (``None`` / empty list) so two tickets can be diffed field by field.
    """

    external_id: str
    source: str
    short_description: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    subcategory: Optional[str] = None
    status: Optional[str] = None
    priority: Optional[str] = None
    impact: Optional[str] = None
    urgency: Optional[str] = None
    opened_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    remote_updated_at: Optional[datetime] = None
    requester_id: Optional[str] = None
    assignee_id: Optional[str] = None
    assignment_group_id: Optional[str] = None
    company_id: Optional[str] = None
    location_id: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    raw_payload: Dict[str, Any] = field(default_factory=dict)

    # Local bookkeeping, None until persisted
    id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def diff(self, other: "Ticket") -> List[str]:
        """Names of mutable fields whose values differ from ``other``."""
        return [
            name for name in MUTABLE_FIELDS
            if getattr(self, name) != getattr(other, name)
        ]

    def to_values(self) -> Dict[str, Any]:
        """Column values for persistence (excludes local bookkeeping)."""
        return {
            "external_id": self.external_id,
            "source": self.source,
            "short_description": self.short_description,
            "description": self.description,
            "category": self.category,
            "subcategory": self.subcategory,
            "status": self.status,
            "priority": self.priority,
            "impact": self.impact,
            "urgency": self.urgency,
            "opened_at": self.opened_at,
            "closed_at": self.closed_at,
            "resolved_at": self.resolved_at,
            "remote_updated_at": self.remote_updated_at,
            "requester_id": self.requester_id,
            "assignee_id": self.assignee_id,
            "assignment_group_id": self.assignment_group_id,
            "company_id": self.company_id,
            "location_id": self.location_id,
            "tags": list(self.tags),
            "raw_payload": dict(self.raw_payload),
        }


@dataclass
class SyncCursor:
    """
    Persisted polling state for one remote source.

    Invariants:
    - last_sync_time only moves forward, and only on a successful poll
    - is_active=False is the open-circuit state; polls are skipped until a
      health check passes
    """

    source: str
    last_sync_time: datetime
    last_successful_sync_time: Optional[datetime] = None
    total_attempts: int = 0
    success_count: int = 0
    failure_count: int = 0
    consecutive_failures: int = 0
    last_error: Optional[str] = None
    last_error_kind: Optional[str] = None
    last_health_check_at: Optional[datetime] = None
    is_active: bool = True
    is_healthy: bool = False

    @classmethod
    def initial(cls, source: str, now: datetime, lookback_hours: int) -> "SyncCursor":
        """Fresh cursor looking back ``lookback_hours`` from ``now``."""
        return cls(source=source, last_sync_time=now - timedelta(hours=lookback_hours))

    @property
    def circuit_state(self) -> str:
        return CircuitState.CLOSED if self.is_active else CircuitState.OPEN

    def circuit(self, threshold: int) -> CircuitBreaker:
        return CircuitBreaker(
            threshold=threshold,
            state=self.circuit_state,
            consecutive_failures=self.consecutive_failures,
        )

    def apply_circuit(self, breaker: CircuitBreaker) -> None:
        self.is_active = not breaker.is_open
        self.consecutive_failures = breaker.consecutive_failures

    def record_poll_success(
        self,
        tick_started_at: datetime,
        now: datetime,
        threshold: int,
        skipped_records: Optional[str] = None
    ) -> None:
        """
        Advance the cursor to the tick start (never backwards).

        ``skipped_records`` describes records the store rejected during the
        tick; it is kept in last_error but does not count as a failure.
        """
        if tick_started_at > self.last_sync_time:
            self.last_sync_time = tick_started_at
        self.last_successful_sync_time = now
        self.success_count += 1
        self.is_healthy = True
        self.last_error = skipped_records
        self.last_error_kind = ErrorKind.PERSISTENCE if skipped_records else None
        breaker = self.circuit(threshold)
        breaker.record_success()
        self.apply_circuit(breaker)

    def record_failure(self, error_kind: str, message: str, threshold: int, count_attempt: bool) -> bool:
        """
        Record a failed poll or health check.

        Args:
            error_kind: ErrorKind of the failure
            message: Human-readable error
            threshold: Circuit trip threshold
            count_attempt: Also bump failure_count (poll failures only)

        Returns:
            True if the failure opened the circuit
        """
        if count_attempt:
            self.failure_count += 1
        self.is_healthy = False
        self.last_error = message
        self.last_error_kind = error_kind
        breaker = self.circuit(threshold)
        tripped = breaker.record_failure()
        self.apply_circuit(breaker)
        return tripped

    def record_health_check_passed(self, now: datetime, threshold: int) -> bool:
        """Returns True if the circuit was re-closed."""
        self.is_healthy = True
        self.last_health_check_at = now
        breaker = self.circuit(threshold)
        reclosed = breaker.health_check_passed()
        self.apply_circuit(breaker)
        return reclosed


@dataclass
class BulkImportMarker:
    """Guards the one-time full import for a source."""

    source: str
    completed: bool = False
    started_at: Optional[datetime] = None
    last_completed_at: Optional[datetime] = None
    total_imported: int = 0

    def clear(self) -> None:
        """Forget a previous run so a forced import looks like a first run."""
        self.completed = False
        self.started_at = None
        self.last_completed_at = None
        self.total_imported = 0

    def mark_completed(self, now: datetime, total_imported: int) -> None:
        self.completed = True
        self.last_completed_at = now
        self.total_imported = total_imported


@dataclass
class TicketEvent:
    """Domain event emitted when ingestion creates or changes a ticket."""
    event_type: str
    ticket: Ticket
    changed_fields: List[str] = field(default_factory=list)


@dataclass
class UpsertResult:
    """Outcome of upserting one remote record."""

    ticket: Ticket
    is_new: bool
    changed: bool
    changed_fields: List[str] = field(default_factory=list)
    sla_error: Optional[str] = None

    @property
    def has_effect(self) -> bool:
        return self.is_new or self.changed
