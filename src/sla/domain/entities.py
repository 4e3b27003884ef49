"""
SLA Domain Entities
====================

Pure Python domain entities for SLA monitoring.

Following Domain-Driven Design principles, these entities contain
business logic and are free of infrastructure concerns.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, Optional

from src.config import SLAState


@dataclass
class SLARecord:
    """
    SLA tracking record, one per ticket.

    ``last_notified_state`` only moves forward along
    safe < warning < critical < breached. Refreshing priority or status
    from a ticket update never resets it.
    """

    external_id: str
    source: str
    priority: str
    opened_at: datetime
    status: Optional[str] = None
    ticket_id: Optional[str] = None
    category: Optional[str] = None
    assignee_id: Optional[str] = None
    last_notified_state: Optional[str] = None
    last_notified_at: Optional[datetime] = None

    id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def refresh_from(self, other: "SLARecord") -> None:
        """Copy ticket-derived fields, keeping escalation history."""
        self.ticket_id = other.ticket_id or self.ticket_id
        self.priority = other.priority
        self.status = other.status
        self.category = other.category
        self.assignee_id = other.assignee_id

    def mark_notified(self, state: str, at: datetime) -> None:
        self.last_notified_state = state
        self.last_notified_at = at


@dataclass
class SLAClassification:
    """Result of classifying a ticket against its SLA target."""

    state: str
    percent_elapsed: float
    target_hours: Optional[float] = None
    time_remaining: Optional[timedelta] = None
    overdue: Optional[timedelta] = None

    @property
    def is_completed(self) -> bool:
        return self.state == SLAState.COMPLETED

    def to_dict(self) -> Dict:
        return {
            "state": self.state,
            "percent_elapsed": round(self.percent_elapsed, 2),
            "target_hours": self.target_hours,
            "time_remaining_seconds": (
                self.time_remaining.total_seconds() if self.time_remaining is not None else None
            ),
            "overdue_seconds": self.overdue.total_seconds() if self.overdue is not None else None,
        }


@dataclass
class EvaluationSummary:
    """Counters for one SLA evaluation run."""

    evaluated: int = 0
    notified: int = 0
    completed: int = 0
    errors: int = 0
    by_state: Dict[str, int] = field(default_factory=dict)
    skipped: bool = False

    def count_state(self, state: str) -> None:
        self.by_state[state] = self.by_state.get(state, 0) + 1
