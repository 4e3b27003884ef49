"""
SLA Value Objects
==================

Immutable value objects for SLA domain.

Value objects are defined by their attributes rather than an identity.
They are immutable and can be freely shared.
"""

from datetime import datetime, timedelta
from typing import Dict, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from src.config import (
    Priority, SLAState, VALID_PRIORITIES, SLA_STATE_ORDER, TERMINAL_TICKET_STATUSES
)
from src.core import ensure_utc
from src.sla.domain.entities import SLAClassification


DEFAULT_TARGET_HOURS = {Priority.P1: 4.0, Priority.P2: 12.0, Priority.P3: 24.0}


class SLAPolicy(BaseModel):
    """
    SLA configuration: per-priority targets and phase thresholds.

    Thresholds are percentages of the target that have elapsed:
    safe < warning_threshold <= warning < critical_threshold <= critical < 100 <= breached

    This is a value object - immutable and defined by its attributes.
    """
    target_hours: Dict[str, float] = Field(
        default_factory=lambda: dict(DEFAULT_TARGET_HOURS),
        description="SLA target in hours by priority (P1, P2, P3)"
    )
    warning_threshold: float = Field(default=20, gt=0, lt=100, description="Percent elapsed entering warning")
    critical_threshold: float = Field(default=60, gt=0, le=100, description="Percent elapsed entering critical")

    model_config = {"frozen": True}

    @field_validator("target_hours")
    @classmethod
    def validate_target_hours(cls, v: Dict[str, float]) -> Dict[str, float]:
        """Fill missing priorities with defaults and reject non-positive targets."""
        targets = dict(v)
        for priority in VALID_PRIORITIES:
            targets.setdefault(priority, DEFAULT_TARGET_HOURS[priority])
        for priority, hours in targets.items():
            if hours <= 0:
                raise ValueError(f"target for {priority} must be positive, got {hours}")
        return targets

    @model_validator(mode="after")
    def validate_threshold_order(self) -> "SLAPolicy":
        if self.warning_threshold >= self.critical_threshold:
            raise ValueError("warning_threshold must be lower than critical_threshold")
        return self

    def target_for(self, priority: Optional[str]) -> float:
        """Target hours for a priority; unknown priorities get the P3 target."""
        return self.target_hours.get(priority or "", self.target_hours[Priority.P3])


def normalize_priority(ticket_priority: Optional[str]) -> str:
    """
    Map a remote priority label to P1/P2/P3.

    ``1 - Critical`` -> P1; ``2 - High`` and ``3 - Moderate`` -> P2;
    everything else (low, planning, unknown) -> P3.
    """
    if not ticket_priority or not isinstance(ticket_priority, str):
        return Priority.P3

    priority = ticket_priority.strip().lower()
    if priority.upper() in VALID_PRIORITIES:
        return priority.upper()

    if priority in ("1", "critical") or ("1" in priority and "critical" in priority):
        return Priority.P1
    if priority in ("2", "3", "high", "moderate"):
        return Priority.P2
    if ("2" in priority and "high" in priority) or ("3" in priority and "moderate" in priority):
        return Priority.P2
    return Priority.P3


def is_terminal_status(status: Optional[str]) -> bool:
    return bool(status) and status.strip().lower() in TERMINAL_TICKET_STATUSES


def rank(state: Optional[str]) -> int:
    """Severity rank; no previous notification counts as safe."""
    if state is None:
        return 0
    return SLA_STATE_ORDER.index(state)


def should_notify(last_notified_state: Optional[str], current_state: str) -> bool:
    """Forward-only ratchet: notify only when severity strictly increases."""
    if current_state not in SLA_STATE_ORDER:
        return False
    return rank(current_state) > rank(last_notified_state)


class SLACalculator:
    """
    Pure functions for SLA calculations.

    Stateless utility class - all SLA classification logic in one place.
    """

    @staticmethod
    def classify(
        opened_at: datetime,
        priority: Optional[str],
        status: Optional[str],
        policy: SLAPolicy,
        now: datetime
    ) -> SLAClassification:
        """
        Classify a ticket's SLA state at ``now``.

        Args:
            opened_at: When the ticket was opened
            priority: P1/P2/P3 (unknown falls back to the P3 target)
            status: Ticket status; terminal statuses classify as completed
            policy: Targets and thresholds
            now: Evaluation time

        Returns:
            SLAClassification with state, percent elapsed and time left/overdue
        """
        if is_terminal_status(status):
            return SLAClassification(state=SLAState.COMPLETED, percent_elapsed=100.0)

        target_hours = policy.target_for(priority)
        target_seconds = target_hours * 3600
        elapsed_seconds = (ensure_utc(now) - ensure_utc(opened_at)).total_seconds()
        percent = elapsed_seconds / target_seconds * 100

        if percent >= 100:
            return SLAClassification(
                state=SLAState.BREACHED,
                percent_elapsed=percent,
                target_hours=target_hours,
                overdue=timedelta(seconds=elapsed_seconds - target_seconds),
            )

        if percent >= policy.critical_threshold:
            state = SLAState.CRITICAL
        elif percent >= policy.warning_threshold:
            state = SLAState.WARNING
        else:
            state = SLAState.SAFE

        return SLAClassification(
            state=state,
            percent_elapsed=percent,
            target_hours=target_hours,
            time_remaining=timedelta(seconds=target_seconds - elapsed_seconds),
        )

    @staticmethod
    def deadline(opened_at: datetime, priority: Optional[str], policy: SLAPolicy) -> datetime:
        return ensure_utc(opened_at) + timedelta(hours=policy.target_for(priority))
