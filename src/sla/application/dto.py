"""
SLA Application DTOs
=====================

Data Transfer Objects for SLA API layer.

These Pydantic models handle serialization/deserialization and validation
for API requests and responses. Following YAGNI - only what's needed.
"""

from pydantic import BaseModel, Field
from typing import Dict, List, Optional, Literal
from datetime import datetime


# ========== Type Aliases for Literals ==========
PriorityStr = Literal["P1", "P2", "P3"]
SLAStateStr = Literal["safe", "warning", "critical", "breached", "completed"]
NotifiedStateStr = Literal["safe", "warning", "critical", "breached"]


# ========== Request DTOs ==========

class SLARecordQueryDTO(BaseModel):
    """Query parameters for listing SLA records."""
    priority: Optional[PriorityStr] = None
    status: Optional[str] = Field(None, description="Ticket status (case-insensitive)")
    limit: int = Field(default=100, ge=1, le=1000)
    offset: int = Field(default=0, ge=0)


# ========== Response DTOs ==========

class SLAClassificationResponse(BaseModel):
    """Current computed SLA state of a record."""
    state: SLAStateStr
    percent_elapsed: float = Field(..., description="Percent of the SLA target elapsed")
    target_hours: Optional[float] = None
    time_remaining_seconds: Optional[float] = None
    overdue_seconds: Optional[float] = None
    deadline: Optional[datetime] = None


class SLARecordResponse(BaseModel):
    """Response model for an SLA record."""
    external_id: str
    source: str
    ticket_id: Optional[str] = None
    priority: PriorityStr
    status: Optional[str] = None
    category: Optional[str] = None
    assignee_id: Optional[str] = None
    opened_at: datetime
    last_notified_state: Optional[NotifiedStateStr] = None
    last_notified_at: Optional[datetime] = None
    current: SLAClassificationResponse


class SLARecordListResponse(BaseModel):
    """Paged list of SLA records."""
    records: List[SLARecordResponse]
    count: int
    limit: int
    offset: int


class SLAStatsResponse(BaseModel):
    """Aggregate SLA statistics."""
    total: int = Field(..., description="Total SLA records")
    by_priority: Dict[str, int] = Field(default_factory=dict)
    by_state: Dict[str, int] = Field(default_factory=dict, description="Counts by computed SLA state")
    generated_at: datetime


class EvaluationResponse(BaseModel):
    """Result of an SLA evaluation run."""
    skipped: bool = False
    evaluated: int = 0
    notified: int = 0
    completed: int = 0
    errors: int = 0
    by_state: Dict[str, int] = Field(default_factory=dict)
