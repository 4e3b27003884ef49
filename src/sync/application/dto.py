"""
Sync Application DTOs
======================

Pydantic models for sync results and the operational API.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


# ========== Results ==========

class IngestSummary(BaseModel):
    """Aggregate outcome of ingesting a batch of remote records."""
    saved: int = Field(default=0, description="New tickets inserted")
    updated: int = Field(default=0, description="Existing tickets changed")
    unchanged: int = Field(default=0, description="Records identical to the stored ticket")
    errors: int = Field(default=0, description="Records skipped (validation or persistence)")
    persistence_errors: int = Field(default=0, description="Subset of errors caused by the store")
    sla_errors: int = Field(default=0, description="Tickets stored whose SLA record write failed")
    error_messages: List[str] = Field(default_factory=list)
    max_remote_updated_at: Optional[datetime] = Field(
        None, description="Newest remote last-updated timestamp among stored records"
    )

    def merge(self, other: "IngestSummary") -> None:
        self.saved += other.saved
        self.updated += other.updated
        self.unchanged += other.unchanged
        self.errors += other.errors
        self.persistence_errors += other.persistence_errors
        self.sla_errors += other.sla_errors
        self.error_messages.extend(other.error_messages)
        self.observe_remote_update(other.max_remote_updated_at)

    def observe_remote_update(self, value: Optional[datetime]) -> None:
        if value is not None and (self.max_remote_updated_at is None or value > self.max_remote_updated_at):
            self.max_remote_updated_at = value


class PollResult(BaseModel):
    """Outcome of one incremental poll tick."""
    skipped: bool = False
    reason: Optional[str] = Field(None, description="Why the tick was skipped or failed")
    success: bool = False
    pages: int = 0
    fetched: int = 0
    summary: IngestSummary = Field(default_factory=IngestSummary)
    cursor: Optional[datetime] = Field(None, description="Cursor after the tick")
    circuit_tripped: bool = False
    error_kind: Optional[str] = None


class BulkImportResult(BaseModel):
    """Outcome of a bulk import run."""
    skipped: bool = False
    reason: Optional[str] = None
    success: bool = False
    pages: int = 0
    fetched: int = 0
    total_imported: int = 0
    last_completed_at: Optional[datetime] = None
    summary: IngestSummary = Field(default_factory=IngestSummary)
    error_kind: Optional[str] = None


class HealthCheckResult(BaseModel):
    """Outcome of a health gate check."""
    healthy: bool
    error_kind: Optional[str] = None
    error: Optional[str] = None
    missing_parameters: List[str] = Field(default_factory=list)
    circuit_state: str
    circuit_reclosed: bool = False
    circuit_tripped: bool = False
    checked_at: datetime


class BulkImportStatus(BaseModel):
    completed: bool = False
    started_at: Optional[datetime] = None
    last_completed_at: Optional[datetime] = None
    total_imported: int = 0


class SyncStatusResponse(BaseModel):
    """Read-only sync status for operators."""
    source: str
    is_active: bool
    is_healthy: bool
    circuit_state: str
    last_sync_time: datetime
    last_successful_sync_time: Optional[datetime] = None
    last_health_check_at: Optional[datetime] = None
    consecutive_failures: int
    total_attempts: int
    success_count: int
    failure_count: int
    last_error: Optional[str] = None
    last_error_kind: Optional[str] = None
    poll_in_progress: bool = False
    bulk_import: BulkImportStatus


# ========== Requests ==========

class ResetStateRequest(BaseModel):
    """Body of POST /sync/reset."""
    confirm: bool = Field(..., description="Must be true; rewinds the cursor and zeroes counters")
