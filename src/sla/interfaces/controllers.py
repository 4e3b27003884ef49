"""
SLA Controllers (API Routes)
=============================

FastAPI routes for SLA monitoring endpoints.

Controllers are thin - they delegate to application services.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from src.sla.application import (
    SLAEscalationService,
    SLARecordQueryDTO,
    SLARecordResponse,
    SLARecordListResponse,
    SLAStatsResponse,
    EvaluationResponse,
)
from src.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)
router = APIRouter(prefix="/sla", tags=["SLA Monitoring"])


# ========== Example payloads for Swagger ==========

SLA_RECORD_EXAMPLE = {
    "external_id": "INC0010001",
    "source": "ServiceNow",
    "ticket_id": "123e4567-e89b-12d3-a456-426614174000",
    "priority": "P1",
    "status": "In Progress",
    "category": "network",
    "assignee_id": "5137153cc611227c000bbd1bd8cd2005",
    "opened_at": "2024-01-15T10:00:00Z",
    "last_notified_state": "warning",
    "last_notified_at": "2024-01-15T11:00:00Z",
    "current": {
        "state": "critical",
        "percent_elapsed": 75.0,
        "target_hours": 4.0,
        "time_remaining_seconds": 3600.0,
        "overdue_seconds": None,
        "deadline": "2024-01-15T14:00:00Z"
    }
}


# ========== Dependencies ==========

def get_escalation_service(request: Request) -> SLAEscalationService:
    """SLA escalation service created at application startup."""
    service = getattr(request.app.state, "sla_escalation_service", None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="SLA service not initialized"
        )
    return service


def get_default_source(request: Request) -> str:
    return getattr(request.app.state, "sync_source", "ServiceNow")


# ========== Route Handlers ==========

@router.get(
    "/records",
    response_model=SLARecordListResponse,
    summary="List SLA records",
    description="""
    List SLA records with their current computed state.

    **Filters**: `priority` (P1, P2, P3), `status` (ticket status, case-insensitive)

    Records are ordered oldest first by `opened_at`.
    """
)
async def list_sla_records(
    priority: Optional[str] = Query(None, description="Filter by priority (P1, P2, P3)"),
    ticket_status: Optional[str] = Query(None, alias="status", description="Filter by ticket status"),
    limit: int = Query(100, ge=1, le=1000, description="Results per page"),
    offset: int = Query(0, ge=0, description="Page offset"),
    service: SLAEscalationService = Depends(get_escalation_service)
):
    if priority is not None and priority.upper() not in ("P1", "P2", "P3"):
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Invalid priority '{priority}', expected P1, P2 or P3"
        )

    query = SLARecordQueryDTO(
        priority=priority.upper() if priority else None,
        status=ticket_status,
        limit=limit,
        offset=offset,
    )
    records = await service.list_records(query)
    return SLARecordListResponse(records=records, count=len(records), limit=limit, offset=offset)


@router.get(
    "/records/{external_id}",
    response_model=SLARecordResponse,
    summary="Get SLA record of a ticket",
    responses={
        200: {
            "description": "SLA record with its current state",
            "content": {"application/json": {"example": SLA_RECORD_EXAMPLE}}
        },
        404: {"description": "No SLA record for this ticket"}
    }
)
async def get_sla_record(
    external_id: str,
    source: Optional[str] = Query(None, description="Ticket source (defaults to the configured sync source)"),
    default_source: str = Depends(get_default_source),
    service: SLAEscalationService = Depends(get_escalation_service)
):
    return await service.get_record(external_id, source or default_source)


@router.get(
    "/stats",
    response_model=SLAStatsResponse,
    summary="SLA statistics",
    description="Counts of SLA records by priority and by current computed state."
)
async def get_sla_stats(
    service: SLAEscalationService = Depends(get_escalation_service)
):
    return await service.stats()


@router.post(
    "/evaluate",
    response_model=EvaluationResponse,
    summary="Run SLA evaluation now",
    description="""
    Trigger one SLA evaluation pass outside the schedule.

    Notifications are only sent for forward transitions
    (safe → warning → critical → breached). If a run is already in
    progress the call returns `skipped: true`.
    """
)
async def evaluate_sla(
    service: SLAEscalationService = Depends(get_escalation_service)
):
    summary = await service.evaluate()
    logger.info("Manual SLA evaluation", extra={"notified": summary.notified, "skipped": summary.skipped})
    return EvaluationResponse(
        skipped=summary.skipped,
        evaluated=summary.evaluated,
        notified=summary.notified,
        completed=summary.completed,
        errors=summary.errors,
        by_state=summary.by_state,
    )


# Export router for inclusion in main app
sla_router = router
