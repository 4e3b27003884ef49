"""
Sync Controllers (API Routes)
==============================

Operational endpoints for the sync engine: status, manual poll, forced
bulk re-import, circuit reset and health check.

Controllers are thin - they delegate to the SyncCoordinator.
"""

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from src.sync.application import (
    SyncCoordinator,
    SyncStatusResponse,
    PollResult,
    BulkImportResult,
    HealthCheckResult,
    ResetStateRequest,
)
from src.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)
router = APIRouter(prefix="/sync", tags=["Ticket Sync"])


# ========== Example payloads for Swagger ==========

SYNC_STATUS_EXAMPLE = {
    "source": "ServiceNow",
    "is_active": True,
    "is_healthy": True,
    "circuit_state": "closed",
    "last_sync_time": "2024-01-15T10:00:00Z",
    "last_successful_sync_time": "2024-01-15T10:00:04Z",
    "last_health_check_at": "2024-01-15T09:55:00Z",
    "consecutive_failures": 0,
    "total_attempts": 120,
    "success_count": 118,
    "failure_count": 2,
    "last_error": None,
    "last_error_kind": None,
    "poll_in_progress": False,
    "bulk_import": {
        "completed": True,
        "started_at": "2024-01-14T08:00:00Z",
        "last_completed_at": "2024-01-14T08:03:12Z",
        "total_imported": 5230
    }
}


# ========== Dependencies ==========

def get_coordinator(request: Request) -> SyncCoordinator:
    """Sync coordinator created at application startup."""
    coordinator = getattr(request.app.state, "sync_coordinator", None)
    if coordinator is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Sync coordinator not initialized"
        )
    return coordinator


# ========== Route Handlers ==========

@router.get(
    "/status",
    response_model=SyncStatusResponse,
    summary="Sync status",
    description="Cursor, circuit and counters of the sync engine, plus the bulk import marker.",
    responses={
        200: {"content": {"application/json": {"example": SYNC_STATUS_EXAMPLE}}}
    }
)
async def get_sync_status(coordinator: SyncCoordinator = Depends(get_coordinator)):
    return await coordinator.status()


@router.post(
    "/poll",
    response_model=PollResult,
    summary="Trigger a poll now",
    description="""
    Run one incremental poll tick immediately.

    Skipped (no remote call) when the circuit is open or another poll is
    in progress. Failures are recorded on the cursor, not raised.
    """
)
async def trigger_poll(coordinator: SyncCoordinator = Depends(get_coordinator)):
    result = await coordinator.poll_once()
    logger.info("Manual poll", extra={"skipped": result.skipped, "success": result.success})
    return result


@router.post(
    "/bulk-import",
    response_model=BulkImportResult,
    summary="Run the bulk import",
    description="""
    Run the one-time full import.

    Without `force=true` a previously completed import is not repeated and
    the response references the earlier run. `force=true` clears the
    completion marker first.
    """
)
async def trigger_bulk_import(
    force: bool = Query(False, description="Clear the completion marker and re-import everything"),
    coordinator: SyncCoordinator = Depends(get_coordinator)
):
    result = await coordinator.bulk_import(force=force)
    logger.info(
        "Manual bulk import",
        extra={"force": force, "skipped": result.skipped, "total_imported": result.total_imported}
    )
    return result


@router.post(
    "/circuit/reset",
    response_model=HealthCheckResult,
    summary="Reset the circuit",
    description="Re-run the health check; the circuit only closes if it passes."
)
async def reset_circuit(coordinator: SyncCoordinator = Depends(get_coordinator)):
    return await coordinator.reset_circuit()


@router.post(
    "/health-check",
    response_model=HealthCheckResult,
    summary="Run the health check",
    description="Configuration check followed by a single-record connectivity check."
)
async def run_health_check(coordinator: SyncCoordinator = Depends(get_coordinator)):
    return await coordinator.health_check()


@router.post(
    "/reset",
    response_model=SyncStatusResponse,
    summary="Reset sync state",
    description="""
    Rewind the cursor to the initial lookback window, zero all counters
    and re-activate polling. Requires `{"confirm": true}`.
    """
)
async def reset_sync_state(
    request: ResetStateRequest,
    coordinator: SyncCoordinator = Depends(get_coordinator)
):
    if not request.confirm:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Set confirm to true to reset the sync state"
        )
    return await coordinator.reset_state()


# Export router for inclusion in main app
sync_router = router
