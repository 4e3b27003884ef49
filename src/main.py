"""
Ticket Sync & SLA Escalation Engine - Main Application
======================================================

Keeps a local ticket store in sync with a ServiceNow table and escalates
SLA phase changes to notification sinks.

Modules:
- Sync: incremental polling, one-time bulk import, circuit breaker
- SLA: policy, classification and escalation of synced tickets

Clean Architecture Layers:
- Interfaces: FastAPI controllers
- Application: Services and DTOs
- Domain: Entities and value objects
- Infrastructure: Database, ServiceNow client, notification sinks
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncGenerator, List, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

# Configuration and Core
from src.config import settings
from src.core import ApplicationException

# Infrastructure
from src.infrastructure.database import (
    init_database, close_database, create_tables, get_session_maker
)
from src.infrastructure.database.unit_of_work import sqlalchemy_uow_factory

# Notifications and scheduling
from src.shared.infrastructure.notifications import (
    INotificationSink,
    LoggingNotificationSink,
    DatabaseNotificationSink,
    SlackNotificationSink,
    CompositeNotificationSink,
)
from src.shared.infrastructure.scheduler import PeriodicJobScheduler

# SLA Module
from src.sla.application import SLARecordService, SLAEscalationService
from src.sla.infrastructure import SLAConfigManager, policy_from_settings

# Sync Module
from src.sync.application import (
    NotificationTicketEventPublisher,
    TicketIngestionService,
    SyncOptions,
    SyncCoordinator,
)
from src.sync.infrastructure import ServiceNowClient

# Module Routers
from src.sla.interfaces import sla_router
from src.sync.interfaces import sync_router

# Middleware
from src.shared.api.middleware import (
    CorrelationIDMiddleware,
    LoggingMiddleware,
    application_exception_handler,
    global_exception_handler,
)

# Logging
from src.shared.infrastructure.logging import setup_logging, get_logger

logger = get_logger(__name__)


def build_notification_sink(session_factory) -> CompositeNotificationSink:
    """Log and database sinks always; Slack when a webhook is configured."""
    sinks: List[INotificationSink] = [
        LoggingNotificationSink(),
        DatabaseNotificationSink(session_factory),
    ]
    if settings.slack_webhook_url:
        sinks.append(SlackNotificationSink(
            webhook_url=settings.slack_webhook_url,
            channel=settings.slack_channel,
            timeout_seconds=settings.slack_timeout_seconds,
        ))
    else:
        logger.info("Slack webhook not configured - Slack notifications disabled")
    return CompositeNotificationSink(sinks)


async def _run_startup_bulk_import(coordinator: SyncCoordinator) -> None:
    try:
        result = await coordinator.startup_bulk_import()
        logger.info(
            "Startup bulk import",
            extra={"skipped": result.skipped, "success": result.success, "total_imported": result.total_imported}
        )
    except ApplicationException as e:
        logger.error("Startup bulk import failed", extra={"error": e.message, "error_kind": e.error_kind})
    except Exception as e:
        logger.exception("Startup bulk import crashed", extra={"error": str(e)})


def start_startup_bulk_import(coordinator: SyncCoordinator) -> asyncio.Task:
    """Run the startup bulk import without holding up application startup."""
    return asyncio.create_task(_run_startup_bulk_import(coordinator), name="startup_bulk_import")


async def stop_startup_bulk_import(task: Optional[asyncio.Task]) -> None:
    """Cancel the startup bulk import if it is still running."""
    if task is None or task.done():
        return
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        logger.info("Startup bulk import cancelled")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan manager.

    STARTUP:
    1. Setup structured logging
    2. Initialize database and create tables
    3. Load SLA policy and watch the config file
    4. Wire the sync and SLA services
    5. Startup health check, then the bulk import in the background
    6. Start the periodic jobs

    SHUTDOWN:
    1. Cancel a running startup bulk import, stop the scheduler and the
       config watcher
    2. Close the ServiceNow client and notification sinks
    3. Close database connections
    """
    # === STARTUP ===
    setup_logging(level=settings.log_level, environment=settings.environment)
    logger.info("Starting Ticket Sync", extra={
        "version": settings.app_version,
        "environment": settings.environment,
        "sync_source": settings.sync_source
    })

    init_database()
    try:
        await create_tables()
    except (SQLAlchemyError, OSError) as e:
        logger.warning("Database not available - running in degraded mode", extra={"error": str(e)})

    session_factory = get_session_maker()
    uow_factory = sqlalchemy_uow_factory(session_factory)
    sink = build_notification_sink(session_factory)

    # SLA policy
    sla_config_manager = SLAConfigManager(policy_from_settings(settings))
    sla_config_manager.load(settings.sla_config_path)
    sla_config_manager.start_watching()

    # Services
    remote = ServiceNowClient.from_settings(settings)
    sla_record_service = SLARecordService()
    ingestion = TicketIngestionService(
        uow_factory,
        source=settings.sync_source,
        sla_service=sla_record_service,
        publisher=NotificationTicketEventPublisher(sink),
    )
    coordinator = SyncCoordinator(
        uow_factory,
        remote=remote,
        ingestion=ingestion,
        sink=sink,
        options=SyncOptions.from_settings(settings),
    )
    escalation_service = SLAEscalationService(uow_factory, sla_config_manager, sink)

    app.state.settings = settings
    app.state.sync_source = settings.sync_source
    app.state.sync_coordinator = coordinator
    app.state.sla_escalation_service = escalation_service
    app.state.sla_config_manager = sla_config_manager

    # Startup health check; failures are recorded on the cursor, not raised
    try:
        health = await coordinator.health_check()
        logger.info("Startup health check", extra={"healthy": health.healthy, "error_kind": health.error_kind})
    except ApplicationException as e:
        logger.error("Startup health check failed", extra={"error": e.message, "error_kind": e.error_kind})

    # A full import can take minutes; the API is served meanwhile
    app.state.startup_bulk_import = None
    if settings.sync_enabled and settings.sync_bulk_import_on_startup:
        app.state.startup_bulk_import = start_startup_bulk_import(coordinator)

    # Periodic jobs
    scheduler = PeriodicJobScheduler()
    if settings.sync_enabled:
        scheduler.add_interval_job("sync_poll", coordinator.poll_once, settings.sync_poll_interval_seconds)
        scheduler.add_interval_job(
            "sync_health_check", coordinator.health_check, settings.sync_health_check_interval_seconds
        )
    if settings.sla_monitoring_enabled:
        scheduler.add_interval_job("sla_evaluation", escalation_service.evaluate, settings.sla_evaluation_interval)
    await scheduler.start()
    app.state.scheduler = scheduler

    logger.info("Ticket Sync started successfully")

    yield  # Application runs here

    # === SHUTDOWN ===
    logger.info("Shutting down Ticket Sync")

    await stop_startup_bulk_import(app.state.startup_bulk_import)
    await scheduler.stop()
    sla_config_manager.stop_watching()
    await remote.close()
    await sink.close()
    await close_database()

    logger.info("Ticket Sync shutdown complete")


# Create FastAPI application
app = FastAPI(
    title="Ticket Sync & SLA Escalation API",
    description="""
    ## ServiceNow Ticket Sync & SLA Escalation

    ### Sync Module

    - `GET /sync/status` - Cursor, circuit and bulk import state
    - `POST /sync/poll` - Run one incremental poll now
    - `POST /sync/bulk-import` - Run (or force) the one-time full import
    - `POST /sync/health-check` - Configuration check and connectivity check
    - `POST /sync/circuit/reset` - Close the circuit if the health check passes
    - `POST /sync/reset` - Rewind the cursor and zero counters

    ### SLA Module

    - `GET /sla/records` - Tracked tickets with their current SLA state
    - `GET /sla/records/{external_id}` - One record with its deadline
    - `GET /sla/stats` - Counts by priority and state
    - `POST /sla/evaluate` - Run one escalation pass now

    **Default SLA targets:** P1 4h, P2 12h, P3 24h. Warning at 20% elapsed,
    critical at 60%, breached at 100%.
    """,
    version=settings.app_version,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

# === CORS Middleware ===
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Added last runs first: correlation id is set before request logging
app.add_middleware(LoggingMiddleware)
app.add_middleware(CorrelationIDMiddleware)
app.add_exception_handler(ApplicationException, application_exception_handler)
app.add_exception_handler(Exception, global_exception_handler)

# === Include Module Routers ===
app.include_router(sync_router)
app.include_router(sla_router)


# === Health Check Endpoint ===

@app.get("/health", tags=["Health"], responses={
    200: {
        "description": "Service health",
        "content": {
            "application/json": {
                "example": {
                    "status": "healthy",
                    "version": "1.0.0",
                    "environment": "development",
                    "checks": {
                        "scheduler": "running",
                        "jobs": {"sync_poll": {"interval_seconds": 60, "next_run_time": "2024-01-15T08:01:00+00:00"}},
                        "sla_config": "watching",
                        "sync_circuit": "closed",
                        "sync_healthy": True
                    }
                }
            }
        }
    }
})
async def health_check(request: Request):
    """
    Health check endpoint for load balancers and orchestrators.

    Reports "degraded" when the sync circuit is open or the store is
    unreachable. The HTTP status stays 200.
    """
    scheduler = getattr(request.app.state, "scheduler", None)
    config_manager = getattr(request.app.state, "sla_config_manager", None)
    coordinator = getattr(request.app.state, "sync_coordinator", None)

    checks = {
        "scheduler": "running" if scheduler and scheduler.is_running else "stopped",
        "jobs": scheduler.describe()["jobs"] if scheduler else {},
        "sla_config": "watching" if config_manager and config_manager.is_watching else "static",
        "sync_circuit": "unknown",
        "sync_healthy": None,
    }
    status_value = "healthy"

    if coordinator is not None:
        try:
            sync_status = await coordinator.status()
            checks["sync_circuit"] = sync_status.circuit_state
            checks["sync_healthy"] = sync_status.is_healthy
            if not sync_status.is_healthy:
                status_value = "degraded"
        except ApplicationException as e:
            checks["database"] = f"error: {e.message}"
            status_value = "degraded"

    return {
        "status": status_value,
        "version": settings.app_version,
        "environment": settings.environment,
        "checks": checks
    }


@app.get("/", tags=["Root"])
async def root():
    """Root endpoint with API information."""
    return {
        "service": "Ticket Sync & SLA Escalation",
        "version": settings.app_version,
        "docs": "/docs",
        "health": "/health",
        "modules": {
            "sync": {"prefix": "/sync"},
            "sla": {"prefix": "/sla"}
        }
    }


# === Development Entry Point ===

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "src.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.environment == "development",
        log_level="info"
    )
