"""
Sync Application Layer
======================

Application layer for the ticket synchronization module.

Contains:
- Services: ingestion/upsert, sync coordination, event publishing
- Mapping: remote record normalization
- DTOs: results and API models
"""

from src.sync.application.dto import (
    IngestSummary,
    PollResult,
    BulkImportResult,
    BulkImportStatus,
    HealthCheckResult,
    SyncStatusResponse,
    ResetStateRequest,
)
from src.sync.application.mapping import TicketMapper, parse_timestamp, parse_tags
from src.sync.application.services import (
    IRemoteTicketSource,
    ITicketStore,
    ISyncStateRepository,
    ITicketEventPublisher,
    NotificationTicketEventPublisher,
    TicketIngestionService,
    SyncOptions,
    SyncCoordinator,
)

__all__ = [
    # DTOs
    "IngestSummary",
    "PollResult",
    "BulkImportResult",
    "BulkImportStatus",
    "HealthCheckResult",
    "SyncStatusResponse",
    "ResetStateRequest",
    # Mapping
    "TicketMapper",
    "parse_timestamp",
    "parse_tags",
    # Interfaces
    "IRemoteTicketSource",
    "ITicketStore",
    "ISyncStateRepository",
    "ITicketEventPublisher",
    # Services
    "NotificationTicketEventPublisher",
    "TicketIngestionService",
    "SyncOptions",
    "SyncCoordinator",
]
