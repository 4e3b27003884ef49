"""
Sync Infrastructure Layer
=========================

Infrastructure implementations for ticket synchronization:
- Models: SQLAlchemy ORM models
- Repositories: ticket store and sync state persistence
- External: ServiceNow Table API client
"""

from src.sync.infrastructure.models import TicketModel, SyncCursorModel, BulkImportMarkerModel
from src.sync.infrastructure.repositories import SQLAlchemyTicketStore, SQLAlchemySyncStateRepository
from src.sync.infrastructure.external import ServiceNowClient, DEFAULT_FIELDS

__all__ = [
    "TicketModel",
    "SyncCursorModel",
    "BulkImportMarkerModel",
    "SQLAlchemyTicketStore",
    "SQLAlchemySyncStateRepository",
    "ServiceNowClient",
    "DEFAULT_FIELDS",
]
