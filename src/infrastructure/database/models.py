"""
Model registry.

Importing this module registers every ORM model on ``Base.metadata``.
"""

from src.shared.infrastructure.models import NotificationModel
from src.sla.infrastructure.models import SLARecordModel
from src.sync.infrastructure.models import BulkImportMarkerModel, SyncCursorModel, TicketModel

__all__ = [
    "NotificationModel",
    "SLARecordModel",
    "BulkImportMarkerModel",
    "SyncCursorModel",
    "TicketModel",
]
