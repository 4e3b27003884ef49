"""
Sync Domain Layer
=================

Domain layer for the ticket synchronization module.

Contains:
- Entities: Ticket, SyncCursor, BulkImportMarker, TicketEvent, UpsertResult
- Value Objects: RemoteRef (ScalarRef | LinkRef), CircuitBreaker

This layer has no dependencies on infrastructure - pure Python business logic.
"""

from src.sync.domain.entities import (
    MUTABLE_FIELDS,
    Ticket,
    SyncCursor,
    BulkImportMarker,
    TicketEvent,
    UpsertResult,
)
from src.sync.domain.value_objects import (
    ScalarRef,
    LinkRef,
    RemoteRef,
    parse_ref,
    normalize_ref,
    CircuitBreaker,
)

__all__ = [
    # Entities
    "MUTABLE_FIELDS",
    "Ticket",
    "SyncCursor",
    "BulkImportMarker",
    "TicketEvent",
    "UpsertResult",
    # Value Objects
    "ScalarRef",
    "LinkRef",
    "RemoteRef",
    "parse_ref",
    "normalize_ref",
    "CircuitBreaker",
]
