"""
SLA Application Layer
======================

Application layer for SLA monitoring module.

Contains:
- Services: Orchestrate business logic and coordinate with repositories
- DTOs: Data transfer objects for API serialization

This layer depends on the domain layer and repository interfaces,
but not on concrete infrastructure implementations.
"""

from src.sla.application.dto import (
    SLARecordQueryDTO,
    SLAClassificationResponse,
    SLARecordResponse,
    SLARecordListResponse,
    SLAStatsResponse,
    EvaluationResponse,
)
from src.sla.application.services import (
    SLARecordService,
    SLAEscalationService,
    ISLARecordRepository,
    ISLAPolicyProvider,
    build_sla_notification,
)

__all__ = [
    # DTOs
    "SLARecordQueryDTO",
    "SLAClassificationResponse",
    "SLARecordResponse",
    "SLARecordListResponse",
    "SLAStatsResponse",
    "EvaluationResponse",
    # Services
    "SLARecordService",
    "SLAEscalationService",
    "build_sla_notification",
    # Repository Interfaces
    "ISLARecordRepository",
    "ISLAPolicyProvider",
]
