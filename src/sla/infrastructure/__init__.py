"""
SLA Infrastructure Layer
=========================

Infrastructure implementations for SLA monitoring:
- Models: SQLAlchemy ORM models
- Repositories: Data access layer
- External: SLA policy loading and hot reload
"""

from src.sla.infrastructure.models import SLARecordModel
from src.sla.infrastructure.repositories import SQLAlchemySLARecordRepository
from src.sla.infrastructure.external import SLAConfigManager, policy_from_settings

__all__ = [
    "SLARecordModel",
    "SQLAlchemySLARecordRepository",
    "SLAConfigManager",
    "policy_from_settings",
]
