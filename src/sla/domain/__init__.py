"""
SLA Domain Layer
================

Domain layer for SLA monitoring module.

Contains:
- Entities: SLARecord, SLAClassification, EvaluationSummary
- Value Objects: SLAPolicy
- Domain Services: Stateless business logic (SLACalculator, notification ratchet)

This layer has no dependencies on infrastructure - pure Python business logic.
"""

from src.sla.domain.entities import SLARecord, SLAClassification, EvaluationSummary
from src.sla.domain.value_objects import (
    SLACalculator,
    SLAPolicy,
    DEFAULT_TARGET_HOURS,
    normalize_priority,
    is_terminal_status,
    rank,
    should_notify,
)

__all__ = [
    # Entities
    "SLARecord",
    "SLAClassification",
    "EvaluationSummary",
    # Value Objects & Services
    "SLACalculator",
    "SLAPolicy",
    "DEFAULT_TARGET_HOURS",
    "normalize_priority",
    "is_terminal_status",
    "rank",
    "should_notify",
]
