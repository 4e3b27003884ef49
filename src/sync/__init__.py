"""
Ticket Sync Module
==================

Bounded Context for synchronizing tickets from a remote ticketing API.

Responsibilities:
- One-time bulk import guarded by a completion marker
- Incremental polling with a persisted, monotonic cursor
- Health gate and single-threshold circuit breaker
- Idempotent ticket upsert with change detection
- Companion SLA record creation and refresh
"""

__version__ = "1.0.0"
