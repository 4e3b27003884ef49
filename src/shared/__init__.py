"""
Shared Kernel Module
====================

Generic infrastructure used by both bounded contexts (Sync and SLA):
logging, notification sinks, the periodic job scheduler and API middleware.

DO NOT add sync or SLA business logic to the shared kernel.
"""

__version__ = "1.0.0"
