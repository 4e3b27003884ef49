"""
Shared Infrastructure
=====================

Low-level technical concerns:
- Structured JSON logging
- Notification sinks (log, database, Slack)
- Periodic job scheduling
"""
