"""
SLA Monitoring Module
=====================

Bounded Context for Service Level Agreement monitoring and escalation.

Responsibilities:
- Keep one SLA record per synced ticket
- Classify open tickets as safe / warning / critical / breached against
  per-priority targets
- Notify once per forward state transition
- Hot-reload the SLA policy via watchdog
- Provide API for SLA visibility
"""

__version__ = "1.0.0"
