"""
Time helpers shared by the sync and SLA modules.

All persisted timestamps are timezone-aware UTC. Some drivers (SQLite) hand
back naive datetimes, so values read from the store pass through ``ensure_utc``.
"""

from datetime import datetime, timezone
from typing import Callable, Optional

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes and convert aware ones to UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def format_duration(seconds: float) -> str:
    """Render a duration as ``"3h 20m"`` or ``"45m"``."""
    total_minutes = int(max(0, seconds) // 60)
    hours, minutes = divmod(total_minutes, 60)
    if hours > 0:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"
