"""
Shared Infrastructure Models
=============================

SQLAlchemy ORM models owned by the shared kernel.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional
from uuid import UUID, uuid4

from sqlalchemy import JSON, DateTime, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from src.infrastructure.database import Base
from src.config import NotificationSeverity


class NotificationModel(Base):
    """
    Database model for delivered notifications.

    Maps to the 'notifications' table.
    """
    __tablename__ = "notifications"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    severity: Mapped[str] = mapped_column(String(20), nullable=False, default=NotificationSeverity.INFO)

    related_entity_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, index=True)
    related_entity_type: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    # "metadata" is reserved on declarative classes
    payload: Mapped[Dict[str, Any]] = mapped_column("metadata", JSON, nullable=False, default=dict)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)
    )
