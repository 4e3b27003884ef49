"""
SLA Infrastructure Models
==========================

SQLAlchemy ORM models for SLA module.

These are the database representations of our domain entities.
They belong in the infrastructure layer, not the domain layer.
"""

from datetime import datetime, timezone
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import String, DateTime, Uuid, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from src.infrastructure.database import Base
from src.config import Priority


class SLARecordModel(Base):
    """
    Database model for SLARecord entity.

    Maps to the 'sla_records' table. One row per ticket, keyed like the
    ticket by (external_id, source).
    """
    __tablename__ = "sla_records"

    # Primary key
    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    # Ticket reference (not owning)
    ticket_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True, index=True)
    external_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    source: Mapped[str] = mapped_column(String(100), nullable=False)

    # Ticket-derived attributes
    priority: Mapped[str] = mapped_column(String(10), nullable=False, default=Priority.P3, index=True)
    status: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    category: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    assignee_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    opened_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    # Escalation ratchet
    last_notified_state: Mapped[Optional[str]] = mapped_column(String(20), nullable=True, index=True)
    last_notified_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        UniqueConstraint("external_id", "source", name="uq_sla_records_external_id_source"),
    )
