"""
SLA Infrastructure Models
==========================

SQLAlchemy ORM models for the notification journal and the recipient
directory.

These are the database representations of our domain entities.
They belong in the infrastructure layer, not the domain layer.
"""

from datetime import datetime, timezone
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import JSON, Boolean, DateTime, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from orderflow.config import NotificationType
from orderflow.infrastructure.database import Base


class NotificationJournalModel(Base):
    """
    Database model for a notification journal entry.

    Maps to the 'notification_journal' table. The unique violation key is
    what makes a second sweep over the same violation a no-op.
    """
    __tablename__ = "notification_journal"

    # Primary key
    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    # Idempotency key
    violation_key: Mapped[str] = mapped_column(String(255), unique=True, index=True, nullable=False)

    notification_type: Mapped[NotificationType] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    sent_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    recipients: Mapped[list] = mapped_column(JSON, nullable=False, default=list)


class DirectoryUserModel(Base):
    """
    Database model for a notification recipient.

    Maps to the 'users' table.
    """
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    username: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(320), nullable=True)
    group_ids: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
