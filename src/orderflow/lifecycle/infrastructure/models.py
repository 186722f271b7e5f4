"""
Lifecycle Infrastructure Models
================================

SQLAlchemy ORM models for the order lifecycle module.

These are the database representations of our domain entities.
They belong in the infrastructure layer, not the domain layer.
"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import JSON, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from orderflow.config import OrderStatus
from orderflow.infrastructure.database import Base


class OrderModel(Base):
    """
    Database model for Order entity.

    Maps to the 'orders' table. Line items and their components are kept as
    one JSON document on the order row; they are never queried on their own.
    """
    __tablename__ = "orders"

    # Primary key
    id: Mapped[str] = mapped_column(String(64), primary_key=True)

    # Business identifier
    internal_order_number: Mapped[str] = mapped_column(String(64), unique=True, index=True, nullable=False)

    customer_name: Mapped[str] = mapped_column(String(255), nullable=False)
    customer_reference: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Lifecycle
    status: Mapped[OrderStatus] = mapped_column(String(50), nullable=False, index=True, default=OrderStatus.LOGGED)
    previous_status: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    hold_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    invoice_number: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    order_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    # Line items with nested components
    items: Mapped[list] = mapped_column(JSON, nullable=False, default=list)


class OrderHistoryModel(Base):
    """
    Database model for one history entry.

    Maps to the 'order_history' table. Rows are inserted only; nothing
    updates or deletes them.
    """
    __tablename__ = "order_history"

    sequence: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    order_id: Mapped[str] = mapped_column(String(64), ForeignKey("orders.id"), nullable=False, index=True)

    entity_kind: Mapped[str] = mapped_column(String(20), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    field_changed: Mapped[str] = mapped_column(String(50), nullable=False)
    status: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    previous_value: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    new_value: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    actor: Mapped[str] = mapped_column(String(255), nullable=False)
    note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
