"""
SLA Application DTOs
=====================

Data Transfer Objects for the audit API layer.

These Pydantic models handle serialization for API responses and the CLI.
"""

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from orderflow.config import EntityKind, NotificationType


# ========== Response DTOs ==========

class DwellEvaluationResponse(BaseModel):
    """Dwell evaluation for one order or component."""
    entity_kind: EntityKind
    entity_id: str
    status: str
    entered_at: datetime = Field(..., description="When the entity entered its current status")
    elapsed_hours: float
    limit_hours: float = Field(..., description="Configured limit; 0 means not monitored")
    is_violating: bool
    monitored: bool

    @classmethod
    def from_domain(cls, evaluation) -> "DwellEvaluationResponse":
        return cls(
            entity_kind=evaluation.entity_kind,
            entity_id=evaluation.entity_id,
            status=evaluation.status,
            entered_at=evaluation.entered_at,
            elapsed_hours=round(evaluation.elapsed_hours, 3),
            limit_hours=evaluation.limit_hours,
            is_violating=evaluation.is_violating,
            monitored=evaluation.monitored,
        )


class OrderDwellResponse(BaseModel):
    """Dwell evaluation for an order and every one of its components."""
    order_id: str
    order: DwellEvaluationResponse
    components: List[DwellEvaluationResponse] = Field(default_factory=list)


class SweepSummaryResponse(BaseModel):
    """Result of one audit sweep."""
    sweep_id: str
    started_at: datetime
    finished_at: Optional[datetime] = None
    orders_scanned: int
    violations_found: int
    notifications_sent: int
    dispatch_failures: int
    unrouted: int
    errors_handled: int
    cancelled: bool
    faulted_order_ids: List[str] = Field(default_factory=list)

    @classmethod
    def from_domain(cls, summary) -> "SweepSummaryResponse":
        return cls(
            sweep_id=summary.sweep_id,
            started_at=summary.started_at,
            finished_at=summary.finished_at,
            orders_scanned=summary.orders_scanned,
            violations_found=summary.violations_found,
            notifications_sent=summary.notifications_sent,
            dispatch_failures=summary.dispatch_failures,
            unrouted=summary.unrouted,
            errors_handled=summary.errors_handled,
            cancelled=summary.cancelled,
            faulted_order_ids=list(summary.faulted_order_ids),
        )


class CancelResponse(BaseModel):
    cancel_requested: bool
    sweep_id: Optional[str] = None


class JournalEntryResponse(BaseModel):
    """One notification journal entry."""
    violation_key: str
    notification_type: NotificationType
    entity_id: str
    sent_at: datetime
    recipients: List[str] = Field(default_factory=list)

    @classmethod
    def from_domain(cls, entry) -> "JournalEntryResponse":
        return cls(
            violation_key=entry.violation_key,
            notification_type=entry.notification_type,
            entity_id=entry.entity_id,
            sent_at=entry.sent_at,
            recipients=list(entry.recipients),
        )


class PolicyReloadResponse(BaseModel):
    reloaded: bool
    monitored_statuses: Dict[str, List[str]] = Field(default_factory=dict)
