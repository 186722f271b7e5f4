"""
SLA Domain Entities
====================

Pure Python domain entities for dwell-time monitoring.

Following Domain-Driven Design principles, these entities contain
business logic and are free of infrastructure concerns.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Tuple

from orderflow.config import EntityKind, NotificationType


@dataclass(frozen=True)
class DwellEvaluation:
    """
    Result of evaluating one entity against its status threshold.

    ``monitored`` is False when the limit is 0 or the policy has no entry;
    such an evaluation is never violating.
    """

    entity_kind: EntityKind
    entity_id: str
    status: str
    entered_at: datetime
    elapsed_hours: float
    limit_hours: float
    is_violating: bool
    monitored: bool = True

    @property
    def overdue_hours(self) -> float:
        if not self.is_violating:
            return 0.0
        return self.elapsed_hours - self.limit_hours


@dataclass(frozen=True)
class Violation:
    """A condition that owes one notification, identified by its journal key."""

    key: str
    notification_type: NotificationType
    order_id: str
    order_reference: str
    entity_kind: EntityKind
    entity_id: str
    status: str
    notify_group_ids: Tuple[str, ...]
    elapsed_hours: float = 0.0
    limit_hours: float = 0.0
    entered_at: Optional[datetime] = None
    customer_name: str = ""
    order_date: Optional[datetime] = None


@dataclass(frozen=True)
class NotificationJournalEntry:
    """Proof that a violation was successfully notified."""

    violation_key: str
    notification_type: NotificationType
    entity_id: str
    sent_at: datetime
    recipients: Tuple[str, ...] = ()


@dataclass(frozen=True)
class DirectoryUser:
    """A user that can receive notifications through group membership."""

    id: str
    username: str
    email: Optional[str]
    group_ids: Tuple[str, ...] = ()


@dataclass(frozen=True)
class DispatchResult:
    """Outcome of handing one message to the mail transport."""

    ok: bool
    error: Optional[str] = None


@dataclass
class SweepSummary:
    """
    Counters for one audit sweep.

    ``errors_handled`` counts per-order faults; ``dispatch_failures`` counts
    failed or timed-out sends, which are retried on the next sweep.
    """

    sweep_id: str
    started_at: datetime
    finished_at: Optional[datetime] = None
    orders_scanned: int = 0
    violations_found: int = 0
    notifications_sent: int = 0
    dispatch_failures: int = 0
    unrouted: int = 0
    errors_handled: int = 0
    cancelled: bool = False
    faulted_order_ids: List[str] = field(default_factory=list)

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.finished_at is None:
            return None
        return (self.finished_at - self.started_at).total_seconds()
