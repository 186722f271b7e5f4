"""
SLA Domain Layer
================

Domain layer for dwell-time monitoring.

Contains:
- Entities: DwellEvaluation, Violation, NotificationJournalEntry, SweepSummary
- Value Objects: ThresholdPolicy and the DwellCalculator

This layer has no dependencies on infrastructure - pure Python business logic.
"""

from orderflow.sla.domain.entities import (
    DirectoryUser,
    DispatchResult,
    DwellEvaluation,
    NotificationJournalEntry,
    SweepSummary,
    Violation,
)
from orderflow.sla.domain.value_objects import (
    DEFAULT_COMPONENT_DWELL_HOURS,
    DEFAULT_NOTIFY_GROUP_IDS,
    DEFAULT_ORDER_DWELL_HOURS,
    DwellCalculator,
    LoggingDelayRule,
    NewOrderAlertRule,
    StatusThreshold,
    ThresholdPolicy,
    build_violation_key,
    logging_delay_key,
    new_order_key,
)

__all__ = [
    # Entities
    "DirectoryUser",
    "DispatchResult",
    "DwellEvaluation",
    "NotificationJournalEntry",
    "SweepSummary",
    "Violation",
    # Value Objects
    "DEFAULT_COMPONENT_DWELL_HOURS",
    "DEFAULT_NOTIFY_GROUP_IDS",
    "DEFAULT_ORDER_DWELL_HOURS",
    "DwellCalculator",
    "LoggingDelayRule",
    "NewOrderAlertRule",
    "StatusThreshold",
    "ThresholdPolicy",
    "build_violation_key",
    "logging_delay_key",
    "new_order_key",
]
