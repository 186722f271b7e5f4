"""
SLA Application Layer
======================

Application layer for dwell-time monitoring.

Contains:
- Services: evaluator, dispatcher, sweep engine and coordinator
- DTOs: Data transfer objects for API serialization

This layer depends on the domain layer and collaborator interfaces,
but not on concrete infrastructure implementations.
"""

from orderflow.sla.application.dto import (
    CancelResponse,
    DwellEvaluationResponse,
    JournalEntryResponse,
    OrderDwellResponse,
    PolicyReloadResponse,
    SweepSummaryResponse,
)
from orderflow.sla.application.services import (
    AuditSweepEngine,
    DwellEvaluator,
    IMailTransport,
    INotificationJournal,
    IOpenOrderSource,
    IPolicyProvider,
    IRecipientDirectory,
    NotificationDispatcher,
    ProgressCallback,
    SweepCoordinator,
)

__all__ = [
    # DTOs
    "CancelResponse",
    "DwellEvaluationResponse",
    "JournalEntryResponse",
    "OrderDwellResponse",
    "PolicyReloadResponse",
    "SweepSummaryResponse",
    # Services
    "AuditSweepEngine",
    "DwellEvaluator",
    "NotificationDispatcher",
    "ProgressCallback",
    "SweepCoordinator",
    # Collaborator Interfaces
    "IMailTransport",
    "INotificationJournal",
    "IOpenOrderSource",
    "IPolicyProvider",
    "IRecipientDirectory",
]
