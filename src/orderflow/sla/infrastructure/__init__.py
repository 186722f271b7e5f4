"""
SLA Infrastructure Layer
========================

Contains:
- Models: journal and recipient directory tables
- Repositories: SQLAlchemy adapters for the sweep's collaborators
- External: policy file manager, mail transports, scheduler
"""

from orderflow.sla.infrastructure.external import (
    AuditScheduler,
    CircuitBreaker,
    CircuitState,
    NullMailTransport,
    RelayMailTransport,
    SMTPMailTransport,
    ThresholdPolicyManager,
    build_mail_transport,
)
from orderflow.sla.infrastructure.models import (
    DirectoryUserModel,
    NotificationJournalModel,
)
from orderflow.sla.infrastructure.repositories import (
    SQLAlchemyNotificationJournal,
    SQLAlchemyOpenOrderSource,
    SQLAlchemyRecipientDirectory,
)

__all__ = [
    # External
    "AuditScheduler",
    "CircuitBreaker",
    "CircuitState",
    "NullMailTransport",
    "RelayMailTransport",
    "SMTPMailTransport",
    "ThresholdPolicyManager",
    "build_mail_transport",
    # Models
    "DirectoryUserModel",
    "NotificationJournalModel",
    # Repositories
    "SQLAlchemyNotificationJournal",
    "SQLAlchemyOpenOrderSource",
    "SQLAlchemyRecipientDirectory",
]
