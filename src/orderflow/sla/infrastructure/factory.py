"""
Audit wiring shared by the API process and the CLI.
"""

from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from orderflow.config import Settings
from orderflow.sla.application import (
    AuditSweepEngine,
    DwellEvaluator,
    IMailTransport,
    NotificationDispatcher,
    SweepCoordinator,
)
from orderflow.sla.infrastructure.external import ThresholdPolicyManager, build_mail_transport
from orderflow.sla.infrastructure.repositories import (
    SQLAlchemyNotificationJournal,
    SQLAlchemyOpenOrderSource,
    SQLAlchemyRecipientDirectory,
)


@dataclass
class AuditComponents:
    policy_manager: ThresholdPolicyManager
    transport: IMailTransport
    journal: SQLAlchemyNotificationJournal
    directory: SQLAlchemyRecipientDirectory
    evaluator: DwellEvaluator
    coordinator: SweepCoordinator


def build_audit_components(
    settings: Settings,
    session_maker: async_sessionmaker[AsyncSession],
    policy_manager: ThresholdPolicyManager,
) -> AuditComponents:
    """Assemble the sweep engine and its collaborators over one session factory."""
    transport = build_mail_transport(settings)
    journal = SQLAlchemyNotificationJournal(session_maker)
    directory = SQLAlchemyRecipientDirectory(session_maker)
    evaluator = DwellEvaluator()

    engine = AuditSweepEngine(
        order_source=SQLAlchemyOpenOrderSource(session_maker),
        journal=journal,
        directory=directory,
        dispatcher=NotificationDispatcher(transport, settings.dispatch_timeout_seconds),
        evaluator=evaluator,
    )
    return AuditComponents(
        policy_manager=policy_manager,
        transport=transport,
        journal=journal,
        directory=directory,
        evaluator=evaluator,
        coordinator=SweepCoordinator(engine, policy_manager),
    )
