"""
SLA Infrastructure Repositories
================================

Concrete implementations of the sweep's collaborator interfaces using
SQLAlchemy.

Each call opens its own short session from the session factory, so the
sweep never holds a transaction open while it waits on the mail relay.
"""

from datetime import datetime
from typing import List, Optional, Sequence, Union

from sqlalchemy import select
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from orderflow.config import NotificationType
from orderflow.core import StoreUnavailable
from orderflow.lifecycle.domain import MalformedOrder, Order, ensure_utc
from orderflow.lifecycle.infrastructure import SQLAlchemyOrderRepository
from orderflow.sla.application.services import (
    INotificationJournal,
    IOpenOrderSource,
    IRecipientDirectory,
)
from orderflow.sla.domain import DirectoryUser, NotificationJournalEntry
from orderflow.sla.infrastructure.models import DirectoryUserModel, NotificationJournalModel


class SQLAlchemyOpenOrderSource(IOpenOrderSource):
    """Reads open order snapshots in a short-lived session."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker

    async def list_open_orders(self) -> List[Union[Order, MalformedOrder]]:
        try:
            async with self._session_maker() as session:
                return await SQLAlchemyOrderRepository(session).list_open_orders()
        except (OperationalError, DBAPIError, OSError) as e:
            raise StoreUnavailable(f"Order store unavailable: {e}") from e


class SQLAlchemyNotificationJournal(INotificationJournal):
    """
    SQLAlchemy implementation of the notification journal.

    ``record`` keeps one row per violation key; recording an existing key
    refreshes it, which only happens after a retention window expired.
    """

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker

    async def has(self, violation_key: str, since: Optional[datetime] = None) -> bool:
        async with self._session_maker() as session:
            stmt = select(NotificationJournalModel.sent_at).where(
                NotificationJournalModel.violation_key == violation_key
            )
            result = await session.execute(stmt)
            sent_at = result.scalar_one_or_none()

        if sent_at is None:
            return False
        if since is None:
            return True
        return ensure_utc(sent_at) >= ensure_utc(since)

    async def record(self, entry: NotificationJournalEntry) -> None:
        async with self._session_maker() as session:
            async with session.begin():
                result = await session.execute(
                    select(NotificationJournalModel).where(
                        NotificationJournalModel.violation_key == entry.violation_key
                    )
                )
                model = result.scalar_one_or_none()
                if model is None:
                    session.add(NotificationJournalModel(
                        violation_key=entry.violation_key,
                        notification_type=entry.notification_type.value,
                        entity_id=entry.entity_id,
                        sent_at=entry.sent_at,
                        recipients=list(entry.recipients),
                    ))
                else:
                    model.notification_type = entry.notification_type.value
                    model.sent_at = entry.sent_at
                    model.recipients = list(entry.recipients)

    async def list_recent(self, limit: int = 100) -> List[NotificationJournalEntry]:
        async with self._session_maker() as session:
            stmt = (
                select(NotificationJournalModel)
                .order_by(NotificationJournalModel.sent_at.desc())
                .limit(limit)
            )
            result = await session.execute(stmt)
            return [
                NotificationJournalEntry(
                    violation_key=m.violation_key,
                    notification_type=NotificationType(m.notification_type),
                    entity_id=m.entity_id,
                    sent_at=ensure_utc(m.sent_at),
                    recipients=tuple(m.recipients or ()),
                )
                for m in result.scalars().all()
            ]


class SQLAlchemyRecipientDirectory(IRecipientDirectory):
    """Resolves recipient groups against the users table."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker

    async def list_users(self) -> List[DirectoryUser]:
        async with self._session_maker() as session:
            result = await session.execute(
                select(DirectoryUserModel)
                .where(DirectoryUserModel.active.is_(True))
                .order_by(DirectoryUserModel.username)
            )
            return [
                DirectoryUser(
                    id=m.id,
                    username=m.username,
                    email=m.email,
                    group_ids=tuple(m.group_ids or ()),
                )
                for m in result.scalars().all()
            ]

    async def resolve_recipients(self, group_ids: Sequence[str]) -> List[str]:
        wanted = set(group_ids)
        if not wanted:
            return []

        recipients: List[str] = []
        seen = set()
        for user in await self.list_users():
            if not user.email or not wanted.intersection(user.group_ids):
                continue
            email = user.email.strip()
            if email.lower() in seen:
                continue
            seen.add(email.lower())
            recipients.append(email)
        return recipients
