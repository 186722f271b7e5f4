"""In-memory collaborators and builders shared by the test suites."""

import asyncio
import copy
import dataclasses
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Sequence, Union

from orderflow.config import ComponentSource, ComponentStatus, EntityKind, OrderStatus
from orderflow.core import StoreUnavailable
from orderflow.lifecycle.application.services import IOrderRepository
from orderflow.lifecycle.domain import Component, HistoryEntry, MalformedOrder, Order, OrderItem
from orderflow.sla.application import (
    IMailTransport,
    INotificationJournal,
    IOpenOrderSource,
    IRecipientDirectory,
    IPolicyProvider,
)
from orderflow.sla.domain import DispatchResult, NotificationJournalEntry, ThresholdPolicy


T0 = datetime(2024, 3, 4, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now

    def set(self, value: datetime) -> None:
        self.now = value


# ========== Builders ==========

def make_component(
    component_id: str = "C1",
    status: ComponentStatus = ComponentStatus.PENDING_OFFER,
    source: Optional[ComponentSource] = None,
    updated_at: Optional[datetime] = T0,
    unit_cost: float = 10.0,
    quantity: float = 1.0,
) -> Component:
    if source is None:
        stock = status in (ComponentStatus.AVAILABLE, ComponentStatus.RESERVED)
        source = ComponentSource.STOCK if stock else ComponentSource.PROCUREMENT
    return Component(
        id=component_id,
        description=f"Component {component_id}",
        source=source,
        status=status,
        quantity=quantity,
        unit_cost=unit_cost,
        status_updated_at=updated_at,
    )


def make_order(
    order_id: str = "O1",
    status: OrderStatus = OrderStatus.LOGGED,
    entered_at: datetime = T0,
    created_at: Optional[datetime] = None,
    components: Sequence[Component] = (),
    approved: bool = False,
    price_per_unit: float = 100.0,
    order_date: Optional[datetime] = None,
    customer_name: str = "Acme Industrial",
) -> Order:
    """An order sitting in ``status`` since ``entered_at``, with one line item."""
    created_at = created_at or entered_at
    order = Order(
        id=order_id,
        internal_order_number=f"ORD-{order_id}",
        customer_name=customer_name,
        status=status,
        created_at=created_at,
        order_date=order_date,
        items=[
            OrderItem(
                id=f"{order_id}-I1",
                description="Control cabinet",
                price_per_unit=price_per_unit,
                approved=approved,
                components=list(components),
            )
        ],
    )
    order.append_history(HistoryEntry(
        timestamp=created_at,
        actor="test",
        entity_kind=EntityKind.ORDER,
        entity_id=order_id,
        field_changed="status",
        status=OrderStatus.LOGGED.value,
        new_value=OrderStatus.LOGGED.value,
    ))
    if status != OrderStatus.LOGGED or entered_at != created_at:
        order.append_history(HistoryEntry(
            timestamp=entered_at,
            actor="test",
            entity_kind=EntityKind.ORDER,
            entity_id=order_id,
            field_changed="status",
            status=status.value,
            previous_value=OrderStatus.LOGGED.value,
            new_value=status.value,
        ))
    return order


# ========== Collaborators ==========

class InMemoryOrderRepository(IOrderRepository, IOpenOrderSource):
    """Order store handing out detached copies, like the SQLAlchemy repository."""

    def __init__(self, orders: Sequence[Union[Order, MalformedOrder]] = ()):
        self._orders: Dict[str, Union[Order, MalformedOrder]] = {}
        self._sequence = 0
        self.unavailable = False
        for order in orders:
            self.put(order)

    def put(self, order: Union[Order, MalformedOrder]) -> None:
        if isinstance(order, Order):
            order = copy.deepcopy(order)
            self._persist_history(order)
        self._orders[order.id] = order

    def stored(self, order_id: str) -> Order:
        return self._orders[order_id]

    async def get(self, order_id: str, for_update: bool = False) -> Optional[Order]:
        order = self._orders.get(order_id)
        return copy.deepcopy(order) if order is not None else None

    async def add(self, order: Order) -> Order:
        self.put(order)
        return await self.get(order.id)

    async def save(self, order: Order) -> Order:
        self.put(order)
        return await self.get(order.id)

    async def append_log(self, order_id: str, entry: HistoryEntry) -> HistoryEntry:
        self._sequence += 1
        persisted = dataclasses.replace(entry, sequence=self._sequence)
        self._orders[order_id].history.append(persisted)
        return persisted

    async def list_open_orders(self) -> List[Union[Order, MalformedOrder]]:
        if self.unavailable:
            raise StoreUnavailable("Order store unavailable: connection refused")
        return [
            copy.deepcopy(order) for order in self._orders.values()
            if isinstance(order, MalformedOrder) or not order.is_terminal
        ]

    def _persist_history(self, order: Order) -> None:
        persisted = []
        for entry in order.history:
            if not entry.is_persisted:
                self._sequence += 1
                entry = dataclasses.replace(entry, sequence=self._sequence)
            persisted.append(entry)
        order.history = persisted


class InMemoryJournal(INotificationJournal):

    def __init__(self):
        self.entries: Dict[str, NotificationJournalEntry] = {}
        self.fail_on_has: Optional[str] = None

    async def has(self, violation_key: str, since: Optional[datetime] = None) -> bool:
        if self.fail_on_has and violation_key.startswith(self.fail_on_has):
            raise RuntimeError("journal lookup failed")
        entry = self.entries.get(violation_key)
        if entry is None:
            return False
        return since is None or entry.sent_at >= since

    async def record(self, entry: NotificationJournalEntry) -> None:
        self.entries[entry.violation_key] = entry

    async def list_recent(self, limit: int = 100) -> List[NotificationJournalEntry]:
        ordered = sorted(self.entries.values(), key=lambda e: e.sent_at, reverse=True)
        return ordered[:limit]


class StaticDirectory(IRecipientDirectory):

    def __init__(self, groups: Optional[Dict[str, List[str]]] = None):
        self.groups = groups if groups is not None else {"grp_super": ["super@example.com"]}

    async def resolve_recipients(self, group_ids: Sequence[str]) -> List[str]:
        recipients: List[str] = []
        for group_id in group_ids:
            for email in self.groups.get(group_id, []):
                if email.lower() not in {r.lower() for r in recipients}:
                    recipients.append(email)
        return recipients


class RecordingTransport(IMailTransport):
    """Captures sent messages; can be told to fail, raise or hang."""

    def __init__(self, ok: bool = True, delay: float = 0.0, error: Optional[Exception] = None):
        self.ok = ok
        self.delay = delay
        self.error = error
        self.sent: List[dict] = []

    async def send(self, recipients: Sequence[str], subject: str, body: str) -> DispatchResult:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        if not self.ok:
            return DispatchResult(ok=False, error="relay returned HTTP 503")
        self.sent.append({"recipients": list(recipients), "subject": subject, "body": body})
        return DispatchResult(ok=True)

    @property
    def subjects(self) -> List[str]:
        return [message["subject"] for message in self.sent]


class StaticPolicyProvider(IPolicyProvider):

    def __init__(self, policy: Optional[ThresholdPolicy] = None):
        self.policy = policy or ThresholdPolicy.default()

    def get_policy(self) -> ThresholdPolicy:
        return self.policy
