"""
Lifecycle Domain Entities
==========================

Pure Python domain entities for customer orders and their manufacturing
components.

Following Domain-Driven Design principles, these entities contain
business logic and are free of infrastructure concerns. Status fields are
never assigned directly by callers: the state machine mutates them and
records a history entry for every change.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterator, List, Optional, Tuple

from orderflow.config import (
    ComponentSource,
    ComponentStatus,
    EntityKind,
    OrderStatus,
    TERMINAL_ORDER_STATUSES,
)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Return ``value`` as an aware UTC datetime (naive values are taken as UTC)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True)
class HistoryEntry:
    """
    One structured, append-only log entry.

    ``entity_kind`` and ``entity_id`` say exactly which entity changed, and
    ``field_changed`` which attribute, so nothing has to be inferred from the
    free-text note.
    """

    timestamp: datetime
    actor: str
    entity_kind: EntityKind
    entity_id: str
    field_changed: str
    status: Optional[str] = None
    previous_value: Optional[str] = None
    new_value: Optional[str] = None
    note: Optional[str] = None
    sequence: Optional[int] = None

    @property
    def is_persisted(self) -> bool:
        return self.sequence is not None


@dataclass
class Component:
    """A manufacturable or sourceable part of an order line item."""

    id: str
    description: str
    source: ComponentSource
    status: ComponentStatus
    quantity: float = 1.0
    unit: str = "pcs"
    unit_cost: float = 0.0
    status_updated_at: Optional[datetime] = None
    component_number: Optional[str] = None
    supplier_id: Optional[str] = None
    rfp_supplier_ids: List[str] = field(default_factory=list)
    po_number: Optional[str] = None
    procurement_started_at: Optional[datetime] = None

    @property
    def cost(self) -> float:
        return self.quantity * (self.unit_cost or 0.0)


@dataclass
class OrderItem:
    """An order line item; a container for components."""

    id: str
    description: str
    quantity: float = 1.0
    unit: str = "pcs"
    price_per_unit: float = 0.0
    approved: bool = False
    components: List[Component] = field(default_factory=list)

    @property
    def revenue(self) -> float:
        return self.quantity * self.price_per_unit


@dataclass
class Order:
    """
    Order entity representing one customer purchase order.

    ``created_at`` is the moment the order was entered into the system;
    ``order_date`` is the date printed on the customer's PO.
    """

    id: str
    internal_order_number: str
    customer_name: str
    status: OrderStatus
    created_at: datetime
    order_date: Optional[datetime] = None
    customer_reference: Optional[str] = None
    items: List[OrderItem] = field(default_factory=list)
    history: List[HistoryEntry] = field(default_factory=list)
    previous_status: Optional[OrderStatus] = None
    hold_reason: Optional[str] = None
    rejection_reason: Optional[str] = None
    invoice_number: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_ORDER_STATUSES

    @property
    def reference(self) -> str:
        """Human-facing identifier used in notifications."""
        return self.internal_order_number or self.id

    @property
    def all_items_approved(self) -> bool:
        return bool(self.items) and all(item.approved for item in self.items)

    def iter_components(self) -> Iterator[Tuple[OrderItem, Component]]:
        for item in self.items:
            for component in item.components:
                yield item, component

    def find_item(self, item_id: str) -> Optional[OrderItem]:
        for item in self.items:
            if item.id == item_id:
                return item
        return None

    def find_component(self, component_id: str) -> Optional[Tuple[OrderItem, Component]]:
        for item, component in self.iter_components():
            if component.id == component_id:
                return item, component
        return None

    def status_history(self) -> List[HistoryEntry]:
        """Order-level status changes, oldest first."""
        return [
            entry for entry in self.history
            if entry.entity_kind == EntityKind.ORDER and entry.field_changed == "status"
        ]

    def pending_history(self) -> List[HistoryEntry]:
        """Entries appended in memory and not yet written to the store."""
        return [entry for entry in self.history if not entry.is_persisted]

    def append_history(self, entry: HistoryEntry) -> None:
        self.history.append(entry)

    def markup_pct(self) -> float:
        """
        Order markup over component cost, in percent.

        Revenue is the sum of line revenue; cost is the sum of component
        cost. With no cost the markup is 100 if anything is sold, else 0.
        """
        revenue = sum(item.revenue for item in self.items)
        cost = sum(component.cost for _, component in self.iter_components())
        if cost > 0:
            return (revenue - cost) / cost * 100
        return 100.0 if revenue > 0 else 0.0


@dataclass(frozen=True)
class MalformedOrder:
    """
    Placeholder for a stored order that could not be read.

    Returned by the store in place of an Order so a sweep can count and
    report the bad record without losing the rest of the batch.
    """

    id: str
    error: str
