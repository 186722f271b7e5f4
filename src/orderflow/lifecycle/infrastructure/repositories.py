"""
Lifecycle Infrastructure Repositories
======================================

Concrete implementation of the order repository using SQLAlchemy.

Rows are mapped to detached domain snapshots; callers mutate the snapshot
through the state machine and hand it back to ``save``.
"""

import dataclasses
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from sqlalchemy import select
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from orderflow.config import (
    ComponentSource,
    ComponentStatus,
    EntityKind,
    OrderStatus,
    TERMINAL_ORDER_STATUSES,
)
from orderflow.core import RecordFault, RepositoryException, StoreUnavailable
from orderflow.lifecycle.application.services import IOrderRepository
from orderflow.lifecycle.domain import (
    Component,
    HistoryEntry,
    MalformedOrder,
    Order,
    OrderItem,
    ensure_utc,
)
from orderflow.lifecycle.infrastructure.models import OrderHistoryModel, OrderModel
from orderflow.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


# ========== Item document mapping ==========

def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _parse_dt(value: Optional[str]) -> Optional[datetime]:
    return ensure_utc(datetime.fromisoformat(value)) if value else None


def items_to_document(items: List[OrderItem]) -> List[Dict[str, Any]]:
    """Serialize line items and their components for the JSON column."""
    return [
        {
            "id": item.id,
            "description": item.description,
            "quantity": item.quantity,
            "unit": item.unit,
            "price_per_unit": item.price_per_unit,
            "approved": item.approved,
            "components": [
                {
                    "id": c.id,
                    "description": c.description,
                    "source": c.source.value,
                    "status": c.status.value,
                    "quantity": c.quantity,
                    "unit": c.unit,
                    "unit_cost": c.unit_cost,
                    "status_updated_at": _iso(c.status_updated_at),
                    "component_number": c.component_number,
                    "supplier_id": c.supplier_id,
                    "rfp_supplier_ids": list(c.rfp_supplier_ids),
                    "po_number": c.po_number,
                    "procurement_started_at": _iso(c.procurement_started_at),
                }
                for c in item.components
            ],
        }
        for item in items
    ]


def items_from_document(document: List[Dict[str, Any]]) -> List[OrderItem]:
    """
    Rebuild line items from the JSON column.

    Raises KeyError/ValueError/TypeError on a malformed document; callers
    decide whether that is fatal.
    """
    return [
        OrderItem(
            id=raw["id"],
            description=raw.get("description", ""),
            quantity=float(raw.get("quantity", 1.0)),
            unit=raw.get("unit", "pcs"),
            price_per_unit=float(raw.get("price_per_unit", 0.0)),
            approved=bool(raw.get("approved", False)),
            components=[
                Component(
                    id=c["id"],
                    description=c.get("description", ""),
                    source=ComponentSource(c["source"]),
                    status=ComponentStatus(c["status"]),
                    quantity=float(c.get("quantity", 1.0)),
                    unit=c.get("unit", "pcs"),
                    unit_cost=float(c.get("unit_cost") or 0.0),
                    status_updated_at=_parse_dt(c.get("status_updated_at")),
                    component_number=c.get("component_number"),
                    supplier_id=c.get("supplier_id"),
                    rfp_supplier_ids=list(c.get("rfp_supplier_ids") or []),
                    po_number=c.get("po_number"),
                    procurement_started_at=_parse_dt(c.get("procurement_started_at")),
                )
                for c in raw.get("components", [])
            ],
        )
        for raw in document
    ]


def history_from_model(model: OrderHistoryModel) -> HistoryEntry:
    return HistoryEntry(
        timestamp=ensure_utc(model.timestamp),
        actor=model.actor,
        entity_kind=EntityKind(model.entity_kind),
        entity_id=model.entity_id,
        field_changed=model.field_changed,
        status=model.status,
        previous_value=model.previous_value,
        new_value=model.new_value,
        note=model.note,
        sequence=model.sequence,
    )


def order_from_model(model: OrderModel, history: List[OrderHistoryModel]) -> Order:
    """Map a row and its history to a detached domain Order."""
    return Order(
        id=model.id,
        internal_order_number=model.internal_order_number,
        customer_name=model.customer_name,
        customer_reference=model.customer_reference,
        status=OrderStatus(model.status),
        previous_status=OrderStatus(model.previous_status) if model.previous_status else None,
        hold_reason=model.hold_reason,
        rejection_reason=model.rejection_reason,
        invoice_number=model.invoice_number,
        created_at=ensure_utc(model.created_at),
        order_date=ensure_utc(model.order_date),
        items=items_from_document(model.items or []),
        history=[history_from_model(h) for h in history],
    )


# ========== Repository ==========

class SQLAlchemyOrderRepository(IOrderRepository):
    """
    SQLAlchemy implementation of the order repository.

    Session-scoped: the caller owns the transaction boundary.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    async def get(self, order_id: str, for_update: bool = False) -> Optional[Order]:
        """Get an order snapshot; a row that cannot be mapped raises RecordFault."""
        stmt = select(OrderModel).where(OrderModel.id == order_id)
        if for_update:
            stmt = stmt.with_for_update()
        result = await self._session.execute(stmt)
        model = result.scalar_one_or_none()
        if model is None:
            return None

        history = await self._history_for([model.id])
        try:
            return order_from_model(model, history.get(model.id, []))
        except (KeyError, ValueError, TypeError) as e:
            raise RecordFault(order_id, f"Stored order is malformed: {e}")

    async def add(self, order: Order) -> Order:
        model = OrderModel(
            id=order.id,
            internal_order_number=order.internal_order_number,
            customer_name=order.customer_name,
            customer_reference=order.customer_reference,
            status=order.status.value,
            created_at=order.created_at,
            order_date=order.order_date,
            items=items_to_document(order.items),
        )
        self._session.add(model)
        await self._session.flush()

        await self._flush_pending_history(order)
        return order

    async def save(self, order: Order) -> Order:
        result = await self._session.execute(select(OrderModel).where(OrderModel.id == order.id))
        model = result.scalar_one_or_none()
        if model is None:
            raise RepositoryException(f"Order {order.id} not found")

        model.status = order.status.value
        model.previous_status = order.previous_status.value if order.previous_status else None
        model.hold_reason = order.hold_reason
        model.rejection_reason = order.rejection_reason
        model.invoice_number = order.invoice_number
        model.items = items_to_document(order.items)
        await self._session.flush()

        await self._flush_pending_history(order)
        return order

    async def append_log(self, order_id: str, entry: HistoryEntry) -> HistoryEntry:
        row = OrderHistoryModel(
            order_id=order_id,
            entity_kind=entry.entity_kind.value,
            entity_id=entry.entity_id,
            field_changed=entry.field_changed,
            status=entry.status,
            previous_value=entry.previous_value,
            new_value=entry.new_value,
            actor=entry.actor,
            note=entry.note,
            timestamp=entry.timestamp,
        )
        self._session.add(row)
        await self._session.flush()
        return dataclasses.replace(entry, sequence=row.sequence)

    async def list_open_orders(self) -> List[Union[Order, MalformedOrder]]:
        """
        All non-terminal orders, oldest first.

        A row that cannot be mapped is returned as a MalformedOrder so the
        caller can isolate it; a store that cannot be reached raises
        StoreUnavailable.
        """
        try:
            stmt = (
                select(OrderModel)
                .where(OrderModel.status.notin_([s.value for s in TERMINAL_ORDER_STATUSES]))
                .order_by(OrderModel.created_at, OrderModel.id)
            )
            result = await self._session.execute(stmt)
            models = list(result.scalars().all())
            history = await self._history_for([m.id for m in models])
        except (OperationalError, DBAPIError, OSError) as e:
            raise StoreUnavailable(f"Order store unavailable: {e}") from e

        orders: List[Union[Order, MalformedOrder]] = []
        for model in models:
            try:
                orders.append(order_from_model(model, history.get(model.id, [])))
            except (KeyError, ValueError, TypeError) as e:
                logger.warning(
                    "Stored order could not be mapped",
                    extra={"order_id": model.id, "error": str(e)}
                )
                orders.append(MalformedOrder(id=model.id, error=str(e)))
        return orders

    async def _history_for(self, order_ids: List[str]) -> Dict[str, List[OrderHistoryModel]]:
        if not order_ids:
            return {}
        stmt = (
            select(OrderHistoryModel)
            .where(OrderHistoryModel.order_id.in_(order_ids))
            .order_by(OrderHistoryModel.sequence)
        )
        result = await self._session.execute(stmt)
        grouped: Dict[str, List[OrderHistoryModel]] = {}
        for row in result.scalars().all():
            grouped.setdefault(row.order_id, []).append(row)
        return grouped

    async def _flush_pending_history(self, order: Order) -> None:
        persisted = []
        for entry in order.history:
            if entry.is_persisted:
                persisted.append(entry)
            else:
                persisted.append(await self.append_log(order.id, entry))
        order.history = persisted
