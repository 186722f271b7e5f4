"""
Lifecycle Application Services
===============================

Application services orchestrate the order lifecycle: they load an order,
ask the state machine to apply a transition, and persist the result together
with the new history entries.

Following SOLID principles:
- Single Responsibility: the state machine decides, the service coordinates
- Dependency Inversion: depend on IOrderRepository, not on SQLAlchemy
"""

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Callable, List, Optional, Sequence, Union
from uuid import uuid4

from orderflow.config import (
    ComponentSource,
    ComponentStatus,
    EntityKind,
    OrderStatus,
    REVIEWABLE_ORDER_STATUSES,
    COMPONENT_READY_STATUSES,
)
from orderflow.core import (
    InvalidTransition,
    ResourceNotFoundException,
    TransitionRefused,
    ValidationException,
)
from orderflow.lifecycle.domain import (
    Component,
    ComponentStateMachine,
    HistoryEntry,
    MalformedOrder,
    Order,
    OrderItem,
    OrderStateMachine,
)
from orderflow.lifecycle.application.dto import OrderCreateDTO
from orderflow.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ========== Repository Interfaces (Dependency Inversion) ==========

class IOrderRepository(ABC):
    """Interface for order data access."""

    @abstractmethod
    async def get(self, order_id: str, for_update: bool = False) -> Optional[Order]:
        """Get an order with its items, components and history."""

    @abstractmethod
    async def add(self, order: Order) -> Order:
        """Insert a new order and its initial history."""

    @abstractmethod
    async def save(self, order: Order) -> Order:
        """Persist header and items, and append any pending history entries."""

    @abstractmethod
    async def append_log(self, order_id: str, entry: HistoryEntry) -> HistoryEntry:
        """Append one history entry; history is never rewritten."""

    @abstractmethod
    async def list_open_orders(self) -> List[Union[Order, MalformedOrder]]:
        """All non-terminal orders; unreadable rows come back as MalformedOrder."""


# ========== Application Services ==========

class LifecycleService:
    """
    Named lifecycle operations for orders and their components.

    Every operation goes through the state machines, so each status change
    produces exactly one history entry stamped with the clock reading taken
    at the start of the operation.
    """

    def __init__(
        self,
        repository: IOrderRepository,
        minimum_margin_pct: float,
        clock: Clock = utc_now,
    ):
        self._repo = repository
        self._clock = clock
        self.orders = OrderStateMachine(minimum_margin_pct)
        self.components = ComponentStateMachine()

    # ========== Queries ==========

    async def get_order(self, order_id: str) -> Order:
        order = await self._repo.get(order_id)
        if order is None:
            raise ResourceNotFoundException("Order", order_id)
        return order

    # ========== Creation ==========

    async def create_order(self, dto: OrderCreateDTO, actor: str) -> Order:
        """Register a new order in LOGGED with its opening history entry."""
        now = self._clock()
        order = Order(
            id=dto.id or str(uuid4()),
            internal_order_number=dto.internal_order_number,
            customer_name=dto.customer_name,
            customer_reference=dto.customer_reference,
            status=OrderStatus.LOGGED,
            created_at=now,
            order_date=dto.order_date,
            items=[
                OrderItem(
                    id=item.id or str(uuid4()),
                    description=item.description,
                    quantity=item.quantity,
                    unit=item.unit,
                    price_per_unit=item.price_per_unit,
                    components=[
                        Component(
                            id=component.id or str(uuid4()),
                            description=component.description,
                            source=component.source,
                            status=(
                                ComponentStatus.AVAILABLE
                                if component.source == ComponentSource.STOCK
                                else ComponentStatus.PENDING_OFFER
                            ),
                            quantity=component.quantity,
                            unit=component.unit,
                            unit_cost=component.unit_cost,
                            component_number=component.component_number,
                            status_updated_at=now,
                        )
                        for component in item.components
                    ],
                )
                for item in dto.items
            ],
        )
        order.append_history(HistoryEntry(
            timestamp=now,
            actor=actor,
            entity_kind=EntityKind.ORDER,
            entity_id=order.id,
            field_changed="status",
            status=OrderStatus.LOGGED.value,
            new_value=OrderStatus.LOGGED.value,
            note="Order logged",
        ))

        saved = await self._repo.add(order)
        logger.info(
            "Order created",
            extra={"order_id": saved.id, "order_number": saved.internal_order_number, "actor": actor}
        )
        return saved

    # ========== Generic transitions ==========

    async def transition_order(
        self,
        order_id: str,
        target: OrderStatus,
        actor: str,
        reason: Optional[str] = None,
    ) -> Order:
        order = await self._load_for_update(order_id)
        self._apply_order_transition(order, target, actor, self._clock(), reason)
        return await self._repo.save(order)

    async def transition_component(
        self,
        order_id: str,
        component_id: str,
        target: ComponentStatus,
        actor: str,
        reason: Optional[str] = None,
    ) -> Order:
        order = await self._load_for_update(order_id)
        component = self._component(order, component_id)
        self._apply_component_transition(order, component, target, actor, self._clock(), reason)
        return await self._repo.save(order)

    # ========== Order operations ==========

    async def start_technical_review(self, order_id: str, actor: str) -> Order:
        return await self.transition_order(order_id, OrderStatus.TECHNICAL_REVIEW, actor)

    async def finalize_review(self, order_id: str, actor: str, note: Optional[str] = None) -> Order:
        """
        Close the technical review.

        Moves to WAITING_SUPPLIERS when the markup meets the minimum, and to
        NEGATIVE_MARGIN otherwise.

        Raises:
            TransitionRefused: unapproved line items, or the order is already
                blocked on negative margin
        """
        order = await self._load_for_update(order_id)

        if order.status == OrderStatus.NEGATIVE_MARGIN:
            raise TransitionRefused(
                order.id, order.status, OrderStatus.WAITING_SUPPLIERS,
                guard="negative_margin",
                reason="order is blocked on negative margin; a margin release is required",
            )

        target = (
            OrderStatus.NEGATIVE_MARGIN
            if self.orders.is_below_margin(order)
            else OrderStatus.WAITING_SUPPLIERS
        )
        self._apply_order_transition(order, target, actor, self._clock(), note)

        if target == OrderStatus.NEGATIVE_MARGIN:
            logger.warning(
                "Order blocked on negative margin",
                extra={
                    "order_id": order.id,
                    "markup_pct": round(order.markup_pct(), 2),
                    "minimum_margin_pct": self.orders.minimum_margin_pct,
                }
            )
        return await self._repo.save(order)

    async def release_margin(self, order_id: str, actor: str, reason: str) -> Order:
        return await self.transition_order(order_id, OrderStatus.WAITING_SUPPLIERS, actor, reason)

    async def rollback_to_logged(self, order_id: str, actor: str, reason: str) -> Order:
        return await self.transition_order(order_id, OrderStatus.LOGGED, actor, reason)

    async def hold(self, order_id: str, actor: str, reason: str) -> Order:
        return await self.transition_order(order_id, OrderStatus.IN_HOLD, actor, reason)

    async def resume(self, order_id: str, actor: str, note: Optional[str] = None) -> Order:
        order = await self._load_for_update(order_id)
        if order.status != OrderStatus.IN_HOLD or order.previous_status is None:
            raise InvalidTransition(order.id, order.status, order.previous_status or "previous status")
        self._apply_order_transition(order, order.previous_status, actor, self._clock(), note)
        return await self._repo.save(order)

    async def reject(self, order_id: str, actor: str, reason: str) -> Order:
        return await self.transition_order(order_id, OrderStatus.REJECTED, actor, reason)

    async def start_production(self, order_id: str, actor: str) -> Order:
        return await self.transition_order(order_id, OrderStatus.MANUFACTURING, actor)

    async def finish_production(self, order_id: str, actor: str) -> Order:
        return await self.transition_order(order_id, OrderStatus.MANUFACTURING_COMPLETED, actor)

    async def dispatch_to_hub(self, order_id: str, actor: str) -> Order:
        return await self.transition_order(order_id, OrderStatus.TRANSITION_TO_STOCK, actor)

    async def receive_at_hub(self, order_id: str, actor: str) -> Order:
        return await self.transition_order(order_id, OrderStatus.IN_PRODUCT_HUB, actor)

    async def request_invoice(self, order_id: str, actor: str) -> Order:
        return await self.transition_order(order_id, OrderStatus.ISSUE_INVOICE, actor)

    async def issue_invoice(self, order_id: str, actor: str, invoice_number: str) -> Order:
        if not (invoice_number and invoice_number.strip()):
            raise ValidationException("An invoice number is required", {"order_id": order_id})

        order = await self._load_for_update(order_id)
        self._apply_order_transition(
            order, OrderStatus.INVOICED, actor, self._clock(), f"Invoice {invoice_number}"
        )
        order.invoice_number = invoice_number
        return await self._repo.save(order)

    async def release_from_hub(self, order_id: str, actor: str) -> Order:
        return await self.transition_order(order_id, OrderStatus.HUB_RELEASED, actor)

    async def dispatch_delivery(self, order_id: str, actor: str) -> Order:
        return await self.transition_order(order_id, OrderStatus.DELIVERY, actor)

    async def confirm_delivery(self, order_id: str, actor: str) -> Order:
        return await self.transition_order(order_id, OrderStatus.DELIVERED, actor)

    async def fulfill(self, order_id: str, actor: str) -> Order:
        return await self.transition_order(order_id, OrderStatus.FULFILLED, actor)

    # ========== Line item approval ==========

    async def approve_line_item(self, order_id: str, item_id: str, actor: str) -> Order:
        return await self._set_item_approval(order_id, item_id, True, actor)

    async def revoke_line_item_approval(self, order_id: str, item_id: str, actor: str) -> Order:
        return await self._set_item_approval(order_id, item_id, False, actor)

    async def _set_item_approval(self, order_id: str, item_id: str, approved: bool, actor: str) -> Order:
        order = await self._load_for_update(order_id)
        if order.status not in REVIEWABLE_ORDER_STATUSES:
            raise TransitionRefused(
                item_id, order.status, order.status,
                guard="review_closed",
                reason="line items can only change approval while the order is under review",
            )

        item = order.find_item(item_id)
        if item is None:
            raise ResourceNotFoundException("Line item", item_id)

        if item.approved != approved:
            order.append_history(HistoryEntry(
                timestamp=self._clock(),
                actor=actor,
                entity_kind=EntityKind.LINE_ITEM,
                entity_id=item.id,
                field_changed="approved",
                previous_value=str(item.approved).lower(),
                new_value=str(approved).lower(),
            ))
            item.approved = approved
        return await self._repo.save(order)

    # ========== Component operations ==========

    async def send_rfp(
        self, order_id: str, component_id: str, actor: str, supplier_ids: Sequence[str]
    ) -> Order:
        if not supplier_ids:
            raise ValidationException("At least one RFP supplier is required", {"component_id": component_id})

        order = await self._load_for_update(order_id)
        component = self._component(order, component_id)
        self._apply_component_transition(
            order, component, ComponentStatus.RFP_SENT, actor, self._clock(),
            f"RFP sent to {', '.join(supplier_ids)}"
        )
        component.rfp_supplier_ids = list(supplier_ids)
        return await self._repo.save(order)

    async def award(
        self, order_id: str, component_id: str, actor: str, supplier_id: str, unit_cost: float
    ) -> Order:
        if not supplier_id:
            raise ValidationException("A supplier is required to award", {"component_id": component_id})
        if unit_cost is None or unit_cost <= 0:
            raise ValidationException("Awarded unit cost must be positive", {"component_id": component_id})

        order = await self._load_for_update(order_id)
        component = self._component(order, component_id)
        self._apply_component_transition(
            order, component, ComponentStatus.AWARDED, actor, self._clock(),
            f"Awarded to {supplier_id} at {unit_cost:.2f}"
        )
        component.supplier_id = supplier_id
        component.unit_cost = unit_cost
        return await self._repo.save(order)

    async def issue_purchase_order(
        self, order_id: str, component_id: str, actor: str, po_number: str
    ) -> Order:
        if not (po_number and po_number.strip()):
            raise ValidationException("A purchase order number is required", {"component_id": component_id})

        order = await self._load_for_update(order_id)
        component = self._component(order, component_id)
        self._apply_component_transition(
            order, component, ComponentStatus.ORDERED, actor, self._clock(), f"PO {po_number}"
        )
        component.po_number = po_number
        return await self._repo.save(order)

    async def receive(self, order_id: str, component_id: str, actor: str) -> Order:
        return await self._advance_component(order_id, component_id, ComponentStatus.RECEIVED, actor)

    async def reserve_stock(self, order_id: str, component_id: str, actor: str) -> Order:
        return await self._advance_component(order_id, component_id, ComponentStatus.RESERVED, actor)

    async def reset(self, order_id: str, component_id: str, actor: str, reason: str) -> Order:
        return await self.transition_component(
            order_id, component_id, ComponentStatus.PENDING_OFFER, actor, reason
        )

    async def _advance_component(
        self, order_id: str, component_id: str, target: ComponentStatus, actor: str
    ) -> Order:
        """Move a component forward and pull the order on to the factory when all parts are in."""
        order = await self._load_for_update(order_id)
        component = self._component(order, component_id)
        now = self._clock()
        self._apply_component_transition(order, component, target, actor, now)

        if order.status == OrderStatus.WAITING_SUPPLIERS and all(
            c.status in COMPONENT_READY_STATUSES for _, c in order.iter_components()
        ):
            self._apply_order_transition(
                order, OrderStatus.WAITING_FACTORY, actor, now, "All components ready"
            )
        return await self._repo.save(order)

    # ========== Helpers ==========

    async def _load_for_update(self, order_id: str) -> Order:
        order = await self._repo.get(order_id, for_update=True)
        if order is None:
            raise ResourceNotFoundException("Order", order_id)
        return order

    def _component(self, order: Order, component_id: str) -> Component:
        found = order.find_component(component_id)
        if found is None:
            raise ResourceNotFoundException("Component", component_id)
        return found[1]

    def _apply_order_transition(
        self,
        order: Order,
        target: OrderStatus,
        actor: str,
        at: datetime,
        reason: Optional[str] = None,
    ) -> HistoryEntry:
        previous = order.status
        try:
            entry = self.orders.transition(order, target, actor, at, reason)
        except TransitionRefused as e:
            logger.info(
                "Order transition refused",
                extra={"order_id": order.id, "from": previous.value, "to": target.value, "guard": e.guard}
            )
            raise
        logger.info(
            "Order transitioned",
            extra={"order_id": order.id, "from": previous.value, "to": target.value, "actor": actor}
        )
        return entry

    def _apply_component_transition(
        self,
        order: Order,
        component: Component,
        target: ComponentStatus,
        actor: str,
        at: datetime,
        reason: Optional[str] = None,
    ) -> HistoryEntry:
        previous = component.status
        try:
            entry = self.components.transition(order, component, target, actor, at, reason)
        except TransitionRefused as e:
            logger.info(
                "Component transition refused",
                extra={
                    "order_id": order.id,
                    "component_id": component.id,
                    "from": previous.value,
                    "to": target.value,
                    "guard": e.guard,
                }
            )
            raise
        logger.info(
            "Component transitioned",
            extra={
                "order_id": order.id,
                "component_id": component.id,
                "from": previous.value,
                "to": target.value,
                "actor": actor,
            }
        )
        return entry
