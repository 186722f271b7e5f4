"""
Lifecycle State Machine
========================

Legal statuses and transitions for orders and components, with the guard
conditions that can refuse a transition.

The transition tables are exhaustive over their enums; a status missing from
a table is a programming error caught by the test suite, not a silent
dead end.
"""

from datetime import datetime
from typing import Dict, FrozenSet, Optional

from orderflow.config import (
    COMPONENT_READY_STATUSES,
    ComponentSource,
    ComponentStatus,
    EntityKind,
    OrderStatus,
    PROCUREMENT_COMPONENT_STATUSES,
    STOCK_COMPONENT_STATUSES,
    TERMINAL_ORDER_STATUSES,
)
from orderflow.core import InvalidTransition, TransitionRefused, ValidationException
from orderflow.lifecycle.domain.entities import Component, HistoryEntry, Order


# Forward path of every order. IN_HOLD and REJECTED are side states handled
# separately because they are reachable from any open status.
ORDER_TRANSITIONS: Dict[OrderStatus, FrozenSet[OrderStatus]] = {
    OrderStatus.LOGGED: frozenset({OrderStatus.TECHNICAL_REVIEW}),
    OrderStatus.TECHNICAL_REVIEW: frozenset({
        OrderStatus.WAITING_SUPPLIERS,
        OrderStatus.NEGATIVE_MARGIN,
        OrderStatus.LOGGED,
    }),
    OrderStatus.NEGATIVE_MARGIN: frozenset({OrderStatus.WAITING_SUPPLIERS, OrderStatus.LOGGED}),
    OrderStatus.WAITING_SUPPLIERS: frozenset({OrderStatus.WAITING_FACTORY, OrderStatus.LOGGED}),
    OrderStatus.WAITING_FACTORY: frozenset({OrderStatus.MANUFACTURING}),
    OrderStatus.MANUFACTURING: frozenset({OrderStatus.MANUFACTURING_COMPLETED}),
    OrderStatus.MANUFACTURING_COMPLETED: frozenset({OrderStatus.TRANSITION_TO_STOCK}),
    OrderStatus.TRANSITION_TO_STOCK: frozenset({OrderStatus.IN_PRODUCT_HUB}),
    OrderStatus.IN_PRODUCT_HUB: frozenset({OrderStatus.ISSUE_INVOICE}),
    OrderStatus.ISSUE_INVOICE: frozenset({OrderStatus.INVOICED}),
    OrderStatus.INVOICED: frozenset({OrderStatus.HUB_RELEASED}),
    OrderStatus.HUB_RELEASED: frozenset({OrderStatus.DELIVERY}),
    OrderStatus.DELIVERY: frozenset({OrderStatus.DELIVERED}),
    OrderStatus.DELIVERED: frozenset({OrderStatus.FULFILLED}),
    OrderStatus.FULFILLED: frozenset(),
    OrderStatus.IN_HOLD: frozenset(),
    OrderStatus.REJECTED: frozenset(),
}

COMPONENT_TRANSITIONS: Dict[ComponentStatus, FrozenSet[ComponentStatus]] = {
    ComponentStatus.AVAILABLE: frozenset({ComponentStatus.RESERVED}),
    ComponentStatus.RESERVED: frozenset(),
    ComponentStatus.PENDING_OFFER: frozenset({ComponentStatus.RFP_SENT}),
    ComponentStatus.RFP_SENT: frozenset({ComponentStatus.AWARDED, ComponentStatus.PENDING_OFFER}),
    ComponentStatus.AWARDED: frozenset({ComponentStatus.ORDERED, ComponentStatus.PENDING_OFFER}),
    ComponentStatus.ORDERED: frozenset({ComponentStatus.RECEIVED}),
    ComponentStatus.RECEIVED: frozenset(),
}

# Rollback to LOGGED and a margin release are explicit overrides and must be
# reasoned. Resuming a held order into its previous status is not.
REASON_REQUIRED_ORDER_TARGETS = frozenset({
    OrderStatus.IN_HOLD,
    OrderStatus.REJECTED,
    OrderStatus.LOGGED,
})

RESETTABLE_COMPONENT_STATUSES = frozenset({ComponentStatus.RFP_SENT, ComponentStatus.AWARDED})


class OrderStateMachine:
    """
    Validates and applies order status transitions.

    Every successful transition appends exactly one history entry stamped
    with the transition's own timestamp.
    """

    def __init__(self, minimum_margin_pct: float):
        self.minimum_margin_pct = minimum_margin_pct

    def allowed_targets(self, order: Order) -> FrozenSet[OrderStatus]:
        if order.status in TERMINAL_ORDER_STATUSES:
            return frozenset()
        if order.status == OrderStatus.IN_HOLD:
            targets = {OrderStatus.REJECTED}
            if order.previous_status is not None:
                targets.add(order.previous_status)
            return frozenset(targets)
        return ORDER_TRANSITIONS[order.status] | {OrderStatus.IN_HOLD, OrderStatus.REJECTED}

    def transition(
        self,
        order: Order,
        target: OrderStatus,
        actor: str,
        at: datetime,
        reason: Optional[str] = None,
    ) -> HistoryEntry:
        """
        Move ``order`` to ``target``.

        Raises:
            InvalidTransition: target not reachable from the current status
            TransitionRefused: a guard blocks the transition
            ValidationException: a required reason is missing
        """
        current = order.status
        if target not in self.allowed_targets(order):
            raise InvalidTransition(order.id, current, target)

        self._check_reason(order, target, reason)
        self._check_guards(order, target)

        if target == OrderStatus.IN_HOLD:
            order.previous_status = current
            order.hold_reason = reason
        elif current == OrderStatus.IN_HOLD:
            order.previous_status = None
            order.hold_reason = None

        if target == OrderStatus.REJECTED:
            order.rejection_reason = reason

        order.status = target
        entry = HistoryEntry(
            timestamp=at,
            actor=actor,
            entity_kind=EntityKind.ORDER,
            entity_id=order.id,
            field_changed="status",
            status=target.value,
            previous_value=current.value,
            new_value=target.value,
            note=reason,
        )
        order.append_history(entry)
        return entry

    def _check_reason(self, order: Order, target: OrderStatus, reason: Optional[str]) -> None:
        resuming = order.status == OrderStatus.IN_HOLD and target == order.previous_status
        needs_reason = (target in REASON_REQUIRED_ORDER_TARGETS and not resuming) or (
            order.status == OrderStatus.NEGATIVE_MARGIN and target == OrderStatus.WAITING_SUPPLIERS
        )
        if needs_reason and not (reason and reason.strip()):
            raise ValidationException(
                f"A reason is required to move order {order.id} to {target.value}",
                {"order_id": order.id, "target_status": target.value}
            )

    def _check_guards(self, order: Order, target: OrderStatus) -> None:
        current = order.status

        if current == OrderStatus.TECHNICAL_REVIEW and target in (
            OrderStatus.WAITING_SUPPLIERS, OrderStatus.NEGATIVE_MARGIN
        ):
            if not order.all_items_approved:
                raise TransitionRefused(
                    order.id, current, target,
                    guard="unapproved_line_items",
                    reason="every line item must be approved before the review is finalized",
                )
            if target == OrderStatus.WAITING_SUPPLIERS and self.is_below_margin(order):
                raise TransitionRefused(
                    order.id, current, target,
                    guard="negative_margin",
                    reason=(
                        f"markup {order.markup_pct():.1f}% is below the "
                        f"minimum {self.minimum_margin_pct:.1f}%"
                    ),
                )
            if target == OrderStatus.NEGATIVE_MARGIN and not self.is_below_margin(order):
                raise TransitionRefused(
                    order.id, current, target,
                    guard="margin_ok",
                    reason=(
                        f"markup {order.markup_pct():.1f}% meets the "
                        f"minimum {self.minimum_margin_pct:.1f}%"
                    ),
                )

        if current == OrderStatus.WAITING_SUPPLIERS and target == OrderStatus.WAITING_FACTORY:
            not_ready = [
                component.id for _, component in order.iter_components()
                if component.status not in COMPONENT_READY_STATUSES
            ]
            if not_ready:
                raise TransitionRefused(
                    order.id, current, target,
                    guard="components_not_ready",
                    reason=f"{len(not_ready)} component(s) not yet received or reserved",
                    details={"order_id": order.id, "components": not_ready},
                )

    def is_below_margin(self, order: Order) -> bool:
        return order.markup_pct() < self.minimum_margin_pct


class ComponentStateMachine:
    """
    Validates and applies component status transitions.

    Component changes are logged on the owning order's history with
    ``entity_kind=COMPONENT``; the component itself only keeps the time of
    its last transition.
    """

    def allowed_targets(self, component: Component) -> FrozenSet[ComponentStatus]:
        allowed_for_source = (
            STOCK_COMPONENT_STATUSES
            if component.source == ComponentSource.STOCK
            else PROCUREMENT_COMPONENT_STATUSES
        )
        return COMPONENT_TRANSITIONS[component.status] & allowed_for_source

    def transition(
        self,
        order: Order,
        component: Component,
        target: ComponentStatus,
        actor: str,
        at: datetime,
        reason: Optional[str] = None,
    ) -> HistoryEntry:
        """
        Move ``component`` to ``target``.

        The only backward move is a reset to PENDING_OFFER, which must carry
        a reason and clears the supplier assignment.
        """
        current = component.status

        if order.is_terminal:
            raise TransitionRefused(
                component.id, current, target,
                guard="order_closed",
                reason=f"order {order.id} is {order.status.value}",
            )

        if target not in self.allowed_targets(component):
            raise InvalidTransition(component.id, current, target)

        is_reset = target == ComponentStatus.PENDING_OFFER
        if is_reset and not (reason and reason.strip()):
            raise ValidationException(
                f"A reason is required to reset component {component.id}",
                {"component_id": component.id}
            )

        if target == ComponentStatus.ORDERED and order.status == OrderStatus.NEGATIVE_MARGIN:
            raise TransitionRefused(
                component.id, current, target,
                guard="negative_margin",
                reason=f"order {order.id} is blocked on negative margin",
            )

        if is_reset:
            component.supplier_id = None
            component.rfp_supplier_ids = []
        if target == ComponentStatus.ORDERED:
            component.procurement_started_at = at

        component.status = target
        component.status_updated_at = at

        entry = HistoryEntry(
            timestamp=at,
            actor=actor,
            entity_kind=EntityKind.COMPONENT,
            entity_id=component.id,
            field_changed="status",
            status=target.value,
            previous_value=current.value,
            new_value=target.value,
            note=reason,
        )
        order.append_history(entry)
        return entry
