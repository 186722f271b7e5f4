"""
Lifecycle Domain Layer
======================

Domain layer for the order lifecycle module.

Contains:
- Entities: Order, OrderItem, Component, HistoryEntry
- State machines: legal transitions and their guards

This layer has no dependencies on infrastructure - pure Python business logic.
"""

from orderflow.lifecycle.domain.entities import (
    Component,
    HistoryEntry,
    MalformedOrder,
    Order,
    OrderItem,
    ensure_utc,
)
from orderflow.lifecycle.domain.state_machine import (
    COMPONENT_TRANSITIONS,
    ORDER_TRANSITIONS,
    ComponentStateMachine,
    OrderStateMachine,
)

__all__ = [
    # Entities
    "Component",
    "HistoryEntry",
    "MalformedOrder",
    "Order",
    "OrderItem",
    "ensure_utc",
    # State machines
    "COMPONENT_TRANSITIONS",
    "ORDER_TRANSITIONS",
    "ComponentStateMachine",
    "OrderStateMachine",
]
