"""
Lifecycle Application Layer
============================

Application layer for the order lifecycle module.

Contains:
- Services: named lifecycle operations over the state machines
- DTOs: Data transfer objects for API serialization

This layer depends on the domain layer and repository interfaces,
but not on concrete infrastructure implementations.
"""

from orderflow.lifecycle.application.dto import (
    ActionRequest,
    AwardRequest,
    ComponentCreateDTO,
    ComponentResponse,
    ComponentTransitionRequest,
    HistoryEntryResponse,
    InvoiceRequest,
    OrderCreateDTO,
    OrderItemCreateDTO,
    OrderItemResponse,
    OrderResponse,
    PurchaseOrderRequest,
    RFPRequest,
    TransitionRequest,
)
from orderflow.lifecycle.application.services import (
    Clock,
    IOrderRepository,
    LifecycleService,
    utc_now,
)

__all__ = [
    # DTOs
    "ActionRequest",
    "AwardRequest",
    "ComponentCreateDTO",
    "ComponentResponse",
    "ComponentTransitionRequest",
    "HistoryEntryResponse",
    "InvoiceRequest",
    "OrderCreateDTO",
    "OrderItemCreateDTO",
    "OrderItemResponse",
    "OrderResponse",
    "PurchaseOrderRequest",
    "RFPRequest",
    "TransitionRequest",
    # Services
    "Clock",
    "LifecycleService",
    "utc_now",
    # Repository Interfaces
    "IOrderRepository",
]
