"""
Lifecycle Application DTOs
===========================

Data Transfer Objects for the order lifecycle API layer.

These Pydantic models handle serialization/deserialization and validation
for API requests and responses.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from orderflow.config import ComponentSource, ComponentStatus, EntityKind, OrderStatus


# ========== Request DTOs ==========

class ComponentCreateDTO(BaseModel):
    """DTO for one component of a new line item."""
    id: Optional[str] = Field(None, description="Component ID (generated when omitted)")
    description: str = Field(..., min_length=1, description="Component description")
    source: ComponentSource = Field(..., description="STOCK or PROCUREMENT")
    quantity: float = Field(default=1.0, gt=0)
    unit: str = Field(default="pcs")
    unit_cost: float = Field(default=0.0, ge=0, description="Estimated unit cost")
    component_number: Optional[str] = None


class OrderItemCreateDTO(BaseModel):
    """DTO for one line item of a new order."""
    id: Optional[str] = Field(None, description="Line item ID (generated when omitted)")
    description: str = Field(..., min_length=1)
    quantity: float = Field(default=1.0, gt=0)
    unit: str = Field(default="pcs")
    price_per_unit: float = Field(default=0.0, ge=0)
    components: List[ComponentCreateDTO] = Field(default_factory=list)


class OrderCreateDTO(BaseModel):
    """Request model for registering a customer order."""
    id: Optional[str] = Field(None, description="Order ID (generated when omitted)")
    internal_order_number: str = Field(..., min_length=1, description="Internal order number")
    customer_name: str = Field(..., min_length=1)
    customer_reference: Optional[str] = Field(None, description="Customer PO reference")
    order_date: Optional[datetime] = Field(None, description="Date on the customer PO")
    items: List[OrderItemCreateDTO] = Field(default_factory=list)


class TransitionRequest(BaseModel):
    """Generic status transition request."""
    target_status: OrderStatus
    actor: str = Field(..., min_length=1)
    reason: Optional[str] = None


class ComponentTransitionRequest(BaseModel):
    """Generic component status transition request."""
    target_status: ComponentStatus
    actor: str = Field(..., min_length=1)
    reason: Optional[str] = None


class ActionRequest(BaseModel):
    """Named action request: who is acting and an optional reason or note."""
    actor: str = Field(..., min_length=1)
    reason: Optional[str] = None


class InvoiceRequest(ActionRequest):
    invoice_number: str = Field(..., min_length=1)


class RFPRequest(ActionRequest):
    supplier_ids: List[str] = Field(..., min_length=1)


class AwardRequest(ActionRequest):
    supplier_id: str = Field(..., min_length=1)
    unit_cost: float = Field(..., gt=0)


class PurchaseOrderRequest(ActionRequest):
    po_number: str = Field(..., min_length=1)

    @field_validator("po_number")
    @classmethod
    def strip_po_number(cls, v: str) -> str:
        return v.strip()


# ========== Response DTOs ==========

class HistoryEntryResponse(BaseModel):
    """One structured history entry."""
    sequence: Optional[int] = None
    timestamp: datetime
    actor: str
    entity_kind: EntityKind
    entity_id: str
    field_changed: str
    status: Optional[str] = None
    previous_value: Optional[str] = None
    new_value: Optional[str] = None
    note: Optional[str] = None


class ComponentResponse(BaseModel):
    id: str
    description: str
    source: ComponentSource
    status: ComponentStatus
    quantity: float
    unit: str
    unit_cost: float
    status_updated_at: Optional[datetime] = None
    component_number: Optional[str] = None
    supplier_id: Optional[str] = None
    rfp_supplier_ids: List[str] = Field(default_factory=list)
    po_number: Optional[str] = None


class OrderItemResponse(BaseModel):
    id: str
    description: str
    quantity: float
    unit: str
    price_per_unit: float
    approved: bool
    components: List[ComponentResponse] = Field(default_factory=list)


class OrderResponse(BaseModel):
    """Response model for one order with its items and history."""
    id: str
    internal_order_number: str
    customer_name: str
    customer_reference: Optional[str] = None
    status: OrderStatus
    previous_status: Optional[OrderStatus] = None
    hold_reason: Optional[str] = None
    rejection_reason: Optional[str] = None
    invoice_number: Optional[str] = None
    created_at: datetime
    order_date: Optional[datetime] = None
    markup_pct: float = Field(..., description="Order markup over component cost")
    items: List[OrderItemResponse] = Field(default_factory=list)
    history: List[HistoryEntryResponse] = Field(default_factory=list)

    @classmethod
    def from_domain(cls, order) -> "OrderResponse":
        """Create from domain entity."""
        return cls(
            id=order.id,
            internal_order_number=order.internal_order_number,
            customer_name=order.customer_name,
            customer_reference=order.customer_reference,
            status=order.status,
            previous_status=order.previous_status,
            hold_reason=order.hold_reason,
            rejection_reason=order.rejection_reason,
            invoice_number=order.invoice_number,
            created_at=order.created_at,
            order_date=order.order_date,
            markup_pct=round(order.markup_pct(), 2),
            items=[
                OrderItemResponse(
                    id=item.id,
                    description=item.description,
                    quantity=item.quantity,
                    unit=item.unit,
                    price_per_unit=item.price_per_unit,
                    approved=item.approved,
                    components=[
                        ComponentResponse(
                            id=c.id,
                            description=c.description,
                            source=c.source,
                            status=c.status,
                            quantity=c.quantity,
                            unit=c.unit,
                            unit_cost=c.unit_cost,
                            status_updated_at=c.status_updated_at,
                            component_number=c.component_number,
                            supplier_id=c.supplier_id,
                            rfp_supplier_ids=list(c.rfp_supplier_ids),
                            po_number=c.po_number,
                        )
                        for c in item.components
                    ],
                )
                for item in order.items
            ],
            history=[
                HistoryEntryResponse(
                    sequence=entry.sequence,
                    timestamp=entry.timestamp,
                    actor=entry.actor,
                    entity_kind=entry.entity_kind,
                    entity_id=entry.entity_id,
                    field_changed=entry.field_changed,
                    status=entry.status,
                    previous_value=entry.previous_value,
                    new_value=entry.new_value,
                    note=entry.note,
                )
                for entry in order.history
            ],
        )
