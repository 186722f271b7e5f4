"""
Lifecycle Controllers (API Routes)
===================================

FastAPI routes for orders, their line items and components.

Controllers are thin - they delegate to LifecycleService. Domain errors
(TransitionRefused, InvalidTransition, ValidationException) are mapped to
HTTP responses by the shared exception handler.
"""

from enum import Enum

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from orderflow.config import settings
from orderflow.infrastructure.database import get_session
from orderflow.lifecycle.application import (
    ActionRequest,
    AwardRequest,
    ComponentTransitionRequest,
    InvoiceRequest,
    LifecycleService,
    OrderCreateDTO,
    OrderResponse,
    PurchaseOrderRequest,
    RFPRequest,
    TransitionRequest,
)
from orderflow.lifecycle.infrastructure import SQLAlchemyOrderRepository
from orderflow.sla.application import (
    DwellEvaluationResponse,
    DwellEvaluator,
    OrderDwellResponse,
)
from orderflow.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)
router = APIRouter(prefix="/orders", tags=["Order Lifecycle"])


# ========== Example payloads for Swagger ==========

ORDER_CREATE_EXAMPLE = {
    "internal_order_number": "ORD-2024-0042",
    "customer_name": "Acme Industrial",
    "customer_reference": "PO-88412",
    "order_date": "2024-03-01T00:00:00Z",
    "items": [
        {
            "description": "Control cabinet 400V",
            "quantity": 2,
            "price_per_unit": 4800,
            "components": [
                {"description": "Enclosure 800x600", "source": "PROCUREMENT", "quantity": 2, "unit_cost": 900},
                {"description": "Main breaker 63A", "source": "STOCK", "quantity": 2, "unit_cost": 210}
            ]
        }
    ]
}

REFUSED_EXAMPLE = {
    "detail": "Transition of ORD-1 to WAITING_SUPPLIERS refused: every line item must be approved before the review is finalized",
    "error_type": "TransitionRefused",
    "details": {
        "entity_id": "ORD-1",
        "current_status": "TECHNICAL_REVIEW",
        "target_status": "WAITING_SUPPLIERS",
        "guard": "unapproved_line_items"
    }
}

TRANSITION_RESPONSES = {
    409: {
        "description": "Transition not allowed from the current status, or refused by a guard",
        "content": {"application/json": {"example": REFUSED_EXAMPLE}}
    },
    404: {"description": "Order or component not found"},
    422: {"description": "Missing reason or invalid payload"},
}


class OrderAction(str, Enum):
    """Named order actions that only need an actor and an optional reason."""
    START_REVIEW = "start-review"
    FINALIZE_REVIEW = "finalize-review"
    RELEASE_MARGIN = "release-margin"
    ROLLBACK = "rollback"
    HOLD = "hold"
    RESUME = "resume"
    REJECT = "reject"
    START_PRODUCTION = "start-production"
    FINISH_PRODUCTION = "finish-production"
    DISPATCH_TO_HUB = "dispatch-to-hub"
    RECEIVE_AT_HUB = "receive-at-hub"
    REQUEST_INVOICE = "request-invoice"
    RELEASE_FROM_HUB = "release-from-hub"
    DISPATCH_DELIVERY = "dispatch-delivery"
    CONFIRM_DELIVERY = "confirm-delivery"
    FULFILL = "fulfill"


# ========== Dependencies ==========

async def get_lifecycle_service(
    session: AsyncSession = Depends(get_session)
) -> LifecycleService:
    """Get lifecycle service bound to the request session."""
    return LifecycleService(SQLAlchemyOrderRepository(session), settings.minimum_margin_pct)


def get_dwell_evaluator(request: Request) -> DwellEvaluator:
    return request.app.state.dwell_evaluator


# ========== Orders ==========

@router.post(
    "",
    response_model=OrderResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register a customer order",
    description="Creates the order in `LOGGED`. Stock components start `AVAILABLE`, "
                "procurement components start `PENDING_OFFER`.",
    openapi_extra={"requestBody": {"content": {"application/json": {"example": ORDER_CREATE_EXAMPLE}}}},
)
async def create_order(
    request: OrderCreateDTO,
    actor: str = "system",
    service: LifecycleService = Depends(get_lifecycle_service)
):
    order = await service.create_order(request, actor)
    return OrderResponse.from_domain(order)


@router.get("/{order_id}", response_model=OrderResponse, summary="Get an order with its history")
async def get_order(order_id: str, service: LifecycleService = Depends(get_lifecycle_service)):
    order = await service.get_order(order_id)
    return OrderResponse.from_domain(order)


@router.post(
    "/{order_id}/transitions",
    response_model=OrderResponse,
    summary="Move an order to a target status",
    responses=TRANSITION_RESPONSES,
)
async def transition_order(
    order_id: str,
    request: TransitionRequest,
    service: LifecycleService = Depends(get_lifecycle_service)
):
    order = await service.transition_order(order_id, request.target_status, request.actor, request.reason)
    return OrderResponse.from_domain(order)


@router.post(
    "/{order_id}/actions/{action}",
    response_model=OrderResponse,
    summary="Run a named order action",
    description="""
    Named lifecycle actions. `hold`, `reject`, `rollback` and `release-margin`
    require a `reason`.

    `finalize-review` moves to `WAITING_SUPPLIERS`, or to `NEGATIVE_MARGIN`
    when the order markup is below the configured minimum. It is refused while
    any line item is unapproved.
    """,
    responses=TRANSITION_RESPONSES,
)
async def run_order_action(
    order_id: str,
    action: OrderAction,
    request: ActionRequest,
    service: LifecycleService = Depends(get_lifecycle_service)
):
    actor, reason = request.actor, request.reason

    if action == OrderAction.FINALIZE_REVIEW:
        order = await service.finalize_review(order_id, actor, reason)
    elif action == OrderAction.RELEASE_MARGIN:
        order = await service.release_margin(order_id, actor, reason)
    elif action == OrderAction.ROLLBACK:
        order = await service.rollback_to_logged(order_id, actor, reason)
    elif action == OrderAction.HOLD:
        order = await service.hold(order_id, actor, reason)
    elif action == OrderAction.RESUME:
        order = await service.resume(order_id, actor, reason)
    elif action == OrderAction.REJECT:
        order = await service.reject(order_id, actor, reason)
    else:
        simple = {
            OrderAction.START_REVIEW: service.start_technical_review,
            OrderAction.START_PRODUCTION: service.start_production,
            OrderAction.FINISH_PRODUCTION: service.finish_production,
            OrderAction.DISPATCH_TO_HUB: service.dispatch_to_hub,
            OrderAction.RECEIVE_AT_HUB: service.receive_at_hub,
            OrderAction.REQUEST_INVOICE: service.request_invoice,
            OrderAction.RELEASE_FROM_HUB: service.release_from_hub,
            OrderAction.DISPATCH_DELIVERY: service.dispatch_delivery,
            OrderAction.CONFIRM_DELIVERY: service.confirm_delivery,
            OrderAction.FULFILL: service.fulfill,
        }
        order = await simple[action](order_id, actor)

    return OrderResponse.from_domain(order)


@router.post(
    "/{order_id}/invoice",
    response_model=OrderResponse,
    summary="Issue the invoice",
    responses=TRANSITION_RESPONSES,
)
async def issue_invoice(
    order_id: str,
    request: InvoiceRequest,
    service: LifecycleService = Depends(get_lifecycle_service)
):
    order = await service.issue_invoice(order_id, request.actor, request.invoice_number)
    return OrderResponse.from_domain(order)


# ========== Line items ==========

@router.post("/{order_id}/items/{item_id}/approval", response_model=OrderResponse, summary="Approve a line item")
async def approve_line_item(
    order_id: str,
    item_id: str,
    request: ActionRequest,
    service: LifecycleService = Depends(get_lifecycle_service)
):
    order = await service.approve_line_item(order_id, item_id, request.actor)
    return OrderResponse.from_domain(order)


@router.delete("/{order_id}/items/{item_id}/approval", response_model=OrderResponse, summary="Revoke a line item approval")
async def revoke_line_item_approval(
    order_id: str,
    item_id: str,
    actor: str,
    service: LifecycleService = Depends(get_lifecycle_service)
):
    order = await service.revoke_line_item_approval(order_id, item_id, actor)
    return OrderResponse.from_domain(order)


# ========== Components ==========

@router.post(
    "/{order_id}/components/{component_id}/transitions",
    response_model=OrderResponse,
    summary="Move a component to a target status",
    responses=TRANSITION_RESPONSES,
)
async def transition_component(
    order_id: str,
    component_id: str,
    request: ComponentTransitionRequest,
    service: LifecycleService = Depends(get_lifecycle_service)
):
    order = await service.transition_component(
        order_id, component_id, request.target_status, request.actor, request.reason
    )
    return OrderResponse.from_domain(order)


@router.post("/{order_id}/components/{component_id}/rfp", response_model=OrderResponse,
             summary="Send an RFP", responses=TRANSITION_RESPONSES)
async def send_rfp(
    order_id: str,
    component_id: str,
    request: RFPRequest,
    service: LifecycleService = Depends(get_lifecycle_service)
):
    order = await service.send_rfp(order_id, component_id, request.actor, request.supplier_ids)
    return OrderResponse.from_domain(order)


@router.post("/{order_id}/components/{component_id}/award", response_model=OrderResponse,
             summary="Award to a supplier", responses=TRANSITION_RESPONSES)
async def award(
    order_id: str,
    component_id: str,
    request: AwardRequest,
    service: LifecycleService = Depends(get_lifecycle_service)
):
    order = await service.award(order_id, component_id, request.actor, request.supplier_id, request.unit_cost)
    return OrderResponse.from_domain(order)


@router.post(
    "/{order_id}/components/{component_id}/purchase-order",
    response_model=OrderResponse,
    summary="Issue a purchase order",
    description="Refused with guard `negative_margin` while the order is `NEGATIVE_MARGIN`.",
    responses=TRANSITION_RESPONSES,
)
async def issue_purchase_order(
    order_id: str,
    component_id: str,
    request: PurchaseOrderRequest,
    service: LifecycleService = Depends(get_lifecycle_service)
):
    order = await service.issue_purchase_order(order_id, component_id, request.actor, request.po_number)
    return OrderResponse.from_domain(order)


@router.post("/{order_id}/components/{component_id}/receive", response_model=OrderResponse,
             summary="Receive a procured component", responses=TRANSITION_RESPONSES)
async def receive(
    order_id: str,
    component_id: str,
    request: ActionRequest,
    service: LifecycleService = Depends(get_lifecycle_service)
):
    order = await service.receive(order_id, component_id, request.actor)
    return OrderResponse.from_domain(order)


@router.post("/{order_id}/components/{component_id}/reserve", response_model=OrderResponse,
             summary="Reserve a stock component", responses=TRANSITION_RESPONSES)
async def reserve_stock(
    order_id: str,
    component_id: str,
    request: ActionRequest,
    service: LifecycleService = Depends(get_lifecycle_service)
):
    order = await service.reserve_stock(order_id, component_id, request.actor)
    return OrderResponse.from_domain(order)


@router.post(
    "/{order_id}/components/{component_id}/reset",
    response_model=OrderResponse,
    summary="Reset sourcing to PENDING_OFFER",
    description="Returns an `RFP_SENT` or `AWARDED` component to `PENDING_OFFER` and clears its supplier. "
                "A `reason` is required.",
    responses=TRANSITION_RESPONSES,
)
async def reset(
    order_id: str,
    component_id: str,
    request: ActionRequest,
    service: LifecycleService = Depends(get_lifecycle_service)
):
    order = await service.reset(order_id, component_id, request.actor, request.reason)
    return OrderResponse.from_domain(order)


# ========== Dwell ==========

@router.get(
    "/{order_id}/dwell",
    response_model=OrderDwellResponse,
    summary="Time in current status",
    description="Elapsed hours in the current status against the configured limit, "
                "for the order and each of its components.",
)
async def get_order_dwell(
    order_id: str,
    request: Request,
    service: LifecycleService = Depends(get_lifecycle_service),
    evaluator: DwellEvaluator = Depends(get_dwell_evaluator),
):
    order = await service.get_order(order_id)
    policy = request.app.state.policy_manager.get_policy()

    return OrderDwellResponse(
        order_id=order.id,
        order=DwellEvaluationResponse.from_domain(evaluator.evaluate_order(order, policy)),
        components=[
            DwellEvaluationResponse.from_domain(evaluator.evaluate_component(order, component, policy))
            for _, component in order.iter_components()
        ],
    )
