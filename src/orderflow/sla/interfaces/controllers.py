"""
Audit Controllers (API Routes)
===============================

FastAPI routes for the SLA audit: on-demand sweeps, cancellation, the
active threshold policy and the notification journal.

Controllers are thin - they delegate to the SweepCoordinator and the
policy manager held on the application state.
"""

from typing import List

from fastapi import APIRouter, Depends, Query, Request, status

from orderflow.core import ResourceNotFoundException
from orderflow.sla.application import (
    CancelResponse,
    INotificationJournal,
    JournalEntryResponse,
    PolicyReloadResponse,
    SweepCoordinator,
    SweepSummaryResponse,
)
from orderflow.sla.infrastructure import ThresholdPolicyManager
from orderflow.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)
router = APIRouter(prefix="/audit", tags=["SLA Audit"])


# ========== Example payloads for Swagger ==========

SWEEP_SUMMARY_EXAMPLE = {
    "sweep_id": "3f2a9c1b7d10",
    "started_at": "2024-03-04T09:00:00Z",
    "finished_at": "2024-03-04T09:00:02Z",
    "orders_scanned": 214,
    "violations_found": 6,
    "notifications_sent": 2,
    "dispatch_failures": 0,
    "unrouted": 0,
    "errors_handled": 1,
    "cancelled": False,
    "faulted_order_ids": ["ORD-2023-0991"]
}

SWEEP_IN_PROGRESS_EXAMPLE = {
    "detail": "An audit sweep is already in progress",
    "error_type": "SweepInProgress",
    "details": {"sweep_id": "3f2a9c1b7d10"}
}


# ========== Dependencies ==========

def get_coordinator(request: Request) -> SweepCoordinator:
    return request.app.state.sweep_coordinator


def get_policy_manager(request: Request) -> ThresholdPolicyManager:
    return request.app.state.policy_manager


def get_journal(request: Request) -> INotificationJournal:
    return request.app.state.notification_journal


# ========== Route Handlers ==========

@router.post(
    "/sweeps",
    response_model=SweepSummaryResponse,
    summary="Run an audit sweep now",
    description="""
    Runs one full sweep over all open orders and their components and
    returns the summary.

    Only one sweep runs at a time: while the scheduled sweep (or another
    on-demand sweep) is running this returns **409**.
    """,
    responses={
        200: {"content": {"application/json": {"example": SWEEP_SUMMARY_EXAMPLE}}},
        409: {
            "description": "A sweep is already running",
            "content": {"application/json": {"example": SWEEP_IN_PROGRESS_EXAMPLE}}
        },
    }
)
async def run_sweep(coordinator: SweepCoordinator = Depends(get_coordinator)):
    summary = await coordinator.run_sweep()
    return SweepSummaryResponse.from_domain(summary)


@router.post(
    "/sweeps/cancel",
    response_model=CancelResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Stop the running sweep",
    description="The sweep stops at the next order boundary; journal writes in flight complete.",
)
async def cancel_sweep(coordinator: SweepCoordinator = Depends(get_coordinator)):
    sweep_id = coordinator.current_sweep_id
    requested = coordinator.cancel()
    return CancelResponse(cancel_requested=requested, sweep_id=sweep_id if requested else None)


@router.get(
    "/sweeps/last",
    response_model=SweepSummaryResponse,
    summary="Summary of the last completed sweep",
    responses={404: {"description": "No sweep has completed yet"}},
)
async def last_sweep(coordinator: SweepCoordinator = Depends(get_coordinator)):
    if coordinator.last_summary is None:
        raise ResourceNotFoundException("Sweep", "last")
    return SweepSummaryResponse.from_domain(coordinator.last_summary)


@router.get("/policy", summary="Active threshold policy")
async def get_policy(manager: ThresholdPolicyManager = Depends(get_policy_manager)):
    return manager.get_policy().model_dump(mode="json")


@router.post(
    "/policy/reload",
    response_model=PolicyReloadResponse,
    summary="Reload the threshold policy file",
    description="A failed reload keeps the previous policy. The new policy applies from the next sweep.",
)
async def reload_policy(manager: ThresholdPolicyManager = Depends(get_policy_manager)):
    reloaded = manager.reload()
    return PolicyReloadResponse(
        reloaded=reloaded,
        monitored_statuses=manager.get_policy().monitored_statuses()
    )


@router.get("/journal", response_model=List[JournalEntryResponse], summary="Recent notifications")
async def list_journal(
    limit: int = Query(default=100, ge=1, le=1000),
    journal: INotificationJournal = Depends(get_journal)
):
    entries = await journal.list_recent(limit)
    return [JournalEntryResponse.from_domain(e) for e in entries]
