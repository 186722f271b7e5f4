"""
SLA Application Services
=========================

Application services for dwell-time monitoring:

- DwellEvaluator: clock math against a policy snapshot
- NotificationDispatcher: formats and sends one violation with a timeout
- AuditSweepEngine: one full, fault-isolated pass over the open orders
- SweepCoordinator: sweep-in-progress guard and cooperative cancellation

Following SOLID principles:
- Single Responsibility: Each service has one clear purpose
- Dependency Inversion: Depend on abstractions (interfaces), not concrete implementations
"""

import asyncio
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional, Sequence, Tuple, Union
from uuid import uuid4

from orderflow.config import ComponentStatus, EntityKind, NotificationType, OrderStatus
from orderflow.core import RecordFault, SweepInProgress
from orderflow.lifecycle.domain import Component, MalformedOrder, Order
from orderflow.sla.domain import (
    DispatchResult,
    DwellCalculator,
    DwellEvaluation,
    NotificationJournalEntry,
    SweepSummary,
    ThresholdPolicy,
    Violation,
    build_violation_key,
    logging_delay_key,
    new_order_key,
)
from orderflow.shared.infrastructure.logging import get_context_logger, get_logger, log_latency

logger = get_logger(__name__)

Clock = Callable[[], datetime]
ProgressCallback = Callable[[int, int, str], None]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ========== Collaborator Interfaces (Dependency Inversion) ==========

class IOpenOrderSource(ABC):
    """Read side of the order store used by the sweep."""

    @abstractmethod
    async def list_open_orders(self) -> List[Union[Order, MalformedOrder]]:
        """Snapshot of all non-terminal orders."""


class INotificationJournal(ABC):
    """Durable idempotency ledger keyed by violation key."""

    @abstractmethod
    async def has(self, violation_key: str, since: Optional[datetime] = None) -> bool:
        """Whether a notification was recorded for the key (at or after ``since``)."""

    @abstractmethod
    async def record(self, entry: NotificationJournalEntry) -> None:
        """Record a successful notification; at most one entry per key."""

    @abstractmethod
    async def list_recent(self, limit: int = 100) -> List[NotificationJournalEntry]:
        """Most recent entries first."""


class IRecipientDirectory(ABC):
    """Group to mailbox resolution."""

    @abstractmethod
    async def resolve_recipients(self, group_ids: Sequence[str]) -> List[str]:
        """De-duplicated emails of users in any of the groups."""


class IMailTransport(ABC):
    """Outbound mail; failures are reported, never raised."""

    @abstractmethod
    async def send(self, recipients: Sequence[str], subject: str, body: str) -> DispatchResult:
        """Send one message to all recipients."""


class IPolicyProvider(ABC):
    """Interface for threshold policy access."""

    @abstractmethod
    def get_policy(self) -> ThresholdPolicy:
        """Get the current policy snapshot."""


# ========== Application Services ==========

class DwellEvaluator:
    """
    Evaluates orders and components against a threshold policy.

    Usable on its own by anything that wants an overdue badge or countdown
    without repeating the clock math.
    """

    def __init__(self, clock: Clock = utc_now):
        self._clock = clock

    def evaluate_order(
        self, order: Order, policy: ThresholdPolicy, now: Optional[datetime] = None
    ) -> DwellEvaluation:
        entered_at = DwellCalculator.order_entered_at(order)
        return self._evaluate(
            EntityKind.ORDER, order.id, order.status, entered_at, policy, now
        )

    def evaluate_component(
        self,
        order: Order,
        component: Component,
        policy: ThresholdPolicy,
        now: Optional[datetime] = None,
    ) -> DwellEvaluation:
        entered_at = DwellCalculator.component_entered_at(order, component)
        return self._evaluate(
            EntityKind.COMPONENT, component.id, component.status, entered_at, policy, now
        )

    def evaluate_dwell(
        self,
        order: Order,
        policy: ThresholdPolicy,
        component: Optional[Component] = None,
        now: Optional[datetime] = None,
    ) -> DwellEvaluation:
        """Evaluate the order itself, or one of its components when given."""
        if component is not None:
            return self.evaluate_component(order, component, policy, now)
        return self.evaluate_order(order, policy, now)

    def _evaluate(
        self,
        kind: EntityKind,
        entity_id: str,
        status,
        entered_at: datetime,
        policy: ThresholdPolicy,
        now: Optional[datetime],
    ) -> DwellEvaluation:
        now = now or self._clock()
        elapsed = DwellCalculator.elapsed_hours(entered_at, now)

        threshold = policy.threshold_for(kind, status)
        if threshold is None:
            logger.warning(
                "Threshold policy has no entry for status; treating as not monitored",
                extra={"entity_kind": kind.value, "entity_id": entity_id, "status": status.value}
            )
            limit = 0.0
        else:
            limit = threshold.max_dwell_hours

        return DwellEvaluation(
            entity_kind=kind,
            entity_id=entity_id,
            status=status.value,
            entered_at=entered_at,
            elapsed_hours=elapsed,
            limit_hours=limit,
            is_violating=DwellCalculator.is_violating(elapsed, limit),
            monitored=limit > 0,
        )


class NotificationDispatcher:
    """
    Formats a violation into a message and hands it to the mail transport.

    Every send is bounded by ``timeout_seconds``; timeouts and transport
    exceptions come back as a failed DispatchResult.
    """

    def __init__(self, transport: IMailTransport, timeout_seconds: float = 10.0):
        self._transport = transport
        self.timeout_seconds = timeout_seconds

    def format_message(self, violation: Violation) -> Tuple[str, str]:
        """Subject and plain-text body for a violation."""
        ref = violation.order_reference

        if violation.notification_type == NotificationType.LOGGING_DELAY:
            subject = f"[NEXUS] Compliance Alert: Logging Delay - {ref}"
            lines = [
                f"Order {ref} for {violation.customer_name} has been flagged for a logging delay violation.",
                "",
                f"PO Date: {_fmt(violation.order_date)}",
                f"System Entry Date: {_fmt(violation.entered_at)}",
                f"Delay: {violation.elapsed_hours / 24:.1f} days",
            ]
        elif violation.notification_type == NotificationType.NEW_ORDER:
            subject = f"[NEXUS] New Order Recorded: {ref}"
            lines = [
                "A new purchase order has been logged in the system.",
                "",
                f"Order ID: {ref}",
                f"Customer: {violation.customer_name}",
                f"PO Date: {_fmt(violation.order_date)}",
            ]
        else:
            subject = f"[NEXUS] SLA Breach: {violation.status} - {ref}"
            entity = "Order" if violation.entity_kind == EntityKind.ORDER else "Component"
            lines = [
                f"{entity} {violation.entity_id} of order {ref} ({violation.customer_name}) "
                f"has exceeded its time limit.",
                "",
                f"Status: {violation.status}",
                f"In status since: {_fmt(violation.entered_at)}",
                f"Elapsed: {violation.elapsed_hours:.1f} h (limit {violation.limit_hours:g} h)",
            ]

        body = "\n".join(["Dear Team,", "", *lines, "", "Regards,", "Nexus ERP System"])
        return subject, body

    async def dispatch(self, violation: Violation, recipients: Sequence[str]) -> DispatchResult:
        subject, body = self.format_message(violation)
        try:
            return await asyncio.wait_for(
                self._transport.send(recipients, subject, body),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError:
            return DispatchResult(ok=False, error=f"dispatch timed out after {self.timeout_seconds:g}s")
        except Exception as e:
            return DispatchResult(ok=False, error=f"{type(e).__name__}: {e}")


def _fmt(value: Optional[datetime]) -> str:
    return value.isoformat() if value is not None else "n/a"


class AuditSweepEngine:
    """
    One full pass over all open orders and their components.

    Reads order snapshots, never writes order state, and only appends to the
    notification journal after a successful dispatch. A fault in one order
    is counted and logged, and the sweep moves on to the next order.
    """

    def __init__(
        self,
        order_source: IOpenOrderSource,
        journal: INotificationJournal,
        directory: IRecipientDirectory,
        dispatcher: NotificationDispatcher,
        evaluator: Optional[DwellEvaluator] = None,
        clock: Clock = utc_now,
    ):
        self._orders = order_source
        self._journal = journal
        self._directory = directory
        self._dispatcher = dispatcher
        self._evaluator = evaluator or DwellEvaluator(clock)
        self._clock = clock

    async def run_sweep(
        self,
        policy: ThresholdPolicy,
        on_progress: Optional[ProgressCallback] = None,
        cancel_event: Optional[asyncio.Event] = None,
        sweep_id: Optional[str] = None,
    ) -> SweepSummary:
        """
        Run one sweep against a fixed policy snapshot.

        Raises:
            StoreUnavailable: the order store could not be read at all
        """
        summary = SweepSummary(sweep_id=sweep_id or uuid4().hex[:12], started_at=self._clock())
        log = get_context_logger(__name__, sweep_id=summary.sweep_id)
        log.info("Audit sweep started")

        with log_latency(log, "audit_sweep", sweep_id=summary.sweep_id):
            orders = await self._orders.list_open_orders()
            total = len(orders)

            for index, order in enumerate(orders, start=1):
                if cancel_event is not None and cancel_event.is_set():
                    summary.cancelled = True
                    log.info("Audit sweep cancelled", extra={"processed": index - 1, "total": total})
                    break

                summary.orders_scanned += 1
                ref = order.reference if isinstance(order, Order) else order.id
                self._report(on_progress, index, total, f"({index}/{total}) order {ref}", log)

                try:
                    await self._process_order(order, policy, summary, log)
                except Exception as e:
                    summary.errors_handled += 1
                    summary.faulted_order_ids.append(order.id)
                    log.error(
                        "Order skipped after fault",
                        extra={"entity_id": order.id, "error_type": type(e).__name__, "error": str(e)}
                    )

        summary.finished_at = self._clock()
        log.info(
            "Audit sweep finished",
            extra={
                "orders_scanned": summary.orders_scanned,
                "violations_found": summary.violations_found,
                "notifications_sent": summary.notifications_sent,
                "dispatch_failures": summary.dispatch_failures,
                "unrouted": summary.unrouted,
                "errors_handled": summary.errors_handled,
                "cancelled": summary.cancelled,
            }
        )
        return summary

    def collect_violations(self, order: Order, policy: ThresholdPolicy, now: datetime) -> List[Violation]:
        """Every notification the order currently owes, before journal checks."""
        violations: List[Violation] = []

        evaluation = self._evaluator.evaluate_order(order, policy, now)
        if evaluation.is_violating:
            violations.append(self._threshold_violation(
                order, evaluation, NotificationType.ORDER_THRESHOLD, policy
            ))

        for _, component in order.iter_components():
            evaluation = self._evaluator.evaluate_component(order, component, policy, now)
            if evaluation.is_violating:
                violations.append(self._threshold_violation(
                    order, evaluation, NotificationType.COMPONENT_THRESHOLD, policy
                ))

        delay_rule = policy.logging_delay
        if delay_rule.threshold_hours > 0 and order.order_date is not None:
            delay_hours = DwellCalculator.elapsed_hours(order.order_date, order.created_at)
            if delay_hours > delay_rule.threshold_hours:
                violations.append(Violation(
                    key=logging_delay_key(order.id),
                    notification_type=NotificationType.LOGGING_DELAY,
                    order_id=order.id,
                    order_reference=order.reference,
                    entity_kind=EntityKind.ORDER,
                    entity_id=order.id,
                    status=order.status.value,
                    notify_group_ids=delay_rule.notify_group_ids,
                    elapsed_hours=delay_hours,
                    limit_hours=delay_rule.threshold_hours,
                    entered_at=order.created_at,
                    customer_name=order.customer_name,
                    order_date=order.order_date,
                ))

        if policy.new_order_alerts.enabled:
            violations.append(Violation(
                key=new_order_key(order.id),
                notification_type=NotificationType.NEW_ORDER,
                order_id=order.id,
                order_reference=order.reference,
                entity_kind=EntityKind.ORDER,
                entity_id=order.id,
                status=order.status.value,
                notify_group_ids=policy.new_order_alerts.notify_group_ids,
                entered_at=order.created_at,
                customer_name=order.customer_name,
                order_date=order.order_date,
            ))

        return violations

    async def _process_order(self, order, policy: ThresholdPolicy, summary: SweepSummary, log) -> None:
        if isinstance(order, MalformedOrder):
            raise RecordFault(order.id, order.error)
        if order.is_terminal:
            return

        now = self._clock()
        for violation in self.collect_violations(order, policy, now):
            summary.violations_found += 1
            await self._notify(violation, policy, summary, now, log)

    async def _notify(
        self,
        violation: Violation,
        policy: ThresholdPolicy,
        summary: SweepSummary,
        now: datetime,
        log,
    ) -> None:
        since = None
        if policy.journal_ttl_hours > 0:
            since = now - timedelta(hours=policy.journal_ttl_hours)
        if await self._journal.has(violation.key, since=since):
            return

        recipients = await self._directory.resolve_recipients(violation.notify_group_ids)
        if not recipients:
            summary.unrouted += 1
            log.warning(
                "Violation has no recipients",
                extra={"violation_key": violation.key, "group_ids": list(violation.notify_group_ids)}
            )
            return

        result = await self._dispatcher.dispatch(violation, recipients)
        if not result.ok:
            summary.dispatch_failures += 1
            log.warning(
                "Notification dispatch failed",
                extra={"violation_key": violation.key, "error": result.error}
            )
            return

        await self._journal.record(NotificationJournalEntry(
            violation_key=violation.key,
            notification_type=violation.notification_type,
            entity_id=violation.entity_id,
            sent_at=self._clock(),
            recipients=tuple(recipients),
        ))
        summary.notifications_sent += 1
        log.info(
            "Notification sent",
            extra={
                "violation_key": violation.key,
                "notification_type": violation.notification_type.value,
                "recipient_count": len(recipients),
            }
        )

    def _threshold_violation(
        self,
        order: Order,
        evaluation: DwellEvaluation,
        notification_type: NotificationType,
        policy: ThresholdPolicy,
    ) -> Violation:
        threshold = policy.threshold_for(evaluation.entity_kind, _status_enum(evaluation))
        return Violation(
            key=build_violation_key(
                evaluation.entity_kind,
                evaluation.entity_id,
                evaluation.status,
                evaluation.entered_at,
                policy.violation_key_mode,
            ),
            notification_type=notification_type,
            order_id=order.id,
            order_reference=order.reference,
            entity_kind=evaluation.entity_kind,
            entity_id=evaluation.entity_id,
            status=evaluation.status,
            notify_group_ids=threshold.notify_group_ids if threshold else policy.default_notify_group_ids,
            elapsed_hours=evaluation.elapsed_hours,
            limit_hours=evaluation.limit_hours,
            entered_at=evaluation.entered_at,
            customer_name=order.customer_name,
            order_date=order.order_date,
        )

    @staticmethod
    def _report(on_progress: Optional[ProgressCallback], current: int, total: int, message: str, log) -> None:
        if on_progress is None:
            return
        try:
            on_progress(current, total, message)
        except Exception as e:
            log.warning("Progress callback failed", extra={"error": str(e)})


def _status_enum(evaluation: DwellEvaluation):
    if evaluation.entity_kind == EntityKind.ORDER:
        return OrderStatus(evaluation.status)
    return ComponentStatus(evaluation.status)


class SweepCoordinator:
    """
    Owns the sweep-in-progress guard shared by scheduled and on-demand runs.

    At most one sweep runs at a time. An on-demand request during a sweep
    gets SweepInProgress; a scheduled tick during a sweep is skipped.
    """

    def __init__(self, engine: AuditSweepEngine, policy_provider: IPolicyProvider):
        self._engine = engine
        self._policy_provider = policy_provider
        self._lock = asyncio.Lock()
        self._cancel = asyncio.Event()
        self.current_sweep_id: Optional[str] = None
        self.last_summary: Optional[SweepSummary] = None

    @property
    def is_running(self) -> bool:
        return self._lock.locked()

    async def run_sweep(self, on_progress: Optional[ProgressCallback] = None) -> SweepSummary:
        """
        Run a sweep now.

        Raises:
            SweepInProgress: another sweep holds the guard
            StoreUnavailable: the store could not be read
        """
        if self._lock.locked():
            raise SweepInProgress(self.current_sweep_id)

        async with self._lock:
            self._cancel.clear()
            self.current_sweep_id = uuid4().hex[:12]
            policy = self._policy_provider.get_policy()
            try:
                summary = await self._engine.run_sweep(
                    policy,
                    on_progress=on_progress,
                    cancel_event=self._cancel,
                    sweep_id=self.current_sweep_id,
                )
            finally:
                self.current_sweep_id = None
            self.last_summary = summary
            return summary

    async def run_scheduled(self) -> Optional[SweepSummary]:
        """Scheduler entry point; never raises so the next tick still runs."""
        if self._lock.locked():
            logger.info("Audit sweep already running, skipping scheduled tick")
            return None
        try:
            return await self.run_sweep()
        except SweepInProgress:
            logger.info("Audit sweep already running, skipping scheduled tick")
            return None
        except Exception as e:
            logger.error(
                "Scheduled audit sweep failed",
                extra={"error_type": type(e).__name__, "error": str(e)}
            )
            return None

    def cancel(self) -> bool:
        """Request a stop at the next order boundary; False when nothing is running."""
        if not self._lock.locked():
            return False
        self._cancel.set()
        logger.info("Audit sweep cancellation requested", extra={"sweep_id": self.current_sweep_id})
        return True
