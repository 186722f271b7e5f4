"""Unit tests for the audit sweep engine and the sweep coordinator."""

import asyncio
from datetime import timedelta

import pytest

from orderflow.config import ComponentStatus, NotificationType, OrderStatus, ViolationKeyMode
from orderflow.core import StoreUnavailable, SweepInProgress
from orderflow.lifecycle.application import LifecycleService
from orderflow.lifecycle.domain import MalformedOrder
from orderflow.sla.application import (
    AuditSweepEngine,
    DwellEvaluator,
    NotificationDispatcher,
    SweepCoordinator,
)
from orderflow.sla.domain import ThresholdPolicy

from tests.fakes import (
    T0,
    RecordingTransport,
    StaticDirectory,
    StaticPolicyProvider,
    make_component,
    make_order,
)


def review_policy(**overrides) -> ThresholdPolicy:
    return ThresholdPolicy(order_thresholds={"TECHNICAL_REVIEW": 48}, **overrides)


def stalled_order(order_id: str):
    """An order 49 hours into a 48 hour review."""
    return make_order(order_id, OrderStatus.TECHNICAL_REVIEW, entered_at=T0 - timedelta(hours=49))


@pytest.mark.unit
class TestSingleViolation:
    """One stalled review, swept before, at and after the breach."""

    async def test_notified_exactly_once(self, engine, store, journal, transport, clock):
        store.put(make_order("O1", OrderStatus.TECHNICAL_REVIEW, entered_at=T0))
        policy = review_policy()

        clock.set(T0 + timedelta(hours=47))
        summary = await engine.run_sweep(policy)
        assert summary.violations_found == 0
        assert summary.notifications_sent == 0

        clock.set(T0 + timedelta(hours=49))
        summary = await engine.run_sweep(policy)
        assert summary.notifications_sent == 1
        assert "order:O1:TECHNICAL_REVIEW" in journal.entries
        assert transport.subjects == ["[NEXUS] SLA Breach: TECHNICAL_REVIEW - ORD-O1"]

        clock.set(T0 + timedelta(hours=50))
        summary = await engine.run_sweep(policy)
        assert summary.violations_found == 1
        assert summary.notifications_sent == 0
        assert len(transport.sent) == 1

    async def test_journal_entry_describes_notification(self, engine, store, journal, clock):
        store.put(stalled_order("O1"))

        await engine.run_sweep(review_policy())

        entry = journal.entries["order:O1:TECHNICAL_REVIEW"]
        assert entry.notification_type == NotificationType.ORDER_THRESHOLD
        assert entry.entity_id == "O1"
        assert entry.sent_at == clock.now
        assert entry.recipients == ("super@example.com",)

    async def test_message_goes_to_policy_groups(self, engine, store, directory, transport):
        directory.groups = {"grp_qa": ["qa@example.com", "QA@example.com"], "grp_super": ["boss@example.com"]}
        store.put(stalled_order("O1"))
        policy = ThresholdPolicy(order_thresholds={
            "TECHNICAL_REVIEW": {"max_dwell_hours": 48, "notify_group_ids": ["grp_qa"]},
        })

        await engine.run_sweep(policy)

        assert transport.sent[0]["recipients"] == ["qa@example.com"]


@pytest.mark.unit
class TestComponentViolations:

    @pytest.fixture
    def rfp_policy(self):
        # order-level checks off so only the component is in play
        return ThresholdPolicy(
            order_thresholds={"WAITING_SUPPLIERS": 0},
            component_thresholds={"RFP_SENT": 72},
        )

    @pytest.fixture
    def rfp_order(self, store):
        component = make_component("C1", ComponentStatus.RFP_SENT, updated_at=T0 - timedelta(days=10))
        store.put(make_order("O2", OrderStatus.WAITING_SUPPLIERS, entered_at=T0, components=[component]))

    async def test_stalled_rfp_is_notified(self, engine, journal, transport, rfp_policy, rfp_order):
        summary = await engine.run_sweep(rfp_policy)

        assert summary.notifications_sent == 1
        assert "component:C1:RFP_SENT" in journal.entries
        assert journal.entries["component:C1:RFP_SENT"].notification_type == NotificationType.COMPONENT_THRESHOLD
        assert transport.subjects == ["[NEXUS] SLA Breach: RFP_SENT - ORD-O2"]

    async def test_reset_restarts_the_clock(self, engine, store, clock, rfp_policy, rfp_order):
        await engine.run_sweep(rfp_policy)
        service = LifecycleService(store, minimum_margin_pct=15, clock=clock)

        order = await service.reset("O2", "C1", "buyer", "supplier went silent")
        evaluation = DwellEvaluator(clock).evaluate_component(order, order.find_component("C1")[1], rfp_policy)

        assert evaluation.status == "PENDING_OFFER"
        assert evaluation.elapsed_hours == 0
        summary = await engine.run_sweep(rfp_policy)
        assert summary.violations_found == 0

    async def test_occupancy_mode_notifies_each_visit(self, engine, store, clock, transport):
        policy = ThresholdPolicy(
            order_thresholds={"WAITING_SUPPLIERS": 0},
            component_thresholds={"RFP_SENT": 72, "PENDING_OFFER": 0},
            violation_key_mode=ViolationKeyMode.OCCUPANCY,
        )
        component = make_component("C1", ComponentStatus.RFP_SENT, updated_at=T0)
        store.put(make_order("O2", OrderStatus.WAITING_SUPPLIERS, entered_at=T0, components=[component]))
        service = LifecycleService(store, minimum_margin_pct=15, clock=clock)

        clock.advance(hours=73)
        await engine.run_sweep(policy)
        await service.reset("O2", "C1", "buyer", "rebid")
        await service.send_rfp("O2", "C1", "buyer", ["SUP-9"])
        clock.advance(hours=73)
        summary = await engine.run_sweep(policy)

        assert summary.notifications_sent == 1
        assert len(transport.sent) == 2

    async def test_status_mode_notifies_status_once(self, engine, store, clock, transport):
        policy = ThresholdPolicy(
            order_thresholds={"WAITING_SUPPLIERS": 0},
            component_thresholds={"RFP_SENT": 72, "PENDING_OFFER": 0},
        )
        component = make_component("C1", ComponentStatus.RFP_SENT, updated_at=T0)
        store.put(make_order("O2", OrderStatus.WAITING_SUPPLIERS, entered_at=T0, components=[component]))
        service = LifecycleService(store, minimum_margin_pct=15, clock=clock)

        clock.advance(hours=73)
        await engine.run_sweep(policy)
        await service.reset("O2", "C1", "buyer", "rebid")
        await service.send_rfp("O2", "C1", "buyer", ["SUP-9"])
        clock.advance(hours=73)
        summary = await engine.run_sweep(policy)

        assert summary.violations_found == 1
        assert summary.notifications_sent == 0
        assert len(transport.sent) == 1


@pytest.mark.unit
class TestIdempotency:

    async def test_back_to_back_sweeps_send_nothing_new(self, engine, store, journal, transport):
        for order_id in ("O1", "O2", "O3"):
            store.put(stalled_order(order_id))

        first = await engine.run_sweep(review_policy())
        second = await engine.run_sweep(review_policy())

        assert first.notifications_sent == 3
        assert second.violations_found == 3
        assert second.notifications_sent == 0
        assert len(journal.entries) == 3
        assert len(transport.sent) == 3

    async def test_journal_ttl_allows_renotification(self, engine, store, clock, transport):
        store.put(stalled_order("O1"))
        policy = review_policy(journal_ttl_hours=24)

        await engine.run_sweep(policy)
        clock.advance(hours=23)
        assert (await engine.run_sweep(policy)).notifications_sent == 0
        clock.advance(hours=2)
        assert (await engine.run_sweep(policy)).notifications_sent == 1
        assert len(transport.sent) == 2


@pytest.mark.unit
class TestFaultIsolation:

    async def test_malformed_order_does_not_stop_sweep(self, engine, store, journal):
        for index in range(1, 6):
            order_id = f"O{index}"
            if index == 3:
                store.put(MalformedOrder(id=order_id, error="'NOT_A_STATUS' is not a valid ComponentStatus"))
            else:
                store.put(stalled_order(order_id))

        summary = await engine.run_sweep(review_policy())

        assert summary.orders_scanned == 5
        assert summary.errors_handled == 1
        assert summary.faulted_order_ids == ["O3"]
        assert summary.notifications_sent == 4
        assert set(journal.entries) == {f"order:O{i}:TECHNICAL_REVIEW" for i in (1, 2, 4, 5)}

    async def test_collaborator_error_is_isolated_to_its_order(self, engine, store, journal):
        for order_id in ("O1", "O2", "O3"):
            store.put(stalled_order(order_id))
        journal.fail_on_has = "order:O2:"

        summary = await engine.run_sweep(review_policy())

        assert summary.errors_handled == 1
        assert summary.faulted_order_ids == ["O2"]
        assert summary.notifications_sent == 2

    async def test_unreachable_store_aborts_sweep(self, engine, store):
        store.unavailable = True

        with pytest.raises(StoreUnavailable):
            await engine.run_sweep(review_policy())


@pytest.mark.unit
class TestDispatchOutcomes:

    async def test_unrouted_violation_is_not_journaled(self, engine, store, journal, directory, transport):
        directory.groups = {}
        store.put(stalled_order("O1"))

        summary = await engine.run_sweep(review_policy())

        assert summary.unrouted == 1
        assert summary.notifications_sent == 0
        assert journal.entries == {}

        directory.groups = {"grp_super": ["super@example.com"]}
        assert (await engine.run_sweep(review_policy())).notifications_sent == 1

    async def test_failed_dispatch_is_retried_next_sweep(self, engine, store, journal, transport):
        transport.ok = False
        store.put(stalled_order("O1"))

        summary = await engine.run_sweep(review_policy())
        assert summary.dispatch_failures == 1
        assert journal.entries == {}

        transport.ok = True
        summary = await engine.run_sweep(review_policy())
        assert summary.notifications_sent == 1

    async def test_transport_exception_counts_as_dispatch_failure(self, engine, store, transport):
        transport.error = ConnectionResetError("peer reset")
        store.put(stalled_order("O1"))

        summary = await engine.run_sweep(review_policy())

        assert summary.dispatch_failures == 1
        assert summary.errors_handled == 0

    async def test_slow_transport_times_out(self, store, journal, directory, clock):
        slow = RecordingTransport(delay=5)
        engine = AuditSweepEngine(
            order_source=store,
            journal=journal,
            directory=directory,
            dispatcher=NotificationDispatcher(slow, timeout_seconds=0.05),
            clock=clock,
        )
        store.put(stalled_order("O1"))
        store.put(stalled_order("O2"))

        summary = await engine.run_sweep(review_policy())

        assert summary.orders_scanned == 2
        assert summary.dispatch_failures == 2
        assert journal.entries == {}


@pytest.mark.unit
class TestSecondaryAlerts:

    async def test_logging_delay(self, engine, store, journal, transport):
        store.put(make_order("O1", OrderStatus.LOGGED, entered_at=T0, order_date=T0 - timedelta(days=3)))

        summary = await engine.run_sweep(ThresholdPolicy.default())

        assert summary.notifications_sent == 1
        assert journal.entries["logging_delay:O1"].notification_type == NotificationType.LOGGING_DELAY
        assert transport.subjects == ["[NEXUS] Compliance Alert: Logging Delay - ORD-O1"]

    async def test_logging_delay_within_threshold(self, engine, store):
        store.put(make_order("O1", OrderStatus.LOGGED, entered_at=T0, order_date=T0 - timedelta(hours=20)))

        summary = await engine.run_sweep(ThresholdPolicy.default())

        assert summary.violations_found == 0

    async def test_new_order_alert_sent_once(self, engine, store, transport):
        store.put(make_order("O1", OrderStatus.LOGGED, entered_at=T0))
        policy = ThresholdPolicy(new_order_alerts={"enabled": True})

        await engine.run_sweep(policy)
        await engine.run_sweep(policy)

        assert transport.subjects == ["[NEXUS] New Order Recorded: ORD-O1"]


@pytest.mark.unit
class TestProgressAndCancellation:

    async def test_progress_reports_each_order(self, engine, store):
        store.put(make_order("O1"))
        store.put(make_order("O2"))
        messages = []

        await engine.run_sweep(review_policy(), on_progress=lambda c, t, m: messages.append(m))

        assert messages == ["(1/2) order ORD-O1", "(2/2) order ORD-O2"]

    async def test_failing_progress_callback_is_ignored(self, engine, store):
        store.put(stalled_order("O1"))

        def broken(current, total, message):
            raise ValueError("ui went away")

        summary = await engine.run_sweep(review_policy(), on_progress=broken)

        assert summary.notifications_sent == 1

    async def test_cancel_stops_at_order_boundary(self, engine, store):
        for order_id in ("O1", "O2", "O3"):
            store.put(stalled_order(order_id))
        cancel = asyncio.Event()

        summary = await engine.run_sweep(
            review_policy(), on_progress=lambda c, t, m: cancel.set(), cancel_event=cancel
        )

        assert summary.cancelled
        assert summary.orders_scanned == 1
        assert summary.notifications_sent == 1


@pytest.mark.unit
class TestSweepCoordinator:

    @pytest.fixture
    def slow_coordinator(self, store, journal, directory, clock):
        engine = AuditSweepEngine(
            order_source=store,
            journal=journal,
            directory=directory,
            dispatcher=NotificationDispatcher(RecordingTransport(delay=0.2), timeout_seconds=2),
            clock=clock,
        )
        for order_id in ("O1", "O2", "O3"):
            store.put(stalled_order(order_id))
        return SweepCoordinator(engine, StaticPolicyProvider(review_policy()))

    async def test_second_sweep_is_refused_while_running(self, slow_coordinator):
        task = asyncio.create_task(slow_coordinator.run_sweep())
        while not slow_coordinator.is_running:
            await asyncio.sleep(0)

        with pytest.raises(SweepInProgress):
            await slow_coordinator.run_sweep()
        assert await slow_coordinator.run_scheduled() is None

        summary = await task
        assert summary.orders_scanned == 3

    async def test_cancel_running_sweep(self, slow_coordinator):
        task = asyncio.create_task(slow_coordinator.run_sweep())
        while not slow_coordinator.is_running:
            await asyncio.sleep(0)

        assert slow_coordinator.cancel() is True
        summary = await task

        assert summary.cancelled
        assert summary.orders_scanned == 1
        assert slow_coordinator.last_summary is summary
        assert not slow_coordinator.is_running

    async def test_cancel_when_idle(self, coordinator):
        assert coordinator.cancel() is False

    async def test_next_sweep_after_cancel_runs_fully(self, slow_coordinator):
        task = asyncio.create_task(slow_coordinator.run_sweep())
        while not slow_coordinator.is_running:
            await asyncio.sleep(0)
        slow_coordinator.cancel()
        await task

        summary = await slow_coordinator.run_sweep()

        assert not summary.cancelled
        assert summary.orders_scanned == 3

    async def test_scheduled_run_swallows_store_outage(self, coordinator, store):
        store.unavailable = True

        assert await coordinator.run_scheduled() is None
        assert coordinator.last_summary is None

    async def test_policy_snapshot_is_taken_per_sweep(self, engine, store):
        provider = StaticPolicyProvider(ThresholdPolicy(order_thresholds={"TECHNICAL_REVIEW": 100}))
        coordinator = SweepCoordinator(engine, provider)
        store.put(stalled_order("O1"))

        assert (await coordinator.run_sweep()).violations_found == 0
        provider.policy = review_policy()
        assert (await coordinator.run_sweep()).notifications_sent == 1
