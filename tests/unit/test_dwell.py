"""Unit tests for threshold policies and dwell-time evaluation."""

from datetime import timedelta

import pytest
from pydantic import ValidationError

from orderflow.config import ComponentStatus, EntityKind, OrderStatus, ViolationKeyMode
from orderflow.lifecycle.domain import HistoryEntry
from orderflow.sla.application import DwellEvaluator
from orderflow.sla.domain import (
    DEFAULT_COMPONENT_DWELL_HOURS,
    DEFAULT_ORDER_DWELL_HOURS,
    DwellCalculator,
    ThresholdPolicy,
    build_violation_key,
)

from tests.fakes import T0, make_component, make_order


@pytest.mark.unit
class TestThresholdPolicy:

    def test_default_tables_cover_every_status(self):
        assert set(DEFAULT_ORDER_DWELL_HOURS) == set(OrderStatus)
        assert set(DEFAULT_COMPONENT_DWELL_HOURS) == set(ComponentStatus)

        policy = ThresholdPolicy.default()
        assert set(policy.order_thresholds) == set(OrderStatus)
        assert set(policy.component_thresholds) == set(ComponentStatus)

    def test_numeric_shorthand_expands_with_default_groups(self):
        policy = ThresholdPolicy(
            default_notify_group_ids=["grp_ops"],
            order_thresholds={"TECHNICAL_REVIEW": 48},
        )

        threshold = policy.threshold_for(EntityKind.ORDER, OrderStatus.TECHNICAL_REVIEW)
        assert threshold.max_dwell_hours == 48
        assert threshold.notify_group_ids == ("grp_ops",)
        # unlisted statuses keep the built-in limit
        assert policy.threshold_for(EntityKind.ORDER, OrderStatus.LOGGED).max_dwell_hours == 1

    def test_explicit_groups_are_kept(self):
        policy = ThresholdPolicy(component_thresholds={
            "RFP_SENT": {"max_dwell_hours": 72, "notify_group_ids": ["grp_procurement"]},
        })

        threshold = policy.threshold_for(EntityKind.COMPONENT, ComponentStatus.RFP_SENT)
        assert threshold.max_dwell_hours == 72
        assert threshold.notify_group_ids == ("grp_procurement",)

    def test_without_inheritance_unlisted_status_has_no_entry(self):
        policy = ThresholdPolicy(inherit_defaults=False, order_thresholds={"LOGGED": 4})

        assert policy.threshold_for(EntityKind.ORDER, OrderStatus.DELIVERY) is None
        assert policy.monitored_statuses() == {"order": ["LOGGED"], "component": []}

    def test_negative_limit_is_rejected(self):
        with pytest.raises(ValidationError):
            ThresholdPolicy(order_thresholds={"LOGGED": -1})

    def test_unknown_status_is_rejected(self):
        with pytest.raises(ValidationError):
            ThresholdPolicy(order_thresholds={"LOST_IN_SPACE": 3})

    def test_policy_is_immutable(self):
        policy = ThresholdPolicy.default()

        with pytest.raises(ValidationError):
            policy.journal_ttl_hours = 5


@pytest.mark.unit
class TestDwellCalculator:

    def test_zero_limit_never_violates(self):
        assert not DwellCalculator.is_violating(elapsed_hours=10_000, limit_hours=0)

    def test_exactly_at_limit_is_not_a_violation(self):
        assert not DwellCalculator.is_violating(elapsed_hours=48.0, limit_hours=48)
        assert DwellCalculator.is_violating(elapsed_hours=48.001, limit_hours=48)

    def test_order_entry_time_is_latest_entry_for_current_status(self):
        order = make_order(status=OrderStatus.TECHNICAL_REVIEW, entered_at=T0)
        later = T0 + timedelta(days=1)
        order.append_history(HistoryEntry(
            timestamp=later, actor="t", entity_kind=EntityKind.ORDER, entity_id="O1",
            field_changed="status", status="TECHNICAL_REVIEW",
        ))
        # component entries never move the order clock
        order.append_history(HistoryEntry(
            timestamp=later + timedelta(hours=5), actor="t", entity_kind=EntityKind.COMPONENT,
            entity_id="C1", field_changed="status", status="TECHNICAL_REVIEW",
        ))

        assert DwellCalculator.order_entered_at(order) == later

    def test_order_without_matching_entry_falls_back_to_creation(self):
        order = make_order(status=OrderStatus.LOGGED, entered_at=T0)
        order.history.clear()

        assert DwellCalculator.order_entered_at(order) == T0

    def test_component_without_timestamp_uses_order_creation(self):
        component = make_component(updated_at=None)
        order = make_order(created_at=T0 - timedelta(hours=6), entered_at=T0, components=[component])

        assert DwellCalculator.component_entered_at(order, component) == T0 - timedelta(hours=6)


@pytest.mark.unit
class TestDwellEvaluator:

    def test_order_evaluation(self, clock):
        policy = ThresholdPolicy(order_thresholds={"TECHNICAL_REVIEW": 48})
        order = make_order(status=OrderStatus.TECHNICAL_REVIEW, entered_at=T0)
        clock.advance(hours=49)

        evaluation = DwellEvaluator(clock).evaluate_dwell(order, policy)

        assert evaluation.entity_kind == EntityKind.ORDER
        assert evaluation.status == "TECHNICAL_REVIEW"
        assert evaluation.elapsed_hours == pytest.approx(49)
        assert evaluation.limit_hours == 48
        assert evaluation.is_violating
        assert evaluation.overdue_hours == pytest.approx(1)

    def test_component_evaluation(self, clock):
        policy = ThresholdPolicy(component_thresholds={"RFP_SENT": 72})
        component = make_component("C1", ComponentStatus.RFP_SENT, updated_at=T0 - timedelta(days=10))
        order = make_order(status=OrderStatus.WAITING_SUPPLIERS, components=[component])

        evaluation = DwellEvaluator(clock).evaluate_dwell(order, policy, component=component)

        assert evaluation.entity_id == "C1"
        assert evaluation.elapsed_hours == pytest.approx(240)
        assert evaluation.is_violating

    def test_unmonitored_status(self, clock):
        order = make_order(status=OrderStatus.NEGATIVE_MARGIN, entered_at=T0 - timedelta(days=30))

        evaluation = DwellEvaluator(clock).evaluate_order(order, ThresholdPolicy.default())

        assert not evaluation.monitored
        assert not evaluation.is_violating
        assert evaluation.overdue_hours == 0

    def test_missing_policy_entry_is_not_monitored(self, clock):
        policy = ThresholdPolicy(inherit_defaults=False)
        order = make_order(status=OrderStatus.DELIVERY, entered_at=T0 - timedelta(days=90))

        evaluation = DwellEvaluator(clock).evaluate_order(order, policy)

        assert evaluation.limit_hours == 0
        assert not evaluation.is_violating

    def test_explicit_now_overrides_clock(self, clock):
        policy = ThresholdPolicy(order_thresholds={"LOGGED": 1})
        order = make_order(status=OrderStatus.LOGGED, entered_at=T0)

        evaluation = DwellEvaluator(clock).evaluate_order(order, policy, now=T0 + timedelta(hours=2))

        assert evaluation.is_violating


@pytest.mark.unit
class TestViolationKeys:

    def test_status_key(self):
        key = build_violation_key(EntityKind.ORDER, "O1", OrderStatus.TECHNICAL_REVIEW, T0)

        assert key == "order:O1:TECHNICAL_REVIEW"

    def test_occupancy_key_includes_entry_time(self):
        key = build_violation_key(
            EntityKind.COMPONENT, "C1", "RFP_SENT", T0, mode=ViolationKeyMode.OCCUPANCY
        )

        assert key == f"component:C1:RFP_SENT@{T0.isoformat()}"
