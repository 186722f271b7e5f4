"""
SLA Value Objects
==================

Immutable value objects for the SLA domain: the threshold policy loaded
from YAML, and the pure dwell-time calculations.

Value objects are defined by their attributes rather than an identity.
They are immutable and can be freely shared, so a sweep can hold one
policy snapshot while the file on disk is reloaded underneath it.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

from orderflow.config import (
    ComponentStatus,
    EntityKind,
    OrderStatus,
    ViolationKeyMode,
)
from orderflow.lifecycle.domain import Component, Order


DEFAULT_NOTIFY_GROUP_IDS: Tuple[str, ...] = ("grp_super",)

# Hours; 0 means the status is not monitored
DEFAULT_ORDER_DWELL_HOURS: Dict[OrderStatus, float] = {
    OrderStatus.LOGGED: 1,
    OrderStatus.TECHNICAL_REVIEW: 2,
    OrderStatus.NEGATIVE_MARGIN: 0,
    OrderStatus.WAITING_SUPPLIERS: 2,
    OrderStatus.WAITING_FACTORY: 5,
    OrderStatus.MANUFACTURING: 1,
    OrderStatus.MANUFACTURING_COMPLETED: 2,
    OrderStatus.TRANSITION_TO_STOCK: 2,
    OrderStatus.IN_PRODUCT_HUB: 24,
    OrderStatus.ISSUE_INVOICE: 1,
    OrderStatus.INVOICED: 1,
    OrderStatus.HUB_RELEASED: 3,
    OrderStatus.DELIVERY: 1080,
    OrderStatus.DELIVERED: 0,
    OrderStatus.FULFILLED: 0,
    OrderStatus.IN_HOLD: 0,
    OrderStatus.REJECTED: 0,
}

DEFAULT_COMPONENT_DWELL_HOURS: Dict[ComponentStatus, float] = {
    ComponentStatus.AVAILABLE: 0,
    ComponentStatus.RESERVED: 0,
    ComponentStatus.PENDING_OFFER: 2,
    ComponentStatus.RFP_SENT: 24,
    ComponentStatus.AWARDED: 1,
    ComponentStatus.ORDERED: 72,
    ComponentStatus.RECEIVED: 0,
}


class StatusThreshold(BaseModel):
    """Maximum dwell for one status and who hears about a breach."""
    model_config = ConfigDict(frozen=True)

    max_dwell_hours: float = Field(default=0, ge=0, description="0 disables the check")
    notify_group_ids: Tuple[str, ...] = Field(default=DEFAULT_NOTIFY_GROUP_IDS)

    @property
    def is_monitored(self) -> bool:
        return self.max_dwell_hours > 0


class LoggingDelayRule(BaseModel):
    """Flags orders entered long after the date on the customer's PO."""
    model_config = ConfigDict(frozen=True)

    threshold_hours: float = Field(default=24, ge=0)
    notify_group_ids: Tuple[str, ...] = Field(default=DEFAULT_NOTIFY_GROUP_IDS)


class NewOrderAlertRule(BaseModel):
    """Announces every newly seen open order once."""
    model_config = ConfigDict(frozen=True)

    enabled: bool = False
    notify_group_ids: Tuple[str, ...] = Field(default=DEFAULT_NOTIFY_GROUP_IDS)


def _normalize_table(
    raw: Optional[Dict[str, Any]],
    defaults: Dict[Any, float],
    group_ids: Tuple[str, ...],
    inherit_defaults: bool,
) -> Dict[str, Dict[str, Any]]:
    table: Dict[str, Dict[str, Any]] = {}
    if inherit_defaults:
        for status, hours in defaults.items():
            table[status.value] = {"max_dwell_hours": hours, "notify_group_ids": group_ids}

    for status, value in (raw or {}).items():
        key = getattr(status, "value", status)
        if isinstance(value, (int, float)):
            value = {"max_dwell_hours": value, "notify_group_ids": group_ids}
        elif isinstance(value, StatusThreshold):
            value = value.model_dump()
        else:
            value = {"notify_group_ids": group_ids, **dict(value)}
        table[key] = value
    return table


class ThresholdPolicy(BaseModel):
    """
    Threshold policy loaded from YAML.

    Maps every order and component status to a maximum dwell time and the
    recipient groups for a breach. With ``inherit_defaults`` (the default)
    statuses the file does not mention keep their built-in limits; without
    it a missing status is reported as a configuration fault and treated as
    not monitored.

    Example YAML::

        default_notify_group_ids: [grp_super]
        order_thresholds:
          TECHNICAL_REVIEW: 48
          IN_PRODUCT_HUB:
            max_dwell_hours: 24
            notify_group_ids: [grp_logistics]
        component_thresholds:
          RFP_SENT: 72
    """
    model_config = ConfigDict(frozen=True)

    inherit_defaults: bool = True
    default_notify_group_ids: Tuple[str, ...] = Field(default=DEFAULT_NOTIFY_GROUP_IDS)
    order_thresholds: Dict[OrderStatus, StatusThreshold] = Field(default_factory=dict)
    component_thresholds: Dict[ComponentStatus, StatusThreshold] = Field(default_factory=dict)
    logging_delay: LoggingDelayRule = Field(default_factory=LoggingDelayRule)
    new_order_alerts: NewOrderAlertRule = Field(default_factory=NewOrderAlertRule)
    journal_ttl_hours: float = Field(default=0, ge=0, description="0 keeps journal entries forever")
    violation_key_mode: ViolationKeyMode = ViolationKeyMode.STATUS

    @model_validator(mode="before")
    @classmethod
    def expand_tables(cls, data: Any) -> Any:
        """Expand numeric shorthand and fill in defaults for unlisted statuses."""
        if not isinstance(data, dict):
            return data

        data = dict(data)
        group_ids = tuple(data.get("default_notify_group_ids") or DEFAULT_NOTIFY_GROUP_IDS)
        inherit = data.get("inherit_defaults", True)

        data["order_thresholds"] = _normalize_table(
            data.get("order_thresholds"), DEFAULT_ORDER_DWELL_HOURS, group_ids, inherit
        )
        data["component_thresholds"] = _normalize_table(
            data.get("component_thresholds"), DEFAULT_COMPONENT_DWELL_HOURS, group_ids, inherit
        )
        for rule in ("logging_delay", "new_order_alerts"):
            if isinstance(data.get(rule), dict):
                data[rule] = {"notify_group_ids": group_ids, **data[rule]}
        return data

    @classmethod
    def default(cls) -> "ThresholdPolicy":
        return cls()

    def threshold_for(
        self, kind: EntityKind, status: Union[OrderStatus, ComponentStatus]
    ) -> Optional[StatusThreshold]:
        """The configured threshold, or None when the status has no entry."""
        if kind == EntityKind.ORDER:
            return self.order_thresholds.get(status)
        return self.component_thresholds.get(status)

    def monitored_statuses(self) -> Dict[str, List[str]]:
        """Statuses with a positive limit, grouped by entity kind."""
        return {
            "order": [s.value for s, t in self.order_thresholds.items() if t.is_monitored],
            "component": [s.value for s, t in self.component_thresholds.items() if t.is_monitored],
        }


class DwellCalculator:
    """
    Pure functions for dwell-time calculations.

    Stateless utility class - all clock math for the evaluator and the UI
    countdowns lives here.
    """

    @staticmethod
    def order_entered_at(order: Order) -> datetime:
        """
        When the order entered its current status.

        The most recent order-level history entry recording the current
        status wins; without one the order's creation time is used.
        """
        current = order.status.value
        for entry in reversed(order.history):
            if entry.entity_kind == EntityKind.ORDER and entry.status == current:
                return entry.timestamp
        return order.created_at

    @staticmethod
    def component_entered_at(order: Order, component: Component) -> datetime:
        """Components only keep their last transition time; fall back to the order's creation."""
        return component.status_updated_at or order.created_at

    @staticmethod
    def elapsed_hours(entered_at: datetime, now: datetime) -> float:
        return (now - entered_at).total_seconds() / 3600

    @staticmethod
    def is_violating(elapsed_hours: float, limit_hours: float) -> bool:
        """Strictly over a positive limit; a limit of 0 is never violated."""
        return limit_hours > 0 and elapsed_hours > limit_hours


def build_violation_key(
    kind: EntityKind,
    entity_id: str,
    status: Union[OrderStatus, ComponentStatus, str],
    entered_at: Optional[datetime] = None,
    mode: ViolationKeyMode = ViolationKeyMode.STATUS,
) -> str:
    """
    Deterministic journal key for a dwell violation.

    ``status`` mode gives ``order:<id>:<status>``; ``occupancy`` mode appends
    ``@<entered-at>`` so re-entering a status is a distinct violation.
    """
    status_value = getattr(status, "value", status)
    key = f"{kind.value.lower()}:{entity_id}:{status_value}"
    if mode == ViolationKeyMode.OCCUPANCY and entered_at is not None:
        key = f"{key}@{entered_at.isoformat()}"
    return key


def logging_delay_key(order_id: str) -> str:
    return f"logging_delay:{order_id}"


def new_order_key(order_id: str) -> str:
    return f"new_order:{order_id}"
