"""
Configuration Module
====================

Application settings and domain constants.

Settings are loaded from environment variables using Pydantic. The SLA
threshold tables are NOT part of these settings: they live in a YAML policy
file that is hot-reloaded (see orderflow.sla.infrastructure.external).
"""

from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Uses Pydantic for validation and type safety.
    """

    # ========== Application ==========
    app_name: str = Field(default="orderflow-sla", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    environment: str = Field(default="development", description="Environment name")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Root log level")

    # ========== Server ==========
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port", ge=1, le=65535)

    # ========== Database ==========
    database_url: str = Field(
        default="postgresql+asyncpg://localhost:5432/orderflow",
        description="SQLAlchemy async connection URL"
    )
    db_pool_size: int = Field(default=5, description="Database connection pool size", ge=1)
    db_max_overflow: int = Field(default=10, description="Max overflow connections", ge=0)

    # ========== Audit / SLA ==========
    threshold_policy_path: Path = Field(
        default=Path("threshold_policy.yaml"),
        description="Path to the threshold policy YAML file"
    )
    audit_interval_seconds: int = Field(
        default=60,
        description="Seconds between audit sweeps (0 disables the scheduler)",
        ge=0
    )
    dispatch_timeout_seconds: float = Field(
        default=10.0,
        description="Timeout for a single notification dispatch",
        gt=0,
        le=120
    )
    run_sweep_on_startup: bool = Field(
        default=True,
        description="Run one audit sweep when the service starts"
    )

    # ========== Lifecycle rules ==========
    minimum_margin_pct: float = Field(
        default=15.0,
        description="Minimum order markup percentage before review is blocked"
    )

    # ========== Mail ==========
    mail_transport: str = Field(
        default="disabled",
        description="Mail transport: smtp, relay or disabled"
    )
    smtp_host: Optional[str] = Field(default=None, description="SMTP server host")
    smtp_port: int = Field(default=465, description="SMTP server port", ge=1, le=65535)
    smtp_username: Optional[str] = Field(default=None, description="SMTP username")
    smtp_password: Optional[str] = Field(default=None, description="SMTP password")
    smtp_use_ssl: bool = Field(default=True, description="Use implicit TLS (SMTPS)")
    mail_sender_name: str = Field(default="Nexus System Alert", description="Sender display name")
    mail_sender_email: Optional[str] = Field(default=None, description="Sender address")
    mail_relay_url: Optional[str] = Field(
        default=None,
        description="HTTP mail relay endpoint used when mail_transport=relay"
    )

    # ========== CORS ==========
    cors_origins: List[str] = Field(
        default=["http://localhost:3000", "http://localhost:8080"],
        description="Allowed CORS origins"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Ensure environment is one of allowed values."""
        allowed = {"development", "staging", "production"}
        if v not in allowed:
            raise ValueError(f"environment must be one of {allowed}")
        return v

    @field_validator("mail_transport")
    @classmethod
    def validate_mail_transport(cls, v: str) -> str:
        """Ensure the mail transport is a known implementation."""
        allowed = {"smtp", "relay", "disabled"}
        if v not in allowed:
            raise ValueError(f"mail_transport must be one of {allowed}")
        return v


@lru_cache()
def get_settings() -> Settings:
    """Returns cached Settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()


# ========== Constants ==========

class OrderStatus(str, Enum):
    """Customer order lifecycle statuses."""
    LOGGED = "LOGGED"
    TECHNICAL_REVIEW = "TECHNICAL_REVIEW"
    NEGATIVE_MARGIN = "NEGATIVE_MARGIN"
    WAITING_SUPPLIERS = "WAITING_SUPPLIERS"
    WAITING_FACTORY = "WAITING_FACTORY"
    MANUFACTURING = "MANUFACTURING"
    MANUFACTURING_COMPLETED = "MANUFACTURING_COMPLETED"
    TRANSITION_TO_STOCK = "TRANSITION_TO_STOCK"
    IN_PRODUCT_HUB = "IN_PRODUCT_HUB"
    ISSUE_INVOICE = "ISSUE_INVOICE"
    INVOICED = "INVOICED"
    HUB_RELEASED = "HUB_RELEASED"
    DELIVERY = "DELIVERY"
    DELIVERED = "DELIVERED"
    FULFILLED = "FULFILLED"
    IN_HOLD = "IN_HOLD"
    REJECTED = "REJECTED"


class ComponentStatus(str, Enum):
    """Manufacturing component statuses."""
    AVAILABLE = "AVAILABLE"
    RESERVED = "RESERVED"
    PENDING_OFFER = "PENDING_OFFER"
    RFP_SENT = "RFP_SENT"
    AWARDED = "AWARDED"
    ORDERED = "ORDERED"
    RECEIVED = "RECEIVED"


class ComponentSource(str, Enum):
    """Where a component comes from."""
    STOCK = "STOCK"
    PROCUREMENT = "PROCUREMENT"


class EntityKind(str, Enum):
    """Kind of entity a history entry or violation refers to."""
    ORDER = "ORDER"
    COMPONENT = "COMPONENT"
    LINE_ITEM = "LINE_ITEM"


class NotificationType(str, Enum):
    """Notification journal entry types."""
    ORDER_THRESHOLD = "order_threshold"
    COMPONENT_THRESHOLD = "component_threshold"
    LOGGING_DELAY = "logging_delay"
    NEW_ORDER = "new_order"


class ViolationKeyMode(str, Enum):
    """How violation keys are derived for the notification journal."""
    STATUS = "status"
    OCCUPANCY = "occupancy"


# ========== Lists for validation ==========

TERMINAL_ORDER_STATUSES = frozenset({OrderStatus.FULFILLED, OrderStatus.REJECTED})

REVIEWABLE_ORDER_STATUSES = frozenset({
    OrderStatus.LOGGED,
    OrderStatus.TECHNICAL_REVIEW,
    OrderStatus.NEGATIVE_MARGIN,
})

STOCK_COMPONENT_STATUSES = frozenset({ComponentStatus.AVAILABLE, ComponentStatus.RESERVED})

PROCUREMENT_COMPONENT_STATUSES = frozenset({
    ComponentStatus.PENDING_OFFER,
    ComponentStatus.RFP_SENT,
    ComponentStatus.AWARDED,
    ComponentStatus.ORDERED,
    ComponentStatus.RECEIVED,
})

# Components in these statuses are ready for the factory
COMPONENT_READY_STATUSES = frozenset({ComponentStatus.RECEIVED, ComponentStatus.RESERVED})
