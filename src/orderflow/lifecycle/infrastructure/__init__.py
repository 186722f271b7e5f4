"""
Lifecycle Infrastructure Layer
===============================

SQLAlchemy models and the order repository.
"""

from orderflow.lifecycle.infrastructure.models import OrderHistoryModel, OrderModel
from orderflow.lifecycle.infrastructure.repositories import (
    SQLAlchemyOrderRepository,
    items_from_document,
    items_to_document,
    order_from_model,
)

__all__ = [
    "OrderHistoryModel",
    "OrderModel",
    "SQLAlchemyOrderRepository",
    "items_from_document",
    "items_to_document",
    "order_from_model",
]
