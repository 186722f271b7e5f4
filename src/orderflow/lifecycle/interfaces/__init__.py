"""
Lifecycle Interfaces Layer
==========================

FastAPI route handlers for the order lifecycle.

This is the outermost layer - handles HTTP requests/responses and
delegates to application services.
"""

from orderflow.lifecycle.interfaces.controllers import router as orders_router

__all__ = ["orders_router"]
