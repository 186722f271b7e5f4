"""
SLA Interfaces Layer
====================

Interface adapters (controllers) for the SLA audit.

This is the outermost layer - handles HTTP requests/responses and
delegates to application services.
"""

from orderflow.sla.interfaces.controllers import router as audit_router

__all__ = ["audit_router"]
