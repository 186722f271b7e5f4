"""
Order Lifecycle Module
======================

Bounded Context for customer orders, their line items and the components
that have to be sourced before manufacturing can start.

Responsibilities:
- Enforce the legal order and component status transitions
- Refuse guarded transitions (unapproved items, negative margin, missing parts)
- Keep an append-only structured history of every change
- Expose named lifecycle actions over HTTP
"""

__version__ = "1.0.0"
