"""
Shared Kernel Module
====================

This module contains shared infrastructure used across all bounded contexts
(Order Lifecycle and SLA Audit).

Architecture Pattern: Modular Monolith
- Each module (lifecycle, sla) is a bounded context
- Shared kernel contains only generic infrastructure

DO NOT add business logic from Lifecycle or SLA to shared kernel.
"""

__version__ = "1.0.0"
