"""
SLA Audit Module
================

Bounded Context for dwell-time compliance.

Responsibilities:
- Evaluate how long orders and components have been in their status
- Sweep all open orders on a schedule, one fault never stopping the sweep
- Notify recipient groups once per violation via the notification journal
- Hot-reload the threshold policy file
- Provide API and CLI entry points for on-demand sweeps
"""

__version__ = "1.0.0"
