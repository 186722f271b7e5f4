"""
Orderflow SLA
=============

Order lifecycle engine with a dwell-time compliance audit.
"""

__version__ = "1.0.0"
