"""
Core Module
============

Shared core utilities and abstractions used across the application.

This module contains framework-agnostic code that defines the fundamental
building blocks of the system.
"""

from orderflow.core.exceptions import (
    ApplicationException,
    DomainException,
    RepositoryException,
    ValidationException,
    ResourceNotFoundException,
    ConfigurationException,
    ExternalServiceException,
    InvalidTransition,
    TransitionRefused,
    RecordFault,
    DispatchFailure,
    StoreUnavailable,
    SweepInProgress,
)

__all__ = [
    "ApplicationException",
    "DomainException",
    "RepositoryException",
    "ValidationException",
    "ResourceNotFoundException",
    "ConfigurationException",
    "ExternalServiceException",
    "InvalidTransition",
    "TransitionRefused",
    "RecordFault",
    "DispatchFailure",
    "StoreUnavailable",
    "SweepInProgress",
]
