"""
Core Exceptions
================

Custom exceptions for the application following clean architecture principles.

These exceptions define domain-specific errors that can be caught and handled
appropriately at the application boundaries.
"""

from typing import Optional, Any


class ApplicationException(Exception):
    """Base exception for all application errors."""

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class DomainException(ApplicationException):
    """Base exception for domain logic violations."""


class RepositoryException(ApplicationException):
    """Base exception for repository/data access errors."""


class ValidationException(ApplicationException):
    """Exception for validation errors."""


class ResourceNotFoundException(ApplicationException):
    """Exception when a requested resource is not found."""

    def __init__(
        self,
        resource_type: str,
        resource_id: Optional[str] = None,
        details: Optional[dict] = None
    ):
        self.resource_type = resource_type
        self.resource_id = resource_id
        message = f"{resource_type}"
        if resource_id:
            message += f" with id '{resource_id}'"
        message += " not found"
        super().__init__(message, details)


class ConfigurationException(ApplicationException):
    """Exception for configuration errors."""


class ExternalServiceException(ApplicationException):
    """Base exception for external service failures."""

    def __init__(
        self,
        service_name: str,
        message: str,
        details: Optional[dict] = None
    ):
        self.service_name = service_name
        super().__init__(f"{service_name}: {message}", details)


class InvalidTransition(DomainException):
    """Target status is not reachable from the entity's current status."""

    def __init__(
        self,
        entity_id: str,
        current_status: Any,
        target_status: Any,
        details: Optional[dict] = None
    ):
        self.entity_id = entity_id
        self.current_status = current_status
        self.target_status = target_status
        super().__init__(
            f"Cannot move {entity_id} from {_value(current_status)} to {_value(target_status)}",
            details or {
                "entity_id": entity_id,
                "current_status": _value(current_status),
                "target_status": _value(target_status),
            }
        )


class TransitionRefused(DomainException):
    """A guarded transition was blocked by a business condition."""

    def __init__(
        self,
        entity_id: str,
        current_status: Any,
        target_status: Any,
        guard: str,
        reason: str,
        details: Optional[dict] = None
    ):
        self.entity_id = entity_id
        self.current_status = current_status
        self.target_status = target_status
        self.guard = guard
        self.reason = reason
        super().__init__(
            f"Transition of {entity_id} to {_value(target_status)} refused: {reason}",
            details or {
                "entity_id": entity_id,
                "current_status": _value(current_status),
                "target_status": _value(target_status),
                "guard": guard,
            }
        )


class RecordFault(ApplicationException):
    """A single record is malformed or references missing data."""

    def __init__(self, entity_id: str, message: str, details: Optional[dict] = None):
        self.entity_id = entity_id
        super().__init__(f"{entity_id}: {message}", details or {"entity_id": entity_id})


class DispatchFailure(ExternalServiceException):
    """Mail transport rejected or failed to deliver a message."""

    def __init__(self, reason: str, details: Optional[dict] = None):
        self.reason = reason
        super().__init__("Mail Transport", reason, details)


class StoreUnavailable(RepositoryException):
    """The order store cannot be reached at all."""


class SweepInProgress(ApplicationException):
    """An audit sweep is already running against the store."""

    def __init__(self, sweep_id: Optional[str] = None):
        self.sweep_id = sweep_id
        super().__init__(
            "An audit sweep is already in progress",
            {"sweep_id": sweep_id} if sweep_id else None
        )


def _value(status: Any) -> str:
    return getattr(status, "value", str(status))
