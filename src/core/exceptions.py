"""
Core Exceptions
================

Custom exceptions for the application following clean architecture principles.

These exceptions define domain-specific errors that can be caught and handled
appropriately at the application boundaries. Each carries a stable
``error_code`` that the API layer returns to callers.
"""

from typing import Optional


class ApplicationException(Exception):
    """Base exception for all application errors."""

    error_code = "ApplicationError"

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class DomainException(ApplicationException):
    """Base exception for domain logic violations."""

    error_code = "DomainError"


class RepositoryException(ApplicationException):
    """Base exception for repository/data access errors."""

    error_code = "RepositoryError"


class ValidationException(ApplicationException):
    """Malformed or incomplete ticket submission."""

    error_code = "ValidationError"


class ResourceNotFoundException(ApplicationException):
    """Exception when a requested resource is not found."""

    error_code = "NotFound"

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

    error_code = "ConfigurationError"


class InvalidTransitionException(DomainException):
    """A status change that the ticket state machine does not permit."""

    error_code = "InvalidTransition"

    def __init__(
        self,
        ticket_id: str,
        current_status: str,
        attempted_status: str,
        details: Optional[dict] = None
    ):
        self.ticket_id = ticket_id
        self.current_status = current_status
        self.attempted_status = attempted_status
        super().__init__(
            f"Ticket {ticket_id} cannot move from {current_status} to {attempted_status}",
            details or {
                "ticket_id": ticket_id,
                "current_status": current_status,
                "attempted_status": attempted_status,
            }
        )


class TimeoutDegradedException(ApplicationException):
    """An analysis step exceeded its latency budget."""

    error_code = "TimeoutDegraded"

    def __init__(self, stage: str, budget_seconds: float):
        self.stage = stage
        self.budget_seconds = budget_seconds
        super().__init__(
            f"{stage} exceeded its {budget_seconds:g}s latency budget",
            {"stage": stage, "budget_seconds": budget_seconds}
        )


class CorpusUnavailableException(RepositoryException):
    """The corpus backing classification and similarity cannot be read."""

    error_code = "CorpusUnavailable"


class AuditWriteException(RepositoryException):
    """An audit entry could not be durably appended."""

    error_code = "AuditWriteFailure"


class ServiceUnavailableException(ApplicationException):
    """The request could not be completed and should be retried by the caller."""

    error_code = "ServiceUnavailable"
