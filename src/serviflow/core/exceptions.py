"""
Core Exceptions
================

Exception hierarchy of the SLA engine.

Services raise these; the API layer maps them to status codes and the
batch runner uses them to tell retryable failures from business ones.
"""

from typing import Optional


class ApplicationException(Exception):
    """Base of every engine error; carries a human message and structured details."""

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class DomainException(ApplicationException):
    """A business rule refused the operation."""


class RepositoryException(ApplicationException):
    """A tenant or master store could not be read or written."""


class ResourceNotFoundException(ApplicationException):
    """A ticket, rule or SLA referenced by id does not exist."""

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
    """The engine config file is unreadable or fails validation."""


class TransientInfrastructureError(RepositoryException):
    """
    Storage failure that is expected to clear on its own.

    Raised (or recognised) for dropped connections, timeouts, refused
    connections and DNS failures. The batch runner retries these and counts
    them towards its circuit breaker.
    """


class RuleActionError(DomainException):
    """
    A rule action could not be applied for business reasons.

    Invalid parameters, a missing ticket or a missing referenced entity.
    Never retried.
    """

    def __init__(
        self,
        message: str,
        rule_id: Optional[int] = None,
        ticket_id: Optional[int] = None,
        details: Optional[dict] = None
    ):
        self.rule_id = rule_id
        self.ticket_id = ticket_id
        super().__init__(
            message,
            details or {"rule_id": rule_id, "ticket_id": ticket_id}
        )


class JobQueueFullError(ApplicationException):
    """Raised when the background job queue cannot accept more work."""

    def __init__(self, capacity: int):
        self.capacity = capacity
        super().__init__(
            f"Background job queue is full ({capacity} pending jobs)",
            {"capacity": capacity}
        )
