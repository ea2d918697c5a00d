"""Base exceptions for QuoteFlow."""

from typing import Optional


class QuoteFlowException(Exception):
    """Base exception for all QuoteFlow errors."""
    pass


class ValidationError(QuoteFlowException):
    """Raised when validation fails."""
    pass


class TreeValidationError(ValidationError):
    """Raised when a structural change would break the position tree."""
    pass


class NotFoundError(QuoteFlowException):
    """Raised when a resource is not found."""
    pass


class ConflictError(QuoteFlowException):
    """Raised when there's a conflict."""
    pass


class EditLockError(ConflictError):
    """Raised when a resource is locked by someone else or the lock was lost."""

    def __init__(
        self,
        message: str,
        resource_id: str,
        locked_by: Optional[str] = None,
        locked_at: Optional[str] = None,
        locked_by_name: Optional[str] = None,
    ):
        super().__init__(message)
        self.resource_id = resource_id
        self.locked_by = locked_by
        self.locked_at = locked_at
        self.locked_by_name = locked_by_name


class ServiceUnavailableError(QuoteFlowException):
    """Raised when a service is unavailable."""
    pass
