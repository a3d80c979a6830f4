"""Custom exceptions for the property confirmation service."""
from __future__ import annotations

from typing import Optional


class PropertyConfirmationError(Exception):
    """Base exception for all application errors."""

    pass


# =============================================================================
# Configuration Errors
# =============================================================================


class ConfigurationError(PropertyConfirmationError):
    """Raised when required configuration is missing or invalid."""

    pass


class MissingCredentialsError(ConfigurationError):
    """Raised when required API credentials are not configured."""

    pass


# =============================================================================
# Database Errors
# =============================================================================


class DatabaseError(PropertyConfirmationError):
    """Base exception for database-related errors."""

    pass


class LockNotAcquiredError(DatabaseError):
    """Raised when a named scheduler lock is held by another owner."""

    pass


# =============================================================================
# Lookup Errors
# =============================================================================


class NotFoundError(PropertyConfirmationError):
    """Raised when a requested entity does not exist for the tenant."""

    pass


class PropertyNotFoundError(NotFoundError):
    pass


class OwnerNotFoundError(NotFoundError):
    pass


class ConfirmationNotFoundError(NotFoundError):
    pass


class ImportBatchNotFoundError(NotFoundError):
    pass


class TaskNotFoundError(NotFoundError):
    pass


# =============================================================================
# Token Errors
# =============================================================================


class TokenError(PropertyConfirmationError):
    """
    Base exception for confirmation token failures.

    Each subclass carries a stable ``code`` returned to public callers in place
    of any internal identifier.
    """

    code = "TokenInvalid"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.code)


class TokenNotFoundError(TokenError):
    """Raised when no token matches the presented value."""

    code = "TokenNotFound"


class TokenExpiredError(TokenError):
    """Raised when the token is past its expiry."""

    code = "TokenExpired"


class TokenConsumedError(TokenError):
    """Raised when the token has already been used."""

    code = "TokenConsumed"


class TenantMismatchError(TokenError):
    """Raised when the token belongs to another tenant."""

    code = "TenantMismatch"


class TokenRevokedError(TokenError):
    """Raised when the confirmation behind the token was cancelled or failed."""

    code = "TokenRevoked"


# =============================================================================
# Submission Errors
# =============================================================================


class SubmissionError(PropertyConfirmationError):
    """Base exception for rejected owner or operator confirmations."""

    code = "SubmissionRejected"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.code)


class InvalidPriceError(SubmissionError):
    """Raised when a price confirmation carries a non-positive amount."""

    code = "InvalidPrice"


class InvalidActionError(SubmissionError):
    """Raised when the requested confirmation action is unknown."""

    code = "InvalidAction"


class RecordNotInSentStateError(SubmissionError):
    """Raised when the confirmation record is not awaiting a response."""

    code = "RecordNotInSentState"


class SubmissionTimeoutError(SubmissionError):
    """Raised when a submission exceeds its time budget and is rolled back."""

    code = "SubmissionTimeout"


# =============================================================================
# Workflow Conflicts
# =============================================================================


class ConfirmationConflictError(PropertyConfirmationError):
    """Raised when a state transition lost a race or targets a terminal record."""

    pass


class DuplicateScheduleConflictError(ConfirmationConflictError):
    """Raised when a property already has an active record for the cycle."""

    pass


# =============================================================================
# Validation Errors
# =============================================================================


class ValidationError(PropertyConfirmationError):
    """Raised when request data fails validation."""

    pass


__all__ = [
    # Base
    "PropertyConfirmationError",
    # Configuration
    "ConfigurationError",
    "MissingCredentialsError",
    # Database
    "DatabaseError",
    "LockNotAcquiredError",
    # Lookup
    "NotFoundError",
    "PropertyNotFoundError",
    "OwnerNotFoundError",
    "ConfirmationNotFoundError",
    "ImportBatchNotFoundError",
    "TaskNotFoundError",
    # Tokens
    "TokenError",
    "TokenNotFoundError",
    "TokenExpiredError",
    "TokenConsumedError",
    "TenantMismatchError",
    "TokenRevokedError",
    # Submission
    "SubmissionError",
    "InvalidPriceError",
    "InvalidActionError",
    "RecordNotInSentStateError",
    "SubmissionTimeoutError",
    # Conflicts
    "ConfirmationConflictError",
    "DuplicateScheduleConflictError",
    # Validation
    "ValidationError",
]
