"""Core module exports."""
from __future__ import annotations

from core.config import Settings, get_settings, reload_settings
from core.db import get_session, SessionLocal
from core.exceptions import (
    PropertyConfirmationError,
    ConfigurationError,
    DatabaseError,
    NotFoundError,
    TokenError,
    SubmissionError,
    ConfirmationConflictError,
    ValidationError,
)
from core.logging_config import (
    setup_logging,
    get_logger,
    get_context_logger,
    log_external_call,
    JSONFormatter,
    ContextLogger,
)
from core.models import (
    Base,
    Owner,
    Broker,
    Property,
    ConfirmationToken,
    ScheduledConfirmation,
    ActivityLog,
    ImportBatch,
)

__all__ = [
    # Config
    "Settings",
    "get_settings",
    "reload_settings",
    # Database
    "get_session",
    "SessionLocal",
    "Base",
    # Models
    "Owner",
    "Broker",
    "Property",
    "ConfirmationToken",
    "ScheduledConfirmation",
    "ActivityLog",
    "ImportBatch",
    # Exceptions
    "PropertyConfirmationError",
    "ConfigurationError",
    "DatabaseError",
    "NotFoundError",
    "TokenError",
    "SubmissionError",
    "ConfirmationConflictError",
    "ValidationError",
    # Logging
    "setup_logging",
    "get_logger",
    "get_context_logger",
    "log_external_call",
    "JSONFormatter",
    "ContextLogger",
]
