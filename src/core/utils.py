"""Core utility functions."""
from __future__ import annotations

import hashlib
import time
import uuid
from datetime import date, datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    """Get current UTC datetime with timezone info. Always use this instead of datetime.now()."""
    return datetime.now(timezone.utc)


def ensure_aware(dt: Optional[datetime]) -> Optional[datetime]:
    """
    Ensure a datetime is timezone-aware (UTC).

    SQLite stores datetimes without timezone info, so we need to make them
    aware before comparing with utcnow().

    Args:
        dt: A datetime that may or may not be timezone-aware.

    Returns:
        Timezone-aware datetime in UTC, or None if input was None.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        # Assume naive datetimes are UTC
        return dt.replace(tzinfo=timezone.utc)
    return dt


def hash_token(raw_token: str) -> str:
    """SHA-256 hex digest of a raw confirmation token."""
    return hashlib.sha256(raw_token.encode()).hexdigest()


def generate_unique_key() -> str:
    """Generate a unique random key."""
    return uuid.uuid4().hex


# =============================================================================
# Calendar helpers
# =============================================================================


def cycle_month(day: date) -> str:
    """Return the scheduling cycle key ("YYYY-MM") a date belongs to."""
    return f"{day.year:04d}-{day.month:02d}"


def first_of_next_month(today: date) -> date:
    if today.month == 12:
        return date(today.year + 1, 1, 1)
    return date(today.year, today.month + 1, 1)


def parse_date(value: str) -> date:
    """Parse an ISO date, accepting a full timestamp as well."""
    if len(value) > 10:
        return datetime.fromisoformat(value.replace("Z", "+00:00")).date()
    return date.fromisoformat(value)


# =============================================================================
# Masking for owner-facing snapshots
# =============================================================================


def mask_name(name: Optional[str]) -> str:
    """'João Silva' -> 'João S.'"""
    if not name:
        return ""
    parts = name.split()
    if len(parts) == 1:
        return parts[0]
    return f"{parts[0]} {parts[-1][0]}."


def mask_phone(phone: Optional[str]) -> str:
    """'(11) 98765-4321' -> '(11) 9****-4321'"""
    if not phone:
        return ""
    if len(phone) > 8:
        return phone[: len(phone) - 8] + "****" + phone[-4:]
    return "****" + phone[-4:]


def mask_email(email: Optional[str]) -> str:
    """'joao@example.com' -> 'j***@example.com'"""
    if not email:
        return ""
    at_index = email.find("@")
    if at_index <= 0:
        return email
    return email[0] + "***" + email[at_index:]


# =============================================================================
# Time budgets
# =============================================================================


class Deadline:
    """
    Monotonic time budget for a unit of work.

    Callers check ``expired`` at safe points (before commit) and abandon the
    transaction when the budget is exhausted. Works from any thread, unlike
    signal-based timeouts.
    """

    def __init__(self, seconds: float):
        self.seconds = seconds
        self.started = time.monotonic()

    @property
    def elapsed(self) -> float:
        return time.monotonic() - self.started

    @property
    def expired(self) -> bool:
        return self.elapsed >= self.seconds


__all__ = [
    "utcnow",
    "ensure_aware",
    "hash_token",
    "generate_unique_key",
    "cycle_month",
    "first_of_next_month",
    "parse_date",
    "mask_name",
    "mask_phone",
    "mask_email",
    "Deadline",
]
