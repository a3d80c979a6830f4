"""API route modules."""
from __future__ import annotations

from . import (
    health,
    import_batches,
    properties,
    public_confirmations,
    scheduled_confirmations,
)

__all__ = [
    "health",
    "import_batches",
    "properties",
    "public_confirmations",
    "scheduled_confirmations",
]
