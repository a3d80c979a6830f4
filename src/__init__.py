"""Top-level package for the property confirmation service."""
from __future__ import annotations

__version__ = "1.0.0"

__all__ = [
    "api",
    "core",
    "delivery",
    "domain",
    "scheduler",
    "services",
]
