"""Phone number normalization for owner contacts."""
from __future__ import annotations

import re
from typing import Optional

import phonenumbers
from phonenumbers import NumberParseException

from core.config import get_settings
from core.logging_config import get_logger

LOGGER = get_logger(__name__)
SETTINGS = get_settings()


def normalize_phone_e164(value: Optional[str], default_region: Optional[str] = None) -> Optional[str]:
    """
    Normalize a phone number to E.164 format.

    Args:
        value: Raw phone number string, e.g. "(11) 98765-4321".
        default_region: Region for numbers without a country code
            (ISO 3166-1 alpha-2); defaults to DEFAULT_PHONE_REGION.

    Returns:
        E.164 formatted phone number if valid, otherwise None.
    """
    if not value:
        return None

    cleaned = re.sub(r"[^\d+]", "", value.strip())
    if not cleaned:
        return None

    try:
        parsed = phonenumbers.parse(value, default_region or SETTINGS.default_phone_region)
    except NumberParseException:
        LOGGER.debug("Unparseable phone number")
        return None

    if not phonenumbers.is_valid_number(parsed):
        return None
    return phonenumbers.format_number(parsed, phonenumbers.PhoneNumberFormat.E164)


def is_valid_phone(value: Optional[str], default_region: Optional[str] = None) -> bool:
    return normalize_phone_e164(value, default_region) is not None


__all__ = ["normalize_phone_e164", "is_valid_phone"]
