"""Delivery collaborators for owner confirmation links."""
from .channels import (
    DeliveryChannel,
    DeliveryRequest,
    DeliveryResult,
    DeliveryStatus,
    ManualDelivery,
    TwilioDelivery,
    get_delivery_channel,
)
from .phone import normalize_phone_e164
from .twilio_client import TwilioClient, MessageResult, get_twilio_client

__all__ = [
    "DeliveryChannel",
    "DeliveryRequest",
    "DeliveryResult",
    "DeliveryStatus",
    "ManualDelivery",
    "TwilioDelivery",
    "get_delivery_channel",
    "normalize_phone_e164",
    "TwilioClient",
    "MessageResult",
    "get_twilio_client",
]
