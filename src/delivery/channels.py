"""Delivery channels: how a confirmation link is handed to an owner.

The batch runner only depends on ``DeliveryChannel.deliver``. Channels
report transport failures in the returned ``DeliveryResult`` and do not
raise for them.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

from core.config import get_settings
from core.logging_config import get_logger
from core.models import DeliveryMethod
from delivery.phone import normalize_phone_e164
from delivery.twilio_client import TwilioClient, get_twilio_client

LOGGER = get_logger(__name__)
SETTINGS = get_settings()

MESSAGE_TEMPLATE = (
    "Olá {owner_name}! O imóvel {reference} ainda está disponível e o preço continua o mesmo? "
    "Confirme pelo link: {url}"
)


class DeliveryStatus:
    """Values recorded in ``ScheduledConfirmation.delivery_status``."""
    MANUAL_REQUIRED = "manual_delivery_required"
    SENT = "sent"
    DRY_RUN = "dry_run"
    INVALID_CONTACT = "invalid_contact"
    FAILED = "failed"
    EXPIRED_UNSENT = "expired_unsent"


@dataclass
class DeliveryRequest:
    """Everything a channel needs to reach an owner."""
    confirmation_id: int
    tenant_id: str
    confirmation_url: str
    property_reference: str
    owner_name: Optional[str] = None
    owner_phone: Optional[str] = None
    owner_email: Optional[str] = None

    def render_message(self) -> str:
        return MESSAGE_TEMPLATE.format(
            owner_name=(self.owner_name or "").split(" ")[0] or "proprietário",
            reference=self.property_reference,
            url=self.confirmation_url,
        )


@dataclass
class DeliveryResult:
    """Outcome of a single hand-off."""
    success: bool
    delivery_status: str
    error: Optional[str] = None
    external_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "delivery_status": self.delivery_status,
            "error": self.error,
            "external_id": self.external_id,
        }


class DeliveryChannel:
    """Base class for delivery collaborators."""

    method: str = ""

    def deliver(self, request: DeliveryRequest) -> DeliveryResult:
        raise NotImplementedError


class ManualDelivery(DeliveryChannel):
    """
    Broker sends the link by hand from the dashboard.

    The hand-off always succeeds; the record is flagged so the dashboard lists
    it as needing manual delivery.
    """

    method = DeliveryMethod.MANUAL.value

    def deliver(self, request: DeliveryRequest) -> DeliveryResult:
        return DeliveryResult(success=True, delivery_status=DeliveryStatus.MANUAL_REQUIRED)


class TwilioDelivery(DeliveryChannel):
    """WhatsApp or SMS delivery through Twilio."""

    def __init__(
        self,
        method: str = DeliveryMethod.WHATSAPP.value,
        client: Optional[TwilioClient] = None,
        dry_run: Optional[bool] = None,
    ):
        self.method = method
        self.client = client
        self.dry_run = SETTINGS.dry_run if dry_run is None else dry_run

    def deliver(self, request: DeliveryRequest) -> DeliveryResult:
        phone = normalize_phone_e164(request.owner_phone)
        if phone is None:
            return DeliveryResult(
                success=False,
                delivery_status=DeliveryStatus.INVALID_CONTACT,
                error="Owner has no valid phone number",
            )

        body = request.render_message()
        if self.dry_run:
            LOGGER.info(
                f"[DRY RUN] Would send {self.method} for confirmation {request.confirmation_id}",
                extra={"tenant_id": request.tenant_id, "confirmation_id": request.confirmation_id},
            )
            return DeliveryResult(success=True, delivery_status=DeliveryStatus.DRY_RUN)

        client = self.client or get_twilio_client()
        result = client.send_message(
            to=phone,
            body=body,
            whatsapp=self.method == DeliveryMethod.WHATSAPP.value,
        )
        if not result.success:
            return DeliveryResult(
                success=False,
                delivery_status=DeliveryStatus.FAILED,
                error=result.error_message or result.status,
            )
        return DeliveryResult(
            success=True,
            delivery_status=DeliveryStatus.SENT,
            external_id=result.sid,
        )


def get_delivery_channel(method: Optional[str] = None) -> DeliveryChannel:
    """Channel for a delivery method; defaults to DEFAULT_DELIVERY_METHOD."""
    method = (method or SETTINGS.default_delivery_method).lower()
    if method == DeliveryMethod.MANUAL.value:
        return ManualDelivery()
    if method in (DeliveryMethod.WHATSAPP.value, DeliveryMethod.SMS.value):
        return TwilioDelivery(method=method)
    raise ValueError(f"Unknown delivery method: {method}")


__all__ = [
    "DeliveryChannel",
    "DeliveryRequest",
    "DeliveryResult",
    "DeliveryStatus",
    "ManualDelivery",
    "TwilioDelivery",
    "get_delivery_channel",
]
