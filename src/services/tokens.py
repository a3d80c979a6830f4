"""Single-use confirmation tokens for the public owner confirmation page.

The raw token only exists in the confirmation URL. The token table keeps
its SHA-256 hash and every lookup goes through the hash.
"""
from __future__ import annotations

import secrets
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, Final, Optional
from urllib.parse import quote

from sqlalchemy import update
from sqlalchemy.orm import Session

from core.config import get_settings
from core.exceptions import (
    OwnerNotFoundError,
    PropertyNotFoundError,
    TenantMismatchError,
    TokenConsumedError,
    TokenExpiredError,
    TokenNotFoundError,
    TokenRevokedError,
)
from core.logging_config import get_logger
from core.models import (
    ActorType,
    ConfirmationToken,
    Owner,
    Property,
    ScheduledConfirmation,
    ScheduledConfirmationStatus,
)
from core.utils import ensure_aware, hash_token, mask_email, mask_name, mask_phone, utcnow
from services.activity_log import ActivityEventType, ActivityLogService

LOGGER = get_logger(__name__)
SETTINGS = get_settings()

# 32 bytes = 256 bits = 43 URL-safe base64 chars
TOKEN_BYTES: Final[int] = 32

# A token whose confirmation reached one of these no longer opens the page
REVOKING_STATUSES: Final = (
    ScheduledConfirmationStatus.CANCELLED.value,
    ScheduledConfirmationStatus.FAILED.value,
)


# =============================================================================
# Result types
# =============================================================================


@dataclass
class IssuedToken:
    """A freshly issued token. ``token`` is the raw value and is never stored."""

    token_id: int
    token: str
    confirmation_url: str
    expires_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "token_id": self.token_id,
            "confirmation_url": self.confirmation_url,
            "expires_at": self.expires_at.isoformat(),
        }


@dataclass
class PropertySnapshot:
    """Read-only view of a property shown on the confirmation page."""

    property_id: int
    property_type: Optional[str]
    neighborhood: Optional[str]
    city: Optional[str]
    reference: Optional[str]
    current_status: str
    current_price: Optional[float]
    cover_image_url: Optional[str] = None
    broker_name: Optional[str] = None
    broker_photo: Optional[str] = None
    broker_phone: Optional[str] = None

    @classmethod
    def from_property(cls, prop: Property) -> "PropertySnapshot":
        broker = prop.broker
        return cls(
            property_id=prop.id,
            property_type=prop.property_type,
            neighborhood=prop.neighborhood,
            city=prop.city,
            reference=prop.reference,
            current_status=prop.status,
            current_price=prop.price_amount,
            cover_image_url=prop.cover_image_url,
            broker_name=broker.name if broker else None,
            broker_photo=broker.photo_url if broker else None,
            broker_phone=broker.phone if broker else None,
        )


@dataclass
class TokenValidation:
    """Outcome of a successful validate call."""

    token: ConfirmationToken
    property_snapshot: PropertySnapshot
    owner_snapshot: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self.property_snapshot)
        data["owner"] = self.owner_snapshot
        data["expires_at"] = ensure_aware(self.token.expires_at).isoformat()
        return data


def build_owner_snapshot(owner: Owner) -> Dict[str, str]:
    """Masked owner details stored alongside the token."""
    return {
        "name": mask_name(owner.name),
        "phone": mask_phone(owner.phone),
        "email": mask_email(owner.email),
    }


def build_confirmation_url(raw_token: str, tenant_id: str) -> str:
    return f"{SETTINGS.public_base_url}/confirmar/{raw_token}?tenant_id={quote(tenant_id, safe='')}"


# =============================================================================
# Service
# =============================================================================


class ConfirmationTokenService:
    """
    Issues, validates and consumes owner confirmation tokens.

    Validation never mutates the token. Consumption is a single conditional
    UPDATE, so two concurrent submissions cannot both consume it.
    """

    def __init__(self, session: Session):
        self.session = session
        self.activity = ActivityLogService(session)

    def issue(
        self,
        tenant_id: str,
        property_id: int,
        owner_id: int,
        ttl: Optional[timedelta] = None,
        now: Optional[datetime] = None,
        delivery_hint: Optional[str] = None,
        actor_type: str = ActorType.SYSTEM.value,
        actor_id: Optional[str] = None,
    ) -> IssuedToken:
        """
        Create a token bound to (tenant, property, owner).

        Args:
            tenant_id: Tenant owning the property.
            property_id: Property the owner is asked about.
            owner_id: Owner receiving the link.
            ttl: Validity period; defaults to CONFIRMATION_TOKEN_TTL_DAYS.
            now: Issue time (defaults to current UTC time).
            delivery_hint: How the link is expected to reach the owner.
            actor_type: Who requested the link.
            actor_id: Staff user id for ad hoc links.

        Returns:
            IssuedToken with the raw token and its confirmation URL.
        """
        now = now or utcnow()
        ttl = ttl if ttl is not None else timedelta(days=SETTINGS.confirmation_token_ttl_days)
        owner = self.session.get(Owner, owner_id)

        raw_token = secrets.token_urlsafe(TOKEN_BYTES)
        token = ConfirmationToken(
            token_hash=hash_token(raw_token),
            tenant_id=tenant_id,
            property_id=property_id,
            owner_id=owner_id,
            expires_at=now + ttl,
            consumed=False,
            delivery_hint=delivery_hint,
            owner_snapshot=build_owner_snapshot(owner) if owner else None,
            created_by_type=actor_type,
            created_by_id=actor_id,
        )
        self.session.add(token)
        self.session.flush()

        LOGGER.debug(
            f"Issued confirmation token {token.id} for property {property_id}",
            extra={"tenant_id": tenant_id, "property_id": property_id},
        )
        return IssuedToken(
            token_id=token.id,
            token=raw_token,
            confirmation_url=build_confirmation_url(raw_token, tenant_id),
            expires_at=now + ttl,
        )

    def issue_link_for_property(
        self,
        tenant_id: str,
        property_id: int,
        owner_id: Optional[int] = None,
        delivery_hint: Optional[str] = None,
        actor_id: Optional[str] = None,
    ) -> IssuedToken:
        """
        Ad hoc link for a single property outside the monthly cycle.

        Falls back to the property's owner when ``owner_id`` is not given.
        """
        prop = self.session.get(Property, property_id)
        if prop is None or prop.tenant_id != tenant_id:
            raise PropertyNotFoundError(f"Property {property_id} not found")

        owner_id = owner_id or prop.owner_id
        owner = self.session.get(Owner, owner_id) if owner_id else None
        if owner is None or owner.tenant_id != tenant_id:
            raise OwnerNotFoundError(f"Owner not found for property {property_id}")

        issued = self.issue(
            tenant_id,
            property_id,
            owner.id,
            delivery_hint=delivery_hint,
            actor_type=ActorType.USER.value,
            actor_id=actor_id,
        )
        self.activity.add_event(
            tenant_id=tenant_id,
            property_id=property_id,
            event_type=ActivityEventType.CONFIRMATION_LINK_CREATED,
            title="Owner confirmation link created",
            actor_type=ActorType.USER.value,
            actor_id=actor_id,
            metadata={
                "token_id": issued.token_id,
                "owner_id": owner.id,
                "delivery_hint": delivery_hint,
                "expires_at": issued.expires_at.isoformat(),
            },
        )
        return issued

    def _lookup(self, raw_token: str, tenant_id: str, now: datetime) -> ConfirmationToken:
        token = self.session.query(ConfirmationToken).filter(
            ConfirmationToken.token_hash == hash_token(raw_token)
        ).first()

        if token is None:
            raise TokenNotFoundError()
        if token.tenant_id != tenant_id:
            LOGGER.warning(f"Token {token.id} presented for foreign tenant")
            raise TenantMismatchError()
        if now > ensure_aware(token.expires_at):
            raise TokenExpiredError()
        if token.consumed:
            raise TokenConsumedError()
        return token

    def validate(
        self,
        raw_token: str,
        tenant_id: str,
        now: Optional[datetime] = None,
    ) -> TokenValidation:
        """
        Check a presented token without consuming it.

        Raises:
            TokenNotFoundError, TenantMismatchError, TokenExpiredError,
            TokenConsumedError, TokenRevokedError (the confirmation behind it
            was cancelled or failed).
        """
        now = now or utcnow()
        token = self._lookup(raw_token, tenant_id, now)
        withdrawn = (
            self.session.query(ScheduledConfirmation.id)
            .filter(
                ScheduledConfirmation.token_id == token.id,
                ScheduledConfirmation.status.in_(REVOKING_STATUSES),
            )
            .first()
        )
        if withdrawn is not None:
            raise TokenRevokedError()
        prop = self.session.get(Property, token.property_id)
        if prop is None:
            # Property removed after issuance; indistinguishable from a bad link
            raise TokenNotFoundError()

        return TokenValidation(
            token=token,
            property_snapshot=PropertySnapshot.from_property(prop),
            owner_snapshot=token.owner_snapshot or {},
        )

    def consume(
        self,
        token_id: int,
        action: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> None:
        """
        Atomically mark a token as used.

        Raises:
            TokenConsumedError: if another caller consumed it first.
        """
        now = now or utcnow()
        result = self.session.execute(
            update(ConfirmationToken)
            .where(
                ConfirmationToken.id == token_id,
                ConfirmationToken.consumed.is_(False),
            )
            .values(consumed=True, consumed_at=now, last_action=action)
            .execution_options(synchronize_session="fetch")
        )
        if result.rowcount != 1:
            raise TokenConsumedError()
        LOGGER.info(f"Consumed confirmation token {token_id}")


def get_token_service(session: Session) -> ConfirmationTokenService:
    """Get a ConfirmationTokenService instance."""
    return ConfirmationTokenService(session)


__all__ = [
    "ConfirmationTokenService",
    "IssuedToken",
    "PropertySnapshot",
    "TokenValidation",
    "build_confirmation_url",
    "build_owner_snapshot",
    "get_token_service",
]
