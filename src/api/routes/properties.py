"""Admin routes acting on a single property's confirmations."""
from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from api.auth_deps import StaffPrincipal, require_tenant_access
from api.deps import get_db, get_readonly_db
from core.logging_config import get_logger
from domain.submission import SubmissionProcessor
from services.activity_log import ActivityLogService
from services.tokens import ConfirmationTokenService

router = APIRouter()
LOGGER = get_logger(__name__)


# =============================================================================
# Pydantic Models
# =============================================================================


class OperatorConfirmationRequest(BaseModel):
    """Staff confirmation of status and/or price."""

    confirm_status: Optional[str] = Field(None, description="available or unavailable")
    confirm_price_amount: Optional[float] = Field(None, description="Confirmed price")
    reason: Optional[str] = Field(None, max_length=500, description="Why staff confirmed directly")


class ConfirmationLinkRequest(BaseModel):
    """Request body for an ad hoc owner confirmation link."""

    delivery_hint: Optional[str] = Field(None, description="How the link will reach the owner")
    owner_id: Optional[int] = Field(None, description="Defaults to the property's owner")


# =============================================================================
# Routes
# =============================================================================


@router.patch("/{property_id}/confirmations")
async def confirm_property(
    tenant_id: str,
    property_id: int,
    request: OperatorConfirmationRequest,
    staff: StaffPrincipal = Depends(require_tenant_access),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """Confirm a property's status and/or price on the owner's behalf."""
    result = SubmissionProcessor(db).operator_confirm(
        tenant_id,
        property_id,
        confirm_status=request.confirm_status,
        confirm_price_amount=request.confirm_price_amount,
        reason=request.reason,
        actor_id=staff.user_id,
    )
    return {"success": True, "data": result.to_dict()}


@router.post("/{property_id}/owner-confirmation-link")
async def create_owner_confirmation_link(
    tenant_id: str,
    property_id: int,
    request: Optional[ConfirmationLinkRequest] = None,
    staff: StaffPrincipal = Depends(require_tenant_access),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """Issue a one-off confirmation link outside the monthly cycle."""
    request = request or ConfirmationLinkRequest()
    issued = ConfirmationTokenService(db).issue_link_for_property(
        tenant_id,
        property_id,
        owner_id=request.owner_id,
        delivery_hint=request.delivery_hint,
        actor_id=staff.user_id,
    )
    return {
        "confirmation_url": issued.confirmation_url,
        "expires_at": issued.expires_at.isoformat(),
    }


@router.get("/{property_id}/activity")
async def get_property_activity(
    tenant_id: str,
    property_id: int,
    limit: int = Query(default=50, ge=1, le=200),
    staff: StaffPrincipal = Depends(require_tenant_access),
    db: Session = Depends(get_readonly_db),
) -> Dict[str, Any]:
    """Confirmation history of a property, newest first."""
    entries = ActivityLogService(db).get_property_activity(tenant_id, property_id, limit=limit)
    return {
        "data": [
            {
                "event_type": e.event_type,
                "actor_type": e.actor_type,
                "actor_id": e.actor_id,
                "title": e.title,
                "metadata": e.event_metadata,
                "created_at": e.created_at.isoformat() if e.created_at else None,
            }
            for e in entries
        ],
        "count": len(entries),
    }
