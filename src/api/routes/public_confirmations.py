"""Public owner confirmation routes.

These are reached from the link an owner receives and carry no staff
authentication; the token is the credential. Failures never reveal why a
token was rejected beyond its stable error code.
"""
from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from api.deps import get_db, get_readonly_db
from core.exceptions import SubmissionError, SubmissionTimeoutError, TokenError
from core.logging_config import get_logger
from domain.submission import SubmissionProcessor
from services.tokens import ConfirmationTokenService

router = APIRouter()
LOGGER = get_logger(__name__)

INVALID_LINK_MESSAGE = "link invalid or expired"

SUBMISSION_MESSAGES = {
    "InvalidPrice": "A price greater than zero is required",
    "InvalidAction": "Unknown confirmation action",
    "RecordNotInSentState": INVALID_LINK_MESSAGE,
    "SubmissionTimeout": "Please try again in a moment",
}


# =============================================================================
# Pydantic Models
# =============================================================================


class SubmitConfirmationRequest(BaseModel):
    """Owner action posted from the confirmation page."""

    action: str = Field(..., description="confirm_available, confirm_unavailable or confirm_price")
    price_amount: Optional[float] = Field(None, description="New price for confirm_price")


# =============================================================================
# Routes
# =============================================================================


@router.get("/confirmar/{token}")
async def validate_confirmation_link(
    token: str,
    tenant_id: str = Query(..., description="Tenant from the confirmation URL"),
    db: Session = Depends(get_readonly_db),
) -> Any:
    """Check a confirmation link and describe the property. Does not use up the link."""
    try:
        validation = ConfirmationTokenService(db).validate(token, tenant_id)
    except TokenError as e:
        LOGGER.info(f"Rejected confirmation link: {e.code}", extra={"tenant_id": tenant_id})
        return JSONResponse(
            status_code=404,
            content={"valid": False, "error": e.code, "message": INVALID_LINK_MESSAGE},
        )
    return {"valid": True, **validation.to_dict()}


@router.post("/owner-confirmations/{token}/submit")
async def submit_owner_confirmation(
    token: str,
    request: SubmitConfirmationRequest,
    tenant_id: str = Query(..., description="Tenant from the confirmation URL"),
    db: Session = Depends(get_db),
) -> Any:
    """Apply the owner's answer. The link cannot be used again afterwards."""
    try:
        result = SubmissionProcessor(db).submit(
            token,
            tenant_id,
            request.action,
            price_amount=request.price_amount,
        )
    except TokenError as e:
        LOGGER.info(f"Rejected owner submission: {e.code}", extra={"tenant_id": tenant_id})
        return JSONResponse(
            status_code=400,
            content={"success": False, "error": e.code, "message": INVALID_LINK_MESSAGE},
        )
    except SubmissionError as e:
        LOGGER.info(f"Rejected owner submission: {e.code}", extra={"tenant_id": tenant_id})
        return JSONResponse(
            status_code=503 if isinstance(e, SubmissionTimeoutError) else 400,
            content={
                "success": False,
                "error": e.code,
                "message": SUBMISSION_MESSAGES.get(e.code, INVALID_LINK_MESSAGE),
            },
        )

    data: Dict[str, Any] = {
        "action": result.action,
        "response": result.response,
        "confirmed_at": result.confirmed_at.isoformat(),
    }
    return {"success": True, "data": data}
