"""Health check routes."""
from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from api.deps import get_readonly_db
from core.config import get_settings
from core.logging_config import get_logger
from core.utils import utcnow

router = APIRouter()
LOGGER = get_logger(__name__)
SETTINGS = get_settings()


@router.get("")
async def health_check() -> Dict[str, Any]:
    """Basic health check - always returns OK."""
    return {
        "status": "healthy",
        "timestamp": utcnow().isoformat(),
        "dry_run": SETTINGS.dry_run,
        "environment": SETTINGS.environment,
    }


@router.get("/detailed")
async def detailed_health_check(
    db: Session = Depends(get_readonly_db),
) -> Dict[str, Any]:
    """Health check including database connectivity and delivery configuration."""
    status = "healthy"
    checks: Dict[str, Any] = {}

    try:
        db.execute(text("SELECT 1"))
        checks["database"] = {"status": "healthy", "connected": True}
    except SQLAlchemyError as e:
        LOGGER.error(f"Database health check failed: {e}")
        status = "unhealthy"
        checks["database"] = {"status": "unhealthy", "error": str(e)}

    checks["delivery"] = {
        "default_method": SETTINGS.default_delivery_method,
        "dry_run": SETTINGS.dry_run,
        "twilio_configured": SETTINGS.is_twilio_enabled(),
        "whatsapp_from": bool(SETTINGS.twilio_whatsapp_from),
        "sms_from": bool(SETTINGS.twilio_from_number),
    }
    checks["scheduler"] = {"tenants": SETTINGS.get_scheduler_tenants()}

    return {
        "status": status,
        "timestamp": utcnow().isoformat(),
        "checks": checks,
    }
