"""Staff authentication dependencies for the admin routes."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, HTTPException, Path, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from core.auth import STAFF_ROLES, SUPERADMIN_ROLE, decode_access_token
from core.logging_config import get_logger

LOGGER = get_logger(__name__)

security = HTTPBearer(auto_error=False)


@dataclass
class StaffPrincipal:
    """The authenticated staff member behind an admin request."""
    user_id: str
    tenant_id: Optional[str]
    role: str

    @property
    def is_superadmin(self) -> bool:
        return self.role == SUPERADMIN_ROLE


def get_current_staff(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> StaffPrincipal:
    """
    Validate the bearer JWT and return the staff principal.

    Raises 401 if the token is missing, invalid or carries an unknown role.
    """
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )

    payload = decode_access_token(credentials.credentials)
    if payload is None or payload.get("role") not in STAFF_ROLES:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return StaffPrincipal(
        user_id=str(payload["sub"]),
        tenant_id=payload.get("tenant_id"),
        role=payload["role"],
    )


def require_tenant_access(
    tenant_id: str = Path(..., description="Tenant in the request path"),
    staff: StaffPrincipal = Depends(get_current_staff),
) -> StaffPrincipal:
    """Require the staff member to belong to the path tenant (superadmins pass)."""
    if staff.is_superadmin or staff.tenant_id == tenant_id:
        return staff
    LOGGER.warning(
        f"Staff {staff.user_id} denied access to tenant {tenant_id}",
        extra={"tenant_id": tenant_id},
    )
    raise HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail="Access to this tenant is not allowed",
    )


__all__ = ["StaffPrincipal", "get_current_staff", "require_tenant_access", "security"]
