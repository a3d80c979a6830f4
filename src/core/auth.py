"""Staff authentication: HS256 JWT bearer tokens.

Tokens are minted by the identity service; this module only needs to verify
them. ``create_access_token`` exists for the CLI and tests.

Uses a pure-Python HMAC-SHA256 JWT implementation. HS256 only needs stdlib's
hmac module.
"""
from __future__ import annotations

import base64
import hashlib
import hmac
import json
import time
from datetime import timedelta
from typing import Optional

from core.config import get_settings
from core.utils import utcnow

SETTINGS = get_settings()

# Role that may act on any tenant
SUPERADMIN_ROLE = "superadmin"
STAFF_ROLES = {"superadmin", "admin", "broker", "staff"}


# ---------------------------------------------------------------------------
# Pure-Python HS256 JWT
# ---------------------------------------------------------------------------

def _b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode()


def _b64url_decode(s: str) -> bytes:
    padding = 4 - len(s) % 4
    if padding != 4:
        s += "=" * padding
    return base64.urlsafe_b64decode(s)


def _jwt_encode(payload: dict, secret: str) -> str:
    header = {"alg": "HS256", "typ": "JWT"}
    segments = [
        _b64url_encode(json.dumps(header, separators=(",", ":")).encode()),
        _b64url_encode(json.dumps(payload, separators=(",", ":"), default=str).encode()),
    ]
    signing_input = f"{segments[0]}.{segments[1]}"
    sig = hmac.new(secret.encode(), signing_input.encode(), hashlib.sha256).digest()
    segments.append(_b64url_encode(sig))
    return ".".join(segments)


def _jwt_decode(token: str, secret: str) -> Optional[dict]:
    parts = token.split(".")
    if len(parts) != 3:
        return None

    try:
        signing_input = f"{parts[0]}.{parts[1]}"
        expected_sig = hmac.new(secret.encode(), signing_input.encode(), hashlib.sha256).digest()
        if not hmac.compare_digest(expected_sig, _b64url_decode(parts[2])):
            return None
        payload = json.loads(_b64url_decode(parts[1]))
    except (ValueError, TypeError):
        # binascii.Error and JSONDecodeError are both ValueErrors
        return None

    if not isinstance(payload, dict):
        return None

    exp = payload.get("exp")
    if isinstance(exp, (int, float)) and exp < time.time():
        return None

    return payload


# ---------------------------------------------------------------------------
# Token Creation/Decoding
# ---------------------------------------------------------------------------

def create_access_token(
    user_id: str,
    tenant_id: Optional[str],
    role: str = "admin",
    expires_minutes: Optional[int] = None,
) -> str:
    """Create a staff JWT access token scoped to a tenant."""
    expire = utcnow() + timedelta(
        minutes=expires_minutes or SETTINGS.jwt_access_token_expire_minutes
    )
    payload = {
        "sub": str(user_id),
        "tenant_id": tenant_id,
        "role": role,
        "exp": int(expire.timestamp()),
        "type": "access",
    }
    return _jwt_encode(payload, SETTINGS.jwt_secret_key)


def decode_access_token(token: str) -> Optional[dict]:
    """
    Decode and validate a JWT access token.

    Returns:
        Token payload dict, or None if invalid/expired.
    """
    payload = _jwt_decode(token, SETTINGS.jwt_secret_key)
    if payload is None:
        return None
    if payload.get("type") != "access" or not payload.get("sub"):
        return None
    return payload
