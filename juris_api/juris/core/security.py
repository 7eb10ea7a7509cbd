"""
Bearer token handling for the upstream identity collaborator.

Tokens are minted elsewhere; this service only needs to verify them and read
the caller's user id (``sub``) and tenant claim. ``create_access_token`` exists
for tooling and tests.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from jose import jwt

from juris.core.settings import AppSettings, get_app_settings


# PUBLIC_INTERFACE
def create_access_token(
    subject: str,
    tenant_id: str,
    expires_minutes: Optional[int] = None,
    settings: Optional[AppSettings] = None,
) -> str:
    """Create a signed access token with subject (user id) and tenant claim."""
    settings = settings or get_app_settings()
    now = datetime.now(tz=timezone.utc)
    exp = now + timedelta(minutes=expires_minutes or settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    payload: Dict[str, Any] = {
        "sub": subject,
        "tenant_id": tenant_id,
        "iat": now,
        "exp": exp,
        "type": "access",
    }
    return jwt.encode(payload, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


# PUBLIC_INTERFACE
def decode_token(token: str, settings: Optional[AppSettings] = None) -> Dict[str, Any]:
    """Decode and validate a JWT; raises JWTError if invalid/expired."""
    settings = settings or get_app_settings()
    return jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])

