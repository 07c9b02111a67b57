"""
core/security.py
----------------
JWT principal tokens and secret masking.

Design decisions:
  - The marketplace platform owns user accounts; this service only needs an
    opaque capability check. A signed JWT carries sub (user id), user_type
    and institution_domain so every authorisation decision is made without a
    round-trip to the marketplace.
  - Tokens are signed with HS256; swap to RS256 for multi-service setups.
  - Secrets are masked before any tenant leaves the service.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from jose import jwt

from app.core.config import Settings

MASK = "****"


# ── JWT Utilities ─────────────────────────────────────────────────────────────

def create_access_token(
    settings: Settings,
    subject: str,
    user_type: str,
    institution_domain: Optional[str] = None,
    name: Optional[str] = None,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """
    Mint a JWT access token.

    Args:
        subject: Marketplace user id (stored in 'sub' claim).
        user_type: 'system-admin' | 'educational-admin' | 'student' | ...
        institution_domain: Email domain scoping an educational admin.
        expires_delta: Optional custom expiry; defaults to settings value.

    Returns:
        Signed JWT string.
    """
    now = datetime.now(timezone.utc)
    expire = now + (
        expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    payload: Dict[str, Any] = {
        "sub": subject,
        "user_type": user_type,
        "institution_domain": institution_domain,
        "name": name,
        "exp": expire,
        "iat": now,
    }
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_access_token(settings: Settings, token: str) -> Dict[str, Any]:
    """
    Decode and validate a JWT access token.

    Raises:
        JWTError: If the token is invalid, expired, or tampered with.
    """
    return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])


# ── Secret masking ────────────────────────────────────────────────────────────

def mask_secret(value: Optional[str]) -> Optional[str]:
    """'****' + last four characters; values of four or fewer become '****'."""
    if not value:
        return value
    if len(value) > 4:
        return MASK + value[-4:]
    return MASK
