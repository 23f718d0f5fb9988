"""
Security utilities for authentication.

Tokens are issued by the auth service; this API only verifies them to
learn who is calling. Supports both tenant users and platform admins.
"""

from typing import Optional
from jose import JWTError, jwt

from .config import settings


def decode_token(token: str) -> Optional[dict]:
    """Decode and validate JWT token."""
    try:
        payload = jwt.decode(
            token,
            settings.secret_key,
            algorithms=[settings.algorithm]
        )
        return payload
    except JWTError:
        return None


def verify_access_token(token: str) -> Optional[dict]:
    """Verify access token and return payload."""
    payload = decode_token(token)
    if payload and payload.get("type", "access") == "access":
        return payload
    return None


def is_super_admin_token(payload: dict) -> bool:
    """Check if token belongs to a platform admin."""
    return payload.get("is_super_admin", False) is True


def get_user_id(payload: dict) -> Optional[int]:
    """User id from the 'sub' claim, None if missing or malformed."""
    sub = payload.get("sub")
    try:
        return int(sub)
    except (TypeError, ValueError):
        return None
