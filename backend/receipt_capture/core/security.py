"""Bearer-token helpers.

The pipeline needs nothing from the caller's identity except an opaque
owner id, used to namespace stored images and to stamp receipt rows.
Tokens are issued elsewhere; this module only verifies them with
``JWT_SECRET`` and reads the ``sub`` claim.  Audience verification is
performed only when ``JWT_AUDIENCE`` is configured.
"""

from __future__ import annotations

from typing import Dict, Optional

from fastapi import HTTPException, Request, status
from jose import JWTError, jwt

from receipt_capture.core.config import settings
from receipt_capture.core.exceptions import NotAuthenticated


def decode_token(token: str) -> Dict:
    """Decode and verify a bearer JWT.

    Raises:
        NotAuthenticated: If the secret is not configured or the token is
            malformed, expired or signed with another key.
    """
    if not settings.JWT_SECRET:
        raise NotAuthenticated("JWT_SECRET is not configured")
    options = {"verify_aud": bool(settings.JWT_AUDIENCE)}
    try:
        return jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
            audience=settings.JWT_AUDIENCE,
            options=options,
        )
    except JWTError as exc:
        raise NotAuthenticated(f"Invalid token: {exc}") from exc


def owner_id_from_token(token: str) -> str:
    payload = decode_token(token)
    sub = payload.get("sub")
    if not sub:
        raise NotAuthenticated("Invalid token: no sub claim")
    return str(sub)


def _bearer(request: Request) -> Optional[str]:
    auth_header = request.headers.get("Authorization")
    if auth_header and auth_header.startswith("Bearer "):
        return auth_header.split(" ", 1)[1].strip() or None
    return None


async def get_owner_id(request: Request) -> str:
    """FastAPI dependency resolving the caller's owner id (401 on failure)."""
    token = _bearer(request)
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing auth token")
    try:
        return owner_id_from_token(token)
    except NotAuthenticated as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=exc.detail) from exc
