from __future__ import annotations

import hmac
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from fastapi import HTTPException, status
from fastapi.security import HTTPBearer
from jose import JWTError, jwt

from app.core.config import settings

bearer_scheme = HTTPBearer(auto_error=True)

# Batch triggers also accept the cron secret, so a missing token is not an error there.
optional_bearer_scheme = HTTPBearer(auto_error=False)


def _unauthorized(detail: str = "Invalid token") -> HTTPException:
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)


def _normalize_token(token: Optional[str]) -> str:
    """Strip whitespace, surrounding quotes and a pasted 'Bearer ' prefix."""
    if token is None:
        return ""

    t = token.strip()
    if len(t) >= 2 and t[0] == t[-1] and t[0] in ("'", '"'):
        t = t[1:-1].strip()
    if t.lower().startswith("bearer "):
        t = t[7:].strip()
    return t


def create_access_token(subject: str | uuid.UUID, expires_minutes: Optional[int] = None) -> str:
    issued = datetime.now(timezone.utc)
    expires = issued + timedelta(minutes=expires_minutes or settings.ACCESS_TOKEN_EXPIRE_MINUTES)

    claims: dict[str, Any] = {
        "sub": str(subject),
        "exp": int(expires.timestamp()),
        "iat": int(issued.timestamp()),
    }
    return jwt.encode(claims, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def decode_access_token(token: str) -> str:
    """Returns the ``sub`` claim; any decoding problem is a 401."""
    token = _normalize_token(token)
    if not token:
        raise _unauthorized()

    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
            options={"require_sub": True, "require_exp": True},
        )
    except JWTError:
        raise _unauthorized()

    sub = payload.get("sub")
    if not sub:
        raise _unauthorized()
    return str(sub)


def user_id_from_token(token: str) -> uuid.UUID:
    """User tokens carry the user's UUID as subject."""
    sub = decode_access_token(token)
    try:
        return uuid.UUID(sub)
    except ValueError:
        raise _unauthorized("Invalid token subject")


def cron_secret_matches(provided: Optional[str]) -> bool:
    """Constant-time check of the X-Cron-Secret header; never matches when no secret is configured."""
    expected = (settings.CRON_SECRET or "").strip()
    if not expected or not provided:
        return False
    return hmac.compare_digest(provided.strip().encode(), expected.encode())
