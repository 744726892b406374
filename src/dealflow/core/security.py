"""JWT issuing and verification.

Tokens are HS256-signed and carry the caller identity the workflow needs:
- sub: user id (str)
- role: admin | legal | partner | client
- email: user e-mail
- partner: partner slug, only for partner users
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from fastapi import HTTPException, status
from jose import JWTError, jwt

from src.dealflow.config import get_settings

logger = logging.getLogger(__name__)

# ── JWT Token Creation ────────────────────────────────────────────────────────


def create_access_token(data: dict, expires_delta: timedelta | None = None) -> str:
    """Create a JWT access token with caller claims.

    The data dict should contain at minimum:
    - sub: user_id (str)
    - role: caller role (str)
    """
    settings = get_settings()
    to_encode = data.copy()
    now = datetime.now(timezone.utc)
    expire = now + (expires_delta or timedelta(minutes=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({
        "exp": expire,
        "iat": now,
        "type": "access",
    })
    return jwt.encode(to_encode, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


# ── JWT Token Verification ────────────────────────────────────────────────────


def verify_token(token: str) -> dict:
    """Decode and validate an access token.

    Returns:
        The decoded payload dict.

    Raises:
        HTTPException(401): If the token is invalid, expired, not an access
            token, or lacks a subject or role.
    """
    settings = get_settings()
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET_KEY,
            algorithms=[settings.JWT_ALGORITHM],
        )
    except JWTError as exc:
        logger.debug("Rejected token: %s", exc)
        raise credentials_exception
    if payload.get("type") != "access":
        raise credentials_exception
    if not payload.get("sub") or not payload.get("role"):
        raise credentials_exception
    return payload
