"""
Security Utilities

JWT encoding and decoding for actor access tokens. Tokens are issued by the
identity service; this API only needs to verify them (creation is kept for
tooling and tests).
"""

import logging
from datetime import UTC, datetime, timedelta
from typing import Any

import jwt

from app.core.config import settings

logger = logging.getLogger(__name__)


def create_access_token(
    subject: str,
    claims: dict[str, Any] | None = None,
    expires_delta: timedelta | None = None,
) -> str:
    """
    Create a signed access token.

    Args:
        subject: Value of the 'sub' claim (the actor's user id)
        claims: Additional claims (role, scope_id, name, email, ...)
        expires_delta: Token lifetime, defaults to the configured value

    Returns:
        Encoded JWT string
    """
    now = datetime.now(UTC)
    expire = now + (expires_delta or timedelta(minutes=settings.access_token_expire_minutes))
    payload: dict[str, Any] = {
        **(claims or {}),
        "sub": subject,
        "type": "access",
        "iat": now,
        "exp": expire,
    }
    return jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_token(token: str) -> dict[str, Any] | None:
    """
    Decode and verify a JWT.

    Returns:
        The token payload, or None if the signature, algorithm or
        expiry check fails.
    """
    try:
        return jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except jwt.ExpiredSignatureError:
        logger.debug("Token expired")
        return None
    except jwt.InvalidTokenError as e:
        logger.debug(f"Token rejected: {e}")
        return None
