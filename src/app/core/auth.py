"""
Authentication and Authorization Module

Provides the authenticated actor for FastAPI endpoints.
Tokens are issued by the identity service and carry the actor's role and
the id of the entity the actor acts for (their student, college or depot
record). The workflow never looks up sessions itself: the Actor built here
is passed explicitly into every service call.

SECURITY NOTE:
- Development mode auth bypass is ONLY enabled when PYTHON_ENV=development
- Production environments MUST set PYTHON_ENV=production to disable test tokens
"""

import enum
import logging
import os
from collections.abc import Callable, Coroutine
from dataclasses import dataclass
from typing import Any
from uuid import UUID

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.core.config import settings
from app.core.security import decode_token

logger = logging.getLogger(__name__)

# Security scheme for OpenAPI documentation
security = HTTPBearer(
    auto_error=True,
    description="JWT Bearer token for authentication",
)


class ActorRole(str, enum.Enum):
    """Roles that take part in the concession workflow."""

    STUDENT = "student"
    COLLEGE = "college"
    DEPOT = "depot"


@dataclass(frozen=True)
class Actor:
    """
    An authenticated workflow participant.

    Attributes:
        id: The user's unique identifier ('sub' claim)
        role: Workflow role of the user
        scope_id: Id of the student, college or depot the user acts for
        name: Display name (optional)
        email: Contact email (optional)
        phone: Contact phone (optional)
        college_id: For students, the college they are enrolled at
    """

    id: UUID
    role: ActorRole
    scope_id: UUID
    name: str | None = None
    email: str | None = None
    phone: str | None = None
    college_id: UUID | None = None

    def __str__(self) -> str:
        return f"Actor(id={self.id}, role={self.role.value}, scope_id={self.scope_id})"


def _is_dev_mode_safe() -> bool:
    """
    Check if development mode is safe to enable.

    Requires PYTHON_ENV=development in settings and refuses if the raw
    environment variable says production or staging.
    """
    env_var = os.getenv("PYTHON_ENV", "").lower()

    is_safe = (
        settings.is_development
        and not settings.is_production
        and env_var != "production"
        and env_var != "staging"
    )

    if is_safe:
        logger.warning(
            "SECURITY: Development auth mode is ENABLED. This MUST NOT be used in production!"
        )

    return is_safe


# Development mode flag - allows "dev:<role>:<scope_id>" tokens for LOCAL testing ONLY
_DEVELOPMENT_MODE = _is_dev_mode_safe()

_DEV_TOKEN_PREFIX = "dev:"


def _invalid_token(error: str, message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"error": error, "message": message},
        headers={"WWW-Authenticate": "Bearer"},
    )


def _parse_dev_token(token: str) -> Actor:
    """
    Build an actor from a development token.

    Format: dev:<role>:<scope_id>[:<college_id>]. The scope id doubles as
    the user id.
    """
    parts = token[len(_DEV_TOKEN_PREFIX) :].split(":")
    try:
        role = ActorRole(parts[0])
        scope_id = UUID(parts[1])
        college_id = UUID(parts[2]) if len(parts) > 2 else None
    except (IndexError, ValueError) as e:
        raise _invalid_token(
            "INVALID_TOKEN", "Malformed development token. Use dev:<role>:<scope_id>."
        ) from e

    return Actor(
        id=scope_id,
        role=role,
        scope_id=scope_id,
        name=f"Dev {role.value.title()}",
        email=f"{role.value}-{str(scope_id)[:8]}@concessions.dev",
        college_id=college_id,
    )


def actor_from_claims(payload: dict[str, Any]) -> Actor:
    """
    Convert verified token claims into an Actor.

    Raises:
        HTTPException 401: If required claims are missing or malformed
    """
    token_type = payload.get("type", "access")
    if token_type != "access":
        logger.warning(f"Invalid token type: {token_type}")
        raise _invalid_token("INVALID_TOKEN_TYPE", "This endpoint requires an access token.")

    try:
        user_id_str = payload.get("sub")
        if not user_id_str:
            raise ValueError("Missing 'sub' claim in token")
        scope_id_str = payload.get("scope_id")
        if not scope_id_str:
            raise ValueError("Missing 'scope_id' claim in token")

        college_id = payload.get("college_id")
        return Actor(
            id=UUID(user_id_str),
            role=ActorRole(payload.get("role", "")),
            scope_id=UUID(scope_id_str),
            name=payload.get("name"),
            email=payload.get("email"),
            phone=payload.get("phone"),
            college_id=UUID(college_id) if college_id else None,
        )
    except (ValueError, KeyError) as e:
        logger.warning(f"Invalid token claims: {e}")
        raise _invalid_token(
            "INVALID_TOKEN_CLAIMS", "Token contains invalid or missing claims."
        ) from e


async def _validate_jwt_token(token: str) -> Actor:
    if _DEVELOPMENT_MODE and token.startswith(_DEV_TOKEN_PREFIX):
        logger.debug("Development mode: Using dev token")
        return _parse_dev_token(token)

    payload = decode_token(token)

    if payload is None:
        logger.warning("Invalid or expired JWT token")
        raise _invalid_token("INVALID_TOKEN", "Invalid or expired authentication token.")

    return actor_from_claims(payload)


async def get_current_actor(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> Actor:
    """
    FastAPI dependency that validates the bearer token and returns the actor.

    Usage:
        @router.get("/applications")
        async def list_applications(actor: Actor = Depends(get_current_actor)):
            ...

    Raises:
        HTTPException 401: If token is missing, invalid, or expired
    """
    actor = await _validate_jwt_token(credentials.credentials)
    logger.debug(f"Authenticated {actor}")
    return actor


def require_roles(
    *roles: ActorRole,
) -> Callable[..., Coroutine[Any, Any, Actor]]:
    """
    Build a dependency that only admits actors with one of the given roles.

    Raises:
        HTTPException 403: If the actor's role is not allowed
    """

    async def _dependency(actor: Actor = Depends(get_current_actor)) -> Actor:
        if actor.role not in roles:
            logger.warning(
                f"Access denied: {actor} is not one of {[role.value for role in roles]}"
            )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail={
                    "error": "ROLE_NOT_ALLOWED",
                    "message": "Your role cannot perform this action.",
                },
            )
        return actor

    return _dependency


__all__ = [
    "Actor",
    "ActorRole",
    "actor_from_claims",
    "get_current_actor",
    "require_roles",
]
