"""
Core infrastructure shared by the workflow modules: settings, database
session, Redis, access tokens and the authenticated actor.
"""

from app.core.auth import Actor, ActorRole, get_current_actor, require_roles
from app.core.config import get_settings, settings
from app.core.database import Base, get_db
from app.core.security import create_access_token, decode_token

__all__ = [
    # Config
    "settings",
    "get_settings",
    # Database
    "Base",
    "get_db",
    # Actors
    "Actor",
    "ActorRole",
    "get_current_actor",
    "require_roles",
    # Tokens
    "create_access_token",
    "decode_token",
]
