"""Authentication dependency for FastAPI routes.

Bearer tokens are Supabase JWTs. Verification is delegated to the Supabase
auth API; this module only turns the verified user into an ``AuthContext``.
"""

import asyncio
from typing import Optional
from uuid import UUID

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from tutor_engine.core.errors import AuthError
from tutor_engine.core.logging import get_logger
from tutor_engine.db.supabase_client import get_supabase

logger = get_logger(__name__)

# HTTP Bearer scheme for Authorization header
security = HTTPBearer(auto_error=False)


class AuthContext:
    """Context object containing authenticated user info."""

    def __init__(self, user_id: UUID, token: str, email: Optional[str] = None):
        self.user_id = user_id
        self.token = token
        self.email = email


def _verify_token(token: str) -> Optional[AuthContext]:
    """Ask Supabase to verify the token. None when it is rejected."""
    client = get_supabase()
    try:
        auth_response = client.auth.get_user(token)
    except Exception as e:
        logger.warning(f"Auth error: {e}")
        return None

    if not auth_response or not auth_response.user:
        return None

    return AuthContext(
        user_id=UUID(str(auth_response.user.id)),
        token=token,
        email=getattr(auth_response.user, "email", None),
    )


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> Optional[AuthContext]:
    """Resolve the bearer token, or None if absent or invalid."""
    if not credentials:
        return None
    return await asyncio.to_thread(_verify_token, credentials.credentials)


async def require_auth(
    auth: Optional[AuthContext] = Depends(get_current_user),
) -> AuthContext:
    """Require authentication. Raises 401 if not authenticated."""
    if not auth:
        raise AuthError("Not authorized, token missing or invalid")
    return auth
