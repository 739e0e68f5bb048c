"""
Session guard for FastAPI.
Resolves the bearer session ID to the identity it was issued for.
"""

from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from profile_sync.core.config import settings
from profile_sync.core.logging import get_logger
from profile_sync.infrastructure.cache import get_redis_client

logger = get_logger(__name__)

# Security scheme for session ID
security = HTTPBearer(auto_error=False)


class AuthenticatedUser:
    """Authenticated session data."""

    def __init__(self, user_id: str, wallet_address: Optional[str] = None):
        self.user_id = user_id
        self.wallet_address = wallet_address


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> AuthenticatedUser:
    """
    Look the session up in Redis.

    Sessions are issued elsewhere and stored as
    {"identity_id": ..., "wallet_address": ...} under SESSION_KEY_PREFIX + session ID.
    """
    if not credentials or not credentials.credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Session ID missing",
        )

    redis_client = await get_redis_client()
    session = await redis_client.get(f"{settings.SESSION_KEY_PREFIX}{credentials.credentials}")

    if not isinstance(session, dict) or not session.get("identity_id"):
        logger.warning("Rejected unknown or malformed session")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired session",
        )

    return AuthenticatedUser(
        user_id=str(session["identity_id"]),
        wallet_address=session.get("wallet_address"),
    )
