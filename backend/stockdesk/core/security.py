"""
security.py — Access Token Verification

Purpose:
- Verify the Supabase access token sent by the frontend as
  `Authorization: Bearer <token>`.
- Expose the authenticated user's id to endpoints so every query can be
  scoped to the rows that user owns.

Key Constraints:
- Sign-up, login, refresh and logout are handled by Supabase Auth, not here.
- Tokens are HS256 JWTs signed with the project's JWT secret.

This module does NOT:
- Issue tokens or store passwords.
- Query the database.
"""

from typing import Any, Dict, Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from stockdesk.core.config import settings
from stockdesk.core.logging import get_logger

logger = get_logger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


# -----------------------------------------------------------------------------
# JWT Token Handling
# -----------------------------------------------------------------------------

def decode_token(token: str) -> Optional[Dict[str, Any]]:
    """
    Decode and validate a Supabase access token.
    Returns the payload dict if valid, None if invalid.
    """
    if not settings.SUPABASE_JWT_SECRET:
        logger.error("SUPABASE_JWT_SECRET is not configured; rejecting token")
        return None
    try:
        return jwt.decode(
            token,
            settings.SUPABASE_JWT_SECRET,
            algorithms=["HS256"],
            audience=settings.SUPABASE_JWT_AUDIENCE,
        )
    except JWTError as exc:
        logger.warning("Rejected access token: %s", exc)
        return None


# -----------------------------------------------------------------------------
# Current User Dependency
# -----------------------------------------------------------------------------

def get_current_user_id(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> str:
    """
    Extract the authenticated user id (`sub` claim) from the bearer token.

    Raises:
        HTTPException(401): header missing, token invalid or without `sub`.
    """
    if credentials is None or not credentials.credentials:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")

    payload = decode_token(credentials.credentials)
    if not payload or not payload.get("sub"):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")

    return str(payload["sub"])
