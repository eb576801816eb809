"""
Requester identity for the mock-exam routes.

Tokens are issued by the hosted auth service; this module only verifies them.
When a request carries no token and the fallback is enabled, the configured
test identity is used instead.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional
import logging

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from pydantic import BaseModel

from studify.errors import AuthenticationError
from studify.settings import settings

logger = logging.getLogger(__name__)

# HTTP Bearer token scheme
security = HTTPBearer(auto_error=False)


class CurrentUser(BaseModel):
    """The identity every attempt read and write is scoped to."""
    user_id: str
    email: Optional[str] = None
    role: Optional[str] = None
    is_fallback: bool = False


def create_access_token(
    user_id: str,
    email: Optional[str] = None,
    role: str = "authenticated",
    expires_delta: Optional[timedelta] = None,
) -> str:
    """
    Create a signed access token shaped like the ones the auth service issues.

    Used by local tooling and tests; production tokens come from the hosted service.
    """
    now = datetime.now(timezone.utc)
    expire = now + (expires_delta or timedelta(hours=1))

    payload = {"sub": user_id, "role": role, "exp": expire, "iat": now}
    if email:
        payload["email"] = email
    if settings.jwt_audience:
        payload["aud"] = settings.jwt_audience

    return jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def verify_token(token: str) -> Optional[CurrentUser]:
    """
    Verify and decode a bearer token.

    Returns:
        CurrentUser if the token is valid, None otherwise
    """
    options = {} if settings.jwt_audience else {"verify_aud": False}
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret_key,
            algorithms=[settings.jwt_algorithm],
            audience=settings.jwt_audience,
            options=options,
        )
    except JWTError as e:
        logger.warning(f"Token verification failed: {str(e)}")
        return None

    user_id = payload.get("sub") or payload.get("user_id")
    if not user_id:
        logger.warning("Token has no subject")
        return None

    return CurrentUser(user_id=str(user_id), email=payload.get("email"), role=payload.get("role"))


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> CurrentUser:
    """
    Dependency resolving the requester.

    Raises:
        AuthenticationError: token invalid, or missing while the fallback is disabled
    """
    if credentials is None:
        if settings.auth_fallback_enabled:
            return CurrentUser(user_id=settings.auth_fallback_user_id, is_fallback=True)
        raise AuthenticationError("Authentication required. Please provide a valid token.")

    user = verify_token(credentials.credentials)
    if user is None:
        raise AuthenticationError("Invalid or expired token")
    return user
