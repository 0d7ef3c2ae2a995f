"""
Bearer-token authentication.

Supabase issues HS256 JWTs with audience "authenticated". Each request is
resolved to an AuthenticatedUser whose ``account_id`` is the credit
account it spends from and whose ``role`` gates the admin ledger routes.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from shared.config import get_settings
from shared.models import AuthenticatedUser
from ..models.user import TokenPayload

logger = logging.getLogger(__name__)

JWT_ALGORITHMS = ["HS256"]
JWT_AUDIENCE = "authenticated"

bearer_scheme = HTTPBearer(auto_error=False)


class AuthError(HTTPException):
    """401 carrying the Bearer challenge header."""

    def __init__(self, detail: str):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            headers={"WWW-Authenticate": "Bearer"},
        )


def decode_token(token: str) -> TokenPayload:
    """
    Verify a Supabase access token and return its claims.

    Raises:
        AuthError: If the server has no JWT secret, or the token is
            expired, malformed, for another audience or badly signed
    """
    secret = get_settings().supabase_jwt_secret
    if not secret:
        logger.error("SUPABASE_JWT_SECRET is not set; rejecting all bearer tokens")
        raise AuthError("Server authentication not configured")

    try:
        claims = jwt.decode(token, secret, algorithms=JWT_ALGORITHMS, audience=JWT_AUDIENCE)
    except jwt.ExpiredSignatureError:
        raise AuthError("Token has expired")
    except JWTError as e:
        logger.debug(f"Rejected bearer token: {e}")
        raise AuthError(f"Invalid token: {e}")
    return TokenPayload(**claims)


def get_user_from_payload(payload: TokenPayload) -> AuthenticatedUser:
    """
    Build the request user from verified claims.

    Without an ``account_id`` claim the user spends from an account keyed
    by their own user id.
    """
    return AuthenticatedUser(
        id=payload.sub,
        email=payload.email,
        email_verified=payload.email_confirmed_at is not None,
        account_id=payload.account_id or payload.sub,
        last_sign_in=datetime.fromtimestamp(payload.iat, tz=timezone.utc),
        role=payload.role,
    )


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> AuthenticatedUser:
    """Resolve the caller or fail with 401."""
    if credentials is None:
        raise AuthError("Missing authorization header")
    return get_user_from_payload(decode_token(credentials.credentials))


async def require_admin(
    user: AuthenticatedUser = Depends(get_current_user),
) -> AuthenticatedUser:
    """Resolve the caller and require the admin role (403 otherwise)."""
    if not user.is_admin:
        logger.warning(f"User {user.id} attempted an admin ledger operation")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin privileges required",
        )
    return user
