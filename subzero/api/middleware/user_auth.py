"""
User authentication for the SubZero API.

Verifies Google OAuth access tokens sent as "Authorization: Bearer <token>"
and resolves the SubZero user (the Google account id).
"""

from __future__ import annotations

import os
from dataclasses import dataclass

import httpx
from cachetools import TTLCache
from fastapi import HTTPException, Request, status

from subzero.infrastructure.settings import is_production
from subzero.observability.logging import get_logger
from subzero.observability.telemetry import counter

logger = get_logger(__name__)

GOOGLE_TOKEN_INFO_URL = "https://oauth2.googleapis.com/tokeninfo"
GOOGLE_USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"

_CACHE_MAX_SIZE = 1000
# Shorter than Google's 1 hour token lifetime so revoked tokens age out
_CACHE_TTL_SECONDS = 600


@dataclass
class AuthenticatedUser:
    """The signed-in SubZero user."""

    id: str
    email: str
    name: str | None = None

    def __str__(self) -> str:
        return f"User({self.id})"


_token_cache: TTLCache[str, AuthenticatedUser] = TTLCache(
    maxsize=_CACHE_MAX_SIZE, ttl=_CACHE_TTL_SECONDS
)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def verify_google_token(token: str) -> AuthenticatedUser:
    """
    Verify a Google OAuth token and return the user behind it.

    Raises:
        HTTPException: 401 for invalid/expired tokens, 503 if Google is unreachable
    """
    if token in _token_cache:
        return _token_cache[token]

    async with httpx.AsyncClient() as client:
        try:
            token_response = await client.get(
                GOOGLE_TOKEN_INFO_URL,
                params={"access_token": token},
                timeout=10.0,
            )
        except httpx.RequestError as e:
            logger.error("Token validation request failed: %s", type(e).__name__)
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Authentication service unavailable",
            ) from e

        if token_response.status_code != 200:
            counter("auth.invalid_token")
            raise _unauthorized("Invalid or expired token")

        token_info = token_response.json()

        expected_client_id = os.getenv("GOOGLE_CLIENT_ID")
        if not expected_client_id and is_production():
            logger.error("GOOGLE_CLIENT_ID not configured in production")
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="Server misconfiguration: OAuth client ID not set",
            )

        if expected_client_id:
            # Exact match; a substring match would accept other apps' tokens
            if token_info.get("aud", "") != expected_client_id:
                counter("auth.audience_mismatch")
                raise _unauthorized("Token not issued for this application")
        else:
            logger.warning("GOOGLE_CLIENT_ID not set - skipping audience validation")

        try:
            userinfo_response = await client.get(
                GOOGLE_USERINFO_URL,
                headers={"Authorization": f"Bearer {token}"},
                timeout=10.0,
            )
        except httpx.RequestError as e:
            logger.error("Failed to get user info: %s", type(e).__name__)
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Failed to retrieve user information",
            ) from e

        if userinfo_response.status_code != 200:
            raise _unauthorized("Failed to retrieve user information")

        userinfo = userinfo_response.json()

    user = AuthenticatedUser(
        id=userinfo["id"],
        email=userinfo.get("email", ""),
        name=userinfo.get("name"),
    )
    _token_cache[token] = user
    logger.info("Authenticated %s (cache size: %d)", user, len(_token_cache))
    return user


def _extract_bearer_token(authorization: str | None) -> str:
    if not authorization:
        raise _unauthorized("Missing authorization header")

    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise _unauthorized("Invalid authorization header format. Expected: Bearer <token>")

    return parts[1]


async def get_current_user(request: Request) -> AuthenticatedUser:
    """
    FastAPI dependency for the signed-in user.

    Usage:
        @router.get("/endpoint")
        async def endpoint(user: AuthenticatedUser = Depends(get_current_user)):
            ...
    """
    token = _extract_bearer_token(request.headers.get("Authorization"))
    return await verify_google_token(token)


def clear_token_cache() -> None:
    """Clear the token cache. Useful for testing."""
    _token_cache.clear()
