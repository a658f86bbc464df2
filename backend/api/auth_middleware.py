"""
Authentication middleware for JWT verification.

This module provides secure authentication by:
1. Extracting and verifying Supabase JWT tokens from Authorization headers
2. Returning a verified AuthContext that routes can trust

SECURITY: Never trust user_id from client query parameters or request bodies.
Always use the AuthContext returned by these dependencies.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional
from uuid import UUID

import httpx
from fastapi import Header, HTTPException, status
from jose import JWTError, jwt

from config import settings

logger = logging.getLogger(__name__)

# Cache for JWKS public keys
_jwks_cache: dict | None = None


@dataclass
class AuthContext:
    """
    Verified authentication context.

    All values come from a cryptographically verified JWT. Routes should
    ONLY use these values, never client-provided parameters.
    """
    user_id: UUID
    email: str = ""

    @property
    def user_id_str(self) -> str:
        """String representation of user_id for APIs that need strings."""
        return str(self.user_id)


def _extract_token(authorization: Optional[str]) -> str:
    """
    Extract the JWT token from the Authorization header.

    Args:
        authorization: The Authorization header value (e.g., "Bearer <token>")

    Returns:
        The extracted token string

    Raises:
        HTTPException: If header is missing or malformed
    """
    if not authorization:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing Authorization header",
            headers={"WWW-Authenticate": "Bearer"},
        )

    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid Authorization header format. Expected: Bearer <token>",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return parts[1]


async def _get_jwks() -> dict:
    """Fetch and cache the JWKS (JSON Web Key Set) from Supabase."""
    global _jwks_cache

    if _jwks_cache is not None:
        return _jwks_cache

    supabase_url = settings.SUPABASE_URL
    if not supabase_url:
        logger.error("SUPABASE_URL not configured")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Authentication not configured",
        )

    jwks_url = f"{supabase_url}/auth/v1/.well-known/jwks.json"

    try:
        async with httpx.AsyncClient() as client:
            response = await client.get(jwks_url)
            response.raise_for_status()
            _jwks_cache = response.json()
            logger.info("Fetched JWKS from %s", jwks_url)
            return _jwks_cache
    except httpx.HTTPError as e:
        logger.error("Failed to fetch JWKS from %s: %s", jwks_url, e)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to fetch authentication keys",
        )


def _get_signing_key(jwks: dict, token: str) -> dict:
    """Find the signing key in the JWKS matching the token's kid header."""
    try:
        unverified_header = jwt.get_unverified_header(token)
    except JWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token header",
            headers={"WWW-Authenticate": "Bearer"},
        )

    kid = unverified_header.get("kid")
    if not kid:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token missing key ID",
            headers={"WWW-Authenticate": "Bearer"},
        )

    for key in jwks.get("keys", []):
        if key.get("kid") == kid:
            return key

    # Key not found - clear cache and fail
    global _jwks_cache
    _jwks_cache = None
    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Token signed with unknown key",
        headers={"WWW-Authenticate": "Bearer"},
    )


async def _verify_jwt(token: str) -> dict:
    """
    Verify the JWT token and return the payload.

    Supports both:
    - ES256 (ECC P-256) - new Supabase default, uses JWKS
    - HS256 (symmetric) - legacy Supabase, uses shared secret

    Raises:
        HTTPException: If token is invalid or expired
    """
    try:
        unverified_header = jwt.get_unverified_header(token)
        alg = unverified_header.get("alg", "HS256")
    except JWTError as e:
        logger.warning("Failed to decode token header: %s", e)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token format",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        if alg == "ES256":
            jwks = await _get_jwks()
            signing_key = _get_signing_key(jwks, token)
            return jwt.decode(
                token,
                signing_key,
                algorithms=["ES256"],
                options={"verify_aud": False},  # Supabase sets aud to "authenticated"
            )

        if not settings.SUPABASE_JWT_SECRET:
            logger.error("SUPABASE_JWT_SECRET not configured for HS256 token")
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="Authentication not configured",
            )
        return jwt.decode(
            token,
            settings.SUPABASE_JWT_SECRET,
            algorithms=["HS256"],
            options={"verify_aud": False},
        )
    except JWTError as e:
        logger.warning("JWT verification failed: %s", e)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )


def _context_from_payload(payload: dict) -> AuthContext:
    sub = payload.get("sub")
    if not sub:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token: missing subject",
        )
    try:
        user_uuid = UUID(sub)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token: malformed subject",
        )
    return AuthContext(user_id=user_uuid, email=payload.get("email") or "")


async def get_current_auth(
    authorization: Optional[str] = Header(None, alias="Authorization"),
) -> AuthContext:
    """
    FastAPI dependency that verifies the JWT and returns AuthContext.

    Usage:
        @router.get("/protected")
        async def protected_route(auth: AuthContext = Depends(get_current_auth)):
            # auth.user_id is verified
            ...
    """
    token = _extract_token(authorization)
    payload = await _verify_jwt(token)
    return _context_from_payload(payload)
