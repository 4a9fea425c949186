"""
Identity gate: turn an Authorization header into a verified user id.

The user id returned here is the ONLY identity any downstream operation may
act on. Ids supplied in request bodies or query strings are never trusted.

Failure classification (all 401 except provider failure):
- header absent                          -> missing
- header not "Bearer <token>"            -> malformed
- token structurally unparseable         -> invalid
- token past its exp claim               -> expired
- provider rejects the token             -> expired | invalid
- provider accepts but has no user       -> unknown_user
- provider unreachable / failing         -> 500 ProviderError
"""

import logging
import time
from dataclasses import dataclass
from typing import Optional, Protocol

import jwt
from fastapi import Depends, Request

from cortex.platform.errors import AuthenticationError, AuthErrorKind, ProviderError
from cortex.platform.supabase_client import (
    IdentityProviderError,
    ProviderUser,
    TokenRejectedError,
    get_identity_client,
)

logger = logging.getLogger(__name__)

INVALID_TOKEN_MESSAGE = "Token expired or invalid. Please refresh your session."


class IdentityProvider(Protocol):
    def verify_token(self, access_token: str) -> Optional[ProviderUser]: ...


@dataclass(frozen=True)
class AuthenticatedUser:
    """Verified caller identity."""
    id: str
    email: Optional[str] = None


def _extract_bearer(authorization: Optional[str]) -> str:
    if authorization is None or not authorization.strip():
        raise AuthenticationError(
            "Missing authorization header",
            kind=AuthErrorKind.MISSING,
        )

    parts = authorization.strip().split(" ")
    if len(parts) != 2 or parts[0] != "Bearer" or not parts[1]:
        raise AuthenticationError(
            "Authorization header must be 'Bearer <token>'",
            kind=AuthErrorKind.MALFORMED,
        )
    return parts[1]


def _precheck_token(token: str, now: Optional[float] = None) -> None:
    """
    Reject structurally broken or visibly expired tokens before the network call.

    The signature is NOT verified here; the provider does that.
    """
    try:
        jwt.get_unverified_header(token)
        claims = jwt.decode(token, options={"verify_signature": False})
    except jwt.PyJWTError:
        raise AuthenticationError(INVALID_TOKEN_MESSAGE, kind=AuthErrorKind.INVALID)

    exp = claims.get("exp")
    if exp is None:
        return
    try:
        expires_at = float(exp)
    except (TypeError, ValueError):
        raise AuthenticationError(INVALID_TOKEN_MESSAGE, kind=AuthErrorKind.INVALID)

    if expires_at <= (now if now is not None else time.time()):
        raise AuthenticationError(INVALID_TOKEN_MESSAGE, kind=AuthErrorKind.EXPIRED)


def authenticate(authorization: Optional[str], provider: IdentityProvider) -> AuthenticatedUser:
    """
    Verify the bearer credential and return the caller's identity.

    Raises:
        AuthenticationError: 401 with the failure kind in details
        ProviderError: the identity provider could not be reached
    """
    token = _extract_bearer(authorization)
    _precheck_token(token)

    try:
        provider_user = provider.verify_token(token)
    except TokenRejectedError as e:
        kind = AuthErrorKind.EXPIRED if "expired" in e.message.lower() else AuthErrorKind.INVALID
        logger.info("Token rejected by identity provider", extra={"kind": kind.value})
        raise AuthenticationError(INVALID_TOKEN_MESSAGE, kind=kind)
    except IdentityProviderError as e:
        logger.error("Identity provider failure", extra={"error": str(e)})
        raise ProviderError("Authentication service unavailable", provider="supabase")

    if provider_user is None:
        raise AuthenticationError(INVALID_TOKEN_MESSAGE, kind=AuthErrorKind.UNKNOWN_USER)

    return AuthenticatedUser(id=provider_user.id, email=provider_user.email)


def get_identity_provider() -> IdentityProvider:
    """FastAPI dependency for the identity provider (overridden in tests)."""
    try:
        return get_identity_client()
    except IdentityProviderError as e:
        logger.error("Identity provider not configured", extra={"error": str(e)})
        raise ProviderError("Authentication service unavailable", provider="supabase")


def require_user(
    request: Request,
    provider: IdentityProvider = Depends(get_identity_provider),
) -> AuthenticatedUser:
    """
    FastAPI dependency that authenticates the request.

    The result is cached on request.state so rate limiting and the route
    share one verification per request.
    """
    cached = getattr(request.state, "user", None)
    if isinstance(cached, AuthenticatedUser):
        return cached

    user = authenticate(request.headers.get("Authorization"), provider)
    request.state.user = user
    return user
