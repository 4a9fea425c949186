"""
Supabase Auth API client for bearer-token verification and identity removal.

Handles:
- Resolving a session access token to the user it belongs to
- Deleting an identity with the service-role key (account deletion)

SECURITY:
- The anon key is only used to look up the caller's own session
- The service-role key is only sent to the admin endpoint
- Keys are read from environment variables and never logged
"""

import logging
import os
from dataclasses import dataclass
from typing import Optional

import httpx

logger = logging.getLogger(__name__)

# Statuses Supabase returns for tokens it refuses (bad signature, expired, revoked)
_TOKEN_REJECTED_STATUSES = frozenset({400, 401, 403, 422})


@dataclass
class SupabaseConfig:
    """Supabase configuration from environment."""
    url: str
    anon_key: str
    service_role_key: Optional[str] = None
    timeout_seconds: float = 10.0

    @classmethod
    def from_env(cls) -> Optional["SupabaseConfig"]:
        """Load configuration from environment variables."""
        url = os.getenv("SUPABASE_URL")
        anon_key = os.getenv("SUPABASE_ANON_KEY")

        if not url or not anon_key:
            logger.warning(
                "Supabase credentials not fully configured",
                extra={
                    "has_url": bool(url),
                    "has_anon_key": bool(anon_key),
                }
            )
            return None

        return cls(
            url=url.rstrip("/"),
            anon_key=anon_key,
            service_role_key=os.getenv("SUPABASE_SERVICE_ROLE_KEY"),
        )


@dataclass(frozen=True)
class ProviderUser:
    """Identity resolved by the auth provider."""
    id: str
    email: Optional[str] = None


class IdentityProviderError(Exception):
    """Raised when the auth provider is unreachable or fails."""
    pass


class TokenRejectedError(Exception):
    """Raised when the auth provider refuses the presented token."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def _error_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if isinstance(data, dict):
        for key in ("msg", "message", "error_description", "error"):
            if data.get(key):
                return str(data[key])
    return f"HTTP {response.status_code}"


class SupabaseIdentityClient:
    """
    Client for Supabase Auth operations.

    Uses a synchronous httpx client, like the rest of the provider clients.
    """

    def __init__(self, config: SupabaseConfig, http_client: Optional[httpx.Client] = None):
        """
        Initialize client with Supabase configuration.

        Args:
            config: SupabaseConfig with project URL and keys
            http_client: Optional preconfigured httpx client (tests)
        """
        self.config = config
        self._http_client = http_client or httpx.Client(timeout=config.timeout_seconds)

    @property
    def _auth_base(self) -> str:
        return f"{self.config.url}/auth/v1"

    def verify_token(self, access_token: str) -> Optional[ProviderUser]:
        """
        Resolve an access token to its user.

        Returns:
            ProviderUser, or None when the token is accepted but no user
            exists for it (user deleted after the session was issued).

        Raises:
            TokenRejectedError: Provider refused the token
            IdentityProviderError: Provider unreachable or failing
        """
        try:
            response = self._http_client.get(
                f"{self._auth_base}/user",
                headers={
                    "apikey": self.config.anon_key,
                    "Authorization": f"Bearer {access_token}",
                },
            )
        except httpx.HTTPError as e:
            logger.error(
                "Supabase token verification request failed",
                extra={"error": str(e), "error_type": type(e).__name__},
            )
            raise IdentityProviderError(f"Auth provider unreachable: {e}") from e

        if response.status_code in _TOKEN_REJECTED_STATUSES:
            raise TokenRejectedError(_error_message(response), status_code=response.status_code)

        if response.status_code == 404:
            return None

        if response.status_code >= 400:
            logger.error(
                "Supabase token verification failed",
                extra={"status_code": response.status_code},
            )
            raise IdentityProviderError(
                f"Auth provider returned HTTP {response.status_code}"
            )

        try:
            data = response.json()
        except ValueError as e:
            raise IdentityProviderError("Auth provider returned invalid JSON") from e

        if not isinstance(data, dict) or not data.get("id"):
            return None

        return ProviderUser(id=str(data["id"]), email=data.get("email"))

    def delete_identity(self, user_id: str) -> None:
        """
        Delete an identity via the admin API.

        A missing identity (404) counts as already deleted.

        Raises:
            IdentityProviderError: Missing service-role key or provider failure
        """
        if not self.config.service_role_key:
            raise IdentityProviderError("SUPABASE_SERVICE_ROLE_KEY is not configured")

        try:
            response = self._http_client.delete(
                f"{self._auth_base}/admin/users/{user_id}",
                headers={
                    "apikey": self.config.service_role_key,
                    "Authorization": f"Bearer {self.config.service_role_key}",
                },
            )
        except httpx.HTTPError as e:
            logger.error(
                "Supabase identity deletion request failed",
                extra={"user_id": user_id, "error": str(e)},
            )
            raise IdentityProviderError(f"Auth provider unreachable: {e}") from e

        if response.status_code == 404:
            logger.info("Identity already absent", extra={"user_id": user_id})
            return

        if response.status_code >= 400:
            message = _error_message(response)
            logger.error(
                "Supabase identity deletion failed",
                extra={"user_id": user_id, "status_code": response.status_code, "error": message},
            )
            raise IdentityProviderError(f"Failed to delete identity: {message}")

        logger.info("Deleted identity", extra={"user_id": user_id})

    def close(self) -> None:
        """Close HTTP client."""
        self._http_client.close()


# Singleton instance
_identity_client: Optional[SupabaseIdentityClient] = None


def get_identity_client() -> SupabaseIdentityClient:
    """
    Get or create Supabase identity client singleton.

    Raises:
        IdentityProviderError: If Supabase is not configured
    """
    global _identity_client

    if _identity_client is None:
        config = SupabaseConfig.from_env()
        if not config:
            raise IdentityProviderError(
                "Supabase not configured. Set SUPABASE_URL and SUPABASE_ANON_KEY."
            )
        _identity_client = SupabaseIdentityClient(config)

    return _identity_client
