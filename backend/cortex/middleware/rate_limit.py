"""
Rate limiting using fixed-window counters.

Protects sensitive endpoints (checkout, cancel, delete account, portal,
webhooks) from abuse by bounding how many calls one identifier may make per
window.

Algorithm (fixed window):
- absent or expired entry -> new entry with count=1, reset_at=now+window
- otherwise count += 1; count > limit is denied with the EXISTING reset_at
  (a denied call never extends the window)

Counter storage is injected:
- InMemoryRateWindowStore (default): process-local map guarded by a lock.
  Correct only for a single process; a horizontally scaled deployment must
  use a shared store.
- RedisRateWindowStore: shared counters with TTL keys for multi-instance
  deployments. Degrades gracefully (allows the request, logs a warning) if
  Redis is unavailable.

Configuration (environment variables):
- RATE_LIMIT_ENABLED:    Kill switch (default: "true")
- RATE_LIMIT_REDIS_URL:  Use the Redis store when set

Usage (FastAPI dependency injection):
    from cortex.middleware.rate_limit import RATE_LIMITS, rate_limit_dependency

    @router.post("/create-checkout-session")
    async def create_checkout_session(
        _rate_limit=Depends(rate_limit_dependency("checkout", RATE_LIMITS["checkout"], by="ip")),
    ):
        ...
"""

import logging
import math
import os
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Dict, Mapping, Optional

import redis
from fastapi import Depends, Request, Response

from cortex.platform.errors import RateLimitError
from cortex.platform.identity_gate import AuthenticatedUser, require_user

logger = logging.getLogger(__name__)

# Minimum seconds between opportunistic sweeps of expired entries
CLEANUP_INTERVAL_SECONDS = 60.0


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

def _is_rate_limit_enabled() -> bool:
    """Check if rate limiting is enabled via environment variable."""
    return os.getenv("RATE_LIMIT_ENABLED", "true").lower() in ("true", "1", "yes")


@dataclass(frozen=True)
class RateLimitConfig:
    """Static per-endpoint-class limit: ``limit`` calls per ``window_seconds``."""

    limit: int
    window_seconds: int

    def __post_init__(self) -> None:
        if self.limit < 1:
            raise ValueError("limit must be >= 1")
        if self.window_seconds < 1:
            raise ValueError("window_seconds must be >= 1")


RATE_LIMITS: Mapping[str, RateLimitConfig] = {
    # Checkout: 10 requests per minute per IP
    "checkout": RateLimitConfig(limit=10, window_seconds=60),
    # Cancel subscription / delete account: 5 requests per minute per user
    "cancel_subscription": RateLimitConfig(limit=5, window_seconds=60),
    "delete_account": RateLimitConfig(limit=5, window_seconds=60),
    # Portal session: 10 requests per minute per user
    "portal_session": RateLimitConfig(limit=10, window_seconds=60),
    # Stripe webhooks: 100 per minute per IP
    "webhook": RateLimitConfig(limit=100, window_seconds=60),
    # Unauthenticated reads (shared scenarios): 60 requests per minute per IP
    "general": RateLimitConfig(limit=60, window_seconds=60),
}


# ---------------------------------------------------------------------------
# Rate limit result dataclass
# ---------------------------------------------------------------------------

@dataclass
class RateLimitResult:
    """
    Result of a rate limit check.

    Attributes:
        allowed:     Whether the request is allowed.
        limit:       Maximum number of requests allowed per window.
        remaining:   Number of requests remaining in the current window.
        reset_at:    Unix timestamp when the current window resets.
        retry_after: Seconds until the client should retry (0 if allowed).
    """

    allowed: bool
    limit: int
    remaining: int
    reset_at: float
    retry_after: int

    def headers(self) -> Dict[str, str]:
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(int(math.ceil(self.reset_at))),
        }
        if not self.allowed:
            headers["Retry-After"] = str(self.retry_after)
        return headers


def _retry_after(reset_at: float, now: float) -> int:
    return max(1, int(math.ceil(reset_at - now)))


# ---------------------------------------------------------------------------
# Counter stores
# ---------------------------------------------------------------------------

class RateWindowStore(ABC):
    """Counter storage behind the ``check()`` contract."""

    @abstractmethod
    def check(self, identifier: str, config: RateLimitConfig) -> RateLimitResult:
        """Count one call for ``identifier`` and decide whether it is allowed."""


@dataclass
class _WindowEntry:
    count: int
    reset_at: float


class InMemoryRateWindowStore(RateWindowStore):
    """
    Process-local fixed-window counters.

    The per-key read-modify-write runs under a lock so concurrent checks for
    one identifier can never admit more than ``limit`` calls. Expired entries
    are swept on the calling thread at most once per cleanup interval.
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.time,
        cleanup_interval: float = CLEANUP_INTERVAL_SECONDS,
    ):
        self._clock = clock
        self._cleanup_interval = cleanup_interval
        self._entries: Dict[str, _WindowEntry] = {}
        self._lock = threading.Lock()
        self._last_cleanup = clock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _sweep_expired(self, now: float) -> None:
        if now - self._last_cleanup < self._cleanup_interval:
            return
        self._last_cleanup = now
        expired = [key for key, entry in self._entries.items() if entry.reset_at <= now]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug("Swept expired rate limit entries", extra={"count": len(expired)})

    def check(self, identifier: str, config: RateLimitConfig) -> RateLimitResult:
        with self._lock:
            now = self._clock()
            self._sweep_expired(now)

            entry = self._entries.get(identifier)
            if entry is None or entry.reset_at <= now:
                # Replace, never merge, an elapsed window
                entry = _WindowEntry(count=1, reset_at=now + config.window_seconds)
                self._entries[identifier] = entry
                return RateLimitResult(
                    allowed=True,
                    limit=config.limit,
                    remaining=config.limit - 1,
                    reset_at=entry.reset_at,
                    retry_after=0,
                )

            entry.count += 1
            if entry.count > config.limit:
                return RateLimitResult(
                    allowed=False,
                    limit=config.limit,
                    remaining=0,
                    reset_at=entry.reset_at,
                    retry_after=_retry_after(entry.reset_at, now),
                )

            return RateLimitResult(
                allowed=True,
                limit=config.limit,
                remaining=config.limit - entry.count,
                reset_at=entry.reset_at,
                retry_after=0,
            )


class RedisRateWindowStore(RateWindowStore):
    """
    Redis-backed fixed-window counters shared across process instances.

    Key ``ratelimit:{identifier}`` holds the count and expires with the window:
    the key is created with ``SET NX PX`` so the first call fixes the window,
    ``INCR`` counts, and ``PTTL`` gives the existing reset time.
    """

    def __init__(self, redis_url: str, clock: Callable[[], float] = time.time):
        self.redis_url = redis_url
        self._clock = clock
        self._redis: Optional[redis.Redis] = None

    # -- Redis connection (lazy) -----------------------------------------

    def _get_redis(self) -> redis.Redis:
        """
        Get or create a Redis connection.

        The connection is created lazily on first use so that the module
        can be imported even when Redis is not yet available.
        """
        if self._redis is None:
            self._redis = redis.from_url(
                self.redis_url,
                decode_responses=True,
                socket_connect_timeout=2,
                socket_timeout=2,
            )
        return self._redis

    @staticmethod
    def _key(identifier: str) -> str:
        return f"ratelimit:{identifier}"

    def check(self, identifier: str, config: RateLimitConfig) -> RateLimitResult:
        now = self._clock()
        window_ms = config.window_seconds * 1000
        key = self._key(identifier)

        try:
            r = self._get_redis()
            pipe = r.pipeline(transaction=True)
            pipe.set(key, 0, nx=True, px=window_ms)
            pipe.incr(key)
            pipe.pttl(key)
            _, count, ttl_ms = pipe.execute()
        except redis.RedisError as exc:
            # Graceful degradation: allow the request and log a warning.
            logger.warning(
                "Redis unavailable for rate limiting - allowing request (fail-open)",
                extra={
                    "error": str(exc),
                    "error_type": type(exc).__name__,
                    "identifier": identifier,
                },
            )
            return RateLimitResult(
                allowed=True,
                limit=config.limit,
                remaining=config.limit,
                reset_at=now + config.window_seconds,
                retry_after=0,
            )

        if ttl_ms is None or ttl_ms < 0:
            # Key lost its TTL (e.g. PERSIST from outside): start the window now
            ttl_ms = window_ms
            r.pexpire(key, window_ms)
        reset_at = now + ttl_ms / 1000.0

        if count > config.limit:
            return RateLimitResult(
                allowed=False,
                limit=config.limit,
                remaining=0,
                reset_at=reset_at,
                retry_after=_retry_after(reset_at, now),
            )

        return RateLimitResult(
            allowed=True,
            limit=config.limit,
            remaining=config.limit - count,
            reset_at=reset_at,
            retry_after=0,
        )


# ---------------------------------------------------------------------------
# Module-level singleton
# ---------------------------------------------------------------------------

_rate_window_store: Optional[RateWindowStore] = None


def get_rate_window_store() -> RateWindowStore:
    """
    Return the process-wide counter store.

    Uses Redis when ``RATE_LIMIT_REDIS_URL`` is set, otherwise the in-memory
    store.
    """
    global _rate_window_store
    if _rate_window_store is None:
        redis_url = os.getenv("RATE_LIMIT_REDIS_URL")
        if redis_url:
            _rate_window_store = RedisRateWindowStore(redis_url)
        else:
            _rate_window_store = InMemoryRateWindowStore()
    return _rate_window_store


def set_rate_window_store(store: Optional[RateWindowStore]) -> None:
    """Replace the process-wide store (None resets to lazy default)."""
    global _rate_window_store
    _rate_window_store = store


# ---------------------------------------------------------------------------
# Client identification
# ---------------------------------------------------------------------------

def get_client_ip(request: Request) -> str:
    """
    Resolve the caller's IP from proxy headers.

    Order: x-forwarded-for (first hop), x-real-ip, x-vercel-forwarded-for,
    cf-connecting-ip, then the socket peer.
    """
    headers = request.headers

    forwarded_for = headers.get("x-forwarded-for")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()

    real_ip = headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()

    vercel_forwarded_for = headers.get("x-vercel-forwarded-for")
    if vercel_forwarded_for:
        return vercel_forwarded_for.split(",")[0].strip()

    cf_connecting_ip = headers.get("cf-connecting-ip")
    if cf_connecting_ip:
        return cf_connecting_ip.strip()

    if request.client and request.client.host:
        return request.client.host

    return "unknown"


def enforce_rate_limit(
    identifier: str,
    config: RateLimitConfig,
    *,
    response: Optional[Response] = None,
    store: Optional[RateWindowStore] = None,
    path: Optional[str] = None,
) -> RateLimitResult:
    """
    Count one call and raise RateLimitError (429) when over the limit.

    On success the X-RateLimit-* headers are copied onto ``response``.
    """
    if not _is_rate_limit_enabled():
        return RateLimitResult(
            allowed=True,
            limit=config.limit,
            remaining=config.limit,
            reset_at=time.time() + config.window_seconds,
            retry_after=0,
        )

    result = (store or get_rate_window_store()).check(identifier, config)

    if not result.allowed:
        logger.warning(
            "Rate limit triggered",
            extra={
                "action": "rate_limit.triggered",
                "identifier": identifier,
                "limit": result.limit,
                "window_seconds": config.window_seconds,
                "retry_after": result.retry_after,
                "reset_at": result.reset_at,
                "path": path,
            },
        )
        raise RateLimitError(
            message=(
                f"Too many requests. Please try again in {result.retry_after} seconds."
            ),
            retry_after=result.retry_after,
            headers=result.headers(),
        )

    if response is not None:
        response.headers.update(result.headers())
    return result


# ---------------------------------------------------------------------------
# FastAPI dependencies
# ---------------------------------------------------------------------------

def rate_limit_dependency(scope: str, config: RateLimitConfig, by: str = "user") -> Callable:
    """
    Create a FastAPI dependency that enforces rate limiting.

    Args:
        scope:  Key prefix for the endpoint class (e.g. ``"checkout"``).
        config: Limit and window for this endpoint class.
        by:     ``"user"`` keys on the verified user id (the dependency
                authenticates first), ``"ip"`` keys on the client IP.

    SECURITY: user ids come from the verified token, never from the body.
    """
    if by not in ("user", "ip"):
        raise ValueError("by must be 'user' or 'ip'")

    if by == "ip":
        def _ip_dependency(request: Request, response: Response) -> RateLimitResult:
            identifier = f"{scope}:{get_client_ip(request)}"
            return enforce_rate_limit(
                identifier,
                config,
                response=response,
                store=get_rate_window_store(),
                path=request.url.path,
            )

        return _ip_dependency

    def _user_dependency(
        request: Request,
        response: Response,
        user: AuthenticatedUser = Depends(require_user),
    ) -> RateLimitResult:
        identifier = f"{scope}:{user.id}"
        return enforce_rate_limit(
            identifier,
            config,
            response=response,
            store=get_rate_window_store(),
            path=request.url.path,
        )

    return _user_dependency
