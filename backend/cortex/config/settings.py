"""
Application settings read from environment variables.

Each settings group is a small dataclass with a ``from_env()`` constructor so
tests can build one directly without touching the process environment.
"""

import logging
import os
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)

DEFAULT_APP_URL = "http://localhost:3000"


def get_app_url() -> str:
    """Public base URL of the web app, used for redirect and share links."""
    return os.getenv("APP_URL", DEFAULT_APP_URL).rstrip("/")


@dataclass
class StripeSettings:
    """Stripe credentials from environment."""
    secret_key: str
    webhook_secret: Optional[str] = None

    @classmethod
    def from_env(cls) -> Optional["StripeSettings"]:
        secret_key = os.getenv("STRIPE_SECRET_KEY")
        webhook_secret = os.getenv("STRIPE_WEBHOOK_SECRET")

        if not secret_key:
            logger.warning(
                "Stripe credentials not fully configured",
                extra={
                    "has_secret_key": False,
                    "has_webhook_secret": bool(webhook_secret),
                },
            )
            return None

        return cls(secret_key=secret_key, webhook_secret=webhook_secret)


def get_log_level() -> str:
    return os.getenv("LOG_LEVEL", "INFO").upper()
