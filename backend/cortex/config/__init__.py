"""Configuration module for backend services."""

from cortex.config.billing import PriceCatalog, is_valid_price_id
from cortex.config.settings import StripeSettings, get_app_url, get_log_level

__all__ = [
    "PriceCatalog",
    "StripeSettings",
    "get_app_url",
    "get_log_level",
    "is_valid_price_id",
]
