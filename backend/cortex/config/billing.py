"""
Price allow-list: which Stripe price ids may be checked out, and the tier each buys.

Price ids are configured per deployment through environment variables. The
legacy STRIPE_PRO_MONTHLY_PRICE_ID maps to finance_pro.
"""

import logging
import os
from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional

from cortex.entitlements.tiers import Tier

logger = logging.getLogger(__name__)

PRICE_ID_PREFIX = "price_"

# env var -> tier it grants
PRICE_ENV_VARS: Mapping[str, Tier] = {
    "STRIPE_FINANCE_PRO_MONTHLY_PRICE_ID": Tier.FINANCE_PRO,
    "STRIPE_FINANCE_PRO_ANNUAL_PRICE_ID": Tier.FINANCE_PRO,
    "STRIPE_ELITE_MONTHLY_PRICE_ID": Tier.ELITE,
    "STRIPE_ELITE_ANNUAL_PRICE_ID": Tier.ELITE,
    "STRIPE_PRO_MONTHLY_PRICE_ID": Tier.FINANCE_PRO,
}


def is_valid_price_id(price_id: object) -> bool:
    """Format check only: ``price_`` prefix followed by at least one character."""
    return (
        isinstance(price_id, str)
        and price_id.startswith(PRICE_ID_PREFIX)
        and len(price_id) > len(PRICE_ID_PREFIX)
    )


@dataclass
class PriceCatalog:
    """Allowed price ids and the tier each one grants."""
    prices: Dict[str, Tier] = field(default_factory=dict)

    @classmethod
    def from_env(cls) -> "PriceCatalog":
        prices: Dict[str, Tier] = {}
        for env_var, tier in PRICE_ENV_VARS.items():
            price_id = (os.getenv(env_var) or "").strip()
            if not price_id:
                continue
            if not is_valid_price_id(price_id):
                logger.warning(
                    "Ignoring malformed price id",
                    extra={"env_var": env_var},
                )
                continue
            prices.setdefault(price_id, tier)

        if not prices:
            logger.warning("No Stripe price ids configured; checkout is disabled")
        return cls(prices=prices)

    def is_allowed(self, price_id: str) -> bool:
        return price_id in self.prices

    def tier_for_price(self, price_id: Optional[str]) -> Optional[Tier]:
        """Tier granted by price_id, or None for a price we do not sell."""
        if not price_id:
            return None
        return self.prices.get(price_id)
