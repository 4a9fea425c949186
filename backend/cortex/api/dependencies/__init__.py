"""FastAPI dependencies shared by the routers."""

from cortex.api.dependencies.auth import (
    get_current_tier,
    get_current_user,
    require_capability,
    require_pro_access,
)
from cortex.api.dependencies.providers import (
    get_billing_provider,
    get_identity_remover,
    get_price_catalog,
    get_profile_repository,
    get_scenario_service,
    get_subscription_service,
)

__all__ = [
    "get_billing_provider",
    "get_current_tier",
    "get_current_user",
    "get_identity_remover",
    "get_price_catalog",
    "get_profile_repository",
    "get_scenario_service",
    "get_subscription_service",
    "require_capability",
    "require_pro_access",
]
