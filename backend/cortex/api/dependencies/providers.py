"""
Wiring of repositories, provider clients and services for request handlers.

Provider clients that are not configured resolve to None; the services
raise ProviderError only when an operation actually needs them.
"""

import logging
from typing import Optional

from fastapi import Depends
from sqlalchemy.orm import Session

from cortex.config.billing import PriceCatalog
from cortex.database.session import get_db_session
from cortex.integrations.stripe.billing_client import StripeBillingError, get_billing_client
from cortex.platform.supabase_client import IdentityProviderError, get_identity_client
from cortex.repositories.profile_repository import ProfileRepository
from cortex.repositories.scenario_repository import ScenarioRepository
from cortex.services.scenario_service import ScenarioService
from cortex.services.subscription_service import (
    BillingProvider,
    IdentityRemover,
    SubscriptionLifecycleService,
)

logger = logging.getLogger(__name__)


def get_profile_repository(db_session: Session = Depends(get_db_session)) -> ProfileRepository:
    return ProfileRepository(db_session)


def get_scenario_repository(db_session: Session = Depends(get_db_session)) -> ScenarioRepository:
    return ScenarioRepository(db_session)


def get_price_catalog() -> PriceCatalog:
    return PriceCatalog.from_env()


def get_billing_provider() -> Optional[BillingProvider]:
    try:
        return get_billing_client()
    except StripeBillingError as e:
        logger.warning("Billing provider unavailable", extra={"error": str(e)})
        return None


def get_identity_remover() -> Optional[IdentityRemover]:
    try:
        return get_identity_client()
    except IdentityProviderError as e:
        logger.warning("Identity provider unavailable", extra={"error": str(e)})
        return None


def get_subscription_service(
    profiles: ProfileRepository = Depends(get_profile_repository),
    billing: Optional[BillingProvider] = Depends(get_billing_provider),
    identity: Optional[IdentityRemover] = Depends(get_identity_remover),
    prices: PriceCatalog = Depends(get_price_catalog),
) -> SubscriptionLifecycleService:
    return SubscriptionLifecycleService(
        profiles=profiles,
        billing=billing,
        prices=prices,
        identity=identity,
    )


def get_scenario_service(
    profiles: ProfileRepository = Depends(get_profile_repository),
    scenarios: ScenarioRepository = Depends(get_scenario_repository),
) -> ScenarioService:
    return ScenarioService(profiles, scenarios)
