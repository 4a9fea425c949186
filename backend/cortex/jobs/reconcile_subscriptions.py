"""
Subscription reconciliation job.

Runs hourly to sync subscription state with Stripe.
Ensures tiers are accurate even if webhooks are missed.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.orm import Session

from cortex.config.billing import PriceCatalog
from cortex.integrations.stripe.billing_client import get_billing_client
from cortex.platform.errors import AppError
from cortex.repositories.profile_repository import ProfileRepository, RepositoryError
from cortex.services.subscription_service import BillingProvider, SubscriptionLifecycleService

logger = logging.getLogger(__name__)


class SubscriptionReconciliationJob:
    """
    Reconciles local billing state with Stripe.

    Should run hourly via cron or task scheduler.
    Handles:
    - Missed subscription webhooks (tier/status drift)
    - Subscriptions canceled at Stripe but still paid locally
    """

    def __init__(
        self,
        db_session: Session,
        billing: BillingProvider,
        prices: Optional[PriceCatalog] = None,
    ):
        """Initialize reconciliation job."""
        self.db_session = db_session
        self.profiles = ProfileRepository(db_session)
        self.service = SubscriptionLifecycleService(
            profiles=self.profiles,
            billing=billing,
            prices=prices or PriceCatalog.from_env(),
        )

    async def run(self) -> dict:
        """
        Execute the reconciliation job.

        Returns:
            Summary of reconciliation results
        """
        logger.info("Starting subscription reconciliation job")

        results = {
            "started_at": datetime.now(timezone.utc).isoformat(),
            "profiles_checked": 0,
            "profiles_updated": 0,
            "errors": [],
        }

        try:
            profiles = self.profiles.list_billing_customers()
        except RepositoryError as e:
            logger.error("Reconciliation job failed", extra={"error": str(e)})
            results["errors"].append(str(e))
            return results

        for profile in profiles:
            results["profiles_checked"] += 1
            try:
                outcome = self.service.reconcile_customer(profile)
            except AppError as e:
                error_msg = f"Failed to reconcile profile {profile.id}: {e.message}"
                logger.error(error_msg, extra={
                    "user_id": profile.id,
                    "customer_id": profile.stripe_customer_id,
                    "error_code": e.code,
                })
                results["errors"].append(error_msg)
                continue

            if outcome.applied:
                results["profiles_updated"] += 1

        results["completed_at"] = datetime.now(timezone.utc).isoformat()
        logger.info("Subscription reconciliation completed", extra={
            "profiles_checked": results["profiles_checked"],
            "profiles_updated": results["profiles_updated"],
            "error_count": len(results["errors"]),
        })
        return results


async def run_reconciliation(db_session: Session, billing: Optional[BillingProvider] = None) -> dict:
    """
    Convenience function to run reconciliation job.

    Args:
        db_session: Database session
        billing: Billing provider (defaults to the configured Stripe client)

    Returns:
        Job results summary
    """
    job = SubscriptionReconciliationJob(db_session, billing or get_billing_client())
    return await job.run()


# Entry point for cron/scheduler
if __name__ == "__main__":
    from cortex.database.session import get_session_factory

    logging.basicConfig(level=logging.INFO)
    session = get_session_factory()()

    try:
        results = asyncio.run(run_reconciliation(session))
        logger.info("Reconciliation completed", extra={"errors": results["errors"]})
    finally:
        session.close()
