"""
FastAPI application factory for the Cortex billing API.

Run locally:
    uvicorn cortex.main:app --reload
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from cortex import __version__
from cortex.api.routes import account, billing, entitlements, health, scenarios, webhooks_stripe
from cortex.config.settings import get_log_level
from cortex.database.session import init_db
from cortex.platform.errors import register_error_handlers

logger = logging.getLogger(__name__)


def configure_logging() -> None:
    logging.basicConfig(
        level=get_log_level(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    logger.info("Cortex billing API started", extra={"version": __version__})
    yield


def create_app(create_tables: bool = True) -> FastAPI:
    """
    Build the application.

    Args:
        create_tables: create missing tables on startup (disable in tests
            that bind their own engine)
    """
    configure_logging()

    app = FastAPI(
        title="Cortex Billing API",
        version=__version__,
        lifespan=lifespan if create_tables else None,
    )
    register_error_handlers(app)

    app.include_router(health.router)
    app.include_router(billing.router)
    app.include_router(account.router)
    app.include_router(scenarios.router)
    app.include_router(entitlements.router)
    app.include_router(webhooks_stripe.router)

    return app


app = create_app()
