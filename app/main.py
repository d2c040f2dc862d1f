# =============================================================================
# FastAPI Application — Wiring and Startup
# =============================================================================
#
# create_app() builds the long-lived pipeline objects exactly once:
#
#   Settings ──▶ ResilientClient (provider + cache + breaker + usage)
#            └─▶ RunRegistry
#
# and stores them on app.state for the dependencies in app/api/deps.py.
#
# A missing API key does not stop the app from starting: the client is
# left as None, /health reports llm_configured=false, and pipeline
# endpoints answer 503 until the key is configured.
#
# RUN:
#   uvicorn app.main:app --reload
# =============================================================================

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from app.api import reports, system
from app.config import Settings, get_settings
from app.db.engine import dispose_engine, init_models
from app.services.client import ResilientClient
from app.services.llm import LLMProvider
from app.services.runs import RunRegistry

logger = logging.getLogger(__name__)


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def create_app(
    settings: Settings | None = None,
    provider: LLMProvider | None = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        settings: Configuration; defaults to the cached get_settings().
        provider: Optional LLM provider override (tests pass a fake).
    """
    settings = settings or get_settings()
    configure_logging(settings)

    try:
        client: ResilientClient | None = ResilientClient.from_settings(
            settings, provider=provider
        )
    except ValueError as e:
        logger.error("LLM provider not configured: %s", e)
        client = None

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if settings.metrics_enabled:
            try:
                await init_models(settings)
            except Exception as e:
                logger.warning("Run metrics disabled, database unavailable: %s", e)
        logger.info("%s %s started", settings.app_name, settings.app_version)
        yield
        if client is not None:
            client.close()
        if settings.metrics_enabled:
            await dispose_engine(settings)

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description=(
            "Generates AI-written comparative financial reports, verifies "
            "their accounting identities and corrects them in bounded rounds."
        ),
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.client = client
    app.state.registry = RunRegistry(max_runs=settings.max_tracked_runs)

    app.include_router(reports.router)
    app.include_router(system.router)
    return app


app = create_app()
