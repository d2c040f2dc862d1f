# =============================================================================
# API Dependencies — Shared Pipeline State for Route Handlers
# =============================================================================
#
# create_app() builds the long-lived objects once and stores them on
# app.state:
#   - settings:  the Settings instance the app was created with
#   - client:    the ResilientClient (None if the provider could not be
#                built, e.g. no API key configured)
#   - registry:  the RunRegistry
#
# Handlers resolve them through these dependencies, so tests can swap
# any of them via app.dependency_overrides or by building the app with a
# fake provider.
# =============================================================================

from __future__ import annotations

from fastapi import HTTPException, Request

from app.config import Settings
from app.services.client import ResilientClient
from app.services.runs import RunRegistry


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_client(request: Request) -> ResilientClient:
    """
    Return the shared ResilientClient.

    Raises:
        HTTPException 503: No provider is configured.
    """
    client: ResilientClient | None = request.app.state.client
    if client is None:
        raise HTTPException(
            status_code=503,
            detail=(
                "Service configuration error: no LLM provider configured. "
                "Set LLM_API_KEY in .env"
            ),
        )
    return client


def get_registry(request: Request) -> RunRegistry:
    return request.app.state.registry
