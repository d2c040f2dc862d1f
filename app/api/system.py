# =============================================================================
# System API — Health, Model Selection, Usage and Operations
# =============================================================================
#
# GET    /health                          version + breaker + cache state
# GET    /models/select                   run the model selection policy
# GET    /usage                           daily / monthly spend and limits
# POST   /system/credentials/validate     check the API key upstream
# POST   /system/circuit-breaker/reset    force the breaker closed
# DELETE /system/cache                    drop every cached response
# =============================================================================

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request

from app.api.deps import get_app_settings, get_client, get_registry
from app.config import Settings
from app.models.requests import ModelSelectQuery
from app.models.responses import (
    CacheClearResponse,
    CacheInfo,
    CircuitBreakerInfo,
    CircuitResetResponse,
    CredentialValidationResponse,
    HealthResponse,
    ModelInfo,
    ModelSelectionResponse,
    UsageResponse,
    UsageSummaryInfo,
)
from app.services.client import ResilientClient
from app.services.errors import ValidationError
from app.services.pricing import ModelBudget, ModelConfig, ModelRequirements
from app.services.runs import RunRegistry

logger = logging.getLogger(__name__)

router = APIRouter(tags=["System"])


def _model_info(config: ModelConfig) -> ModelInfo:
    return ModelInfo(
        model_id=config.model_id,
        name=config.name,
        supports_vision=config.supports_vision,
        supports_reasoning=config.supports_reasoning,
        cost_per_million_input=config.cost_per_million_input,
        cost_per_million_output=config.cost_per_million_output,
        context_window=config.context_window,
        category=config.category,
        representative_cost_usd=config.representative_cost(),
    )


# ---------------------------------------------------------------------------
# GET /health
# ---------------------------------------------------------------------------


@router.get("/health", response_model=HealthResponse, summary="Service health")
async def health(
    request: Request,
    settings: Settings = Depends(get_app_settings),
    registry: RunRegistry = Depends(get_registry),
) -> HealthResponse:
    client: ResilientClient | None = request.app.state.client
    breaker = cache = None
    if client is not None:
        snapshot = client.breaker.snapshot()
        breaker = CircuitBreakerInfo(
            state=snapshot["state"],
            failure_count=snapshot["failure_count"],
            failure_threshold=snapshot["failure_threshold"],
            open_count=snapshot["open_count"],
        )
        cache = CacheInfo(**client.cache_stats())

    return HealthResponse(
        version=settings.app_version,
        service=settings.app_name,
        llm_configured=client is not None,
        circuit_breaker=breaker,
        cache=cache,
        active_runs=registry.active_count(),
    )


# ---------------------------------------------------------------------------
# GET /models/select
# ---------------------------------------------------------------------------


@router.get(
    "/models/select",
    response_model=ModelSelectionResponse,
    summary="Select a model for a task",
    description=(
        "Apply the selection policy: filter the catalog by task, vision and "
        "budget, rank by priority, and return the pick plus alternatives."
    ),
)
async def select_model(
    query: ModelSelectQuery = Depends(),
    client: ResilientClient = Depends(get_client),
) -> ModelSelectionResponse:
    try:
        selection = client.select_model(
            query.task_type,
            ModelRequirements(priority=query.priority, needs_vision=query.needs_vision),
            ModelBudget(max_cost_per_request=query.max_cost_per_request),
        )
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e

    return ModelSelectionResponse(
        selected=_model_info(selection.selected),
        alternatives=[_model_info(m) for m in selection.alternatives],
        reasoning=selection.reasoning,
    )


# ---------------------------------------------------------------------------
# GET /usage
# ---------------------------------------------------------------------------


@router.get("/usage", response_model=UsageResponse, summary="Spend and token usage")
async def usage(client: ResilientClient = Depends(get_client)) -> UsageResponse:
    tracker = client.usage
    return UsageResponse(
        daily=UsageSummaryInfo(**tracker.daily_usage().to_dict()),
        monthly=UsageSummaryInfo(**tracker.monthly_usage().to_dict()),
        daily_limit_usd=tracker.daily_limit_usd,
        monthly_limit_usd=tracker.monthly_limit_usd,
        within_limits=tracker.within_limits(),
    )


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------


@router.post(
    "/system/credentials/validate",
    response_model=CredentialValidationResponse,
    summary="Validate the configured API key",
)
async def validate_credentials(
    client: ResilientClient = Depends(get_client),
) -> CredentialValidationResponse:
    valid = await client.validate_credential()
    message = "API key is valid." if valid else "API key was rejected or unreachable."
    return CredentialValidationResponse(valid=valid, message=message)


@router.post(
    "/system/circuit-breaker/reset",
    response_model=CircuitResetResponse,
    summary="Force the circuit breaker closed",
)
async def reset_circuit_breaker(
    client: ResilientClient = Depends(get_client),
) -> CircuitResetResponse:
    client.reset_circuit()
    return CircuitResetResponse(state=client.circuit_state.value)


@router.delete(
    "/system/cache",
    response_model=CacheClearResponse,
    summary="Clear the response cache",
)
async def clear_cache(
    client: ResilientClient = Depends(get_client),
) -> CacheClearResponse:
    return CacheClearResponse(cleared=client.clear_cache())
