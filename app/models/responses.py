# =============================================================================
# API Response Models — Pydantic V2 Schemas
# =============================================================================
#
# These models define the shape of data coming OUT of the API.
#
# Error text in responses is always the categorical user_message from
# the error taxonomy. Raw remote error bodies stay in the logs.
# =============================================================================

from datetime import datetime

from pydantic import BaseModel, Field

from app.models.report import Report, VerificationResult


class CircuitBreakerInfo(BaseModel):
    state: str
    failure_count: int
    failure_threshold: int
    open_count: int


class CacheInfo(BaseModel):
    hits: int
    misses: int
    evictions: int
    entries: int
    max_entries: int
    hit_rate: float


class HealthResponse(BaseModel):
    """Response for GET /health — liveness plus resilience state."""

    status: str = "ok"
    version: str
    service: str
    llm_configured: bool = Field(
        description="False when no provider could be built (e.g. missing API key)",
    )
    circuit_breaker: CircuitBreakerInfo | None = None
    cache: CacheInfo | None = None
    active_runs: int = 0


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------


class ReportStartResponse(BaseModel):
    """
    Response for POST /reports.

    The report is NOT ready yet. Poll GET /reports/{run_id}.
    """

    run_id: str
    status: str = "pending"
    message: str = "Report generation started."


class ProgressInfo(BaseModel):
    attempt_number: int
    phase: str


class AttemptSummary(BaseModel):
    attempt_number: int
    phase: str
    model_id: str | None = None
    cost_usd: float | None = None
    verification_status: str | None = None
    error: str | None = None


class ReportRunResponse(BaseModel):
    """Response for GET /reports/{run_id} and POST /reports/{run_id}/cancel."""

    run_id: str
    company_name: str
    status: str = Field(
        description=(
            "pending, running, passed, passed_with_warnings, failed or cancelled"
        ),
    )
    progress: ProgressInfo | None = None
    attempts: list[AttemptSummary] = Field(default_factory=list)
    report: Report | None = None
    verification: VerificationResult | None = None
    error: str | None = None
    error_category: str | None = None
    total_cost_usd: float = 0.0
    input_tokens: int = 0
    output_tokens: int = 0
    created_at: datetime
    finished_at: datetime | None = None


# ---------------------------------------------------------------------------
# Models & usage
# ---------------------------------------------------------------------------


class ModelInfo(BaseModel):
    model_id: str
    name: str
    supports_vision: bool
    supports_reasoning: bool
    cost_per_million_input: float
    cost_per_million_output: float
    context_window: int
    category: str
    representative_cost_usd: float


class ModelSelectionResponse(BaseModel):
    selected: ModelInfo
    alternatives: list[ModelInfo]
    reasoning: str


class ModelUsageInfo(BaseModel):
    cost_usd: float
    tokens: int
    requests: int


class UsageSummaryInfo(BaseModel):
    period: str
    total_cost_usd: float
    total_tokens: int
    request_count: int
    model_breakdown: dict[str, ModelUsageInfo]


class UsageResponse(BaseModel):
    """Response for GET /usage."""

    daily: UsageSummaryInfo
    monthly: UsageSummaryInfo
    daily_limit_usd: float | None = None
    monthly_limit_usd: float | None = None
    within_limits: dict[str, bool]


# ---------------------------------------------------------------------------
# System operations
# ---------------------------------------------------------------------------


class CredentialValidationResponse(BaseModel):
    valid: bool
    message: str


class CircuitResetResponse(BaseModel):
    state: str
    message: str = "Circuit breaker reset."


class CacheClearResponse(BaseModel):
    cleared: int
    message: str = "Response cache cleared."
