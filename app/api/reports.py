# =============================================================================
# Reports API — Start, Poll and Cancel Report Runs
# =============================================================================
#
# POST /reports                  upload prior + current documents, start a run
# GET  /reports/{run_id}         progress, and the result once terminal
# POST /reports/{run_id}/cancel  cooperative cancellation
# POST /reports/{run_id}/audio   spoken executive summary (audio/mpeg)
#
# FLOW:
#   1. Validate uploads (media type, non-empty) and options  → 422 on error
#   2. Build a ReportOrchestrator for this run and register it
#   3. Return 202 with run_id; the run executes as a background task
#   4. (Optional) persist a report_runs metric row when the run finishes
#
# The endpoint is thin: all pipeline logic lives in app.agents.
# =============================================================================

from __future__ import annotations

import logging
import mimetypes
import time

from fastapi import (
    APIRouter,
    BackgroundTasks,
    Depends,
    File,
    Form,
    HTTPException,
    Response,
    UploadFile,
)
from pydantic import ValidationError as PydanticValidationError

from app.agents.corrector import ReportCorrector
from app.agents.generator import ReportGenerator
from app.agents.narrator import AudioSummarizer
from app.agents.orchestrator import ReportOrchestrator, RunOutcome, RunStatus
from app.api.deps import get_app_settings, get_client, get_registry
from app.config import Settings
from app.db.engine import get_session_factory
from app.db.models import ReportRun
from app.models.report import SourceDocument
from app.models.requests import ReportOptions
from app.models.responses import (
    AttemptSummary,
    ProgressInfo,
    ReportRunResponse,
    ReportStartResponse,
)
from app.services.client import ResilientClient
from app.services.errors import (
    BudgetExceededError,
    CircuitOpenError,
    PipelineError,
    RateLimitError,
    ValidationError,
)
from app.services.runs import RunRecord, RunRegistry
from app.services.verifier import verify

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/reports", tags=["Reports"])


# ---------------------------------------------------------------------------
# POST /reports — Start a report run
# ---------------------------------------------------------------------------


@router.post(
    "",
    response_model=ReportStartResponse,
    status_code=202,
    summary="Generate a verified comparative financial report",
    description=(
        "Upload the prior-period financial statement and the current-period "
        "raw data. The service generates a comparative report, verifies its "
        "accounting identities and runs bounded correction rounds. Poll "
        "GET /reports/{run_id} for progress and the final result."
    ),
)
async def start_report(
    background_tasks: BackgroundTasks,
    prior_document: UploadFile = File(..., description="Prior-period statement"),
    current_document: UploadFile = File(..., description="Current-period data"),
    company_name: str = Form(""),
    priority: str | None = Form(None),
    max_cost_per_request: float | None = Form(None),
    client: ResilientClient = Depends(get_client),
    registry: RunRegistry = Depends(get_registry),
    settings: Settings = Depends(get_app_settings),
) -> ReportStartResponse:
    try:
        options = ReportOptions(
            company_name=company_name,
            priority=priority,
            max_cost_per_request=max_cost_per_request,
        )
    except PydanticValidationError as e:
        raise HTTPException(
            status_code=422, detail=e.errors(include_url=False)
        ) from e

    documents = [
        await _to_source_document(prior_document),
        await _to_source_document(current_document),
    ]
    try:
        for document in documents:
            document.validate()
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e

    orchestrator = build_orchestrator(client, settings, options)
    record = registry.create(orchestrator, company_name=options.company_name)

    logger.info(
        "Report run %s created: company='%s', documents=%s",
        record.run_id,
        options.company_name,
        [(d.name, d.media_type, len(d.data)) for d in documents],
    )

    background_tasks.add_task(
        execute_run,
        registry=registry,
        record=record,
        documents=documents,
        settings=settings,
    )
    return ReportStartResponse(run_id=record.run_id)


# ---------------------------------------------------------------------------
# GET /reports/{run_id} — Poll a run
# ---------------------------------------------------------------------------


@router.get(
    "/{run_id}",
    response_model=ReportRunResponse,
    summary="Get report run progress or result",
)
async def get_report(
    run_id: str,
    registry: RunRegistry = Depends(get_registry),
) -> ReportRunResponse:
    record = registry.get(run_id)
    if record is None:
        raise HTTPException(status_code=404, detail=f"Run '{run_id}' not found.")
    return run_response(record)


# ---------------------------------------------------------------------------
# POST /reports/{run_id}/cancel — Cancel a run
# ---------------------------------------------------------------------------


@router.post(
    "/{run_id}/cancel",
    response_model=ReportRunResponse,
    summary="Cancel a report run",
    description=(
        "Request cancellation. An in-flight model call is not interrupted, "
        "but its result is discarded and the run ends as 'cancelled'."
    ),
)
async def cancel_report(
    run_id: str,
    registry: RunRegistry = Depends(get_registry),
) -> ReportRunResponse:
    record = registry.cancel(run_id)
    if record is None:
        raise HTTPException(status_code=404, detail=f"Run '{run_id}' not found.")
    logger.info("Cancellation requested for run %s", run_id)
    return run_response(record)


# ---------------------------------------------------------------------------
# POST /reports/{run_id}/audio — Spoken summary
# ---------------------------------------------------------------------------


@router.post(
    "/{run_id}/audio",
    response_class=Response,
    responses={200: {"content": {"audio/mpeg": {}}}},
    summary="Generate an audio summary of a verified report",
    description=(
        "Synthesize the executive summary of a finished, verified report as "
        "speech. Returns 409 while the run has no verified report."
    ),
)
async def generate_audio(
    run_id: str,
    registry: RunRegistry = Depends(get_registry),
    client: ResilientClient = Depends(get_client),
    settings: Settings = Depends(get_app_settings),
) -> Response:
    record = registry.get(run_id)
    if record is None:
        raise HTTPException(status_code=404, detail=f"Run '{run_id}' not found.")
    if record.outcome is None or record.outcome.report is None:
        raise HTTPException(
            status_code=409,
            detail=f"Run '{run_id}' has no verified report ({record.status.value}).",
        )

    narrator = AudioSummarizer(
        client,
        model_id=settings.audio_model,
        voice=settings.audio_voice,
        priority=settings.selection_priority,
    )
    try:
        summary = await narrator.generate_audio_summary(record.outcome.report.summary)
    except PipelineError as e:
        logger.warning(
            "Audio summary for run %s failed (%s): %s", run_id, e.category, e.detail
        )
        raise HTTPException(status_code=_http_status(e), detail=e.user_message) from e

    return Response(
        content=summary.audio,
        media_type=summary.media_type,
        headers={
            "X-Model-Id": summary.response.model_id,
            "X-Cost-Usd": f"{summary.response.cost_usd or 0.0:.6f}",
        },
    )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def build_orchestrator(
    client: ResilientClient,
    settings: Settings,
    options: ReportOptions,
) -> ReportOrchestrator:
    generator = ReportGenerator(
        client,
        model_id=settings.generation_model,
        temperature=settings.generation_temperature,
        max_output_tokens=settings.generation_max_tokens,
        priority=options.priority or settings.selection_priority,
        max_cost_per_request=(
            options.max_cost_per_request or settings.max_cost_per_request
        ),
    )
    corrector = ReportCorrector(
        client,
        model_id=settings.correction_model or settings.generation_model,
        temperature=settings.correction_temperature,
        max_output_tokens=settings.correction_max_tokens,
    )
    tolerance = settings.verification_tolerance
    return ReportOrchestrator(
        generator,
        corrector,
        verifier=lambda report: verify(report, tolerance),
        max_attempts=settings.max_attempts,
    )


def _http_status(exc: PipelineError) -> int:
    if isinstance(exc, (RateLimitError, BudgetExceededError)):
        return 429
    if isinstance(exc, CircuitOpenError):
        return 503
    if isinstance(exc, ValidationError):
        return 422
    return 502


async def _to_source_document(upload: UploadFile) -> SourceDocument:
    name = upload.filename or "document"
    media_type = upload.content_type
    if not media_type or media_type == "application/octet-stream":
        media_type = mimetypes.guess_type(name)[0] or "application/octet-stream"
    return SourceDocument(name=name, media_type=media_type, data=await upload.read())


def run_response(record: RunRecord) -> ReportRunResponse:
    orchestrator = record.orchestrator
    outcome = record.outcome
    latest = orchestrator.latest_progress
    attempts = outcome.attempts if outcome is not None else []

    return ReportRunResponse(
        run_id=record.run_id,
        company_name=record.company_name,
        status=record.status.value,
        progress=(
            ProgressInfo(attempt_number=latest.attempt_number, phase=latest.phase.value)
            if latest is not None else None
        ),
        attempts=[
            AttemptSummary(
                attempt_number=a.attempt_number,
                phase=a.phase.value,
                model_id=a.model_id,
                cost_usd=a.cost_usd,
                verification_status=(
                    a.verification.overall_status.value if a.verification else None
                ),
                error=a.error,
            )
            for a in attempts
        ],
        report=outcome.report if outcome is not None else None,
        verification=outcome.verification if outcome is not None else None,
        error=outcome.error if outcome is not None else None,
        error_category=outcome.error_category if outcome is not None else None,
        total_cost_usd=outcome.total_cost_usd if outcome is not None else 0.0,
        input_tokens=outcome.input_tokens if outcome is not None else 0,
        output_tokens=outcome.output_tokens if outcome is not None else 0,
        created_at=record.created_at,
        finished_at=record.finished_at,
    )


# ---------------------------------------------------------------------------
# Background Run Execution
# ---------------------------------------------------------------------------


async def execute_run(
    registry: RunRegistry,
    record: RunRecord,
    documents: list[SourceDocument],
    settings: Settings,
) -> None:
    """Run the orchestrator to completion and record the outcome."""
    registry.mark_running(record.run_id)
    start_time = time.monotonic()

    try:
        outcome = await record.orchestrator.run(documents, record.company_name)
    except PipelineError as e:
        logger.warning("Run %s failed (%s): %s", record.run_id, e.category, e.detail)
        outcome = RunOutcome(
            status=RunStatus.FAILED, error=e.user_message, error_category=e.category,
        )
    except Exception:
        logger.exception("Run %s crashed", record.run_id)
        outcome = RunOutcome(
            status=RunStatus.FAILED,
            error=PipelineError.user_message,
            error_category=PipelineError.category,
        )

    total_latency_ms = int((time.monotonic() - start_time) * 1000)
    registry.finish(record.run_id, outcome)

    if settings.metrics_enabled:
        await _persist_run_metric(
            run_id=record.run_id,
            company_name=record.company_name,
            outcome=outcome,
            total_latency_ms=total_latency_ms,
            settings=settings,
        )


async def _persist_run_metric(
    run_id: str,
    company_name: str,
    outcome: RunOutcome,
    total_latency_ms: int,
    settings: Settings,
) -> None:
    """
    Persist a ReportRun row using its own DB session.

    Failures are logged and swallowed: metrics must never affect a run.
    """
    try:
        model_ids = sorted({a.model_id for a in outcome.attempts if a.model_id})
        async with get_session_factory(settings)() as session:
            session.add(
                ReportRun(
                    run_id=run_id,
                    company_name=company_name or None,
                    status=outcome.status.value,
                    attempts=len(outcome.attempts),
                    error_category=outcome.error_category,
                    input_tokens=outcome.input_tokens,
                    output_tokens=outcome.output_tokens,
                    total_cost_usd=outcome.total_cost_usd,
                    total_latency_ms=total_latency_ms,
                    model_ids=model_ids,
                )
            )
            await session.commit()
    except Exception:
        logger.warning("Failed to persist metrics for run %s", run_id, exc_info=True)
