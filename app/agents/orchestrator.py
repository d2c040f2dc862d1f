# =============================================================================
# LangGraph Orchestrator — Generate, Verify, Correct Loop
# =============================================================================
#
# Wires the generator, the verifier and the corrector into a LangGraph
# StateGraph with conditional edges:
#
#   START ──▶ generate ──▶ verify ──┬──▶ END        (passed / warnings /
#                 │           ▲     │                budget exhausted)
#                 │           │     └──▶ correct ─┬──▶ verify
#                 │           │                   ├──▶ correct (bad JSON,
#                 │           └───────────────────┘    budget left)
#                 │                                └──▶ END (client error)
#                 └──▶ END (generation failed)
#
#   any edge ──▶ cancelled ──▶ END   when cancel() has been called
#
# ATTEMPT BUDGET: the initial generation is attempt 1. Each correction
# round increments attempt_number. Once attempt_number reaches
# max_attempts and verification still fails, the run ends Failed.
#
# CANCELLATION is cooperative: a threading.Event checked on entry to every
# node, after every model call, and on every conditional edge. A result
# that arrives after cancel() is discarded, never verified or returned.
#
# The graph is compiled per orchestrator instance because the nodes close
# over that run's generator, corrector and cancel flag.
# =============================================================================

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Callable

from langgraph.graph import END, START, StateGraph
from typing_extensions import TypedDict

from app.agents.corrector import ReportCorrector
from app.agents.generator import GenerationResult, ReportGenerator
from app.models.report import (
    OverallStatus,
    Report,
    SourceDocument,
    VerificationResult,
)
from app.services.client import ChatResponse
from app.services.errors import ClientError, PipelineError, SchemaError
from app.services.verifier import verify

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


class RunStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    PASSED = "passed"
    PASSED_WITH_WARNINGS = "passed_with_warnings"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self not in (RunStatus.PENDING, RunStatus.RUNNING)


class Phase(str, Enum):
    GENERATING = "generating"
    VERIFYING = "verifying"
    CORRECTING = "correcting"
    DONE = "done"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class ProgressEvent:
    attempt_number: int
    phase: Phase


@dataclass(frozen=True)
class GenerationAttempt:
    """One generation or correction round and what came of it."""

    attempt_number: int
    phase: Phase
    report: Report | None = None
    verification: VerificationResult | None = None
    model_id: str | None = None
    cost_usd: float | None = None
    error: str | None = None


@dataclass
class RunOutcome:
    status: RunStatus
    report: Report | None = None
    verification: VerificationResult | None = None
    attempts: list[GenerationAttempt] = field(default_factory=list)
    error: str | None = None
    error_category: str | None = None
    total_cost_usd: float = 0.0
    input_tokens: int = 0
    output_tokens: int = 0


# ---------------------------------------------------------------------------
# Graph State Schema
# ---------------------------------------------------------------------------


class PipelineState(TypedDict, total=False):
    """
    State that flows through the graph.

    total=False so nodes only return the keys they update.
    """

    # --- Input ---
    documents: list[SourceDocument]
    company_name: str

    # --- Loop ---
    attempt_number: int
    report: Report | None
    verification: VerificationResult | None
    attempts: list[GenerationAttempt]
    correction_parsed: bool
    rejected_output: str

    # --- Accounting ---
    total_cost_usd: float
    input_tokens: int
    output_tokens: int

    # --- Terminal ---
    status: RunStatus
    error: str | None
    error_category: str | None


_VERIFICATION_TO_RUN = {
    OverallStatus.PASSED: RunStatus.PASSED,
    OverallStatus.PASSED_WITH_WARNINGS: RunStatus.PASSED_WITH_WARNINGS,
}


def _billed_cost(response: ChatResponse) -> float | None:
    # Cache hits were never sent to the provider
    return 0.0 if response.cached else response.cost_usd


def _accounting(state: PipelineState, response: ChatResponse) -> dict:
    if response.cached:
        return {}
    return {
        "total_cost_usd": state.get("total_cost_usd", 0.0) + (response.cost_usd or 0.0),
        "input_tokens": state.get("input_tokens", 0) + response.input_tokens,
        "output_tokens": state.get("output_tokens", 0) + response.output_tokens,
    }


def _failure(message: str, exc: PipelineError) -> dict:
    return {
        "status": RunStatus.FAILED,
        "error": f"{message}: {exc.user_message}",
        "error_category": exc.category,
    }


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------


class ReportOrchestrator:
    """
    Runs one report pipeline to a terminal outcome.

    Args:
        generator: Produces the first Report.
        corrector: Repairs a Report that failed verification.
        verifier: Pure Report -> VerificationResult function.
        max_attempts: Total attempts including the initial generation.
        on_progress: Optional callback for every ProgressEvent.
    """

    def __init__(
        self,
        generator: ReportGenerator,
        corrector: ReportCorrector,
        verifier: Callable[[Report], VerificationResult] = verify,
        max_attempts: int = 5,
        on_progress: Callable[[ProgressEvent], None] | None = None,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.generator = generator
        self.corrector = corrector
        self.verifier = verifier
        self.max_attempts = max_attempts
        self.on_progress = on_progress
        self.progress: list[ProgressEvent] = []
        self._cancel = threading.Event()
        self._graph = self._build_graph()

    # -----------------------------------------------------------------------
    # Control
    # -----------------------------------------------------------------------

    def cancel(self) -> None:
        """Request cancellation. Takes effect at the next checkpoint."""
        logger.info("Cancellation requested")
        self._cancel.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    @property
    def latest_progress(self) -> ProgressEvent | None:
        return self.progress[-1] if self.progress else None

    def _emit(self, attempt_number: int, phase: Phase) -> None:
        event = ProgressEvent(attempt_number=attempt_number, phase=phase)
        self.progress.append(event)
        if self.on_progress is not None:
            self.on_progress(event)

    # -----------------------------------------------------------------------
    # Nodes
    # -----------------------------------------------------------------------

    async def _generate_node(self, state: PipelineState) -> dict:
        if self.cancelled:
            return {}
        self._emit(1, Phase.GENERATING)

        try:
            result: GenerationResult = await self.generator.generate(
                state["documents"], state.get("company_name", "")
            )
        except PipelineError as exc:
            logger.warning("Report generation failed (%s): %s", exc.category, exc.detail)
            attempt = GenerationAttempt(
                attempt_number=1, phase=Phase.GENERATING, error=exc.user_message
            )
            return {
                "attempt_number": 1,
                "attempts": [attempt],
                **_failure("Report generation failed", exc),
            }

        if self.cancelled:
            logger.info("Discarding generation result after cancellation")
            return {}

        attempt = GenerationAttempt(
            attempt_number=1,
            phase=Phase.GENERATING,
            report=result.report,
            model_id=result.response.model_id,
            cost_usd=_billed_cost(result.response),
        )
        return {
            "attempt_number": 1,
            "report": result.report,
            "attempts": [attempt],
            **_accounting(state, result.response),
        }

    async def _verify_node(self, state: PipelineState) -> dict:
        if self.cancelled:
            return {}
        attempt_number = state["attempt_number"]
        self._emit(attempt_number, Phase.VERIFYING)

        verification = self.verifier(state["report"])
        attempts = list(state["attempts"])
        attempts[-1] = replace(attempts[-1], verification=verification)
        update: dict = {"verification": verification, "attempts": attempts}

        if verification.overall_status in _VERIFICATION_TO_RUN:
            logger.info(
                "Report verified on attempt %d: %s",
                attempt_number, verification.overall_status.value,
            )
            update["status"] = _VERIFICATION_TO_RUN[verification.overall_status]
        elif attempt_number >= self.max_attempts:
            update.update(self._exhausted())
        return update

    async def _correct_node(self, state: PipelineState) -> dict:
        if self.cancelled:
            return {}
        attempt_number = state["attempt_number"] + 1
        self._emit(attempt_number, Phase.CORRECTING)

        try:
            result = await self.corrector.fix(
                state["report"],
                state["verification"],
                attempt_number=attempt_number,
                rejected_output=state.get("rejected_output", ""),
            )
        except SchemaError as exc:
            # Keep the last good report and verification; the next round
            # corrects it again, shown the rejected reply, if budget remains.
            logger.warning(
                "Correction attempt %d returned unparseable output", attempt_number
            )
            attempts = [
                *state["attempts"],
                GenerationAttempt(
                    attempt_number=attempt_number,
                    phase=Phase.CORRECTING,
                    error=exc.user_message,
                ),
            ]
            update: dict = {
                "attempt_number": attempt_number,
                "attempts": attempts,
                "correction_parsed": False,
                "rejected_output": exc.raw_text,
            }
            if attempt_number >= self.max_attempts:
                update.update(self._exhausted())
            return update
        except ClientError as exc:
            logger.warning("Correction failed (%s): %s", exc.category, exc.detail)
            attempts = [
                *state["attempts"],
                GenerationAttempt(
                    attempt_number=attempt_number,
                    phase=Phase.CORRECTING,
                    error=exc.user_message,
                ),
            ]
            return {
                "attempt_number": attempt_number,
                "attempts": attempts,
                **_failure("Correction failed", exc),
            }

        if self.cancelled:
            logger.info("Discarding correction result after cancellation")
            return {}

        attempts = [
            *state["attempts"],
            GenerationAttempt(
                attempt_number=attempt_number,
                phase=Phase.CORRECTING,
                report=result.report,
                model_id=result.response.model_id,
                cost_usd=_billed_cost(result.response),
            ),
        ]
        return {
            "attempt_number": attempt_number,
            "report": result.report,
            "attempts": attempts,
            "correction_parsed": True,
            "rejected_output": "",
            **_accounting(state, result.response),
        }

    async def _cancelled_node(self, state: PipelineState) -> dict:
        self._emit(state.get("attempt_number", 0), Phase.CANCELLED)
        return {"status": RunStatus.CANCELLED, "error": "Run cancelled by user"}

    def _exhausted(self) -> dict:
        logger.warning(
            "Could not achieve consistency after %d attempts", self.max_attempts
        )
        return {
            "status": RunStatus.FAILED,
            "error": (
                f"Could not achieve consistency after {self.max_attempts} attempts"
            ),
            "error_category": "verification",
        }

    # -----------------------------------------------------------------------
    # Edges
    # -----------------------------------------------------------------------

    def _route_from_start(self, state: PipelineState) -> str:
        return "cancelled" if self.cancelled else "generate"

    def _route_after_generate(self, state: PipelineState) -> str:
        if state.get("status"):
            return END
        if self.cancelled:
            return "cancelled"
        return "verify"

    def _route_after_verify(self, state: PipelineState) -> str:
        if state.get("status"):
            return END
        if self.cancelled:
            return "cancelled"
        return "correct"

    def _route_after_correct(self, state: PipelineState) -> str:
        if state.get("status"):
            return END
        if self.cancelled:
            return "cancelled"
        if not state.get("correction_parsed", True):
            return "correct"
        return "verify"

    def _build_graph(self):
        builder = StateGraph(PipelineState)
        builder.add_node("generate", self._generate_node)
        builder.add_node("verify", self._verify_node)
        builder.add_node("correct", self._correct_node)
        builder.add_node("cancelled", self._cancelled_node)

        builder.add_conditional_edges(
            START, self._route_from_start, ["generate", "cancelled"]
        )
        builder.add_conditional_edges(
            "generate", self._route_after_generate, ["verify", "cancelled", END]
        )
        builder.add_conditional_edges(
            "verify", self._route_after_verify, ["correct", "cancelled", END]
        )
        builder.add_conditional_edges(
            "correct", self._route_after_correct,
            ["verify", "correct", "cancelled", END],
        )
        builder.add_edge("cancelled", END)
        return builder.compile()

    # -----------------------------------------------------------------------
    # Public API
    # -----------------------------------------------------------------------

    async def run(
        self,
        documents: list[SourceDocument],
        company_name: str = "",
    ) -> RunOutcome:
        """
        Drive the pipeline to a terminal outcome.

        Pipeline failures are reported in the outcome, not raised.
        """
        initial_state: PipelineState = {
            "documents": documents,
            "company_name": company_name,
            "attempt_number": 0,
            "attempts": [],
            "total_cost_usd": 0.0,
            "input_tokens": 0,
            "output_tokens": 0,
        }
        logger.info(
            "Starting report pipeline: company='%s', max_attempts=%d",
            company_name, self.max_attempts,
        )
        # generate(1) + verify(1) + (correct + verify) per round + cancelled
        result = await self._graph.ainvoke(
            initial_state,
            config={"recursion_limit": 2 * self.max_attempts + 5},
        )

        status = result.get("status") or RunStatus.CANCELLED
        if status is not RunStatus.CANCELLED:
            self._emit(result.get("attempt_number", 0), Phase.DONE)

        outcome = RunOutcome(
            status=status,
            report=result.get("report"),
            verification=result.get("verification"),
            attempts=list(result.get("attempts", [])),
            error=result.get("error"),
            error_category=result.get("error_category"),
            total_cost_usd=result.get("total_cost_usd", 0.0),
            input_tokens=result.get("input_tokens", 0),
            output_tokens=result.get("output_tokens", 0),
        )
        if status in (RunStatus.CANCELLED, RunStatus.FAILED):
            # Only a verified report is surfaced. Per-attempt reports stay
            # in the attempt history.
            outcome.report = None
            outcome.verification = None
        if status is RunStatus.CANCELLED:
            outcome.error = outcome.error or "Run cancelled by user"

        logger.info(
            "Report pipeline finished: status=%s, attempts=%d, cost=$%.6f",
            status.value, len(outcome.attempts), outcome.total_cost_usd,
        )
        return outcome
