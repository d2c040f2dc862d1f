# =============================================================================
# Unit Tests — Report Orchestrator
# =============================================================================
#
# Drives the LangGraph loop with mocked generator and corrector agents,
# then end to end through a real ResilientClient over a fake provider.
# =============================================================================

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

from conftest import build_report, llm_response, source_documents

from app.agents.corrector import ReportCorrector
from app.agents.generator import GenerationResult, ReportGenerator
from app.agents.orchestrator import Phase, ReportOrchestrator, RunStatus
from app.models.report import OverallStatus
from app.services.circuit_breaker import CircuitBreaker
from app.services.client import ChatResponse, ResilientClient
from app.services.errors import (
    AuthenticationError,
    RateLimitError,
    SchemaError,
)
from app.services.llm import LLMResponse
from app.services.retry import RetryPolicy
from app.services.verifier import verify


def _run(coro):
    """Helper to run async functions in sync tests."""
    return asyncio.run(coro)


def _result(report, cost: float = 0.001, cached: bool = False) -> GenerationResult:
    return GenerationResult(
        report=report,
        response=ChatResponse(
            model_id="x-ai/grok-4-fast",
            generated_text=report.model_dump_json(),
            input_tokens=1000,
            output_tokens=500,
            cost_usd=cost,
            duration_ms=10,
            cached=cached,
        ),
    )


def _agents(generated, *corrections):
    generator = AsyncMock()
    generator.generate.return_value = _result(generated)
    corrector = AsyncMock()
    corrector.fix.side_effect = [
        c if isinstance(c, Exception) else _result(c) for c in corrections
    ]
    return generator, corrector


# ---------------------------------------------------------------------------
# Test: Happy paths
# ---------------------------------------------------------------------------


class TestPassing:
    def test_passes_first_attempt(self):
        generator, corrector = _agents(build_report())
        orchestrator = ReportOrchestrator(generator, corrector)

        outcome = _run(orchestrator.run(source_documents(), "Acme"))

        assert outcome.status is RunStatus.PASSED
        assert outcome.verification.overall_status is OverallStatus.PASSED
        assert len(outcome.attempts) == 1
        assert outcome.attempts[0].verification is not None
        corrector.fix.assert_not_awaited()
        generator.generate.assert_awaited_once()

    def test_one_correction(self):
        generator, corrector = _agents(build_report(equity=900_000), build_report())
        orchestrator = ReportOrchestrator(generator, corrector)

        outcome = _run(orchestrator.run(source_documents()))

        assert outcome.status is RunStatus.PASSED
        assert [a.attempt_number for a in outcome.attempts] == [1, 2]
        assert outcome.attempts[0].verification.overall_status is OverallStatus.FAILED
        assert outcome.report == build_report()
        assert outcome.total_cost_usd == 0.002
        assert outcome.input_tokens == 2000

    def test_corrector_sees_latest_report_and_verification(self):
        first = build_report(equity=900_000)
        second = build_report(net_profit=0)
        generator, corrector = _agents(first, second, build_report())

        _run(ReportOrchestrator(generator, corrector).run(source_documents()))

        calls = corrector.fix.await_args_list
        assert calls[0].args[0] == first
        assert calls[1].args[0] == second
        assert calls[1].args[1].failed_checks()[0].name.startswith("Income Statement")

    def test_missing_data_is_terminal_warning(self):
        report = build_report()
        statement = report.cash_flow_statement.model_copy(
            update={
                "net_change_in_cash": report.cash_flow_statement.net_change_in_cash.model_copy(
                    update={"amount_current": None}
                )
            }
        )
        report = report.model_copy(update={"cash_flow_statement": statement})
        generator, corrector = _agents(report)

        outcome = _run(ReportOrchestrator(generator, corrector).run(source_documents()))

        assert outcome.status is RunStatus.PASSED_WITH_WARNINGS
        corrector.fix.assert_not_awaited()

    def test_progress_events(self):
        events = []
        generator, corrector = _agents(build_report(equity=900_000), build_report())
        orchestrator = ReportOrchestrator(generator, corrector, on_progress=events.append)

        _run(orchestrator.run(source_documents()))

        assert [(e.attempt_number, e.phase) for e in events] == [
            (1, Phase.GENERATING),
            (1, Phase.VERIFYING),
            (2, Phase.CORRECTING),
            (2, Phase.VERIFYING),
            (2, Phase.DONE),
        ]
        assert orchestrator.latest_progress.phase is Phase.DONE


# ---------------------------------------------------------------------------
# Test: Termination
# ---------------------------------------------------------------------------


class TestTermination:
    def test_always_failing_stops_at_budget(self):
        broken = build_report(equity=900_000)
        generator, corrector = _agents(broken, *[broken] * 10)
        verifier = MagicMock(side_effect=verify)

        outcome = _run(
            ReportOrchestrator(generator, corrector, verifier=verifier).run(
                source_documents()
            )
        )

        assert outcome.status is RunStatus.FAILED
        assert outcome.error == "Could not achieve consistency after 5 attempts"
        assert outcome.error_category == "verification"
        assert len(outcome.attempts) == 5
        assert corrector.fix.await_count == 4
        assert verifier.call_count == 5
        # The unverified report is only kept in the attempt history
        assert outcome.report is None
        assert outcome.verification is None
        assert outcome.attempts[-1].report == broken
        assert outcome.attempts[-1].verification.overall_status is OverallStatus.FAILED

    def test_single_attempt_budget(self):
        generator, corrector = _agents(build_report(equity=900_000))
        outcome = _run(
            ReportOrchestrator(generator, corrector, max_attempts=1).run(source_documents())
        )
        assert outcome.status is RunStatus.FAILED
        corrector.fix.assert_not_awaited()

    def test_schema_error_consumes_budget(self):
        broken = build_report(equity=900_000)
        generator, corrector = _agents(
            broken, SchemaError("bad", raw_text="?"), build_report()
        )
        verifier = MagicMock(side_effect=verify)

        outcome = _run(
            ReportOrchestrator(generator, corrector, verifier=verifier).run(
                source_documents()
            )
        )

        assert outcome.status is RunStatus.PASSED
        assert [a.attempt_number for a in outcome.attempts] == [1, 2, 3]
        assert outcome.attempts[1].error is not None
        # The unparseable round is never verified; it re-corrects the last report
        assert verifier.call_count == 2
        assert corrector.fix.await_args_list[1].args[0] == broken
        # The retry round is told its number and shown the rejected reply
        first_call, second_call = corrector.fix.await_args_list
        assert first_call.kwargs == {"attempt_number": 2, "rejected_output": ""}
        assert second_call.kwargs == {"attempt_number": 3, "rejected_output": "?"}

    def test_schema_errors_until_exhausted(self):
        broken = build_report(equity=900_000)
        generator, corrector = _agents(
            broken, *[SchemaError("bad", raw_text="?") for _ in range(4)]
        )
        outcome = _run(ReportOrchestrator(generator, corrector).run(source_documents()))
        assert outcome.status is RunStatus.FAILED
        assert outcome.error_category == "verification"
        assert len(outcome.attempts) == 5

    def test_generation_failure(self):
        generator = AsyncMock()
        generator.generate.side_effect = RateLimitError("429 from upstream")
        corrector = AsyncMock()

        outcome = _run(ReportOrchestrator(generator, corrector).run(source_documents()))

        assert outcome.status is RunStatus.FAILED
        assert outcome.error_category == "rate_limit"
        assert outcome.error.startswith("Report generation failed:")
        assert "429 from upstream" not in outcome.error
        assert outcome.report is None

    def test_correction_client_error_is_fatal(self):
        generator, corrector = _agents(
            build_report(equity=900_000), AuthenticationError("401")
        )
        outcome = _run(ReportOrchestrator(generator, corrector).run(source_documents()))
        assert outcome.status is RunStatus.FAILED
        assert outcome.error_category == "authentication"
        assert outcome.error.startswith("Correction failed:")
        assert corrector.fix.await_count == 1
        assert outcome.report is None
        assert outcome.verification is None


# ---------------------------------------------------------------------------
# Test: Accounting
# ---------------------------------------------------------------------------


class TestAccounting:
    def test_cached_responses_are_not_billed(self):
        generator = AsyncMock()
        generator.generate.return_value = _result(build_report(equity=900_000))
        corrector = AsyncMock()
        corrector.fix.return_value = _result(build_report(), cached=True)

        outcome = _run(ReportOrchestrator(generator, corrector).run(source_documents()))

        assert outcome.status is RunStatus.PASSED
        assert outcome.total_cost_usd == 0.001
        assert outcome.input_tokens == 1000
        assert outcome.output_tokens == 500
        assert outcome.attempts[1].cost_usd == 0.0


# ---------------------------------------------------------------------------
# Test: Cancellation
# ---------------------------------------------------------------------------


class TestCancellation:
    def test_cancel_before_start(self):
        generator, corrector = _agents(build_report())
        orchestrator = ReportOrchestrator(generator, corrector)
        orchestrator.cancel()

        outcome = _run(orchestrator.run(source_documents()))

        assert outcome.status is RunStatus.CANCELLED
        generator.generate.assert_not_awaited()

    def test_cancel_during_correction_discards_result(self):
        generator, _ = _agents(build_report(equity=900_000))
        verifier = MagicMock(side_effect=verify)
        orchestrator = None

        async def fix(report, verification, **kwargs):
            orchestrator.cancel()
            return _result(build_report())

        corrector = AsyncMock()
        corrector.fix.side_effect = fix
        orchestrator = ReportOrchestrator(generator, corrector, verifier=verifier)

        outcome = _run(orchestrator.run(source_documents()))

        assert outcome.status is RunStatus.CANCELLED
        assert outcome.report is None
        assert outcome.verification is None
        assert outcome.error == "Run cancelled by user"
        assert verifier.call_count == 1
        assert orchestrator.latest_progress.phase is Phase.CANCELLED

    def test_cancel_during_generation(self):
        orchestrator = None

        async def generate(documents, company_name=""):
            orchestrator.cancel()
            return _result(build_report())

        generator = AsyncMock()
        generator.generate.side_effect = generate
        verifier = MagicMock(side_effect=verify)
        orchestrator = ReportOrchestrator(generator, AsyncMock(), verifier=verifier)

        outcome = _run(orchestrator.run(source_documents()))

        assert outcome.status is RunStatus.CANCELLED
        verifier.assert_not_called()


# ---------------------------------------------------------------------------
# Test: End to end over a fake provider
# ---------------------------------------------------------------------------


class TestEndToEnd:
    def _pipeline(self, provider) -> ReportOrchestrator:
        client = ResilientClient(
            provider,
            breaker=CircuitBreaker(),
            retry_policy=RetryPolicy(base_delay=0.0, max_delay=0.0),
            sleep=AsyncMock(),
        )
        return ReportOrchestrator(
            ReportGenerator(client, model_id="x-ai/grok-4-fast"),
            ReportCorrector(client, model_id="google/gemini-2.0-flash-exp"),
        )

    def test_balanced_report_passes_first_time(self):
        provider = AsyncMock()
        provider.complete.return_value = llm_response(build_report())

        outcome = _run(self._pipeline(provider).run(source_documents(), "Acme"))

        assert outcome.status is RunStatus.PASSED
        assert len(outcome.attempts) == 1
        assert provider.complete.await_count == 1
        assert outcome.total_cost_usd > 0

    def test_imbalanced_report_corrected_once(self):
        provider = AsyncMock()
        provider.complete.side_effect = [
            llm_response(build_report(equity=900_000)),
            llm_response(build_report(), model="google/gemini-2.0-flash-exp"),
        ]

        outcome = _run(self._pipeline(provider).run(source_documents(), "Acme"))

        assert outcome.status is RunStatus.PASSED
        assert [a.attempt_number for a in outcome.attempts] == [1, 2]
        assert outcome.attempts[1].model_id == "google/gemini-2.0-flash-exp"
        assert provider.complete.await_count == 2
        correction_request = provider.complete.await_args_list[1].args[0]
        assert correction_request.task_type == "correction"

    def test_transient_error_retried_inside_run(self):
        provider = AsyncMock()
        provider.complete.side_effect = [
            ConnectionError("reset"),
            llm_response(build_report()),
        ]

        outcome = _run(self._pipeline(provider).run(source_documents()))

        assert outcome.status is RunStatus.PASSED
        assert provider.complete.await_count == 2

    def test_unparseable_correction_is_retried_remotely(self):
        provider = AsyncMock()
        provider.complete.side_effect = [
            llm_response(build_report(equity=900_000)),
            LLMResponse(
                content="sorry, no json",
                model="google/gemini-2.0-flash-exp",
                input_tokens=1000,
                output_tokens=10,
            ),
            llm_response(build_report(), model="google/gemini-2.0-flash-exp"),
        ]

        outcome = _run(self._pipeline(provider).run(source_documents(), "Acme"))

        assert outcome.status is RunStatus.PASSED
        assert [a.attempt_number for a in outcome.attempts] == [1, 2, 3]
        assert outcome.attempts[1].error is not None
        assert provider.complete.await_count == 3
        retry_request = provider.complete.await_args_list[2].args[0]
        assert "CORRECTION ROUND: 3" in retry_request.messages[1].content
        assert "sorry, no json" in retry_request.messages[1].content

    def test_unchanged_corrections_each_reach_the_provider(self):
        broken = build_report(equity=900_000)
        provider = AsyncMock()
        provider.complete.return_value = llm_response(broken)

        outcome = _run(self._pipeline(provider).run(source_documents()))

        assert outcome.status is RunStatus.FAILED
        assert len(outcome.attempts) == 5
        assert provider.complete.await_count == 5
        assert outcome.input_tokens == 5000
