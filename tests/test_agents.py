# =============================================================================
# Unit Tests — Agents
# =============================================================================
#
# Tests report parsing, the generator and the corrector without API keys.
# The ResilientClient is replaced by an AsyncMock returning ChatResponses.
# =============================================================================

from __future__ import annotations

import asyncio
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest
from conftest import build_report, source_documents

from app.agents.corrector import ReportCorrector, build_correction_instructions
from app.agents.generator import ReportGenerator, build_generation_messages
from app.agents.narrator import MAX_SPEECH_CHARS, AudioSummarizer
from app.agents.parsing import extract_json_object, parse_report
from app.models.report import SourceDocument
from app.services.client import ChatResponse, completion_cache_key
from app.services.errors import SchemaError, ValidationError
from app.services.pricing import select_model
from app.services.verifier import verify


def _run(coro):
    """Helper to run async functions in sync tests."""
    return asyncio.run(coro)


def _chat_response(text: str, model_id: str = "x-ai/grok-4-fast") -> ChatResponse:
    return ChatResponse(
        model_id=model_id,
        generated_text=text,
        input_tokens=1000,
        output_tokens=500,
        cost_usd=0.00045,
        duration_ms=850,
    )


def _mock_client(text: str) -> AsyncMock:
    client = AsyncMock()
    client.invoke.return_value = _chat_response(text)
    client.select_model = MagicMock(side_effect=select_model)
    return client


# ---------------------------------------------------------------------------
# Test: Parsing
# ---------------------------------------------------------------------------


class TestParsing:
    """Model output to Report."""

    def test_plain_json(self):
        report = parse_report(build_report().model_dump_json())
        assert report.balance_sheet.total_assets.amount_current == Decimal("1500000")

    def test_fenced_json(self):
        text = "```json\n" + build_report().model_dump_json() + "\n```"
        assert parse_report(text) == build_report()

    def test_chatter_around_json(self):
        text = "Here is the report:\n" + build_report().model_dump_json() + "\nLet me know!"
        assert parse_report(text).summary == "Test company results."

    def test_numbers_parse_exactly(self):
        text = (
            '{"balance_sheet": {"total_assets": '
            '{"amount_current": 1234567.89, "amount_prior": "100.10"}}}'
        )
        figure = parse_report(text).balance_sheet.total_assets
        assert figure.amount_current == Decimal("1234567.89")
        assert figure.amount_prior == Decimal("100.10")

    def test_no_json_raises(self):
        with pytest.raises(SchemaError) as exc_info:
            parse_report("I could not read the documents.")
        assert exc_info.value.raw_text == "I could not read the documents."

    def test_invalid_shape_raises(self):
        with pytest.raises(SchemaError):
            parse_report('{"income_statement": {"revenue": "lots"}}')

    def test_extract_first_to_last_brace(self):
        assert extract_json_object('x {"a": {"b": 1}} y') == '{"a": {"b": 1}}'


# ---------------------------------------------------------------------------
# Test: Generator
# ---------------------------------------------------------------------------


class TestGenerator:
    """Tests for ReportGenerator with a mocked client."""

    def test_generates_report(self):
        client = _mock_client(build_report().model_dump_json())
        generator = ReportGenerator(client, model_id="x-ai/grok-4-fast")

        result = _run(generator.generate(source_documents(), "Acme Pty Ltd"))

        assert result.report == build_report()
        assert result.response.cost_usd == pytest.approx(0.00045)
        request = client.invoke.call_args.args[0]
        assert request.model_id == "x-ai/grok-4-fast"
        assert request.response_format == "structured"
        assert request.task_type == "generation"

    def test_both_documents_attached_in_order(self):
        prior, current = source_documents()
        system, user = build_generation_messages(prior, current, "Acme Pty Ltd")
        assert system.role == "system"
        assert "JSON Schema" in system.content
        assert user.attachments == (prior, current)
        assert "Acme Pty Ltd" in user.content
        assert "total_assets MUST equal" in user.content

    def test_wrong_document_count(self):
        generator = ReportGenerator(_mock_client("{}"), model_id="x-ai/grok-4-fast")
        with pytest.raises(ValidationError):
            _run(generator.generate(source_documents()[:1]))

    def test_unsupported_media_type(self):
        client = _mock_client("{}")
        generator = ReportGenerator(client, model_id="x-ai/grok-4-fast")
        documents = [
            source_documents()[0],
            SourceDocument("data.xlsx", "application/vnd.ms-excel", b"PK"),
        ]
        with pytest.raises(ValidationError):
            _run(generator.generate(documents))
        client.invoke.assert_not_awaited()

    def test_empty_document(self):
        generator = ReportGenerator(_mock_client("{}"), model_id="x-ai/grok-4-fast")
        documents = [source_documents()[0], SourceDocument("empty.csv", "text/csv", b"")]
        with pytest.raises(ValidationError):
            _run(generator.generate(documents))

    def test_unparseable_reply(self):
        generator = ReportGenerator(_mock_client("Sorry."), model_id="x-ai/grok-4-fast")
        with pytest.raises(SchemaError):
            _run(generator.generate(source_documents()))

    def test_selection_policy_when_unpinned(self):
        generator = ReportGenerator(_mock_client("{}"), model_id="", priority="cost")
        assert generator.resolve_model(source_documents()) == "nvidia/nemotron-nano-12b-v2-vl"

    def test_budget_respected_when_unpinned(self):
        generator = ReportGenerator(
            _mock_client("{}"), model_id="", priority="quality",
            max_cost_per_request=0.0001,
        )
        assert generator.resolve_model(source_documents()) == "google/gemini-2.0-flash-exp"


# ---------------------------------------------------------------------------
# Test: Corrector
# ---------------------------------------------------------------------------


class TestCorrectionInstructions:
    def test_balance_sheet_instruction(self):
        report = build_report(equity=900_000)
        text = build_correction_instructions(verify(report), report)
        assert "Balance Sheet Equation (2025)" in text
        assert "Retained Earnings" in text
        assert "balance_sheet.total_equity.amount_current" in text
        assert "100000" in text

    def test_income_instruction_gives_computed_value(self):
        report = build_report(net_profit=150_000)
        text = build_correction_instructions(verify(report), report)
        assert "Set income_statement.net_profit.amount_current to 200000" in text

    def test_cash_flow_instruction_gives_computed_value(self):
        report = build_report(net_change=0)
        text = build_correction_instructions(verify(report), report)
        assert "Set cash_flow_statement.net_change_in_cash.amount_current to 100000" in text

    def test_nothing_to_fix(self):
        report = build_report()
        assert build_correction_instructions(verify(report), report) == "No errors found."


class TestCorrector:
    def test_fix_returns_new_report(self):
        fixed = build_report()
        client = _mock_client(fixed.model_dump_json())
        corrector = ReportCorrector(client, model_id="google/gemini-2.0-flash-exp")
        broken = build_report(equity=900_000)

        result = _run(corrector.fix(broken, verify(broken)))

        assert result.report == fixed
        request = client.invoke.call_args.args[0]
        assert request.model_id == "google/gemini-2.0-flash-exp"
        assert request.temperature == 0.1
        assert request.task_type == "correction"
        assert "REPORT TO FIX" in request.messages[1].content
        assert "CORRECTIONS" in request.messages[1].content

    def test_fix_unparseable(self):
        corrector = ReportCorrector(_mock_client("```\nnope\n```"), model_id="m")
        broken = build_report(equity=900_000)
        with pytest.raises(SchemaError):
            _run(corrector.fix(broken, verify(broken)))

    def test_each_round_is_a_distinct_request(self):
        corrector = ReportCorrector(AsyncMock(), model_id="m")
        broken = build_report(equity=900_000)
        verification = verify(broken)

        second = corrector.build_request(broken, verification, attempt_number=2)
        third = corrector.build_request(broken, verification, attempt_number=3)

        assert "CORRECTION ROUND: 2" in second.messages[1].content
        assert completion_cache_key(second) != completion_cache_key(third)

    def test_rejected_output_is_shown_truncated(self):
        corrector = ReportCorrector(AsyncMock(), model_id="m")
        broken = build_report(equity=900_000)
        rejected = "sorry, no json " + "x" * 5000

        request = corrector.build_request(
            broken, verify(broken), attempt_number=3, rejected_output=rejected
        )

        content = request.messages[1].content
        assert "COULD NOT BE PARSED" in content
        assert "sorry, no json" in content
        assert "x" * 5000 not in content

    def test_fix_passes_round_details(self):
        client = _mock_client(build_report().model_dump_json())
        corrector = ReportCorrector(client, model_id="m")
        broken = build_report(equity=900_000)

        _run(corrector.fix(broken, verify(broken), attempt_number=4, rejected_output="{oops"))

        content = client.invoke.call_args.args[0].messages[1].content
        assert "CORRECTION ROUND: 4" in content
        assert "{oops" in content


# ---------------------------------------------------------------------------
# Test: Narrator
# ---------------------------------------------------------------------------


def _audio_client(audio: bytes | None = b"ID3\x03audio") -> AsyncMock:
    client = AsyncMock()
    client.invoke.return_value = ChatResponse(
        model_id="openai/tts-1",
        generated_text="",
        input_tokens=120,
        output_tokens=0,
        cost_usd=0.0018,
        duration_ms=400,
        audio=audio,
    )
    client.select_model = MagicMock(side_effect=select_model)
    return client


class TestNarrator:
    def test_generate_audio_summary(self):
        client = _audio_client()
        narrator = AudioSummarizer(client, voice="nova")

        summary = _run(narrator.generate_audio_summary("  Revenue grew 14%.  "))

        assert summary.audio == b"ID3\x03audio"
        assert summary.media_type == "audio/mpeg"
        request = client.invoke.call_args.args[0]
        assert request.task_type == "audio"
        assert request.response_format == "audio"
        assert request.voice == "nova"
        assert request.messages[0].content.endswith("Revenue grew 14%.")
        # Quality priority prefers the larger-context speech model
        assert request.model_id == "openai/tts-1"
        client.select_model.assert_called_once()

    def test_pinned_model_skips_selection(self):
        client = _audio_client()
        narrator = AudioSummarizer(client, model_id="elevenlabs/eleven-multilingual-v2")
        _run(narrator.generate_audio_summary("Summary."))
        assert client.invoke.call_args.args[0].model_id == "elevenlabs/eleven-multilingual-v2"
        client.select_model.assert_not_called()

    def test_cost_priority_selects_cheapest(self):
        client = _audio_client()
        _run(AudioSummarizer(client, priority="cost").generate_audio_summary("Summary."))
        assert client.invoke.call_args.args[0].model_id == "elevenlabs/eleven-multilingual-v2"

    def test_long_summary_truncated(self):
        client = _audio_client()
        _run(AudioSummarizer(client).generate_audio_summary("word " * 2000))
        assert len(client.invoke.call_args.args[0].messages[0].content) == MAX_SPEECH_CHARS

    def test_empty_summary_rejected(self):
        client = _audio_client()
        with pytest.raises(ValidationError):
            _run(AudioSummarizer(client).generate_audio_summary("   "))
        client.invoke.assert_not_awaited()

    def test_missing_audio_is_schema_error(self):
        with pytest.raises(SchemaError):
            _run(AudioSummarizer(_audio_client(audio=None)).generate_audio_summary("Summary."))
