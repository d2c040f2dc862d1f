# =============================================================================
# Corrector Agent — Targeted Fixes for Failed Verification Checks
# =============================================================================
#
# Given the last Report and its failed VerificationResult, builds one
# instruction per fixable failed check and asks the model for the full
# corrected JSON. Missing-data checks are not sent: the model cannot
# invent a figure the documents do not contain.
#
# INSTRUCTION TEMPLATES (by check kind):
#   balance_sheet    recompute totals from the section items; if still
#                    unbalanced, adjust an equity item (retained earnings)
#                    to assets - liabilities - other equity, then update
#                    total_equity
#   income_statement set net_profit to revenue - expenses
#   cash_flow        set net_change_in_cash to the sum of the activities
#   anything else    generic "please correct" with the discrepancy
#
# Low temperature (0.1): the goal is a minimal, deterministic edit.
#
# Each round's prompt carries its attempt number, and the rejected reply
# when the previous round was unparseable. Identical prompts would be
# answered from the response cache.
# =============================================================================

from __future__ import annotations

import logging

from app.agents.generator import GenerationResult, report_schema_json
from app.agents.parsing import parse_report
from app.models.report import (
    CheckKind,
    Period,
    Report,
    VerificationCheck,
    VerificationResult,
)
from app.services.client import ResilientClient
from app.services.llm import ChatMessage, ChatRequest
from app.services.verifier import sum_items

logger = logging.getLogger(__name__)

CORRECTION_SYSTEM_PROMPT = """\
You are a meticulous CPA reviewing a financial report JSON that failed
programmatic verification. Make the minimal, targeted fix for each listed
error, keep every other value unchanged, and output the COMPLETE corrected
JSON object matching this JSON Schema, with no text before or after it:
{schema}
"""

CORRECTION_USER_PROMPT = """\
CORRECTION ROUND: {attempt}

REPORT TO FIX:
{report}

CORRECTIONS:
{instructions}
"""

REJECTED_OUTPUT_PROMPT = """
YOUR PREVIOUS REPLY COULD NOT BE PARSED AS THE REPORT JSON:
{rejected}

Reply with the complete JSON object only.
"""

MAX_REJECTED_CHARS = 2000


def _amount_field(period: Period) -> str:
    return "amount_current" if period is Period.CURRENT else "amount_prior"


def _balance_instruction(check: VerificationCheck, report: Report) -> str:
    sheet = report.balance_sheet
    field = _amount_field(check.period)
    assets = sheet.total_assets.for_period(check.period)
    liabilities = sheet.total_liabilities.for_period(check.period)
    equity = sheet.total_equity.for_period(check.period)
    return (
        f"- {check.name}: Assets ({assets}) != Liabilities ({liabilities}) + "
        f"Equity ({equity}). Discrepancy: {check.discrepancy}.\n"
        "  Action: Recalculate total_assets, total_liabilities and "
        "total_equity from their section items. If the equation still does "
        "not hold, adjust one equity item (e.g. Retained Earnings) so that "
        "it equals total_assets - total_liabilities - the other equity "
        f"items, then update balance_sheet.total_equity.{field} to match."
    )


def _income_instruction(check: VerificationCheck, report: Report) -> str:
    statement = report.income_statement
    field = _amount_field(check.period)
    computed = sum_items(statement.revenue, check.period) - sum_items(
        statement.expenses, check.period
    )
    return (
        f"- {check.name}: Reported net profit {check.reported} != {computed} "
        "(revenue - expenses).\n"
        f"  Action: Set income_statement.net_profit.{field} to {computed}."
    )


def _cash_flow_instruction(check: VerificationCheck, report: Report) -> str:
    statement = report.cash_flow_statement
    field = _amount_field(check.period)
    computed = (
        sum_items(statement.operating_activities, check.period)
        + sum_items(statement.investing_activities, check.period)
        + sum_items(statement.financing_activities, check.period)
    )
    return (
        f"- {check.name}: Reported net change {check.reported} != {computed} "
        "(sum of activities).\n"
        f"  Action: Set cash_flow_statement.net_change_in_cash.{field} to "
        f"{computed}."
    )


_TEMPLATES = {
    CheckKind.BALANCE_SHEET: _balance_instruction,
    CheckKind.INCOME_STATEMENT: _income_instruction,
    CheckKind.CASH_FLOW: _cash_flow_instruction,
}


def build_correction_instructions(
    verification: VerificationResult,
    report: Report,
) -> str:
    failed = verification.failed_checks()
    if not failed:
        return "No errors found."

    lines = []
    for check in failed:
        template = _TEMPLATES.get(check.kind)
        if template is None:
            lines.append(
                f"- {check.name}: Please correct. Discrepancy: {check.discrepancy}."
            )
        else:
            lines.append(template(check, report))
    return "\n\n".join(lines)


class ReportCorrector:
    """Asks the model to repair a Report that failed verification."""

    def __init__(
        self,
        client: ResilientClient,
        model_id: str,
        temperature: float = 0.1,
        max_output_tokens: int = 16000,
    ) -> None:
        self.client = client
        self.model_id = model_id
        self.temperature = temperature
        self.max_output_tokens = max_output_tokens

    def build_request(
        self,
        report: Report,
        verification: VerificationResult,
        attempt_number: int = 2,
        rejected_output: str = "",
    ) -> ChatRequest:
        """
        Build the correction request for one round.

        The round number, and the previous reply when it could not be
        parsed, are part of the prompt so every round is a distinct
        request and never a replay of a cached one.
        """
        system = CORRECTION_SYSTEM_PROMPT.format(schema=report_schema_json())
        user = CORRECTION_USER_PROMPT.format(
            attempt=attempt_number,
            report=report.model_dump_json(indent=1),
            instructions=build_correction_instructions(verification, report),
        )
        if rejected_output:
            user += REJECTED_OUTPUT_PROMPT.format(
                rejected=rejected_output[:MAX_REJECTED_CHARS]
            )
        return ChatRequest(
            model_id=self.model_id,
            messages=(
                ChatMessage(role="system", content=system),
                ChatMessage(role="user", content=user),
            ),
            temperature=self.temperature,
            max_output_tokens=self.max_output_tokens,
            response_format="structured",
            task_type="correction",
        )

    async def fix(
        self,
        report: Report,
        verification: VerificationResult,
        attempt_number: int = 2,
        rejected_output: str = "",
    ) -> GenerationResult:
        """
        Return a corrected Report.

        Raises:
            ClientError: The model call failed.
            SchemaError: The reply could not be parsed as a Report.
        """
        request = self.build_request(
            report, verification, attempt_number, rejected_output
        )
        logger.info(
            "Requesting correction of %d checks from %s (attempt %d)",
            len(verification.failed_checks()),
            self.model_id,
            attempt_number,
        )
        response = await self.client.invoke(request)
        corrected = parse_report(response.generated_text)
        return GenerationResult(report=corrected, response=response)
