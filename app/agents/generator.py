# =============================================================================
# Generator Agent — Comparative Report from Two Source Documents
# =============================================================================
#
# Takes the prior-period statement and the current-period raw data,
# sends both to the model together with:
#   1. a financial knowledge base (formulas and terminology)
#   2. the accountant instructions, including the identities the
#      verifier will check
#   3. the Report JSON schema the output must follow
#
# and parses the reply into a Report. One model call, no retries here:
# resilience lives in ResilientClient, correction in the Corrector.
#
# The model id is either fixed by configuration or, when left empty,
# chosen per call by the selection policy (vision is required whenever
# a source document is an image).
# =============================================================================

from __future__ import annotations

import json
import logging
from dataclasses import dataclass

from app.agents.parsing import parse_report
from app.models.report import Report, SourceDocument
from app.services.client import ChatResponse, ResilientClient
from app.services.errors import ValidationError
from app.services.llm import ChatMessage, ChatRequest
from app.services.pricing import ModelBudget, ModelRequirements

logger = logging.getLogger(__name__)


@dataclass
class GenerationResult:
    """A parsed report plus the response that produced it."""

    report: Report
    response: ChatResponse


# ---------------------------------------------------------------------------
# Prompts
# ---------------------------------------------------------------------------

KNOWLEDGE_BASE = """\
You are an expert financial analyst. Use the following reference material
for every calculation and for precise terminology.

### Formulas
- Current Ratio = Current Assets / Current Liabilities
- Quick Ratio = (Current Assets - Inventories) / Current Liabilities
- Debt-to-Equity Ratio = Total Liabilities / Shareholders' Equity
- Return on Assets (%) = Net Income / Total Assets x 100
- Return on Equity (%) = Net Income / Shareholders' Equity x 100
- Inventory Turnover = Cost of Goods Sold / Average Inventory

### Terminology
- Cost of Revenue: cost of goods produced and sold and services rendered.
- Retained Earnings: net income kept in the business after dividends.
- Accrued Liabilities: obligations incurred but not yet invoiced.
- Capital Expenditure: purchases of property, plant and equipment, shown
  under investing activities in the cash flow statement.
"""

BASE_PROMPT = """\
You are a meticulous senior accountant acting as a Certified Public
Accountant (CPA). Two financial documents for {company} are attached:
- Document 1: the complete, final financial statements for the PRIOR period.
- Document 2: the raw financial data for the CURRENT period.

Construct the full current-period financial statements, compare them with
the prior period, and output the result as ONE JSON object.

CRITICAL ACCURACY INSTRUCTIONS
Your output will be verified programmatically. For BOTH periods:
1. Balance Sheet Equation: total_assets MUST equal total_liabilities
   plus total_equity.
2. Income Statement Integrity: net_profit MUST equal the sum of revenue
   items minus the sum of expense items.
3. Cash Flow Integrity: net_change_in_cash MUST equal the sum of
   operating, investing and financing activity items.

TASKS
1. Build the current-period income statement, balance sheet and cash flow
   statement. Mirror the prior document's line items, ordering and level
   of detail. Extract the company's ABN.
2. The cash flow statement is mandatory. If it is not explicit, derive it
   with the indirect method from the income statement and the movement
   between the two balance sheets.
3. Write the notes to the financial statements as one markdown string in
   `notes`. Number notes "**Note 1: ...**", every note_ref used by a line
   item must have a matching note, and tabular breakdowns use markdown
   tables. Carry over the accounting standards cited in the prior notes.
4. Copy the signing directors and the declaration date from the prior
   document into `directors_declaration`.
5. Calculate standard KPIs for both periods and write an executive summary
   of performance, position and cash flows.
6. Set `current_period_label` and `prior_period_label` to the period names
   used in the documents (for example "2025" and "2024").

Monetary values are plain numbers: no currency symbols, no thousands
separators, no parentheses. Use a minus sign for losses and outflows.
"""

SCHEMA_INSTRUCTIONS = """\
Output ONLY a JSON object matching this JSON Schema, with no text before
or after it:
{schema}
"""


def report_schema_json() -> str:
    return json.dumps(Report.model_json_schema(), indent=1)


def build_generation_messages(
    prior_document: SourceDocument,
    current_document: SourceDocument,
    company_name: str = "",
) -> tuple[ChatMessage, ...]:
    system = KNOWLEDGE_BASE + "\n---\n\n" + SCHEMA_INSTRUCTIONS.format(
        schema=report_schema_json()
    )
    user = BASE_PROMPT.format(company=company_name or "the company")
    return (
        ChatMessage(role="system", content=system),
        ChatMessage(
            role="user",
            content=user,
            attachments=(prior_document, current_document),
        ),
    )


# ---------------------------------------------------------------------------
# Agent
# ---------------------------------------------------------------------------


class ReportGenerator:
    """
    Generates a Report from a prior statement and current-period data.

    Args:
        client: Shared resilient client.
        model_id: Fixed model id, or "" to use the selection policy.
        priority: Selection priority when model_id is empty.
        max_cost_per_request: Budget ceiling for the selection policy.
    """

    def __init__(
        self,
        client: ResilientClient,
        model_id: str = "",
        temperature: float = 0.2,
        max_output_tokens: int = 16000,
        priority: str = "quality",
        max_cost_per_request: float | None = None,
    ) -> None:
        self.client = client
        self.model_id = model_id
        self.temperature = temperature
        self.max_output_tokens = max_output_tokens
        self.priority = priority
        self.max_cost_per_request = max_cost_per_request

    def resolve_model(self, documents: list[SourceDocument]) -> str:
        if self.model_id:
            return self.model_id
        selection = self.client.select_model(
            "generation",
            ModelRequirements(
                priority=self.priority,
                needs_vision=any(doc.is_image for doc in documents),
            ),
            ModelBudget(max_cost_per_request=self.max_cost_per_request),
        )
        logger.info("Model selection: %s", selection.reasoning)
        return selection.selected.model_id

    async def generate(
        self,
        documents: list[SourceDocument],
        company_name: str = "",
    ) -> GenerationResult:
        """
        Generate a report from exactly two documents (prior, current).

        Raises:
            ValidationError: Wrong document count or unsupported media type.
            ClientError: The model call failed.
            SchemaError: The reply could not be parsed as a Report.
        """
        if len(documents) != 2:
            raise ValidationError(
                f"Expected exactly 2 documents (prior, current), got {len(documents)}"
            )
        for document in documents:
            document.validate()

        prior_document, current_document = documents
        model_id = self.resolve_model(documents)
        request = ChatRequest(
            model_id=model_id,
            messages=build_generation_messages(
                prior_document, current_document, company_name
            ),
            temperature=self.temperature,
            max_output_tokens=self.max_output_tokens,
            response_format="structured",
            task_type="generation",
        )

        logger.info(
            "Generating report with %s (%s, %s)",
            model_id, prior_document.name, current_document.name,
        )
        response = await self.client.invoke(request)
        report = parse_report(response.generated_text)
        return GenerationResult(report=report, response=response)
