# =============================================================================
# Shared Test Fixtures
# =============================================================================
#
# Report builders, a fake LLM provider, and a FastAPI TestClient wired to
# that fake. Nothing here touches the network or a database.
# =============================================================================

from __future__ import annotations

from decimal import Decimal
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from app.config import Settings
from app.main import create_app
from app.models.report import (
    BalanceSheet,
    CashFlowStatement,
    FinancialLineItem,
    IncomeStatement,
    Report,
    SourceDocument,
    SummaryFigure,
)
from app.services.llm import LLMResponse

D = Decimal


def _item(label: str, current, prior) -> FinancialLineItem:
    return FinancialLineItem(label=label, amount_current=D(current), amount_prior=D(prior))


def _figure(current, prior) -> SummaryFigure:
    return SummaryFigure(
        amount_current=None if current is None else D(current),
        amount_prior=None if prior is None else D(prior),
    )


def build_report(
    assets=1_500_000,
    liabilities=500_000,
    equity=1_000_000,
    revenue=800_000,
    expenses=600_000,
    net_profit=None,
    operating=250_000,
    investing=-100_000,
    financing=-50_000,
    net_change=None,
    prior_assets=1_200_000,
    prior_liabilities=400_000,
    prior_equity=800_000,
) -> Report:
    """
    Build a two-period Report. Defaults are internally consistent.

    Passing None for a summary figure argument leaves that figure missing
    only where noted: net_profit and net_change default to the computed
    value.
    """
    if net_profit is None:
        net_profit = revenue - expenses
    if net_change is None:
        net_change = operating + investing + financing

    return Report(
        summary="Test company results.",
        current_period_label="2025",
        prior_period_label="2024",
        income_statement=IncomeStatement(
            revenue=[_item("Revenue from services", revenue, 700_000)],
            expenses=[_item("Operating expenses", expenses, 550_000)],
            net_profit=_figure(net_profit, 150_000),
        ),
        balance_sheet=BalanceSheet(
            current_assets=[_item("Cash", assets, prior_assets)],
            current_liabilities=[_item("Payables", liabilities, prior_liabilities)],
            equity=[
                _item("Share capital", 100_000, 100_000),
                _item("Retained earnings", equity - 100_000, prior_equity - 100_000),
            ],
            total_assets=_figure(assets, prior_assets),
            total_liabilities=_figure(liabilities, prior_liabilities),
            total_equity=_figure(equity, prior_equity),
        ),
        cash_flow_statement=CashFlowStatement(
            operating_activities=[_item("Receipts from customers", operating, 200_000)],
            investing_activities=[_item("Purchase of equipment", investing, -80_000)],
            financing_activities=[_item("Dividends paid", financing, -40_000)],
            net_change_in_cash=_figure(net_change, 80_000),
        ),
    )


def llm_response(report: Report, model: str = "x-ai/grok-4-fast") -> LLMResponse:
    return LLMResponse(
        content=report.model_dump_json(),
        model=model,
        input_tokens=1000,
        output_tokens=500,
    )


def source_documents() -> list[SourceDocument]:
    return [
        SourceDocument(name="fy2024.pdf", media_type="application/pdf", data=b"%PDF-1.7 prior"),
        SourceDocument(name="fy2025.csv", media_type="text/csv", data=b"account,amount\ncash,1500000\n"),
    ]


@pytest.fixture()
def fake_provider() -> AsyncMock:
    provider = AsyncMock()
    provider.list_models.return_value = ["x-ai/grok-4-fast", "google/gemini-2.0-flash-exp"]
    return provider


@pytest.fixture()
def test_settings() -> Settings:
    return Settings(
        llm_provider="openai_compatible",
        llm_api_key="test-key",
        generation_model="x-ai/grok-4-fast",
        correction_model="google/gemini-2.0-flash-exp",
        retry_base_delay_seconds=0.0,
        retry_max_delay_seconds=0.0,
        metrics_enabled=False,
        usage_daily_limit_usd=None,
        usage_monthly_limit_usd=None,
    )


@pytest.fixture()
def api_client(test_settings: Settings, fake_provider: AsyncMock):
    app = create_app(test_settings, provider=fake_provider)
    with TestClient(app) as client:
        yield client
