# =============================================================================
# Report Domain Models — Comparative Financial Report and Certificate
# =============================================================================
#
# The Report is what the model generates and what the verifier checks.
# Every model here is frozen: a correction round produces a brand new
# Report that replaces the previous one wholesale, never a partial edit.
#
# Monetary amounts are Decimal. The model's JSON numbers (or numeric
# strings) are parsed straight into Decimal, so arithmetic in the
# verifier is exact.
#
# Summary figures (totals, net profit, net change in cash) may be null
# for a period. The verifier treats that as "missing data" rather than
# as zero.
# =============================================================================

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from app.services.errors import ValidationError

SUPPORTED_MEDIA_TYPES = frozenset({
    "application/pdf",
    "image/png",
    "image/jpeg",
    "image/webp",
    "image/gif",
    "text/plain",
    "text/csv",
})


@dataclass(frozen=True)
class SourceDocument:
    """An uploaded financial document (prior statement or current data)."""

    name: str
    media_type: str
    data: bytes

    @property
    def is_image(self) -> bool:
        return self.media_type.startswith("image/")

    def validate(self) -> None:
        if self.media_type not in SUPPORTED_MEDIA_TYPES:
            raise ValidationError(
                f"Unsupported media type '{self.media_type}' for '{self.name}'"
            )
        if not self.data:
            raise ValidationError(f"Document '{self.name}' is empty")


# ---------------------------------------------------------------------------
# Report
# ---------------------------------------------------------------------------


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")


class FinancialLineItem(_Frozen):
    label: str
    amount_current: Decimal
    amount_prior: Decimal
    note_ref: int | None = None


class SummaryFigure(_Frozen):
    """A derived total. None for a period means the figure was not reported."""

    amount_current: Decimal | None = None
    amount_prior: Decimal | None = None
    note_ref: int | None = None

    def for_period(self, period: Period) -> Decimal | None:
        return self.amount_current if period is Period.CURRENT else self.amount_prior


class KPI(_Frozen):
    name: str
    value_current: str
    value_prior: str
    change_percentage: float | None = None


class Director(_Frozen):
    name: str
    title: str


class DirectorsDeclaration(_Frozen):
    directors: list[Director] = Field(default_factory=list)
    date: str = ""


class IncomeStatement(_Frozen):
    revenue: list[FinancialLineItem] = Field(default_factory=list)
    expenses: list[FinancialLineItem] = Field(default_factory=list)
    gross_profit: SummaryFigure = Field(default_factory=SummaryFigure)
    operating_income: SummaryFigure = Field(default_factory=SummaryFigure)
    net_profit: SummaryFigure = Field(default_factory=SummaryFigure)


class BalanceSheet(_Frozen):
    current_assets: list[FinancialLineItem] = Field(default_factory=list)
    non_current_assets: list[FinancialLineItem] = Field(default_factory=list)
    current_liabilities: list[FinancialLineItem] = Field(default_factory=list)
    non_current_liabilities: list[FinancialLineItem] = Field(default_factory=list)
    equity: list[FinancialLineItem] = Field(default_factory=list)
    total_assets: SummaryFigure = Field(default_factory=SummaryFigure)
    total_liabilities: SummaryFigure = Field(default_factory=SummaryFigure)
    total_equity: SummaryFigure = Field(default_factory=SummaryFigure)


class CashFlowStatement(_Frozen):
    operating_activities: list[FinancialLineItem] = Field(default_factory=list)
    investing_activities: list[FinancialLineItem] = Field(default_factory=list)
    financing_activities: list[FinancialLineItem] = Field(default_factory=list)
    net_change_in_cash: SummaryFigure = Field(default_factory=SummaryFigure)


class Report(_Frozen):
    """Comparative financial report covering a current and a prior period."""

    summary: str = ""
    current_period_label: str = "current"
    prior_period_label: str = "prior"
    abn: str = ""
    kpis: list[KPI] = Field(default_factory=list)
    directors_declaration: DirectorsDeclaration = Field(
        default_factory=DirectorsDeclaration
    )
    income_statement: IncomeStatement = Field(default_factory=IncomeStatement)
    balance_sheet: BalanceSheet = Field(default_factory=BalanceSheet)
    cash_flow_statement: CashFlowStatement = Field(default_factory=CashFlowStatement)
    notes: str = Field(default="", description="Notes to the financial statements (markdown)")


# ---------------------------------------------------------------------------
# Verification certificate
# ---------------------------------------------------------------------------


class Period(str, Enum):
    CURRENT = "current"
    PRIOR = "prior"


class CheckKind(str, Enum):
    BALANCE_SHEET = "balance_sheet"
    INCOME_STATEMENT = "income_statement"
    CASH_FLOW = "cash_flow"


class OverallStatus(str, Enum):
    PASSED = "Passed"
    PASSED_WITH_WARNINGS = "Passed with Warnings"
    FAILED = "Failed"


MISSING_DATA_NOTE = "Verification skipped due to missing data"


class VerificationCheck(_Frozen):
    name: str
    kind: CheckKind
    period: Period
    principle: str
    expected: Decimal | None = None
    reported: Decimal | None = None
    discrepancy: Decimal | None = None
    passed: bool
    notes: str | None = None

    @property
    def is_missing_data(self) -> bool:
        return not self.passed and self.notes == MISSING_DATA_NOTE


class VerificationResult(_Frozen):
    checks: list[VerificationCheck]
    overall_status: OverallStatus
    generated_at: datetime

    @property
    def passed(self) -> bool:
        return self.overall_status is not OverallStatus.FAILED

    def failed_checks(self) -> list[VerificationCheck]:
        """Failures the model can fix (missing-data checks excluded)."""
        return [c for c in self.checks if not c.passed and not c.is_missing_data]
