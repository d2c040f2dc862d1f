# =============================================================================
# Verifier — Deterministic Accounting Identity Checks
# =============================================================================
#
# Pure function over a Report. No I/O, no model calls.
#
# Identities, each checked for the current then the prior period:
#   1. Balance Sheet Equation       Assets = Liabilities + Equity
#   2. Income Statement Integrity   Revenue - Expenses = Net Profit
#   3. Cash Flow Integrity          Operating + Investing + Financing
#                                   = Net Change in Cash
#
# discrepancy = reported - expected (sign kept). A check passes when
# |discrepancy| <= tolerance (absolute, inclusive, default $1).
#
# A missing summary figure never raises: the check fails with the
# missing-data note, which downgrades the overall status to
# "Passed with Warnings" rather than "Failed".
# =============================================================================

from __future__ import annotations

import logging
from datetime import UTC, datetime
from decimal import Decimal

from app.models.report import (
    MISSING_DATA_NOTE,
    CheckKind,
    FinancialLineItem,
    OverallStatus,
    Period,
    Report,
    VerificationCheck,
    VerificationResult,
)

logger = logging.getLogger(__name__)

DEFAULT_TOLERANCE = Decimal("1")

BALANCE_PRINCIPLE = "Assets = Liabilities + Equity"
INCOME_PRINCIPLE = "Revenue - Expenses = Net Profit"
CASH_FLOW_PRINCIPLE = "Operating + Investing + Financing = Net Change in Cash"


def sum_items(items: list[FinancialLineItem], period: Period) -> Decimal:
    if period is Period.CURRENT:
        return sum((item.amount_current for item in items), Decimal(0))
    return sum((item.amount_prior for item in items), Decimal(0))


def _label(report: Report, period: Period) -> str:
    if period is Period.CURRENT:
        return report.current_period_label
    return report.prior_period_label


def _check(
    name: str,
    kind: CheckKind,
    period: Period,
    principle: str,
    expected: Decimal,
    reported: Decimal,
    tolerance: Decimal,
) -> VerificationCheck:
    discrepancy = reported - expected
    return VerificationCheck(
        name=name,
        kind=kind,
        period=period,
        principle=principle,
        expected=expected,
        reported=reported,
        discrepancy=discrepancy,
        passed=abs(discrepancy) <= tolerance,
    )


def _missing(name: str, kind: CheckKind, period: Period, principle: str) -> VerificationCheck:
    return VerificationCheck(
        name=name,
        kind=kind,
        period=period,
        principle=principle,
        passed=False,
        notes=MISSING_DATA_NOTE,
    )


def check_balance_sheet(
    report: Report, period: Period, tolerance: Decimal = DEFAULT_TOLERANCE
) -> VerificationCheck:
    sheet = report.balance_sheet
    name = f"Balance Sheet Equation ({_label(report, period)})"
    assets = sheet.total_assets.for_period(period)
    liabilities = sheet.total_liabilities.for_period(period)
    equity = sheet.total_equity.for_period(period)

    if assets is None or liabilities is None or equity is None:
        logger.warning("Missing balance sheet totals for %s", _label(report, period))
        return _missing(name, CheckKind.BALANCE_SHEET, period, BALANCE_PRINCIPLE)

    check = _check(
        name, CheckKind.BALANCE_SHEET, period, BALANCE_PRINCIPLE,
        expected=liabilities + equity,
        reported=assets,
        tolerance=tolerance,
    )
    if not check.passed:
        logger.warning(
            "Balance sheet imbalance for %s: assets=%s liabilities+equity=%s "
            "discrepancy=%s",
            _label(report, period), assets, liabilities + equity, check.discrepancy,
        )
    return check


def check_income_statement(
    report: Report, period: Period, tolerance: Decimal = DEFAULT_TOLERANCE
) -> VerificationCheck:
    statement = report.income_statement
    name = f"Income Statement Integrity ({_label(report, period)})"
    net_profit = statement.net_profit.for_period(period)

    if net_profit is None:
        logger.warning("Missing net profit for %s", _label(report, period))
        return _missing(name, CheckKind.INCOME_STATEMENT, period, INCOME_PRINCIPLE)

    revenue = sum_items(statement.revenue, period)
    expenses = sum_items(statement.expenses, period)
    check = _check(
        name, CheckKind.INCOME_STATEMENT, period, INCOME_PRINCIPLE,
        expected=revenue - expenses,
        reported=net_profit,
        tolerance=tolerance,
    )
    if not check.passed:
        logger.warning(
            "Income statement error for %s: revenue=%s expenses=%s "
            "expected=%s reported=%s",
            _label(report, period), revenue, expenses, revenue - expenses, net_profit,
        )
    return check


def check_cash_flow(
    report: Report, period: Period, tolerance: Decimal = DEFAULT_TOLERANCE
) -> VerificationCheck:
    statement = report.cash_flow_statement
    name = f"Cash Flow Integrity ({_label(report, period)})"
    net_change = statement.net_change_in_cash.for_period(period)

    if net_change is None:
        logger.warning("Missing net change in cash for %s", _label(report, period))
        return _missing(name, CheckKind.CASH_FLOW, period, CASH_FLOW_PRINCIPLE)

    operating = sum_items(statement.operating_activities, period)
    investing = sum_items(statement.investing_activities, period)
    financing = sum_items(statement.financing_activities, period)
    expected = operating + investing + financing
    check = _check(
        name, CheckKind.CASH_FLOW, period, CASH_FLOW_PRINCIPLE,
        expected=expected,
        reported=net_change,
        tolerance=tolerance,
    )
    if not check.passed:
        logger.warning(
            "Cash flow error for %s: operating=%s investing=%s financing=%s "
            "expected=%s reported=%s",
            _label(report, period), operating, investing, financing, expected, net_change,
        )
    return check


def overall_status(checks: list[VerificationCheck]) -> OverallStatus:
    failures = [c for c in checks if not c.passed]
    if any(not c.is_missing_data for c in failures):
        return OverallStatus.FAILED
    if failures:
        return OverallStatus.PASSED_WITH_WARNINGS
    return OverallStatus.PASSED


def verify(report: Report, tolerance: Decimal = DEFAULT_TOLERANCE) -> VerificationResult:
    """Run every identity check over both periods of `report`."""
    checks: list[VerificationCheck] = []
    for check_fn in (check_balance_sheet, check_income_statement, check_cash_flow):
        for period in (Period.CURRENT, Period.PRIOR):
            checks.append(check_fn(report, period, tolerance))

    status = overall_status(checks)
    logger.info(
        "Verification %s (%d/%d checks passed)",
        status.value,
        sum(1 for c in checks if c.passed),
        len(checks),
    )
    return VerificationResult(
        checks=checks,
        overall_status=status,
        generated_at=datetime.now(UTC),
    )
