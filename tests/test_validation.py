from __future__ import annotations

import pytest

from statement_parser.models import ExpectedSummary, ExtractedTotals, Holding, RawTransaction
from statement_parser.validation import compute_holding_totals, compute_totals, validate


def _tx(amount: float, type_: str, balance: float | None = None) -> RawTransaction:
    return RawTransaction(
        id="x", date="2024-01-01", amount=amount, type=type_, description="t", balance=balance
    )


@pytest.mark.parametrize(
    ("extracted", "passed"), [(1099.99, True), (1100.0, True), (1101.0, False)]
)
def test_amounts_within_tolerance(extracted: float, passed: bool) -> None:
    result = validate(
        ExtractedTotals(total_credits=extracted),
        ExpectedSummary(total_credits=1000.0),
        tolerance=100.0,
    )
    assert result.passed is passed
    assert not result.skipped


def test_counts_must_match_exactly() -> None:
    result = validate(
        ExtractedTotals(credit_count=11, total_credits=500.0),
        ExpectedSummary(credit_count=12, total_credits=500.0),
        tolerance=100.0,
    )
    assert not result.passed
    assert [m.field for m in result.mismatches] == ["credit_count"]
    assert "row count differs" in (result.diagnosis or "")
    assert "credit_count: expected 12, extracted 11" in result.describe()


def test_missing_summary_skips_validation() -> None:
    totals = ExtractedTotals(total_credits=1.0)
    for expected in (None, ExpectedSummary()):
        result = validate(totals, expected, tolerance=0)
        assert result.passed and result.skipped
        assert "skipped" in result.describe()


def test_absent_fields_are_not_compared() -> None:
    result = validate(
        ExtractedTotals(total_debits=10.0, closing_balance=None),
        ExpectedSummary(total_debits=10.0, closing_balance=999999.0, opening_balance=5.0),
        tolerance=0,
    )
    assert result.passed and not result.skipped


def test_inverted_credits_and_debits_are_diagnosed() -> None:
    result = validate(
        ExtractedTotals(total_credits=300.0, total_debits=5000.0),
        ExpectedSummary(total_credits=5000.0, total_debits=300.0),
        tolerance=100.0,
    )
    assert not result.passed
    assert "inverted" in (result.diagnosis or "")
    assert "off by 4700.00" in result.describe()


def test_compute_totals_derives_opening_balance() -> None:
    txs = [_tx(100.0, "credit", 1100.0), _tx(40.0, "debit", 1060.0), _tx(10.0, "debit", 1050.0)]
    totals = compute_totals(txs)
    assert totals.opening_balance == 1000.0
    assert totals.closing_balance == 1050.0
    assert (totals.total_credits, totals.total_debits) == (100.0, 50.0)
    assert (totals.credit_count, totals.debit_count) == (1, 2)

    debit_first = compute_totals([_tx(25.0, "debit", 75.0)])
    assert debit_first.opening_balance == 100.0


def test_compute_totals_without_balances() -> None:
    totals = compute_totals([_tx(0.1, "debit"), _tx(0.2, "debit")])
    assert totals.opening_balance is None and totals.closing_balance is None
    assert totals.total_debits == 0.3
    assert totals.total_credits == 0.0


def test_compute_holding_totals() -> None:
    holdings = [
        Holding(investment_type="mutual_fund", name="A", current_value=120.0, invested_value=100.0),
        Holding(investment_type="stock", name="B", current_value=80.5),
    ]
    totals = compute_holding_totals(holdings)
    assert (totals.total_current, totals.total_invested, totals.holdings_count) == (200.5, 100.0, 2)
    assert compute_holding_totals([holdings[1]]).total_invested is None
