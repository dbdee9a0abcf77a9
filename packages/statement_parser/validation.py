"""Compare totals recomputed from parser output with the statement's own summary.

Only fields present on both sides are compared. Counts must match exactly;
amounts pass when ``abs(extracted - expected) <= tolerance``. A missing or
empty expected summary skips validation entirely.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, fields

from .models import ExpectedSummary, ExtractedTotals, Holding, RawTransaction

_COUNT_FIELDS: frozenset[str] = frozenset({"credit_count", "debit_count", "holdings_count"})


def _round2(value: float) -> float:
    return round(value, 2)


def compute_totals(transactions: Sequence[RawTransaction]) -> ExtractedTotals:
    """Aggregate transactions; balances come from the first and last rows carrying one."""

    credits = [t for t in transactions if t.type == "credit"]
    debits = [t for t in transactions if t.type == "debit"]

    opening: float | None = None
    closing: float | None = None
    if transactions:
        first, last = transactions[0], transactions[-1]
        if first.balance is not None:
            # Balance printed after the first transaction; undo it.
            delta = first.amount if first.type == "credit" else -first.amount
            opening = _round2(first.balance - delta)
        if last.balance is not None:
            closing = _round2(last.balance)

    return ExtractedTotals(
        opening_balance=opening,
        closing_balance=closing,
        total_credits=_round2(sum(t.amount for t in credits)),
        total_debits=_round2(sum(t.amount for t in debits)),
        credit_count=len(credits),
        debit_count=len(debits),
    )


def compute_holding_totals(holdings: Sequence[Holding]) -> ExtractedTotals:
    invested = [h.invested_value for h in holdings if h.invested_value is not None]
    return ExtractedTotals(
        total_invested=_round2(sum(invested)) if invested else None,
        total_current=_round2(sum(h.current_value for h in holdings)),
        holdings_count=len(holdings),
    )


@dataclass(frozen=True, slots=True)
class Mismatch:
    field: str
    expected: float
    extracted: float

    @property
    def difference(self) -> float:
        return abs(self.extracted - self.expected)


@dataclass(frozen=True, slots=True)
class ValidationResult:
    passed: bool
    skipped: bool = False
    mismatches: tuple[Mismatch, ...] = ()
    diagnosis: str | None = None

    def describe(self) -> str:
        if self.skipped:
            return "Validation skipped: no statement summary available."
        if self.passed:
            return "Validation passed."
        lines = ["Validation failed:"]
        for m in self.mismatches:
            if m.field in _COUNT_FIELDS:
                lines.append(
                    f"- {m.field}: expected {int(m.expected)}, extracted {int(m.extracted)}"
                )
            else:
                lines.append(
                    f"- {m.field}: expected {m.expected:.2f}, extracted {m.extracted:.2f} "
                    f"(off by {m.difference:.2f})"
                )
        if self.diagnosis:
            lines.append(f"Diagnosis: {self.diagnosis}")
        return "\n".join(lines)


def _diagnose(
    mismatches: Sequence[Mismatch],
    extracted: ExtractedTotals,
    expected: ExpectedSummary,
    tolerance: float,
) -> str | None:
    failed = {m.field for m in mismatches}
    if {"total_credits", "total_debits"} <= failed:
        ec, ed = expected.total_credits, expected.total_debits
        xc, xd = extracted.total_credits, extracted.total_debits
        if (
            None not in (ec, ed, xc, xd)
            and abs(xc - ed) <= tolerance  # type: ignore[operator]
            and abs(xd - ec) <= tolerance  # type: ignore[operator]
        ):
            return (
                "credits and debits look inverted; check how the direction of each "
                "transaction is decided"
            )
    if failed & _COUNT_FIELDS:
        return (
            "row count differs from the statement; the parser is probably missing rows "
            "or including header, total or balance lines"
        )
    if failed & {"total_credits", "total_debits", "total_invested", "total_current"}:
        return (
            "counts match but amounts differ; check amount parsing (thousands "
            "separators, decimals) and the credit/debit split"
        )
    if failed & {"opening_balance", "closing_balance"}:
        return "balances differ; check the order of transactions and the balance column"
    return None


def validate(
    extracted: ExtractedTotals,
    expected: ExpectedSummary | None,
    tolerance: float,
) -> ValidationResult:
    if expected is None or expected.is_empty():
        return ValidationResult(passed=True, skipped=True)

    mismatches: list[Mismatch] = []
    for f in fields(ExtractedTotals):
        exp = getattr(expected, f.name, None)
        ext = getattr(extracted, f.name)
        if exp is None or ext is None:
            continue
        if f.name in _COUNT_FIELDS:
            ok = int(ext) == int(exp)
        else:
            ok = abs(float(ext) - float(exp)) <= tolerance
        if not ok:
            mismatches.append(Mismatch(field=f.name, expected=float(exp), extracted=float(ext)))

    if not mismatches:
        return ValidationResult(passed=True)
    return ValidationResult(
        passed=False,
        mismatches=tuple(mismatches),
        diagnosis=_diagnose(mismatches, extracted, expected, tolerance),
    )


__all__ = [
    "Mismatch",
    "ValidationResult",
    "compute_totals",
    "compute_holding_totals",
    "validate",
]
