"""Run generated parser code and turn its output into typed records.

The sandbox only guarantees "a list came back". This module checks each item
against the transaction (or holding) contract, drops items that do not meet
it, normalizes the rest and reports a failure when nothing usable remains.
"""

from __future__ import annotations

import math
import re
import uuid
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any

from .logging_setup import get_logger
from .models import Holding, RawTransaction
from .sandbox import SandboxExecutor

_MAX_DESCRIPTION_CHARS: int = 500
_ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")

VALID_CURRENCIES: frozenset[str] = frozenset(
    {"USD", "INR", "EUR", "GBP", "JPY", "AUD", "CAD", "SGD", "AED"}
)

_logger = get_logger("statement_parser.parser_runner")


@dataclass(frozen=True, slots=True)
class ParserRun:
    transactions: tuple[RawTransaction, ...] = ()
    holdings: tuple[Holding, ...] = ()
    error: str | None = None
    invalid_items: int = 0
    duration_ms: int = 0

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def item_count(self) -> int:
        return len(self.transactions) + len(self.holdings)


# ---- Field coercion ----------------------------------------------------------------


def _number(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float, Decimal)):
        f = float(value)
        return f if math.isfinite(f) else None
    return None


def _iso_date(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    s = value.strip()
    if not _ISO_DATE_RE.match(s):
        return None
    try:
        datetime.strptime(s, "%Y-%m-%d")
    except ValueError:
        return None
    return s


def _opt_str(value: Any) -> str | None:
    if value is None:
        return None
    s = str(value).strip()
    return s or None


def _to_transaction(item: Any) -> RawTransaction | str:
    """Return a normalized transaction or the reason the item was rejected."""

    if not isinstance(item, Mapping):
        return f"item is {type(item).__name__}, expected dict"
    date = _iso_date(item.get("date"))
    if date is None:
        return f"invalid date {item.get('date')!r} (need YYYY-MM-DD)"
    amount = _number(item.get("amount"))
    if amount is None or amount <= 0:
        return f"invalid amount {item.get('amount')!r} (need a positive number)"
    tx_type = item.get("type")
    if not isinstance(tx_type, str) or tx_type.strip().lower() not in ("credit", "debit"):
        return f"invalid type {tx_type!r} (need 'credit' or 'debit')"
    description = item.get("description")
    if not isinstance(description, str) or not description.strip():
        return "description missing or empty"
    return RawTransaction(
        id=uuid.uuid4().hex,
        date=date,
        amount=abs(amount),
        type=tx_type.strip().lower(),  # type: ignore[arg-type]
        description=description.strip()[:_MAX_DESCRIPTION_CHARS],
        balance=_number(item.get("balance")),
    )


def _to_holding(item: Any) -> Holding | str:
    if not isinstance(item, Mapping):
        return f"item is {type(item).__name__}, expected dict"
    inv_type = _opt_str(item.get("investment_type"))
    if inv_type is None:
        return "investment_type missing"
    name = _opt_str(item.get("name"))
    if name is None:
        return "name missing"
    current_value = _number(item.get("current_value"))
    if current_value is None or current_value < 0:
        return f"invalid current_value {item.get('current_value')!r}"
    currency = _opt_str(item.get("currency"))
    if currency is not None:
        currency = currency.upper()
        if currency not in VALID_CURRENCIES:
            currency = None
    return Holding(
        investment_type=inv_type.lower(),
        name=name[:_MAX_DESCRIPTION_CHARS],
        current_value=current_value,
        symbol=_opt_str(item.get("symbol")),
        isin=_opt_str(item.get("isin")),
        units=_number(item.get("units")),
        average_cost=_number(item.get("average_cost")),
        current_price=_number(item.get("current_price")),
        invested_value=_number(item.get("invested_value")),
        folio_number=_opt_str(item.get("folio_number")),
        maturity_date=_iso_date(item.get("maturity_date")),
        interest_rate=_number(item.get("interest_rate")),
        currency=currency,
    )


# ---- Entry point -------------------------------------------------------------------


def run_parser(
    executor: SandboxExecutor, code: str, text: str, *, holdings: bool = False
) -> ParserRun:
    """Execute ``code`` against ``text`` and validate what it returns.

    Returns a failed :class:`ParserRun` (never raises) when the sandbox
    reports an error, when the list is empty, or when no item passes
    validation.
    """

    result = executor.execute(code, {"text": text})
    if not result.ok:
        return ParserRun(error=result.error, duration_ms=result.duration_ms)

    items = result.items or ()
    noun = "holdings" if holdings else "transactions"
    if not items:
        return ParserRun(error=f"Parser returned no {noun}", duration_ms=result.duration_ms)

    convert = _to_holding if holdings else _to_transaction
    good: list[Any] = []
    first_problem: str | None = None
    invalid = 0
    for idx, item in enumerate(items):
        converted = convert(item)
        if isinstance(converted, str):
            invalid += 1
            if first_problem is None:
                first_problem = f"item {idx}: {converted}"
            continue
        good.append(converted)

    if invalid:
        _logger.warning(
            "parser_runner:invalid_items kind=%s invalid=%d valid=%d first=%s",
            noun,
            invalid,
            len(good),
            first_problem,
        )
    if not good:
        return ParserRun(
            error=f"Parser returned {len(items)} item(s) but none were valid {noun}; "
            f"{first_problem}",
            invalid_items=invalid,
            duration_ms=result.duration_ms,
        )
    if holdings:
        return ParserRun(
            holdings=tuple(good), invalid_items=invalid, duration_ms=result.duration_ms
        )
    return ParserRun(
        transactions=tuple(good), invalid_items=invalid, duration_ms=result.duration_ms
    )


__all__ = ["ParserRun", "VALID_CURRENCIES", "run_parser"]
