"""Deterministic transaction extraction driven by a :class:`ParserConfig`.

No model calls happen here. Each data row is resolved independently and a row
that cannot produce a date, a description and a positive amount is skipped
and counted; extraction never fails because of a single bad row.
"""

from __future__ import annotations

import re
import uuid
from collections.abc import Sequence
from datetime import datetime
from typing import Any, NamedTuple

from dateutil import parser as dateutil_parser

from .logging_setup import get_logger
from .models import ParserConfig, RawTransaction, SheetData, TransactionType

_logger = get_logger("statement_parser.extraction")

# Tried in order after the configured format.
_FALLBACK_DATE_FORMATS: tuple[str, ...] = (
    "%Y-%m-%d",
    "%d-%m-%Y",
    "%d/%m/%Y",
    "%m/%d/%Y",
    "%d-%b-%Y",
    "%d-%b-%y",
    "%d %b %Y",
    "%d %b %y",
    "%b %d, %Y",
    "%Y/%m/%d",
    "%d.%m.%Y",
    "%d/%m/%y",
)

_FORMAT_TOKEN_RE = re.compile(r"YYYY|YY|MMMM|MMM|MM|DD|M|D")
_FORMAT_TOKENS: dict[str, str] = {
    "YYYY": "%Y",
    "YY": "%y",
    "MMMM": "%B",
    "MMM": "%b",
    "MM": "%m",
    "M": "%m",
    "DD": "%d",
    "D": "%d",
}

_CURRENCY_RE = re.compile(r"[₹$€£,\s]")
_CR_DR_SUFFIX_RE = re.compile(r"(CR|DR)\.?$", re.IGNORECASE)
_CREDIT_MARKERS: tuple[str, ...] = ("cr", "credit", "deposit")


class ExtractionResult(NamedTuple):
    transactions: list[RawTransaction]
    skipped_rows: int


# ---- Cell parsing ----------------------------------------------------------------


def to_strptime_format(config_format: str) -> str:
    """Translate a ``DD-MM-YYYY`` style format into a ``strptime`` pattern.

    Strings that already contain ``%`` directives are returned unchanged.
    """

    if "%" in config_format:
        return config_format
    return _FORMAT_TOKEN_RE.sub(lambda m: _FORMAT_TOKENS[m.group(0)], config_format.strip())


def parse_date(value: Any, config_format: str | None = None) -> str | None:
    """Return ``value`` as ``YYYY-MM-DD`` or ``None`` when no strategy parses it.

    Order: the configured format, the fixed fallback list, then generic
    parsing with ``dateutil``.
    """

    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date().isoformat()
    s = str(value).strip()
    if not s:
        return None

    formats: list[str] = []
    if config_format:
        formats.append(to_strptime_format(config_format))
    formats.extend(f for f in _FALLBACK_DATE_FORMATS if f not in formats)
    for fmt in formats:
        try:
            return datetime.strptime(s, fmt).date().isoformat()
        except ValueError:
            continue

    try:
        return dateutil_parser.parse(s).date().isoformat()
    except (ValueError, OverflowError):
        return None


def parse_amount(value: Any) -> float | None:
    """Parse a money cell into its absolute value.

    Currency symbols, grouping commas, whitespace, accounting parentheses,
    ``CR``/``DR`` suffixes and a leading minus are stripped. Direction is the
    caller's concern.
    """

    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return abs(float(value))
    cleaned = _CURRENCY_RE.sub("", str(value))
    if not cleaned:
        return None
    cleaned = _CR_DR_SUFFIX_RE.sub("", cleaned)
    if cleaned.startswith("(") and cleaned.endswith(")"):
        cleaned = cleaned[1:-1]
    cleaned = cleaned.removeprefix("-")
    try:
        num = float(cleaned)
    except ValueError:
        return None
    if num != num or num in (float("inf"), float("-inf")):
        return None
    return abs(num)


def _type_from_sign(raw: Any) -> TransactionType:
    if isinstance(raw, (int, float)) and not isinstance(raw, bool):
        return "debit" if raw < 0 else "credit"
    s = str(raw or "").strip()
    suffix = _CR_DR_SUFFIX_RE.search(s.replace(" ", ""))
    if suffix:
        return "credit" if suffix.group(1).upper() == "CR" else "debit"
    if "-" in s or ("(" in s and ")" in s):
        return "debit"
    return "credit"


def _type_from_column(raw: Any) -> TransactionType:
    s = str(raw or "").lower()
    return "credit" if any(marker in s for marker in _CREDIT_MARKERS) else "debit"


def _resolve_index(headers: Sequence[str], column: str | int) -> int | None:
    if isinstance(column, int):
        return column
    wanted = column.strip().lower()
    for i, h in enumerate(headers):
        if h.strip().lower() == wanted:
            return i
    return None


def _cell(row: Sequence[Any], index: int | None) -> Any:
    if index is None or index < 0 or index >= len(row):
        return None
    return row[index]


# ---- Extraction ------------------------------------------------------------------


def extract_transactions(sheet: SheetData, config: ParserConfig) -> ExtractionResult:
    """Turn sheet rows into :class:`RawTransaction` records per ``config``.

    ``sheet.rows`` are the rows after the header; rows before
    ``config.data_start_row`` (relative to ``config.header_row``) are ignored.
    """

    headers = sheet.headers
    start = max(0, config.data_start_row - config.header_row - 1)
    rows = sheet.rows[start:]

    date_idx = _resolve_index(headers, config.date_column)
    desc_idx = _resolve_index(headers, config.description_column)
    amount_idx = (
        _resolve_index(headers, config.amount_column) if config.amount_column is not None else None
    )
    credit_idx = (
        _resolve_index(headers, config.credit_column) if config.credit_column is not None else None
    )
    debit_idx = (
        _resolve_index(headers, config.debit_column) if config.debit_column is not None else None
    )
    type_idx = (
        _resolve_index(headers, config.type_column) if config.type_column is not None else None
    )
    balance_idx = (
        _resolve_index(headers, config.balance_column)
        if config.balance_column is not None
        else None
    )

    out: list[RawTransaction] = []
    skipped = 0
    for i, row in enumerate(rows):
        date_raw = _cell(row, date_idx)
        date = parse_date(date_raw, config.date_format)
        if date is None:
            _logger.debug("extract:skip row=%d reason=date value=%r", i, date_raw)
            skipped += 1
            continue

        description = str(_cell(row, desc_idx) or "").strip()
        if not description:
            _logger.debug("extract:skip row=%d reason=description", i)
            skipped += 1
            continue

        amount: float | None = None
        tx_type: TransactionType = "debit"
        if config.amount_format == "split":
            credit = parse_amount(_cell(row, credit_idx))
            debit = parse_amount(_cell(row, debit_idx))
            if credit is not None and credit > 0:
                amount, tx_type = credit, "credit"
            elif debit is not None and debit > 0:
                amount, tx_type = debit, "debit"
        else:
            raw_amount = _cell(row, amount_idx)
            amount = parse_amount(raw_amount)
            if config.type_detection == "column" and type_idx is not None:
                tx_type = _type_from_column(_cell(row, type_idx))
            else:
                tx_type = _type_from_sign(raw_amount)

        if amount is None or amount <= 0:
            _logger.debug("extract:skip row=%d reason=amount", i)
            skipped += 1
            continue

        balance = parse_amount(_cell(row, balance_idx)) if balance_idx is not None else None
        out.append(
            RawTransaction(
                id=uuid.uuid4().hex,
                date=date,
                amount=amount,
                type=tx_type,
                description=description,
                balance=balance,
            )
        )

    _logger.info(
        "extract:done rows=%d extracted=%d skipped=%d", len(rows), len(out), skipped
    )
    return ExtractionResult(transactions=out, skipped_rows=skipped)


__all__ = [
    "ExtractionResult",
    "extract_transactions",
    "parse_amount",
    "parse_date",
    "to_strptime_format",
]
