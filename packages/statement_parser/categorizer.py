"""Batch categorization of extracted transactions over a compact CSV wire format.

Public API:
    - :class:`BatchCategorizer`
    - :func:`parse_csv_line`, :func:`parse_category_csv`
    - :func:`fallback_categorization`

Transactions are sent in fixed-size batches, one batch at a time. The model's
CSV reply is untrusted: rows are parsed leniently, unknown categories map to
``"other"``, confidences are defaulted and clamped, and every transaction the
reply does not cover gets a local fallback. A failed batch never fails the
caller. ``categorize`` therefore returns exactly one result per input.
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Sequence
from typing import NamedTuple

from . import prompting
from .categories import FALLBACK_CATEGORY, Category, allowed_codes
from .llm import LanguageModel
from .logging_setup import get_logger
from .models import CategorizedTransaction, RawTransaction

# ---- Tunables (private) ------------------------------------------------------

_DEFAULT_CONFIDENCE: float = 0.8
_FALLBACK_CONFIDENCE: float = 0.5
_FALLBACK_SUMMARY_CHARS: int = 100
_MIN_FIELDS: int = 4

_logger = get_logger("statement_parser.categorizer")


class _Decision(NamedTuple):
    category: str
    confidence: float
    summary: str


# ---- Wire format ---------------------------------------------------------------


def parse_csv_line(line: str) -> list[str]:
    """Split one CSV line, honoring double quotes and ``""`` escapes.

    Unterminated quotes run to the end of the line. Fields are trimmed.
    """

    fields: list[str] = []
    buf: list[str] = []
    in_quotes = False
    i = 0
    n = len(line)
    while i < n:
        ch = line[i]
        if in_quotes:
            if ch == '"':
                if i + 1 < n and line[i + 1] == '"':
                    buf.append('"')
                    i += 1
                else:
                    in_quotes = False
            else:
                buf.append(ch)
        elif ch == '"':
            in_quotes = True
        elif ch == ",":
            fields.append("".join(buf).strip())
            buf = []
        else:
            buf.append(ch)
        i += 1
    fields.append("".join(buf).strip())
    return fields


def _parse_confidence(raw: str) -> float:
    try:
        value = float(raw)
    except ValueError:
        return _DEFAULT_CONFIDENCE
    if not math.isfinite(value):
        return _DEFAULT_CONFIDENCE
    return min(1.0, max(0.0, value))


def parse_category_csv(text: str, allowed: frozenset[str]) -> dict[str, _Decision]:
    """Parse a CSV reply into ``{id: decision}``; malformed lines are dropped.

    The first occurrence of an id wins.
    """

    decisions: dict[str, _Decision] = {}
    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line or line.startswith("```") or line.lower().startswith("id,"):
            continue
        parts = parse_csv_line(line)
        if len(parts) < _MIN_FIELDS:
            continue
        tx_id, category, confidence = parts[0], parts[1].lower(), parts[2]
        # Summaries may contain unquoted commas.
        summary = ",".join(parts[3:]).strip()
        if not tx_id or tx_id in decisions:
            continue
        decisions[tx_id] = _Decision(
            category=category if category in allowed else FALLBACK_CATEGORY,
            confidence=_parse_confidence(confidence),
            summary=summary,
        )
    return decisions


def fallback_categorization(tx: RawTransaction) -> CategorizedTransaction:
    return CategorizedTransaction(
        id=tx.id,
        category=FALLBACK_CATEGORY,
        confidence=_FALLBACK_CONFIDENCE,
        summary=tx.description[:_FALLBACK_SUMMARY_CHARS],
    )


def _paginate(n_total: int, batch_size: int) -> Iterable[tuple[int, int, int]]:
    """Yield ``(batch_index, base, end)`` half-open ranges."""

    for k in range(math.ceil(n_total / batch_size)):
        base = k * batch_size
        yield (k, base, min(base + batch_size, n_total))


# ---- Categorizer ---------------------------------------------------------------


class BatchCategorizer:
    def __init__(
        self,
        llm: LanguageModel,
        categories: Sequence[Category],
        *,
        batch_size: int = 50,
    ) -> None:
        if batch_size <= 0:
            raise ValueError("batch_size must be positive")
        self.llm = llm
        self.categories = tuple(categories)
        self.allowed = allowed_codes(self.categories)
        self.batch_size = batch_size

    def _categorize_batch(
        self, batch_index: int, batch: Sequence[RawTransaction]
    ) -> dict[str, _Decision]:
        _logger.info(
            "categorizer:batch_llm batch_index=%d num_transactions=%d", batch_index, len(batch)
        )
        try:
            reply = self.llm.generate_text(
                instructions=prompting.build_categorize_instructions(),
                content=prompting.build_categorize_content(batch, self.categories),
            )
        except Exception as e:  # noqa: BLE001 - degrade to local fallback
            _logger.error(
                "categorizer:batch_failed batch_index=%d num_transactions=%d error=%s",
                batch_index,
                len(batch),
                e.__class__.__name__,
            )
            return {}
        return parse_category_csv(reply, self.allowed)

    def categorize(self, transactions: Sequence[RawTransaction]) -> list[CategorizedTransaction]:
        """Return one :class:`CategorizedTransaction` per input, in input order."""

        out: list[CategorizedTransaction] = []
        missing_total = 0
        for batch_index, base, end in _paginate(len(transactions), self.batch_size):
            batch = transactions[base:end]
            decisions = self._categorize_batch(batch_index, batch)
            missing = 0
            for tx in batch:
                d = decisions.get(tx.id)
                if d is None:
                    missing += 1
                    out.append(fallback_categorization(tx))
                    continue
                out.append(
                    CategorizedTransaction(
                        id=tx.id,
                        category=d.category,
                        confidence=d.confidence,
                        summary=d.summary or tx.description[:_FALLBACK_SUMMARY_CHARS],
                    )
                )
            missing_total += missing
            _logger.info(
                "categorizer:batch_done batch_index=%d num_transactions=%d fallback=%d",
                batch_index,
                len(batch),
                missing,
            )
        if missing_total:
            _logger.warning(
                "categorizer:fallback_used total=%d of=%d", missing_total, len(transactions)
            )
        return out


__all__ = [
    "BatchCategorizer",
    "fallback_categorization",
    "parse_category_csv",
    "parse_csv_line",
]
