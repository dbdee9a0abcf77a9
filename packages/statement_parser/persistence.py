# ruff: noqa: I001
"""Persistence of parse output into the shared database owned by ``libs/db``.

Scope:
- Insert transactions into ``sp_transactions``, deduplicated by a content
  hash so re-parsing a statement inserts nothing new.
- Insert holdings into ``sp_holdings``.
- Remove a statement's records when its parse is rolled back.

All functions take an open ``Session``; the caller owns the transaction.
"""

from __future__ import annotations

import hashlib
import json
from collections import Counter
from collections.abc import Iterable, Mapping, Sequence
from datetime import date
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Any

from sqlalchemy import delete
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from db.models.statements import SpHolding, SpTransaction
from .categories import FALLBACK_CATEGORY
from .models import CategorizedTransaction, Holding, RawTransaction

# Keeps multi-row INSERTs under SQLite's bound-parameter limit.
_INSERT_CHUNK: int = 200


def _to_decimal(raw: Any, places: str = "0.01") -> Decimal | None:
    if raw is None:
        return None
    try:
        d = Decimal(str(raw))
    except (InvalidOperation, ValueError):
        return None
    return d.quantize(Decimal(places), rounding=ROUND_HALF_UP)


def _to_date(raw: str | None) -> date | None:
    if not raw:
        return None
    try:
        return date.fromisoformat(raw)
    except ValueError:
        return None


def _dedupe_key(tx: RawTransaction) -> tuple[str | None, str | None, str]:
    amount = _to_decimal(tx.amount)
    return (tx.date, f"{amount:.2f}" if amount is not None else None, tx.description.strip())


def compute_transaction_hash(tx: RawTransaction, occurrence: int = 0) -> str:
    """SHA-256 over date, amount (2dp), trimmed description and occurrence.

    ``occurrence`` is how many earlier transactions in the same statement share
    the first three fields, so two identical purchases stay two rows while a
    re-parse of the same statement maps onto the same hashes. Direction and
    balance are not part of the key.
    """

    tx_date, amount, description = _dedupe_key(tx)
    payload = {
        "date": tx_date,
        "amount": amount,
        "description": description,
        "occurrence": occurrence,
    }
    data = json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(data.encode("utf-8")).hexdigest()


def _insert_ignoring_conflicts(session: Session, payloads: Sequence[dict[str, Any]]) -> int:
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        insert_fn = pg_insert
    elif dialect == "sqlite":
        insert_fn = sqlite_insert
    else:
        raise RuntimeError(f"unsupported database dialect for deduplicated insert: {dialect}")

    inserted = 0
    for base in range(0, len(payloads), _INSERT_CHUNK):
        chunk = payloads[base : base + _INSERT_CHUNK]
        stmt = insert_fn(SpTransaction).values(list(chunk))
        stmt = stmt.on_conflict_do_nothing(index_elements=[SpTransaction.hash])
        result = session.execute(stmt)
        inserted += max(result.rowcount or 0, 0)
    return inserted


def insert_transactions(
    session: Session,
    *,
    statement_id: str,
    transactions: Iterable[RawTransaction],
    categorized: Mapping[str, CategorizedTransaction] | None = None,
    currency_code: str = "USD",
) -> int:
    """Insert transactions in order and return how many rows were new.

    ``categorized`` is keyed by ``RawTransaction.id``; transactions without an
    entry are stored under ``other`` with no confidence.
    """

    payloads: list[dict[str, Any]] = []
    seen: Counter[tuple[str | None, str | None, str]] = Counter()
    for tx in transactions:
        key = _dedupe_key(tx)
        occurrence = seen[key]
        seen[key] += 1
        values: dict[str, Any] = {
            "statement_id": statement_id,
            "date": _to_date(tx.date),
            "type": tx.type,
            "amount": _to_decimal(tx.amount),
            "currency_code": currency_code,
            "original_description": tx.description,
            "balance": _to_decimal(tx.balance),
            "hash": compute_transaction_hash(tx, occurrence),
            "category": FALLBACK_CATEGORY,
            "category_confidence": None,
            "summary": None,
        }
        cat = (categorized or {}).get(tx.id)
        if cat is not None:
            values["category"] = cat.category
            values["category_confidence"] = _to_decimal(cat.confidence)
            values["summary"] = cat.summary or None
        payloads.append(values)
    if not payloads:
        return 0
    return _insert_ignoring_conflicts(session, payloads)


def insert_holdings(
    session: Session,
    *,
    statement_id: str,
    holdings: Iterable[Holding],
    currency_code: str | None = None,
) -> int:
    rows = [
        SpHolding(
            statement_id=statement_id,
            investment_type=h.investment_type,
            name=h.name,
            symbol=h.symbol,
            isin=(h.isin or None) and h.isin[:12],
            units=_to_decimal(h.units, "0.000001"),
            average_cost=_to_decimal(h.average_cost, "0.0001"),
            current_price=_to_decimal(h.current_price, "0.0001"),
            current_value=_to_decimal(h.current_value),
            invested_value=_to_decimal(h.invested_value),
            folio_number=h.folio_number,
            maturity_date=_to_date(h.maturity_date),
            interest_rate=_to_decimal(h.interest_rate, "0.0001"),
            currency_code=h.currency or currency_code,
        )
        for h in holdings
    ]
    session.add_all(rows)
    session.flush()
    return len(rows)


def delete_statement_records(session: Session, statement_id: str) -> tuple[int, int]:
    """Delete a statement's transactions and holdings; return both counts."""

    tx_result = session.execute(
        delete(SpTransaction).where(SpTransaction.statement_id == statement_id)
    )
    holding_result = session.execute(
        delete(SpHolding).where(SpHolding.statement_id == statement_id)
    )
    return (tx_result.rowcount or 0, holding_result.rowcount or 0)


__all__ = [
    "compute_transaction_hash",
    "delete_statement_records",
    "insert_holdings",
    "insert_transactions",
]
