from __future__ import annotations

from db.client import session_scope
from db.models.statements import SpStatement
from statement_parser.models import RawTransaction
from statement_parser.persistence import compute_transaction_hash, insert_transactions
from tests.helpers.db import fetch_transactions


def _coffee(tx_id: str) -> RawTransaction:
    return RawTransaction(
        id=tx_id, date="2024-01-05", amount=4.5, type="debit", description="STARBUCKS"
    )


def _insert(database_url: str, statement_id: str, txs: list[RawTransaction]) -> int:
    with session_scope(database_url=database_url) as session:
        if session.get(SpStatement, statement_id) is None:
            session.add(SpStatement(id=statement_id, file_name=f"{statement_id}.txt"))
            session.flush()
        return insert_transactions(session, statement_id=statement_id, transactions=txs)


def test_identical_purchases_in_one_statement_are_kept(database_url: str) -> None:
    txs = [
        _coffee("t1"),
        RawTransaction(id="t2", date="2024-01-05", amount=12.0, type="debit", description="LUNCH"),
        _coffee("t3"),
    ]

    assert _insert(database_url, "stmt-1", txs) == 3
    rows = fetch_transactions(database_url, "stmt-1")
    assert [r.original_description for r in rows] == ["STARBUCKS", "LUNCH", "STARBUCKS"]
    assert len({r.hash for r in rows}) == 3


def test_reparse_of_the_same_statement_inserts_nothing(database_url: str) -> None:
    txs = [_coffee("t1"), _coffee("t2")]
    assert _insert(database_url, "stmt-1", txs) == 2
    assert _insert(database_url, "stmt-1", [_coffee("a"), _coffee("b")]) == 0
    assert len(fetch_transactions(database_url, "stmt-1")) == 2


def test_hash_ignores_direction_and_balance_but_not_occurrence() -> None:
    base = _coffee("t1")
    credit = RawTransaction(
        id="t9", date="2024-01-05", amount=4.50, type="credit", description=" STARBUCKS ",
        balance=100.0,
    )
    assert compute_transaction_hash(base) == compute_transaction_hash(credit)
    assert compute_transaction_hash(base, 1) != compute_transaction_hash(base)
