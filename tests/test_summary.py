from __future__ import annotations

from statement_parser.llm import OpenAIModel
from statement_parser.models import RawTransaction
from statement_parser.summary import (
    StatementInfoExtractor,
    combine_pages,
    combine_pages_for_llm,
    extract_period_dates,
    period_from_transactions,
)
from tests.helpers.openai_stub import ScriptedOpenAI

_INFO = {
    "document_type": "bank_statement",
    "institution": "HDFC Bank",
    "account_type": "savings",
    "currency": "INR",
    "period_start": "2024-01-01",
    "period_end": "2024-01-31",
    "summary": {
        "opening_balance": 1000.0,
        "closing_balance": 5700.0,
        "total_credits": 5000.0,
        "total_debits": 300.0,
        "credit_count": 1,
        "debit_count": 1,
        "total_invested": None,
        "total_current": None,
        "holdings_count": None,
    },
}


def _extractor(stub: ScriptedOpenAI, sleeps: list[float]) -> StatementInfoExtractor:
    return StatementInfoExtractor(OpenAIModel("m", client=stub), sleep=sleeps.append)


def test_info_is_retried_with_backoff() -> None:
    sleeps: list[float] = []
    stub = ScriptedOpenAI([RuntimeError("boom"), "not json", _INFO])
    info = _extractor(stub, sleeps).extract(["page one"])

    assert info.institution == "HDFC Bank"
    assert info.summary is not None and info.summary.total_credits == 5000.0
    assert sleeps == [1.0, 2.0]
    assert "--- PAGE 1 ---" in stub.calls[0]["input"]


def test_total_failure_returns_defaults_without_summary() -> None:
    sleeps: list[float] = []
    stub = ScriptedOpenAI([RuntimeError("boom")] * 3)
    info = _extractor(stub, sleeps).extract(["page"])

    assert info.summary is None
    assert info.institution == "unknown"
    assert info.document_type == "bank_statement"
    assert sleeps == [1.0, 2.0]


def test_all_null_summary_becomes_none() -> None:
    reply = {**_INFO, "summary": {k: None for k in _INFO["summary"]}}
    info = _extractor(ScriptedOpenAI([reply]), []).extract(["page"])
    assert info.summary is None


def test_combine_pages_markers() -> None:
    assert combine_pages(["a", "b"]) == "--- PAGE 1 ---\na\n\n--- PAGE 2 ---\nb"


def test_long_documents_keep_head_and_tail_pages() -> None:
    pages = [f"content {i}" for i in range(1, 21)]
    combined = combine_pages_for_llm(pages)
    assert "--- PAGE 7 ---" in combined
    assert "--- PAGE 8 ---" not in combined
    assert "[... 6 pages omitted ...]" in combined
    assert "--- PAGE 14 ---" in combined and "--- PAGE 20 ---" in combined
    assert combine_pages_for_llm(pages[:15]) == combine_pages(pages[:15])


def test_extract_period_dates() -> None:
    assert extract_period_dates("Statement period: 01/01/2024 to 31/01/2024") == (
        "2024-01-01",
        "2024-01-31",
    )
    assert extract_period_dates("From 1 Jan 2024 to 31 Jan 2024") == ("2024-01-01", "2024-01-31")
    assert extract_period_dates("31/01/2024 - 01/01/2024") == (None, None)
    assert extract_period_dates("no dates here") == (None, None)


def test_period_from_transactions() -> None:
    txs = [
        RawTransaction(id=str(i), date=d, amount=1.0, type="debit", description="x")
        for i, d in enumerate(["2024-02-10", "2024-02-01", "2024-02-20"])
    ]
    assert period_from_transactions(txs) == ("2024-02-01", "2024-02-20")
    assert period_from_transactions([]) == (None, None)
