from __future__ import annotations

import re
from datetime import date
from decimal import Decimal
from pathlib import Path

import pytest

from statement_parser.config import ParserSettings
from statement_parser.errors import ConfigGenerationError, StatementNotFoundError
from statement_parser.llm import OpenAIModel
from statement_parser.orchestrator import ParseOrchestrator
from tests.helpers.db import fetch_code_versions, fetch_statement, fetch_transactions
from tests.helpers.openai_stub import RoutedOpenAI

STATEMENT_TEXT = """HDFC BANK LTD
Statement period: 01/01/2024 to 31/01/2024
15/01/2024  SALARY JAN  5,000.00 CR  6,000.00
16/01/2024  BIG BAZAAR  300.00  5,700.00
Closing balance 5,700.00
"""

PARSER = r'''
out = []
for line in text.splitlines():
    m = re.match(
        r"^(\d{2})/(\d{2})/(\d{4})\s+(.+?)\s+([\d,]+\.\d{2})( CR)?\s+([\d,]+\.\d{2})$",
        line.strip(),
    )
    if not m:
        continue
    out.append({
        "date": m.group(3) + "-" + m.group(2) + "-" + m.group(1),
        "description": m.group(4),
        "amount": float(m.group(5).replace(",", "")),
        "type": "credit" if m.group(6) else "debit",
        "balance": float(m.group(7).replace(",", "")),
    })
return out
'''

INFO = {
    "document_type": "bank_statement",
    "institution": "HDFC Bank",
    "account_type": "savings",
    "currency": "inr",
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

_CSV_ID = re.compile(r"^([0-9a-f]{32}),(?:credit|debit),[\d.]+,\"(.*)\"$", re.MULTILINE)


def _categorize(kwargs: dict) -> str:
    rows = []
    for tx_id, description in _CSV_ID.findall(kwargs["input"]):
        category = "salary" if "SALARY" in description else "groceries"
        rows.append(f'{tx_id},{category},0.95,"{description.title()}"')
    return "\n".join(rows)


def _submit(code: str) -> dict:
    return {
        "action": "submit_code",
        "parser_code": code,
        "detected_format": "one line per transaction",
        "date_format": "DD/MM/YYYY",
        "confidence": 0.9,
        "notes": None,
    }


def _orchestrator(database_url: str, stub: RoutedOpenAI, **settings) -> ParseOrchestrator:
    llm = OpenAIModel("m", client=stub)
    return ParseOrchestrator(
        settings=ParserSettings(**{"max_steps": 3, "country": "IN", **settings}),
        database_url=database_url,
        llm=llm,
        summary_llm=llm,
    )


def _statement_file(tmp_path: Path) -> Path:
    path = tmp_path / "jan.txt"
    path.write_text(STATEMENT_TEXT, encoding="utf-8")
    return path


def test_parse_statement_end_to_end(database_url: str, tmp_path: Path) -> None:
    stub = RoutedOpenAI(
        {
            "statement_info": lambda kw: INFO,
            "parser_agent_action": [_submit("return [1 / 0]"), _submit(PARSER)],
            "text": _categorize,
        }
    )
    orch = _orchestrator(database_url, stub)
    sid = orch.create_statement("jan.txt", file_path=_statement_file(tmp_path))

    result = orch.parse_statement(sid)

    assert result.status == "completed", result.error
    assert result.transaction_count == 2
    assert result.source_key == "hdfc_bank_bank_statement"
    assert (result.period_start, result.period_end) == ("2024-01-01", "2024-01-31")

    stmt = fetch_statement(database_url, sid)
    assert stmt is not None
    assert stmt.status == "completed"
    assert stmt.error_message is None
    assert stmt.currency_code == "INR"
    assert stmt.institution == "HDFC Bank"
    assert stmt.period_start == date(2024, 1, 1)
    assert stmt.summary["total_credits"] == 5000.0
    assert stmt.transaction_count == 2

    txs = fetch_transactions(database_url, sid)
    assert [(t.type, t.amount, t.category) for t in txs] == [
        ("credit", Decimal("5000.00"), "salary"),
        ("debit", Decimal("300.00"), "groceries"),
    ]
    assert txs[1].summary == "Big Bazaar"
    assert txs[1].balance == Decimal("5700.00")
    assert {t.currency_code for t in txs} == {"INR"}

    [version] = fetch_code_versions(database_url, "hdfc_bank_bank_statement")
    assert version.version == 1 and version.code == PARSER.strip()
    assert len(stub.calls_of("parser_agent_action")) == 2


def test_reparse_uses_cache_and_inserts_nothing_new(database_url: str, tmp_path: Path) -> None:
    stub = RoutedOpenAI(
        {
            "statement_info": lambda kw: INFO,
            "parser_agent_action": [_submit(PARSER)],
            "text": _categorize,
        }
    )
    orch = _orchestrator(database_url, stub)
    path = _statement_file(tmp_path)
    first = orch.create_statement("jan.txt", file_path=path)
    assert orch.parse_statement(first).status == "completed"

    second = orch.create_statement("jan-copy.txt", file_path=path)
    result = orch.parse_statement(second)

    assert result.status == "completed"
    assert len(stub.calls_of("parser_agent_action")) == 1
    assert len(fetch_transactions(database_url)) == 2
    assert fetch_transactions(database_url, second) == []

    [version] = fetch_code_versions(database_url, "hdfc_bank_bank_statement")
    assert version.success_count == 1


def test_exhaustion_fails_statement_and_rolls_back(database_url: str, tmp_path: Path) -> None:
    good = RoutedOpenAI(
        {
            "statement_info": lambda kw: INFO,
            "parser_agent_action": [_submit(PARSER)],
            "text": _categorize,
        }
    )
    orch = _orchestrator(database_url, good)
    sid = orch.create_statement("jan.txt", file_path=_statement_file(tmp_path))
    assert orch.parse_statement(sid).status == "completed"
    assert orch.clear_cache("hdfc_bank_bank_statement") == 1

    bad = RoutedOpenAI(
        {
            "statement_info": lambda kw: INFO,
            "parser_agent_action": [_submit("return []")] * 3,
            "text": _categorize,
        }
    )
    result = _orchestrator(database_url, bad).parse_statement(sid)

    assert result.status == "failed"
    assert "exhausted after 3 step(s)" in (result.error or "")
    stmt = fetch_statement(database_url, sid)
    assert stmt is not None and stmt.status == "failed"
    assert "Parser returned no transactions" in (stmt.error_message or "")
    assert stmt.transaction_count == 0
    assert fetch_transactions(database_url, sid) == []
    assert bad.calls_of("text") == []


def test_unknown_institution_skips_cache(database_url: str, tmp_path: Path) -> None:
    info = {**INFO, "institution": "unknown", "currency": "XYZ", "summary": None}
    stub = RoutedOpenAI(
        {
            "statement_info": lambda kw: info,
            "parser_agent_action": [_submit(PARSER)],
            "text": _categorize,
        }
    )
    orch = _orchestrator(database_url, stub, currency="EUR")
    sid = orch.create_statement("jan.txt", file_path=_statement_file(tmp_path))
    result = orch.parse_statement(sid)

    assert result.status == "completed"
    assert result.source_key is None
    assert orch.list_cached_sources() == []
    assert fetch_statement(database_url, sid).currency_code == "EUR"


def test_source_hint_overrides_detected_institution(database_url: str, tmp_path: Path) -> None:
    stub = RoutedOpenAI(
        {
            "statement_info": lambda kw: INFO,
            "parser_agent_action": [_submit(PARSER)],
            "text": _categorize,
        }
    )
    orch = _orchestrator(database_url, stub)
    sid = orch.create_statement("jan.txt", file_path=_statement_file(tmp_path))
    result = orch.parse_statement(sid, source_hint="My Credit Union")

    assert result.source_key == "my_credit_union_bank_statement"
    assert [s.source_key for s in orch.list_cached_sources()] == ["my_credit_union_bank_statement"]


def test_unsupported_file_is_recorded_as_failure(database_url: str, tmp_path: Path) -> None:
    pdf = tmp_path / "jan.pdf"
    pdf.write_bytes(b"%PDF-1.7")
    orch = _orchestrator(database_url, RoutedOpenAI({}))
    sid = orch.create_statement("jan.pdf", file_path=pdf)

    result = orch.parse_statement(sid)

    assert result.status == "failed"
    assert "unsupported document type" in (result.error or "")


def test_missing_statement_raises_but_batch_continues(database_url: str) -> None:
    orch = _orchestrator(database_url, RoutedOpenAI({}))
    with pytest.raises(StatementNotFoundError):
        orch.parse_statement("nope")
    [result] = orch.parse_statements(["nope"])
    assert result.status == "failed"


SHEET_CSV = (
    "Date,Narration,Withdrawal,Deposit,Balance\n"
    "15-01-2024,UPI SWIGGY,450.00,,9550.00\n"
    "16-01-2024,SALARY JAN,,50000.00,59550.00\n"
    "TOTAL,,450.00,50000.00,\n"
).encode()

SHEET_CONFIG = {
    "date_column": "Date",
    "description_column": "Narration",
    "amount_column": None,
    "credit_column": "Deposit",
    "debit_column": "Withdrawal",
    "type_column": None,
    "balance_column": "Balance",
    "header_row": 0,
    "data_start_row": 1,
    "date_format": "DD-MM-YYYY",
    "amount_format": "split",
    "type_detection": "split",
}


def test_parse_spreadsheet(database_url: str) -> None:
    stub = RoutedOpenAI({"parser_config": lambda kw: SHEET_CONFIG, "text": _categorize})
    orch = _orchestrator(database_url, stub)

    result = orch.parse_spreadsheet(SHEET_CSV, "hdfc.csv")

    assert result.transaction_count == 2
    assert result.skipped_rows == 1
    assert result.config is not None and result.config.amount_format == "split"
    stmt = fetch_statement(database_url, result.statement_id)
    assert stmt is not None and stmt.status == "completed"
    assert (stmt.period_start, stmt.period_end) == (date(2024, 1, 15), date(2024, 1, 16))
    txs = fetch_transactions(database_url, result.statement_id)
    assert [(t.type, t.amount) for t in txs] == [
        ("debit", Decimal("450.00")),
        ("credit", Decimal("50000.00")),
    ]

    again = orch.parse_spreadsheet(SHEET_CSV, "hdfc.csv")
    assert again.transaction_count == 2
    assert len(fetch_transactions(database_url)) == 2


def test_parse_spreadsheet_config_failure_marks_statement(database_url: str) -> None:
    bad = {**SHEET_CONFIG, "amount_column": "Balance"}
    stub = RoutedOpenAI({"parser_config": lambda kw: bad})
    orch = _orchestrator(database_url, stub)
    sid = orch.create_statement("hdfc.csv")

    with pytest.raises(ConfigGenerationError):
        orch.parse_spreadsheet(SHEET_CSV, "hdfc.csv", statement_id=sid)

    stmt = fetch_statement(database_url, sid)
    assert stmt is not None and stmt.status == "failed"
    assert orch.pending_statement_ids() == []


def _pending_pair(orch: ParseOrchestrator, tmp_path: Path) -> tuple[str, str]:
    pdf = tmp_path / "feb.pdf"
    pdf.write_bytes(b"%PDF-1.7")
    failing = orch.create_statement("feb.pdf", file_path=pdf, statement_id="a-feb")
    good = orch.create_statement(
        "jan.txt", file_path=_statement_file(tmp_path), statement_id="b-jan"
    )
    return failing, good


def test_process_pending_parses_serially_past_failures(
    database_url: str, tmp_path: Path
) -> None:
    stub = RoutedOpenAI(
        {
            "statement_info": lambda kw: INFO,
            "parser_agent_action": [_submit(PARSER)],
            "text": _categorize,
        }
    )
    orch = _orchestrator(database_url, stub)
    failing, good = _pending_pair(orch, tmp_path)
    assert orch.pending_statement_ids() == [failing, good]
    assert orch.submit("ghost")

    results = orch.process_pending()

    assert [(r.statement_id, r.status) for r in results] == [
        ("ghost", "failed"),
        (failing, "failed"),
        (good, "completed"),
    ]
    assert "ghost" in (results[0].error or "")
    assert results[2].transaction_count == 2
    assert fetch_statement(database_url, failing).status == "failed"
    assert fetch_statement(database_url, good).status == "completed"
    assert orch.pending_statement_ids() == []
    assert (orch.queue.processed, orch.queue.failed) == (3, 1)
    assert orch.process_pending() == []


def test_finished_job_pulls_in_newly_pending_statements(
    database_url: str, tmp_path: Path
) -> None:
    stub = RoutedOpenAI(
        {
            "statement_info": lambda kw: INFO,
            "parser_agent_action": [_submit(PARSER)],
            "text": _categorize,
        }
    )
    orch = _orchestrator(database_url, stub)
    first = orch.create_statement("jan.txt", file_path=_statement_file(tmp_path))
    orch.submit(first)
    later = orch.create_statement("jan-copy.txt", file_path=_statement_file(tmp_path))

    outcomes = orch.queue.run_pending()

    assert [o.statement_id for o in outcomes] == [first, later]
    assert all(o.ok and o.result.status == "completed" for o in outcomes)


def test_background_worker_drains_pending_statements(
    database_url: str, tmp_path: Path
) -> None:
    stub = RoutedOpenAI(
        {
            "statement_info": lambda kw: INFO,
            "parser_agent_action": [_submit(PARSER)],
            "text": _categorize,
        }
    )
    orch = _orchestrator(database_url, stub)
    failing, good = _pending_pair(orch, tmp_path)

    orch.start_worker()
    try:
        assert orch.queue.drain(timeout=60)
    finally:
        assert orch.stop_worker(timeout=60) == []

    assert fetch_statement(database_url, failing).status == "failed"
    assert fetch_statement(database_url, good).status == "completed"
    assert orch.queue.processed == 2
