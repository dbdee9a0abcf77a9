from __future__ import annotations

from pathlib import Path

import pytest
from typer.testing import CliRunner

from statement_parser.cli import app
from statement_parser.code_cache import CodeCache

runner = CliRunner()
_WIDE = {"COLUMNS": "200"}


@pytest.fixture(autouse=True)
def _no_dotenv(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)


def test_infer_types_profiles_columns(tmp_path: Path) -> None:
    csv_file = tmp_path / "jan.csv"
    csv_file.write_text(
        "Date,Narration,Amount\n"
        "15-01-2024,SWIGGY,450.00\n"
        "16-01-2024,SALARY,50000.00\n",
        encoding="utf-8",
    )

    result = runner.invoke(app, ["infer-types", str(csv_file)], env=_WIDE)

    assert result.exit_code == 0, result.output
    assert "2 rows" in result.output
    assert "Narration" in result.output
    assert "number" in result.output


def test_infer_types_rejects_unsupported_file(tmp_path: Path) -> None:
    bad = tmp_path / "jan.xlsx"
    bad.write_bytes(b"PK\x03\x04")
    result = runner.invoke(app, ["infer-types", str(bad)], env=_WIDE)
    assert result.exit_code == 1


def test_list_and_clear_cache(database_url: str) -> None:
    CodeCache(database_url=database_url).append("hdfc_bank_bank_statement", code="return []")

    listed = runner.invoke(app, ["list-cache", "--database-url", database_url], env=_WIDE)
    assert listed.exit_code == 0, listed.output
    assert "hdfc_bank_bank_statement" in listed.output

    cleared = runner.invoke(
        app, ["clear-cache", "hdfc_bank_bank_statement", "--database-url", database_url], env=_WIDE
    )
    assert cleared.exit_code == 0, cleared.output
    assert "Removed 1 version(s)" in cleared.output

    empty = runner.invoke(app, ["list-cache", "--database-url", database_url], env=_WIDE)
    assert "No cached parsers." in empty.output


def test_parse_missing_file_exits_nonzero(tmp_path: Path) -> None:
    result = runner.invoke(app, ["parse", str(tmp_path / "missing.txt")], env=_WIDE)
    assert result.exit_code == 1


def test_work_with_nothing_pending(database_url: str) -> None:
    result = runner.invoke(app, ["work", "--database-url", database_url], env=_WIDE)
    assert result.exit_code == 0, result.output
    assert "No pending statements." in result.output


def test_work_reports_failed_statements(database_url: str, tmp_path: Path) -> None:
    from statement_parser.orchestrator import ParseOrchestrator

    pdf = tmp_path / "scan.pdf"
    pdf.write_bytes(b"%PDF-1.7")
    ParseOrchestrator(database_url=database_url).create_statement(
        "scan.pdf", file_path=pdf, statement_id="stmt-pdf"
    )

    result = runner.invoke(app, ["work", "--database-url", database_url], env=_WIDE)

    assert result.exit_code == 1
    assert "stmt-pdf" in result.output
    assert "failed" in result.output
