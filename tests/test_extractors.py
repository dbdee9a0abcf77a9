from __future__ import annotations

from pathlib import Path

import pytest

from statement_parser.errors import InputError
from statement_parser.extractors import DefaultExtractor, split_sheet


def test_text_pages_split_on_form_feed(tmp_path: Path) -> None:
    path = tmp_path / "dump.txt"
    path.write_text("page one\n\fpage two\n\f\n", encoding="utf-8")
    assert DefaultExtractor().extract_pages(path) == ["page one\n", "page two\n"]


@pytest.mark.parametrize("name", ["scan.pdf", "book.xlsx", "noext"])
def test_unsupported_documents_raise_input_error(tmp_path: Path, name: str) -> None:
    path = tmp_path / name
    path.write_bytes(b"\x00\x01")
    with pytest.raises(InputError):
        DefaultExtractor().extract_pages(path)


def test_empty_or_missing_document(tmp_path: Path) -> None:
    empty = tmp_path / "empty.txt"
    empty.write_text("  \n", encoding="utf-8")
    with pytest.raises(InputError):
        DefaultExtractor().extract_pages(empty)
    with pytest.raises(InputError):
        DefaultExtractor().extract_pages(tmp_path / "missing.txt")


def test_sheet_semicolon_delimited_with_bom() -> None:
    data = "\ufeffDate;Description;Amount\n01.02.2024;Café;-4,50\n".encode()
    sheet = DefaultExtractor().extract_sheet(data, "export.csv")
    assert sheet.headers == ("Date", "Description", "Amount")
    assert sheet.rows == (("01.02.2024", "Café", "-4,50"),)


def test_sheet_latin1_fallback_and_tsv() -> None:
    data = "Date\tDescription\n2024-01-01\tCaf\xe9\n".encode("latin-1")
    sheet = DefaultExtractor().extract_sheet(data, "export.tsv")
    assert sheet.rows == (("2024-01-01", "Café"),)


def test_split_sheet_skips_preamble_and_pads_rows() -> None:
    sheet = split_sheet(
        [
            ["HDFC BANK"],
            ["Account 1234", ""],
            [],
            ["Date", "Narration", "Amount"],
            ["", "", ""],
            ["01/01/2024", "Coffee"],
            ["02/01/2024", "Lunch", "12.00", "extra"],
        ]
    )
    assert sheet.headers == ("Date", "Narration", "Amount", "")
    assert sheet.rows == (
        ("01/01/2024", "Coffee", "", ""),
        ("02/01/2024", "Lunch", "12.00", "extra"),
    )


def test_split_sheet_without_header_raises() -> None:
    with pytest.raises(InputError):
        split_sheet([["only"], ["single", ""]])


def test_unsupported_sheet_type() -> None:
    with pytest.raises(InputError):
        DefaultExtractor().extract_sheet(b"PK", "book.xlsx")
