"""File-to-text collaborators.

The engine consumes documents as a list of page texts and spreadsheets as a
:class:`~statement_parser.models.SheetData`. :class:`TextExtractor` is that
seam; :class:`DefaultExtractor` covers plain text and delimited files.
PDF and Excel readers plug in by implementing the protocol.
"""

from __future__ import annotations

import csv
import io
from collections.abc import Sequence
from pathlib import Path
from typing import Protocol

from .errors import InputError
from .logging_setup import get_logger
from .models import SheetData

_TEXT_SUFFIXES: frozenset[str] = frozenset({".txt", ".text", ".csv", ".tsv"})
_SHEET_SUFFIXES: frozenset[str] = frozenset({".csv", ".tsv", ".txt"})
_SNIFF_CHARS: int = 4096
_MIN_HEADER_CELLS: int = 2

_logger = get_logger("statement_parser.extractors")


class TextExtractor(Protocol):
    def extract_pages(self, path: str | Path, password: str | None = None) -> list[str]:
        """Return page texts in document order.

        Raises ``PasswordRequiredError`` for encrypted documents without a
        (correct) password and ``InputError`` for anything unreadable.
        """
        ...

    def extract_sheet(self, data: bytes, file_name: str) -> SheetData: ...


def _decode(data: bytes) -> str:
    try:
        return data.decode("utf-8-sig")
    except UnicodeDecodeError:
        return data.decode("latin-1")


def _delimiter(sample: str, suffix: str) -> str:
    if suffix == ".tsv":
        return "\t"
    try:
        return csv.Sniffer().sniff(sample[:_SNIFF_CHARS], delimiters=",;\t|").delimiter
    except csv.Error:
        return ","


def _is_blank(row: Sequence[str]) -> bool:
    return all(not c.strip() for c in row)


def split_sheet(raw_rows: Sequence[Sequence[str]]) -> SheetData:
    """Locate the header row and return the rows beneath it, padded to equal width.

    The header is the first row with at least two non-empty cells; preamble
    lines (bank name, account number) above it are dropped.
    """

    header_idx = next(
        (
            i
            for i, row in enumerate(raw_rows)
            if sum(1 for c in row if c.strip()) >= _MIN_HEADER_CELLS
        ),
        None,
    )
    if header_idx is None:
        raise InputError("no header row found in spreadsheet")
    body = [r for r in raw_rows[header_idx + 1 :] if not _is_blank(r)]
    width = max([len(raw_rows[header_idx]), *(len(r) for r in body)])

    def _pad(row: Sequence[str]) -> tuple[str, ...]:
        cells = [c.strip() for c in row]
        return tuple(cells + [""] * (width - len(cells)))

    return SheetData(headers=_pad(raw_rows[header_idx]), rows=tuple(_pad(r) for r in body))


class DefaultExtractor:
    """Reads plain text as a single page and delimited text as a sheet."""

    def extract_pages(self, path: str | Path, password: str | None = None) -> list[str]:
        p = Path(path)
        suffix = p.suffix.lower()
        if suffix not in _TEXT_SUFFIXES:
            raise InputError(
                f"unsupported document type {suffix or '(none)'!r}; "
                "configure a TextExtractor that can read it"
            )
        try:
            data = p.read_bytes()
        except OSError as e:
            raise InputError(f"cannot read {p}: {e}") from e
        text = _decode(data)
        if not text.strip():
            raise InputError(f"{p.name} contains no text")
        # Form feeds separate pages in text dumps of PDFs.
        pages = [pg for pg in text.split("\f") if pg.strip()]
        _logger.debug("extractors:pages file=%s pages=%d", p.name, len(pages))
        return pages

    def extract_sheet(self, data: bytes, file_name: str) -> SheetData:
        suffix = Path(file_name).suffix.lower()
        if suffix not in _SHEET_SUFFIXES:
            raise InputError(
                f"unsupported spreadsheet type {suffix or '(none)'!r}; only CSV/TSV are built in"
            )
        text = _decode(data)
        if not text.strip():
            raise InputError(f"{file_name} is empty")
        reader = csv.reader(io.StringIO(text), delimiter=_delimiter(text, suffix))
        try:
            raw_rows = [row for row in reader]
        except csv.Error as e:
            raise InputError(f"{file_name} is not valid delimited text: {e}") from e
        sheet = split_sheet(raw_rows)
        _logger.debug(
            "extractors:sheet file=%s columns=%d rows=%d",
            file_name,
            len(sheet.headers),
            sheet.total_rows,
        )
        return sheet


__all__ = ["DefaultExtractor", "TextExtractor", "split_sheet"]
