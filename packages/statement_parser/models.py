"""Data models for ``statement_parser``.

Records produced inside a parse attempt (metadata, extracted transactions,
holdings) are frozen dataclasses. Shapes that cross the language-model
boundary (parser configs, statement summaries) are pydantic models so replies
are validated on the way in.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, field_validator, model_validator

type DataType = Literal["string", "number", "date"]
type TransactionType = Literal["credit", "debit"]
type DocumentType = Literal["bank_statement", "credit_card_statement", "investment_statement"]
type StatementStatus = Literal["pending", "parsing", "completed", "failed"]

# A column is addressed either by its header text (case-insensitive) or by its
# zero-based position.
type ColumnRef = str | int


# ---------------------------------------------------------------------------
# Tabular metadata
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ColumnStats:
    """Summary statistics over the non-null values of one column.

    ``minimum``/``maximum`` are floats for numeric columns and ISO dates for
    date columns. ``sample_values`` is only filled for string columns and
    ``dominant_format`` only for date columns.
    """

    count: int
    null_count: int
    unique_count: int
    minimum: float | str | None = None
    maximum: float | str | None = None
    sample_values: tuple[str, ...] = ()
    dominant_format: str | None = None

    @property
    def non_null_count(self) -> int:
        return self.count - self.null_count


@dataclass(frozen=True, slots=True)
class Column:
    name: str
    index: int
    data_type: DataType
    stats: ColumnStats


@dataclass(frozen=True, slots=True)
class SheetMetadata:
    columns: tuple[Column, ...]
    row_count: int
    empty_column_name_count: int
    file_type: str = "csv"


@dataclass(frozen=True, slots=True)
class SheetData:
    """Header row plus data rows as read from a spreadsheet, cells as text."""

    headers: tuple[str, ...]
    rows: tuple[tuple[str, ...], ...]

    @property
    def total_rows(self) -> int:
        return len(self.rows)


# ---------------------------------------------------------------------------
# Deterministic extraction config
# ---------------------------------------------------------------------------


class ParserConfig(BaseModel):
    """Declarative mapping from spreadsheet columns to transaction fields.

    ``amount_format="single"`` requires ``amount_column`` and forbids the
    credit/debit pair; ``"split"`` requires both ``credit_column`` and
    ``debit_column`` and forbids ``amount_column``.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    date_column: str | int
    description_column: str | int
    amount_column: str | int | None = None
    credit_column: str | int | None = None
    debit_column: str | int | None = None
    type_column: str | int | None = None
    balance_column: str | int | None = None
    header_row: int = 0
    data_start_row: int = 1
    date_format: str | None = None
    amount_format: Literal["single", "split"] = "single"
    type_detection: Literal["column", "sign", "split"] = "sign"

    @field_validator("header_row", "data_start_row")
    @classmethod
    def _non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("row indices must be >= 0")
        return v

    @model_validator(mode="after")
    def _amount_columns_exclusive(self) -> ParserConfig:
        if self.amount_format == "split":
            if self.credit_column is None or self.debit_column is None:
                raise ValueError("split amount format requires credit_column and debit_column")
            if self.amount_column is not None:
                raise ValueError("split amount format must not set amount_column")
        else:
            if self.amount_column is None:
                raise ValueError("single amount format requires amount_column")
            if self.credit_column is not None or self.debit_column is not None:
                raise ValueError("single amount format must not set credit/debit columns")
        return self


# ---------------------------------------------------------------------------
# Extracted records
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class RawTransaction:
    """One extracted transaction. ``amount`` is always positive; direction lives in ``type``."""

    id: str
    date: str
    amount: float
    type: TransactionType
    description: str
    balance: float | None = None


@dataclass(frozen=True, slots=True)
class CategorizedTransaction:
    id: str
    category: str
    confidence: float
    summary: str


@dataclass(frozen=True, slots=True)
class Holding:
    """One investment position returned by generated code for investment statements."""

    investment_type: str
    name: str
    current_value: float
    symbol: str | None = None
    isin: str | None = None
    units: float | None = None
    average_cost: float | None = None
    current_price: float | None = None
    invested_value: float | None = None
    folio_number: str | None = None
    maturity_date: str | None = None
    interest_rate: float | None = None
    currency: str | None = None


# ---------------------------------------------------------------------------
# Generated-code cache
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class GeneratedCodeVersion:
    source_key: str
    version: int
    code: str
    detected_format: str | None
    date_format: str | None
    confidence: float | None
    success_count: int = 0
    fail_count: int = 0
    created_at: datetime | None = None


@dataclass(frozen=True, slots=True)
class SourceSummary:
    source_key: str
    version_count: int
    latest_version: int | None


# ---------------------------------------------------------------------------
# Validation inputs
# ---------------------------------------------------------------------------


class ExpectedSummary(BaseModel):
    """Aggregates printed on the statement itself, as read by the summary model.

    Every field is optional: only fields the model actually found take part in
    validation.
    """

    model_config = ConfigDict(extra="ignore")

    opening_balance: float | None = None
    closing_balance: float | None = None
    total_credits: float | None = None
    total_debits: float | None = None
    credit_count: int | None = None
    debit_count: int | None = None
    total_invested: float | None = None
    total_current: float | None = None
    holdings_count: int | None = None

    def is_empty(self) -> bool:
        return all(v is None for v in self.model_dump().values())


@dataclass(frozen=True, slots=True)
class ExtractedTotals:
    """Aggregates recomputed from the output of generated code."""

    opening_balance: float | None = None
    closing_balance: float | None = None
    total_credits: float | None = None
    total_debits: float | None = None
    credit_count: int | None = None
    debit_count: int | None = None
    total_invested: float | None = None
    total_current: float | None = None
    holdings_count: int | None = None


class StatementInfo(BaseModel):
    """Document-level facts from the statement info call."""

    model_config = ConfigDict(extra="ignore")

    document_type: Literal["bank_statement", "credit_card_statement", "investment_statement"] = (
        "bank_statement"
    )
    institution: str = "unknown"
    account_type: str = "unknown"
    currency: str | None = None
    period_start: str | None = None
    period_end: str | None = None
    summary: ExpectedSummary | None = None


# ---------------------------------------------------------------------------
# Results exposed to callers
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ParseResult:
    statement_id: str
    status: Literal["completed", "failed"]
    transaction_count: int = 0
    holdings_count: int = 0
    period_start: str | None = None
    period_end: str | None = None
    source_key: str | None = None
    error: str | None = None


@dataclass(frozen=True, slots=True)
class SpreadsheetResult:
    statement_id: str
    transaction_count: int
    skipped_rows: int = 0
    config: ParserConfig | None = field(default=None, compare=False)


__all__ = [
    "DataType",
    "TransactionType",
    "DocumentType",
    "StatementStatus",
    "ColumnRef",
    "ColumnStats",
    "Column",
    "SheetMetadata",
    "SheetData",
    "ParserConfig",
    "RawTransaction",
    "CategorizedTransaction",
    "Holding",
    "GeneratedCodeVersion",
    "SourceSummary",
    "ExpectedSummary",
    "ExtractedTotals",
    "StatementInfo",
    "ParseResult",
    "SpreadsheetResult",
]
