from __future__ import annotations

import datetime as dt
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    CHAR,
    JSON,
    BigInteger,
    CheckConstraint,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# SQLite only auto-increments INTEGER PRIMARY KEY (rowid) columns.
_BigIntPK = BigInteger().with_variant(Integer(), "sqlite")


class Base(DeclarativeBase):
    pass


# ---------------------------
# Statements and their parse lifecycle
# ---------------------------


class SpStatement(Base):
    __tablename__ = "sp_statements"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    file_name: Mapped[str] = mapped_column(Text, nullable=False)
    # Location handed to the text extractor; parsing never mutates the file.
    file_path: Mapped[str | None] = mapped_column(Text, nullable=True)
    source_hint: Mapped[str | None] = mapped_column(String, nullable=True)
    status: Mapped[str] = mapped_column(
        String, nullable=False, server_default=text("'pending'")
    )
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    document_type: Mapped[str | None] = mapped_column(String, nullable=True)
    institution: Mapped[str | None] = mapped_column(String, nullable=True)
    source_key: Mapped[str | None] = mapped_column(String, nullable=True)
    currency_code: Mapped[str | None] = mapped_column(CHAR(3), nullable=True)
    period_start: Mapped[dt.date | None] = mapped_column(Date, nullable=True)
    period_end: Mapped[dt.date | None] = mapped_column(Date, nullable=True)
    summary: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    transaction_count: Mapped[int] = mapped_column(
        Integer, nullable=False, server_default=text("0")
    )
    holdings_count: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("0"))
    parse_started_at: Mapped[dt.datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    parse_completed_at: Mapped[dt.datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        CheckConstraint(
            "status in ('pending','parsing','completed','failed')",
            name="ck_sp_statements_status",
        ),
    )


# ---------------------------
# Extracted records
# ---------------------------


class SpTransaction(Base):
    __tablename__ = "sp_transactions"

    id: Mapped[int] = mapped_column(_BigIntPK, primary_key=True, autoincrement=True)
    statement_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("sp_statements.id", ondelete="CASCADE"), nullable=False
    )
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    type: Mapped[str] = mapped_column(String, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    currency_code: Mapped[str] = mapped_column(
        CHAR(3), nullable=False, server_default=text("'USD'")
    )
    original_description: Mapped[str] = mapped_column(Text, nullable=False)
    balance: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    category: Mapped[str] = mapped_column(String, nullable=False, server_default=text("'other'"))
    category_confidence: Mapped[Decimal | None] = mapped_column(Numeric(3, 2), nullable=True)
    # sha256 over date|amount|description; global dedupe key across statements.
    hash: Mapped[str] = mapped_column(CHAR(64), nullable=False, unique=True)
    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (
        CheckConstraint("type in ('credit','debit')", name="ck_sp_tx_type"),
        CheckConstraint("amount > 0", name="ck_sp_tx_amount_positive"),
        CheckConstraint(
            (
                "category_confidence IS NULL OR "
                "(category_confidence >= 0 AND category_confidence <= 1)"
            ),
            name="ck_sp_tx_category_confidence",
        ),
        Index("ix_sp_tx_statement_id", "statement_id"),
    )


class SpHolding(Base):
    __tablename__ = "sp_holdings"

    id: Mapped[int] = mapped_column(_BigIntPK, primary_key=True, autoincrement=True)
    statement_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("sp_statements.id", ondelete="CASCADE"), nullable=False
    )
    investment_type: Mapped[str] = mapped_column(String, nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    symbol: Mapped[str | None] = mapped_column(String, nullable=True)
    isin: Mapped[str | None] = mapped_column(String(12), nullable=True)
    units: Mapped[Decimal | None] = mapped_column(Numeric(24, 6), nullable=True)
    average_cost: Mapped[Decimal | None] = mapped_column(Numeric(18, 4), nullable=True)
    current_price: Mapped[Decimal | None] = mapped_column(Numeric(18, 4), nullable=True)
    current_value: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    invested_value: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    folio_number: Mapped[str | None] = mapped_column(String, nullable=True)
    maturity_date: Mapped[dt.date | None] = mapped_column(Date, nullable=True)
    interest_rate: Mapped[Decimal | None] = mapped_column(Numeric(7, 4), nullable=True)
    currency_code: Mapped[str | None] = mapped_column(CHAR(3), nullable=True)
    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (Index("ix_sp_holdings_statement_id", "statement_id"),)


# ---------------------------
# Generated parser code cache
# ---------------------------


class SpParserSource(Base):
    """One row per source key; ``last_version`` only ever grows."""

    __tablename__ = "sp_parser_sources"

    source_key: Mapped[str] = mapped_column(String, primary_key=True)
    last_version: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("0"))
    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now()
    )


class SpParserCodeVersion(Base):
    __tablename__ = "sp_parser_code_versions"

    id: Mapped[int] = mapped_column(_BigIntPK, primary_key=True, autoincrement=True)
    source_key: Mapped[str] = mapped_column(
        String, ForeignKey("sp_parser_sources.source_key"), nullable=False
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    code: Mapped[str] = mapped_column(Text, nullable=False)
    detected_format: Mapped[str | None] = mapped_column(Text, nullable=True)
    date_format: Mapped[str | None] = mapped_column(String, nullable=True)
    confidence: Mapped[float | None] = mapped_column(Float, nullable=True)
    success_count: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("0"))
    fail_count: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("0"))
    last_used_at: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint("source_key", "version", name="uq_sp_parser_code_source_version"),
        CheckConstraint("version > 0", name="ck_sp_parser_code_version_positive"),
    )


__all__ = [
    "Base",
    "SpStatement",
    "SpTransaction",
    "SpHolding",
    "SpParserSource",
    "SpParserCodeVersion",
]
