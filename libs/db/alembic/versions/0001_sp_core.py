# ruff: noqa: I001
"""Statement parsing core tables.

Revision ID: 0001_sp_core
Revises: None
Create Date: 2026-10-19
"""

from __future__ import annotations

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op


# revision identifiers, used by Alembic.
revision: str = "0001_sp_core"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

_BigIntPK = sa.BigInteger().with_variant(sa.Integer(), "sqlite")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
    ]


def upgrade() -> None:
    # sp_statements
    op.create_table(
        "sp_statements",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("file_name", sa.Text(), nullable=False),
        sa.Column("file_path", sa.Text(), nullable=True),
        sa.Column("source_hint", sa.String(), nullable=True),
        sa.Column("status", sa.String(), nullable=False, server_default=sa.text("'pending'")),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("document_type", sa.String(), nullable=True),
        sa.Column("institution", sa.String(), nullable=True),
        sa.Column("source_key", sa.String(), nullable=True),
        sa.Column("currency_code", sa.CHAR(3), nullable=True),
        sa.Column("period_start", sa.Date(), nullable=True),
        sa.Column("period_end", sa.Date(), nullable=True),
        sa.Column("summary", sa.JSON(), nullable=True),
        sa.Column("transaction_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("holdings_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("parse_started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("parse_completed_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint(
            "status in ('pending','parsing','completed','failed')",
            name="ck_sp_statements_status",
        ),
    )

    # sp_transactions
    op.create_table(
        "sp_transactions",
        sa.Column("id", _BigIntPK, primary_key=True, autoincrement=True),
        sa.Column(
            "statement_id",
            sa.String(36),
            sa.ForeignKey("sp_statements.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("type", sa.String(), nullable=False),
        sa.Column("amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("currency_code", sa.CHAR(3), nullable=False, server_default=sa.text("'USD'")),
        sa.Column("original_description", sa.Text(), nullable=False),
        sa.Column("balance", sa.Numeric(18, 2), nullable=True),
        sa.Column("summary", sa.Text(), nullable=True),
        sa.Column("category", sa.String(), nullable=False, server_default=sa.text("'other'")),
        sa.Column("category_confidence", sa.Numeric(3, 2), nullable=True),
        sa.Column("hash", sa.CHAR(64), nullable=False, unique=True),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.CheckConstraint("type in ('credit','debit')", name="ck_sp_tx_type"),
        sa.CheckConstraint("amount > 0", name="ck_sp_tx_amount_positive"),
        sa.CheckConstraint(
            (
                "category_confidence IS NULL OR "
                "(category_confidence >= 0 AND category_confidence <= 1)"
            ),
            name="ck_sp_tx_category_confidence",
        ),
    )
    op.create_index("ix_sp_tx_statement_id", "sp_transactions", ["statement_id"], unique=False)

    # sp_holdings
    op.create_table(
        "sp_holdings",
        sa.Column("id", _BigIntPK, primary_key=True, autoincrement=True),
        sa.Column(
            "statement_id",
            sa.String(36),
            sa.ForeignKey("sp_statements.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("investment_type", sa.String(), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("symbol", sa.String(), nullable=True),
        sa.Column("isin", sa.String(12), nullable=True),
        sa.Column("units", sa.Numeric(24, 6), nullable=True),
        sa.Column("average_cost", sa.Numeric(18, 4), nullable=True),
        sa.Column("current_price", sa.Numeric(18, 4), nullable=True),
        sa.Column("current_value", sa.Numeric(18, 2), nullable=False),
        sa.Column("invested_value", sa.Numeric(18, 2), nullable=True),
        sa.Column("folio_number", sa.String(), nullable=True),
        sa.Column("maturity_date", sa.Date(), nullable=True),
        sa.Column("interest_rate", sa.Numeric(7, 4), nullable=True),
        sa.Column("currency_code", sa.CHAR(3), nullable=True),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
    )
    op.create_index("ix_sp_holdings_statement_id", "sp_holdings", ["statement_id"], unique=False)

    # sp_parser_sources: per-key version high-water mark
    op.create_table(
        "sp_parser_sources",
        sa.Column("source_key", sa.String(), primary_key=True),
        sa.Column("last_version", sa.Integer(), nullable=False, server_default=sa.text("0")),
        *_timestamps(),
    )

    # sp_parser_code_versions
    op.create_table(
        "sp_parser_code_versions",
        sa.Column("id", _BigIntPK, primary_key=True, autoincrement=True),
        sa.Column(
            "source_key",
            sa.String(),
            sa.ForeignKey("sp_parser_sources.source_key"),
            nullable=False,
        ),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("code", sa.Text(), nullable=False),
        sa.Column("detected_format", sa.Text(), nullable=True),
        sa.Column("date_format", sa.String(), nullable=True),
        sa.Column("confidence", sa.Float(), nullable=True),
        sa.Column("success_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("fail_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("last_used_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.UniqueConstraint("source_key", "version", name="uq_sp_parser_code_source_version"),
        sa.CheckConstraint("version > 0", name="ck_sp_parser_code_version_positive"),
    )


def downgrade() -> None:
    op.drop_table("sp_parser_code_versions")
    op.drop_table("sp_parser_sources")
    op.drop_index("ix_sp_holdings_statement_id", table_name="sp_holdings")
    op.drop_table("sp_holdings")
    op.drop_index("ix_sp_tx_statement_id", table_name="sp_transactions")
    op.drop_table("sp_transactions")
    op.drop_table("sp_statements")
