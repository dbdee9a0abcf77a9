"""Prompt construction and response formats for every model call.

This module builds:
- Instructions and user content for parser-config generation, statement info
  extraction, the code-generation agent and batch categorization.
- The strict ``text.format`` (JSON Schema) objects for the structured calls.
- The compact CSV serialization of transactions sent to the categorizer.

Nothing here talks to the network; the builders are pure functions of their
inputs so tests can assert on prompt content directly.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

from openai.types.responses.response_format_text_json_schema_config_param import (
    ResponseFormatTextJSONSchemaConfigParam,
)

from .categories import Category
from .models import ExpectedSummary, RawTransaction, SheetMetadata

# Text beyond this many characters is cut before being sent to the agent.
MAX_AGENT_TEXT_CHARS: int = 80_000
_TRUNCATION_MARKER = "\n\n[...TEXT TRUNCATED...]"


def _nullable(schema_type: str) -> dict[str, Any]:
    return {"type": [schema_type, "null"]}


def _strict_object(properties: Mapping[str, Any]) -> dict[str, Any]:
    return {
        "type": "object",
        "properties": dict(properties),
        "required": list(properties.keys()),
        "additionalProperties": False,
    }


def truncate_text(text: str, limit: int = MAX_AGENT_TEXT_CHARS) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + _TRUNCATION_MARKER


# ---------------------------------------------------------------------------
# Parser-config generation (spreadsheets)
# ---------------------------------------------------------------------------


def build_config_instructions() -> str:
    return (
        "You analyze bank and credit card statement spreadsheets and produce a parser "
        "configuration. Output JSON only that conforms to the specified schema. Refer to "
        "columns by their exact header text."
    )


def _describe_column_stats(col: Any) -> str:
    stats = col.stats
    if col.data_type == "number":
        detail = f"min={stats.minimum}, max={stats.maximum}"
    elif col.data_type == "date":
        detail = f"range={stats.minimum} to {stats.maximum}, format={stats.dominant_format}"
    else:
        detail = "samples=" + ", ".join(stats.sample_values[:3])
    nulls = f"nulls={stats.null_count}/{stats.count}"
    return f"  {col.index}: {col.name!r} ({col.data_type}) - {detail}, {nulls}"


def build_config_content(
    *,
    file_name: str,
    metadata: SheetMetadata,
    headers: Sequence[str],
    sample_rows: Sequence[Sequence[Any]],
) -> str:
    """Describe the sheet (columns, headers, up to five sample rows) for config generation."""

    column_lines = "\n".join(_describe_column_stats(c) for c in metadata.columns)
    header_line = ", ".join(f'{i}:"{h}"' for i, h in enumerate(headers))
    row_lines = "\n".join(
        f"  Row {i}: " + ", ".join("null" if v in (None, "") else f'"{v}"' for v in row)
        for i, row in enumerate(sample_rows[:5])
    )
    return (
        "Analyze this bank/credit card statement spreadsheet and generate a parser "
        "configuration.\n\n"
        f"FILE: {file_name} ({metadata.file_type})\n"
        f"ROWS: {metadata.row_count}\n\n"
        f"COLUMNS:\n{column_lines}\n\n"
        f"HEADERS: {header_line}\n\n"
        f"SAMPLE DATA ROWS:\n{row_lines}\n\n"
        "INSTRUCTIONS:\n"
        "1. Identify the date column (names like Date, Transaction Date, Txn Date).\n"
        "2. Identify the amount column(s):\n"
        "   - One signed amount column: set amount_column, amount_format=\"single\", "
        "type_detection=\"sign\", credit_column=null, debit_column=null.\n"
        "   - Separate credit/debit (deposit/withdrawal) columns: set credit_column and "
        "debit_column, amount_column=null, amount_format=\"split\", type_detection=\"split\".\n"
        "   - Amount column plus a CR/DR type column: set amount_column and type_column, "
        "amount_format=\"single\", type_detection=\"column\".\n"
        "3. Identify the description column (narration, particulars, description, remarks).\n"
        "4. Identify the running balance column if present, else null.\n"
        "5. header_row is the 0-based row holding column names (usually 0).\n"
        "6. data_start_row is the 0-based row where transactions begin (usually 1).\n"
        "7. date_format must match the date column, e.g. DD-MM-YYYY, YYYY-MM-DD, DD/MM/YY."
    )


def build_config_response_format() -> ResponseFormatTextJSONSchemaConfigParam:
    props = {
        "date_column": {"type": "string"},
        "description_column": {"type": "string"},
        "amount_column": _nullable("string"),
        "credit_column": _nullable("string"),
        "debit_column": _nullable("string"),
        "type_column": _nullable("string"),
        "balance_column": _nullable("string"),
        "header_row": {"type": "integer", "minimum": 0},
        "data_start_row": {"type": "integer", "minimum": 0},
        "date_format": {"type": "string"},
        "amount_format": {"type": "string", "enum": ["single", "split"]},
        "type_detection": {"type": "string", "enum": ["column", "sign", "split"]},
    }
    return {
        "type": "json_schema",
        "name": "parser_config",
        "schema": _strict_object(props),
        "strict": True,
    }


# ---------------------------------------------------------------------------
# Statement info (document type, institution, printed summary)
# ---------------------------------------------------------------------------


def build_info_instructions() -> str:
    return (
        "You read financial statements and report document-level facts: the document "
        "type, the issuing institution, the account type, the statement period and the "
        "totals printed in the statement summary. Use null for anything not printed on "
        "the statement; never compute values yourself. Output JSON only."
    )


def build_info_content(statement_text: str) -> str:
    return (
        "Extract the statement information from the document below. Dates use YYYY-MM-DD. "
        "Amounts are plain numbers without currency symbols.\n\n"
        "BEGIN_STATEMENT_TEXT\n"
        f"{statement_text}\n"
        "END_STATEMENT_TEXT"
    )


def build_info_response_format() -> ResponseFormatTextJSONSchemaConfigParam:
    summary_props = {
        "opening_balance": _nullable("number"),
        "closing_balance": _nullable("number"),
        "total_credits": _nullable("number"),
        "total_debits": _nullable("number"),
        "credit_count": _nullable("integer"),
        "debit_count": _nullable("integer"),
        "total_invested": _nullable("number"),
        "total_current": _nullable("number"),
        "holdings_count": _nullable("integer"),
    }
    summary_schema = _strict_object(summary_props)
    summary_schema["type"] = ["object", "null"]
    props = {
        "document_type": {
            "type": "string",
            "enum": ["bank_statement", "credit_card_statement", "investment_statement"],
        },
        "institution": {"type": "string"},
        "account_type": {"type": "string"},
        "currency": _nullable("string"),
        "period_start": _nullable("string"),
        "period_end": _nullable("string"),
        "summary": summary_schema,
    }
    return {
        "type": "json_schema",
        "name": "statement_info",
        "schema": _strict_object(props),
        "strict": True,
    }


# ---------------------------------------------------------------------------
# Code-generation agent
# ---------------------------------------------------------------------------

_TRANSACTION_RULES = """\
Each item must be a dict with:
- "date": "YYYY-MM-DD" string
- "amount": positive number
- "type": "credit" (money in) or "debit" (money out)
- "description": string
- "balance": running balance after the transaction, or None"""

_HOLDING_RULES = """\
Each item must be a dict with:
- "investment_type": e.g. "mutual_fund", "stocks", "etf", "bonds", "fixed_deposit", "other"
- "name": string
- "current_value": non-negative number
Optional keys: "symbol", "isin", "units", "average_cost", "current_price",
"invested_value", "folio_number", "maturity_date" (YYYY-MM-DD), "interest_rate",
"currency" (3-letter code)"""

_AGENT_BASE = """\
You are a statement parsing expert. You write Python code that extracts {what}
from statement text.

RULES:
1. Write a function BODY only (no def line). The statement text is bound to the
   variable `text`. The body MUST end with an explicit `return` of a list.
2. {item_rules}
3. Available names: re, math, json, datetime, date, timedelta, Decimal,
   InvalidOperation and the usual builtins (len, range, enumerate, zip, sorted,
   min, max, sum, abs, round, int, float, str, list, dict, set, tuple, any, all,
   isinstance, map, filter, reversed).
4. NOT allowed: import statements, open, eval, exec, getattr, globals, attribute
   names starting with an underscore, global/nonlocal, bare `except:`.
5. Parse deterministically with regular expressions and string methods. Skip
   headers, totals, summary rows and opening/closing balance lines.
6. Credit vs debit: prefer explicit CR/DR markers, then separate
   withdrawal/deposit columns, then the change in running balance between rows.
   Never infer direction from words like "UPI", "transfer" or "payment".

Reply with JSON only. Use action "submit_code" with the code and metadata to
test a parser; the result of every submission is shown to you on the next turn.
Use action "done" only after a submission was accepted."""

INSTITUTION_HINTS: dict[str, str] = {
    "hdfc": (
        "HDFC BANK: transactions are usually oldest first with columns Date | Narration | "
        "Chq./Ref.No. | Value Dt | Withdrawal Amt | Deposit Amt | Closing Balance. There "
        "are no CR/DR markers; use the withdrawal/deposit columns or the balance change. "
        "Skip 'Opening Balance', 'Balance B/F', 'STATEMENT SUMMARY' and lines with 'Total'. "
        "Dates look like DD/MM/YY or DD-MMM-YY."
    ),
    "amex": (
        "AMERICAN EXPRESS: dates are 'Month Day' (e.g. 'November 22'); take the year from "
        "the statement period line. The CR marker for credits appears on one of the next "
        "two lines after the transaction line. Skip 'New domestic transactions for', "
        "'New overseas transactions for', 'TOTAL OVERSEAS SPEND' and balance/limit lines. "
        "The amount is the last decimal number on the transaction line."
    ),
}


def institution_hint(institution: str | None) -> str | None:
    if not institution:
        return None
    key = institution.strip().lower()
    for name, hint in INSTITUTION_HINTS.items():
        if name in key or (name == "amex" and "american express" in key):
            return hint
    return None


def _summary_lines(summary: ExpectedSummary) -> list[str]:
    lines: list[str] = []
    for name, value in summary.model_dump().items():
        if value is not None:
            lines.append(f"- {name}: {value}")
    return lines


def build_agent_instructions(
    *,
    holdings: bool,
    institution: str | None,
    summary: ExpectedSummary | None,
) -> str:
    base = _AGENT_BASE.format(
        what="investment holdings" if holdings else "transactions",
        item_rules=(_HOLDING_RULES if holdings else _TRANSACTION_RULES).replace("\n", "\n   "),
    )
    parts = [base]
    hint = institution_hint(institution)
    if hint:
        parts.append("INSTITUTION NOTES:\n" + hint)
    if summary is not None and not summary.is_empty():
        parts.append(
            "VALIDATION: your output is checked against the statement's printed summary:\n"
            + "\n".join(_summary_lines(summary))
            + "\nA submission is accepted only when the extracted totals match."
        )
    return "\n\n".join(parts)


def build_agent_content(
    *,
    statement_text: str,
    step: int,
    max_steps: int,
    last_code: str | None,
    last_error: str | None,
) -> str:
    """Build the per-step user content: the statement plus the last attempt's outcome."""

    parts = [
        f"STEP {step} of {max_steps}.",
        "BEGIN_STATEMENT_TEXT\n" + truncate_text(statement_text) + "\nEND_STATEMENT_TEXT",
    ]
    if last_code is not None:
        parts.append("YOUR PREVIOUS CODE:\nBEGIN_CODE\n" + last_code + "\nEND_CODE")
    if last_error is not None:
        parts.append(
            "RESULT OF YOUR PREVIOUS SUBMISSION (fix the code and submit again):\n" + last_error
        )
    else:
        parts.append("Write the parser and submit it with action \"submit_code\".")
    return "\n\n".join(parts)


def build_agent_response_format() -> ResponseFormatTextJSONSchemaConfigParam:
    props = {
        "action": {"type": "string", "enum": ["submit_code", "done"]},
        "parser_code": _nullable("string"),
        "detected_format": _nullable("string"),
        "date_format": _nullable("string"),
        "confidence": _nullable("number"),
        "notes": _nullable("string"),
    }
    return {
        "type": "json_schema",
        "name": "parser_agent_action",
        "schema": _strict_object(props),
        "strict": True,
    }


# ---------------------------------------------------------------------------
# Batch categorization (CSV wire format)
# ---------------------------------------------------------------------------


def _csv_quote(value: str) -> str:
    return '"' + value.replace('"', '""') + '"'


def serialize_transactions_csv(transactions: Sequence[RawTransaction]) -> str:
    """Serialize as ``id,type,amount,"description"`` lines (no header)."""

    return "\n".join(
        f"{t.id},{t.type},{t.amount:.2f},{_csv_quote(t.description)}" for t in transactions
    )


def build_categorize_instructions() -> str:
    return (
        "You categorize bank transactions. Reply with CSV only, one line per input "
        "transaction, no commentary and no code fences."
    )


def build_categorize_content(
    transactions: Sequence[RawTransaction], categories: Sequence[Category]
) -> str:
    category_lines = "\n".join(f"{c.code}: {c.label}" for c in categories)
    return (
        "Categorize these bank transactions and provide a brief summary for each.\n\n"
        "TRANSACTIONS (id,type,amount,description):\n"
        f"{serialize_transactions_csv(transactions)}\n\n"
        f"CATEGORIES:\n{category_lines}\n\n"
        "OUTPUT FORMAT (CSV):\n"
        "id,category,confidence,summary\n\n"
        "RULES:\n"
        "- id: exact id from the input\n"
        "- category: a code from the categories list\n"
        "- confidence: 0.0 to 1.0\n"
        "- summary: 2-5 words, quoted (e.g. \"Amazon online purchase\")"
    )


__all__ = [
    "MAX_AGENT_TEXT_CHARS",
    "INSTITUTION_HINTS",
    "truncate_text",
    "institution_hint",
    "build_config_instructions",
    "build_config_content",
    "build_config_response_format",
    "build_info_instructions",
    "build_info_content",
    "build_info_response_format",
    "build_agent_instructions",
    "build_agent_content",
    "build_agent_response_format",
    "serialize_transactions_csv",
    "build_categorize_instructions",
    "build_categorize_content",
]
