from __future__ import annotations

import pytest

from statement_parser.config_generator import generate_parser_config
from statement_parser.errors import ConfigGenerationError
from statement_parser.llm import OpenAIModel
from statement_parser.models import SheetData
from statement_parser.type_inference import extract_metadata
from tests.helpers.openai_stub import ScriptedOpenAI

_SHEET = SheetData(
    headers=("Txn Date", "Narration", "Withdrawal", "Deposit", "Balance"),
    rows=(
        ("15-01-2024", "UPI/SWIGGY", "450.00", "", "9,550.00"),
        ("16-01-2024", "SALARY JAN", "", "50,000.00", "59,550.00"),
    ),
)


def _reply(**overrides) -> dict:
    base = {
        "date_column": "Txn Date",
        "description_column": "Narration",
        "amount_column": "",
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
    base.update(overrides)
    return base


def _generate(stub: ScriptedOpenAI):
    return generate_parser_config(
        OpenAIModel("m", client=stub),
        file_name="hdfc.csv",
        metadata=extract_metadata(_SHEET),
        headers=_SHEET.headers,
        rows=_SHEET.rows,
    )


def test_reply_becomes_parser_config_and_prompt_carries_sheet() -> None:
    stub = ScriptedOpenAI([_reply()])
    config = _generate(stub)

    assert config.amount_format == "split"
    assert config.amount_column is None
    assert (config.credit_column, config.debit_column) == ("Deposit", "Withdrawal")
    assert config.date_format == "DD-MM-YYYY"

    [call] = stub.calls
    assert call["text"]["format"]["name"] == "parser_config"
    assert "hdfc.csv" in call["input"]
    assert "SALARY JAN" in call["input"]


def test_blank_date_format_means_none() -> None:
    config = _generate(ScriptedOpenAI([_reply(date_format="  ")]))
    assert config.date_format is None


def test_inconsistent_amount_columns_raise() -> None:
    bad = _reply(amount_column="Balance")
    with pytest.raises(ConfigGenerationError):
        _generate(ScriptedOpenAI([bad]))


def test_non_json_reply_raises() -> None:
    with pytest.raises(ConfigGenerationError):
        _generate(ScriptedOpenAI(["not json at all"]))


def test_transport_failure_raises() -> None:
    with pytest.raises(ConfigGenerationError):
        _generate(ScriptedOpenAI([RuntimeError("connection reset")]))
