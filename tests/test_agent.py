from __future__ import annotations

import json

import pytest

from statement_parser.agent import AgentRequest, AgentState, CodeGenerationAgent
from statement_parser.code_cache import CodeCache
from statement_parser.errors import GenerationExhaustedError
from statement_parser.llm import OpenAIModel
from statement_parser.models import ExpectedSummary
from statement_parser.sandbox import SandboxExecutor
from tests.helpers.db import fetch_code_versions
from tests.helpers.openai_stub import ScriptedOpenAI

_ROWS = [
    {"date": "2024-01-15", "amount": 5000.0, "type": "credit", "description": "Salary",
     "balance": 6000.0},
    {"date": "2024-01-16", "amount": 300.0, "type": "debit", "description": "Groceries",
     "balance": 5700.0},
]  # fmt: skip
_INVERTED = [dict(r, type="debit" if r["type"] == "credit" else "credit") for r in _ROWS]

GOOD = f"rows = json.loads({json.dumps(json.dumps(_ROWS))})\nreturn rows"
INVERTED = f"rows = json.loads({json.dumps(json.dumps(_INVERTED))})\nreturn rows"
BROKEN = "return [1 / 0]"

SUMMARY = ExpectedSummary(
    total_credits=5000.0, total_debits=300.0, credit_count=1, debit_count=1
)
TEXT = "15/01/2024 Salary 5000.00 CR 6000.00\n16/01/2024 Groceries 300.00 5700.00\n"


def _submit(code: str) -> dict:
    return {
        "action": "submit_code",
        "parser_code": code,
        "detected_format": "line per transaction",
        "date_format": "DD/MM/YYYY",
        "confidence": 0.9,
        "notes": None,
    }


def _agent(stub: ScriptedOpenAI, *, cache: CodeCache | None = None, max_steps: int = 8):
    return CodeGenerationAgent(
        OpenAIModel("m", client=stub),
        executor=SandboxExecutor(),
        cache=cache,
        max_steps=max_steps,
        tolerance=100.0,
    )


def test_execution_error_is_fed_back_into_next_prompt() -> None:
    stub = ScriptedOpenAI([_submit(BROKEN), _submit(GOOD)])
    outcome = _agent(stub).run(AgentRequest(text=TEXT, summary=SUMMARY))

    assert outcome.steps == 2
    assert not outcome.from_cache and outcome.version is None
    assert [t.description for t in outcome.transactions] == ["Salary", "Groceries"]
    assert outcome.validation.passed and not outcome.validation.skipped

    first, second = stub.calls
    assert "RESULT OF YOUR PREVIOUS SUBMISSION" not in first["input"]
    assert "Execution failed: ZeroDivisionError" in second["input"]
    assert BROKEN in second["input"]
    assert outcome.transitions == (
        AgentState.GENERATE,
        AgentState.EXECUTE,
        AgentState.REPAIR,
        AgentState.GENERATE,
        AgentState.EXECUTE,
        AgentState.VALIDATE,
        AgentState.ACCEPT,
    )


def test_validation_failure_feedback_includes_totals_and_diagnosis() -> None:
    stub = ScriptedOpenAI([_submit(INVERTED), _submit(GOOD)])
    outcome = _agent(stub).run(AgentRequest(text=TEXT, summary=SUMMARY))

    assert outcome.steps == 2
    feedback = stub.calls[1]["input"]
    assert "Validation failed" in feedback
    assert "inverted" in feedback
    assert '"total_credits": 300.0' in feedback


def test_unusable_reply_and_done_without_code_consume_steps() -> None:
    done = {**_submit(""), "action": "done", "parser_code": None}
    stub = ScriptedOpenAI(["not json", done, _submit(GOOD)])
    outcome = _agent(stub).run(AgentRequest(text=TEXT, summary=SUMMARY))

    assert outcome.steps == 3
    assert "could not be used" in stub.calls[1]["input"]
    assert "No code was submitted" in stub.calls[2]["input"]


def test_exhaustion_raises_after_step_budget() -> None:
    stub = ScriptedOpenAI([_submit(BROKEN)] * 3)
    with pytest.raises(GenerationExhaustedError) as excinfo:
        _agent(stub, max_steps=3).run(AgentRequest(text=TEXT, summary=SUMMARY))

    assert excinfo.value.steps == 3
    assert excinfo.value.last_error.startswith("Execution failed")
    assert stub.remaining == 0


def test_missing_summary_accepts_first_working_parser() -> None:
    stub = ScriptedOpenAI([_submit(INVERTED)])
    outcome = _agent(stub).run(AgentRequest(text=TEXT, summary=None))
    assert outcome.steps == 1
    assert outcome.validation.skipped


def test_cached_versions_are_tried_newest_first(database_url: str) -> None:
    cache = CodeCache(database_url=database_url)
    cache.append("acme_bank", code=GOOD)  # v1
    cache.append("acme_bank", code=GOOD)  # v2
    cache.append("acme_bank", code=BROKEN)  # v3

    stub = ScriptedOpenAI([])
    outcome = _agent(stub, cache=cache).run(
        AgentRequest(text=TEXT, source_key="acme_bank", summary=SUMMARY)
    )

    assert outcome.from_cache and outcome.version == 2 and outcome.steps == 0
    assert outcome.transitions == (AgentState.TRY_CACHE,)
    assert stub.calls == []

    rows = {r.version: r for r in fetch_code_versions(database_url, "acme_bank")}
    assert (rows[3].success_count, rows[3].fail_count) == (0, 1)
    assert (rows[2].success_count, rows[2].fail_count) == (1, 0)
    assert (rows[1].success_count, rows[1].fail_count) == (0, 0)


def test_generated_code_is_appended_after_cache_misses(database_url: str) -> None:
    cache = CodeCache(database_url=database_url)
    cache.append("acme_bank", code=INVERTED)  # fails validation

    stub = ScriptedOpenAI([_submit(GOOD)])
    outcome = _agent(stub, cache=cache).run(
        AgentRequest(text=TEXT, source_key="acme_bank", summary=SUMMARY)
    )

    assert not outcome.from_cache
    assert outcome.version == 2
    assert outcome.transitions[0] is AgentState.TRY_CACHE
    versions = cache.list_versions("acme_bank")
    assert [v.version for v in versions] == [2, 1]
    assert versions[0].code == GOOD
    assert versions[0].date_format == "DD/MM/YYYY"
    assert versions[1].fail_count == 1


def test_without_source_key_cache_is_untouched(database_url: str) -> None:
    cache = CodeCache(database_url=database_url)
    stub = ScriptedOpenAI([_submit(GOOD)])
    outcome = _agent(stub, cache=cache).run(AgentRequest(text=TEXT, summary=SUMMARY))
    assert outcome.version is None
    assert cache.list_sources() == []


def test_holdings_mode_validates_holdings_totals() -> None:
    holdings = [
        {"investment_type": "mutual_fund", "name": "Index Fund", "current_value": 1200.0,
         "invested_value": 1000.0, "units": 10.5},
    ]  # fmt: skip
    code = f"return json.loads({json.dumps(json.dumps(holdings))})"
    stub = ScriptedOpenAI([_submit(code)])
    outcome = _agent(stub).run(
        AgentRequest(
            text="Index Fund 10.5 units 1200.00",
            holdings=True,
            summary=ExpectedSummary(total_current=1200.0, holdings_count=1),
        )
    )
    assert [h.name for h in outcome.holdings] == ["Index Fund"]
    assert outcome.transactions == ()
    assert outcome.totals.total_invested == 1000.0
