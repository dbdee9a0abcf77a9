"""Cache-first, self-repairing generation of parser code.

:class:`CodeGenerationAgent` is an explicit state machine::

    TRY_CACHE -> (accepted)                      -> done
              -> (every cached version rejected) -> GENERATE
    GENERATE  -> EXECUTE -> VALIDATE -> ACCEPT   -> done
                    |           |
                    +-> REPAIR <+--> GENERATE (next step) | GIVE_UP

Each GENERATE consumes one step of the budget. ``last_error`` (sandbox error
or validation report) is carried into the next GENERATE prompt together with
the previous code. Running out of steps raises
:class:`~statement_parser.errors.GenerationExhaustedError`.
"""

from __future__ import annotations

import dataclasses
import enum
import json
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict

from .code_cache import CodeCache
from .errors import GenerationExhaustedError
from .llm import LanguageModel
from .logging_setup import get_logger
from .models import ExpectedSummary, ExtractedTotals, Holding, RawTransaction
from .parser_runner import ParserRun, run_parser
from .prompting import (
    build_agent_content,
    build_agent_instructions,
    build_agent_response_format,
)
from .sandbox import SandboxExecutor
from .validation import ValidationResult, compute_holding_totals, compute_totals, validate

_SAMPLE_ITEMS: int = 5

_logger = get_logger("statement_parser.agent")


class AgentState(enum.Enum):
    TRY_CACHE = "try_cache"
    GENERATE = "generate"
    EXECUTE = "execute"
    VALIDATE = "validate"
    REPAIR = "repair"
    ACCEPT = "accept"
    GIVE_UP = "give_up"


class AgentAction(BaseModel):
    """One model turn: submit code for testing, or claim to be done."""

    model_config = ConfigDict(extra="ignore")

    action: Literal["submit_code", "done"]
    parser_code: str | None = None
    detected_format: str | None = None
    date_format: str | None = None
    confidence: float | None = None
    notes: str | None = None


@dataclass(frozen=True, slots=True)
class AgentRequest:
    """Everything the agent needs to produce a parser for one document."""

    text: str
    source_key: str | None = None
    holdings: bool = False
    institution: str | None = None
    summary: ExpectedSummary | None = None


@dataclass(frozen=True, slots=True)
class AgentOutcome:
    transactions: tuple[RawTransaction, ...]
    holdings: tuple[Holding, ...]
    validation: ValidationResult
    totals: ExtractedTotals
    code: str
    version: int | None
    from_cache: bool
    steps: int
    transitions: tuple[AgentState, ...] = field(default=(), compare=False)


def totals_for(run: ParserRun, *, holdings: bool) -> ExtractedTotals:
    if holdings:
        return compute_holding_totals(run.holdings)
    return compute_totals(run.transactions)


def _sample_items(run: ParserRun) -> str:
    items: Sequence[Any] = run.holdings or run.transactions
    sample = [dataclasses.asdict(i) for i in items[:_SAMPLE_ITEMS]]
    for item in sample:
        item.pop("id", None)
    return json.dumps(sample, indent=1, default=str)


def _validation_feedback(
    run: ParserRun, totals: ExtractedTotals, result: ValidationResult
) -> str:
    kept = {k: v for k, v in dataclasses.asdict(totals).items() if v is not None}
    lines = [
        f"Your code ran and returned {run.item_count} valid item(s)"
        + (f" ({run.invalid_items} invalid item(s) were skipped)" if run.invalid_items else "")
        + ", but the totals do not match the statement.",
        "Extracted totals: " + json.dumps(kept),
        result.describe(),
        f"First {_SAMPLE_ITEMS} items:",
        _sample_items(run),
    ]
    return "\n".join(lines)


class CodeGenerationAgent:
    """Find or write parser code whose output passes validation.

    ``cache`` may be ``None`` (or the request may lack a ``source_key``), in
    which case the cache is neither consulted nor written.
    """

    def __init__(
        self,
        llm: LanguageModel,
        *,
        executor: SandboxExecutor,
        cache: CodeCache | None = None,
        max_steps: int = 8,
        tolerance: float = 100.0,
    ) -> None:
        if max_steps <= 0:
            raise ValueError("max_steps must be positive")
        self.llm = llm
        self.executor = executor
        self.cache = cache
        self.max_steps = max_steps
        self.tolerance = tolerance

    # ---- Cache trial ------------------------------------------------------------

    def _try_cache(self, request: AgentRequest) -> AgentOutcome | None:
        assert self.cache is not None and request.source_key is not None
        versions = self.cache.list_versions(request.source_key)
        for v in versions:
            run = run_parser(self.executor, v.code, request.text, holdings=request.holdings)
            if run.ok:
                totals = totals_for(run, holdings=request.holdings)
                result = validate(totals, request.summary, self.tolerance)
            else:
                totals, result = ExtractedTotals(), ValidationResult(passed=False)
            accepted = run.ok and result.passed
            self.cache.record_outcome(request.source_key, v.version, success=accepted)
            _logger.info(
                "agent:cache_try source_key=%s version=%d accepted=%s error=%s",
                request.source_key,
                v.version,
                accepted,
                run.error or (None if result.passed else "validation_failed"),
            )
            if accepted:
                return AgentOutcome(
                    transactions=run.transactions,
                    holdings=run.holdings,
                    validation=result,
                    totals=totals,
                    code=v.code,
                    version=v.version,
                    from_cache=True,
                    steps=0,
                )
        if versions:
            _logger.info(
                "agent:cache_exhausted source_key=%s tried=%d", request.source_key, len(versions)
            )
        return None

    # ---- Generation -------------------------------------------------------------

    def _ask(
        self, request: AgentRequest, instructions: str, step: int, last_code, last_error
    ) -> AgentAction:
        return self.llm.generate_structured(
            instructions=instructions,
            content=build_agent_content(
                statement_text=request.text,
                step=step,
                max_steps=self.max_steps,
                last_code=last_code,
                last_error=last_error,
            ),
            response_format=build_agent_response_format(),
            model_cls=AgentAction,
        )

    def run(self, request: AgentRequest) -> AgentOutcome:
        """Drive the state machine to ACCEPT or raise ``GenerationExhaustedError``."""

        use_cache = self.cache is not None and request.source_key is not None
        instructions = build_agent_instructions(
            holdings=request.holdings, institution=request.institution, summary=request.summary
        )

        state = AgentState.TRY_CACHE if use_cache else AgentState.GENERATE
        transitions: list[AgentState] = []
        step = 0
        last_code: str | None = None
        last_error: str | None = None
        action: AgentAction | None = None
        run: ParserRun | None = None
        totals = ExtractedTotals()
        result = ValidationResult(passed=False)

        while True:
            transitions.append(state)

            if state is AgentState.TRY_CACHE:
                cached = self._try_cache(request)
                if cached is not None:
                    return dataclasses.replace(cached, transitions=tuple(transitions))
                state = AgentState.GENERATE

            elif state is AgentState.GENERATE:
                if step >= self.max_steps:
                    state = AgentState.GIVE_UP
                    continue
                step += 1
                try:
                    action = self._ask(request, instructions, step, last_code, last_error)
                except ValueError as e:
                    last_error = f"Your reply could not be used: {e}"
                    state = AgentState.REPAIR
                    continue
                code = (action.parser_code or "").strip()
                if action.action == "done" or not code:
                    last_error = (
                        "No code was submitted. Submit a parser with action \"submit_code\"; "
                        "nothing has been accepted yet."
                    )
                    state = AgentState.REPAIR
                    continue
                last_code = code
                state = AgentState.EXECUTE

            elif state is AgentState.EXECUTE:
                assert last_code is not None
                run = run_parser(self.executor, last_code, request.text, holdings=request.holdings)
                if run.ok:
                    state = AgentState.VALIDATE
                else:
                    last_error = f"Execution failed: {run.error}"
                    state = AgentState.REPAIR

            elif state is AgentState.VALIDATE:
                assert run is not None
                totals = totals_for(run, holdings=request.holdings)
                result = validate(totals, request.summary, self.tolerance)
                if result.passed:
                    state = AgentState.ACCEPT
                else:
                    last_error = _validation_feedback(run, totals, result)
                    state = AgentState.REPAIR

            elif state is AgentState.REPAIR:
                _logger.info(
                    "agent:step step=%d outcome=rejected error=%s",
                    step,
                    (last_error or "").splitlines()[0][:200],
                )
                state = AgentState.GENERATE

            elif state is AgentState.ACCEPT:
                assert run is not None and last_code is not None and action is not None
                version: int | None = None
                if use_cache:
                    assert self.cache is not None and request.source_key is not None
                    saved = self.cache.append(
                        request.source_key,
                        code=last_code,
                        detected_format=action.detected_format,
                        date_format=action.date_format,
                        confidence=action.confidence,
                    )
                    version = saved.version
                _logger.info(
                    "agent:accepted step=%d items=%d validation=%s version=%s",
                    step,
                    run.item_count,
                    "skipped" if result.skipped else "passed",
                    version,
                )
                return AgentOutcome(
                    transactions=run.transactions,
                    holdings=run.holdings,
                    validation=result,
                    totals=totals,
                    code=last_code,
                    version=version,
                    from_cache=False,
                    steps=step,
                    transitions=tuple(transitions),
                )

            else:  # GIVE_UP
                _logger.warning("agent:exhausted steps=%d", step)
                raise GenerationExhaustedError(last_error, step)


__all__ = [
    "AgentAction",
    "AgentOutcome",
    "AgentRequest",
    "AgentState",
    "CodeGenerationAgent",
    "totals_for",
]
