# ruff: noqa: I001
"""Top-level parse procedures.

:class:`ParseOrchestrator` sequences one statement end to end::

    pending -> parsing -> extract pages -> statement info -> cached/generated code
            -> categorize -> persist -> completed
                                     \\-> (any failure) rollback -> failed

Spreadsheets skip the generated-code path: column metadata goes to the config
generator and the deterministic extractor does the rest.

Failures never escape :meth:`ParseOrchestrator.parse_statement`; they are
recorded on the statement (status ``failed`` plus message) and returned in
the :class:`~statement_parser.models.ParseResult`. A failed statement owns no
transactions or holdings.

Background parsing goes through one :class:`~statement_parser.work_queue.StatementQueue`
per orchestrator: :meth:`ParseOrchestrator.submit` queues a statement, the
consumer parses one at a time, and each finished job pulls in statements that
are still ``pending`` in the database.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable
from datetime import date, datetime, timezone
from pathlib import Path

from sqlalchemy import select

from db.client import session_scope
from db.models.statements import SpStatement
from .agent import AgentRequest, CodeGenerationAgent
from .categories import categories_for_country
from .categorizer import BatchCategorizer
from .code_cache import CodeCache, generate_source_key
from .config import ParserSettings
from .config_generator import generate_parser_config
from .errors import InputError, PasswordRequiredError, StatementNotFoundError
from .extraction import extract_transactions, parse_date
from .extractors import DefaultExtractor, TextExtractor
from .llm import LanguageModel, OpenAIModel
from .logging_setup import get_logger
from .models import (
    CategorizedTransaction,
    Holding,
    ParseResult,
    RawTransaction,
    SourceSummary,
    SpreadsheetResult,
    StatementInfo,
)
from .parser_runner import VALID_CURRENCIES
from .persistence import delete_statement_records, insert_holdings, insert_transactions
from .sandbox import DEFAULT_CAPABILITIES, SandboxExecutor
from .summary import (
    StatementInfoExtractor,
    combine_pages,
    extract_period_dates,
    period_from_transactions,
)
from .type_inference import extract_metadata
from .work_queue import JobOutcome, QueueClosedError, StatementQueue

_UNKNOWN_INSTITUTIONS: frozenset[str] = frozenset({"", "unknown", "n/a", "none"})
_MAX_ERROR_CHARS: int = 2000

_logger = get_logger("statement_parser.orchestrator")


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _iso_to_date(value: str | None) -> date | None:
    iso = parse_date(value) if value else None
    return date.fromisoformat(iso) if iso else None


def _resolve_period(
    info: StatementInfo, text: str, transactions: Iterable[RawTransaction]
) -> tuple[date | None, date | None]:
    start, end = _iso_to_date(info.period_start), _iso_to_date(info.period_end)
    if start is not None and end is not None:
        return start, end
    found = extract_period_dates(text)
    if found[0] is None:
        found = period_from_transactions(list(transactions))
    return (start or _iso_to_date(found[0]), end or _iso_to_date(found[1]))


def _source_key_for(institution: str | None, document_type: str) -> str | None:
    if institution is None or institution.strip().lower() in _UNKNOWN_INSTITUTIONS:
        return None
    try:
        return generate_source_key(institution, document_type)
    except ValueError:
        return None


class ParseOrchestrator:
    """Parse statements and spreadsheets into persisted records.

    Every collaborator can be injected; defaults are built from ``settings``
    (which default to :meth:`ParserSettings.from_env`).
    """

    def __init__(
        self,
        *,
        settings: ParserSettings | None = None,
        database_url: str | None = None,
        extractor: TextExtractor | None = None,
        llm: LanguageModel | None = None,
        summary_llm: LanguageModel | None = None,
        executor: SandboxExecutor | None = None,
        cache: CodeCache | None = None,
        info_extractor: StatementInfoExtractor | None = None,
    ) -> None:
        self.settings = settings or ParserSettings.from_env()
        self.database_url = database_url
        self.extractor: TextExtractor = extractor or DefaultExtractor()
        self.llm: LanguageModel = llm or OpenAIModel(self.settings.model)
        self.summary_llm: LanguageModel = summary_llm or OpenAIModel(self.settings.summary_model)
        self.executor = executor or SandboxExecutor(
            DEFAULT_CAPABILITIES.with_timeout(self.settings.sandbox_timeout_sec)
        )
        self.cache = cache or CodeCache(database_url=database_url)
        self.info_extractor = info_extractor or StatementInfoExtractor(self.summary_llm)
        self.agent = CodeGenerationAgent(
            self.llm,
            executor=self.executor,
            cache=self.cache,
            max_steps=self.settings.max_steps,
            tolerance=self.settings.tolerance,
        )
        self.categorizer = BatchCategorizer(
            self.summary_llm,
            categories_for_country(self.settings.country),
            batch_size=self.settings.batch_size,
        )
        self.queue = StatementQueue(
            self.parse_statement, on_done=self._after_job, name="statement-parser"
        )

    def _scope(self):
        return session_scope(database_url=self.database_url)

    # ---- Statement rows -------------------------------------------------------------

    def create_statement(
        self,
        file_name: str,
        *,
        file_path: str | Path | None = None,
        source_hint: str | None = None,
        statement_id: str | None = None,
    ) -> str:
        """Register a statement in ``pending`` state and return its id."""

        sid = statement_id or str(uuid.uuid4())
        with self._scope() as session:
            session.add(
                SpStatement(
                    id=sid,
                    file_name=file_name,
                    file_path=str(file_path) if file_path is not None else None,
                    source_hint=source_hint,
                    status="pending",
                )
            )
        _logger.info("orchestrator:statement_created statement_id=%s file=%s", sid, file_name)
        return sid

    def _begin(self, statement_id: str, source_hint: str | None) -> tuple[str | None, str | None]:
        with self._scope() as session:
            stmt = session.get(SpStatement, statement_id)
            if stmt is None:
                raise StatementNotFoundError(statement_id)
            if source_hint is not None:
                stmt.source_hint = source_hint
            stmt.status = "parsing"
            stmt.error_message = None
            stmt.parse_started_at = _now()
            stmt.parse_completed_at = None
            return stmt.file_path, stmt.source_hint

    def _fail(self, statement_id: str, message: str) -> None:
        with self._scope() as session:
            removed_tx, removed_holdings = delete_statement_records(session, statement_id)
            stmt = session.get(SpStatement, statement_id)
            if stmt is not None:
                stmt.status = "failed"
                stmt.error_message = message[:_MAX_ERROR_CHARS]
                stmt.transaction_count = 0
                stmt.holdings_count = 0
                stmt.parse_completed_at = _now()
        _logger.warning(
            "orchestrator:failed statement_id=%s rolled_back_tx=%d rolled_back_holdings=%d "
            "error=%s",
            statement_id,
            removed_tx,
            removed_holdings,
            message.splitlines()[0] if message else "",
        )

    def _categorize(
        self, transactions: list[RawTransaction]
    ) -> dict[str, CategorizedTransaction]:
        if not transactions:
            return {}
        return {c.id: c for c in self.categorizer.categorize(transactions)}

    # ---- Documents ------------------------------------------------------------------

    def parse_statement(
        self,
        statement_id: str,
        source_hint: str | None = None,
        *,
        password: str | None = None,
    ) -> ParseResult:
        """Parse one stored statement; raises only ``StatementNotFoundError``."""

        file_path, hint = self._begin(statement_id, source_hint)
        _logger.info("orchestrator:parse_start statement_id=%s source_hint=%s", statement_id, hint)
        try:
            if not file_path:
                raise InputError("statement has no file to parse")
            pages = self.extractor.extract_pages(file_path, password)
            if not pages:
                raise InputError("no text could be extracted from the document")
            text = combine_pages(pages)

            info = self.info_extractor.extract(pages)
            institution = hint or info.institution
            holdings_mode = info.document_type == "investment_statement"
            source_key = _source_key_for(institution, info.document_type)

            outcome = self.agent.run(
                AgentRequest(
                    text=text,
                    source_key=source_key,
                    holdings=holdings_mode,
                    institution=institution,
                    summary=info.summary,
                )
            )
            transactions = list(outcome.transactions)
            holdings: list[Holding] = list(outcome.holdings)
            period_start, period_end = _resolve_period(info, text, transactions)
            currency = (info.currency or "").strip().upper()
            if currency not in VALID_CURRENCIES:
                currency = self.settings.currency

            categorized = self._categorize(transactions)

            with self._scope() as session:
                inserted = insert_transactions(
                    session,
                    statement_id=statement_id,
                    transactions=transactions,
                    categorized=categorized,
                    currency_code=currency,
                )
                holdings_count = insert_holdings(
                    session, statement_id=statement_id, holdings=holdings, currency_code=currency
                )
                stmt = session.get(SpStatement, statement_id)
                assert stmt is not None
                stmt.status = "completed"
                stmt.document_type = info.document_type
                stmt.institution = institution
                stmt.source_key = source_key
                stmt.currency_code = currency
                stmt.period_start = period_start
                stmt.period_end = period_end
                stmt.summary = info.summary.model_dump() if info.summary is not None else None
                stmt.transaction_count = len(transactions)
                stmt.holdings_count = holdings_count
                stmt.parse_completed_at = _now()
        except PasswordRequiredError as e:
            message = f"Password required: {e}"
            self._fail(statement_id, message)
            return ParseResult(statement_id=statement_id, status="failed", error=message)
        except Exception as e:  # noqa: BLE001 - recorded on the statement
            message = str(e) or e.__class__.__name__
            self._fail(statement_id, message)
            return ParseResult(statement_id=statement_id, status="failed", error=message)

        _logger.info(
            "orchestrator:parse_done statement_id=%s source_key=%s from_cache=%s version=%s "
            "transactions=%d inserted=%d holdings=%d",
            statement_id,
            source_key,
            outcome.from_cache,
            outcome.version,
            len(transactions),
            inserted,
            holdings_count,
        )
        return ParseResult(
            statement_id=statement_id,
            status="completed",
            transaction_count=len(transactions),
            holdings_count=holdings_count,
            period_start=period_start.isoformat() if period_start else None,
            period_end=period_end.isoformat() if period_end else None,
            source_key=source_key,
        )

    def parse_statements(self, statement_ids: Iterable[str]) -> list[ParseResult]:
        """Parse statements one after another; a failure does not stop the batch."""

        results: list[ParseResult] = []
        for sid in statement_ids:
            try:
                results.append(self.parse_statement(sid))
            except StatementNotFoundError as e:
                _logger.error("orchestrator:batch_missing statement_id=%s", sid)
                results.append(ParseResult(statement_id=sid, status="failed", error=str(e)))
        return results

    # ---- Work queue -----------------------------------------------------------------

    def _enqueue_pending(self, *, skip: str | None = None) -> int:
        queued = 0
        for sid in self.pending_statement_ids():
            if sid != skip and self.queue.enqueue(sid):
                queued += 1
        return queued

    def _after_job(self, outcome: JobOutcome) -> None:
        try:
            queued = self._enqueue_pending(skip=outcome.statement_id)
        except QueueClosedError:
            return
        if queued:
            _logger.info(
                "orchestrator:queued_next after=%s queued=%d", outcome.statement_id, queued
            )

    def submit(self, statement_id: str) -> bool:
        """Queue a statement for the consumer; False when it is already waiting."""

        return self.queue.enqueue(statement_id)

    def start_worker(self) -> None:
        """Start the background consumer and queue every ``pending`` statement."""

        self._enqueue_pending()
        self.queue.start()

    def stop_worker(self, *, wait: bool = True, timeout: float | None = None) -> list[str]:
        return self.queue.shutdown(wait=wait, timeout=timeout)

    def process_pending(self) -> list[ParseResult]:
        """Parse every ``pending`` statement on the calling thread, oldest first.

        Runs through the same queue as the background consumer, so statements
        that become pending while the run is in progress are picked up too.
        """

        self._enqueue_pending()
        results: list[ParseResult] = []
        for outcome in self.queue.run_pending():
            if outcome.ok:
                results.append(outcome.result)
            else:
                results.append(
                    ParseResult(
                        statement_id=outcome.statement_id,
                        status="failed",
                        error=str(outcome.error) or outcome.error.__class__.__name__,
                    )
                )
        return results

    # ---- Spreadsheets ---------------------------------------------------------------

    def parse_spreadsheet(
        self, data: bytes, file_name: str, *, statement_id: str | None = None
    ) -> SpreadsheetResult:
        """Parse an uploaded spreadsheet; failures are recorded and re-raised."""

        sheet = self.extractor.extract_sheet(data, file_name)
        sid = statement_id or self.create_statement(file_name)
        self._begin(sid, None)
        try:
            suffix = Path(file_name).suffix.lower().lstrip(".") or "csv"
            metadata = extract_metadata(sheet, file_type=suffix)
            config = generate_parser_config(
                self.llm,
                file_name=file_name,
                metadata=metadata,
                headers=sheet.headers,
                rows=sheet.rows,
            )
            extraction = extract_transactions(sheet, config)
            transactions = extraction.transactions
            categorized = self._categorize(transactions)
            period_start, period_end = period_from_transactions(transactions)

            with self._scope() as session:
                inserted = insert_transactions(
                    session,
                    statement_id=sid,
                    transactions=transactions,
                    categorized=categorized,
                    currency_code=self.settings.currency,
                )
                stmt = session.get(SpStatement, sid)
                assert stmt is not None
                stmt.status = "completed"
                stmt.currency_code = self.settings.currency
                stmt.period_start = _iso_to_date(period_start)
                stmt.period_end = _iso_to_date(period_end)
                stmt.transaction_count = len(transactions)
                stmt.parse_completed_at = _now()
        except Exception as e:
            self._fail(sid, str(e) or e.__class__.__name__)
            raise

        _logger.info(
            "orchestrator:spreadsheet_done statement_id=%s transactions=%d inserted=%d skipped=%d",
            sid,
            len(transactions),
            inserted,
            extraction.skipped_rows,
        )
        return SpreadsheetResult(
            statement_id=sid,
            transaction_count=len(transactions),
            skipped_rows=extraction.skipped_rows,
            config=config,
        )

    # ---- Administration -------------------------------------------------------------

    def list_cached_sources(self) -> list[SourceSummary]:
        return self.cache.list_sources()

    def clear_cache(self, source_key: str) -> int:
        return self.cache.clear(source_key)

    def pending_statement_ids(self) -> list[str]:
        with self._scope() as session:
            rows = session.scalars(
                select(SpStatement.id)
                .where(SpStatement.status == "pending")
                .order_by(SpStatement.created_at, SpStatement.id)
            ).all()
        return list(rows)


__all__ = ["ParseOrchestrator"]
