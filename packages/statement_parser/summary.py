"""Document text assembly and the statement info model call.

The info call is the independent source of truth for validation: a cheaper
model reads the statement once and reports its type, institution, period and
printed totals. It is retried a few times with growing pauses; if it never
succeeds the caller gets default info with ``summary=None``, which turns
validation off for that statement rather than blocking the parse.
"""

from __future__ import annotations

import re
import time
from collections.abc import Callable, Sequence

from . import prompting
from .extraction import parse_date
from .llm import LanguageModel
from .logging_setup import get_logger
from .models import RawTransaction, StatementInfo

_MAX_ATTEMPTS: int = 3
_BACKOFF_SCHEDULE_SEC: tuple[float, ...] = (1.0, 2.0, 4.0)

# Long documents are cut to their first and last pages for the info call.
_MAX_FULL_PAGES: int = 15
_HEAD_PAGES: int = 7
_TAIL_PAGES: int = 7

_DATE_TOKEN = (
    r"(\d{1,2}[/.-]\d{1,2}[/.-]\d{2,4}"
    r"|\d{1,2}[ -][A-Za-z]{3,9}[ -]\d{2,4}"
    r"|[A-Za-z]{3,9} \d{1,2},? \d{4}"
    r"|\d{4}-\d{2}-\d{2})"
)
_PERIOD_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(_DATE_TOKEN + r"\s*(?:-|–|to)\s*" + _DATE_TOKEN, re.IGNORECASE),
    re.compile(r"from\s+" + _DATE_TOKEN + r"\s+to\s+" + _DATE_TOKEN, re.IGNORECASE),
)

_logger = get_logger("statement_parser.summary")


# ---- Page assembly ----------------------------------------------------------------


def _page_block(number: int, text: str) -> str:
    return f"--- PAGE {number} ---\n{text}"


def combine_pages(pages: Sequence[str]) -> str:
    """Join pages in document order with 1-based ``--- PAGE n ---`` markers."""

    return "\n\n".join(_page_block(i, p) for i, p in enumerate(pages, start=1))


def combine_pages_for_llm(pages: Sequence[str]) -> str:
    """Like :func:`combine_pages` but keeps only the first and last pages of long documents."""

    if len(pages) <= _MAX_FULL_PAGES:
        return combine_pages(pages)
    head = [_page_block(i, pages[i - 1]) for i in range(1, _HEAD_PAGES + 1)]
    omitted = len(pages) - _HEAD_PAGES - _TAIL_PAGES
    tail_start = len(pages) - _TAIL_PAGES + 1
    tail = [_page_block(i, pages[i - 1]) for i in range(tail_start, len(pages) + 1)]
    marker = f"[... {omitted} pages omitted ...]"
    return "\n\n".join([*head, marker, *tail])


# ---- Period detection --------------------------------------------------------------


def extract_period_dates(text: str) -> tuple[str | None, str | None]:
    """Find a ``start - end`` or ``from start to end`` period in ``text``."""

    for pattern in _PERIOD_PATTERNS:
        for m in pattern.finditer(text):
            start, end = parse_date(m.group(1)), parse_date(m.group(2))
            if start and end and start <= end:
                return start, end
    return None, None


def period_from_transactions(
    transactions: Sequence[RawTransaction],
) -> tuple[str | None, str | None]:
    if not transactions:
        return None, None
    dates = sorted(t.date for t in transactions)
    return dates[0], dates[-1]


# ---- Info extraction ---------------------------------------------------------------


class StatementInfoExtractor:
    def __init__(
        self,
        llm: LanguageModel,
        *,
        max_attempts: int = _MAX_ATTEMPTS,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.llm = llm
        self.max_attempts = max_attempts
        self._sleep = sleep

    def extract(self, pages: Sequence[str]) -> StatementInfo:
        """Return statement info; ``summary`` is ``None`` when every attempt failed."""

        content = prompting.build_info_content(combine_pages_for_llm(pages))
        for attempt in range(1, self.max_attempts + 1):
            try:
                info = self.llm.generate_structured(
                    instructions=prompting.build_info_instructions(),
                    content=content,
                    response_format=prompting.build_info_response_format(),
                    model_cls=StatementInfo,
                )
            except Exception as e:  # noqa: BLE001 - retried, then degraded
                _logger.warning(
                    "summary:attempt_failed attempt=%d error=%s", attempt, e.__class__.__name__
                )
                if attempt < self.max_attempts:
                    idx = min(attempt - 1, len(_BACKOFF_SCHEDULE_SEC) - 1)
                    self._sleep(_BACKOFF_SCHEDULE_SEC[idx])
                continue
            if info.summary is not None and info.summary.is_empty():
                info = info.model_copy(update={"summary": None})
            _logger.info(
                "summary:done document_type=%s institution=%s has_summary=%s",
                info.document_type,
                info.institution,
                info.summary is not None,
            )
            return info

        _logger.error("summary:unavailable attempts=%d validation=skipped", self.max_attempts)
        return StatementInfo()


__all__ = [
    "StatementInfoExtractor",
    "combine_pages",
    "combine_pages_for_llm",
    "extract_period_dates",
    "period_from_transactions",
]
