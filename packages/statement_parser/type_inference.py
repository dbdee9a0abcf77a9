"""Column type inference and summary statistics for tabular statements.

Public API:
    - :func:`infer_column`
    - :func:`extract_metadata`
    - :func:`detect_date_format`
    - :func:`is_numeric`

A column is classified from a bounded sample of its unique non-null values:
``date`` when at least 90% of the sample matches one of the known date
patterns, ``number`` when at least 90% passes the numeric cleaner, otherwise
``string``. The threshold keeps a few malformed or summary rows from flipping
a column's type.
"""

from __future__ import annotations

import random
import re
from collections import Counter
from collections.abc import Sequence
from datetime import date, datetime
from typing import Any

from .logging_setup import get_logger
from .models import Column, ColumnStats, DataType, SheetData, SheetMetadata

# ---- Tunables (private) ------------------------------------------------------

_SAMPLE_SIZE: int = 100
_STRING_SAMPLE_SIZE: int = 5
_TYPE_THRESHOLD: float = 0.9

_logger = get_logger("statement_parser.type_inference")

# Ordered; the first pattern whose regex matches and whose strptime candidates
# parse wins. Slash dates are tried month-first and reported as DD/MM/YYYY
# only when month-first cannot parse.
_DATE_PATTERNS: tuple[tuple[re.Pattern[str], tuple[tuple[str, str], ...]], ...] = (
    (re.compile(r"^\d{4}-\d{2}-\d{2}$"), (("YYYY-MM-DD", "%Y-%m-%d"),)),
    (
        re.compile(r"^\d{1,2}/\d{1,2}/\d{4}$"),
        (("MM/DD/YYYY", "%m/%d/%Y"), ("DD/MM/YYYY", "%d/%m/%Y")),
    ),
    (
        re.compile(r"^\d{1,2}/\d{1,2}/\d{2}$"),
        (("MM/DD/YY", "%m/%d/%y"), ("DD/MM/YY", "%d/%m/%y")),
    ),
    (re.compile(r"^\d{1,2}\.\d{1,2}\.\d{4}$"), (("DD.MM.YYYY", "%d.%m.%Y"),)),
    (re.compile(r"^\d{1,2}-\d{1,2}-\d{4}$"), (("DD-MM-YYYY", "%d-%m-%Y"),)),
    (re.compile(r"^\d{1,2}\s[A-Za-z]{3}\s\d{4}$"), (("DD MMM YYYY", "%d %b %Y"),)),
    (re.compile(r"^\d{1,2}\s[A-Za-z]{3}\s\d{2}$"), (("DD MMM YY", "%d %b %y"),)),
    (
        re.compile(r"^[A-Za-z]{3}\s\d{1,2},?\s\d{4}$"),
        (("MMM DD, YYYY", "%b %d, %Y"), ("MMM DD, YYYY", "%b %d %Y")),
    ),
    (re.compile(r"^\d{1,2}-[A-Za-z]{3}-\d{4}$"), (("DD-MMM-YYYY", "%d-%b-%Y"),)),
    (re.compile(r"^\d{1,2}-[A-Za-z]{3}-\d{2}$"), (("DD-MMM-YY", "%d-%b-%y"),)),
)

_TIME_ONLY_RE = re.compile(r"^\d{1,2}:\d{2}(?::\d{2})?\s?(?:[AP]M)?$", re.IGNORECASE)
_NUMERIC_STRIP_RE = re.compile(r"[,$₹€£\s()]")
_NUMERIC_RE = re.compile(r"^\d+(\.\d+)?$")


# ---- Value classification ------------------------------------------------------


def _is_null(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value.strip() == "")


def _parse_date(value: Any) -> tuple[date, str] | None:
    """Return ``(date, format_label)`` when ``value`` looks like a calendar date."""

    if isinstance(value, datetime):
        return value.date(), "ISO"
    if isinstance(value, date):
        return value, "ISO"
    if not isinstance(value, str):
        return None
    s = value.strip()
    if not s or _TIME_ONLY_RE.match(s):
        return None
    for pattern, candidates in _DATE_PATTERNS:
        if not pattern.match(s):
            continue
        for label, fmt in candidates:
            try:
                return datetime.strptime(s, fmt).date(), label
            except ValueError:
                continue
    return None


def detect_date_format(value: Any) -> str | None:
    """Return the format label of ``value`` (e.g. ``"DD-MM-YYYY"``) or ``None``."""

    parsed = _parse_date(value)
    return parsed[1] if parsed else None


def _to_number(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value) if value == value else None  # NaN check
    if not isinstance(value, str):
        return None
    s = value.strip()
    if not s:
        return None
    negative = s.startswith("-") or (s.startswith("(") and s.endswith(")"))
    cleaned = _NUMERIC_STRIP_RE.sub("", s)
    if cleaned.startswith("-"):
        cleaned = cleaned[1:]
    if not _NUMERIC_RE.match(cleaned):
        return None
    num = float(cleaned)
    return -num if negative else num


def is_numeric(value: Any) -> bool:
    """True when ``value`` is a number or a number wrapped in currency/grouping noise."""

    return _to_number(value) is not None


# ---- Sampling ------------------------------------------------------------------


def _reservoir_sample(items: Sequence[Any], k: int, rng: random.Random) -> list[Any]:
    reservoir = list(items[:k])
    for i in range(k, len(items)):
        j = rng.randint(0, i)
        if j < k:
            reservoir[j] = items[i]
    return reservoir


def _unique(values: Sequence[Any]) -> list[Any]:
    # Order-preserving; unhashable cells fall back to their repr.
    seen: dict[Any, Any] = {}
    for v in values:
        key = v if isinstance(v, (str, int, float, date)) else repr(v)
        seen.setdefault(key, v)
    return list(seen.values())


def _sample(values: Sequence[Any], k: int, rng: random.Random) -> list[Any]:
    unique = _unique(values)
    if len(unique) <= k:
        return unique
    return _reservoir_sample(unique, k, rng)


# ---- Column analysis -----------------------------------------------------------


def _detect_type(sample: Sequence[Any]) -> DataType:
    if not sample:
        return "string"
    date_hits = 0
    number_hits = 0
    for value in sample:
        if _parse_date(value) is not None:
            date_hits += 1
        elif is_numeric(value):
            number_hits += 1
    if date_hits / len(sample) >= _TYPE_THRESHOLD:
        return "date"
    if number_hits / len(sample) >= _TYPE_THRESHOLD:
        return "number"
    return "string"


def infer_column(
    values: Sequence[Any], *, rng: random.Random | None = None
) -> tuple[DataType, ColumnStats]:
    """Classify one column and compute its statistics.

    ``values`` are the raw cells below the header row. Empty strings count as
    nulls. Statistics cover non-null values only; ``count`` always equals
    ``null_count`` plus the number of non-null values. The type and the
    dominant date format come from the same sample of up to 100 distinct
    values; the date range covers every value.
    """

    rng = rng or random.Random()
    non_null = [v for v in values if not _is_null(v)]
    null_count = len(values) - len(non_null)
    unique_count = len(_unique(non_null))
    sample = _sample(non_null, _SAMPLE_SIZE, rng)
    data_type = _detect_type(sample)

    if data_type == "number":
        numbers = [n for n in (_to_number(v) for v in non_null) if n is not None]
        stats = ColumnStats(
            count=len(values),
            null_count=null_count,
            unique_count=unique_count,
            minimum=min(numbers) if numbers else None,
            maximum=max(numbers) if numbers else None,
        )
    elif data_type == "date":
        dates: list[date] = []
        formats: Counter[str] = Counter()
        for v in non_null:
            parsed = _parse_date(v)
            if parsed is not None:
                dates.append(parsed[0])
        for v in sample:
            parsed = _parse_date(v)
            if parsed is not None:
                formats[parsed[1]] += 1
        # most_common keeps first-encountered order among equal counts
        dominant = formats.most_common(1)[0][0] if formats else None
        stats = ColumnStats(
            count=len(values),
            null_count=null_count,
            unique_count=unique_count,
            minimum=min(dates).isoformat() if dates else None,
            maximum=max(dates).isoformat() if dates else None,
            dominant_format=dominant,
        )
    else:
        strings = [str(v).strip() for v in non_null if str(v).strip()]
        stats = ColumnStats(
            count=len(values),
            null_count=null_count,
            unique_count=unique_count,
            sample_values=tuple(str(s) for s in _sample(strings, _STRING_SAMPLE_SIZE, rng)),
        )
    return data_type, stats


def extract_metadata(
    sheet: SheetData, *, file_type: str = "csv", rng: random.Random | None = None
) -> SheetMetadata:
    """Build :class:`SheetMetadata` for every column of ``sheet``.

    Blank header cells are named ``"Column <n>"`` (1-based) and counted in
    ``empty_column_name_count``.
    """

    rng = rng or random.Random()
    width = max([len(sheet.headers), *(len(r) for r in sheet.rows)], default=0)
    columns: list[Column] = []
    empty_names = 0
    for idx in range(width):
        name = sheet.headers[idx].strip() if idx < len(sheet.headers) else ""
        if not name:
            name = f"Column {idx + 1}"
            empty_names += 1
        cells = [row[idx] if idx < len(row) else None for row in sheet.rows]
        data_type, stats = infer_column(cells, rng=rng)
        columns.append(Column(name=name, index=idx, data_type=data_type, stats=stats))

    _logger.debug(
        "extract_metadata:done columns=%d rows=%d empty_names=%d",
        len(columns),
        sheet.total_rows,
        empty_names,
    )
    return SheetMetadata(
        columns=tuple(columns),
        row_count=sheet.total_rows,
        empty_column_name_count=empty_names,
        file_type=file_type,
    )


__all__ = ["infer_column", "extract_metadata", "detect_date_format", "is_numeric"]
