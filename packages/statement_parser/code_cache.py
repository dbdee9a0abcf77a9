# ruff: noqa: I001
"""Persistent, versioned cache of generated parser code.

Each source key (institution plus coarse document shape, see
:func:`generate_source_key`) owns an ordered list of code versions stored in
``sp_parser_code_versions``. Versions are appended and never edited except for
their success/failure counters. A per-key high-water mark in
``sp_parser_sources`` guarantees that version numbers are strictly increasing
and never reused, even after :meth:`CodeCache.clear`.

Writers are expected to be serialized (the work queue runs one statement at a
time); the row lock taken in :meth:`CodeCache.append` only matters on
databases that honor ``SELECT ... FOR UPDATE``.
"""

from __future__ import annotations

import re

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session

from db.client import session_scope
from db.models.statements import SpParserCodeVersion, SpParserSource
from .logging_setup import get_logger
from .models import GeneratedCodeVersion, SourceSummary

_KEY_NORMALIZE_RE = re.compile(r"[^a-z0-9]+")

_logger = get_logger("statement_parser.code_cache")


def _normalize_part(value: str) -> str:
    return _KEY_NORMALIZE_RE.sub("_", value.strip().lower()).strip("_")


def generate_source_key(institution: str, document_shape: str | None = None) -> str:
    """Return a stable cache key such as ``"hdfc_bank_bank_statement"``.

    Raises ``ValueError`` when the institution normalizes to nothing.
    """

    inst = _normalize_part(institution or "")
    if not inst:
        raise ValueError("institution must contain at least one letter or digit")
    shape = _normalize_part(document_shape or "")
    return f"{inst}_{shape}" if shape else inst


def _to_version(row: SpParserCodeVersion) -> GeneratedCodeVersion:
    return GeneratedCodeVersion(
        source_key=row.source_key,
        version=row.version,
        code=row.code,
        detected_format=row.detected_format,
        date_format=row.date_format,
        confidence=row.confidence,
        success_count=row.success_count,
        fail_count=row.fail_count,
        created_at=row.created_at,
    )


class CodeCache:
    """Database-backed store of :class:`GeneratedCodeVersion` rows."""

    def __init__(self, *, database_url: str | None = None) -> None:
        self._database_url = database_url

    def _scope(self):
        return session_scope(database_url=self._database_url)

    def list_versions(self, source_key: str) -> list[GeneratedCodeVersion]:
        """Return every version for ``source_key``, newest first."""

        with self._scope() as session:
            rows = session.scalars(
                select(SpParserCodeVersion)
                .where(SpParserCodeVersion.source_key == source_key)
                .order_by(SpParserCodeVersion.version.desc())
            ).all()
            return [_to_version(r) for r in rows]

    def append(
        self,
        source_key: str,
        *,
        code: str,
        detected_format: str | None = None,
        date_format: str | None = None,
        confidence: float | None = None,
    ) -> GeneratedCodeVersion:
        """Store ``code`` as the next version for ``source_key`` and return it."""

        if not code.strip():
            raise ValueError("refusing to cache empty parser code")
        with self._scope() as session:
            next_version = self._claim_next_version(session, source_key)
            row = SpParserCodeVersion(
                source_key=source_key,
                version=next_version,
                code=code,
                detected_format=detected_format,
                date_format=date_format,
                confidence=confidence,
                success_count=0,
                fail_count=0,
            )
            session.add(row)
            session.flush()
            session.refresh(row)
            _logger.info(
                "code_cache:append source_key=%s version=%d code_chars=%d",
                source_key,
                next_version,
                len(code),
            )
            return _to_version(row)

    @staticmethod
    def _claim_next_version(session: Session, source_key: str) -> int:
        source = session.scalars(
            select(SpParserSource)
            .where(SpParserSource.source_key == source_key)
            .with_for_update()
        ).one_or_none()
        if source is None:
            source = SpParserSource(source_key=source_key, last_version=0)
            session.add(source)
            session.flush()
        # Rows written before the high-water mark existed still count.
        existing_max = session.scalar(
            select(func.max(SpParserCodeVersion.version)).where(
                SpParserCodeVersion.source_key == source_key
            )
        )
        next_version = max(source.last_version, existing_max or 0) + 1
        source.last_version = next_version
        return next_version

    def record_outcome(self, source_key: str, version: int, *, success: bool) -> bool:
        """Increment the success or failure counter; return False when the version is gone."""

        column = SpParserCodeVersion.success_count if success else SpParserCodeVersion.fail_count
        with self._scope() as session:
            result = session.execute(
                update(SpParserCodeVersion)
                .where(
                    SpParserCodeVersion.source_key == source_key,
                    SpParserCodeVersion.version == version,
                )
                .values({column.key: column + 1, "last_used_at": func.now()})
            )
            updated = (result.rowcount or 0) > 0
        if not updated:
            _logger.warning(
                "code_cache:record_outcome_missing source_key=%s version=%d", source_key, version
            )
        return updated

    def clear(self, source_key: str) -> int:
        """Delete every version for ``source_key``; the version counter is kept."""

        with self._scope() as session:
            result = session.execute(
                delete(SpParserCodeVersion).where(SpParserCodeVersion.source_key == source_key)
            )
            removed = result.rowcount or 0
        _logger.info("code_cache:clear source_key=%s removed=%d", source_key, removed)
        return removed

    def list_sources(self) -> list[SourceSummary]:
        """Return one summary per source key that currently has cached versions."""

        with self._scope() as session:
            rows = session.execute(
                select(
                    SpParserCodeVersion.source_key,
                    func.count(SpParserCodeVersion.id),
                    func.max(SpParserCodeVersion.version),
                )
                .group_by(SpParserCodeVersion.source_key)
                .order_by(SpParserCodeVersion.source_key)
            ).all()
        return [
            SourceSummary(source_key=key, version_count=int(count), latest_version=latest)
            for key, count, latest in rows
        ]


__all__ = ["CodeCache", "generate_source_key"]
