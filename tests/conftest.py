"""Pytest configuration for test isolation.

- Puts the workspace packages (``packages/``, ``libs/db/src``) and the repo
  root on ``sys.path`` so ``statement_parser``, ``db`` and ``tests.helpers``
  import without an install.
- Clears ``STATEMENT_PARSER_*`` variables so settings start from defaults.
- ``database_url`` gives each test its own file-backed SQLite database and
  points ``DATABASE_URL`` at it.
"""

from __future__ import annotations

import os
import sys
from collections.abc import Iterator
from pathlib import Path

import pytest

_ROOT = Path(__file__).resolve().parents[1]
sys.path[:0] = [
    p
    for p in (str(_ROOT / "packages"), str(_ROOT / "libs" / "db" / "src"), str(_ROOT))
    if p not in sys.path
]

from db.client import dispose_engines  # noqa: E402
from tests.helpers.db import bootstrap_sqlite_db  # noqa: E402


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for key in list(os.environ):
        if key.startswith("STATEMENT_PARSER_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test-not-used")


@pytest.fixture
def database_url(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[str]:
    url = bootstrap_sqlite_db(tmp_path / "statements.db")
    monkeypatch.setenv("DATABASE_URL", url)
    yield url
    dispose_engines()
