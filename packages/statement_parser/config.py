"""Runtime settings for the parsing engine.

Values come from the environment (optionally seeded from ``.env`` by the CLI).
Each knob has a default that matches production behavior; overriding a knob
with an unparseable or out-of-range value raises ``ValueError`` at
construction rather than at first use.

Environment variables
---------------------
- ``STATEMENT_PARSER_MODEL``: model used for code generation and config
  generation (default ``gpt-5``).
- ``STATEMENT_PARSER_SUMMARY_MODEL``: cheaper model used for statement info and
  categorization (default ``gpt-5-mini``).
- ``STATEMENT_PARSER_MAX_STEPS``: agent step budget (default ``8``).
- ``STATEMENT_PARSER_SANDBOX_TIMEOUT``: seconds per sandbox run (default ``5``).
- ``STATEMENT_PARSER_TOLERANCE``: absolute validation tolerance (default ``100``).
- ``STATEMENT_PARSER_BATCH_SIZE``: categorization batch size (default ``50``).
- ``STATEMENT_PARSER_CURRENCY``: currency stored on transactions (default ``USD``).
- ``STATEMENT_PARSER_COUNTRY``: category set to use, ``US`` or ``IN`` (default ``US``).
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass

_DEFAULT_MODEL: str = "gpt-5"
_DEFAULT_SUMMARY_MODEL: str = "gpt-5-mini"


@dataclass(frozen=True, slots=True)
class ParserSettings:
    model: str = _DEFAULT_MODEL
    summary_model: str = _DEFAULT_SUMMARY_MODEL
    max_steps: int = 8
    sandbox_timeout_sec: float = 5.0
    tolerance: float = 100.0
    batch_size: int = 50
    currency: str = "USD"
    country: str = "US"

    def __post_init__(self) -> None:
        if not self.model.strip() or not self.summary_model.strip():
            raise ValueError("ParserSettings: model names must be non-empty")
        for name in ("max_steps", "batch_size"):
            val = getattr(self, name)
            if isinstance(val, bool) or not isinstance(val, int) or val <= 0:
                raise ValueError(f"ParserSettings.{name} must be a positive integer")
        if self.sandbox_timeout_sec <= 0:
            raise ValueError("ParserSettings.sandbox_timeout_sec must be positive")
        if self.tolerance < 0:
            raise ValueError("ParserSettings.tolerance must be non-negative")
        if len(self.currency) != 3:
            raise ValueError("ParserSettings.currency must be a 3-letter code")
        if self.country not in ("US", "IN"):
            raise ValueError("ParserSettings.country must be 'US' or 'IN'")

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> ParserSettings:
        """Build settings from ``env`` (defaults to ``os.environ``)."""

        source = os.environ if env is None else env

        def _get(key: str) -> str | None:
            raw = source.get(key)
            if raw is None or not raw.strip():
                return None
            return raw.strip()

        kwargs: dict[str, object] = {}
        if (v := _get("STATEMENT_PARSER_MODEL")) is not None:
            kwargs["model"] = v
        if (v := _get("STATEMENT_PARSER_SUMMARY_MODEL")) is not None:
            kwargs["summary_model"] = v
        try:
            if (v := _get("STATEMENT_PARSER_MAX_STEPS")) is not None:
                kwargs["max_steps"] = int(v)
            if (v := _get("STATEMENT_PARSER_SANDBOX_TIMEOUT")) is not None:
                kwargs["sandbox_timeout_sec"] = float(v)
            if (v := _get("STATEMENT_PARSER_TOLERANCE")) is not None:
                kwargs["tolerance"] = float(v)
            if (v := _get("STATEMENT_PARSER_BATCH_SIZE")) is not None:
                kwargs["batch_size"] = int(v)
        except ValueError as e:
            raise ValueError(f"invalid numeric setting in environment: {e}") from e
        if (v := _get("STATEMENT_PARSER_CURRENCY")) is not None:
            kwargs["currency"] = v.upper()
        if (v := _get("STATEMENT_PARSER_COUNTRY")) is not None:
            kwargs["country"] = v.upper()
        return cls(**kwargs)  # type: ignore[arg-type]


__all__ = ["ParserSettings"]
