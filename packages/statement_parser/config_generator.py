"""Parser-config generation for spreadsheets via a structured model call.

The reply is validated for shape only (schema plus the single/split column
invariant on :class:`ParserConfig`). Whether the chosen columns are right is
not knowable here. Any failure is fatal for the parse attempt and is raised as
:class:`ConfigGenerationError`; there is no retry at this layer beyond the
adapter's HTTP retry.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from pydantic import BaseModel, ConfigDict, ValidationError

from . import prompting
from .errors import ConfigGenerationError
from .llm import LanguageModel
from .logging_setup import get_logger
from .models import ParserConfig, SheetMetadata

_SAMPLE_ROWS: int = 5

_logger = get_logger("statement_parser.config_generator")


class _ConfigReply(BaseModel):
    """Raw reply shape; every key is required by the strict schema."""

    model_config = ConfigDict(extra="forbid")

    date_column: str
    description_column: str
    amount_column: str | None
    credit_column: str | None
    debit_column: str | None
    type_column: str | None
    balance_column: str | None
    header_row: int
    data_start_row: int
    date_format: str
    amount_format: str
    type_detection: str


def _to_config(reply: _ConfigReply) -> ParserConfig:
    data = reply.model_dump()
    # Empty strings from the model mean "no such column".
    for key in ("amount_column", "credit_column", "debit_column", "type_column", "balance_column"):
        if isinstance(data[key], str) and not data[key].strip():
            data[key] = None
    if not data["date_format"].strip():
        data["date_format"] = None
    return ParserConfig.model_validate(data)


def generate_parser_config(
    llm: LanguageModel,
    *,
    file_name: str,
    metadata: SheetMetadata,
    headers: Sequence[str],
    rows: Sequence[Sequence[Any]],
) -> ParserConfig:
    """Ask ``llm`` for a :class:`ParserConfig` describing the sheet."""

    content = prompting.build_config_content(
        file_name=file_name,
        metadata=metadata,
        headers=headers,
        sample_rows=rows[:_SAMPLE_ROWS],
    )
    try:
        reply = llm.generate_structured(
            instructions=prompting.build_config_instructions(),
            content=content,
            response_format=prompting.build_config_response_format(),
            model_cls=_ConfigReply,
        )
        config = _to_config(reply)
    except (ValueError, ValidationError) as e:
        raise ConfigGenerationError(f"model returned an unusable parser config: {e}") from e
    except Exception as e:
        raise ConfigGenerationError(f"parser config generation failed: {e}") from e

    _logger.info(
        "config_generator:done file=%s date_column=%r amount_format=%s type_detection=%s",
        file_name,
        config.date_column,
        config.amount_format,
        config.type_detection,
    )
    return config


__all__ = ["generate_parser_config"]
