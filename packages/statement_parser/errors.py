"""Exception taxonomy for statement parsing.

Input problems are reported straight to the caller. Generation and validation
problems stay inside the repair loop and only surface as
:class:`GenerationExhaustedError` once the step budget is spent.
"""

from __future__ import annotations


class StatementParserError(Exception):
    """Base class for all errors raised by ``statement_parser``."""


class InputError(StatementParserError):
    """The statement file cannot be read or is of an unsupported type."""


class PasswordRequiredError(InputError):
    """The document is encrypted and no (or a wrong) password was supplied."""


class StatementNotFoundError(StatementParserError):
    def __init__(self, statement_id: str) -> None:
        super().__init__(f"statement not found: {statement_id}")
        self.statement_id = statement_id


class ConfigGenerationError(StatementParserError):
    """The model failed to produce a usable spreadsheet parser config."""


class GenerationExhaustedError(StatementParserError):
    """Neither cached nor newly generated code produced an accepted result.

    ``last_error`` carries the final sandbox or validation message and
    ``steps`` the number of generation steps consumed.
    """

    def __init__(self, last_error: str | None, steps: int) -> None:
        detail = last_error or "no code was submitted"
        super().__init__(f"parser generation exhausted after {steps} step(s): {detail}")
        self.last_error = last_error
        self.steps = steps


__all__ = [
    "StatementParserError",
    "InputError",
    "PasswordRequiredError",
    "StatementNotFoundError",
    "ConfigGenerationError",
    "GenerationExhaustedError",
]
