"""Shared SQLAlchemy models registry for the workspace database.

Holds the statement-parsing tables used by ``statement_parser``.
"""

from .statements import (
    Base,
    SpHolding,
    SpParserCodeVersion,
    SpParserSource,
    SpStatement,
    SpTransaction,
)

__all__ = [
    "Base",
    "SpStatement",
    "SpTransaction",
    "SpHolding",
    "SpParserSource",
    "SpParserCodeVersion",
]
