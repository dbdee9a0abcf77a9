"""db: shared database library (SQLAlchemy/Alembic).

Public exports
--------------
- ``Base`` and ``metadata`` for Alembic autogenerate/targeting
- ORM models in ``db.models.statements`` (re-exported for convenience)
- Engine/session helpers in ``db.client``
"""

from __future__ import annotations

from .models.statements import (
    Base,
    SpHolding,
    SpParserCodeVersion,
    SpParserSource,
    SpStatement,
    SpTransaction,
)

# Re-export SQLAlchemy metadata for Alembic's env.py
metadata = Base.metadata

__all__ = [
    "Base",
    "metadata",
    "SpStatement",
    "SpTransaction",
    "SpHolding",
    "SpParserSource",
    "SpParserCodeVersion",
]
