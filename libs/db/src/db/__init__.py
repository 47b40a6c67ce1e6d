"""db: shared database library (SQLAlchemy models, session helpers, Alembic metadata).

Public exports
--------------
- ``Base`` and ``metadata`` for Alembic autogenerate/targeting
- ORM models from ``db.models.ledger``
- Engine/session helpers live in ``db.client``
"""

from __future__ import annotations

from .models.ledger import AccountCategory, Base, ChainTransaction, JournalEntry, LedgerAccount

# Alembic's env.py targets this metadata
metadata = Base.metadata

__all__ = [
    "AccountCategory",
    "Base",
    "ChainTransaction",
    "JournalEntry",
    "LedgerAccount",
    "metadata",
]
