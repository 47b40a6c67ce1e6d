"""ORM models for the ledger database (chart of accounts, chain transactions, journal entries)."""

from .ledger import AccountCategory, Base, ChainTransaction, JournalEntry, LedgerAccount

__all__ = [
    "AccountCategory",
    "Base",
    "ChainTransaction",
    "JournalEntry",
    "LedgerAccount",
]
