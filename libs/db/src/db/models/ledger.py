from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    func,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.sql import expression as sa_expr

# BIGINT identity on Postgres; SQLite only autoincrements INTEGER PRIMARY KEY.
_PK = BigInteger().with_variant(Integer(), "sqlite")

ACCOUNT_TYPES = ("ASSET", "LIABILITY", "EQUITY", "REVENUE", "EXPENSE")
ENTRY_SOURCES = (
    "manual",
    "ai_chat",
    "ai_transaction",
    "blockchain_analysis",
    "bulk_analysis",
    "api",
)
USD_SOURCES = ("oracle-contract", "external-api", "mock")


def _in_list(column: str, values: tuple[str, ...]) -> str:
    quoted = ",".join(f"'{v}'" for v in values)
    return f"{column} in ({quoted})"


class Base(DeclarativeBase):
    pass


# ---------------------------
# Chart of accounts
# ---------------------------


class AccountCategory(Base):
    __tablename__ = "account_categories"

    id: Mapped[int] = mapped_column(_PK, primary_key=True, autoincrement=True)
    code: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    type: Mapped[str] = mapped_column(String, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    sort_order: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (CheckConstraint(_in_list("type", ACCOUNT_TYPES), name="ck_acct_cat_type"),)


class LedgerAccount(Base):
    __tablename__ = "accounts"

    id: Mapped[int] = mapped_column(_PK, primary_key=True, autoincrement=True)
    code: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    # Lookups are case-insensitive in the service layer; the stored casing is
    # the canonical display label.
    name: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    account_type: Mapped[str] = mapped_column(String, nullable=False)
    sub_type: Mapped[str | None] = mapped_column(String, nullable=True)
    category_id: Mapped[int | None] = mapped_column(
        ForeignKey("account_categories.id"), nullable=True
    )
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    ifrs_reference: Mapped[str | None] = mapped_column(String, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default=sa_expr.true())
    is_system_account: Mapped[bool] = mapped_column(
        Boolean, nullable=False, server_default=sa_expr.false()
    )
    sort_order: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (
        CheckConstraint(_in_list("account_type", ACCOUNT_TYPES), name="ck_accounts_type"),
    )


# ---------------------------
# Chain transactions (parent of journal entries)
# ---------------------------


class ChainTransaction(Base):
    __tablename__ = "chain_transactions"

    id: Mapped[int] = mapped_column(_PK, primary_key=True, autoincrement=True)
    txid: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    user_id: Mapped[str | None] = mapped_column(String, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    blockchain_data: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False, server_default=text("'pending'"))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (
        CheckConstraint(
            _in_list("status", ("pending", "processed", "failed")), name="ck_chain_tx_status"
        ),
    )


# ---------------------------
# Journal entries
# ---------------------------


class JournalEntry(Base):
    __tablename__ = "journal_entries"

    id: Mapped[int] = mapped_column(_PK, primary_key=True, autoincrement=True)
    transaction_id: Mapped[int | None] = mapped_column(
        ForeignKey("chain_transactions.id", ondelete="SET NULL"), nullable=True
    )
    user_id: Mapped[str | None] = mapped_column(String, nullable=True)
    entry_date: Mapped[date] = mapped_column(Date, nullable=False)
    transaction_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    account_debit: Mapped[str] = mapped_column(String, nullable=False)
    account_credit: Mapped[str] = mapped_column(String, nullable=False)
    # Always stored positive; direction is carried by the debit/credit roles.
    amount: Mapped[Decimal] = mapped_column(Numeric(20, 8), nullable=False)
    currency: Mapped[str] = mapped_column(String, nullable=False, server_default=text("'USD'"))
    narrative: Mapped[str] = mapped_column(Text, nullable=False)
    ai_confidence: Mapped[Decimal | None] = mapped_column(Numeric(3, 2), nullable=True)
    ifrs_reference: Mapped[str | None] = mapped_column(String, nullable=True)
    source: Mapped[str] = mapped_column(String, nullable=False, server_default=text("'manual'"))
    is_reviewed: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default=sa_expr.false())
    requires_account_creation: Mapped[bool] = mapped_column(
        Boolean, nullable=False, server_default=sa_expr.false()
    )
    usd_value: Mapped[Decimal | None] = mapped_column(Numeric(20, 8), nullable=True)
    usd_rate: Mapped[Decimal | None] = mapped_column(Numeric(20, 8), nullable=True)
    usd_source: Mapped[str | None] = mapped_column(String, nullable=True)
    usd_timestamp: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    # ``metadata`` is reserved on declarative classes; keep the column name.
    entry_metadata: Mapped[dict[str, Any]] = mapped_column("metadata", JSON, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_journal_amount_positive"),
        CheckConstraint(_in_list("source", ENTRY_SOURCES), name="ck_journal_source"),
        CheckConstraint(
            "ai_confidence IS NULL OR (ai_confidence >= 0 AND ai_confidence <= 1)",
            name="ck_journal_ai_confidence",
        ),
        CheckConstraint(
            "usd_source IS NULL OR " + _in_list("usd_source", USD_SOURCES),
            name="ck_journal_usd_source",
        ),
    )


__all__ = [
    "ACCOUNT_TYPES",
    "AccountCategory",
    "Base",
    "ChainTransaction",
    "ENTRY_SOURCES",
    "JournalEntry",
    "LedgerAccount",
    "USD_SOURCES",
]
