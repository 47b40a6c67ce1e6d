# ruff: noqa: I001
"""Ledger core tables and the default IFRS chart of accounts.

Revision ID: 0001_ledger_core
Revises: None
Create Date: 2026-09-28
"""

from __future__ import annotations

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

from db.seed import seed_chart


# revision identifiers, used by Alembic.
revision: str = "0001_ledger_core"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _ts(name: str) -> sa.Column:
    return sa.Column(
        name,
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.text("now()"),
    )


def upgrade() -> None:
    op.create_table(
        "account_categories",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("code", sa.String(), nullable=False, unique=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("type", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("sort_order", sa.Integer(), nullable=True),
        _ts("created_at"),
        sa.CheckConstraint(
            "type in ('ASSET','LIABILITY','EQUITY','REVENUE','EXPENSE')",
            name="ck_acct_cat_type",
        ),
    )

    op.create_table(
        "accounts",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("code", sa.String(), nullable=False, unique=True),
        sa.Column("name", sa.String(), nullable=False, unique=True),
        sa.Column("account_type", sa.String(), nullable=False),
        sa.Column("sub_type", sa.String(), nullable=True),
        sa.Column(
            "category_id",
            sa.BigInteger(),
            sa.ForeignKey("account_categories.id"),
            nullable=True,
        ),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("ifrs_reference", sa.String(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column(
            "is_system_account", sa.Boolean(), nullable=False, server_default=sa.text("false")
        ),
        sa.Column("sort_order", sa.Integer(), nullable=True),
        _ts("created_at"),
        _ts("updated_at"),
        sa.CheckConstraint(
            "account_type in ('ASSET','LIABILITY','EQUITY','REVENUE','EXPENSE')",
            name="ck_accounts_type",
        ),
    )
    op.create_index("ix_accounts_category_id", "accounts", ["category_id"])

    op.create_table(
        "chain_transactions",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("txid", sa.String(), nullable=False, unique=True),
        sa.Column("user_id", sa.String(), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("blockchain_data", sa.JSON(), nullable=False),
        sa.Column("status", sa.String(), nullable=False, server_default=sa.text("'pending'")),
        _ts("created_at"),
        _ts("updated_at"),
        sa.CheckConstraint(
            "status in ('pending','processed','failed')", name="ck_chain_tx_status"
        ),
    )

    op.create_table(
        "journal_entries",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column(
            "transaction_id",
            sa.BigInteger(),
            sa.ForeignKey("chain_transactions.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("user_id", sa.String(), nullable=True),
        sa.Column("entry_date", sa.Date(), nullable=False),
        sa.Column("transaction_date", sa.Date(), nullable=True),
        sa.Column("account_debit", sa.String(), nullable=False),
        sa.Column("account_credit", sa.String(), nullable=False),
        sa.Column("amount", sa.Numeric(20, 8), nullable=False),
        sa.Column("currency", sa.String(), nullable=False, server_default=sa.text("'USD'")),
        sa.Column("narrative", sa.Text(), nullable=False),
        sa.Column("ai_confidence", sa.Numeric(3, 2), nullable=True),
        sa.Column("ifrs_reference", sa.String(), nullable=True),
        sa.Column("source", sa.String(), nullable=False, server_default=sa.text("'manual'")),
        sa.Column("is_reviewed", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column(
            "requires_account_creation",
            sa.Boolean(),
            nullable=False,
            server_default=sa.text("false"),
        ),
        sa.Column("usd_value", sa.Numeric(20, 8), nullable=True),
        sa.Column("usd_rate", sa.Numeric(20, 8), nullable=True),
        sa.Column("usd_source", sa.String(), nullable=True),
        sa.Column("usd_timestamp", sa.DateTime(timezone=True), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=False),
        _ts("created_at"),
        sa.CheckConstraint("amount > 0", name="ck_journal_amount_positive"),
        sa.CheckConstraint(
            "source in ('manual','ai_chat','ai_transaction','blockchain_analysis',"
            "'bulk_analysis','api')",
            name="ck_journal_source",
        ),
        sa.CheckConstraint(
            "ai_confidence IS NULL OR (ai_confidence >= 0 AND ai_confidence <= 1)",
            name="ck_journal_ai_confidence",
        ),
        sa.CheckConstraint(
            "usd_source IS NULL OR usd_source in ('oracle-contract','external-api','mock')",
            name="ck_journal_usd_source",
        ),
    )
    op.create_index("ix_journal_entries_user_id", "journal_entries", ["user_id"])
    op.create_index("ix_journal_entries_transaction_id", "journal_entries", ["transaction_id"])
    # Partial index for the account-suggestion review queue
    op.create_index(
        "ix_journal_entries_needs_account",
        "journal_entries",
        ["id"],
        postgresql_where=sa.text("requires_account_creation"),
    )

    seed_chart(op.get_bind())


def downgrade() -> None:
    op.drop_index("ix_journal_entries_needs_account", table_name="journal_entries")
    op.drop_index("ix_journal_entries_transaction_id", table_name="journal_entries")
    op.drop_index("ix_journal_entries_user_id", table_name="journal_entries")
    op.drop_table("journal_entries")
    op.drop_table("chain_transactions")
    op.drop_index("ix_accounts_category_id", table_name="accounts")
    op.drop_table("accounts")
    op.drop_table("account_categories")
