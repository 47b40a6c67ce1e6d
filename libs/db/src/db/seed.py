"""Default IFRS chart of accounts for crypto bookkeeping.

Used by the ``0001_ledger_core`` migration and by test database bootstrap.
Rows are ``(code, name, type, description, sort_order)`` for categories and
``(code, name, category_code, type, sub_type, description, ifrs_reference)``
for accounts.
"""

from __future__ import annotations

import sqlalchemy as sa
from sqlalchemy.engine import Connection

DEFAULT_CATEGORIES: tuple[tuple[str, str, str, str, int], ...] = (
    ("1000", "Current Assets", "ASSET", "Assets expected to be converted to cash within one year", 100),
    ("1500", "Non-Current Assets", "ASSET", "Long-term assets held for more than one year", 200),
    ("1800", "Digital Assets", "ASSET", "Cryptocurrency and digital token holdings", 300),
    ("2000", "Current Liabilities", "LIABILITY", "Obligations due within one year", 400),
    ("2500", "Non-Current Liabilities", "LIABILITY", "Long-term obligations due after one year", 500),
    ("3000", "Equity", "EQUITY", "Owner equity and retained earnings", 600),
    ("4000", "Revenue", "REVENUE", "Income from business operations", 700),
    ("5000", "Operating Expenses", "EXPENSE", "Costs of normal business operations", 800),
    ("6000", "Financial Expenses", "EXPENSE", "Finance-related costs and fees", 900),
)

_DA = ("1800", "ASSET", "DIGITAL_ASSET")

DEFAULT_ACCOUNTS: tuple[tuple[str, str, str, str, str, str, str], ...] = (
    ("1001", "Cash and Cash Equivalents", "1000", "ASSET", "CURRENT_ASSET", "Cash, bank deposits, and short-term investments", "IAS 7"),
    ("1002", "Bank Account - Operating", "1000", "ASSET", "CURRENT_ASSET", "Primary business bank account", "IAS 7"),
    ("1003", "Bank Account - Crypto Exchange", "1000", "ASSET", "CURRENT_ASSET", "Fiat currency held on crypto exchanges", "IAS 7"),
    ("1801", "Digital Assets - Bitcoin", *_DA, "Bitcoin holdings", "IAS 38"),
    ("1802", "Digital Assets - Ethereum", *_DA, "Ethereum holdings", "IAS 38"),
    ("1803", "Digital Assets - USDT", *_DA, "Tether USD stablecoin holdings", "IAS 38"),
    ("1804", "Digital Assets - USDC", *_DA, "USD Coin stablecoin holdings", "IAS 38"),
    ("1805", "Digital Assets - DAI", *_DA, "DAI stablecoin holdings", "IAS 38"),
    ("1806", "Digital Assets - BNB", *_DA, "Binance Coin holdings", "IAS 38"),
    ("1807", "Digital Assets - MATIC", *_DA, "Polygon MATIC token holdings", "IAS 38"),
    ("1808", "Digital Assets - Other", *_DA, "Other cryptocurrency holdings", "IAS 38"),
    ("1809", "Digital Assets - FLR", *_DA, "Flare native token holdings", "IAS 38"),
    ("1810", "Digital Assets - C2FLR", *_DA, "Coston2 testnet FLR holdings", "IAS 38"),
    ("1811", "Digital Assets - XYD", *_DA, "XYD project token holdings", "IAS 38"),
    ("1820", "DeFi Protocol Assets", *_DA, "Assets locked in DeFi protocols", "IAS 38"),
    ("1821", "Liquidity Pool Tokens", *_DA, "LP tokens from providing liquidity", "IAS 38"),
    ("1822", "Staked Assets", *_DA, "Assets staked for rewards", "IAS 38"),
    ("1823", "NFT Assets", *_DA, "Non-fungible token holdings", "IAS 38"),
    ("2001", "Accounts Payable", "2000", "LIABILITY", "CURRENT_LIABILITY", "Amounts owed to suppliers", "IAS 1"),
    ("2002", "Crypto Exchange Payables", "2000", "LIABILITY", "CURRENT_LIABILITY", "Amounts owed to crypto exchanges", "IAS 1"),
    ("2003", "Tax Payable", "2000", "LIABILITY", "CURRENT_LIABILITY", "Tax obligations", "IAS 12"),
    ("2501", "Loans Payable", "2500", "LIABILITY", "NON_CURRENT_LIABILITY", "Borrowings from lending protocols and lenders", "IFRS 9"),
    ("3001", "Share Capital", "3000", "EQUITY", "EQUITY", "Issued share capital", "IAS 1"),
    ("3002", "Retained Earnings", "3000", "EQUITY", "EQUITY", "Accumulated profits/losses", "IAS 1"),
    ("3003", "Crypto Revaluation Reserve", "3000", "EQUITY", "EQUITY", "Unrealized gains/losses on crypto assets", "IAS 38"),
    ("4001", "Trading Revenue", "4000", "REVENUE", "REVENUE", "Revenue from cryptocurrency trading", "IFRS 15"),
    ("4002", "Staking Revenue", "4000", "REVENUE", "REVENUE", "Revenue from staking rewards", "IFRS 15"),
    ("4003", "Mining Revenue", "4000", "REVENUE", "REVENUE", "Revenue from cryptocurrency mining", "IFRS 15"),
    ("4004", "DeFi Yield Revenue", "4000", "REVENUE", "REVENUE", "Revenue from DeFi protocols", "IFRS 15"),
    ("4005", "Airdrops Revenue", "4000", "REVENUE", "REVENUE", "Revenue from token airdrops", "IFRS 15"),
    ("4006", "Interest Income", "4000", "REVENUE", "REVENUE", "Interest earned on lent assets", "IFRS 9"),
    ("5001", "Salaries and Wages", "5000", "EXPENSE", "OPERATING_EXPENSE", "Employee compensation", "IAS 19"),
    ("5002", "Office Expenses", "5000", "EXPENSE", "OPERATING_EXPENSE", "General office and administrative costs", "IAS 1"),
    ("5003", "Software and Technology", "5000", "EXPENSE", "OPERATING_EXPENSE", "Technology and software expenses", "IAS 38"),
    ("5004", "Professional Services", "5000", "EXPENSE", "OPERATING_EXPENSE", "Legal, accounting, consulting fees", "IAS 1"),
    ("5005", "Marketing and Advertising", "5000", "EXPENSE", "OPERATING_EXPENSE", "Marketing and promotional costs", "IAS 1"),
    ("6001", "Transaction Fees", "6000", "EXPENSE", "FINANCIAL_EXPENSE", "Blockchain transaction fees (gas fees)", "IAS 1"),
    ("6002", "Exchange Fees", "6000", "EXPENSE", "FINANCIAL_EXPENSE", "Cryptocurrency exchange trading fees", "IAS 1"),
    ("6003", "Conversion Fees", "6000", "EXPENSE", "FINANCIAL_EXPENSE", "Currency conversion fees", "IAS 1"),
    ("6004", "Interest Expense", "6000", "EXPENSE", "FINANCIAL_EXPENSE", "Interest on loans and credit", "IAS 23"),
    ("6005", "Bank Fees", "6000", "EXPENSE", "FINANCIAL_EXPENSE", "Banking and wire transfer fees", "IAS 1"),
    ("6006", "Realized Loss on Crypto", "6000", "EXPENSE", "FINANCIAL_EXPENSE", "Realized losses from crypto sales", "IAS 38"),
)

_categories = sa.table(
    "account_categories",
    sa.column("id", sa.BigInteger()),
    sa.column("code", sa.String()),
    sa.column("name", sa.String()),
    sa.column("type", sa.String()),
    sa.column("description", sa.Text()),
    sa.column("sort_order", sa.Integer()),
)

_accounts = sa.table(
    "accounts",
    sa.column("code", sa.String()),
    sa.column("name", sa.String()),
    sa.column("account_type", sa.String()),
    sa.column("sub_type", sa.String()),
    sa.column("category_id", sa.BigInteger()),
    sa.column("description", sa.Text()),
    sa.column("ifrs_reference", sa.String()),
    sa.column("is_active", sa.Boolean()),
    sa.column("is_system_account", sa.Boolean()),
    sa.column("sort_order", sa.Integer()),
)


def seed_chart(conn: Connection) -> None:
    """Insert the default categories and accounts (tables must be empty)."""

    conn.execute(
        _categories.insert(),
        [
            {"code": code, "name": name, "type": typ, "description": desc, "sort_order": order}
            for code, name, typ, desc, order in DEFAULT_CATEGORIES
        ],
    )
    ids = dict(conn.execute(sa.select(_categories.c.code, _categories.c.id)).all())
    conn.execute(
        _accounts.insert(),
        [
            {
                "code": code,
                "name": name,
                "account_type": typ,
                "sub_type": sub,
                "category_id": ids[cat],
                "description": desc,
                "ifrs_reference": ifrs,
                "is_active": True,
                "is_system_account": True,
                "sort_order": int(code),
            }
            for code, name, cat, typ, sub, desc, ifrs in DEFAULT_ACCOUNTS
        ],
    )


__all__ = ["DEFAULT_ACCOUNTS", "DEFAULT_CATEGORIES", "seed_chart"]
