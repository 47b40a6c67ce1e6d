from __future__ import annotations

from pathlib import Path

import pytest

from crypto_journal.accounts import (
    AccountRegistry,
    create_account,
    load_registry,
    missing_account_names,
    suggest_account,
)
from crypto_journal.models import Account, AccountType
from db.client import session_scope
from tests.helpers.db import bootstrap_sqlite_db


def _registry() -> AccountRegistry:
    return AccountRegistry(
        [
            Account("1802", "Digital Assets - Ethereum", AccountType.ASSET, category_code="1800"),
            Account("1804", "Digital Assets - USDC", AccountType.ASSET, category_code="1800"),
            Account("3001", "Share Capital", AccountType.EQUITY, category_code="3000"),
            Account("6001", "Transaction Fees", AccountType.EXPENSE, category_code="6000"),
            Account("9999", "Retired Account", AccountType.ASSET, is_active=False),
        ]
    )


def test_resolve_is_case_and_whitespace_insensitive_and_returns_canonical_name():
    reg = _registry()
    for spelling in ["transaction fees", "TRANSACTION FEES", "  Transaction   Fees "]:
        acct = reg.resolve(spelling)
        assert acct is not None
        assert acct.name == "Transaction Fees"
    assert "share capital" in reg
    assert reg.resolve("") is None


def test_inactive_accounts_are_not_resolvable():
    reg = _registry()
    assert reg.resolve("Retired Account") is None
    assert len(reg) == 4


def test_resolve_pair_reports_missing_side():
    pair = _registry().resolve_pair("Digital Assets - USDC", "Consulting Revenue")
    assert pair.debit is not None and pair.debit.code == "1804"
    assert pair.credit is None


def test_find_similar_ranks_by_shared_words():
    names = [a.name for a in _registry().find_similar("Digital Assets - Ethereum Classic")]
    assert names[0] == "Digital Assets - Ethereum"
    assert "Digital Assets - USDC" in names
    assert _registry().find_similar("!!") == []


@pytest.mark.parametrize(
    ("name", "assumed", "expected_type", "category"),
    [
        ("Gas Fee Expense", None, AccountType.EXPENSE, "6000"),
        ("Office Supplies Expense", None, AccountType.EXPENSE, "5000"),
        ("Consulting Revenue", None, AccountType.REVENUE, "4000"),
        ("Vendor Payables", None, AccountType.LIABILITY, "2000"),
        ("Token Holdings - ABC", None, AccountType.ASSET, "1800"),
        ("Petty Cash", None, AccountType.ASSET, "1000"),
        ("Founder Equity", None, AccountType.EQUITY, "3000"),
        ("Mystery", "revenue", AccountType.REVENUE, "4000"),
        ("Mystery", "nonsense", AccountType.ASSET, "1000"),
    ],
)
def test_suggest_account_keyword_rules(name, assumed, expected_type, category):
    s = suggest_account(name, assumed)
    assert s.account_type is expected_type
    assert s.category_code == category
    assert s.code_range.startswith(category)


def test_suggest_account_is_deterministic():
    assert suggest_account("Gas Fee Expense") == suggest_account("Gas Fee Expense")
    assert suggest_account("Gas Fee Expense").as_dict()["type"] == "EXPENSE"


def test_missing_account_names_dedupes_in_order():
    s = [suggest_account(n) for n in ["B Revenue", "A Revenue", "B Revenue"]]
    assert missing_account_names(s) == ["B Revenue", "A Revenue"]


def test_load_registry_reads_seeded_chart(tmp_path: Path):
    url = bootstrap_sqlite_db(tmp_path / "ledger.db")
    reg = load_registry(database_url=url)
    assert reg.resolve("digital assets - c2flr").code == "1810"
    by_cat = reg.chart_by_category()
    assert "Digital Assets" in by_cat
    assert [a.code for a in reg.list_chart()] == sorted(a.code for a in reg.list_chart())


def test_load_registry_refuses_empty_chart(tmp_path: Path):
    url = bootstrap_sqlite_db(tmp_path / "empty.db", seed=False)
    with pytest.raises(RuntimeError):
        load_registry(database_url=url)


def test_create_account_takes_next_code_and_rejects_duplicates(tmp_path: Path):
    url = bootstrap_sqlite_db(tmp_path / "ledger.db")
    with session_scope(database_url=url) as s:
        acct = create_account(
            s, name="Consulting  Revenue", account_type="revenue", category_code="4000"
        )
    assert acct.code == "4007"
    assert acct.name == "Consulting Revenue"
    assert acct.account_type is AccountType.REVENUE

    with session_scope(database_url=url) as s:
        with pytest.raises(ValueError, match="already exists"):
            create_account(
                s, name="consulting revenue", account_type=AccountType.REVENUE,
                category_code="4000",
            )
        with pytest.raises(ValueError, match="not found"):
            create_account(s, name="Whatever", account_type="ASSET", category_code="4000")

    assert "Consulting Revenue" in load_registry(database_url=url)
