from __future__ import annotations

from datetime import UTC, date, datetime
from decimal import Decimal
from pathlib import Path

import pytest
from db.client import session_scope
from db.models.ledger import ChainTransaction
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from crypto_journal import persistence
from crypto_journal.accounts import suggest_account
from crypto_journal.models import (
    Category,
    JournalBatch,
    JournalProposal,
    PricedLine,
    Provenance,
    UsdSource,
    UsdValuation,
    ValidatedLine,
)
from crypto_journal.persistence import (
    clear_creation_flag,
    flagged_entries,
    record_chain_transaction,
    rename_entry_account,
    save_batch,
)
from tests.helpers.db import bootstrap_sqlite_db, journal_rows


def _line(debit="Digital Assets - USDC", credit="Share Capital", amount=100.0, currency="USDC",
          narrative="Investment received", **kw) -> ValidatedLine:
    proposal = JournalProposal(
        debit_account=debit, credit_account=credit, amount=amount, currency=currency,
        narrative=narrative,
    )
    return ValidatedLine(
        proposal=proposal,
        debit_account=debit,
        credit_account=credit,
        amount=amount,
        currency=currency,
        narrative=narrative,
        confidence=0.85,
        **kw,
    )


def _batch(*lines: PricedLine) -> JournalBatch:
    return JournalBatch(
        provenance=Provenance(
            source_kind="text",
            source_id="abc123",
            analysis_timestamp=datetime(2025, 5, 25, tzinfo=UTC),
            options_digest="d" * 64,
        ),
        lines=list(lines),
    )


@pytest.fixture
def db_url(tmp_path: Path) -> str:
    return bootstrap_sqlite_db(tmp_path / "ledger.db")


def test_unpriced_currency_is_saved_with_empty_usd_fields(db_url):
    batch = _batch(PricedLine(line=_line(currency="XYZ")))
    result = save_batch(batch, user_id="u1", source="ai_chat", database_url=db_url)

    assert result.saved_count == 1
    assert result.failures == []
    (row,) = journal_rows(db_url)
    assert row.currency == "XYZ"
    assert (row.usd_value, row.usd_rate, row.usd_source, row.usd_timestamp) == (None, None, None, None)
    assert row.amount == Decimal("100")
    assert row.ai_confidence == Decimal("0.85")
    assert row.entry_metadata["provenance"]["source_id"] == "abc123"
    assert row.entry_metadata["already_saved"] is True


def test_priced_line_keeps_provenance(db_url):
    usd = UsdValuation(
        supported=True,
        usd_value=100.0,
        usd_rate=1.0,
        usd_source=UsdSource.API,
        usd_timestamp=datetime(2025, 5, 25, 12, tzinfo=UTC),
        enhanced_narrative="Investment received (≈ $100.00 USD)",
    )
    batch = _batch(PricedLine(line=_line(), usd=usd, category=Category.TOKEN_TRANSFER))
    save_batch(batch, user_id="u1", source="ai_chat", database_url=db_url,
               entry_date=date(2025, 5, 26))

    (row,) = journal_rows(db_url)
    assert row.usd_source == "external-api"
    assert row.usd_value == Decimal("100")
    assert row.entry_date == date(2025, 5, 26)
    assert row.entry_metadata["category"] == "token_transfer"
    assert row.entry_metadata["pricing_enhancement"]["supported"] is True


def test_lines_are_written_independently(db_url, monkeypatch):
    real = persistence._entry_row

    def flaky(priced, *a, **kw):
        if priced.line.narrative == "bad line":
            raise SQLAlchemyError("constraint failed")
        return real(priced, *a, **kw)

    monkeypatch.setattr(persistence, "_entry_row", flaky)
    batch = _batch(
        PricedLine(line=_line(narrative="first line")),
        PricedLine(line=_line(narrative="bad line")),
        PricedLine(line=_line(narrative="third line")),
    )
    result = save_batch(batch, user_id="u1", source="ai_chat", database_url=db_url)

    assert result.saved_count == 2
    assert [idx for idx, _ in result.failures] == [1]
    assert [r.narrative for r in journal_rows(db_url)] == ["first line", "third line"]


def test_unknown_source_is_rejected(db_url):
    with pytest.raises(ValueError):
        save_batch(_batch(), user_id=None, source="email", database_url=db_url)


def test_chain_transaction_is_upserted_and_linked(db_url):
    tx = "0x" + "ef" * 32
    with session_scope(database_url=db_url) as s:
        first = record_chain_transaction(s, txid=tx, payload={"v": 1}, status="failed", user_id="u1")
    with session_scope(database_url=db_url) as s:
        again = record_chain_transaction(s, txid=tx, payload={"v": 2}, description="retry")
    assert first == again

    save_batch(_batch(PricedLine(line=_line())), user_id="u1", source="blockchain_analysis",
               transaction_id=first, database_url=db_url)
    save_batch(_batch(PricedLine(line=_line())), user_id="u1", source="blockchain_analysis",
               transaction_id=9999, database_url=db_url)

    with session_scope(database_url=db_url) as s:
        row = s.get(ChainTransaction, first)
        assert (row.status, row.blockchain_data, row.user_id, row.description) == (
            "processed",
            {"v": 2},
            "u1",
            "retry",
        )
        assert s.execute(select(func.count()).select_from(ChainTransaction)).scalar_one() == 1
    assert [r.transaction_id for r in journal_rows(db_url)] == [first, None]


def test_flagged_entries_and_clearing(db_url):
    missing = suggest_account("Consulting Expense", "EXPENSE")
    flagged = _line(debit="Consulting Expense", requires_account_creation=True,
                    debit_suggestion=missing)
    batch = _batch(PricedLine(line=flagged), PricedLine(line=_line()))
    save_batch(batch, user_id="u1", source="ai_chat", database_url=db_url)
    save_batch(_batch(PricedLine(line=flagged)), user_id="u2", source="ai_chat",
               database_url=db_url)

    with session_scope(database_url=db_url) as s:
        mine = flagged_entries(s, user_id="u1")
        assert len(mine) == 1
        suggestions = mine[0].entry_metadata["account_creation_suggestions"]
        assert suggestions[0]["name"] == "Consulting Expense"
        assert suggestions[0]["type"] == "EXPENSE"
        assert len(flagged_entries(s)) == 2
        assert clear_creation_flag(s, [mine[0].id]) == 1
    with session_scope(database_url=db_url) as s:
        assert [e.user_id for e in flagged_entries(s)] == ["u2"]


def test_renaming_a_missing_account_repoints_entries(db_url):
    missing = suggest_account("Consulting Expense", "EXPENSE")
    flagged = _line(debit="Consulting  expense", credit="Share Capital",
                    requires_account_creation=True, debit_suggestion=missing)
    save_batch(_batch(PricedLine(line=flagged), PricedLine(line=_line())), user_id="u1",
               source="ai_chat", database_url=db_url)

    with session_scope(database_url=db_url) as s:
        entries = flagged_entries(s)
        assert rename_entry_account(s, entries, "Consulting Expense", "Advisory Fees") == 1
    rows = journal_rows(db_url)
    assert [(r.account_debit, r.account_credit) for r in rows] == [
        ("Advisory Fees", "Share Capital"),
        ("Digital Assets - USDC", "Share Capital"),
    ]
