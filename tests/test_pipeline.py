from __future__ import annotations

from datetime import UTC, date, datetime
from decimal import Decimal
from pathlib import Path

import httpx
import pytest

from crypto_journal.config import Settings
from crypto_journal.errors import ConfigError
from crypto_journal.explorer import ExplorerClient
from crypto_journal.models import AccountType, Category, Transaction, TxStatus
from crypto_journal.pipeline import (
    JournalPipeline,
    WalletAnalysisOptions,
    build_summary,
    filter_transactions,
    group_by_category,
)
from crypto_journal.pricing import PriceCache, PriceOracleClient
from db.client import session_scope
from db.models.ledger import ChainTransaction
from tests.helpers.db import bootstrap_sqlite_db, journal_rows
from tests.helpers.explorer_stub import (
    OTHER,
    WALLET,
    explorer_client,
    ok,
    price_client,
    regular_row,
    token_row,
    tx_hash,
)
from tests.helpers.openai_stub import OpenAIStub, StatusError, entries_json, entry, install

COSTON2_URL = "https://coston2-explorer.flare.network"


def _pipeline(
    monkeypatch,
    tmp_path: Path,
    llm,
    routes=None,
    *,
    calls: list[httpx.Request] | None = None,
    with_db: bool = True,
) -> tuple[JournalPipeline, OpenAIStub]:
    url = bootstrap_sqlite_db(tmp_path / "ledger.db")
    settings = Settings(explorer_base_url=COSTON2_URL, llm_api_key="sk-test", database_url=url)
    stub = install(monkeypatch, llm if isinstance(llm, OpenAIStub) else OpenAIStub(llm))
    pipeline = JournalPipeline(
        settings,
        explorer=ExplorerClient(settings, client=explorer_client(routes or {}, calls=calls)),
        oracle=PriceOracleClient(
            settings, client=price_client({"flare-network": 0.02}), cache=PriceCache()
        ),
    )
    if not with_db:
        # Registry stays loaded; only the sink goes away.
        pipeline._settings = settings.with_overrides(database_url=None)
    return pipeline, stub


# ---- pure helpers ------------------------------------------------------------


def _tx(n: int, *, day: int = 1, value: str = "1", category=Category.NATIVE_TRANSFER) -> Transaction:
    return Transaction(
        hash=tx_hash(n),
        from_address=WALLET,
        to_address=OTHER,
        native_value=Decimal(value),
        status=TxStatus.SUCCESS,
        timestamp=datetime(2024, 1, day, 12, tzinfo=UTC),
        category=category,
    )


def test_filter_transactions_applies_limit_last():
    txs = [_tx(1, day=1), _tx(2, day=5, value="0.1"), _tx(3, day=6), _tx(4, day=7), _tx(5, day=20)]
    opts = WalletAnalysisOptions(
        start_date=date(2024, 1, 2), end_date=date(2024, 1, 10), min_value=0.5, limit=1
    )
    assert [t.hash for t in filter_transactions(txs, opts)] == [tx_hash(3)]


def test_filter_transactions_by_category():
    txs = [_tx(1), _tx(2, category=Category.DEX_TRADE)]
    opts = WalletAnalysisOptions(categories=frozenset({Category.DEX_TRADE}))
    assert [t.hash for t in filter_transactions(txs, opts)] == [tx_hash(2)]


def test_wallet_options_validation():
    with pytest.raises(ValueError):
        WalletAnalysisOptions(limit=0)
    with pytest.raises(ValueError):
        WalletAnalysisOptions(start_date=date(2024, 2, 1), end_date=date(2024, 1, 1))


def test_group_by_category_keeps_first_appearance_order():
    txs = [_tx(1, category=Category.DEX_TRADE), _tx(2), _tx(3, category=Category.DEX_TRADE)]
    groups = group_by_category(txs)
    assert list(groups) == [Category.DEX_TRADE, Category.NATIVE_TRANSFER]
    assert len(groups[Category.DEX_TRADE]) == 2


def test_summary_without_categories_reports_full_success():
    summary = build_summary(fetched=0, processed=0, outcomes=[], lines=[])
    assert summary["wallet_analysis"]["processing_success_rate"] == 100.0
    assert summary["ifrs_compliance"]["confidence_score"] is None


# ---- E1: transaction hash ----------------------------------------------------


def _xyd_transfer_routes() -> dict:
    detail = regular_row(7, wei=0, input_data="0xa9059cbb" + "0" * 128)
    return {
        ("transaction", "gettxinfo"): ok(detail),
        ("account", "tokentx"): ok(
            [token_row(7, frm=WALLET, to=OTHER, symbol="XYD", decimals=18, raw=1000 * 10**18)]
        ),
    }


def test_hash_analysis_on_coston2_books_token_and_native_gas(monkeypatch, tmp_path):
    llm = [
        entries_json(
            entry("Share Capital", "Digital Assets - XYD", 1000, "XYD", "Sent 1000 XYD tokens"),
            entry(
                "Transaction Fees",
                "Bank Account - Operating",
                0.00042,
                "GAS",
                "Gas fee for XYD transfer",
                ifrs="IAS 1",
            ),
        )
    ]
    pipeline, stub = _pipeline(monkeypatch, tmp_path, llm, _xyd_transfer_routes())
    with pipeline:
        result = pipeline.analyze_transaction_hash(tx_hash(7), user_id="u1")

    lines = [p.line for p in result.batch.lines]
    currencies = [ln.currency for ln in lines]
    assert "XYD" in currencies and "C2FLR" in currencies
    assert "GAS" not in currencies and "ETH" not in currencies
    gas = next(ln for ln in lines if ln.currency == "C2FLR")
    assert gas.credit_account == "Digital Assets - C2FLR"
    assert "1000 XYD" in stub.calls[0]["input"]

    rows = journal_rows(pipeline._settings.database_url)
    assert len(rows) == 2
    assert all(r.transaction_id == result.chain_transaction_id for r in rows)
    assert {r.source for r in rows} == {"blockchain_analysis"}
    xyd = next(r for r in rows if r.currency == "XYD")
    assert xyd.usd_source == "mock"
    assert xyd.usd_value == Decimal("50.00000000")
    assert xyd.transaction_date is None
    assert xyd.entry_metadata["transaction_hash"] == tx_hash(7)


def test_hash_analysis_records_llm_failure_on_the_chain_transaction(monkeypatch, tmp_path):
    pipeline, _ = _pipeline(monkeypatch, tmp_path, [StatusError(401)], _xyd_transfer_routes())
    result = pipeline.analyze_transaction_hash(tx_hash(7), user_id="u1")

    assert result.error is not None
    assert result.batch.lines == []
    assert result.save is None
    with session_scope(database_url=pipeline._settings.database_url) as s:
        row = s.get(ChainTransaction, result.chain_transaction_id)
        assert row.status == "failed"
        assert row.blockchain_data["chain"]["native_symbol"] == "C2FLR"


def test_saving_without_database_is_a_config_error(monkeypatch, tmp_path):
    pipeline, _ = _pipeline(monkeypatch, tmp_path, ["[]"], _xyd_transfer_routes(), with_db=False)
    with pytest.raises(ConfigError):
        pipeline.analyze_transaction_hash(tx_hash(7), user_id="u1")


# ---- E3: free-form text ------------------------------------------------------


def test_text_investment(monkeypatch, tmp_path):
    calls: list[httpx.Request] = []
    llm = [
        entries_json(
            entry(
                "Digital Assets - USDC",
                "Share Capital",
                999,
                "USDC",
                "Capital contribution in USDC",
                confidence=0.9,
                ifrs="IAS 32",
            )
        )
    ]
    pipeline, _ = _pipeline(monkeypatch, tmp_path, llm, calls=calls)
    result = pipeline.analyze_text("I invested 999 USDC into the company", user_id="u1")

    (priced,) = result.batch.lines
    line = priced.line
    assert (line.debit_account, line.credit_account, line.amount, line.currency) == (
        "Digital Assets - USDC",
        "Share Capital",
        999,
        "USDC",
    )
    assert line.confidence >= 0.8
    assert calls == []
    assert result.save.saved_count == 1
    assert journal_rows(pipeline._settings.database_url)[0].source == "ai_chat"


def test_text_dated_expense(monkeypatch, tmp_path):
    llm = [entries_json(entry("Office Expenses", "Accounts Payable", 188, "EUR", "Hotel booking"))]
    pipeline, _ = _pipeline(monkeypatch, tmp_path, llm)
    result = pipeline.analyze_text("hotel booking, 188 EUR, invoice date May 25 2025")

    (priced,) = result.batch.lines
    assert priced.line.transaction_date == date(2025, 5, 25)
    assert pipeline.registry.resolve(priced.line.debit_account).account_type is AccountType.EXPENSE
    assert (
        pipeline.registry.resolve(priced.line.credit_account).account_type is AccountType.LIABILITY
    )
    assert not priced.usd.supported
    assert result.save is None


def test_text_bank_fee_is_not_treated_as_gas(monkeypatch, tmp_path):
    llm = [
        entries_json(
            entry("Bank Fees", "Bank Account - Operating", 25, "USD", "Monthly bank account fee")
        )
    ]
    pipeline, _ = _pipeline(monkeypatch, tmp_path, llm)
    result = pipeline.analyze_text("The bank charged a 25 USD monthly account fee")

    (priced,) = result.batch.lines
    assert (priced.line.credit_account, priced.line.currency) == ("Bank Account - Operating", "USD")
    assert priced.line.corrections == ()

def test_text_naming_a_hash_is_analyzed_on_chain(monkeypatch, tmp_path):
    calls: list[httpx.Request] = []
    llm = [entries_json(entry("Share Capital", "Digital Assets - XYD", 1000, "XYD", "Sent XYD"))]
    pipeline, stub = _pipeline(monkeypatch, tmp_path, llm, _xyd_transfer_routes(), calls=calls)
    result = pipeline.analyze_text(f"Book {tx_hash(7)} as a repayment dated 2025-03-01")

    assert result.delegated is not None
    assert result.delegated.transaction.hash == tx_hash(7)
    assert calls
    assert "User description: Book" in stub.calls[0]["input"]
    assert result.batch.lines[0].line.transaction_date == date(2025, 3, 1)


def test_empty_text_is_rejected(monkeypatch, tmp_path):
    pipeline, _ = _pipeline(monkeypatch, tmp_path, ["[]"])
    with pytest.raises(ValueError):
        pipeline.analyze_text("   ")


# ---- E2: wallet bulk ---------------------------------------------------------


def test_wallet_limit_caps_processed_transactions(monkeypatch, tmp_path):
    rows = [regular_row(n, ts=1_704_067_200 + n) for n in range(1, 151)]

    def answer(kwargs):
        hashes = [ln.split(": ", 1)[1] for ln in kwargs["input"].splitlines() if ln.startswith("- hash: ")]
        return entries_json(
            *(
                entry(
                    "Share Capital",
                    "Digital Assets - C2FLR",
                    1,
                    "C2FLR",
                    "Outgoing C2FLR transfer to counterparty",
                    transactionHash=h,
                )
                for h in hashes
            )
        )

    pipeline, stub = _pipeline(
        monkeypatch, tmp_path, OpenAIStub(answer), {("account", "txlist"): ok(rows)}
    )
    result = pipeline.analyze_wallet(WALLET, WalletAnalysisOptions(limit=10), user_id="u1")

    summary = result.summary
    assert summary["wallet_analysis"]["total_transactions_fetched"] == 150
    assert summary["wallet_analysis"]["total_transactions_processed"] == 10
    assert sum(c["transactions"] for c in summary["category_breakdown"].values()) == 10
    assert summary["wallet_analysis"]["total_journal_entries_generated"] == 10
    assert len(stub.calls) == 1
    assert summary["saved_entries"] == 10
    assert {r.source for r in journal_rows(pipeline._settings.database_url)} == {"bulk_analysis"}


def test_wallet_category_failure_does_not_stop_other_categories(monkeypatch, tmp_path):
    def answer(kwargs):
        if "token transfers:" in kwargs["input"]:
            raise StatusError(400, "bad request")
        return entries_json(
            entry("Share Capital", "Digital Assets - C2FLR", 1, "C2FLR", "Outgoing C2FLR transfer")
        )

    routes = {
        ("account", "txlist"): ok([regular_row(1), regular_row(2)]),
        ("account", "tokentx"): ok([token_row(4)]),
    }
    pipeline, _ = _pipeline(monkeypatch, tmp_path, OpenAIStub(answer), routes)
    result = pipeline.analyze_wallet(WALLET)

    by_cat = {o.category: o for o in result.categories}
    assert by_cat[Category.NATIVE_TRANSFER].success
    assert by_cat[Category.NATIVE_TRANSFER].journal_entries == 1
    assert not by_cat[Category.TOKEN_TRANSFER].success
    assert result.summary["wallet_analysis"]["processing_success_rate"] == 50.0
    assert any(
        r.startswith("Manual review required for token_transfer")
        for r in result.summary["recommendations"]
    )
    assert len(result.batch.lines) == 1
    assert result.save is None


def test_wallet_rejects_bad_address(monkeypatch, tmp_path):
    pipeline, _ = _pipeline(monkeypatch, tmp_path, ["[]"])
    with pytest.raises(ValueError):
        pipeline.analyze_wallet("0x1234")
