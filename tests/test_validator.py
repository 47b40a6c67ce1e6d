from __future__ import annotations

from crypto_journal.accounts import AccountRegistry
from crypto_journal.config import Settings
from crypto_journal.explorer import detect_chain
from crypto_journal.models import Account, AccountType, JournalProposal
from crypto_journal.validator import LineValidator, correct_gas_line, is_gas_line

COSTON2 = detect_chain("https://coston2-explorer.flare.network")
ETHEREUM = detect_chain("https://eth.blockscout.com")
REGISTRY = AccountRegistry(
    [
        Account("1001", "Cash and Cash Equivalents", AccountType.ASSET),
        Account("1002", "Bank Account - Operating", AccountType.ASSET),
        Account("1802", "Digital Assets - Ethereum", AccountType.ASSET),
        Account("1804", "Digital Assets - USDC", AccountType.ASSET),
        Account("1810", "Digital Assets - C2FLR", AccountType.ASSET),
        Account("2001", "Accounts Payable", AccountType.LIABILITY),
        Account("3001", "Share Capital", AccountType.EQUITY),
        Account("6001", "Transaction Fees", AccountType.EXPENSE),
        Account("6002", "Exchange Fees", AccountType.EXPENSE),
        Account("6005", "Bank Fees", AccountType.EXPENSE),
        Account("5002", "Office Expenses", AccountType.EXPENSE),
    ]
)


def _p(debit, credit, amount=1.0, currency="USDC", narrative="Transfer", **kw) -> JournalProposal:
    return JournalProposal(
        debit_account=debit,
        credit_account=credit,
        amount=amount,
        currency=currency,
        narrative=narrative,
        **kw,
    )


def _validator(chain=COSTON2, settings=None) -> LineValidator:
    return LineValidator(REGISTRY, chain, settings or Settings())


def test_known_names_are_canonicalized():
    line = _validator().validate_one(_p("digital assets - usdc", "SHARE CAPITAL"))
    assert (line.debit_account, line.credit_account) == ("Digital Assets - USDC", "Share Capital")
    assert not line.requires_account_creation
    assert line.validation_error is None


def test_gas_line_uses_the_chain_native_coin_and_account():
    gas = _p("Transaction Fees", "Bank Account - Operating", 0.0005, "GAS", "Gas fee")
    line = _validator(COSTON2).validate_one(gas, chain_sourced=True)
    assert line.currency == "C2FLR"
    assert line.credit_account == "Digital Assets - C2FLR"
    assert len(line.corrections) == 2

    eth_fee = _p("Transaction Fees", "Digital Assets - Ethereum", 0.0005, "ETH", "Gas fee")
    assert _validator(COSTON2).validate_one(eth_fee, chain_sourced=True).currency == "C2FLR"
    assert _validator(ETHEREUM).validate_one(eth_fee, chain_sourced=True).currency == "ETH"


def test_non_gas_lines_are_not_touched():
    proposal = _p("Digital Assets - Ethereum", "Share Capital", 1.0, "ETH", "Deposit")
    assert correct_gas_line(proposal, COSTON2) == (proposal, [])


def test_fiat_fee_lines_keep_their_bank_and_cash_credits():
    bank_fee = _p("Bank Fees", "Bank Account - Operating", 25, "USD", "Monthly bank account fee")
    coffee = _p("Office Expenses", "Cash and Cash Equivalents", 12, "USD", "Coffee for the office")
    for proposal in (bank_fee, coffee):
        line = _validator(ETHEREUM).validate_one(proposal, chain_sourced=True)
        assert line.credit_account == proposal.credit_account
        assert line.currency == "USD"
        assert line.corrections == ()


def test_exchange_fee_keeps_its_currency():
    fee = _p(
        "Exchange Fees", "Digital Assets - Ethereum", 0.01, "ETH", "Exchange trading fee paid in ETH"
    )
    line = _validator(COSTON2).validate_one(fee, chain_sourced=True)
    assert (line.currency, line.credit_account) == ("ETH", "Digital Assets - Ethereum")
    assert line.corrections == ()


def test_gas_detection_matches_whole_words():
    assert is_gas_line(_p("Transaction Fees", "Digital Assets - Ethereum", narrative="Network cost"))
    assert is_gas_line(_p("Office Expenses", "Accounts Payable", narrative="Paid gas for the swap"))
    assert not is_gas_line(_p("Office Expenses", "Accounts Payable", narrative="Gasket replacement"))
    assert not is_gas_line(_p("Bank Fees", "Bank Account - Operating", narrative="Wire fee"))


def test_gas_correction_is_off_for_lines_not_from_a_chain():
    gas = _p("Transaction Fees", "Bank Account - Operating", 0.0005, "GAS", "Gas fee")
    line = _validator(COSTON2).validate_one(gas)
    assert (line.currency, line.credit_account) == ("GAS", "Bank Account - Operating")
    assert line.corrections == ()


def test_unknown_accounts_get_suggestions_and_hints():
    line = _validator().validate_one(_p("Consulting Expense", "Digital Assets - USDT"))
    assert line.requires_account_creation
    assert line.debit_suggestion.account_type is AccountType.EXPENSE
    assert line.credit_suggestion.category_code == "1800"
    assert "Did you mean: Digital Assets" in line.validation_error
    assert [s.name for s in line.suggestions] == ["Consulting Expense", "Digital Assets - USDT"]


def test_same_account_and_out_of_range_lines_are_dropped():
    result = _validator(settings=Settings(amount_ceiling=100.0)).validate(
        [
            _p("Share Capital", "share capital"),
            _p("Digital Assets - USDC", "Share Capital", amount=150.0),
            _p("Digital Assets - USDC", "Share Capital", amount=50.0),
        ]
    )
    assert [line.amount for line in result.lines] == [50.0]
    assert result.dropped == 2
