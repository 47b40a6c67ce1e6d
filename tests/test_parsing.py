from __future__ import annotations

from datetime import date

import pytest

from crypto_journal.config import Settings
from crypto_journal.errors import ParseFailure
from crypto_journal.parsing import (
    extract_date,
    extract_transaction_details,
    normalize_entry,
    parse_proposals,
    strip_noise,
)
from tests.helpers.openai_stub import entries_json, entry

SETTINGS = Settings()


def test_plain_array_with_camel_case_keys():
    text = entries_json(
        entry("Digital Assets - USDC", "Share Capital", 999, "usdc", "Investment", confidence=0.9,
              transactionDate="2025-05-25", transactionHash="0xabc")
    )
    out = parse_proposals(text, SETTINGS)
    assert out.layer == "array"
    (p,) = out.proposals
    assert (p.debit_account, p.credit_account, p.amount, p.currency) == (
        "Digital Assets - USDC",
        "Share Capital",
        999,
        "USDC",
    )
    assert p.transaction_date == date(2025, 5, 25)
    assert p.transaction_hash == "0xabc"
    assert p.ifrs_reference == "IAS 38"


def test_fenced_output_with_comments_and_trailing_commas():
    text = """Here you go:
```json
[
  // the deposit
  {"accountDebit": "Digital Assets - Ethereum", "accountCredit": "Share Capital",
   "amount": 1.5, "currency": "ETH", "narrative": "see https://example.org/tx",},
  /* the fee */
  {"accountDebit": "Transaction Fees", "accountCredit": "Digital Assets - Ethereum",
   "amount": 0.00042, "currency": "ETH", "narrative": "Gas",},
]
```
"""
    out = parse_proposals(text, SETTINGS)
    assert [p.amount for p in out.proposals] == [1.5, 0.00042]
    assert out.proposals[0].narrative == "see https://example.org/tx"
    assert out.dropped == 0


def test_object_wrapping_journal_entries():
    text = 'Result: {"journalEntries": [{"debit": "Office Expenses", "credit": "Accounts Payable", "amount": "1,250.50", "currency": "EUR", "description": "Rent"}]}'
    out = parse_proposals(text, SETTINGS)
    (p,) = out.proposals
    assert p.amount == 1250.5
    assert p.narrative == "Rent"
    assert p.confidence == 0.8


def test_regex_fallback_near_token_symbol():
    text = (
        "The user received the project token XYD in this transfer. "
        "Amount: 10 (USE THIS EXACT NUMBER) and nothing else matters."
    )
    out = parse_proposals(text, SETTINGS)
    assert out.layer == "regex"
    (p,) = out.proposals
    assert (p.amount, p.currency, p.debit_account) == (10, "XYD", "Digital Assets - XYD")
    assert p.confidence == 0.7


@pytest.mark.parametrize(
    ("text", "credit"),
    [
        ("Refund of 25 USDC to the customer", "Accounts Payable"),
        ("Investor put in 100 ETH as capital", "Share Capital"),
        ("Customer payment of 5 BTC", "Trading Revenue"),
    ],
)
def test_regex_fallback_picks_credit_from_wording(text, credit):
    (p,) = parse_proposals(text, SETTINGS).proposals
    assert p.credit_account == credit


def test_refund_credit_account_is_configurable():
    settings = Settings(refund_credit_account="Customer Refunds Payable")
    (p,) = parse_proposals("Refund of 25 USDC", settings).proposals
    assert p.credit_account == "Customer Refunds Payable"


def test_amounts_outside_bounds_are_dropped_and_counted():
    text = entries_json(
        entry("A", "B", 0.000001, "ETH", "dust"),
        entry("A", "B", 1_000_000, "USD", "too big"),
        entry("A", "B", -3, "USD", "negative"),
        entry("A", "B", "NaN", "USD", "not a number"),
        entry("A", "B", 999_999.99, "USD", "just fits"),
    )
    out = parse_proposals(text, SETTINGS)
    assert [p.narrative for p in out.proposals] == ["just fits"]
    assert out.dropped == 4


def test_missing_fields_get_defaults():
    out = parse_proposals('[{"amount": 12}]', SETTINGS)
    (p,) = out.proposals
    assert (p.debit_account, p.credit_account, p.currency) == (
        "Digital Assets - Other",
        "Share Capital",
        "USD",
    )
    assert p.narrative == "Transaction of 12"


def test_nothing_found_raises_parse_failure():
    with pytest.raises(ParseFailure):
        parse_proposals("I could not produce an answer.", SETTINGS)
    with pytest.raises(ParseFailure):
        parse_proposals("   ", SETTINGS)


def test_normalize_entry_clamps_confidence():
    assert normalize_entry({"amount": 1, "confidence": 3})["confidence"] == 1.0
    assert normalize_entry({"amount": 1, "confidence": "high"})["confidence"] == 0.8


def test_strip_noise_keeps_urls():
    assert strip_noise("a // note\nhttps://x.y") == "a \nhttps://x.y"


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("hotel booking, 188 EUR, invoice date May 25 2025", date(2025, 5, 25)),
        ("paid on 3rd March, 2024", date(2024, 3, 3)),
        ("settled 2023-11-02", date(2023, 11, 2)),
        ("receipt 07/08/2022", date(2022, 8, 7)),
        ("no date here", None),
    ],
)
def test_extract_date(text, expected):
    assert extract_date(text) == expected


def test_extract_transaction_details():
    tx = "0x" + "ab" * 32
    d = extract_transaction_details(f"Please book {tx}: 188 EUR on May 25 2025")
    assert d.transaction_hash == tx
    assert (d.amount, d.currency) == (188, "EUR")
    assert d.transaction_date == date(2025, 5, 25)
    assert d.describe()[0].startswith("transaction hash")
    assert not extract_transaction_details("hello").has_transaction_hash
