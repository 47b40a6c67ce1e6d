"""Prompt construction for the journal proposer.

This module builds:
- The invariant system instructions (double-entry rules, exact account
  names, no output decorations, date extraction).
- A compact rendering of the chart of accounts grouped by category.
- A rendering of transactions in human decimal units (never raw wei).
- The user content for a category group, a single hash and free text.
"""

from __future__ import annotations

from collections.abc import Sequence
from decimal import Decimal

from .accounts import AccountRegistry
from .models import ChainInfo, Transaction
from .templates import CategoryTemplate

_EXAMPLE_DATED = (
    '[{"accountDebit":"Travel and Entertainment","accountCredit":"Accounts Payable",'
    '"amount":188,"currency":"EUR","narrative":"Hotel booking expense from DeTrip, '
    'invoice date May 25 2025","transactionDate":"2025-05-25","confidence":0.95,'
    '"ifrsReference":"IAS 1"}]'
)
_EXAMPLE_UNDATED = (
    '[{"accountDebit":"Digital Assets - USDC","accountCredit":"Share Capital",'
    '"amount":999,"currency":"USDC","narrative":"Capital contribution of 999 USDC",'
    '"confidence":0.95,"ifrsReference":"IAS 32"}]'
)


def build_system_instructions() -> str:
    """Return the system instructions shared by every proposer call."""

    return f"""You are an expert cryptocurrency accountant producing IFRS-compliant double-entry journal lines.

CRITICAL RULES:
- Every line is one balanced double entry: one debit account, one credit account, one positive amount, one currency.
- ALWAYS use EXACT account names from the provided chart of accounts. Only invent a name when no account fits.
- Debit and credit accounts of a line must differ.
- Crypto holdings use "Digital Assets - <SYMBOL>" accounts; investments and capital contributions credit "Share Capital".
- Amounts are human decimal units exactly as given (never wei or other smallest units).
- Gas fees are a separate line: debit "Transaction Fees", credit the digital asset account of the chain's native coin, in the native coin's currency.

TRANSACTION DATES:
- Look for phrases like "invoice date", "dated", "on [date]", "transaction from [date]".
- Recognise formats such as "May 25 2025", "2025-05-25", "25 May 2025".
- When a date is found add "transactionDate" (YYYY-MM-DD); otherwise omit the field.

OUTPUT FORMAT:
- Return ONLY a JSON array of objects with keys accountDebit, accountCredit, amount, currency, narrative, confidence, and optionally transactionDate, ifrsReference, transactionHash.
- NO ```json blocks, NO // comments, NO trailing commas, NO prose.

EXAMPLE WITH DATE:
{_EXAMPLE_DATED}

EXAMPLE WITHOUT DATE:
{_EXAMPLE_UNDATED}"""


def render_chart(registry: AccountRegistry) -> str:
    """Chart of accounts grouped by category, one bullet per account."""

    blocks: list[str] = []
    for category, accounts in registry.chart_by_category().items():
        lines = [f"{category}:"]
        lines.extend(f"  • {a.code} - {a.name} ({a.account_type.value})" for a in accounts)
        blocks.append("\n".join(lines))
    return "\n\n".join(blocks)


def _fmt_amount(value: Decimal) -> str:
    # Plain positional notation: "0.00001", never "1E-5".
    text = format(value, "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text or "0"


def render_transaction(tx: Transaction, native_symbol: str) -> str:
    parts = [
        f"- hash: {tx.hash}",
        f"  from: {tx.from_address}",
        f"  to: {tx.to_address or '(contract creation)'}",
        f"  value: {_fmt_amount(tx.native_value)} {native_symbol}",
        f"  status: {tx.status.value}",
    ]
    if tx.timestamp is not None:
        parts.append(f"  timestamp: {tx.timestamp.isoformat()}")
    if tx.category is not None:
        parts.append(f"  category: {tx.category.value}")
    if tx.direction is not None:
        parts.append(f"  direction: {tx.direction.value}")
    fee = tx.gas_fee
    if fee is not None and fee > 0:
        parts.append(f"  gas fee: {_fmt_amount(fee)} {native_symbol}")
    if tx.method_selector:
        parts.append(f"  method: {tx.method_selector}")
    if tx.token_transfers:
        parts.append("  token transfers:")
        for tt in tx.token_transfers:
            parts.append(
                f"    • {_fmt_amount(tt.decimal_amount)} {tt.token_symbol} ({tt.token_name}) "
                f"from {tt.from_address} to {tt.to_address}"
            )
    return "\n".join(parts)


def render_transactions(transactions: Sequence[Transaction], native_symbol: str) -> str:
    if not transactions:
        return "(no transactions)"
    return "\n".join(render_transaction(tx, native_symbol) for tx in transactions)


def render_chain_info(chain: ChainInfo) -> str:
    network = f"{chain.name} (chain id {chain.chain_id})" if chain.chain_id else chain.name
    return (
        f"Network: {network}\n"
        f"Native / gas currency: {chain.native_symbol} "
        f"(use currency \"{chain.native_symbol}\" for gas lines, never \"GAS\" or another chain's coin)\n"
        f"Native asset account: {chain.native_account}"
    )


def build_group_content(
    transactions: Sequence[Transaction],
    *,
    registry: AccountRegistry,
    chain: ChainInfo,
    template: CategoryTemplate | None = None,
    wallet: str | None = None,
) -> str:
    """User content for a group of same-category wallet transactions."""

    sections = [
        "Chart of Accounts (MUST use these exact account names):",
        render_chart(registry),
        "",
        render_chain_info(chain),
    ]
    if wallet:
        sections.append(f"Wallet being accounted for: {wallet}")
    if template is not None:
        sections.extend(["", template.render()])
    sections.extend(
        [
            "",
            f"Transactions ({len(transactions)}):",
            render_transactions(transactions, chain.native_symbol),
            "",
            "Produce journal lines for every transaction above, tagging each with its transactionHash.",
        ]
    )
    return "\n".join(sections)


def build_transaction_content(
    tx: Transaction,
    *,
    registry: AccountRegistry,
    chain: ChainInfo,
    template: CategoryTemplate | None = None,
    hint: str | None = None,
) -> str:
    """User content for single-hash analysis; includes the chain's gas currency."""

    sections = [
        "Chart of Accounts (MUST use these exact account names):",
        render_chart(registry),
        "",
        "BLOCKCHAIN INFORMATION:",
        render_chain_info(chain),
        "",
        "Transaction:",
        render_transaction(tx, chain.native_symbol),
    ]
    if template is not None:
        sections.extend(["", template.render()])
    sections.extend(["", f"User description: {hint.strip() if hint else 'No description provided'}"])
    if tx.token_transfers:
        symbols = ", ".join(dict.fromkeys(t.token_symbol for t in tx.token_transfers))
        sections.append(
            f"Record the token amounts above EXACTLY in their own currency ({symbols}); "
            f"record gas separately in {chain.native_symbol}."
        )
    return "\n".join(sections)


def build_text_content(
    text: str,
    *,
    registry: AccountRegistry,
    detected: Sequence[str] = (),
    refund_credit_account: str | None = None,
) -> str:
    """User content for free-form bookkeeping text."""

    sections = [
        "Chart of Accounts (MUST use these exact account names):",
        render_chart(registry),
        "",
        f"User message: {text.strip()}",
    ]
    if refund_credit_account:
        sections.append(
            f"Refunds without a better chart match: credit {refund_credit_account}."
        )
    if detected:
        sections.extend(["", "Detected in message:", *(f"- {d}" for d in detected)])
    return "\n".join(sections)


__all__ = [
    "build_group_content",
    "build_system_instructions",
    "build_text_content",
    "build_transaction_content",
    "render_chain_info",
    "render_chart",
    "render_transaction",
    "render_transactions",
]
