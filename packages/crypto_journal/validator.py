"""Validation of proposals against the chart of accounts.

Per proposal, in order:

1. gas-line correction (chain-sourced batches only): gas is paid in the
   configured chain's native coin out of its digital-asset account;
2. canonicalize both account names through the registry, attaching a
   creation suggestion for any side that does not resolve;
3. re-check the amount range;
4. reject lines whose debit and credit are the same account.

Dropped lines are logged and counted. Lines are independent: there is no
cross-line balancing.
"""

from __future__ import annotations

import re
from collections.abc import Iterable

from .accounts import AccountRegistry
from .config import Settings
from .logging_setup import get_logger
from .models import (
    AccountSuggestion,
    AccountType,
    ChainInfo,
    JournalProposal,
    ValidatedLine,
    ValidationResult,
)
from .parsing import within_bounds

_logger = get_logger("crypto_journal.validator")

# Native coins of the chains we know; a gas line in one of these on another
# chain is the model confusing networks.
NATIVE_SYMBOLS: frozenset[str] = frozenset({"ETH", "C2FLR", "FLR", "CFLR"})
GAS_EXPENSE_ACCOUNT = "Transaction Fees"
_PLACEHOLDER_GAS_CURRENCY = "GAS"
_GAS_RE = re.compile(r"\bgas\b", re.IGNORECASE)
_BANK_RE = re.compile(r"\b(bank|cash)\b", re.IGNORECASE)


def is_gas_line(proposal: JournalProposal) -> bool:
    """A line paying network gas: it says "gas" or debits the gas expense account."""

    if proposal.debit_account.strip().casefold() == GAS_EXPENSE_ACCOUNT.casefold():
        return True
    return bool(_GAS_RE.search(proposal.narrative) or _GAS_RE.search(proposal.debit_account))


def correct_gas_line(
    proposal: JournalProposal, chain: ChainInfo
) -> tuple[JournalProposal, list[str]]:
    """Rewrite currency and funding account of a gas line for ``chain``.

    Only the ``GAS`` placeholder or another known chain's native coin is
    rewritten; any other currency is left as proposed.
    """

    if not is_gas_line(proposal):
        return proposal, []

    update: dict[str, str] = {}
    notes: list[str] = []
    currency = proposal.currency.upper()
    if currency != chain.native_symbol and (
        currency == _PLACEHOLDER_GAS_CURRENCY or currency in NATIVE_SYMBOLS
    ):
        update["currency"] = chain.native_symbol
        notes.append(f"gas currency {currency} -> {chain.native_symbol}")
    if _BANK_RE.search(proposal.credit_account):
        update["credit_account"] = chain.native_account
        notes.append(f"gas credit {proposal.credit_account} -> {chain.native_account}")
    if not update:
        return proposal, []
    return proposal.model_copy(update=update), notes


class LineValidator:
    """Reconcile proposals with a registry snapshot."""

    def __init__(self, registry: AccountRegistry, chain: ChainInfo, settings: Settings) -> None:
        self._registry = registry
        self._chain = chain
        self._floor = settings.amount_floor
        self._ceiling = settings.amount_ceiling

    def _missing_message(self, side: str, name: str) -> str:
        similar = self._registry.find_similar(name)
        msg = f"{side} account '{name}' not found in chart of accounts"
        if similar:
            msg += ". Did you mean: " + ", ".join(a.name for a in similar) + "?"
        return msg

    def validate_one(
        self, proposal: JournalProposal, *, chain_sourced: bool = False
    ) -> ValidatedLine | None:
        """Validated line for ``proposal``, or ``None`` when it is dropped.

        Gas correction applies only to ``chain_sourced`` lines; free-text
        entries carry no network fees.
        """

        corrected, notes = (
            correct_gas_line(proposal, self._chain) if chain_sourced else (proposal, [])
        )
        if notes:
            _logger.info("validator:gas_corrected %s", "; ".join(notes))

        pair = self._registry.resolve_pair(corrected.debit_account, corrected.credit_account)
        debit_name = pair.debit.name if pair.debit else corrected.debit_account
        credit_name = pair.credit.name if pair.credit else corrected.credit_account

        debit_suggestion: AccountSuggestion | None = None
        credit_suggestion: AccountSuggestion | None = None
        errors: list[str] = []
        if pair.debit is None:
            # Unknown debit names are most often business expenses.
            debit_suggestion = self._registry.suggest(debit_name, AccountType.EXPENSE)
            errors.append(self._missing_message("Debit", debit_name))
        if pair.credit is None:
            # Unknown credit names are most often unpaid liabilities.
            credit_suggestion = self._registry.suggest(credit_name, AccountType.LIABILITY)
            errors.append(self._missing_message("Credit", credit_name))

        if not within_bounds(corrected.amount, self._floor, self._ceiling):
            _logger.info(
                "validator:line_dropped reason=amount_out_of_bounds amount=%s", corrected.amount
            )
            return None
        if debit_name.casefold() == credit_name.casefold():
            _logger.info("validator:line_dropped reason=same_account account=%s", debit_name)
            return None

        return ValidatedLine(
            proposal=proposal,
            debit_account=debit_name,
            credit_account=credit_name,
            amount=corrected.amount,
            currency=corrected.currency,
            narrative=corrected.narrative,
            confidence=corrected.confidence,
            transaction_date=corrected.transaction_date,
            ifrs_reference=corrected.ifrs_reference,
            transaction_hash=corrected.transaction_hash,
            requires_account_creation=bool(debit_suggestion or credit_suggestion),
            debit_suggestion=debit_suggestion,
            credit_suggestion=credit_suggestion,
            validation_error="; ".join(errors) or None,
            corrections=tuple(notes),
        )

    def validate(
        self, proposals: Iterable[JournalProposal], *, chain_sourced: bool = False
    ) -> ValidationResult:
        lines: list[ValidatedLine] = []
        dropped = 0
        for p in proposals:
            line = self.validate_one(p, chain_sourced=chain_sourced)
            if line is None:
                dropped += 1
            else:
                lines.append(line)
        if dropped:
            _logger.info("validator:done kept=%d dropped=%d", len(lines), dropped)
        return ValidationResult(lines=lines, dropped=dropped)


__all__ = [
    "GAS_EXPENSE_ACCOUNT",
    "LineValidator",
    "NATIVE_SYMBOLS",
    "correct_gas_line",
    "is_gas_line",
]
