"""Chart-of-accounts registry.

The pipeline works against an immutable :class:`AccountRegistry` snapshot
loaded once per invocation (:func:`load_registry`). Resolution is a pure read:
unknown names produce an :class:`~crypto_journal.models.AccountSuggestion`,
never a new row. Account creation (:func:`create_account`) is a separate,
explicit operation used by the CLI review flow.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Sequence

from db.client import session_scope
from db.models.ledger import AccountCategory, LedgerAccount
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from .logging_setup import get_logger
from .models import Account, AccountPair, AccountSuggestion, AccountType

_logger = get_logger("crypto_journal.accounts")

# Category code -> account code range
_CATEGORY_RANGES: dict[str, str] = {
    "1000": "1000-1499",
    "1500": "1500-1799",
    "1800": "1800-1899",
    "2000": "2000-2499",
    "2500": "2500-2999",
    "3000": "3000-3999",
    "4000": "4000-4999",
    "5000": "5000-5999",
    "6000": "6000-6999",
}

_DEFAULT_CATEGORY_FOR_TYPE: dict[AccountType, str] = {
    AccountType.ASSET: "1000",
    AccountType.LIABILITY: "2000",
    AccountType.EQUITY: "3000",
    AccountType.REVENUE: "4000",
    AccountType.EXPENSE: "5000",
}

_SUB_TYPES: dict[tuple[AccountType, str], str] = {
    (AccountType.ASSET, "1000"): "CURRENT_ASSET",
    (AccountType.ASSET, "1500"): "NON_CURRENT_ASSET",
    (AccountType.ASSET, "1800"): "DIGITAL_ASSET",
    (AccountType.LIABILITY, "2000"): "CURRENT_LIABILITY",
    (AccountType.LIABILITY, "2500"): "NON_CURRENT_LIABILITY",
    (AccountType.EXPENSE, "5000"): "OPERATING_EXPENSE",
    (AccountType.EXPENSE, "6000"): "FINANCIAL_EXPENSE",
}

_WORD_RE = re.compile(r"[a-z0-9]+")


def _key(name: str) -> str:
    return " ".join(name.split()).casefold()


def _has(text: str, *needles: str) -> bool:
    return any(n in text for n in needles)


def _coerce_type(assumed: AccountType | str | None) -> AccountType | None:
    if assumed is None:
        return None
    if isinstance(assumed, AccountType):
        return assumed
    try:
        return AccountType(str(assumed).strip().upper())
    except ValueError:
        return None


def suggest_account(name: str, assumed_type: AccountType | str | None = None) -> AccountSuggestion:
    """Deterministically propose type and code range for an unknown account.

    Keyword rules, first match wins:

    - expense/cost/fee -> EXPENSE; financial (6000) when the name mentions
      gas, transaction, exchange or interest, else operating (5000)
    - revenue/income/earning -> REVENUE (4000)
    - payable/owed/liability/loan -> LIABILITY (2000)
    - digital asset/token/crypto -> ASSET, digital assets (1800)
    - receivable/asset/cash/bank -> ASSET, current (1000)
    - equity/capital/retained -> EQUITY (3000)

    Otherwise ``assumed_type`` decides, falling back to a current asset.
    """

    text = name.casefold()
    assumed = _coerce_type(assumed_type)

    if _has(text, "expense", "cost", "fee"):
        account_type = AccountType.EXPENSE
        if _has(text, "gas", "transaction", "exchange", "interest"):
            category, ifrs = "6000", "IFRS 9"
        else:
            category, ifrs = "5000", "IAS 1"
    elif _has(text, "revenue", "income", "earning"):
        account_type, category, ifrs = AccountType.REVENUE, "4000", "IFRS 15"
    elif _has(text, "payable", "owed", "liabilit", "loan"):
        account_type, category, ifrs = AccountType.LIABILITY, "2000", "IAS 1"
    elif _has(text, "digital asset", "token", "crypto"):
        account_type, category, ifrs = AccountType.ASSET, "1800", "IAS 38"
    elif _has(text, "receivable", "asset", "cash", "bank"):
        account_type, category, ifrs = AccountType.ASSET, "1000", "IFRS 9"
    elif _has(text, "equity", "capital", "retained"):
        account_type, category, ifrs = AccountType.EQUITY, "3000", "IAS 1"
    elif assumed is not None:
        account_type = assumed
        category = _DEFAULT_CATEGORY_FOR_TYPE[assumed]
        ifrs = "IFRS 15" if assumed is AccountType.REVENUE else "IAS 1"
    else:
        account_type, category, ifrs = AccountType.ASSET, "1000", "IAS 1"

    return AccountSuggestion(
        name=" ".join(name.split()),
        account_type=account_type,
        category_code=category,
        code_range=_CATEGORY_RANGES[category],
        description=f"{' '.join(name.split())} account",
        ifrs_reference=ifrs,
    )


class AccountRegistry:
    """Read-only snapshot of the active chart of accounts."""

    __slots__ = ("_accounts", "_by_key")

    def __init__(self, accounts: Iterable[Account]) -> None:
        active = [a for a in accounts if a.is_active]
        self._accounts: tuple[Account, ...] = tuple(sorted(active, key=lambda a: a.code))
        self._by_key: dict[str, Account] = {}
        for acct in self._accounts:
            self._by_key.setdefault(_key(acct.name), acct)

    def __len__(self) -> int:
        return len(self._accounts)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and _key(name) in self._by_key

    def list_chart(self) -> list[Account]:
        return list(self._accounts)

    def chart_by_category(self) -> dict[str, list[Account]]:
        """Accounts grouped by category label, in code order."""

        grouped: dict[str, list[Account]] = {}
        for acct in self._accounts:
            grouped.setdefault(acct.category_name or "Other", []).append(acct)
        return grouped

    def resolve(self, name: str) -> Account | None:
        if not name or not name.strip():
            return None
        return self._by_key.get(_key(name))

    def resolve_pair(self, debit_name: str, credit_name: str) -> AccountPair:
        return AccountPair(debit=self.resolve(debit_name), credit=self.resolve(credit_name))

    def find_similar(self, name: str, limit: int = 3) -> list[Account]:
        """Rank accounts by shared (or contained) words with ``name``."""

        wanted = _WORD_RE.findall(name.casefold())
        if not wanted:
            return []
        scored: list[tuple[int, str, Account]] = []
        for acct in self._accounts:
            words = _WORD_RE.findall(acct.name.casefold())
            score = sum(1 for w in wanted for a in words if w in a or a in w)
            if score > 0:
                scored.append((-score, acct.code, acct))
        scored.sort()
        return [a for _, _, a in scored[:limit]]

    def suggest(
        self, name: str, assumed_type: AccountType | str | None = None
    ) -> AccountSuggestion:
        return suggest_account(name, assumed_type)


# ---- Database access ---------------------------------------------------------


def _to_account(row: LedgerAccount, category: AccountCategory | None) -> Account:
    return Account(
        code=row.code,
        name=row.name,
        account_type=AccountType(row.account_type),
        sub_type=row.sub_type,
        category_code=category.code if category is not None else None,
        category_name=category.name if category is not None else None,
        is_active=bool(row.is_active),
        ifrs_reference=row.ifrs_reference,
    )


def list_accounts(session: Session) -> list[Account]:
    rows = session.execute(
        select(LedgerAccount, AccountCategory)
        .join(AccountCategory, LedgerAccount.category_id == AccountCategory.id, isouter=True)
        .where(LedgerAccount.is_active.is_(True))
        .order_by(func.coalesce(LedgerAccount.sort_order, 100_000), LedgerAccount.code)
    ).all()
    return [_to_account(acct, cat) for acct, cat in rows]


def load_registry(*, database_url: str | None = None) -> AccountRegistry:
    """Load the active chart into an in-memory registry snapshot."""

    with session_scope(database_url=database_url) as session:
        accounts = list_accounts(session)
    if not accounts:
        raise RuntimeError("chart of accounts is empty; run the ledger migrations first")
    _logger.info("accounts:registry_loaded accounts=%d", len(accounts))
    return AccountRegistry(accounts)


def _next_code(session: Session, category: AccountCategory) -> str:
    codes = session.execute(
        select(LedgerAccount.code).where(LedgerAccount.category_id == category.id)
    ).scalars()
    numeric = [int(c) for c in codes if c and c.isdigit()]
    if numeric:
        return str(max(numeric) + 1)
    return category.code[:-1] + "1" if category.code.endswith("0") else category.code + "1"


def create_account(
    session: Session,
    *,
    name: str,
    account_type: AccountType | str,
    category_code: str,
    description: str | None = None,
    ifrs_reference: str = "IAS 1",
) -> Account:
    """Create an account under ``category_code``.

    The new code is the highest numeric code already in the category plus
    one, or the category's first slot (e.g. ``5001``) when it is empty. Raises
    ``ValueError`` when the category is unknown or the name already exists.
    """

    clean = " ".join(name.split())
    if not clean:
        raise ValueError("Account name cannot be empty")
    acct_type = _coerce_type(account_type)
    if acct_type is None:
        raise ValueError(f"Invalid account type: {account_type!r}")

    category = session.execute(
        select(AccountCategory).where(
            AccountCategory.code == category_code, AccountCategory.type == acct_type.value
        )
    ).scalar_one_or_none()
    if category is None:
        raise ValueError(f"Category {category_code} with type {acct_type.value} not found")

    clash = session.execute(
        select(LedgerAccount).where(func.lower(LedgerAccount.name) == clean.lower())
    ).scalar_one_or_none()
    if clash is not None:
        raise ValueError(f"Account '{clash.name}' already exists (code {clash.code})")

    code = _next_code(session, category)
    row = LedgerAccount(
        code=code,
        name=clean,
        account_type=acct_type.value,
        sub_type=_SUB_TYPES.get((acct_type, category.code), acct_type.value),
        category_id=category.id,
        description=description or f"{clean} account",
        ifrs_reference=ifrs_reference,
        is_active=True,
        is_system_account=False,
        sort_order=int(code) if code.isdigit() else None,
    )
    session.add(row)
    session.flush()
    _logger.info(
        "accounts:created code=%s name=%s type=%s category=%s",
        code,
        clean,
        acct_type.value,
        category.code,
    )
    return _to_account(row, category)


def missing_account_names(suggestions: Sequence[AccountSuggestion]) -> list[str]:
    """Unique suggestion names in first-seen order."""

    return list(dict.fromkeys(s.name for s in suggestions))


__all__ = [
    "AccountRegistry",
    "create_account",
    "list_accounts",
    "load_registry",
    "missing_account_names",
    "suggest_account",
]
