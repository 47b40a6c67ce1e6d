"""Per-category journal templates.

A template gives the model a default reading of a transaction category: what
it usually means economically, which chart accounts it normally touches and
which IFRS guidance applies. Templates are hints for the prompt; the chart of
accounts remains authoritative.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, replace

from .config import DEFAULT_REFUND_CREDIT_ACCOUNT
from .models import Category


@dataclass(frozen=True, slots=True)
class CategoryTemplate:
    category: Category
    description: str
    debit_accounts: tuple[str, ...]
    credit_accounts: tuple[str, ...]
    ifrs_notes: str
    refund_credit_account: str = DEFAULT_REFUND_CREDIT_ACCOUNT

    def render(self) -> str:
        return (
            f"Category guidance ({self.category.value}): {self.description}\n"
            f"- Typical debit accounts: {', '.join(self.debit_accounts)}\n"
            f"- Typical credit accounts: {', '.join(self.credit_accounts)}\n"
            f"- IFRS notes: {self.ifrs_notes}\n"
            f"- Refunds without a better chart match: credit {self.refund_credit_account}"
        )


_TEMPLATES: tuple[CategoryTemplate, ...] = (
    CategoryTemplate(
        Category.NATIVE_TRANSFER,
        "Movement of the chain's native coin between addresses.",
        ("Digital Assets - <native>", "Transaction Fees"),
        ("Digital Assets - <native>", "Share Capital", "Trading Revenue"),
        "Native coins are intangible assets (IAS 38) measured at cost; gas is a "
        "transaction cost recognised in profit or loss.",
    ),
    CategoryTemplate(
        Category.TOKEN_TRANSFER,
        "ERC-20 token sent or received; the native value is usually zero.",
        ("Digital Assets - <token>", "Transaction Fees"),
        ("Digital Assets - <token>", "Digital Assets - <native>", "Share Capital"),
        "Record the token movement and the gas fee as separate lines. Gas is "
        "paid in the native coin, never in the token.",
    ),
    CategoryTemplate(
        Category.TOKEN_APPROVAL,
        "Allowance granted to a contract; no tokens move.",
        ("Transaction Fees",),
        ("Digital Assets - <native>",),
        "Only the gas fee has an accounting impact (IAS 1).",
    ),
    CategoryTemplate(
        Category.DEX_TRADE,
        "Swap of one digital asset for another on a decentralised exchange.",
        ("Digital Assets - <received token>", "Exchange Fees", "Transaction Fees"),
        ("Digital Assets - <sold token>", "Digital Assets - <native>"),
        "An exchange of dissimilar intangible assets measured at fair value "
        "(IAS 38); gains or losses go to Trading Revenue or Trading Losses.",
    ),
    CategoryTemplate(
        Category.LIQUIDITY_PROVISION,
        "Deposit of paired assets into a liquidity pool in exchange for LP tokens.",
        ("Digital Assets - Other", "Transaction Fees"),
        ("Digital Assets - <deposited token>", "Digital Assets - <native>"),
        "LP tokens are a separate intangible asset (IAS 38); derecognise the "
        "deposited assets.",
    ),
    CategoryTemplate(
        Category.LIQUIDITY_REMOVAL,
        "Redemption of LP tokens for the underlying assets plus accrued fees.",
        ("Digital Assets - <received token>", "Transaction Fees"),
        ("Digital Assets - Other", "Trading Revenue"),
        "Fee income earned in the pool is revenue (IFRS 15).",
    ),
    CategoryTemplate(
        Category.STAKING,
        "Staking deposit, withdrawal or reward claim.",
        ("Staked Assets", "Digital Assets - <native>", "Transaction Fees"),
        ("Digital Assets - <native>", "Staking Revenue", "Staked Assets"),
        "Staking deposits debit Staked Assets and credit the source token "
        "asset; rewards are Staking Revenue (IFRS 15).",
    ),
    CategoryTemplate(
        Category.LENDING,
        "Supply, borrow, repay or withdraw on a lending protocol.",
        ("Digital Assets - <token>", "Interest Expense", "Transaction Fees"),
        ("Loans Payable", "Interest Income", "Digital Assets - <token>"),
        "Borrowings are financial liabilities (IFRS 9); interest is recognised "
        "using the effective interest method.",
    ),
    CategoryTemplate(
        Category.NFT,
        "Purchase, sale or mint of a non-fungible token.",
        ("Digital Assets - Other", "Transaction Fees"),
        ("Digital Assets - <native>", "Trading Revenue"),
        "NFTs held are intangible assets (IAS 38) unless held for sale in the "
        "ordinary course of business (IAS 2).",
    ),
    CategoryTemplate(
        Category.CONTRACT_INTERACTION,
        "Generic contract call without a recognised token movement.",
        ("Transaction Fees",),
        ("Digital Assets - <native>",),
        "Usually only the gas fee is recognised (IAS 1).",
    ),
    CategoryTemplate(
        Category.UNKNOWN,
        "Transaction whose purpose could not be determined.",
        ("Transaction Fees", "Digital Assets - Other"),
        ("Digital Assets - <native>", "Accounts Payable"),
        "Flag for manual review; use low confidence.",
    ),
)

CATEGORY_TEMPLATES: Mapping[Category, CategoryTemplate] = {t.category: t for t in _TEMPLATES}


def category_templates(
    refund_credit_account: str = DEFAULT_REFUND_CREDIT_ACCOUNT,
) -> list[CategoryTemplate]:
    return [replace(t, refund_credit_account=refund_credit_account) for t in _TEMPLATES]


def template_for(
    category: Category | str | None,
    *,
    refund_credit_account: str = DEFAULT_REFUND_CREDIT_ACCOUNT,
) -> CategoryTemplate | None:
    if category is None:
        return None
    try:
        template = CATEGORY_TEMPLATES.get(Category(category))
    except ValueError:
        return None
    if template is None:
        return None
    return replace(template, refund_credit_account=refund_credit_account)


__all__ = ["CATEGORY_TEMPLATES", "CategoryTemplate", "category_templates", "template_for"]
