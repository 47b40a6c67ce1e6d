"""Data models shared by the pipeline components.

Chain-side records (:class:`Transaction`, :class:`TokenTransfer`) are frozen
dataclasses: components hand back new values via ``dataclasses.replace``
instead of mutating what they were given. LLM-side records
(:class:`JournalProposal`) are pydantic models so that untrusted model output
is validated at the boundary.
"""

from __future__ import annotations

import math
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import StrEnum
from typing import Any, NamedTuple

from pydantic import BaseModel, ConfigDict, field_validator

# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class Category(StrEnum):
    """Economic label assigned to a transaction by the categorizer."""

    NATIVE_TRANSFER = "native_transfer"
    TOKEN_TRANSFER = "token_transfer"
    TOKEN_APPROVAL = "token_approval"
    DEX_TRADE = "dex_trade"
    LIQUIDITY_PROVISION = "liquidity_provision"
    LIQUIDITY_REMOVAL = "liquidity_removal"
    STAKING = "staking"
    LENDING = "lending"
    NFT = "nft"
    CONTRACT_INTERACTION = "contract_interaction"
    UNKNOWN = "unknown"


class Direction(StrEnum):
    INCOMING = "incoming"
    OUTGOING = "outgoing"
    SELF = "self"
    INTERNAL = "internal"


class TxStatus(StrEnum):
    SUCCESS = "success"
    FAILED = "failed"


class AccountType(StrEnum):
    ASSET = "ASSET"
    LIABILITY = "LIABILITY"
    EQUITY = "EQUITY"
    REVENUE = "REVENUE"
    EXPENSE = "EXPENSE"


class UsdSource(StrEnum):
    """Which price path produced a USD valuation."""

    ORACLE = "oracle-contract"
    API = "external-api"
    MOCK = "mock"


# ---------------------------------------------------------------------------
# Chain data
# ---------------------------------------------------------------------------


def scale_down(raw: int, decimals: int) -> Decimal:
    """Return ``raw / 10**decimals`` exactly (no context rounding)."""

    digits = tuple(int(ch) for ch in str(abs(raw)))
    return Decimal((1 if raw < 0 else 0, digits, -decimals))


@dataclass(frozen=True, slots=True)
class TokenTransfer:
    """One ERC-20 style movement attached to a transaction.

    ``raw_amount`` is the integer amount in the token's smallest unit;
    :attr:`decimal_amount` is derived from it so the two can never disagree.
    """

    token_symbol: str
    token_name: str
    decimals: int
    contract_address: str
    from_address: str
    to_address: str
    raw_amount: int

    @property
    def decimal_amount(self) -> Decimal:
        return scale_down(self.raw_amount, self.decimals)


@dataclass(frozen=True, slots=True)
class Transaction:
    """A normalized transaction.

    ``native_value`` is already expressed in whole native units (wei / 1e18).
    ``category``, ``direction`` and ``is_user_initiated`` are filled in by the
    categorizer; the gateway leaves them unset.
    """

    hash: str
    from_address: str
    to_address: str | None
    native_value: Decimal
    status: TxStatus
    token_transfers: tuple[TokenTransfer, ...] = ()
    gas_used: int | None = None
    gas_price: int | None = None
    block_number: int | None = None
    timestamp: datetime | None = None
    method_selector: str | None = None
    chain_id: int | None = None
    category: Category | None = None
    direction: Direction | None = None
    is_user_initiated: bool = False
    # Which explorer feed produced the record (regular, token, internal, detail)
    source_feed: str = "regular"

    @property
    def gas_fee(self) -> Decimal | None:
        """Fee paid in native units, when both gas fields are known."""

        if self.gas_used is None or self.gas_price is None:
            return None
        return scale_down(self.gas_used * self.gas_price, 18)


@dataclass(frozen=True, slots=True)
class ChainInfo:
    """The chain a gateway is configured for."""

    chain_id: int | None
    name: str
    native_symbol: str
    native_account: str
    is_testnet: bool = False


@dataclass(frozen=True, slots=True)
class WalletFetchOptions:
    start_block: int | None = None
    end_block: int | None = None
    page: int = 1
    offset: int = 100
    sort: str = "desc"
    include_tokens: bool = True
    include_internal: bool = True
    include_failed: bool = False

    def __post_init__(self) -> None:
        if self.sort not in ("asc", "desc"):
            raise ValueError("sort must be 'asc' or 'desc'")
        if self.page < 1 or self.offset < 1:
            raise ValueError("page and offset must be positive")


@dataclass(frozen=True, slots=True)
class WalletSummary:
    total: int
    categories: Mapping[str, int]
    directions: Mapping[str, int]
    tokens: Mapping[str, int]
    earliest: datetime | None
    latest: datetime | None
    volume_incoming: Decimal
    volume_outgoing: Decimal


class WalletFetchResult(NamedTuple):
    transactions: list[Transaction]
    summary: WalletSummary
    # feed name -> error text for sub-queries that degraded to empty
    feed_errors: dict[str, str]


# ---------------------------------------------------------------------------
# Chart of accounts
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Account:
    code: str
    name: str
    account_type: AccountType
    sub_type: str | None = None
    category_code: str | None = None
    category_name: str | None = None
    is_active: bool = True
    ifrs_reference: str | None = None


@dataclass(frozen=True, slots=True)
class AccountSuggestion:
    """Deterministic proposal for an account that is missing from the chart."""

    name: str
    account_type: AccountType
    category_code: str
    code_range: str
    description: str
    ifrs_reference: str
    confidence: float = 0.7

    def as_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "type": self.account_type.value,
            "category_code": self.category_code,
            "code_range": self.code_range,
            "description": self.description,
            "ifrs_reference": self.ifrs_reference,
            "confidence": self.confidence,
        }


class AccountPair(NamedTuple):
    debit: Account | None
    credit: Account | None


# ---------------------------------------------------------------------------
# Journal lines
# ---------------------------------------------------------------------------


class JournalProposal(BaseModel):
    """A journal line as proposed by the LLM, before account validation."""

    model_config = ConfigDict(frozen=True, extra="forbid", str_strip_whitespace=True)

    debit_account: str
    credit_account: str
    amount: float
    currency: str
    narrative: str
    confidence: float = 0.8
    transaction_date: date | None = None
    ifrs_reference: str | None = None
    transaction_hash: str | None = None

    @field_validator("debit_account", "credit_account", "currency")
    @classmethod
    def _non_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("must be non-empty")
        return v

    @field_validator("currency")
    @classmethod
    def _upper_currency(cls, v: str) -> str:
        return v.upper()

    @field_validator("amount")
    @classmethod
    def _positive_finite(cls, v: float) -> float:
        if not math.isfinite(v) or v <= 0:
            raise ValueError("amount must be a positive finite number")
        return v

    @field_validator("confidence")
    @classmethod
    def _unit_interval(cls, v: float) -> float:
        if 0.0 <= v <= 1.0:
            return v
        raise ValueError("confidence must be within [0,1]")


@dataclass(frozen=True, slots=True)
class ValidatedLine:
    """A proposal after account reconciliation.

    ``debit_account``/``credit_account`` are canonical chart names when the
    registry knew them, otherwise the proposed names with a suggestion
    attached and ``requires_account_creation`` set.
    """

    proposal: JournalProposal
    debit_account: str
    credit_account: str
    amount: float
    currency: str
    narrative: str
    confidence: float
    transaction_date: date | None = None
    ifrs_reference: str | None = None
    transaction_hash: str | None = None
    requires_account_creation: bool = False
    debit_suggestion: AccountSuggestion | None = None
    credit_suggestion: AccountSuggestion | None = None
    validation_error: str | None = None
    corrections: tuple[str, ...] = ()

    @property
    def suggestions(self) -> list[AccountSuggestion]:
        return [s for s in (self.debit_suggestion, self.credit_suggestion) if s is not None]


@dataclass(frozen=True, slots=True)
class UsdValuation:
    """Result of pricing one line. All USD fields are ``None`` when unsupported."""

    supported: bool
    usd_value: float | None = None
    usd_rate: float | None = None
    usd_source: UsdSource | None = None
    usd_timestamp: datetime | None = None
    enhanced_narrative: str | None = None
    reason: str | None = None


UNPRICED = UsdValuation(supported=False)


@dataclass(frozen=True, slots=True)
class PricedLine:
    line: ValidatedLine
    usd: UsdValuation = UNPRICED
    category: Category | None = None


@dataclass(frozen=True, slots=True)
class Provenance:
    """Where a batch came from."""

    source_kind: str  # "wallet" | "hash" | "text"
    source_id: str
    analysis_timestamp: datetime
    options_digest: str
    bulk: bool = False


@dataclass(slots=True)
class JournalBatch:
    """Lines bound to one source. Owned by the orchestrator until persisted."""

    provenance: Provenance
    lines: list[PricedLine] = field(default_factory=list)
    chain: ChainInfo | None = None


class ProposalResult(NamedTuple):
    """What the proposer returns for one group: proposals or a fatal error."""

    proposals: list[JournalProposal]
    error: str | None = None
    dropped: int = 0


class ValidationResult(NamedTuple):
    lines: list[ValidatedLine]
    dropped: int = 0


class SaveResult(NamedTuple):
    """Outcome of persisting a batch; writes are independent per line."""

    saved_ids: list[int]
    failures: list[tuple[int, str]]

    @property
    def saved_count(self) -> int:
        return len(self.saved_ids)


type Transactions = Sequence[Transaction]


__all__ = [
    "Account",
    "AccountPair",
    "AccountSuggestion",
    "AccountType",
    "Category",
    "ChainInfo",
    "Direction",
    "JournalBatch",
    "JournalProposal",
    "PricedLine",
    "ProposalResult",
    "Provenance",
    "SaveResult",
    "TokenTransfer",
    "Transaction",
    "Transactions",
    "TxStatus",
    "UNPRICED",
    "UsdSource",
    "UsdValuation",
    "ValidatedLine",
    "ValidationResult",
    "WalletFetchOptions",
    "WalletFetchResult",
    "WalletSummary",
    "scale_down",
]
