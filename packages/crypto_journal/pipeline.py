"""Pipeline orchestration: chain data in, priced journal batches out.

Public API:
    - :class:`JournalPipeline` with :meth:`~JournalPipeline.analyze_transaction_hash`,
      :meth:`~JournalPipeline.analyze_wallet` and :meth:`~JournalPipeline.analyze_text`
    - :class:`WalletAnalysisOptions`
    - :func:`build_summary`

One pipeline instance serves one configuration. Within a call the only
parallel step is the explorer's three-feed wallet fetch; categories are sent to
the LLM one after another. Failures degrade into the returned result except for
configuration errors and a failing single-hash fetch, which raise.
"""

from __future__ import annotations

import hashlib
import json
import re
from collections.abc import Iterable, Sequence
from dataclasses import asdict, dataclass, field
from datetime import UTC, date, datetime
from decimal import Decimal
from typing import Any

from db.client import session_scope

from .accounts import AccountRegistry, load_registry, missing_account_names
from .categorizer import categorize_transactions
from .config import Settings
from .errors import ConfigError
from .explorer import ExplorerClient
from .logging_setup import get_logger
from .models import (
    Category,
    ChainInfo,
    JournalBatch,
    PricedLine,
    Provenance,
    SaveResult,
    Transaction,
    ValidatedLine,
    WalletFetchOptions,
    WalletFetchResult,
    WalletSummary,
)
from .parsing import TransactionDetails, extract_transaction_details
from .persistence import record_chain_transaction, save_batch
from .pricing import PriceOracleClient
from .proposer import JournalProposer
from .validator import LineValidator

_logger = get_logger("crypto_journal.pipeline")

DEFAULT_LIMIT = 100
LOW_CONFIDENCE_THRESHOLD = 0.7
SHORT_NARRATIVE_CHARS = 20
AUTOMATION_THRESHOLD = 50

_WALLET_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")


# ---- Options and results -----------------------------------------------------


@dataclass(frozen=True, slots=True)
class WalletAnalysisOptions:
    """Filters and switches for a wallet-bulk run.

    ``limit`` is applied after every other filter.
    """

    start_date: date | None = None
    end_date: date | None = None
    categories: frozenset[Category] | None = None
    min_value: float | None = None
    limit: int = DEFAULT_LIMIT
    include_tokens: bool = True
    include_internal: bool = True
    include_failed: bool = False
    save_entries: bool = True
    start_block: int | None = None
    end_block: int | None = None
    page: int = 1
    offset: int = 100
    sort: str = "desc"

    def __post_init__(self) -> None:
        if self.limit < 1:
            raise ValueError("limit must be a positive integer")
        if self.start_date and self.end_date and self.start_date > self.end_date:
            raise ValueError("start_date must not be after end_date")

    def fetch_options(self) -> WalletFetchOptions:
        return WalletFetchOptions(
            start_block=self.start_block,
            end_block=self.end_block,
            page=self.page,
            offset=self.offset,
            sort=self.sort,
            include_tokens=self.include_tokens,
            include_internal=self.include_internal,
            include_failed=self.include_failed,
        )

    def as_dict(self) -> dict[str, Any]:
        out = asdict(self)
        out["categories"] = sorted(c.value for c in self.categories) if self.categories else None
        return out


def options_digest(options: Any) -> str:
    """Stable SHA-256 over a JSON rendering of ``options``."""

    payload = json.dumps(options, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


@dataclass(slots=True)
class CategoryOutcome:
    category: Category
    transactions: int
    journal_entries: int = 0
    success: bool = True
    error: str | None = None
    dropped: int = 0


@dataclass(slots=True)
class HashAnalysisResult:
    transaction: Transaction
    batch: JournalBatch
    error: str | None = None
    dropped: int = 0
    save: SaveResult | None = None
    chain_transaction_id: int | None = None


@dataclass(slots=True)
class WalletAnalysisResult:
    wallet: str
    fetch: WalletFetchResult
    processed: list[Transaction]
    categories: list[CategoryOutcome]
    batch: JournalBatch
    summary: dict[str, Any] = field(default_factory=dict)
    save: SaveResult | None = None


@dataclass(slots=True)
class TextAnalysisResult:
    details: TransactionDetails
    batch: JournalBatch | None
    error: str | None = None
    dropped: int = 0
    save: SaveResult | None = None
    delegated: HashAnalysisResult | None = None


# ---- Pure helpers ------------------------------------------------------------


def transaction_value(tx: Transaction) -> Decimal:
    """Largest decimal amount moved by ``tx`` (native or any token)."""

    values = [tx.native_value] + [t.decimal_amount for t in tx.token_transfers]
    return max(values)


def filter_transactions(
    transactions: Sequence[Transaction], options: WalletAnalysisOptions
) -> list[Transaction]:
    """Apply date range, category allow-list and minimum value, then the limit."""

    out: list[Transaction] = []
    for tx in transactions:
        if options.start_date or options.end_date:
            if tx.timestamp is None:
                continue
            day = tx.timestamp.astimezone(UTC).date()
            if options.start_date and day < options.start_date:
                continue
            if options.end_date and day > options.end_date:
                continue
        if options.categories and tx.category not in options.categories:
            continue
        if options.min_value is not None and transaction_value(tx) < Decimal(str(options.min_value)):
            continue
        out.append(tx)
    return out[: options.limit]


def group_by_category(transactions: Iterable[Transaction]) -> dict[Category, list[Transaction]]:
    """Group in first-appearance order of each category."""

    groups: dict[Category, list[Transaction]] = {}
    for tx in transactions:
        groups.setdefault(tx.category or Category.UNKNOWN, []).append(tx)
    return groups


def _summary_dict(summary: WalletSummary) -> dict[str, Any]:
    return {
        "total": summary.total,
        "categories": dict(summary.categories),
        "directions": dict(summary.directions),
        "tokens": dict(summary.tokens),
        "time_range": {
            "earliest": summary.earliest.isoformat() if summary.earliest else None,
            "latest": summary.latest.isoformat() if summary.latest else None,
        },
        "volume": {
            "incoming": str(summary.volume_incoming),
            "outgoing": str(summary.volume_outgoing),
        },
    }


def build_summary(
    *,
    fetched: int,
    processed: int,
    outcomes: Sequence[CategoryOutcome],
    lines: Sequence[ValidatedLine],
) -> dict[str, Any]:
    """Counts, IFRS heuristics and recommendations for a wallet run."""

    total_categories = len(outcomes)
    succeeded = sum(1 for o in outcomes if o.success)
    success_rate = 100.0 if total_categories == 0 else round(100.0 * succeeded / total_categories, 2)

    confidences = [ln.confidence for ln in lines]
    low_confidence = sum(1 for c in confidences if c < LOW_CONFIDENCE_THRESHOLD)
    short_narratives = sum(1 for ln in lines if len(ln.narrative.strip()) < SHORT_NARRATIVE_CHARS)
    issues: list[str] = []
    if low_confidence:
        issues.append(f"{low_confidence} journal entries have confidence below {LOW_CONFIDENCE_THRESHOLD}")
    if short_narratives:
        issues.append(f"{short_narratives} journal entries have narratives shorter than {SHORT_NARRATIVE_CHARS} characters")

    recommendations: list[str] = []
    for o in outcomes:
        if o.transactions > AUTOMATION_THRESHOLD:
            recommendations.append(
                f"High volume of {o.category.value} transactions ({o.transactions}); "
                "consider automated journal rules for this category"
            )
        if not o.success:
            recommendations.append(
                f"Manual review required for {o.category.value} transactions: {o.error}"
            )
    missing = missing_account_names([s for ln in lines for s in ln.suggestions])
    if missing:
        recommendations.append("Create missing accounts: " + ", ".join(missing))

    return {
        "wallet_analysis": {
            "total_transactions_fetched": fetched,
            "total_transactions_processed": processed,
            "total_journal_entries_generated": len(lines),
            "processing_success_rate": success_rate,
        },
        "category_breakdown": {
            o.category.value: {
                "transactions": o.transactions,
                "journal_entries": o.journal_entries,
                "success": o.success,
                "error": o.error,
            }
            for o in outcomes
        },
        "ifrs_compliance": {
            "confidence_score": round(sum(confidences) / len(confidences), 4) if confidences else None,
            "low_confidence_count": low_confidence,
            "short_narrative_count": short_narratives,
            "issues": issues,
        },
        "recommendations": recommendations,
    }


def _transaction_payload(tx: Transaction, chain: ChainInfo) -> dict[str, Any]:
    return {
        "hash": tx.hash,
        "from": tx.from_address,
        "to": tx.to_address,
        "value": str(tx.native_value),
        "status": tx.status.value,
        "gas_used": tx.gas_used,
        "gas_price": tx.gas_price,
        "block_number": tx.block_number,
        "timestamp": tx.timestamp.isoformat() if tx.timestamp else None,
        "method": tx.method_selector,
        "category": tx.category.value if tx.category else None,
        "chain": {"id": chain.chain_id, "name": chain.name, "native_symbol": chain.native_symbol},
        "token_transfers": [
            {
                "symbol": t.token_symbol,
                "name": t.token_name,
                "decimals": t.decimals,
                "contract": t.contract_address,
                "from": t.from_address,
                "to": t.to_address,
                "raw_amount": str(t.raw_amount),
                "amount": str(t.decimal_amount),
            }
            for t in tx.token_transfers
        ],
    }


# ---- Orchestrator ------------------------------------------------------------


class JournalPipeline:
    """Wire gateway, categorizer, proposer, validator, pricing and persistence.

    Collaborators may be injected (tests pass stubbed clients); otherwise they
    are built from ``settings``. The chart snapshot is loaded once here and
    shared by every call on this instance.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        explorer: ExplorerClient | None = None,
        oracle: PriceOracleClient | None = None,
        registry: AccountRegistry | None = None,
        proposer: JournalProposer | None = None,
    ) -> None:
        settings.require_llm_key()
        self._settings = settings
        self._explorer = explorer or ExplorerClient(settings)
        self._oracle = oracle or PriceOracleClient(settings)
        self._registry = registry or load_registry(database_url=settings.database_url)
        self._proposer = proposer or JournalProposer(settings, self._registry, self._explorer.chain)
        self._validator = LineValidator(self._registry, self._explorer.chain, settings)

    @property
    def chain(self) -> ChainInfo:
        return self._explorer.chain

    @property
    def registry(self) -> AccountRegistry:
        return self._registry

    def close(self) -> None:
        self._explorer.close()
        self._oracle.close()

    def __enter__(self) -> JournalPipeline:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    # -- shared steps ----------------------------------------------------------

    def _require_sink(self, user_id: str | None) -> None:
        if user_id and not self._settings.database_url:
            raise ConfigError("DATABASE_URL is not set; cannot save journal entries")

    def _price(self, lines: Iterable[ValidatedLine], category: Category | None) -> list[PricedLine]:
        return [
            PricedLine(
                line=ln,
                usd=self._oracle.price_journal_line(ln.currency, ln.amount, ln.narrative),
                category=category,
            )
            for ln in lines
        ]

    def _provenance(self, kind: str, source_id: str, options: Any, *, bulk: bool) -> Provenance:
        return Provenance(
            source_kind=kind,
            source_id=source_id,
            analysis_timestamp=datetime.now(UTC),
            options_digest=options_digest(options),
            bulk=bulk,
        )

    # -- E1 --------------------------------------------------------------------

    def analyze_transaction_hash(
        self, tx_hash: str, *, hint: str | None = None, user_id: str | None = None
    ) -> HashAnalysisResult:
        """Fetch one transaction, draft, validate and price its journal lines.

        Raises ``NotFoundError``/``UpstreamError`` when the transaction cannot
        be fetched.
        """

        self._require_sink(user_id)
        fetched = self._explorer.fetch_one(tx_hash)
        tx = categorize_transactions([fetched])[0]
        _logger.info("pipeline:hash_start hash=%s category=%s", tx.hash, tx.category)

        proposed = self._proposer.propose_for_transaction(tx, hint=hint)
        validated = self._validator.validate(proposed.proposals, chain_sourced=True)
        batch = JournalBatch(
            provenance=self._provenance("hash", tx.hash, {"hash": tx.hash, "hint": hint}, bulk=False),
            lines=self._price(validated.lines, tx.category),
            chain=self.chain,
        )
        result = HashAnalysisResult(
            transaction=tx,
            batch=batch,
            error=proposed.error,
            dropped=proposed.dropped + validated.dropped,
        )

        if user_id:
            with session_scope(database_url=self._settings.database_url) as session:
                result.chain_transaction_id = record_chain_transaction(
                    session,
                    txid=tx.hash,
                    payload=_transaction_payload(tx, self.chain),
                    status="failed" if proposed.error else "processed",
                    user_id=user_id,
                    description=hint,
                )
            if batch.lines:
                result.save = save_batch(
                    batch,
                    user_id=user_id,
                    source="blockchain_analysis",
                    transaction_id=result.chain_transaction_id,
                    database_url=self._settings.database_url,
                )
        _logger.info(
            "pipeline:hash_done hash=%s lines=%d dropped=%d error=%s",
            tx.hash,
            len(batch.lines),
            result.dropped,
            result.error,
        )
        return result

    # -- E2 --------------------------------------------------------------------

    def analyze_wallet(
        self,
        wallet: str,
        options: WalletAnalysisOptions | None = None,
        *,
        user_id: str | None = None,
    ) -> WalletAnalysisResult:
        """Bulk-analyze a wallet: fetch, filter, group, draft per category, price."""

        if not _WALLET_RE.match(wallet or ""):
            raise ValueError(f"not a wallet address: {wallet!r}")
        options = options or WalletAnalysisOptions()
        save = bool(user_id and options.save_entries)
        if save:
            self._require_sink(user_id)

        fetch = self._explorer.fetch_wallet(wallet, options.fetch_options())
        processed = filter_transactions(fetch.transactions, options)
        groups = group_by_category(processed)
        _logger.info(
            "pipeline:wallet_start wallet=%s fetched=%d processed=%d categories=%d",
            wallet,
            len(fetch.transactions),
            len(processed),
            len(groups),
        )

        outcomes: list[CategoryOutcome] = []
        priced: list[PricedLine] = []
        all_lines: list[ValidatedLine] = []
        for category, txs in groups.items():
            outcome = CategoryOutcome(category=category, transactions=len(txs))
            proposed = self._proposer.propose_for_group(category, txs, wallet=wallet)
            if proposed.error is not None:
                outcome.success = False
                outcome.error = proposed.error
                _logger.warning(
                    "pipeline:category_failed category=%s error=%s", category.value, proposed.error
                )
            else:
                validated = self._validator.validate(proposed.proposals, chain_sourced=True)
                outcome.journal_entries = len(validated.lines)
                outcome.dropped = proposed.dropped + validated.dropped
                all_lines.extend(validated.lines)
                priced.extend(self._price(validated.lines, category))
            outcomes.append(outcome)

        batch = JournalBatch(
            provenance=self._provenance(
                "wallet", wallet, {"wallet": wallet, **options.as_dict()}, bulk=True
            ),
            lines=priced,
            chain=self.chain,
        )
        summary = build_summary(
            fetched=len(fetch.transactions),
            processed=len(processed),
            outcomes=outcomes,
            lines=all_lines,
        )
        summary["wallet_summary"] = _summary_dict(fetch.summary)
        if fetch.feed_errors:
            summary["feed_errors"] = dict(fetch.feed_errors)

        result = WalletAnalysisResult(
            wallet=wallet,
            fetch=fetch,
            processed=processed,
            categories=outcomes,
            batch=batch,
            summary=summary,
        )
        if save and batch.lines:
            result.save = save_batch(
                batch,
                user_id=user_id,
                source="bulk_analysis",
                database_url=self._settings.database_url,
            )
            summary["saved_entries"] = result.save.saved_count
        _logger.info(
            "pipeline:wallet_done wallet=%s lines=%d success_rate=%s",
            wallet,
            len(batch.lines),
            summary["wallet_analysis"]["processing_success_rate"],
        )
        return result

    # -- E3 --------------------------------------------------------------------

    def analyze_text(self, text: str, *, user_id: str | None = None) -> TextAnalysisResult:
        """Journal lines from free-form text; delegates to E1 when it names a hash."""

        if not text or not text.strip():
            raise ValueError("text must not be empty")
        details = extract_transaction_details(text)
        if details.transaction_hash:
            delegated = self.analyze_transaction_hash(
                details.transaction_hash, hint=text, user_id=user_id
            )
            return TextAnalysisResult(
                details=details,
                batch=delegated.batch,
                error=delegated.error,
                dropped=delegated.dropped,
                save=delegated.save,
                delegated=delegated,
            )

        self._require_sink(user_id)
        proposed = self._proposer.propose_from_text(text, details)
        validated = self._validator.validate(proposed.proposals)
        batch = JournalBatch(
            provenance=self._provenance(
                "text", options_digest(text)[:16], {"text": text}, bulk=False
            ),
            lines=self._price(validated.lines, None),
            chain=self.chain,
        )
        result = TextAnalysisResult(
            details=details,
            batch=batch,
            error=proposed.error,
            dropped=proposed.dropped + validated.dropped,
        )
        if user_id and batch.lines:
            result.save = save_batch(
                batch, user_id=user_id, source="ai_chat", database_url=self._settings.database_url
            )
        return result


__all__ = [
    "CategoryOutcome",
    "HashAnalysisResult",
    "JournalPipeline",
    "TextAnalysisResult",
    "WalletAnalysisOptions",
    "WalletAnalysisResult",
    "build_summary",
    "filter_transactions",
    "group_by_category",
    "options_digest",
    "transaction_value",
]
