"""Persistence of journal batches to the ledger database.

Functions here write journal lines and their parent chain transactions to
the shared database owned by ``libs/db``, through the ORM models in
``db.models.ledger`` and sessions from ``db.client``.

Scope:
- Upsert the parent ``chain_transactions`` row for an analyzed hash.
- Insert one ``journal_entries`` row per priced line. Each line commits in
  its own session; a failing line is recorded and the rest continue.
- Read back lines flagged for account creation and repoint them at the
  accounts a reviewer creates (CLI review flow).
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from datetime import UTC, date, datetime
from decimal import Decimal
from typing import Any

from db.client import session_scope
from db.models.ledger import ENTRY_SOURCES, ChainTransaction, JournalEntry
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .logging_setup import get_logger
from .models import JournalBatch, PricedLine, SaveResult

_logger = get_logger("crypto_journal.persistence")

_CONFIDENCE_STEP = Decimal("0.01")
_AMOUNT_STEP = Decimal("0.00000001")


def _decimal(value: float | Decimal | None, step: Decimal) -> Decimal | None:
    if value is None:
        return None
    return Decimal(str(value)).quantize(step)


def record_chain_transaction(
    session: Session,
    *,
    txid: str,
    payload: Mapping[str, Any],
    status: str = "processed",
    user_id: str | None = None,
    description: str | None = None,
) -> int:
    """Insert or update the parent row for ``txid``; return its id."""

    row = session.execute(
        select(ChainTransaction).where(ChainTransaction.txid == txid)
    ).scalar_one_or_none()
    if row is None:
        row = ChainTransaction(
            txid=txid,
            user_id=user_id,
            description=description,
            blockchain_data=dict(payload),
            status=status,
        )
        session.add(row)
    else:
        row.blockchain_data = dict(payload)
        row.status = status
        row.updated_at = func.now()
        if description:
            row.description = description
        if user_id and not row.user_id:
            row.user_id = user_id
    session.flush()
    _logger.info("persistence:chain_tx_recorded txid=%s id=%d status=%s", txid, row.id, status)
    return row.id


def _metadata(priced: PricedLine, batch: JournalBatch) -> dict[str, Any]:
    line = priced.line
    prov = batch.provenance
    return {
        "original_proposal": line.proposal.model_dump(mode="json"),
        "pricing_enhancement": {
            "supported": priced.usd.supported,
            "enhanced_narrative": priced.usd.enhanced_narrative,
            "reason": priced.usd.reason,
        },
        "provenance": {
            "source_kind": prov.source_kind,
            "source_id": prov.source_id,
            "analysis_timestamp": prov.analysis_timestamp.isoformat(),
            "chain": batch.chain.native_symbol if batch.chain else None,
        },
        "options_digest": prov.options_digest,
        "bulk_analysis": prov.bulk,
        "already_saved": True,
        "category": priced.category.value if priced.category else None,
        "transaction_hash": line.transaction_hash,
        "account_creation_suggestions": [s.as_dict() for s in line.suggestions],
        "validation_error": line.validation_error,
        "corrections": list(line.corrections),
    }


def _entry_row(
    priced: PricedLine,
    batch: JournalBatch,
    *,
    user_id: str | None,
    source: str,
    transaction_id: int | None,
    entry_date: date,
) -> JournalEntry:
    line = priced.line
    usd = priced.usd
    return JournalEntry(
        transaction_id=transaction_id,
        user_id=user_id,
        entry_date=entry_date,
        transaction_date=line.transaction_date,
        account_debit=line.debit_account,
        account_credit=line.credit_account,
        # Sign is carried by the debit/credit roles.
        amount=_decimal(abs(line.amount), _AMOUNT_STEP),
        currency=line.currency,
        narrative=line.narrative,
        ai_confidence=_decimal(line.confidence, _CONFIDENCE_STEP),
        ifrs_reference=line.ifrs_reference,
        source=source,
        is_reviewed=False,
        requires_account_creation=line.requires_account_creation,
        usd_value=_decimal(usd.usd_value, _AMOUNT_STEP) if usd.supported else None,
        usd_rate=_decimal(usd.usd_rate, _AMOUNT_STEP) if usd.supported else None,
        usd_source=usd.usd_source.value if usd.supported and usd.usd_source else None,
        usd_timestamp=usd.usd_timestamp if usd.supported else None,
        entry_metadata=_metadata(priced, batch),
    )


def _existing_transaction_id(transaction_id: int | None, database_url: str | None) -> int | None:
    if transaction_id is None:
        return None
    with session_scope(database_url=database_url) as session:
        found = session.get(ChainTransaction, transaction_id)
    if found is None:
        _logger.warning("persistence:transaction_unlinked transaction_id=%s", transaction_id)
        return None
    return transaction_id


def save_batch(
    batch: JournalBatch,
    *,
    user_id: str | None,
    source: str,
    transaction_id: int | None = None,
    database_url: str | None = None,
    entry_date: date | None = None,
) -> SaveResult:
    """Persist every line of ``batch``; writes are independent per line.

    A ``transaction_id`` that does not name an existing chain transaction is
    dropped (lines are saved unlinked). Failures are collected as
    ``(line_index, error)`` pairs.
    """

    if source not in ENTRY_SOURCES:
        raise ValueError(f"unknown journal entry source: {source!r}")

    link = _existing_transaction_id(transaction_id, database_url)
    day = entry_date or datetime.now(UTC).date()
    saved: list[int] = []
    failures: list[tuple[int, str]] = []
    for idx, priced in enumerate(batch.lines):
        try:
            with session_scope(database_url=database_url) as session:
                row = _entry_row(
                    priced,
                    batch,
                    user_id=user_id,
                    source=source,
                    transaction_id=link,
                    entry_date=day,
                )
                session.add(row)
                session.flush()
                saved.append(row.id)
        except SQLAlchemyError as e:
            _logger.error(
                "persistence:line_failed index=%d debit=%s credit=%s error=%s",
                idx,
                priced.line.debit_account,
                priced.line.credit_account,
                e.__class__.__name__,
            )
            failures.append((idx, f"{e.__class__.__name__}: {e}"))

    _logger.info(
        "persistence:batch_saved source=%s source_id=%s saved=%d failed=%d",
        source,
        batch.provenance.source_id,
        len(saved),
        len(failures),
    )
    return SaveResult(saved_ids=saved, failures=failures)


def flagged_entries(session: Session, *, user_id: str | None = None) -> list[JournalEntry]:
    """Journal entries that still reference accounts missing from the chart."""

    stmt = select(JournalEntry).where(JournalEntry.requires_account_creation.is_(True))
    if user_id is not None:
        stmt = stmt.where(JournalEntry.user_id == user_id)
    return list(session.execute(stmt.order_by(JournalEntry.id)).scalars())


def rename_entry_account(
    session: Session, entries: Sequence[JournalEntry], old_name: str, new_name: str
) -> int:
    """Point ``entries`` that use ``old_name`` on either side at ``new_name``.

    Used when a reviewer creates a suggested account under a different name.
    Returns the number of entries changed.
    """

    old_key = " ".join(old_name.split()).casefold()
    changed = 0
    for entry in entries:
        touched = False
        if " ".join(entry.account_debit.split()).casefold() == old_key:
            entry.account_debit = new_name
            touched = True
        if " ".join(entry.account_credit.split()).casefold() == old_key:
            entry.account_credit = new_name
            touched = True
        if touched:
            changed += 1
    if changed:
        session.flush()
        _logger.info(
            "persistence:account_renamed old=%r new=%r entries=%d", old_name, new_name, changed
        )
    return changed


def clear_creation_flag(session: Session, entry_ids: list[int]) -> int:
    """Clear ``requires_account_creation`` on entries whose accounts now exist."""

    count = 0
    for entry in session.execute(select(JournalEntry).where(JournalEntry.id.in_(entry_ids))).scalars():
        entry.requires_account_creation = False
        count += 1
    session.flush()
    return count


__all__ = [
    "clear_creation_flag",
    "flagged_entries",
    "record_chain_transaction",
    "rename_entry_account",
    "save_batch",
]
