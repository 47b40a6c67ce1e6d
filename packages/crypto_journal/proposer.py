"""LLM journal proposer.

Public API:
    - :class:`JournalProposer`

Each call builds a prompt (:mod:`.prompting`), sends it through the OpenAI
Responses API and parses the text (:mod:`.parsing`). Upstream failures never
raise out of the ``propose_*`` methods: they come back as a
:class:`~crypto_journal.models.ProposalResult` with ``error`` set so the
orchestrator can mark one category failed and carry on. Only a missing API
key fails, at construction time.
"""

from __future__ import annotations

import random
import time
from collections.abc import Sequence
from datetime import date
from typing import Any

from openai import OpenAI

from . import prompting
from .accounts import AccountRegistry
from .config import Settings
from .logging_setup import get_logger
from .models import Category, ChainInfo, JournalProposal, ProposalResult, Transaction
from .parsing import TransactionDetails, extract_transaction_details, parse_proposals
from .templates import template_for

# ---- Tunables (private) ------------------------------------------------------

_MAX_ATTEMPTS: int = 3
_BACKOFF_SCHEDULE_SEC: tuple[float, ...] = (0.5, 2.0)
_JITTER_PCT: float = 0.20

_logger = get_logger("crypto_journal.proposer")


# ---- Internal helpers --------------------------------------------------------


def _extract_response_text(resp: Any) -> str:
    """Locate the text output of an OpenAI Responses SDK result.

    Prefer ``resp.output_text``; fall back to ``resp.output[0].content[0].text``.
    Raises ``ValueError`` when no text can be found.
    """

    text: str | None = getattr(resp, "output_text", None)
    if not text:
        try:
            first = resp.output[0] if getattr(resp, "output", None) else None
            content = getattr(first, "content", None)
            if content and len(content) > 0:
                txt_obj = getattr(content[0], "text", None)
                if isinstance(txt_obj, str):
                    text = txt_obj
                else:
                    # Some SDKs expose text as an object with a ``value`` string.
                    maybe_val = getattr(txt_obj, "value", None)
                    if isinstance(maybe_val, str):
                        text = maybe_val
        except (AttributeError, IndexError, TypeError):
            text = None
    if not text or not isinstance(text, str):
        raise ValueError("Unexpected Responses API shape; unable to locate text output")
    return text


def _create_client(api_key: str) -> OpenAI:
    return OpenAI(api_key=api_key)


def _is_retryable(exc: BaseException) -> bool:
    """Return True only for HTTP 429 and 5xx errors."""

    sc = getattr(exc, "status_code", None)
    if isinstance(sc, int) and (sc == 429 or 500 <= sc < 600):
        return True
    return False


def _sleep_backoff(attempt_no: int) -> None:
    if attempt_no - 1 < len(_BACKOFF_SCHEDULE_SEC):
        base = _BACKOFF_SCHEDULE_SEC[attempt_no - 1]
    else:
        base = _BACKOFF_SCHEDULE_SEC[-1]
    jitter = base * _JITTER_PCT
    delay = base + random.uniform(-jitter, jitter)
    time.sleep(max(0.0, delay))


def _with_defaults(
    proposals: Sequence[JournalProposal],
    *,
    transaction_date: date | None = None,
    transaction_hash: str | None = None,
) -> list[JournalProposal]:
    out: list[JournalProposal] = []
    for p in proposals:
        update: dict[str, Any] = {}
        if transaction_date is not None and p.transaction_date is None:
            update["transaction_date"] = transaction_date
        if transaction_hash is not None and p.transaction_hash is None:
            update["transaction_hash"] = transaction_hash
        out.append(p.model_copy(update=update) if update else p)
    return out


# ---- Proposer ----------------------------------------------------------------


class JournalProposer:
    """Draft journal proposals with the LLM.

    Parameters
    ----------
    settings:
        Supplies the API key, model name, amount bounds and refund account.
    registry:
        Chart snapshot rendered into every prompt.
    chain:
        Chain the transactions belong to; decides the gas currency.
    """

    def __init__(self, settings: Settings, registry: AccountRegistry, chain: ChainInfo) -> None:
        self._api_key = settings.require_llm_key()
        self._settings = settings
        self._registry = registry
        self._chain = chain
        self._instructions = prompting.build_system_instructions()

    @property
    def chain(self) -> ChainInfo:
        return self._chain

    def _call(self, label: str, user_content: str, *, items: int) -> ProposalResult:
        """Send one prompt; retry 429/5xx, treat parse errors as terminal."""

        _logger.info("proposer:llm_call label=%s items=%d", label, items)
        client = _create_client(self._api_key)
        attempt = 1
        while True:
            t0 = time.perf_counter()
            try:
                resp = client.responses.create(
                    model=self._settings.llm_model,
                    instructions=self._instructions,
                    input=user_content,
                )
                text = _extract_response_text(resp)
                outcome = parse_proposals(text, self._settings)
                dt_ms = (time.perf_counter() - t0) * 1000.0
                _logger.info(
                    "proposer:llm_done label=%s proposals=%d dropped=%d layer=%s latency_ms=%.2f",
                    label,
                    len(outcome.proposals),
                    outcome.dropped,
                    outcome.layer,
                    dt_ms,
                )
                return ProposalResult(proposals=outcome.proposals, dropped=outcome.dropped)
            except Exception as e:  # noqa: BLE001
                dt_ms = (time.perf_counter() - t0) * 1000.0
                if attempt >= _MAX_ATTEMPTS or not _is_retryable(e):
                    _logger.error(
                        "proposer:llm_failed_terminal label=%s items=%d latency_ms=%.2f error=%s",
                        label,
                        items,
                        dt_ms,
                        e.__class__.__name__,
                    )
                    return ProposalResult(proposals=[], error=f"{e.__class__.__name__}: {e}")
                _logger.warning(
                    "proposer:llm_retry label=%s latency_ms=%.2f error=%s attempt=%d",
                    label,
                    dt_ms,
                    e.__class__.__name__,
                    attempt,
                )
                _sleep_backoff(attempt)
                attempt += 1

    def propose_for_group(
        self,
        category: Category,
        transactions: Sequence[Transaction],
        *,
        wallet: str | None = None,
    ) -> ProposalResult:
        """Proposals for a group of same-category transactions (one prompt)."""

        if not transactions:
            return ProposalResult(proposals=[])
        content = prompting.build_group_content(
            transactions,
            registry=self._registry,
            chain=self._chain,
            template=template_for(
                category, refund_credit_account=self._settings.refund_credit_account
            ),
            wallet=wallet,
        )
        result = self._call(f"category:{category.value}", content, items=len(transactions))
        if len(transactions) == 1 and result.proposals:
            result = result._replace(
                proposals=_with_defaults(result.proposals, transaction_hash=transactions[0].hash)
            )
        return result

    def propose_for_transaction(self, tx: Transaction, hint: str | None = None) -> ProposalResult:
        """Chain-aware proposals for a single transaction."""

        content = prompting.build_transaction_content(
            tx,
            registry=self._registry,
            chain=self._chain,
            template=template_for(
                tx.category, refund_credit_account=self._settings.refund_credit_account
            ),
            hint=hint,
        )
        result = self._call(f"hash:{tx.hash[:10]}", content, items=1)
        hint_date = extract_transaction_details(hint).transaction_date if hint else None
        return result._replace(
            proposals=_with_defaults(
                result.proposals, transaction_date=hint_date, transaction_hash=tx.hash
            )
        )

    def propose_from_text(
        self, text: str, details: TransactionDetails | None = None
    ) -> ProposalResult:
        """Proposals for free-form bookkeeping text."""

        details = details or extract_transaction_details(text)
        content = prompting.build_text_content(
            text,
            registry=self._registry,
            detected=details.describe(),
            refund_credit_account=self._settings.refund_credit_account,
        )
        result = self._call("text", content, items=1)
        return result._replace(
            proposals=_with_defaults(result.proposals, transaction_date=details.transaction_date)
        )


__all__ = ["JournalProposer"]
