"""Parsing of LLM output into journal proposals.

The model is asked for a bare JSON array but is not trusted to comply. Parsing
is layered, first success wins:

1. strip code fences and ``//`` / ``/* */`` comments, then decode the first
   JSON array of objects (trailing commas removed);
2. decode an object carrying a ``journalEntries`` array;
3. regex extraction of one ``(amount, currency)`` pair near a token symbol,
   turned into a single fallback proposal.

Each raw entry is then normalized (camelCase or snake_case keys, defaults for
missing fields) and filtered to the configured amount range. Entries that do
not survive are counted, not raised.

Also home to :func:`extract_transaction_details`, the pre-scan of free-form
text for a hash, an amount and a date.
"""

from __future__ import annotations

import json
import math
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import date
from typing import Any, NamedTuple

from pydantic import ValidationError

from .config import Settings
from .errors import ParseFailure
from .logging_setup import get_logger
from .models import JournalProposal
from .pricing import SUPPORTED_SYMBOLS

_logger = get_logger("crypto_journal.parsing")

DEFAULT_DEBIT = "Digital Assets - Other"
DEFAULT_CREDIT = "Share Capital"
DEFAULT_CURRENCY = "USD"
DEFAULT_CONFIDENCE = 0.8
FALLBACK_CONFIDENCE = 0.7

# Symbols the regex layer will accept as a currency, besides any symbol the
# text itself calls a token.
KNOWN_CURRENCIES: frozenset[str] = frozenset(SUPPORTED_SYMBOLS) | {
    "USD",
    "EUR",
    "GBP",
    "DAI",
    "WETH",
    "WBTC",
    "CFLR",
    "SGB",
}

# Chart names for digital assets that are not spelled by symbol.
_ASSET_ACCOUNT_NAMES: Mapping[str, str] = {
    "ETH": "Digital Assets - Ethereum",
    "BTC": "Digital Assets - Bitcoin",
}

_FENCE_RE = re.compile(r"```[a-zA-Z]*\s*")
_BLOCK_COMMENT_RE = re.compile(r"/\*[\s\S]*?\*/")
# Line comments, but leave "https://" intact.
_LINE_COMMENT_RE = re.compile(r"(?<!:)//[^\n]*")
_TRAILING_COMMA_RE = re.compile(r",(\s*[}\]])")

_NUMBER = r"(\d{1,3}(?:,\d{3})+(?:\.\d+)?|\d+(?:\.\d+)?)"
_SYMBOL = r"([A-Za-z][A-Za-z0-9]{1,9})"
_AMOUNT_THEN_SYMBOL_RE = re.compile(_NUMBER + r"\s*" + _SYMBOL + r"\b")
_AMOUNT_LABEL_RE = re.compile(r"\bamount\s*[:=]\s*" + _NUMBER, re.IGNORECASE)
_TOKEN_NAMED_RE = re.compile(
    r"\b([A-Z][A-Z0-9]{1,9})\s+tokens?\b|\btokens?\s*(?:symbol)?\s*[:=]?\s*([A-Z][A-Z0-9]{1,9})\b"
)
_SYMBOL_WORD_RE = re.compile(r"\b([A-Z][A-Z0-9]{1,9})\b")

_REFUND_RE = re.compile(r"\brefund", re.IGNORECASE)
_EQUITY_RE = re.compile(r"invest|capital|equity", re.IGNORECASE)
_REVENUE_RE = re.compile(r"revenue|income|payment", re.IGNORECASE)

_HASH_RE = re.compile(r"0x[a-fA-F0-9]{64}")


class ParseOutcome(NamedTuple):
    proposals: list[JournalProposal]
    dropped: int
    # "array" | "object" | "regex"
    layer: str


# ---- Cleanup -----------------------------------------------------------------


def strip_noise(text: str) -> str:
    """Remove code fences and JS-style comments."""

    cleaned = _FENCE_RE.sub("", text).replace("```", "")
    cleaned = _BLOCK_COMMENT_RE.sub("", cleaned)
    return _LINE_COMMENT_RE.sub("", cleaned)


def _decode_candidates(text: str, opener: str) -> Iterable[Any]:
    decoder = json.JSONDecoder()
    cleaned = _TRAILING_COMMA_RE.sub(r"\1", text)
    pos = cleaned.find(opener)
    while pos != -1:
        try:
            value, _end = decoder.raw_decode(cleaned, pos)
        except json.JSONDecodeError:
            pass
        else:
            yield value
        pos = cleaned.find(opener, pos + 1)


def _find_array(text: str) -> list[Mapping[str, Any]] | None:
    for value in _decode_candidates(text, "["):
        if isinstance(value, list) and value and all(isinstance(v, Mapping) for v in value):
            return value
    return None


def _find_wrapped(text: str) -> list[Mapping[str, Any]] | None:
    for value in _decode_candidates(text, "{"):
        if isinstance(value, Mapping):
            entries = value.get("journalEntries")
            if isinstance(entries, list):
                return [e for e in entries if isinstance(e, Mapping)]
    return None


# ---- Regex fallback ----------------------------------------------------------


def asset_account_for(symbol: str) -> str:
    sym = symbol.upper()
    return _ASSET_ACCOUNT_NAMES.get(sym, f"Digital Assets - {sym}")


def _number(raw: str) -> float:
    return float(raw.replace(",", ""))


def _token_symbols(text: str) -> set[str]:
    found: set[str] = set()
    for m in _TOKEN_NAMED_RE.finditer(text):
        found.add((m.group(1) or m.group(2)).upper())
    return found


def _regex_entry(text: str, *, refund_credit_account: str) -> dict[str, Any] | None:
    symbols = KNOWN_CURRENCIES | _token_symbols(text)

    amount: float | None = None
    currency: str | None = None
    for m in _AMOUNT_THEN_SYMBOL_RE.finditer(text):
        if m.group(2).upper() in symbols:
            amount, currency = _number(m.group(1)), m.group(2).upper()
            break

    if amount is None:
        labelled = _AMOUNT_LABEL_RE.search(text)
        if labelled is not None:
            # Nearest symbol mention on either side of the labelled amount.
            pos = labelled.start()
            mentions = [
                (abs(s.start() - pos), s.group(1))
                for s in _SYMBOL_WORD_RE.finditer(text)
                if s.group(1) in symbols
            ]
            if mentions:
                amount = _number(labelled.group(1))
                currency = min(mentions)[1]

    if amount is None or currency is None or amount <= 0:
        return None

    if _REFUND_RE.search(text):
        credit = refund_credit_account
    elif _EQUITY_RE.search(text):
        credit = "Share Capital"
    elif _REVENUE_RE.search(text):
        credit = "Trading Revenue"
    else:
        credit = DEFAULT_CREDIT

    return {
        "accountDebit": asset_account_for(currency),
        "accountCredit": credit,
        "amount": amount,
        "currency": currency,
        "narrative": f"Manual extraction: {amount:g} {currency} transaction",
        "confidence": FALLBACK_CONFIDENCE,
        "ifrsReference": "IAS 32",
    }


# ---- Normalization -----------------------------------------------------------


def _pick(entry: Mapping[str, Any], *keys: str) -> Any:
    for k in keys:
        v = entry.get(k)
        if v is not None and v != "":
            return v
    return None


def _coerce_amount(raw: Any) -> float:
    if isinstance(raw, bool):
        return math.nan
    if isinstance(raw, int | float):
        return float(raw)
    if isinstance(raw, str):
        try:
            return _number(raw.strip())
        except ValueError:
            return math.nan
    return math.nan


def _coerce_date(raw: Any) -> date | None:
    if isinstance(raw, date):
        return raw
    if not isinstance(raw, str):
        return None
    try:
        return date.fromisoformat(raw.strip()[:10])
    except ValueError:
        return extract_date(raw)


def _coerce_confidence(raw: Any) -> float:
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return DEFAULT_CONFIDENCE
    if not math.isfinite(value):
        return DEFAULT_CONFIDENCE
    return min(1.0, max(0.0, value))


def normalize_entry(entry: Mapping[str, Any]) -> dict[str, Any]:
    """Map one raw entry onto :class:`JournalProposal` fields with defaults."""

    amount = _coerce_amount(_pick(entry, "amount", "value"))
    narrative = _pick(entry, "narrative", "description")
    ifrs = _pick(entry, "ifrsReference", "ifrs_reference")
    tx_hash = _pick(entry, "transactionHash", "transaction_hash", "hash")
    return {
        "debit_account": str(
            _pick(entry, "accountDebit", "debit_account", "debit") or DEFAULT_DEBIT
        ),
        "credit_account": str(
            _pick(entry, "accountCredit", "credit_account", "credit") or DEFAULT_CREDIT
        ),
        "amount": amount,
        "currency": str(_pick(entry, "currency") or DEFAULT_CURRENCY),
        "narrative": str(narrative) if narrative else f"Transaction of {amount:g}",
        "confidence": _coerce_confidence(_pick(entry, "confidence")),
        "transaction_date": _coerce_date(_pick(entry, "transactionDate", "transaction_date")),
        "ifrs_reference": str(ifrs) if ifrs else None,
        "transaction_hash": str(tx_hash) if tx_hash else None,
    }


def within_bounds(amount: float, floor: float, ceiling: float) -> bool:
    return math.isfinite(amount) and floor <= amount < ceiling


def _materialize(
    entries: Iterable[Mapping[str, Any]], *, floor: float, ceiling: float
) -> tuple[list[JournalProposal], int]:
    proposals: list[JournalProposal] = []
    dropped = 0
    for raw in entries:
        fields = normalize_entry(raw)
        if not within_bounds(fields["amount"], floor, ceiling):
            _logger.info(
                "parsing:entry_dropped reason=amount_out_of_bounds amount=%s currency=%s",
                fields["amount"],
                fields["currency"],
            )
            dropped += 1
            continue
        try:
            proposals.append(JournalProposal(**fields))
        except ValidationError as e:
            _logger.info("parsing:entry_dropped reason=invalid errors=%d", e.error_count())
            dropped += 1
    return proposals, dropped


def parse_proposals(text: str, settings: Settings) -> ParseOutcome:
    """Turn model output into bounded proposals.

    Raises ``ParseFailure`` when none of the three layers finds any entry.
    Entries found but filtered out are reported in ``dropped``.
    """

    if not text or not text.strip():
        raise ParseFailure("model output is empty")

    cleaned = strip_noise(text)
    layer = "array"
    entries: list[Mapping[str, Any]] | None = _find_array(cleaned)
    if entries is None:
        layer = "object"
        entries = _find_wrapped(cleaned)
    if entries is None:
        layer = "regex"
        fallback = _regex_entry(text, refund_credit_account=settings.refund_credit_account)
        entries = [fallback] if fallback is not None else None
    if not entries:
        _logger.warning("parsing:no_entries preview=%r", text[:120])
        raise ParseFailure("model output contains no journal entries")

    proposals, dropped = _materialize(
        entries, floor=settings.amount_floor, ceiling=settings.amount_ceiling
    )
    _logger.info(
        "parsing:done layer=%s proposals=%d dropped=%d", layer, len(proposals), dropped
    )
    return ParseOutcome(proposals=proposals, dropped=dropped, layer=layer)


# ---- Free-text pre-scan ------------------------------------------------------

_MONTHS: Mapping[str, int] = {
    name: i
    for i, names in enumerate(
        (
            ("january", "jan"),
            ("february", "feb"),
            ("march", "mar"),
            ("april", "apr"),
            ("may",),
            ("june", "jun"),
            ("july", "jul"),
            ("august", "aug"),
            ("september", "sep", "sept"),
            ("october", "oct"),
            ("november", "nov"),
            ("december", "dec"),
        ),
        start=1,
    )
    for name in names
}

_TRIGGER = r"\b(?:invoice date|date|dated|on|for)\s+(?:is\s+)?"
_MONTH = r"([A-Za-z]+)\.?"
_DAY = r"(\d{1,2})(?:st|nd|rd|th)?"

# (pattern, group order) where order names the meaning of groups 1..3.
_DATE_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(_TRIGGER + _MONTH + r"\s+" + _DAY + r",?\s+(\d{4})\b", re.IGNORECASE), "mdy"),
    (re.compile(_TRIGGER + _DAY + r"\s+" + _MONTH + r",?\s+(\d{4})\b", re.IGNORECASE), "dmy"),
    (re.compile(_TRIGGER + r"(\d{4})-(\d{1,2})-(\d{1,2})\b", re.IGNORECASE), "ymd"),
    (re.compile(r"\b" + _MONTH + r"\s+" + _DAY + r",?\s+(\d{4})\b", re.IGNORECASE), "mdy"),
    (re.compile(r"\b(\d{4})-(\d{1,2})-(\d{1,2})\b"), "ymd"),
    (re.compile(r"\b(\d{1,2})/(\d{1,2})/(\d{4})\b"), "dmy"),
)


def _month_number(token: str) -> int | None:
    if token.isdigit():
        return int(token)
    return _MONTHS.get(token.lower())


def _build_date(groups: tuple[str, ...], order: str) -> date | None:
    parts = dict(zip(order, groups, strict=True))
    month = _month_number(parts["m"])
    if month is None:
        return None
    try:
        return date(int(parts["y"]), month, int(parts["d"]))
    except ValueError:
        return None


def extract_date(text: str) -> date | None:
    """First recognisable calendar date in ``text``, or ``None``."""

    for pattern, order in _DATE_PATTERNS:
        for m in pattern.finditer(text):
            found = _build_date(m.groups(), order)
            if found is not None:
                return found
    return None


@dataclass(frozen=True, slots=True)
class TransactionDetails:
    """What a pre-scan of free-form text found."""

    transaction_hash: str | None = None
    amount: float | None = None
    currency: str | None = None
    transaction_date: date | None = None
    notes: list[str] = field(default_factory=list)

    @property
    def has_transaction_hash(self) -> bool:
        return self.transaction_hash is not None

    def describe(self) -> list[str]:
        out: list[str] = []
        if self.transaction_hash:
            out.append(f"transaction hash {self.transaction_hash}")
        if self.amount is not None and self.currency:
            out.append(f"amount {self.amount:g} {self.currency}")
        if self.transaction_date is not None:
            out.append(f"transaction date {self.transaction_date.isoformat()}")
        return out + self.notes


def extract_transaction_details(text: str) -> TransactionDetails:
    hash_match = _HASH_RE.search(text or "")
    amount: float | None = None
    currency: str | None = None
    for m in _AMOUNT_THEN_SYMBOL_RE.finditer(text or ""):
        sym = m.group(2).upper()
        if sym in KNOWN_CURRENCIES:
            amount, currency = _number(m.group(1)), sym
            break
    return TransactionDetails(
        transaction_hash=hash_match.group(0) if hash_match else None,
        amount=amount,
        currency=currency,
        transaction_date=extract_date(text or ""),
    )


__all__ = [
    "DEFAULT_CONFIDENCE",
    "DEFAULT_CREDIT",
    "DEFAULT_CURRENCY",
    "DEFAULT_DEBIT",
    "KNOWN_CURRENCIES",
    "ParseOutcome",
    "TransactionDetails",
    "asset_account_for",
    "extract_date",
    "extract_transaction_details",
    "normalize_entry",
    "parse_proposals",
    "strip_noise",
    "within_bounds",
]
