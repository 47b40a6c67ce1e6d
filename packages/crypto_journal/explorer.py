"""Block explorer gateway.

Talks to a Blockscout/Etherscan-compatible explorer using the ``module=…&
action=…`` query API and turns its string-typed rows into
:class:`~crypto_journal.models.Transaction` values:

- wei integers become decimal native units (``/ 10**18``);
- token amounts are divided by ``10**tokenDecimal``;
- Unix-second timestamps become aware UTC datetimes;
- the explorer's error flags become :class:`TxStatus`.

Wallet fetches query the regular, token and internal feeds in parallel. A
failing feed degrades to an empty list and is reported in
``WalletFetchResult.feed_errors``; only :meth:`ExplorerClient.fetch_one`
raises.
"""

from __future__ import annotations

import re
from collections import Counter
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import replace
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

import httpx

from .categorizer import categorize_transactions
from .config import Settings
from .errors import NotFoundError, UpstreamError, UpstreamMalformedError
from .logging_setup import get_logger
from .models import (
    ChainInfo,
    Direction,
    TokenTransfer,
    Transaction,
    TxStatus,
    WalletFetchOptions,
    WalletFetchResult,
    WalletSummary,
    scale_down,
)
from .pmap import p_map

_logger = get_logger("crypto_journal.explorer")

_NATIVE_DECIMALS = 18
_DEFAULT_TOKEN_DECIMALS = 18
_TOKEN_MOVING_SELECTORS = ("0xa9059cbb", "0x23b872dd")
_TX_HASH_RE = re.compile(r"^0x[0-9a-fA-F]{64}$")

_FEED_ACTIONS: dict[str, str] = {
    "regular": "txlist",
    "token": "tokentx",
    "internal": "txlistinternal",
}


# ---- Chain detection ---------------------------------------------------------


def detect_chain(base_url: str, chain_id: int | None = None) -> ChainInfo:
    """Infer the chain (and so the gas currency) from the explorer URL or id."""

    url = (base_url or "").lower()
    if "coston2" in url or chain_id == 114:
        return ChainInfo(114, "Flare Coston2", "C2FLR", "Digital Assets - C2FLR", is_testnet=True)
    if "coston" in url or chain_id == 16:
        return ChainInfo(16, "Flare Coston", "CFLR", "Digital Assets - CFLR", is_testnet=True)
    if "flare" in url or chain_id == 14:
        return ChainInfo(14, "Flare", "FLR", "Digital Assets - FLR")
    return ChainInfo(chain_id or 1, "Ethereum", "ETH", "Digital Assets - Ethereum")


# ---- Field coercion ----------------------------------------------------------


def _int_or_none(value: Any, *, field: str) -> int | None:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise UpstreamMalformedError(f"explorer field {field!r} is not an integer: {value!r}")
    if isinstance(value, int):
        return value
    try:
        text = str(value).strip()
        return int(text, 16) if text.lower().startswith("0x") else int(text)
    except ValueError as e:
        raise UpstreamMalformedError(
            f"explorer field {field!r} is not an integer: {value!r}"
        ) from e


def _timestamp(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    text = str(value).strip()
    if "T" in text:
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError as e:
            raise UpstreamMalformedError(f"explorer timestamp is invalid: {value!r}") from e
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)
    seconds = _int_or_none(text, field="timeStamp")
    return datetime.fromtimestamp(seconds, UTC) if seconds is not None else None


def _address(value: Any) -> str:
    return str(value or "").strip().lower()


def _selector(raw_input: Any) -> str | None:
    text = str(raw_input or "").strip().lower()
    if len(text) >= 10 and text.startswith("0x"):
        return text[:10]
    return None


def _status_from_error_flag(row: Mapping[str, Any]) -> TxStatus:
    if "success" in row:
        return TxStatus.SUCCESS if row.get("success") in (True, "true", "1", 1) else TxStatus.FAILED
    return TxStatus.FAILED if str(row.get("isError", "0")) == "1" else TxStatus.SUCCESS


# ---- Row normalization -------------------------------------------------------


def normalize_token_row(row: Mapping[str, Any]) -> TokenTransfer:
    decimals = _int_or_none(row.get("tokenDecimal"), field="tokenDecimal")
    raw = _int_or_none(row.get("value"), field="value") or 0
    symbol = str(row.get("tokenSymbol") or "").strip() or "UNKNOWN"
    return TokenTransfer(
        token_symbol=symbol,
        token_name=str(row.get("tokenName") or symbol),
        decimals=_DEFAULT_TOKEN_DECIMALS if decimals is None else decimals,
        contract_address=_address(row.get("contractAddress")),
        from_address=_address(row.get("from")),
        to_address=_address(row.get("to")),
        raw_amount=raw,
    )


def normalize_tx_row(
    row: Mapping[str, Any],
    *,
    chain_id: int | None,
    source_feed: str = "regular",
    token_transfers: Sequence[TokenTransfer] = (),
) -> Transaction:
    """Normalize a regular, internal or detail explorer row."""

    tx_hash = str(row.get("hash") or row.get("transactionHash") or "").strip()
    if not tx_hash:
        raise UpstreamMalformedError("explorer row has no transaction hash")
    wei = _int_or_none(row.get("value"), field="value") or 0
    to_raw = row.get("to") or row.get("contractAddress")
    return Transaction(
        hash=tx_hash,
        from_address=_address(row.get("from")),
        to_address=_address(to_raw) or None,
        native_value=scale_down(wei, _NATIVE_DECIMALS),
        status=_status_from_error_flag(row),
        token_transfers=tuple(token_transfers),
        gas_used=_int_or_none(row.get("gasUsed"), field="gasUsed"),
        gas_price=_int_or_none(row.get("gasPrice"), field="gasPrice"),
        block_number=_int_or_none(row.get("blockNumber"), field="blockNumber"),
        timestamp=_timestamp(row.get("timeStamp")),
        method_selector=_selector(row.get("input")),
        chain_id=chain_id,
        source_feed=source_feed,
    )


def _token_rows_to_transactions(
    rows: Iterable[Mapping[str, Any]], *, chain_id: int | None
) -> list[Transaction]:
    """Fold token-feed rows into one transaction per hash (first row wins)."""

    firsts: dict[str, Mapping[str, Any]] = {}
    transfers: dict[str, list[TokenTransfer]] = {}
    for row in rows:
        h = str(row.get("hash") or "").strip()
        if not h:
            continue
        try:
            transfer = normalize_token_row(row)
        except UpstreamMalformedError as e:
            _logger.warning("explorer:row_skipped feed=token error=%s", e)
            continue
        firsts.setdefault(h, row)
        transfers.setdefault(h, []).append(transfer)
    out: list[Transaction] = []
    for h, first in firsts.items():
        # Token rows carry the token amount in ``value``; the native leg is zero.
        base = dict(first)
        base["value"] = "0"
        try:
            out.append(
                normalize_tx_row(
                    base, chain_id=chain_id, source_feed="token", token_transfers=transfers[h]
                )
            )
        except UpstreamMalformedError as e:
            _logger.warning("explorer:row_skipped feed=token error=%s", e)
    return out


def merge_feeds(
    regular: Sequence[Transaction],
    token: Sequence[Transaction],
    internal: Sequence[Transaction],
) -> list[Transaction]:
    """Merge feeds keeping each hash once.

    Regular records win; when a hash also appears in the token feed the regular
    record takes over its token-transfer list. Remaining token-only and
    internal-only records follow in feed order.
    """

    token_by_hash = {t.hash.lower(): t for t in token}
    seen: set[str] = set()
    merged: list[Transaction] = []
    for tx in regular:
        key = tx.hash.lower()
        if key in seen:
            continue
        seen.add(key)
        tok = token_by_hash.get(key)
        if tok is not None and not tx.token_transfers:
            tx = replace(tx, token_transfers=tok.token_transfers)
        merged.append(tx)
    for tx in (*token, *internal):
        key = tx.hash.lower()
        if key in seen:
            continue
        seen.add(key)
        merged.append(tx)
    return merged


def _sort_key(tx: Transaction) -> tuple[float, int]:
    ts = tx.timestamp.timestamp() if tx.timestamp is not None else 0.0
    return ts, tx.block_number or 0


def summarize(transactions: Sequence[Transaction]) -> WalletSummary:
    """Counts, time range and native volume per direction."""

    categories = Counter(str(t.category) for t in transactions if t.category is not None)
    directions = Counter(str(t.direction) for t in transactions if t.direction is not None)
    tokens = Counter(tt.token_symbol for t in transactions for tt in t.token_transfers)
    stamps = [t.timestamp for t in transactions if t.timestamp is not None]
    incoming = sum(
        (t.native_value for t in transactions if t.direction == Direction.INCOMING), Decimal(0)
    )
    outgoing = sum(
        (t.native_value for t in transactions if t.direction == Direction.OUTGOING), Decimal(0)
    )
    return WalletSummary(
        total=len(transactions),
        categories=dict(categories),
        directions=dict(directions),
        tokens=dict(tokens),
        earliest=min(stamps) if stamps else None,
        latest=max(stamps) if stamps else None,
        volume_incoming=incoming,
        volume_outgoing=outgoing,
    )


# ---- Client ------------------------------------------------------------------


class ExplorerClient:
    """Blocking client for one configured explorer.

    Parameters
    ----------
    settings:
        Source of the base URL, API key and timeout.
    client:
        Optional pre-built ``httpx.Client`` (tests pass one backed by
        ``httpx.MockTransport``). When omitted the gateway builds and owns one.
    """

    def __init__(self, settings: Settings, *, client: httpx.Client | None = None) -> None:
        self._settings = settings
        self._chain = detect_chain(settings.explorer_base_url, settings.chain_id_hint)
        headers = {"Accept": "application/json"}
        if settings.explorer_api_key:
            headers["Authorization"] = f"Bearer {settings.explorer_api_key}"
        self._owns_client = client is None
        self._client = client or httpx.Client(
            base_url=settings.explorer_base_url,
            timeout=settings.http_timeout_seconds,
            headers=headers,
        )

    @property
    def chain(self) -> ChainInfo:
        return self._chain

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> ExplorerClient:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    # -- transport -------------------------------------------------------------

    def _query(self, params: Mapping[str, Any]) -> Mapping[str, Any]:
        try:
            resp = self._client.get("/api", params=dict(params))
        except httpx.TimeoutException as e:
            raise UpstreamError(f"explorer timed out: {e}") from e
        except httpx.HTTPError as e:
            raise UpstreamError(f"explorer request failed: {e}") from e
        if resp.status_code == 404:
            raise NotFoundError("explorer returned 404", status_code=404)
        if resp.status_code >= 400:
            raise UpstreamError(
                f"explorer returned HTTP {resp.status_code}", status_code=resp.status_code
            )
        try:
            payload = resp.json()
        except ValueError as e:
            raise UpstreamMalformedError("explorer response is not JSON") from e
        if not isinstance(payload, Mapping):
            raise UpstreamMalformedError("explorer response is not a JSON object")
        return payload

    def _account_rows(
        self, action: str, address: str, opts: WalletFetchOptions
    ) -> list[Mapping[str, Any]]:
        params: dict[str, Any] = {
            "module": "account",
            "action": action,
            "address": address,
            "page": opts.page,
            "offset": opts.offset,
            "sort": opts.sort,
        }
        if opts.start_block is not None:
            params["startblock"] = opts.start_block
        if opts.end_block is not None:
            params["endblock"] = opts.end_block
        payload = self._query(params)
        # status != "1" means "no rows", not an error
        if str(payload.get("status")) != "1":
            return []
        result = payload.get("result")
        if not isinstance(result, list):
            raise UpstreamMalformedError(f"explorer {action} result is not a list")
        return [r for r in result if isinstance(r, Mapping)]

    # -- operations ------------------------------------------------------------

    def fetch_one(self, tx_hash: str) -> Transaction:
        """Fetch and normalize a single transaction.

        Raises ``NotFoundError`` when the explorer does not know the hash and
        ``UpstreamMalformedError`` when the payload has the wrong shape.
        """

        if not _TX_HASH_RE.match(tx_hash or ""):
            raise ValueError(f"not a transaction hash: {tx_hash!r}")

        payload = self._query({"module": "transaction", "action": "gettxinfo", "txhash": tx_hash})
        if str(payload.get("status")) != "1":
            raise NotFoundError(f"transaction {tx_hash} not found: {payload.get('message')}")
        result = payload.get("result")
        if not isinstance(result, Mapping):
            raise UpstreamMalformedError("gettxinfo result is not an object")

        tx = normalize_tx_row(result, chain_id=self._chain.chain_id, source_feed="detail")
        if tx.method_selector in _TOKEN_MOVING_SELECTORS:
            transfers = self._token_transfers_for(tx)
            if transfers:
                tx = replace(tx, token_transfers=tuple(transfers))
        _logger.info(
            "explorer:fetch_one hash=%s status=%s token_transfers=%d",
            tx.hash,
            tx.status,
            len(tx.token_transfers),
        )
        return tx

    def _token_transfers_for(self, tx: Transaction) -> list[TokenTransfer]:
        # gettxinfo does not decode ERC-20 logs; look the hash up in the
        # sender's token feed instead.
        try:
            rows = self._account_rows("tokentx", tx.from_address, WalletFetchOptions(offset=100))
        except UpstreamError as e:
            _logger.warning(
                "explorer:token_lookup_failed hash=%s error=%s", tx.hash, e.__class__.__name__
            )
            return []
        return [
            normalize_token_row(r)
            for r in rows
            if str(r.get("hash") or "").lower() == tx.hash.lower()
        ]

    def fetch_wallet(
        self, address: str, opts: WalletFetchOptions | None = None
    ) -> WalletFetchResult:
        """Fetch, merge, categorize and summarize a wallet's activity."""

        opts = opts or WalletFetchOptions()
        wallet = _address(address)
        feeds = ["regular"]
        if opts.include_tokens:
            feeds.append("token")
        if opts.include_internal:
            feeds.append("internal")

        def _fetch(feed: str) -> tuple[str, list[Mapping[str, Any]], str | None]:
            try:
                return feed, self._account_rows(_FEED_ACTIONS[feed], wallet, opts), None
            except UpstreamError as e:
                _logger.warning("explorer:subquery_failed feed=%s error=%s", feed, e)
                return feed, [], str(e)

        fetched = p_map(feeds, _fetch, concurrency=len(feeds))
        rows_by_feed = {name: rows for name, rows, _ in fetched}
        errors = {name: err for name, _, err in fetched if err is not None}

        chain_id = self._chain.chain_id
        regular = self._normalize_rows(rows_by_feed.get("regular", []), chain_id, "regular")
        internal = self._normalize_rows(rows_by_feed.get("internal", []), chain_id, "internal")
        token = _token_rows_to_transactions(rows_by_feed.get("token", []), chain_id=chain_id)

        merged = merge_feeds(regular, token, internal)
        if not opts.include_failed:
            merged = [t for t in merged if t.status == TxStatus.SUCCESS]
        merged.sort(key=_sort_key, reverse=(opts.sort == "desc"))

        categorized = categorize_transactions(merged, wallet)
        summary = summarize(categorized)
        _logger.info(
            "explorer:fetch_wallet address=%s regular=%d token=%d internal=%d merged=%d failed_feeds=%d",
            wallet,
            len(regular),
            len(token),
            len(internal),
            len(categorized),
            len(errors),
        )
        return WalletFetchResult(transactions=categorized, summary=summary, feed_errors=errors)

    @staticmethod
    def _normalize_rows(
        rows: Sequence[Mapping[str, Any]], chain_id: int | None, feed: str
    ) -> list[Transaction]:
        out: list[Transaction] = []
        for row in rows:
            try:
                out.append(normalize_tx_row(row, chain_id=chain_id, source_feed=feed))
            except UpstreamMalformedError as e:
                _logger.warning("explorer:row_skipped feed=%s error=%s", feed, e)
        return out

    def get_balance(self, address: str) -> Decimal:
        """Native balance of ``address`` in whole units."""

        payload = self._query({"module": "account", "action": "balance", "address": address})
        if str(payload.get("status")) != "1":
            raise NotFoundError(f"balance unavailable for {address}: {payload.get('message')}")
        wei = _int_or_none(payload.get("result"), field="result")
        return scale_down(wei or 0, _NATIVE_DECIMALS)


__all__ = [
    "ExplorerClient",
    "detect_chain",
    "merge_feeds",
    "normalize_token_row",
    "normalize_tx_row",
    "summarize",
]
