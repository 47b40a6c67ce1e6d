"""USD pricing for journal lines.

:class:`PriceOracleClient` answers "what is one unit of SYMBOL worth in USD"
from three sources, tried in order:

1. an on-chain price consumer read over JSON-RPC (``eth_call``), when
   enabled and fully configured;
2. the CoinGecko ``simple/price`` endpoint;
3. a static table for tokens without a public market (project tokens,
   testnet natives).

Quotes are cached per symbol for ``price_cache_ttl_ms``. The cache is a plain
process-wide mapping; a stale read is acceptable and no locking is done
around fetches.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation
from typing import Any

import httpx

from .config import Settings
from .errors import UnsupportedSymbolError, UpstreamError, UpstreamMalformedError
from .logging_setup import get_logger
from .models import UsdSource, UsdValuation

_logger = get_logger("crypto_journal.pricing")

SUPPORTED_SYMBOLS: tuple[str, ...] = (
    "FLR",
    "BTC",
    "ETH",
    "USDC",
    "USDT",
    "AVAX",
    "MATIC",
    "ADA",
    "DOT",
    "LTC",
    "XYD",
    "C2FLR",
)

# Currency spellings that price as another symbol.
SYMBOL_ALIASES: Mapping[str, str] = {
    "C2FLR": "FLR",
    "FLARE": "FLR",
    "WETH": "ETH",
    "WBTC": "BTC",
}

COINGECKO_IDS: Mapping[str, str] = {
    "FLR": "flare-network",
    "BTC": "bitcoin",
    "ETH": "ethereum",
    "USDC": "usd-coin",
    "USDT": "tether",
    "AVAX": "avalanche-2",
    "MATIC": "matic-network",
    "ADA": "cardano",
    "DOT": "polkadot",
    "LTC": "litecoin",
}

MOCK_PRICES: Mapping[str, Decimal] = {
    "XYD": Decimal("0.05"),
    "C2FLR": Decimal("0.015"),
    "FLR": Decimal("0.015"),
    "BTC": Decimal("104500.00"),
    "ETH": Decimal("2540.00"),
    "USDC": Decimal("1.00"),
    "USDT": Decimal("1.00"),
    "AVAX": Decimal("45.50"),
    "MATIC": Decimal("0.85"),
    "ADA": Decimal("0.62"),
    "DOT": Decimal("8.75"),
    "LTC": Decimal("140.25"),
}

_WORD_HEX = 64
_FEED_CATEGORY_CRYPTO = b"\x01"
_FEED_ID_BYTES = 21


@dataclass(frozen=True, slots=True)
class PriceQuote:
    """USD price of one unit of ``symbol``.

    ``value``/``decimals`` are the raw oracle encoding (``usd_price = value /
    10**decimals``); API and static quotes are expressed with 8 decimals.
    """

    symbol: str
    usd_price: Decimal
    value: int
    decimals: int
    timestamp: datetime
    source: UsdSource


@dataclass(slots=True)
class _CacheEntry:
    quote: PriceQuote
    fetched_at: float


class PriceCache:
    """Symbol -> quote map with a freshness window."""

    def __init__(self, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._entries: dict[str, _CacheEntry] = {}
        self._clock = clock

    def get(self, symbol: str, ttl_ms: int) -> PriceQuote | None:
        entry = self._entries.get(symbol)
        if entry is None:
            return None
        age_ms = (self._clock() - entry.fetched_at) * 1000.0
        if age_ms >= ttl_ms:
            return None
        return entry.quote

    def put(self, symbol: str, quote: PriceQuote) -> None:
        self._entries[symbol] = _CacheEntry(quote=quote, fetched_at=self._clock())

    def clear(self) -> None:
        self._entries.clear()

    def symbols(self) -> list[str]:
        return sorted(self._entries)

    def __len__(self) -> int:
        return len(self._entries)


_SHARED_CACHE = PriceCache()


def shared_cache() -> PriceCache:
    return _SHARED_CACHE


def canonical_symbol(currency: str) -> str:
    """Uppercase ``currency`` and collapse wrapped/testnet spellings."""

    sym = (currency or "").strip().upper()
    if sym == "C2FLR":
        # C2FLR is supported in its own right; only the API lookup maps it.
        return sym
    return SYMBOL_ALIASES.get(sym, sym)


def is_supported(currency: str) -> bool:
    return canonical_symbol(currency) in SUPPORTED_SYMBOLS


def _fixed8(price: Decimal) -> int:
    return int((price * Decimal(10) ** 8).to_integral_value())


def _feed_id(symbol: str) -> str:
    """FTSO-style ``bytes21`` feed id: category byte + ``"SYM/USD"``, right-padded."""

    raw = _FEED_CATEGORY_CRYPTO + f"{symbol}/USD".encode("ascii")
    if len(raw) > _FEED_ID_BYTES:
        raise UnsupportedSymbolError(symbol)
    return raw.ljust(_FEED_ID_BYTES, b"\x00").hex()


def _signed_word(word: str) -> int:
    v = int(word, 16)
    return v - (1 << 256) if v >= 1 << 255 else v


def decode_oracle_result(result: str) -> tuple[int, int, int]:
    """Decode ``(uint256 value, int8 decimals, uint64 timestamp)`` from ABI hex."""

    body = result[2:] if result.startswith("0x") else result
    if len(body) < 3 * _WORD_HEX:
        raise UpstreamMalformedError(f"oracle returned {len(body) // 2} bytes, expected 96")
    try:
        words = [body[i * _WORD_HEX : (i + 1) * _WORD_HEX] for i in range(3)]
        return int(words[0], 16), _signed_word(words[1]), int(words[2], 16)
    except ValueError as e:
        raise UpstreamMalformedError("oracle result is not hex") from e


class PriceOracleClient:
    """Price lookups with caching and source fallback.

    Parameters
    ----------
    settings:
        Oracle, price API and cache configuration.
    client:
        Optional ``httpx.Client`` used for both JSON-RPC and the price API.
    cache:
        Quote cache; defaults to the process-wide one.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        client: httpx.Client | None = None,
        cache: PriceCache | None = None,
    ) -> None:
        self._settings = settings
        self._owns_client = client is None
        self._client = client or httpx.Client(
            timeout=settings.http_timeout_seconds, headers={"Accept": "application/json"}
        )
        self._cache = cache if cache is not None else _SHARED_CACHE
        self._rpc_id = 0

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> PriceOracleClient:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    @property
    def oracle_configured(self) -> bool:
        s = self._settings
        return bool(s.oracle_enabled and s.oracle_contract_address and s.oracle_call_selector)

    # -- sources ---------------------------------------------------------------

    def _from_oracle(self, symbol: str) -> PriceQuote:
        s = self._settings
        selector = (s.oracle_call_selector or "").removeprefix("0x")
        data = "0x" + selector + _feed_id(symbol).ljust(_WORD_HEX, "0")
        self._rpc_id += 1
        body = {
            "jsonrpc": "2.0",
            "id": self._rpc_id,
            "method": "eth_call",
            "params": [{"to": s.oracle_contract_address, "data": data}, "latest"],
        }
        try:
            resp = self._client.post(s.oracle_rpc_url, json=body)
        except httpx.HTTPError as e:
            raise UpstreamError(f"oracle rpc failed: {e}") from e
        if resp.status_code >= 400:
            raise UpstreamError(f"oracle rpc HTTP {resp.status_code}", status_code=resp.status_code)
        try:
            payload = resp.json()
        except ValueError as e:
            raise UpstreamMalformedError("oracle rpc response is not JSON") from e
        if not isinstance(payload, Mapping):
            raise UpstreamMalformedError("oracle rpc response is not an object")
        if payload.get("error"):
            raise UpstreamError(f"oracle rpc error: {payload['error']}")
        result = payload.get("result")
        if not isinstance(result, str):
            raise UpstreamMalformedError("oracle rpc result missing")

        value, decimals, ts = decode_oracle_result(result)
        if value <= 0:
            raise UpstreamMalformedError(f"oracle has no price for {symbol}")
        return PriceQuote(
            symbol=symbol,
            usd_price=Decimal(value).scaleb(-decimals),
            value=value,
            decimals=decimals,
            timestamp=datetime.fromtimestamp(ts, tz=UTC) if ts else datetime.now(UTC),
            source=UsdSource.ORACLE,
        )

    def _from_api(self, symbol: str) -> PriceQuote:
        coin_id = COINGECKO_IDS.get(symbol)
        if coin_id is None:
            raise UnsupportedSymbolError(symbol)
        url = f"{self._settings.price_api_base_url}/simple/price"
        try:
            resp = self._client.get(url, params={"ids": coin_id, "vs_currencies": "usd"})
        except httpx.HTTPError as e:
            raise UpstreamError(f"price api failed: {e}") from e
        if resp.status_code >= 400:
            raise UpstreamError(f"price api HTTP {resp.status_code}", status_code=resp.status_code)
        try:
            payload: Any = resp.json()
            raw = payload[coin_id]["usd"]
        except (ValueError, KeyError, TypeError) as e:
            raise UpstreamMalformedError(f"price api returned no usd price for {coin_id}") from e
        if isinstance(raw, bool) or not isinstance(raw, int | float):
            raise UpstreamMalformedError(f"price api usd price is not a number: {raw!r}")
        try:
            price = Decimal(str(raw))
        except InvalidOperation as e:
            raise UpstreamMalformedError(f"price api usd price is invalid: {raw!r}") from e
        return PriceQuote(
            symbol=symbol,
            usd_price=price,
            value=_fixed8(price),
            decimals=8,
            timestamp=datetime.now(UTC),
            source=UsdSource.API,
        )

    @staticmethod
    def _from_mock(symbol: str) -> PriceQuote:
        price = MOCK_PRICES.get(symbol)
        if price is None:
            raise UnsupportedSymbolError(symbol)
        return PriceQuote(
            symbol=symbol,
            usd_price=price,
            value=_fixed8(price),
            decimals=8,
            timestamp=datetime.now(UTC),
            source=UsdSource.MOCK,
        )

    # -- operations ------------------------------------------------------------

    def get_price(self, symbol: str) -> PriceQuote:
        """USD quote for ``symbol``.

        Raises ``UnsupportedSymbolError`` for symbols outside the supported set
        and ``UpstreamError`` when no source could produce a price.
        """

        sym = canonical_symbol(symbol)
        if sym not in SUPPORTED_SYMBOLS:
            raise UnsupportedSymbolError(symbol)

        cached = self._cache.get(sym, self._settings.price_cache_ttl_ms)
        if cached is not None:
            _logger.debug("pricing:cache_hit symbol=%s", sym)
            return cached

        # Testnet natives price as their mainnet asset on oracle and API.
        market_sym = SYMBOL_ALIASES.get(sym, sym)
        quote: PriceQuote | None = None
        if self.oracle_configured:
            try:
                quote = self._from_oracle(market_sym)
            except (UpstreamError, UnsupportedSymbolError) as e:
                _logger.warning("pricing:oracle_failed symbol=%s error=%s", sym, e)
        if quote is None and market_sym in COINGECKO_IDS:
            try:
                quote = self._from_api(market_sym)
            except UpstreamError as e:
                _logger.warning("pricing:api_failed symbol=%s error=%s", sym, e)
        if quote is None:
            try:
                quote = self._from_mock(sym)
            except UnsupportedSymbolError as e:
                raise UpstreamError(f"no price source available for {sym}") from e

        quote = PriceQuote(
            symbol=sym,
            usd_price=quote.usd_price,
            value=quote.value,
            decimals=quote.decimals,
            timestamp=quote.timestamp,
            source=quote.source,
        )
        self._cache.put(sym, quote)
        _logger.info(
            "pricing:fetched symbol=%s usd_price=%s source=%s", sym, quote.usd_price, quote.source
        )
        return quote

    def price_journal_line(
        self, currency: str, amount: float | Decimal, narrative: str | None = None
    ) -> UsdValuation:
        """USD valuation for ``amount`` of ``currency``; never raises.

        Unsupported currencies and upstream failures yield ``supported=False``
        with every USD field ``None``.
        """

        sym = canonical_symbol(currency)
        if sym not in SUPPORTED_SYMBOLS:
            _logger.info("pricing:unsupported currency=%s", currency)
            return UsdValuation(supported=False, reason=f"unsupported currency {currency}")
        try:
            quote = self.get_price(sym)
        except (UpstreamError, UnsupportedSymbolError) as e:
            _logger.warning("pricing:line_unpriced currency=%s error=%s", currency, e)
            return UsdValuation(supported=False, reason=str(e))

        usd_value = Decimal(str(amount)) * quote.usd_price
        enhanced = None
        if narrative:
            enhanced = (
                f"{narrative} (≈ ${usd_value:,.2f} USD @ ${quote.usd_price:,.4f}/{sym})"
            )
        return UsdValuation(
            supported=True,
            usd_value=float(usd_value),
            usd_rate=float(quote.usd_price),
            usd_source=quote.source,
            usd_timestamp=quote.timestamp,
            enhanced_narrative=enhanced,
        )

    def clear_cache(self) -> None:
        self._cache.clear()
        _logger.info("pricing:cache_cleared")

    def cache_stats(self) -> dict[str, Any]:
        return {
            "entries": len(self._cache),
            "symbols": self._cache.symbols(),
            "ttl_ms": self._settings.price_cache_ttl_ms,
        }

    @staticmethod
    def supported_symbols() -> list[str]:
        return list(SUPPORTED_SYMBOLS)


__all__ = [
    "COINGECKO_IDS",
    "MOCK_PRICES",
    "PriceCache",
    "PriceOracleClient",
    "PriceQuote",
    "SUPPORTED_SYMBOLS",
    "SYMBOL_ALIASES",
    "canonical_symbol",
    "decode_oracle_result",
    "is_supported",
    "shared_cache",
]
