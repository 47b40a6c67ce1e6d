"""Runtime settings read from the process environment.

The CLI loads a local ``.env`` (``python-dotenv``) before calling
:meth:`Settings.from_env`; library callers may also build ``Settings``
directly. Nothing here reads the environment at import time.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field, replace

from .errors import ConfigError

DEFAULT_EXPLORER_URL = "https://eth.blockscout.com"
DEFAULT_ORACLE_RPC_URL = "https://coston2-api.flare.network/ext/C/rpc"
DEFAULT_ORACLE_CHAIN_ID = 114
DEFAULT_PRICE_API_URL = "https://api.coingecko.com/api/v3"
DEFAULT_MODEL = "gpt-5"
DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_PRICE_CACHE_TTL_MS = 60_000
DEFAULT_AMOUNT_FLOOR = 1e-5
DEFAULT_AMOUNT_CEILING = 1e6
DEFAULT_REFUND_CREDIT_ACCOUNT = "Accounts Payable"

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off", ""}


def _first(env: Mapping[str, str], *names: str) -> str | None:
    for name in names:
        val = env.get(name)
        if val is not None and val.strip() != "":
            return val.strip()
    return None


def _as_bool(raw: str | None, *, name: str, default: bool) -> bool:
    if raw is None:
        return default
    v = raw.strip().lower()
    if v in _TRUE:
        return True
    if v in _FALSE:
        return False
    raise ConfigError(f"{name} must be a boolean flag, got {raw!r}")


def _as_float(raw: str | None, *, name: str, default: float) -> float:
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ConfigError(f"{name} must be numeric, got {raw!r}") from e


def _as_int(raw: str | None, *, name: str, default: int) -> int:
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from e


@dataclass(frozen=True, slots=True)
class Settings:
    """Resolved configuration for one process.

    Attributes
    ----------
    explorer_base_url:
        Block explorer root; also decides the chain (and so the gas currency).
    explorer_api_key:
        Optional bearer token for the explorer.
    llm_api_key:
        OpenAI API key. Required by anything that calls the LLM; see
        :meth:`require_llm_key`.
    oracle_enabled, oracle_contract_address, oracle_rpc_url, oracle_chain_id:
        On-chain price consumer read. Used only when enabled and an address
        is configured.
    oracle_call_selector:
        4-byte selector (hex) of the consumer's feed read, called as
        ``f(bytes21 feedId) -> (uint256 value, int8 decimals, uint64 timestamp)``.
        The oracle path is skipped while it is unset.
    price_cache_ttl_ms:
        Freshness window of the in-process price cache.
    amount_floor, amount_ceiling:
        Accepted half-open range ``[floor, ceiling)`` for journal amounts.
    refund_credit_account:
        Credit account for refunds; rendered into prompts and used by the regex
        fallback parser.
    chain_id_hint:
        Explorer chain id (``EXPLORER_CHAIN_ID``) for URLs that name no known
        chain. Independent of ``oracle_chain_id``.
    """

    explorer_base_url: str = DEFAULT_EXPLORER_URL
    explorer_api_key: str | None = None
    llm_api_key: str | None = None
    llm_model: str = DEFAULT_MODEL
    oracle_enabled: bool = False
    oracle_contract_address: str | None = None
    oracle_rpc_url: str = DEFAULT_ORACLE_RPC_URL
    oracle_chain_id: int = DEFAULT_ORACLE_CHAIN_ID
    oracle_call_selector: str | None = None
    price_api_base_url: str = DEFAULT_PRICE_API_URL
    price_cache_ttl_ms: int = DEFAULT_PRICE_CACHE_TTL_MS
    database_url: str | None = None
    http_timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    amount_floor: float = DEFAULT_AMOUNT_FLOOR
    amount_ceiling: float = DEFAULT_AMOUNT_CEILING
    refund_credit_account: str = DEFAULT_REFUND_CREDIT_ACCOUNT
    chain_id_hint: int | None = field(default=None)

    def __post_init__(self) -> None:
        if not self.amount_floor < self.amount_ceiling:
            raise ConfigError("AMOUNT_FLOOR must be lower than AMOUNT_CEILING")
        if self.price_cache_ttl_ms < 0:
            raise ConfigError("PRICE_CACHE_TTL_MS must be >= 0")
        if self.http_timeout_seconds <= 0:
            raise ConfigError("HTTP_TIMEOUT_SECONDS must be > 0")

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> Settings:
        """Build settings from ``env`` (defaults to ``os.environ``)."""

        e = os.environ if env is None else env
        chain_hint = _first(e, "EXPLORER_CHAIN_ID")
        return cls(
            explorer_base_url=(
                _first(e, "EXPLORER_BASE_URL", "BLOCKSCOUT_BASE_URL") or DEFAULT_EXPLORER_URL
            ).rstrip("/"),
            explorer_api_key=_first(e, "EXPLORER_API_KEY", "BLOCKSCOUT_API_KEY"),
            llm_api_key=_first(e, "OPENAI_API_KEY"),
            llm_model=_first(e, "CRYPTO_JOURNAL_MODEL") or DEFAULT_MODEL,
            oracle_enabled=_as_bool(
                _first(e, "ORACLE_ENABLED", "FTSO_PRICE_CONSUMER_ENABLED"),
                name="ORACLE_ENABLED",
                default=False,
            ),
            oracle_contract_address=_first(
                e, "ORACLE_CONTRACT_ADDRESS", "FTSO_PRICE_CONSUMER_ADDRESS"
            ),
            oracle_rpc_url=_first(e, "ORACLE_RPC_URL", "FLARE_RPC_URL") or DEFAULT_ORACLE_RPC_URL,
            oracle_chain_id=_as_int(
                _first(e, "ORACLE_CHAIN_ID", "FLARE_CHAIN_ID"),
                name="ORACLE_CHAIN_ID",
                default=DEFAULT_ORACLE_CHAIN_ID,
            ),
            oracle_call_selector=_first(e, "ORACLE_CALL_SELECTOR"),
            price_api_base_url=(
                _first(e, "PRICE_API_BASE_URL") or DEFAULT_PRICE_API_URL
            ).rstrip("/"),
            price_cache_ttl_ms=_as_int(
                _first(e, "PRICE_CACHE_TTL_MS", "PRICE_FEED_CACHE_TTL"),
                name="PRICE_CACHE_TTL_MS",
                default=DEFAULT_PRICE_CACHE_TTL_MS,
            ),
            database_url=_first(e, "DATABASE_URL"),
            http_timeout_seconds=_as_float(
                _first(e, "HTTP_TIMEOUT_SECONDS"),
                name="HTTP_TIMEOUT_SECONDS",
                default=DEFAULT_TIMEOUT_SECONDS,
            ),
            amount_floor=_as_float(
                _first(e, "AMOUNT_FLOOR"), name="AMOUNT_FLOOR", default=DEFAULT_AMOUNT_FLOOR
            ),
            amount_ceiling=_as_float(
                _first(e, "AMOUNT_CEILING"), name="AMOUNT_CEILING", default=DEFAULT_AMOUNT_CEILING
            ),
            refund_credit_account=(
                _first(e, "REFUND_CREDIT_ACCOUNT") or DEFAULT_REFUND_CREDIT_ACCOUNT
            ),
            chain_id_hint=(
                _as_int(chain_hint, name="EXPLORER_CHAIN_ID", default=0) if chain_hint else None
            ),
        )

    def require_llm_key(self) -> str:
        if not self.llm_api_key:
            raise ConfigError("OPENAI_API_KEY is not set; the journal proposer cannot start")
        return self.llm_api_key

    def with_overrides(self, **changes: object) -> Settings:
        return replace(self, **changes)  # type: ignore[arg-type]


__all__ = ["Settings"]
