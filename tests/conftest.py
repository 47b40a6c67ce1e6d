"""Pytest configuration for test isolation.

Makes ``packages/`` and ``libs/db/src`` importable without an install, and
resets process-wide state between tests:

- the shared USD price cache (a quote cached by one test would otherwise
  short-circuit the stubbed price sources of the next);
- configuration environment variables, pinned to known values so a developer's
  shell or ``.env`` cannot leak into assertions;
- cached SQLAlchemy engines, so each test's SQLite file gets a fresh engine.
"""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

_ROOT = Path(__file__).resolve().parents[1]
for _p in (_ROOT, _ROOT / "packages", _ROOT / "libs" / "db" / "src"):
    if str(_p) not in sys.path:
        sys.path.insert(0, str(_p))

from crypto_journal.pricing import shared_cache  # noqa: E402
from db.client import dispose_engines  # noqa: E402

_CONFIG_VARS = (
    "EXPLORER_BASE_URL",
    "BLOCKSCOUT_BASE_URL",
    "EXPLORER_API_KEY",
    "BLOCKSCOUT_API_KEY",
    "EXPLORER_CHAIN_ID",
    "CRYPTO_JOURNAL_MODEL",
    "ORACLE_ENABLED",
    "FTSO_PRICE_CONSUMER_ENABLED",
    "ORACLE_CONTRACT_ADDRESS",
    "FTSO_PRICE_CONSUMER_ADDRESS",
    "ORACLE_RPC_URL",
    "FLARE_RPC_URL",
    "ORACLE_CHAIN_ID",
    "FLARE_CHAIN_ID",
    "ORACLE_CALL_SELECTOR",
    "PRICE_API_BASE_URL",
    "PRICE_CACHE_TTL_MS",
    "PRICE_FEED_CACHE_TTL",
    "DATABASE_URL",
    "HTTP_TIMEOUT_SECONDS",
    "AMOUNT_FLOOR",
    "AMOUNT_CEILING",
    "REFUND_CREDIT_ACCOUNT",
)


@pytest.fixture(autouse=True)
def _isolate_process_state(monkeypatch: pytest.MonkeyPatch):
    """Pin config env vars and clear shared caches around every test."""

    for name in _CONFIG_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    shared_cache().clear()
    yield
    shared_cache().clear()
    dispose_engines()


@pytest.fixture(autouse=True)
def _no_backoff_sleep(monkeypatch: pytest.MonkeyPatch) -> None:
    """LLM retry backoff must not slow the suite down."""

    monkeypatch.setattr("crypto_journal.proposer.time.sleep", lambda _s: None)
