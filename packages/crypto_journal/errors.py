"""Exception types raised across the transaction-to-journal pipeline.

Only configuration problems and hard single-hash lookups surface to callers
as exceptions. Everything else (feed failures, LLM hiccups, dropped lines,
per-line write errors) is reported in result objects.
"""

from __future__ import annotations


class CryptoJournalError(RuntimeError):
    """Base class for errors raised by ``crypto_journal``."""


class ConfigError(CryptoJournalError):
    """Required configuration is missing or invalid."""


class UpstreamError(CryptoJournalError):
    """An external collaborator (explorer, LLM, price source) failed.

    ``status_code`` carries the HTTP status when one was received so retry
    policies can distinguish 429/5xx from terminal failures.
    """

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class NotFoundError(UpstreamError):
    """The requested transaction hash or address is not known upstream."""


class UpstreamMalformedError(UpstreamError):
    """The upstream answered, but not in the expected shape."""


class UnsupportedSymbolError(LookupError):
    """No price source can value the requested symbol."""

    def __init__(self, symbol: str) -> None:
        super().__init__(f"Unsupported symbol: {symbol}")
        self.symbol = symbol


class ParseFailure(ValueError):
    """LLM output could not be coerced into any journal proposal."""


__all__ = [
    "ConfigError",
    "CryptoJournalError",
    "NotFoundError",
    "ParseFailure",
    "UnsupportedSymbolError",
    "UpstreamError",
    "UpstreamMalformedError",
]
