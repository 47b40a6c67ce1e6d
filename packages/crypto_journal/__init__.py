"""Public interface for the ``crypto_journal`` package.

Turns blockchain transactions (by hash, by wallet, or described in free text)
into IFRS journal entries: fetch, categorize, draft with an LLM, validate
against the chart of accounts, value in USD, and persist.

This module only re-exports the stable import surface.
"""

from .config import Settings
from .errors import (
    ConfigError,
    CryptoJournalError,
    NotFoundError,
    ParseFailure,
    UnsupportedSymbolError,
    UpstreamError,
    UpstreamMalformedError,
)
from .models import (
    Category,
    ChainInfo,
    JournalBatch,
    JournalProposal,
    PricedLine,
    SaveResult,
    TokenTransfer,
    Transaction,
    UsdValuation,
    ValidatedLine,
)
from .pipeline import (
    HashAnalysisResult,
    JournalPipeline,
    TextAnalysisResult,
    WalletAnalysisOptions,
    WalletAnalysisResult,
)

__all__ = [
    # Pipeline
    "JournalPipeline",
    "WalletAnalysisOptions",
    "HashAnalysisResult",
    "WalletAnalysisResult",
    "TextAnalysisResult",
    "Settings",
    # Models
    "Category",
    "ChainInfo",
    "JournalBatch",
    "JournalProposal",
    "PricedLine",
    "SaveResult",
    "TokenTransfer",
    "Transaction",
    "UsdValuation",
    "ValidatedLine",
    # Errors
    "ConfigError",
    "CryptoJournalError",
    "NotFoundError",
    "ParseFailure",
    "UnsupportedSymbolError",
    "UpstreamError",
    "UpstreamMalformedError",
]
