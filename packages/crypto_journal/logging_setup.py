"""Logging configuration shared by every ``crypto_journal`` module.

Entry points (the CLI, a host service) call :func:`configure_logging` once.
Library modules only ever call ``get_logger("crypto_journal.<module>")`` and
never attach handlers of their own.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import IO

_ROOT_LOGGER = "crypto_journal"
_LEVEL_ENV = "CRYPTO_JOURNAL_LOG_LEVEL"
_DEFAULT_FORMAT = "%(asctime)s %(name)s %(levelname)s %(message)s"

_configured = False


def resolve_level(level: int | str | None) -> int:
    """Translate ``level`` (or the env override when ``None``) to a numeric level."""

    if level is None:
        level = os.getenv(_LEVEL_ENV)
        if not level:
            return logging.INFO
    if isinstance(level, int):
        return level
    name = str(level).strip().upper()
    if name.isdigit():
        return int(name)
    numeric = logging.getLevelName(name)
    # getLevelName returns "Level X" strings for unknown names
    return numeric if isinstance(numeric, int) else logging.INFO


def configure_logging(
    level: int | str | None = None,
    *,
    fmt: str | None = None,
    stream: IO[str] | None = None,
) -> None:
    """Attach a single stream handler to the ``crypto_journal`` logger.

    Parameters
    ----------
    level:
        Numeric level or level name. ``None`` reads ``CRYPTO_JOURNAL_LOG_LEVEL``
        and falls back to ``INFO``.
    fmt:
        Optional format string for the handler.
    stream:
        Destination stream, ``sys.stderr`` by default so stdout stays clean
        for command output.
    """

    global _configured
    if _configured:
        return

    numeric = resolve_level(level)
    root = logging.getLogger(_ROOT_LOGGER)
    for handler in list(root.handlers):
        if isinstance(handler, logging.NullHandler):
            root.removeHandler(handler)

    handler = logging.StreamHandler(stream if stream is not None else sys.stderr)
    handler.setLevel(numeric)
    handler.setFormatter(logging.Formatter(fmt or _DEFAULT_FORMAT))
    root.addHandler(handler)
    root.setLevel(numeric)
    root.propagate = False
    _configured = True


def get_logger(name: str) -> logging.Logger:
    """Return ``logging.getLogger(name)`` with a ``NullHandler`` safety net."""

    root = logging.getLogger(_ROOT_LOGGER)
    if not _configured and not root.handlers:
        root.addHandler(logging.NullHandler())
    return logging.getLogger(name)


__all__ = ["configure_logging", "get_logger", "resolve_level"]
