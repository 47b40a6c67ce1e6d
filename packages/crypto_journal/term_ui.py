"""Terminal prompts for the account-suggestion review flow (prompt_toolkit).

Kept apart from the CLI so each prompt can be driven in tests through a
``PromptSession`` built on a pipe input and ``DummyOutput``.
"""

from __future__ import annotations

import re
from collections.abc import Container, Sequence
from typing import NamedTuple

from prompt_toolkit import PromptSession
from prompt_toolkit.completion import WordCompleter
from prompt_toolkit.key_binding import KeyBindings
from prompt_toolkit.validation import ValidationError, Validator

from .models import AccountType

MAX_ACCOUNT_NAME_LEN = 100
_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9 &\-/().,']*$")

ACTION_CREATE = "create"
ACTION_SKIP = "skip"
ACTION_QUIT = "quit"
_ACTIONS = (ACTION_CREATE, ACTION_SKIP, ACTION_QUIT)


class NameCheck(NamedTuple):
    ok: bool
    reason: str | None = None


def validate_account_name(name: str) -> NameCheck:
    """Letters, digits, spaces and ``& - / ( ) . , '``; 1..100 characters."""

    clean = " ".join(name.split())
    if not clean:
        return NameCheck(False, "Name must not be empty")
    if len(clean) > MAX_ACCOUNT_NAME_LEN:
        return NameCheck(False, f"Name must be at most {MAX_ACCOUNT_NAME_LEN} characters")
    if not _NAME_RE.match(clean):
        return NameCheck(False, "Name contains unsupported characters")
    return NameCheck(True)


def _session(session: PromptSession | None, kb: KeyBindings) -> PromptSession:
    if session is None:
        return PromptSession(key_bindings=kb)
    return PromptSession(
        input=getattr(session, "input", None),
        output=getattr(session, "output", None),
        key_bindings=kb,
    )


def _cancel_bindings() -> KeyBindings:
    kb = KeyBindings()

    @kb.add("escape")
    def _(event) -> None:  # pragma: no cover - exercised indirectly
        event.app.exit(result=None)

    @kb.add("c-c", eager=True)
    def _(event) -> None:  # pragma: no cover - exercised indirectly
        event.app.exit(result=None)

    return kb


def prompt_suggestion_action(
    *,
    session: PromptSession | None = None,
    message: str = "Action [create/skip/quit] (Enter to create): ",
) -> str:
    """Ask what to do with one suggested account. Esc counts as ``quit``."""

    kb = _cancel_bindings()
    completer = WordCompleter(list(_ACTIONS), ignore_case=True, sentence=True)

    class _ActionValidator(Validator):
        def validate(self, document) -> None:
            text = document.text.strip().lower()
            if text and not any(a.startswith(text) for a in _ACTIONS):
                raise ValidationError(message="Type create, skip or quit")

    value = _session(session, kb).prompt(
        message,
        completer=completer,
        validator=_ActionValidator(),
        validate_while_typing=False,
    )
    if value is None:
        return ACTION_QUIT
    text = value.strip().lower()
    if not text:
        return ACTION_CREATE
    return next(a for a in _ACTIONS if a.startswith(text))


def prompt_account_name(
    *,
    initial: str = "",
    existing: Container[str] = (),
    session: PromptSession | None = None,
    message: str = "Account name (Enter to accept • Esc to cancel): ",
) -> str | None:
    """Confirm or edit a new account name; ``None`` when canceled.

    ``existing`` is checked case-insensitively through its own ``__contains__``
    (an :class:`~crypto_journal.accounts.AccountRegistry` works).
    """

    kb = _cancel_bindings()

    class _NameValidator(Validator):
        def validate(self, document) -> None:
            check = validate_account_name(document.text)
            if not check.ok:
                raise ValidationError(message=check.reason or "Invalid name")
            if document.text.strip() in existing:
                raise ValidationError(message="An account with this name already exists")

    value = _session(session, kb).prompt(
        message,
        default=initial,
        validator=_NameValidator(),
        validate_while_typing=False,
    )
    if value is None:
        return None
    return " ".join(value.split())


def prompt_account_type(
    *,
    default: AccountType = AccountType.EXPENSE,
    session: PromptSession | None = None,
    message: str = "Account type (Enter to accept • Esc to cancel): ",
) -> AccountType | None:
    """Pick one of the five account types; ``None`` when canceled."""

    kb = _cancel_bindings()
    words = [t.value for t in AccountType]
    completer = WordCompleter(words, ignore_case=True, sentence=True)

    class _TypeValidator(Validator):
        def validate(self, document) -> None:
            if document.text.strip().upper() not in words:
                raise ValidationError(message="Choose one of: " + ", ".join(words))

    value = _session(session, kb).prompt(
        message,
        default=default.value,
        completer=completer,
        validator=_TypeValidator(),
        validate_while_typing=False,
    )
    if value is None:
        return None
    return AccountType(value.strip().upper())


def prompt_category_code(
    codes: Sequence[str],
    *,
    default: str,
    session: PromptSession | None = None,
    message: str = "Category code (Enter to accept • Esc to cancel): ",
) -> str | None:
    """Pick the chart category the new account belongs to."""

    kb = _cancel_bindings()
    allowed = list(codes)

    class _CodeValidator(Validator):
        def validate(self, document) -> None:
            if document.text.strip() not in allowed:
                raise ValidationError(message="Choose one of: " + ", ".join(allowed))

    value = _session(session, kb).prompt(
        message,
        default=default,
        completer=WordCompleter(allowed, sentence=True),
        validator=_CodeValidator(),
        validate_while_typing=False,
    )
    if value is None:
        return None
    return value.strip()


__all__ = [
    "ACTION_CREATE",
    "ACTION_QUIT",
    "ACTION_SKIP",
    "NameCheck",
    "prompt_account_name",
    "prompt_account_type",
    "prompt_category_code",
    "prompt_suggestion_action",
    "validate_account_name",
]
