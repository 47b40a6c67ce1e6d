"""CLI for the ``crypto_journal`` package.

Command handlers (``cmd_*``) return process exit codes and print ``Error: ...``
to stderr on failure; the Typer commands below are thin wrappers. The root
callback loads ``.env`` with ``python-dotenv`` and configures logging before
any command runs. Business logic lives in :mod:`crypto_journal.pipeline` and
the component modules.
"""

from __future__ import annotations

import json
import sys
from collections.abc import Sequence
from datetime import date
from pathlib import Path
from typing import Any

import typer
from dotenv import load_dotenv
from prompt_toolkit import PromptSession
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from sqlalchemy.exc import SQLAlchemyError

from .config import Settings
from .errors import CryptoJournalError, UnsupportedSymbolError
from .logging_setup import configure_logging
from .models import AccountType, Category, JournalBatch, PricedLine
from .pipeline import JournalPipeline, WalletAnalysisOptions

console = Console()

_HANDLED = (CryptoJournalError, LookupError, ValueError, SQLAlchemyError)


# ---- Helpers -----------------------------------------------------------------


def _settings(database_url: str | None = None) -> Settings:
    settings = Settings.from_env()
    if database_url:
        settings = settings.with_overrides(database_url=database_url)
    return settings


def _build_pipeline(settings: Settings) -> JournalPipeline:
    return JournalPipeline(settings)


def _error(msg: str) -> int:
    print(f"Error: {msg}", file=sys.stderr)
    return 1


def _line_dict(priced: PricedLine) -> dict[str, Any]:
    line = priced.line
    usd = priced.usd
    return {
        "debit_account": line.debit_account,
        "credit_account": line.credit_account,
        "amount": line.amount,
        "currency": line.currency,
        "narrative": line.narrative,
        "confidence": line.confidence,
        "transaction_date": line.transaction_date.isoformat() if line.transaction_date else None,
        "ifrs_reference": line.ifrs_reference,
        "transaction_hash": line.transaction_hash,
        "category": priced.category.value if priced.category else None,
        "requires_account_creation": line.requires_account_creation,
        "account_creation_suggestions": [s.as_dict() for s in line.suggestions],
        "validation_error": line.validation_error,
        "usd_value": usd.usd_value,
        "usd_rate": usd.usd_rate,
        "usd_source": usd.usd_source.value if usd.usd_source else None,
    }


def _render_batch(batch: JournalBatch, *, title: str) -> None:
    table = Table(title=title, show_lines=False)
    table.add_column("Debit")
    table.add_column("Credit")
    table.add_column("Amount", justify="right")
    table.add_column("Cur")
    table.add_column("USD", justify="right")
    table.add_column("Conf", justify="right")
    table.add_column("Narrative")
    for priced in batch.lines:
        line = priced.line
        flag = " [yellow](missing account)[/yellow]" if line.requires_account_creation else ""
        usd = f"{priced.usd.usd_value:,.2f}" if priced.usd.supported else "-"
        table.add_row(
            line.debit_account,
            line.credit_account + flag,
            f"{line.amount:g}",
            line.currency,
            usd,
            f"{line.confidence:.2f}",
            line.narrative,
        )
    console.print(table)


def _emit_json(payload: Any) -> None:
    typer.echo(json.dumps(payload, indent=2, default=str))


# ---- Command handlers --------------------------------------------------------


def cmd_analyze_hash(
    tx_hash: str,
    *,
    hint: str | None = None,
    user_id: str | None = None,
    database_url: str | None = None,
    as_json: bool = False,
) -> int:
    """Analyze one transaction hash and print its journal lines."""

    try:
        with _build_pipeline(_settings(database_url)) as pipeline:
            result = pipeline.analyze_transaction_hash(tx_hash, hint=hint, user_id=user_id)
    except _HANDLED as e:
        return _error(str(e))

    if as_json:
        _emit_json(
            {
                "transaction_hash": result.transaction.hash,
                "category": result.transaction.category,
                "error": result.error,
                "dropped": result.dropped,
                "saved": result.save.saved_count if result.save else 0,
                "journal_entries": [_line_dict(p) for p in result.batch.lines],
            }
        )
    else:
        console.print(
            f"[cyan]Transaction[/cyan] {result.transaction.hash} "
            f"[cyan]category[/cyan] {result.transaction.category}"
        )
        _render_batch(result.batch, title="Journal entries")
        if result.save is not None:
            console.print(f"Saved {result.save.saved_count} of {len(result.batch.lines)} entries")
    if result.error:
        return _error(f"journal proposal failed: {result.error}")
    return 0


def cmd_analyze_wallet(
    wallet: str,
    options: WalletAnalysisOptions,
    *,
    user_id: str | None = None,
    database_url: str | None = None,
    as_json: bool = False,
) -> int:
    """Bulk-analyze a wallet and print the summary."""

    try:
        with _build_pipeline(_settings(database_url)) as pipeline:
            result = pipeline.analyze_wallet(wallet, options, user_id=user_id)
    except _HANDLED as e:
        return _error(str(e))

    if as_json:
        _emit_json(
            {
                "wallet": result.wallet,
                "summary": result.summary,
                "journal_entries": [_line_dict(p) for p in result.batch.lines],
            }
        )
        return 0

    stats = result.summary["wallet_analysis"]
    console.print(
        f"[cyan]Wallet[/cyan] {result.wallet}: fetched {stats['total_transactions_fetched']}, "
        f"processed {stats['total_transactions_processed']}, "
        f"entries {stats['total_journal_entries_generated']}"
    )
    breakdown = Table(title="Categories")
    breakdown.add_column("Category")
    breakdown.add_column("Transactions", justify="right")
    breakdown.add_column("Entries", justify="right")
    breakdown.add_column("Status")
    for outcome in result.categories:
        status = "ok" if outcome.success else f"[red]failed[/red] {outcome.error}"
        breakdown.add_row(
            outcome.category.value,
            str(outcome.transactions),
            str(outcome.journal_entries),
            status,
        )
    console.print(breakdown)
    _render_batch(result.batch, title="Journal entries")
    for rec in result.summary["recommendations"]:
        console.print(f"[yellow]•[/yellow] {rec}")
    return 0


def cmd_analyze_text(
    text: str,
    *,
    user_id: str | None = None,
    database_url: str | None = None,
    as_json: bool = False,
) -> int:
    """Journal lines from a free-form description."""

    try:
        with _build_pipeline(_settings(database_url)) as pipeline:
            result = pipeline.analyze_text(text, user_id=user_id)
    except _HANDLED as e:
        return _error(str(e))

    lines = result.batch.lines if result.batch else []
    if as_json:
        _emit_json(
            {
                "detected": list(result.details.describe()),
                "delegated_to_hash": result.delegated is not None,
                "error": result.error,
                "journal_entries": [_line_dict(p) for p in lines],
            }
        )
    elif result.batch is not None:
        for note in result.details.describe():
            console.print(f"[cyan]Detected[/cyan] {note}")
        _render_batch(result.batch, title="Journal entries")
    if result.error:
        return _error(f"journal proposal failed: {result.error}")
    return 0


def cmd_chart(*, database_url: str | None = None) -> int:
    """Print the chart of accounts grouped by category."""

    from .accounts import load_registry

    try:
        registry = load_registry(database_url=_settings(database_url).database_url)
    except (RuntimeError, SQLAlchemyError) as e:
        return _error(f"failed to load chart of accounts: {e}")

    for category, accounts in registry.chart_by_category().items():
        table = Table(title=category, title_justify="left")
        table.add_column("Code")
        table.add_column("Name")
        table.add_column("Type")
        table.add_column("IFRS")
        for acct in accounts:
            table.add_row(acct.code, acct.name, acct.account_type.value, acct.ifrs_reference or "")
        console.print(table)
    return 0


def cmd_price(symbol: str, *, amount: float | None = None) -> int:
    """Print the USD price of ``symbol`` (and the value of ``amount``)."""

    from .pricing import PriceOracleClient

    try:
        with PriceOracleClient(_settings()) as oracle:
            quote = oracle.get_price(symbol)
            valuation = oracle.price_journal_line(symbol, amount) if amount is not None else None
    except UnsupportedSymbolError as e:
        return _error(f"{e}. Supported: {', '.join(PriceOracleClient.supported_symbols())}")
    except CryptoJournalError as e:
        return _error(str(e))

    console.print(f"{quote.symbol} = ${quote.usd_price} ({quote.source.value})")
    if valuation is not None and valuation.supported:
        console.print(f"{amount:g} {quote.symbol} ≈ ${valuation.usd_value:,.2f}")
    return 0


def _pending_suggestions(entries: Sequence[Any], registry: Any) -> list[dict[str, Any]]:
    """Unique suggestions across flagged entries whose account is still missing."""

    seen: dict[str, dict[str, Any]] = {}
    for entry in entries:
        meta = entry.entry_metadata or {}
        for s in meta.get("account_creation_suggestions") or []:
            name = str(s.get("name") or "").strip()
            if not name or name in registry or name.casefold() in seen:
                continue
            seen[name.casefold()] = s
    return list(seen.values())


def cmd_review_account_suggestions(
    *,
    user_id: str | None = None,
    database_url: str | None = None,
    prompt_session: PromptSession | None = None,
) -> int:
    """Walk flagged entries and create the accounts they are missing."""

    from db.client import session_scope
    from db.models.ledger import AccountCategory
    from sqlalchemy import select

    from .accounts import AccountRegistry, create_account, list_accounts
    from .persistence import clear_creation_flag, flagged_entries, rename_entry_account
    from .term_ui import (
        ACTION_QUIT,
        ACTION_SKIP,
        prompt_account_name,
        prompt_account_type,
        prompt_category_code,
        prompt_suggestion_action,
    )

    url = _settings(database_url).database_url
    created = 0
    try:
        with session_scope(database_url=url) as session:
            entries = flagged_entries(session, user_id=user_id)
            registry = AccountRegistry(list_accounts(session))
            pending = _pending_suggestions(entries, registry)
            if not pending:
                console.print("No account suggestions to review.")
            codes = list(
                session.execute(select(AccountCategory.code).order_by(AccountCategory.code)).scalars()
            )

            for s in pending:
                console.print(
                    Panel(
                        f"{s.get('description', '')}\n"
                        f"type {s.get('type')} • range {s.get('code_range')} • {s.get('ifrs_reference')}",
                        title=f"Missing account: {s['name']}",
                        border_style="yellow",
                    )
                )
                action = prompt_suggestion_action(session=prompt_session)
                if action == ACTION_QUIT:
                    break
                if action == ACTION_SKIP:
                    continue
                name = prompt_account_name(
                    initial=s["name"], existing=registry, session=prompt_session
                )
                if name is None:
                    continue
                acct_type = prompt_account_type(
                    default=AccountType(s.get("type") or AccountType.EXPENSE),
                    session=prompt_session,
                )
                if acct_type is None:
                    continue
                code = prompt_category_code(
                    codes, default=str(s.get("category_code") or codes[0]), session=prompt_session
                )
                if code is None:
                    continue
                try:
                    account = create_account(
                        session,
                        name=name,
                        account_type=acct_type,
                        category_code=code,
                        description=s.get("description"),
                        ifrs_reference=s.get("ifrs_reference") or "IAS 1",
                    )
                except ValueError as e:
                    print(f"Error: {e}", file=sys.stderr)
                    continue
                if account.name != s["name"]:
                    renamed = rename_entry_account(session, entries, s["name"], account.name)
                    if renamed:
                        console.print(
                            f"Updated {renamed} entr(y/ies) from '{s['name']}' to '{account.name}'"
                        )
                session.commit()
                registry = AccountRegistry([*registry.list_chart(), account])
                created += 1
                console.print(f"[green]Created[/green] {account.code} {account.name}")

            resolved = [
                e.id
                for e in entries
                if e.account_debit in registry and e.account_credit in registry
            ]
            cleared = clear_creation_flag(session, resolved) if resolved else 0
    except SQLAlchemyError as e:
        return _error(f"review failed: {e}")

    console.print(f"Created {created} account(s); {cleared} entr(y/ies) no longer flagged")
    return 0


# ---- Typer-based console interface -------------------------------------------


app = typer.Typer(
    no_args_is_help=True,
    add_completion=False,
    help=(
        "Turn blockchain transactions into IFRS journal entries using OpenAI "
        "(Responses API). Loads OPENAI_API_KEY and DATABASE_URL from a local .env."
    ),
)


@app.command("analyze-hash")
def analyze_hash_cmd(
    tx_hash: str = typer.Argument(..., help="0x-prefixed 64-hex transaction hash."),
    *,
    hint: str | None = typer.Option(None, help="Free-text description of the transaction."),
    user_id: str | None = typer.Option(None, help="Save entries for this user."),
    database_url: str | None = typer.Option(
        None, help="Override DATABASE_URL (falls back to env var)."
    ),
    as_json: bool = typer.Option(False, "--json", help="Print JSON instead of tables."),
) -> None:
    raise typer.Exit(
        cmd_analyze_hash(
            tx_hash, hint=hint, user_id=user_id, database_url=database_url, as_json=as_json
        )
    )


@app.command("analyze-wallet")
def analyze_wallet_cmd(
    wallet: str = typer.Argument(..., help="0x-prefixed wallet address."),
    *,
    start_date: str | None = typer.Option(None, help="Earliest day to include (YYYY-MM-DD)."),
    end_date: str | None = typer.Option(None, help="Latest day to include (YYYY-MM-DD)."),
    category: list[str] | None = typer.Option(  # noqa: B008
        None, help="Only these categories (repeatable)."
    ),
    min_value: float | None = typer.Option(None, help="Skip transactions moving less."),
    limit: int = typer.Option(100, min=1, help="Maximum transactions to process."),
    include_tokens: bool = typer.Option(True, help="Fetch token transfers."),
    include_internal: bool = typer.Option(True, help="Fetch internal transactions."),
    include_failed: bool = typer.Option(False, help="Keep failed transactions."),
    save: bool = typer.Option(True, help="Save entries when --user-id is given."),
    user_id: str | None = typer.Option(None, help="Save entries for this user."),
    database_url: str | None = typer.Option(
        None, help="Override DATABASE_URL (falls back to env var)."
    ),
    as_json: bool = typer.Option(False, "--json", help="Print JSON instead of tables."),
) -> None:
    try:
        options = WalletAnalysisOptions(
            start_date=date.fromisoformat(start_date) if start_date else None,
            end_date=date.fromisoformat(end_date) if end_date else None,
            categories=frozenset(Category(c) for c in category) if category else None,
            min_value=min_value,
            limit=limit,
            include_tokens=include_tokens,
            include_internal=include_internal,
            include_failed=include_failed,
            save_entries=save,
        )
    except ValueError as e:
        raise typer.Exit(_error(str(e))) from e
    raise typer.Exit(
        cmd_analyze_wallet(
            wallet, options, user_id=user_id, database_url=database_url, as_json=as_json
        )
    )


@app.command("analyze-text")
def analyze_text_cmd(
    text: str = typer.Argument(..., help="Free-form description of a transaction."),
    *,
    user_id: str | None = typer.Option(None, help="Save entries for this user."),
    database_url: str | None = typer.Option(
        None, help="Override DATABASE_URL (falls back to env var)."
    ),
    as_json: bool = typer.Option(False, "--json", help="Print JSON instead of tables."),
) -> None:
    raise typer.Exit(
        cmd_analyze_text(text, user_id=user_id, database_url=database_url, as_json=as_json)
    )


@app.command("chart")
def chart_cmd(
    database_url: str | None = typer.Option(
        None, help="Override DATABASE_URL (falls back to env var)."
    ),
) -> None:
    raise typer.Exit(cmd_chart(database_url=database_url))


@app.command("price")
def price_cmd(
    symbol: str = typer.Argument(..., help="Token symbol, e.g. ETH or FLR."),
    amount: float | None = typer.Option(None, help="Also value this amount."),
) -> None:
    raise typer.Exit(cmd_price(symbol, amount=amount))


@app.command("review-account-suggestions")
def review_account_suggestions_cmd(
    user_id: str | None = typer.Option(None, help="Only entries of this user."),
    database_url: str | None = typer.Option(
        None, help="Override DATABASE_URL (falls back to env var)."
    ),
) -> None:
    raise typer.Exit(cmd_review_account_suggestions(user_id=user_id, database_url=database_url))


@app.callback(invoke_without_command=True)
def _root(
    ctx: typer.Context,
    log_level: str | None = typer.Option(
        None, help="Log level (defaults to CRYPTO_JOURNAL_LOG_LEVEL, else INFO)."
    ),
) -> None:
    """Root command.

    Loads ``.env`` from the current working directory (without overriding any
    already-set environment variables) and configures logging.
    """

    load_dotenv(dotenv_path=Path.cwd() / ".env", override=False)
    configure_logging(log_level)

    if ctx.invoked_subcommand is None:
        typer.echo("No subcommand provided. Use --help to see available commands.")
        raise typer.Exit(1)


if __name__ == "__main__":  # pragma: no cover
    app()
