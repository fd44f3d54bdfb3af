"""CLI entry point for duo-ledger."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

import click
from telegram import Bot

from duo_ledger.adapters.telegram import (
    TelegramTransport,
    create_application,
    run_polling,
)
from duo_ledger.config import (
    get_currency,
    get_default_split_a,
    get_participants_config,
    get_photo_debounce_seconds,
    get_telegram_token,
)
from duo_ledger.conversation import ConversationStateMachine
from duo_ledger.db import init_schema
from duo_ledger.errors import LedgerError
from duo_ledger.extraction import ReceiptExtractionService
from duo_ledger.ledger import LedgerEngine
from duo_ledger.models import Participant, Participants, Role, Split
from duo_ledger.pending import PendingReceiptStore
from duo_ledger.recurring import RecurringExpenseService
from duo_ledger.splits import SplitRuleResolver
from duo_ledger.store import PostgresLedgerStore

if TYPE_CHECKING:
    from collections.abc import Coroutine
    from datetime import date
    from typing import Any, TypeVar

    from telegram.ext import Application

    from duo_ledger.adapters.base import ChatTransport
    from duo_ledger.store import LedgerStore

    T = TypeVar("T")

logger = logging.getLogger(__name__)


def load_participants() -> Participants:
    config = get_participants_config()
    return Participants(
        a=Participant(id=config.a.user_id, name=config.a.name, role=Role.A),
        b=Participant(id=config.b.user_id, name=config.b.name, role=Role.B),
    )


async def ensure_participants(store: LedgerStore, participants: Participants) -> None:
    """Write the configured participants so transactions can reference them."""
    for participant in (participants.a, participants.b):
        await store.upsert_participant(participant)
    logger.info(
        "Participants ready: A=%s, B=%s", participants.a.name, participants.b.name
    )


def build_ledger(store: LedgerStore) -> LedgerEngine:
    default = Split.from_percent_a(get_default_split_a())
    return LedgerEngine(
        store,
        SplitRuleResolver(store, default=default),
        load_participants(),
        currency=get_currency(),
    )


def _ledger(store: LedgerStore) -> LedgerEngine:
    try:
        return build_ledger(store)
    except ValueError as exc:
        raise click.ClickException(str(exc)) from exc


def _run(coro: Coroutine[Any, Any, T]) -> T:
    try:
        return asyncio.run(coro)
    except (LedgerError, ValueError) as exc:
        raise click.ClickException(str(exc)) from exc


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
def cli(verbose: bool) -> None:
    """Duo Ledger: shared expenses for two."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@cli.command("init-db")
def init_db() -> None:
    """Create the database schema and register the participants."""

    async def _init() -> None:
        await init_schema()
        await ensure_participants(PostgresLedgerStore(), load_participants())

    _run(_init())
    click.echo("Database initialised.")


@cli.command()
def bot() -> None:
    """Run the Telegram bot with long polling."""
    try:
        token = get_telegram_token()
        participants = load_participants()
        debounce = get_photo_debounce_seconds()
    except ValueError as exc:
        raise click.ClickException(str(exc)) from exc

    store = PostgresLedgerStore()
    ledger = _ledger(store)

    def make_machine(transport: ChatTransport) -> ConversationStateMachine:
        return ConversationStateMachine(
            transport=transport,
            ledger=ledger,
            splits=ledger.splits,
            extraction=ReceiptExtractionService(participants=participants),
            pending=PendingReceiptStore(),
            recurring=RecurringExpenseService(store, ledger),
            debounce=debounce,
        )

    async def post_init(application: Application) -> None:
        await ensure_participants(store, participants)

    run_polling(create_application(token, make_machine, post_init=post_init))


@cli.command()
@click.option("--detailed", is_flag=True, help="Show paid, share and split totals.")
def balance(detailed: bool) -> None:
    """Show the outstanding balance."""
    ledger = _ledger(PostgresLedgerStore())
    message = _run(
        ledger.detailed_message() if detailed else ledger.outstanding_message()
    )
    click.echo(message)


@cli.command()
@click.option("--yes", is_flag=True, help="Do not ask for confirmation.")
def settle(yes: bool) -> None:
    """Mark every unsettled transaction as settled."""
    ledger = _ledger(PostgresLedgerStore())
    click.echo(_run(ledger.outstanding_message()))
    if not yes:
        click.confirm("Settle all unsettled transactions?", abort=True)
    count = _run(ledger.settle_all())
    click.echo(f"Settled {count} transactions.")


@cli.command("patch-balance")
@click.argument("components", nargs=-1, required=True)
@click.option(
    "--debtor",
    type=click.Choice(["a", "b"], case_sensitive=False),
    default="b",
    show_default=True,
    help="Participant who should owe the total.",
)
def patch_balance(components: tuple[str, ...], debtor: str) -> None:
    """Reset the ledger so DEBTOR owes the sum of COMPONENTS."""
    ledger = _ledger(PostgresLedgerStore())
    result = _run(ledger.patch_balance(list(components), Role(debtor.upper())))
    if result.already_applied:
        click.echo(
            f"Patch already applied; settled {result.settled} other transactions."
        )
    else:
        click.echo(
            f"Settled {result.settled} transactions and created "
            f"{len(result.created)} patch transactions."
        )
    click.echo(_run(ledger.outstanding_message()))


@cli.command("run-recurring")
@click.option(
    "--date",
    "on",
    type=click.DateTime(formats=["%Y-%m-%d"]),
    default=None,
    help="Process as if today were this date.",
)
@click.option("--notify-chat", type=int, default=None, help="Chat to report to.")
def run_recurring(on: Any, notify_chat: int | None) -> None:
    """Record the recurring expenses due today."""
    today: date | None = on.date() if on is not None else None
    store = PostgresLedgerStore()
    ledger = _ledger(store)

    async def _process() -> list[str]:
        processed = await RecurringExpenseService(store, ledger).process_due(today)
        lines = [
            f"Recurring expense recorded: {item.expense.description} - "
            f"{ledger.money(item.expense.amount)}"
            for item in processed
        ]
        if lines and notify_chat is not None:
            await _notify(notify_chat, "\n".join(lines))
        return lines

    lines = _run(_process())
    for line in lines:
        click.echo(line)
    click.echo(f"{len(lines)} recurring expense(s) processed.")


async def _notify(chat_id: int, text: str) -> None:
    async with Bot(get_telegram_token()) as telegram_bot:
        await TelegramTransport(telegram_bot).send_message(chat_id, text)


@cli.command("reset-splits")
def reset_splits() -> None:
    """Remove every category split override."""
    ledger = _ledger(PostgresLedgerStore())
    _run(ledger.splits.reset_all())
    click.echo("Category splits reset to the default.")
