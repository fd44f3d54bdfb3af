"""Per-chat conversation flows on top of the ledger."""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from decimal import Decimal
from typing import TYPE_CHECKING

from duo_ledger.adapters.base import Button
from duo_ledger.commands import (
    PERCENT_HINT,
    parse_add_args,
    parse_amount,
    parse_command,
    parse_day,
    parse_percent,
    parse_quick_expense,
    parse_split_args,
)
from duo_ledger.errors import ExternalServiceError, NotFoundError, ValidationError
from duo_ledger.ledger import percent_label
from duo_ledger.models import CorrectionKind, Role
from duo_ledger.photos import (
    DEFAULT_CONTENT_TYPE,
    DEFAULT_DEBOUNCE_SECONDS,
    PhotoBatchCollector,
)
from duo_ledger.session import (
    AwaitingAmountConfirmation,
    AwaitingPayer,
    EditLast,
    Idle,
    ManualEntry,
    ManualStep,
    RecurringEntry,
    RecurringStep,
    Search,
    SessionStore,
    SplitCustomInput,
)
from duo_ledger.splits import normalize_category

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Sequence

    from duo_ledger.adapters.base import ChatTransport, Keyboard
    from duo_ledger.commands import Command
    from duo_ledger.extraction import ReceiptExtractionService
    from duo_ledger.ledger import LedgerEngine
    from duo_ledger.models import (
        CommitResult,
        Participant,
        ReceiptData,
        ReceiptImage,
        Transaction,
    )
    from duo_ledger.pending import PendingReceiptStore
    from duo_ledger.recurring import RecurringExpenseService
    from duo_ledger.session import Mode
    from duo_ledger.splits import SplitRuleResolver

logger = logging.getLogger(__name__)

CATEGORIES = (
    "Food",
    "Groceries",
    "Transport",
    "Shopping",
    "Bills",
    "Entertainment",
    "Medical",
    "Travel",
    "Other",
)

FUN_CONFIRMATIONS = {
    "Food": "Yum! Hope it was delicious.",
    "Groceries": "Fridge restocked.",
    "Transport": "Safe travels!",
    "Shopping": "Retail therapy noted.",
    "Bills": "Bills, bills, bills.",
    "Entertainment": "Hope it was fun!",
    "Medical": "Get well soon.",
    "Travel": "Bon voyage!",
}

HELP_TEXT = """\
Send receipt photos (several at once is fine) and I'll read them.

/add - record an expense step by step
/add <amount> <category> ["description"] - record one you paid
/balance - who owes whom
/detail - balance breakdown
/settle - mark everything as paid
/split - view or change category splits
/recurring - add a monthly expense
/edit - change the last transaction
/recent - last 10 transactions
/search <term> - find transactions
/cancel - stop the current step

You can also type quick expenses like "130 groceries" or "coffee 5.50".\
"""

NOT_A_PARTICIPANT = "Sorry, this ledger is private."
GENERIC_ERROR = "Sorry, something went wrong. Please try again."
EXTRACTION_ERROR = "Sorry, I couldn't read those receipts. Please try again."
NO_EXPENSE_FOUND = "Could not find valid expense data in these images."
RECEIPT_EXPIRED = "That receipt has expired. Please send the photos again."
STALE_BUTTON = "That button is no longer active."
CANCELLED = "Cancelled."


def fun_confirmation(category: str) -> str:
    return FUN_CONFIRMATIONS.get(category, "Expense recorded.")


def _rows(buttons: Sequence[Button], width: int = 3) -> Keyboard:
    return [list(buttons[i : i + width]) for i in range(0, len(buttons), width)]


class ConversationStateMachine:
    """Route chat events through the per-chat session mode.

    Events for one chat run one at a time under that chat's lock; different
    chats proceed independently. Every handler runs inside an error boundary
    that replies to the chat and returns it to idle.
    """

    def __init__(
        self,
        *,
        transport: ChatTransport,
        ledger: LedgerEngine,
        splits: SplitRuleResolver,
        extraction: ReceiptExtractionService,
        pending: PendingReceiptStore,
        recurring: RecurringExpenseService,
        sessions: SessionStore | None = None,
        debounce: float = DEFAULT_DEBOUNCE_SECONDS,
    ) -> None:
        self._transport = transport
        self._ledger = ledger
        self._splits = splits
        self._extraction = extraction
        self._pending = pending
        self._recurring = recurring
        self.participants = ledger.participants
        self.sessions = sessions or SessionStore()
        self.photos = PhotoBatchCollector(
            transport, self.on_photo_batch, debounce=debounce
        )
        self._locks: defaultdict[int, asyncio.Lock] = defaultdict(asyncio.Lock)

    # -- entry points -------------------------------------------------------

    async def handle_text(self, chat_id: int, user_id: int, text: str) -> None:
        sender = self.participants.find(user_id)
        if sender is None:
            await self._say(chat_id, NOT_A_PARTICIPANT)
            return
        await self._guarded(chat_id, lambda: self._on_text(chat_id, sender, text))

    async def handle_photo(
        self,
        chat_id: int,
        user_id: int,
        photo_ref: str,
        content_type: str = DEFAULT_CONTENT_TYPE,
    ) -> None:
        if self.participants.find(user_id) is None:
            await self._say(chat_id, NOT_A_PARTICIPANT)
            return
        await self._guarded(
            chat_id,
            lambda: self.photos.add_photo(chat_id, photo_ref, user_id, content_type),
        )

    async def handle_callback(self, chat_id: int, user_id: int, data: str) -> None:
        sender = self.participants.find(user_id)
        if sender is None:
            logger.warning("Ignoring callback from non-participant %s", user_id)
            return
        await self._guarded(
            chat_id, lambda: self._on_callback(chat_id, sender, data)
        )

    async def on_photo_batch(
        self, chat_id: int, submitter_id: int, images: list[ReceiptImage]
    ) -> None:
        """Collector callback: extract a flushed batch and ask for confirmation."""
        await self._guarded(
            chat_id, lambda: self._process_batch(chat_id, submitter_id, images)
        )

    # -- error boundary -----------------------------------------------------

    async def _guarded(
        self, chat_id: int, handler: Callable[[], Awaitable[None]]
    ) -> None:
        async with self._locks[chat_id]:
            try:
                await handler()
            except (ValidationError, NotFoundError) as exc:
                self.sessions.reset(chat_id)
                await self._say_safely(chat_id, str(exc))
            except ExternalServiceError:
                logger.warning("External service failed for chat %s", chat_id)
                self.sessions.reset(chat_id)
                await self._say_safely(chat_id, EXTRACTION_ERROR)
            except Exception:
                logger.exception("Unhandled error in chat %s", chat_id)
                self.sessions.reset(chat_id)
                await self._say_safely(chat_id, GENERIC_ERROR)

    def _abandon(self, chat_id: int) -> Mode:
        """Return the chat to idle, dropping any receipt staged by its mode."""
        previous = self.sessions.reset(chat_id)
        if isinstance(previous, AwaitingAmountConfirmation | AwaitingPayer):
            self._pending.consume(previous.receipt_id)
        return previous

    async def _say(
        self, chat_id: int, text: str, buttons: Keyboard | None = None
    ) -> int:
        return await self._transport.send_message(chat_id, text, buttons)

    async def _say_safely(self, chat_id: int, text: str) -> None:
        try:
            await self._say(chat_id, text)
        except Exception:
            logger.warning(
                "Could not send error reply to chat %s", chat_id, exc_info=True
            )

    # -- text ---------------------------------------------------------------

    async def _on_text(self, chat_id: int, sender: Participant, text: str) -> None:
        if self.photos.is_collecting(chat_id):
            await self.photos.interrupt(chat_id)

        command = parse_command(text)
        if command is not None:
            await self._on_command(chat_id, sender, command)
            return

        mode = self.sessions.get(chat_id)
        if not isinstance(mode, Idle) and text.strip().lower() == "cancel":
            self._abandon(chat_id)
            await self._say(chat_id, CANCELLED)
            return

        if isinstance(mode, AwaitingAmountConfirmation):
            await self._confirm_amount_text(chat_id, mode, text)
        elif isinstance(mode, AwaitingPayer):
            await self._receipt_payer_text(chat_id, mode, text)
        elif isinstance(mode, ManualEntry):
            await self._manual_step(chat_id, mode, text)
        elif isinstance(mode, RecurringEntry):
            await self._recurring_step(chat_id, mode, text)
        elif isinstance(mode, SplitCustomInput):
            await self._split_custom_input(chat_id, mode, text)
        elif isinstance(mode, EditLast):
            await self._edit_last(chat_id, mode, text)
        elif isinstance(mode, Search):
            self.sessions.reset(chat_id)
            await self._search(chat_id, text)
        else:
            await self._idle_text(chat_id, sender, text)

    async def _idle_text(self, chat_id: int, sender: Participant, text: str) -> None:
        quick = parse_quick_expense(text)
        if quick is None:
            await self._say(
                chat_id,
                "Send a receipt photo, type an expense like \"130 groceries\", "
                "or see /help.",
            )
            return
        result = await self._ledger.commit_expense(
            sender.id, quick.amount, quick.category, quick.description
        )
        await self._say_committed(chat_id, result)

    # -- commands -----------------------------------------------------------

    async def _on_command(
        self, chat_id: int, sender: Participant, command: Command
    ) -> None:
        name, args = command.name, command.args
        if name in ("start", "help"):
            await self._say(chat_id, HELP_TEXT)
        elif name == "cancel":
            previous = self._abandon(chat_id)
            if isinstance(previous, Idle):
                await self._say(chat_id, "Nothing to cancel.")
            else:
                await self._say(chat_id, CANCELLED)
        elif name == "add":
            await self._add_command(chat_id, sender, args)
        elif name == "balance":
            await self._say(chat_id, await self._ledger.outstanding_message())
        elif name == "detail":
            await self._say(chat_id, await self._ledger.detailed_message())
        elif name == "settle":
            await self._settle_prompt(chat_id)
        elif name == "split":
            await self._split_command(chat_id, args)
        elif name == "recurring":
            self.sessions.reset(chat_id)
            self.sessions.enter(chat_id, RecurringEntry())
            await self._say(
                chat_id, "What is the recurring expense for? (e.g. Internet)"
            )
        elif name == "edit":
            await self._edit_command(chat_id)
        elif name == "recent":
            await self._recent(chat_id)
        elif name == "search":
            self.sessions.reset(chat_id)
            if args:
                await self._search(chat_id, " ".join(args))
            else:
                self.sessions.enter(chat_id, Search())
                await self._say(chat_id, "What should I search for?")
        else:
            await self._say(chat_id, f"Unknown command /{name}. See /help.")

    async def _add_command(
        self, chat_id: int, sender: Participant, args: list[str]
    ) -> None:
        self.sessions.reset(chat_id)
        if not args:
            self.sessions.enter(chat_id, ManualEntry())
            await self._say(chat_id, "How much was it?")
            return
        parsed = parse_add_args(args)
        result = await self._ledger.commit_expense(
            sender.id, parsed.amount, parsed.category, parsed.description
        )
        await self._say_committed(chat_id, result)

    async def _settle_prompt(self, chat_id: int) -> None:
        balance = await self._ledger.outstanding_message()
        await self._say(
            chat_id,
            f"{balance}\n\nMark all unsettled transactions as paid?",
            [
                [
                    Button("Settle all", "settle:confirm"),
                    Button("Cancel", "settle:cancel"),
                ]
            ],
        )

    async def _split_command(self, chat_id: int, args: list[str]) -> None:
        self.sessions.reset(chat_id)
        parsed = parse_split_args(args)
        if parsed.reset:
            await self._splits.reset_all()
            await self._say(chat_id, "All category splits reset to the default.")
        elif parsed.category is not None and parsed.percent_a is not None:
            await self._set_split(chat_id, parsed.category, parsed.percent_a)
        else:
            await self._show_splits(chat_id)

    async def _show_splits(self, chat_id: int) -> None:
        overrides = await self._splits.overrides()
        a_name = self.participants.a.name
        b_name = self.participants.b.name
        categories = list(CATEGORIES) + sorted(set(overrides) - set(CATEGORIES))

        lines = [f"Category splits ({a_name}-{b_name}):"]
        for category in categories:
            split = overrides.get(category, self._splits.default)
            marker = "" if category in overrides else " (default)"
            lines.append(
                f"{category}: {percent_label(split.percent_a)}-"
                f"{percent_label(split.percent_b)}{marker}"
            )
        lines.append("")
        lines.append("Tap a category to change it.")

        buttons = _rows([Button(c, f"split:{c}") for c in categories])
        buttons.append([Button("Reset all", "split_reset:")])
        await self._say(chat_id, "\n".join(lines), buttons)

    async def _set_split(self, chat_id: int, category: str, percent_a: Decimal) -> None:
        split = await self._splits.update(category, percent_a, Decimal(1) - percent_a)
        await self._say(
            chat_id,
            f"{normalize_category(category)} is now split "
            f"{percent_label(split.percent_a)}% {self.participants.a.name} / "
            f"{percent_label(split.percent_b)}% {self.participants.b.name}.",
        )

    async def _edit_command(self, chat_id: int) -> None:
        self.sessions.reset(chat_id)
        recent = await self._ledger.recent_transactions(1)
        if not recent:
            await self._say(chat_id, "There are no transactions to edit yet.")
            return
        tx = recent[0]
        self.sessions.enter(chat_id, EditLast(transaction_id=tx.id))
        await self._say(
            chat_id,
            f"{self._ledger.describe(tx)}\n\n"
            "What should change? e.g. \"split 70-30\", \"amount 15\", "
            "\"category food\", \"delete\".",
        )

    async def _recent(self, chat_id: int) -> None:
        transactions = await self._ledger.recent_transactions(10)
        if not transactions:
            await self._say(chat_id, "No transactions yet.")
            return
        lines = ["Recent transactions:"]
        lines.extend(self._ledger.describe(tx) for tx in transactions)
        await self._say(chat_id, "\n".join(lines))

    async def _search(self, chat_id: int, term: str) -> None:
        term = term.strip()
        if not term:
            await self._say(chat_id, "Please give me something to search for.")
            return
        results = await self._ledger.search(term)
        if not results:
            await self._say(chat_id, f'No transactions found for "{term}".')
            return
        lines = [f'Found {len(results)} transaction(s) for "{term}":']
        lines.extend(self._ledger.describe(tx) for tx in results)
        await self._say(chat_id, "\n".join(lines))

    # -- receipt flow -------------------------------------------------------

    async def _process_batch(
        self, chat_id: int, submitter_id: int, images: list[ReceiptImage]
    ) -> None:
        self.sessions.reset(chat_id)
        receipt = await self._extraction.extract(images)
        if not receipt.has_expense:
            await self._say(chat_id, NO_EXPENSE_FOUND)
            return

        receipt_id = self._pending.new_id()
        self._pending.stage(receipt_id, receipt, chat_id, submitter_id)
        self.sessions.enter(chat_id, AwaitingAmountConfirmation(receipt_id=receipt_id))
        await self._say(
            chat_id,
            self._receipt_summary(receipt),
            [
                [
                    Button("Yes", f"confirm:{receipt_id}"),
                    Button("Cancel", f"cancel:{receipt_id}"),
                ]
            ],
        )

    def _receipt_summary(self, receipt: ReceiptData) -> str:
        items = receipt.items()
        lines = ["Receipt read:"]
        for item in items:
            amount = self._ledger.money(item.amount)
            lines.append(f"- {item.merchant}: {amount} ({item.category})")
        lines.append(f"Total: {self._ledger.money(receipt.grand_total())}")
        lines.append("")
        lines.append("Record this? Tap Yes, or type a different total.")
        return "\n".join(lines)

    async def _confirm_amount_text(
        self, chat_id: int, mode: AwaitingAmountConfirmation, text: str
    ) -> None:
        answer = text.strip().lower()
        if answer in ("y", "yes", "ok", "confirm"):
            await self._ask_receipt_payer(chat_id, mode.receipt_id, None)
            return
        if answer in ("n", "no"):
            self._abandon(chat_id)
            await self._say(chat_id, CANCELLED)
            return
        try:
            override = parse_amount(text)
        except ValidationError as exc:
            await self._say(chat_id, f"{exc}\nOr tap Yes to keep the extracted total.")
            return
        await self._ask_receipt_payer(chat_id, mode.receipt_id, override)

    async def _ask_receipt_payer(
        self, chat_id: int, receipt_id: str, override: Decimal | None
    ) -> None:
        if self._pending.get(receipt_id) is None:
            self.sessions.reset(chat_id)
            await self._say(chat_id, RECEIPT_EXPIRED)
            return
        self.sessions.enter(
            chat_id, AwaitingPayer(receipt_id=receipt_id, amount_override=override)
        )
        await self._say(chat_id, "Who paid?", self._payer_buttons())

    async def _receipt_payer_text(
        self, chat_id: int, mode: AwaitingPayer, text: str
    ) -> None:
        payer = self.participants.match_name(text)
        if payer is None:
            await self._say(chat_id, "Please choose who paid.", self._payer_buttons())
            return
        await self._commit_receipt(chat_id, mode, payer)

    async def _commit_receipt(
        self, chat_id: int, mode: AwaitingPayer, payer: Participant
    ) -> None:
        entry = self._pending.get(mode.receipt_id)
        if entry is None:
            self.sessions.reset(chat_id)
            await self._say(chat_id, RECEIPT_EXPIRED)
            return
        transactions, balance = await self._ledger.commit_receipt(
            payer.id, entry.receipt, mode.amount_override
        )
        self._pending.consume(mode.receipt_id)
        self.sessions.reset(chat_id)
        await self._say(chat_id, self._recorded_text(transactions, balance))

    # -- manual entry -------------------------------------------------------

    async def _manual_step(self, chat_id: int, mode: ManualEntry, text: str) -> None:
        if mode.step is ManualStep.AMOUNT:
            try:
                amount = parse_amount(text)
            except ValidationError as exc:
                await self._say(chat_id, str(exc))
                return
            self.sessions.enter(
                chat_id, ManualEntry(step=ManualStep.CATEGORY, amount=amount)
            )
            await self._say(
                chat_id,
                "Which category?",
                _rows([Button(c, f"category:{c}") for c in CATEGORIES]),
            )
        elif mode.step is ManualStep.CATEGORY:
            await self._manual_category(chat_id, mode, text)
        elif mode.step is ManualStep.DESCRIPTION:
            self.sessions.enter(
                chat_id,
                ManualEntry(
                    step=ManualStep.PAYER,
                    amount=mode.amount,
                    category=mode.category,
                    description=text.strip(),
                ),
            )
            await self._say(chat_id, "Who paid?", self._payer_buttons())
        else:
            payer = self.participants.match_name(text)
            if payer is None:
                await self._say(
                    chat_id, "Please choose who paid.", self._payer_buttons()
                )
                return
            await self._commit_manual(chat_id, mode, payer)

    async def _manual_category(
        self, chat_id: int, mode: ManualEntry, text: str
    ) -> None:
        self.sessions.enter(
            chat_id,
            ManualEntry(
                step=ManualStep.DESCRIPTION,
                amount=mode.amount,
                category=normalize_category(text),
            ),
        )
        await self._say(chat_id, "What was it for?")

    async def _commit_manual(
        self, chat_id: int, mode: ManualEntry, payer: Participant
    ) -> None:
        if mode.amount is None:
            msg = "The amount is missing. Please start again with /add."
            raise ValidationError(msg)
        result = await self._ledger.commit_expense(
            payer.id, mode.amount, mode.category, mode.description
        )
        self.sessions.reset(chat_id)
        await self._say_committed(chat_id, result)

    # -- recurring entry ----------------------------------------------------

    async def _recurring_step(
        self, chat_id: int, mode: RecurringEntry, text: str
    ) -> None:
        if mode.step is RecurringStep.DESCRIPTION:
            description = text.strip()
            if not description:
                await self._say(chat_id, "Please enter a description.")
                return
            self.sessions.enter(
                chat_id,
                RecurringEntry(step=RecurringStep.AMOUNT, description=description),
            )
            await self._say(chat_id, "How much is it each month?")
        elif mode.step is RecurringStep.AMOUNT:
            try:
                amount = parse_amount(text)
            except ValidationError as exc:
                await self._say(chat_id, str(exc))
                return
            self.sessions.enter(
                chat_id,
                RecurringEntry(
                    step=RecurringStep.DAY, description=mode.description, amount=amount
                ),
            )
            await self._say(chat_id, "Which day of the month? (1-31)")
        elif mode.step is RecurringStep.DAY:
            try:
                day = parse_day(text)
            except ValidationError as exc:
                await self._say(chat_id, str(exc))
                return
            self.sessions.enter(
                chat_id,
                RecurringEntry(
                    step=RecurringStep.PAYER,
                    description=mode.description,
                    amount=mode.amount,
                    day=day,
                ),
            )
            await self._say(chat_id, "Who pays it?", self._payer_buttons())
        else:
            payer = self.participants.match_name(text)
            if payer is None:
                await self._say(
                    chat_id, "Please choose who pays.", self._payer_buttons()
                )
                return
            await self._commit_recurring(chat_id, mode, payer)

    async def _commit_recurring(
        self, chat_id: int, mode: RecurringEntry, payer: Participant
    ) -> None:
        if mode.description is None or mode.amount is None or mode.day is None:
            msg = (
                "The recurring expense is incomplete. "
                "Please start again with /recurring."
            )
            raise ValidationError(msg)
        expense = await self._recurring.create(
            mode.description, mode.amount, payer.id, mode.day
        )
        self.sessions.reset(chat_id)
        await self._say(
            chat_id,
            f"Recurring expense saved: {expense.description}, "
            f"{self._ledger.money(expense.amount)} on day {expense.day_of_month} "
            f"of every month, paid by {payer.name}.",
        )

    # -- split settings -----------------------------------------------------

    async def _split_custom_input(
        self, chat_id: int, mode: SplitCustomInput, text: str
    ) -> None:
        try:
            percent_a = parse_percent(text)
        except ValidationError:
            await self._say(chat_id, PERCENT_HINT)
            return
        self.sessions.reset(chat_id)
        await self._set_split(chat_id, mode.category, percent_a)

    # -- edit last ----------------------------------------------------------

    async def _edit_last(self, chat_id: int, mode: EditLast, text: str) -> None:
        target = await self._ledger.get_transaction(mode.transaction_id)
        others = [
            tx
            for tx in await self._ledger.recent_transactions(5)
            if tx.id != target.id
        ]
        candidates: list[Transaction] = [target, *others]
        correction = await self._extraction.interpret_correction(text, candidates)
        self.sessions.reset(chat_id)

        replies: list[str] = []
        changed = False
        for action in correction.actions:
            if action.kind is CorrectionKind.UNKNOWN:
                replies.append(
                    action.status_message or "I couldn't understand that change."
                )
                continue
            if action.transaction_id is None:
                action = action.model_copy(update={"transaction_id": target.id})
            try:
                message = await self._ledger.apply_correction(action)
            except (ValidationError, NotFoundError) as exc:
                replies.append(f"Could not apply that change: {exc}")
                continue
            if message:
                replies.append(message)
                changed = True

        if changed:
            replies.append("")
            replies.append(await self._ledger.outstanding_message())
        await self._say(chat_id, "\n".join(replies))

    # -- callbacks ----------------------------------------------------------

    async def _on_callback(self, chat_id: int, sender: Participant, data: str) -> None:
        kind, _, arg = data.partition(":")
        mode = self.sessions.get(chat_id)

        if kind == "confirm":
            entry = self._pending.get(arg)
            live = entry is not None and entry.chat_id == chat_id
            if not live and self._staged_id(mode) != arg:
                await self._say(chat_id, STALE_BUTTON)
                return
            await self._ask_receipt_payer(chat_id, arg, None)
        elif kind == "cancel":
            if arg and self._staged_id(mode) != arg:
                entry = self._pending.get(arg)
                if entry is not None and entry.chat_id == chat_id:
                    self._pending.consume(arg)
            else:
                self._abandon(chat_id)
            await self._say(chat_id, CANCELLED)
        elif kind == "payer":
            await self._payer_callback(chat_id, mode, arg)
        elif kind == "category":
            if (
                not isinstance(mode, ManualEntry)
                or mode.step is not ManualStep.CATEGORY
            ):
                await self._say(chat_id, STALE_BUTTON)
                return
            await self._manual_category(chat_id, mode, arg)
        elif kind == "split":
            self.sessions.reset(chat_id)
            self.sessions.enter(chat_id, SplitCustomInput(category=arg))
            await self._say(
                chat_id,
                f"Enter {self.participants.a.name}'s share of {arg} as a whole "
                f"number from 0 to 100 (the rest goes to {self.participants.b.name}).",
            )
        elif kind == "split_reset":
            self.sessions.reset(chat_id)
            await self._splits.reset_all()
            await self._say(chat_id, "All category splits reset to the default.")
        elif kind == "settle":
            if arg == "confirm":
                count = await self._ledger.settle_all()
                await self._say(
                    chat_id, f"All settled! Marked {count} transactions as paid."
                )
            else:
                await self._say(chat_id, "Settlement cancelled.")
        else:
            logger.warning("Unknown callback data %r from %s", data, sender.id)

    async def _payer_callback(self, chat_id: int, mode: Mode, arg: str) -> None:
        try:
            payer = self.participants.by_role(Role(arg))
        except ValueError:
            logger.warning("Invalid payer callback %r", arg)
            await self._say(chat_id, STALE_BUTTON)
            return

        if isinstance(mode, AwaitingPayer):
            await self._commit_receipt(chat_id, mode, payer)
        elif isinstance(mode, ManualEntry) and mode.step is ManualStep.PAYER:
            await self._commit_manual(chat_id, mode, payer)
        elif isinstance(mode, RecurringEntry) and mode.step is RecurringStep.PAYER:
            await self._commit_recurring(chat_id, mode, payer)
        else:
            await self._say(chat_id, STALE_BUTTON)

    # -- helpers ------------------------------------------------------------

    @staticmethod
    def _staged_id(mode: Mode) -> str | None:
        if isinstance(mode, AwaitingAmountConfirmation | AwaitingPayer):
            return mode.receipt_id
        return None

    def _payer_buttons(self) -> Keyboard:
        return [
            [
                Button(self.participants.a.name, f"payer:{Role.A.value}"),
                Button(self.participants.b.name, f"payer:{Role.B.value}"),
            ],
            [Button("Cancel", "cancel:")],
        ]

    async def _say_committed(self, chat_id: int, result: CommitResult) -> None:
        await self._say(
            chat_id, self._recorded_text([result.transaction], result.balance_message)
        )

    def _recorded_text(self, transactions: Sequence[Transaction], balance: str) -> str:
        lines = []
        for tx in transactions:
            payer = self.participants.by_role(tx.payer_role)
            lines.append(
                f"Recorded {self._ledger.money(tx.amount)} for {tx.description} "
                f"({tx.category}), paid by {payer.name}."
            )
        if transactions:
            lines.append(fun_confirmation(transactions[-1].category))
        lines.append("")
        lines.append(balance)
        return "\n".join(lines)
