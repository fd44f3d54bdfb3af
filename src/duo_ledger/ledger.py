"""Balance computation, expense commits, settlement and balance patches."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import TYPE_CHECKING

from duo_ledger.errors import NotFoundError, ValidationError
from duo_ledger.models import (
    CommitResult,
    CorrectionKind,
    DetailedBalance,
    NewTransaction,
    Owed,
    PatchResult,
    Role,
    Split,
)
from duo_ledger.splits import DEFAULT_SPLIT, normalize_category

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Sequence

    from duo_ledger.models import (
        CorrectionAction,
        Participant,
        Participants,
        ReceiptData,
        Transaction,
    )
    from duo_ledger.splits import SplitRuleResolver
    from duo_ledger.store import LedgerStore

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
PATCH_CATEGORY = "Data Patch"
PATCH_DESCRIPTION_PREFIX = "Data patch: Component"
PATCH_TOLERANCE = Decimal("0.01")


def to_amount(value: Decimal | float | int | str) -> Decimal:
    """Parse and round a monetary amount, rejecting anything not positive."""
    try:
        amount = Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)
    except (InvalidOperation, ValueError):
        msg = f"Invalid amount: {value!r}"
        raise ValidationError(msg) from None
    if not amount.is_finite() or amount <= 0:
        msg = f"Amount must be greater than zero, got {value}"
        raise ValidationError(msg)
    return amount


def transaction_owed(
    amount: Decimal,
    payer_role: Role,
    percent_a: Decimal | None = None,
    percent_b: Decimal | None = None,
    *,
    default: Split = DEFAULT_SPLIT,
) -> Owed:
    """Return what a single transaction makes the non-payer owe.

    The payer's own share is never owed; omitted percentages fall back to
    ``default``.
    """
    share_a = amount * (percent_a if percent_a is not None else default.percent_a)
    share_b = amount * (percent_b if percent_b is not None else default.percent_b)
    if payer_role is Role.A:
        return Owed(b_owes=share_b)
    return Owed(a_owes=share_a)


def summarize(
    transactions: Iterable[Transaction], default: Split = DEFAULT_SPLIT
) -> DetailedBalance:
    """Accumulate paid and share totals over ``transactions``."""
    a_paid = b_paid = a_share = b_share = total = Decimal(0)
    for tx in transactions:
        if tx.payer_role is Role.A:
            a_paid += tx.amount
        else:
            b_paid += tx.amount
        percent_a = tx.percent_a if tx.percent_a is not None else default.percent_a
        percent_b = tx.percent_b if tx.percent_b is not None else default.percent_b
        a_share += tx.amount * percent_a
        b_share += tx.amount * percent_b
        total += tx.amount

    if total > 0:
        avg_a = a_share / total * 100
        avg_b = b_share / total * 100
    else:
        avg_a = default.percent_a * 100
        avg_b = default.percent_b * 100

    return DetailedBalance(
        a_paid=a_paid,
        b_paid=b_paid,
        a_share=a_share,
        b_share=b_share,
        total_spending=a_paid + b_paid,
        avg_percent_a=avg_a,
        avg_percent_b=avg_b,
    )


def owed_from_nets(a_net: Decimal, b_net: Decimal) -> Owed:
    """Turn per-participant nets (paid - share) into amounts owed.

    A negative net owes its absolute value. When both nets are negative,
    which only happens with rows whose split does not sum to one, each side
    owes its own amount; the two debts are reported, not netted.
    """
    if a_net > 0 and b_net < 0:
        return Owed(b_owes=-b_net)
    if b_net > 0 and a_net < 0:
        return Owed(a_owes=-a_net)
    if a_net < 0 and b_net < 0:
        logger.warning("Both participants have a negative net: %s / %s", a_net, b_net)
        return Owed(a_owes=-a_net, b_owes=-b_net)
    return Owed(a_owes=max(Decimal(0), -a_net), b_owes=max(Decimal(0), -b_net))


class LedgerEngine:
    """Read and write the shared ledger.

    The engine never caches transactions; every balance is replayed from the
    unsettled rows in the store.
    """

    def __init__(
        self,
        store: LedgerStore,
        splits: SplitRuleResolver,
        participants: Participants,
        *,
        currency: str = "SGD",
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self.splits = splits
        self.participants = participants
        self.currency = currency
        self._clock = clock or (lambda: datetime.now(tz=UTC))

    @property
    def default_split(self) -> Split:
        return self.splits.default

    def transaction_owed(
        self,
        amount: Decimal,
        payer_role: Role,
        percent_a: Decimal | None = None,
        percent_b: Decimal | None = None,
    ) -> Owed:
        return transaction_owed(
            amount, payer_role, percent_a, percent_b, default=self.default_split
        )

    async def outstanding_balance(self) -> Owed:
        summary = summarize(await self._store.list_unsettled(), self.default_split)
        return owed_from_nets(summary.a_net, summary.b_net)

    async def detailed_balance(self) -> DetailedBalance:
        return summarize(await self._store.list_unsettled(), self.default_split)

    # -- writes -------------------------------------------------------------

    async def commit_expense(
        self,
        payer_id: int,
        amount: Decimal | float | str,
        category: str | None,
        description: str | None,
        occurred_at: datetime | None = None,
    ) -> CommitResult:
        """Record an expense with its category split snapshotted.

        Raises ValidationError for a non-positive amount and NotFoundError
        when ``payer_id`` is not a participant.
        """
        payer = await self.resolve_payer(payer_id)
        tx = await self._insert_expense(
            payer, to_amount(amount), category, description, occurred_at
        )
        return CommitResult(
            transaction=tx, balance_message=await self.outstanding_message()
        )

    async def commit_receipt(
        self,
        payer_id: int,
        receipt: ReceiptData,
        amount_override: Decimal | None = None,
    ) -> tuple[list[Transaction], str]:
        """Record a confirmed receipt.

        Each extracted line item becomes a transaction. With an override the
        receipt is recorded as one transaction for that amount.
        """
        payer = await self.resolve_payer(payer_id)
        items = receipt.items()
        if not items:
            msg = "The receipt has no amounts to record"
            raise ValidationError(msg)

        if amount_override is not None:
            first = items[0]
            new = [
                await self._new_expense(
                    payer,
                    to_amount(amount_override),
                    receipt.category if len(items) > 1 else first.category,
                    receipt.merchant or first.merchant,
                    self._occurred(first.purchase_date),
                )
            ]
        else:
            new = [
                await self._new_expense(
                    payer,
                    to_amount(item.amount),
                    item.category,
                    item.merchant,
                    self._occurred(item.purchase_date),
                )
                for item in items
            ]

        async with self._store.atomic() as unit:
            saved = [await unit.insert_transaction(tx) for tx in new]
        for tx in saved:
            _log_recorded(tx)
        return saved, await self.outstanding_message()

    async def settle_all(self) -> int:
        """Mark every unsettled transaction settled in one atomic unit."""
        async with self._store.atomic() as unit:
            count = await unit.settle()
        logger.info("Settled %d transactions", count)
        return count

    async def patch_balance(
        self, components: Sequence[Decimal | float | str], debtor: Role = Role.B
    ) -> PatchResult:
        """Reset the ledger so ``debtor`` owes exactly the sum of ``components``.

        Inside one atomic unit: settle every unsettled transaction, then add
        one creditor-paid 50/50 transaction of twice each component. Marker
        transactions from an earlier run that already produce the target are
        kept and nothing new is inserted.
        """
        targets = [to_amount(component) for component in components]
        if not targets:
            msg = "At least one patch component is required"
            raise ValidationError(msg)
        target_total = sum(targets, Decimal(0))
        creditor = self.participants.by_role(debtor.other)
        half = Decimal("0.5")

        async with self._store.atomic() as unit:
            unsettled = await unit.list_unsettled()
            markers = [tx for tx in unsettled if is_patch_marker(tx)]
            if len(markers) >= len(targets):
                summary = summarize(markers, self.default_split)
                owed = owed_from_nets(summary.a_net, summary.b_net)
                owed_now = owed.b_owes if debtor is Role.B else owed.a_owes
                if abs(owed_now - target_total) < PATCH_TOLERANCE:
                    marker_ids = {tx.id for tx in markers}
                    others = [tx.id for tx in unsettled if tx.id not in marker_ids]
                    settled = await unit.settle(others) if others else 0
                    logger.info(
                        "Balance patch already applied; settled %d other transactions",
                        settled,
                    )
                    return PatchResult(
                        settled=settled, created=[], already_applied=True
                    )

            settled = await unit.settle()
            created: list[Transaction] = []
            now = self._clock()
            for number, component in enumerate(targets, start=1):
                created.append(
                    await unit.insert_transaction(
                        NewTransaction(
                            amount=component * 2,
                            currency=self.currency,
                            category=PATCH_CATEGORY,
                            description=(
                                f"{PATCH_DESCRIPTION_PREFIX} {number} ({component})"
                            ),
                            payer_id=creditor.id,
                            occurred_at=now,
                            percent_a=half,
                            percent_b=half,
                        )
                    )
                )

        logger.info(
            "Balance patched: settled %d, created %d, %s owes %s",
            settled,
            len(created),
            debtor.value,
            target_total,
        )
        return PatchResult(settled=settled, created=created, already_applied=False)

    # -- edits --------------------------------------------------------------

    async def get_transaction(self, tx_id: int) -> Transaction:
        tx = await self._store.get_transaction(tx_id)
        if tx is None:
            msg = f"Transaction {tx_id} not found"
            raise NotFoundError(msg)
        return tx

    async def edit_transaction(
        self,
        tx_id: int,
        *,
        amount: Decimal | None = None,
        category: str | None = None,
        description: str | None = None,
        split: Split | None = None,
        payer_role: Role | None = None,
    ) -> Transaction:
        changes: dict[str, object] = {}
        if amount is not None:
            changes["amount"] = to_amount(amount)
        if category is not None:
            changes["category"] = normalize_category(category)
        if description is not None:
            changes["description"] = description.strip()
        if split is not None:
            changes["percent_a"] = split.percent_a
            changes["percent_b"] = split.percent_b
        if payer_role is not None:
            changes["payer_id"] = self.participants.by_role(payer_role).id

        tx = await self._store.update_transaction(tx_id, **changes)
        if tx is None:
            msg = f"Transaction {tx_id} not found"
            raise NotFoundError(msg)
        logger.info("Transaction %d edited: %s", tx_id, ", ".join(changes))
        return tx

    async def delete_transaction(self, tx_id: int) -> None:
        if not await self._store.delete_transaction(tx_id):
            msg = f"Transaction {tx_id} not found"
            raise NotFoundError(msg)
        logger.info("Transaction %d deleted", tx_id)

    async def apply_correction(self, action: CorrectionAction) -> str | None:
        """Apply one interpreted correction and describe the result.

        Returns None for UNKNOWN actions.
        """
        if action.kind is CorrectionKind.UNKNOWN:
            return None
        if action.transaction_id is None:
            msg = "The change does not say which transaction to edit"
            raise ValidationError(msg)

        tx_id = action.transaction_id
        data = action.data
        if action.kind is CorrectionKind.DELETE:
            tx = await self.get_transaction(tx_id)
            await self.delete_transaction(tx_id)
            return f'Deleted "{tx.description}"'

        if data is None:
            msg = f"No values given for {action.kind.value}"
            raise ValidationError(msg)

        if action.kind is CorrectionKind.UPDATE_SPLIT:
            if data.percent_a is None and data.percent_b is None:
                msg = "No split percentages given"
                raise ValidationError(msg)
            percent_a = data.percent_a
            if percent_a is None:
                percent_a = Decimal(1) - data.percent_b  # type: ignore[operator]
            percent_b = data.percent_b
            if percent_b is None:
                percent_b = Decimal(1) - percent_a
            split = Split.of(percent_a, percent_b)
            tx = await self.edit_transaction(tx_id, split=split)
            return (
                f'Split for "{tx.description}" set to '
                f"{percent_label(split.percent_a)}-{percent_label(split.percent_b)}"
            )
        if action.kind is CorrectionKind.UPDATE_AMOUNT and data.amount is not None:
            tx = await self.edit_transaction(tx_id, amount=data.amount)
            return f'Amount for "{tx.description}" set to {self.money(tx.amount)}'
        if action.kind is CorrectionKind.UPDATE_CATEGORY and data.category:
            tx = await self.edit_transaction(tx_id, category=data.category)
            return f'Category for "{tx.description}" set to {tx.category}'
        if action.kind is CorrectionKind.UPDATE_DESCRIPTION and data.description:
            tx = await self.edit_transaction(tx_id, description=data.description)
            return f'Description set to "{tx.description}"'
        if action.kind is CorrectionKind.UPDATE_PAYER and data.payer is not None:
            tx = await self.edit_transaction(tx_id, payer_role=data.payer)
            payer = self.participants.by_role(tx.payer_role)
            return f'Payer for "{tx.description}" set to {payer.name}'

        msg = f"Missing value for {action.kind.value}"
        raise ValidationError(msg)

    async def recent_transactions(self, limit: int = 5) -> list[Transaction]:
        return await self._store.recent_transactions(limit)

    async def search(self, term: str, limit: int = 10) -> list[Transaction]:
        return await self._store.search_transactions(term.strip(), limit)

    # -- messages -----------------------------------------------------------

    def money(self, amount: Decimal) -> str:
        return f"{self.currency} ${amount.quantize(CENT, rounding=ROUND_HALF_UP)}"

    async def outstanding_message(self) -> str:
        owed = await self.outstanding_balance()
        a_owes = owed.a_owes.quantize(CENT, rounding=ROUND_HALF_UP)
        b_owes = owed.b_owes.quantize(CENT, rounding=ROUND_HALF_UP)
        a_name = self.participants.a.name
        b_name = self.participants.b.name

        if a_owes == 0 and b_owes == 0:
            return "All expenses are settled! No outstanding balance."
        if a_owes > 0 and b_owes > 0:
            return (
                "Outstanding (amount owed):\n"
                f"{a_name} owes: {self.money(a_owes)}\n"
                f"{b_name} owes: {self.money(b_owes)}"
            )
        header = "Outstanding (amount owed):"
        if a_owes > 0:
            return f"{header}\n{a_name} owes {b_name} {self.money(a_owes)}"
        return f"{header}\n{b_name} owes {a_name} {self.money(b_owes)}"

    async def detailed_message(self) -> str:
        balance = await self.detailed_balance()
        a_name = self.participants.a.name
        b_name = self.participants.b.name
        avg_a = percent_label(balance.avg_percent_a / 100)
        avg_b = percent_label(balance.avg_percent_b / 100)

        lines = [
            "Balance Summary",
            "",
            f"Total paid by {a_name} (unsettled): {self.money(balance.a_paid)}",
            f"Total paid by {b_name} (unsettled): {self.money(balance.b_paid)}",
            f"Total group spending: {self.money(balance.total_spending)}",
            "",
            f"Split calculation ({avg_a}/{avg_b}):",
            f"{a_name}'s share ({avg_a}%): {self.money(balance.a_share)}",
            f"{b_name}'s share ({avg_b}%): {self.money(balance.b_share)}",
            "",
        ]
        owed = owed_from_nets(balance.a_net, balance.b_net)
        if owed.a_owes > 0 and owed.b_owes > 0:
            lines.append(f"{a_name} owes {self.money(owed.a_owes)}")
            lines.append(f"{b_name} owes {self.money(owed.b_owes)}")
        elif owed.b_owes > 0:
            lines.append(f"{b_name} owes {a_name}: {self.money(owed.b_owes)}")
        elif owed.a_owes > 0:
            lines.append(f"{a_name} owes {b_name}: {self.money(owed.a_owes)}")
        else:
            lines.append("All settled!")
        return "\n".join(lines)

    def describe(self, tx: Transaction) -> str:
        """One-line summary of a transaction for lists."""
        payer = self.participants.by_role(tx.payer_role)
        status = "settled" if tx.is_settled else "unsettled"
        return (
            f"/{tx.id} {tx.occurred_at:%d %b %y} - {tx.description or 'No description'}"
            f" ({self.money(tx.amount)}, {tx.category}) - {payer.name}, {status}"
        )

    # -- internals ----------------------------------------------------------

    async def resolve_payer(self, payer_id: int) -> Participant:
        payer = await self._store.get_participant(payer_id)
        if payer is None:
            msg = f"User {payer_id} not found"
            raise NotFoundError(msg)
        return payer

    async def _insert_expense(
        self,
        payer: Participant,
        amount: Decimal,
        category: str | None,
        description: str | None,
        occurred_at: datetime | None,
    ) -> Transaction:
        new = await self._new_expense(
            payer, amount, category, description, occurred_at
        )
        tx = await self._store.insert_transaction(new)
        _log_recorded(tx)
        return tx

    async def _new_expense(
        self,
        payer: Participant,
        amount: Decimal,
        category: str | None,
        description: str | None,
        occurred_at: datetime | None,
    ) -> NewTransaction:
        canonical = normalize_category(category)
        split = await self.splits.resolve(canonical)
        return NewTransaction(
            amount=amount,
            currency=self.currency,
            category=canonical,
            description=(description or "").strip() or "No description",
            payer_id=payer.id,
            occurred_at=occurred_at or self._clock(),
            percent_a=split.percent_a,
            percent_b=split.percent_b,
        )

    def _occurred(self, purchase_date: object) -> datetime | None:
        now = self._clock()
        if purchase_date is None:
            return None
        return datetime.combine(purchase_date, now.timetz())  # type: ignore[arg-type]


def _log_recorded(tx: Transaction) -> None:
    logger.info(
        "Recorded transaction %d: %s %s paid by %s (%s/%s)",
        tx.id,
        tx.amount,
        tx.category,
        tx.payer_role.value,
        tx.percent_a,
        tx.percent_b,
    )


def is_patch_marker(tx: Transaction) -> bool:
    return tx.category == PATCH_CATEGORY and tx.description.startswith(
        PATCH_DESCRIPTION_PREFIX
    )


def percent_label(fraction: Decimal) -> str:
    """Render a 0-1 fraction as a whole percentage, e.g. 0.7 -> "70"."""
    return str((fraction * 100).quantize(Decimal(1), rounding=ROUND_HALF_UP))
