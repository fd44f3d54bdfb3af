"""Monthly recurring expenses."""

from __future__ import annotations

import calendar
import logging
from dataclasses import dataclass
from datetime import UTC, date, datetime
from typing import TYPE_CHECKING

from duo_ledger.errors import LedgerError, ValidationError
from duo_ledger.ledger import to_amount

if TYPE_CHECKING:
    from decimal import Decimal

    from duo_ledger.ledger import LedgerEngine
    from duo_ledger.models import CommitResult, RecurringExpense
    from duo_ledger.store import LedgerStore

logger = logging.getLogger(__name__)

RECURRING_CATEGORY = "Bills"


@dataclass(frozen=True)
class ProcessedRecurring:
    expense: RecurringExpense
    result: CommitResult


def due_day(day_of_month: int, on: date) -> int:
    """The day ``day_of_month`` falls on in ``on``'s month (31 -> 30 in June)."""
    return min(day_of_month, calendar.monthrange(on.year, on.month)[1])


def is_due(expense: RecurringExpense, on: date) -> bool:
    if not expense.is_active or expense.last_processed_on == on:
        return False
    return on.day == due_day(expense.day_of_month, on)


class RecurringExpenseService:
    """Create schedules and commit the ones due on a given day."""

    def __init__(self, store: LedgerStore, ledger: LedgerEngine) -> None:
        self._store = store
        self._ledger = ledger

    async def create(
        self,
        description: str,
        amount: Decimal | str,
        payer_id: int,
        day_of_month: int,
    ) -> RecurringExpense:
        description = description.strip()
        if not description:
            msg = "A recurring expense needs a description"
            raise ValidationError(msg)
        if not 1 <= day_of_month <= 31:
            msg = f"Day of month must be between 1 and 31, got {day_of_month}"
            raise ValidationError(msg)
        value = to_amount(amount)
        payer = await self._ledger.resolve_payer(payer_id)

        expense = await self._store.insert_recurring(
            description, value, payer.id, day_of_month
        )
        logger.info(
            "Recurring expense %d created: %s %s on day %d",
            expense.id,
            description,
            value,
            day_of_month,
        )
        return expense

    async def process_due(self, today: date | None = None) -> list[ProcessedRecurring]:
        """Commit every active schedule due ``today`` that has not run today."""
        on = today or datetime.now(tz=UTC).date()
        processed: list[ProcessedRecurring] = []
        for expense in await self._store.list_active_recurring():
            if not is_due(expense, on):
                continue
            try:
                result = await self._ledger.commit_expense(
                    expense.payer_id,
                    expense.amount,
                    RECURRING_CATEGORY,
                    expense.description,
                )
            except LedgerError:
                logger.exception(
                    "Recurring expense %d could not be recorded", expense.id
                )
                continue
            await self._store.mark_recurring_processed(expense.id, on)
            processed.append(ProcessedRecurring(expense=expense, result=result))
            logger.info("Recurring expense %d recorded", expense.id)
        return processed
