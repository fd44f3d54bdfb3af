"""Tests for duo_ledger.recurring."""

from __future__ import annotations

import asyncio
from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING

import pytest

from duo_ledger.errors import NotFoundError, ValidationError
from duo_ledger.models import RecurringExpense
from duo_ledger.recurring import (
    RECURRING_CATEGORY,
    RecurringExpenseService,
    due_day,
    is_due,
)

if TYPE_CHECKING:
    from fakes import InMemoryLedgerStore

    from duo_ledger.ledger import LedgerEngine


@pytest.fixture
def service(
    store: InMemoryLedgerStore, ledger: LedgerEngine
) -> RecurringExpenseService:
    return RecurringExpenseService(store, ledger)


def _expense(day: int, **overrides: object) -> RecurringExpense:
    values: dict[str, object] = {
        "id": 1,
        "description": "Rent",
        "amount": Decimal("1000"),
        "payer_id": 111,
        "day_of_month": day,
    }
    values.update(overrides)
    return RecurringExpense.model_validate(values)


class TestDueDay:
    """Tests for due_day and is_due."""

    @pytest.mark.parametrize(
        ("day", "on", "expected"),
        [
            (31, date(2025, 6, 10), 30),
            (31, date(2025, 2, 1), 28),
            (30, date(2024, 2, 1), 29),
            (15, date(2025, 2, 1), 15),
        ],
    )
    def test_clamped_to_month(self, day: int, on: date, expected: int) -> None:
        assert due_day(day, on) == expected

    def test_due_on_last_day_of_short_month(self) -> None:
        assert is_due(_expense(31), date(2025, 6, 30))
        assert not is_due(_expense(31), date(2025, 6, 29))

    def test_not_due_twice_same_day(self) -> None:
        expense = _expense(15, last_processed_on=date(2025, 6, 15))
        assert not is_due(expense, date(2025, 6, 15))
        assert is_due(expense, date(2025, 7, 15))

    def test_inactive_never_due(self) -> None:
        assert not is_due(_expense(15, is_active=False), date(2025, 6, 15))


class TestCreate:
    """Tests for RecurringExpenseService.create."""

    def test_creates_schedule(
        self, service: RecurringExpenseService, store: InMemoryLedgerStore
    ) -> None:
        expense = asyncio.run(service.create(" Netflix ", "15.98", 222, 3))

        assert expense.description == "Netflix"
        assert expense.amount == Decimal("15.98")
        assert store.recurring[expense.id] == expense

    @pytest.mark.parametrize(
        ("description", "amount", "day"),
        [("", "10", 1), ("Rent", "0", 1), ("Rent", "10", 0), ("Rent", "10", 32)],
    )
    def test_invalid(
        self,
        service: RecurringExpenseService,
        store: InMemoryLedgerStore,
        description: str,
        amount: str,
        day: int,
    ) -> None:
        with pytest.raises(ValidationError):
            asyncio.run(service.create(description, amount, 111, day))
        assert store.recurring == {}

    def test_unknown_payer(self, service: RecurringExpenseService) -> None:
        with pytest.raises(NotFoundError):
            asyncio.run(service.create("Rent", "10", 999, 1))


class TestProcessDue:
    """Tests for RecurringExpenseService.process_due."""

    def test_commits_due_expenses_once(
        self, service: RecurringExpenseService, store: InMemoryLedgerStore
    ) -> None:
        async def scenario() -> tuple[int, int]:
            await service.create("Rent", "1000", 111, 15)
            await service.create("Gym", "50", 222, 1)
            first = await service.process_due(date(2025, 6, 15))
            again = await service.process_due(date(2025, 6, 15))
            return len(first), len(again)

        first, again = asyncio.run(scenario())

        assert (first, again) == (1, 0)
        (tx,) = store.transactions.values()
        assert tx.description == "Rent"
        assert tx.category == RECURRING_CATEGORY
        assert store.recurring[1].last_processed_on == date(2025, 6, 15)

    def test_failed_commit_skipped(
        self, service: RecurringExpenseService, store: InMemoryLedgerStore
    ) -> None:
        async def scenario() -> int:
            await service.create("Rent", "1000", 111, 15)
            store.fail_inserts = True
            return len(await service.process_due(date(2025, 6, 15)))

        assert asyncio.run(scenario()) == 0
        assert store.recurring[1].last_processed_on is None
