"""Tests for duo_ledger.store."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any

import psycopg
import pytest

from duo_ledger.errors import StorageError
from duo_ledger.models import Participant, Role
from duo_ledger.store import PostgresLedgerStore, row_to_transaction

if TYPE_CHECKING:
    from collections.abc import AsyncIterator


class FakeCursor:
    def __init__(self, rows: list[dict[str, Any]], rowcount: int = 0) -> None:
        self._rows = rows
        self.rowcount = rowcount

    async def fetchone(self) -> dict[str, Any] | None:
        return self._rows[0] if self._rows else None

    async def fetchall(self) -> list[dict[str, Any]]:
        return self._rows


class FakeConnection:
    """Records executed queries and replays queued cursors."""

    def __init__(self, cursors: list[FakeCursor] | None = None) -> None:
        self.cursors = list(cursors or [])
        self.executed: list[tuple[Any, Any]] = []
        self.transactions = 0
        self.error: Exception | None = None

    async def __aenter__(self) -> FakeConnection:
        return self

    async def __aexit__(self, *exc: object) -> None:
        return None

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        self.transactions += 1
        yield

    async def execute(self, query: Any, params: Any = None) -> FakeCursor:
        if self.error is not None:
            raise self.error
        self.executed.append((query, params))
        return self.cursors.pop(0) if self.cursors else FakeCursor([])


def _store(conn: FakeConnection) -> PostgresLedgerStore:
    async def connect() -> FakeConnection:
        return conn

    return PostgresLedgerStore(connect=connect)  # type: ignore[arg-type]


def _row(**overrides: Any) -> dict[str, Any]:
    row: dict[str, Any] = {
        "id": 1,
        "amount": Decimal("42.50"),
        "currency": "SGD",
        "category": "Food",
        "description": "Dinner",
        "payer_id": 111,
        "payer_role": "A",
        "occurred_at": datetime(2025, 6, 15, 19, 0, tzinfo=UTC),
        "is_settled": False,
        "percent_a": Decimal("0.7000"),
        "percent_b": Decimal("0.3000"),
        "created_at": datetime(2025, 6, 15, 19, 1, tzinfo=UTC),
    }
    row.update(overrides)
    return row


class TestRowToTransaction:
    """Tests for row_to_transaction."""

    def test_converts_row(self) -> None:
        tx = row_to_transaction(_row())

        assert tx.id == 1
        assert tx.amount == Decimal("42.50")
        assert tx.payer_role is Role.A
        assert tx.percent_a == Decimal("0.7")

    def test_null_percentages(self) -> None:
        tx = row_to_transaction(_row(percent_a=None, percent_b=None))
        assert tx.percent_a is None
        assert tx.percent_b is None


class TestPostgresLedgerStore:
    """Tests for PostgresLedgerStore against a recording connection."""

    def test_update_rejects_unknown_fields(self) -> None:
        conn = FakeConnection()
        with pytest.raises(ValueError, match="created_at"):
            asyncio.run(_store(conn).update_transaction(1, created_at=None))
        assert conn.executed == []

    def test_update_missing_row_returns_none(self) -> None:
        conn = FakeConnection([FakeCursor([], rowcount=0)])
        result = asyncio.run(_store(conn).update_transaction(9, amount=Decimal(1)))
        assert result is None

    def test_update_returns_fresh_row(self) -> None:
        conn = FakeConnection(
            [FakeCursor([], rowcount=1), FakeCursor([_row(category="Bills")])]
        )
        tx = asyncio.run(_store(conn).update_transaction(1, category="Bills"))

        assert tx is not None
        assert tx.category == "Bills"
        assert conn.executed[0][1] == ("Bills", 1)

    def test_get_participant(self) -> None:
        conn = FakeConnection([FakeCursor([{"id": 222, "name": "Bob", "role": "B"}])])
        participant = asyncio.run(_store(conn).get_participant(222))
        assert participant == Participant(id=222, name="Bob", role=Role.B)

    def test_get_participant_missing(self) -> None:
        assert asyncio.run(_store(FakeConnection()).get_participant(5)) is None

    def test_settle_selected_ids(self) -> None:
        conn = FakeConnection([FakeCursor([], rowcount=2)])
        count = asyncio.run(_store(conn).settle([3, 4]))

        assert count == 2
        assert conn.executed[0][1] == ([3, 4],)

    def test_atomic_uses_transaction(self) -> None:
        conn = FakeConnection([FakeCursor([_row()])])

        async def scenario() -> int:
            async with _store(conn).atomic() as unit:
                return len(await unit.list_unsettled())

        assert asyncio.run(scenario()) == 1
        assert conn.transactions == 1

    def test_database_errors_become_storage_errors(self) -> None:
        conn = FakeConnection()
        conn.error = psycopg.OperationalError("connection lost")

        with pytest.raises(StorageError, match="connection lost"):
            asyncio.run(_store(conn).get_setting("category_split_rules"))

    def test_get_setting(self) -> None:
        conn = FakeConnection([FakeCursor([{"value": "{}"}])])
        assert asyncio.run(_store(conn).get_setting("k")) == "{}"
