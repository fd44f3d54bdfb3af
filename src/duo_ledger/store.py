"""Ledger persistence protocol and PostgreSQL implementation."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any, Protocol

import psycopg
from psycopg import sql

from duo_ledger.db import get_connection
from duo_ledger.errors import StorageError
from duo_ledger.models import Participant, RecurringExpense, Role, Transaction

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
    from contextlib import AbstractAsyncContextManager
    from datetime import date
    from decimal import Decimal

    from duo_ledger.models import NewTransaction

    Connection = psycopg.AsyncConnection[dict[str, Any]]

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = frozenset(
    {
        "amount",
        "category",
        "description",
        "payer_id",
        "percent_a",
        "percent_b",
        "is_settled",
    }
)

_SELECT_TRANSACTIONS = """\
SELECT t.id, t.amount, t.currency, t.category, t.description, t.payer_id,
       p.role AS payer_role, t.occurred_at, t.is_settled, t.percent_a,
       t.percent_b, t.created_at
FROM transactions t
JOIN participants p ON p.id = t.payer_id
"""


class LedgerUnit(Protocol):
    """Operations available inside one atomic storage unit."""

    async def list_unsettled(self) -> list[Transaction]: ...

    async def settle(self, ids: Sequence[int] | None = None) -> int: ...

    async def insert_transaction(self, new: NewTransaction) -> Transaction: ...


class LedgerStore(LedgerUnit, Protocol):
    """Protocol for ledger storage backends."""

    def atomic(self) -> AbstractAsyncContextManager[LedgerUnit]: ...

    async def get_participant(self, user_id: int) -> Participant | None: ...

    async def upsert_participant(self, participant: Participant) -> None: ...

    async def get_transaction(self, tx_id: int) -> Transaction | None: ...

    async def update_transaction(
        self, tx_id: int, **changes: object
    ) -> Transaction | None: ...

    async def delete_transaction(self, tx_id: int) -> bool: ...

    async def recent_transactions(self, limit: int) -> list[Transaction]: ...

    async def search_transactions(self, term: str, limit: int) -> list[Transaction]: ...

    async def get_setting(self, key: str) -> str | None: ...

    async def set_setting(self, key: str, value: str) -> None: ...

    async def delete_setting(self, key: str) -> None: ...

    async def insert_recurring(
        self, description: str, amount: Decimal, payer_id: int, day_of_month: int
    ) -> RecurringExpense: ...

    async def list_active_recurring(self) -> list[RecurringExpense]: ...

    async def mark_recurring_processed(self, recurring_id: int, on: date) -> None: ...


def row_to_transaction(row: dict[str, Any]) -> Transaction:
    """Convert a joined transactions/participants row to a Transaction."""
    return Transaction.model_validate(row)


def row_to_recurring(row: dict[str, Any]) -> RecurringExpense:
    return RecurringExpense.model_validate(row)


class _PostgresUnit:
    """LedgerUnit bound to one open connection."""

    def __init__(self, conn: Connection) -> None:
        self._conn = conn

    async def list_unsettled(self) -> list[Transaction]:
        cur = await self._conn.execute(
            _SELECT_TRANSACTIONS + "WHERE NOT t.is_settled ORDER BY t.id"
        )
        return [row_to_transaction(row) for row in await cur.fetchall()]

    async def settle(self, ids: Sequence[int] | None = None) -> int:
        if ids is None:
            cur = await self._conn.execute(
                "UPDATE transactions SET is_settled = TRUE, updated_at = now() "
                "WHERE NOT is_settled"
            )
        else:
            cur = await self._conn.execute(
                "UPDATE transactions SET is_settled = TRUE, updated_at = now() "
                "WHERE NOT is_settled AND id = ANY(%s)",
                (list(ids),),
            )
        return cur.rowcount

    async def insert_transaction(self, new: NewTransaction) -> Transaction:
        cur = await self._conn.execute(
            "WITH t AS ("
            " INSERT INTO transactions (amount, currency, category, description,"
            " payer_id, occurred_at, is_settled, percent_a, percent_b)"
            " VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s) RETURNING *"
            ") "
            "SELECT t.id, t.amount, t.currency, t.category, t.description,"
            " t.payer_id, p.role AS payer_role, t.occurred_at, t.is_settled,"
            " t.percent_a, t.percent_b, t.created_at "
            "FROM t JOIN participants p ON p.id = t.payer_id",
            (
                new.amount,
                new.currency,
                new.category,
                new.description,
                new.payer_id,
                new.occurred_at,
                new.is_settled,
                new.percent_a,
                new.percent_b,
            ),
        )
        row = await cur.fetchone()
        if row is None:
            msg = "Insert returned no row"
            raise StorageError(msg)
        return row_to_transaction(row)


class PostgresLedgerStore:
    """PostgreSQL implementation of LedgerStore.

    Every call opens its own connection, so calls from different chats never
    share a transaction. ``atomic()`` holds one connection inside an explicit
    transaction block for the whole unit.
    """

    def __init__(
        self, connect: Callable[[], Awaitable[Connection]] = get_connection
    ) -> None:
        self._connect = connect

    @asynccontextmanager
    async def _connection(self) -> AsyncIterator[Connection]:
        try:
            async with await self._connect() as conn:
                yield conn
        except psycopg.Error as exc:
            logger.error("Database operation failed: %s", exc)
            raise StorageError(str(exc)) from exc

    @asynccontextmanager
    async def atomic(self) -> AsyncIterator[LedgerUnit]:
        async with self._connection() as conn, conn.transaction():
            yield _PostgresUnit(conn)

    async def list_unsettled(self) -> list[Transaction]:
        async with self._connection() as conn:
            return await _PostgresUnit(conn).list_unsettled()

    async def settle(self, ids: Sequence[int] | None = None) -> int:
        async with self._connection() as conn:
            return await _PostgresUnit(conn).settle(ids)

    async def insert_transaction(self, new: NewTransaction) -> Transaction:
        async with self._connection() as conn:
            return await _PostgresUnit(conn).insert_transaction(new)

    async def get_participant(self, user_id: int) -> Participant | None:
        async with self._connection() as conn:
            cur = await conn.execute(
                "SELECT id, name, role FROM participants WHERE id = %s", (user_id,)
            )
            row = await cur.fetchone()
        if row is None:
            return None
        return Participant(id=row["id"], name=row["name"], role=Role(row["role"]))

    async def upsert_participant(self, participant: Participant) -> None:
        async with self._connection() as conn:
            await conn.execute(
                "INSERT INTO participants (id, name, role) VALUES (%s, %s, %s) "
                "ON CONFLICT (id) DO UPDATE SET name = EXCLUDED.name, "
                "role = EXCLUDED.role",
                (participant.id, participant.name, participant.role.value),
            )

    async def get_transaction(self, tx_id: int) -> Transaction | None:
        async with self._connection() as conn:
            cur = await conn.execute(
                _SELECT_TRANSACTIONS + "WHERE t.id = %s", (tx_id,)
            )
            row = await cur.fetchone()
        return row_to_transaction(row) if row is not None else None

    async def update_transaction(
        self, tx_id: int, **changes: object
    ) -> Transaction | None:
        unknown = set(changes) - UPDATABLE_FIELDS
        if unknown:
            msg = f"Cannot update transaction fields: {', '.join(sorted(unknown))}"
            raise ValueError(msg)
        if not changes:
            return await self.get_transaction(tx_id)

        assignments = sql.SQL(", ").join(
            sql.SQL("{} = %s").format(sql.Identifier(name)) for name in changes
        )
        query = sql.SQL(
            "UPDATE transactions SET {}, updated_at = now() WHERE id = %s"
        ).format(assignments)

        async with self._connection() as conn:
            cur = await conn.execute(query, (*changes.values(), tx_id))
            if cur.rowcount == 0:
                return None
            cur = await conn.execute(
                _SELECT_TRANSACTIONS + "WHERE t.id = %s", (tx_id,)
            )
            row = await cur.fetchone()
        return row_to_transaction(row) if row is not None else None

    async def delete_transaction(self, tx_id: int) -> bool:
        async with self._connection() as conn:
            cur = await conn.execute("DELETE FROM transactions WHERE id = %s", (tx_id,))
            return cur.rowcount > 0

    async def recent_transactions(self, limit: int) -> list[Transaction]:
        async with self._connection() as conn:
            cur = await conn.execute(
                _SELECT_TRANSACTIONS
                + "ORDER BY t.occurred_at DESC, t.id DESC LIMIT %s",
                (limit,),
            )
            return [row_to_transaction(row) for row in await cur.fetchall()]

    async def search_transactions(self, term: str, limit: int) -> list[Transaction]:
        pattern = f"%{term}%"
        async with self._connection() as conn:
            cur = await conn.execute(
                _SELECT_TRANSACTIONS
                + "WHERE t.description ILIKE %s OR t.category ILIKE %s "
                "ORDER BY t.occurred_at DESC, t.id DESC LIMIT %s",
                (pattern, pattern, limit),
            )
            return [row_to_transaction(row) for row in await cur.fetchall()]

    async def get_setting(self, key: str) -> str | None:
        async with self._connection() as conn:
            cur = await conn.execute(
                "SELECT value FROM settings WHERE key = %s", (key,)
            )
            row = await cur.fetchone()
        return None if row is None else row["value"]  # type: ignore[return-value]

    async def set_setting(self, key: str, value: str) -> None:
        async with self._connection() as conn:
            await conn.execute(
                "INSERT INTO settings (key, value, updated_at) VALUES (%s, %s, now()) "
                "ON CONFLICT (key) DO UPDATE SET value = EXCLUDED.value, "
                "updated_at = now()",
                (key, value),
            )

    async def delete_setting(self, key: str) -> None:
        async with self._connection() as conn:
            await conn.execute("DELETE FROM settings WHERE key = %s", (key,))

    async def insert_recurring(
        self, description: str, amount: Decimal, payer_id: int, day_of_month: int
    ) -> RecurringExpense:
        async with self._connection() as conn:
            cur = await conn.execute(
                "INSERT INTO recurring_expenses (description, amount, payer_id, "
                "day_of_month) VALUES (%s, %s, %s, %s) "
                "RETURNING id, description, amount, payer_id, day_of_month, "
                "is_active, last_processed_on",
                (description, amount, payer_id, day_of_month),
            )
            row = await cur.fetchone()
        if row is None:
            msg = "Insert returned no row"
            raise StorageError(msg)
        return row_to_recurring(row)

    async def list_active_recurring(self) -> list[RecurringExpense]:
        async with self._connection() as conn:
            cur = await conn.execute(
                "SELECT id, description, amount, payer_id, day_of_month, is_active, "
                "last_processed_on FROM recurring_expenses WHERE is_active "
                "ORDER BY day_of_month, id"
            )
            return [row_to_recurring(row) for row in await cur.fetchall()]

    async def mark_recurring_processed(self, recurring_id: int, on: date) -> None:
        async with self._connection() as conn:
            await conn.execute(
                "UPDATE recurring_expenses SET last_processed_on = %s WHERE id = %s",
                (on, recurring_id),
            )
