"""Database connection helper and schema."""

from __future__ import annotations

import psycopg
from psycopg.rows import dict_row

from duo_ledger.config import get_database_url

SCHEMA = """\
CREATE TABLE IF NOT EXISTS participants (
    id          BIGINT PRIMARY KEY,
    name        TEXT NOT NULL,
    role        TEXT NOT NULL UNIQUE CHECK (role IN ('A', 'B')),
    created_at  TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE TABLE IF NOT EXISTS transactions (
    id           BIGSERIAL PRIMARY KEY,
    amount       NUMERIC(12, 2) NOT NULL CHECK (amount > 0),
    currency     TEXT NOT NULL,
    category     TEXT NOT NULL,
    description  TEXT NOT NULL DEFAULT '',
    payer_id     BIGINT NOT NULL REFERENCES participants (id),
    occurred_at  TIMESTAMPTZ NOT NULL,
    is_settled   BOOLEAN NOT NULL DEFAULT FALSE,
    percent_a    NUMERIC(7, 6),
    percent_b    NUMERIC(7, 6),
    created_at   TIMESTAMPTZ NOT NULL DEFAULT now(),
    updated_at   TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE INDEX IF NOT EXISTS transactions_is_settled_idx ON transactions (is_settled);
CREATE INDEX IF NOT EXISTS transactions_occurred_at_idx ON transactions (occurred_at);

CREATE TABLE IF NOT EXISTS settings (
    key         TEXT PRIMARY KEY,
    value       TEXT,
    updated_at  TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE TABLE IF NOT EXISTS recurring_expenses (
    id                 BIGSERIAL PRIMARY KEY,
    description        TEXT NOT NULL,
    amount             NUMERIC(12, 2) NOT NULL CHECK (amount > 0),
    payer_id           BIGINT NOT NULL REFERENCES participants (id),
    day_of_month       SMALLINT NOT NULL CHECK (day_of_month BETWEEN 1 AND 31),
    is_active          BOOLEAN NOT NULL DEFAULT TRUE,
    last_processed_on  DATE,
    created_at         TIMESTAMPTZ NOT NULL DEFAULT now()
);
"""


async def get_connection() -> psycopg.AsyncConnection[dict[str, object]]:
    """Create and return a new database connection."""
    return await psycopg.AsyncConnection.connect(
        get_database_url(), row_factory=dict_row
    )


async def init_schema() -> None:
    """Create tables and indexes if they do not exist."""
    async with await get_connection() as conn:
        await conn.execute(SCHEMA)
