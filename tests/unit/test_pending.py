"""Tests for duo_ledger.pending."""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING

import pytest

from duo_ledger.models import ReceiptData
from duo_ledger.pending import PENDING_TTL_SECONDS, PendingReceiptStore

if TYPE_CHECKING:
    from fakes import FakeClock


@pytest.fixture
def receipt() -> ReceiptData:
    return ReceiptData(is_valid=True, total=Decimal("25.00"), merchant="Cafe")


@pytest.fixture
def pending(clock: FakeClock) -> PendingReceiptStore:
    return PendingReceiptStore(clock=clock)


class TestPendingReceiptStore:
    """Tests for PendingReceiptStore."""

    def test_stage_and_get(
        self, pending: PendingReceiptStore, receipt: ReceiptData
    ) -> None:
        pending.stage("r1", receipt, chat_id=10, submitter_id=111)

        entry = pending.get("r1")

        assert entry is not None
        assert entry.receipt is receipt
        assert entry.chat_id == 10
        assert entry.submitter_id == 111

    def test_consume_removes(
        self, pending: PendingReceiptStore, receipt: ReceiptData
    ) -> None:
        pending.stage("r1", receipt, chat_id=10, submitter_id=111)

        assert pending.consume("r1") is not None
        assert pending.consume("r1") is None
        assert pending.get("r1") is None

    def test_unknown_id(self, pending: PendingReceiptStore) -> None:
        assert pending.get("missing") is None
        assert pending.consume("missing") is None

    def test_expired_entry_never_returned(
        self, pending: PendingReceiptStore, receipt: ReceiptData, clock: FakeClock
    ) -> None:
        pending.stage("r1", receipt, chat_id=10, submitter_id=111)
        clock.advance(PENDING_TTL_SECONDS)

        assert pending.get("r1") is None
        assert pending.consume("r1") is None
        assert len(pending) == 0

    def test_entry_alive_just_before_ttl(
        self, pending: PendingReceiptStore, receipt: ReceiptData, clock: FakeClock
    ) -> None:
        pending.stage("r1", receipt, chat_id=10, submitter_id=111)
        clock.advance(PENDING_TTL_SECONDS - 1)

        assert pending.get("r1") is not None

    def test_stage_sweeps_expired(
        self, pending: PendingReceiptStore, receipt: ReceiptData, clock: FakeClock
    ) -> None:
        pending.stage("old", receipt, chat_id=10, submitter_id=111)
        clock.advance(PENDING_TTL_SECONDS + 1)
        pending.stage("new", receipt, chat_id=10, submitter_id=111)

        assert len(pending) == 1
        assert pending.get("new") is not None

    def test_multiple_entries_per_chat(
        self, pending: PendingReceiptStore, receipt: ReceiptData
    ) -> None:
        pending.stage("r1", receipt, chat_id=10, submitter_id=111)
        pending.stage("r2", receipt, chat_id=10, submitter_id=222)

        assert pending.consume("r1") is not None
        entry = pending.get("r2")
        assert entry is not None
        assert entry.submitter_id == 222

    def test_sweep_counts(
        self, pending: PendingReceiptStore, receipt: ReceiptData, clock: FakeClock
    ) -> None:
        pending.stage("r1", receipt, chat_id=10, submitter_id=111)
        pending.stage("r2", receipt, chat_id=20, submitter_id=111)
        clock.advance(PENDING_TTL_SECONDS)

        assert pending.sweep() == 2
        assert pending.sweep() == 0

    def test_new_ids_are_unique(self) -> None:
        ids = {PendingReceiptStore.new_id() for _ in range(50)}
        assert len(ids) == 50
