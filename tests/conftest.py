"""Shared test fixtures."""

from __future__ import annotations

import pytest
from fakes import NOW, FakeClock, InMemoryLedgerStore, RecordingTransport

from duo_ledger.ledger import LedgerEngine
from duo_ledger.models import Participant, Participants, Role
from duo_ledger.splits import SplitRuleResolver


@pytest.fixture
def participants() -> Participants:
    """Provide the two fixed participants."""
    return Participants(
        a=Participant(id=111, name="Alice", role=Role.A),
        b=Participant(id=222, name="Bob", role=Role.B),
    )


@pytest.fixture
def store(participants: Participants) -> InMemoryLedgerStore:
    return InMemoryLedgerStore(participants)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def resolver(store: InMemoryLedgerStore, clock: FakeClock) -> SplitRuleResolver:
    return SplitRuleResolver(store, clock=clock)


@pytest.fixture
def ledger(
    store: InMemoryLedgerStore,
    resolver: SplitRuleResolver,
    participants: Participants,
) -> LedgerEngine:
    """Provide a ledger over the in-memory store with a fixed wall clock."""
    return LedgerEngine(
        store, resolver, participants, currency="SGD", clock=lambda: NOW
    )


@pytest.fixture
def transport() -> RecordingTransport:
    return RecordingTransport()
