"""Tests for duo_ledger.cli."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
from click.testing import CliRunner
from fakes import InMemoryLedgerStore

from duo_ledger import cli as cli_module
from duo_ledger.cli import cli

if TYPE_CHECKING:
    from duo_ledger.models import Participants


@pytest.fixture
def cli_store(
    monkeypatch: pytest.MonkeyPatch, participants: Participants
) -> InMemoryLedgerStore:
    """Point the CLI at an in-memory store holding the configured participants."""
    store = InMemoryLedgerStore(participants)
    monkeypatch.setattr(cli_module, "PostgresLedgerStore", lambda: store)
    monkeypatch.setenv("USER_A_ID", "111")
    monkeypatch.setenv("USER_A_NAME", "Alice")
    monkeypatch.setenv("USER_B_ID", "222")
    monkeypatch.setenv("USER_B_NAME", "Bob")
    monkeypatch.delenv("DEFAULT_SPLIT_A", raising=False)
    monkeypatch.delenv("CURRENCY", raising=False)
    return store


class TestCli:
    """Tests for the click commands."""

    def test_balance_empty(self, cli_store: InMemoryLedgerStore) -> None:
        result = CliRunner().invoke(cli, ["balance"])

        assert result.exit_code == 0
        assert "All expenses are settled!" in result.output

    def test_patch_then_balance(self, cli_store: InMemoryLedgerStore) -> None:
        runner = CliRunner()

        result = runner.invoke(cli, ["patch-balance", "100", "50"])
        assert result.exit_code == 0
        assert "created 2 patch transactions" in result.output
        assert "Bob owes Alice SGD $150.00" in result.output

        again = runner.invoke(cli, ["patch-balance", "100", "50"])
        assert again.exit_code == 0
        assert "Patch already applied" in again.output

    def test_patch_debtor_a(self, cli_store: InMemoryLedgerStore) -> None:
        result = CliRunner().invoke(cli, ["patch-balance", "20", "--debtor", "a"])
        assert "Alice owes Bob SGD $20.00" in result.output

    def test_patch_invalid_component(self, cli_store: InMemoryLedgerStore) -> None:
        result = CliRunner().invoke(cli, ["patch-balance", "0"])

        assert result.exit_code == 1
        assert "Amount must be greater than zero" in result.output

    def test_settle_yes(self, cli_store: InMemoryLedgerStore) -> None:
        runner = CliRunner()
        runner.invoke(cli, ["patch-balance", "10"])

        result = runner.invoke(cli, ["settle", "--yes"])

        assert result.exit_code == 0
        assert "Settled 1 transactions." in result.output

    def test_detailed_balance(self, cli_store: InMemoryLedgerStore) -> None:
        result = CliRunner().invoke(cli, ["balance", "--detailed"])

        assert result.exit_code == 0
        assert "Balance Summary" in result.output

    def test_missing_participants(
        self, cli_store: InMemoryLedgerStore, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.delenv("USER_B_NAME")

        result = CliRunner().invoke(cli, ["balance"])

        assert result.exit_code == 1
        assert "USER_B_NAME" in result.output
