"""Tests for duo_ledger.commands."""

from __future__ import annotations

from decimal import Decimal

import pytest

from duo_ledger.commands import (
    AMOUNT_HINT,
    PERCENT_HINT,
    Command,
    infer_category,
    parse_add_args,
    parse_amount,
    parse_command,
    parse_day,
    parse_percent,
    parse_quick_expense,
    parse_split_args,
    tokenize,
)
from duo_ledger.errors import ValidationError


class TestTokenize:
    """Tests for tokenize."""

    def test_quoted_runs_stay_together(self) -> None:
        tokens = tokenize('50 Food "Dinner at Tom\'s"')
        assert tokens == ["50", "Food", "Dinner at Tom's"]

    def test_smart_quotes(self) -> None:
        assert tokenize("12 Food “late lunch”") == ["12", "Food", "late lunch"]

    def test_apostrophe_is_literal(self) -> None:
        assert tokenize("Tom's cafe") == ["Tom's", "cafe"]

    def test_unclosed_quote(self) -> None:
        with pytest.raises(ValidationError, match="Unclosed quote"):
            tokenize('50 Food "Dinner')


class TestParseCommand:
    """Tests for parse_command."""

    def test_plain_command(self) -> None:
        assert parse_command("/balance") == Command(name="balance", args=[])

    def test_bot_suffix_and_case(self) -> None:
        cmd = parse_command("/Add@DuoLedgerBot 10 Food")
        assert cmd == Command(name="add", args=["10", "Food"])

    @pytest.mark.parametrize("text", ["hello", "", "/", "  12 coffee"])
    def test_not_a_command(self, text: str) -> None:
        assert parse_command(text) is None


class TestParseValues:
    """Tests for parse_amount, parse_percent and parse_day."""

    @pytest.mark.parametrize(
        ("text", "expected"),
        [("12", "12.00"), ("12.5", "12.50"), ("$1,250.99", "1250.99"), (" 7 ", "7.00")],
    )
    def test_amount(self, text: str, expected: str) -> None:
        assert parse_amount(text) == Decimal(expected)

    @pytest.mark.parametrize("text", ["abc", "-3", "1.234", ""])
    def test_invalid_amount(self, text: str) -> None:
        with pytest.raises(ValidationError, match="valid amount"):
            parse_amount(text)

    @pytest.mark.parametrize(
        ("text", "expected"),
        [("70", "0.7"), ("0", "0"), ("100%", "1"), (" 35 ", "0.35")],
    )
    def test_percent(self, text: str, expected: str) -> None:
        assert parse_percent(text) == Decimal(expected)

    @pytest.mark.parametrize("text", ["101", "-5", "50.5", "abc", "²"])
    def test_invalid_percent(self, text: str) -> None:
        with pytest.raises(ValidationError) as excinfo:
            parse_percent(text)
        assert str(excinfo.value) == PERCENT_HINT

    def test_day(self) -> None:
        assert parse_day("31") == 31

    @pytest.mark.parametrize("text", ["0", "32", "x"])
    def test_invalid_day(self, text: str) -> None:
        with pytest.raises(ValidationError):
            parse_day(text)


class TestQuickExpense:
    """Tests for parse_quick_expense and infer_category."""

    def test_number_first(self) -> None:
        quick = parse_quick_expense("130 groceries at NTUC")
        assert quick is not None
        assert quick.amount == Decimal("130.00")
        assert quick.description == "groceries at NTUC"
        assert quick.category == "Groceries"

    def test_number_last(self) -> None:
        quick = parse_quick_expense("coffee 5.50")
        assert quick is not None
        assert quick.amount == Decimal("5.50")
        assert quick.category == "Food"

    def test_unknown_keyword(self) -> None:
        quick = parse_quick_expense("20 birthday gift")
        assert quick is not None
        assert quick.category == "Other"

    @pytest.mark.parametrize(
        "text", ["hello there", "12", "/add 5 food", "0 coffee", "2000000 car"]
    )
    def test_not_an_expense(self, text: str) -> None:
        assert parse_quick_expense(text) is None

    def test_infer_category_substring(self) -> None:
        assert infer_category("Monthly Internet plan") == "Bills"


class TestParseAddArgs:
    """Tests for parse_add_args."""

    def test_with_description(self) -> None:
        args = parse_add_args(["50", "Food", "Dinner", "out"])
        assert args.amount == Decimal("50.00")
        assert args.category == "Food"
        assert args.description == "Dinner out"

    def test_without_description(self) -> None:
        assert parse_add_args(["5", "Transport"]).description is None

    def test_too_few(self) -> None:
        with pytest.raises(ValidationError, match="Usage"):
            parse_add_args(["50"])

    def test_bad_amount(self) -> None:
        with pytest.raises(ValidationError) as excinfo:
            parse_add_args(["fifty", "Food"])
        assert AMOUNT_HINT in str(excinfo.value)


class TestParseSplitArgs:
    """Tests for parse_split_args."""

    def test_show(self) -> None:
        args = parse_split_args([])
        assert not args.reset
        assert args.category is None

    def test_reset(self) -> None:
        assert parse_split_args(["Reset"]).reset

    def test_category_and_percent(self) -> None:
        args = parse_split_args(["Eating", "out", "70"])
        assert args.category == "Eating out"
        assert args.percent_a == Decimal("0.7")

    def test_missing_percent(self) -> None:
        with pytest.raises(ValidationError, match="Usage"):
            parse_split_args(["Food"])
