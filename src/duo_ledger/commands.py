"""Tokenizing and parsing of chat commands and typed replies."""

from __future__ import annotations

import re
import shlex
from dataclasses import dataclass
from decimal import Decimal

from duo_ledger.errors import ValidationError
from duo_ledger.ledger import to_amount

MAX_QUICK_AMOUNT = Decimal(1_000_000)

ADD_USAGE = 'Usage: /add <amount> <category> ["description"]'
SPLIT_USAGE = "Usage: /split <category> <percent for A>, or /split reset"
PERCENT_HINT = "Please enter a whole number between 0 and 100."
DAY_HINT = "Please enter a day of the month between 1 and 31."
AMOUNT_HINT = "Please enter a valid amount greater than zero, e.g. 12.50"

_SMART_QUOTES = str.maketrans({"“": '"', "”": '"'})
_AMOUNT_RE = re.compile(r"^\$?(\d+(?:\.\d{1,2})?)$")
_NUMBER_FIRST_RE = re.compile(r"^\$?(\d+(?:\.\d{1,2})?)\s+(.+)$")
_NUMBER_LAST_RE = re.compile(r"^(.+?)\s+\$?(\d+(?:\.\d{1,2})?)$")

# Substring keywords used to guess the category of a one-line expense.
CATEGORY_KEYWORDS: dict[str, str] = {
    "coffee": "Food",
    "tea": "Food",
    "lunch": "Food",
    "dinner": "Food",
    "breakfast": "Food",
    "food": "Food",
    "restaurant": "Food",
    "cafe": "Food",
    "grocer": "Groceries",
    "supermarket": "Groceries",
    "taxi": "Transport",
    "grab": "Transport",
    "uber": "Transport",
    "bus": "Transport",
    "mrt": "Transport",
    "train": "Transport",
    "parking": "Transport",
    "petrol": "Transport",
    "shopping": "Shopping",
    "clothes": "Shopping",
    "shoes": "Shopping",
    "bill": "Bills",
    "electricity": "Bills",
    "internet": "Bills",
    "phone": "Bills",
    "utilit": "Bills",
    "movie": "Entertainment",
    "cinema": "Entertainment",
    "netflix": "Entertainment",
    "concert": "Entertainment",
    "pharmacy": "Medical",
    "doctor": "Medical",
    "clinic": "Medical",
    "hospital": "Medical",
    "hotel": "Travel",
    "flight": "Travel",
    "trip": "Travel",
    "travel": "Travel",
}


@dataclass(frozen=True)
class Command:
    """A slash command split into its name and arguments."""

    name: str
    args: list[str]


@dataclass(frozen=True)
class QuickExpense:
    amount: Decimal
    description: str
    category: str


@dataclass(frozen=True)
class AddArgs:
    amount: Decimal
    category: str
    description: str | None = None


@dataclass(frozen=True)
class SplitArgs:
    """Arguments of ``/split``: a reset, or a category and RoleA's share."""

    reset: bool = False
    category: str | None = None
    percent_a: Decimal | None = None


def tokenize(text: str) -> list[str]:
    """Split on whitespace, keeping double-quoted runs together.

    Apostrophes are ordinary characters ("Tom's" stays one word). Raises
    ValidationError on an unclosed quote.
    """
    lexer = shlex.shlex(text.translate(_SMART_QUOTES), posix=True)
    lexer.whitespace_split = True
    lexer.commenters = ""
    lexer.quotes = '"'
    lexer.escape = ""
    try:
        return list(lexer)
    except ValueError:
        msg = "Unclosed quote in command"
        raise ValidationError(msg) from None


def parse_command(text: str) -> Command | None:
    """Parse ``/name@bot arg ...``. Returns None for text that is not a command."""
    stripped = text.strip()
    if not stripped.startswith("/"):
        return None
    head, _, rest = stripped.partition(" ")
    name = head[1:].split("@", 1)[0].lower()
    if not name:
        return None
    return Command(name=name, args=tokenize(rest) if rest.strip() else [])


def parse_amount(text: str) -> Decimal:
    """Parse a typed amount such as ``12``, ``12.50``, ``$1,250``."""
    cleaned = text.strip().replace(",", "")
    if not _AMOUNT_RE.match(cleaned):
        raise ValidationError(AMOUNT_HINT)
    return to_amount(cleaned.lstrip("$"))


def parse_percent(text: str) -> Decimal:
    """Parse a whole percentage 0-100 and return it as a 0-1 fraction."""
    cleaned = text.strip().rstrip("%").strip()
    if not cleaned.isdecimal():
        raise ValidationError(PERCENT_HINT)
    value = int(cleaned)
    if value > 100:
        raise ValidationError(PERCENT_HINT)
    return Decimal(value) / 100


def parse_day(text: str) -> int:
    cleaned = text.strip()
    if not cleaned.isdecimal() or not 1 <= int(cleaned) <= 31:
        raise ValidationError(DAY_HINT)
    return int(cleaned)


def infer_category(description: str) -> str:
    lowered = description.lower()
    for keyword, category in CATEGORY_KEYWORDS.items():
        if keyword in lowered:
            return category
    return "Other"


def parse_quick_expense(text: str) -> QuickExpense | None:
    """Recognize one-line expenses like ``130 groceries`` or ``coffee 5.50``."""
    stripped = text.strip()
    if not stripped or stripped.startswith("/"):
        return None

    match = _NUMBER_FIRST_RE.match(stripped)
    if match:
        raw_amount, description = match.group(1), match.group(2).strip()
    else:
        match = _NUMBER_LAST_RE.match(stripped)
        if not match:
            return None
        description, raw_amount = match.group(1).strip(), match.group(2)
        if re.fullmatch(r"\$?\d+(?:\.\d+)?", description):
            return None

    amount = Decimal(raw_amount)
    if not description or amount <= 0 or amount > MAX_QUICK_AMOUNT:
        return None
    return QuickExpense(
        amount=to_amount(amount),
        description=description,
        category=infer_category(description),
    )


def parse_add_args(args: list[str]) -> AddArgs:
    if len(args) < 2:
        raise ValidationError(ADD_USAGE)
    try:
        amount = parse_amount(args[0])
    except ValidationError:
        msg = f"{AMOUNT_HINT}\n{ADD_USAGE}"
        raise ValidationError(msg) from None
    description = " ".join(args[2:]).strip() or None
    return AddArgs(amount=amount, category=args[1], description=description)


def parse_split_args(args: list[str]) -> SplitArgs:
    """Parse ``/split`` arguments; the last argument is RoleA's percentage."""
    if not args:
        return SplitArgs()
    if len(args) == 1 and args[0].lower() == "reset":
        return SplitArgs(reset=True)
    if len(args) < 2:
        raise ValidationError(SPLIT_USAGE)
    percent_a = parse_percent(args[-1])
    return SplitArgs(category=" ".join(args[:-1]), percent_a=percent_a)
