"""Per-chat conversation modes.

A session holds exactly one mode. Each mode is its own frozen dataclass
carrying only its own fields, so switching modes cannot leave another flow's
values behind.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from enum import StrEnum

logger = logging.getLogger(__name__)


class ManualStep(StrEnum):
    AMOUNT = "amount"
    CATEGORY = "category"
    DESCRIPTION = "description"
    PAYER = "payer"


class RecurringStep(StrEnum):
    DESCRIPTION = "description"
    AMOUNT = "amount"
    DAY = "day"
    PAYER = "payer"


@dataclass(frozen=True)
class Idle:
    pass


@dataclass(frozen=True)
class AwaitingAmountConfirmation:
    receipt_id: str


@dataclass(frozen=True)
class AwaitingPayer:
    receipt_id: str
    amount_override: Decimal | None = None


@dataclass(frozen=True)
class ManualEntry:
    step: ManualStep = ManualStep.AMOUNT
    amount: Decimal | None = None
    category: str | None = None
    description: str | None = None


@dataclass(frozen=True)
class RecurringEntry:
    step: RecurringStep = RecurringStep.DESCRIPTION
    description: str | None = None
    amount: Decimal | None = None
    day: int | None = None


@dataclass(frozen=True)
class EditLast:
    transaction_id: int


@dataclass(frozen=True)
class SplitCustomInput:
    category: str


@dataclass(frozen=True)
class Search:
    pass


Mode = (
    Idle
    | AwaitingAmountConfirmation
    | AwaitingPayer
    | ManualEntry
    | RecurringEntry
    | EditLast
    | SplitCustomInput
    | Search
)

IDLE = Idle()


class SessionStore:
    """Current mode per chat. Chats with no entry are idle."""

    def __init__(self) -> None:
        self._modes: dict[int, Mode] = {}

    def get(self, chat_id: int) -> Mode:
        return self._modes.get(chat_id, IDLE)

    def enter(self, chat_id: int, mode: Mode) -> None:
        previous = self._modes.get(chat_id, IDLE)
        if isinstance(mode, Idle):
            self._modes.pop(chat_id, None)
        else:
            self._modes[chat_id] = mode
        if type(previous) is not type(mode):
            logger.debug(
                "Chat %s: %s -> %s",
                chat_id,
                type(previous).__name__,
                type(mode).__name__,
            )

    def reset(self, chat_id: int) -> Mode:
        """Return the chat to idle and give back the mode it left."""
        return self._modes.pop(chat_id, IDLE)
