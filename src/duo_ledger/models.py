"""Domain and extraction models for the shared ledger."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import StrEnum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic import ValidationError as PydanticValidationError

from duo_ledger.errors import NotFoundError, ValidationError

SPLIT_EPSILON = Decimal("0.0001")


class Role(StrEnum):
    """The two fixed participant roles."""

    A = "A"
    B = "B"

    @property
    def other(self) -> Role:
        return Role.B if self is Role.A else Role.A


@dataclass(frozen=True)
class Participant:
    """One of the two people sharing expenses."""

    id: int
    name: str
    role: Role


@dataclass(frozen=True)
class Participants:
    """The resolved participant pair."""

    a: Participant
    b: Participant

    def by_role(self, role: Role) -> Participant:
        return self.a if role is Role.A else self.b

    def by_id(self, user_id: int) -> Participant:
        """Return the participant with ``user_id`` or raise NotFoundError."""
        for participant in (self.a, self.b):
            if participant.id == user_id:
                return participant
        msg = f"User {user_id} is not a ledger participant"
        raise NotFoundError(msg)

    def find(self, user_id: int) -> Participant | None:
        try:
            return self.by_id(user_id)
        except NotFoundError:
            return None

    def match_name(self, text: str) -> Participant | None:
        """Match free text ("a", "B", or a name prefix) to a participant."""
        needle = text.strip().lower()
        if not needle:
            return None
        for participant in (self.a, self.b):
            if needle == participant.role.value.lower():
                return participant
        for participant in (self.a, self.b):
            if participant.name.lower().startswith(needle):
                return participant
        return None


class Split(BaseModel):
    """A (percent_a, percent_b) pair summing to 1.0."""

    model_config = ConfigDict(frozen=True)

    percent_a: Decimal = Field(ge=0, le=1)
    percent_b: Decimal = Field(ge=0, le=1)

    @model_validator(mode="after")
    def _check_sum(self) -> Split:
        total = self.percent_a + self.percent_b
        if abs(total - Decimal(1)) > SPLIT_EPSILON:
            msg = f"percentages must sum to 1.0 (got {total})"
            raise ValueError(msg)
        return self

    @classmethod
    def of(cls, percent_a: Decimal | float, percent_b: Decimal | float) -> Split:
        """Build a split, raising the domain ValidationError on bad input."""
        try:
            return cls(
                percent_a=Decimal(str(percent_a)), percent_b=Decimal(str(percent_b))
            )
        except PydanticValidationError as exc:
            msg = (
                f"Invalid split percentages {percent_a} / {percent_b}: "
                "each must be between 0 and 1 and together sum to 1.0"
            )
            raise ValidationError(msg) from exc

    @classmethod
    def from_percent_a(cls, percent_a: Decimal) -> Split:
        return cls.of(percent_a, Decimal(1) - percent_a)


class Transaction(BaseModel):
    """Transaction record as stored in the database."""

    id: int
    amount: Decimal
    currency: str
    category: str
    description: str
    payer_id: int
    payer_role: Role
    occurred_at: datetime
    is_settled: bool = False
    percent_a: Decimal | None = None
    percent_b: Decimal | None = None
    created_at: datetime | None = None


@dataclass
class ReceiptImage:
    """A downloaded receipt photo or image document."""

    data: bytes
    content_type: str = "image/jpeg"


@dataclass
class NewTransaction:
    """Values for a transaction about to be inserted."""

    amount: Decimal
    currency: str
    category: str
    description: str
    payer_id: int
    occurred_at: datetime
    percent_a: Decimal
    percent_b: Decimal
    is_settled: bool = False


@dataclass(frozen=True)
class Owed:
    """Amounts each participant owes the other."""

    a_owes: Decimal = Decimal(0)
    b_owes: Decimal = Decimal(0)


@dataclass(frozen=True)
class DetailedBalance:
    """Outstanding totals for reporting. Percentages are 0-100."""

    a_paid: Decimal
    b_paid: Decimal
    a_share: Decimal
    b_share: Decimal
    total_spending: Decimal
    avg_percent_a: Decimal
    avg_percent_b: Decimal

    @property
    def a_net(self) -> Decimal:
        return self.a_paid - self.a_share

    @property
    def b_net(self) -> Decimal:
        return self.b_paid - self.b_share


@dataclass(frozen=True)
class CommitResult:
    """A committed transaction and the refreshed balance message."""

    transaction: Transaction
    balance_message: str


@dataclass(frozen=True)
class PatchResult:
    """Outcome of a balance patch."""

    settled: int
    created: list[Transaction]
    already_applied: bool


class ReceiptItem(BaseModel):
    """A single expense found on a receipt image."""

    amount: Decimal = Field(gt=0)
    merchant: str = "Unknown Merchant"
    category: str = "Other"
    purchase_date: date | None = None


class ReceiptData(BaseModel):
    """Structured data extracted from one batch of receipt images by the LLM."""

    is_valid: bool
    transactions: list[ReceiptItem] = Field(default_factory=list)
    total: Decimal | None = None
    currency: str | None = None
    merchant: str | None = None
    merchants: list[str] | None = None
    category: str | None = None
    categories: list[str] | None = None
    purchase_date: date | None = None
    individual_amounts: list[Decimal] | None = None

    def items(self) -> list[ReceiptItem]:
        """Line items to record, falling back to a single item for the total."""
        if self.transactions:
            return list(self.transactions)
        if self.total is not None and self.total > 0:
            return [
                ReceiptItem(
                    amount=self.total,
                    merchant=self.merchant or "Unknown Merchant",
                    category=self.category or "Other",
                    purchase_date=self.purchase_date,
                )
            ]
        return []

    def grand_total(self) -> Decimal:
        if self.total is not None and self.total > 0:
            return self.total
        return sum((item.amount for item in self.transactions), Decimal(0))

    @property
    def has_expense(self) -> bool:
        return self.is_valid and bool(self.items())


class CorrectionKind(StrEnum):
    UPDATE_SPLIT = "UPDATE_SPLIT"
    UPDATE_CATEGORY = "UPDATE_CATEGORY"
    UPDATE_AMOUNT = "UPDATE_AMOUNT"
    UPDATE_DESCRIPTION = "UPDATE_DESCRIPTION"
    UPDATE_PAYER = "UPDATE_PAYER"
    DELETE = "DELETE"
    UNKNOWN = "UNKNOWN"


class CorrectionData(BaseModel):
    """Payload of a correction action; only the fields for its kind are set."""

    percent_a: Decimal | None = Field(default=None, ge=0, le=1)
    percent_b: Decimal | None = Field(default=None, ge=0, le=1)
    amount: Decimal | None = Field(default=None, gt=0)
    category: str | None = None
    description: str | None = None
    payer: Role | None = None


class CorrectionAction(BaseModel):
    kind: CorrectionKind
    transaction_id: int | None = None
    data: CorrectionData | None = None
    status_message: str = ""


class CorrectionResult(BaseModel):
    """Edits interpreted from a free-text correction request."""

    actions: list[CorrectionAction] = Field(default_factory=list)
    confidence: Literal["low", "medium", "high"] = "low"

    @classmethod
    def unknown(
        cls, message: str = "I couldn't understand that change."
    ) -> CorrectionResult:
        action = CorrectionAction(kind=CorrectionKind.UNKNOWN, status_message=message)
        return cls(actions=[action], confidence="low")


class RecurringExpense(BaseModel):
    """A monthly expense committed automatically on ``day_of_month``."""

    id: int
    description: str
    amount: Decimal = Field(gt=0)
    payer_id: int
    day_of_month: int = Field(ge=1, le=31)
    is_active: bool = True
    last_processed_on: date | None = None
