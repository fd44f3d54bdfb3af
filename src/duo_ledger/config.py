"""Configuration via environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

from dotenv import load_dotenv

load_dotenv()


@dataclass(frozen=True)
class ParticipantConfig:
    """Identity of one of the two participants."""

    user_id: int
    name: str


@dataclass(frozen=True)
class ParticipantsConfig:
    """The two fixed participants. ``a`` is RoleA, ``b`` is RoleB."""

    a: ParticipantConfig
    b: ParticipantConfig


def get_database_url() -> str:
    """Return the DATABASE_URL from the environment."""
    url = os.environ.get("DATABASE_URL")
    if not url:
        msg = "DATABASE_URL environment variable is required"
        raise ValueError(msg)
    return url


def get_telegram_token() -> str:
    """Return the TELEGRAM_BOT_TOKEN from the environment."""
    token = os.environ.get("TELEGRAM_BOT_TOKEN")
    if not token:
        msg = "TELEGRAM_BOT_TOKEN environment variable is required"
        raise ValueError(msg)
    return token


def get_participants_config() -> ParticipantsConfig:
    """Build the participant pair from environment variables.

    Required: USER_A_ID, USER_A_NAME, USER_B_ID, USER_B_NAME
    """
    names = ("USER_A_ID", "USER_A_NAME", "USER_B_ID", "USER_B_NAME")
    values = {name: os.environ.get(name) for name in names}

    missing = [name for name in names if not values[name]]
    if missing:
        msg = f"Required environment variables not set: {', '.join(missing)}"
        raise ValueError(msg)

    try:
        a_id = int(values["USER_A_ID"])  # type: ignore[arg-type]
        b_id = int(values["USER_B_ID"])  # type: ignore[arg-type]
    except ValueError:
        msg = "USER_A_ID and USER_B_ID must be integers"
        raise ValueError(msg) from None

    if a_id == b_id:
        msg = "USER_A_ID and USER_B_ID must differ"
        raise ValueError(msg)

    return ParticipantsConfig(
        a=ParticipantConfig(user_id=a_id, name=values["USER_A_NAME"] or ""),
        b=ParticipantConfig(user_id=b_id, name=values["USER_B_NAME"] or ""),
    )


def get_currency() -> str:
    """Return the ledger currency code. Defaults to SGD."""
    return os.environ.get("CURRENCY", "SGD").upper()


def get_default_split_a() -> Decimal:
    """Return RoleA's share of a category with no override.

    Defaults to 0.5. RoleB's share is the complement.
    """
    raw = os.environ.get("DEFAULT_SPLIT_A", "0.5")
    try:
        value = Decimal(raw)
    except InvalidOperation:
        msg = f"DEFAULT_SPLIT_A must be a number, got {raw!r}"
        raise ValueError(msg) from None
    if not value.is_finite() or not Decimal(0) <= value <= Decimal(1):
        msg = f"DEFAULT_SPLIT_A must be between 0 and 1, got {raw}"
        raise ValueError(msg)
    return value


def get_photo_debounce_seconds() -> float:
    """Return the quiet window before a photo batch is flushed."""
    return float(os.environ.get("PHOTO_DEBOUNCE_SECONDS", "10"))


def get_anthropic_api_key() -> str:
    """Return the ANTHROPIC_API_KEY from the environment."""
    key = os.environ.get("ANTHROPIC_API_KEY")
    if not key:
        msg = "ANTHROPIC_API_KEY environment variable is required"
        raise ValueError(msg)
    return key


def get_llm_model() -> str:
    """Return the LLM model identifier.

    Defaults to claude-haiku-4-5-20251001.
    """
    return os.environ.get("LLM_MODEL", "claude-haiku-4-5-20251001")
