"""Tests for duo_ledger.config."""

from __future__ import annotations

from decimal import Decimal

import pytest

from duo_ledger.config import (
    ParticipantConfig,
    get_anthropic_api_key,
    get_currency,
    get_database_url,
    get_default_split_a,
    get_llm_model,
    get_participants_config,
    get_photo_debounce_seconds,
    get_telegram_token,
)

PARTICIPANT_VARS = ("USER_A_ID", "USER_A_NAME", "USER_B_ID", "USER_B_NAME")


@pytest.fixture
def participant_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("USER_A_ID", "111")
    monkeypatch.setenv("USER_A_NAME", "Alice")
    monkeypatch.setenv("USER_B_ID", "222")
    monkeypatch.setenv("USER_B_NAME", "Bob")


class TestGetParticipantsConfig:
    """Tests for get_participants_config()."""

    @pytest.mark.usefixtures("participant_env")
    def test_valid_config(self) -> None:
        config = get_participants_config()

        assert config.a == ParticipantConfig(user_id=111, name="Alice")
        assert config.b == ParticipantConfig(user_id=222, name="Bob")

    @pytest.mark.usefixtures("participant_env")
    def test_missing_name_raises(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("USER_B_NAME")
        with pytest.raises(ValueError, match="USER_B_NAME"):
            get_participants_config()

    def test_missing_all_required_raises(self, monkeypatch: pytest.MonkeyPatch) -> None:
        for name in PARTICIPANT_VARS:
            monkeypatch.delenv(name, raising=False)

        with pytest.raises(
            ValueError, match=r"USER_A_ID.*USER_A_NAME.*USER_B_ID.*USER_B_NAME"
        ):
            get_participants_config()

    @pytest.mark.usefixtures("participant_env")
    def test_non_integer_id_raises(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("USER_A_ID", "alice")
        with pytest.raises(ValueError, match="must be integers"):
            get_participants_config()

    @pytest.mark.usefixtures("participant_env")
    def test_same_id_raises(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("USER_B_ID", "111")
        with pytest.raises(ValueError, match="must differ"):
            get_participants_config()

    def test_config_is_frozen(self) -> None:
        config = ParticipantConfig(user_id=1, name="Alice")
        with pytest.raises(AttributeError):
            config.name = "Eve"  # type: ignore[misc]


class TestRequiredSecrets:
    """Tests for the required connection settings."""

    def test_database_url(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("DATABASE_URL", "postgresql://localhost/ledger")
        assert get_database_url() == "postgresql://localhost/ledger"

    def test_database_url_missing(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("DATABASE_URL", raising=False)
        with pytest.raises(ValueError, match="DATABASE_URL"):
            get_database_url()

    def test_telegram_token_missing(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("TELEGRAM_BOT_TOKEN", raising=False)
        with pytest.raises(ValueError, match="TELEGRAM_BOT_TOKEN"):
            get_telegram_token()

    def test_anthropic_key_present(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-ant-test-key")
        assert get_anthropic_api_key() == "sk-ant-test-key"

    def test_anthropic_key_missing(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
        with pytest.raises(ValueError, match="ANTHROPIC_API_KEY"):
            get_anthropic_api_key()


class TestDefaults:
    """Tests for optional settings and their defaults."""

    def test_currency_default(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("CURRENCY", raising=False)
        assert get_currency() == "SGD"

    def test_currency_uppercased(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("CURRENCY", "usd")
        assert get_currency() == "USD"

    def test_default_split(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("DEFAULT_SPLIT_A", raising=False)
        assert get_default_split_a() == Decimal("0.5")

    def test_custom_split(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("DEFAULT_SPLIT_A", "0.6")
        assert get_default_split_a() == Decimal("0.6")

    @pytest.mark.parametrize("raw", ["1.5", "-0.1", "half", "NaN"])
    def test_invalid_split(self, monkeypatch: pytest.MonkeyPatch, raw: str) -> None:
        monkeypatch.setenv("DEFAULT_SPLIT_A", raw)
        with pytest.raises(ValueError, match="DEFAULT_SPLIT_A"):
            get_default_split_a()

    def test_photo_debounce(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("PHOTO_DEBOUNCE_SECONDS", raising=False)
        assert get_photo_debounce_seconds() == 10.0

    def test_default_model(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("LLM_MODEL", raising=False)
        assert get_llm_model() == "claude-haiku-4-5-20251001"

    def test_custom_model(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("LLM_MODEL", "claude-sonnet-4-20250514")
        assert get_llm_model() == "claude-sonnet-4-20250514"
