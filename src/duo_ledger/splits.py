"""Category split rules backed by a settings blob with an in-process cache."""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError as PydanticValidationError

from duo_ledger.errors import StorageError
from duo_ledger.models import Split

if TYPE_CHECKING:
    from collections.abc import Callable

    from duo_ledger.store import LedgerStore

logger = logging.getLogger(__name__)

SETTINGS_KEY = "category_split_rules"
CACHE_TTL_SECONDS = 60.0
DEFAULT_SPLIT = Split(percent_a=Decimal("0.5"), percent_b=Decimal("0.5"))

CATEGORY_SYNONYMS: dict[str, str] = {
    "grocery": "Groceries",
    "groceries": "Groceries",
    "food": "Food",
    "dining": "Food",
    "restaurant": "Food",
    "bill": "Bills",
    "bills": "Bills",
    "utilities": "Bills",
    "shop": "Shopping",
    "shopping": "Shopping",
    "trip": "Travel",
    "travel": "Travel",
    "fun": "Entertainment",
    "entertainment": "Entertainment",
    "transport": "Transport",
    "transportation": "Transport",
    "commute": "Transport",
}


def normalize_category(category: str | None) -> str:
    """Map free-text category to its canonical name.

    Matching is case-insensitive. Known synonyms collapse to one name
    ("dining" -> "Food"); anything else is capitalized ("pets" -> "Pets").
    """
    trimmed = (category or "").strip()
    if not trimmed:
        return "Other"
    canonical = CATEGORY_SYNONYMS.get(trimmed.lower())
    if canonical is not None:
        return canonical
    return trimmed[0].upper() + trimmed[1:].lower()


@dataclass
class _CacheEntry:
    rules: dict[str, Split]
    loaded_at: float


class SplitRuleResolver:
    """Resolve a category to the (percent_a, percent_b) split applied to it."""

    def __init__(
        self,
        store: LedgerStore,
        *,
        default: Split = DEFAULT_SPLIT,
        ttl: float = CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._store = store
        self.default = default
        self._ttl = ttl
        self._clock = clock
        self._cache: _CacheEntry | None = None

    async def resolve(self, category: str | None) -> Split:
        """Return the override for ``category`` or the default split."""
        rules = await self.overrides()
        return rules.get(normalize_category(category), self.default)

    async def overrides(self) -> dict[str, Split]:
        """Return the validated override map, reading storage at most every TTL."""
        cache = self._cache
        if cache is not None and self._clock() - cache.loaded_at < self._ttl:
            return cache.rules

        try:
            raw = await self._store.get_setting(SETTINGS_KEY)
        except StorageError:
            logger.warning("Could not read split rules, using defaults", exc_info=True)
            raw = None

        rules = _parse_rules(raw)
        self._cache = _CacheEntry(rules=rules, loaded_at=self._clock())
        return rules

    async def update(
        self, category: str, percent_a: Decimal | float, percent_b: Decimal | float
    ) -> Split:
        """Persist an override for ``category``.

        Raises ValidationError before any write if the split is invalid.
        A StorageError while reading the current rules propagates and
        nothing is written.
        """
        split = Split.of(percent_a, percent_b)
        key = normalize_category(category)

        self.invalidate()
        rules = _parse_rules(await self._store.get_setting(SETTINGS_KEY))
        rules[key] = split
        try:
            await self._store.set_setting(SETTINGS_KEY, _dump_rules(rules))
        finally:
            self.invalidate()

        logger.info(
            "Split rule for %s set to %s/%s", key, split.percent_a, split.percent_b
        )
        return split

    async def reset_all(self) -> None:
        """Drop every override so all categories use the default."""
        self.invalidate()
        try:
            await self._store.delete_setting(SETTINGS_KEY)
        finally:
            self.invalidate()
        logger.info("Split rules reset to defaults")

    def invalidate(self) -> None:
        self._cache = None


def _parse_rules(raw: str | None) -> dict[str, Split]:
    """Parse the stored blob, dropping anything that is not a valid split."""
    if not raw:
        return {}
    try:
        data: Any = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Split rules blob is not valid JSON, ignoring it")
        return {}
    if not isinstance(data, dict):
        logger.warning("Split rules blob is not an object, ignoring it")
        return {}

    rules: dict[str, Split] = {}
    for category, rule in data.items():
        if not isinstance(rule, dict):
            logger.warning("Invalid split rule for %r, skipping", category)
            continue
        try:
            split = Split(
                percent_a=_to_decimal(rule.get("percent_a")),
                percent_b=_to_decimal(rule.get("percent_b")),
            )
        except (PydanticValidationError, TypeError, ValueError, ArithmeticError):
            logger.warning("Invalid split rule for %r, skipping", category)
            continue
        rules[normalize_category(category)] = split
    return rules


def _to_decimal(value: object) -> Decimal:
    # bool is an int subclass; "true" is not a percentage
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        msg = f"not a number: {value!r}"
        raise TypeError(msg)
    return Decimal(str(value))


def _dump_rules(rules: dict[str, Split]) -> str:
    return json.dumps(
        {
            category: {
                "percent_a": float(split.percent_a),
                "percent_b": float(split.percent_b),
            }
            for category, split in sorted(rules.items())
        }
    )
