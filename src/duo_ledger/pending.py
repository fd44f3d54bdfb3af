"""Time-bounded staging of extracted receipts awaiting confirmation."""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Callable

    from duo_ledger.models import ReceiptData

logger = logging.getLogger(__name__)

PENDING_TTL_SECONDS = 3600.0


@dataclass(frozen=True)
class PendingReceipt:
    """An extracted receipt that has not been confirmed yet."""

    receipt: ReceiptData
    chat_id: int
    submitter_id: int
    staged_at: float


class PendingReceiptStore:
    """Pending receipts keyed by an opaque receipt id.

    Several entries may belong to the same chat. Expired entries are removed
    on the next ``stage`` or ``consume``; ``get`` never returns one.
    """

    def __init__(
        self,
        *,
        ttl: float = PENDING_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = ttl
        self._clock = clock
        self._entries: dict[str, PendingReceipt] = {}

    def __len__(self) -> int:
        return len(self._entries)

    @staticmethod
    def new_id() -> str:
        return uuid.uuid4().hex[:12]

    def stage(
        self, receipt_id: str, receipt: ReceiptData, chat_id: int, submitter_id: int
    ) -> None:
        self.sweep()
        self._entries[receipt_id] = PendingReceipt(
            receipt=receipt,
            chat_id=chat_id,
            submitter_id=submitter_id,
            staged_at=self._clock(),
        )
        logger.debug("Staged receipt %s for chat %s", receipt_id, chat_id)

    def get(self, receipt_id: str) -> PendingReceipt | None:
        entry = self._entries.get(receipt_id)
        if entry is None or self._expired(entry):
            return None
        return entry

    def consume(self, receipt_id: str) -> PendingReceipt | None:
        """Remove and return the entry, or None if absent or expired."""
        self.sweep()
        return self._entries.pop(receipt_id, None)

    def sweep(self) -> int:
        expired = [rid for rid, entry in self._entries.items() if self._expired(entry)]
        for receipt_id in expired:
            del self._entries[receipt_id]
        if expired:
            logger.info("Swept %d expired pending receipts", len(expired))
        return len(expired)

    def _expired(self, entry: PendingReceipt) -> bool:
        return self._clock() - entry.staged_at >= self._ttl
