"""LLM-based receipt extraction and correction interpretation using pydantic-ai."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from pydantic_ai import Agent, BinaryContent

from duo_ledger.config import get_anthropic_api_key, get_llm_model
from duo_ledger.errors import ExternalServiceError
from duo_ledger.models import CorrectionResult, ReceiptData

if TYPE_CHECKING:
    from collections.abc import Sequence

    from duo_ledger.models import Participants, ReceiptImage, Transaction

logger = logging.getLogger(__name__)

_RECEIPT_PROMPT = """\
You read photos of receipts, invoices and payment screenshots. The user sends \
one or more images that belong together. Decide whether they contain expense \
data and extract:

- is_valid: true if any image shows an expense or payment
- transactions: one entry per distinct expense, each with amount (numeric), \
merchant (the store or service provider), category (one of Food, Transport, \
Shopping, Groceries, Bills, Entertainment, Medical, Travel, Other) and \
purchase_date (YYYY-MM-DD, if shown)
- total: the sum of all transaction amounts
- currency: ISO 4217 code of the amounts, if shown
- merchant: the main merchant, or "Multiple Merchants"
- category: the main category, or "Multiple Categories"

Several screenshots of the same payment are one transaction, not several. \
Use the amount actually charged, after discounts and including tax.\
"""

_CORRECTION_PROMPT = """\
You edit a shared expense ledger for two people. The user describes one or \
more changes to their recent transactions. Return every change requested as \
an action:

- UPDATE_SPLIT: data.percent_a and data.percent_b (fractions 0-1 summing to 1)
- UPDATE_AMOUNT: data.amount
- UPDATE_CATEGORY: data.category
- UPDATE_DESCRIPTION: data.description
- UPDATE_PAYER: data.payer ("A" or "B")
- DELETE: no data
- UNKNOWN: the request cannot be mapped to a transaction or change

Pick transaction_id from the listed transactions by description, amount or \
position ("last" is the first listed). Write status_message as a short \
present-continuous note, e.g. "Updating split for Venchi to 50-50...". Use \
low confidence when unsure.\
"""


def create_receipt_agent() -> Agent[None, ReceiptData]:
    """Create a pydantic-ai Agent that reads receipt images."""
    get_anthropic_api_key()
    return Agent(
        f"anthropic:{get_llm_model()}",
        output_type=ReceiptData,
        system_prompt=_RECEIPT_PROMPT,
    )


def create_correction_agent() -> Agent[None, CorrectionResult]:
    """Create a pydantic-ai Agent that turns correction requests into actions."""
    get_anthropic_api_key()
    return Agent(
        f"anthropic:{get_llm_model()}",
        output_type=CorrectionResult,
        system_prompt=_CORRECTION_PROMPT,
    )


class ReceiptExtractionService:
    """Receipt reading and correction parsing backed by LLM agents.

    Agents are created lazily and can be injected for tests.
    """

    def __init__(
        self,
        *,
        receipt_agent: Agent[None, ReceiptData] | None = None,
        correction_agent: Agent[None, CorrectionResult] | None = None,
        participants: Participants | None = None,
    ) -> None:
        self._receipt_agent = receipt_agent
        self._correction_agent = correction_agent
        self._participants = participants

    async def extract(self, images: Sequence[ReceiptImage]) -> ReceiptData:
        """Extract receipt data from a batch of images.

        Raises ExternalServiceError if the model call fails or its output
        does not validate.
        """
        if not images:
            msg = "No images to extract from"
            raise ExternalServiceError(msg)
        if self._receipt_agent is None:
            self._receipt_agent = create_receipt_agent()

        prompt: list[Any] = [
            f"{len(images)} image(s) of receipts or payment screenshots."
        ]
        prompt.extend(
            BinaryContent(data=image.data, media_type=image.content_type)
            for image in images
        )

        try:
            result: Any = await self._receipt_agent.run(prompt)
        except Exception as exc:
            logger.warning("Receipt extraction failed", exc_info=True)
            msg = f"Receipt extraction failed: {exc}"
            raise ExternalServiceError(msg) from exc

        receipt: ReceiptData = result.output
        logger.info(
            "Extracted receipt: valid=%s, %d item(s), total=%s",
            receipt.is_valid,
            len(receipt.transactions),
            receipt.total,
        )
        return receipt

    async def interpret_correction(
        self, text: str, candidates: Sequence[Transaction]
    ) -> CorrectionResult:
        """Interpret a free-text correction against recent transactions.

        Never raises: any failure yields a single UNKNOWN action with low
        confidence.
        """
        try:
            if self._correction_agent is None:
                self._correction_agent = create_correction_agent()
            result: Any = await self._correction_agent.run(
                _build_correction_prompt(text, candidates, self._participants)
            )
        except Exception:
            logger.warning("Correction interpretation failed", exc_info=True)
            return CorrectionResult.unknown()

        output = result.output
        if not isinstance(output, CorrectionResult) or not output.actions:
            return CorrectionResult.unknown()
        return output


def _build_correction_prompt(
    text: str,
    candidates: Sequence[Transaction],
    participants: Participants | None,
) -> str:
    """Build the user prompt listing the request and candidate transactions."""
    parts = [f'Request: "{text}"', "", "Recent transactions (most recent first):"]
    for index, tx in enumerate(candidates, start=1):
        split = ""
        if tx.percent_a is not None and tx.percent_b is not None:
            split = f", Split: {round(tx.percent_a * 100)}-{round(tx.percent_b * 100)}"
        parts.append(
            f"{index}. ID: {tx.id}, Description: \"{tx.description}\", "
            f"Amount: {tx.amount}, Category: {tx.category}{split}, "
            f"Payer: {tx.payer_role.value}, Date: {tx.occurred_at.date().isoformat()}"
        )
    if not candidates:
        parts.append("(none)")

    if participants is not None:
        parts.extend(
            [
                "",
                f'Payer "A" is {participants.a.name}; payer "B" is '
                f"{participants.b.name}.",
            ]
        )
    return "\n".join(parts)
