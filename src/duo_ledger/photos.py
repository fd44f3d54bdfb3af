"""Per-chat debounce batching of incoming receipt photos."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from duo_ledger.models import ReceiptImage

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from duo_ledger.adapters.base import ChatTransport

    FlushCallback = Callable[[int, int, list[ReceiptImage]], Awaitable[None]]

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_SECONDS = 10.0
DEFAULT_CONTENT_TYPE = "image/jpeg"
DOWNLOAD_FAILED_MESSAGE = "Error downloading images."


def status_text(count: int) -> str:
    return f"Collecting receipts... ({count} photo(s) received)"


@dataclass
class PhotoCollection:
    """Photos received from one chat during the current quiet window."""

    submitter_id: int
    photos: list[tuple[str, str]] = field(default_factory=list)
    timer: asyncio.Task[None] | None = None
    status_message_id: int | None = None
    creating_status: bool = False


class PhotoBatchCollector:
    """Accumulate photos per chat and flush them after a quiet window.

    Each photo cancels and restarts the chat's debounce task. When the task
    fires it removes the collection from the registry before awaiting
    anything, so a collection is flushed at most once and photos arriving
    during the flush start a new collection.
    """

    def __init__(
        self,
        transport: ChatTransport,
        on_flush: FlushCallback,
        *,
        debounce: float = DEFAULT_DEBOUNCE_SECONDS,
    ) -> None:
        self._transport = transport
        self._on_flush = on_flush
        self._debounce = debounce
        self._collections: dict[int, PhotoCollection] = {}
        self._flushing: set[asyncio.Task[None]] = set()

    def is_collecting(self, chat_id: int) -> bool:
        return chat_id in self._collections

    def photo_count(self, chat_id: int) -> int:
        collection = self._collections.get(chat_id)
        return len(collection.photos) if collection else 0

    async def add_photo(
        self,
        chat_id: int,
        photo_ref: str,
        submitter_id: int,
        content_type: str = DEFAULT_CONTENT_TYPE,
    ) -> None:
        collection = self._collections.get(chat_id)
        if collection is None:
            collection = PhotoCollection(submitter_id=submitter_id)
            self._collections[chat_id] = collection
            logger.debug("Started photo collection for chat %s", chat_id)

        collection.photos.append((photo_ref, content_type))
        if collection.timer is not None:
            collection.timer.cancel()
        collection.timer = asyncio.create_task(
            self._fire_after_quiet(chat_id, collection)
        )

        await self._show_status(chat_id, collection)

    async def interrupt(self, chat_id: int) -> bool:
        """Discard the chat's collection. Returns False if there was none."""
        collection = self._collections.pop(chat_id, None)
        if collection is None:
            return False
        if collection.timer is not None:
            collection.timer.cancel()
        logger.info(
            "Discarded %d collected photos for chat %s", len(collection.photos), chat_id
        )
        await self._remove_status(chat_id, collection)
        return True

    async def wait_for_flushes(self) -> None:
        """Wait until every flush already in progress has finished."""
        if self._flushing:
            await asyncio.gather(*self._flushing, return_exceptions=True)

    async def _fire_after_quiet(
        self, chat_id: int, collection: PhotoCollection
    ) -> None:
        await asyncio.sleep(self._debounce)
        if self._collections.get(chat_id) is not collection:
            return
        del self._collections[chat_id]

        task = asyncio.current_task()
        if task is not None:
            self._flushing.add(task)
            task.add_done_callback(self._flushing.discard)
        await self._flush(chat_id, collection)

    async def _flush(self, chat_id: int, collection: PhotoCollection) -> None:
        logger.info(
            "Flushing %d photos for chat %s", len(collection.photos), chat_id
        )
        await self._remove_status(chat_id, collection)

        images: list[ReceiptImage] = []
        for photo_ref, content_type in collection.photos:
            try:
                data = await self._transport.get_file_bytes(photo_ref)
                images.append(ReceiptImage(data=data, content_type=content_type))
            except Exception:
                logger.warning("Failed to download photo %s", photo_ref, exc_info=True)

        try:
            if not images:
                await self._transport.send_message(chat_id, DOWNLOAD_FAILED_MESSAGE)
                return
            await self._on_flush(chat_id, collection.submitter_id, images)
        except Exception:
            logger.exception("Photo batch for chat %s failed", chat_id)

    async def _show_status(self, chat_id: int, collection: PhotoCollection) -> None:
        if collection.creating_status:
            return
        try:
            if collection.status_message_id is not None:
                await self._transport.edit_message(
                    chat_id,
                    collection.status_message_id,
                    status_text(len(collection.photos)),
                )
                return

            collection.creating_status = True
            shown = len(collection.photos)
            try:
                collection.status_message_id = await self._transport.send_message(
                    chat_id, status_text(shown)
                )
            finally:
                collection.creating_status = False

            if self._collections.get(chat_id) is not collection:
                # flushed or interrupted while the message was being sent
                await self._remove_status(chat_id, collection)
            elif len(collection.photos) != shown:
                await self._transport.edit_message(
                    chat_id,
                    collection.status_message_id,
                    status_text(len(collection.photos)),
                )
        except Exception:
            logger.warning(
                "Could not update photo status for chat %s", chat_id, exc_info=True
            )

    async def _remove_status(self, chat_id: int, collection: PhotoCollection) -> None:
        message_id = collection.status_message_id
        if message_id is None:
            return
        collection.status_message_id = None
        try:
            await self._transport.delete_message(chat_id, message_id)
        except Exception:
            logger.warning(
                "Could not delete photo status for chat %s", chat_id, exc_info=True
            )
