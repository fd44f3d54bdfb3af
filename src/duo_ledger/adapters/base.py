"""Chat transport protocol."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Sequence


@dataclass(frozen=True)
class Button:
    """An inline choice button. ``data`` comes back as a callback event."""

    label: str
    data: str


Keyboard = list[list[Button]]


@runtime_checkable
class ChatTransport(Protocol):
    """Protocol for the chat platform the bot talks through."""

    async def send_message(
        self, chat_id: int, text: str, buttons: Sequence[Sequence[Button]] | None = None
    ) -> int: ...

    async def edit_message(
        self,
        chat_id: int,
        message_id: int,
        text: str,
        buttons: Sequence[Sequence[Button]] | None = None,
    ) -> None: ...

    async def delete_message(self, chat_id: int, message_id: int) -> None: ...

    async def get_file_bytes(self, photo_ref: str) -> bytes: ...
