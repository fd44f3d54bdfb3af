"""Telegram chat transport and bot application wiring."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from telegram import InlineKeyboardButton, InlineKeyboardMarkup, Update
from telegram.error import BadRequest
from telegram.ext import Application, CallbackQueryHandler, MessageHandler, filters

from duo_ledger.photos import DEFAULT_CONTENT_TYPE

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Sequence

    from telegram import Bot
    from telegram.ext import ContextTypes

    from duo_ledger.adapters.base import Button, ChatTransport
    from duo_ledger.conversation import ConversationStateMachine

logger = logging.getLogger(__name__)

MACHINE_KEY = "conversation"


def to_markup(
    buttons: Sequence[Sequence[Button]] | None,
) -> InlineKeyboardMarkup | None:
    """Convert button rows to a Telegram inline keyboard."""
    if not buttons:
        return None
    return InlineKeyboardMarkup(
        [
            [InlineKeyboardButton(b.label, callback_data=b.data) for b in row]
            for row in buttons
        ]
    )


class TelegramTransport:
    """ChatTransport backed by a python-telegram-bot ``Bot``."""

    def __init__(self, bot: Bot) -> None:
        self._bot = bot

    async def send_message(
        self, chat_id: int, text: str, buttons: Sequence[Sequence[Button]] | None = None
    ) -> int:
        message = await self._bot.send_message(
            chat_id=chat_id, text=text, reply_markup=to_markup(buttons)
        )
        return message.message_id

    async def edit_message(
        self,
        chat_id: int,
        message_id: int,
        text: str,
        buttons: Sequence[Sequence[Button]] | None = None,
    ) -> None:
        try:
            await self._bot.edit_message_text(
                text=text,
                chat_id=chat_id,
                message_id=message_id,
                reply_markup=to_markup(buttons),
            )
        except BadRequest as exc:
            if "not modified" in str(exc).lower():
                logger.debug("Message %s unchanged", message_id)
                return
            raise

    async def delete_message(self, chat_id: int, message_id: int) -> None:
        await self._bot.delete_message(chat_id=chat_id, message_id=message_id)

    async def get_file_bytes(self, photo_ref: str) -> bytes:
        file = await self._bot.get_file(photo_ref)
        return bytes(await file.download_as_bytearray())


def _machine(context: ContextTypes.DEFAULT_TYPE) -> ConversationStateMachine:
    return context.application.bot_data[MACHINE_KEY]  # type: ignore[no-any-return]


async def on_text(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    message = update.effective_message
    user = update.effective_user
    if message is None or user is None or not message.text:
        return
    await _machine(context).handle_text(message.chat_id, user.id, message.text)


async def on_photo(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    message = update.effective_message
    user = update.effective_user
    if message is None or user is None:
        return
    if message.photo:
        file_id = message.photo[-1].file_id
        content_type = DEFAULT_CONTENT_TYPE
    elif message.document is not None:
        file_id = message.document.file_id
        content_type = message.document.mime_type or DEFAULT_CONTENT_TYPE
    else:
        return
    await _machine(context).handle_photo(
        message.chat_id, user.id, file_id, content_type
    )


async def on_callback(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    chat = update.effective_chat
    if query is None or chat is None:
        return
    await query.answer()
    await _machine(context).handle_callback(
        chat.id, query.from_user.id, query.data or ""
    )


def create_application(
    token: str,
    make_machine: Callable[[ChatTransport], ConversationStateMachine],
    *,
    post_init: Callable[[Application], Awaitable[None]] | None = None,
) -> Application:
    """Build the bot application with the conversation machine attached."""
    builder = Application.builder().token(token).concurrent_updates(True)
    if post_init is not None:
        builder = builder.post_init(post_init)
    application = builder.build()

    application.bot_data[MACHINE_KEY] = make_machine(TelegramTransport(application.bot))
    application.add_handler(
        MessageHandler(filters.PHOTO | filters.Document.IMAGE, on_photo)
    )
    application.add_handler(MessageHandler(filters.TEXT, on_text))
    application.add_handler(CallbackQueryHandler(on_callback))
    return application


def run_polling(application: Application) -> None:
    logger.info("Starting Telegram bot (long polling)")
    application.run_polling(allowed_updates=Update.ALL_TYPES)
