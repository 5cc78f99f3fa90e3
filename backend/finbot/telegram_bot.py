"""Telegram front-end for the finance dialogue."""

from __future__ import annotations

import logging

from sqlalchemy.engine import Engine
from telegram import InlineKeyboardButton, InlineKeyboardMarkup, Update
from telegram.constants import ChatType
from telegram.ext import (
    Application,
    ApplicationBuilder,
    CallbackQueryHandler,
    CommandHandler,
    ContextTypes,
    MessageHandler,
    filters,
)

from .config import Settings
from .dialogue import DialogueManager, Reply
from .keyboards import Layout

logger = logging.getLogger(__name__)

DIALOGUE_KEY = "dialogue"
ENGINE_KEY = "engine"
COMMANDS = ("start", "menu", "options", "help", "cancel")
GROUP_CHAT_TYPES = {ChatType.GROUP, ChatType.SUPERGROUP}


def render_keyboard(layout: Layout | None) -> InlineKeyboardMarkup | None:
    if not layout:
        return None
    return InlineKeyboardMarkup(
        [[InlineKeyboardButton(label, callback_data=data) for label, data in row] for row in layout]
    )


def strip_mention(text: str, bot_username: str | None) -> str:
    if not bot_username:
        return text.strip()
    return text.replace(f"@{bot_username}", "").strip()


def _dialogue(context: ContextTypes.DEFAULT_TYPE) -> DialogueManager:
    return context.bot_data[DIALOGUE_KEY]


async def _send(update: Update, reply: Reply) -> None:
    await update.effective_chat.send_message(
        reply.text,
        reply_markup=render_keyboard(reply.keyboard),
    )


async def handle_message(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    message = update.effective_message
    chat = update.effective_chat
    if message is None or chat is None or not message.text:
        return

    text = message.text
    if chat.type in GROUP_CHAT_TYPES:
        text = strip_mention(text, context.bot.username)

    reply = await _dialogue(context).handle_text(chat.id, text)
    await _send(update, reply)


async def handle_callback(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    await query.answer()
    chat = update.effective_chat
    if chat is None:
        return

    reply = await _dialogue(context).handle_button(chat.id, query.data or "")
    await _send(update, reply)


async def handle_error(update: object, context: ContextTypes.DEFAULT_TYPE) -> None:
    logger.error("Unhandled error while processing update %s", update, exc_info=context.error)


async def _on_shutdown(application: Application) -> None:
    dialogue: DialogueManager | None = application.bot_data.get(DIALOGUE_KEY)
    if dialogue is not None:
        dialogue.store.clear()
    engine: Engine | None = application.bot_data.get(ENGINE_KEY)
    if engine is not None:
        engine.dispose()
    logger.info("Telegram bot stopped.")


def build_application(
    settings: Settings,
    dialogue: DialogueManager,
    engine: Engine | None = None,
) -> Application:
    if not settings.bot_token:
        raise RuntimeError("BOT_TOKEN is missing from configuration.")

    application = (
        ApplicationBuilder()
        .token(settings.bot_token)
        .concurrent_updates(settings.concurrent_updates)
        .post_shutdown(_on_shutdown)
        .build()
    )
    application.bot_data[DIALOGUE_KEY] = dialogue
    if engine is not None:
        application.bot_data[ENGINE_KEY] = engine

    # Edited messages are not dialogue events.
    new_messages = filters.UpdateType.MESSAGE
    application.add_handler(CommandHandler(list(COMMANDS), handle_message, filters=new_messages))
    application.add_handler(CallbackQueryHandler(handle_callback))
    application.add_handler(MessageHandler(new_messages & filters.TEXT & ~filters.COMMAND, handle_message))
    # Unknown commands still get the dialogue's hint.
    application.add_handler(MessageHandler(new_messages & filters.COMMAND, handle_message))
    application.add_error_handler(handle_error)
    return application
