"""
Routes one Telegram update to the right handler.

Private chats: commands go to CommandHandler, documents are stored as source code,
everything else is a chat turn. Group chats: only messages that tag the bot are
handled, and the mention is stripped before the text is used.
"""

from __future__ import annotations
from html import escape
from typing import Optional
import logging

from relaybot.schemas.telegram import TelegramMessage, TelegramUpdate
from relaybot.services.chat_service import ChatService
from relaybot.services.commands import CommandHandler
from relaybot.services.context import BotContext
from relaybot.services.rendering import format_time
from relaybot.services.telegram import TelegramError
from relaybot.storage.backend import BackendError

logger = logging.getLogger(__name__)

UNSUPPORTED_FILE = "❌ <b>Unsupported File Type</b>\n\nPlease upload a <code>.txt</code> file containing your source code."
FILE_RETRIEVAL_ERROR = "❌ <b>File Retrieval Error</b>\n\nFailed to retrieve the uploaded file. Please try again."
FILE_STORAGE_ERROR = "❌ <b>File Processing Error</b>\n\nFailed to process the uploaded file. Please try again."


def find_mention(text: str, entities, bot_username: str) -> Optional[str]:
    """Return the "@bot" mention text if one of the entities tags this bot."""
    if not bot_username:
        return None
    target = f"@{bot_username}".lower()
    for entity in entities:
        if entity.type != "mention" or entity.offset + entity.length > len(text):
            continue
        mention = text[entity.offset:entity.offset + entity.length]
        if mention.lower() == target:
            return mention
    return None


def strip_mention(text: str, mention: str) -> str:
    return text.replace(mention, "", 1).strip()


def _text_mentions(text: str, bot_username: str) -> bool:
    return bool(bot_username) and f"@{bot_username}".lower() in text.lower()


class UpdateDispatcher:
    def __init__(self, ctx: BotContext, chat: ChatService, commands: CommandHandler) -> None:
        self._ctx = ctx
        self._chat = chat
        self._commands = commands

    async def dispatch(self, update: TelegramUpdate) -> None:
        message = update.effective_message
        if message is None or message.chat.id == 0 or message.from_user is None:
            return
        try:
            if message.document is not None:
                await self.handle_document(message)
            else:
                await self.handle_text(message)
        except Exception:
            logger.exception("failed to handle update %s", update.update_id)

    async def handle_text(self, message: TelegramMessage) -> None:
        text = message.text
        if not text:
            return
        bot_username = self._ctx.settings.bot_username
        user = message.from_user

        if message.chat.is_group:
            mention = find_mention(text, message.entities, bot_username)
            if mention is None:
                # commands addressed as /cmd@bot are tagged too
                if not (text.startswith("/") and _text_mentions(text.split(maxsplit=1)[0], bot_username)):
                    return
            else:
                text = strip_mention(text, mention)
                if not text:
                    return

        if text.startswith("/"):
            await self._commands.handle(text, message.chat.id, user.id, message.message_id)
            return

        await self._chat.process_message(
            message.chat.id, user.id, user.username or "", text, message.message_id
        )

    async def handle_document(self, message: TelegramMessage) -> None:
        document = message.document
        chat_id = message.chat.id
        reply_to = message.message_id
        user = message.from_user

        if message.chat.is_group:
            caption = message.caption or message.text
            tagged = find_mention(caption, message.caption_entities or message.entities, self._ctx.settings.bot_username)
            if tagged is None and not _text_mentions(caption, self._ctx.settings.bot_username):
                return

        if not document.file_name.lower().endswith(".txt"):
            await self._chat.send(chat_id, UNSUPPORTED_FILE, reply_to)
            return

        try:
            url = await self._ctx.messenger.get_file_url(document.file_id)
            raw = await self._ctx.messenger.download_file(url)
        except TelegramError as e:
            logger.warning("failed to fetch upload from user %s: %s", user.id, e)
            await self._chat.send(chat_id, FILE_RETRIEVAL_ERROR, reply_to)
            return

        try:
            stored = await self._ctx.artifacts.store(user.id, raw.decode("utf-8", errors="replace"))
        except BackendError as e:
            logger.warning("failed to store upload from user %s: %s", user.id, e)
            await self._chat.send(chat_id, FILE_STORAGE_ERROR, reply_to)
            return

        await self._chat.send(
            chat_id,
            "✅ <b>File Uploaded Successfully</b>\n\n"
            "Your source code has been uploaded and will be stored until:\n\n"
            f"• <b>Upload Time:</b> {format_time(stored.uploaded_at)}\n"
            f"• <b>Deletion Time:</b> {format_time(stored.deletion_time)}\n\n"
            "Please save any work or prompts that may be useful in the future.",
            reply_to,
        )

        summary = await self._chat.analyze_source(user.id)
        if summary:
            await self._chat.send(
                chat_id,
                f"🔍 <b>Code Analysis Summary:</b>\n\n{escape(summary, quote=False)}\n\n"
                "Your next questions will include this source code as context.",
                reply_to,
            )
