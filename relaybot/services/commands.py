from __future__ import annotations
from typing import Awaitable, Callable, Dict, Optional
import logging

from relaybot.services.chat_service import ChatService
from relaybot.services.context import BotContext
from relaybot.services.conversation import conversation_key
from relaybot.services.rendering import build_user_data_message, format_duration
from relaybot.storage.backend import BackendError

logger = logging.getLogger(__name__)

PROJECT_URL = "https://github.com/joelradon/KernelSanders"

UNKNOWN_COMMAND = "❓ <b>Unknown command.</b> Type /help to see available commands."


def parse_command(text: str, bot_username: str) -> Optional[str]:
    """
    "/help", "/help@MyBot extra" -> "/help".
    Commands addressed to a different bot ("/help@OtherBot") return None.
    """
    if not text.startswith("/"):
        return None
    head = text.split(maxsplit=1)[0]
    command, _, target = head.partition("@")
    if target and bot_username and target.lower() != bot_username.lower():
        return None
    return command.lower()


class CommandHandler:
    def __init__(self, ctx: BotContext, chat: ChatService) -> None:
        self._ctx = ctx
        self._chat = chat
        self._handlers: Dict[str, Callable[[int, int, Optional[int]], Awaitable[str]]] = {
            "/start": self._start,
            "/help": self._help,
            "/upload": self._upload,
            "/mydata": self._mydata,
            "/deletemydata": self._delete_my_data,
            "/security": self._security,
            "/project": self._project,
            "/my_source_code": self._my_source_code,
        }

    @property
    def commands(self):
        return sorted(self._handlers)

    async def handle(self, text: str, chat_id: int, user_id: int, message_id: Optional[int] = None) -> Optional[str]:
        """Reply to a command. Returns the reply text, or None when the command was not for this bot."""
        command = parse_command(text, self._ctx.settings.bot_username)
        if command is None:
            return None
        handler = self._handlers.get(command)
        reply = await handler(chat_id, user_id, message_id) if handler else UNKNOWN_COMMAND
        await self._chat.send(chat_id, reply, message_id)
        return reply

    def _retention(self) -> str:
        return format_duration(self._ctx.settings.retention)

    async def _start(self, chat_id: int, user_id: int, message_id: Optional[int]) -> str:
        return (
            "🎉 <b>Welcome!</b>\n\n"
            "Ask me anything, or upload a .txt file with your source code so I can answer with more context."
        )

    async def _help(self, chat_id: int, user_id: int, message_id: Optional[int]) -> str:
        handle = f"@{self._ctx.settings.bot_username}" if self._ctx.settings.bot_username else "the bot"
        return (
            "📚 <b>Help Menu:</b>\n\n"
            "<b>Commands:</b>\n"
            "/start - Start interacting with the bot\n"
            "/help - Show this help message\n"
            "/upload - How to upload your source code (.txt files only)\n"
            "/mydata - View your uploaded files and web responses\n"
            "/deletemydata - Delete your uploaded files, web responses and conversation\n"
            "/security - Learn about the bot's security measures\n"
            "/project - Learn about the project and how to contribute\n"
            "/my_source_code - Get scripts to prepare your source code for upload\n\n"
            "<b>File Uploads:</b>\n"
            f"In group chats, upload .txt files by tagging {handle} in the caption. "
            "In private chats, simply send the .txt file.\n\n"
            f"Files are stored for <b>{self._retention()}</b> only. "
            "Uploading a new file overwrites the existing one and resets the storage time.\n\n"
            "<b>Short-Lived Web Responses:</b>\n"
            "Every answer is also published as a web page that expires after the same period. "
            "Save anything you want to keep."
        )

    async def _upload(self, chat_id: int, user_id: int, message_id: Optional[int]) -> str:
        handle = f"@{self._ctx.settings.bot_username}" if self._ctx.settings.bot_username else "the bot"
        return (
            "📤 <b>Uploading source code</b>\n\n"
            f"Send a .txt file to {handle} in a private chat. "
            "In group chats the file caption must tag the bot."
        )

    async def _mydata(self, chat_id: int, user_id: int, message_id: Optional[int]) -> str:
        try:
            files = await self._ctx.artifacts.list_for_owner(user_id)
        except BackendError as e:
            logger.warning("failed to list files for user %s: %s", user_id, e)
            return "❌ <b>Error Retrieving Data</b>\n\nUnable to fetch your data at this time. Please try again later."
        responses = await self._ctx.responses.list_by_owner(user_id)
        return build_user_data_message(files, responses, self._ctx.settings.base_url)

    async def _delete_my_data(self, chat_id: int, user_id: int, message_id: Optional[int]) -> str:
        try:
            removed = await self._ctx.delete_user_data(user_id, conversation_key(user_id))
        except BackendError as e:
            logger.warning("failed to delete data for user %s: %s", user_id, e)
            return "❌ <b>Deletion Failed</b>\n\nSome of your data could not be deleted. Please try again later."
        return (
            "🗑 <b>Your data has been deleted.</b>\n\n"
            f"Web responses removed: {removed['responses']}\n"
            f"Uploaded files removed: {removed['files']}\n"
            "Your conversation history has been cleared."
        )

    async def _security(self, chat_id: int, user_id: int, message_id: Optional[int]) -> str:
        return (
            "🔐 <b>Security Information:</b>\n\n"
            "Uploaded files are kept in private object storage and deleted automatically "
            f"after {self._retention()}. Web responses expire on the same schedule, and you can remove "
            "everything at any time with /deletemydata. Interactions are logged for auditing.\n\n"
            f'The source code is open for review: <a href="{PROJECT_URL}">GitHub</a>.'
        )

    async def _project(self, chat_id: int, user_id: int, message_id: Optional[int]) -> str:
        return (
            "🚀 <b>About this project</b>\n\n"
            "This bot is open source and contributions are welcome. "
            f'You can view the source code and contribute on <a href="{PROJECT_URL}">GitHub</a>.'
        )

    async def _my_source_code(self, chat_id: int, user_id: int, message_id: Optional[int]) -> str:
        return (
            "💻 <b>Prepare Your Source Code for Upload:</b>\n\n"
            "Concatenate the files you want me to see into a single .txt file, one section per file "
            "with its path as a header, skip READMEs and binaries, then send it here.\n\n"
            "For example:\n"
            "<code>find . -name '*.py' -exec sh -c 'echo \"=== $1\"; cat \"$1\"' _ {} \\; &gt; source_code.txt</code>"
        )
