from __future__ import annotations
from typing import Optional
import logging
import time

from relaybot.providers.base import ProviderError
from relaybot.schemas.chat import ChatMessage
from relaybot.services.context import BotContext
from relaybot.services.conversation import conversation_key, dump_messages, load_messages, trim_messages
from relaybot.services.rendering import build_reply, response_url
from relaybot.services.telegram import TelegramError

logger = logging.getLogger(__name__)

FAILURE_MESSAGE = "❌ <b>Something went wrong</b>\n\nI could not get an answer right now. Please try again in a moment."

SUMMARY_PROMPT = (
    "Summarize the following source code in a few short bullet points: "
    "what it does, its main components and anything notable.\n\n{source}"
)
MAX_SUMMARY_SOURCE = 20000


def rate_limit_message(minutes: int, seconds: int, window_minutes: int) -> str:
    return (
        "🚫 <b>Rate Limit Exceeded</b>\n\n"
        f"You have reached the maximum number of messages allowed within the last {window_minutes} minutes. "
        f"Please try again in {minutes} minutes and {seconds} seconds."
    )


class ChatService:
    """
    One chat turn: rate limit -> context -> LLM -> publish -> reply -> log.
    Returns the published response id, or None when nothing was published.
    """
    def __init__(self, ctx: BotContext) -> None:
        self._ctx = ctx

    async def send(self, chat_id: int, text: str, reply_to: Optional[int] = None) -> bool:
        try:
            await self._ctx.messenger.send_message(chat_id, text, reply_to)
            return True
        except TelegramError as e:
            logger.warning("failed to send message to chat %s: %s", chat_id, e)
            return False

    async def process_message(
        self,
        chat_id: int,
        user_id: int,
        username: str,
        text: str,
        message_id: Optional[int] = None,
    ) -> Optional[str]:
        ctx = self._ctx
        exempt = ctx.is_exempt(user_id)

        if not exempt and not await ctx.usage.try_acquire(user_id):
            wait = await ctx.usage.time_until_reset(user_id)
            total = int(wait.total_seconds())
            window_minutes = int(ctx.usage.window.total_seconds() // 60)
            await self.send(chat_id, rate_limit_message(total // 60, total % 60, window_minutes), message_id)
            await ctx.interaction_log.record(
                user_id=user_id, username=username, prompt=text, response_time=None, no_limit_user=exempt
            )
            logger.info("user %s rate limited for %ss", user_id, total)
            return None

        question = text
        source = await ctx.artifacts.fetch(user_id)
        if source:
            question = f"Here is my source code:\n{source}\n\n{text}"

        key = conversation_key(user_id)
        messages = load_messages(await ctx.conversations.get(key), ctx.settings.system_prompt)
        messages.append(ChatMessage(role="user", content=question))

        started = time.monotonic()
        try:
            answer = await ctx.provider.complete(messages)
        except ProviderError as e:
            logger.error("LLM query failed for user %s: %s", user_id, e)
            await self.send(chat_id, FAILURE_MESSAGE, message_id)
            return None
        elapsed_ms = int((time.monotonic() - started) * 1000)

        messages.append(ChatMessage(role="assistant", content=answer))
        messages = trim_messages(messages, ctx.settings.conversation_max_messages)
        await ctx.conversations.set(key, dump_messages(messages))

        response_id = await ctx.responses.publish(answer, user_id)
        link = response_url(ctx.settings.base_url, response_id)
        await self.send(chat_id, build_reply(answer, link), message_id)

        await ctx.interaction_log.record(
            user_id=user_id, username=username, prompt=text, response_time=f"{elapsed_ms} ms", no_limit_user=exempt
        )
        return response_id

    async def analyze_source(self, user_id: int) -> Optional[str]:
        """Ask the LLM for a short summary of the user's uploaded file."""
        source = await self._ctx.artifacts.fetch(user_id)
        if not source:
            return None
        prompt = SUMMARY_PROMPT.format(source=source[:MAX_SUMMARY_SOURCE])
        messages = [
            ChatMessage(role="system", content=self._ctx.settings.system_prompt),
            ChatMessage(role="user", content=prompt),
        ]
        try:
            return await self._ctx.provider.complete(messages)
        except ProviderError as e:
            logger.error("source summary failed for user %s: %s", user_id, e)
            return None
