"""
BotContext owns every store and client the bot uses. It is built once per app
(see relaybot.main.create_app), hung on app.state and handed to the services,
so nothing below relies on module-level singletons.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import timedelta
from typing import FrozenSet, List, Optional
import asyncio
import logging

from relaybot.core import config
from relaybot.providers.base import ChatProvider
from relaybot.services.artifacts import ArtifactStore
from relaybot.services.conversation import ConversationCache
from relaybot.services.expiring_store import Clock, utc_now
from relaybot.services.interaction_log import InteractionLog
from relaybot.services.response_store import ResponseStore
from relaybot.services.telegram import Messenger
from relaybot.services.usage import UsageTracker
from relaybot.storage.backend import ObjectBackend

logger = logging.getLogger(__name__)


@dataclass
class BotSettings:
    bot_username: str = ""
    base_url: str = "http://localhost:8080"
    system_prompt: str = "You are a helpful assistant."
    no_limit_users: FrozenSet[int] = frozenset()
    retention: timedelta = timedelta(hours=4)
    conversation_ttl: timedelta = timedelta(minutes=30)
    conversation_max_messages: int = 0
    rate_limit: int = 10
    rate_window: timedelta = timedelta(minutes=10)
    sweep_interval: timedelta = timedelta(minutes=10)

    @classmethod
    def from_config(cls) -> "BotSettings":
        return cls(
            bot_username=config.BOT_USERNAME,
            base_url=config.BASE_URL,
            system_prompt=config.SYSTEM_PROMPT,
            no_limit_users=config.NO_LIMIT_USERS,
            retention=timedelta(minutes=config.FILE_RETENTION_MIN),
            conversation_ttl=timedelta(minutes=config.CONVERSATION_TTL_MIN),
            conversation_max_messages=config.CONVERSATION_MAX_MESSAGES,
            rate_limit=config.RATE_LIMIT_MAX_MESSAGES,
            rate_window=timedelta(minutes=config.RATE_LIMIT_WINDOW_MIN),
            sweep_interval=timedelta(minutes=config.SWEEP_INTERVAL_MIN),
        )


@dataclass
class BotContext:
    settings: BotSettings
    backend: ObjectBackend
    provider: ChatProvider
    messenger: Messenger
    responses: ResponseStore
    conversations: ConversationCache
    usage: UsageTracker
    artifacts: ArtifactStore
    interaction_log: InteractionLog
    clock: Clock = utc_now
    _sweepers: List[asyncio.Task] = field(default_factory=list, repr=False)

    @classmethod
    def build(
        cls,
        *,
        settings: BotSettings,
        backend: ObjectBackend,
        provider: ChatProvider,
        messenger: Messenger,
        clock: Clock = utc_now,
    ) -> "BotContext":
        return cls(
            settings=settings,
            backend=backend,
            provider=provider,
            messenger=messenger,
            responses=ResponseStore(backend, retention=settings.retention, clock=clock),
            conversations=ConversationCache(ttl=settings.conversation_ttl, clock=clock),
            usage=UsageTracker(limit=settings.rate_limit, window=settings.rate_window, clock=clock),
            artifacts=ArtifactStore(backend, retention=settings.retention, clock=clock),
            interaction_log=InteractionLog(backend),
            clock=clock,
        )

    def is_exempt(self, user_id: int) -> bool:
        return user_id in self.settings.no_limit_users

    def start_sweepers(self) -> None:
        if self._sweepers:
            return
        interval = self.settings.sweep_interval
        self._sweepers = [
            asyncio.create_task(self.responses.store.run_sweeper(interval), name="sweep-responses"),
            asyncio.create_task(self.conversations.store.run_sweeper(interval), name="sweep-conversations"),
            asyncio.create_task(self.usage.run_sweeper(interval), name="sweep-usage"),
            asyncio.create_task(self.artifacts.run_sweeper(interval), name="sweep-artifacts"),
        ]
        logger.info("started %d sweepers (every %s)", len(self._sweepers), interval)

    async def stop_sweepers(self) -> None:
        tasks, self._sweepers = self._sweepers, []
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    async def delete_user_data(self, user_id: int, conversation_key: Optional[str] = None) -> dict:
        """Remove everything stored for a user: responses, uploaded files and conversation."""
        responses = await self.responses.remove_all_for_owner(user_id)
        files = await self.artifacts.delete_for_owner(user_id)
        if conversation_key:
            await self.conversations.clear(conversation_key)
        logger.info("deleted data for user %s: %d responses, %d files", user_id, responses, files)
        return {"responses": responses, "files": files}
