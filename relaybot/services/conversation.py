# Context window = system prompt + conversation history + new user message
# history is kept per user as a JSON string and forgotten after CONVERSATION_TTL_MIN of inactivity
# purely in-memory: conversations do not survive a restart

from __future__ import annotations
from datetime import timedelta
from typing import List, Optional
import json
import logging

from pydantic import TypeAdapter, ValidationError

from relaybot.schemas.chat import ChatMessage
from relaybot.services.expiring_store import Clock, ExpiringStore, utc_now

logger = logging.getLogger(__name__)

_messages = TypeAdapter(List[ChatMessage])


def conversation_key(user_id: int) -> str:
    return f"user_{user_id}"


def load_messages(raw: Optional[str], system_prompt: str) -> List[ChatMessage]:
    """
    Turn stored history back into messages.
    Missing or unreadable history starts a fresh conversation with the system prompt.
    """
    fresh = [ChatMessage(role="system", content=system_prompt)]
    if not raw:
        return fresh
    try:
        messages = _messages.validate_json(raw)
    except ValidationError as e:
        logger.warning("discarding malformed conversation history: %s", e)
        return fresh
    return messages or fresh


def dump_messages(messages: List[ChatMessage]) -> str:
    return json.dumps([m.model_dump() for m in messages], ensure_ascii=False)


def trim_messages(messages: List[ChatMessage], max_messages: int) -> List[ChatMessage]:
    # keep leading system messages plus the newest max_messages turns; 0 means no cap
    if max_messages <= 0:
        return list(messages)
    system = [m for m in messages if m.role == "system"][:1]
    turns = [m for m in messages if m.role != "system"]
    return system + turns[-max_messages:]


class ConversationCache:
    def __init__(self, *, ttl: timedelta, clock: Clock = utc_now) -> None:
        self._store: ExpiringStore[str] = ExpiringStore(ttl=ttl, name="conversations", clock=clock)

    @property
    def store(self) -> ExpiringStore[str]:
        return self._store

    async def get(self, user_key: str) -> Optional[str]:
        return await self._store.get(user_key)

    async def set(self, user_key: str, history: str) -> None:
        # every write resets the inactivity timer
        await self._store.put(user_key, history)

    async def clear(self, user_key: str) -> None:
        await self._store.delete(user_key)

    async def sweep(self) -> int:
        return await self._store.sweep()
