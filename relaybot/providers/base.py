# declares the provider contract the chat flow depends on, so the OpenAI client can be
# swapped (another OpenAI-compatible host, a fake in tests) without touching the chat flow

from typing import List, Protocol

from relaybot.schemas.chat import ChatMessage


# ProviderError lets the chat flow tell provider faults apart from user errors
class ProviderError(Exception):
    pass


class ChatProvider(Protocol):
    async def complete(self, messages: List[ChatMessage]) -> str:
        """Return the assistant reply for the given conversation."""
        ...
