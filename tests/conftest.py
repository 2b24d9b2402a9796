# tests/conftest.py
import os
import logging
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Tuple

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport

# Ensure test-friendly env: no S3, no background sweepers
os.environ.setdefault("STORAGE_BACKEND", "memory")
os.environ.setdefault("ENABLE_SWEEPERS", "false")
os.environ.setdefault("BOT_USERNAME", "RelayTestBot")

# IMPORTANT: import the app after envs are set
from relaybot.main import create_app
from relaybot.services.context import BotContext, BotSettings
from relaybot.services.telegram import TelegramError
from relaybot.storage.backend import MemoryBackend


class FakeClock:
    def __init__(self, start: Optional[datetime] = None) -> None:
        self.now = start or datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeProvider:
    def __init__(self, reply: str = "hello") -> None:
        self.reply = reply
        self.error: Optional[Exception] = None
        self.calls: List[list] = []

    async def complete(self, messages):
        self.calls.append(list(messages))
        if self.error is not None:
            raise self.error
        return self.reply


class FakeMessenger:
    def __init__(self) -> None:
        self.sent: List[Tuple[int, str, Optional[int]]] = []
        self.files = {}
        self.fail_send = False

    async def send_message(self, chat_id, text, reply_to_message_id=None):
        if self.fail_send:
            raise TelegramError("send failed")
        self.sent.append((chat_id, text, reply_to_message_id))

    async def get_file_url(self, file_id):
        if file_id not in self.files:
            raise TelegramError("invalid file response from Telegram")
        return f"https://files.test/{file_id}"

    async def download_file(self, url):
        return self.files[url.rsplit("/", 1)[-1]]

    @property
    def texts(self) -> List[str]:
        return [t for _, t, _ in self.sent]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def backend():
    return MemoryBackend()


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def messenger():
    return FakeMessenger()


@pytest.fixture
def settings():
    return BotSettings(
        bot_username="RelayTestBot",
        base_url="https://bot.test",
        no_limit_users=frozenset({999}),
        rate_limit=2,
        rate_window=timedelta(minutes=10),
    )


@pytest.fixture
def ctx(settings, backend, provider, messenger, clock):
    return BotContext.build(
        settings=settings, backend=backend, provider=provider, messenger=messenger, clock=clock
    )


@pytest_asyncio.fixture
async def app(ctx):
    return create_app(ctx, start_sweepers=False)


@pytest_asyncio.fixture
async def client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def caplog_info(caplog):
    caplog.set_level(logging.INFO)
    return caplog


def telegram_update(text="", *, user_id=7, chat_id=7, chat_type="private", username="alice",
                    entities=None, document=None, caption=None, update_id=1, message_id=10):
    message = {
        "message_id": message_id,
        "from": {"id": user_id, "is_bot": False, "first_name": "A", "username": username},
        "chat": {"id": chat_id, "type": chat_type},
        "date": 1700000000,
        "text": text,
    }
    if entities:
        message["entities"] = entities
    if document:
        message["document"] = document
    if caption is not None:
        message["caption"] = caption
    return {"update_id": update_id, "message": message}


