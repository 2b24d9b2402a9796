"""
Thin httpx client for the three Bot API calls the bot makes:
sendMessage (HTML parse mode), getFile, and the file download itself.
"""

from __future__ import annotations
from typing import Any, Dict, Optional, Protocol
import logging

import httpx

logger = logging.getLogger(__name__)

TELEGRAM_MAX_LENGTH = 4096


class TelegramError(Exception):
    pass


class Messenger(Protocol):
    # what the chat flow and command handlers need from the chat platform
    async def send_message(self, chat_id: int, text: str, reply_to_message_id: Optional[int] = None) -> None: ...

    async def get_file_url(self, file_id: str) -> str: ...

    async def download_file(self, url: str) -> bytes: ...


class TelegramClient:
    def __init__(self, token: str, *, api_base: str = "https://api.telegram.org") -> None:
        self._token = token
        self._api_base = api_base.rstrip("/")

    def _method_url(self, method: str) -> str:
        return f"{self._api_base}/bot{self._token}/{method}"

    async def send_message(self, chat_id: int, text: str, reply_to_message_id: Optional[int] = None) -> None:
        if not self._token:
            raise TelegramError("telegram token not configured")
        payload: Dict[str, Any] = {
            "chat_id": chat_id,
            "text": text,
            "parse_mode": "HTML",
            "disable_web_page_preview": False,
        }
        if reply_to_message_id:
            payload["reply_to_message_id"] = reply_to_message_id
        try:
            async with httpx.AsyncClient(timeout=httpx.Timeout(10.0, connect=5.0)) as client:
                r = await client.post(self._method_url("sendMessage"), json=payload)
        except httpx.HTTPError as e:
            raise TelegramError(f"sendMessage failed: {e}") from e
        if r.status_code != 200:
            raise TelegramError(f"sendMessage returned {r.status_code}: {r.text[:500]}")

    async def get_file_url(self, file_id: str) -> str:
        if not self._token:
            raise TelegramError("telegram token not configured")
        try:
            async with httpx.AsyncClient(timeout=httpx.Timeout(15.0, connect=5.0)) as client:
                r = await client.get(self._method_url("getFile"), params={"file_id": file_id})
                data = r.json()
        except httpx.HTTPError as e:
            raise TelegramError(f"getFile failed: {e}") from e
        except ValueError as e:
            raise TelegramError(f"getFile returned invalid JSON: {e}") from e
        file_path = (data.get("result") or {}).get("file_path")
        if not data.get("ok") or not file_path:
            raise TelegramError("invalid file response from Telegram")
        return f"{self._api_base}/file/bot{self._token}/{file_path}"

    async def download_file(self, url: str) -> bytes:
        try:
            async with httpx.AsyncClient(timeout=httpx.Timeout(60.0, connect=5.0)) as client:
                r = await client.get(url)
        except httpx.HTTPError as e:
            raise TelegramError(f"file download failed: {e}") from e
        if r.status_code != 200:
            raise TelegramError(f"file download returned {r.status_code}")
        return r.content
