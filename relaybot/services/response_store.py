"""
Published LLM responses, addressable by a random uuid for the web page link.

Records live in memory and are mirrored to web_responses/<id>.json so links survive a
restart (load_all_from_backend at startup). Ownership is the Telegram user id that
asked the question; it scopes /mydata listing and /deletemydata.

list_by_owner only looks at memory. The startup load is treated as authoritative:
a record that failed to load is still reachable by id (read-through) but is not listed.
"""

from __future__ import annotations
from datetime import datetime, timedelta
from typing import List, Optional
from uuid import uuid4
import logging

from relaybot.schemas.records import ResponseRecord, StoredResponse
from relaybot.services.expiring_store import Clock, Entry, ExpiringStore, utc_now
from relaybot.storage.backend import ObjectBackend

logger = logging.getLogger(__name__)

RESPONSE_PREFIX = "web_responses"


def _encode(entry: Entry) -> bytes:
    return StoredResponse(
        content=entry.value,
        created_at=entry.created_at,
        expires_at=entry.expires_at,
        owner_user_id=entry.owner_id,
    ).model_dump_json().encode("utf-8")


def _decode(raw: bytes) -> Entry:
    stored = StoredResponse.model_validate_json(raw)
    return Entry(
        value=stored.content,
        created_at=stored.created_at,
        expires_at=stored.expires_at,
        owner_id=stored.owner_user_id,
    )


def _to_record(response_id: str, entry: Entry) -> ResponseRecord:
    return ResponseRecord(
        id=response_id,
        content=entry.value,
        created_at=entry.created_at,
        expires_at=entry.expires_at,
        owner_user_id=entry.owner_id,
    )


class ResponseStore:
    def __init__(
        self,
        backend: Optional[ObjectBackend],
        *,
        retention: timedelta,
        clock: Clock = utc_now,
    ) -> None:
        self._store: ExpiringStore[str] = ExpiringStore(
            ttl=retention,
            name="responses",
            backend=backend,
            prefix=RESPONSE_PREFIX if backend is not None else None,
            encode=_encode if backend is not None else None,
            decode=_decode if backend is not None else None,
            clock=clock,
        )

    @property
    def store(self) -> ExpiringStore[str]:
        return self._store

    async def publish(self, content: str, owner_id: int) -> str:
        response_id = str(uuid4())
        await self._store.put(response_id, content, owner_id=owner_id)
        logger.info("published response %s for user %s", response_id, owner_id)
        return response_id

    async def record(self, response_id: str) -> Optional[ResponseRecord]:
        # one read-through for content and both timestamps
        entry = await self._store.load(response_id)
        if entry is None:
            return None
        return _to_record(response_id, entry)

    async def fetch(self, response_id: str) -> Optional[str]:
        entry = await self._store.load(response_id)
        return entry.value if entry is not None else None

    async def creation_time(self, response_id: str) -> Optional[datetime]:
        entry = await self._store.load(response_id)
        return entry.created_at if entry is not None else None

    async def expiration_time(self, response_id: str) -> Optional[datetime]:
        entry = await self._store.load(response_id)
        return entry.expires_at if entry is not None else None

    async def list_by_owner(self, owner_id: int) -> List[ResponseRecord]:
        owned = await self._store.entries_for_owner(owner_id)
        records = [_to_record(rid, e) for rid, e in owned.items()]
        return sorted(records, key=lambda r: r.created_at)

    async def remove(self, response_id: str) -> None:
        await self._store.delete(response_id)

    async def remove_all_for_owner(self, owner_id: int) -> int:
        owned = await self._store.entries_for_owner(owner_id)
        for response_id in owned:
            await self._store.delete(response_id)
        return len(owned)

    async def load_all_from_backend(self) -> int:
        return await self._store.load_all_from_backend()

    async def sweep(self) -> int:
        return await self._store.sweep()
