"""
Generic expiring key/value store with an optional durable mirror.

Every entry carries created_at / expires_at (and optionally an owner). Memory is the
source of truth for the running process; when a backend is configured, writes and
deletes are mirrored to "<prefix>/<key>.json" on a best-effort basis (backend
failures are logged, never rolled back), and misses can be read through from it.

Expired entries behave exactly like missing ones and are deleted as soon as they are
noticed (on read, on backend load, or by the periodic sweep).

Two locks: `_lock` guards the in-memory map and is never held across backend I/O,
`_mirror_lock` serializes backend writes so they land in the order memory changed.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Generic, List, Optional, Set, TypeVar
import asyncio
import logging

from relaybot.storage.backend import BackendError, ObjectBackend, ObjectNotFound

logger = logging.getLogger(__name__)

V = TypeVar("V")
Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Entry(Generic[V]):
    value: V
    created_at: datetime
    expires_at: datetime
    owner_id: Optional[int] = None

    def is_live(self, now: datetime) -> bool:
        return now < self.expires_at


Encoder = Callable[[Entry], bytes]
Decoder = Callable[[bytes], Entry]


class ExpiringStore(Generic[V]):
    def __init__(
        self,
        *,
        ttl: timedelta,
        name: str = "store",
        backend: Optional[ObjectBackend] = None,
        prefix: Optional[str] = None,
        encode: Optional[Encoder] = None,
        decode: Optional[Decoder] = None,
        clock: Clock = utc_now,
    ) -> None:
        if ttl <= timedelta(0):
            raise ValueError("ttl must be positive")
        if backend is not None and (not prefix or encode is None or decode is None):
            raise ValueError("a backend-linked store needs a prefix, an encoder and a decoder")
        self._entries: Dict[str, Entry[V]] = {}
        self._lock = asyncio.Lock()  # one lock per store, never shared
        self._mirror_lock = asyncio.Lock()
        # read-through bookkeeping: keys with a backend read in flight, keys deleted
        # while such a read was running, keys whose backend delete has not finished yet
        self._reading: Dict[str, int] = {}
        self._stale: Set[str] = set()
        self._deleting: Dict[str, int] = {}
        self._ttl = ttl
        self._name = name
        self._backend = backend
        self._prefix = (prefix or "").strip("/")
        self._encode = encode
        self._decode = decode
        self._clock = clock

    @property
    def ttl(self) -> timedelta:
        return self._ttl

    @property
    def backend_linked(self) -> bool:
        return self._backend is not None

    def now(self) -> datetime:
        return self._clock()

    def object_key(self, key: str) -> str:
        return f"{self._prefix}/{key}.json"

    def key_from_object(self, object_key: str) -> Optional[str]:
        # "<prefix>/<key>.json" -> "<key>"; anything else (nested paths, other suffixes) -> None
        head = f"{self._prefix}/"
        if not object_key.startswith(head) or not object_key.endswith(".json"):
            return None
        key = object_key[len(head):-len(".json")]
        if not key or "/" in key:
            return None
        return key

    # ---- writes ----

    async def put(
        self,
        key: str,
        value: V,
        *,
        ttl: Optional[timedelta] = None,
        owner_id: Optional[int] = None,
    ) -> Entry[V]:
        ttl = self._ttl if ttl is None else ttl
        if ttl <= timedelta(0):
            raise ValueError("ttl must be positive")
        now = self.now()
        entry = Entry(value=value, created_at=now, expires_at=now + ttl, owner_id=owner_id)
        async with self._lock:
            self._entries[key] = entry
        await self._mirror_put(key, entry)
        return entry

    async def delete(self, key: str) -> None:
        async with self._lock:
            self._forget(key)
        await self._mirror_delete(key)

    # ---- reads ----

    async def get_entry(self, key: str) -> Optional[Entry[V]]:
        async with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.is_live(self.now()):
                return entry
            # expired: drop it now instead of waiting for the sweep
            self._forget(key)
        await self._mirror_delete(key)
        return None

    async def get(self, key: str) -> Optional[V]:
        entry = await self.get_entry(key)
        return entry.value if entry is not None else None

    async def load(self, key: str) -> Optional[Entry[V]]:
        """Read-through: memory first, then the backend (populating memory on a live hit)."""
        entry = await self.get_entry(key)
        if entry is not None or self._backend is None:
            return entry

        async with self._lock:
            if key in self._deleting:
                return None
            self._reading[key] = self._reading.get(key, 0) + 1
        try:
            stored = await self._read_backend(key)
            if stored is None:
                return None
            if not stored.is_live(self.now()):
                logger.info("%s: %s found in backend but expired, deleting", self._name, key)
                await self.delete(key)
                return None

            async with self._lock:
                # a concurrent put wins over what we just read
                current = self._entries.get(key)
                if current is not None:
                    return current
                # deleted while we were reading: the object we hold is gone
                if key in self._stale or key in self._deleting:
                    return None
                self._entries[key] = stored
            return stored
        finally:
            self._done_reading(key)

    async def entries(self) -> Dict[str, Entry[V]]:
        now = self.now()
        async with self._lock:
            return {k: e for k, e in self._entries.items() if e.is_live(now)}

    async def entries_for_owner(self, owner_id: int) -> Dict[str, Entry[V]]:
        live = await self.entries()
        return {k: e for k, e in live.items() if e.owner_id == owner_id}

    def __len__(self) -> int:
        # live entries only; expired ones waiting for the sweep are not counted
        now = self.now()
        return sum(1 for e in self._entries.values() if e.is_live(now))

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    # ---- maintenance ----

    async def sweep(self) -> int:
        """Remove every expired entry from memory (and the backend). Returns how many went."""
        now = self.now()
        async with self._lock:
            expired = [k for k, e in self._entries.items() if not e.is_live(now)]
            for key in expired:
                self._forget(key)
        await self._mirror_deletes(expired)
        if expired:
            logger.info("%s: swept %d expired entries", self._name, len(expired))
        return len(expired)

    async def run_sweeper(self, interval: timedelta) -> None:
        # runs until cancelled by the app lifespan
        seconds = max(1.0, interval.total_seconds())
        while True:
            await asyncio.sleep(seconds)
            try:
                await self.sweep()
            except Exception:
                logger.exception("%s: sweep failed", self._name)

    async def load_all_from_backend(self) -> int:
        """
        Populate memory from every object under the prefix.
        Expired objects are deleted from the backend, unreadable ones are skipped.
        Raises BackendError when the listing itself fails.
        """
        if self._backend is None:
            return 0
        object_keys = await self._backend.list(f"{self._prefix}/")
        loaded: List[str] = []
        for object_key in object_keys:
            key = self.key_from_object(object_key)
            if key is None:
                logger.warning("%s: ignoring unexpected object %s", self._name, object_key)
                continue
            if await self.load(key) is not None:
                loaded.append(key)
        logger.info("%s: loaded %d entries from backend", self._name, len(loaded))
        return len(loaded)

    # ---- bookkeeping (caller holds _lock unless noted) ----

    def _forget(self, key: str) -> None:
        self._entries.pop(key, None)
        if key in self._reading:
            self._stale.add(key)
        if self._backend is not None:
            self._deleting[key] = self._deleting.get(key, 0) + 1

    def _done_reading(self, key: str) -> None:
        # no await: safe without the lock on the event loop
        left = self._reading.get(key, 0) - 1
        if left > 0:
            self._reading[key] = left
        else:
            self._reading.pop(key, None)
            self._stale.discard(key)

    # ---- backend helpers (failures are logged, memory stays authoritative) ----

    async def _mirror_put(self, key: str, entry: Entry[V]) -> None:
        if self._backend is None:
            return
        async with self._mirror_lock:
            try:
                await self._backend.put(self.object_key(key), self._encode(entry))
            except (BackendError, ValueError, TypeError) as e:
                logger.warning("%s: failed to persist %s: %s", self._name, key, e)

    async def _mirror_delete(self, key: str) -> None:
        await self._mirror_deletes([key])

    async def _mirror_deletes(self, keys: List[str]) -> None:
        if self._backend is None or not keys:
            return
        try:
            async with self._mirror_lock:
                for key in keys:
                    try:
                        await self._backend.delete(self.object_key(key))
                    except BackendError as e:
                        logger.warning("%s: failed to delete %s from backend: %s", self._name, key, e)
        finally:
            for key in keys:
                left = self._deleting.get(key, 0) - 1
                if left > 0:
                    self._deleting[key] = left
                else:
                    self._deleting.pop(key, None)

    async def _read_backend(self, key: str) -> Optional[Entry[V]]:
        if self._backend is None:
            return None
        try:
            raw = await self._backend.get(self.object_key(key))
        except ObjectNotFound:
            return None
        except BackendError as e:
            logger.warning("%s: failed to read %s from backend: %s", self._name, key, e)
            return None
        try:
            entry = self._decode(raw)
        except ValueError as e:
            logger.warning("%s: stored object for %s is malformed: %s", self._name, key, e)
            return None
        if entry.created_at.tzinfo is None or entry.expires_at.tzinfo is None:
            logger.warning("%s: stored object for %s has timestamps without a timezone", self._name, key)
            return None
        return entry
