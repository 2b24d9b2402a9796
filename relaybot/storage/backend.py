# durable object backend contract
# everything that needs persistence (responses, uploaded files, the CSV log) talks to this protocol,
# so the S3 client can be swapped for the in-memory one in tests or local runs

from __future__ import annotations
from typing import Dict, List, Optional, Protocol, Tuple
import asyncio


class BackendError(Exception):
    pass


class ObjectNotFound(BackendError):
    def __init__(self, key: str) -> None:
        super().__init__(f"object not found: {key}")
        self.key = key


class ObjectBackend(Protocol):
    async def put(self, key: str, body: bytes, metadata: Optional[Dict[str, str]] = None) -> None: ...

    async def get(self, key: str) -> bytes: ...

    async def head(self, key: str) -> Dict[str, str]: ...

    async def list(self, prefix: str) -> List[str]: ...

    async def delete(self, key: str) -> None: ...


class MemoryBackend:
    """
    Dict-backed ObjectBackend.
    Used as the test double and for STORAGE_BACKEND=memory local runs.
    Objects are stored as (body, metadata) and copied on the way in and out.
    """
    def __init__(self) -> None:
        self._objects: Dict[str, Tuple[bytes, Dict[str, str]]] = {}
        self._lock = asyncio.Lock()

    async def put(self, key: str, body: bytes, metadata: Optional[Dict[str, str]] = None) -> None:
        async with self._lock:
            self._objects[key] = (bytes(body), dict(metadata or {}))

    async def get(self, key: str) -> bytes:
        async with self._lock:
            try:
                return self._objects[key][0]
            except KeyError:
                raise ObjectNotFound(key) from None

    async def head(self, key: str) -> Dict[str, str]:
        async with self._lock:
            try:
                return dict(self._objects[key][1])
            except KeyError:
                raise ObjectNotFound(key) from None

    async def list(self, prefix: str) -> List[str]:
        async with self._lock:
            return sorted(k for k in self._objects if k.startswith(prefix))

    async def delete(self, key: str) -> None:
        async with self._lock:
            self._objects.pop(key, None)

    def __contains__(self, key: str) -> bool:
        return key in self._objects

    def __len__(self) -> int:
        return len(self._objects)
