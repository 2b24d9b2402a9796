"""
Files uploaded by users, kept directly in the object backend.

Layout: user_source_code/<owner_id>/<file_name>, with the upload time stored as
object metadata ("uploaded_at", RFC 3339) rather than in the body. A new upload of
the same name overwrites the previous one and restarts its retention period.
Expiry is driven by the upload time: listings hide expired files and sweep() deletes them.
"""

from __future__ import annotations
from datetime import datetime, timedelta, timezone
from typing import List, Optional
import asyncio
import logging

from relaybot.schemas.records import UserFile
from relaybot.services.expiring_store import Clock, utc_now
from relaybot.storage.backend import BackendError, ObjectBackend, ObjectNotFound

logger = logging.getLogger(__name__)

ARTIFACT_PREFIX = "user_source_code"
DEFAULT_FILE_NAME = "source_code.txt"
UPLOADED_AT = "uploaded_at"


def artifact_key(owner_id: int, file_name: str = DEFAULT_FILE_NAME) -> str:
    return f"{ARTIFACT_PREFIX}/{owner_id}/{file_name}"


def _parse_uploaded_at(raw: Optional[str]) -> Optional[datetime]:
    if not raw:
        return None
    try:
        parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class ArtifactStore:
    def __init__(self, backend: ObjectBackend, *, retention: timedelta, clock: Clock = utc_now) -> None:
        self._backend = backend
        self._retention = retention
        self._clock = clock

    @property
    def retention(self) -> timedelta:
        return self._retention

    async def store(self, owner_id: int, content: str, file_name: str = DEFAULT_FILE_NAME) -> UserFile:
        """Upload (or overwrite) a file. Backend errors propagate: the caller tells the user."""
        uploaded_at = self._clock()
        key = artifact_key(owner_id, file_name)
        await self._backend.put(
            key,
            content.encode("utf-8"),
            metadata={UPLOADED_AT: uploaded_at.isoformat(timespec="seconds")},
        )
        logger.info("stored artifact %s", key)
        return UserFile(
            key=key,
            file_name=file_name,
            uploaded_at=uploaded_at,
            deletion_time=uploaded_at + self._retention,
        )

    async def fetch(self, owner_id: int, file_name: str = DEFAULT_FILE_NAME) -> Optional[str]:
        return await self.read(artifact_key(owner_id, file_name))

    async def read(self, key: str) -> Optional[str]:
        # only keys under the artifact prefix are served, and only while live
        if not key.startswith(f"{ARTIFACT_PREFIX}/") or ".." in key.split("/"):
            return None
        info = await self._describe(key)
        if info is None or not self._is_live(info):
            return None
        try:
            raw = await self._backend.get(key)
        except ObjectNotFound:
            return None
        except BackendError as e:
            logger.warning("failed to read artifact %s: %s", key, e)
            return None
        return raw.decode("utf-8", errors="replace")

    async def list_for_owner(self, owner_id: int) -> List[UserFile]:
        """Live files for one owner. Raises BackendError if the listing fails."""
        keys = await self._backend.list(f"{ARTIFACT_PREFIX}/{owner_id}/")
        files: List[UserFile] = []
        for key in keys:
            info = await self._describe(key)
            if info is not None and self._is_live(info):
                files.append(info)
        return sorted(files, key=lambda f: f.uploaded_at)

    async def delete_for_owner(self, owner_id: int) -> int:
        keys = await self._backend.list(f"{ARTIFACT_PREFIX}/{owner_id}/")
        for key in keys:
            await self._backend.delete(key)
        if keys:
            logger.info("deleted %d artifacts for user %s", len(keys), owner_id)
        return len(keys)

    async def sweep(self) -> int:
        removed = 0
        for key in await self._backend.list(f"{ARTIFACT_PREFIX}/"):
            info = await self._describe(key)
            if info is None or self._is_live(info):
                continue
            try:
                await self._backend.delete(key)
                removed += 1
            except BackendError as e:
                logger.warning("failed to delete expired artifact %s: %s", key, e)
        if removed:
            logger.info("artifacts: swept %d expired files", removed)
        return removed

    async def run_sweeper(self, interval: timedelta) -> None:
        seconds = max(1.0, interval.total_seconds())
        while True:
            await asyncio.sleep(seconds)
            try:
                await self.sweep()
            except Exception:
                logger.exception("artifacts: sweep failed")

    def _is_live(self, info: UserFile) -> bool:
        return self._clock() < info.deletion_time

    async def _describe(self, key: str) -> Optional[UserFile]:
        try:
            metadata = await self._backend.head(key)
        except ObjectNotFound:
            return None
        except BackendError as e:
            logger.warning("failed to read metadata for %s: %s", key, e)
            return None
        uploaded_at = _parse_uploaded_at(metadata.get(UPLOADED_AT))
        if uploaded_at is None:
            logger.warning("no valid %r metadata on %s, skipping", UPLOADED_AT, key)
            return None
        return UserFile(
            key=key,
            file_name=key.rsplit("/", 1)[-1],
            uploaded_at=uploaded_at,
            deletion_time=uploaded_at + self._retention,
        )
