# audit log of chat interactions, appended as CSV rows to one object in the backend
# read-modify-write on a single key, serialized by one lock; failures only get logged

from __future__ import annotations
from typing import List, Optional
import asyncio
import csv
import io
import logging
import re

from relaybot.storage.backend import BackendError, ObjectBackend, ObjectNotFound

logger = logging.getLogger(__name__)

LOG_KEY = "logs/telegram_logs.csv"
HEADER = ["userID", "username", "prompt", "keywords", "response_time", "no_limit_user"]
MAX_KEYWORDS = 5

_STOP_WORDS = frozenset(
    """
    a an and are as at be but by can could do does for from have how i if in is it
    its me my of on or please should so that the their then there these this to was
    we what when where which who why will with would you your
    """.split()
)
_WORD = re.compile(r"[a-z0-9_#+.-]+")


def extract_keywords(text: str, limit: int = MAX_KEYWORDS) -> str:
    seen: List[str] = []
    for word in _WORD.findall(text.lower()):
        word = word.strip(".-")
        if len(word) < 3 or word in _STOP_WORDS or word in seen:
            continue
        seen.append(word)
        if len(seen) == limit:
            break
    return ", ".join(seen)


class InteractionLog:
    def __init__(self, backend: ObjectBackend, *, key: str = LOG_KEY) -> None:
        self._backend = backend
        self._key = key
        self._lock = asyncio.Lock()

    async def record(
        self,
        *,
        user_id: int,
        username: str,
        prompt: str,
        response_time: Optional[str],
        no_limit_user: bool,
    ) -> None:
        row = [
            str(user_id),
            username or "",
            prompt,
            extract_keywords(prompt),
            response_time or "",
            f"No limit user: {str(no_limit_user).lower()}",
        ]
        async with self._lock:
            try:
                rows = await self._read_rows()
                if rows is None:
                    # an unreadable log is never overwritten
                    logger.error("interaction log %s is unreadable, dropping row for user %s", self._key, user_id)
                    return
                if not rows:
                    rows.append(HEADER)
                rows.append(row)
                await self._backend.put(self._key, self._render(rows), metadata=None)
            except BackendError as e:
                logger.warning("failed to append interaction log: %s", e)

    async def rows(self) -> List[List[str]]:
        async with self._lock:
            return await self._read_rows() or []

    async def _read_rows(self) -> Optional[List[List[str]]]:
        # [] when the log does not exist yet, None when it exists but cannot be parsed
        try:
            raw = await self._backend.get(self._key)
        except ObjectNotFound:
            logger.info("interaction log %s does not exist yet, creating it", self._key)
            return []
        try:
            return [r for r in csv.reader(io.StringIO(raw.decode("utf-8"))) if r]
        except (csv.Error, UnicodeDecodeError) as e:
            logger.warning("existing interaction log is unreadable: %s", e)
            return None

    @staticmethod
    def _render(rows: List[List[str]]) -> bytes:
        buf = io.StringIO()
        csv.writer(buf).writerows(rows)
        return buf.getvalue().encode("utf-8")
