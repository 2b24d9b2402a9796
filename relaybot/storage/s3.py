# S3 implementation of ObjectBackend
# boto3 is blocking, so every call is pushed to a worker thread with asyncio.to_thread
# client-side timeouts come from botocore Config, the stores never add their own

from __future__ import annotations
from typing import Any, Dict, List, Optional
import asyncio
import logging

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from relaybot.storage.backend import BackendError, ObjectNotFound

logger = logging.getLogger(__name__)

_MISSING_CODES = {"NoSuchKey", "404", "NotFound"}


def _is_missing(exc: ClientError) -> bool:
    return str(exc.response.get("Error", {}).get("Code", "")) in _MISSING_CODES


class S3Backend:
    def __init__(
        self,
        bucket: str,
        *,
        endpoint_url: Optional[str] = None,
        region: Optional[str] = None,
        client: Any = None,
    ) -> None:
        if not bucket:
            raise BackendError("BUCKET_NAME is not configured")
        self._bucket = bucket
        self._client = client or boto3.client(
            "s3",
            endpoint_url=endpoint_url,
            region_name=region,
            config=Config(connect_timeout=10, read_timeout=30, retries={"max_attempts": 2}),
        )

    async def put(self, key: str, body: bytes, metadata: Optional[Dict[str, str]] = None) -> None:
        kwargs: Dict[str, Any] = {"Bucket": self._bucket, "Key": key, "Body": body}
        if metadata:
            kwargs["Metadata"] = metadata
        await self._call(key, self._client.put_object, **kwargs)

    async def get(self, key: str) -> bytes:
        def _read() -> bytes:
            resp = self._client.get_object(Bucket=self._bucket, Key=key)
            body = resp["Body"]
            try:
                return body.read()
            finally:
                body.close()
        return await self._call(key, _read)

    async def head(self, key: str) -> Dict[str, str]:
        resp = await self._call(key, self._client.head_object, Bucket=self._bucket, Key=key)
        return dict(resp.get("Metadata") or {})

    async def list(self, prefix: str) -> List[str]:
        def _walk() -> List[str]:
            keys: List[str] = []
            paginator = self._client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=self._bucket, Prefix=prefix):
                keys.extend(obj["Key"] for obj in page.get("Contents", []))
            return keys
        return await self._call(prefix, _walk)

    async def delete(self, key: str) -> None:
        # S3 delete_object already succeeds for absent keys
        await self._call(key, self._client.delete_object, Bucket=self._bucket, Key=key)

    async def _call(self, key: str, fn, *args, **kwargs):
        try:
            return await asyncio.to_thread(fn, *args, **kwargs)
        except ClientError as e:
            if _is_missing(e):
                raise ObjectNotFound(key) from e
            raise BackendError(f"S3 error for {key}: {e}") from e
        except BotoCoreError as e:
            raise BackendError(f"S3 error for {key}: {e}") from e
