"""
S3 Blob Store — read side of document storage

Uploads reach S3 directly from the browser (presigned PUT issued by the web
tier), so the pipeline only ever reads. Keys arrive in the upload event
exactly as the web tier stored them:

    s3://<AWS_S3_BUCKET>/<organizationId>/<documentId>/<filename>

The pipeline never builds keys itself; it fetches the opaque key it was
given and turns every storage-side problem into a single StorageFetchError
so the orchestrator can mark the document FAILED with one message.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol

import aioboto3
from botocore.exceptions import BotoCoreError, ClientError

logger = logging.getLogger(__name__)


class StorageFetchError(Exception):
    """Object missing, access denied, network failure or timeout."""

    def __init__(self, storage_key: str, reason: str) -> None:
        super().__init__(reason)
        self.storage_key = storage_key
        self.reason = reason


class BlobStore(Protocol):
    async def fetch(self, storage_key: str) -> bytes: ...


# ---------------------------------------------------------------------------
# S3 implementation
# ---------------------------------------------------------------------------

class S3BlobStore:
    """
    Async S3 reads through an injected aioboto3 Session.

    One instance per worker process; each fetch opens a short-lived client
    context (aioboto3 clients are not safe to share across event loops,
    and Celery tasks run each job in a fresh loop).
    """

    def __init__(
        self,
        session:   aioboto3.Session,
        bucket:    str,
        region:    str,
        timeout_s: float = 60.0,
    ) -> None:
        self._session = session
        self._bucket = bucket
        self._region = region
        self._timeout = timeout_s

    def _client(self):
        return self._session.client("s3", region_name=self._region)

    async def _get(self, storage_key: str) -> bytes:
        async with self._client() as s3:
            resp = await s3.get_object(Bucket=self._bucket, Key=storage_key)
            async with resp["Body"] as stream:
                return await stream.read()

    async def fetch(self, storage_key: str) -> bytes:
        """
        Download the full object body.

        Raises:
            StorageFetchError: for any failure, with a human-readable reason.
        """
        try:
            body = await asyncio.wait_for(self._get(storage_key), timeout=self._timeout)
        except ClientError as exc:
            code = exc.response.get("Error", {}).get("Code", "")
            if code in ("NoSuchKey", "404"):
                reason = f"Object not found: {storage_key}"
            elif code in ("AccessDenied", "403"):
                reason = f"Access denied: {storage_key}"
            else:
                reason = f"S3 error {code}: {exc}"
            raise StorageFetchError(storage_key, reason) from exc
        except asyncio.TimeoutError as exc:
            raise StorageFetchError(
                storage_key, f"Timed out after {self._timeout:.0f}s",
            ) from exc
        except BotoCoreError as exc:
            # credentials, endpoint and connection errors
            raise StorageFetchError(storage_key, str(exc)) from exc

        logger.info("S3 fetch ok | key=%s size=%d", storage_key, len(body))
        return body
