"""
Blob Store — raw attachment bytes.

Key layout (constructed server-side, never accepted from the client):

    attachments/<owner_id>/<attachment_id>/<sanitized file name>

The attachment id in the path makes every key unique, so two uploads of
the same file name never collide and no deduplication is attempted.

S3StorageService-style implementation on aioboto3; any S3-compatible
endpoint (LocalStack, MinIO) works via `s3_endpoint_url`.
"""

from __future__ import annotations

import logging
import re
from typing import Iterable, Protocol
from urllib.parse import quote
from uuid import UUID

import aioboto3
from botocore.exceptions import BotoCoreError, ClientError

from tutorchat.core.config import settings
from tutorchat.core.errors import BlobNotFound, BlobStoreError

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9._\-]")

# DeleteObjects accepts at most 1000 keys per call
_DELETE_BATCH = 1000


def sanitize_file_name(file_name: str) -> str:
    """
    Strip path components and replace characters unsafe in object keys.
    Never returns an empty string.
    """
    basename = (file_name or "").replace("\\", "/").rsplit("/", 1)[-1]
    safe = _UNSAFE_CHARS.sub("_", basename).strip(".")
    return safe[:200] or "upload"


def attachment_key(owner_id: str, attachment_id: UUID, file_name: str) -> str:
    owner = _UNSAFE_CHARS.sub("_", owner_id)
    return f"attachments/{owner}/{attachment_id}/{sanitize_file_name(file_name)}"


class BlobStore(Protocol):
    async def put(self, path: str, data: bytes, content_type: str) -> None: ...

    async def get(self, path: str) -> bytes: ...

    def public_url(self, path: str) -> str: ...

    async def delete(self, paths: Iterable[str]) -> None: ...


class S3BlobStore:
    """aioboto3-backed BlobStore. One client context per operation."""

    def __init__(
        self,
        bucket: str | None = None,
        region: str | None = None,
        endpoint_url: str | None = None,
        public_base_url: str | None = None,
    ) -> None:
        self._bucket          = bucket or settings.s3_bucket
        self._region          = region or settings.aws_region
        self._endpoint_url    = endpoint_url if endpoint_url is not None else settings.s3_endpoint_url
        self._public_base_url = public_base_url if public_base_url is not None else settings.s3_public_base_url
        self._session         = aioboto3.Session()

    def _client(self):
        return self._session.client(
            "s3",
            region_name=self._region,
            endpoint_url=self._endpoint_url or None,
        )

    async def put(self, path: str, data: bytes, content_type: str) -> None:
        try:
            async with self._client() as s3:
                await s3.put_object(
                    Bucket=self._bucket,
                    Key=path,
                    Body=data,
                    ContentType=content_type or "application/octet-stream",
                )
        except (ClientError, BotoCoreError) as exc:
            logger.error("S3 upload failed | key=%s error=%s", path, exc)
            raise BlobStoreError(f"Upload failed for {path}: {exc}") from exc

        logger.info("S3 upload ok | key=%s size=%d", path, len(data))

    async def get(self, path: str) -> bytes:
        try:
            async with self._client() as s3:
                resp = await s3.get_object(Bucket=self._bucket, Key=path)
                return await resp["Body"].read()
        except ClientError as exc:
            code = exc.response.get("Error", {}).get("Code")
            if code in ("NoSuchKey", "404"):
                raise BlobNotFound(path) from exc
            raise BlobStoreError(f"Download failed for {path}: {exc}") from exc
        except BotoCoreError as exc:
            raise BlobStoreError(f"Download failed for {path}: {exc}") from exc

    def public_url(self, path: str) -> str:
        key = quote(path)
        if self._public_base_url:
            return f"{self._public_base_url.rstrip('/')}/{key}"
        if self._endpoint_url:
            return f"{self._endpoint_url.rstrip('/')}/{self._bucket}/{key}"
        return f"https://{self._bucket}.s3.{self._region}.amazonaws.com/{key}"

    async def delete(self, paths: Iterable[str]) -> None:
        keys = [p for p in paths if p]
        if not keys:
            return
        try:
            async with self._client() as s3:
                for start in range(0, len(keys), _DELETE_BATCH):
                    batch = keys[start:start + _DELETE_BATCH]
                    await s3.delete_objects(
                        Bucket=self._bucket,
                        Delete={"Objects": [{"Key": k} for k in batch], "Quiet": True},
                    )
        except (ClientError, BotoCoreError) as exc:
            logger.error("S3 delete failed | keys=%d error=%s", len(keys), exc)
            raise BlobStoreError(f"Delete failed: {exc}") from exc

        logger.warning("S3 delete | keys=%d", len(keys))
