"""
S3 Object Store

Two buckets, two roles:

  input bucket   : documents land here; the bucket name arrives with every
                   notification, so it is a per-call argument.
  output bucket  : enrichment results are written here as JSON, keyed by the
                   deterministic destination key (last write wins).

One aioboto3 client is opened per call; the store itself holds no
connection state and is safe to share across concurrent flow executions.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any

import aioboto3
from botocore.exceptions import BotoCoreError, ClientError

from docpipeline.core.config import Settings, settings as default_settings

logger = logging.getLogger(__name__)

_MISSING_CODES = frozenset({"NoSuchKey", "NoSuchBucket", "404", "NotFound"})


class ObjectNotFound(FileNotFoundError):
    """The requested object (or its bucket) does not exist."""


class StorageError(RuntimeError):
    """Any other storage failure; treated as transient infrastructure."""


@dataclass(frozen=True)
class StoredObject:
    """Returned by put_json."""
    bucket:     str
    key:        str
    size_bytes: int
    etag:       str
    version_id: str | None = None

    @property
    def uri(self) -> str:
        return f"s3://{self.bucket}/{self.key}"


class S3ObjectStore:

    def __init__(
        self,
        cfg: Settings | None = None,
        session: aioboto3.Session | None = None,
    ) -> None:
        self._cfg = cfg or default_settings
        self._session = session or aioboto3.Session()

    def _client(self):
        """Return a scoped async S3 client context manager."""
        return self._session.client("s3", region_name=self._cfg.aws_region)

    async def get_object(self, bucket: str, key: str) -> bytes:
        """
        Download an object, bounded by download_timeout_seconds.

        Raises:
            ObjectNotFound: the key or bucket does not exist.
            StorageError:   network / service / timeout failures.
        """
        try:
            return await asyncio.wait_for(
                self._get_object(bucket, key),
                timeout=self._cfg.download_timeout_seconds,
            )
        except asyncio.TimeoutError as exc:
            raise StorageError(
                f"Download of s3://{bucket}/{key} exceeded "
                f"{self._cfg.download_timeout_seconds}s"
            ) from exc

    async def _get_object(self, bucket: str, key: str) -> bytes:
        async with self._client() as s3:
            try:
                resp = await s3.get_object(Bucket=bucket, Key=key)
                data = await resp["Body"].read()
            except ClientError as exc:
                code = exc.response.get("Error", {}).get("Code", "")
                if code in _MISSING_CODES:
                    raise ObjectNotFound(f"Object not found: s3://{bucket}/{key}") from exc
                raise StorageError(f"S3 get_object failed ({code}): {exc}") from exc
            except BotoCoreError as exc:
                raise StorageError(f"S3 get_object failed: {exc}") from exc

        logger.info("S3 download ok | bucket=%s key=%s size=%d", bucket, key, len(data))
        return data

    async def put_json(
        self,
        bucket: str,
        key: str,
        payload: dict[str, Any],
    ) -> StoredObject:
        """
        Write a JSON document. Non-ASCII text (e.g. RTL scripts) is stored
        as UTF-8 rather than escaped.
        """
        raw = json.dumps(payload, ensure_ascii=False, default=str).encode("utf-8")

        async with self._client() as s3:
            try:
                resp = await s3.put_object(
                    Bucket=bucket,
                    Key=key,
                    Body=raw,
                    ContentType="application/json; charset=utf-8",
                )
            except (ClientError, BotoCoreError) as exc:
                raise StorageError(f"S3 put_object failed: {exc}") from exc

        logger.info("S3 upload ok | bucket=%s key=%s size=%d", bucket, key, len(raw))

        return StoredObject(
            bucket=bucket,
            key=key,
            size_bytes=len(raw),
            etag=resp.get("ETag", "").strip('"'),
            version_id=resp.get("VersionId"),
        )
