"""Presigned S3 URLs for candidate profile uploads and downloads."""
from __future__ import annotations

import time
from functools import partial
from typing import Any, Optional

import anyio
import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .config import ObjectStorageSettings
from .errors import InternalError
from .logging import get_logger

logger = get_logger("zelosify.object_storage")


def build_object_key(tenant_id: str, opening_id: str, filename: str, *, timestamp_ms: Optional[int] = None) -> str:
    """Return ``{tenant}/{opening}/{epoch_ms}_{filename}``.

    Only the final path segment of ``filename`` is kept so a client cannot
    write outside its tenant prefix.
    """

    leaf = filename.replace("\\", "/").rsplit("/", 1)[-1].strip()
    if not leaf:
        raise ValueError("filename must not be empty")
    stamp = timestamp_ms if timestamp_ms is not None else int(time.time() * 1000)
    return f"{tenant_id}/{opening_id}/{stamp}_{leaf}"


class ObjectStorage:
    """Generate presigned PUT and GET URLs against one bucket.

    boto3 signs locally and blocks, so calls run in a worker thread.
    """

    def __init__(
        self,
        bucket: str,
        *,
        region: Optional[str] = None,
        endpoint_url: Optional[str] = None,
        access_key: Optional[str] = None,
        secret_key: Optional[str] = None,
        default_expires_in: int = 900,
        client: Any = None,
    ) -> None:
        if not bucket:
            raise ValueError("bucket must be provided")
        session_kwargs = {}
        if access_key and secret_key:
            session_kwargs["aws_access_key_id"] = access_key
            session_kwargs["aws_secret_access_key"] = secret_key
        self.client = client or boto3.client(
            "s3", region_name=region, endpoint_url=endpoint_url, **session_kwargs
        )
        self.bucket = bucket
        self.default_expires_in = default_expires_in

    @classmethod
    def from_settings(cls, config: ObjectStorageSettings) -> "ObjectStorage":
        if not config.bucket:
            raise InternalError("Object storage bucket is not configured")
        return cls(
            config.bucket,
            region=config.region,
            endpoint_url=config.endpoint_url,
            access_key=config.access_key_id,
            secret_key=config.secret_access_key,
            default_expires_in=config.presign_ttl_seconds,
        )

    async def _presign(self, operation: str, key: str, expires_in: Optional[int]) -> str:
        call = partial(
            self.client.generate_presigned_url,
            operation,
            Params={"Bucket": self.bucket, "Key": key},
            ExpiresIn=expires_in or self.default_expires_in,
        )
        try:
            return await anyio.to_thread.run_sync(call)
        except (BotoCoreError, ClientError) as exc:
            logger.error("presign_failed", operation=operation, key=key, error=str(exc))
            raise InternalError("Failed to generate presigned URL") from exc

    async def presign_upload(self, key: str, expires_in: Optional[int] = None) -> str:
        return await self._presign("put_object", key, expires_in)

    async def presign_download(self, key: str, expires_in: Optional[int] = None) -> str:
        return await self._presign("get_object", key, expires_in)


__all__ = ["ObjectStorage", "build_object_key"]
