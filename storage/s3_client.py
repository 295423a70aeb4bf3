from __future__ import annotations

import logging
from typing import Optional

import aioboto3
from botocore.exceptions import BotoCoreError, ClientError

from pipeline.errors import StorageError
from settings.config import settings


logger = logging.getLogger(__name__)


def statement_object_key(statement_id: str, filename: str) -> str:
    safe = (filename or "statement").replace("/", "_").replace("\\", "_").strip() or "statement"
    return f"statements/{statement_id}/{safe}"


class S3DocumentStore:
    """Raw statement bytes in S3, addressed by object key."""

    def __init__(self, bucket: Optional[str] = None, region: Optional[str] = None):
        self.bucket = bucket or settings.AWS_S3_BUCKET_NAME
        self.region = region or settings.AWS_REGION

    def _client(self):
        return aioboto3.Session().client("s3", region_name=self.region)

    async def put(self, path: str, content: bytes, content_type: str) -> str:
        try:
            async with self._client() as s3:
                await s3.put_object(Bucket=self.bucket, Key=path, Body=content, ContentType=content_type)
        except (ClientError, BotoCoreError) as exc:
            logger.error("S3 put failed for s3://%s/%s: %s", self.bucket, path, exc)
            raise StorageError(f"could not store {path}: {exc}") from exc
        return path

    async def get(self, path: str) -> bytes:
        try:
            async with self._client() as s3:
                obj = await s3.get_object(Bucket=self.bucket, Key=path)
                async with obj["Body"] as body:
                    return await body.read()
        except (ClientError, BotoCoreError) as exc:
            logger.error("S3 get failed for s3://%s/%s: %s", self.bucket, path, exc)
            raise StorageError(f"could not fetch {path}: {exc}") from exc

