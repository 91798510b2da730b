"""
S3-Compatible Object Store

Backs the image cache with Cloudflare R2 (or any S3 endpoint).
boto3 is blocking, so every call is pushed to a worker thread.

Uploads stream: payloads smaller than one part go up with a single
put_object, larger ones use a multipart upload that holds at most
one part in memory and is aborted if anything goes wrong.
"""

import asyncio
import logging
from functools import partial
from typing import Any, AsyncIterator, Callable, List, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from ..errors import StorageError
from .base import READ_CHUNK_SIZE, ObjectStore, StoredObject

logger = logging.getLogger(__name__)

# S3 rejects multipart parts smaller than this (except the last one)
MIN_PART_SIZE = 5 * 1024 * 1024

MISSING_KEY_CODES = {"404", "NoSuchKey", "NotFound"}


class S3ObjectStore(ObjectStore):
    """
    Object store over an S3-compatible bucket.

    Attributes:
        bucket: Bucket name
        endpoint_url: Endpoint URL (R2: https://<account>.r2.cloudflarestorage.com)
        region: Region name (R2 uses "auto")
    """

    name = "s3"

    def __init__(
        self,
        bucket: str,
        endpoint_url: Optional[str] = None,
        region: str = "auto",
        access_key_id: Optional[str] = None,
        secret_access_key: Optional[str] = None,
        part_size: int = 8 * 1024 * 1024,
        client: Any = None,
    ):
        self.bucket = bucket
        self.endpoint_url = endpoint_url
        self.region = region
        self.part_size = max(part_size, MIN_PART_SIZE)

        if client is None:
            client = boto3.client(
                "s3",
                endpoint_url=endpoint_url,
                aws_access_key_id=access_key_id,
                aws_secret_access_key=secret_access_key,
                region_name=region,
            )
        self._client = client

    async def _call(self, func: Callable[..., Any], **kwargs) -> Any:
        return await asyncio.to_thread(partial(func, **kwargs))

    async def get(self, key: str) -> Optional[StoredObject]:
        try:
            result = await self._call(self._client.get_object, Bucket=self.bucket, Key=key)
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code")
            if code in MISSING_KEY_CODES:
                return None
            raise StorageError(f"Failed to read s3://{self.bucket}/{key}: {code}") from e
        except BotoCoreError as e:
            raise StorageError(f"Failed to read s3://{self.bucket}/{key}: {e}") from e

        streaming_body = result["Body"]

        async def body() -> AsyncIterator[bytes]:
            try:
                while True:
                    chunk = await asyncio.to_thread(streaming_body.read, READ_CHUNK_SIZE)
                    if not chunk:
                        break
                    yield chunk
            finally:
                await asyncio.to_thread(streaming_body.close)

        async def close() -> None:
            await asyncio.to_thread(streaming_body.close)

        return StoredObject(
            key=key,
            body=body(),
            content_type=result.get("ContentType"),
            size=result.get("ContentLength"),
            closer=close,
        )

    async def put(self, key: str, stream: AsyncIterator[bytes], content_type: str) -> int:
        buffer = bytearray()
        upload_id: Optional[str] = None
        parts: List[dict] = []
        total = 0
        completed = False

        try:
            async for chunk in stream:
                buffer.extend(chunk)
                total += len(chunk)
                if len(buffer) < self.part_size:
                    continue
                if upload_id is None:
                    created = await self._call(
                        self._client.create_multipart_upload,
                        Bucket=self.bucket,
                        Key=key,
                        ContentType=content_type,
                    )
                    upload_id = created["UploadId"]
                    logger.debug(f"[Storage] Multipart upload started for {key}")
                await self._upload_part(key, upload_id, parts, bytes(buffer))
                buffer.clear()

            if upload_id is None:
                await self._call(
                    self._client.put_object,
                    Bucket=self.bucket,
                    Key=key,
                    Body=bytes(buffer),
                    ContentType=content_type,
                )
                return total

            if buffer:
                await self._upload_part(key, upload_id, parts, bytes(buffer))
            await self._call(
                self._client.complete_multipart_upload,
                Bucket=self.bucket,
                Key=key,
                UploadId=upload_id,
                MultipartUpload={"Parts": parts},
            )
            completed = True
            return total
        except (ClientError, BotoCoreError) as e:
            raise StorageError(f"Failed to write s3://{self.bucket}/{key}: {e}") from e
        finally:
            # Also reached on cancellation, so no upload is left open
            if upload_id is not None and not completed:
                await self._abort(key, upload_id)

    async def _upload_part(self, key: str, upload_id: str, parts: List[dict], data: bytes) -> None:
        part_number = len(parts) + 1
        result = await self._call(
            self._client.upload_part,
            Bucket=self.bucket,
            Key=key,
            UploadId=upload_id,
            PartNumber=part_number,
            Body=data,
        )
        parts.append({"ETag": result["ETag"], "PartNumber": part_number})

    async def _abort(self, key: str, upload_id: str) -> None:
        try:
            await self._call(
                self._client.abort_multipart_upload,
                Bucket=self.bucket,
                Key=key,
                UploadId=upload_id,
            )
        except (ClientError, BotoCoreError):
            logger.warning(
                f"[Storage] Failed to abort multipart upload {upload_id} for {key}",
                exc_info=True,
            )

    def describe(self) -> dict:
        return {
            "backend": self.name,
            "bucket": self.bucket,
            "endpoint": self.endpoint_url,
        }
