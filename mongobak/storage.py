# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
mongobak Storage - Object storage access for backup artifacts.

ObjectStore is the narrow interface the workflow depends on; S3ObjectStore
implements it with aiobotocore. Every S3 failure surfaces as TransferError.
"""

from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Protocol

import aiofiles
import structlog

from mongobak.exceptions import TransferError

logger = structlog.get_logger()

_NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound"}

# S3 parts must be at least 5 MiB except the last one
MULTIPART_THRESHOLD = 64 * 1024 * 1024
PART_SIZE = 16 * 1024 * 1024


@dataclass(frozen=True)
class RemoteObject:
    """An object listed or inspected in the bucket."""

    key: str
    size: int
    last_modified: datetime
    metadata: Dict[str, str] | None = None


class ObjectStore(Protocol):
    """Operations the backup workflow performs against object storage."""

    async def upload_file(
        self,
        path: Path,
        key: str,
        *,
        metadata: Dict[str, str] | None = None,
        storage_class: str | None = None,
        content_type: str = "application/octet-stream",
    ) -> None: ...

    async def put_bytes(
        self,
        key: str,
        body: bytes,
        *,
        content_type: str = "application/octet-stream",
        metadata: Dict[str, str] | None = None,
    ) -> None: ...

    async def head(self, key: str) -> RemoteObject | None: ...

    async def list_objects(self, prefix: str) -> List[RemoteObject]: ...

    async def download_file(self, key: str, dest: Path) -> int: ...

    async def get_bytes(self, key: str) -> bytes: ...

    async def delete_object(self, key: str) -> None: ...


def _is_not_found(error: Exception) -> bool:
    response = getattr(error, "response", None) or {}
    code = str(response.get("Error", {}).get("Code", ""))
    return code in _NOT_FOUND_CODES


class S3ObjectStore:
    """ObjectStore backed by an S3 bucket via aiobotocore."""

    def __init__(
        self,
        session: Any,
        bucket: str,
        region: str,
        endpoint_url: str | None = None,
        multipart_threshold: int = MULTIPART_THRESHOLD,
        part_size: int = PART_SIZE,
    ):
        self.bucket = bucket
        self.multipart_threshold = multipart_threshold
        self.part_size = part_size
        self._session = session
        self._region = region
        self._endpoint_url = endpoint_url

    def _client(self):
        return self._session.create_client(
            "s3",
            region_name=self._region,
            endpoint_url=self._endpoint_url,
        )

    async def upload_file(
        self,
        path: Path,
        key: str,
        *,
        metadata: Dict[str, str] | None = None,
        storage_class: str | None = None,
        content_type: str = "application/octet-stream",
    ) -> None:
        """
        Upload a local file.

        Files larger than multipart_threshold are sent as a multipart
        upload of part_size pieces; a failed multipart upload is aborted.
        """
        try:
            size = path.stat().st_size
        except OSError as e:
            raise TransferError(
                f"Cannot read local file for upload: {e}",
                details={"path": str(path), "key": key},
            )

        extra: Dict[str, Any] = {
            "ContentType": content_type,
            "Metadata": metadata or {},
        }
        if storage_class:
            extra["StorageClass"] = storage_class

        if size > self.multipart_threshold:
            await self._upload_multipart(path, key, extra)
        else:
            await self._upload_single(path, key, extra)

        logger.debug("object_uploaded", bucket=self.bucket, key=key, size=size)

    async def _upload_single(self, path: Path, key: str, extra: Dict[str, Any]) -> None:
        try:
            async with aiofiles.open(path, "rb") as f:
                body = await f.read()
        except OSError as e:
            raise TransferError(
                f"Cannot read local file for upload: {e}",
                details={"path": str(path), "key": key},
            )

        try:
            async with self._client() as client:
                await client.put_object(Bucket=self.bucket, Key=key, Body=body, **extra)
        except Exception as e:
            raise TransferError(
                f"Failed to upload {key}: {e}",
                details={"bucket": self.bucket, "key": key},
            )

    async def _upload_multipart(self, path: Path, key: str, extra: Dict[str, Any]) -> None:
        parts: List[Dict[str, Any]] = []
        try:
            async with self._client() as client:
                created = await client.create_multipart_upload(
                    Bucket=self.bucket, Key=key, **extra
                )
                upload_id = created["UploadId"]

                try:
                    async with aiofiles.open(path, "rb") as f:
                        while True:
                            chunk = await f.read(self.part_size)
                            if not chunk:
                                break
                            number = len(parts) + 1
                            response = await client.upload_part(
                                Bucket=self.bucket,
                                Key=key,
                                UploadId=upload_id,
                                PartNumber=number,
                                Body=chunk,
                            )
                            parts.append({"PartNumber": number, "ETag": response["ETag"]})

                    await client.complete_multipart_upload(
                        Bucket=self.bucket,
                        Key=key,
                        UploadId=upload_id,
                        MultipartUpload={"Parts": parts},
                    )
                except Exception:
                    await self._abort_multipart(client, key, upload_id)
                    raise
        except Exception as e:
            raise TransferError(
                f"Failed to upload {key}: {e}",
                details={"bucket": self.bucket, "key": key, "parts_sent": len(parts)},
            )

        logger.debug("multipart_upload_completed", key=key, parts=len(parts))

    async def _abort_multipart(self, client: Any, key: str, upload_id: str) -> None:
        try:
            await client.abort_multipart_upload(Bucket=self.bucket, Key=key, UploadId=upload_id)
        except Exception as e:
            logger.warning("multipart_abort_failed", key=key, upload_id=upload_id, error=str(e))

    async def put_bytes(
        self,
        key: str,
        body: bytes,
        *,
        content_type: str = "application/octet-stream",
        metadata: Dict[str, str] | None = None,
    ) -> None:
        try:
            async with self._client() as client:
                await client.put_object(
                    Bucket=self.bucket,
                    Key=key,
                    Body=body,
                    ContentType=content_type,
                    Metadata=metadata or {},
                )
        except Exception as e:
            raise TransferError(
                f"Failed to write {key}: {e}",
                details={"bucket": self.bucket, "key": key},
            )

    async def head(self, key: str) -> RemoteObject | None:
        try:
            async with self._client() as client:
                response = await client.head_object(Bucket=self.bucket, Key=key)
        except Exception as e:
            if _is_not_found(e):
                return None
            raise TransferError(
                f"Failed to inspect {key}: {e}",
                details={"bucket": self.bucket, "key": key},
            )

        return RemoteObject(
            key=key,
            size=response["ContentLength"],
            last_modified=response["LastModified"],
            metadata=response.get("Metadata") or {},
        )

    async def list_objects(self, prefix: str) -> List[RemoteObject]:
        objects: List[RemoteObject] = []
        try:
            async with self._client() as client:
                paginator = client.get_paginator("list_objects_v2")
                async for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
                    for obj in page.get("Contents", []):
                        objects.append(
                            RemoteObject(
                                key=obj["Key"],
                                size=obj["Size"],
                                last_modified=obj["LastModified"],
                            )
                        )
        except Exception as e:
            raise TransferError(
                f"Failed to list s3://{self.bucket}/{prefix}: {e}",
                details={"bucket": self.bucket, "prefix": prefix},
            )
        return objects

    async def get_bytes(self, key: str) -> bytes:
        try:
            async with self._client() as client:
                response = await client.get_object(Bucket=self.bucket, Key=key)
                async with response["Body"] as stream:
                    return await stream.read()
        except Exception as e:
            raise TransferError(
                f"Failed to download {key}: {e}",
                details={"bucket": self.bucket, "key": key},
            )

    async def download_file(self, key: str, dest: Path) -> int:
        """Stream an object to `dest` in part_size chunks; returns bytes written."""
        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise TransferError(
                f"Cannot write downloaded file: {e}",
                details={"key": key, "path": str(dest)},
            )

        written = 0
        try:
            async with self._client() as client:
                response = await client.get_object(Bucket=self.bucket, Key=key)
                async with response["Body"] as stream:
                    async with aiofiles.open(dest, "wb") as f:
                        while True:
                            chunk = await stream.read(self.part_size)
                            if not chunk:
                                break
                            await f.write(chunk)
                            written += len(chunk)
        except Exception as e:
            raise TransferError(
                f"Failed to download {key}: {e}",
                details={"bucket": self.bucket, "key": key},
            )
        return written

    async def delete_object(self, key: str) -> None:
        try:
            async with self._client() as client:
                await client.delete_object(Bucket=self.bucket, Key=key)
        except Exception as e:
            raise TransferError(
                f"Failed to delete {key}: {e}",
                details={"bucket": self.bucket, "key": key},
            )
