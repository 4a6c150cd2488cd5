"""
NameCard Backend - Image Storage Service
=========================================

What:  Persists original images and their variants; builds public URLs.
How:   Two backends behind one interface:

    S3 (S3_BUCKET_NAME set)   boto3 put_object in the threadpool, URLs from
                              the CDN domain or the bucket's regional endpoint
    local (no bucket)         aiofiles writes under STORAGE_ROOT, served by
                              GET /api/v1/upload/files/{key}

Key layout:
    images[/users/{user_id}]/{purpose}[/{variant}]/{timestamp}_{hex16}_{basename}{ext}

Variant uploads run concurrently, bounded by UPLOAD_CONCURRENCY.
"""

import asyncio
import logging
import os
import re
import secrets
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import aiofiles
import aiofiles.os
import boto3
from botocore.exceptions import BotoCoreError, ClientError
from starlette.concurrency import run_in_threadpool

from app.config import settings
from app.exceptions import StorageError, ValidationError
from app.services.image_preprocessing import ProcessedImage

logger = logging.getLogger(__name__)

LOCAL_URL_PREFIX = "/api/v1/upload/files"


@dataclass
class StoredObject:
    key: str
    url: str
    size: int
    content_type: str
    bucket: Optional[str] = None
    etag: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "url": self.url,
            "size": self.size,
            "contentType": self.content_type,
            "bucket": self.bucket,
        }


def sanitize_filename(filename: str) -> str:
    """Keep [a-zA-Z0-9._-], replace the rest with '-', keep the last 120 chars."""
    cleaned = re.sub(r"[^a-zA-Z0-9._-]", "-", Path(filename or "upload").name)
    cleaned = cleaned.strip(".-") or "upload"
    return cleaned[-120:]


def build_object_key(
    filename: str,
    purpose: str,
    user_id: Optional[str] = None,
    variant: Optional[str] = None,
    extension: Optional[str] = None,
) -> str:
    safe = sanitize_filename(filename)
    stem, original_ext = os.path.splitext(safe)
    ext = extension or original_ext.lower() or ".bin"
    parts = ["images"]
    if user_id:
        parts.extend(["users", str(user_id)])
    parts.append(purpose)
    if variant:
        parts.append(variant)
    timestamp = int(time.time() * 1000)
    parts.append(f"{timestamp}_{secrets.token_hex(8)}_{stem or 'upload'}{ext}")
    return "/".join(parts)


class StorageService:
    """
    Singleton storage facade. `bucket` empty → local backend.

    Args:
        bucket / region / cdn_domain / storage_root default to settings.
        client: injected boto3 S3 client (tests)
    """

    def __init__(
        self,
        bucket: Optional[str] = None,
        region: Optional[str] = None,
        cdn_domain: Optional[str] = None,
        storage_root: Optional[str] = None,
        client: Any = None,
    ):
        self.bucket = settings.s3_bucket_name if bucket is None else bucket
        self.region = region or settings.s3_region_name
        self.cdn_domain = (settings.s3_cdn_domain if cdn_domain is None else cdn_domain).rstrip("/")
        self.storage_root = Path(storage_root or settings.storage_root)
        self._client = client

    @property
    def backend(self) -> str:
        return "s3" if self.bucket else "local"

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = boto3.client("s3", region_name=self.region)
        return self._client

    def public_url(self, key: str) -> str:
        if not self.bucket:
            return f"{LOCAL_URL_PREFIX}/{key}"
        if self.cdn_domain:
            domain = re.sub(r"^https?://", "", self.cdn_domain)
            return f"https://{domain}/{key}"
        return f"https://{self.bucket}.s3.{self.region}.amazonaws.com/{key}"

    def local_path(self, key: str) -> Path:
        """
        Resolve a key inside the local storage root.

        Raises:
            ValidationError: key escapes the storage root
        """
        root = self.storage_root.resolve()
        full_path = (root / key).resolve()
        if root != full_path and root not in full_path.parents:
            raise ValidationError(message="Invalid file path", field="key")
        return full_path

    async def upload_file(
        self,
        content: bytes,
        filename: str,
        content_type: str,
        purpose: str = "storage",
        user_id: Optional[str] = None,
        variant: Optional[str] = None,
        extension: Optional[str] = None,
    ) -> StoredObject:
        """
        Store bytes under a generated key.

        Raises:
            StorageError: backend write failed
        """
        key = build_object_key(filename, purpose, user_id=user_id, variant=variant, extension=extension)
        metadata = {
            "original-name": sanitize_filename(filename),
            "upload-timestamp": str(int(time.time())),
            "file-size": str(len(content)),
            "purpose": purpose,
        }
        if user_id:
            metadata["user-id"] = str(user_id)
        if variant:
            metadata["variant"] = variant

        if self.bucket:
            etag = await self._put_s3(key, content, content_type, metadata)
        else:
            await self._put_local(key, content)
            etag = None

        logger.info("Stored %s (%d bytes) via %s backend", key, len(content), self.backend)
        return StoredObject(
            key=key,
            url=self.public_url(key),
            size=len(content),
            content_type=content_type,
            bucket=self.bucket or None,
            etag=etag,
        )

    async def upload_variants(
        self,
        variants: Mapping[str, ProcessedImage],
        filename: str,
        user_id: Optional[str] = None,
        purpose: str = "business-card",
    ) -> Dict[str, StoredObject]:
        """Upload every variant concurrently; the first failure is raised."""
        semaphore = asyncio.Semaphore(settings.upload_concurrency)

        async def upload_one(name: str, image: ProcessedImage) -> StoredObject:
            async with semaphore:
                return await self.upload_file(
                    content=image.content,
                    filename=filename,
                    content_type=image.content_type,
                    purpose=purpose,
                    user_id=user_id,
                    variant=name,
                    extension=image.extension,
                )

        names = list(variants)
        stored = await asyncio.gather(*(upload_one(name, variants[name]) for name in names))
        return dict(zip(names, stored))

    async def download_file(self, key: str) -> bytes:
        if self.bucket:
            try:
                response = await run_in_threadpool(self.client.get_object, Bucket=self.bucket, Key=key)
                return await run_in_threadpool(response["Body"].read)
            except (ClientError, BotoCoreError) as e:
                raise StorageError(
                    message="Could not read the stored image",
                    context={"key": key, "error": str(e)},
                )
        path = self.local_path(key)
        try:
            async with aiofiles.open(path, "rb") as f:
                return await f.read()
        except OSError as e:
            raise StorageError(
                message="Could not read the stored image",
                context={"key": key, "error": str(e)},
            )

    async def delete_object(self, key: str) -> None:
        """Best-effort delete; failures are logged."""
        try:
            if self.bucket:
                await run_in_threadpool(self.client.delete_object, Bucket=self.bucket, Key=key)
            else:
                path = self.local_path(key)
                if path.exists():
                    await aiofiles.os.remove(path)
        except (ClientError, BotoCoreError, OSError) as e:
            logger.warning("Failed to delete stored object %s: %s", key, str(e))

    async def generate_presigned_url(self, key: str, expires_in: Optional[int] = None) -> str:
        """Time-limited GET URL (local backend returns the public URL)."""
        if not self.bucket:
            return self.public_url(key)
        try:
            return await run_in_threadpool(
                self.client.generate_presigned_url,
                "get_object",
                Params={"Bucket": self.bucket, "Key": key},
                ExpiresIn=expires_in or settings.s3_url_expiry,
            )
        except (ClientError, BotoCoreError) as e:
            raise StorageError(
                message="Could not create a download link",
                context={"key": key, "error": str(e)},
            )

    async def _put_s3(
        self, key: str, content: bytes, content_type: str, metadata: Dict[str, str]
    ) -> Optional[str]:
        try:
            response = await run_in_threadpool(
                self.client.put_object,
                Bucket=self.bucket,
                Key=key,
                Body=content,
                ContentType=content_type,
                Metadata=metadata,
                CacheControl="max-age=31536000",
            )
        except (ClientError, BotoCoreError) as e:
            logger.error("S3 upload failed for %s: %s", key, str(e))
            raise StorageError(
                message="Failed to store the image. Please try again.",
                context={"key": key, "error": str(e)},
            )
        return (response or {}).get("ETag")

    async def _put_local(self, key: str, content: bytes) -> None:
        path = self.local_path(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(path, "wb") as f:
                await f.write(content)
        except OSError as e:
            logger.error("Local storage write failed for %s: %s", path, str(e))
            raise StorageError(
                message="Failed to store the image. Please try again.",
                context={"key": key, "os_error": str(e)},
            )


storage_service = StorageService()
