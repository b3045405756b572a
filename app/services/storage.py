"""
Object storage gateway for cover images.

Talks to Cloudflare R2 (or any S3-compatible endpoint) through boto3.
"""
import os
import secrets
import time
from functools import lru_cache
from typing import Optional
from urllib.parse import urlsplit

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from ..config import get_settings
from ..logging_config import get_logger

logger = get_logger("storage")


class StorageError(Exception):
    """Raised when an object storage operation fails."""


class StorageService:
    """Upload and delete public objects in a single bucket."""

    def __init__(
        self,
        client,
        bucket: str,
        endpoint: Optional[str] = None,
        public_base_url: Optional[str] = None,
        default_folder: str = "movie-covers",
    ):
        self.client = client
        self.bucket = bucket
        self.endpoint = endpoint.rstrip("/") if endpoint else None
        self.public_base_url = public_base_url.rstrip("/") if public_base_url else None
        self.default_folder = default_folder

    def build_key(self, filename: str, folder: Optional[str] = None) -> str:
        """Generate a unique object key that keeps the file extension."""
        folder = folder or self.default_folder
        extension = os.path.splitext(filename or "")[1].lstrip(".").lower() or "bin"
        return f"{folder}/{int(time.time() * 1000)}-{secrets.token_hex(6)}.{extension}"

    def public_url(self, key: str) -> str:
        if self.public_base_url:
            return f"{self.public_base_url}/{key}"
        if not self.endpoint:
            raise StorageError("No public base URL or endpoint configured")
        return f"{self.endpoint}/{self.bucket}/{key}"

    def key_from_url(self, url_or_key: str) -> str:
        """Resolve the object key for a URL produced by ``public_url`` or a bare key."""
        if not url_or_key:
            raise StorageError("No file URL provided for deletion")

        if "://" not in url_or_key:
            return url_or_key.lstrip("/")

        if self.public_base_url and url_or_key.startswith(self.public_base_url + "/"):
            return url_or_key[len(self.public_base_url) + 1:]

        if self.endpoint:
            path_style_prefix = f"{self.endpoint}/{self.bucket}/"
            if url_or_key.startswith(path_style_prefix):
                return url_or_key[len(path_style_prefix):]

        # Virtual-hosted style: https://<bucket>.<host>/<key>
        parts = urlsplit(url_or_key)
        if parts.hostname and parts.hostname.startswith(f"{self.bucket}.") and parts.path.strip("/"):
            return parts.path.lstrip("/")

        raise StorageError(f"Unsupported URL format: {url_or_key}")

    def upload(self, content: bytes, content_type: str, filename: str, folder: Optional[str] = None) -> str:
        """Upload bytes and return the public URL."""
        key = self.build_key(filename, folder)
        try:
            self.client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=content,
                ContentType=content_type,
            )
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Failed to upload file: {e}") from e

        url = self.public_url(key)
        logger.info("Uploaded object", key=key, size=len(content), content_type=content_type)
        return url

    def delete(self, url_or_key: str) -> None:
        """Delete the object behind a public URL or key."""
        key = self.key_from_url(url_or_key)
        try:
            self.client.delete_object(Bucket=self.bucket, Key=key)
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Failed to delete file: {e}") from e
        logger.info("Deleted object", key=key)


@lru_cache()
def get_storage() -> Optional[StorageService]:
    """
    Build the storage gateway from settings (cached).

    Returns None when storage is not configured; uploads then fail with
    StorageError while reads keep working.
    """
    settings = get_settings()
    required = {
        "R2_ENDPOINT": settings.r2_endpoint,
        "R2_ACCESS_KEY_ID": settings.r2_access_key_id,
        "R2_SECRET_ACCESS_KEY": settings.r2_secret_access_key,
        "R2_BUCKET_NAME": settings.r2_bucket_name,
    }
    missing = [name for name, value in required.items() if not value]
    if missing:
        logger.warning("Storage configuration is incomplete", missing=missing)
        return None

    client = boto3.client(
        "s3",
        endpoint_url=settings.r2_endpoint,
        region_name=settings.r2_region,
        aws_access_key_id=settings.r2_access_key_id,
        aws_secret_access_key=settings.r2_secret_access_key,
    )
    return StorageService(
        client,
        bucket=settings.r2_bucket_name,
        endpoint=settings.r2_endpoint,
        public_base_url=settings.r2_public_base_url,
        default_folder=settings.cover_image_folder,
    )
