"""S3-compatible object storage for raw invoice documents using MinIO.

Production-grade implementation with:
- Lazy client creation and bucket auto-creation
- Write-once object paths (no silent overwrite)
- Retry with backoff for transient S3 errors
- Content-type detection

Based on MinIO Python SDK:
https://min.io/docs/minio/linux/developers/python/API.html
"""

import io
import logging
import mimetypes
from datetime import UTC, datetime
from pathlib import PurePath
from typing import BinaryIO

from minio import Minio
from minio.error import S3Error
from pydantic import BaseModel
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from services.shared.config import Settings

logger = logging.getLogger(__name__)


class StorageResult(BaseModel):
    """Result of storage operation.

    Attributes:
        success: Whether operation succeeded
        object_name: Full object path in storage
        bucket: Bucket name
        error: Error message if operation failed
        etag: Object ETag (hash) if available
        size: Object size in bytes if available
    """

    success: bool
    object_name: str | None = None
    bucket: str | None = None
    error: str | None = None
    etag: str | None = None
    size: int | None = None


def build_invoice_object_name(
    firm_id: str,
    client_id: str,
    filename: str,
    now: datetime | None = None,
) -> str:
    """Build the storage path for an invoice document.

    Paths are namespaced by tenant and client and prefixed with epoch
    milliseconds so repeated filenames do not collide.

    Args:
        firm_id: Owning tenant
        client_id: Owning client
        filename: Original filename (directory parts are dropped)
        now: Timestamp override

    Returns:
        Object name such as ``{firm}/{client}/1718000000000_invoice.pdf``
    """
    now = now or datetime.now(UTC)
    safe_name = PurePath(filename.replace("\\", "/")).name or "document"
    return f"{firm_id}/{client_id}/{int(now.timestamp() * 1000)}_{safe_name}"


class StorageService:
    """S3-compatible object storage service.

    Provides write-once document storage on an on-premises MinIO deployment.
    """

    def __init__(self, settings: Settings, client: Minio | None = None) -> None:
        """Initialize storage service.

        Args:
            settings: Application settings with storage configuration
            client: Optional preconfigured MinIO client
        """
        self.settings = settings
        self._client: Minio | None = client
        self._bucket_exists_cache: set[str] = set()

    def _get_client(self) -> Minio:
        """Get or create MinIO client (lazy initialization).

        Returns:
            Configured Minio client instance

        Raises:
            ValueError: If storage credentials are not configured
        """
        if self._client is None:
            if not self.settings.storage_access_key:
                raise ValueError(
                    "Storage access key not configured. "
                    "Set APP_STORAGE_ACCESS_KEY environment variable."
                )
            if not self.settings.storage_secret_key:
                raise ValueError(
                    "Storage secret key not configured. "
                    "Set APP_STORAGE_SECRET_KEY environment variable."
                )

            self._client = Minio(
                endpoint=self.settings.storage_endpoint,
                access_key=self.settings.storage_access_key,
                secret_key=self.settings.storage_secret_key,
                secure=self.settings.storage_secure,
            )
            logger.info(f"MinIO client initialized for endpoint: {self.settings.storage_endpoint}")

        return self._client

    def is_available(self) -> bool:
        """Check if storage service is available and configured.

        Returns:
            True if storage is enabled and credentials are set
        """
        if not self.settings.storage_enabled:
            return False

        return bool(self.settings.storage_access_key and self.settings.storage_secret_key)

    def health_check(self) -> bool:
        """Check if storage backend is reachable.

        Returns:
            True if MinIO server responds to list_buckets
        """
        if not self.is_available():
            return False

        try:
            client = self._get_client()
            client.list_buckets()
            return True
        except Exception as e:
            logger.warning(f"Storage health check failed: {e}")
            return False

    def _ensure_bucket(self, bucket: str) -> None:
        """Ensure bucket exists, create if missing.

        Args:
            bucket: Bucket name to check/create
        """
        if bucket in self._bucket_exists_cache:
            return

        client = self._get_client()
        if not client.bucket_exists(bucket):
            client.make_bucket(bucket)
            logger.info(f"Created bucket: {bucket}")

        self._bucket_exists_cache.add(bucket)

    @staticmethod
    def _detect_content_type(filename: str) -> str:
        content_type, _ = mimetypes.guess_type(filename)
        return content_type or "application/octet-stream"

    @retry(
        retry=retry_if_exception_type(S3Error),
        stop=stop_after_attempt(3),
        wait=wait_exponential_jitter(initial=1, max=10),
        reraise=True,
    )
    def _put_object(self, bucket: str, object_name: str, data: bytes, content_type: str) -> str:
        data_stream: BinaryIO = io.BytesIO(data)
        result = self._get_client().put_object(
            bucket_name=bucket,
            object_name=object_name,
            data=data_stream,
            length=len(data),
            content_type=content_type,
        )
        return str(result.etag)

    def upload_bytes(
        self,
        data: bytes,
        object_name: str,
        content_type: str | None = None,
        bucket: str | None = None,
        overwrite: bool = False,
    ) -> StorageResult:
        """Upload bytes to storage.

        Args:
            data: Bytes to upload
            object_name: Target object name in storage
            content_type: MIME type (auto-detected if not provided)
            bucket: Target bucket (defaults to settings.storage_bucket)
            overwrite: Allow replacing an existing object at the same path

        Returns:
            StorageResult with upload details; fails if the object exists and
            overwrite is False
        """
        bucket = bucket or self.settings.storage_bucket

        try:
            self._ensure_bucket(bucket)

            # MinIO has no conditional put; the check narrows the window
            if not overwrite and self.object_exists(object_name, bucket):
                logger.error(f"Refusing to overwrite {bucket}/{object_name}")
                return StorageResult(
                    success=False,
                    object_name=object_name,
                    bucket=bucket,
                    error="Object already exists",
                )

            if content_type is None:
                content_type = self._detect_content_type(object_name)

            etag = self._put_object(bucket, object_name, data, content_type)
            logger.info(f"Uploaded {object_name} to {bucket} ({len(data)} bytes)")

            return StorageResult(
                success=True,
                object_name=object_name,
                bucket=bucket,
                etag=etag,
                size=len(data),
            )

        except S3Error as e:
            logger.error(f"S3 error uploading {object_name}: {e}")
            return StorageResult(
                success=False,
                object_name=object_name,
                bucket=bucket,
                error=f"S3 error: {e.code} - {e.message}",
            )
        except Exception as e:
            logger.error(f"Error uploading {object_name}: {e}")
            return StorageResult(
                success=False,
                object_name=object_name,
                bucket=bucket,
                error=str(e),
            )

    def object_exists(
        self,
        object_name: str,
        bucket: str | None = None,
    ) -> bool:
        """Check if object exists in storage.

        Args:
            object_name: Object name to check
            bucket: Bucket name (defaults to settings.storage_bucket)

        Returns:
            True if object exists

        Raises:
            S3Error: For errors other than a missing object
        """
        bucket = bucket or self.settings.storage_bucket

        try:
            self._get_client().stat_object(bucket_name=bucket, object_name=object_name)
            return True
        except S3Error as e:
            if e.code in ("NoSuchKey", "NoSuchObject", "NoSuchBucket"):
                return False
            raise
