"""S3-compatible object storage backend using MinIO.

Keeps the whole record as a single JSON object under the configured
storage key, with:
- Lazy client initialization
- Bucket auto-creation
- Retry with exponential backoff on transient S3 errors

Based on MinIO Python SDK:
https://min.io/docs/minio/linux/developers/python/API.html
"""

import io
import logging

from minio import Minio
from minio.error import S3Error
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from services.invoices.schema import PayablesData
from services.shared.config import Settings
from services.storage.base import (
    CollectionStorage,
    StorageError,
    StorageResult,
    deserialize,
    serialize,
)

logger = logging.getLogger(__name__)

_MISSING_OBJECT_CODES = {"NoSuchKey", "NoSuchBucket"}


class MinioStorage(CollectionStorage):
    """Record storage in an S3-compatible bucket."""

    def __init__(self, settings: Settings) -> None:
        """Initialize storage backend.

        Args:
            settings: Application settings with storage configuration
        """
        self.settings = settings
        self.bucket = settings.storage_bucket
        self.object_name = settings.storage_key
        self._client: Minio | None = None
        self._bucket_checked = False

    @property
    def backend_name(self) -> str:
        return "minio"

    def _get_client(self) -> Minio:
        """Get or create MinIO client (lazy initialization).

        Returns:
            Configured Minio client instance

        Raises:
            StorageError: If storage credentials are not configured
        """
        if self._client is None:
            if not self.settings.storage_access_key:
                raise StorageError(
                    "Storage access key not configured. "
                    "Set APP_STORAGE_ACCESS_KEY environment variable."
                )
            if not self.settings.storage_secret_key:
                raise StorageError(
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
        """Check if credentials are configured.

        Returns:
            True if access and secret keys are set
        """
        return bool(self.settings.storage_access_key and self.settings.storage_secret_key)

    def health_check(self) -> bool:
        """Check if storage backend is reachable.

        Returns:
            True if MinIO server responds to bucket_exists
        """
        if not self.is_available():
            return False

        try:
            self._get_client().bucket_exists(self.bucket)
            return True
        except Exception as e:
            logger.warning(f"Storage health check failed: {e}")
            return False

    def _ensure_bucket(self) -> None:
        if self._bucket_checked:
            return

        client = self._get_client()
        if not client.bucket_exists(self.bucket):
            client.make_bucket(self.bucket)
            logger.info(f"Created bucket: {self.bucket}")

        self._bucket_checked = True

    def load(self) -> PayablesData:
        try:
            payload = self._get()
        except S3Error as e:
            if e.code in _MISSING_OBJECT_CODES:
                logger.info(f"No record at {self.bucket}/{self.object_name}, starting empty")
                return PayablesData()
            raise StorageError(f"S3 error: {e.code} - {e.message}") from e

        data = deserialize(payload)
        logger.info(
            f"Loaded {len(data.invoices)} invoices and {len(data.suppliers)} suppliers "
            f"from {self.bucket}/{self.object_name}"
        )
        return data

    def save(self, data: PayablesData) -> StorageResult:
        payload = serialize(data)
        location = f"{self.bucket}/{self.object_name}"

        try:
            self._put(payload)
        except S3Error as e:
            logger.error(f"S3 error saving {location}: {e}")
            return StorageResult(
                success=False,
                location=location,
                error=f"S3 error: {e.code} - {e.message}",
            )
        except Exception as e:
            logger.error(f"Error saving {location}: {e}")
            return StorageResult(success=False, location=location, error=str(e))

        logger.info(f"Saved record to {location} ({len(payload)} bytes)")
        return StorageResult(success=True, location=location, size=len(payload))

    @retry(
        retry=retry_if_exception_type(S3Error),
        stop=stop_after_attempt(3),
        wait=wait_exponential_jitter(initial=1, max=10),
        reraise=True,
    )
    def _put(self, payload: bytes) -> None:
        client = self._get_client()
        self._ensure_bucket()
        client.put_object(
            bucket_name=self.bucket,
            object_name=self.object_name,
            data=io.BytesIO(payload),
            length=len(payload),
            content_type="application/json",
        )

    def _get(self) -> bytes:
        client = self._get_client()
        response = client.get_object(bucket_name=self.bucket, object_name=self.object_name)
        try:
            return response.read()
        finally:
            response.close()
            response.release_conn()
