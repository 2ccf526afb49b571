"""Local JSON file backend.

Writes go to a sibling temporary file first and are moved into place with
os.replace, so a crash mid-write never leaves a truncated record behind.
Transient OS errors are retried with exponential backoff.
"""

import logging
import os
from pathlib import Path

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


class FileStorage(CollectionStorage):
    """Keeps the record in a single JSON file."""

    def __init__(self, path: Path) -> None:
        """Initialize file storage.

        Args:
            path: File holding the serialized record
        """
        self.path = path

    @classmethod
    def from_settings(cls, settings: Settings) -> "FileStorage":
        return cls(Path(settings.storage_path) / settings.storage_key)

    @property
    def backend_name(self) -> str:
        return "file"

    def load(self) -> PayablesData:
        if not self.path.exists():
            logger.info(f"No record at {self.path}, starting empty")
            return PayablesData()
        try:
            payload = self.path.read_bytes()
        except OSError as e:
            raise StorageError(f"Cannot read {self.path}: {e}") from e
        data = deserialize(payload)
        logger.info(
            f"Loaded {len(data.invoices)} invoices and {len(data.suppliers)} suppliers "
            f"from {self.path}"
        )
        return data

    def save(self, data: PayablesData) -> StorageResult:
        payload = serialize(data)
        try:
            self._write(payload)
        except OSError as e:
            logger.error(f"Error writing {self.path}: {e}")
            return StorageResult(success=False, location=str(self.path), error=str(e))

        logger.info(f"Saved record to {self.path} ({len(payload)} bytes)")
        return StorageResult(success=True, location=str(self.path), size=len(payload))

    @retry(
        retry=retry_if_exception_type(OSError),
        stop=stop_after_attempt(3),
        wait=wait_exponential_jitter(initial=0.1, max=1),
        reraise=True,
    )
    def _write(self, payload: bytes) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_name(f"{self.path.name}.tmp")
        tmp_path.write_bytes(payload)
        os.replace(tmp_path, self.path)
