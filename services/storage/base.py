"""Abstract storage contract for the supplier/invoice record.

The repository depends only on this interface: load the whole record, save
the whole record. Backends decide where the bytes live (local file, S3-compatible
object storage, process memory).

Based on Strategy Pattern:
https://refactoring.guru/design-patterns/strategy/python
"""

from abc import ABC, abstractmethod

from pydantic import BaseModel

from services.invoices.schema import PayablesData


class StorageError(Exception):
    """Raised when the persisted record cannot be read or written."""


class StorageResult(BaseModel):
    """Result of a save operation.

    Attributes:
        success: Whether operation succeeded
        location: Where the record was written (path or bucket/object)
        error: Error message if operation failed
        size: Serialized size in bytes if available
    """

    success: bool
    location: str | None = None
    error: str | None = None
    size: int | None = None


class CollectionStorage(ABC):
    """Abstract base class for record storage backends."""

    @abstractmethod
    def load(self) -> PayablesData:
        """Read the persisted record.

        Returns:
            Stored record, or an empty one if nothing was saved yet

        Raises:
            StorageError: If the record exists but cannot be read or decoded
        """
        pass

    @abstractmethod
    def save(self, data: PayablesData) -> StorageResult:
        """Replace the persisted record.

        Args:
            data: Full supplier and invoice collection

        Returns:
            StorageResult describing the write
        """
        pass

    @property
    @abstractmethod
    def backend_name(self) -> str:
        """Get backend name for logging.

        Returns:
            Backend identifier (e.g., 'file', 'minio')
        """
        pass

    def health_check(self) -> bool:
        """Check whether the backend can currently serve reads and writes."""
        return True


def serialize(data: PayablesData) -> bytes:
    """Encode the record as UTF-8 JSON."""
    return data.model_dump_json(indent=2).encode("utf-8")


def deserialize(payload: bytes | str) -> PayablesData:
    """Decode a record produced by serialize().

    Raises:
        StorageError: If the payload is not a valid record
    """
    try:
        return PayablesData.model_validate_json(payload)
    except ValueError as e:
        raise StorageError(f"Stored record is invalid: {e}") from e
