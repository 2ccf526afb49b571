"""In-process backend, used for tests and throwaway sessions."""

from services.invoices.schema import PayablesData
from services.storage.base import CollectionStorage, StorageResult, deserialize, serialize


class MemoryStorage(CollectionStorage):
    """Keeps the serialized record in memory.

    The record is stored as JSON bytes rather than as live objects so callers
    never share a mutable alias with the storage.
    """

    def __init__(self, initial: PayablesData | None = None) -> None:
        self._payload: bytes | None = serialize(initial) if initial is not None else None
        self.save_count = 0

    @property
    def backend_name(self) -> str:
        return "memory"

    def load(self) -> PayablesData:
        if self._payload is None:
            return PayablesData()
        return deserialize(self._payload)

    def save(self, data: PayablesData) -> StorageResult:
        self._payload = serialize(data)
        self.save_count += 1
        return StorageResult(success=True, location="memory", size=len(self._payload))
