"""Factory for creating storage backends based on configuration.

Implements Factory Pattern for backend selection with registry pattern for extensibility.

Based on:
- Factory Pattern: https://refactoring.guru/design-patterns/factory-method/python
- Registry Pattern: Python Cookbook 3rd Edition, Recipe 9.22
"""

import logging
from collections.abc import Callable

from services.shared.config import Settings
from services.storage.base import CollectionStorage
from services.storage.file_storage import FileStorage
from services.storage.memory_storage import MemoryStorage
from services.storage.minio_storage import MinioStorage

logger = logging.getLogger(__name__)

StorageBuilder = Callable[[Settings], CollectionStorage]


class StorageRegistry:
    """Registry of available storage backends.

    Maps backend names (Settings.storage_backend) to builder callables.
    """

    _backends: dict[str, StorageBuilder] = {
        "file": FileStorage.from_settings,
        "minio": MinioStorage,
        "memory": lambda settings: MemoryStorage(),
    }

    @classmethod
    def register(cls, name: str, builder: StorageBuilder) -> None:
        """Register a new backend.

        Args:
            name: Backend identifier
            builder: Callable building the backend from settings
        """
        cls._backends[name] = builder
        logger.info(f"Registered storage backend: {name}")

    @classmethod
    def get_builder(cls, name: str) -> StorageBuilder:
        """Get backend builder by name.

        Raises:
            ValueError: If backend not found in registry
        """
        if name not in cls._backends:
            available = ", ".join(cls._backends.keys())
            raise ValueError(
                f"Unknown storage backend: '{name}'. " f"Available backends: {available}"
            )
        return cls._backends[name]

    @classmethod
    def list_backends(cls) -> list[str]:
        return list(cls._backends.keys())


def create_storage(settings: Settings) -> CollectionStorage:
    """Create the storage backend selected by settings.storage_backend.

    Args:
        settings: Application settings

    Returns:
        Configured storage backend

    Raises:
        ValueError: If configured backend is unknown
    """
    storage = StorageRegistry.get_builder(settings.storage_backend)(settings)
    logger.info(f"Created storage backend: {storage.backend_name}")
    return storage
