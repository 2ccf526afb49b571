"""Integration tests for the MinIO storage backend.

These tests require:
- A reachable S3-compatible server (APP_STORAGE_ENDPOINT, default localhost:9000)
- APP_STORAGE_ACCESS_KEY and APP_STORAGE_SECRET_KEY environment variables set

Tests are skipped if APP_STORAGE_ACCESS_KEY is not available.
Use pytest -v -m integration to run only integration tests.
"""

import os
import uuid
from collections.abc import Generator

import pytest

from services.reconciler.service import ImportReconciler, ImportStatus
from services.repository.service import InvoiceRepository
from services.shared.config import Settings
from services.storage.minio_storage import MinioStorage
from tests.samples import TODAY, build_nfe

# Skip all tests in this module if no storage credentials available
pytestmark = [
    pytest.mark.integration,
    pytest.mark.skipif(
        not os.getenv("APP_STORAGE_ACCESS_KEY"),
        reason="APP_STORAGE_ACCESS_KEY not set - skipping integration tests",
    ),
]


@pytest.fixture
def minio_storage() -> Generator[MinioStorage, None, None]:
    """MinIO backend writing to a throwaway object key."""
    settings = Settings(storage_key=f"test-{uuid.uuid4().hex}.json")
    storage = MinioStorage(settings)
    yield storage
    storage._get_client().remove_object(storage.bucket, storage.object_name)


def test_health_check(minio_storage: MinioStorage) -> None:
    assert minio_storage.health_check() is True


def test_import_persists_across_repositories(minio_storage: MinioStorage) -> None:
    """Imported invoices should be visible to a repository reloaded from the bucket."""
    repository = InvoiceRepository(minio_storage, today=lambda: TODAY)
    result = ImportReconciler(repository).import_document("nota.xml", build_nfe())
    assert result.status == ImportStatus.IMPORTED

    reloaded = InvoiceRepository(minio_storage, today=lambda: TODAY)

    assert [i.id for i in reloaded.invoices] == [result.invoice_id]
    assert reloaded.has_access_key(result.access_key or "") is True
    assert len(reloaded.suppliers) == 1
