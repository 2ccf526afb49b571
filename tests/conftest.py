"""Shared test fixtures: sample tax documents and an in-memory repository."""

import pytest

from services.repository.service import InvoiceRepository
from services.storage.memory_storage import MemoryStorage
from tests.samples import NFSE_DOCUMENT, TODAY, NfeBuilder, build_nfe


@pytest.fixture
def nfe_xml() -> NfeBuilder:
    """Factory rendering NF-e documents with overridable fields."""
    return build_nfe


@pytest.fixture
def nfse_xml() -> str:
    return NFSE_DOCUMENT


@pytest.fixture
def storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture
def repository(storage: MemoryStorage) -> InvoiceRepository:
    """Repository over empty in-memory storage with a fixed clock."""
    return InvoiceRepository(storage, today=lambda: TODAY)
