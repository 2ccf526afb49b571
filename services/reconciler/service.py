"""Batch import of tax documents.

Each file is parsed, checked for duplicates and committed on its own,
strictly one after another:
1. Parse the XML into a draft invoice
2. Skip it as duplicate if its non-empty access key is already stored
3. Resolve the supplier by exact tax id, creating it when unseen
4. Create the invoice with the parsed payment schedule

Files are committed as they go, so suppliers created by an earlier file
are visible to later files of the same batch, and a failure never rolls
back what was already imported.
"""

import logging
from collections.abc import Callable, Iterable
from enum import StrEnum

from pydantic import BaseModel, Field, computed_field

from services.invoices.schema import DraftInvoice
from services.parser.service import DocumentParser, ParseError
from services.repository.service import InvoiceRepository

logger = logging.getLogger(__name__)


class ImportStatus(StrEnum):
    IMPORTED = "imported"
    DUPLICATE = "duplicate"
    FAILED = "failed"


class FileImportResult(BaseModel):
    """Outcome of importing one file.

    Attributes:
        filename: Name the file was submitted under
        status: imported, duplicate or failed
        invoice_id: Created invoice (imported only)
        supplier_id: Matched or created supplier (imported only)
        access_key: Parsed access key, when parsing succeeded
        error: Error message (failed only)
    """

    filename: str
    status: ImportStatus
    invoice_id: str | None = None
    supplier_id: str | None = None
    access_key: str | None = None
    error: str | None = None


class ImportBatchResult(BaseModel):
    """Per-file outcomes plus running totals."""

    files: list[FileImportResult] = Field(default_factory=list)
    imported: int = 0
    duplicates: int = 0
    failed: int = 0

    @computed_field  # type: ignore[prop-decorator]
    @property
    def total(self) -> int:
        return len(self.files)

    def record(self, result: FileImportResult) -> None:
        self.files.append(result)
        if result.status is ImportStatus.IMPORTED:
            self.imported += 1
        elif result.status is ImportStatus.DUPLICATE:
            self.duplicates += 1
        else:
            self.failed += 1


class ImportReconciler:
    """Imports parsed documents into an InvoiceRepository."""

    def __init__(
        self, repository: InvoiceRepository, parser: DocumentParser | None = None
    ) -> None:
        """Initialize reconciler.

        Args:
            repository: Repository receiving suppliers and invoices
            parser: Document parser (a default one is created if omitted)
        """
        self.repository = repository
        self.parser = parser or DocumentParser()

    def import_batch(
        self,
        documents: Iterable[tuple[str, str | bytes]],
        on_progress: Callable[[FileImportResult], None] | None = None,
    ) -> ImportBatchResult:
        """Import a batch of documents sequentially.

        Args:
            documents: (filename, raw XML) pairs
            on_progress: Called with each file's outcome as soon as it is known

        Returns:
            ImportBatchResult with every outcome and the totals
        """
        batch = ImportBatchResult()
        for filename, raw_xml in documents:
            result = self.import_document(filename, raw_xml)
            batch.record(result)
            if on_progress is not None:
                on_progress(result)

        logger.info(
            f"Import finished: {batch.imported} imported, {batch.duplicates} duplicates, "
            f"{batch.failed} failed"
        )
        return batch

    def import_document(self, filename: str, raw_xml: str | bytes) -> FileImportResult:
        """Import one document. Never raises; failures become a FAILED outcome.

        Args:
            filename: Name used in the outcome and logs
            raw_xml: Document content

        Returns:
            FileImportResult for this file
        """
        try:
            draft = self.parser.parse(raw_xml)
        except ParseError as e:
            logger.warning(f"Could not parse {filename}: {e}")
            return FileImportResult(filename=filename, status=ImportStatus.FAILED, error=str(e))

        try:
            return self._reconcile(filename, draft)
        except Exception as e:
            logger.exception(f"Import of {filename} failed with error: {e}")
            return FileImportResult(
                filename=filename,
                status=ImportStatus.FAILED,
                access_key=draft.access_key or None,
                error=str(e),
            )

    def _reconcile(self, filename: str, draft: DraftInvoice) -> FileImportResult:
        if self.repository.has_access_key(draft.access_key):
            logger.info(f"Skipping {filename}: access key {draft.access_key} already imported")
            return FileImportResult(
                filename=filename,
                status=ImportStatus.DUPLICATE,
                access_key=draft.access_key,
            )

        supplier_id = self._resolve_supplier(draft)
        invoice = self.repository.create_invoice(draft.to_invoice_create(supplier_id))

        logger.info(f"Imported {filename} as invoice {invoice.id}")
        return FileImportResult(
            filename=filename,
            status=ImportStatus.IMPORTED,
            invoice_id=invoice.id,
            supplier_id=supplier_id,
            access_key=draft.access_key or None,
        )

    def _resolve_supplier(self, draft: DraftInvoice) -> str:
        existing = self.repository.find_supplier_by_tax_id(draft.supplier.tax_id)
        if existing is not None:
            return existing.id
        return self.repository.add_supplier(draft.supplier).id
