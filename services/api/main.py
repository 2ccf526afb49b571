"""FastAPI application for the payables ledger.

Thin HTTP surface over the repository for presentation clients:
- Health and readiness checks
- Batch XML import with per-file outcomes
- Supplier and invoice CRUD, payment and line item sub-resources
- Filtered invoice listing, dashboard summary and CSV export
- Prometheus metrics for monitoring

Handlers are synchronous and run in the worker thread pool. Mutating
handlers hold a process-wide lock, so repository writes run one at a time.

Based on FastAPI best practices:
https://fastapi.tiangolo.com/
"""

import datetime as dt
import logging
import threading
import time
from datetime import date
from decimal import Decimal
from typing import Annotated

from fastapi import FastAPI, File, HTTPException, Query, Request, Response, UploadFile, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from services.api import metrics
from services.invoices.schema import (
    Attachment,
    DocumentType,
    FinancialStatus,
    Invoice,
    InvoiceCreate,
    LineItem,
    PaymentCondition,
    PaymentMethod,
    PaymentRecord,
    Supplier,
    SupplierData,
    SupplierStatus,
)
from services.reconciler.service import (
    FileImportResult,
    ImportBatchResult,
    ImportReconciler,
    ImportStatus,
)
from services.reports.service import (
    DashboardSummary,
    InvoiceFilter,
    SortField,
    export_filename,
    export_invoices_csv,
    filter_invoices,
    summarize,
)
from services.repository.service import InvoiceRepository
from services.shared.config import get_settings
from services.storage.base import StorageError
from services.storage.factory import create_storage

settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Payables Ledger",
    description="Accounts-payable tracking for NF-e / NFS-e documents",
    version=settings.service_version,
)

repository = InvoiceRepository(create_storage(settings))
# Serializes mutating requests; each one reads, writes and re-reads under it
write_lock = threading.Lock()


@app.middleware("http")
async def metrics_middleware(request: Request, call_next):  # type: ignore[no-untyped-def]
    """Middleware to collect request metrics.

    Tracks:
    - Request count by method, endpoint, and status
    - Request duration by method and endpoint
    """
    # Skip metrics for /metrics endpoint itself
    if request.url.path == "/metrics":
        return await call_next(request)

    start_time = time.time()
    response = await call_next(request)
    duration = time.time() - start_time

    # Route template keeps ids out of the label values
    route = request.scope.get("route")
    endpoint = getattr(route, "path", request.url.path)

    metrics.http_requests_total.labels(
        method=request.method,
        endpoint=endpoint,
        status=response.status_code,
    ).inc()

    metrics.http_request_duration_seconds.labels(
        method=request.method,
        endpoint=endpoint,
    ).observe(duration)

    return response


@app.exception_handler(StorageError)
async def storage_error_handler(request: Request, exc: StorageError) -> JSONResponse:
    logger.error(f"Storage failure on {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": f"Storage unavailable: {exc}"},
    )


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    service: str


class ReadinessResponse(BaseModel):
    """Readiness check response."""

    ready: bool


class SupplierUpdate(BaseModel):
    legal_name: str | None = None
    trade_name: str | None = None
    tax_id: str | None = None
    email: str | None = None
    phone: str | None = None
    contact: str | None = None
    notes: str | None = None
    status: SupplierStatus | None = None


class InvoiceUpdate(BaseModel):
    """Editable invoice fields. Payments and items have their own endpoints."""

    supplier_id: str | None = None
    invoice_number: str | None = None
    series: str | None = None
    access_key: str | None = None
    issue_date: date | None = None
    due_date: date | None = None
    total_amount: Decimal | None = None
    taxes: Decimal | None = None
    document_type: DocumentType | None = None
    destination: str | None = None
    payment_method: PaymentMethod | None = None
    payment_condition: PaymentCondition | None = None
    installments: int | None = None
    financial_status: FinancialStatus | None = None
    notes: str | None = None
    attachments: list[Attachment] | None = None


class PaymentCreate(BaseModel):
    date: dt.date
    amount: Decimal
    method: PaymentMethod = PaymentMethod.PIX
    notes: str = ""
    receipt_url: str | None = None


class PaymentUpdate(BaseModel):
    date: dt.date | None = None
    amount: Decimal | None = None
    method: PaymentMethod | None = None
    notes: str | None = None
    receipt_url: str | None = None


class ItemCreate(BaseModel):
    description: str = "Novo Item"
    quantity: Decimal = Decimal("1")
    unit_value: Decimal = Decimal("0")
    total_value: Decimal | None = None
    cfop: str | None = None
    ncm: str | None = None


class ItemUpdate(BaseModel):
    description: str | None = None
    quantity: Decimal | None = None
    unit_value: Decimal | None = None
    total_value: Decimal | None = None
    cfop: str | None = None
    ncm: str | None = None


class InvoiceQuery(InvoiceFilter):
    """Query parameters of the invoice listing and CSV export."""

    sort_by: SortField = "due_date"
    descending: bool = False


def _require_invoice(invoice_id: str) -> Invoice:
    invoice = repository.get_invoice(invoice_id)
    if invoice is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Invoice not found")
    return invoice


def _require_supplier(supplier_id: str) -> Supplier:
    supplier = repository.get_supplier(supplier_id)
    if supplier is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Supplier not found")
    return supplier


def _unprocessable(e: ValueError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))


def _query_invoices(query: InvoiceQuery) -> list[Invoice]:
    return filter_invoices(
        repository.invoices,
        repository.suppliers,
        query,
        sort_by=query.sort_by,
        descending=query.descending,
    )


@app.get("/health", response_model=HealthResponse, tags=["Health"])
def health_check() -> HealthResponse:
    """Health check endpoint for liveness probe."""
    return HealthResponse(
        status="healthy", version=settings.service_version, service=settings.service_name
    )


@app.get("/ready", response_model=ReadinessResponse, tags=["Health"])
def readiness_check() -> ReadinessResponse:
    """Readiness check endpoint for Kubernetes readiness probe."""
    return ReadinessResponse(ready=repository.storage.health_check())


@app.get("/metrics", tags=["Monitoring"])
def get_metrics() -> Response:
    """Prometheus metrics endpoint."""
    metrics_data, content_type = metrics.get_metrics()
    return Response(content=metrics_data, media_type=content_type)


@app.post("/api/v1/documents/import", response_model=ImportBatchResult, tags=["Documents"])
def import_documents(
    files: list[UploadFile] = File(..., description="NF-e / NFS-e XML files"),  # noqa: B008
) -> ImportBatchResult:
    """Import a batch of XML tax documents.

    Files are processed one at a time, in upload order. Each file ends up
    `imported`, `duplicate` (access key already stored) or `failed`
    (unparsable, too large, or rejected); one file's failure never stops
    the rest of the batch.

    ## Usage Example

    ```bash
    curl -X POST "http://localhost:8000/api/v1/documents/import" \\
      -F "files=@nota1.xml" -F "files=@nota2.xml"
    ```
    """
    with write_lock:
        start_time = time.time()
        reconciler = ImportReconciler(repository)
        batch = ImportBatchResult()

        for upload in files:
            filename = upload.filename or "unnamed.xml"
            content = upload.file.read()
            metrics.document_import_size_bytes.observe(len(content))

            if len(content) > settings.import_max_file_size_bytes:
                result = FileImportResult(
                    filename=filename,
                    status=ImportStatus.FAILED,
                    error=f"File exceeds {settings.import_max_file_size_bytes} bytes",
                )
            else:
                result = reconciler.import_document(filename, content)

            batch.record(result)
            metrics.documents_imported_total.labels(status=result.status.value).inc()

        metrics.import_batch_duration_seconds.observe(time.time() - start_time)
        logger.info(
            f"Import request: {batch.imported} imported, {batch.duplicates} duplicates, "
            f"{batch.failed} failed"
        )
        return batch


@app.get("/api/v1/suppliers", response_model=list[Supplier], tags=["Suppliers"])
def list_suppliers() -> list[Supplier]:
    return repository.suppliers


@app.post(
    "/api/v1/suppliers",
    response_model=Supplier,
    status_code=status.HTTP_201_CREATED,
    tags=["Suppliers"],
)
def create_supplier(body: SupplierData) -> Supplier:
    with write_lock:
        return repository.add_supplier(body)


@app.get("/api/v1/suppliers/{supplier_id}", response_model=Supplier, tags=["Suppliers"])
def get_supplier(supplier_id: str) -> Supplier:
    return _require_supplier(supplier_id)


@app.patch("/api/v1/suppliers/{supplier_id}", response_model=Supplier, tags=["Suppliers"])
def update_supplier(supplier_id: str, body: SupplierUpdate) -> Supplier:
    with write_lock:
        _require_supplier(supplier_id)
        try:
            repository.update_supplier(supplier_id, body.model_dump(exclude_unset=True))
        except ValueError as e:
            raise _unprocessable(e) from e
        return _require_supplier(supplier_id)


@app.get("/api/v1/invoices", response_model=list[Invoice], tags=["Invoices"])
def list_invoices(query: Annotated[InvoiceQuery, Query()]) -> list[Invoice]:
    return _query_invoices(query)


@app.post(
    "/api/v1/invoices",
    response_model=Invoice,
    status_code=status.HTTP_201_CREATED,
    tags=["Invoices"],
)
def create_invoice(body: InvoiceCreate) -> Invoice:
    with write_lock:
        _require_supplier(body.supplier_id)
        return repository.create_invoice(body)


@app.get("/api/v1/invoices/{invoice_id}", response_model=Invoice, tags=["Invoices"])
def get_invoice(invoice_id: str) -> Invoice:
    return _require_invoice(invoice_id)


@app.patch("/api/v1/invoices/{invoice_id}", response_model=Invoice, tags=["Invoices"])
def update_invoice(invoice_id: str, body: InvoiceUpdate) -> Invoice:
    with write_lock:
        _require_invoice(invoice_id)
        updates = body.model_dump(exclude_unset=True)
        if "supplier_id" in updates:
            _require_supplier(updates["supplier_id"])
        try:
            repository.update_invoice(invoice_id, updates)
        except ValueError as e:
            raise _unprocessable(e) from e
        return _require_invoice(invoice_id)


@app.delete(
    "/api/v1/invoices/{invoice_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    tags=["Invoices"],
)
def delete_invoice(invoice_id: str) -> Response:
    with write_lock:
        _require_invoice(invoice_id)
        repository.delete_invoice(invoice_id)
        return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.post(
    "/api/v1/invoices/{invoice_id}/payments",
    response_model=Invoice,
    status_code=status.HTTP_201_CREATED,
    tags=["Payments"],
)
def add_payment(invoice_id: str, body: PaymentCreate) -> Invoice:
    """Record a confirmed payment and return the invoice with its new status."""
    with write_lock:
        _require_invoice(invoice_id)
        repository.add_payment(invoice_id, PaymentRecord(**body.model_dump()))
        return _require_invoice(invoice_id)


@app.patch(
    "/api/v1/invoices/{invoice_id}/payments/{payment_id}",
    response_model=Invoice,
    tags=["Payments"],
)
def edit_payment(invoice_id: str, payment_id: str, body: PaymentUpdate) -> Invoice:
    """Edit a payment. Editing a scheduled installment confirms it."""
    with write_lock:
        invoice = _require_invoice(invoice_id)
        if not any(p.id == payment_id for p in invoice.payments):
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Payment not found")
        try:
            repository.edit_payment(invoice_id, payment_id, body.model_dump(exclude_unset=True))
        except ValueError as e:
            raise _unprocessable(e) from e
        return _require_invoice(invoice_id)


@app.delete(
    "/api/v1/invoices/{invoice_id}/payments/{payment_id}",
    response_model=Invoice,
    tags=["Payments"],
)
def delete_payment(invoice_id: str, payment_id: str) -> Invoice:
    with write_lock:
        _require_invoice(invoice_id)
        repository.delete_payment(invoice_id, payment_id)
        return _require_invoice(invoice_id)


@app.post(
    "/api/v1/invoices/{invoice_id}/items",
    response_model=Invoice,
    status_code=status.HTTP_201_CREATED,
    tags=["Items"],
)
def add_item(invoice_id: str, body: ItemCreate) -> Invoice:
    with write_lock:
        _require_invoice(invoice_id)
        fields = body.model_dump()
        if fields["total_value"] is None:
            fields["total_value"] = body.quantity * body.unit_value
        repository.add_item(invoice_id, LineItem(**fields))
        return _require_invoice(invoice_id)


@app.patch(
    "/api/v1/invoices/{invoice_id}/items/{item_id}",
    response_model=Invoice,
    tags=["Items"],
)
def edit_item(invoice_id: str, item_id: str, body: ItemUpdate) -> Invoice:
    with write_lock:
        invoice = _require_invoice(invoice_id)
        if not any(i.id == item_id for i in invoice.items):
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Item not found")
        try:
            repository.edit_item(invoice_id, item_id, body.model_dump(exclude_unset=True))
        except ValueError as e:
            raise _unprocessable(e) from e
        return _require_invoice(invoice_id)


@app.delete(
    "/api/v1/invoices/{invoice_id}/items/{item_id}",
    response_model=Invoice,
    tags=["Items"],
)
def delete_item(invoice_id: str, item_id: str) -> Invoice:
    with write_lock:
        _require_invoice(invoice_id)
        repository.delete_item(invoice_id, item_id)
        return _require_invoice(invoice_id)


@app.get("/api/v1/reports/summary", response_model=DashboardSummary, tags=["Reports"])
def report_summary() -> DashboardSummary:
    return summarize(repository.invoices, repository.today())


@app.get("/api/v1/reports/invoices.csv", tags=["Reports"])
def export_csv(query: Annotated[InvoiceQuery, Query()]) -> Response:
    """Download the filtered invoice list as semicolon-delimited CSV."""
    as_of = repository.today()
    content = export_invoices_csv(_query_invoices(query), repository.suppliers, as_of)
    return Response(
        content=content,
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{export_filename(as_of)}"'},
    )
