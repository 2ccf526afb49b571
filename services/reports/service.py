"""Read-only projections over invoices.

Filtering and sorting for invoice lists, the dashboard summary and the
semicolon-delimited CSV export. Nothing here mutates state; every amount
paid is the ledger's effective paid total as of the given date.
"""

import csv
import io
from collections.abc import Iterable
from datetime import date, timedelta
from decimal import Decimal
from typing import Literal, get_args

from pydantic import BaseModel, Field

from services.invoices.schema import (
    FinancialStatus,
    Invoice,
    PaymentMethod,
    PaymentStatus,
    Supplier,
)
from services.ledger.calculator import effective_paid_total

CSV_HEADER = [
    "Numero",
    "Serie",
    "Fornecedor",
    "Emissao",
    "Vencimento",
    "ValorTotal",
    "ValorPago",
    "Status",
    "Destinacao",
]

SortField = Literal["issue_date", "due_date", "supplier", "amount", "status"]


class InvoiceFilter(BaseModel):
    """Invoice list filter. Unset fields do not filter."""

    search: str | None = Field(
        None,
        description="Matches invoice number, supplier names, destination or item descriptions",
    )
    status: PaymentStatus | None = None
    financial_status: FinancialStatus | None = None
    payment_method: PaymentMethod | None = None
    supplier_id: str | None = None
    issue_date_start: date | None = None
    issue_date_end: date | None = None
    due_date_start: date | None = None
    due_date_end: date | None = None
    amount_min: Decimal | None = None
    amount_max: Decimal | None = None


class DashboardSummary(BaseModel):
    """Aggregate figures over a set of invoices."""

    total: int
    paid: int
    open: int
    overdue: int
    total_amount: Decimal
    total_paid: Decimal
    total_to_pay: Decimal
    total_overdue: Decimal
    due_today: int
    due_next_7_days: int


def _matches_search(invoice: Invoice, supplier: Supplier | None, term: str) -> bool:
    term = term.lower()
    candidates = [invoice.invoice_number, invoice.destination]
    if supplier is not None:
        candidates.append(supplier.legal_name)
        candidates.append(supplier.trade_name or "")
    candidates.extend(item.description for item in invoice.items)
    return any(term in value.lower() for value in candidates)


def filter_invoices(
    invoices: Iterable[Invoice],
    suppliers: Iterable[Supplier],
    criteria: InvoiceFilter,
    sort_by: SortField = "due_date",
    descending: bool = False,
) -> list[Invoice]:
    """Filter and sort invoices.

    Args:
        invoices: Invoices to filter
        suppliers: Suppliers, for name search and supplier sorting
        criteria: Filter criteria
        sort_by: Sort key
        descending: Reverse the sort order

    Returns:
        Matching invoices in the requested order

    Raises:
        ValueError: If sort_by is not a known sort field
    """
    if sort_by not in get_args(SortField):
        raise ValueError(f"Unknown sort field: {sort_by}")

    by_id = {supplier.id: supplier for supplier in suppliers}
    result = []
    for invoice in invoices:
        c = criteria
        if c.search and not _matches_search(invoice, by_id.get(invoice.supplier_id), c.search):
            continue
        if c.status is not None and invoice.status != c.status:
            continue
        if c.financial_status is not None and invoice.financial_status != c.financial_status:
            continue
        if c.payment_method is not None and invoice.payment_method != c.payment_method:
            continue
        if c.supplier_id is not None and invoice.supplier_id != c.supplier_id:
            continue
        if c.issue_date_start is not None and invoice.issue_date < c.issue_date_start:
            continue
        if c.issue_date_end is not None and invoice.issue_date > c.issue_date_end:
            continue
        if c.due_date_start is not None and invoice.due_date < c.due_date_start:
            continue
        if c.due_date_end is not None and invoice.due_date > c.due_date_end:
            continue
        if c.amount_min is not None and invoice.total_amount < c.amount_min:
            continue
        if c.amount_max is not None and invoice.total_amount > c.amount_max:
            continue
        result.append(invoice)

    def sort_key(invoice: Invoice) -> object:
        match sort_by:
            case "issue_date":
                return invoice.issue_date
            case "due_date":
                return invoice.due_date
            case "supplier":
                supplier = by_id.get(invoice.supplier_id)
                return supplier.legal_name.lower() if supplier else ""
            case "amount":
                return invoice.total_amount
            case _:
                return invoice.status.value

    return sorted(result, key=sort_key, reverse=descending)  # type: ignore[arg-type]


def summarize(invoices: Iterable[Invoice], as_of: date) -> DashboardSummary:
    """Compute dashboard figures as of a reference date.

    Args:
        invoices: Invoices with up-to-date statuses
        as_of: Reference date

    Returns:
        DashboardSummary
    """
    invoices = list(invoices)
    next_week = as_of + timedelta(days=7)
    zero = Decimal("0")

    def outstanding(invoice: Invoice) -> Decimal:
        return invoice.total_amount - effective_paid_total(invoice.payments, as_of)

    unpaid = [i for i in invoices if i.status != PaymentStatus.PAID]
    overdue = [i for i in invoices if i.status == PaymentStatus.OVERDUE]

    return DashboardSummary(
        total=len(invoices),
        paid=len(invoices) - len(unpaid),
        open=sum(1 for i in invoices if i.status == PaymentStatus.OPEN),
        overdue=len(overdue),
        total_amount=sum((i.total_amount for i in invoices), start=zero),
        total_paid=sum((effective_paid_total(i.payments, as_of) for i in invoices), start=zero),
        total_to_pay=sum((outstanding(i) for i in unpaid), start=zero),
        total_overdue=sum((outstanding(i) for i in overdue), start=zero),
        due_today=sum(1 for i in unpaid if i.due_date == as_of),
        due_next_7_days=sum(1 for i in unpaid if as_of < i.due_date <= next_week),
    )


def export_filename(export_date: date) -> str:
    return f"relatorio_notas_{export_date.isoformat()}.csv"


def export_invoices_csv(
    invoices: Iterable[Invoice], suppliers: Iterable[Supplier], as_of: date
) -> str:
    """Render invoices as semicolon-delimited CSV.

    Args:
        invoices: Invoices to export, in output order
        suppliers: Suppliers, for the Fornecedor column
        as_of: Reference date for the paid amount

    Returns:
        CSV text with header row
    """
    names = {supplier.id: supplier.legal_name for supplier in suppliers}
    buffer = io.StringIO()
    writer = csv.writer(buffer, delimiter=";", lineterminator="\n")
    writer.writerow(CSV_HEADER)
    for invoice in invoices:
        writer.writerow(
            [
                invoice.invoice_number,
                invoice.series,
                names.get(invoice.supplier_id, ""),
                invoice.issue_date.isoformat(),
                invoice.due_date.isoformat(),
                str(invoice.total_amount),
                str(effective_paid_total(invoice.payments, as_of)),
                invoice.status.value,
                invoice.destination,
            ]
        )
    return buffer.getvalue()
