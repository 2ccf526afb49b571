"""Invoice repository.

Owns the authoritative supplier and invoice collections. Every mutation
re-derives the touched invoice's payment status through the ledger and is
persisted through the injected storage backend before the call returns.

Changes are applied to a new copy of the record; the in-memory state is
swapped only after the backend confirms the write, so memory and storage
never diverge. Callers always receive copies, never live references.

Unknown ids make update/delete a silent no-op: callers are expected to
operate on ids they just read.
"""

import copy
import logging
from collections.abc import Callable, Mapping
from datetime import date
from decimal import Decimal
from typing import Any, TypeVar

from pydantic import BaseModel

from services.invoices.schema import (
    Invoice,
    InvoiceCreate,
    LineItem,
    PayablesData,
    PaymentRecord,
    Supplier,
    SupplierData,
)
from services.ledger.calculator import derive_invoice_status
from services.storage.base import CollectionStorage, StorageError

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

# Fields a caller can never set through an update
_PROTECTED_INVOICE_FIELDS = frozenset({"id", "status"})
_PROTECTED_FIELDS = frozenset({"id"})


def merge_fields(
    model: ModelT, updates: Mapping[str, Any], protected: frozenset[str] = _PROTECTED_FIELDS
) -> ModelT:
    """Return a validated copy of ``model`` with ``updates`` applied.

    Args:
        model: Current value
        updates: Partial field values, keyed by field name
        protected: Field names silently left untouched

    Returns:
        New model instance

    Raises:
        ValueError: If an update names an unknown field or carries an invalid value
    """
    unknown = set(updates) - set(type(model).model_fields)
    if unknown:
        raise ValueError(f"Unknown {type(model).__name__} fields: {', '.join(sorted(unknown))}")

    merged = model.model_dump()
    merged.update({k: v for k, v in copy.deepcopy(dict(updates)).items() if k not in protected})
    return type(model).model_validate(merged)


class InvoiceRepository:
    """Repository of suppliers and invoices backed by a CollectionStorage.

    Attributes:
        storage: Backend persisting the record
    """

    def __init__(
        self,
        storage: CollectionStorage,
        today: Callable[[], date] = date.today,
    ) -> None:
        """Initialize repository and load the persisted record.

        Args:
            storage: Storage backend
            today: Clock returning the reference date for status derivation
        """
        self.storage = storage
        self._today = today
        self._data = PayablesData()
        self.load()

    # Reads

    def today(self) -> date:
        """Reference date used for status derivation."""
        return self._today()

    def load(self) -> None:
        """Reload the record from storage, recomputing every invoice status."""
        data = self.storage.load()
        as_of = self.today()
        for invoice in data.invoices:
            invoice.status = derive_invoice_status(invoice, as_of)
        self._data = data

    @property
    def invoices(self) -> list[Invoice]:
        """Copies of all invoices, statuses derived as of today."""
        as_of = self.today()
        return [self._snapshot(invoice, as_of) for invoice in self._data.invoices]

    @property
    def suppliers(self) -> list[Supplier]:
        return [supplier.model_copy(deep=True) for supplier in self._data.suppliers]

    def get_invoice(self, invoice_id: str) -> Invoice | None:
        invoice = self._find_invoice(invoice_id)
        return self._snapshot(invoice, self.today()) if invoice else None

    def get_supplier(self, supplier_id: str) -> Supplier | None:
        for supplier in self._data.suppliers:
            if supplier.id == supplier_id:
                return supplier.model_copy(deep=True)
        return None

    def find_supplier_by_tax_id(self, tax_id: str) -> Supplier | None:
        """Find a supplier by exact tax id."""
        for supplier in self._data.suppliers:
            if supplier.tax_id == tax_id:
                return supplier.model_copy(deep=True)
        return None

    def has_access_key(self, access_key: str) -> bool:
        """Check whether a non-empty access key is already on any invoice."""
        if not access_key:
            return False
        return any(invoice.access_key == access_key for invoice in self._data.invoices)

    # Suppliers

    def add_supplier(self, data: SupplierData) -> Supplier:
        """Create a supplier.

        Args:
            data: Supplier attributes

        Returns:
            Stored supplier with its new id
        """
        supplier = Supplier(**data.model_dump(exclude={"id"}))
        suppliers = [*self._data.suppliers, supplier]
        self._commit(self._data.model_copy(update={"suppliers": suppliers}))
        logger.info(f"Added supplier {supplier.id} ({supplier.tax_id or 'no tax id'})")
        return supplier.model_copy(deep=True)

    def update_supplier(self, supplier_id: str, updates: Mapping[str, Any]) -> None:
        """Merge fields into a supplier. No-op if the id is unknown."""
        suppliers = list(self._data.suppliers)
        for index, supplier in enumerate(suppliers):
            if supplier.id == supplier_id:
                suppliers[index] = merge_fields(supplier, updates)
                self._commit(self._data.model_copy(update={"suppliers": suppliers}))
                return
        logger.debug(f"update_supplier: unknown supplier {supplier_id}")

    # Invoices

    def create_invoice(self, data: InvoiceCreate) -> Invoice:
        """Create an invoice, deriving its initial status.

        Args:
            data: Invoice fields and supplier reference

        Returns:
            Stored invoice with its new id and status
        """
        invoice = self._with_status(Invoice(**data.model_dump(exclude={"id", "status"})))
        invoices = [*self._data.invoices, invoice]
        self._commit(self._data.model_copy(update={"invoices": invoices}))
        logger.info(f"Created invoice {invoice.id} ({invoice.invoice_number}) as {invoice.status}")
        return invoice.model_copy(deep=True)

    add_invoice = create_invoice

    def update_invoice(self, invoice_id: str, updates: Mapping[str, Any]) -> None:
        """Merge fields into an invoice and re-derive its status.

        ``id`` and ``status`` in ``updates`` are ignored. No-op if the id is unknown.
        """
        self._replace_invoice(
            invoice_id, lambda invoice: merge_fields(invoice, updates, _PROTECTED_INVOICE_FIELDS)
        )

    def delete_invoice(self, invoice_id: str) -> None:
        """Remove an invoice. Its supplier is kept. No-op if the id is unknown."""
        remaining = [invoice for invoice in self._data.invoices if invoice.id != invoice_id]
        if len(remaining) == len(self._data.invoices):
            logger.debug(f"delete_invoice: unknown invoice {invoice_id}")
            return
        self._commit(self._data.model_copy(update={"invoices": remaining}))
        logger.info(f"Deleted invoice {invoice_id}")

    # Payments

    def add_payment(self, invoice_id: str, payment: PaymentRecord) -> PaymentRecord | None:
        """Record a manually confirmed payment.

        Returns:
            Stored payment, or None if the invoice is unknown
        """
        confirmed = payment.model_copy(update={"is_scheduled": False})
        found = self._replace_invoice(
            invoice_id,
            lambda invoice: invoice.model_copy(update={"payments": [*invoice.payments, confirmed]}),
        )
        return confirmed.model_copy() if found else None

    def edit_payment(self, invoice_id: str, payment_id: str, updates: Mapping[str, Any]) -> None:
        """Merge fields into a payment. Editing always confirms the payment."""

        def apply(payment: PaymentRecord) -> PaymentRecord:
            return merge_fields(payment, {**updates, "is_scheduled": False})

        self._replace_invoice(
            invoice_id,
            lambda invoice: invoice.model_copy(
                update={"payments": _map_by_id(invoice.payments, payment_id, apply)}
            ),
        )

    def delete_payment(self, invoice_id: str, payment_id: str) -> None:
        self._replace_invoice(
            invoice_id,
            lambda invoice: invoice.model_copy(
                update={"payments": [p for p in invoice.payments if p.id != payment_id]}
            ),
        )

    # Line items

    def add_item(self, invoice_id: str, item: LineItem | None = None) -> LineItem | None:
        """Append a line item. The invoice total is not recomputed.

        Args:
            invoice_id: Target invoice
            item: Item to add; defaults to a blank "Novo Item" with quantity 1

        Returns:
            Stored item, or None if the invoice is unknown
        """
        stored = (
            item.model_copy(deep=True)
            if item is not None
            else LineItem(description="Novo Item", quantity=Decimal("1"))
        )
        found = self._replace_invoice(
            invoice_id,
            lambda invoice: invoice.model_copy(update={"items": [*invoice.items, stored]}),
        )
        return stored.model_copy() if found else None

    def edit_item(self, invoice_id: str, item_id: str, updates: Mapping[str, Any]) -> None:
        """Merge fields into a line item.

        When quantity or unit value change, the item's total value is reset to
        quantity x unit value. The invoice total_amount is left as is.
        """

        def apply(item: LineItem) -> LineItem:
            edited = merge_fields(item, updates)
            if "quantity" in updates or "unit_value" in updates:
                edited = edited.model_copy(
                    update={"total_value": edited.quantity * edited.unit_value}
                )
            return edited

        self._replace_invoice(
            invoice_id,
            lambda invoice: invoice.model_copy(
                update={"items": _map_by_id(invoice.items, item_id, apply)}
            ),
        )

    def delete_item(self, invoice_id: str, item_id: str) -> None:
        self._replace_invoice(
            invoice_id,
            lambda invoice: invoice.model_copy(
                update={"items": [i for i in invoice.items if i.id != item_id]}
            ),
        )

    # Internals

    def _find_invoice(self, invoice_id: str) -> Invoice | None:
        for invoice in self._data.invoices:
            if invoice.id == invoice_id:
                return invoice
        return None

    def _with_status(self, invoice: Invoice) -> Invoice:
        return invoice.model_copy(update={"status": derive_invoice_status(invoice, self.today())})

    @staticmethod
    def _snapshot(invoice: Invoice, as_of: date) -> Invoice:
        return invoice.model_copy(
            update={"status": derive_invoice_status(invoice, as_of)}, deep=True
        )

    def _replace_invoice(self, invoice_id: str, change: Callable[[Invoice], Invoice]) -> bool:
        """Apply ``change`` to one invoice, re-derive its status and persist.

        Returns:
            False if the invoice is unknown (nothing is written)
        """
        invoices = list(self._data.invoices)
        for index, invoice in enumerate(invoices):
            if invoice.id == invoice_id:
                invoices[index] = self._with_status(change(invoice))
                self._commit(self._data.model_copy(update={"invoices": invoices}))
                return True
        logger.debug(f"Unknown invoice {invoice_id}, nothing to update")
        return False

    def _commit(self, data: PayablesData) -> None:
        """Persist ``data`` and make it the current state.

        Raises:
            StorageError: If the backend reports a failed write
        """
        result = self.storage.save(data)
        if not result.success:
            raise StorageError(f"Failed to persist record: {result.error}")
        self._data = data


def _map_by_id(
    entries: list[ModelT], entry_id: str, change: Callable[[ModelT], ModelT]
) -> list[ModelT]:
    return [change(e) if e.id == entry_id else e for e in entries]  # type: ignore[attr-defined]
