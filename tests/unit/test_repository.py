"""Unit tests for the invoice repository.

Tests cover:
- Supplier and invoice CRUD
- Status re-derivation on every mutation and on load
- Payment and line item sub-operations
- Copy semantics and unknown-id no-ops
- Commit-after-save on storage failures
"""

from datetime import date
from decimal import Decimal
from unittest.mock import patch

import pytest

from services.invoices.schema import (
    Invoice,
    InvoiceCreate,
    LineItem,
    PayablesData,
    PaymentRecord,
    PaymentStatus,
    Supplier,
    SupplierData,
)
from services.repository.service import InvoiceRepository, merge_fields
from services.storage.base import StorageError, StorageResult
from services.storage.memory_storage import MemoryStorage
from tests.samples import TODAY


def supplier_data(tax_id: str = "12345678000190") -> SupplierData:
    return SupplierData(legal_name="Fornecedor Alfa LTDA", tax_id=tax_id)


def invoice_create(supplier_id: str, **overrides: object) -> InvoiceCreate:
    fields: dict[str, object] = {
        "supplier_id": supplier_id,
        "invoice_number": "1001",
        "access_key": "KEY-1001",
        "issue_date": date(2024, 5, 1),
        "due_date": date(2024, 7, 1),
        "total_amount": Decimal("500.00"),
    }
    fields.update(overrides)
    return InvoiceCreate(**fields)  # type: ignore[arg-type]


@pytest.fixture
def supplier(repository: InvoiceRepository) -> Supplier:
    return repository.add_supplier(supplier_data())


@pytest.fixture
def invoice(repository: InvoiceRepository, supplier: Supplier) -> Invoice:
    return repository.create_invoice(invoice_create(supplier.id))


class TestSuppliers:
    def test_add_supplier_assigns_id_and_persists(
        self, repository: InvoiceRepository, storage: MemoryStorage
    ) -> None:
        supplier = repository.add_supplier(supplier_data())

        assert supplier.id
        assert storage.load().suppliers == [supplier]

    def test_add_supplier_ignores_caller_identity(self, repository: InvoiceRepository) -> None:
        first = repository.add_supplier(Supplier(id="fixed", legal_name="A", tax_id="1"))
        second = repository.add_supplier(Supplier(id="fixed", legal_name="B", tax_id="2"))

        assert first.id != second.id

    def test_update_supplier(self, repository: InvoiceRepository, supplier: Supplier) -> None:
        repository.update_supplier(supplier.id, {"email": "contato@alfa.com.br", "id": "x"})

        updated = repository.get_supplier(supplier.id)
        assert updated is not None
        assert updated.email == "contato@alfa.com.br"
        assert updated.legal_name == supplier.legal_name

    def test_update_unknown_field_rejected(
        self, repository: InvoiceRepository, supplier: Supplier
    ) -> None:
        with pytest.raises(ValueError, match="Unknown Supplier fields"):
            repository.update_supplier(supplier.id, {"nickname": "alfa"})

    def test_update_unknown_supplier_is_noop(
        self, repository: InvoiceRepository, storage: MemoryStorage
    ) -> None:
        repository.update_supplier("missing", {"email": "x@y.z"})

        assert storage.save_count == 0

    def test_find_by_tax_id(self, repository: InvoiceRepository, supplier: Supplier) -> None:
        assert repository.find_supplier_by_tax_id("12345678000190") == supplier
        assert repository.find_supplier_by_tax_id("00000000000000") is None

    def test_empty_tax_id_matches_exactly(self, repository: InvoiceRepository) -> None:
        blank = repository.add_supplier(supplier_data(tax_id=""))
        repository.add_supplier(supplier_data())

        found = repository.find_supplier_by_tax_id("")
        assert found is not None
        assert found.id == blank.id


class TestInvoices:
    def test_create_derives_status(
        self, repository: InvoiceRepository, supplier: Supplier
    ) -> None:
        overdue = repository.create_invoice(
            invoice_create(supplier.id, due_date=date(2024, 1, 1), status=PaymentStatus.PAID)
        )

        assert overdue.status == PaymentStatus.OVERDUE

    def test_create_persists(
        self, repository: InvoiceRepository, storage: MemoryStorage, invoice: Invoice
    ) -> None:
        assert [i.id for i in storage.load().invoices] == [invoice.id]
        assert invoice.status == PaymentStatus.OPEN

    def test_add_invoice_alias(self, repository: InvoiceRepository, supplier: Supplier) -> None:
        created = repository.add_invoice(invoice_create(supplier.id))

        assert repository.get_invoice(created.id) == created

    def test_update_rederives_status(
        self, repository: InvoiceRepository, invoice: Invoice
    ) -> None:
        repository.update_invoice(invoice.id, {"due_date": date(2024, 5, 15)})

        updated = repository.get_invoice(invoice.id)
        assert updated is not None
        assert updated.due_date == date(2024, 5, 15)
        assert updated.status == PaymentStatus.OVERDUE

    def test_update_cannot_set_status_or_id(
        self, repository: InvoiceRepository, invoice: Invoice
    ) -> None:
        repository.update_invoice(invoice.id, {"status": PaymentStatus.PAID, "id": "other"})

        updated = repository.get_invoice(invoice.id)
        assert updated is not None
        assert updated.status == PaymentStatus.OPEN

    def test_update_with_invalid_value_rejected(
        self, repository: InvoiceRepository, invoice: Invoice
    ) -> None:
        with pytest.raises(ValueError):
            repository.update_invoice(invoice.id, {"installments": 0})

        assert repository.get_invoice(invoice.id) == invoice

    def test_update_unknown_invoice_is_noop(
        self, repository: InvoiceRepository, storage: MemoryStorage, invoice: Invoice
    ) -> None:
        saves = storage.save_count

        repository.update_invoice("missing", {"notes": "x"})

        assert storage.save_count == saves
        assert repository.invoices == [invoice]

    def test_delete_keeps_supplier(
        self, repository: InvoiceRepository, supplier: Supplier, invoice: Invoice
    ) -> None:
        repository.delete_invoice(invoice.id)

        assert repository.invoices == []
        assert repository.suppliers == [supplier]

    def test_delete_unknown_invoice_is_noop(
        self, repository: InvoiceRepository, storage: MemoryStorage, invoice: Invoice
    ) -> None:
        saves = storage.save_count

        repository.delete_invoice("missing")

        assert storage.save_count == saves

    def test_has_access_key(self, repository: InvoiceRepository, invoice: Invoice) -> None:
        assert repository.has_access_key("KEY-1001") is True
        assert repository.has_access_key("KEY-9999") is False

    def test_empty_access_key_never_present(
        self, repository: InvoiceRepository, supplier: Supplier
    ) -> None:
        repository.create_invoice(invoice_create(supplier.id, access_key=""))

        assert repository.has_access_key("") is False


class TestPayments:
    def test_full_payment_marks_paid(
        self, repository: InvoiceRepository, invoice: Invoice
    ) -> None:
        """Should flip to PAID once a confirmed payment covers the total."""
        stored = repository.add_payment(
            invoice.id, PaymentRecord(date=TODAY, amount=Decimal("500.00"))
        )

        assert stored is not None
        updated = repository.get_invoice(invoice.id)
        assert updated is not None
        assert updated.status == PaymentStatus.PAID
        assert updated.payments == [stored]

    def test_added_payment_is_always_confirmed(
        self, repository: InvoiceRepository, invoice: Invoice
    ) -> None:
        stored = repository.add_payment(
            invoice.id,
            PaymentRecord(date=date(2030, 1, 1), amount=Decimal("500"), is_scheduled=True),
        )

        assert stored is not None
        assert stored.is_scheduled is False
        updated = repository.get_invoice(invoice.id)
        assert updated is not None
        assert updated.status == PaymentStatus.PAID

    def test_add_payment_unknown_invoice(self, repository: InvoiceRepository) -> None:
        assert repository.add_payment("missing", PaymentRecord(date=TODAY, amount=1)) is None

    def test_edit_confirms_scheduled_payment(
        self, repository: InvoiceRepository, supplier: Supplier
    ) -> None:
        """Editing a future scheduled installment confirms it."""
        scheduled = PaymentRecord(date=date(2024, 9, 1), amount=Decimal("500"), is_scheduled=True)
        created = repository.create_invoice(invoice_create(supplier.id, payments=[scheduled]))
        assert created.status == PaymentStatus.OPEN

        repository.edit_payment(created.id, scheduled.id, {"notes": "pago antecipado"})

        updated = repository.get_invoice(created.id)
        assert updated is not None
        assert updated.payments[0].is_scheduled is False
        assert updated.payments[0].notes == "pago antecipado"
        assert updated.status == PaymentStatus.PAID

    def test_delete_payment_reopens_invoice(
        self, repository: InvoiceRepository, invoice: Invoice
    ) -> None:
        stored = repository.add_payment(
            invoice.id, PaymentRecord(date=TODAY, amount=Decimal("500"))
        )
        assert stored is not None

        repository.delete_payment(invoice.id, stored.id)

        updated = repository.get_invoice(invoice.id)
        assert updated is not None
        assert updated.payments == []
        assert updated.status == PaymentStatus.OPEN


class TestItems:
    def test_add_default_item(self, repository: InvoiceRepository, invoice: Invoice) -> None:
        item = repository.add_item(invoice.id)

        assert item is not None
        assert item.description == "Novo Item"
        assert item.quantity == Decimal("1")
        assert repository.get_invoice(invoice.id).items == [item]  # type: ignore[union-attr]

    def test_edit_quantity_recomputes_item_total(
        self, repository: InvoiceRepository, invoice: Invoice
    ) -> None:
        item = repository.add_item(
            invoice.id,
            LineItem(description="Cabo", quantity=Decimal("2"), unit_value=Decimal("10")),
        )
        assert item is not None

        repository.edit_item(invoice.id, item.id, {"quantity": Decimal("3")})

        updated = repository.get_invoice(invoice.id)
        assert updated is not None
        assert updated.items[0].total_value == Decimal("30")
        assert updated.total_amount == Decimal("500.00")

    def test_edit_description_keeps_total(
        self, repository: InvoiceRepository, invoice: Invoice
    ) -> None:
        item = repository.add_item(
            invoice.id, LineItem(description="Cabo", total_value=Decimal("99"))
        )
        assert item is not None

        repository.edit_item(invoice.id, item.id, {"description": "Cabo de rede"})

        updated = repository.get_invoice(invoice.id)
        assert updated is not None
        assert updated.items[0].description == "Cabo de rede"
        assert updated.items[0].total_value == Decimal("99")

    def test_delete_item(self, repository: InvoiceRepository, invoice: Invoice) -> None:
        item = repository.add_item(invoice.id)
        assert item is not None

        repository.delete_item(invoice.id, item.id)

        assert repository.get_invoice(invoice.id).items == []  # type: ignore[union-attr]


class TestReadsAndPersistence:
    def test_reads_return_copies(self, repository: InvoiceRepository, invoice: Invoice) -> None:
        snapshot = repository.get_invoice(invoice.id)
        assert snapshot is not None
        snapshot.payments.append(PaymentRecord(date=TODAY, amount=Decimal("500")))
        repository.invoices[0].notes = "mutated"

        fresh = repository.get_invoice(invoice.id)
        assert fresh is not None
        assert fresh.payments == []
        assert fresh.notes == ""

    def test_added_item_is_not_aliased(
        self, repository: InvoiceRepository, storage: MemoryStorage, invoice: Invoice
    ) -> None:
        item = LineItem(description="Cabo", quantity=Decimal("1"), unit_value=Decimal("10"))
        repository.add_item(invoice.id, item)

        item.description = "changed afterwards"

        current = repository.get_invoice(invoice.id)
        assert current is not None
        assert current.items[0].description == "Cabo"
        assert storage.load().invoices[0].items[0].description == "Cabo"

    def test_update_values_are_not_aliased(
        self, repository: InvoiceRepository, storage: MemoryStorage, invoice: Invoice
    ) -> None:
        payment = PaymentRecord(date=TODAY, amount=Decimal("500.00"))
        repository.update_invoice(invoice.id, {"payments": [payment]})

        payment.amount = Decimal("10")

        current = repository.get_invoice(invoice.id)
        assert current is not None
        assert current.payments[0].amount == Decimal("500.00")
        assert current.status == PaymentStatus.PAID
        assert storage.load().invoices[0].payments[0].amount == Decimal("500.00")

    def test_status_follows_clock(self, storage: MemoryStorage) -> None:
        """Reads re-derive status as of the current date."""
        clock = {"today": date(2024, 6, 1)}
        repository = InvoiceRepository(storage, today=lambda: clock["today"])
        created = repository.create_invoice(invoice_create("s1"))
        assert created.status == PaymentStatus.OPEN

        clock["today"] = date(2024, 7, 2)

        snapshot = repository.get_invoice(created.id)
        assert snapshot is not None
        assert snapshot.status == PaymentStatus.OVERDUE
        assert repository.invoices[0].status == PaymentStatus.OVERDUE

    def test_load_recomputes_stale_status(self) -> None:
        stale = Invoice(
            supplier_id="s1",
            issue_date=date(2024, 1, 1),
            due_date=date(2024, 1, 10),
            total_amount=Decimal("10"),
            status=PaymentStatus.OPEN,
        )
        storage = MemoryStorage(PayablesData(invoices=[stale]))

        repository = InvoiceRepository(storage, today=lambda: TODAY)

        assert repository.invoices[0].status == PaymentStatus.OVERDUE

    def test_state_survives_reload(
        self, storage: MemoryStorage, repository: InvoiceRepository, invoice: Invoice
    ) -> None:
        reloaded = InvoiceRepository(storage, today=lambda: TODAY)

        assert reloaded.invoices == [invoice]
        assert reloaded.suppliers == repository.suppliers

    def test_failed_save_leaves_memory_unchanged(
        self, repository: InvoiceRepository, storage: MemoryStorage, invoice: Invoice
    ) -> None:
        """Should raise StorageError and keep the previous state."""
        failure = StorageResult(success=False, location="memory", error="disk full")

        with patch.object(storage, "save", return_value=failure):
            with pytest.raises(StorageError, match="disk full"):
                repository.delete_invoice(invoice.id)

        assert repository.invoices == [invoice]


def test_merge_fields_validates() -> None:
    item = LineItem(description="A")

    merged = merge_fields(item, {"quantity": "2.5"})

    assert merged.quantity == Decimal("2.5")
    assert merged.id == item.id
    assert item.quantity == Decimal("0")
