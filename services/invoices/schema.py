"""Accounts-payable data models.

Suppliers, invoices and everything an invoice owns (line items, payment
records, attachments), plus the draft produced by the document parser and
the single record that is persisted by the storage backends.

Enumerated values keep the labels used on the persisted record and in the
CSV export, so they are closed sets validated by Pydantic.
"""

import uuid
from datetime import date
from decimal import Decimal
from enum import StrEnum

from pydantic import BaseModel, Field


def new_id() -> str:
    """Generate a new entity identifier."""
    return str(uuid.uuid4())


class PaymentStatus(StrEnum):
    """Derived payment status. Computed by the ledger, never set by hand."""

    OPEN = "Em aberto"
    PAID = "Paga"
    OVERDUE = "Vencida"


class FinancialStatus(StrEnum):
    """Manually tracked paperwork progress of an invoice."""

    WAITING = "Aguardando"
    RECEIPT = "Comprovante Pagto"
    SENT = "Enviado"


class PaymentMethod(StrEnum):
    PIX = "Pix"
    BOLETO = "Boleto"
    CARD = "Cartão"
    TRANSFER = "Transferência"
    CASH = "Dinheiro"


class PaymentCondition(StrEnum):
    CASH = "À vista"
    INSTALLMENTS = "Parcelado"


class DocumentType(StrEnum):
    NFE = "NF-e"
    NFSE = "NFS-e"


class AttachmentType(StrEnum):
    BOLETO = "Boleto bancário"
    COMPROVANTE = "Comprovante de pagamento"
    OUTROS = "Outros documentos"


class SupplierStatus(StrEnum):
    ACTIVE = "Ativo"
    INACTIVE = "Inativo"


class Attachment(BaseModel):
    """Opaque reference to a stored file carried on an invoice."""

    id: str = Field(default_factory=new_id)
    name: str
    type: AttachmentType = AttachmentType.OUTROS
    description: str = ""
    upload_date: date
    url: str = Field(..., description="Reference to the stored binary content")
    mime_type: str = "application/octet-stream"


class PaymentRecord(BaseModel):
    """A payment against an invoice.

    Attributes:
        is_scheduled: True for installments programmed from the document's
            duplicate schedule, False for payments confirmed by a user
    """

    id: str = Field(default_factory=new_id)
    date: date
    amount: Decimal
    method: PaymentMethod = PaymentMethod.BOLETO
    notes: str = ""
    receipt_url: str | None = None
    is_scheduled: bool = False


class LineItem(BaseModel):
    id: str = Field(default_factory=new_id)
    description: str = ""
    quantity: Decimal = Decimal("0")
    unit_value: Decimal = Decimal("0")
    total_value: Decimal = Decimal("0")
    cfop: str | None = Field(None, description="Fiscal operation code")
    ncm: str | None = Field(None, description="Fiscal product classification")


class SupplierData(BaseModel):
    """Supplier attributes without identity.

    Used both for manual creation and as the issuer block of a parsed draft.
    Deduplication is keyed on ``tax_id`` (CNPJ or CPF), never on the id.
    """

    legal_name: str
    trade_name: str | None = None
    tax_id: str = Field(..., description="CNPJ or CPF digits as found in the document")
    email: str | None = None
    phone: str | None = None
    contact: str | None = None
    notes: str | None = None
    status: SupplierStatus = SupplierStatus.ACTIVE


class Supplier(SupplierData):
    id: str = Field(default_factory=new_id)


class InvoiceFields(BaseModel):
    """Fields shared by drafts, creation payloads and stored invoices."""

    invoice_number: str = ""
    series: str = ""
    access_key: str = Field("", description="Document key used for duplicate detection")
    issue_date: date
    due_date: date
    total_amount: Decimal = Decimal("0")
    taxes: Decimal = Decimal("0")
    document_type: DocumentType = DocumentType.NFE
    destination: str = ""
    payment_method: PaymentMethod = PaymentMethod.BOLETO
    payment_condition: PaymentCondition = PaymentCondition.CASH
    installments: int = Field(1, ge=1)
    financial_status: FinancialStatus = FinancialStatus.WAITING
    notes: str = ""
    items: list[LineItem] = Field(default_factory=list)
    payments: list[PaymentRecord] = Field(default_factory=list)
    attachments: list[Attachment] = Field(default_factory=list)


class InvoiceCreate(InvoiceFields):
    """Payload accepted by InvoiceRepository.create_invoice."""

    supplier_id: str


class Invoice(InvoiceCreate):
    """Stored invoice. ``status`` is a cache of the ledger's derivation."""

    id: str = Field(default_factory=new_id)
    status: PaymentStatus = PaymentStatus.OPEN


class DraftInvoice(InvoiceFields):
    """Parser output: invoice fields plus the embedded issuer block."""

    supplier: SupplierData
    status: PaymentStatus = PaymentStatus.OPEN

    def to_invoice_create(self, supplier_id: str) -> InvoiceCreate:
        """Drop the issuer block and attach a resolved supplier id.

        Args:
            supplier_id: Id of the matched or newly created supplier

        Returns:
            Creation payload carrying the parsed payment schedule and no attachments
        """
        fields = self.model_dump(exclude={"supplier", "status", "attachments"})
        return InvoiceCreate(supplier_id=supplier_id, attachments=[], **fields)


class PayablesData(BaseModel):
    """The single persisted record: every supplier and every invoice."""

    suppliers: list[Supplier] = Field(default_factory=list)
    invoices: list[Invoice] = Field(default_factory=list)
