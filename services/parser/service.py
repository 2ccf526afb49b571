"""Tax document parser for NF-e and NFS-e XML.

Turns one raw XML buffer into a DraftInvoice: issuer block, line items,
payment schedule and totals. It knows nothing about existing suppliers or
invoices and never derives payment status; drafts always start OPEN and
WAITING.

Both document families share one extraction strategy. Each field has an
ordered list of candidate tags per family and the first non-empty match
wins, so NF-e tags are preferred and service-invoice tags act as fallbacks.
Tags are matched by local name, which makes the default NF-e namespace
(http://www.portalfiscal.inf.br/nfe) irrelevant.

Based on lxml element tree API:
https://lxml.de/tutorial.html
"""

import logging
import re
from datetime import date
from decimal import Decimal, InvalidOperation

from lxml import etree

from services.invoices.schema import (
    DocumentType,
    DraftInvoice,
    FinancialStatus,
    LineItem,
    PaymentCondition,
    PaymentMethod,
    PaymentRecord,
    PaymentStatus,
    SupplierData,
)

logger = logging.getLogger(__name__)

_XML_DECLARATION = re.compile(r"^\s*<\?xml[^>]*\?>")

# Root marker of the product-invoice family
NFE_MARKER = "infNFe"

IMPORT_NOTE = "Importado via XML"
SINGLE_INSTALLMENT_NOTE = "Parcela única (XML)"

_NFE_TAGS: dict[str, tuple[str, ...]] = {
    "issuer": ("emit",),
    "legal_name": ("xNome",),
    "trade_name": ("xFant",),
    "company_id": ("CNPJ",),
    "person_id": ("CPF",),
    "number": ("nNF", "numero"),
    "series": ("serie",),
    "access_key": ("chNFe",),
    "issue_date": ("dhEmi", "dEmi"),
    "total": ("vNF", "vServ"),
    "taxes": ("vTotTrib",),
    "totals": ("ICMSTot", "total"),
    "due_date": ("dVenc",),
}

FIELD_TAGS: dict[DocumentType, dict[str, tuple[str, ...]]] = {
    DocumentType.NFE: _NFE_TAGS,
    DocumentType.NFSE: {
        "issuer": ("emit", "prest", "PrestadorServico", "Prestador"),
        "legal_name": ("xNome", "RazaoSocial"),
        "trade_name": ("xFant", "NomeFantasia"),
        "company_id": ("CNPJ", "Cnpj"),
        "person_id": ("CPF", "Cpf"),
        "number": ("nNF", "numero", "Numero", "nNFSe"),
        "series": ("serie", "Serie"),
        "access_key": ("chNFe", "chNFSe"),
        "issue_date": ("dhEmi", "dEmi", "DataEmissao"),
        "total": ("vNF", "vServ", "ValorServicos"),
        "taxes": ("vTotTrib", "vTotalRet"),
        "totals": ("ICMSTot", "total"),
        "due_date": ("dVenc",),
    },
}

# NF-e <tPag> payment type codes
PAYMENT_TYPE_CODES: dict[str, PaymentMethod] = {
    "01": PaymentMethod.CASH,
    "03": PaymentMethod.CARD,
    "04": PaymentMethod.CARD,
    "15": PaymentMethod.BOLETO,
    "16": PaymentMethod.TRANSFER,
    "17": PaymentMethod.PIX,
    "18": PaymentMethod.TRANSFER,
}


class ParseError(ValueError):
    """Raised when a document is malformed or structurally incomplete."""


class DocumentParser:
    """Parser for NF-e / NFS-e XML documents."""

    def __init__(self) -> None:
        """Initialize parser with a hardened lxml XMLParser."""
        self._xml_parser = etree.XMLParser(
            resolve_entities=False,
            no_network=True,
            remove_comments=True,
        )

    def parse(self, raw_xml: str | bytes) -> DraftInvoice:
        """Parse one tax document into a draft invoice.

        Args:
            raw_xml: Document content, as text or raw bytes

        Returns:
            DraftInvoice with supplier block, items and scheduled payments

        Raises:
            ParseError: If the XML is malformed or lacks an issuer block or issue date
        """
        root = self._load(raw_xml)

        if _first(root, NFE_MARKER, include_self=True) is not None:
            document_type = DocumentType.NFE
        else:
            document_type = DocumentType.NFSE
        tags = FIELD_TAGS[document_type]
        logger.debug(f"Detected document family: {document_type}")

        issuer = _first_of(root, tags["issuer"])
        if issuer is None:
            raise ParseError("Document has no issuer block")

        supplier = SupplierData(
            legal_name=_text(issuer, tags["legal_name"]),
            trade_name=_text(issuer, tags["trade_name"]) or None,
            tax_id=_text(issuer, tags["company_id"]) or _text(issuer, tags["person_id"]),
        )

        issue_text = _text(root, tags["issue_date"], include_self=True)
        issue_date = _to_date(issue_text)
        if issue_date is None:
            raise ParseError(f"Document has no valid issue date: {issue_text!r}")

        total_amount = _to_decimal(_text(root, tags["total"], include_self=True), "total")
        taxes = _to_decimal(_totals_text(root, tags, "taxes"), "taxes")
        payment_method = _payment_method(root)

        payments = self._parse_schedule(root, tags, issue_date, total_amount, payment_method)
        due_date = min(p.date for p in payments)

        return DraftInvoice(
            supplier=supplier,
            invoice_number=_text(root, tags["number"], include_self=True),
            series=_text(root, tags["series"], include_self=True),
            access_key=_access_key(root, tags),
            issue_date=issue_date,
            due_date=due_date,
            total_amount=total_amount,
            taxes=taxes,
            document_type=document_type,
            destination="",
            payment_method=payment_method,
            payment_condition=(
                PaymentCondition.INSTALLMENTS if len(payments) > 1 else PaymentCondition.CASH
            ),
            installments=len(payments),
            financial_status=FinancialStatus.WAITING,
            status=PaymentStatus.OPEN,
            notes=IMPORT_NOTE,
            items=self._parse_items(root),
            payments=payments,
        )

    def _load(self, raw_xml: str | bytes) -> etree._Element:
        if isinstance(raw_xml, str):
            # lxml refuses unicode input that still carries an encoding declaration
            raw_xml = _XML_DECLARATION.sub("", raw_xml.lstrip("\ufeff"), count=1)
        if not raw_xml or not raw_xml.strip():
            raise ParseError("Empty document")
        try:
            return etree.fromstring(raw_xml, self._xml_parser)
        except etree.XMLSyntaxError as e:
            raise ParseError(f"Malformed XML: {e}") from e

    @staticmethod
    def _parse_items(root: etree._Element) -> list[LineItem]:
        items: list[LineItem] = []
        for det in _all(root, "det"):
            prod = _first(det, "prod")
            if prod is None:
                continue
            items.append(
                LineItem(
                    description=_text(prod, ("xProd",)),
                    quantity=_to_decimal(_text(prod, ("qCom",)), "qCom"),
                    unit_value=_to_decimal(_text(prod, ("vUnCom",)), "vUnCom"),
                    total_value=_to_decimal(_text(prod, ("vProd",)), "vProd"),
                    cfop=_text(prod, ("CFOP",)) or None,
                    ncm=_text(prod, ("NCM",)) or None,
                )
            )
        return items

    @staticmethod
    def _parse_schedule(
        root: etree._Element,
        tags: dict[str, tuple[str, ...]],
        issue_date: date,
        total_amount: Decimal,
        method: PaymentMethod,
    ) -> list[PaymentRecord]:
        """Build the scheduled payments from <dup> installments.

        Without installments a single payment for the full total is
        synthesized, dated at the document due date or the issue date.
        """
        duplicates = _all(root, "dup")
        if not duplicates:
            due_date = _to_date(_text(root, tags["due_date"], include_self=True)) or issue_date
            return [
                PaymentRecord(
                    date=due_date,
                    amount=total_amount,
                    method=method,
                    notes=SINGLE_INSTALLMENT_NOTE,
                    is_scheduled=True,
                )
            ]

        payments: list[PaymentRecord] = []
        for dup in duplicates:
            label = _text(dup, ("nDup",))
            due_date = _to_date(_text(dup, ("dVenc",)))
            if due_date is None:
                logger.warning(f"Installment {label!r} has no valid dVenc, using issue date")
                due_date = issue_date
            payments.append(
                PaymentRecord(
                    date=due_date,
                    amount=_to_decimal(_text(dup, ("vDup",)), "vDup"),
                    method=method,
                    notes=f"Parcela {label}",
                    is_scheduled=True,
                )
            )
        return payments


def parse_document(raw_xml: str | bytes) -> DraftInvoice:
    """Parse a document with a fresh DocumentParser."""
    return DocumentParser().parse(raw_xml)


def _axis(include_self: bool) -> str:
    return "descendant-or-self" if include_self else "descendant"


def _all(node: etree._Element, tag: str) -> list[etree._Element]:
    return node.xpath("descendant::*[local-name()=$name]", name=tag)


def _first(node: etree._Element, tag: str, include_self: bool = False) -> etree._Element | None:
    matches = node.xpath(f"{_axis(include_self)}::*[local-name()=$name][1]", name=tag)
    return matches[0] if matches else None


def _first_of(node: etree._Element, tags: tuple[str, ...]) -> etree._Element | None:
    for tag in tags:
        element = _first(node, tag, include_self=True)
        if element is not None:
            return element
    return None


def _text(node: etree._Element, tags: tuple[str, ...], include_self: bool = False) -> str:
    """Return the text of the first element matching any tag, in preference order.

    A present but empty element falls through to the next candidate tag.
    """
    for tag in tags:
        element = _first(node, tag, include_self=include_self)
        if element is None:
            continue
        value = "".join(element.itertext()).strip()
        if value:
            return value
    return ""


def _totals_text(root: etree._Element, tags: dict[str, tuple[str, ...]], key: str) -> str:
    """Read a document-level value, preferring the totals block over per-item copies."""
    totals = _first_of(root, tags["totals"])
    if totals is not None:
        value = _text(totals, tags[key])
        if value:
            return value
    return _text(root, tags[key], include_self=True)


def _to_decimal(value: str, field: str) -> Decimal:
    """Parse a decimal, degrading to zero on absent or unparsable input."""
    if not value:
        return Decimal("0")
    try:
        number = Decimal(value)
    except InvalidOperation:
        logger.warning(f"Unparsable {field} value {value!r}, defaulting to 0")
        return Decimal("0")
    if not number.is_finite():
        logger.warning(f"Non-finite {field} value {value!r}, defaulting to 0")
        return Decimal("0")
    return number


def _to_date(value: str) -> date | None:
    """Parse the date portion of an ISO date or datetime."""
    if not value:
        return None
    try:
        return date.fromisoformat(value[:10])
    except ValueError:
        return None


def _access_key(root: etree._Element, tags: dict[str, tuple[str, ...]]) -> str:
    key = _text(root, tags["access_key"], include_self=True)
    if key:
        return key
    marker = _first(root, NFE_MARKER, include_self=True)
    if marker is not None:
        identifier = (marker.get("Id") or "").strip()
        if identifier.startswith("NFe"):
            return identifier[3:]
    return ""


def _payment_method(root: etree._Element) -> PaymentMethod:
    code = _text(root, ("tPag",), include_self=True)
    if code and code not in PAYMENT_TYPE_CODES:
        logger.debug(f"Unknown tPag code {code!r}, defaulting to boleto")
    return PAYMENT_TYPE_CODES.get(code, PaymentMethod.BOLETO)
