"""Financial state calculator.

Derives an invoice's payment status from its total, due date and payment
records as of a reference date. Pure functions only: the reference date is
always passed in, the wall clock is never read here.

Rules:
- Effective paid total counts confirmed payments, plus scheduled
  installments whose date is on or before the reference date.
- PAID when the effective paid total reaches the total within one cent.
- Otherwise OVERDUE once the due date is strictly before the reference date.
- Otherwise OPEN.
"""

from collections.abc import Iterable
from datetime import date
from decimal import Decimal

from services.invoices.schema import Invoice, PaymentRecord, PaymentStatus

# Currency rounding tolerance for the PAID comparison
PAYMENT_TOLERANCE = Decimal("0.01")


def counts_as_paid(payment: PaymentRecord, as_of: date) -> bool:
    """Check whether a payment counts toward the effective paid total.

    Args:
        payment: Payment record
        as_of: Reference date ("today")

    Returns:
        True for confirmed payments and for scheduled ones already due
    """
    return not payment.is_scheduled or payment.date <= as_of


def effective_paid_total(payments: Iterable[PaymentRecord], as_of: date) -> Decimal:
    """Sum the payments that count as settled on ``as_of``.

    Args:
        payments: Payment records of one invoice
        as_of: Reference date

    Returns:
        Effective paid total (future scheduled installments excluded)
    """
    return sum(
        (p.amount for p in payments if counts_as_paid(p, as_of)),
        start=Decimal("0"),
    )


def derive_status(
    total_amount: Decimal,
    due_date: date,
    payments: Iterable[PaymentRecord],
    as_of: date,
) -> PaymentStatus:
    """Derive the payment status of an invoice.

    Args:
        total_amount: Document total
        due_date: Invoice due date
        payments: Payment records of the invoice
        as_of: Reference date

    Returns:
        PAID, OVERDUE or OPEN
    """
    paid = effective_paid_total(payments, as_of)
    if paid >= total_amount - PAYMENT_TOLERANCE:
        return PaymentStatus.PAID
    if due_date < as_of:
        return PaymentStatus.OVERDUE
    return PaymentStatus.OPEN


def derive_invoice_status(invoice: Invoice, as_of: date) -> PaymentStatus:
    """Convenience wrapper over derive_status for a stored invoice."""
    return derive_status(invoice.total_amount, invoice.due_date, invoice.payments, as_of)


def remaining_balance(invoice: Invoice, as_of: date) -> Decimal:
    """Amount still to be settled, never negative."""
    remaining = invoice.total_amount - effective_paid_total(invoice.payments, as_of)
    return max(remaining, Decimal("0"))
