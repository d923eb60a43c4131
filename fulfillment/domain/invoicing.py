"""Invoice derivation from priced orders, payment ledger and invoice status.

Invoice status is always recomputed from the ledger using this precedence:

    cancelled > paid > overdue > partially_paid > pending/draft
"""
from datetime import datetime, timedelta
from typing import Callable, Optional, Protocol, Sequence

from fulfillment.errors import StateError, ValidationError
from .models import (
    BusinessInfo,
    ClientSnapshot,
    Invoice,
    InvoiceItem,
    InvoiceStatus,
    InvoiceType,
    Order,
    Payment,
    PaymentDetails,
    utcnow,
)
from .money import ZERO, Resolved, quantize

MANUAL_STATUSES = frozenset({InvoiceStatus.DRAFT, InvoiceStatus.PENDING, InvoiceStatus.CANCELLED})


class InvoiceCounter(Protocol):
    async def count_invoices_between(self, start: datetime, end: datetime) -> int: ...
    async def invoice_number_exists(self, invoice_number: str) -> bool: ...


def month_window(moment: datetime) -> tuple[datetime, datetime]:
    start = moment.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    if start.month == 12:
        end = start.replace(year=start.year + 1, month=1)
    else:
        end = start.replace(month=start.month + 1)
    return start, end


def format_invoice_number(moment: datetime, sequence: int) -> str:
    return f"INV-{moment:%y}-{moment:%m}-{sequence:04d}"


def derive_status(invoice: Invoice, now: Optional[datetime] = None) -> InvoiceStatus:
    if invoice.status == InvoiceStatus.CANCELLED:
        return InvoiceStatus.CANCELLED
    if invoice.is_paid:
        return InvoiceStatus.PAID
    if invoice.is_overdue(now):
        return InvoiceStatus.OVERDUE
    if ZERO < invoice.paid_amount < invoice.total_amount:
        return InvoiceStatus.PARTIALLY_PAID
    if invoice.status == InvoiceStatus.DRAFT:
        return InvoiceStatus.DRAFT
    return InvoiceStatus.PENDING


class InvoiceDerivation:
    """Builds invoice snapshots and maintains their payment ledger.

    Invoice numbers are ``INV-YY-MM-NNNN`` where ``NNNN`` is the number of
    invoices already created in the same calendar month plus one, bumped past
    numbers still held after a deletion. Two concurrent creations in the same
    month can compute the same number; the store's unique constraint on
    ``invoice_number`` is the only backstop.
    """

    def __init__(
        self,
        counter: InvoiceCounter,
        clock: Callable[[], datetime] = utcnow,
        due_days: int = 7,
        payment_terms: str = "Payment due within 7 days",
        business_info: Optional[BusinessInfo] = None,
        payment_details: Optional[PaymentDetails] = None,
    ):
        self.counter = counter
        self.clock = clock
        self.due_days = due_days
        self.payment_terms = payment_terms
        self.business_info = business_info or BusinessInfo()
        self.payment_details = payment_details or PaymentDetails()

    async def generate_invoice_number(self) -> str:
        now = self.clock()
        start, end = month_window(now)
        sequence = await self.counter.count_invoices_between(start, end) + 1
        number = format_invoice_number(now, sequence)
        while await self.counter.invoice_number_exists(number):
            sequence += 1
            number = format_invoice_number(now, sequence)
        return number

    async def create_from_order(self, order: Order, client: ClientSnapshot) -> Optional[Invoice]:
        """Snapshot a priced order. Returns ``None`` while the total is pending."""
        if not isinstance(order.total_amount, Resolved):
            return None

        items = [
            InvoiceItem(
                product_id=item.product_id,
                name=f"{item.name} ({item.variant})" if item.variant else item.name,
                quantity=item.quantity,
                unit=item.unit,
                unit_price=item.unit_price,
                total_price=item.line_total,
            )
            for item in order.items
        ]
        delivery_fee = order.shipping_cost.amount if isinstance(order.shipping_cost, Resolved) else ZERO
        invoice_number = await self.generate_invoice_number()
        issue_date = self.clock()
        invoice = Invoice(
            invoice_number=invoice_number,
            type=InvoiceType.ORDER_BASED,
            order_id=order.id,
            client_id=order.client_id,
            client_info=client.model_copy(),
            business_info=self.business_info.model_copy(),
            items=items,
            subtotal=order.subtotal,
            tax=order.tax_amount,
            discount=order.discount_amount,
            delivery_fee=delivery_fee,
            total_amount=order.total_amount.amount,
            issue_date=issue_date,
            due_date=issue_date + timedelta(days=self.due_days),
            payment_terms=self.payment_terms,
            payment_details=self.payment_details.model_copy(),
            notes=f"Order #{order.order_number}" if order.order_number else None,
            created_at=issue_date,
            updated_at=issue_date,
        )
        invoice.status = derive_status(invoice, issue_date)
        return invoice

    async def create_standalone(
        self,
        client: ClientSnapshot,
        items: Sequence[InvoiceItem],
        tax=ZERO,
        discount=ZERO,
        delivery_fee=ZERO,
        due_date: Optional[datetime] = None,
        notes: Optional[str] = None,
        draft: bool = False,
    ) -> Invoice:
        if not items:
            raise ValidationError("Invoice must contain at least one item")
        try:
            tax, discount, delivery_fee = quantize(tax), quantize(discount), quantize(delivery_fee)
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc
        if min(tax, discount, delivery_fee) < 0:
            raise ValidationError("Invoice amounts cannot be negative")
        snapshot = [item.model_copy() for item in items]
        subtotal = quantize(sum((item.total_price for item in snapshot), ZERO))
        total = quantize(subtotal + tax + delivery_fee - discount)
        if total < 0:
            raise ValidationError("Invoice total cannot be negative")

        issue_date = self.clock()
        invoice = Invoice(
            invoice_number=await self.generate_invoice_number(),
            type=InvoiceType.STANDALONE,
            client_id=client.id,
            client_info=client.model_copy(),
            business_info=self.business_info.model_copy(),
            items=snapshot,
            subtotal=subtotal,
            tax=tax,
            discount=discount,
            delivery_fee=delivery_fee,
            total_amount=total,
            issue_date=issue_date,
            due_date=due_date or issue_date + timedelta(days=self.due_days),
            status=InvoiceStatus.DRAFT if draft else InvoiceStatus.PENDING,
            payment_terms=self.payment_terms,
            payment_details=self.payment_details.model_copy(),
            notes=notes,
            created_at=issue_date,
            updated_at=issue_date,
        )
        invoice.status = derive_status(invoice, issue_date)
        return invoice

    def record_payment(self, invoice: Invoice, payment: Payment) -> Invoice:
        """Append ``payment`` to the ledger; the invoice is untouched on failure."""
        try:
            amount = quantize(payment.amount)
        except ValueError as exc:
            raise ValidationError("Valid payment amount is required") from exc
        if amount <= 0:
            raise ValidationError("Payment amount must be greater than zero")
        if invoice.status == InvoiceStatus.CANCELLED:
            raise StateError(
                f"Invoice {invoice.invoice_number} is cancelled", code="invoice-cancelled"
            )
        if invoice.paid_amount + amount > invoice.total_amount:
            raise StateError(
                f"Payment of {amount} exceeds outstanding balance {invoice.balance}",
                code="overpayment",
                details={"balance": str(invoice.balance), "amount": str(amount)},
            )

        now = self.clock()
        invoice.payments.append(payment.model_copy(update={"amount": amount}))
        invoice.paid_amount = quantize(invoice.paid_amount + amount)
        invoice.status = derive_status(invoice, now)
        invoice.updated_at = now
        return invoice

    def refresh_status(self, invoice: Invoice) -> bool:
        """Re-apply the precedence rules; returns True when status changed."""
        status = derive_status(invoice, self.clock())
        if status == invoice.status:
            return False
        invoice.status = status
        invoice.updated_at = self.clock()
        return True

    def set_status(self, invoice: Invoice, status: InvoiceStatus) -> Invoice:
        try:
            status = InvoiceStatus(status)
        except ValueError as exc:
            raise ValidationError(f"Invalid invoice status: {status}") from exc
        if status not in MANUAL_STATUSES:
            raise ValidationError(
                f"Invoice status '{status.value}' is derived from payments and cannot be set directly"
            )
        invoice.status = status
        invoice.status = derive_status(invoice, self.clock())
        invoice.updated_at = self.clock()
        return invoice
