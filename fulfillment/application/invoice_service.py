from datetime import datetime
from typing import Callable, Optional

from fulfillment.core_settings import Settings, get_settings
from fulfillment.domain import events
from fulfillment.domain.aggregate import OrderAggregate
from fulfillment.domain.models import (
    Invoice,
    InvoiceItem,
    InvoiceStatus,
    Payment,
    PaymentStatus,
    utcnow,
)
from fulfillment.domain.money import quantize
from fulfillment.errors import NotFoundError, StateError, ValidationError
from shared.core.logging_config import get_logger, workflow_context

from .ports import Attachment, ClientDirectory, EventBus, Notifier, PersistenceStore
from .schemas import PaymentCreate, StandaloneInvoiceCreate
from .service import attach_order_invoice, build_invoice_derivation
from .templates import render_invoice_email

logger = get_logger(__name__)

LEDGER_TO_ORDER_PAYMENT = {
    InvoiceStatus.PAID: PaymentStatus.PAID,
    InvoiceStatus.PARTIALLY_PAID: PaymentStatus.PARTIALLY_PAID,
}


class InvoiceService:
    def __init__(
        self,
        store: PersistenceStore,
        clients: ClientDirectory,
        notifier: Notifier,
        events_bus: EventBus,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.clients = clients
        self.notifier = notifier
        self.events = events_bus
        self.settings = settings or get_settings()
        self.clock = clock
        self.derivation = build_invoice_derivation(store, self.settings, clock)

    async def get_invoice(self, invoice_id: str) -> Invoice:
        invoice = await self.store.get_invoice(invoice_id)
        if invoice is None:
            raise NotFoundError("Invoice", invoice_id)
        if self.derivation.refresh_status(invoice):
            invoice = await self.store.update_invoice(invoice)
        return invoice

    async def get_invoice_for_order(self, order_id: str) -> Invoice:
        invoice = await self.store.get_invoice_by_order(order_id)
        if invoice is None:
            raise NotFoundError("Invoice for order", order_id)
        return invoice

    async def list_invoices(
        self, client_id: Optional[str] = None, status: Optional[InvoiceStatus] = None
    ) -> list[Invoice]:
        return await self.store.list_invoices(client_id=client_id, status=status)

    async def create_standalone_invoice(self, data: StandaloneInvoiceCreate) -> Invoice:
        client = await self.clients.resolve(data.client_id)
        if client is None:
            raise NotFoundError("Client", data.client_id)
        items = [
            InvoiceItem(
                product_id=line.product_id,
                name=line.name,
                quantity=line.quantity,
                unit=line.unit,
                unit_price=quantize(line.unit_price),
                total_price=quantize(line.unit_price * line.quantity),
            )
            for line in data.items
        ]
        invoice = await self.derivation.create_standalone(
            client,
            items,
            tax=data.tax,
            discount=data.discount,
            delivery_fee=data.delivery_fee,
            due_date=data.due_date,
            notes=data.notes,
            draft=data.draft,
        )
        invoice = await self.store.insert_invoice(invoice)
        with workflow_context(invoice_id=invoice.id):
            logger.info(f"Standalone invoice {invoice.invoice_number} created", client_id=client.id)
        self.events.emit(events.INVOICE_CREATED, self._payload(invoice))
        return invoice

    async def create_invoice_for_order(self, order_id: str) -> Invoice:
        """Issue the invoice of an order whose total is known but which has none.

        Recovers orders saved without an invoice because the invoice write failed.
        """
        if not order_id:
            raise ValidationError("order_id is required", details={"field": "order_id"})
        with workflow_context(order_id=order_id):
            order = await self.store.get_order(order_id)
            if order is None:
                raise NotFoundError("Order", order_id)
            if not order.is_total_resolved:
                raise StateError(
                    f"Order {order.order_number} is still waiting for its delivery fee", code="fee-pending"
                )
            client = await self.clients.resolve(order.client_id)
            if client is None:
                raise NotFoundError("Client", order.client_id)
            _, invoice = await attach_order_invoice(
                self.store, self.derivation, self.events, order, client, self.clock
            )
            return invoice

    async def record_payment(
        self, invoice_id: str, data: PaymentCreate, actor: Optional[str] = None
    ) -> Invoice:
        with workflow_context(invoice_id=invoice_id):
            invoice = await self.get_invoice(invoice_id)
            payment = Payment(
                amount=data.amount,
                method=data.method,
                reference=data.reference,
                date=data.date or self.clock(),
                notes=data.notes,
            )
            self.derivation.record_payment(invoice, payment)
            invoice = await self.store.update_invoice(invoice)
            logger.info(
                f"Payment recorded on invoice {invoice.invoice_number}",
                amount=str(payment.amount),
                paid_amount=str(invoice.paid_amount),
                status=invoice.status.value,
            )

            if invoice.order_id:
                await self._mirror_on_order(invoice, actor)

            payload = self._payload(invoice, payment_id=invoice.payments[-1].id, amount=float(payment.amount))
            self.events.emit(events.INVOICE_PAYMENT_RECORDED, payload)
            if invoice.status == InvoiceStatus.PAID:
                self.events.emit(events.INVOICE_PAID, payload)
            return invoice

    async def set_status(self, invoice_id: str, status: InvoiceStatus) -> Invoice:
        with workflow_context(invoice_id=invoice_id):
            invoice = await self.get_invoice(invoice_id)
            previous = invoice.status
            self.derivation.set_status(invoice, status)
            invoice = await self.store.update_invoice(invoice)
            logger.info(f"Invoice {invoice.invoice_number} status {previous.value} -> {invoice.status.value}")
            self.events.emit(
                events.INVOICE_STATUS_CHANGED, self._payload(invoice, previous_status=previous.value)
            )
            return invoice

    async def delete_invoice(self, invoice_id: str) -> bool:
        with workflow_context(invoice_id=invoice_id):
            invoice = await self.get_invoice(invoice_id)
            if invoice.status == InvoiceStatus.PAID:
                raise StateError(
                    f"Invoice {invoice.invoice_number} is paid and cannot be deleted", code="not-deletable"
                )
            await self.store.delete_invoice(invoice_id)
            logger.info(f"Invoice {invoice.invoice_number} deleted")
            self.events.emit(events.INVOICE_DELETED, self._payload(invoice))
            return True

    async def send_invoice(self, invoice_id: str) -> Invoice:
        """Mail the invoice PDF to the client now, in the caller's request."""
        with workflow_context(invoice_id=invoice_id):
            invoice = await self.get_invoice(invoice_id)
            recipient = invoice.client_info.email
            if not recipient:
                raise ValidationError(f"Client {invoice.client_info.name} has no e-mail address")

            attachments = []
            pdf = await self.notifier.render_invoice_pdf(invoice)
            if pdf:
                attachments.append(Attachment(filename=f"{invoice.invoice_number}.pdf", content=pdf))
            subject, body = render_invoice_email(invoice, self.settings.BUSINESS_NAME)
            if not await self.notifier.send_email(recipient, subject, body, attachments):
                raise StateError(f"Invoice {invoice.invoice_number} could not be sent", code="send-failed")

            invoice.last_sent_at = self.clock()
            invoice.updated_at = invoice.last_sent_at
            invoice = await self.store.update_invoice(invoice)
            logger.info(f"Invoice {invoice.invoice_number} sent")
            self.events.emit(events.INVOICE_SENT, self._payload(invoice))
            return invoice

    async def _mirror_on_order(self, invoice: Invoice, actor: Optional[str]) -> None:
        status = LEDGER_TO_ORDER_PAYMENT.get(invoice.status)
        if status is None:
            return
        order = await self.store.get_order(invoice.order_id)
        if order is None:
            logger.warning(f"Invoice {invoice.invoice_number} points at missing order {invoice.order_id}")
            return
        if order.payment_status == status:
            return
        aggregate = OrderAggregate(order, clock=self.clock)
        previous = order.status
        aggregate.record_payment_status(status, actor)
        order = await self.store.update_order(aggregate.order)
        payload = {
            "order_id": order.id,
            "order_number": order.order_number,
            "payment_status": order.payment_status.value,
            "status": order.status.value,
        }
        if order.status != previous:
            self.events.emit(events.ORDER_STATUS_CHANGED, dict(payload, previous_status=previous.value))
        self.events.emit(events.ORDER_UPDATED, payload)

    def _payload(self, invoice: Invoice, **extra) -> dict:
        payload = {
            "invoice_id": invoice.id,
            "invoice_number": invoice.invoice_number,
            "order_id": invoice.order_id,
            "status": invoice.status.value,
            "total_amount": float(invoice.total_amount),
            "paid_amount": float(invoice.paid_amount),
            "timestamp": self.clock(),
        }
        payload.update(extra)
        return payload
