import asyncio
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Callable, Optional

from fulfillment.core_settings import Settings, get_settings
from fulfillment.domain import events
from fulfillment.domain.aggregate import OrderAggregate
from fulfillment.domain.availability import AvailabilityValidator
from fulfillment.domain.invoicing import InvoiceDerivation
from fulfillment.domain.models import (
    BusinessInfo,
    ClientSnapshot,
    ContactInfo,
    Invoice,
    Order,
    OrderItem,
    OrderStatus,
    utcnow,
)
from fulfillment.domain.money import to_wire
from fulfillment.domain.reporting import OrderStats, SalesReport, period_window, sales_report, summarize_orders
from fulfillment.errors import NotFoundError, StateError
from shared.core.logging_config import get_logger, workflow_context

from .ports import Attachment, ClientDirectory, EventBus, Notifier, OrderFilters, PersistenceStore
from .schemas import OrderCreate
from .templates import (
    render_admin_new_order,
    render_delivery_fee_updated,
    render_order_confirmation,
)

logger = get_logger(__name__)

# Page size used when a query has to see every matching order
PAGE_SIZE = 500


def build_invoice_derivation(
    store: PersistenceStore, settings: Settings, clock: Callable[[], datetime] = utcnow
) -> InvoiceDerivation:
    return InvoiceDerivation(
        store,
        clock=clock,
        due_days=settings.INVOICE_DUE_DAYS,
        payment_terms=settings.INVOICE_PAYMENT_TERMS,
        business_info=BusinessInfo(name=settings.BUSINESS_NAME, email=settings.EMAIL_FROM),
    )


async def attach_order_invoice(
    store: PersistenceStore,
    derivation: InvoiceDerivation,
    events_bus: EventBus,
    order: Order,
    client: ClientSnapshot,
    clock: Callable[[], datetime] = utcnow,
) -> tuple[Order, Optional[Invoice]]:
    """Create, store and link the order's invoice once its total is known.

    Returns the order unchanged and ``None`` while the total is still pending.
    """
    existing = await store.get_invoice_by_order(order.id)
    if existing is not None:
        raise StateError(
            f"Invoice {existing.invoice_number} already exists for order {order.order_number}",
            code="invoice-exists",
        )
    invoice = await derivation.create_from_order(order, client)
    if invoice is None:
        return order, None

    invoice = await store.insert_invoice(invoice)
    aggregate = OrderAggregate(order, clock=clock)
    aggregate.link_invoice(invoice.id)
    order = await store.update_order(aggregate.order)
    with workflow_context(invoice_id=invoice.id):
        logger.info(
            f"Invoice {invoice.invoice_number} created for order {order.order_number}",
            total_amount=str(invoice.total_amount),
        )
    events_bus.emit(
        events.INVOICE_CREATED,
        {
            "invoice_id": invoice.id,
            "invoice_number": invoice.invoice_number,
            "order_id": order.id,
            "total_amount": float(invoice.total_amount),
        },
    )
    return order, invoice


class OrderWorkflowService:
    """Orchestrates order placement, delivery fee resolution and cancellation.

    Every call validates and prices through the domain layer before anything
    is written. Notifications run in background tasks once the write has
    succeeded; their failures are logged and never reach the caller.
    """

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
        self.validator = AvailabilityValidator(store)
        self.invoices = build_invoice_derivation(store, self.settings, clock)
        self._in_flight: set[asyncio.Task] = set()

    # Queries

    async def get_order(self, order_id: str) -> Order:
        order = await self.store.get_order(order_id)
        if order is None:
            raise NotFoundError("Order", order_id)
        return order

    async def list_orders(self, filters: Optional[OrderFilters] = None) -> list[Order]:
        return await self.store.list_orders(filters or OrderFilters())

    async def list_pending_delivery_fee(self) -> list[Order]:
        """Delivery orders still waiting for a fee, oldest first."""
        orders = await self._collect(OrderFilters(delivery_fee_pending=True))
        return sorted(
            (o for o in orders if o.status not in (OrderStatus.CANCELLED, OrderStatus.RETURNED)),
            key=lambda o: o.created_at,
        )

    async def recent_orders(self, limit: int = 10) -> list[Order]:
        return await self.store.list_orders(OrderFilters(limit=limit))

    async def order_stats(
        self, created_after: Optional[datetime] = None, created_before: Optional[datetime] = None
    ) -> OrderStats:
        orders = await self._collect(OrderFilters(created_after=created_after, created_before=created_before))
        return summarize_orders(orders)

    async def sales_data(self, period: str = "30d") -> SalesReport:
        """Sales per day (7d, 30d) or per month (90d, 1y) up to now."""
        now = self.clock()
        start, _ = period_window(period, now)
        orders = await self._collect(OrderFilters(created_after=start))
        return sales_report(orders, period, now)

    # Commands

    async def create_order(self, data: OrderCreate, actor: Optional[str] = None) -> Order:
        client = await self._resolve_client(data.client_id)
        snapshots = await self.validator.validate(data.items)

        items = [
            OrderItem(
                product_id=product.id,
                name=product.name,
                quantity=line.quantity,
                unit=product.unit,
                unit_price=line.unit_price if line.unit_price is not None else product.price_for(line.variant),
                variant=line.variant,
                notes=line.notes,
            )
            for line, product in zip(data.items, snapshots)
        ]
        contact = data.contact_info or ContactInfo(name=client.name, email=client.email, phone=client.phone)

        aggregate = OrderAggregate.create(
            client.id,
            items,
            data.shipping_method,
            data.tax_amount,
            data.discount_amount,
            products={product.id: product for product in snapshots},
            delivery_fee=data.delivery_fee,
            shipping_address=data.shipping_address,
            contact_info=contact,
            payment_method=data.payment_method,
            order_number=await self.generate_order_number(),
            notes=data.notes,
            delivery_notes=data.delivery_notes,
            actor=actor,
            clock=self.clock,
        )

        with workflow_context(order_id=aggregate.order.id):
            order = await self.store.insert_order(aggregate.order)
            logger.info(
                f"Order {order.order_number} created",
                client_id=order.client_id,
                total_amount=to_wire(order.total_amount),
                delivery_fee_pending=order.delivery_fee_pending,
            )

            invoice = None
            if order.is_total_resolved:
                order, invoice = await self._attach_invoice(order, client)

            self._dispatch(self._notify_order_created(order, client, invoice), "order-created")
            self.events.emit(events.ORDER_CREATED, self._order_payload(order, client_name=client.name))
            return order

    async def update_delivery_fee(
        self,
        order_id: str,
        fee,
        service: Optional[str] = None,
        actor: Optional[str] = None,
    ) -> Order:
        with workflow_context(order_id=order_id):
            aggregate = await self._load(order_id)
            order = aggregate.order
            if not order.delivery_fee_pending:
                raise StateError(
                    f"Order {order.order_number or order.id} has no pending delivery fee",
                    code="fee-not-pending",
                )
            client = await self._resolve_client(order.client_id)

            aggregate.update_delivery_fee(fee, service, actor)
            order = await self.store.update_order(aggregate.order)
            logger.info(
                f"Delivery fee set for order {order.order_number}",
                fee=to_wire(order.shipping_cost),
                total_amount=to_wire(order.total_amount),
                service=service,
            )

            invoice = None
            if order.invoice_id is None:
                order, invoice = await self._attach_invoice(order, client)
            else:
                invoice = await self.store.get_invoice(order.invoice_id)

            self._dispatch(self._notify_fee_updated(order, client, invoice), "delivery-fee-updated")
            payload = self._order_payload(order, delivery_fee=to_wire(order.shipping_cost), service=service)
            self.events.emit(events.ORDER_DELIVERY_FEE_UPDATED, payload)
            self.events.emit(events.ORDER_UPDATED, payload)
            return order

    async def update_status(
        self,
        order_id: str,
        status: OrderStatus,
        note: str = "",
        actor: Optional[str] = None,
    ) -> Order:
        with workflow_context(order_id=order_id):
            if OrderStatus(status) == OrderStatus.CANCELLED:
                return await self.cancel_order(order_id, note, actor)
            aggregate = await self._load(order_id)
            previous = aggregate.order.status
            aggregate.transition(status, note, actor)
            order = await self.store.update_order(aggregate.order)
            logger.info(f"Order {order.order_number} moved {previous.value} -> {order.status.value}")
            self._emit_status_change(order, previous)
            return order

    async def attach_tracking_number(
        self, order_id: str, tracking_number: str, actor: Optional[str] = None
    ) -> Order:
        with workflow_context(order_id=order_id):
            aggregate = await self._load(order_id)
            previous = aggregate.order.status
            aggregate.attach_tracking_number(tracking_number, actor)
            order = await self.store.update_order(aggregate.order)
            if order.status != previous:
                self._emit_status_change(order, previous)
            else:
                self.events.emit(events.ORDER_UPDATED, self._order_payload(order))
            return order

    async def apply_discount(
        self, order_id: str, amount, reason: str = "", actor: Optional[str] = None
    ) -> Order:
        with workflow_context(order_id=order_id):
            aggregate = await self._load(order_id)
            if aggregate.order.invoice_id is not None:
                # Invoice snapshots are frozen once issued
                raise StateError(
                    f"Order {aggregate.order.order_number} is already invoiced", code="invoiced"
                )
            aggregate.apply_discount(amount, reason, actor)
            order = await self.store.update_order(aggregate.order)
            logger.info(f"Discount applied to order {order.order_number}", discount=str(order.discount_amount))
            self.events.emit(events.ORDER_UPDATED, self._order_payload(order))
            return order

    async def set_delivery_date(
        self, order_id: str, date: datetime, time_slot: str = "", actor: Optional[str] = None
    ) -> Order:
        with workflow_context(order_id=order_id):
            aggregate = await self._load(order_id)
            if aggregate.state_machine.is_terminal(aggregate.order.status):
                raise StateError(
                    f"Order {aggregate.order.order_number} is {aggregate.order.status.value}",
                    code="illegal-transition",
                )
            aggregate.set_delivery_date(date, time_slot)
            order = await self.store.update_order(aggregate.order)
            logger.info(
                f"Delivery date set for order {order.order_number}",
                delivery_date=order.delivery_date.isoformat(),
                time_slot=time_slot,
                actor=actor,
            )
            self.events.emit(
                events.ORDER_UPDATED,
                self._order_payload(order, delivery_date=order.delivery_date, time_slot=time_slot),
            )
            return order

    async def cancel_order(self, order_id: str, reason: str = "", actor: Optional[str] = None) -> Order:
        with workflow_context(order_id=order_id):
            aggregate = await self._load(order_id)
            previous = aggregate.order.status
            aggregate.cancel(reason, actor)
            order = await self.store.update_order(aggregate.order)
            logger.info(f"Order {order.order_number} cancelled", previous_status=previous.value, reason=reason)
            payload = self._order_payload(order, reason=reason, previous_status=previous.value)
            self.events.emit(events.ORDER_CANCELLED, payload)
            self.events.emit(events.ORDER_UPDATED, payload)
            return order

    async def delete_order(self, order_id: str) -> bool:
        with workflow_context(order_id=order_id):
            aggregate = await self._load(order_id)
            aggregate.assert_deletable()
            deleted = await self.store.delete_order(order_id)
            if not deleted:
                raise NotFoundError("Order", order_id)
            logger.info(f"Order {aggregate.order.order_number} deleted")
            self.events.emit(
                events.ORDER_DELETED,
                {"order_id": order_id, "order_number": aggregate.order.order_number, "timestamp": self.clock()},
            )
            return True

    async def generate_order_number(self) -> str:
        now = self.clock()
        start = now.replace(hour=0, minute=0, second=0, microsecond=0)
        sequence = await self.store.count_orders_between(start, start + timedelta(days=1)) + 1
        number = f"ORD-{now:%Y%m%d}-{sequence:04d}"
        # Deleted orders leave gaps, so the count can land on a number still in use
        while await self.store.order_number_exists(number):
            sequence += 1
            number = f"ORD-{now:%Y%m%d}-{sequence:04d}"
        return number

    async def wait_for_notifications(self) -> None:
        """Wait until every background notification has finished."""
        while self._in_flight:
            await asyncio.gather(*list(self._in_flight), return_exceptions=True)

    # Internals

    async def _load(self, order_id: str) -> OrderAggregate:
        order = await self.get_order(order_id)
        return OrderAggregate(order, clock=self.clock)

    async def _resolve_client(self, client_id: str) -> ClientSnapshot:
        client = await self.clients.resolve(client_id)
        if client is None:
            raise NotFoundError("Client", client_id)
        return client

    async def _attach_invoice(self, order: Order, client: ClientSnapshot) -> tuple[Order, Optional[Invoice]]:
        try:
            return await attach_order_invoice(self.store, self.invoices, self.events, order, client, self.clock)
        except Exception:
            logger.error(
                f"Invoice for order {order.order_number} was not created; "
                f"retry with POST /invoices/order/{order.id}"
            )
            raise

    async def _collect(self, filters: OrderFilters) -> list[Order]:
        """Every order matching ``filters``, read one page at a time."""
        orders: list[Order] = []
        offset = 0
        while True:
            page = await self.store.list_orders(replace(filters, limit=PAGE_SIZE, offset=offset))
            orders.extend(page)
            if len(page) < PAGE_SIZE:
                return orders
            offset += PAGE_SIZE

    def _emit_status_change(self, order: Order, previous: OrderStatus) -> None:
        payload = self._order_payload(order, previous_status=previous.value)
        self.events.emit(events.ORDER_STATUS_CHANGED, payload)
        self.events.emit(events.ORDER_UPDATED, payload)

    def _order_payload(self, order: Order, **extra) -> dict:
        payload = {
            "order_id": order.id,
            "order_number": order.order_number,
            "client_id": order.client_id,
            "status": order.status.value,
            "total_amount": to_wire(order.total_amount),
            "delivery_fee_pending": order.delivery_fee_pending,
            "timestamp": self.clock(),
        }
        payload.update(extra)
        return payload

    # Notifications

    def _dispatch(self, coro, name: str) -> None:
        task = asyncio.create_task(self._guarded(coro, name))
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)

    async def _guarded(self, coro, name: str) -> None:
        try:
            await coro
        except Exception:
            logger.exception(f"Notification '{name}' failed")

    async def _invoice_attachments(self, invoice: Optional[Invoice]) -> list[Attachment]:
        if invoice is None:
            return []
        try:
            pdf = await self.notifier.render_invoice_pdf(invoice)
        except Exception:
            logger.exception(f"Could not render PDF for invoice {invoice.invoice_number}")
            return []
        if not pdf:
            return []
        return [Attachment(filename=f"{invoice.invoice_number}.pdf", content=pdf)]

    def _recipient(self, order: Order, client: ClientSnapshot) -> Optional[str]:
        if order.contact_info and order.contact_info.email:
            return order.contact_info.email
        return client.email

    async def _notify_order_created(
        self, order: Order, client: ClientSnapshot, invoice: Optional[Invoice]
    ) -> None:
        attachments = await self._invoice_attachments(invoice)

        recipient = self._recipient(order, client)
        if recipient:
            subject, body = render_order_confirmation(order, client.name, self.settings.BUSINESS_NAME)
            sent = await self.notifier.send_email(recipient, subject, body, attachments)
            if not sent:
                logger.warning(f"Order confirmation for {order.order_number} was not delivered")
        else:
            logger.warning(f"No e-mail address for client {client.id}; confirmation skipped")

        subject, body = render_admin_new_order(order, client.name)
        for admin in self.settings.admin_emails:
            if not await self.notifier.send_email(admin, subject, body, attachments):
                logger.warning(f"Admin notification for {order.order_number} was not delivered")

    async def _notify_fee_updated(
        self, order: Order, client: ClientSnapshot, invoice: Optional[Invoice]
    ) -> None:
        recipient = self._recipient(order, client)
        if not recipient:
            logger.warning(f"No e-mail address for client {client.id}; fee notice skipped")
            return
        attachments = await self._invoice_attachments(invoice)
        subject, body = render_delivery_fee_updated(order, client.name, self.settings.BUSINESS_NAME)
        if not await self.notifier.send_email(recipient, subject, body, attachments):
            logger.warning(f"Delivery fee notice for {order.order_number} was not delivered")
