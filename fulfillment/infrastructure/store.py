from datetime import datetime
from typing import Callable, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session, selectinload, sessionmaker

from fulfillment.application.ports import OrderFilters
from fulfillment.domain.models import (
    Invoice,
    InvoiceItem,
    InvoiceStatus,
    Order,
    OrderItem,
    ProductSnapshot,
)
from fulfillment.errors import NotFoundError, StateError

from .db import SessionRunner, as_utc
from .tables import (
    InvoiceItemRecord,
    InvoiceRecord,
    OrderItemRecord,
    OrderRecord,
    ProductRecord,
)

ORDER_DATETIMES = ("delivery_date", "cancelled_at", "created_at", "updated_at")
INVOICE_DATETIMES = ("issue_date", "due_date", "last_sent_at", "created_at", "updated_at")


def _order_columns(order: Order) -> dict:
    data = order.model_dump(
        exclude={"id", "items", "version", "shipping_cost", "total_amount", *ORDER_DATETIMES},
        mode="json",
    )
    for name in ("subtotal", "tax_amount", "discount_amount", "calculated_delivery_fee", "final_total_amount"):
        data[name] = getattr(order, name)
    for name in ORDER_DATETIMES:
        data[name] = as_utc(getattr(order, name))
    data["shipping_cost"] = order.shipping_cost
    data["total_amount"] = order.total_amount
    return data


def _order_items(order: Order) -> list[OrderItemRecord]:
    return [
        OrderItemRecord(
            order_id=order.id,
            position=position,
            product_id=item.product_id,
            name=item.name,
            quantity=item.quantity,
            unit=item.unit,
            unit_price=item.unit_price,
            line_total=item.line_total,
            variant=item.variant,
            notes=item.notes,
        )
        for position, item in enumerate(order.items)
    ]


def _order_from_record(record: OrderRecord) -> Order:
    data = {column.key: getattr(record, column.key) for column in OrderRecord.__table__.columns}
    for name in ORDER_DATETIMES:
        data[name] = as_utc(data[name])
    data["items"] = [
        OrderItem(
            product_id=item.product_id,
            name=item.name,
            quantity=item.quantity,
            unit=item.unit,
            unit_price=item.unit_price,
            line_total=item.line_total,
            variant=item.variant,
            notes=item.notes,
        )
        for item in record.items
    ]
    return Order.model_validate(data)


def _invoice_columns(invoice: Invoice) -> dict:
    data = invoice.model_dump(
        include={"invoice_number", "type", "order_id", "client_id", "client_info", "business_info",
                 "payment_details", "payments", "status", "payment_terms", "notes"},
        mode="json",
    )
    for name in ("subtotal", "tax", "discount", "delivery_fee", "total_amount", "paid_amount"):
        data[name] = getattr(invoice, name)
    for name in INVOICE_DATETIMES:
        data[name] = as_utc(getattr(invoice, name))
    return data


def _invoice_from_record(record: InvoiceRecord) -> Invoice:
    data = {column.key: getattr(record, column.key) for column in InvoiceRecord.__table__.columns}
    for name in INVOICE_DATETIMES:
        data[name] = as_utc(data[name])
    data["items"] = [
        InvoiceItem(
            product_id=item.product_id,
            name=item.name,
            quantity=item.quantity,
            unit=item.unit,
            unit_price=item.unit_price,
            total_price=item.total_price,
        )
        for item in record.items
    ]
    return Invoice.model_validate(data)


def _product_from_record(record: ProductRecord) -> ProductSnapshot:
    return ProductSnapshot(
        id=record.id,
        name=record.name,
        unit=record.unit,
        price=record.price,
        stock_quantity=record.stock_quantity,
        is_available=record.is_available,
        variants=record.variants or {},
    )


class SqlAlchemyStore(SessionRunner):
    """PersistenceStore over SQLAlchemy.

    Each call is one short transaction executed in Starlette's threadpool.
    Orders and invoices carry a version column; updates only apply when the
    caller's version still matches the stored one.
    """

    def __init__(self, session_factory: sessionmaker):
        super().__init__(session_factory)

    # Orders

    async def get_order(self, order_id: str) -> Optional[Order]:
        def work(session: Session):
            record = session.get(OrderRecord, order_id, options=[selectinload(OrderRecord.items)])
            return _order_from_record(record) if record else None
        return await self.run(work)

    async def insert_order(self, order: Order) -> Order:
        stored = order.model_copy(update={"version": 1})

        def work(session: Session):
            record = OrderRecord(id=stored.id, version=1, **_order_columns(stored))
            record.items = _order_items(stored)
            session.add(record)
            return stored
        return await self.run(work)

    async def update_order(self, order: Order) -> Order:
        stored = order.model_copy(update={"version": order.version + 1})

        def work(session: Session):
            result = session.execute(
                update(OrderRecord)
                .where(OrderRecord.id == order.id, OrderRecord.version == order.version)
                .values(version=stored.version, **_order_columns(stored))
            )
            if result.rowcount == 0:
                self._raise_missing_or_stale(session, OrderRecord, "Order", order.id)
            session.execute(delete(OrderItemRecord).where(OrderItemRecord.order_id == order.id))
            session.add_all(_order_items(stored))
            return stored
        return await self.run(work)

    async def delete_order(self, order_id: str) -> bool:
        def work(session: Session):
            record = session.get(OrderRecord, order_id)
            if record is None:
                return False
            session.delete(record)
            return True
        return await self.run(work)

    async def list_orders(self, filters: OrderFilters) -> list[Order]:
        def work(session: Session):
            stmt = select(OrderRecord).options(selectinload(OrderRecord.items))
            if filters.client_id:
                stmt = stmt.where(OrderRecord.client_id == filters.client_id)
            if filters.status:
                stmt = stmt.where(OrderRecord.status == filters.status.value)
            if filters.delivery_fee_pending is not None:
                stmt = stmt.where(OrderRecord.delivery_fee_pending == filters.delivery_fee_pending)
            if filters.created_after is not None:
                stmt = stmt.where(OrderRecord.created_at >= as_utc(filters.created_after))
            if filters.created_before is not None:
                stmt = stmt.where(OrderRecord.created_at < as_utc(filters.created_before))
            # final_total_amount is NULL while the total is pending
            if filters.min_total is not None:
                stmt = stmt.where(OrderRecord.final_total_amount >= filters.min_total)
            if filters.max_total is not None:
                stmt = stmt.where(OrderRecord.final_total_amount <= filters.max_total)
            stmt = stmt.order_by(OrderRecord.created_at.desc(), OrderRecord.id.desc())
            stmt = stmt.limit(filters.limit).offset(filters.offset)
            return [_order_from_record(r) for r in session.scalars(stmt).all()]
        return await self.run(work)

    async def count_orders_between(self, start: datetime, end: datetime) -> int:
        def work(session: Session):
            stmt = select(func.count(OrderRecord.id)).where(
                OrderRecord.created_at >= as_utc(start), OrderRecord.created_at < as_utc(end)
            )
            return session.scalar(stmt) or 0
        return await self.run(work)

    async def order_number_exists(self, order_number: str) -> bool:
        def work(session: Session):
            stmt = select(OrderRecord.id).where(OrderRecord.order_number == order_number).limit(1)
            return session.scalar(stmt) is not None
        return await self.run(work)

    # Invoices

    async def get_invoice(self, invoice_id: str) -> Optional[Invoice]:
        def work(session: Session):
            record = session.get(InvoiceRecord, invoice_id, options=[selectinload(InvoiceRecord.items)])
            return _invoice_from_record(record) if record else None
        return await self.run(work)

    async def get_invoice_by_order(self, order_id: str) -> Optional[Invoice]:
        def work(session: Session):
            stmt = (
                select(InvoiceRecord)
                .options(selectinload(InvoiceRecord.items))
                .where(InvoiceRecord.order_id == order_id)
                .limit(1)
            )
            record = session.scalars(stmt).first()
            return _invoice_from_record(record) if record else None
        return await self.run(work)

    async def insert_invoice(self, invoice: Invoice) -> Invoice:
        stored = invoice.model_copy(update={"version": 1})

        def work(session: Session):
            record = InvoiceRecord(id=stored.id, version=1, **_invoice_columns(stored))
            record.items = [
                InvoiceItemRecord(
                    invoice_id=stored.id,
                    position=position,
                    product_id=item.product_id,
                    name=item.name,
                    quantity=item.quantity,
                    unit=item.unit,
                    unit_price=item.unit_price,
                    total_price=item.total_price,
                )
                for position, item in enumerate(stored.items)
            ]
            session.add(record)
            return stored
        return await self.run(work)

    async def update_invoice(self, invoice: Invoice) -> Invoice:
        """Items are never rewritten; only totals, ledger and status change."""
        stored = invoice.model_copy(update={"version": invoice.version + 1})

        def work(session: Session):
            result = session.execute(
                update(InvoiceRecord)
                .where(InvoiceRecord.id == invoice.id, InvoiceRecord.version == invoice.version)
                .values(version=stored.version, **_invoice_columns(stored))
            )
            if result.rowcount == 0:
                self._raise_missing_or_stale(session, InvoiceRecord, "Invoice", invoice.id)
            return stored
        return await self.run(work)

    async def delete_invoice(self, invoice_id: str) -> bool:
        def work(session: Session):
            record = session.get(InvoiceRecord, invoice_id)
            if record is None:
                return False
            session.delete(record)
            return True
        return await self.run(work)

    async def list_invoices(
        self, client_id: Optional[str] = None, status: Optional[InvoiceStatus] = None
    ) -> list[Invoice]:
        def work(session: Session):
            stmt = select(InvoiceRecord).options(selectinload(InvoiceRecord.items))
            if client_id:
                stmt = stmt.where(InvoiceRecord.client_id == client_id)
            if status:
                stmt = stmt.where(InvoiceRecord.status == InvoiceStatus(status).value)
            stmt = stmt.order_by(InvoiceRecord.issue_date.desc())
            return [_invoice_from_record(r) for r in session.scalars(stmt).all()]
        return await self.run(work)

    async def count_invoices_between(self, start: datetime, end: datetime) -> int:
        def work(session: Session):
            stmt = select(func.count(InvoiceRecord.id)).where(
                InvoiceRecord.created_at >= as_utc(start), InvoiceRecord.created_at < as_utc(end)
            )
            return session.scalar(stmt) or 0
        return await self.run(work)

    async def invoice_number_exists(self, invoice_number: str) -> bool:
        def work(session: Session):
            stmt = select(InvoiceRecord.id).where(InvoiceRecord.invoice_number == invoice_number).limit(1)
            return session.scalar(stmt) is not None
        return await self.run(work)

    # Products

    async def get_product(self, product_id: str) -> Optional[ProductSnapshot]:
        def work(session: Session):
            record = session.get(ProductRecord, product_id)
            return _product_from_record(record) if record else None
        return await self.run(work)

    async def save_product(self, product: ProductSnapshot) -> ProductSnapshot:
        def work(session: Session):
            session.merge(ProductRecord(**product.model_dump(exclude={"variants"}), variants=self._variants(product)))
            return product
        return await self.run(work)

    async def adjust_product(
        self, product_id: str, mutate: Callable[[ProductSnapshot], ProductSnapshot]
    ) -> ProductSnapshot:
        def work(session: Session):
            # FOR UPDATE is ignored by backends without row locks
            record = session.get(ProductRecord, product_id, with_for_update=True)
            if record is None:
                raise NotFoundError("Product", product_id)
            product = mutate(_product_from_record(record))
            record.stock_quantity = product.stock_quantity
            record.is_available = product.is_available
            return product
        return await self.run(work)

    @staticmethod
    def _variants(product: ProductSnapshot) -> dict:
        return {name: str(price) for name, price in product.variants.items()}

    @staticmethod
    def _raise_missing_or_stale(session: Session, model, entity: str, entity_id: str) -> None:
        if session.get(model, entity_id) is None:
            raise NotFoundError(entity, entity_id)
        raise StateError(
            f"{entity} {entity_id} was modified concurrently; reload and retry",
            code="concurrent-update",
        )
