from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.types import TypeDecorator

from fulfillment.domain.money import TBD, Pending, Resolved, from_wire


class Base(DeclarativeBase):
    pass


class AmountType(TypeDecorator):
    """Stores a resolved amount as decimal text and a pending one as ``TBD``."""

    impl = String(32)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if not isinstance(value, (Resolved, Pending)):
            value = from_wire(value)
        return TBD if isinstance(value, Pending) else str(value.amount)

    def process_result_value(self, value, dialect):
        return from_wire(value)


Money = Numeric(12, 2)


class OrderRecord(Base):
    __tablename__ = "orders"
    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    order_number: Mapped[Optional[str]] = mapped_column(String(50), unique=True, index=True)
    # Weak reference to clients/users, either table may hold the id
    client_id: Mapped[str] = mapped_column(String(64), index=True)
    status: Mapped[str] = mapped_column(String(30), index=True)
    payment_status: Mapped[str] = mapped_column(String(30))
    payment_method: Mapped[str] = mapped_column(String(30))
    shipping_method: Mapped[str] = mapped_column(String(30))
    shipping_address: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    contact_info: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    subtotal: Mapped[Decimal] = mapped_column(Money)
    shipping_cost = mapped_column(AmountType, nullable=False)
    tax_amount: Mapped[Decimal] = mapped_column(Money)
    discount_amount: Mapped[Decimal] = mapped_column(Money)
    total_amount = mapped_column(AmountType, nullable=False)
    delivery_fee_pending: Mapped[bool] = mapped_column(Boolean, index=True)
    calculated_delivery_fee: Mapped[Optional[Decimal]] = mapped_column(Money, nullable=True)
    final_total_amount: Mapped[Optional[Decimal]] = mapped_column(Money, nullable=True)
    delivery_service: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    notes: Mapped[str] = mapped_column(Text, default="")
    delivery_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    delivery_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    delivery_time_slot: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    tracking_number: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    cancel_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    status_history: Mapped[list] = mapped_column(JSON, default=list)
    invoice_id: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    version: Mapped[int] = mapped_column(Integer, default=1)

    items: Mapped[list["OrderItemRecord"]] = relationship(
        "OrderItemRecord",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItemRecord.position",
    )


class OrderItemRecord(Base):
    __tablename__ = "order_items"
    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    order_id: Mapped[str] = mapped_column(ForeignKey("orders.id", ondelete="CASCADE"), index=True)
    position: Mapped[int] = mapped_column(Integer)
    # Product snapshot captured at order time, no FK to products
    product_id: Mapped[str] = mapped_column(String(64))
    name: Mapped[str] = mapped_column(String(200))
    quantity: Mapped[int] = mapped_column(Integer)
    unit: Mapped[str] = mapped_column(String(30))
    unit_price: Mapped[Decimal] = mapped_column(Money)
    line_total: Mapped[Decimal] = mapped_column(Money)
    variant: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    order: Mapped[OrderRecord] = relationship("OrderRecord", back_populates="items")


class InvoiceRecord(Base):
    __tablename__ = "invoices"
    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    invoice_number: Mapped[str] = mapped_column(String(30), unique=True, index=True)
    type: Mapped[str] = mapped_column(String(20))
    order_id: Mapped[Optional[str]] = mapped_column(String(32), nullable=True, index=True)
    client_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    client_info: Mapped[dict] = mapped_column(JSON)
    business_info: Mapped[dict] = mapped_column(JSON)
    payment_details: Mapped[dict] = mapped_column(JSON)

    subtotal: Mapped[Decimal] = mapped_column(Money)
    tax: Mapped[Decimal] = mapped_column(Money)
    discount: Mapped[Decimal] = mapped_column(Money)
    delivery_fee: Mapped[Decimal] = mapped_column(Money)
    total_amount: Mapped[Decimal] = mapped_column(Money)
    paid_amount: Mapped[Decimal] = mapped_column(Money)
    # Append-only ledger
    payments: Mapped[list] = mapped_column(JSON, default=list)

    issue_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    due_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    status: Mapped[str] = mapped_column(String(30), index=True)
    payment_terms: Mapped[str] = mapped_column(String(200))
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    last_sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    version: Mapped[int] = mapped_column(Integer, default=1)

    items: Mapped[list["InvoiceItemRecord"]] = relationship(
        "InvoiceItemRecord",
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="InvoiceItemRecord.position",
    )


class InvoiceItemRecord(Base):
    __tablename__ = "invoice_items"
    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    invoice_id: Mapped[str] = mapped_column(ForeignKey("invoices.id", ondelete="CASCADE"), index=True)
    position: Mapped[int] = mapped_column(Integer)
    product_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    name: Mapped[str] = mapped_column(String(200))
    quantity: Mapped[int] = mapped_column(Integer)
    unit: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    unit_price: Mapped[Decimal] = mapped_column(Money)
    total_price: Mapped[Decimal] = mapped_column(Money)
    invoice: Mapped[InvoiceRecord] = relationship("InvoiceRecord", back_populates="items")


class ProductRecord(Base):
    __tablename__ = "products"
    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(200))
    unit: Mapped[str] = mapped_column(String(30), default="piece")
    price: Mapped[Decimal] = mapped_column(Money)
    stock_quantity: Mapped[int] = mapped_column(Integer, default=0)
    is_available: Mapped[bool] = mapped_column(Boolean, default=True)
    # {variant name: price}
    variants: Mapped[dict] = mapped_column(JSON, default=dict)


class ClientRecord(Base):
    __tablename__ = "clients"
    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(200))
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    address: Mapped[Optional[str]] = mapped_column(Text, nullable=True)


class UserRecord(Base):
    __tablename__ = "users"
    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    first_name: Mapped[str] = mapped_column(String(100))
    last_name: Mapped[str] = mapped_column(String(100), default="")
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    address: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
