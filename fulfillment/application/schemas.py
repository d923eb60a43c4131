from datetime import datetime
from decimal import Decimal
from typing import Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from fulfillment.domain.aggregate import OrderAggregate
from fulfillment.domain.availability import ItemRequest
from fulfillment.domain.models import (
    Address,
    ClientSnapshot,
    ContactInfo,
    Invoice,
    InvoiceStatus,
    InvoiceType,
    LedgerMethod,
    Order,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    ShippingMethod,
)
from fulfillment.domain.money import to_wire

WireAmount = Union[float, Literal["TBD"]]


def _display(value) -> Union[float, str]:
    return value if isinstance(value, str) else float(value)


class OrderItemCreate(ItemRequest):
    # Catalog price (variant price when given) is used when omitted
    unit_price: Optional[Decimal] = Field(default=None, ge=0)
    notes: Optional[str] = None


class OrderCreate(BaseModel):
    client_id: str
    items: list[OrderItemCreate]
    shipping_method: ShippingMethod = ShippingMethod.DELIVERY
    shipping_address: Optional[Address] = None
    contact_info: Optional[ContactInfo] = None
    payment_method: PaymentMethod = PaymentMethod.BANK_TRANSFER
    tax_amount: Decimal = Field(default=Decimal("0"), ge=0)
    discount_amount: Decimal = Field(default=Decimal("0"), ge=0)
    # Known delivery fee at order time; leave empty to price it later
    delivery_fee: Optional[Decimal] = Field(default=None, ge=0)
    notes: str = ""
    delivery_notes: Optional[str] = None


class DeliveryFeeUpdate(BaseModel):
    fee: Decimal
    service: Optional[str] = None


class StatusUpdate(BaseModel):
    status: OrderStatus
    note: str = ""


class TrackingUpdate(BaseModel):
    tracking_number: str


class DiscountUpdate(BaseModel):
    amount: Decimal
    reason: str = ""


class CancelRequest(BaseModel):
    reason: str = ""


class DeliveryDateUpdate(BaseModel):
    delivery_date: datetime
    time_slot: str = ""


class PaymentCreate(BaseModel):
    amount: Decimal
    method: LedgerMethod = LedgerMethod.OTHER
    reference: Optional[str] = None
    date: Optional[datetime] = None
    notes: Optional[str] = None


class InvoiceStatusUpdate(BaseModel):
    status: InvoiceStatus


class InvoiceItemCreate(BaseModel):
    product_id: Optional[str] = None
    name: str
    quantity: int = Field(gt=0)
    unit: Optional[str] = None
    unit_price: Decimal = Field(ge=0)


class StandaloneInvoiceCreate(BaseModel):
    client_id: str
    items: list[InvoiceItemCreate]
    tax: Decimal = Decimal("0")
    discount: Decimal = Decimal("0")
    delivery_fee: Decimal = Decimal("0")
    due_date: Optional[datetime] = None
    notes: Optional[str] = None
    draft: bool = False


class StockAdjustment(BaseModel):
    # Positive removes stock, negative restocks
    quantity: int


class OrderItemRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    product_id: str
    name: str
    quantity: int
    unit: str
    unit_price: float
    line_total: float
    variant: Optional[str] = None


class StatusEntryRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    status: OrderStatus
    timestamp: datetime
    note: str
    actor: Optional[str] = None


class OrderRead(BaseModel):
    id: str
    order_number: Optional[str] = None
    client_id: str
    items: list[OrderItemRead]
    status: OrderStatus
    payment_status: PaymentStatus
    payment_method: PaymentMethod
    shipping_method: ShippingMethod
    shipping_address: Optional[Address] = None
    subtotal: float
    shipping_cost: WireAmount
    tax_amount: float
    discount_amount: float
    total_amount: WireAmount
    delivery_fee_pending: bool
    final_total_amount: Optional[float] = None
    delivery_service: Optional[str] = None
    delivery_date: Optional[datetime] = None
    delivery_time_slot: Optional[str] = None
    # Total, or "<subtotal> + delivery fee" while the fee is pending
    display_total: Union[float, str]
    tracking_number: Optional[str] = None
    notes: str = ""
    cancel_reason: Optional[str] = None
    status_history: list[StatusEntryRead]
    invoice_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_domain(cls, order: Order) -> "OrderRead":
        data = order.model_dump(exclude={"shipping_cost", "total_amount", "items", "status_history"})
        return cls(
            **data,
            items=[OrderItemRead.model_validate(item) for item in order.items],
            status_history=[StatusEntryRead.model_validate(e) for e in order.status_history],
            shipping_cost=to_wire(order.shipping_cost),
            total_amount=to_wire(order.total_amount),
            display_total=_display(OrderAggregate(order).display_total()),
        )


class OrderMetricsRead(BaseModel):
    total_quantity: int
    unique_products_count: int
    subtotal: float
    shipping_cost: WireAmount
    total_amount: WireAmount
    delivery_fee_pending: bool
    final_total_amount: Optional[float] = None

    @classmethod
    def from_domain(cls, order: Order) -> "OrderMetricsRead":
        metrics = OrderAggregate(order).metrics()
        metrics["shipping_cost"] = to_wire(metrics["shipping_cost"])
        metrics["total_amount"] = to_wire(metrics["total_amount"])
        return cls(**metrics)


class StatusBreakdownRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    count: int
    revenue: float


class OrderStatsRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    total_orders: int
    completed_orders: int
    pending_delivery_fee_orders: int
    total_revenue: float
    total_sales: float
    average_order_value: float
    min_order_value: Optional[float] = None
    max_order_value: Optional[float] = None
    by_status: dict[OrderStatus, StatusBreakdownRead]


class SalesBucketRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    date: str
    sales: float
    orders: int


class SalesReportRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    period: str
    start: datetime
    end: datetime
    data: list[SalesBucketRead]
    total_sales: float
    total_orders: int


class PaymentRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    amount: float
    method: LedgerMethod
    reference: Optional[str] = None
    date: datetime
    notes: Optional[str] = None


class InvoiceItemRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    product_id: Optional[str] = None
    name: str
    quantity: int
    unit: Optional[str] = None
    unit_price: float
    total_price: float


class InvoiceRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    invoice_number: str
    type: InvoiceType
    order_id: Optional[str] = None
    client_id: Optional[str] = None
    client_info: ClientSnapshot
    items: list[InvoiceItemRead]
    subtotal: float
    tax: float
    discount: float
    delivery_fee: float
    total_amount: float
    paid_amount: float
    balance: float
    payments: list[PaymentRead]
    issue_date: datetime
    due_date: Optional[datetime] = None
    status: InvoiceStatus
    payment_terms: str
    notes: Optional[str] = None
    last_sent_at: Optional[datetime] = None

    @classmethod
    def from_domain(cls, invoice: Invoice) -> "InvoiceRead":
        return cls.model_validate(invoice)
