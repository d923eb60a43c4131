from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional
import uuid

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .money import Amount, PENDING, ZERO, Resolved, quantize


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return uuid.uuid4().hex


class OrderStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    RETURNED = "returned"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    PARTIALLY_PAID = "partially_paid"
    REFUNDED = "refunded"
    FAILED = "failed"


class PaymentMethod(str, Enum):
    BANK_TRANSFER = "bank_transfer"
    CASH = "cash"
    CREDIT_CARD = "credit_card"
    ONLINE_PAYMENT = "online_payment"
    OTHER = "other"


class ShippingMethod(str, Enum):
    DELIVERY = "delivery"
    PICKUP = "pickup"


class InvoiceStatus(str, Enum):
    DRAFT = "draft"
    PENDING = "pending"
    PAID = "paid"
    PARTIALLY_PAID = "partially_paid"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"


class InvoiceType(str, Enum):
    STANDALONE = "standalone"
    ORDER_BASED = "order_based"


class LedgerMethod(str, Enum):
    """How an invoice payment was settled."""
    CASH = "cash"
    BANK_TRANSFER = "bank_transfer"
    MOBILE_MONEY = "mobile_money"
    CARD = "card"
    CHECK = "check"
    OTHER = "other"


class Address(BaseModel):
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = "Nigeria"
    postal_code: Optional[str] = None

    def one_line(self) -> str:
        parts = [self.street, self.city, self.state, self.postal_code, self.country]
        return ", ".join(p for p in parts if p)


class ContactInfo(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None


class ProductSnapshot(BaseModel):
    """Point-in-time view of a catalog product used for availability checks."""
    id: str
    name: str
    unit: str = "piece"
    price: Decimal = ZERO
    stock_quantity: int = 0
    is_available: bool = True
    variants: dict[str, Decimal] = Field(default_factory=dict)

    def price_for(self, variant: Optional[str] = None) -> Decimal:
        if variant and variant in self.variants:
            return quantize(self.variants[variant])
        return quantize(self.price)


class ClientSnapshot(BaseModel):
    """Client identity copied onto invoices; independent of the live record."""
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None


class OrderItem(BaseModel):
    product_id: str
    name: str
    quantity: int = Field(gt=0)
    unit: str = "piece"
    unit_price: Decimal = Field(ge=0)
    line_total: Optional[Decimal] = None
    variant: Optional[str] = None
    notes: Optional[str] = None

    @field_validator("unit_price")
    @classmethod
    def _quantize_price(cls, value: Decimal) -> Decimal:
        return quantize(value)

    @model_validator(mode="after")
    def _line_total_matches(self) -> "OrderItem":
        expected = quantize(self.unit_price * self.quantity)
        if self.line_total is None:
            self.line_total = expected
        elif quantize(self.line_total) != expected:
            raise ValueError(
                f"line_total {self.line_total} does not equal quantity x unit_price ({expected})"
            )
        return self


class StatusEntry(BaseModel):
    """One append-only audit record in an order's status history."""
    model_config = ConfigDict(frozen=True)

    status: OrderStatus
    timestamp: datetime
    note: str = ""
    actor: Optional[str] = None


class Order(BaseModel):
    id: str = Field(default_factory=new_id)
    order_number: Optional[str] = None
    client_id: str
    items: list[OrderItem]
    status: OrderStatus = OrderStatus.PENDING
    payment_status: PaymentStatus = PaymentStatus.PENDING
    payment_method: PaymentMethod = PaymentMethod.BANK_TRANSFER
    shipping_method: ShippingMethod = ShippingMethod.DELIVERY
    shipping_address: Optional[Address] = None
    contact_info: Optional[ContactInfo] = None

    subtotal: Decimal = ZERO
    shipping_cost: Amount = PENDING
    tax_amount: Decimal = ZERO
    discount_amount: Decimal = ZERO
    total_amount: Amount = PENDING
    delivery_fee_pending: bool = True
    calculated_delivery_fee: Optional[Decimal] = None
    final_total_amount: Optional[Decimal] = None
    delivery_service: Optional[str] = None

    notes: str = ""
    delivery_notes: Optional[str] = None
    delivery_date: Optional[datetime] = None
    delivery_time_slot: Optional[str] = None
    tracking_number: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    cancel_reason: Optional[str] = None

    status_history: list[StatusEntry] = Field(default_factory=list)
    invoice_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    version: int = 0

    @property
    def is_total_resolved(self) -> bool:
        return isinstance(self.total_amount, Resolved)


class InvoiceItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    product_id: Optional[str] = None
    name: str
    quantity: int = Field(ge=0)
    unit: Optional[str] = None
    unit_price: Decimal = Field(ge=0)
    total_price: Decimal = Field(ge=0)


class Payment(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    amount: Decimal
    method: LedgerMethod = LedgerMethod.OTHER
    reference: Optional[str] = None
    date: datetime = Field(default_factory=utcnow)
    notes: Optional[str] = None


class BusinessInfo(BaseModel):
    name: str = "SheCares"
    address: str = "Lagos, Nigeria"
    email: str = "contact@shecares.com"
    phone: Optional[str] = None


class PaymentDetails(BaseModel):
    bank_name: Optional[str] = None
    account_name: Optional[str] = None
    account_number: Optional[str] = None


class Invoice(BaseModel):
    id: str = Field(default_factory=new_id)
    invoice_number: str
    type: InvoiceType = InvoiceType.STANDALONE
    order_id: Optional[str] = None
    client_id: Optional[str] = None
    client_info: ClientSnapshot
    business_info: BusinessInfo = Field(default_factory=BusinessInfo)
    items: list[InvoiceItem] = Field(default_factory=list)

    subtotal: Decimal = ZERO
    tax: Decimal = ZERO
    discount: Decimal = ZERO
    delivery_fee: Decimal = ZERO
    total_amount: Decimal = ZERO
    paid_amount: Decimal = ZERO
    payments: list[Payment] = Field(default_factory=list)

    issue_date: datetime = Field(default_factory=utcnow)
    due_date: Optional[datetime] = None
    status: InvoiceStatus = InvoiceStatus.PENDING
    payment_terms: str = "Payment due within 7 days"
    payment_details: PaymentDetails = Field(default_factory=PaymentDetails)
    notes: Optional[str] = None
    last_sent_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    version: int = 0

    @property
    def balance(self) -> Decimal:
        return self.total_amount - self.paid_amount

    @property
    def is_paid(self) -> bool:
        return self.paid_amount >= self.total_amount

    def is_overdue(self, now: Optional[datetime] = None) -> bool:
        if self.due_date is None:
            return False
        return not self.is_paid and (now or utcnow()) > self.due_date
