"""Interfaces of the collaborators the workflow talks to.

Concrete implementations live in ``fulfillment.infrastructure``; tests use
in-memory fakes.
"""
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Awaitable, Callable, Optional, Protocol, Sequence

from fulfillment.domain.models import (
    ClientSnapshot,
    Invoice,
    InvoiceStatus,
    Order,
    OrderStatus,
    ProductSnapshot,
)


@dataclass
class OrderFilters:
    client_id: Optional[str] = None
    status: Optional[OrderStatus] = None
    delivery_fee_pending: Optional[bool] = None
    created_after: Optional[datetime] = None
    created_before: Optional[datetime] = None
    # Total bounds only match resolved totals; pending ("TBD") orders never do
    min_total: Optional[Decimal] = None
    max_total: Optional[Decimal] = None
    limit: int = 50
    offset: int = 0


@dataclass
class Attachment:
    filename: str
    content: bytes
    content_type: str = "application/pdf"


class PersistenceStore(Protocol):
    # Orders
    async def get_order(self, order_id: str) -> Optional[Order]: ...
    async def insert_order(self, order: Order) -> Order: ...
    async def update_order(self, order: Order) -> Order:
        """Write ``order`` only if the stored version still equals ``order.version``."""
    async def delete_order(self, order_id: str) -> bool: ...
    async def list_orders(self, filters: OrderFilters) -> list[Order]: ...
    async def count_orders_between(self, start: datetime, end: datetime) -> int: ...
    async def order_number_exists(self, order_number: str) -> bool: ...

    # Invoices
    async def get_invoice(self, invoice_id: str) -> Optional[Invoice]: ...
    async def get_invoice_by_order(self, order_id: str) -> Optional[Invoice]: ...
    async def insert_invoice(self, invoice: Invoice) -> Invoice: ...
    async def update_invoice(self, invoice: Invoice) -> Invoice: ...
    async def delete_invoice(self, invoice_id: str) -> bool: ...
    async def list_invoices(
        self, client_id: Optional[str] = None, status: Optional[InvoiceStatus] = None
    ) -> list[Invoice]: ...
    async def count_invoices_between(self, start: datetime, end: datetime) -> int: ...
    async def invoice_number_exists(self, invoice_number: str) -> bool: ...

    # Products
    async def get_product(self, product_id: str) -> Optional[ProductSnapshot]: ...
    async def save_product(self, product: ProductSnapshot) -> ProductSnapshot: ...
    async def adjust_product(
        self, product_id: str, mutate: Callable[[ProductSnapshot], ProductSnapshot]
    ) -> ProductSnapshot:
        """Load, ``mutate`` and write one product inside a single transaction.

        Best effort: the row is locked where the backend supports it.
        """


class ClientDirectory(Protocol):
    async def resolve(self, client_id: str) -> Optional[ClientSnapshot]:
        """Look the id up in standalone clients first, then user accounts."""


class Notifier(Protocol):
    async def send_email(
        self,
        to: str,
        subject: str,
        body: str,
        attachments: Optional[Sequence[Attachment]] = None,
    ) -> bool: ...

    async def render_invoice_pdf(self, invoice: Invoice) -> Optional[bytes]: ...


EventHandler = Callable[[str, dict], Optional[Awaitable[None]]]


class EventBus(Protocol):
    def subscribe(self, event_name: str, handler: EventHandler) -> None: ...
    def emit(self, event_name: str, payload: dict) -> None:
        """Fire and forget; never raises into the caller."""
