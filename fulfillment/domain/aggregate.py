from datetime import datetime
from decimal import Decimal
from typing import Callable, Mapping, Optional, Sequence, Union

from fulfillment.errors import StateError, ValidationError
from .availability import check_item
from .models import (
    Address,
    ContactInfo,
    Order,
    OrderItem,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    ProductSnapshot,
    ShippingMethod,
    StatusEntry,
    utcnow,
)
from .money import ZERO, Resolved, amount_or_none, quantize
from .pricing import PricingEngine, PricingResult
from .state_machine import OrderStateMachine


class OrderAggregate:
    """An order together with the rules that mutate it.

    All pricing goes through :class:`PricingEngine` and all status changes
    through :class:`OrderStateMachine`; nothing here touches storage.
    """

    def __init__(
        self,
        order: Order,
        state_machine: Optional[OrderStateMachine] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.order = order
        self.clock = clock
        self.state_machine = state_machine or OrderStateMachine(clock)

    @classmethod
    def create(
        cls,
        client_id: str,
        items: Sequence[OrderItem],
        shipping_method: ShippingMethod,
        tax_amount=ZERO,
        discount_amount=ZERO,
        *,
        products: Optional[Mapping[str, ProductSnapshot]] = None,
        delivery_fee=None,
        shipping_address: Optional[Address] = None,
        contact_info: Optional[ContactInfo] = None,
        payment_method: PaymentMethod = PaymentMethod.BANK_TRANSFER,
        order_number: Optional[str] = None,
        notes: str = "",
        delivery_notes: Optional[str] = None,
        actor: Optional[str] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> "OrderAggregate":
        if not items:
            raise ValidationError("Order must contain at least one item")
        shipping_method = ShippingMethod(shipping_method)
        if shipping_method == ShippingMethod.DELIVERY and shipping_address is None:
            raise ValidationError("Delivery address is required for delivery orders")
        if products is not None:
            for item in items:
                product = products.get(item.product_id)
                if product is None:
                    raise ValidationError(f"No product snapshot for {item.product_id}")
                check_item(product, item.quantity, item.variant)

        pricing = PricingEngine.price(
            items,
            shipping_method,
            tax_amount=tax_amount,
            discount_amount=discount_amount,
            resolved_fee=delivery_fee,
        )
        now = clock()
        order = Order(
            client_id=client_id,
            order_number=order_number,
            items=[item.model_copy(deep=True) for item in items],
            shipping_method=shipping_method,
            shipping_address=shipping_address if shipping_method == ShippingMethod.DELIVERY else None,
            contact_info=contact_info,
            payment_method=payment_method,
            tax_amount=quantize(tax_amount),
            discount_amount=quantize(discount_amount),
            notes=notes or "",
            delivery_notes=delivery_notes,
            created_at=now,
            updated_at=now,
        )
        aggregate = cls(order, clock=clock)
        aggregate._apply_pricing(pricing)
        if delivery_fee is not None and shipping_method == ShippingMethod.DELIVERY:
            order.calculated_delivery_fee = pricing.shipping_cost.amount
        aggregate.state_machine.seed(order, "Order created", actor)
        return aggregate

    # Pricing

    def recalculate_totals(self) -> PricingResult:
        """Re-price from the current fields. Safe to call repeatedly."""
        order = self.order
        fee = amount_or_none(order.shipping_cost)
        # A fee resolved after creation keeps the subtotal it was resolved against.
        keep_subtotal = order.calculated_delivery_fee is not None and not order.delivery_fee_pending
        pricing = PricingEngine.price(
            order.items,
            order.shipping_method,
            tax_amount=order.tax_amount,
            discount_amount=order.discount_amount,
            resolved_fee=fee,
            subtotal=order.subtotal if keep_subtotal else None,
        )
        self._apply_pricing(pricing)
        return pricing

    def update_delivery_fee(self, fee, service: Optional[str] = None, actor: Optional[str] = None) -> StatusEntry:
        order = self.order
        if not order.delivery_fee_pending:
            raise StateError(
                f"Order {order.order_number or order.id} has no pending delivery fee",
                code="fee-not-pending",
            )
        try:
            fee = quantize(fee)
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc
        if fee < 0:
            raise StateError("Delivery fee must be a non-negative number", code="invalid-fee")

        pricing = PricingEngine.price(
            order.items,
            order.shipping_method,
            tax_amount=order.tax_amount,
            discount_amount=order.discount_amount,
            resolved_fee=fee,
            subtotal=order.subtotal,
        )
        self._apply_pricing(pricing)
        order.calculated_delivery_fee = fee
        if service:
            order.delivery_service = service
        note = f"Delivery fee updated: {fee:,.2f}"
        if service:
            note += f" ({service})"
        return self.state_machine.record(order, note, actor)

    def apply_discount(self, amount, reason: str = "", actor: Optional[str] = None) -> None:
        order = self.order
        if self.state_machine.is_terminal(order.status):
            raise StateError(f"Cannot discount a {order.status.value} order", code="illegal-transition")
        pricing = PricingEngine.price(
            order.items,
            order.shipping_method,
            tax_amount=order.tax_amount,
            discount_amount=amount,
            resolved_fee=amount_or_none(order.shipping_cost),
            subtotal=order.subtotal,
        )
        order.discount_amount = quantize(amount)
        self._apply_pricing(pricing)
        self.add_note(f"Discount applied: {order.discount_amount}. Reason: {reason}", actor or "system")

    def _apply_pricing(self, pricing: PricingResult) -> None:
        order = self.order
        order.subtotal = pricing.subtotal
        order.shipping_cost = pricing.shipping_cost
        order.total_amount = pricing.total_amount
        order.delivery_fee_pending = pricing.delivery_fee_pending
        order.final_total_amount = pricing.final_total_amount
        order.updated_at = self.clock()

    # Status

    def transition(self, target: OrderStatus, note: str = "", actor: Optional[str] = None) -> StatusEntry:
        return self.state_machine.transition(self.order, target, note, actor)

    def cancel(self, reason: str = "", actor: Optional[str] = None) -> StatusEntry:
        """Cancel regardless of payment state; the state machine decides legality."""
        entry = self.state_machine.transition(
            self.order, OrderStatus.CANCELLED, reason or "Order cancelled", actor
        )
        self.order.cancelled_at = entry.timestamp
        self.order.cancel_reason = reason
        return entry

    def attach_tracking_number(self, tracking_number: str, actor: Optional[str] = None) -> StatusEntry:
        return self.state_machine.attach_tracking(self.order, tracking_number, actor)

    def record_payment_status(self, status: PaymentStatus, actor: Optional[str] = None) -> None:
        order = self.order
        order.payment_status = PaymentStatus(status)
        order.updated_at = self.clock()
        if order.payment_status == PaymentStatus.PAID and order.status == OrderStatus.PENDING:
            self.state_machine.transition(order, OrderStatus.PROCESSING, "Payment received", actor)

    def assert_deletable(self) -> None:
        if self.order.status != OrderStatus.PENDING:
            raise StateError("Only pending orders can be deleted", code="not-deletable")

    # Details

    def set_delivery_date(self, date: datetime, time_slot: str = "") -> None:
        self.order.delivery_date = date
        self.order.delivery_time_slot = time_slot
        self.order.updated_at = self.clock()

    def add_note(self, note: str, author: str = "system") -> None:
        stamp = self.clock().isoformat()
        line = f"[{stamp}][{author}]: {note}"
        self.order.notes = f"{self.order.notes}\n{line}" if self.order.notes else line
        self.order.updated_at = self.clock()

    def link_invoice(self, invoice_id: str) -> None:
        self.order.invoice_id = invoice_id
        self.order.updated_at = self.clock()

    def display_total(self) -> Union[Decimal, str]:
        order = self.order
        if order.delivery_fee_pending or not isinstance(order.total_amount, Resolved):
            return f"{order.subtotal:,.2f} + delivery fee"
        return order.total_amount.amount

    def metrics(self) -> dict:
        order = self.order
        return {
            "total_quantity": sum(item.quantity for item in order.items),
            "unique_products_count": len({item.product_id for item in order.items}),
            "subtotal": order.subtotal,
            "shipping_cost": order.shipping_cost,
            "total_amount": order.total_amount,
            "delivery_fee_pending": order.delivery_fee_pending,
            "final_total_amount": order.final_total_amount,
        }
