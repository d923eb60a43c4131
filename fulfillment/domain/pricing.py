"""Order pricing: subtotal, delivery fee and total.

Pickup orders are priced immediately. Delivery orders without a known fee
get a pending (``"TBD"``) shipping cost and total until the fee is resolved.
"""
from decimal import Decimal
from typing import Iterable, Optional

from pydantic import BaseModel, ConfigDict

from fulfillment.errors import ValidationError
from .models import OrderItem, ShippingMethod
from .money import Amount, PENDING, ZERO, quantize, resolved


class PricingResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    subtotal: Decimal
    shipping_cost: Amount
    total_amount: Amount
    delivery_fee_pending: bool
    final_total_amount: Optional[Decimal] = None


def _non_negative(value, field: str) -> Decimal:
    try:
        amount = quantize(value if value is not None else ZERO)
    except ValueError as exc:
        raise ValidationError(str(exc), details={"field": field}) from exc
    if amount < 0:
        raise ValidationError(f"{field} cannot be negative", details={"field": field})
    return amount


class PricingEngine:

    @staticmethod
    def compute_subtotal(items: Iterable[OrderItem]) -> Decimal:
        total = ZERO
        for item in items:
            line = item.line_total
            if line is None:
                line = item.unit_price * item.quantity
            total += quantize(line)
        return quantize(total)

    @staticmethod
    def price(
        items: Iterable[OrderItem],
        shipping_method: ShippingMethod,
        tax_amount=ZERO,
        discount_amount=ZERO,
        resolved_fee=None,
        subtotal: Optional[Decimal] = None,
    ) -> PricingResult:
        """Price an order.

        ``subtotal`` is passed when re-pricing an order that already has a
        stored subtotal (resolving a pending delivery fee); the items are then
        not summed again, so later catalog price changes cannot leak in.
        """
        tax = _non_negative(tax_amount, "tax_amount")
        discount = _non_negative(discount_amount, "discount_amount")
        base = quantize(subtotal) if subtotal is not None else PricingEngine.compute_subtotal(items)

        if shipping_method == ShippingMethod.PICKUP:
            fee = ZERO
        elif resolved_fee is None:
            return PricingResult(
                subtotal=base,
                shipping_cost=PENDING,
                total_amount=PENDING,
                delivery_fee_pending=True,
                final_total_amount=None,
            )
        else:
            fee = _non_negative(resolved_fee, "delivery_fee")

        total = quantize(base + fee + tax - discount)
        if total < 0:
            raise ValidationError(
                f"Total amount cannot be negative (discount {discount} exceeds order value)",
                details={"field": "discount_amount"},
            )
        return PricingResult(
            subtotal=base,
            shipping_cost=resolved(fee),
            total_amount=resolved(total),
            delivery_fee_pending=False,
            final_total_amount=total,
        )
