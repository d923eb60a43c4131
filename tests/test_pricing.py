from decimal import Decimal

import pytest

from fulfillment.domain.models import OrderItem, ShippingMethod
from fulfillment.domain.money import PENDING, resolved
from fulfillment.domain.pricing import PricingEngine
from fulfillment.errors import ValidationError


@pytest.fixture
def items():
    return [
        OrderItem(product_id="p1", name="Pads", quantity=2, unit_price=Decimal("10")),
        OrderItem(product_id="p2", name="Hand wash", quantity=1, unit_price=Decimal("5")),
    ]


def test_subtotal_sums_line_totals(items):
    assert PricingEngine.compute_subtotal(items) == Decimal("25.00")


def test_pickup_is_priced_immediately(items):
    result = PricingEngine.price(items, ShippingMethod.PICKUP)

    assert result.subtotal == Decimal("25.00")
    assert result.shipping_cost == resolved(0)
    assert result.total_amount == resolved(25)
    assert result.delivery_fee_pending is False
    assert result.final_total_amount == Decimal("25.00")


def test_pickup_ignores_any_fee(items):
    result = PricingEngine.price(items, ShippingMethod.PICKUP, resolved_fee=Decimal("1500"))
    assert result.total_amount == resolved(25)


def test_delivery_without_fee_is_pending(items):
    result = PricingEngine.price(items, ShippingMethod.DELIVERY, tax_amount=Decimal("2"))

    assert result.shipping_cost == PENDING
    assert result.total_amount == PENDING
    assert result.delivery_fee_pending is True
    assert result.final_total_amount is None
    assert result.subtotal == Decimal("25.00")


def test_delivery_with_fee_adds_fee_tax_and_discount(items):
    result = PricingEngine.price(
        items,
        ShippingMethod.DELIVERY,
        tax_amount=Decimal("3.50"),
        discount_amount=Decimal("1.50"),
        resolved_fee=Decimal("1500"),
    )
    assert result.total_amount == resolved("1527.00")
    assert result.delivery_fee_pending is False


def test_stored_subtotal_wins_over_items(items):
    result = PricingEngine.price(
        items, ShippingMethod.DELIVERY, resolved_fee=Decimal("10"), subtotal=Decimal("20")
    )
    assert result.subtotal == Decimal("20.00")
    assert result.total_amount == resolved(30)


@pytest.mark.parametrize(
    "kwargs",
    [
        {"tax_amount": Decimal("-1")},
        {"discount_amount": Decimal("-1")},
        {"resolved_fee": Decimal("-5")},
    ],
)
def test_negative_inputs_are_rejected(items, kwargs):
    with pytest.raises(ValidationError):
        PricingEngine.price(items, ShippingMethod.DELIVERY, **kwargs)


def test_total_never_negative(items):
    with pytest.raises(ValidationError):
        PricingEngine.price(items, ShippingMethod.PICKUP, discount_amount=Decimal("30"))
