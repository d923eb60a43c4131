from datetime import datetime, timezone
from decimal import Decimal

import pytest

from fulfillment.domain.models import Order, OrderStatus, ShippingMethod
from fulfillment.domain.money import PENDING, resolved
from fulfillment.domain.reporting import period_window, sales_report, summarize_orders
from fulfillment.errors import ValidationError

NOW = datetime(2025, 3, 14, 9, 30, tzinfo=timezone.utc)


def order(total=None, status=OrderStatus.PENDING, created_at=NOW):
    if total is None:
        return Order(
            client_id="c1",
            shipping_method=ShippingMethod.DELIVERY,
            subtotal=Decimal("25.00"),
            shipping_cost=PENDING,
            total_amount=PENDING,
            delivery_fee_pending=True,
            status=status,
            created_at=created_at,
        )
    return Order(
        client_id="c1",
        shipping_method=ShippingMethod.PICKUP,
        subtotal=Decimal(total),
        shipping_cost=resolved(0),
        total_amount=resolved(total),
        final_total_amount=Decimal(total),
        status=status,
        created_at=created_at,
    )


def test_empty_summary():
    stats = summarize_orders([])
    assert stats.total_orders == 0
    assert stats.average_order_value == Decimal("0.00")
    assert stats.min_order_value is None
    assert stats.by_status == {}


def test_pending_totals_are_counted_but_never_summed():
    stats = summarize_orders(
        [
            order("10", OrderStatus.DELIVERED),
            order("20", OrderStatus.DELIVERED),
            order(None, OrderStatus.DELIVERED),
            order("7.50", OrderStatus.CANCELLED),
        ]
    )

    assert stats.total_orders == 4
    assert stats.completed_orders == 2
    assert stats.pending_delivery_fee_orders == 1
    assert stats.total_revenue == Decimal("30.00")
    assert stats.total_sales == Decimal("37.50")
    assert stats.average_order_value == Decimal("15.00")
    assert (stats.min_order_value, stats.max_order_value) == (Decimal("10.00"), Decimal("20.00"))
    assert stats.by_status[OrderStatus.DELIVERED].count == 3
    assert stats.by_status[OrderStatus.CANCELLED].revenue == Decimal("7.50")


@pytest.mark.parametrize("period, days", [("7d", 7), ("30d", 30), ("90d", 90), ("1y", 365)])
def test_period_window(period, days):
    start, end = period_window(period, NOW)
    assert end == NOW
    assert (end - start).days == days


def test_unknown_period_is_rejected():
    with pytest.raises(ValidationError) as exc:
        period_window("forever", NOW)
    assert exc.value.details["field"] == "period"


def test_sales_report_buckets_by_month_for_long_periods():
    orders = [
        order("10", created_at=datetime(2025, 1, 5, tzinfo=timezone.utc)),
        order("5", created_at=datetime(2025, 1, 20, tzinfo=timezone.utc)),
        order(None, created_at=datetime(2025, 3, 1, tzinfo=timezone.utc)),
        order("99", created_at=datetime(2023, 1, 1, tzinfo=timezone.utc)),
    ]

    report = sales_report(orders, "90d", NOW)

    assert [(b.date, b.sales, b.orders) for b in report.data] == [
        ("2025-01", Decimal("15.00"), 2),
        ("2025-03", Decimal("0.00"), 1),
    ]
    assert report.total_orders == 3
    assert report.total_sales == Decimal("15.00")
