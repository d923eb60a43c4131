"""Order statistics and sales series for the merchant dashboard.

Pending (TBD) totals never contribute money; such orders are still counted.
"""
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Iterable, Optional

from pydantic import BaseModel, Field

from fulfillment.errors import ValidationError
from .models import Order, OrderStatus
from .money import ZERO

SALES_PERIODS: dict[str, timedelta] = {
    "7d": timedelta(days=7),
    "30d": timedelta(days=30),
    "90d": timedelta(days=90),
    "1y": timedelta(days=365),
}

# Periods bucketed per day; anything longer is bucketed per month.
DAILY_PERIODS = frozenset({"7d", "30d"})


class StatusBreakdown(BaseModel):
    count: int = 0
    revenue: Decimal = ZERO


class OrderStats(BaseModel):
    total_orders: int = 0
    completed_orders: int = 0
    pending_delivery_fee_orders: int = 0
    total_revenue: Decimal = ZERO
    total_sales: Decimal = ZERO
    average_order_value: Decimal = ZERO
    min_order_value: Optional[Decimal] = None
    max_order_value: Optional[Decimal] = None
    by_status: dict[OrderStatus, StatusBreakdown] = Field(default_factory=dict)


class SalesBucket(BaseModel):
    date: str
    sales: Decimal = ZERO
    orders: int = 0


class SalesReport(BaseModel):
    period: str
    start: datetime
    end: datetime
    data: list[SalesBucket]
    total_sales: Decimal
    total_orders: int


def period_window(period: str, now: datetime) -> tuple[datetime, datetime]:
    try:
        span = SALES_PERIODS[period]
    except KeyError:
        raise ValidationError(
            f"Unknown sales period '{period}'",
            details={"field": "period", "allowed": sorted(SALES_PERIODS)},
        ) from None
    return now - span, now


def summarize_orders(orders: Iterable[Order]) -> OrderStats:
    """Fold orders into dashboard totals.

    Revenue and the order value figures only count delivered orders with a
    resolved total; sales count every resolved total.
    """
    stats = OrderStats()
    delivered_totals: list[Decimal] = []
    for order in orders:
        total = order.final_total_amount
        stats.total_orders += 1
        if order.delivery_fee_pending:
            stats.pending_delivery_fee_orders += 1

        bucket = stats.by_status.setdefault(order.status, StatusBreakdown())
        bucket.count += 1
        if total is None:
            continue
        bucket.revenue += total
        stats.total_sales += total
        if order.status == OrderStatus.DELIVERED:
            delivered_totals.append(total)

    if delivered_totals:
        stats.completed_orders = len(delivered_totals)
        stats.total_revenue = sum(delivered_totals, ZERO)
        stats.average_order_value = (stats.total_revenue / len(delivered_totals)).quantize(Decimal("0.01"))
        stats.min_order_value = min(delivered_totals)
        stats.max_order_value = max(delivered_totals)
    return stats


def bucket_key(created_at: datetime, period: str) -> str:
    if period in DAILY_PERIODS:
        return f"{created_at:%Y-%m-%d}"
    return f"{created_at:%Y-%m}"


def sales_report(orders: Iterable[Order], period: str, now: datetime) -> SalesReport:
    start, end = period_window(period, now)
    buckets: dict[str, SalesBucket] = {}
    for order in orders:
        if not start <= order.created_at <= end:
            continue
        key = bucket_key(order.created_at, period)
        bucket = buckets.setdefault(key, SalesBucket(date=key))
        bucket.orders += 1
        if order.final_total_amount is not None:
            bucket.sales += order.final_total_amount

    data = [buckets[key] for key in sorted(buckets)]
    return SalesReport(
        period=period,
        start=start,
        end=end,
        data=data,
        total_sales=sum((b.sales for b in data), ZERO),
        total_orders=sum(b.orders for b in data),
    )
